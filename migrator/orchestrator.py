#!/usr/bin/env python3
"""
Migration Orchestrator - job lifecycle for Oracle -> PostgreSQL data copies

State machine:
    idle -> running -> (paused <-> running) -> completed | error

A job runs on its own thread. The thread creates the target tables, then
fans the enabled, not-yet-migrated tables out to a bounded table pool. The
first table failure cancels everything still queued, signals running
workers to stop, and marks the job as failed.

Usage:
    orchestrator = MigrationOrchestrator(store=JsonFileStore("./migration_state"))
    orchestrator.start(project)
    orchestrator.pause(project.id)
    orchestrator.resume(project.id)
    progress = orchestrator.get_progress(project.id)

Author: Apollo & Claude
Version: 1.0.0
"""

import logging
import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Callable, List, Optional

from config.settings import MigrationSettings, load_settings
from migrator.connections import ConnectionProvider
from migrator.errors import JobStateError, MigrationAborted, sanitize_error
from migrator.job_registry import JobContext, JobRegistry
from migrator.log_export import export_logs_csv
from migrator.models import JobStatus, LogLevel, MigrationProgress, Project, TableMapping, TableStatus
from migrator.row_copy import RowCopyEngine
from migrator.sql_builder import build_count, build_create_table, build_where_clause
from migrator.store import MigrationStore, create_store
from migrator.table_unit import TableMigrationUnit, await_workers

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """Starts, pauses, resumes and reports on migration jobs (one job per project)"""

    def __init__(self, store: Optional[MigrationStore] = None,
                 connections: Optional[ConnectionProvider] = None,
                 settings_provider: Optional[Callable[[], MigrationSettings]] = None):
        self.settings_provider = settings_provider or load_settings
        self.store = store or create_store(self.settings_provider())
        self.connections = connections or ConnectionProvider()
        self.registry = JobRegistry()

    # Public API

    def start(self, project: Project, settings: Optional[MigrationSettings] = None) -> MigrationProgress:
        """
        Start migrating a project in the background

        Calling start while the project's job thread is alive starts nothing
        and returns the live snapshot.

        Returns:
            Snapshot of the job right after launch
        """
        with self.registry.launch_lock:
            existing = self.registry.get(project.id)
            if existing is not None and existing.is_thread_alive():
                logger.info(f"Migration {project.id} is already running; start ignored")
                return existing.snapshot()

            settings = settings or self.settings_provider()
            try:
                self.store.save_project(project)
            except Exception as e:
                logger.warning(f"Failed to persist project {project.id}: {sanitize_error(e)}")

            progress = MigrationProgress(
                job_id=project.id,
                status=JobStatus.RUNNING,
                start_time=datetime.now(),
                total_tables=len(_enabled_tables(project)),
                total_rows=self._count_source_rows(project),
            )
            context = JobContext(project, self.store, settings, progress)
            # Tables migrated by an earlier run stay in the totals, so they count as done
            self._reconcile_counters(context)
            context.save_checkpoint()
            self.registry.register(context)
            self._launch(context)
            return context.snapshot()

    def pause(self, job_id: str) -> MigrationProgress:
        """Pause a running job; workers block at their next row"""
        with self.registry.launch_lock:
            context = self._context_for_control(job_id)
        if context is None:
            logger.warning(f"Cannot pause unknown migration {job_id}")
            return MigrationProgress(job_id=job_id)

        try:
            with context.lock:
                _require_status(context, JobStatus.RUNNING, "pause")
                context.progress.status = JobStatus.PAUSED
                context.pause.set()
        except JobStateError as e:
            logger.info(e.message)
            return context.snapshot()

        context.save_checkpoint()
        context.log(LogLevel.INFO, "Migration paused")
        return context.snapshot()

    def resume(self, job_id: str) -> MigrationProgress:
        """
        Resume a paused job

        If the job thread is still alive its workers are released. Otherwise
        (e.g. after a process restart) the job is relaunched from the stored
        project: migrated tables are skipped, the rest restart from row zero.
        """
        with self.registry.launch_lock:
            context = self._context_for_control(job_id)
            if context is None:
                logger.warning(f"Cannot resume unknown migration {job_id}")
                return MigrationProgress(job_id=job_id)

            try:
                with context.lock:
                    _require_status(context, JobStatus.PAUSED, "resume")
            except JobStateError as e:
                logger.info(e.message)
                return context.snapshot()

            if context.is_thread_alive():
                context.set_status(JobStatus.RUNNING)
                context.pause.clear()
                context.save_checkpoint()
                context.log(LogLevel.INFO, "Migration resumed")
                return context.snapshot()

            try:
                project = self.store.load_project(job_id) or context.project
                context.project = project
                context.settings = self.settings_provider()
                context.cancel.clear()
                self._reconcile_counters(context)
                context.set_status(JobStatus.RUNNING)
                context.pause.clear()
                context.save_checkpoint()
                self._launch(context)
                context.log(LogLevel.INFO, "Migration resumed - execution thread restarted")
            except Exception as e:
                logger.error(f"Failed to restart migration thread for {job_id}: {sanitize_error(e)}")
                context.set_status(JobStatus.ERROR)
                context.save_checkpoint()
                context.log(LogLevel.ERROR, f"Failed to resume migration: {e}")
            return context.snapshot()

    def get_progress(self, job_id: str) -> MigrationProgress:
        """
        Progress snapshot of a job

        Live jobs report their in-memory state. Jobs unknown to this process
        are rebuilt from the stored checkpoint (or the table statuses), with
        row counts refreshed from the databases.
        """
        context = self.registry.get(job_id)
        if context is not None:
            snapshot = context.snapshot()
            if snapshot.status != JobStatus.RUNNING and not context.is_thread_alive():
                self._refresh_row_counts(context.project, snapshot)
            return snapshot
        return self._reconstruct_progress(job_id)

    def export_logs_csv(self, job_id: str) -> bytes:
        """Job log as CSV (UTF-8 with BOM)"""
        context = self.registry.get(job_id)
        if context is not None:
            logs = context.snapshot().logs
        else:
            try:
                logs = self.store.load_logs(job_id)
            except Exception as e:
                logger.warning(f"Failed to load logs for {job_id}: {sanitize_error(e)}")
                logs = []
        return export_logs_csv(logs)

    def join(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for the job thread to finish; True when no thread is left running"""
        context = self.registry.get(job_id)
        thread = context.thread if context is not None else None
        if thread is not None:
            thread.join(timeout)
            return not thread.is_alive()
        return True

    # Job thread

    def _launch(self, context: JobContext):
        thread = threading.Thread(target=self._run, args=(context,),
                                  name=f"Migration-{context.job_id}", daemon=True)
        context.thread = thread
        thread.start()

    def _run(self, context: JobContext):
        thread = threading.current_thread()
        executor = None
        futures = []
        try:
            project = context.project
            is_resume = context.progress.completed_tables > 0 or \
                any(t.status == TableStatus.MIGRATED for t in project.table_mappings)

            if not is_resume:
                context.log(LogLevel.INFO, "Migration started")
                self._create_target_tables(context)
            else:
                context.log(LogLevel.INFO, "Migration resumed (parallel tables enabled)")

            tables = [t for t in _enabled_tables(project) if t.status != TableStatus.MIGRATED]
            if not tables:
                self._complete(context)
                return

            settings = context.settings
            parallel_tables = settings.resolved_parallel_jobs
            context.log(LogLevel.INFO, f"Running {parallel_tables} parallel table worker(s)")

            engine = RowCopyEngine(self.connections, project.source_connection,
                                   project.target_connection, settings)
            unit = TableMigrationUnit(engine, self.connections, project.source_connection,
                                      project.target_connection, settings)

            executor = ThreadPoolExecutor(max_workers=parallel_tables,
                                          thread_name_prefix=f"Table-{context.job_id}")
            futures = [executor.submit(unit.run, context, table, is_resume) for table in tables]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            failure = _first_failure(done)
            if failure is not None:
                raise failure

            self._complete(context)
        except Exception as e:
            context.abort()
            for future in futures:
                future.cancel()
            context.set_status(JobStatus.ERROR)
            context.set_current_table(None)
            context.save_checkpoint()
            cause = f" (caused by {type(e.__cause__).__name__}: {e.__cause__})" if e.__cause__ else ""
            context.log(LogLevel.ERROR, f"Migration failed: {e}", details=f"{type(e).__name__}: {e}{cause}")
        finally:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)
                await_workers(futures, context.settings.shutdown_grace_seconds,
                               f"table workers of {context.job_id}")
            self.registry.release_thread(context.job_id, thread)

    def _complete(self, context: JobContext):
        context.set_status(JobStatus.COMPLETED)
        context.pause.clear()
        with context.lock:
            context.progress.current_table = None
            context.progress.estimated_end_time = None
        context.save_checkpoint()
        context.log(LogLevel.SUCCESS, "Migration completed successfully")

    def _create_target_tables(self, context: JobContext):
        """Create missing target tables in a single transaction"""
        project = context.project
        with self.connections.open(project.target_connection) as target:
            original_autocommit = target.autocommit
            target.autocommit = False
            try:
                for table in _enabled_tables(project):
                    if target.table_exists(table.target_schema, table.target_table):
                        context.log(LogLevel.INFO, f"Table already exists: {table.target_table}")
                        continue
                    table_ref = target.qualify(table.target_schema, table.target_table)
                    target.execute(build_create_table(table_ref, table.column_mappings))
                    context.log(LogLevel.INFO, f"Created table: {table.target_table}")
                target.commit()
            except Exception:
                target.rollback()
                raise
            finally:
                target.autocommit = original_autocommit

    # Row accounting

    def _count_source_rows(self, project: Project) -> int:
        """Sum of filtered source row counts; tables that cannot be counted are skipped"""
        total_rows = 0
        try:
            with self.connections.open(project.source_connection, read_only=True) as source:
                for table in _enabled_tables(project):
                    sql = build_count(source.qualify(table.source_schema, table.source_table),
                                      build_where_clause(table.filter_condition))
                    try:
                        row = source.query_one(sql)
                        total_rows += int(row[0]) if row and row[0] is not None else 0
                    except Exception as e:
                        logger.warning(f"Failed to count rows for table {table.source_name}: {sanitize_error(e)}")
                        source.rollback()
        except Exception as e:
            logger.error(f"Failed to calculate total rows: {sanitize_error(e)}")
        return total_rows

    def _count_target_rows(self, project: Project) -> int:
        """Rows present in the target for tables already marked migrated"""
        migrated_rows = 0
        migrated = [t for t in _enabled_tables(project) if t.status == TableStatus.MIGRATED]
        if not migrated:
            return 0
        try:
            with self.connections.open(project.target_connection) as target:
                for table in migrated:
                    sql = build_count(target.qualify(table.target_schema, table.target_table))
                    try:
                        row = target.query_one(sql)
                        migrated_rows += int(row[0]) if row and row[0] is not None else 0
                    except Exception as e:
                        logger.warning(f"Failed to count migrated rows for table {table.target_name}: {sanitize_error(e)}")
                        target.rollback()
        except Exception as e:
            logger.error(f"Failed to count migrated rows: {sanitize_error(e)}")
        return migrated_rows

    def _refresh_row_counts(self, project: Project, progress: MigrationProgress):
        progress.total_rows = self._count_source_rows(project)
        progress.migrated_rows = self._count_target_rows(project)

    def _reconcile_counters(self, context: JobContext):
        """Before a relaunch, count only work that survives: migrated tables and their rows"""
        project = context.project
        migrated_rows = self._count_target_rows(project)
        with context.lock:
            context.progress.completed_tables = sum(
                1 for t in _enabled_tables(project) if t.status == TableStatus.MIGRATED)
            context.progress.migrated_rows = migrated_rows
            context.progress.total_tables = len(_enabled_tables(project))

    # Reconstruction

    def _context_for_control(self, job_id: str) -> Optional[JobContext]:
        """Live context, or one rebuilt from the store so pause/resume work after a restart"""
        context = self.registry.get(job_id)
        if context is not None:
            return context
        try:
            project = self.store.load_project(job_id)
        except Exception as e:
            logger.error(f"Failed to load project {job_id}: {sanitize_error(e)}")
            return None
        if project is None:
            return None
        progress = self._reconstruct_progress(job_id, project)
        context = JobContext(project, self.store, self.settings_provider(), progress)
        if progress.status == JobStatus.PAUSED:
            context.pause.set()
        return self.registry.register(context)

    def _reconstruct_progress(self, job_id: str, project: Optional[Project] = None) -> MigrationProgress:
        try:
            project = project or self.store.load_project(job_id)
        except Exception as e:
            logger.error(f"Failed to load migration progress for {job_id}: {sanitize_error(e)}")
            return MigrationProgress(job_id=job_id)
        if project is None:
            return MigrationProgress(job_id=job_id)

        try:
            progress = self.store.load_checkpoint(job_id)
        except Exception as e:
            logger.warning(f"Failed to load checkpoint for {job_id}: {sanitize_error(e)}")
            progress = None
        if progress is None:
            progress = _progress_from_table_mappings(project)

        self._refresh_row_counts(project, progress)
        try:
            progress.logs = self.store.load_logs(job_id)
        except Exception as e:
            logger.warning(f"Failed to load logs for {job_id}: {sanitize_error(e)}")
        return progress


def _enabled_tables(project: Project) -> List[TableMapping]:
    return [t for t in project.table_mappings if t.enabled]


def _first_failure(done) -> Optional[BaseException]:
    """Root-cause failure among finished futures; sibling aborts only if nothing else failed"""
    failures = [f.exception() for f in done if not f.cancelled() and f.exception() is not None]
    for failure in failures:
        if not isinstance(failure, MigrationAborted):
            return failure
    return failures[0] if failures else None


def _require_status(context: JobContext, expected: JobStatus, action: str):
    if context.progress.status != expected:
        raise JobStateError(
            f"Cannot {action} migration {context.job_id}: status is {context.progress.status.value}",
            {'expected': expected.value, 'actual': context.progress.status.value})


def _progress_from_table_mappings(project: Project) -> MigrationProgress:
    tables = _enabled_tables(project)
    completed = sum(1 for t in tables if t.status == TableStatus.MIGRATED)
    if completed == 0:
        status = JobStatus.IDLE
    elif completed == len(tables):
        status = JobStatus.COMPLETED
    else:
        status = JobStatus.PAUSED
    return MigrationProgress(job_id=project.id, status=status,
                             total_tables=len(tables), completed_tables=completed)
