#!/usr/bin/env python3
"""
Job Registry - per-job runtime state shared by the orchestrator and its workers

A JobContext bundles everything a running job mutates: the progress
snapshot and the lock that guards it, the pause token, the cancel event,
and the thread running the job. Workers receive the context explicitly.

Author: Apollo & Claude
Version: 1.0.0
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Optional

from migrator.errors import MigrationAborted, sanitize_error
from migrator.models import (JobStatus, LogLevel, MigrationLog, MigrationProgress,
                             Project, TableMapping, TableStatus)
from migrator.store import MigrationStore

logger = logging.getLogger(__name__)

CHECKPOINT_ROW_INTERVAL = 10000

_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class PauseToken:
    """Pause flag that waiters block on until it is cleared or they are told to abort"""

    def __init__(self):
        self._condition = threading.Condition()
        self._paused = False

    def set(self):
        with self._condition:
            self._paused = True

    def clear(self):
        with self._condition:
            self._paused = False
            self._condition.notify_all()

    def is_set(self) -> bool:
        return self._paused

    def wake(self):
        """Wake all waiters so they can re-check abort conditions"""
        with self._condition:
            self._condition.notify_all()

    def wait_while_paused(self, should_abort, poll_seconds: float = 0.1):
        with self._condition:
            while self._paused and not should_abort():
                self._condition.wait(poll_seconds)


class JobContext:
    """Runtime state of one migration job"""

    def __init__(self, project: Project, store: MigrationStore, settings, progress: MigrationProgress = None):
        self.project = project
        self.store = store
        self.settings = settings
        self.progress = progress or MigrationProgress(job_id=project.id)
        self.lock = threading.RLock()
        self.pause = PauseToken()
        self.cancel = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def job_id(self) -> str:
        return self.project.id

    @property
    def status(self) -> JobStatus:
        return self.progress.status

    def set_status(self, status: JobStatus):
        with self.lock:
            self.progress.status = status
            if status in (JobStatus.COMPLETED, JobStatus.ERROR):
                self.progress.end_time = datetime.now()

    def is_thread_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    # Cooperative control

    def should_abort(self) -> bool:
        return self.cancel.is_set() or self.progress.status == JobStatus.ERROR

    def wait_if_paused(self):
        """Block while the job is paused; raise once the job has failed or been cancelled"""
        if self.pause.is_set():
            self.pause.wait_while_paused(self.should_abort, self.settings.pause_poll_seconds)
        if self.should_abort():
            raise MigrationAborted()

    def abort(self):
        self.cancel.set()
        self.pause.wake()

    # Progress

    def set_current_table(self, name: Optional[str]):
        with self.lock:
            self.progress.current_table = name

    def add_migrated_rows(self, count: int):
        if count <= 0:
            return
        with self.lock:
            before = self.progress.migrated_rows
            self.progress.migrated_rows = before + count
            self.progress.update_estimate()
            crossed = before // CHECKPOINT_ROW_INTERVAL != self.progress.migrated_rows // CHECKPOINT_ROW_INTERVAL
        if crossed:
            self.save_checkpoint()

    def increment_completed_tables(self):
        with self.lock:
            self.progress.completed_tables += 1

    def set_table_status(self, table: TableMapping, status: TableStatus):
        with self.lock:
            table.status = status
        try:
            self.store.update_table_status(self.job_id, table.id, status)
        except Exception as e:
            logger.warning(f"Failed to persist status of {table.source_name}: {sanitize_error(e)}")

    def snapshot(self) -> MigrationProgress:
        with self.lock:
            return self.progress.copy()

    def save_checkpoint(self):
        snapshot = self.snapshot()
        try:
            self.store.save_checkpoint(snapshot)
        except Exception as e:
            logger.warning(f"Failed to save checkpoint for {self.job_id}: {sanitize_error(e)}")

    def log(self, level: LogLevel, message: str, details: Optional[str] = None) -> MigrationLog:
        """Append a job log entry, mirror it to the module logger, and persist it"""
        entry = MigrationLog(level=level, message=message,
                             details=sanitize_error(details) if details else None)
        with self.lock:
            self.progress.logs.append(entry)
        logger.log(_LOG_LEVELS[level], f"[{self.job_id}] {message}" + (f" ({entry.details})" if entry.details else ""))
        try:
            self.store.append_log(self.job_id, entry)
        except Exception as e:
            logger.warning(f"Failed to persist log entry for {self.job_id}: {sanitize_error(e)}")
        return entry


class JobRegistry:
    """Live jobs keyed by job id"""

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[str, JobContext] = {}
        # Serializes start/resume so a job never gets two live threads
        self.launch_lock = threading.RLock()

    def get(self, job_id: str) -> Optional[JobContext]:
        with self._lock:
            return self._jobs.get(job_id)

    def register(self, context: JobContext) -> JobContext:
        with self._lock:
            self._jobs[context.job_id] = context
            return context

    def is_running(self, job_id: str) -> bool:
        context = self.get(job_id)
        return context is not None and context.is_thread_alive()

    def release_thread(self, job_id: str, thread: threading.Thread):
        """Forget a finished run thread, unless a newer one replaced it"""
        with self._lock:
            context = self._jobs.get(job_id)
            if context is not None and context.thread is thread:
                context.thread = None
