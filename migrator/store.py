#!/usr/bin/env python3
"""
Migration Store - project definitions, table status, checkpoints and job logs

Two implementations:
    MemoryStore    - process-local, used by tests and embedding applications
    JsonFileStore  - per-project JSON state document plus a JSON Lines job log

Writes through a store are best-effort from the engine's point of view: the
orchestrator catches and logs store failures instead of failing the run.

Author: Apollo & Claude
Version: 1.0.0
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from migrator.models import MigrationLog, MigrationProgress, Project, TableStatus

logger = logging.getLogger(__name__)


class MigrationStore:
    """Base class for migration stores"""

    def save_project(self, project: Project):
        raise NotImplementedError("Subclasses must implement save_project")

    def load_project(self, project_id: str) -> Optional[Project]:
        raise NotImplementedError("Subclasses must implement load_project")

    def update_table_status(self, project_id: str, table_id: str, status: TableStatus):
        raise NotImplementedError("Subclasses must implement update_table_status")

    def save_checkpoint(self, progress: MigrationProgress):
        raise NotImplementedError("Subclasses must implement save_checkpoint")

    def load_checkpoint(self, project_id: str) -> Optional[MigrationProgress]:
        raise NotImplementedError("Subclasses must implement load_checkpoint")

    def append_log(self, project_id: str, log: MigrationLog):
        raise NotImplementedError("Subclasses must implement append_log")

    def load_logs(self, project_id: str) -> List[MigrationLog]:
        raise NotImplementedError("Subclasses must implement load_logs")


class MemoryStore(MigrationStore):
    """In-process store; values are copied in and out so callers never share state"""

    def __init__(self):
        self._lock = threading.RLock()
        self._projects: Dict[str, Dict[str, Any]] = {}
        self._checkpoints: Dict[str, Dict[str, Any]] = {}
        self._logs: Dict[str, List[Dict[str, Any]]] = {}

    def save_project(self, project: Project):
        with self._lock:
            self._projects[project.id] = project.to_dict()

    def load_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            data = self._projects.get(project_id)
            return Project.from_dict(data) if data else None

    def update_table_status(self, project_id: str, table_id: str, status: TableStatus):
        with self._lock:
            data = self._projects.get(project_id)
            if not data:
                return
            for table in data['table_mappings']:
                if table['id'] == table_id:
                    table['status'] = status.value

    def save_checkpoint(self, progress: MigrationProgress):
        with self._lock:
            self._checkpoints[progress.job_id] = progress.to_dict(include_logs=False)

    def load_checkpoint(self, project_id: str) -> Optional[MigrationProgress]:
        with self._lock:
            data = self._checkpoints.get(project_id)
            return MigrationProgress.from_dict(data) if data else None

    def append_log(self, project_id: str, log: MigrationLog):
        with self._lock:
            self._logs.setdefault(project_id, []).append(log.to_dict())

    def load_logs(self, project_id: str) -> List[MigrationLog]:
        with self._lock:
            return [MigrationLog.from_dict(l) for l in self._logs.get(project_id, [])]


class JsonFileStore(MigrationStore):
    """
    File-backed store

    Layout under <state_dir>:
        <project_id>.json       - 'project' and 'checkpoint', replaced atomically
        <project_id>.log.jsonl  - job log, one JSON entry per line, append-only
    """

    def __init__(self, state_dir: str):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _safe_id(self, project_id: str) -> str:
        return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in project_id)

    def _path(self, project_id: str) -> Path:
        return self.state_dir / f"{self._safe_id(project_id)}.json"

    def _log_path(self, project_id: str) -> Path:
        return self.state_dir / f"{self._safe_id(project_id)}.log.jsonl"

    def _read(self, project_id: str) -> Dict[str, Any]:
        path = self._path(project_id)
        if not path.exists():
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except ValueError as e:
            logger.warning(f"Failed to load state file {path}: {e}. Starting fresh.")
            return {}

    def _write(self, project_id: str, document: Dict[str, Any]):
        path = self._path(project_id)
        tmp_path = path.with_suffix('.json.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(document, f, indent=2)
        os.replace(tmp_path, path)

    def save_project(self, project: Project):
        with self._lock:
            document = self._read(project.id)
            document['project'] = project.to_dict()
            self._write(project.id, document)

    def load_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            data = self._read(project_id).get('project')
            return Project.from_dict(data) if data else None

    def update_table_status(self, project_id: str, table_id: str, status: TableStatus):
        with self._lock:
            document = self._read(project_id)
            project = document.get('project')
            if not project:
                return
            for table in project.get('table_mappings', []):
                if table.get('id') == table_id:
                    table['status'] = status.value
            self._write(project_id, document)

    def save_checkpoint(self, progress: MigrationProgress):
        with self._lock:
            document = self._read(progress.job_id)
            document['checkpoint'] = progress.to_dict(include_logs=False)
            self._write(progress.job_id, document)

    def load_checkpoint(self, project_id: str) -> Optional[MigrationProgress]:
        with self._lock:
            data = self._read(project_id).get('checkpoint')
            return MigrationProgress.from_dict(data) if data else None

    def append_log(self, project_id: str, log: MigrationLog):
        with self._lock:
            with open(self._log_path(project_id), 'a', encoding='utf-8') as f:
                json.dump(log.to_dict(), f, ensure_ascii=False)
                f.write('\n')

    def load_logs(self, project_id: str) -> List[MigrationLog]:
        path = self._log_path(project_id)
        logs = []
        with self._lock:
            if not path.exists():
                return logs
            with open(path, 'r', encoding='utf-8') as f:
                for line_num, line in enumerate(f):
                    if not line.strip():
                        continue
                    try:
                        logs.append(MigrationLog.from_dict(json.loads(line)))
                    except json.JSONDecodeError as e:
                        # A crash mid-append leaves a partial last line
                        logger.warning(f"Invalid log entry on line {line_num + 1} of {path}: {e}")
        return logs


def create_store(settings) -> MigrationStore:
    """JsonFileStore under settings.state_dir when configured, else MemoryStore"""
    state_dir = getattr(settings, 'state_dir', None)
    if state_dir:
        logger.info(f"Using migration state directory: {state_dir}")
        return JsonFileStore(state_dir)
    return MemoryStore()
