#!/usr/bin/env python3
"""
Migration settings
Environment variables override the optional JSON file, which overrides the defaults.

JSON values may reference the environment as ${VAR} or ${VAR:default}.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "ORA2PG_"
_ENV_PATTERN = re.compile(r'\$\{([^}:]+)(?::([^}]*))?\}')


@dataclass
class MigrationSettings:
    """Copy tuning shared by every table of a job"""

    parallel_jobs: int = 4
    batch_size: int = 1000
    commit_interval: int = 10000
    auto_commit: bool = False

    # Runtime
    state_dir: Optional[str] = None
    log_level: str = "INFO"
    shutdown_grace_seconds: float = 30.0
    pause_poll_seconds: float = 0.1

    def __post_init__(self):
        self._apply_environment()
        self._validate()

    def _apply_environment(self):
        for f in fields(self):
            raw = os.environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                setattr(self, f.name, _coerce(raw, f.type, getattr(self, f.name)))
            except ValueError:
                logger.warning(f"Ignoring invalid {ENV_PREFIX}{f.name.upper()}={raw!r}")

    def _validate(self):
        defaults = MigrationSettings.__dataclass_fields__
        for name in ('parallel_jobs', 'batch_size', 'commit_interval'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                logger.warning(f"Invalid {name}={value!r}, using default {defaults[name].default}")
                setattr(self, name, defaults[name].default)
        if self.shutdown_grace_seconds is None or self.shutdown_grace_seconds < 0:
            self.shutdown_grace_seconds = defaults['shutdown_grace_seconds'].default
        if not self.pause_poll_seconds or self.pause_poll_seconds <= 0:
            self.pause_poll_seconds = defaults['pause_poll_seconds'].default

    @property
    def resolved_parallel_jobs(self) -> int:
        return self.parallel_jobs if self.parallel_jobs and self.parallel_jobs > 0 else 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MigrationSettings':
        known = {}
        for f in fields(cls):
            if f.name in data and data[f.name] is not None:
                try:
                    known[f.name] = _coerce(data[f.name], f.type, f.default)
                except ValueError:
                    logger.warning(f"Ignoring invalid setting {f.name}={data[f.name]!r}")
        return cls(**known)


def _coerce(value: Any, annotation, default: Any) -> Any:
    """Convert env/JSON text to the field's type"""
    target = type(default) if default is not None else str
    if annotation in (bool, 'bool') or target is bool:
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ('1', 'true', 'yes', 'on'):
            return True
        if text in ('0', 'false', 'no', 'off'):
            return False
        raise ValueError(f"not a boolean: {value!r}")
    if target is int:
        return int(str(value).strip())
    if target is float:
        return float(str(value).strip())
    return value if isinstance(value, str) else str(value)


def resolve_environment_variables(config: Any) -> Any:
    """Resolve ${VAR} and ${VAR:default} references in a loaded config"""
    if isinstance(config, str):
        def replace_env_var(match):
            default_value = match.group(2) if match.group(2) is not None else ''
            return os.environ.get(match.group(1), default_value)
        return _ENV_PATTERN.sub(replace_env_var, config)
    elif isinstance(config, dict):
        return {k: resolve_environment_variables(v) for k, v in config.items()}
    elif isinstance(config, list):
        return [resolve_environment_variables(item) for item in config]
    return config


def load_settings(config_path: Optional[str] = None) -> MigrationSettings:
    """
    Load settings from an optional JSON file plus the environment

    Args:
        config_path: JSON file path; defaults to $ORA2PG_CONFIG when set

    Returns:
        MigrationSettings with environment overrides applied
    """
    config_path = config_path or os.environ.get(ENV_PREFIX + "CONFIG")
    data: Dict[str, Any] = {}
    if config_path:
        path = Path(config_path)
        if path.exists():
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    data = resolve_environment_variables(json.load(f))
                logger.info(f"Loaded migration settings from {path}")
            except (OSError, ValueError) as e:
                logger.error(f"Error loading settings from {path}: {e}, using defaults")
                data = {}
        else:
            logger.warning(f"Settings file not found: {path}, using defaults")
    # Nested {"migration": {...}} or flat
    if isinstance(data.get('migration'), dict):
        data = data['migration']
    return MigrationSettings.from_dict(data)


def configure_logging(level: Optional[str] = None):
    """Root logging setup for embedding applications and scripts"""
    level_name = (level or os.environ.get(ENV_PREFIX + "LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO),
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
