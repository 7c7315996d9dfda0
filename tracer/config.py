"""Environment-driven configuration for Tracer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_EXTENSIONS = (".ts", ".js", ".tsx", ".jsx", ".py", ".java", ".cpp", ".c", ".cs", ".go", ".rs")

PROJECT_ROOT_ENV = "TRACER_PROJECT_ROOT"
LOG_LEVEL_ENV = "TRACER_LOG_LEVEL"
LOG_FILE_ENV = "TRACER_LOG_FILE"
MAX_FILES_ENV = "TRACER_MAX_FILES"
MAX_FILE_CONTENT_ENV = "TRACER_MAX_FILE_CONTENT"


@dataclass(slots=True)
class TracerConfig:
    # None when TRACER_PROJECT_ROOT is unset; the root is then discovered
    project_path: Optional[Path] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    supported_extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    max_files_to_analyze: int = 10
    max_file_content_length: int = 1000


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got '{raw}'")
    if value <= 0:
        raise ValueError(f"Environment variable {name} must be positive, got {value}")
    return value


def load_config() -> TracerConfig:
    """Read configuration from ``TRACER_*`` environment variables."""
    root = os.getenv(PROJECT_ROOT_ENV)
    log_file = os.getenv(LOG_FILE_ENV)
    return TracerConfig(
        project_path=Path(root).expanduser().resolve() if root else None,
        log_level=(os.getenv(LOG_LEVEL_ENV) or "INFO").upper(),
        log_file=Path(log_file).expanduser() if log_file else None,
        max_files_to_analyze=_int_from_env(MAX_FILES_ENV, 10),
        max_file_content_length=_int_from_env(MAX_FILE_CONTENT_ENV, 1000),
    )
