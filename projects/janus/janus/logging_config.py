"""Minimal logging helpers for Janus.

The launcher runs in front of every ``flutter`` command, so the terminal is
reserved for the messages users are meant to read. Everything else goes to a
single file handler:

* ``setup_logging`` initialises that handler (idempotent).
* ``get_log_path`` exposes the resolved file for ``janus status``.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Optional

__all__ = [
    "get_log_path",
    "setup_logging",
]

APP = "janus"

_configured = False
_log_path: Optional[Path] = None


def _platform_data_dir() -> Path:
    """Return a per-user writable application data directory."""
    if os.name == "nt":
        base = Path(os.getenv("LOCALAPPDATA") or os.getenv("APPDATA") or (Path.home() / "AppData" / "Local"))
        return base / APP
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP
    xdg_home = os.getenv("XDG_DATA_HOME")
    if xdg_home:
        return Path(xdg_home) / APP
    return Path.home() / ".local" / "share" / APP


def _default_logs_dir() -> Path:
    return _platform_data_dir() / "logs"


def _resolve_log_path(file_env: str) -> Path:
    override = os.getenv(file_env)
    if override:
        path = Path(override).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        return path
    logs_dir = _default_logs_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir / "janus.log"


def setup_logging(
    *,
    level_env: str = "JANUS_LOG_LEVEL",
    file_env: str = "JANUS_LOG_FILE",
) -> Path:
    """
    Configure the ``janus`` logger with a single file handler.

    The level comes from ``JANUS_LOG_LEVEL`` (default WARNING) and the file
    from ``JANUS_LOG_FILE`` (default ``<data dir>/janus/logs/janus.log``).
    When the log location is not writable the handler falls back to the
    system temp directory. Repeated calls return the configured path.
    """
    global _configured, _log_path

    if _configured and _log_path is not None:
        return _log_path

    level_name = os.getenv(level_env, "WARNING").upper().strip()
    level = getattr(logging, level_name, logging.WARNING)
    if not isinstance(level, int):
        level = logging.WARNING

    handler: logging.Handler
    try:
        log_path = _resolve_log_path(file_env)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError:
        log_path = Path(tempfile.gettempdir()) / "janus.log"
        handler = logging.FileHandler(log_path, encoding="utf-8")

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(process)d %(name)s: %(message)s"))

    # Only the package logger is touched; the launcher never owns the root logger.
    logger = logging.getLogger(APP)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    _log_path = log_path
    _configured = True
    return log_path


def get_log_path() -> Optional[Path]:
    """Expose the resolved log file path for modules that need it."""
    return _log_path
