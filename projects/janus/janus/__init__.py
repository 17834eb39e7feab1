# \janus\projects\janus\janus\__init__.py
"""
Lightweight package init.

The launcher runs before every ``flutter`` / ``dart`` command, so nothing here
may import the terminal UX stack or spawn processes at import time.

Exports:
    __version__ : best-effort package version (falls back to "0+unknown")
    ROOT        : project root (./projects/janus)
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as _pkg_version
from pathlib import Path

__all__ = ["__version__", "ROOT"]


def _detect_version() -> str:
    """
    Try both "janus-launcher" and normalized "janus_launcher" distribution
    names, since metadata names are normalised differently across installers.
    """
    for dist in ("janus-launcher", "janus_launcher"):
        try:
            return _pkg_version(dist)
        except PackageNotFoundError:
            continue
    return "0+unknown"


ROOT = Path(__file__).resolve().parents[1]

__version__ = _detect_version()
