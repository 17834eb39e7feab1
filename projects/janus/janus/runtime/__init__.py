"""
Runtime utilities used by the launcher before the real tool starts.

Modules in this package intentionally avoid heavy imports and side effects so
they can execute early during bootstrap across all supported platforms.
"""

from __future__ import annotations

from .lock import LockHandle, UpgradeLock, WaitNotice, probe_lock_strategy

__all__: list[str] = ["LockHandle", "UpgradeLock", "WaitNotice", "probe_lock_strategy"]
