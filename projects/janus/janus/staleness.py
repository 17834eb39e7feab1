"""
Decide whether the cached ``flutter_tools`` snapshot can be reused.

The snapshot and its stamp form a single cache entry. It is stale when any of
these hold:

* the snapshot is not a regular file,
* the stamp is missing or empty,
* the stamp does not name the checkout's current ``HEAD`` revision,
* ``pubspec.yaml`` was modified after ``pubspec.lock``.

:func:`read_cache_state` snapshots the filesystem and the functions below
only look at that snapshot, so checking twice is always safe.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .errors import RevisionError
from .paths import FlutterPaths

__all__ = [
    "CacheState",
    "git_revision",
    "read_cache_state",
    "stale_reasons",
    "is_stale",
]

LOGGER = logging.getLogger(__name__)

GitRunner = Callable[[Sequence[str], Path], "subprocess.CompletedProcess[str]"]


def _run_git(cmd: Sequence[str], cwd: Path) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(
        list(cmd),
        cwd=cwd,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=False,
    )


def git_revision(root: Path, *, runner: GitRunner = _run_git) -> str:
    """Return ``git rev-parse HEAD`` for the checkout at *root*."""
    try:
        cp = runner(["git", "rev-parse", "HEAD"], root)
    except OSError as exc:
        raise RevisionError(f"Unable to run git in {root}: {exc}") from exc
    revision = (cp.stdout or "").strip()
    if cp.returncode != 0 or not revision:
        detail = (cp.stderr or "").strip()
        raise RevisionError(
            f"Unable to determine the git revision of {root}.",
            hint=(f"       {detail}",) if detail else (),
        )
    return revision


def _mtime(path: Path) -> Optional[float]:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return None


def _read_stamp(path: Path) -> Optional[str]:
    try:
        if path.stat().st_size == 0:
            return None
        # Trailing newline is stripped; undecodable bytes never match a revision.
        return path.read_bytes().decode("utf-8", errors="replace").rstrip("\n")
    except FileNotFoundError:
        return None


@dataclass(frozen=True)
class CacheState:
    snapshot_is_file: bool
    stamp_revision: Optional[str]
    current_revision: str
    manifest_mtime: Optional[float]
    lockfile_mtime: Optional[float]

    @property
    def manifest_newer(self) -> bool:
        # Same as the shell's `-nt`: a missing lock file is older than anything.
        if self.manifest_mtime is None:
            return False
        if self.lockfile_mtime is None:
            return True
        return self.manifest_mtime > self.lockfile_mtime


def read_cache_state(paths: FlutterPaths, revision: str) -> CacheState:
    return CacheState(
        snapshot_is_file=paths.snapshot.is_file(),
        stamp_revision=_read_stamp(paths.stamp),
        current_revision=revision,
        manifest_mtime=_mtime(paths.manifest),
        lockfile_mtime=_mtime(paths.manifest_lock),
    )


def stale_reasons(state: CacheState) -> List[str]:
    reasons: List[str] = []
    if not state.snapshot_is_file:
        reasons.append("snapshot-missing")
    if state.stamp_revision is None:
        reasons.append("stamp-missing")
    elif state.stamp_revision != state.current_revision:
        reasons.append("revision-changed")
    if state.manifest_newer:
        reasons.append("manifest-newer")
    return reasons


def is_stale(state: CacheState) -> bool:
    reasons = stale_reasons(state)
    if reasons:
        LOGGER.info("Tool cache is stale: %s", ", ".join(reasons))
    return bool(reasons)
