"""
Cross-process upgrade lock.

To make sure parallel ``flutter`` invocations never rebuild the tool snapshot
at the same time, the staleness check and the upgrade run under an exclusive
lock on the shared cache. Two primitives are supported and one is chosen per
host by :func:`probe_lock_strategy`:

* ``flock``: a kernel advisory lock on ``bin/cache/.upgrade_lockfile``. The
  descriptor is opened for writing because NFS refuses exclusive locks on
  read-only descriptors. The kernel drops the lock when the descriptor is
  closed, including when the process dies.
* ``mkdir``: hosts without ``flock`` fall back to creating
  ``bin/cache/.upgrade_lock``. Directory creation is atomic across processes,
  so whoever creates it owns the lock. The directory is removed on release,
  on SIGINT / SIGTERM and at interpreter exit. A hard kill (SIGKILL, power
  loss) skips all of these and leaves the directory behind; every later
  invocation then waits forever until it is deleted by hand. ``janus status``
  reports a lingering lock directory for that reason.

Waiting has no timeout and no fairness: the first process to get the
primitive wins.
"""

from __future__ import annotations

import atexit
import errno
import logging
import os
import shutil
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from types import FrameType, TracebackType
from typing import IO, Any, Callable, Dict, Optional, Protocol, Type

from janus.errors import ConfigError

try:
    import fcntl
except ImportError:  # Windows has no flock
    fcntl = None  # type: ignore[assignment]

__all__ = [
    "WAITING_MESSAGE",
    "LockHandle",
    "LockStrategy",
    "FlockStrategy",
    "MkdirStrategy",
    "WaitNotice",
    "UpgradeLock",
    "flock_available",
    "probe_lock_strategy",
]

LOGGER = logging.getLogger(__name__)

WAITING_MESSAGE = "Waiting for another flutter command to release the startup lock..."

_CONTENDED_ERRNOS = {errno.EWOULDBLOCK, errno.EAGAIN, errno.EACCES}


@dataclass
class LockHandle:
    path: Path
    strategy: str
    fd: Optional[int] = None


class LockStrategy(Protocol):
    name: str
    uses_directory: bool

    def try_acquire(self, path: Path) -> Optional[LockHandle]: ...

    def release(self, handle: LockHandle) -> None: ...


def flock_available() -> bool:
    return fcntl is not None and hasattr(fcntl, "flock")


class FlockStrategy:
    name = "flock"
    uses_directory = False

    def __init__(self) -> None:
        if not flock_available():
            raise ConfigError("flock is not available on this platform.")
        self._reported_error = False

    def try_acquire(self, path: Path) -> Optional[LockHandle]:
        assert fcntl is not None
        fd = os.open(str(path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            os.close(fd)
            # Users care about the wait, not about flock diagnostics (e.g. NFS).
            if exc.errno not in _CONTENDED_ERRNOS and not self._reported_error:
                LOGGER.warning("flock on %s failed: %s", path, exc)
                self._reported_error = True
            return None
        return LockHandle(path=path, strategy=self.name, fd=fd)

    def release(self, handle: LockHandle) -> None:
        if handle.fd is None:
            return
        fd, handle.fd = handle.fd, None
        os.close(fd)


class MkdirStrategy:
    name = "mkdir"
    uses_directory = True

    def try_acquire(self, path: Path) -> Optional[LockHandle]:
        try:
            os.mkdir(path)
        except FileExistsError:
            return None
        return LockHandle(path=path, strategy=self.name)

    def release(self, handle: LockHandle) -> None:
        try:
            shutil.rmtree(handle.path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            # Cleanup is best effort; never block exit on it.
            LOGGER.warning("Unable to remove lock directory %s: %s", handle.path, exc)


def probe_lock_strategy(preferred: Optional[str] = None) -> LockStrategy:
    """Pick the locking primitive once, based on what the host supports."""
    if preferred == "mkdir":
        return MkdirStrategy()
    if preferred == "flock":
        return FlockStrategy()
    if preferred is not None:
        raise ConfigError(f"Unknown lock strategy {preferred!r}.")
    if flock_available():
        return FlockStrategy()
    return MkdirStrategy()


@dataclass
class WaitNotice:
    """One-line "waiting" notice, printed at most once per wait."""

    message: str = WAITING_MESSAGE
    stream: Optional[IO[str]] = None
    shown: bool = False

    def _write(self, text: str) -> None:
        target = self.stream or sys.stdout
        target.write(text)
        target.flush()

    def show(self) -> None:
        if self.shown:
            return
        # Carriage return, no newline: the tool prints the same message for its
        # own lock and the two must overwrite each other.
        self._write(self.message + "\r")
        self.shown = True

    def clear(self) -> None:
        if not self.shown:
            return
        self._write(" " * len(self.message) + "\r")
        self.shown = False


_SignalHandler = Any


class UpgradeLock:
    """
    Blocking, polling acquisition of the upgrade lock.

    Usage::

        with UpgradeLock(paths.lock_file, strategy) as handle:
            ...  # only the holder may touch the stamp or the snapshot
    """

    def __init__(
        self,
        path: Path,
        strategy: Optional[LockStrategy] = None,
        *,
        poll_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        notice: Optional[WaitNotice] = None,
        handle_signals: bool = True,
    ) -> None:
        self.path = Path(path)
        self.strategy: LockStrategy = strategy or probe_lock_strategy()
        self.poll_interval = poll_interval
        self._sleep = sleep
        self.notice = notice or WaitNotice()
        self._handle_signals = handle_signals
        self._handle: Optional[LockHandle] = None
        self._saved_handlers: Dict[int, _SignalHandler] = {}
        self._atexit_registered = False

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> LockHandle:
        if self._handle is not None:
            return self._handle
        self._install_cleanup()
        try:
            while True:
                handle = self.strategy.try_acquire(self.path)
                if handle is not None:
                    break
                self.notice.show()
                self._sleep(self.poll_interval)
        except BaseException:
            self.notice.clear()
            self._remove_cleanup()
            raise
        self._handle = handle
        self.notice.clear()
        LOGGER.debug("Acquired %s lock on %s", self.strategy.name, self.path)
        return handle

    def release(self) -> None:
        handle, self._handle = self._handle, None
        try:
            if handle is not None:
                self.strategy.release(handle)
                LOGGER.debug("Released %s lock on %s", self.strategy.name, self.path)
        finally:
            self._remove_cleanup()

    def __enter__(self) -> LockHandle:
        return self.acquire()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()

    # ------------------------------------------------------------------
    # cleanup registration
    # ------------------------------------------------------------------

    def _on_signal(self, signum: int, frame: Optional[FrameType]) -> None:
        LOGGER.info("Signal %s received while holding/awaiting the upgrade lock", signum)
        self.release()
        if signum == signal.SIGINT:
            raise KeyboardInterrupt
        raise SystemExit(128 + signum)

    def _install_cleanup(self) -> None:
        if not self._atexit_registered:
            atexit.register(self.release)
            self._atexit_registered = True
        if not self._handle_signals or self._saved_handlers:
            return
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._saved_handlers[signum] = signal.signal(signum, self._on_signal)
            except ValueError:
                # Not the main thread: signals stay with the default handlers.
                LOGGER.debug("Cannot install handler for signal %s outside the main thread", signum)
                break

    def _remove_cleanup(self) -> None:
        if self._atexit_registered:
            atexit.unregister(self.release)
            self._atexit_registered = False
        saved, self._saved_handlers = self._saved_handlers, {}
        for signum, previous in saved.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
