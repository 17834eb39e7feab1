# console.py — terminal UX helpers (colorama messages, Halo spinner)
"""
User-facing terminal output for the launcher.

Messages that users must read (errors, the superuser advisory, retry notices)
are written here; diagnostics go to the log file instead. The only animated
element is the Halo spinner shown while the tool snapshot compiles, and it is
replaced by a no-op spinner on non-TTY streams, CI runs and dumb terminals.
"""

from __future__ import annotations

import os
import sys
from types import TracebackType
from typing import IO, Any, Mapping, Optional, Protocol, Sequence, Type, cast

from colorama import Fore, Style
from colorama import just_fix_windows_console
from halo import Halo

__all__ = [
    "Spinner",
    "NullSpinner",
    "echo",
    "print_error",
    "print_warning",
    "should_enable_spinners",
    "status_spinner",
    "SUPERUSER_WARNING",
]

just_fix_windows_console()

SUPERUSER_WARNING: tuple[str, ...] = (
    "   Woah! You appear to be trying to run flutter as root.",
    "   We strongly recommend running the flutter tool without superuser privileges.",
    "  /",
    "📎",
)


class Spinner(Protocol):
    def __enter__(self) -> "Spinner": ...
    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None: ...
    def succeed(self, text: Optional[str] = None) -> Any: ...
    def fail(self, text: Optional[str] = None) -> Any: ...


class NullSpinner:
    def __init__(self, *_: Any, **__: Any) -> None:
        pass

    def __enter__(self) -> "NullSpinner":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        return None

    def succeed(self, text: Optional[str] = None) -> "NullSpinner":
        return self

    def fail(self, text: Optional[str] = None) -> "NullSpinner":
        return self


def echo(msg: object = "", *, stream: Optional[IO[str]] = None, end: str = "\n") -> None:
    target = stream or sys.stdout
    s = f"{msg}{end}"
    try:
        target.write(s)
    except UnicodeEncodeError:
        buffer = getattr(target, "buffer", None)
        if buffer is not None:
            buffer.write(s.encode("utf-8", "replace"))
        else:
            target.write(s.encode("ascii", "replace").decode("ascii"))
    target.flush()


def print_error(message: str, hint: Sequence[str] = (), *, prefix: str = "Error:", stream: Optional[IO[str]] = None) -> None:
    target = stream or sys.stderr
    echo(f"{Fore.RED}{Style.BRIGHT}{prefix}{Style.RESET_ALL} {message}", stream=target)
    for line in hint:
        echo(line, stream=target)


def print_warning(lines: Sequence[str], *, stream: Optional[IO[str]] = None) -> None:
    target = stream or sys.stderr
    for line in lines:
        echo(f"{Fore.YELLOW}{line}{Style.RESET_ALL}", stream=target)


def should_enable_spinners(
    stream: Any | None = None,
    *,
    ci: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> bool:
    """*ci* comes from :attr:`LauncherConfig.ci`; only TERM is read from the environment."""
    env = os.environ if environ is None else environ
    target = stream or sys.stderr
    isatty = getattr(target, "isatty", None)
    if not callable(isatty) or not isatty():
        return False
    if ci:
        return False
    if env.get("TERM") == "dumb":
        return False
    return True


def status_spinner(
    label: str,
    *,
    ci: bool = False,
    stream: Any | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Spinner:
    """Halo spinner for *label*, or a :class:`NullSpinner` when animation is off."""
    target = stream or sys.stderr
    if not should_enable_spinners(target, ci=ci, environ=environ):
        return NullSpinner()
    return cast(Spinner, Halo(text=label, spinner="dots", stream=target))
