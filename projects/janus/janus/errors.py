"""
Failure taxonomy for the launcher.

Every fatal condition is raised as a :class:`JanusError` subclass at the point
where it is detected and caught exactly once by the entry point, which prints
the message (plus any remediation hint) and exits with ``exit_code``.
"""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "JanusError",
    "ConfigError",
    "RootNotFoundError",
    "GitMissingError",
    "NotACloneError",
    "RevisionError",
    "SdkUpdateError",
    "RetryExhaustedError",
    "CompileError",
    "UnknownExecutableError",
]

GET_STARTED_URL = "https://flutter.dev/get-started"


class JanusError(RuntimeError):
    """Base class for fatal bootstrap errors."""

    exit_code: int = 1
    prefix: str = "Error:"

    def __init__(self, message: str, *, hint: Sequence[str] = (), exit_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint: tuple[str, ...] = tuple(hint)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(JanusError):
    pass


class RootNotFoundError(JanusError):
    def __init__(self, prog_name: str) -> None:
        super().__init__(
            f"Unable to locate the Flutter root for {prog_name}.",
            hint=(
                "       Run the launcher from <flutter>/bin or set FLUTTER_ROOT to the",
                "       directory of your Flutter checkout.",
            ),
        )


class GitMissingError(JanusError):
    def __init__(self) -> None:
        super().__init__(
            "Unable to find git in your PATH.",
            hint=(
                "       The flutter tool requires Git in order to operate properly;",
                f"       to install Flutter, see the instructions at: {GET_STARTED_URL}",
            ),
        )


class NotACloneError(JanusError):
    def __init__(self) -> None:
        super().__init__(
            "The Flutter directory is not a clone of the GitHub project.",
            hint=(
                "       The flutter tool requires Git in order to operate properly;",
                "       to install Flutter, see the instructions at:",
                f"       {GET_STARTED_URL}",
            ),
        )


class RevisionError(JanusError):
    pass


class SdkUpdateError(JanusError):
    pass


class RetryExhaustedError(JanusError):
    def __init__(self, command: str, tries: int) -> None:
        super().__init__(f"Command '{command}' still failed after {tries} tries, giving up.")
        self.command = command
        self.tries = tries


class CompileError(JanusError):
    pass


class UnknownExecutableError(JanusError):
    prefix = "Error!"

    def __init__(self, name: str) -> None:
        super().__init__(f"Executable name {name} not recognized!")
        self.name = name
