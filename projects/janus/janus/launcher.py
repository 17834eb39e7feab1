"""
``flutter`` / ``dart`` entry point.

Both console scripts land in :func:`main`. The logical command comes from the
name the launcher was invoked under:

* ``flutter*`` runs the compiled tool snapshot with the forwarded arguments,
* ``dart*`` runs the Dart VM from the cached SDK directly,
* anything else is refused before any process is started.

Before dispatching, the checkout is validated and the tool snapshot is
brought up to date under the upgrade lock (see :mod:`janus.upgrade`).
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import IO, Callable, Dict, Mapping, Optional, Sequence

from .config import LauncherConfig
from .console import SUPERUSER_WARNING, print_error, print_warning
from .errors import ConfigError, GitMissingError, JanusError, NotACloneError, UnknownExecutableError
from .logging_config import setup_logging
from .paths import FlutterPaths, resolve_flutter_root
from .staleness import git_revision
from .upgrade import Runner, ensure_tool, run_command

__all__ = [
    "TOOL",
    "RUNTIME",
    "ChildRunner",
    "command_kind",
    "build_command",
    "child_environment",
    "warn_if_superuser",
    "check_git",
    "check_clone",
    "preflight",
    "run_child",
    "dispatch",
    "execute",
    "relay_status",
    "main",
]

LOGGER = logging.getLogger(__name__)

TOOL = "tool"
RUNTIME = "runtime"

# (invocation name prefix, command kind); first match wins
_COMMAND_PREFIXES: tuple[tuple[str, str], ...] = (
    ("flutter", TOOL),
    ("dart", RUNTIME),
)

ChildRunner = Callable[[Sequence[str], Mapping[str, str]], int]


def command_kind(prog_name: str) -> str:
    name = Path(prog_name).name
    for prefix, kind in _COMMAND_PREFIXES:
        if name.startswith(prefix):
            return kind
    raise UnknownExecutableError(name)


def build_command(prog_name: str, args: Sequence[str], paths: FlutterPaths, config: LauncherConfig) -> list[str]:
    kind = command_kind(prog_name)
    if kind == TOOL:
        return [
            str(paths.dart),
            "--disable-dart-dev",
            f"--packages={paths.package_config}",
            *config.tool_args,
            str(paths.snapshot),
            *args,
        ]
    return [str(paths.dart), *args]


def child_environment(paths: FlutterPaths, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if environ is None else environ)
    env["FLUTTER_ROOT"] = str(paths.root)
    return env


def warn_if_superuser(config: LauncherConfig, *, stream: Optional[IO[str]] = None) -> bool:
    """Print the root advisory (not inside Docker). Never fatal."""
    if not config.should_warn_superuser:
        return False
    print_warning(SUPERUSER_WARNING, stream=stream)
    return True


def check_git(which: Callable[[str], Optional[str]] = shutil.which) -> str:
    git = which("git")
    if not git:
        raise GitMissingError()
    return git


def check_clone(paths: FlutterPaths) -> None:
    # Without .git, `git rev-parse HEAD` cannot produce a revision stamp.
    if not paths.git_dir.exists():
        raise NotACloneError()


def preflight(
    paths: FlutterPaths,
    config: LauncherConfig,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
    stream: Optional[IO[str]] = None,
) -> None:
    warn_if_superuser(config, stream=stream)
    check_git(which)
    check_clone(paths)


def _in_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


def run_child(cmd: Sequence[str], env: Mapping[str, str]) -> int:
    """
    Spawn *cmd*, wait for it and return its raw status.

    The child shares the terminal, so Ctrl-C reaches it directly; the parent
    ignores SIGINT meanwhile and reports how the child ended. A negative
    status means the child was killed by that signal.
    """
    LOGGER.debug("exec %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(list(cmd), env=dict(env))
    except OSError as exc:
        print_error(f"Unable to run {cmd[0]}: {exc}")
        LOGGER.error("Unable to run %s: %s", cmd[0], exc)
        return 127

    previous = signal.signal(signal.SIGINT, signal.SIG_IGN) if _in_main_thread() else None
    try:
        return proc.wait()
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def dispatch(
    prog_name: str,
    args: Sequence[str],
    paths: FlutterPaths,
    config: LauncherConfig,
    *,
    runner: ChildRunner = run_child,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    cmd = build_command(prog_name, args, paths, config)
    return runner(cmd, child_environment(paths, environ))


def execute(
    prog_name: str,
    args: Sequence[str],
    *,
    environ: Optional[Mapping[str, str]] = None,
    config: Optional[LauncherConfig] = None,
    runner: ChildRunner = run_child,
    upgrade_runner: Runner = run_command,
    which: Callable[[str], Optional[str]] = shutil.which,
    revision_of: Callable[[Path], str] = git_revision,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Full bootstrap: validate, update under the lock, then dispatch.

    Returns the child's raw status, or the exit code of the first fatal
    :class:`JanusError` (1 for filesystem errors, 130 when interrupted).
    """
    env = os.environ if environ is None else environ
    try:
        cfg = config or LauncherConfig.from_env(env)
        # Refuse unknown names before touching the shared cache.
        command_kind(prog_name)
        paths = FlutterPaths.for_root(resolve_flutter_root(prog_name, cfg.flutter_root))
        preflight(paths, cfg, which=which)

        ensure_tool(paths, cfg, runner=upgrade_runner, sleep=sleep, revision_of=revision_of, environ=env)

        return dispatch(prog_name, args, paths, cfg, runner=runner, environ=env)
    except JanusError as exc:
        LOGGER.error("%s: %s", type(exc).__name__, exc.message)
        print_error(exc.message, exc.hint, prefix=exc.prefix)
        return exc.exit_code
    except KeyboardInterrupt:
        LOGGER.warning("Interrupted before %s started", prog_name)
        print_error("Interrupted.")
        return 130
    except OSError as exc:
        # Typically a read-only or otherwise unusable bin/cache.
        LOGGER.error("OSError: %s", exc)
        print_error(f"Unable to prepare the flutter tool cache: {exc}")
        return 1


def relay_status(status: int, *, relay_signals: bool) -> int:
    """
    Turn a raw child status into this process's exit code.

    A child killed by signal N exits us with ``128 + N``; with
    *relay_signals* the same signal is re-raised first so the parent shell
    sees a signal death too.
    """
    if status >= 0:
        return status
    signum = -status
    if relay_signals and _in_main_thread():
        LOGGER.info("Child terminated by signal %d; relaying", signum)
        sys.stdout.flush()
        sys.stderr.flush()
        signal.signal(signum, signal.SIG_DFL)
        os.kill(os.getpid(), signum)
    return 128 + signum


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv if argv is None else argv)
    setup_logging()
    prog_name = argv[0] if argv else "flutter"
    try:
        config = LauncherConfig.from_env()
    except ConfigError as exc:
        print_error(exc.message, exc.hint, prefix=exc.prefix)
        return exc.exit_code
    status = execute(prog_name, argv[1:], config=config)
    return relay_status(status, relay_signals=config.relay_signals)


if __name__ == "__main__":
    raise SystemExit(main())
