"""
Rebuild the ``flutter_tools`` snapshot when the cache is stale.

Everything in here runs while the upgrade lock is held; :func:`ensure_tool`
takes the lock, resolves the current revision and hands over to
:func:`upgrade_if_needed`. The stamp is written last, after the snapshot was
produced, so an interrupted build is detected as stale on the next run.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import IO, Callable, Dict, Mapping, Optional, Protocol, Sequence, Union

from .config import LauncherConfig
from .console import echo, print_error, status_spinner
from .errors import CompileError, RetryExhaustedError, SdkUpdateError
from .paths import FlutterPaths
from .runtime.lock import LockStrategy, UpgradeLock, WaitNotice, probe_lock_strategy
from .staleness import git_revision, is_stale, read_cache_state

__all__ = [
    "Runner",
    "run_command",
    "build_pub_environment",
    "update_sdk",
    "retry_pub_upgrade",
    "compile_snapshot",
    "write_stamp",
    "lock_path_for",
    "upgrade_if_needed",
    "ensure_tool",
]

LOGGER = logging.getLogger(__name__)

_NUMBER_WORDS = ("zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine", "ten")


def _spell_seconds(delay: float) -> str:
    if delay.is_integer() and 0 <= delay < len(_NUMBER_WORDS):
        return _NUMBER_WORDS[int(delay)]
    return f"{delay:g}"


StrPath = Union[str, "os.PathLike[str]"]


class Runner(Protocol):
    def __call__(
        self,
        cmd: Sequence[str],
        *,
        cwd: Optional[StrPath] = ...,
        env: Optional[Mapping[str, str]] = ...,
    ) -> int: ...


def run_command(
    cmd: Sequence[str],
    *,
    cwd: Optional[StrPath] = None,
    env: Optional[Mapping[str, str]] = None,
) -> int:
    """Run *cmd* attached to the terminal and return its exit status."""
    LOGGER.debug("run %s (cwd=%s)", " ".join(cmd), cwd)
    try:
        cp = subprocess.run(
            list(cmd),
            cwd=cwd,
            env=dict(env) if env is not None else None,
            check=False,
        )
    except OSError as exc:
        # Same status a shell reports for a command it cannot run.
        print_error(f"Unable to run {cmd[0]}: {exc}")
        LOGGER.error("Unable to run %s: %s", cmd[0], exc)
        return 127
    return cp.returncode


def build_pub_environment(
    paths: FlutterPaths,
    config: LauncherConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Environment for ``pub upgrade`` and the snapshot compiler.

    ``PUB_ENVIRONMENT`` is only ever appended to, so tags set by an outer
    tool survive. The caller's environment is copied, never mutated.
    """
    env = dict(os.environ if environ is None else environ)
    pub_environment = config.pub_environment
    if config.ci:
        pub_environment = f"{pub_environment}:flutter_bot"
    env["PUB_ENVIRONMENT"] = f"{pub_environment}:flutter_install"
    if config.pub_cache:
        env["PUB_CACHE"] = config.pub_cache
    elif paths.pub_cache.is_dir():
        env["PUB_CACHE"] = str(paths.pub_cache)
    env["FLUTTER_ROOT"] = str(paths.root)
    return env


def update_sdk(paths: FlutterPaths, env: Mapping[str, str], *, runner: Runner = run_command) -> None:
    code = runner(paths.sdk_updater_command(), env=env)
    if code != 0:
        raise SdkUpdateError(f"Updating the Dart SDK failed (exit code {code}).", exit_code=code)


def retry_pub_upgrade(
    paths: FlutterPaths,
    config: LauncherConfig,
    env: Mapping[str, str],
    *,
    runner: Runner = run_command,
    sleep: Callable[[float], None] = time.sleep,
    stream: Optional[IO[str]] = None,
) -> int:
    """
    Run ``pub upgrade`` in the tool's directory until it succeeds.

    Returns the number of attempts used; raises :class:`RetryExhaustedError`
    once ``config.pub_upgrade_tries`` attempts have failed. The delay between
    attempts is fixed.
    """
    tries = config.pub_upgrade_tries
    cmd = [str(paths.pub), "upgrade", config.verbosity, "--no-precompile"]
    for attempt in range(1, tries + 1):
        code = runner(cmd, cwd=paths.tools_dir, env=env)
        if code == 0:
            LOGGER.info("pub upgrade succeeded on attempt %d/%d", attempt, tries)
            return attempt
        remaining = tries - attempt
        LOGGER.warning("pub upgrade failed with exit code %d (%d tries left)", code, remaining)
        if remaining == 0:
            break
        echo(
            f"Error: Unable to 'pub upgrade' flutter tool. "
            f"Retrying in {_spell_seconds(float(config.pub_upgrade_delay))} seconds... ({remaining} tries left)",
            stream=stream,
        )
        sleep(config.pub_upgrade_delay)
    raise RetryExhaustedError("pub upgrade", tries)


def compile_snapshot(
    paths: FlutterPaths,
    config: LauncherConfig,
    env: Mapping[str, str],
    *,
    runner: Runner = run_command,
) -> None:
    cmd = [
        str(paths.dart),
        "--disable-dart-dev",
        *config.tool_args,
        f"--snapshot={paths.snapshot}",
        f"--packages={paths.package_config}",
        "--no-enable-mirrors",
        str(paths.entry_point),
    ]
    with status_spinner("Compiling flutter tool snapshot", ci=config.ci) as spinner:
        code = runner(cmd, env=env)
        if code != 0:
            spinner.fail("Compiling flutter tool snapshot failed")
            raise CompileError(f"Compiling the flutter tool failed (exit code {code}).", exit_code=code)
        spinner.succeed("Compiled flutter tool snapshot")


def write_stamp(paths: FlutterPaths, revision: str) -> None:
    tmp = paths.stamp.with_name(paths.stamp.name + ".tmp")
    tmp.write_text(revision + "\n", encoding="utf-8")
    os.replace(tmp, paths.stamp)


def upgrade_if_needed(
    paths: FlutterPaths,
    config: LauncherConfig,
    revision: str,
    *,
    runner: Runner = run_command,
    sleep: Callable[[float], None] = time.sleep,
    environ: Optional[Mapping[str, str]] = None,
    stream: Optional[IO[str]] = None,
) -> bool:
    """Rebuild the snapshot when stale; return True when a rebuild happened."""
    if not is_stale(read_cache_state(paths, revision)):
        return False

    paths.version_file.unlink(missing_ok=True)
    paths.dartignore.touch()

    base_env = dict(os.environ if environ is None else environ)
    base_env["FLUTTER_ROOT"] = str(paths.root)
    update_sdk(paths, base_env, runner=runner)

    echo("Building flutter tool...", stream=stream)
    env = build_pub_environment(paths, config, base_env)
    retry_pub_upgrade(paths, config, env, runner=runner, sleep=sleep, stream=stream)
    compile_snapshot(paths, config, env, runner=runner)
    write_stamp(paths, revision)
    LOGGER.info("Rebuilt flutter tool snapshot at revision %s", revision)
    return True


def lock_path_for(paths: FlutterPaths, strategy: LockStrategy) -> Path:
    return paths.lock_dir if strategy.uses_directory else paths.lock_file


def ensure_tool(
    paths: FlutterPaths,
    config: LauncherConfig,
    *,
    runner: Runner = run_command,
    sleep: Callable[[float], None] = time.sleep,
    revision_of: Callable[[Path], str] = git_revision,
    strategy: Optional[LockStrategy] = None,
    environ: Optional[Mapping[str, str]] = None,
    notice: Optional[WaitNotice] = None,
) -> bool:
    """Take the upgrade lock, then bring the snapshot up to date."""
    paths.cache_dir.mkdir(parents=True, exist_ok=True)
    chosen = strategy or probe_lock_strategy(config.lock_strategy)
    lock = UpgradeLock(
        lock_path_for(paths, chosen),
        chosen,
        poll_interval=config.lock_poll_interval,
        notice=notice,
    )
    with lock:
        revision = revision_of(paths.root)
        return upgrade_if_needed(
            paths,
            config,
            revision,
            runner=runner,
            sleep=sleep,
            environ=environ,
        )
