from __future__ import annotations

import dataclasses
import io
import multiprocessing as mp
import os
import sys
import time
from pathlib import Path
from typing import List, Mapping, Optional

import pytest

from janus.config import LauncherConfig
from janus.errors import CompileError, RetryExhaustedError, SdkUpdateError
from janus.paths import FlutterPaths
from janus.runtime.lock import flock_available
from janus.staleness import is_stale, read_cache_state
from janus.upgrade import build_pub_environment, ensure_tool, retry_pub_upgrade, upgrade_if_needed

from conftest import REVISION, FakeRunner, make_checkout, make_fresh


def _stamp(paths: FlutterPaths) -> Optional[str]:
    return paths.stamp.read_text(encoding="utf-8") if paths.stamp.exists() else None


def test_fresh_cache_is_a_no_op(checkout: FlutterPaths, config: LauncherConfig, fake_runner: FakeRunner) -> None:
    make_fresh(checkout)
    assert upgrade_if_needed(checkout, config, REVISION, runner=fake_runner, environ={}) is False
    assert fake_runner.calls == []


def test_stale_cache_runs_full_rebuild_in_order(checkout: FlutterPaths, config: LauncherConfig, fake_runner: FakeRunner) -> None:
    checkout.version_file.write_text("1.0.0", encoding="utf-8")
    out = io.StringIO()

    assert upgrade_if_needed(checkout, config, REVISION, runner=fake_runner, environ={}, stream=out) is True

    executables = [cmd[0] for cmd, _cwd, _env in fake_runner.calls]
    assert executables == [str(checkout.sdk_updater), str(checkout.pub), str(checkout.dart)]
    assert _stamp(checkout) == REVISION + "\n"
    assert not checkout.version_file.exists()
    assert checkout.dartignore.exists()
    assert "Building flutter tool..." in out.getvalue()


def test_pub_and_compile_command_lines(checkout: FlutterPaths, fake_runner: FakeRunner) -> None:
    config = LauncherConfig(tool_args=("--enable-asserts",))
    upgrade_if_needed(checkout, config, REVISION, runner=fake_runner, environ={})

    (pub_cmd, pub_cwd, _), = [c for c in fake_runner.calls if c[0][0] == str(checkout.pub)]
    assert pub_cmd[1:] == ["upgrade", "--verbosity=error", "--no-precompile"]
    assert pub_cwd == str(checkout.tools_dir)

    (compile_cmd,) = fake_runner.commands(checkout.dart)
    assert compile_cmd == [
        str(checkout.dart),
        "--disable-dart-dev",
        "--enable-asserts",
        f"--snapshot={checkout.snapshot}",
        f"--packages={checkout.package_config}",
        "--no-enable-mirrors",
        str(checkout.entry_point),
    ]


def test_ci_raises_pub_verbosity(checkout: FlutterPaths, fake_runner: FakeRunner) -> None:
    upgrade_if_needed(checkout, LauncherConfig(ci=True), REVISION, runner=fake_runner, environ={})
    (pub_cmd,) = fake_runner.commands(checkout.pub)
    assert "--verbosity=normal" in pub_cmd


def test_ten_failures_give_up_without_stamp(checkout: FlutterPaths, config: LauncherConfig) -> None:
    runner = FakeRunner(checkout, pub_codes=[69] * 10)
    sleeps: List[float] = []
    out = io.StringIO()

    with pytest.raises(RetryExhaustedError) as excinfo:
        upgrade_if_needed(checkout, config, REVISION, runner=runner, sleep=sleeps.append, environ={}, stream=out)

    assert excinfo.value.exit_code == 1
    assert excinfo.value.tries == 10
    assert "giving up" in excinfo.value.message
    assert len(runner.commands(checkout.pub)) == 10
    assert runner.commands(checkout.dart) == []
    assert sleeps == [5.0] * 9
    assert "(1 tries left)" in out.getvalue()
    assert "Error: Unable to 'pub upgrade' flutter tool. Retrying in five seconds... (9 tries left)" in out.getvalue()
    assert not checkout.stamp.exists()
    assert is_stale(read_cache_state(checkout, REVISION))


def test_failure_then_success_writes_stamp(checkout: FlutterPaths, config: LauncherConfig) -> None:
    runner = FakeRunner(checkout, pub_codes=[1, 1, 0])
    sleeps: List[float] = []

    assert upgrade_if_needed(checkout, config, REVISION, runner=runner, sleep=sleeps.append, environ={}) is True

    assert len(runner.commands(checkout.pub)) == 3
    assert sleeps == [5.0, 5.0]
    assert _stamp(checkout) == REVISION + "\n"


def test_retry_pub_upgrade_returns_attempts(checkout: FlutterPaths, config: LauncherConfig) -> None:
    runner = FakeRunner(checkout, pub_codes=[1, 0])
    used = retry_pub_upgrade(checkout, config, {}, runner=runner, sleep=lambda _s: None, stream=io.StringIO())
    assert used == 2


def test_sdk_update_failure_is_fatal(checkout: FlutterPaths, config: LauncherConfig) -> None:
    runner = FakeRunner(checkout, sdk_code=3)
    with pytest.raises(SdkUpdateError) as excinfo:
        upgrade_if_needed(checkout, config, REVISION, runner=runner, environ={})
    assert excinfo.value.exit_code == 3
    assert runner.commands(checkout.pub) == []
    assert not checkout.stamp.exists()


def test_compile_failure_leaves_cache_stale(checkout: FlutterPaths, config: LauncherConfig) -> None:
    make_fresh(checkout, revision="0" * 40)
    runner = FakeRunner(checkout, compile_code=254)
    with pytest.raises(CompileError) as excinfo:
        upgrade_if_needed(checkout, config, REVISION, runner=runner, environ={})
    assert excinfo.value.exit_code == 254
    assert _stamp(checkout) == "0" * 40 + "\n"
    assert is_stale(read_cache_state(checkout, REVISION))


def test_pub_environment_is_appended(checkout: FlutterPaths) -> None:
    base = {"PATH": "/usr/bin"}
    env = build_pub_environment(checkout, LauncherConfig(), base)
    assert env["PUB_ENVIRONMENT"] == ":flutter_install"

    env = build_pub_environment(checkout, LauncherConfig(pub_environment="vscode"), base)
    assert env["PUB_ENVIRONMENT"] == "vscode:flutter_install"

    env = build_pub_environment(checkout, LauncherConfig(ci=True, pub_environment="vscode"), base)
    assert env["PUB_ENVIRONMENT"] == "vscode:flutter_bot:flutter_install"
    assert env["FLUTTER_ROOT"] == str(checkout.root)
    assert base == {"PATH": "/usr/bin"}


def test_pub_cache_defaults_to_checkout_cache(checkout: FlutterPaths) -> None:
    assert "PUB_CACHE" not in build_pub_environment(checkout, LauncherConfig(), {})
    checkout.pub_cache.mkdir()
    assert build_pub_environment(checkout, LauncherConfig(), {})["PUB_CACHE"] == str(checkout.pub_cache)
    explicit = build_pub_environment(checkout, LauncherConfig(pub_cache="/srv/pub"), {})
    assert explicit["PUB_CACHE"] == "/srv/pub"


def test_upgrade_does_not_touch_process_environment(
    checkout: FlutterPaths, fake_runner: FakeRunner, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("PUB_ENVIRONMENT", "outer")
    upgrade_if_needed(checkout, LauncherConfig(ci=True, pub_environment="outer"), REVISION, runner=fake_runner)
    assert os.environ["PUB_ENVIRONMENT"] == "outer"
    (_cmd, _cwd, env), = [c for c in fake_runner.calls if c[0][0] == str(checkout.pub)]
    assert env["PUB_ENVIRONMENT"] == "outer:flutter_bot:flutter_install"


def test_second_bootstrap_is_a_fast_path(checkout: FlutterPaths, config: LauncherConfig, fake_runner: FakeRunner) -> None:
    cfg = dataclasses.replace(config, lock_strategy="mkdir")
    first = ensure_tool(checkout, cfg, runner=fake_runner, revision_of=lambda _r: REVISION, environ={})
    second = ensure_tool(checkout, cfg, runner=fake_runner, revision_of=lambda _r: REVISION, environ={})
    assert (first, second) == (True, False)
    assert len(fake_runner.commands(checkout.dart)) == 1
    assert not checkout.lock_dir.exists()


def test_manifest_edit_triggers_rebuild(checkout: FlutterPaths, config: LauncherConfig, fake_runner: FakeRunner) -> None:
    make_fresh(checkout)
    lock_mtime = checkout.manifest_lock.stat().st_mtime
    os.utime(checkout.manifest, (lock_mtime + 60, lock_mtime + 60))

    rebuilt = ensure_tool(
        checkout,
        dataclasses.replace(config, lock_strategy="mkdir"),
        runner=fake_runner,
        revision_of=lambda _r: REVISION,
        environ={},
    )

    assert rebuilt is True
    assert len(fake_runner.commands(checkout.dart)) == 1
    assert _stamp(checkout) == REVISION + "\n"


def test_revision_is_read_under_the_lock(checkout: FlutterPaths, config: LauncherConfig, fake_runner: FakeRunner) -> None:
    seen: List[bool] = []

    def revision_of(_root: Path) -> str:
        seen.append(checkout.lock_dir.is_dir())
        return REVISION

    make_fresh(checkout)
    ensure_tool(checkout, dataclasses.replace(config, lock_strategy="mkdir"), runner=fake_runner, revision_of=revision_of)
    assert seen == [True]


# ---------------------------------------------------------------------------
# cross-process mutual exclusion
# ---------------------------------------------------------------------------


class SlowBuildRunner(FakeRunner):
    """Compile takes a while and records start/end in a shared journal."""

    def __init__(self, paths: FlutterPaths, journal: Path) -> None:
        super().__init__(paths, on_compile=self._slow_compile)
        self.journal = journal

    def _note(self, event: str) -> None:
        with self.journal.open("a", encoding="utf-8") as fh:
            fh.write(f"{event} {os.getpid()}\n")

    def _slow_compile(self) -> None:
        self._note("start")
        time.sleep(0.4)
        self._note("end")


def _bootstrap_worker(root: str, journal: str, strategy: str) -> None:
    paths = FlutterPaths.for_root(Path(root), windows=False)
    config = LauncherConfig(lock_strategy=strategy, lock_poll_interval=0.01, pub_upgrade_delay=0.0)
    ensure_tool(
        paths,
        config,
        runner=SlowBuildRunner(paths, Path(journal)),
        revision_of=lambda _r: REVISION,
        environ={},
    )


_STRATEGIES = ["mkdir"] + (["flock"] if flock_available() else [])


@pytest.mark.skipif(sys.platform.startswith("win"), reason="needs fork start method")
@pytest.mark.parametrize("strategy", _STRATEGIES)
def test_concurrent_bootstraps_build_once(tmp_path: Path, strategy: str) -> None:
    paths = make_checkout(tmp_path / "flutter")
    journal = tmp_path / "journal.txt"
    ctx = mp.get_context("fork")
    workers = [ctx.Process(target=_bootstrap_worker, args=(str(paths.root), str(journal), strategy)) for _ in range(3)]
    for proc in workers:
        proc.start()
    for proc in workers:
        proc.join(timeout=30)

    assert [proc.exitcode for proc in workers] == [0, 0, 0]
    events = [line.split()[0] for line in journal.read_text(encoding="utf-8").splitlines()]
    # Exactly one build; the others waited and then found the cache fresh.
    assert events == ["start", "end"]
    assert _stamp(paths) == REVISION + "\n"
    assert not paths.lock_dir.exists()


def _fake_env(**values: str) -> Mapping[str, str]:
    return dict(values)


def test_ensure_tool_passes_environment_to_children(checkout: FlutterPaths, config: LauncherConfig, fake_runner: FakeRunner) -> None:
    ensure_tool(
        checkout,
        dataclasses.replace(config, lock_strategy="mkdir"),
        runner=fake_runner,
        revision_of=lambda _r: REVISION,
        environ=_fake_env(HOME="/home/dev"),
    )
    for _cmd, _cwd, env in fake_runner.calls:
        assert env["HOME"] == "/home/dev"
        assert env["FLUTTER_ROOT"] == str(checkout.root)
