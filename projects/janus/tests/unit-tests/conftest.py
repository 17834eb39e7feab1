# projects/janus/tests/unit-tests/conftest.py
from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Callable, List, Mapping, Optional, Sequence

import pytest

from janus.config import LauncherConfig
from janus.paths import FlutterPaths

if TYPE_CHECKING:
    from _pytest.monkeypatch import MonkeyPatch

REVISION = "4d7946a68d26794349189cf21b3f68cc6fe61dcb"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: "MonkeyPatch", tmp_path_factory: pytest.TempPathFactory) -> None:
    """Keep log files and CI markers of the host out of the tests."""
    logs = tmp_path_factory.mktemp("logs")
    monkeypatch.setenv("JANUS_LOG_FILE", str(logs / "janus.log"))
    for name in ("CI", "BOT", "CONTINUOUS_INTEGRATION", "CHROME_HEADLESS", "PUB_CACHE", "PUB_ENVIRONMENT",
                 "FLUTTER_TOOL_ARGS", "FLUTTER_ROOT", "JANUS_LOCK_STRATEGY", "JANUS_LOCK_POLL_INTERVAL"):
        monkeypatch.delenv(name, raising=False)


def make_checkout(root: Path) -> FlutterPaths:
    """Lay out the parts of a Flutter checkout the launcher looks at."""
    paths = FlutterPaths.for_root(root, windows=False)
    (root / ".git").mkdir(parents=True)
    paths.entry_point.parent.mkdir(parents=True)
    paths.entry_point.write_text("void main() {}\n", encoding="utf-8")
    paths.manifest.write_text("name: flutter_tools\n", encoding="utf-8")
    paths.manifest_lock.write_text("packages: {}\n", encoding="utf-8")
    # pubspec.lock strictly newer than pubspec.yaml
    base = paths.manifest.stat().st_mtime
    os.utime(paths.manifest, (base - 10, base - 10))
    paths.sdk_updater.parent.mkdir(parents=True)
    paths.sdk_updater.write_text("#!/bin/sh\n", encoding="utf-8")
    paths.cache_dir.mkdir(parents=True)
    return paths


def make_fresh(paths: FlutterPaths, revision: str = REVISION) -> None:
    paths.snapshot.write_bytes(b"snapshot")
    paths.stamp.write_text(revision + "\n", encoding="utf-8")


@pytest.fixture
def checkout(tmp_path: Path) -> FlutterPaths:
    return make_checkout(tmp_path / "flutter")


@pytest.fixture
def config() -> LauncherConfig:
    return LauncherConfig(lock_poll_interval=0.01, pub_upgrade_delay=5.0)


class FakeRunner:
    """
    Stand-in for the SDK updater, ``pub`` and the Dart compiler.

    ``pub_codes`` is consumed one status per ``pub upgrade`` call (0 once
    exhausted). A successful compile writes the snapshot like the real one.
    """

    def __init__(
        self,
        paths: FlutterPaths,
        *,
        pub_codes: Sequence[int] = (),
        sdk_code: int = 0,
        compile_code: int = 0,
        on_compile: Optional[Callable[[], None]] = None,
    ) -> None:
        self.paths = paths
        self.pub_codes: List[int] = list(pub_codes)
        self.sdk_code = sdk_code
        self.compile_code = compile_code
        self.on_compile = on_compile
        self.calls: List[tuple[list[str], Optional[str], dict[str, str]]] = []

    def __call__(self, cmd: Sequence[str], *, cwd: Optional[object] = None, env: Optional[Mapping[str, str]] = None) -> int:
        self.calls.append((list(cmd), None if cwd is None else str(cwd), dict(env or {})))
        if cmd[0] == str(self.paths.sdk_updater):
            return self.sdk_code
        if cmd[0] == str(self.paths.pub):
            return self.pub_codes.pop(0) if self.pub_codes else 0
        if cmd[0] == str(self.paths.dart):
            if self.on_compile is not None:
                self.on_compile()
            if self.compile_code == 0:
                self.paths.snapshot.write_bytes(b"compiled")
            return self.compile_code
        raise AssertionError(f"unexpected command {cmd!r}")

    def commands(self, executable: Path) -> List[list[str]]:
        return [cmd for cmd, _cwd, _env in self.calls if cmd[0] == str(executable)]


@pytest.fixture
def fake_runner(checkout: FlutterPaths) -> FakeRunner:
    return FakeRunner(checkout)
