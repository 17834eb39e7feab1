"""
Layout of a Flutter checkout as seen by the launcher.

All locations hang off the Flutter root; the cache entry (snapshot + stamp)
and the lock artefacts live together under ``bin/cache``.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import RootNotFoundError

__all__ = ["FlutterPaths", "resolve_flutter_root", "is_windows_host"]


def is_windows_host() -> bool:
    """Native Windows and git-bash (MINGW) both need the win32 executables."""
    return os.name == "nt" or sys.platform.startswith(("win", "msys", "cygwin"))


@dataclass(frozen=True)
class FlutterPaths:
    root: Path
    windows: bool = False

    @classmethod
    def for_root(cls, root: Path, *, windows: Optional[bool] = None) -> "FlutterPaths":
        return cls(root=Path(root), windows=is_windows_host() if windows is None else windows)

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def cache_dir(self) -> Path:
        return self.bin_dir / "cache"

    @property
    def snapshot(self) -> Path:
        return self.cache_dir / "flutter_tools.snapshot"

    @property
    def stamp(self) -> Path:
        return self.cache_dir / "flutter_tools.stamp"

    @property
    def lock_dir(self) -> Path:
        return self.cache_dir / ".upgrade_lock"

    @property
    def lock_file(self) -> Path:
        return self.cache_dir / ".upgrade_lockfile"

    @property
    def dartignore(self) -> Path:
        return self.cache_dir / ".dartignore"

    @property
    def version_file(self) -> Path:
        return self.root / "version"

    @property
    def git_dir(self) -> Path:
        return self.root / ".git"

    @property
    def pub_cache(self) -> Path:
        return self.root / ".pub-cache"

    @property
    def tools_dir(self) -> Path:
        return self.root / "packages" / "flutter_tools"

    @property
    def manifest(self) -> Path:
        return self.tools_dir / "pubspec.yaml"

    @property
    def manifest_lock(self) -> Path:
        return self.tools_dir / "pubspec.lock"

    @property
    def package_config(self) -> Path:
        return self.tools_dir / ".packages"

    @property
    def entry_point(self) -> Path:
        return self.tools_dir / "bin" / "flutter_tools.dart"

    @property
    def dart_sdk(self) -> Path:
        return self.cache_dir / "dart-sdk"

    @property
    def dart(self) -> Path:
        return self.dart_sdk / "bin" / ("dart.exe" if self.windows else "dart")

    @property
    def pub(self) -> Path:
        return self.dart_sdk / "bin" / ("pub.bat" if self.windows else "pub")

    @property
    def sdk_updater(self) -> Path:
        internal = self.bin_dir / "internal"
        return internal / ("update_dart_sdk.ps1" if self.windows else "update_dart_sdk.sh")

    def sdk_updater_command(self) -> list[str]:
        if self.windows:
            return [
                "powershell.exe",
                "-ExecutionPolicy",
                "Bypass",
                "-NoProfile",
                "-File",
                str(self.sdk_updater),
            ]
        return [str(self.sdk_updater)]


def _looks_like_flutter_root(candidate: Path) -> bool:
    return (candidate / "packages" / "flutter_tools").is_dir()


def resolve_flutter_root(prog_name: str, env_root: Optional[str] = None) -> Path:
    """
    Locate the checkout for the program at *prog_name*.

    Launchers installed into ``<flutter>/bin`` resolve through their own
    location (symlinks followed); anything else falls back to ``FLUTTER_ROOT``.
    """
    prog = Path(prog_name)
    if prog.is_absolute() or len(prog.parts) > 1:
        try:
            bin_dir = prog.resolve().parent
        except OSError:
            bin_dir = prog.absolute().parent
        candidate = bin_dir.parent
        if _looks_like_flutter_root(candidate):
            return candidate

    if env_root:
        candidate = Path(env_root).expanduser()
        if _looks_like_flutter_root(candidate):
            return candidate.resolve()

    raise RootNotFoundError(prog.name or prog_name)
