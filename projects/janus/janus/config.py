"""
Launcher configuration, read from the environment exactly once at startup.

Nothing below the entry point consults ``os.environ`` directly; the resulting
:class:`LauncherConfig` is passed explicitly to the lock, upgrade and dispatch
layers so tests can build one by hand.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigError

__all__ = [
    "CI_INDICATORS",
    "PUB_UPGRADE_TRIES",
    "PUB_UPGRADE_DELAY",
    "DEFAULT_POLL_INTERVAL",
    "LauncherConfig",
    "detect_ci",
]

# (variable, value that marks a CI-like run)
CI_INDICATORS: tuple[tuple[str, str], ...] = (
    ("CI", "true"),
    ("BOT", "true"),
    ("CONTINUOUS_INTEGRATION", "true"),
    ("CHROME_HEADLESS", "1"),
)

PUB_UPGRADE_TRIES = 10
PUB_UPGRADE_DELAY = 5.0
DEFAULT_POLL_INTERVAL = 0.1

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}
_LOCK_STRATEGIES = {"flock", "mkdir"}


def detect_ci(environ: Mapping[str, str]) -> bool:
    """Return True when any recognised CI indicator carries its marker value."""
    return any(environ.get(name) == marker for name, marker in CI_INDICATORS)


@dataclass(frozen=True)
class LauncherConfig:
    ci: bool = False
    pub_environment: str = ""
    pub_cache: Optional[str] = None
    tool_args: tuple[str, ...] = ()
    flutter_root: Optional[str] = None
    lock_strategy: Optional[str] = None
    lock_poll_interval: float = DEFAULT_POLL_INTERVAL
    relay_signals: bool = os.name == "posix"
    is_superuser: bool = False
    in_docker: bool = False
    pub_upgrade_tries: int = PUB_UPGRADE_TRIES
    pub_upgrade_delay: float = PUB_UPGRADE_DELAY

    @property
    def verbosity(self) -> str:
        """``pub upgrade`` verbosity flag; CI runs get the full output."""
        return "--verbosity=normal" if self.ci else "--verbosity=error"

    @property
    def should_warn_superuser(self) -> bool:
        return self.is_superuser and not self.in_docker

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        euid: Optional[int] = None,
        dockerenv: Path = Path("/.dockerenv"),
    ) -> "LauncherConfig":
        env = os.environ if environ is None else environ

        strategy = env.get("JANUS_LOCK_STRATEGY", "").strip().lower() or None
        if strategy is not None and strategy not in _LOCK_STRATEGIES:
            raise ConfigError(
                f"JANUS_LOCK_STRATEGY must be one of {sorted(_LOCK_STRATEGIES)}, got {strategy!r}."
            )

        raw_interval = env.get("JANUS_LOCK_POLL_INTERVAL", "").strip()
        interval = DEFAULT_POLL_INTERVAL
        if raw_interval:
            try:
                interval = float(raw_interval)
            except ValueError:
                raise ConfigError(f"JANUS_LOCK_POLL_INTERVAL must be a number of seconds, got {raw_interval!r}.")
            if interval <= 0:
                raise ConfigError("JANUS_LOCK_POLL_INTERVAL must be positive.")

        relay_raw = env.get("JANUS_RELAY_SIGNALS", "").strip().lower()
        relay = os.name == "posix"
        if relay_raw in _TRUTHY:
            relay = True
        elif relay_raw in _FALSY:
            relay = False

        if euid is None:
            geteuid = getattr(os, "geteuid", None)
            euid = geteuid() if callable(geteuid) else -1

        return cls(
            ci=detect_ci(env),
            pub_environment=env.get("PUB_ENVIRONMENT", ""),
            pub_cache=env.get("PUB_CACHE") or None,
            # FLUTTER_TOOL_ARGS is a space separated list, never quoted.
            tool_args=tuple(env.get("FLUTTER_TOOL_ARGS", "").split()),
            flutter_root=env.get("FLUTTER_ROOT") or None,
            lock_strategy=strategy,
            lock_poll_interval=interval,
            relay_signals=relay,
            is_superuser=euid == 0,
            in_docker=dockerenv.exists(),
        )
