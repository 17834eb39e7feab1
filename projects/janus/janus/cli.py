# projects/janus/janus/cli.py
"""
``janus`` maintenance CLI.

The ``flutter`` / ``dart`` launchers never parse their arguments (everything
is forwarded verbatim), so inspection and manual maintenance of the tool cache
live here instead:

    janus status            # cache entry, lock state, revision
    janus ensure            # take the lock and rebuild if stale
    janus run flutter -- doctor -v
    janus paths
"""

from __future__ import annotations

import dataclasses
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer

from janus import __version__
from janus.config import LauncherConfig
from janus.console import print_error
from janus.errors import JanusError, RootNotFoundError
from janus.launcher import execute, preflight, relay_status
from janus.logging_config import get_log_path, setup_logging
from janus.paths import FlutterPaths
from janus.runtime.lock import probe_lock_strategy
from janus.staleness import git_revision, read_cache_state, stale_reasons
from janus.upgrade import ensure_tool, lock_path_for

LOGGER = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform.startswith("win")
_HELP_NAMES = ["-h", "--help"] + (["/?"] if _IS_WINDOWS else [])

app = typer.Typer(
    add_completion=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": _HELP_NAMES},
    help="Inspect and maintain the flutter tool cache of a Flutter checkout.",
)

_ROOT_OPTION = typer.Option(
    None,
    "--root",
    help="Flutter checkout to operate on (defaults to FLUTTER_ROOT).",
    file_okay=False,
    dir_okay=True,
)


def _load_config(root: Optional[Path]) -> LauncherConfig:
    config = LauncherConfig.from_env()
    if root is not None:
        config = dataclasses.replace(config, flutter_root=str(root))
    return config


def _paths_for(config: LauncherConfig) -> FlutterPaths:
    if not config.flutter_root:
        raise RootNotFoundError("janus")
    root = Path(config.flutter_root).expanduser()
    if not (root / "packages" / "flutter_tools").is_dir():
        raise RootNotFoundError("janus")
    return FlutterPaths.for_root(root.resolve())


def _fail(exc: JanusError) -> "typer.Exit":
    LOGGER.error("%s: %s", type(exc).__name__, exc.message)
    print_error(exc.message, exc.hint, prefix=exc.prefix)
    return typer.Exit(code=exc.exit_code)


@app.callback()
def _main() -> None:
    setup_logging()


@app.command()
def version() -> None:
    """Print the launcher version."""
    typer.echo(__version__)


@app.command()
def paths(root: Optional[Path] = _ROOT_OPTION) -> None:
    """Print the cache and tool locations of the checkout."""
    try:
        fp = _paths_for(_load_config(root))
    except JanusError as exc:
        raise _fail(exc)
    rows = [
        ("root", fp.root),
        ("snapshot", fp.snapshot),
        ("stamp", fp.stamp),
        ("manifest", fp.manifest),
        ("manifest lock", fp.manifest_lock),
        ("dart", fp.dart),
        ("pub", fp.pub),
        ("sdk updater", fp.sdk_updater),
        ("lock dir", fp.lock_dir),
        ("lock file", fp.lock_file),
    ]
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        typer.echo(f"{label.ljust(width)}  {value}")


@app.command()
def status(root: Optional[Path] = _ROOT_OPTION) -> None:
    """Report whether the cached tool snapshot is fresh, and why not."""
    try:
        config = _load_config(root)
        fp = _paths_for(config)
        strategy = probe_lock_strategy(config.lock_strategy)
        revision = git_revision(fp.root)
    except JanusError as exc:
        raise _fail(exc)

    state = read_cache_state(fp, revision)
    reasons = stale_reasons(state)
    typer.echo(f"Flutter root:   {fp.root}")
    typer.echo(f"Revision:       {revision}")
    typer.echo(f"Stamp:          {state.stamp_revision or '(none)'}")
    typer.echo(f"Lock strategy:  {strategy.name} ({lock_path_for(fp, strategy)})")
    if fp.lock_dir.is_dir():
        typer.echo(
            f"Lock dir:       {fp.lock_dir} exists; if no flutter command is running, "
            "a previous one was killed and the directory must be removed by hand."
        )
    typer.echo(f"Cache:          {'stale (' + ', '.join(reasons) + ')' if reasons else 'fresh'}")
    log_path = get_log_path()
    if log_path is not None:
        typer.echo(f"Log file:       {log_path}")


@app.command()
def ensure(root: Optional[Path] = _ROOT_OPTION) -> None:
    """Take the upgrade lock and rebuild the tool snapshot if it is stale."""
    try:
        config = _load_config(root)
        fp = _paths_for(config)
        preflight(fp, config)
        rebuilt = ensure_tool(fp, config)
    except JanusError as exc:
        raise _fail(exc)
    typer.echo("Rebuilt flutter tool snapshot." if rebuilt else "Flutter tool snapshot is up to date.")


@app.command(
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Invocation name: flutter or dart."),
    root: Optional[Path] = _ROOT_OPTION,
) -> None:
    """Run NAME exactly as the NAME launcher would, forwarding the remaining arguments."""
    try:
        config = _load_config(root)
    except JanusError as exc:
        raise _fail(exc)
    args: List[str] = list(ctx.args)
    if args and args[0] == "--":
        args = args[1:]
    status_code = execute(name, args, config=config)
    raise typer.Exit(code=relay_status(status_code, relay_signals=config.relay_signals))


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
