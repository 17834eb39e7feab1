# \janus\projects\janus\janus\__main__.py
"""
`python -m janus …` forwards to the Typer CLI defined in `janus.cli`.
"""

from __future__ import annotations

from janus.cli import app

if __name__ == "__main__":  # pragma: no cover
    app(prog_name="janus")
