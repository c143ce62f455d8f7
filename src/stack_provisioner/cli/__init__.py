"""Command line interface: ``stack-provisioner plan|apply|destroy|...``."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass

import typer

from stack_provisioner import __version__

app = typer.Typer(
    name="stack-provisioner",
    help="Plan and apply function + REST API stacks wave by wave.",
    no_args_is_help=True,
    add_completion=False,
)

# Worker threads are named apply_0, apply_1, ...; keep them visible in logs.
_LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


@dataclass
class CliOptions:
    """Options given before the command name."""

    parallelism: int | None = None


def _log_level(verbose: int, env_value: str) -> int | None:
    """Level for the ``stack_provisioner`` logger, or ``None`` to stay silent.

    ``STACK_LOG`` wins over ``-v`` flags. An unknown name falls back to INFO.
    """
    if env_value:
        level = logging.getLevelName(env_value.upper())
        if isinstance(level, int):
            return level
        typer.echo(f"WARNING: unknown STACK_LOG level '{env_value}'; using INFO", err=True)
        return logging.INFO
    if verbose <= 0:
        return None
    return logging.DEBUG if verbose > 1 else logging.INFO


def _configure_logging(verbose: int) -> None:
    level = _log_level(verbose, os.environ.get("STACK_LOG", ""))
    if level is None:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%H:%M:%S"))
    root = logging.getLogger("stack_provisioner")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"stack-provisioner {__version__}")
        raise typer.Exit


@app.callback()
def main(
    ctx: typer.Context,
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: int = typer.Option(
        0, "--verbose", "-v", count=True, help="Log to stderr (-v info, -vv debug)."
    ),
    parallelism: int | None = typer.Option(
        None,
        "--parallelism",
        "-p",
        min=1,
        help="Operations run at once within a wave (overrides the config).",
    ),
) -> None:
    _ = version
    _configure_logging(verbose)
    ctx.obj = CliOptions(parallelism=parallelism)


from stack_provisioner.cli import commands as _commands  # noqa: E402, F401
