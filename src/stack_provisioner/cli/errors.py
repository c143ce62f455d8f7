"""One-line (plus detail) stderr reports for every error the commands can hit.

Each known error type registers a ``describe`` implementation returning the
headline and its detail lines. ``handle_error`` prints them and returns the
exit code; tracebacks are never shown.
"""

from __future__ import annotations

from functools import singledispatch

import typer

from stack_provisioner.cli.formatting import changes_summary, format_partial
from stack_provisioner.config.loader import ConfigError
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    DependencyCycleError,
    OperationFailure,
    StalePlanError,
    StateCorruptionError,
    StateLockError,
    StateStackMismatchError,
    UnresolvedReferenceError,
    ValidationError,
)

EXIT_ERROR = 1


@singledispatch
def describe(exc: Exception) -> tuple[str, list[str]]:
    return f"Error: {exc}", []


@describe.register
def _(exc: ConfigError) -> tuple[str, list[str]]:
    return f"Configuration error: {exc}", []


@describe.register
def _(exc: ValidationError) -> tuple[str, list[str]]:
    return "Validation failed:", [f"- {e}" for e in exc.errors]


@describe.register
def _(exc: UnresolvedReferenceError) -> tuple[str, list[str]]:
    return "Unresolved references:", [f"- {p}" for p in exc.problems]


@describe.register
def _(exc: DependencyCycleError) -> tuple[str, list[str]]:
    return f"Dependency cycle: {' -> '.join(exc.cycle)}", []


@describe.register
def _(exc: StateCorruptionError) -> tuple[str, list[str]]:
    return "State is corrupt and must be reconciled by hand:", [f"- {p}" for p in exc.problems]


@describe.register
def _(exc: StalePlanError) -> tuple[str, list[str]]:
    return f"Plan is stale: {exc}", []


@describe.register
def _(exc: StateLockError) -> tuple[str, list[str]]:
    return f"State is locked: {exc}", []


@describe.register
def _(exc: StateStackMismatchError) -> tuple[str, list[str]]:
    return f"State mismatch: {exc}", []


@describe.register
def _(exc: OperationFailure) -> tuple[str, list[str]]:
    details = [f"Also failed: {op} {name}: {msg}" for name, op, msg in exc.failures[1:]]
    partial = format_partial(changes_summary(exc.result.applied))
    if partial:
        details.append(f"Partial result: {partial}.")
    return f"Apply failed: {exc}", details


@describe.register
def _(exc: ApplyCanceled) -> tuple[str, list[str]]:
    _ = exc
    return "Apply canceled.", []


def handle_error(exc: Exception, *, color: bool = True) -> int:
    """Report *exc* on stderr and return the exit code."""
    headline, details = describe(exc)
    fg = typer.colors.RED if color else None
    for line in (headline, *(f"  {d}" for d in details)):
        typer.echo(typer.style(line, fg=fg), err=True)
    return EXIT_ERROR
