"""The ``plan``, ``apply``, ``destroy``, ``refresh``, ``drift``, ``validate`` and ``graph`` commands."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Literal

import typer

from stack_provisioner.cli import CliOptions, app
from stack_provisioner.cli.errors import handle_error
from stack_provisioner.cli.formatting import (
    changes_summary,
    format_apply_summary,
    format_changes,
    format_plan,
    format_plan_summary,
    format_waves,
    has_actionable_changes,
    styler,
    verb,
)
from stack_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Iterator
    from types import ModuleType

    from rich.progress import Progress

    from stack_provisioner.config.schema import Config
    from stack_provisioner.engine.types import ApplyResult, Plan, ResourceChange

EXIT_CHANGES = 2

ConfigOption = Annotated[
    Path, typer.Option("--config", "-c", help="Stack configuration file.")
]
NoColorOption = Annotated[bool, typer.Option("--no-color", help="Plain output.")]
AutoApproveOption = Annotated[
    bool, typer.Option("--auto-approve", help="Do not ask for confirmation.")
]
NoRefreshOption = Annotated[
    bool, typer.Option("--no-refresh", help="Plan against the state file as recorded.")
]


def _api() -> ModuleType:
    # Imported on use: it pulls in boto3.
    from stack_provisioner import config

    return config


def _color(no_color: bool) -> bool:
    return not no_color and not os.environ.get("NO_COLOR")


@contextmanager
def _reported(color: bool) -> Iterator[None]:
    """Turn any error raised inside the block into a report and exit code."""
    try:
        yield
    except (typer.Exit, typer.Abort):
        raise
    except Exception as exc:
        raise typer.Exit(handle_error(exc, color=color)) from exc


def _load(ctx: typer.Context, path: Path) -> Config:
    cfg = _api().load(path)
    options = ctx.obj
    if isinstance(options, CliOptions) and options.parallelism:
        cfg.provider = cfg.provider.model_copy(update={"parallelism": options.parallelism})
    return cfg


def _confirm(question: str, canceled: str) -> None:
    if not typer.confirm(question, default=False):
        typer.echo(canceled, err=True)
        raise typer.Exit(1)


def _show_plan(plan_obj: Plan, cfg: Config, *, color: bool) -> None:
    typer.echo(format_plan(plan_obj, color=color))
    if not has_actionable_changes(plan_obj):
        return
    typer.echo()
    typer.echo(format_waves(_api().apply_order(plan_obj, cfg), title="Apply order"))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(plan_obj.changes), color=color))


class _ApplyView:
    """Feeds executor events into a rich progress bar.

    Each wave gets a heading line; every finished change prints a line and
    advances the bar.
    """

    def __init__(self, progress: Progress, total: int) -> None:
        self._progress = progress
        self._task = progress.add_task("Applying", total=total)

    def wave(self, number: int, total: int, labels: list[str]) -> None:
        self._progress.console.print(f"Wave {number}/{total}: {', '.join(labels)}", markup=False)

    def change(self, change: ResourceChange, event: Literal["start", "done"]) -> None:
        v = verb(change)
        if event == "start":
            self._progress.update(self._task, description=f"{change.label}: {v.doing}")
            return
        self._progress.console.print(f"  {v.symbol} {change.label}: {v.done}", markup=False)
        self._progress.advance(self._task)


def _apply(plan_obj: Plan, cfg: Config, *, color: bool) -> ApplyResult:
    from rich.console import Console
    from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn

    total = sum(1 for c in plan_obj.changes if c.action != Action.NOOP)
    console = Console(no_color=not color, highlight=False)
    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        console=console,
        transient=True,
    ) as progress:
        view = _ApplyView(progress, total)
        return _api().apply(plan_obj, cfg, progress=view.change, on_wave=view.wave)


def _review_and_apply(
    plan_obj: Plan,
    cfg: Config,
    *,
    color: bool,
    auto_approve: bool,
    question: str,
    nothing_to_do: str,
) -> None:
    if not has_actionable_changes(plan_obj):
        typer.echo(nothing_to_do)
        return
    with _reported(color):
        _show_plan(plan_obj, cfg, color=color)
    typer.echo()
    if not auto_approve:
        _confirm(question, "Apply canceled.")
    with _reported(color):
        result = _apply(plan_obj, cfg, color=color)
    typer.echo()
    typer.echo(format_apply_summary(changes_summary(result.applied), color=color))


@app.command()
def plan(
    ctx: typer.Context,
    config: ConfigOption = Path("stack.yaml"),
    out: Annotated[
        Path | None, typer.Option("--out", "-o", help="Write the plan to this file.")
    ] = None,
    destroy: Annotated[
        bool, typer.Option("--destroy", help="Plan the removal of every resource.")
    ] = False,
    no_color: NoColorOption = False,
    no_refresh: NoRefreshOption = False,
) -> None:
    """Show what apply would change. Exits 2 when there are changes."""
    color = _color(no_color)
    with _reported(color):
        cfg = _load(ctx, config)
        plan_obj = _api().plan(cfg, destroy=destroy, refresh=not no_refresh)
        _show_plan(plan_obj, cfg, color=color)
    if out is not None:
        plan_obj.save(out)
        typer.echo(f"\nSaved plan to {out}. Apply it with: stack-provisioner apply {out}")
    if has_actionable_changes(plan_obj):
        raise typer.Exit(EXIT_CHANGES)


@app.command(name="apply")
def apply_cmd(
    ctx: typer.Context,
    plan_file: Annotated[
        Path | None, typer.Argument(help="Plan written by 'plan --out'.")
    ] = None,
    config: ConfigOption = Path("stack.yaml"),
    auto_approve: AutoApproveOption = False,
    no_color: NoColorOption = False,
    no_refresh: NoRefreshOption = False,
) -> None:
    """Apply a saved plan, or plan and apply the configuration."""
    color = _color(no_color)
    with _reported(color):
        cfg = _load(ctx, config)
        if plan_file is not None:
            from stack_provisioner.engine.types import Plan

            plan_obj = Plan.load(plan_file)
        else:
            plan_obj = _api().plan(cfg, refresh=not no_refresh)
    _review_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        question="Apply these changes?",
        nothing_to_do="No changes. Resources are up-to-date.",
    )


@app.command()
def destroy(
    ctx: typer.Context,
    config: ConfigOption = Path("stack.yaml"),
    auto_approve: AutoApproveOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Delete every resource recorded in state, dependents first."""
    color = _color(no_color)
    with _reported(color):
        cfg = _load(ctx, config)
        plan_obj = _api().plan(cfg, destroy=True)
    _review_and_apply(
        plan_obj,
        cfg,
        color=color,
        auto_approve=auto_approve,
        question=f"Destroy every resource of stack '{cfg.stack}'?",
        nothing_to_do="No resources to destroy.",
    )


@app.command(name="refresh")
def refresh_cmd(
    ctx: typer.Context,
    config: ConfigOption = Path("stack.yaml"),
    auto_approve: AutoApproveOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Record the live attributes of every resource in state."""
    color = _color(no_color)
    with _reported(color):
        cfg = _load(ctx, config)
        changes, state = _api().refresh(cfg)
    if not changes:
        typer.echo("State already matches the live resources.")
        return
    typer.echo(format_changes(changes, color=color))
    typer.echo()
    typer.echo(format_plan_summary(changes_summary(changes), color=color, header="Refresh"))
    typer.echo()
    if not auto_approve:
        _confirm("Write these changes to the state file?", "Refresh canceled.")
    with _reported(color):
        _api().save_state(cfg, state)
    count = len(state.resources)
    typer.echo(f"State refreshed (serial {state.serial}, {count} resources).")


@app.command()
def drift(
    ctx: typer.Context,
    config: ConfigOption = Path("stack.yaml"),
    no_color: NoColorOption = False,
) -> None:
    """Report live resources that no longer match state. Exits 2 on drift."""
    color = _color(no_color)
    with _reported(color):
        changes = _api().drift(_load(ctx, config))
    if not changes:
        typer.echo("No drift.")
        return
    typer.echo(format_changes(changes, color=color))
    raise typer.Exit(EXIT_CHANGES)


@app.command()
def validate(
    ctx: typer.Context,
    config: ConfigOption = Path("stack.yaml"),
    no_color: NoColorOption = False,
) -> None:
    """Check references, cycles and inputs without calling the provider."""
    from stack_provisioner.config.registry import default_registry
    from stack_provisioner.engine.graph import DependencyGraph

    color = _color(no_color)
    with _reported(color):
        cfg = _load(ctx, config)
        _api().plan(cfg, refresh=False)
        waves = DependencyGraph.from_nodes(cfg.nodes, default_registry()).waves()
    count = len(cfg.nodes)
    message = f"Configuration is valid: {count} resources in {len(waves)} waves."
    typer.echo(styler(color)(message, fg="green"))


@app.command()
def graph(
    ctx: typer.Context,
    config: ConfigOption = Path("stack.yaml"),
    planned: Annotated[
        bool,
        typer.Option("--plan", help="Show the waves of the pending changes instead."),
    ] = False,
    no_color: NoColorOption = False,
) -> None:
    """Print the declared resources (or pending changes) grouped into waves."""
    from stack_provisioner.config.registry import default_registry
    from stack_provisioner.engine.graph import DependencyGraph

    color = _color(no_color)
    with _reported(color):
        cfg = _load(ctx, config)
        if planned:
            plan_obj = _api().plan(cfg, refresh=False)
            typer.echo(format_waves(_api().apply_order(plan_obj, cfg), title="Apply order"))
            return
        waves = DependencyGraph.from_nodes(cfg.nodes, default_registry()).waves()
    typer.echo(format_waves(waves))
