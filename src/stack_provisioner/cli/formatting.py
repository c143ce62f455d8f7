"""Rendering of plans, drift and apply results for the terminal."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any, NamedTuple

import typer

from stack_provisioner.engine.types import Action
from stack_provisioner.resources.base import ReplacementStrategy
from stack_provisioner.resources.refs import UNKNOWN

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from stack_provisioner.engine.types import Plan, ResourceChange


class Verb(NamedTuple):
    color: str
    symbol: str
    heading: str
    doing: str
    done: str


VERBS: dict[Action | ReplacementStrategy, Verb] = {
    Action.CREATE: Verb("green", "+", "will be created", "creating", "created"),
    Action.UPDATE: Verb("yellow", "~", "will be updated in-place", "updating", "updated"),
    Action.DELETE: Verb("red", "-", "will be destroyed", "destroying", "destroyed"),
    Action.NOOP: Verb("bright_black", " ", "is up-to-date", "", "unchanged"),
    ReplacementStrategy.CREATE_FIRST: Verb(
        "magenta", "+/-", "must be replaced", "replacing", "replaced"
    ),
    ReplacementStrategy.DELETE_FIRST: Verb(
        "magenta", "-/+", "must be replaced", "replacing", "replaced"
    ),
}

_ORDER_NOTES = {
    ReplacementStrategy.CREATE_FIRST: "create before destroy: the successor goes live first",
    ReplacementStrategy.DELETE_FIRST: "destroy before create",
}


def verb(change: ResourceChange) -> Verb:
    if change.action == Action.REPLACE:
        return VERBS[change.replacement or ReplacementStrategy.DELETE_FIRST]
    return VERBS[change.action]


def styler(color: bool) -> Callable[..., str]:
    """``typer.style`` when *color* is set, otherwise the text unchanged."""
    if color:
        return typer.style
    return lambda text, **_kw: text


def has_actionable_changes(plan: Plan) -> bool:
    return any(c.action != Action.NOOP for c in plan.changes)


def render_value(value: Any) -> str:
    if value == UNKNOWN:
        return UNKNOWN
    if isinstance(value, str):
        return f'"{value}"'
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def _attribute_lines(change: ResourceChange) -> dict[str, str]:
    if change.action == Action.CREATE:
        return {k: render_value(v) for k, v in (change.planned or {}).items()}
    if change.action in (Action.UPDATE, Action.REPLACE):
        return {
            k: f"{render_value(d['from'])} -> {render_value(d['to'])}"
            for k, d in (change.diff or {}).items()
        }
    return {}


def _notes(change: ResourceChange) -> list[str]:
    notes: list[str] = []
    if change.deposed:
        notes.append("predecessor left behind by a create-before-destroy replacement")
    if change.action == Action.REPLACE:
        notes.append(_ORDER_NOTES[change.replacement or ReplacementStrategy.DELETE_FIRST])
        forced = [
            "triggers changed" if r == "triggers" else f"{r} cannot change in place"
            for r in change.reasons
        ]
        notes.extend(forced)
        if "triggers" in change.reasons:
            digest = change.trigger_hash[:12] if change.trigger_hash else UNKNOWN
            notes.append(f"new trigger hash: {digest}")
    return notes


def format_change(change: ResourceChange, *, color: bool = True) -> str:
    """One change as a ``# label heading`` line followed by its attributes."""
    style = styler(color)
    v = verb(change)
    fg = {"fg": v.color}
    lines = [style(f"  # {change.label} {v.heading}", bold=True, **fg)]
    lines.extend(style(f"  #   {note}", **fg) for note in _notes(change))
    attrs = _attribute_lines(change)
    head = f"  {v.symbol} {change.kind}.{change.name}"
    if not attrs:
        lines.append(style(head, **fg))
        return "\n".join(lines)
    lines.append(style(head + " {", **fg))
    width = max(len(k) for k in attrs)
    lines.extend(style(f"      {k.ljust(width)} = {val}", **fg) for k, val in attrs.items())
    lines.append(style("    }", **fg))
    return "\n".join(lines)


def format_changes(changes: Iterable[ResourceChange], *, color: bool = True) -> str:
    blocks = [format_change(c, color=color) for c in changes if c.action != Action.NOOP]
    return "\n\n".join(blocks) if blocks else "No changes."


def format_plan(plan: Plan, *, color: bool = True) -> str:
    if not has_actionable_changes(plan):
        return "No changes. Resources are up-to-date."
    return format_changes(plan.changes, color=color)


def format_waves(waves: list[list[str]], *, title: str | None = None) -> str:
    """``Wave N: a, b`` lines, optionally under a title."""
    if not waves:
        return "Nothing to do."
    lines = [f"{title}:"] if title else []
    indent = "  " if title else ""
    lines.extend(
        f"{indent}Wave {i}: {', '.join(wave)}" for i, wave in enumerate(waves, start=1)
    )
    return "\n".join(lines)


def changes_summary(changes: Iterable[ResourceChange]) -> Counter[str]:
    """Counts of ``create``/``update``/``delete``/``replace``.

    A replacement also counts as one create and one delete.
    """
    counts: Counter[str] = Counter(create=0, update=0, delete=0, replace=0)
    for c in changes:
        if c.action == Action.REPLACE:
            counts.update(("create", "delete", "replace"))
        elif c.action != Action.NOOP:
            counts[c.action.value] += 1
    return counts


def _counts(counts: Counter[str], words: tuple[str, str, str], *, color: bool) -> str:
    style = styler(color)
    parts = []
    for key, word, fg in zip(
        ("create", "update", "delete"), words, ("green", "yellow", "red"), strict=True
    ):
        text = f"{counts[key]} {word}"
        parts.append(style(text, fg=fg) if counts[key] else text)
    text = ", ".join(parts)
    if counts["replace"]:
        n = counts["replace"]
        text += f" ({n} replacement{'s' if n != 1 else ''})"
    return text


def format_plan_summary(
    counts: Counter[str], *, color: bool = True, header: str = "Plan"
) -> str:
    """``Plan: 2 to add, 1 to change, 1 to destroy (1 replacement).``"""
    return f"{header}: {_counts(counts, ('to add', 'to change', 'to destroy'), color=color)}."


def format_apply_summary(counts: Counter[str], *, color: bool = True) -> str:
    done = styler(color)("Apply complete!", fg="green", bold=True)
    return f"{done} Resources: {_counts(counts, ('added', 'changed', 'destroyed'), color=color)}."


def format_partial(counts: Counter[str]) -> str | None:
    """``2 added, 1 destroyed`` for the non-zero counts, or ``None``."""
    parts = [
        f"{counts[key]} {word}"
        for key, word in (("create", "added"), ("update", "changed"), ("delete", "destroyed"))
        if counts[key]
    ]
    return ", ".join(parts) if parts else None
