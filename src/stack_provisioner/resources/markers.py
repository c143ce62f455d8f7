"""Declarative field markers for resource kind schemas.

Two markers attach to Pydantic fields via ``Annotated``:

- ``ForceNew`` — the field cannot change in place; a change replaces the resource
- ``Compare``  — field-level comparison strategy used by the planner

Helper functions introspect these markers at runtime so the planner does not
need per-kind knowledge.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, TypeAlias, TypeVar

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]


# ── Marker dataclasses ──────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ForceNew:
    """Field is immutable in place: changing it forces replacement."""


@dataclass(frozen=True, slots=True)
class Compare:
    """How the planner should compare the field.

    - ``"partial"``: for dict values, only keys declared in desired are compared
    - ``"exact"``: strict equality comparison
    - ``"set"``: order-insensitive list comparison
    """

    strategy: CompareStrategy


# ── Shared introspection primitives ─────────────────────────────────


def _find_marker(field_info: FieldInfo, marker_type: type[M]) -> M | None:
    """Return the first marker of *marker_type* on a field, or ``None``."""
    return next((m for m in field_info.metadata if isinstance(m, marker_type)), None)


def _iter_marked_fields(
    model_or_cls: Any,
    marker_type: type[M],
) -> list[tuple[str, FieldInfo, M]]:
    """Return ``(field_name, field_info, marker)`` for every field carrying *marker_type*."""
    cls = model_or_cls if isinstance(model_or_cls, type) else type(model_or_cls)
    return [
        (name, fi, marker)
        for name, fi in cls.model_fields.items()
        if (marker := _find_marker(fi, marker_type)) is not None
    ]


# ── Public helpers ──────────────────────────────────────────────────


def collect_compare_strategies(model_or_cls: Any) -> dict[str, CompareStrategy]:
    """Collect per-field compare strategies from ``Compare`` markers."""
    return {
        name: marker.strategy for name, _, marker in _iter_marked_fields(model_or_cls, Compare)
    }


def collect_force_new(model_or_cls: Any) -> frozenset[str]:
    """Names of fields marked ``ForceNew``."""
    return frozenset(name for name, _, _ in _iter_marked_fields(model_or_cls, ForceNew))
