"""Cross-resource attribute references.

A reference names an attribute that another node produces, written
``${name.attribute}`` (e.g. ``${iam_for_lambda.arn}``):

- a string that is exactly one reference is parsed into an ``AttributeRef``
  and resolves to the attribute value itself (type preserved);
- a string that embeds references among literal text is an interpolation and
  resolves to a string.

Resolution goes through a single lookup callable, populated by the caller in
dependency order. Values that are not known yet resolve to ``UNKNOWN``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

UNKNOWN = "(known after apply)"

_REF_PATTERN = re.compile(r"\$\{([A-Za-z0-9_-]+)\.([A-Za-z0-9_]+)\}")


@dataclass(frozen=True, slots=True)
class AttributeRef:
    """The value of ``attribute`` on node ``target``, known once ``target`` exists."""

    target: str
    attribute: str

    def __str__(self) -> str:
        return f"${{{self.target}.{self.attribute}}}"

    @classmethod
    def parse(cls, text: str) -> AttributeRef | None:
        """Parse ``${target.attribute}``; ``None`` unless *text* is exactly one reference."""
        m = _REF_PATTERN.fullmatch(text)
        if m is None:
            return None
        return cls(target=m.group(1), attribute=m.group(2))


def parse_refs(value: Any) -> Any:
    """Turn whole-value ``${a.b}`` strings into ``AttributeRef`` objects, recursively."""
    if isinstance(value, str):
        ref = AttributeRef.parse(value)
        return ref if ref is not None else value
    if isinstance(value, dict):
        return {k: parse_refs(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [parse_refs(v) for v in value]
    return value


def dump_refs(value: Any) -> Any:
    """Inverse of :func:`parse_refs`: render references back to ``${a.b}`` strings."""
    if isinstance(value, AttributeRef):
        return str(value)
    if isinstance(value, dict):
        return {k: dump_refs(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [dump_refs(v) for v in value]
    return value


def collect_refs(value: Any) -> list[AttributeRef]:
    """All references in *value* (objects and interpolations), in order, deduplicated."""
    found: list[AttributeRef] = []

    def _walk(v: Any) -> None:
        if isinstance(v, AttributeRef):
            found.append(v)
        elif isinstance(v, str):
            found.extend(AttributeRef(m.group(1), m.group(2)) for m in _REF_PATTERN.finditer(v))
        elif isinstance(v, dict):
            for item in v.values():
                _walk(item)
        elif isinstance(v, list | tuple):
            for item in v:
                _walk(item)

    _walk(value)
    return list(dict.fromkeys(found))


def resolve_refs(value: Any, lookup: Callable[[AttributeRef], Any]) -> Any:
    """Replace references in *value* using *lookup*, recursively.

    An interpolated string with any unknown part is itself ``UNKNOWN``.
    """
    if isinstance(value, AttributeRef):
        return lookup(value)
    if isinstance(value, str):
        if "${" not in value:
            return value
        unknown = False

        def _sub(m: re.Match[str]) -> str:
            nonlocal unknown
            resolved = lookup(AttributeRef(m.group(1), m.group(2)))
            if resolved == UNKNOWN:
                unknown = True
                return ""
            return str(resolved)

        result = _REF_PATTERN.sub(_sub, value)
        return UNKNOWN if unknown else result
    if isinstance(value, dict):
        return {k: resolve_refs(v, lookup) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [resolve_refs(v, lookup) for v in value]
    return value


def contains_unknown(value: Any) -> bool:
    """True if ``UNKNOWN`` appears anywhere in *value*."""
    if isinstance(value, str):
        return value == UNKNOWN
    if isinstance(value, dict):
        return any(contains_unknown(v) for v in value.values())
    if isinstance(value, list | tuple):
        return any(contains_unknown(v) for v in value)
    return False


def known_subset(values: dict[str, Any], *names: str) -> dict[str, Any]:
    """Pick *names* from *values*, skipping missing and unknown entries."""
    return {
        n: values[n] for n in names if n in values and not contains_unknown(values[n])
    }
