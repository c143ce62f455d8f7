"""Trigger hashing.

A node's ``triggers`` list is hashed after references are resolved; when the
hash differs from the one recorded at the last apply, the node is replaced.
The digest mirrors ``sha1(jsonencode([...]))``: SHA-1 over a canonical JSON
encoding of the ordered list.

Trigger lists are order-sensitive: ``[a, b]`` and ``[b, a]`` hash differently.
"""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING, Any

from stack_provisioner.resources.refs import AttributeRef, contains_unknown

if TYPE_CHECKING:
    from collections.abc import Sequence


def _normalize(value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_normalize(v) for v in value]
    return value


def canonical_encoding(values: Sequence[Any]) -> str:
    """Order-preserving canonical JSON of *values* (keys inside values are sorted)."""
    return json.dumps(
        _normalize(list(values)),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def compute_trigger_hash(values: Sequence[Any]) -> str:
    """Return the 40-char hex digest of resolved trigger *values*.

    Raises:
        ValueError: if a value is still unresolved or not JSON-encodable.
    """
    if contains_unknown(list(values)) or any(isinstance(v, AttributeRef) for v in values):
        raise ValueError("Cannot hash triggers with unresolved values")
    try:
        payload = canonical_encoding(values)
    except TypeError as exc:
        raise ValueError(f"Trigger values are not JSON-encodable: {exc}") from exc
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()  # noqa: S324
