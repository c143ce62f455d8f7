"""Tests for trigger hashing."""

from __future__ import annotations

import hashlib

import pytest

from stack_provisioner.engine.triggers import canonical_encoding, compute_trigger_hash
from stack_provisioner.resources.refs import UNKNOWN, AttributeRef


def test_hash_is_sha1_of_canonical_json() -> None:
    values = ["abc123", "agm-api-abc123-POST", "agi-api-abc123-POST"]
    expected = hashlib.sha1(canonical_encoding(values).encode("utf-8")).hexdigest()  # noqa: S324
    assert compute_trigger_hash(values) == expected
    assert len(expected) == 40


def test_deterministic() -> None:
    assert compute_trigger_hash(["a", {"y": 1, "x": 2}]) == compute_trigger_hash(
        ["a", {"x": 2, "y": 1}]
    )


def test_order_sensitive() -> None:
    assert compute_trigger_hash(["a", "b"]) != compute_trigger_hash(["b", "a"])


def test_value_change_changes_hash() -> None:
    assert compute_trigger_hash(["r1", "m1"]) != compute_trigger_hash(["r1", "m2"])


def test_integral_floats_match_ints() -> None:
    assert compute_trigger_hash([1.0]) == compute_trigger_hash([1])


def test_empty_list_hashes() -> None:
    assert compute_trigger_hash([]) == hashlib.sha1(b"[]").hexdigest()  # noqa: S324


def test_unknown_values_rejected() -> None:
    with pytest.raises(ValueError, match="unresolved"):
        compute_trigger_hash(["a", UNKNOWN])


def test_unresolved_refs_rejected() -> None:
    with pytest.raises(ValueError, match="unresolved"):
        compute_trigger_hash([AttributeRef("resource", "id")])


def test_non_json_values_rejected() -> None:
    with pytest.raises(ValueError, match="not JSON-encodable"):
        compute_trigger_hash([object()])
