"""Tests for the reconcile planner (classification and unknown propagation)."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

import pytest

from stack_provisioner.config.registry import default_registry
from stack_provisioner.core.state import (
    DeposedResource,
    ObservedResource,
    ObservedState,
    compute_attributes_hash,
)
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.handlers import ResourceHandler
from stack_provisioner.engine.planner import ReconcilePlanner, diff_inputs
from stack_provisioner.engine.registry import ResourceTypeRegistry
from stack_provisioner.engine.triggers import compute_trigger_hash
from stack_provisioner.engine.types import Action
from stack_provisioner.resources.base import (
    Lifecycle,
    ReplacementStrategy,
    ResourceKind,
    ResourceNode,
)
from stack_provisioner.resources.iam import IamPolicyDocument
from stack_provisioner.resources.markers import Compare, ForceNew
from stack_provisioner.resources.refs import UNKNOWN, known_subset


class Thing(ResourceKind):
    kind: ClassVar[str] = "thing"
    attributes: ClassVar[frozenset[str]] = frozenset({"id", "value", "rev"})
    volatile_attributes: ClassVar[frozenset[str]] = frozenset({"rev"})

    value: str
    zone: Annotated[str, ForceNew()] = "a"
    labels: Annotated[list[str], Compare("set")] = []

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        return known_subset(inputs, "value")


class OtherThing(Thing):
    kind: ClassVar[str] = "other_thing"


@pytest.fixture
def planner() -> ReconcilePlanner:
    registry = ResourceTypeRegistry()
    registry.register(Thing, ResourceHandler())
    registry.register(OtherThing, ResourceHandler())
    return ReconcilePlanner(registry)


def _node(name: str, kind: str = "thing", **kwargs: Any) -> ResourceNode:
    inputs = kwargs.pop("inputs", None) or {"value": name}
    return ResourceNode(kind=kind, name=name, inputs=inputs, **kwargs)


def _record(
    name: str,
    inputs: dict[str, Any],
    attributes: dict[str, Any] | None = None,
    *,
    kind: str = "thing",
    trigger_hash: str | None = None,
    dependencies: list[str] | None = None,
) -> ObservedResource:
    attrs = attributes if attributes is not None else {"id": f"{name}-1", **inputs}
    return ObservedResource(
        name=name,
        kind=kind,
        resource_id=attrs.get("id", f"{name}-1"),
        trigger_hash=trigger_hash,
        inputs=inputs,
        attributes=attrs,
        attributes_hash=compute_attributes_hash(attrs),
        dependencies=dependencies or [],
    )


def _state(*records: ObservedResource) -> ObservedState:
    return ObservedState(stack="demo", resources={r.name: r for r in records})


def _by_name(changes: list[Any]) -> dict[str, Any]:
    return {c.name: c for c in changes if not c.deposed}


def _plan(planner: ReconcilePlanner, nodes: list[ResourceNode], state: ObservedState) -> list[Any]:
    return planner.plan(DependencyGraph.build(nodes), state)


class TestClassify:
    def test_new_nodes_are_created(self, planner: ReconcilePlanner) -> None:
        a = _node("a")
        b = _node("b", inputs={"value": "${a.id}"})

        changes = _by_name(_plan(planner, [b, a], _state()))

        assert changes["a"].action == Action.CREATE
        assert changes["a"].planned == {"value": "a"}
        # ``id`` of a resource not yet created is unknown.
        assert changes["b"].action == Action.CREATE
        assert changes["b"].planned == {"value": UNKNOWN}

    def test_computed_attribute_known_downstream(self, planner: ReconcilePlanner) -> None:
        a = _node("a")
        b = _node("b", inputs={"value": "${a.value}-suffix"})

        changes = _by_name(_plan(planner, [a, b], _state()))
        assert changes["b"].planned == {"value": "a-suffix"}

    def test_noop_exposes_prior_attributes(self, planner: ReconcilePlanner) -> None:
        a = _node("a")
        b = _node("b", inputs={"value": "${a.id}"})
        state = _state(_record("a", {"value": "a"}), _record("b", {"value": "a-1"}))

        changes = _by_name(_plan(planner, [a, b], state))
        assert changes["a"].action == Action.NOOP
        assert changes["b"].action == Action.NOOP
        assert changes["b"].planned == {"value": "a-1"}

    def test_input_change_updates(self, planner: ReconcilePlanner) -> None:
        a = _node("a", inputs={"value": "new"})
        state = _state(_record("a", {"value": "old"}))

        (change,) = _plan(planner, [a], state)
        assert change.action == Action.UPDATE
        assert change.diff == {"value": {"from": "old", "to": "new"}}
        assert change.prior_id == "a-1"

    def test_set_compare_ignores_order(self, planner: ReconcilePlanner) -> None:
        a = _node("a", inputs={"value": "a", "labels": ["y", "x"]})
        state = _state(_record("a", {"value": "a", "labels": ["x", "y"]}))

        (change,) = _plan(planner, [a], state)
        assert change.action == Action.NOOP

    def test_attribute_drift_updates(self, planner: ReconcilePlanner) -> None:
        a = _node("a")
        state = _state(_record("a", {"value": "a"}, {"id": "a-1", "value": "changed"}))

        (change,) = _plan(planner, [a], state)
        assert change.action == Action.UPDATE
        assert change.diff == {"value": {"from": "changed", "to": "a"}}

    def test_force_new_field_replaces_delete_first(self, planner: ReconcilePlanner) -> None:
        a = _node("a", inputs={"value": "a", "zone": "b"})
        state = _state(_record("a", {"value": "a", "zone": "a"}))

        (change,) = _plan(planner, [a], state)
        assert change.action == Action.REPLACE
        assert change.replacement == ReplacementStrategy.DELETE_FIRST
        assert change.reasons == ["zone"]

    def test_kind_change_replaces(self, planner: ReconcilePlanner) -> None:
        a = _node("a", kind="other_thing")
        state = _state(_record("a", {"value": "a"}))

        (change,) = _plan(planner, [a], state)
        assert change.action == Action.REPLACE
        assert change.reasons == ["kind"]

    def test_replaced_producer_makes_consumer_unknown(self, planner: ReconcilePlanner) -> None:
        a = _node("a", inputs={"value": "a", "zone": "b"})
        b = _node("b", inputs={"value": "${a.id}"})
        state = _state(
            _record("a", {"value": "a", "zone": "a"}),
            _record("b", {"value": "a-1"}, dependencies=["a"]),
        )

        changes = _by_name(_plan(planner, [a, b], state))
        assert changes["a"].action == Action.REPLACE
        assert changes["b"].action == Action.UPDATE
        assert changes["b"].diff == {"value": {"from": "a-1", "to": UNKNOWN}}

    def test_volatile_attribute_unknown_after_update(self, planner: ReconcilePlanner) -> None:
        a = _node("a", inputs={"value": "new"})
        b = _node("b", inputs={"value": "${a.rev}"})
        state = _state(
            _record("a", {"value": "old"}, {"id": "a-1", "value": "old", "rev": "r1"}),
            _record("b", {"value": "r1"}),
        )

        changes = _by_name(_plan(planner, [a, b], state))
        assert changes["a"].action == Action.UPDATE
        assert changes["b"].planned == {"value": UNKNOWN}
        assert changes["b"].action == Action.UPDATE


class TestTriggers:
    def _deployment(self, *triggers: str) -> ResourceNode:
        return _node(
            "deployment",
            triggers=list(triggers),
            lifecycle=Lifecycle(create_before_destroy=True),
        )

    def test_unchanged_triggers_noop(self, planner: ReconcilePlanner) -> None:
        a = _node("a")
        dep = self._deployment("${a.id}")
        state = _state(
            _record("a", {"value": "a"}),
            _record(
                "deployment",
                {"value": "deployment"},
                trigger_hash=compute_trigger_hash(["a-1"]),
                dependencies=["a"],
            ),
        )

        changes = _by_name(_plan(planner, [a, dep], state))
        assert changes["deployment"].action == Action.NOOP
        assert changes["deployment"].trigger_hash == compute_trigger_hash(["a-1"])

    def test_literal_trigger_change_replaces(self, planner: ReconcilePlanner) -> None:
        dep = self._deployment("v2")
        prior = _record(
            "deployment", {"value": "deployment"}, trigger_hash=compute_trigger_hash(["v1"])
        )
        state = _state(prior)

        (change,) = _plan(planner, [dep], state)
        assert change.action == Action.REPLACE
        assert change.replacement == ReplacementStrategy.CREATE_FIRST
        assert change.reasons == ["triggers"]
        assert change.trigger_hash == compute_trigger_hash(["v2"])

    def test_replaced_trigger_source_replaces(self, planner: ReconcilePlanner) -> None:
        a = _node("a", inputs={"value": "a", "zone": "b"})
        dep = self._deployment("${a.id}")
        state = _state(
            _record("a", {"value": "a", "zone": "a"}),
            _record(
                "deployment",
                {"value": "deployment"},
                trigger_hash=compute_trigger_hash(["a-1"]),
                dependencies=["a"],
            ),
        )

        changes = _by_name(_plan(planner, [a, dep], state))
        assert changes["deployment"].action == Action.REPLACE
        assert changes["deployment"].reasons == ["triggers"]
        assert changes["deployment"].trigger_hash is None

    def test_first_triggers_on_existing_resource_replace(
        self, planner: ReconcilePlanner
    ) -> None:
        dep = self._deployment("v1")
        state = _state(_record("deployment", {"value": "deployment"}))

        (change,) = _plan(planner, [dep], state)
        assert change.action == Action.REPLACE

    def test_no_triggers_never_replaces_for_triggers(self, planner: ReconcilePlanner) -> None:
        a = _node("a")
        state = _state(_record("a", {"value": "a"}, trigger_hash="stale"))

        (change,) = _plan(planner, [a], state)
        assert change.action == Action.NOOP


class TestDeletes:
    def test_orphans_deleted_dependents_first(self, planner: ReconcilePlanner) -> None:
        state = _state(
            _record("base", {"value": "base"}),
            _record("mid", {"value": "mid"}, dependencies=["base"]),
            _record("top", {"value": "top"}, dependencies=["mid"]),
        )

        changes = _plan(planner, [], state)
        assert [(c.name, c.action) for c in changes] == [
            ("top", Action.DELETE),
            ("mid", Action.DELETE),
            ("base", Action.DELETE),
        ]

    def test_orphan_next_to_declared(self, planner: ReconcilePlanner) -> None:
        state = _state(_record("kept", {"value": "kept"}), _record("gone", {"value": "gone"}))

        changes = _plan(planner, [_node("kept")], state)
        assert [(c.name, c.action) for c in changes] == [
            ("kept", Action.NOOP),
            ("gone", Action.DELETE),
        ]

    def test_deposed_entries_deleted(self, planner: ReconcilePlanner) -> None:
        state = _state(_record("a", {"value": "a"}))
        state.deposed["a~old"] = DeposedResource(name="a", kind="thing", resource_id="old")

        changes = _plan(planner, [_node("a")], state)
        deposed = [c for c in changes if c.deposed]
        assert len(deposed) == 1
        assert deposed[0].action == Action.DELETE
        assert deposed[0].prior_id == "old"
        assert deposed[0].label == "a (deposed old)"

    def test_destroy(self, planner: ReconcilePlanner) -> None:
        state = _state(
            _record("a", {"value": "a"}),
            _record("b", {"value": "b"}, dependencies=["a"]),
        )
        changes = planner.plan_destroy(state)
        assert [c.name for c in changes] == ["b", "a"]


class TestDiffInputs:
    def test_removed_input_diffs_to_none(self) -> None:
        diff = diff_inputs(Thing, {"value": "a"}, {"value": "a", "zone": "x"})
        assert diff == {"zone": {"from": "x", "to": None}}

    def test_partial_dict_compare(self) -> None:
        diff = diff_inputs(Thing, {"value": {"k": 1}}, {"value": {"k": 1, "extra": 2}})
        assert diff == {}


class TestFunctionBehindRole:
    """A role replaced for a new name leaves the function's role ARN unknown."""

    def test_role_rename(self) -> None:
        registry = default_registry()
        planner = ReconcilePlanner(registry)

        statement = [{"actions": ["sts:AssumeRole"], "principals": []}]
        policy_attrs = IamPolicyDocument.computed_attributes({"statement": statement})
        fn_inputs = {
            "function_name": "fn",
            "runtime": "python3.12",
            "handler": "index.handler",
            "filename": "/tmp/fn.zip",
            "role": "arn:aws:iam::1:role/r1",
        }
        state = ObservedState(
            stack="demo",
            resources={
                "policy": _record(
                    "policy", {"statement": statement}, policy_attrs, kind="iam_policy_document"
                ),
                "role": _record(
                    "role",
                    {"name": "r1", "assume_role_policy": policy_attrs["json"]},
                    {"id": "r1", "name": "r1", "arn": "arn:aws:iam::1:role/r1"},
                    kind="iam_role",
                    dependencies=["policy"],
                ),
                "fn": _record(
                    "fn",
                    fn_inputs,
                    {"id": "fn", "function_name": "fn", "arn": "arn:fn"},
                    kind="lambda_function",
                    dependencies=["role"],
                ),
            },
        )
        nodes = [
            ResourceNode(
                kind="iam_policy_document", name="policy", inputs={"statement": statement}
            ),
            ResourceNode(
                kind="iam_role",
                name="role",
                inputs={"name": "r2", "assume_role_policy": "${policy.json}"},
            ),
            ResourceNode(
                kind="lambda_function",
                name="fn",
                inputs={**fn_inputs, "role": "${role.arn}"},
            ),
        ]

        changes = _by_name(planner.plan(DependencyGraph.build(nodes, registry), state))

        assert changes["policy"].action == Action.NOOP
        assert changes["role"].action == Action.REPLACE
        assert changes["role"].reasons == ["name"]
        assert changes["fn"].action == Action.UPDATE
        assert changes["fn"].diff == {"role": {"from": "arn:aws:iam::1:role/r1", "to": UNKNOWN}}
