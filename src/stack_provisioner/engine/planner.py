"""Reconcile planner.

Walks declared nodes in dependency order and classifies each one against
observed state:

1. references are resolved through an in-pass attribute table populated as
   upstream nodes are visited (not-yet-known values are ``UNKNOWN``);
2. a node without an observed record is created;
3. a node whose trigger hash changed is replaced;
4. otherwise inputs are diffed field by field: a changed ``ForceNew`` field
   replaces, any other change updates, no change is a no-op;
5. the node's attributes are recorded for downstream nodes: observed
   attributes for kept resources, overlaid with what the kind can compute
   at plan time.

Observed records no longer declared are deleted, dependents first.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.triggers import compute_trigger_hash
from stack_provisioner.engine.types import Action, ResourceChange
from stack_provisioner.resources.markers import (
    CompareStrategy,
    collect_compare_strategies,
    collect_force_new,
)
from stack_provisioner.resources.refs import UNKNOWN, contains_unknown, resolve_refs

if TYPE_CHECKING:
    from collections.abc import Sequence

    from stack_provisioner.core.state import ObservedState
    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.resources.base import ResourceKind, ResourceNode
    from stack_provisioner.resources.refs import AttributeRef

logger = logging.getLogger(__name__)


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Non-dict values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return {_canonical(v) for v in desired} != {_canonical(v) for v in prior}
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    return desired != prior


def diff_inputs(
    model: type[ResourceKind], desired: dict[str, Any], prior: dict[str, Any]
) -> dict[str, dict[str, Any]]:
    """Field-by-field diff of resolved inputs against the last applied inputs.

    Inputs dropped from the declaration count as changed back to ``None``.
    """
    strategies = collect_compare_strategies(model)
    diff: dict[str, dict[str, Any]] = {}
    for key in sorted(set(desired) | set(prior)):
        if key not in desired:
            if prior[key] is not None:
                diff[key] = {"from": prior[key], "to": None}
            continue
        if _values_differ(desired[key], prior.get(key), strategy=strategies.get(key)):
            diff[key] = {"from": prior.get(key), "to": desired[key]}
    return diff


class ReconcilePlanner:
    """Turns an ordered set of declared nodes plus observed state into changes."""

    def __init__(self, registry: ResourceTypeRegistry) -> None:
        self._registry = registry

    def plan(self, ordering: Sequence[ResourceNode], observed: ObservedState) -> list[ResourceChange]:
        """Plan changes for *ordering* (must be in dependency order)."""
        known: dict[str, dict[str, Any]] = {}
        changes = [self._classify(node, observed, known) for node in ordering]
        declared = {n.name for n in ordering}
        changes.extend(self.plan_deletes(observed, set(observed.resources) - declared))
        return changes

    def plan_destroy(self, observed: ObservedState) -> list[ResourceChange]:
        return self.plan_deletes(observed, set(observed.resources))

    def plan_deletes(self, observed: ObservedState, names: set[str]) -> list[ResourceChange]:
        """Delete changes for *names* in reverse dependency order, deposed entries first."""
        changes: list[ResourceChange] = []
        for key in sorted(observed.deposed):
            entry = observed.deposed[key]
            self._registry.get(entry.kind)  # fail early if unknown
            changes.append(
                ResourceChange(
                    name=entry.name,
                    kind=entry.kind,
                    action=Action.DELETE,
                    prior=dict(entry.attributes),
                    prior_id=entry.resource_id,
                    deposed=True,
                )
            )

        dep_map = {n: [d for d in observed.resources[n].dependencies if d in names] for n in names}
        for name in DependencyGraph(names, dep_map).reverse_topological_order():
            inst = observed.resources[name]
            self._registry.get(inst.kind)
            changes.append(
                ResourceChange(
                    name=name,
                    kind=inst.kind,
                    action=Action.DELETE,
                    prior=dict(inst.attributes),
                    prior_id=inst.resource_id,
                )
            )
        return changes

    def _classify(
        self,
        node: ResourceNode,
        observed: ObservedState,
        known: dict[str, dict[str, Any]],
    ) -> ResourceChange:
        model = self._registry.get(node.kind).model

        def lookup(ref: AttributeRef) -> Any:
            return known.get(ref.target, {}).get(ref.attribute, UNKNOWN)

        inputs = resolve_refs(node.inputs, lookup)
        triggers = None if node.triggers is None else resolve_refs(node.triggers, lookup)
        trigger_hash = None
        if triggers is not None and not contains_unknown(triggers):
            trigger_hash = compute_trigger_hash(triggers)
        computed = model.computed_attributes(inputs)
        desired = node.model_dump(mode="json")

        prior = observed.resources.get(node.name)
        if prior is None:
            known[node.name] = computed
            logger.debug("Classified %s as create", node.name)
            return ResourceChange(
                name=node.name,
                kind=node.kind,
                action=Action.CREATE,
                desired=desired,
                planned=inputs,
                trigger_hash=trigger_hash,
            )

        diff = diff_inputs(model, inputs, prior.inputs)
        reasons: list[str] = []
        if prior.kind != node.kind:
            reasons.append("kind")
        if triggers is not None and (trigger_hash is None or trigger_hash != prior.trigger_hash):
            reasons.append("triggers")
        force_new = collect_force_new(model)
        reasons.extend(k for k in diff if k in force_new)

        common: dict[str, Any] = {
            "name": node.name,
            "kind": node.kind,
            "desired": desired,
            "prior": dict(prior.inputs),
            "prior_id": prior.resource_id,
            "planned": inputs,
            "trigger_hash": trigger_hash,
        }

        if reasons:
            known[node.name] = computed
            logger.debug("Classified %s as replace (%s)", node.name, ", ".join(reasons))
            return ResourceChange(
                action=Action.REPLACE,
                replacement=node.lifecycle.replacement,
                reasons=reasons,
                diff=diff or None,
                **common,
            )

        # Plan-time attributes that moved (e.g. a rebuilt archive digest).
        drift = {
            k: {"from": prior.attributes.get(k), "to": v}
            for k, v in sorted(computed.items())
            if prior.attributes.get(k) != v
        }
        if diff or drift:
            kept = {
                k: v for k, v in prior.attributes.items() if k not in model.volatile_attributes
            }
            known[node.name] = {**kept, **computed}
            logger.debug("Classified %s as update", node.name)
            return ResourceChange(action=Action.UPDATE, diff={**drift, **diff}, **common)

        known[node.name] = {**prior.attributes, **computed}
        logger.debug("Classified %s as no-op", node.name)
        return ResourceChange(action=Action.NOOP, **common)
