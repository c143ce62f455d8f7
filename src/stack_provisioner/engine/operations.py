"""Apply operations.

Apply executes a graph of operations. Each operation knows how to apply
itself and lists the operations it depends on. Execution is split in two
steps so that state is only ever touched by the coordinating thread:

- ``prepare`` runs on the coordinating thread, resolves references against
  the state as it stands after earlier waves, and snapshots what the
  provider call needs;
- ``run`` runs on a worker, talks to the provider, and returns a commit
  callable (or ``None`` when there is nothing to record) that the
  coordinator applies to state.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal, Protocol

from stack_provisioner.core.state import (
    ObservedResource,
    ObservedState,
    compute_attributes_hash,
    predecessor_key,
)
from stack_provisioner.engine.triggers import compute_trigger_hash
from stack_provisioner.engine.types import Action
from stack_provisioner.resources.base import ReplacementStrategy, ResourceNode
from stack_provisioner.resources.refs import AttributeRef, resolve_refs

if TYPE_CHECKING:
    from stack_provisioner.engine.handlers import EngineContext
    from stack_provisioner.engine.registry import ResourceTypeRegistry
    from stack_provisioner.engine.types import ResourceChange
    from stack_provisioner.resources.base import ResourceKind

logger = logging.getLogger(__name__)

Commit = Callable[[ObservedState], None]


def _no_change(state: ObservedState) -> None:
    _ = state


class Operation(Protocol):
    key: str
    deps: list[str]
    change: ResourceChange | None

    @property
    def operation(self) -> str: ...

    def prepare(self, state: ObservedState, registry: ResourceTypeRegistry) -> None:
        """Snapshot what ``run`` needs from *state*."""

    def run(self, ctx: EngineContext, registry: ResourceTypeRegistry) -> Commit | None:
        """Execute this operation against the provider.

        Returns:
            A callable recording the outcome in state, or ``None``.
        """


def _state_lookup(state: ObservedState) -> Callable[[AttributeRef], Any]:
    def lookup(ref: AttributeRef) -> Any:
        inst = state.resources.get(ref.target)
        if inst is None:
            raise ValueError(f"Referenced resource '{ref.target}' has not been applied")
        if ref.attribute not in inst.attributes:
            raise ValueError(f"Resource '{ref.target}' has no attribute '{ref.attribute}'")
        return inst.attributes[ref.attribute]

    return lookup


@dataclass
class _Resolved:
    node: ResourceNode
    inputs: dict[str, Any]
    desired: ResourceKind
    trigger_hash: str | None


def _resolve(change: ResourceChange, state: ObservedState, registry: ResourceTypeRegistry) -> _Resolved:
    if change.desired is None:
        raise ValueError(f"Missing desired config for {change.action.value}: {change.name}")
    node = ResourceNode.model_validate(change.desired)
    if node.name != change.name:
        raise ValueError(f"Desired name mismatch: {change.name} != {node.name}")

    lookup = _state_lookup(state)
    inputs = resolve_refs(node.inputs, lookup)
    trigger_hash = None
    if node.triggers is not None:
        trigger_hash = compute_trigger_hash(resolve_refs(node.triggers, lookup))
    desired = registry.get(node.kind).model.model_validate(inputs)
    return _Resolved(node=node, inputs=inputs, desired=desired, trigger_hash=trigger_hash)


@dataclass
class BarrierOperation:
    """A no-op node used to enforce ordering between operation phases."""

    key: str
    deps: list[str] = field(default_factory=list)
    change: ResourceChange | None = None
    operation: str = "barrier"

    def prepare(self, state: ObservedState, registry: ResourceTypeRegistry) -> None:
        _ = state, registry

    def run(self, ctx: EngineContext, registry: ResourceTypeRegistry) -> Commit | None:
        _ = ctx, registry
        return None


@dataclass
class CreateOperation:
    """Create the current resource of a node.

    When the change is a create-first replacement, the commit moves the old
    record into ``deposed`` before recording the new one. Kinds whose id is
    derived from their inputs can hand back the predecessor's id; the
    successor then took the predecessor over and nothing is deposed.
    """

    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)
    operation: str = "create"
    _resolved: _Resolved | None = field(default=None, init=False, repr=False)

    def prepare(self, state: ObservedState, registry: ResourceTypeRegistry) -> None:
        self._resolved = _resolve(self.change, state, registry)

    def run(self, ctx: EngineContext, registry: ResourceTypeRegistry) -> Commit | None:
        assert self._resolved is not None
        resolved = self._resolved
        handler = registry.get(self.change.kind).handler
        resource_id, attrs = handler.create(ctx, resolved.desired)
        logger.info("Created %s (%s)", self.change.name, resource_id)
        depose_prior = (
            self.change.action == Action.REPLACE
            and self.change.replacement == ReplacementStrategy.CREATE_FIRST
        )

        def commit(state: ObservedState) -> None:
            name = self.change.name
            current = state.resources.get(name)
            if depose_prior and current is not None:
                if current.resource_id == resource_id:
                    logger.info("%s kept its id %s; nothing to depose", name, resource_id)
                else:
                    state.depose(name)
            now = datetime.now(UTC)
            state.resources[name] = ObservedResource(
                name=name,
                kind=self.change.kind,
                resource_id=resource_id,
                trigger_hash=resolved.trigger_hash,
                inputs=resolved.inputs,
                attributes=attrs,
                attributes_hash=compute_attributes_hash(attrs),
                dependencies=resolved.node.dependency_names(),
                created_at=now,
                updated_at=now,
            )

        return commit


@dataclass
class UpdateOperation:
    key: str
    change: ResourceChange
    deps: list[str] = field(default_factory=list)
    operation: str = "update"
    _resolved: _Resolved | None = field(default=None, init=False, repr=False)
    _prior: ObservedResource | None = field(default=None, init=False, repr=False)

    def prepare(self, state: ObservedState, registry: ResourceTypeRegistry) -> None:
        self._resolved = _resolve(self.change, state, registry)
        self._prior = state.resources[self.change.name].model_copy(deep=True)

    def run(self, ctx: EngineContext, registry: ResourceTypeRegistry) -> Commit | None:
        assert self._resolved is not None and self._prior is not None
        resolved = self._resolved
        handler = registry.get(self.change.kind).handler
        attrs = handler.update(ctx, resolved.desired, self._prior)
        logger.info("Updated %s (%s)", self.change.name, self._prior.resource_id)

        def commit(state: ObservedState) -> None:
            inst = state.resources[self.change.name]
            inst.trigger_hash = resolved.trigger_hash
            inst.inputs = resolved.inputs
            inst.attributes = attrs
            inst.attributes_hash = compute_attributes_hash(attrs)
            inst.dependencies = resolved.node.dependency_names()
            inst.updated_at = datetime.now(UTC)

        return commit


@dataclass
class DeleteOperation:
    """Delete a resource.

    ``source="current"`` deletes the current record of ``name``;
    ``source="deposed"`` deletes the predecessor stored under ``key``. A
    predecessor that is missing from ``deposed`` because its successor kept
    the same id is left alone.
    """

    key: str
    change: ResourceChange
    name: str
    source: Literal["current", "deposed"] = "current"
    deps: list[str] = field(default_factory=list)
    operation: str = "delete"
    _prior: ObservedResource | None = field(default=None, init=False, repr=False)

    def prepare(self, state: ObservedState, registry: ResourceTypeRegistry) -> None:
        self._prior = None
        if self.source == "current":
            self._prior = state.resources[self.name].model_copy(deep=True)
        else:
            entry = state.deposed.get(self.key)
            if entry is None:
                current = state.resources.get(self.name)
                if current is None or predecessor_key(self.name, current.resource_id) != self.key:
                    raise KeyError(f"No deposed record {self.key}")
                return
            self._prior = ObservedResource(
                name=entry.name,
                kind=entry.kind,
                resource_id=entry.resource_id,
                inputs=dict(entry.inputs),
                attributes=dict(entry.attributes),
            )
        registry.get(self._prior.kind)

    def run(self, ctx: EngineContext, registry: ResourceTypeRegistry) -> Commit | None:
        if self._prior is None:
            logger.info("%s is now the current resource of %s; not deleting", self.key, self.name)
            return _no_change
        prior = self._prior
        handler = registry.get(prior.kind).handler
        if handler.delete(ctx, prior):
            logger.info("Deleted %s (%s)", self.name, prior.resource_id)
        else:
            logger.info("%s (%s) was already gone", self.name, prior.resource_id)

        def commit(state: ObservedState) -> None:
            if self.source == "current":
                current = state.resources.get(self.name)
                if current is not None and current.resource_id == prior.resource_id:
                    del state.resources[self.name]
            else:
                state.deposed.pop(predecessor_key(self.name, prior.resource_id), None)

        return commit
