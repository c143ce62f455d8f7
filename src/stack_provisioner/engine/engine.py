"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from stack_provisioner import __version__
from stack_provisioner.core.state import (
    ObservedResource,
    ObservedState,
    compute_attributes_hash,
    compute_state_digest,
    find_inconsistencies,
    predecessor_key,
)
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    DependencyCycleError,
    StalePlanError,
    StateCorruptionError,
    StateStackMismatchError,
    ValidationError,
)
from stack_provisioner.engine.executor import ProgressCallback, WaveCallback, WaveExecutor
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.handlers import EngineContext
from stack_provisioner.engine.lock import StateLock
from stack_provisioner.engine.operations import (
    BarrierOperation,
    CreateOperation,
    DeleteOperation,
    UpdateOperation,
)
from stack_provisioner.engine.planner import ReconcilePlanner
from stack_provisioner.engine.triggers import compute_trigger_hash
from stack_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata
from stack_provisioner.resources.base import ReplacementStrategy, ResourceNode
from stack_provisioner.resources.refs import collect_refs

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from stack_provisioner.core import AwsProvider
    from stack_provisioner.engine.operations import Operation
    from stack_provisioner.engine.registry import ResourceTypeRegistry

logger = logging.getLogger(__name__)

BARRIER_KEY = "__engine__.apply_barrier"


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(nodes: Sequence[ResourceNode]) -> str:
    items = sorted((n.model_dump(mode="json") for n in nodes), key=lambda x: x["name"])
    return _sha256_hex(_canonical_json(items))


class StackEngine:
    """Terraform-like plan/apply engine for a stack of resource nodes."""

    def __init__(
        self,
        *,
        provider: AwsProvider,
        stack: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        parallelism: int = 4,
        timeout: float = 60.0,
    ) -> None:
        self._provider = provider
        self._stack = stack
        self._state_path = state_path
        self._registry = registry
        self._parallelism = parallelism
        self._timeout = timeout
        self._planner = ReconcilePlanner(registry)

    @property
    def stack(self) -> str:
        return self._stack

    @property
    def state_path(self) -> Path:
        return self._state_path

    def _ctx(self) -> EngineContext:
        return EngineContext(provider=self._provider, stack=self._stack, timeout=self._timeout)

    def _check_state(self, state: ObservedState) -> None:
        if state.stack != self._stack:
            raise StateStackMismatchError(self._stack, state.stack)
        problems = find_inconsistencies(state)
        deps = {name: inst.dependencies for name, inst in state.resources.items()}
        try:
            DependencyGraph(state.resources, deps).topological_order()
        except DependencyCycleError as e:
            problems.append(f"Recorded dependencies form a cycle: {' -> '.join(e.cycle)}")
        if problems:
            raise StateCorruptionError(problems)

    def _load_state(self) -> ObservedState:
        try:
            state = ObservedState.load_or_create(self._state_path, stack=self._stack)
        except (OSError, ValueError) as e:
            raise StateCorruptionError([f"Cannot read {self._state_path}: {e}"]) from e
        self._check_state(state)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> ObservedState:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return ObservedState(
            stack=self._stack,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )

    def _refresh_state_in_place(self, state: ObservedState) -> bool:
        logger.debug("Refreshing state from the provider")
        changed = False
        ctx = self._ctx()

        for name, inst in list(state.resources.items()):
            handler = self._registry.get(inst.kind).handler
            attrs = handler.read(ctx, inst)
            if attrs is None:
                logger.info("%s (%s) no longer exists", name, inst.resource_id)
                del state.resources[name]
                changed = True
                continue

            new_hash = compute_attributes_hash(attrs)
            if attrs != inst.attributes or new_hash != inst.attributes_hash:
                inst.attributes = attrs
                inst.attributes_hash = new_hash
                inst.updated_at = datetime.now(UTC)
                changed = True

        for key, entry in list(state.deposed.items()):
            handler = self._registry.get(entry.kind).handler
            probe = ObservedResource(
                name=entry.name,
                kind=entry.kind,
                resource_id=entry.resource_id,
                inputs=entry.inputs,
                attributes=entry.attributes,
            )
            if handler.read(ctx, probe) is None:
                logger.info("Deposed %s no longer exists", key)
                del state.deposed[key]
                changed = True

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[ObservedState, ObservedState]:
        """Refresh state from the provider. Returns (pre_refresh, post_refresh)."""
        with StateLock(self._state_path):
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                state.serial += 1
                state.save(self._state_path)
            return snapshot, state

    def validate(self, nodes: Sequence[ResourceNode]) -> list[ResourceNode]:
        """Check references, cycles and inputs; return *nodes* in dependency order."""
        for n in nodes:
            self._registry.get(n.kind)
        ordering = DependencyGraph.build(nodes, self._registry)

        ctx = self._ctx()
        errors: list[str] = []
        for node in ordering:
            reg = self._registry.get(node.kind)
            problems = reg.model.check_inputs(node.inputs)
            if not problems and not collect_refs(node.inputs):
                problems = reg.handler.validate(ctx, reg.model.model_validate(node.inputs))
            if node.triggers is not None and not collect_refs(node.triggers):
                try:
                    compute_trigger_hash(node.triggers)
                except ValueError as e:
                    problems.append(f"triggers: {e}")
            errors.extend(f"{node.name} ({node.kind}): {p}" for p in problems)
        if errors:
            raise ValidationError(errors)
        return ordering

    def plan(
        self, nodes: Sequence[ResourceNode], *, destroy: bool = False, refresh: bool = True
    ) -> Plan:
        logger.info("Planning %d resources (destroy=%s, refresh=%s)", len(nodes), destroy, refresh)
        # Only lock when refresh may write state.
        lock_cm = StateLock(self._state_path) if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh:
                changed = self._refresh_state_in_place(state)
                if changed:
                    state.serial += 1
                    state.save(self._state_path)

            if destroy:
                changes = self._planner.plan_destroy(state)
            else:
                ordering = self.validate(nodes)
                changes = self._planner.plan(ordering, state)

            metadata = PlanMetadata(
                stack=self._stack,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest([] if destroy else nodes),
                engine_version=__version__,
            )

            return Plan(metadata=metadata, changes=changes)

    def _build_apply_operations(self, plan: Plan, state: ObservedState) -> dict[str, Operation]:
        """Translate plan changes into an operation graph.

        - creates/updates run after the creates/updates of their dependencies;
        - delete-first replacements delete the old resource before creating the
          new one (dependents' old resources go first);
        - everything else that deletes (orphans, create-first predecessors,
          leftover deposed entries) runs after all creates/updates, dependents
          before dependencies.
        """
        ops: dict[str, Operation] = {}
        forward: set[str] = set()
        early: dict[str, str] = {}
        # late delete key -> (record name, names the deleted record depended on)
        late: dict[str, tuple[str, list[str]]] = {}

        def add(op: Operation) -> None:
            if op.key in ops:
                raise ValueError(f"Duplicate operation key in plan: {op.key}")
            ops[op.key] = op

        def recorded_deps(name: str) -> list[str]:
            inst = state.resources.get(name)
            return list(inst.dependencies) if inst is not None else []

        for c in plan.changes:
            match c.action:
                case Action.NOOP:
                    continue
                case Action.CREATE:
                    add(CreateOperation(key=c.name, change=c))
                    forward.add(c.name)
                case Action.UPDATE:
                    add(UpdateOperation(key=c.name, change=c))
                    forward.add(c.name)
                case Action.REPLACE:
                    if c.prior_id is None:
                        raise ValueError(f"Missing prior id for replacement: {c.name}")
                    pkey = predecessor_key(c.name, c.prior_id)
                    if c.replacement == ReplacementStrategy.CREATE_FIRST:
                        add(CreateOperation(key=c.name, change=c))
                        add(
                            DeleteOperation(
                                key=pkey, change=c, name=c.name, source="deposed", deps=[c.name]
                            )
                        )
                        late[pkey] = (c.name, recorded_deps(c.name))
                    else:
                        add(DeleteOperation(key=pkey, change=c, name=c.name, source="current"))
                        add(CreateOperation(key=c.name, change=c, deps=[pkey]))
                        early[c.name] = pkey
                    forward.add(c.name)
                case Action.DELETE:
                    if c.deposed:
                        if c.prior_id is None:
                            raise ValueError(f"Missing prior id for deposed delete: {c.name}")
                        key = predecessor_key(c.name, c.prior_id)
                        add(DeleteOperation(key=key, change=c, name=c.name, source="deposed"))
                        late[key] = (c.name, [])
                    else:
                        if c.name not in state.resources:
                            raise ValueError(f"Missing state for delete operation: {c.name}")
                        add(DeleteOperation(key=c.name, change=c, name=c.name, source="current"))
                        late[c.name] = (c.name, recorded_deps(c.name))
                case _:
                    raise ValueError(f"Unknown action: {c.action}")

        # create/update: dependencies must run before dependents
        for name in forward:
            op = ops[name]
            assert op.change is not None
            node = ResourceNode.model_validate(op.change.desired)
            op.deps.extend(d for d in node.dependency_names() if d in forward)

        # delete-first: dependents' old resources go before their dependencies'
        for name, pkey in early.items():
            for other, other_key in early.items():
                if name in recorded_deps(other):
                    ops[pkey].deps.append(other_key)

        # late deletes: invert recorded dependency edges
        late_by_name: dict[str, list[str]] = {}
        for key, (name, _) in late.items():
            late_by_name.setdefault(name, []).append(key)
        for key, (_, deps) in late.items():
            for dep in deps:
                for dep_key in late_by_name.get(dep, []):
                    if dep_key != key:
                        ops[dep_key].deps.append(key)

        # Ensure create/update runs before deletes (Terraform-like default ordering).
        if forward and late:
            if BARRIER_KEY in ops:
                raise ValueError(f"Barrier operation key conflicts with plan: {BARRIER_KEY}")
            ops[BARRIER_KEY] = BarrierOperation(key=BARRIER_KEY, deps=sorted(forward))
            for key in late:
                ops[key].deps.append(BARRIER_KEY)

        return ops

    def _check_plan(self, plan: Plan, state: ObservedState) -> None:
        if plan.metadata.stack != self._stack:
            raise StateStackMismatchError(self._stack, plan.metadata.stack)

        # Stale plan detection
        if state.lineage != plan.metadata.state_lineage:
            raise StalePlanError("State lineage changed; re-run plan")
        if state.serial != plan.metadata.state_serial:
            raise StalePlanError("State serial changed; re-run plan")
        if compute_state_digest(state) != plan.metadata.state_digest:
            raise StalePlanError("State digest changed; re-run plan")

    def apply_order(self, plan: Plan) -> list[list[str]]:
        """Waves *plan* would run in, as change labels (read-only, no lock)."""
        state = self._load_state_for_apply(plan)
        self._check_plan(plan, state)
        ops = self._build_apply_operations(plan, state)
        labelled = (WaveExecutor.wave_labels(ops, keys) for keys in WaveExecutor.waves(ops))
        return [labels for labels in labelled if labels]

    def apply(
        self,
        plan: Plan,
        *,
        progress: ProgressCallback | None = None,
        on_wave: WaveCallback | None = None,
    ) -> ApplyResult:
        with StateLock(self._state_path):
            state = self._load_state_for_apply(plan)
            self._check_plan(plan, state)

            ops = self._build_apply_operations(plan, state)
            executor = WaveExecutor(
                ctx=self._ctx(),
                registry=self._registry,
                state=state,
                state_path=self._state_path,
                parallelism=self._parallelism,
                progress=progress,
                on_wave=on_wave,
            )
            try:
                return executor.execute(ops)
            except KeyboardInterrupt as e:  # pragma: no cover
                raise ApplyCanceled("Apply canceled") from e
