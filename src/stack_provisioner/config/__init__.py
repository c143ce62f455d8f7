"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from stack_provisioner.config.loader import ConfigError, load_config
from stack_provisioner.config.registry import default_registry
from stack_provisioner.config.schema import Config, ProviderConfig
from stack_provisioner.core.provider import AwsProvider
from stack_provisioner.core.state import ObservedState
from stack_provisioner.engine.engine import StackEngine
from stack_provisioner.engine.lock import StateLock
from stack_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from pathlib import Path

    from stack_provisioner.engine.executor import ProgressCallback, WaveCallback
    from stack_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ObservedState",
    "ProviderConfig",
    "apply",
    "apply_order",
    "drift",
    "engine_from_config",
    "load",
    "load_config",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def engine_from_config(config: Config) -> StackEngine:
    """Build a ``StackEngine`` from a ``Config`` instance."""
    settings = config.provider
    provider = AwsProvider(
        region=settings.region,
        profile=settings.profile,
        endpoint_url=settings.endpoint_url,
        timeout=settings.timeout,
    )
    return StackEngine(
        provider=provider,
        stack=config.stack,
        state_path=config.state_path,
        registry=default_registry(),
        parallelism=settings.parallelism,
        timeout=settings.timeout,
    )


def plan(config: Config, *, destroy: bool = False, refresh: bool = True) -> Plan:
    """Plan changes for the given configuration."""
    engine = engine_from_config(config)
    return engine.plan(config.nodes, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    on_wave: WaveCallback | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = engine_from_config(config)
    return engine.apply(plan_obj, progress=progress, on_wave=on_wave)


def apply_order(plan_obj: Plan, config: Config) -> list[list[str]]:
    """Return the waves *plan_obj* would be applied in."""
    return engine_from_config(config).apply_order(plan_obj)


def plan_and_apply(config: Config, *, destroy: bool = False, refresh: bool = True) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh)
    return apply(plan_obj, config)


def refresh(config: Config) -> tuple[list[ResourceChange], ObservedState]:
    """Refresh state from the provider (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = engine_from_config(config)
    old_state, new_state = engine.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: ObservedState) -> None:
    """Persist state to disk."""
    with StateLock(config.state_path):
        state.serial += 1
        state.save(config.state_path)


def drift(config: Config) -> list[ResourceChange]:
    """Detect drift between the state file and live resources."""
    changes, _ = refresh(config)
    return changes


def _build_drift_changes(
    old_state: ObservedState, new_state: ObservedState
) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    changes: list[ResourceChange] = []
    for name, inst in sorted(new_state.resources.items()):
        old = old_state.resources.get(name)
        if old is None or old.attributes == inst.attributes:
            continue
        all_keys = sorted(set(old.attributes) | set(inst.attributes))
        diff = {
            k: {"from": old.attributes.get(k), "to": inst.attributes.get(k)}
            for k in all_keys
            if old.attributes.get(k) != inst.attributes.get(k)
        }
        changes.append(
            ResourceChange(
                name=name,
                kind=inst.kind,
                action=Action.UPDATE,
                prior=dict(old.attributes),
                prior_id=old.resource_id,
                planned=dict(inst.attributes),
                diff=diff,
            )
        )
    for name in sorted(set(old_state.resources) - set(new_state.resources)):
        old = old_state.resources[name]
        changes.append(
            ResourceChange(
                name=name,
                kind=old.kind,
                action=Action.DELETE,
                prior=dict(old.attributes),
                prior_id=old.resource_id,
            )
        )
    return changes
