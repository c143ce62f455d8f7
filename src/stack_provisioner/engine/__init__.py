"""Plan and apply engine for resource stacks."""

from stack_provisioner.engine.engine import StackEngine
from stack_provisioner.engine.errors import (
    ApplyCanceled,
    DependencyCycleError,
    DuplicateNameError,
    EngineError,
    OperationFailure,
    StalePlanError,
    StateCorruptionError,
    StateLockError,
    StateStackMismatchError,
    UnknownResourceTypeError,
    UnresolvedReferenceError,
    ValidationError,
)
from stack_provisioner.engine.executor import ProgressCallback, WaveCallback, WaveExecutor
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.handlers import EngineContext, ResourceHandler
from stack_provisioner.engine.planner import ReconcilePlanner
from stack_provisioner.engine.registry import ResourceTypeRegistration, ResourceTypeRegistry
from stack_provisioner.engine.triggers import compute_trigger_hash
from stack_provisioner.engine.types import Action, ApplyResult, Plan, PlanMetadata, ResourceChange

__all__ = [
    "Action",
    "ApplyCanceled",
    "ApplyResult",
    "DependencyCycleError",
    "DependencyGraph",
    "DuplicateNameError",
    "EngineContext",
    "EngineError",
    "OperationFailure",
    "Plan",
    "PlanMetadata",
    "ProgressCallback",
    "ReconcilePlanner",
    "ResourceChange",
    "ResourceHandler",
    "ResourceTypeRegistration",
    "ResourceTypeRegistry",
    "StackEngine",
    "StalePlanError",
    "StateCorruptionError",
    "StateLockError",
    "StateStackMismatchError",
    "UnknownResourceTypeError",
    "UnresolvedReferenceError",
    "ValidationError",
    "WaveCallback",
    "WaveExecutor",
    "compute_trigger_hash",
]
