"""Engine error types."""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base exception for engine errors."""


class UnknownResourceTypeError(EngineError):
    """Raised when a resource kind has no registration/handler."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown resource kind: {kind}")
        self.kind = kind


class DuplicateNameError(EngineError):
    """Raised when multiple declared resources share the same logical name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Duplicate resource name: {name}")
        self.name = name


class UnresolvedReferenceError(EngineError):
    """Raised when a node references a node or attribute that does not exist."""

    def __init__(self, problems: list[str], *, targets: list[str] | None = None) -> None:
        self.problems = problems
        self.targets = targets or []
        msg = "Unresolved references:\n" + "\n".join(f"  - {p}" for p in problems)
        super().__init__(msg)


class DependencyCycleError(EngineError):
    """Raised when dependencies contain a cycle.

    ``cycle`` lists the names along the cycle, first name repeated at the end.
    """

    def __init__(self, cycle: list[str]) -> None:
        msg = "Dependency cycle detected"
        if cycle:
            msg += f": {' -> '.join(cycle)}"
        super().__init__(msg)
        self.cycle = cycle


class StateStackMismatchError(EngineError):
    """Raised when the on-disk state belongs to a different stack."""

    def __init__(self, expected: str, got: str) -> None:
        super().__init__(f"State stack mismatch: expected {expected}, got {got}")
        self.expected = expected
        self.got = got


class StateCorruptionError(EngineError):
    """Raised when the state file is unreadable or contradicts itself.

    Never repaired automatically; an operator has to reconcile the file.
    """

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        msg = "State is corrupt:\n" + "\n".join(f"  - {p}" for p in problems)
        super().__init__(msg)


class StalePlanError(EngineError):
    """Raised when applying a plan against a different state than planned."""


class StateLockError(EngineError):
    """Raised when the state lock cannot be acquired or released."""


class ValidationError(EngineError):
    """One or more resources failed plan validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


class OperationFailure(EngineError):
    """Raised when a create/update/delete against the provider fails or times out.

    Carries the partial result (what was applied before the failure) so
    callers can inspect progress, plus every failure of the aborted wave.
    The first underlying exception is chained via ``__cause__``.
    """

    def __init__(
        self,
        *,
        applied: list[Any],
        name: str,
        operation: str,
        message: str,
        failures: list[tuple[str, str, str]] | None = None,
    ) -> None:
        from stack_provisioner.engine.types import ApplyResult

        self.result = ApplyResult(applied=applied)
        self.name = name
        self.operation = operation
        self.failures = failures or [(name, operation, message)]
        super().__init__(f"{operation} failed on {name}: {message}")


class ApplyCanceled(EngineError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""
