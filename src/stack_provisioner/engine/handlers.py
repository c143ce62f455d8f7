"""Engine-facing handler interfaces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from botocore.exceptions import ClientError

from stack_provisioner.resources.base import ResourceKind

if TYPE_CHECKING:
    from stack_provisioner.core import AwsProvider
    from stack_provisioner.core.state import ObservedResource

R = TypeVar("R", bound=ResourceKind)

_NOT_FOUND_CODES = frozenset(
    {"NoSuchEntity", "NotFoundException", "ResourceNotFoundException"}
)


@dataclass(frozen=True)
class EngineContext:
    """Execution context passed to every handler call.

    Carries the provider session (credentials, region) and the timeout that
    bounds each external call. Nothing provider-related is held globally.
    """

    provider: AwsProvider
    stack: str
    timeout: float = 60.0


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


def is_not_found(exc: Exception) -> bool:
    """True for the provider's "resource does not exist" errors."""
    return isinstance(exc, ClientError) and error_code(exc) in _NOT_FOUND_CODES


class ResourceHandler(Generic[R]):
    """Base class for resource handlers.

    Handlers translate resolved resource inputs into provider API calls.
    Subclass and override the CRUD methods. Validation is optional.
    """

    def validate(self, ctx: EngineContext, desired: R) -> list[str]:
        """Single-resource validation of fully resolved inputs.

        Return list of error messages (empty = valid).
        """
        _ = ctx, desired
        return []

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        """Read the resource back. Return None if it no longer exists."""
        raise NotImplementedError

    def create(self, ctx: EngineContext, desired: R) -> tuple[str, dict[str, Any]]:
        """Create the resource. Return ``(resource_id, attributes)``."""
        raise NotImplementedError

    def update(self, ctx: EngineContext, desired: R, prior: ObservedResource) -> dict[str, Any]:
        """Update the resource in place. Return its attributes."""
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        """Delete the resource. Return False if it was already gone."""
        raise NotImplementedError
