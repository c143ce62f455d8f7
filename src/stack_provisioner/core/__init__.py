"""Core infrastructure components for stack-provisioner."""

from stack_provisioner.core.packaging import Artifact, build_artifact
from stack_provisioner.core.provider import AwsProvider
from stack_provisioner.core.state import DeposedResource, ObservedResource, ObservedState

__all__ = [
    "Artifact",
    "AwsProvider",
    "DeposedResource",
    "ObservedResource",
    "ObservedState",
    "build_artifact",
]
