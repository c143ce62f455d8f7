"""Resource declarations and built-in kind schemas."""

from stack_provisioner.resources.api_gateway import (
    ApiGatewayDeployment,
    ApiGatewayIntegration,
    ApiGatewayMethod,
    ApiGatewayResource,
    ApiGatewayRestApi,
    ApiGatewayStage,
)
from stack_provisioner.resources.archive import ArchiveFile
from stack_provisioner.resources.base import (
    Lifecycle,
    ReplacementStrategy,
    ResourceKind,
    ResourceNode,
)
from stack_provisioner.resources.iam import IamPolicyDocument, IamRole
from stack_provisioner.resources.lambda_function import LambdaFunction, LambdaPermission
from stack_provisioner.resources.loader import resolve_local_paths
from stack_provisioner.resources.refs import UNKNOWN, AttributeRef

__all__ = [
    "UNKNOWN",
    "ApiGatewayDeployment",
    "ApiGatewayIntegration",
    "ApiGatewayMethod",
    "ApiGatewayResource",
    "ApiGatewayRestApi",
    "ApiGatewayStage",
    "ArchiveFile",
    "AttributeRef",
    "IamPolicyDocument",
    "IamRole",
    "LambdaFunction",
    "LambdaPermission",
    "Lifecycle",
    "ReplacementStrategy",
    "ResourceKind",
    "ResourceNode",
    "resolve_local_paths",
]
