"""Default resource type registry factory."""

from __future__ import annotations

from stack_provisioner.engine.apigateway_handler import (
    ApiResourceHandler,
    DeploymentHandler,
    IntegrationHandler,
    MethodHandler,
    RestApiHandler,
    StageHandler,
)
from stack_provisioner.engine.archive_handler import ArchiveFileHandler, PolicyDocumentHandler
from stack_provisioner.engine.iam_handler import IamRoleHandler
from stack_provisioner.engine.lambda_handler import LambdaFunctionHandler, LambdaPermissionHandler
from stack_provisioner.engine.registry import ResourceTypeRegistry
from stack_provisioner.resources.api_gateway import (
    ApiGatewayDeployment,
    ApiGatewayIntegration,
    ApiGatewayMethod,
    ApiGatewayResource,
    ApiGatewayRestApi,
    ApiGatewayStage,
)
from stack_provisioner.resources.archive import ArchiveFile
from stack_provisioner.resources.iam import IamPolicyDocument, IamRole
from stack_provisioner.resources.lambda_function import LambdaFunction, LambdaPermission


def default_registry() -> ResourceTypeRegistry:
    """Create a fresh registry with all built-in resource kinds and handlers."""
    registry = ResourceTypeRegistry()

    registry.register(ArchiveFile, ArchiveFileHandler())
    registry.register(IamPolicyDocument, PolicyDocumentHandler())
    registry.register(IamRole, IamRoleHandler())

    registry.register(LambdaFunction, LambdaFunctionHandler())
    registry.register(LambdaPermission, LambdaPermissionHandler())

    registry.register(ApiGatewayRestApi, RestApiHandler())
    registry.register(ApiGatewayResource, ApiResourceHandler())
    registry.register(ApiGatewayMethod, MethodHandler())
    registry.register(ApiGatewayIntegration, IntegrationHandler())
    registry.register(ApiGatewayDeployment, DeploymentHandler())
    registry.register(ApiGatewayStage, StageHandler())

    return registry
