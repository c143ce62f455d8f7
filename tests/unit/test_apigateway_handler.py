"""Tests for the REST API gateway handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from stack_provisioner.core.state import ObservedResource
from stack_provisioner.engine.apigateway_handler import (
    ApiResourceHandler,
    DeploymentHandler,
    IntegrationHandler,
    MethodHandler,
    RestApiHandler,
    StageHandler,
)
from stack_provisioner.resources.api_gateway import (
    ApiGatewayDeployment,
    ApiGatewayIntegration,
    ApiGatewayMethod,
    ApiGatewayResource,
    ApiGatewayRestApi,
    ApiGatewayStage,
)

if TYPE_CHECKING:
    from collections import defaultdict

    from stack_provisioner.engine.handlers import EngineContext


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, "Op")


@pytest.fixture
def api(aws_clients: defaultdict[str, MagicMock]) -> MagicMock:
    aws_clients["sts"].get_caller_identity.return_value = {"Account": "123456789012"}
    return aws_clients["apigateway"]


def _prior(kind: str, rid: str, **inputs: Any) -> ObservedResource:
    return ObservedResource(name="x", kind=kind, resource_id=rid, inputs=inputs)


_METHOD_INPUTS = {"rest_api_id": "abc", "resource_id": "res1", "http_method": "POST"}


class TestRestApi:
    def test_create(self, ctx: EngineContext, api: MagicMock) -> None:
        api.create_rest_api.return_value = {"id": "abc", "name": "myapi", "rootResourceId": "r00t"}

        resource_id, attrs = RestApiHandler().create(ctx, ApiGatewayRestApi(name="myapi"))

        api.create_rest_api.assert_called_once_with(
            name="myapi", description="", endpointConfiguration={"types": ["EDGE"]}
        )
        assert resource_id == "abc"
        assert attrs["root_resource_id"] == "r00t"
        assert attrs["execution_arn"] == "arn:aws:execute-api:us-east-1:123456789012:abc"
        assert attrs["arn"] == "arn:aws:apigateway:us-east-1::/restapis/abc"

    def test_root_resource_looked_up_when_missing(
        self, ctx: EngineContext, api: MagicMock
    ) -> None:
        api.create_rest_api.return_value = {"id": "abc", "name": "myapi"}
        api.get_paginator.return_value.paginate.return_value = [
            {"items": [{"id": "child", "path": "/x"}, {"id": "r00t", "path": "/"}]}
        ]

        _, attrs = RestApiHandler().create(ctx, ApiGatewayRestApi(name="myapi"))

        assert attrs["root_resource_id"] == "r00t"

    def test_read_missing(self, ctx: EngineContext, api: MagicMock) -> None:
        api.get_rest_api.side_effect = _client_error("NotFoundException")
        assert RestApiHandler().read(ctx, _prior("api_gateway_rest_api", "abc")) is None

    def test_read_other_error(self, ctx: EngineContext, api: MagicMock) -> None:
        api.get_rest_api.side_effect = _client_error("TooManyRequestsException")
        with pytest.raises(ClientError):
            RestApiHandler().read(ctx, _prior("api_gateway_rest_api", "abc"))

    def test_delete_already_gone(self, ctx: EngineContext, api: MagicMock) -> None:
        api.delete_rest_api.side_effect = _client_error("NotFoundException")
        assert RestApiHandler().delete(ctx, _prior("api_gateway_rest_api", "abc")) is False


class TestResource:
    def test_create(self, ctx: EngineContext, api: MagicMock) -> None:
        api.create_resource.return_value = {
            "id": "res1",
            "path": "/resource",
            "parentId": "r00t",
            "pathPart": "resource",
        }
        desired = ApiGatewayResource(rest_api_id="abc", parent_id="r00t", path_part="resource")

        resource_id, attrs = ApiResourceHandler().create(ctx, desired)

        api.create_resource.assert_called_once_with(
            restApiId="abc", parentId="r00t", pathPart="resource"
        )
        assert resource_id == "res1"
        assert attrs["path"] == "/resource"

    def test_delete(self, ctx: EngineContext, api: MagicMock) -> None:
        prior = _prior("api_gateway_resource", "res1", rest_api_id="abc")
        assert ApiResourceHandler().delete(ctx, prior) is True
        api.delete_resource.assert_called_once_with(restApiId="abc", resourceId="res1")


class TestMethodAndIntegration:
    def test_method_create_uses_composite_id(self, ctx: EngineContext, api: MagicMock) -> None:
        desired = ApiGatewayMethod(**_METHOD_INPUTS)

        resource_id, attrs = MethodHandler().create(ctx, desired)

        api.put_method.assert_called_once_with(
            restApiId="abc",
            resourceId="res1",
            httpMethod="POST",
            authorizationType="NONE",
            apiKeyRequired=False,
        )
        assert resource_id == "agm-abc-res1-POST"
        assert attrs["http_method"] == "POST"

    def test_method_update_patches(self, ctx: EngineContext, api: MagicMock) -> None:
        desired = ApiGatewayMethod(**_METHOD_INPUTS, authorization="AWS_IAM")
        prior = _prior("api_gateway_method", "agm-abc-res1-POST", **_METHOD_INPUTS)

        MethodHandler().update(ctx, desired, prior)

        ops = api.update_method.call_args.kwargs["patchOperations"]
        assert {"op": "replace", "path": "/authorizationType", "value": "AWS_IAM"} in ops

    def test_integration_create(self, ctx: EngineContext, api: MagicMock) -> None:
        desired = ApiGatewayIntegration(
            **_METHOD_INPUTS,
            type="AWS_PROXY",
            integration_http_method="POST",
            uri="arn:aws:apigateway:us-east-1:lambda:path/fn",
        )

        resource_id, attrs = IntegrationHandler().create(ctx, desired)

        kwargs = api.put_integration.call_args.kwargs
        assert kwargs["integrationHttpMethod"] == "POST"
        assert kwargs["uri"] == "arn:aws:apigateway:us-east-1:lambda:path/fn"
        assert kwargs["timeoutInMillis"] == 29000
        assert resource_id == "agi-abc-res1-POST"
        assert attrs["type"] == "AWS_PROXY"

    def test_integration_read_reflects_live_uri(self, ctx: EngineContext, api: MagicMock) -> None:
        api.get_integration.return_value = {"type": "AWS_PROXY", "uri": "live-uri"}
        prior = _prior(
            "api_gateway_integration", "agi-abc-res1-POST", **_METHOD_INPUTS, type="AWS_PROXY"
        )

        attrs = IntegrationHandler().read(ctx, prior)

        assert attrs is not None
        assert attrs["uri"] == "live-uri"


class TestDeploymentAndStage:
    def test_deployment_create(self, ctx: EngineContext, api: MagicMock) -> None:
        api.create_deployment.return_value = {"id": "dep1", "createdDate": "2024-01-01"}

        resource_id, attrs = DeploymentHandler().create(
            ctx, ApiGatewayDeployment(rest_api_id="abc")
        )

        assert resource_id == "dep1"
        assert attrs["invoke_url"] == "https://abc.execute-api.us-east-1.amazonaws.com/"

    def test_deployment_delete_in_use_propagates(
        self, ctx: EngineContext, api: MagicMock
    ) -> None:
        api.delete_deployment.side_effect = _client_error("BadRequestException")
        prior = _prior("api_gateway_deployment", "dep1", rest_api_id="abc")
        with pytest.raises(ClientError):
            DeploymentHandler().delete(ctx, prior)

    def test_stage_create(self, ctx: EngineContext, api: MagicMock) -> None:
        desired = ApiGatewayStage(rest_api_id="abc", stage_name="prod", deployment_id="dep1")

        resource_id, attrs = StageHandler().create(ctx, desired)

        assert api.create_stage.call_args.kwargs["deploymentId"] == "dep1"
        assert resource_id == "ags-abc-prod"
        assert attrs["invoke_url"] == "https://abc.execute-api.us-east-1.amazonaws.com/prod"

    def test_stage_update_repoints_deployment(self, ctx: EngineContext, api: MagicMock) -> None:
        desired = ApiGatewayStage(
            rest_api_id="abc", stage_name="prod", deployment_id="dep2", variables={"a": "1"}
        )
        prior = _prior(
            "api_gateway_stage",
            "ags-abc-prod",
            rest_api_id="abc",
            stage_name="prod",
            variables={"old": "x"},
        )

        attrs = StageHandler().update(ctx, desired, prior)

        ops = api.update_stage.call_args.kwargs["patchOperations"]
        assert ops == [
            {"op": "replace", "path": "/deploymentId", "value": "dep2"},
            {"op": "replace", "path": "/description", "value": ""},
            {"op": "replace", "path": "/variables/a", "value": "1"},
            {"op": "remove", "path": "/variables/old"},
        ]
        assert attrs["deployment_id"] == "dep2"
