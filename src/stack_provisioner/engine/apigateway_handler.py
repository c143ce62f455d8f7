"""REST API gateway handlers implementing CRUD via the apigateway API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from stack_provisioner.engine.handlers import ResourceHandler, is_not_found

if TYPE_CHECKING:
    from stack_provisioner.core.state import ObservedResource
    from stack_provisioner.engine.handlers import EngineContext
    from stack_provisioner.resources.api_gateway import (
        ApiGatewayDeployment,
        ApiGatewayIntegration,
        ApiGatewayMethod,
        ApiGatewayResource,
        ApiGatewayRestApi,
        ApiGatewayStage,
    )

logger = logging.getLogger(__name__)


def execution_arn(ctx: EngineContext, rest_api_id: str) -> str:
    return f"arn:aws:execute-api:{ctx.provider.region_name}:{ctx.provider.account_id}:{rest_api_id}"


def invoke_url(ctx: EngineContext, rest_api_id: str, stage: str = "") -> str:
    return f"https://{rest_api_id}.execute-api.{ctx.provider.region_name}.amazonaws.com/{stage}"


def _replace(path: str, value: Any) -> dict[str, str]:
    return {"op": "replace", "path": path, "value": str(value)}


class _ApiGatewayHandler(ResourceHandler[Any]):
    """Shared plumbing: client access and not-found handling."""

    def _api(self, ctx: EngineContext) -> Any:
        return ctx.provider.client("apigateway")

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        raise NotImplementedError

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        try:
            return self._read_attrs(ctx, prior)
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        raise NotImplementedError

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        try:
            self._delete(ctx, prior)
        except ClientError as exc:
            if is_not_found(exc):
                return False
            raise
        return True


class RestApiHandler(_ApiGatewayHandler):
    def _attrs(self, ctx: EngineContext, api: dict[str, Any], root_id: str) -> dict[str, Any]:
        region = ctx.provider.region_name
        return {
            "id": api["id"],
            "name": api["name"],
            "root_resource_id": root_id,
            "execution_arn": execution_arn(ctx, api["id"]),
            "arn": f"arn:aws:apigateway:{region}::/restapis/{api['id']}",
            "created_date": str(api.get("createdDate", "")),
        }

    def _root_id(self, ctx: EngineContext, rest_api_id: str) -> str:
        paginator = self._api(ctx).get_paginator("get_resources")
        for page in paginator.paginate(restApiId=rest_api_id):
            for item in page.get("items", []):
                if item.get("path") == "/":
                    return item["id"]
        raise RuntimeError(f"REST API {rest_api_id} has no root resource")

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        api = self._api(ctx).get_rest_api(restApiId=prior.resource_id)
        root_id = api.get("rootResourceId") or self._root_id(ctx, prior.resource_id)
        return self._attrs(ctx, api, root_id)

    def create(self, ctx: EngineContext, desired: ApiGatewayRestApi) -> tuple[str, dict[str, Any]]:
        api = self._api(ctx).create_rest_api(
            name=desired.name,
            description=desired.description,
            endpointConfiguration={"types": list(desired.endpoint_types)},
        )
        root_id = api.get("rootResourceId") or self._root_id(ctx, api["id"])
        return api["id"], self._attrs(ctx, api, root_id)

    def update(
        self, ctx: EngineContext, desired: ApiGatewayRestApi, prior: ObservedResource
    ) -> dict[str, Any]:
        api = self._api(ctx).update_rest_api(
            restApiId=prior.resource_id,
            patchOperations=[
                _replace("/name", desired.name),
                _replace("/description", desired.description),
            ],
        )
        root_id = prior.attributes.get("root_resource_id") or self._root_id(ctx, api["id"])
        return self._attrs(ctx, api, root_id)

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        self._api(ctx).delete_rest_api(restApiId=prior.resource_id)


class ApiResourceHandler(_ApiGatewayHandler):
    @staticmethod
    def _attrs(item: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": item["id"],
            "path": item.get("path", ""),
            "parent_id": item.get("parentId"),
            "path_part": item.get("pathPart"),
        }

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        item = self._api(ctx).get_resource(
            restApiId=prior.inputs["rest_api_id"], resourceId=prior.resource_id
        )
        return self._attrs(item)

    def create(
        self, ctx: EngineContext, desired: ApiGatewayResource
    ) -> tuple[str, dict[str, Any]]:
        item = self._api(ctx).create_resource(
            restApiId=desired.rest_api_id, parentId=desired.parent_id, pathPart=desired.path_part
        )
        return item["id"], self._attrs(item)

    def update(
        self, ctx: EngineContext, desired: ApiGatewayResource, prior: ObservedResource
    ) -> dict[str, Any]:
        # Every input forces replacement; nothing to change in place.
        _ = desired
        return self._read_attrs(ctx, prior)

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        self._api(ctx).delete_resource(
            restApiId=prior.inputs["rest_api_id"], resourceId=prior.resource_id
        )


class MethodHandler(_ApiGatewayHandler):
    @staticmethod
    def _key(inputs: dict[str, Any]) -> dict[str, str]:
        return {
            "restApiId": inputs["rest_api_id"],
            "resourceId": inputs["resource_id"],
            "httpMethod": inputs["http_method"],
        }

    @staticmethod
    def _attrs(inputs: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": f"agm-{inputs['rest_api_id']}-{inputs['resource_id']}-{inputs['http_method']}",
            "rest_api_id": inputs["rest_api_id"],
            "resource_id": inputs["resource_id"],
            "http_method": inputs["http_method"],
        }

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        self._api(ctx).get_method(**self._key(prior.inputs))
        return self._attrs(prior.inputs)

    def create(self, ctx: EngineContext, desired: ApiGatewayMethod) -> tuple[str, dict[str, Any]]:
        inputs = desired.model_dump()
        self._api(ctx).put_method(
            **self._key(inputs),
            authorizationType=desired.authorization,
            apiKeyRequired=desired.api_key_required,
        )
        attrs = self._attrs(inputs)
        return attrs["id"], attrs

    def update(
        self, ctx: EngineContext, desired: ApiGatewayMethod, prior: ObservedResource
    ) -> dict[str, Any]:
        self._api(ctx).update_method(
            **self._key(prior.inputs),
            patchOperations=[
                _replace("/authorizationType", desired.authorization),
                _replace("/apiKeyRequired", str(desired.api_key_required).lower()),
            ],
        )
        return self._attrs(prior.inputs)

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        self._api(ctx).delete_method(**self._key(prior.inputs))


class IntegrationHandler(_ApiGatewayHandler):
    @staticmethod
    def _attrs(inputs: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": f"agi-{inputs['rest_api_id']}-{inputs['resource_id']}-{inputs['http_method']}",
            "rest_api_id": inputs["rest_api_id"],
            "resource_id": inputs["resource_id"],
            "http_method": inputs["http_method"],
            "type": inputs["type"],
            "uri": inputs.get("uri"),
        }

    def _put(self, ctx: EngineContext, desired: ApiGatewayIntegration) -> dict[str, Any]:
        inputs = desired.model_dump()
        kwargs: dict[str, Any] = {
            **MethodHandler._key(inputs),
            "type": desired.type,
            "timeoutInMillis": desired.timeout_milliseconds,
        }
        if desired.integration_http_method:
            kwargs["integrationHttpMethod"] = desired.integration_http_method
        if desired.uri:
            kwargs["uri"] = desired.uri
        self._api(ctx).put_integration(**kwargs)
        return self._attrs(inputs)

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        live = self._api(ctx).get_integration(**MethodHandler._key(prior.inputs))
        attrs = self._attrs(prior.inputs)
        attrs["type"] = live.get("type", attrs["type"])
        attrs["uri"] = live.get("uri", attrs["uri"])
        return attrs

    def create(
        self, ctx: EngineContext, desired: ApiGatewayIntegration
    ) -> tuple[str, dict[str, Any]]:
        attrs = self._put(ctx, desired)
        return attrs["id"], attrs

    def update(
        self, ctx: EngineContext, desired: ApiGatewayIntegration, prior: ObservedResource
    ) -> dict[str, Any]:
        # put_integration overwrites the existing integration.
        _ = prior
        return self._put(ctx, desired)

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        self._api(ctx).delete_integration(**MethodHandler._key(prior.inputs))


class DeploymentHandler(_ApiGatewayHandler):
    """Deployments are snapshots; only the description changes in place."""

    def _attrs(self, ctx: EngineContext, rest_api_id: str, item: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": item["id"],
            "invoke_url": invoke_url(ctx, rest_api_id),
            "execution_arn": f"{execution_arn(ctx, rest_api_id)}/",
            "created_date": str(item.get("createdDate", "")),
        }

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        rest_api_id = prior.inputs["rest_api_id"]
        item = self._api(ctx).get_deployment(
            restApiId=rest_api_id, deploymentId=prior.resource_id
        )
        return self._attrs(ctx, rest_api_id, item)

    def create(
        self, ctx: EngineContext, desired: ApiGatewayDeployment
    ) -> tuple[str, dict[str, Any]]:
        item = self._api(ctx).create_deployment(
            restApiId=desired.rest_api_id, description=desired.description
        )
        return item["id"], self._attrs(ctx, desired.rest_api_id, item)

    def update(
        self, ctx: EngineContext, desired: ApiGatewayDeployment, prior: ObservedResource
    ) -> dict[str, Any]:
        item = self._api(ctx).update_deployment(
            restApiId=desired.rest_api_id,
            deploymentId=prior.resource_id,
            patchOperations=[_replace("/description", desired.description)],
        )
        return self._attrs(ctx, desired.rest_api_id, item)

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        self._api(ctx).delete_deployment(
            restApiId=prior.inputs["rest_api_id"], deploymentId=prior.resource_id
        )


class StageHandler(_ApiGatewayHandler):
    def _attrs(self, ctx: EngineContext, rest_api_id: str, stage: str) -> dict[str, Any]:
        region = ctx.provider.region_name
        return {
            "id": f"ags-{rest_api_id}-{stage}",
            "rest_api_id": rest_api_id,
            "stage_name": stage,
            "invoke_url": invoke_url(ctx, rest_api_id, stage),
            "execution_arn": f"{execution_arn(ctx, rest_api_id)}/{stage}",
            "arn": f"arn:aws:apigateway:{region}::/restapis/{rest_api_id}/stages/{stage}",
        }

    def _read_attrs(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any]:
        rest_api_id = prior.inputs["rest_api_id"]
        stage = prior.inputs["stage_name"]
        live = self._api(ctx).get_stage(restApiId=rest_api_id, stageName=stage)
        attrs = self._attrs(ctx, rest_api_id, stage)
        attrs["deployment_id"] = live.get("deploymentId")
        return attrs

    def create(self, ctx: EngineContext, desired: ApiGatewayStage) -> tuple[str, dict[str, Any]]:
        self._api(ctx).create_stage(
            restApiId=desired.rest_api_id,
            stageName=desired.stage_name,
            deploymentId=desired.deployment_id,
            description=desired.description,
            variables=dict(desired.variables),
        )
        attrs = self._attrs(ctx, desired.rest_api_id, desired.stage_name)
        attrs["deployment_id"] = desired.deployment_id
        return attrs["id"], attrs

    def update(
        self, ctx: EngineContext, desired: ApiGatewayStage, prior: ObservedResource
    ) -> dict[str, Any]:
        ops = [
            _replace("/deploymentId", desired.deployment_id),
            _replace("/description", desired.description),
        ]
        old_vars: dict[str, str] = prior.inputs.get("variables") or {}
        ops.extend(_replace(f"/variables/{k}", v) for k, v in sorted(desired.variables.items()))
        ops.extend(
            {"op": "remove", "path": f"/variables/{k}"}
            for k in sorted(set(old_vars) - set(desired.variables))
        )
        self._api(ctx).update_stage(
            restApiId=desired.rest_api_id, stageName=desired.stage_name, patchOperations=ops
        )
        attrs = self._attrs(ctx, desired.rest_api_id, desired.stage_name)
        attrs["deployment_id"] = desired.deployment_id
        return attrs

    def _delete(self, ctx: EngineContext, prior: ObservedResource) -> None:
        self._api(ctx).delete_stage(
            restApiId=prior.inputs["rest_api_id"], stageName=prior.inputs["stage_name"]
        )
