"""HTTP API gateway resource kinds (REST API flavour)."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from pydantic import Field

from stack_provisioner.resources.base import ResourceKind
from stack_provisioner.resources.markers import Compare, ForceNew
from stack_provisioner.resources.refs import known_subset

HttpMethod = Literal["ANY", "DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT"]


def _composite_id(prefix: str, attrs: dict[str, Any], *parts: str) -> dict[str, Any]:
    """Add ``id = prefix-part1-part2...`` when every part is known."""
    if all(p in attrs for p in parts):
        attrs["id"] = "-".join([prefix, *(str(attrs[p]) for p in parts)])
    return attrs


class ApiGatewayRestApi(ResourceKind):
    kind: ClassVar[str] = "api_gateway_rest_api"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "root_resource_id", "execution_arn", "arn", "created_date", "name"}
    )

    name: str
    description: str = ""
    endpoint_types: Annotated[
        list[Literal["EDGE", "REGIONAL", "PRIVATE"]], ForceNew(), Compare("set")
    ] = ["EDGE"]

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        return known_subset(inputs, "name")


class ApiGatewayResource(ResourceKind):
    """A path segment under a REST API."""

    kind: ClassVar[str] = "api_gateway_resource"
    attributes: ClassVar[frozenset[str]] = frozenset({"id", "path", "parent_id", "path_part"})

    rest_api_id: Annotated[str, ForceNew()]
    parent_id: Annotated[str, ForceNew()]
    path_part: Annotated[str, ForceNew()] = Field(min_length=1)

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        return known_subset(inputs, "parent_id", "path_part")


class ApiGatewayMethod(ResourceKind):
    kind: ClassVar[str] = "api_gateway_method"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "http_method", "resource_id", "rest_api_id"}
    )

    rest_api_id: Annotated[str, ForceNew()]
    resource_id: Annotated[str, ForceNew()]
    http_method: Annotated[HttpMethod, ForceNew()]
    authorization: str = "NONE"
    api_key_required: bool = False

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        attrs = known_subset(inputs, "rest_api_id", "resource_id", "http_method")
        return _composite_id("agm", attrs, "rest_api_id", "resource_id", "http_method")


class ApiGatewayIntegration(ResourceKind):
    """Wires a method to a backend (``AWS_PROXY`` for a Lambda function)."""

    kind: ClassVar[str] = "api_gateway_integration"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "http_method", "resource_id", "rest_api_id", "uri", "type"}
    )

    rest_api_id: Annotated[str, ForceNew()]
    resource_id: Annotated[str, ForceNew()]
    http_method: Annotated[HttpMethod, ForceNew()]
    type: Literal["AWS", "AWS_PROXY", "HTTP", "HTTP_PROXY", "MOCK"]
    # Lambda proxy integrations are always invoked with POST.
    integration_http_method: HttpMethod | None = None
    uri: str | None = None
    timeout_milliseconds: int = Field(default=29000, ge=50, le=29000)

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        attrs = known_subset(inputs, "rest_api_id", "resource_id", "http_method", "uri", "type")
        return _composite_id("agi", attrs, "rest_api_id", "resource_id", "http_method")


class ApiGatewayDeployment(ResourceKind):
    """An immutable snapshot of a REST API's configuration.

    Usually declared with ``triggers`` over the ids it snapshots and with
    ``create_before_destroy`` so stages are re-pointed before the old
    snapshot goes away.
    """

    kind: ClassVar[str] = "api_gateway_deployment"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "invoke_url", "execution_arn", "created_date"}
    )

    rest_api_id: Annotated[str, ForceNew()]
    description: str = ""


class ApiGatewayStage(ResourceKind):
    kind: ClassVar[str] = "api_gateway_stage"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "stage_name", "invoke_url", "execution_arn", "arn"}
    )

    rest_api_id: Annotated[str, ForceNew()]
    stage_name: Annotated[str, ForceNew()] = Field(pattern=r"^[A-Za-z0-9_-]{1,128}$")
    deployment_id: str
    description: str = ""
    variables: Annotated[dict[str, str], Compare("exact")] = {}

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        attrs = known_subset(inputs, "rest_api_id", "stage_name")
        return _composite_id("ags", attrs, "rest_api_id", "stage_name")
