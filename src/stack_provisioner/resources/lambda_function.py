"""Function execution resource kinds."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar

from pydantic import Field

from stack_provisioner.resources.base import ResourceKind
from stack_provisioner.resources.markers import Compare, ForceNew
from stack_provisioner.resources.refs import known_subset


class LambdaFunction(ResourceKind):
    """A Lambda function deployed from a local zip archive."""

    kind: ClassVar[str] = "lambda_function"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {
            "id",
            "arn",
            "invoke_arn",
            "function_name",
            "qualified_arn",
            "version",
            "last_modified",
            "source_code_hash",
        }
    )
    volatile_attributes: ClassVar[frozenset[str]] = frozenset(
        {"qualified_arn", "version", "last_modified"}
    )

    function_name: Annotated[str, ForceNew()] = Field(pattern=r"^[A-Za-z0-9_-]{1,64}$")
    role: str
    handler: str
    runtime: str
    filename: str
    source_code_hash: str | None = None
    description: str = ""
    timeout: int = Field(default=3, ge=1, le=900)
    memory_size: int = Field(default=128, ge=128, le=10240)
    environment: Annotated[dict[str, str], Compare("exact")] = {}

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        attrs = known_subset(inputs, "function_name", "source_code_hash")
        if "function_name" in attrs:
            attrs["id"] = attrs["function_name"]
        return attrs


class LambdaPermission(ResourceKind):
    """A resource-policy statement allowing a principal to invoke a function."""

    kind: ClassVar[str] = "lambda_permission"
    attributes: ClassVar[frozenset[str]] = frozenset({"id", "statement_id"})

    statement_id: Annotated[str, ForceNew()]
    action: Annotated[str, ForceNew()] = "lambda:InvokeFunction"
    function_name: Annotated[str, ForceNew()]
    principal: Annotated[str, ForceNew()]
    source_arn: Annotated[str | None, ForceNew()] = None

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        attrs = known_subset(inputs, "statement_id")
        if "statement_id" in attrs:
            attrs["id"] = attrs["statement_id"]
        return attrs
