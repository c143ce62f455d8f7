"""IAM resource kinds."""

from __future__ import annotations

import hashlib
import json
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from stack_provisioner.resources.base import ResourceKind
from stack_provisioner.resources.markers import Compare, ForceNew
from stack_provisioner.resources.refs import contains_unknown, known_subset


class PolicyPrincipal(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: str
    identifiers: list[str]


class PolicyStatement(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sid: str | None = None
    effect: Literal["Allow", "Deny"] = "Allow"
    actions: list[str] = Field(min_length=1)
    principals: list[PolicyPrincipal] = []
    resources: list[str] = []


def _one_or_many(values: list[str]) -> str | list[str]:
    return values[0] if len(values) == 1 else list(values)


class IamPolicyDocument(ResourceKind):
    """A rendered IAM policy document.

    Purely local: the JSON is fully derived from the statements.
    """

    kind: ClassVar[str] = "iam_policy_document"
    attributes: ClassVar[frozenset[str]] = frozenset({"id", "json"})

    version: str = "2012-10-17"
    statement: list[PolicyStatement] = Field(min_length=1)

    def to_json(self) -> str:
        statements: list[dict[str, Any]] = []
        for s in self.statement:
            rendered: dict[str, Any] = {}
            if s.sid:
                rendered["Sid"] = s.sid
            rendered["Effect"] = s.effect
            rendered["Action"] = _one_or_many(s.actions)
            if s.resources:
                rendered["Resource"] = _one_or_many(s.resources)
            if s.principals:
                rendered["Principal"] = {
                    p.type: _one_or_many(p.identifiers) for p in s.principals
                }
            statements.append(rendered)
        return json.dumps({"Version": self.version, "Statement": statements}, indent=2)

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        if contains_unknown(inputs):
            return {}
        try:
            doc = cls.model_validate(inputs)
        except ValidationError:
            return {}
        rendered = doc.to_json()
        return {"id": hashlib.sha256(rendered.encode("utf-8")).hexdigest(), "json": rendered}


class IamRole(ResourceKind):
    """An IAM role assumable by the function service."""

    kind: ClassVar[str] = "iam_role"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "arn", "name", "unique_id", "create_date"}
    )

    name: Annotated[str, ForceNew()]
    assume_role_policy: str
    path: Annotated[str, ForceNew()] = "/"
    description: str = ""
    managed_policy_arns: Annotated[list[str], Compare("set")] = []
    tags: Annotated[dict[str, str], Compare("exact")] = {}

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        attrs = known_subset(inputs, "name")
        if "name" in attrs:
            attrs["id"] = attrs["name"]
        return attrs
