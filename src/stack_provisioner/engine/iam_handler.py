"""IAM role handler implementing CRUD via the IAM API."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from stack_provisioner.engine.handlers import ResourceHandler, is_not_found

if TYPE_CHECKING:
    from stack_provisioner.core.state import ObservedResource
    from stack_provisioner.engine.handlers import EngineContext
    from stack_provisioner.resources.iam import IamRole

logger = logging.getLogger(__name__)


def _tag_list(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": k, "Value": v} for k, v in sorted(tags.items())]


class IamRoleHandler(ResourceHandler["IamRole"]):
    """CRUD handler for IAM roles and their managed policy attachments."""

    def validate(self, ctx: EngineContext, desired: IamRole) -> list[str]:
        _ = ctx
        try:
            json.loads(desired.assume_role_policy)
        except ValueError as exc:
            return [f"assume_role_policy is not valid JSON: {exc}"]
        return []

    def _iam(self, ctx: EngineContext) -> Any:
        return ctx.provider.client("iam")

    def _attached(self, ctx: EngineContext, name: str) -> list[str]:
        paginator = self._iam(ctx).get_paginator("list_attached_role_policies")
        arns: list[str] = []
        for page in paginator.paginate(RoleName=name):
            arns.extend(p["PolicyArn"] for p in page.get("AttachedPolicies", []))
        return sorted(arns)

    def _read_attrs(self, ctx: EngineContext, name: str) -> dict[str, Any]:
        role = self._iam(ctx).get_role(RoleName=name)["Role"]
        return {
            "id": role["RoleName"],
            "name": role["RoleName"],
            "arn": role["Arn"],
            "unique_id": role["RoleId"],
            "create_date": str(role["CreateDate"]),
            "managed_policy_arns": self._attached(ctx, name),
        }

    def _sync_policies(self, ctx: EngineContext, name: str, desired: list[str]) -> None:
        iam = self._iam(ctx)
        current = set(self._attached(ctx, name))
        for arn in sorted(set(desired) - current):
            iam.attach_role_policy(RoleName=name, PolicyArn=arn)
        for arn in sorted(current - set(desired)):
            iam.detach_role_policy(RoleName=name, PolicyArn=arn)

    def create(self, ctx: EngineContext, desired: IamRole) -> tuple[str, dict[str, Any]]:
        iam = self._iam(ctx)
        kwargs: dict[str, Any] = {
            "RoleName": desired.name,
            "Path": desired.path,
            "AssumeRolePolicyDocument": desired.assume_role_policy,
            "Description": desired.description,
        }
        if desired.tags:
            kwargs["Tags"] = _tag_list(desired.tags)
        iam.create_role(**kwargs)
        iam.get_waiter("role_exists").wait(
            RoleName=desired.name,
            WaiterConfig={"Delay": 1, "MaxAttempts": max(1, int(ctx.timeout))},
        )
        self._sync_policies(ctx, desired.name, desired.managed_policy_arns)
        return desired.name, self._read_attrs(ctx, desired.name)

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        try:
            return self._read_attrs(ctx, prior.resource_id)
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise

    def update(
        self, ctx: EngineContext, desired: IamRole, prior: ObservedResource
    ) -> dict[str, Any]:
        iam = self._iam(ctx)
        name = prior.resource_id
        iam.update_assume_role_policy(RoleName=name, PolicyDocument=desired.assume_role_policy)
        iam.update_role(RoleName=name, Description=desired.description)

        old_tags: dict[str, str] = prior.inputs.get("tags") or {}
        removed = sorted(set(old_tags) - set(desired.tags))
        if removed:
            iam.untag_role(RoleName=name, TagKeys=removed)
        if desired.tags:
            iam.tag_role(RoleName=name, Tags=_tag_list(desired.tags))

        self._sync_policies(ctx, name, desired.managed_policy_arns)
        return self._read_attrs(ctx, name)

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        iam = self._iam(ctx)
        name = prior.resource_id
        try:
            for arn in self._attached(ctx, name):
                iam.detach_role_policy(RoleName=name, PolicyArn=arn)
            paginator = iam.get_paginator("list_role_policies")
            for page in paginator.paginate(RoleName=name):
                for policy in page.get("PolicyNames", []):
                    iam.delete_role_policy(RoleName=name, PolicyName=policy)
            iam.delete_role(RoleName=name)
        except ClientError as exc:
            if is_not_found(exc):
                return False
            raise
        return True
