"""Lambda function and permission handlers."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from stack_provisioner.core.packaging import file_digest
from stack_provisioner.engine.handlers import ResourceHandler, error_code, is_not_found

if TYPE_CHECKING:
    from stack_provisioner.core.state import ObservedResource
    from stack_provisioner.engine.handlers import EngineContext
    from stack_provisioner.resources.lambda_function import LambdaFunction, LambdaPermission

logger = logging.getLogger(__name__)

# A freshly created role takes a few seconds before the function service may assume it.
_ROLE_PROPAGATION_DELAY = 2.0


def invoke_arn(region: str, function_arn: str) -> str:
    """URI an API gateway integration uses to call *function_arn*."""
    return (
        f"arn:aws:apigateway:{region}:lambda:path/2015-03-31/functions/"
        f"{function_arn}/invocations"
    )


def _waiter_config(ctx: EngineContext, delay: int = 2) -> dict[str, int]:
    return {"Delay": delay, "MaxAttempts": max(1, int(ctx.timeout // delay))}


def _is_role_propagation(exc: ClientError) -> bool:
    message = exc.response.get("Error", {}).get("Message", "")
    return error_code(exc) == "InvalidParameterValueException" and "assume" in message


class LambdaFunctionHandler(ResourceHandler["LambdaFunction"]):
    """CRUD handler for Lambda functions deployed from a zip on disk."""

    def validate(self, ctx: EngineContext, desired: LambdaFunction) -> list[str]:
        _ = ctx
        if not Path(desired.filename).is_file():
            return [f"filename '{desired.filename}' does not exist"]
        return []

    def _lambda(self, ctx: EngineContext) -> Any:
        return ctx.provider.client("lambda")

    def _read_attrs(self, ctx: EngineContext, name: str) -> dict[str, Any]:
        config = self._lambda(ctx).get_function(FunctionName=name)["Configuration"]
        arn = config["FunctionArn"]
        return {
            "id": config["FunctionName"],
            "function_name": config["FunctionName"],
            "arn": arn,
            "invoke_arn": invoke_arn(ctx.provider.region_name, arn),
            "qualified_arn": f"{arn}:{config.get('Version', '$LATEST')}",
            "version": config.get("Version", "$LATEST"),
            "last_modified": config.get("LastModified", ""),
            "source_code_hash": config["CodeSha256"],
        }

    def _configuration(self, desired: LambdaFunction) -> dict[str, Any]:
        return {
            "FunctionName": desired.function_name,
            "Role": desired.role,
            "Handler": desired.handler,
            "Runtime": desired.runtime,
            "Description": desired.description,
            "Timeout": desired.timeout,
            "MemorySize": desired.memory_size,
            "Environment": {"Variables": dict(desired.environment)},
        }

    def create(self, ctx: EngineContext, desired: LambdaFunction) -> tuple[str, dict[str, Any]]:
        client = self._lambda(ctx)
        code = Path(desired.filename).read_bytes()
        deadline = time.monotonic() + ctx.timeout
        while True:
            try:
                client.create_function(
                    **self._configuration(desired),
                    Code={"ZipFile": code},
                    Publish=False,
                )
                break
            except ClientError as exc:
                if not _is_role_propagation(exc) or time.monotonic() >= deadline:
                    raise
                logger.debug("Role for %s not assumable yet, retrying", desired.function_name)
                time.sleep(_ROLE_PROPAGATION_DELAY)

        client.get_waiter("function_active_v2").wait(
            FunctionName=desired.function_name, WaiterConfig=_waiter_config(ctx)
        )
        return desired.function_name, self._read_attrs(ctx, desired.function_name)

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        try:
            return self._read_attrs(ctx, prior.resource_id)
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise

    def update(
        self, ctx: EngineContext, desired: LambdaFunction, prior: ObservedResource
    ) -> dict[str, Any]:
        client = self._lambda(ctx)
        name = prior.resource_id
        waiter = client.get_waiter("function_updated_v2")

        if file_digest(Path(desired.filename)) != prior.attributes.get("source_code_hash"):
            logger.debug("Uploading new code for %s", name)
            client.update_function_code(
                FunctionName=name, ZipFile=Path(desired.filename).read_bytes()
            )
            waiter.wait(FunctionName=name, WaiterConfig=_waiter_config(ctx))

        config = self._configuration(desired)
        config["FunctionName"] = name
        client.update_function_configuration(**config)
        waiter.wait(FunctionName=name, WaiterConfig=_waiter_config(ctx))
        return self._read_attrs(ctx, name)

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        try:
            self._lambda(ctx).delete_function(FunctionName=prior.resource_id)
        except ClientError as exc:
            if is_not_found(exc):
                return False
            raise
        return True


class LambdaPermissionHandler(ResourceHandler["LambdaPermission"]):
    """Manages one statement of a function's resource policy."""

    def _lambda(self, ctx: EngineContext) -> Any:
        return ctx.provider.client("lambda")

    def _add(self, ctx: EngineContext, desired: LambdaPermission) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "FunctionName": desired.function_name,
            "StatementId": desired.statement_id,
            "Action": desired.action,
            "Principal": desired.principal,
        }
        if desired.source_arn:
            kwargs["SourceArn"] = desired.source_arn
        self._lambda(ctx).add_permission(**kwargs)
        return {"id": desired.statement_id, "statement_id": desired.statement_id}

    def create(
        self, ctx: EngineContext, desired: LambdaPermission
    ) -> tuple[str, dict[str, Any]]:
        return desired.statement_id, self._add(ctx, desired)

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        function_name = prior.inputs.get("function_name")
        try:
            policy = self._lambda(ctx).get_policy(FunctionName=function_name)["Policy"]
        except ClientError as exc:
            if is_not_found(exc):
                return None
            raise
        for statement in json.loads(policy).get("Statement", []):
            if statement.get("Sid") == prior.resource_id:
                return {"id": prior.resource_id, "statement_id": prior.resource_id}
        return None

    def update(
        self, ctx: EngineContext, desired: LambdaPermission, prior: ObservedResource
    ) -> dict[str, Any]:
        # Statements are immutable; re-issue it.
        self.delete(ctx, prior)
        return self._add(ctx, desired)

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        try:
            self._lambda(ctx).remove_permission(
                FunctionName=prior.inputs.get("function_name"),
                StatementId=prior.resource_id,
            )
        except ClientError as exc:
            if is_not_found(exc):
                return False
            raise
        return True
