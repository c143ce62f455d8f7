"""A function fronted by a REST API.

Topology (producer → consumer)::

    lambdaFile ─┐
    assumeRole → iamForLambda → lambdaFunction ─┬→ lambdaPermission
    api → resource → method ────────────────────┼→ integration
                                                └→ deployment → stage

The deployment snapshots the API, so it is redeployed whenever the ids of
the resource, method or integration change (its ``triggers``). It is
replaced create-first: the stage is re-pointed to the new snapshot before
the old one is deleted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from stack_provisioner.resources.base import Lifecycle, ResourceNode

if TYPE_CHECKING:
    from collections.abc import Callable


def _namer(prefix: str) -> Callable[[str], str]:
    return (lambda base: f"{prefix}-{base}") if prefix else (lambda base: base)


def _ref(name: str, attribute: str) -> str:
    return f"${{{name}.{attribute}}}"


def lambda_api_stack(
    *,
    prefix: str = "",
    source_dir: str = "src",
    output_path: str = "function.zip",
    function_name: str = "my-lambda-function",
    role_name: str = "iamForLambda",
    runtime: str = "python3.12",
    handler: str = "index.handler",
    environment: dict[str, str] | None = None,
    api_name: str = "myapi",
    path_part: str = "resource",
    http_method: str = "POST",
    stage_name: str = "prod",
) -> list[ResourceNode]:
    """Declare the function + REST API stack.

    Args:
        prefix: Prepended to every node name (``<prefix>-<name>``); lets the
            stack be instantiated more than once in a configuration.
        source_dir: Directory zipped into the function package.
        output_path: Where the zip is written.
        http_method: Method exposed on ``/<path_part>``.
        stage_name: Stage the API is published under.

    Returns:
        The stack's nodes, in no particular order.
    """
    n = _namer(prefix)
    archive, policy = n("lambdaFile"), n("assumeRole")
    role, function = n("iamForLambda"), n("lambdaFunction")
    api, resource, method = n("api"), n("resource"), n("method")
    integration, deployment = n("integration"), n("deployment")

    return [
        ResourceNode(
            kind="archive_file",
            name=archive,
            inputs={"source_dir": source_dir, "output_path": output_path, "type": "zip"},
        ),
        ResourceNode(
            kind="iam_policy_document",
            name=policy,
            inputs={
                "statement": [
                    {
                        "actions": ["sts:AssumeRole"],
                        "effect": "Allow",
                        "principals": [
                            {"type": "Service", "identifiers": ["lambda.amazonaws.com"]}
                        ],
                    }
                ]
            },
        ),
        ResourceNode(
            kind="iam_role",
            name=role,
            inputs={"name": role_name, "assume_role_policy": _ref(policy, "json")},
        ),
        ResourceNode(
            kind="lambda_function",
            name=function,
            inputs={
                "function_name": function_name,
                "runtime": runtime,
                "handler": handler,
                "role": _ref(role, "arn"),
                "source_code_hash": _ref(archive, "output_base64sha256"),
                "filename": _ref(archive, "output_path"),
                "environment": dict(environment or {}),
            },
        ),
        ResourceNode(
            kind="api_gateway_rest_api",
            name=api,
            inputs={"name": api_name},
        ),
        ResourceNode(
            kind="api_gateway_resource",
            name=resource,
            inputs={
                "rest_api_id": _ref(api, "id"),
                "parent_id": _ref(api, "root_resource_id"),
                "path_part": path_part,
            },
        ),
        ResourceNode(
            kind="api_gateway_method",
            name=method,
            inputs={
                "rest_api_id": _ref(api, "id"),
                "resource_id": _ref(resource, "id"),
                "http_method": http_method,
                "authorization": "NONE",
            },
        ),
        ResourceNode(
            kind="lambda_permission",
            name=n("lambdaPermission"),
            inputs={
                "statement_id": "AllowExecutionFromAPIGateway",
                "action": "lambda:InvokeFunction",
                "function_name": _ref(function, "function_name"),
                "principal": "apigateway.amazonaws.com",
                "source_arn": (
                    f"{_ref(api, 'execution_arn')}/*/"
                    f"{_ref(method, 'http_method')}{_ref(resource, 'path')}"
                ),
            },
        ),
        ResourceNode(
            kind="api_gateway_integration",
            name=integration,
            inputs={
                "rest_api_id": _ref(api, "id"),
                "resource_id": _ref(resource, "id"),
                "http_method": _ref(method, "http_method"),
                # Proxy integrations invoke the function with POST whatever the method.
                "integration_http_method": "POST",
                "type": "AWS_PROXY",
                "uri": _ref(function, "invoke_arn"),
            },
        ),
        ResourceNode(
            kind="api_gateway_deployment",
            name=deployment,
            inputs={"rest_api_id": _ref(api, "id")},
            triggers=[_ref(resource, "id"), _ref(method, "id"), _ref(integration, "id")],
            lifecycle=Lifecycle(create_before_destroy=True),
        ),
        ResourceNode(
            kind="api_gateway_stage",
            name=n("stage"),
            inputs={
                "rest_api_id": _ref(api, "id"),
                "stage_name": stage_name,
                "deployment_id": _ref(deployment, "id"),
            },
        ),
    ]

