"""Tests for ResourceNode declarations and kind input checks."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from stack_provisioner.resources.api_gateway import ApiGatewayMethod, ApiGatewayStage
from stack_provisioner.resources.archive import ArchiveFile
from stack_provisioner.resources.base import Lifecycle, ReplacementStrategy, ResourceNode
from stack_provisioner.resources.iam import IamPolicyDocument, IamRole
from stack_provisioner.resources.lambda_function import LambdaFunction
from stack_provisioner.resources.refs import UNKNOWN, AttributeRef


class TestResourceNode:
    def test_refs_are_parsed(self) -> None:
        node = ResourceNode(
            kind="lambda_function",
            name="fn",
            inputs={"role": "${role.arn}", "handler": "index.handler"},
        )
        assert node.inputs["role"] == AttributeRef("role", "arn")
        assert node.inputs["handler"] == "index.handler"

    def test_dependency_names_merges_depends_on_and_refs(self) -> None:
        node = ResourceNode(
            kind="api_gateway_deployment",
            name="deployment",
            inputs={"rest_api_id": "${api.id}"},
            triggers=["${resource.id}", "${api.id}"],
            depends_on=["stage_setup"],
        )
        assert node.dependency_names() == ["stage_setup", "api", "resource"]

    def test_dump_renders_refs_back(self) -> None:
        node = ResourceNode(
            kind="iam_role",
            name="role",
            inputs={"name": "r", "assume_role_policy": "${policy.json}"},
            triggers=["${policy.id}"],
        )
        dumped = node.model_dump(mode="json")
        assert dumped["inputs"]["assume_role_policy"] == "${policy.json}"
        assert dumped["triggers"] == ["${policy.id}"]
        assert ResourceNode.model_validate(dumped) == node

    def test_invalid_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResourceNode(kind="iam_role", name="bad name")

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResourceNode.model_validate({"kind": "iam_role", "name": "r", "extra": 1})

    def test_lifecycle_strategy(self) -> None:
        assert Lifecycle().replacement == ReplacementStrategy.DELETE_FIRST
        assert (
            Lifecycle(create_before_destroy=True).replacement == ReplacementStrategy.CREATE_FIRST
        )


class TestCheckInputs:
    def test_unknown_and_missing_inputs(self) -> None:
        errors = IamRole.check_inputs({"nme": "r"})
        assert "unknown input 'nme'" in errors
        assert "missing required input 'name'" in errors
        assert "missing required input 'assume_role_policy'" in errors

    def test_values_not_checked_while_refs_remain(self) -> None:
        inputs = {
            "rest_api_id": AttributeRef("api", "id"),
            "resource_id": "r",
            "http_method": "FETCH",
        }
        assert ApiGatewayMethod.check_inputs(inputs) == []

    def test_values_not_checked_while_unknown(self) -> None:
        inputs = {"rest_api_id": UNKNOWN, "resource_id": "r", "http_method": "FETCH"}
        assert ApiGatewayMethod.check_inputs(inputs) == []

    def test_literal_values_checked(self) -> None:
        errors = ApiGatewayMethod.check_inputs(
            {"rest_api_id": "a", "resource_id": "r", "http_method": "FETCH"}
        )
        assert len(errors) == 1
        assert errors[0].startswith("input 'http_method'")

    def test_stage_name_pattern(self) -> None:
        errors = ApiGatewayStage.check_inputs(
            {"rest_api_id": "a", "stage_name": "not ok", "deployment_id": "d"}
        )
        assert errors


class TestComputedAttributes:
    def test_policy_document_renders_json(self) -> None:
        attrs = IamPolicyDocument.computed_attributes(
            {
                "statement": [
                    {
                        "actions": ["sts:AssumeRole"],
                        "principals": [
                            {"type": "Service", "identifiers": ["lambda.amazonaws.com"]}
                        ],
                    }
                ]
            }
        )
        assert '"Action": "sts:AssumeRole"' in attrs["json"]
        assert '"Service": "lambda.amazonaws.com"' in attrs["json"]
        assert len(attrs["id"]) == 64

    def test_policy_document_unknown_statement(self) -> None:
        assert IamPolicyDocument.computed_attributes({"statement": UNKNOWN}) == {}

    def test_function_name_known_at_plan_time(self) -> None:
        attrs = LambdaFunction.computed_attributes(
            {"function_name": "fn", "source_code_hash": UNKNOWN, "role": UNKNOWN}
        )
        assert attrs == {"function_name": "fn", "id": "fn"}

    def test_archive_digest_computed_from_source(self, tmp_path) -> None:
        src = tmp_path / "src"
        src.mkdir()
        (src / "index.py").write_text("def handler(e, c):\n    return 1\n")
        out = str(tmp_path / "out.zip")

        attrs = ArchiveFile.computed_attributes({"source_dir": str(src), "output_path": out})
        assert attrs["id"] == out
        assert attrs["output_path"] == out
        assert attrs["output_size"] > 0

        (src / "index.py").write_text("def handler(e, c):\n    return 2\n")
        changed = ArchiveFile.computed_attributes({"source_dir": str(src), "output_path": out})
        assert changed["output_base64sha256"] != attrs["output_base64sha256"]

    def test_archive_missing_source(self, tmp_path) -> None:
        out = str(tmp_path / "out.zip")
        attrs = ArchiveFile.computed_attributes(
            {"source_dir": str(tmp_path / "nope"), "output_path": out}
        )
        assert attrs == {"id": out, "output_path": out}
