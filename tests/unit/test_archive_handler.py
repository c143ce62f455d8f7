"""Tests for the local archive and policy document handlers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from stack_provisioner.core.packaging import file_digest
from stack_provisioner.core.state import ObservedResource
from stack_provisioner.engine.archive_handler import ArchiveFileHandler, PolicyDocumentHandler
from stack_provisioner.resources.archive import ArchiveFile
from stack_provisioner.resources.iam import IamPolicyDocument

if TYPE_CHECKING:
    from pathlib import Path

    from stack_provisioner.engine.handlers import EngineContext


@pytest.fixture
def source(tmp_path: Path) -> Path:
    src = tmp_path / "src"
    src.mkdir()
    (src / "index.py").write_text("def handler(event, context):\n    return {}\n")
    return src


def _archive(source: Path, out: Path) -> ArchiveFile:
    return ArchiveFile(source_dir=str(source), output_path=str(out))


def _prior(out: Path) -> ObservedResource:
    return ObservedResource(name="zip", kind="archive_file", resource_id=str(out))


class TestArchiveFile:
    def test_validate_missing_dir(self, ctx: EngineContext, tmp_path: Path) -> None:
        desired = _archive(tmp_path / "missing", tmp_path / "out.zip")
        assert ArchiveFileHandler().validate(ctx, desired) == [
            f"source_dir '{tmp_path / 'missing'}' is not a directory"
        ]

    def test_create_writes_zip(self, ctx: EngineContext, source: Path, tmp_path: Path) -> None:
        out = tmp_path / "build" / "function.zip"
        resource_id, attrs = ArchiveFileHandler().create(ctx, _archive(source, out))

        assert resource_id == str(out)
        assert out.is_file()
        assert attrs["output_base64sha256"] == file_digest(out)
        assert attrs["output_size"] == out.stat().st_size

    def test_plan_time_digest_matches_built_archive(
        self, ctx: EngineContext, source: Path, tmp_path: Path
    ) -> None:
        out = tmp_path / "function.zip"
        desired = _archive(source, out)
        computed = ArchiveFile.computed_attributes(desired.model_dump())

        _, attrs = ArchiveFileHandler().create(ctx, desired)

        assert computed["output_base64sha256"] == attrs["output_base64sha256"]

    def test_read_and_delete(self, ctx: EngineContext, source: Path, tmp_path: Path) -> None:
        out = tmp_path / "function.zip"
        handler = ArchiveFileHandler()
        handler.create(ctx, _archive(source, out))

        attrs = handler.read(ctx, _prior(out))
        assert attrs is not None
        assert attrs["output_path"] == str(out)

        assert handler.delete(ctx, _prior(out)) is True
        assert not out.exists()
        assert handler.read(ctx, _prior(out)) is None
        assert handler.delete(ctx, _prior(out)) is False


class TestPolicyDocument:
    _DOC = IamPolicyDocument.model_validate(
        {
            "statement": [
                {
                    "actions": ["sts:AssumeRole"],
                    "principals": [{"type": "Service", "identifiers": ["lambda.amazonaws.com"]}],
                }
            ]
        }
    )

    def test_create_renders_json(self, ctx: EngineContext) -> None:
        resource_id, attrs = PolicyDocumentHandler().create(ctx, self._DOC)

        assert resource_id == attrs["id"]
        assert json.loads(attrs["json"]) == {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Action": "sts:AssumeRole",
                    "Principal": {"Service": "lambda.amazonaws.com"},
                }
            ],
        }

    def test_read_returns_recorded_attributes(self, ctx: EngineContext) -> None:
        prior = ObservedResource(
            name="doc", kind="iam_policy_document", resource_id="x", attributes={"json": "{}"}
        )
        assert PolicyDocumentHandler().read(ctx, prior) == {"json": "{}"}
