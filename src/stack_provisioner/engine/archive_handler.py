"""Handlers for resources that only exist on the local machine."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from stack_provisioner.core.packaging import build_artifact, file_digest
from stack_provisioner.engine.handlers import ResourceHandler
from stack_provisioner.resources.iam import IamPolicyDocument

if TYPE_CHECKING:
    from stack_provisioner.core.state import ObservedResource
    from stack_provisioner.engine.handlers import EngineContext
    from stack_provisioner.resources.archive import ArchiveFile

logger = logging.getLogger(__name__)


class ArchiveFileHandler(ResourceHandler["ArchiveFile"]):
    """Builds the zip archive on disk."""

    def validate(self, ctx: EngineContext, desired: ArchiveFile) -> list[str]:
        _ = ctx
        if not Path(desired.source_dir).is_dir():
            return [f"source_dir '{desired.source_dir}' is not a directory"]
        return []

    def _build(self, desired: ArchiveFile) -> dict[str, Any]:
        artifact = build_artifact(desired.source_dir, desired.output_path, excludes=desired.excludes)
        return {
            "id": desired.output_path,
            "output_path": desired.output_path,
            "output_base64sha256": artifact.content_digest,
            "output_size": artifact.size,
        }

    def create(self, ctx: EngineContext, desired: ArchiveFile) -> tuple[str, dict[str, Any]]:
        _ = ctx
        attrs = self._build(desired)
        return desired.output_path, attrs

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        _ = ctx
        path = Path(prior.resource_id)
        if not path.is_file():
            return None
        return {
            "id": prior.resource_id,
            "output_path": prior.resource_id,
            "output_base64sha256": file_digest(path),
            "output_size": path.stat().st_size,
        }

    def update(
        self, ctx: EngineContext, desired: ArchiveFile, prior: ObservedResource
    ) -> dict[str, Any]:
        _ = ctx, prior
        return self._build(desired)

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        _ = ctx
        path = Path(prior.resource_id)
        if not path.exists():
            return False
        path.unlink()
        return True


class PolicyDocumentHandler(ResourceHandler["IamPolicyDocument"]):
    """Renders policy JSON. Nothing is stored outside the state file."""

    def _render(self, desired: IamPolicyDocument) -> dict[str, Any]:
        return IamPolicyDocument.computed_attributes(desired.model_dump())

    def create(
        self, ctx: EngineContext, desired: IamPolicyDocument
    ) -> tuple[str, dict[str, Any]]:
        _ = ctx
        attrs = self._render(desired)
        return attrs["id"], attrs

    def read(self, ctx: EngineContext, prior: ObservedResource) -> dict[str, Any] | None:
        _ = ctx
        return dict(prior.attributes)

    def update(
        self, ctx: EngineContext, desired: IamPolicyDocument, prior: ObservedResource
    ) -> dict[str, Any]:
        _ = ctx, prior
        return self._render(desired)

    def delete(self, ctx: EngineContext, prior: ObservedResource) -> bool:
        _ = ctx, prior
        return True
