"""Archive file resource kind."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from stack_provisioner.core.packaging import content_digest, package_bytes
from stack_provisioner.resources.base import ResourceKind
from stack_provisioner.resources.markers import Compare, ForceNew
from stack_provisioner.resources.refs import contains_unknown


class ArchiveFile(ResourceKind):
    """A zip of a local source directory.

    The archive digest is derived at plan time, so a changed source payload
    shows up as a changed ``output_base64sha256`` even when no declared input
    changed.
    """

    kind: ClassVar[str] = "archive_file"
    attributes: ClassVar[frozenset[str]] = frozenset(
        {"id", "output_path", "output_base64sha256", "output_size"}
    )

    source_dir: Annotated[str, ForceNew()]
    output_path: Annotated[str, ForceNew()]
    type: Literal["zip"] = "zip"
    excludes: Annotated[list[str], Compare("set")] = []

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        source_dir = inputs.get("source_dir")
        output_path = inputs.get("output_path")
        if not isinstance(source_dir, str) or not isinstance(output_path, str):
            return {}
        if contains_unknown([source_dir, output_path, inputs.get("excludes", [])]):
            return {}
        try:
            data = package_bytes(source_dir, inputs.get("excludes", []))
        except FileNotFoundError:
            return {"id": output_path, "output_path": output_path}
        return {
            "id": output_path,
            "output_path": output_path,
            "output_base64sha256": content_digest(data),
            "output_size": len(data),
        }
