"""Local path resolution for resources that read or write files."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from stack_provisioner.resources.base import ResourceNode

_PATH_INPUTS: dict[str, tuple[str, ...]] = {
    "archive_file": ("source_dir", "output_path"),
    "lambda_function": ("filename",),
}


def resolve_local_paths(nodes: Iterable[ResourceNode], base_dir: Path) -> list[ResourceNode]:
    """Anchor relative path inputs at *base_dir*.

    Only literal strings are rewritten; references and interpolations are left
    alone (they resolve to paths already anchored by their producer).
    """
    result: list[ResourceNode] = []
    for node in nodes:
        fields = _PATH_INPUTS.get(node.kind)
        if not fields:
            result.append(node)
            continue

        inputs = dict(node.inputs)
        for field in fields:
            value = inputs.get(field)
            if isinstance(value, str) and "${" not in value and not Path(value).is_absolute():
                inputs[field] = str(base_dir / value)
        result.append(node.model_copy(update={"inputs": inputs}))

    return result
