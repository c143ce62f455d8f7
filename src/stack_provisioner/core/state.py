"""Observed state: the last successfully applied state of every node."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def predecessor_key(name: str, resource_id: str) -> str:
    """Key of a replaced resource's predecessor (operations and deposed entries)."""
    return f"{name}~{resource_id}"


class ObservedResource(BaseModel):
    """A tracked resource in the state file.

    Attributes:
        name: Logical name of the declaring node (e.g., "lambda_function")
        kind: Resource kind (e.g., "lambda_function")
        resource_id: Provider-assigned identifier
        trigger_hash: Hash of the resolved triggers at the last apply
        inputs: Resolved inputs sent to the provider at the last apply
        attributes: Attributes returned by the provider
        attributes_hash: SHA256 of ``attributes`` for change detection
        dependencies: Names of the nodes this one depended on
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    name: str
    kind: str
    resource_id: str
    trigger_hash: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class DeposedResource(BaseModel):
    """A predecessor whose successor already exists but which is not yet deleted."""

    name: str
    kind: str
    resource_id: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    attributes: dict[str, Any] = Field(default_factory=dict)
    deposed_at: datetime = Field(default_factory=datetime.now)


class ObservedState(BaseModel):
    """Terraform-style state file for tracking deployed resources.

    Attributes:
        version: State file format version
        stack: Name of the stack this state belongs to
        serial: Incremented on every write
        lineage: Random id fixed at creation, detects swapped state files
        resources: Mapping of logical names to observed resources
        deposed: Predecessors awaiting deletion, keyed by ``predecessor_key``
    """

    version: int = 1
    stack: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ObservedResource] = Field(default_factory=dict)
    deposed: dict[str, DeposedResource] = Field(default_factory=dict)

    def depose(self, name: str) -> DeposedResource:
        """Move the current record of *name* into ``deposed``."""
        current = self.resources.pop(name)
        entry = DeposedResource(
            name=current.name,
            kind=current.kind,
            resource_id=current.resource_id,
            inputs=current.inputs,
            attributes=current.attributes,
        )
        self.deposed[predecessor_key(name, current.resource_id)] = entry
        return entry

    def save(self, path: Path) -> None:
        """Save state to a JSON file.

        - Writes atomically (temp file + rename)
        - Writes a `.backup` copy of the previous state when overwriting
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        backup_path = Path(str(path) + ".backup")
        # Avoid TOCTOU race between exists() and read_bytes().
        with contextlib.suppress(FileNotFoundError):
            backup_path.write_bytes(path.read_bytes())

        data = self.model_dump(mode="json")
        content = json.dumps(data, indent=2, sort_keys=True) + "\n"

        fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        tmp_file = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_file.unlink()
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "ObservedState":
        """Load state from a JSON file.

        Raises ``ValueError`` (pydantic ``ValidationError``) on unreadable content.
        """
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s", path)
        return state

    @classmethod
    def load_or_create(cls, path: Path, stack: str) -> "ObservedState":
        """Load existing state or create a new one."""
        if path.exists():
            return cls.load(path)
        logger.debug("Created new state for stack %s", stack)
        return cls(stack=stack)


def find_inconsistencies(state: ObservedState) -> list[str]:
    """Return descriptions of records that contradict the rest of the state."""
    problems: list[str] = []
    for key, inst in sorted(state.resources.items()):
        if inst.name != key:
            problems.append(f"Resource key '{key}' holds a record named '{inst.name}'")
        if key in inst.dependencies:
            problems.append(f"Resource '{key}' depends on itself")
    for key, entry in sorted(state.deposed.items()):
        if key != predecessor_key(entry.name, entry.resource_id):
            problems.append(f"Deposed key '{key}' does not match its record")
        current = state.resources.get(entry.name)
        if current is not None and current.resource_id == entry.resource_id:
            problems.append(f"Deposed '{key}' is still the current resource of '{entry.name}'")
    return problems


def compute_state_digest(state: ObservedState) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection. Excludes fields that should not force a
    re-plan (e.g., `created_at`/`updated_at` timestamps).
    """
    resources = []
    for name, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "name": name,
                "kind": inst.kind,
                "resource_id": inst.resource_id,
                "trigger_hash": inst.trigger_hash,
                "inputs_hash": compute_attributes_hash(inst.inputs),
                "attributes_hash": inst.attributes_hash,
                "dependencies": sorted(inst.dependencies),
            }
        )

    digestable = {
        "version": state.version,
        "stack": state.stack,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
        "deposed": sorted(state.deposed),
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
