"""Engine types (plan, changes, metadata)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from stack_provisioner.resources.base import ReplacementStrategy


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    NOOP = "no-op"


class PlanMetadata(BaseModel):
    stack: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    """Planned change for one node (or one deposed predecessor).

    ``desired`` is the node declaration with references intact; ``planned``
    holds the inputs resolved at plan time (values not yet known are
    ``"(known after apply)"``).
    """

    name: str
    kind: str
    action: Action
    replacement: ReplacementStrategy | None = None
    reasons: list[str] = Field(default_factory=list)
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    prior_id: str | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    trigger_hash: str | None = None
    deposed: bool = False

    @property
    def label(self) -> str:
        if self.deposed:
            return f"{self.name} (deposed {self.prior_id})"
        return self.name


def _count(changes: list[ResourceChange]) -> dict[str, int]:
    counts = {a.value: 0 for a in Action}
    for c in changes:
        counts[c.action.value] += 1
    return counts


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]

    def summary(self) -> dict[str, int]:
        return _count(self.changes)

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class ApplyResult(BaseModel):
    applied: list[ResourceChange] = Field(default_factory=list)

    def summary(self) -> dict[str, int]:
        return _count(self.applied)
