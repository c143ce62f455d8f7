"""Configuration models for YAML-based provisioning."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, PrivateAttr
from pydantic_settings import BaseSettings, SettingsConfigDict

from stack_provisioner.config.modules import (
    ModuleSpec,  # noqa: TC001 — Pydantic needs this at runtime
)
from stack_provisioner.resources.base import (
    ResourceNode,  # noqa: TC001 — Pydantic needs this at runtime
)


class ProviderConfig(BaseSettings):
    """Cloud provider settings.

    Fields can be set via YAML (constructor kwargs) or environment variables
    (see ``config.loader``). Constructor kwargs take precedence.

    Credentials are never part of the config: they come from the standard
    boto3 chain, optionally narrowed with ``profile``.
    """

    model_config = SettingsConfigDict(env_prefix="STACK_")

    region: str | None = None
    profile: str | None = None
    endpoint_url: str | None = None
    timeout: float = Field(default=60.0, gt=0)
    parallelism: int = Field(default=4, ge=1)


def _none_to_list(v: Any) -> Any:
    return v if v is not None else []


class Config(BaseModel):
    """Provisioning configuration — validates YAML structure directly."""

    stack: str = Field(pattern=r"^[A-Za-z0-9_.-]+$")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    state_path: Path = Path(".stack-state.json")
    resources: Annotated[list[ResourceNode], BeforeValidator(_none_to_list)] = []
    modules: Annotated[list[ModuleSpec], BeforeValidator(_none_to_list)] = []
    config_dir: Path = Path()

    _module_nodes: list[ResourceNode] = PrivateAttr(default_factory=list)

    @property
    def nodes(self) -> list[ResourceNode]:
        """All declared nodes, including module output — ordering is not significant."""
        return [*self.resources, *self._module_nodes]
