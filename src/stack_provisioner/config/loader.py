"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from stack_provisioner.config.modules import ModuleExpansionError, expand_modules
from stack_provisioner.config.schema import Config
from stack_provisioner.resources.loader import resolve_local_paths

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from stack_provisioner.resources.base import ResourceNode


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "region": "AWS_REGION",
    "profile": "AWS_PROFILE",
    "endpoint_url": "AWS_ENDPOINT_URL",
    "timeout": "STACK_TIMEOUT",
    "parallelism": "STACK_PARALLELISM",
}


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            resolved[field] = val

    return resolved


def _validate_unique_names(nodes: list[ResourceNode]) -> list[str]:
    """Check that no two nodes share a logical name."""
    seen: dict[str, str] = {}  # name → first kind
    errors: list[str] = []
    for n in nodes:
        if n.name in seen:
            errors.append(f"Duplicate resource name '{n.name}' ({seen[n.name]} and {n.kind})")
        else:
            seen[n.name] = n.kind
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Relative local paths (archive sources and outputs, function zips, the
    state file) are anchored at the config file's directory.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    if not config.state_path.is_absolute():
        config.state_path = config.config_dir / config.state_path

    if config.modules:
        logger.debug("Expanding %d module(s)", len(config.modules))
        try:
            config._module_nodes = expand_modules(config.modules, config.config_dir)
        except ModuleExpansionError as exc:
            raise ConfigError(str(exc)) from exc

    errors = _validate_unique_names(config.nodes)
    if errors:
        raise ConfigError("\n".join(errors))

    config.resources = resolve_local_paths(config.resources, config.config_dir)
    config._module_nodes = resolve_local_paths(config._module_nodes, config.config_dir)

    logger.info("Loaded config from %s (%d resources)", path, len(config.nodes))
    return config
