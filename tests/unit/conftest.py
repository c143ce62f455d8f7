"""Shared fixtures for unit tests."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from stack_provisioner.config import load
from stack_provisioner.core import AwsProvider
from stack_provisioner.engine.handlers import EngineContext

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from stack_provisioner.config.schema import Config

_STACK_ENV_VARS = (
    "AWS_REGION",
    "AWS_PROFILE",
    "AWS_ENDPOINT_URL",
    "STACK_TIMEOUT",
    "STACK_PARALLELISM",
    "STACK_LOG",
)


@pytest.fixture(autouse=True)
def _clean_stack_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove provider env vars so unit tests don't leak host config."""
    for var in _STACK_ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., Config]:
    """Factory fixture: write YAML + optional .env, return loaded Config."""

    def _make(yaml_str: str, *, dotenv: str | None = None) -> Config:
        (tmp_path / "config.yaml").write_text(yaml_str)
        if dotenv is not None:
            (tmp_path / ".env").write_text(dotenv)
        return load(tmp_path / "config.yaml")

    return _make


@pytest.fixture
def aws_clients() -> defaultdict[str, MagicMock]:
    """One MagicMock client per AWS service, created on first use."""
    return defaultdict(MagicMock)


@pytest.fixture
def ctx(aws_clients: defaultdict[str, MagicMock]) -> EngineContext:
    session = MagicMock()
    session.client.side_effect = lambda service, **_kwargs: aws_clients[service]
    provider = AwsProvider.from_session(session, region="us-east-1", timeout=5.0)
    return EngineContext(provider=provider, stack="demo", timeout=5.0)

