"""Tests for config convenience API and engine wiring."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import MagicMock, patch

from stack_provisioner.config import drift, engine_from_config, plan, refresh, save_state
from stack_provisioner.config.loader import _resolve_provider
from stack_provisioner.config.schema import Config, ProviderConfig
from stack_provisioner.core.state import ObservedResource, ObservedState
from stack_provisioner.engine.types import Action

if TYPE_CHECKING:
    from collections.abc import Callable

_YAML = """\
stack: demo
provider:
  region: us-east-1
resources:
  - kind: iam_role
    name: role
    inputs:
      name: exec
      assume_role_policy: "{}"
"""


def _record(name: str, **attributes: Any) -> ObservedResource:
    return ObservedResource(
        name=name, kind="iam_role", resource_id=name, attributes=attributes
    )


class TestEngineFromConfig:
    def test_builds_engine_for_stack(self) -> None:
        engine = engine_from_config(Config(stack="shop"))
        assert engine.stack == "shop"

    def test_builds_engine_with_state_path(self) -> None:
        engine = engine_from_config(Config(stack="shop", state_path=Path("custom.json")))
        assert engine.state_path == Path("custom.json")

    def test_provider_settings_passed_through(self) -> None:
        config = Config(
            stack="shop",
            provider=ProviderConfig(region="eu-west-1", profile="ops", timeout=10),
        )
        engine = engine_from_config(config)
        provider = engine._ctx().provider
        assert provider.region == "eu-west-1"
        assert provider.profile == "ops"
        assert engine._ctx().timeout == 10


class TestResolveProvider:
    """Unit tests for _resolve_provider priority chain (no YAML parsing)."""

    def test_yaml_value_wins(self) -> None:
        result = _resolve_provider({"region": "eu-west-1"}, Path())
        assert result["region"] == "eu-west-1"

    def test_env_var_fallback(self, monkeypatch) -> None:
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        assert _resolve_provider({}, Path())["region"] == "us-west-2"

    def test_yaml_value_over_env_var(self, monkeypatch) -> None:
        monkeypatch.setenv("AWS_REGION", "us-west-2")
        assert _resolve_provider({"region": "eu-west-1"}, Path())["region"] == "eu-west-1"

    def test_yaml_null_falls_through_to_env_var(self, monkeypatch) -> None:
        monkeypatch.setenv("AWS_PROFILE", "from-env")
        assert _resolve_provider({"profile": None}, Path())["profile"] == "from-env"

    def test_missing_field_omitted(self) -> None:
        result = _resolve_provider({}, Path())
        assert "region" not in result
        assert "timeout" not in result

    def test_dotenv_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("AWS_ENDPOINT_URL=http://localhost:4566\n")
        result = _resolve_provider({}, tmp_path)
        assert result["endpoint_url"] == "http://localhost:4566"

    def test_env_var_overrides_dotenv(self, tmp_path, monkeypatch) -> None:
        (tmp_path / ".env").write_text("STACK_PARALLELISM=2\n")
        monkeypatch.setenv("STACK_PARALLELISM", "6")
        assert _resolve_provider({}, tmp_path)["parallelism"] == "6"

    def test_dotenv_with_bom(self, tmp_path) -> None:
        (tmp_path / ".env").write_bytes(b"\xef\xbb\xbfAWS_REGION=from-bom\n")
        assert _resolve_provider({}, tmp_path)["region"] == "from-bom"


class TestPlanIntegration:
    @patch("stack_provisioner.engine.engine.StackEngine.plan")
    def test_plan_passes_nodes(
        self, mock_engine_plan: MagicMock, make_config: Callable[..., Config]
    ) -> None:
        config = make_config(_YAML)
        mock_engine_plan.return_value = MagicMock()

        plan(config)

        (nodes,), kwargs = mock_engine_plan.call_args
        assert [n.name for n in nodes] == ["role"]
        assert kwargs == {"destroy": False, "refresh": True}

    @patch("stack_provisioner.engine.engine.StackEngine.plan")
    def test_plan_passes_destroy_and_refresh(
        self, mock_engine_plan: MagicMock, make_config: Callable[..., Config]
    ) -> None:
        config = make_config(_YAML)
        mock_engine_plan.return_value = MagicMock()

        plan(config, destroy=True, refresh=False)

        _, kwargs = mock_engine_plan.call_args
        assert kwargs["destroy"] is True
        assert kwargs["refresh"] is False


class TestRefreshAndDrift:
    def _states(self) -> tuple[ObservedState, ObservedState]:
        before = ObservedState(
            stack="demo",
            resources={
                "same": _record("same", id="same"),
                "edited": _record("edited", id="edited", description="old"),
                "gone": _record("gone", id="gone"),
            },
        )
        after = ObservedState(
            stack="demo",
            resources={
                "same": _record("same", id="same"),
                "edited": _record("edited", id="edited", description="new"),
            },
        )
        return before, after

    @patch("stack_provisioner.engine.engine.StackEngine.refresh")
    def test_refresh_returns_drift_and_state(
        self, mock_refresh: MagicMock, make_config: Callable[..., Config]
    ) -> None:
        before, after = self._states()
        mock_refresh.return_value = (before, after)

        changes, state = refresh(make_config(_YAML))

        assert state is after
        assert [(c.name, c.action) for c in changes] == [
            ("edited", Action.UPDATE),
            ("gone", Action.DELETE),
        ]
        assert changes[0].diff == {"description": {"from": "old", "to": "new"}}

    @patch("stack_provisioner.engine.engine.StackEngine.refresh")
    def test_drift_is_refresh_without_state(
        self, mock_refresh: MagicMock, make_config: Callable[..., Config]
    ) -> None:
        before, _ = self._states()
        mock_refresh.return_value = (before, before.model_copy(deep=True))

        assert drift(make_config(_YAML)) == []

    def test_save_state_bumps_serial(self, make_config: Callable[..., Config]) -> None:
        config = make_config(_YAML)
        state = ObservedState(stack="demo", serial=3)

        save_state(config, state)

        assert ObservedState.load(config.state_path).serial == 4
