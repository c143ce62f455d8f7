"""Tests for the local state lock."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

import pytest

from stack_provisioner.engine.errors import StateLockError
from stack_provisioner.engine.lock import StateLock

if TYPE_CHECKING:
    from pathlib import Path


def test_lock_creates_lock_file(tmp_path: Path) -> None:
    state_path = tmp_path / "nested" / "state.json"
    with StateLock(state_path):
        assert (tmp_path / "nested" / "state.json.lock").exists()


def test_lock_can_be_reacquired_after_release(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    with StateLock(state_path):
        pass
    with StateLock(state_path, timeout=0.1):
        pass


def test_second_holder_times_out(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    with (
        StateLock(state_path),
        pytest.raises(StateLockError, match="locked by another process"),
        StateLock(state_path, timeout=0.2, poll=0.05),
    ):
        pass


def test_waiter_acquires_once_released(tmp_path: Path) -> None:
    state_path = tmp_path / "state.json"
    acquired = threading.Event()
    release = threading.Event()

    def hold() -> None:
        with StateLock(state_path):
            acquired.set()
            release.wait(5)

    holder = threading.Thread(target=hold)
    holder.start()
    assert acquired.wait(5)
    threading.Timer(0.1, release.set).start()

    with StateLock(state_path, timeout=5, poll=0.02):
        pass
    holder.join(5)
