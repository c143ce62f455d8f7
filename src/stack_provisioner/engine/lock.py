"""Local state locking."""

from __future__ import annotations

import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING

from stack_provisioner.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class StateLock:
    """Exclusive lock on ``<state>.lock`` for the duration of a plan or apply.

    Waits up to *timeout* seconds for a concurrent holder to release it.
    """

    def __init__(self, state_path: Path, *, timeout: float = 30.0, poll: float = 0.1) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._poll = poll
        self._file = None

    def __enter__(self) -> StateLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except Exception as e:
            try:
                self._file.close()
            finally:
                self._file = None
            if isinstance(e, StateLockError):
                raise
            raise StateLockError(str(e)) from e
        logger.debug("Acquired state lock %s", self._lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._release()
        finally:
            self._file.close()
            self._file = None

    def _try_acquire(self) -> bool:
        assert self._file is not None
        if fcntl is not None:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return False
            return True

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            try:
                msvcrt.locking(self._file.fileno(), msvcrt.LK_NBLCK, 1)
            except OSError:
                return False
            return True

        raise StateLockError("State locking is not supported on this platform")

    def _acquire(self) -> None:
        if self._file is None:
            raise StateLockError("Lock file is not open")

        deadline = time.monotonic() + self._timeout
        while not self._try_acquire():
            if time.monotonic() >= deadline:
                raise StateLockError(
                    f"State is locked by another process ({self._lock_path}); "
                    f"gave up after {self._timeout:g}s"
                )
            time.sleep(self._poll)

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
            return
