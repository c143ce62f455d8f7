"""Concurrent wave execution of apply operations.

Operations are grouped into waves (every operation depends only on earlier
waves). A wave's operations run concurrently on a bounded thread pool; the
next wave starts only once every operation of the current one has
finished. State is mutated and persisted on the coordinating thread after
each successful operation, so a crash never loses a completed change.

When anything in a wave fails or times out, the remaining operations of
that wave are still awaited and recorded, then no further wave is started.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Literal

from stack_provisioner.engine.errors import OperationFailure
from stack_provisioner.engine.graph import DependencyGraph
from stack_provisioner.engine.types import Action, ApplyResult, ResourceChange

if TYPE_CHECKING:
    from pathlib import Path

    from stack_provisioner.core.state import ObservedState
    from stack_provisioner.engine.handlers import EngineContext
    from stack_provisioner.engine.operations import Commit, Operation
    from stack_provisioner.engine.registry import ResourceTypeRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]
# (wave number, number of waves, labels of the changes in the wave)
WaveCallback = Callable[[int, int, list[str]], None]


class WaveExecutor:
    """Runs an operation graph wave by wave on a bounded worker pool."""

    def __init__(
        self,
        *,
        ctx: EngineContext,
        registry: ResourceTypeRegistry,
        state: ObservedState,
        state_path: Path,
        parallelism: int = 4,
        progress: ProgressCallback | None = None,
        on_wave: WaveCallback | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        self._ctx = ctx
        self._registry = registry
        self._state = state
        self._state_path = state_path
        self._parallelism = parallelism
        self._progress = progress
        self._on_wave = on_wave
        self._applied: list[ResourceChange] = []
        self._pending: Counter[str] = Counter()
        self._started: set[str] = set()

    @staticmethod
    def waves(ops: dict[str, Operation]) -> list[list[str]]:
        return DependencyGraph(ops, {k: op.deps for k, op in ops.items()}).waves()

    @staticmethod
    def wave_labels(ops: dict[str, Operation], keys: list[str]) -> list[str]:
        """Labels of the changes a wave works on (barriers carry none).

        The delete half of a replacement is shown as ``<label> (old)``.
        """
        labels: list[str] = []
        for key in keys:
            op = ops[key]
            if op.change is None:
                continue
            label = op.change.label
            if op.change.action == Action.REPLACE and op.operation == "delete":
                label = f"{label} (old)"
            if label not in labels:
                labels.append(label)
        return labels

    def execute(self, ops: dict[str, Operation]) -> ApplyResult:
        """Run every operation in *ops*; raise ``OperationFailure`` on the first failing wave."""
        waves = self.waves(ops)
        self._pending = Counter(op.change.label for op in ops.values() if op.change is not None)
        logger.info("Applying %d operations in %d waves", len(ops), len(waves))
        labelled = [self.wave_labels(ops, keys) for keys in waves]
        total = sum(1 for labels in labelled if labels)
        shown = 0

        pool = ThreadPoolExecutor(max_workers=self._parallelism, thread_name_prefix="apply")
        try:
            for number, keys in enumerate(waves, start=1):
                logger.debug("Wave %d: %s", number, ", ".join(keys))
                if labelled[number - 1]:
                    shown += 1
                    if self._on_wave:
                        self._on_wave(shown, total, labelled[number - 1])
                failures = self._run_wave(pool, [ops[k] for k in keys])
                if failures:
                    failures.sort(key=lambda f: f[0].key)
                    op, exc = failures[0]
                    name = op.change.label if op.change is not None else op.key
                    raise OperationFailure(
                        applied=list(self._applied),
                        name=name,
                        operation=op.operation,
                        message=str(exc),
                        failures=[
                            (o.change.label if o.change is not None else o.key, o.operation, str(e))
                            for o, e in failures
                        ],
                    ) from exc
        finally:
            # Timed-out calls may still be running; their outcome is never recorded.
            pool.shutdown(wait=False, cancel_futures=True)

        return ApplyResult(applied=list(self._applied))

    def _run_wave(
        self, pool: ThreadPoolExecutor, wave: list[Operation]
    ) -> list[tuple[Operation, BaseException]]:
        failures: list[tuple[Operation, BaseException]] = []
        futures: dict[Future[Commit | None], Operation] = {}

        for op in wave:
            try:
                op.prepare(self._state, self._registry)
            except Exception as exc:
                logger.error("Cannot %s %s: %s", op.operation, op.key, exc)
                failures.append((op, exc))
                continue
            self._report_start(op)
            futures[pool.submit(op.run, self._ctx, self._registry)] = op

        if not futures:
            return failures

        deadline = self._ctx.timeout * math.ceil(len(futures) / self._parallelism)
        finished: set[Future[Commit | None]] = set()
        try:
            for fut in as_completed(futures, timeout=deadline):
                finished.add(fut)
                self._collect(fut, futures[fut], failures)
        except TimeoutError:
            for fut, op in futures.items():
                if fut in finished:
                    continue
                if fut.done():
                    self._collect(fut, op, failures)
                    continue
                logger.error("%s %s timed out after %gs", op.operation, op.key, deadline)
                failures.append(
                    (op, TimeoutError(f"{op.operation} timed out after {deadline:g}s"))
                )
        return failures

    def _collect(
        self,
        fut: Future[Commit | None],
        op: Operation,
        failures: list[tuple[Operation, BaseException]],
    ) -> None:
        try:
            commit = fut.result()
        except Exception as exc:
            logger.error("%s %s failed: %s", op.operation, op.key, exc)
            failures.append((op, exc))
            return
        if commit is None:
            return
        try:
            commit(self._state)
            self._state.serial += 1
            self._state.save(self._state_path)
        except Exception as exc:
            logger.error("Recording %s %s failed: %s", op.operation, op.key, exc)
            failures.append((op, exc))
            return
        self._report_done(op)

    def _report_start(self, op: Operation) -> None:
        if op.change is None or op.change.label in self._started:
            return
        self._started.add(op.change.label)
        if self._progress:
            self._progress(op.change, "start")

    def _report_done(self, op: Operation) -> None:
        if op.change is None:
            return
        label = op.change.label
        self._pending[label] -= 1
        # A replacement is two operations; it counts once both are done.
        if self._pending[label] > 0:
            return
        self._applied.append(op.change)
        if self._progress:
            self._progress(op.change, "done")
