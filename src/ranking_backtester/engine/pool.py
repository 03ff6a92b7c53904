"""
WorkerPool — bounded process pool that runs one grid in row chunks.

A grid is split along its row axis into at most ``size`` contiguous chunks.
Each chunk travels to a worker as a self-contained task dict and comes back
as a COMPLETE message; progress flows over a per-run manager queue. Chunks
are merged strictly in chunk order, so the merged grid does not depend on
the number of workers or on which chunk finished first.

Runs are serialized: a second caller waits until the first run finishes.
Each run owns its cancel event, created before the task is split, so a
cancel that lands while chunks are still being built is not lost.
Cancellation is cooperative: workers poll the run's cancel event at batch
boundaries, and the pool throws away its executor so the next run starts on
a clean one.
"""

import os
import queue
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from multiprocessing import Manager
from typing import Any, Callable

import pandas as pd

from ranking_backtester.engine.grid import GridTask, build_task_message, run_grid_chunk
from ranking_backtester.engine.messages import CompleteMessage, ProgressMessage
from ranking_backtester.engine.models import GridResult
from ranking_backtester.engine.signal import SignalConfig, SignalSeries
from ranking_backtester.errors import WorkerFailureError
from ranking_backtester.logging import get_logger
from ranking_backtester.settings import MAX_POOL_WORKERS

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressMessage], None]

_POLL_INTERVAL_S = 0.1


class _InlineRelay:
    """Progress sink for the in-process path: forwards each message at once."""

    def __init__(self, forward: Callable[[dict[str, Any]], None]) -> None:
        self._forward = forward

    def put(self, item: dict[str, Any]) -> None:
        self._forward(item)


class WorkerPool:
    """Fixed-size pool of worker processes for grid chunks."""

    def __init__(self, max_workers: int | None = None) -> None:
        requested = max_workers or os.cpu_count() or 1
        self.size = max(1, min(requested, MAX_POOL_WORKERS))

        self._executor: ProcessPoolExecutor | None = None
        self._manager = None
        self._cancelled = threading.Event()
        self._run_cancel = None
        self._run_lock = threading.Lock()
        self._busy = False
        self._run_id: str | None = None

    # =========================================================================
    # Public API
    # =========================================================================

    def run(
        self,
        task: GridTask,
        candles: pd.DataFrame,
        signal: SignalSeries | None,
        signal_config: SignalConfig,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> GridResult | None:
        """
        Evaluate ``task`` across the pool.

        Args:
            cancel_event: caller-owned flag; setting it stops this run only.
                A fresh event is used when omitted.

        Returns:
            The merged GridResult, or None if the run was cancelled.

        Raises:
            WorkerFailureError: if any chunk raised; sibling chunks are
                cancelled and no partial result is returned.
        """
        cancelled = cancel_event if cancel_event is not None else threading.Event()
        with self._run_lock:
            self._cancelled = cancelled
            run_id = uuid.uuid4().hex[:12]
            self._run_id = run_id
            self._busy = True
            try:
                chunks = task.split(self.size, run_id=run_id)
                messages = [build_task_message(chunk, candles, signal, signal_config) for chunk in chunks]
                logger.info(
                    "Grid run started",
                    run_id=run_id,
                    kind=task.kind.value,
                    cells=task.cell_count,
                    chunks=len(chunks),
                    workers=self.size,
                )

                if cancelled.is_set():
                    payloads = None
                elif self.size == 1:
                    payloads = self._run_inline(messages, on_progress)
                else:
                    payloads = self._run_parallel(messages, on_progress)
            finally:
                self._busy = False
                self._run_cancel = None

        if payloads is None:
            logger.info("Grid run cancelled", run_id=run_id)
            return None

        merged = self.merge_results([CompleteMessage.from_dict(p).results for p in payloads])
        logger.info(
            "Grid run complete",
            run_id=run_id,
            min_return=round(merged.min_return, 4),
            max_return=round(merged.max_return, 4),
        )
        return merged

    def cancel(self) -> None:
        """Stop the in-flight run, whichever caller owns it; ``run`` then returns None."""
        self._cancelled.set()
        if self._run_cancel is not None:
            self._run_cancel.set()

    def status(self) -> dict[str, Any]:
        return {"size": self.size, "busy": self._busy, "run_id": self._run_id}

    def close(self) -> None:
        self._discard_executor()
        if self._manager is not None:
            self._manager.shutdown()
            self._manager = None

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # Split / Merge
    # =========================================================================

    @staticmethod
    def split_task(task: GridTask, parts: int) -> list[GridTask]:
        return task.split(parts)

    @staticmethod
    def merge_results(results: list[GridResult]) -> GridResult:
        """Concatenate chunk rows in order; columns come from the first chunk."""
        if not results:
            raise ValueError("No chunk results to merge")
        first = results[0]
        row_values: list[float] = []
        cells = []
        for chunk in results:
            row_values.extend(chunk.row_values)
            cells.extend(chunk.cells)
        return GridResult.build(first.kind, row_values, first.col_values, cells, fixed=first.fixed)

    # =========================================================================
    # Execution paths
    # =========================================================================

    def _run_inline(
        self,
        messages: list[dict[str, Any]],
        on_progress: ProgressCallback | None,
    ) -> list[dict[str, Any]] | None:
        chunk_count = len(messages)
        relay = _InlineRelay(lambda item: self._forward(item, chunk_count, on_progress))
        payloads = []
        for message in messages:
            try:
                payload = run_grid_chunk(message, relay, self._cancelled)
            except Exception as e:
                logger.error("Grid chunk failed", chunk=message["chunk_index"], error=str(e))
                raise WorkerFailureError(str(e), chunk_index=message["chunk_index"]) from e
            if payload is None:
                return None
            payloads.append(payload)
        return payloads

    def _run_parallel(
        self,
        messages: list[dict[str, Any]],
        on_progress: ProgressCallback | None,
    ) -> list[dict[str, Any]] | None:
        executor = self._ensure_executor()
        progress_queue = self._manager.Queue()
        cancel_event = self._manager.Event()
        self._run_cancel = cancel_event
        chunk_count = len(messages)

        futures: dict[Future, int] = {
            executor.submit(run_grid_chunk, message, progress_queue, cancel_event): message["chunk_index"]
            for message in messages
        }
        payloads: dict[int, dict[str, Any]] = {}
        pending = set(futures)

        while pending:
            done, pending = wait(pending, timeout=_POLL_INTERVAL_S, return_when=FIRST_COMPLETED)
            self._drain(progress_queue, chunk_count, on_progress)

            if self._cancelled.is_set():
                cancel_event.set()
                self._discard_executor()
                return None

            for future in done:
                chunk_index = futures[future]
                try:
                    payload = future.result()
                except Exception as e:
                    logger.error("Grid chunk failed", chunk=chunk_index, error=str(e))
                    cancel_event.set()
                    self._discard_executor()
                    raise WorkerFailureError(str(e), chunk_index=chunk_index) from e
                if payload is None:
                    return None
                payloads[chunk_index] = payload

        self._drain(progress_queue, chunk_count, on_progress)
        return [payloads[k] for k in sorted(payloads)]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _ensure_executor(self) -> ProcessPoolExecutor:
        if self._manager is None:
            self._manager = Manager()
        if self._executor is None:
            self._executor = ProcessPoolExecutor(max_workers=self.size)
        return self._executor

    def _discard_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def _drain(self, progress_queue: Any, chunk_count: int, on_progress: ProgressCallback | None) -> None:
        while True:
            try:
                item = progress_queue.get_nowait()
            except queue.Empty:
                return
            self._forward(item, chunk_count, on_progress)

    def _forward(self, item: dict[str, Any], chunk_count: int, on_progress: ProgressCallback | None) -> None:
        if on_progress is None:
            return
        local = ProgressMessage.from_dict(item)
        percent = local.chunk_index / chunk_count * 100 + local.percent / chunk_count
        on_progress(ProgressMessage(
            percent=percent,
            message=local.message,
            chunk_index=local.chunk_index,
            run_id=local.run_id,
        ))
