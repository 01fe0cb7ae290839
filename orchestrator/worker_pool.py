"""Bounded asyncio worker pool over the item pipeline."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from collections import Counter
from pathlib import Path
from typing import Iterable, List, Optional, Set

from core import ItemOutcome, ItemOutcomeStatus, RunSummary, WorkItem
from pipeline import ItemPipeline
from storage import atomic_write_json
from utils.exceptions import CheckpointError

from .queue import ItemQueue
from .run_lock import RunLock


logger = logging.getLogger(__name__)

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class WorkerPool:
    """
    Runs ``ItemPipeline.process`` on N concurrent workers.

    Startup reclaims expired leases and reconciles the checkpoint with the accepted
    log (skipped in dry-run mode, which leaves the checkpoint untouched). With the
    override flag, rejected items that reached the retry ceiling are parked instead
    of queued. A stop request (signal or ``request_stop``) lets each worker finish its
    current suspension point; interrupted items release their lease.
    """

    def __init__(
        self,
        pipeline: ItemPipeline,
        *,
        concurrency: int = 4,
        run_lock: Optional[RunLock] = None,
        output_dir: Optional[Path] = None,
        install_signal_handlers: bool = False,
    ) -> None:
        self.pipeline = pipeline
        self.concurrency = max(1, int(concurrency))
        self.run_lock = run_lock
        self.output_dir = Path(output_dir) if output_dir else None
        self.install_signal_handlers = install_signal_handlers
        self._stop = asyncio.Event()
        self._signalled = False
        self._outcomes: List[ItemOutcome] = []
        self._queue = ItemQueue()

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.warning("Stop requested; finishing in-flight suspension points")
        self._stop.set()

    def _on_signal(self) -> None:
        self._signalled = True
        self.request_stop()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _install_handlers(self) -> List[int]:
        installed: List[int] = []
        if not self.install_signal_handlers:
            return installed
        loop = asyncio.get_running_loop()
        for sig in _STOP_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handler for %s not supported here", sig)
        return installed

    def _remove_handlers(self, installed: Iterable[int]) -> None:
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    def _recover(self) -> int:
        checkpoint = self.pipeline.checkpoint
        reclaimed = checkpoint.reclaim_expired()
        checkpoint.reconcile(self.pipeline.accepted_log.refs())
        if self.pipeline.guard is not None:
            self.pipeline.guard.reload()
        return len(reclaimed)

    def _select(self, items: Iterable[WorkItem]) -> List[WorkItem]:
        checkpoint = self.pipeline.checkpoint
        selected: List[WorkItem] = []
        seen: Set[str] = set()
        for item in items:
            if item.id in seen:
                continue
            seen.add(item.id)
            if not item.missing_fields():
                self._outcomes.append(
                    ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.SKIPPED, message="fully populated")
                )
            elif self.pipeline.override and not self.pipeline.dry_run and checkpoint.exhausted(item.id):
                self._outcomes.append(self.pipeline.abandon(item))
            elif checkpoint.should_process(item.id, override=self.pipeline.override):
                selected.append(item)
        return selected

    async def _worker(self, index: int) -> None:
        while not self._stop.is_set():
            item = self._queue.dequeue()
            if item is None:
                return
            try:
                outcome = await self.pipeline.process(item, should_stop=self._stop.is_set)
            except CheckpointError as exc:
                logger.warning("Worker %d skipped %s: %s", index, item.id, exc)
                outcome = ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.SKIPPED, message=exc.message)
            except Exception:
                logger.exception("Worker %d crashed on %s; lease released", index, item.id)
                self.pipeline.checkpoint.release(item.id)
                outcome = ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.INTERRUPTED, message="worker error")
            self._outcomes.append(outcome)
            if outcome.status == ItemOutcomeStatus.BUDGET_EXCEEDED:
                self._stop.set()
            if self.run_lock is not None:
                self.run_lock.heartbeat()

    def _summarize(self, summary: RunSummary) -> RunSummary:
        counts = Counter(outcome.status for outcome in self._outcomes)
        summary.accepted = counts[ItemOutcomeStatus.ACCEPTED]
        summary.rejected = counts[ItemOutcomeStatus.REJECTED]
        summary.skipped = counts[ItemOutcomeStatus.SKIPPED]
        summary.interrupted = counts[ItemOutcomeStatus.INTERRUPTED] + counts[ItemOutcomeStatus.BUDGET_EXCEEDED]
        summary.previewed = counts[ItemOutcomeStatus.PREVIEWED]
        summary.rejects_by_code = dict(
            Counter(o.error_code.value for o in self._outcomes if o.status == ItemOutcomeStatus.REJECTED and o.error_code)
        )
        budget = self.pipeline.budget
        summary.ledger = budget.snapshot()
        summary.budget_exceeded = summary.ledger.aborted
        summary.stopped_by_signal = self._signalled
        summary.finished_at = time.time()
        if budget.claim_report():
            logger.error(
                "Run aborted: budget cap $%.2f exceeded (spent $%.4f)", summary.ledger.cap, summary.ledger.cost_so_far
            )
        return summary

    def _write_outputs(self, summary: RunSummary) -> None:
        if self.output_dir is None:
            return
        self.pipeline.budget.export(self.output_dir / "usage.json")
        meta = {
            "pid": os.getpid(),
            "concurrency": self.concurrency,
            "override": self.pipeline.override,
            "dry_run": self.pipeline.dry_run,
            "checkpoint": self.pipeline.checkpoint.counts(),
            "summary": summary.model_dump(mode="json"),
        }
        atomic_write_json(self.output_dir / "run-meta.json", meta, indent=2)

    async def run(self, items: Iterable[WorkItem]) -> RunSummary:
        summary = RunSummary()
        self._outcomes = []
        self._signalled = False
        self._stop.clear()

        if self.run_lock is not None:
            self.run_lock.acquire()
        installed: List[int] = []
        try:
            installed = self._install_handlers()
            if not self.pipeline.dry_run:
                summary.reclaimed = self._recover()
            selected = self._select(items)
            summary.planned = len(selected)
            self.pipeline.budget.plan(len(selected))
            self._queue = ItemQueue(selected)
            logger.info("Processing %d item(s) with %d worker(s)", len(selected), self.concurrency)

            workers = [asyncio.create_task(self._worker(index)) for index in range(self.concurrency)]
            await asyncio.gather(*workers)
            left = self._queue.drain()
            if left:
                logger.info("%d queued item(s) left for a later run", left)

            self._summarize(summary)
            self._write_outputs(summary)
        finally:
            if installed:
                self._remove_handlers(installed)
            if self.run_lock is not None:
                self.run_lock.release()

        logger.info(
            "Run finished: %d accepted, %d rejected, %d skipped, %d interrupted, $%.4f spent",
            summary.accepted,
            summary.rejected,
            summary.skipped,
            summary.interrupted,
            summary.ledger.cost_so_far,
        )
        return summary
