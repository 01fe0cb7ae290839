"""One item end to end: evidence, generation with repair, commit."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from core import (
    AcceptedMeta,
    AcceptedRecord,
    ErrorCode,
    EvidenceRecord,
    GenerationRequest,
    GenerationResult,
    ItemOutcome,
    ItemOutcomeStatus,
    RejectRecord,
    WorkItem,
)
from intelligence import GenerationClient
from sources import EvidenceFetcher
from storage import AcceptedLog, AppendOnlyLog, CheckpointStore, RejectLog, record_ref_for
from utils.exceptions import BudgetExceeded, EvidenceError, RunInterrupted
from validation import ValidationEngine

from .budget import BudgetTracker
from .originality import OriginalityGuard
from .repair import RepairController


logger = logging.getLogger(__name__)

StopCheck = Callable[[], bool]


def _never() -> bool:
    return False


class ItemPipeline:
    """
    Processes a single work item against shared services.

    Commit order is accepted-log append first, checkpoint second; a crash between the
    two is repaired at startup by ``CheckpointStore.reconcile``.
    """

    def __init__(
        self,
        *,
        fetcher: EvidenceFetcher,
        client: GenerationClient,
        engine: ValidationEngine,
        checkpoint: CheckpointStore,
        accepted_log: AcceptedLog,
        reject_log: RejectLog,
        budget: BudgetTracker,
        guard: Optional[OriginalityGuard] = None,
        max_repairs: int = 2,
        allow_escalation: bool = True,
        override: bool = False,
        force_recrawl: bool = False,
        dry_run: bool = False,
        preview_log: Optional[AppendOnlyLog] = None,
    ) -> None:
        self.fetcher = fetcher
        self.client = client
        self.engine = engine
        self.checkpoint = checkpoint
        self.accepted_log = accepted_log
        self.reject_log = reject_log
        self.budget = budget
        self.guard = guard
        self.override = override
        self.force_recrawl = force_recrawl
        self.dry_run = dry_run
        self.preview_log = preview_log
        self.controller = RepairController(
            engine,
            self._generate,
            guard=guard,
            max_repairs=max_repairs,
            allow_escalation=allow_escalation,
        )

    async def _generate(self, request: GenerationRequest) -> GenerationResult:
        reservation = self.budget.admit()
        try:
            result = await self.client.generate(request)
        except BaseException:
            self.budget.release(reservation)
            raise
        self.budget.record(result.usage, reservation)
        return result

    def _reject(
        self,
        item: WorkItem,
        code: ErrorCode,
        message: str,
        *,
        failed_rules=None,
        attempts: int = 0,
        cost: float = 0.0,
        tier_used=None,
    ) -> ItemOutcome:
        self.reject_log.append(
            RejectRecord(
                item_id=item.id,
                error_code=code,
                message=message,
                source_url=item.source_url,
                failed_rules=list(failed_rules or []),
            )
        )
        self.checkpoint.mark_rejected(item.id, code)
        logger.info("Rejected %s: %s (%s)", item.id, code.value, message)
        return ItemOutcome(
            item_id=item.id,
            status=ItemOutcomeStatus.REJECTED,
            error_code=code,
            message=message,
            attempts=attempts,
            tier_used=tier_used,
            cost=cost,
        )

    def _accept(self, item: WorkItem, evidence: EvidenceRecord, repair_result) -> ItemOutcome:
        verdict = repair_result.verdict
        record = AcceptedRecord(
            item_id=item.id,
            sections=verdict.content,
            meta=AcceptedMeta(
                source_url=item.source_url,
                final_url=evidence.final_url,
                evidence_hash=evidence.content_hash,
                tier_used=repair_result.tier_used,
                attempts=repair_result.attempts,
                cost=round(repair_result.usage.cost, 6),
                preserved=verdict.preserved,
            ),
        )
        if not self.accepted_log.append_once(record):
            logger.warning("Accepted record for %s already present; keeping the first", item.id)
            ref = self.accepted_log.refs().get(item.id, record_ref_for(record))
        else:
            ref = record_ref_for(record)
        self.checkpoint.mark_done(item.id, ref)
        logger.info(
            "Accepted %s (%s tier, %d attempt(s), $%.4f)",
            item.id,
            repair_result.tier_used.value,
            repair_result.attempts,
            repair_result.usage.cost,
        )
        return ItemOutcome(
            item_id=item.id,
            status=ItemOutcomeStatus.ACCEPTED,
            attempts=repair_result.attempts,
            tier_used=repair_result.tier_used,
            cost=repair_result.usage.cost,
        )

    def abandon(self, item: WorkItem) -> ItemOutcome:
        """Park an item that has used up its retries instead of generating again."""
        entry = self.checkpoint.get(item.id)
        last = entry.last_error_code.value if entry is not None and entry.last_error_code else "unknown"
        message = f"Retry ceiling {self.checkpoint.retry_ceiling} reached (last: {last})"
        if self.checkpoint.park([item.id]):
            self.reject_log.append(
                RejectRecord(
                    item_id=item.id,
                    error_code=ErrorCode.ABANDONED,
                    message=message,
                    source_url=item.source_url,
                )
            )
            logger.info("Abandoned %s: %s", item.id, message)
        return ItemOutcome(
            item_id=item.id,
            status=ItemOutcomeStatus.REJECTED,
            error_code=ErrorCode.ABANDONED,
            message=message,
        )

    async def preview(self, item: WorkItem) -> ItemOutcome:
        """
        Fetch evidence only and log what generation would have been grounded on.

        No generation calls, checkpoint transitions or accepted/reject records.
        """
        meta = {"source_url": item.source_url, "dry_run": True}
        code: Optional[ErrorCode] = None
        message = ""
        try:
            evidence = await self.fetcher.fetch(item.source_url, use_cache=not self.force_recrawl)
        except EvidenceError as exc:
            code, message = ErrorCode(exc.code), exc.message
            meta.update(error_code=code.value, message=message)
        else:
            meta.update(
                final_url=evidence.final_url,
                evidence_hash=evidence.content_hash,
                evidence_chars=evidence.char_count,
                blocks=evidence.block_count,
                faq=len(evidence.faq_pairs),
                price_tokens=list(evidence.price_tokens),
            )
        if self.preview_log is not None:
            self.preview_log.append({"id": item.id, "__meta": meta})
        logger.info("Previewed %s (%s)", item.id, meta.get("error_code", "ok"))
        return ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.PREVIEWED, error_code=code, message=message)

    async def process(self, item: WorkItem, should_stop: StopCheck = _never) -> ItemOutcome:
        if not item.missing_fields():
            logger.debug("Skipping %s: every section already populated", item.id)
            return ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.SKIPPED, message="fully populated")

        if self.dry_run:
            return await self.preview(item)

        self.checkpoint.mark_in_flight(item.id, override=self.override)

        if should_stop():
            self.checkpoint.release(item.id)
            return ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.INTERRUPTED)

        try:
            evidence = await self.fetcher.fetch(item.source_url, use_cache=not self.force_recrawl)
        except EvidenceError as exc:
            self.budget.item_completed()
            return self._reject(item, ErrorCode(exc.code), exc.message)

        # lease restarts once evidence is in hand
        self.checkpoint.renew_lease(item.id)
        try:
            repair_result = await self.controller.run(item, evidence, should_stop=should_stop)
        except BudgetExceeded as exc:
            self.checkpoint.release(item.id)
            return ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.BUDGET_EXCEEDED, message=exc.message)
        except RunInterrupted as exc:
            self.checkpoint.release(item.id)
            return ItemOutcome(item_id=item.id, status=ItemOutcomeStatus.INTERRUPTED, message=exc.message)

        self.budget.item_completed()
        if repair_result.accepted:
            return self._accept(item, evidence, repair_result)
        return self._reject(
            item,
            repair_result.error_code or ErrorCode.GUARDRAIL_FAILURE,
            repair_result.message,
            failed_rules=repair_result.failed_rules,
            attempts=repair_result.attempts,
            cost=repair_result.usage.cost,
            tier_used=repair_result.tier_used,
        )
