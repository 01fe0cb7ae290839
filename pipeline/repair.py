"""Bounded repair / escalation state machine and its async driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from core import (
    PRIMARY_SECTION,
    ErrorCode,
    EvidenceRecord,
    GenerationRequest,
    GenerationResult,
    RepairInstruction,
    RuleOutcome,
    Tier,
    Usage,
    ValidationVerdict,
    WorkItem,
)
from utils.exceptions import GenerationError, RunInterrupted
from validation import ValidationEngine

from .originality import OriginalityGuard, OriginalityReport


logger = logging.getLogger(__name__)


class RepairPhase(str, Enum):
    GENERATED = "generated"
    REPAIRING = "repairing"
    ESCALATED = "escalated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AttemptOutcome(str, Enum):
    PASSED = "passed"
    RULES_FAILED = "rules_failed"
    ORIGINALITY_FAILED = "originality_failed"
    GENERATION_FAILED = "generation_failed"


class RepairAction(str, Enum):
    ACCEPT = "accept"
    REPAIR = "repair"
    ESCALATE = "escalate"
    REJECT = "reject"


TERMINAL_PHASES = frozenset({RepairPhase.ACCEPTED, RepairPhase.REJECTED})


@dataclass(frozen=True)
class RepairState:
    phase: RepairPhase = RepairPhase.GENERATED
    tier: Tier = Tier.PRIMARY
    repairs: int = 0  # at the current tier
    attempts: int = 1
    error_code: Optional[ErrorCode] = None


def transition(
    state: RepairState,
    outcome: AttemptOutcome,
    *,
    max_repairs: int = 2,
    allow_escalation: bool = True,
) -> Tuple[RepairState, RepairAction]:
    """
    Decide what follows one generate+validate attempt.

    Up to ``max_repairs`` repairs per tier, then one escalation to the stronger
    tier, then rejection. A generation error skips straight to escalation (or
    rejection when already escalated).
    """
    if state.phase in TERMINAL_PHASES:
        raise ValueError(f"No transition out of terminal phase {state.phase.value}")

    if outcome == AttemptOutcome.PASSED:
        return replace(state, phase=RepairPhase.ACCEPTED), RepairAction.ACCEPT

    can_escalate = allow_escalation and state.tier == Tier.PRIMARY
    escalated = replace(
        state, phase=RepairPhase.ESCALATED, tier=Tier.ESCALATED, repairs=0, attempts=state.attempts + 1
    )

    if outcome == AttemptOutcome.GENERATION_FAILED:
        if can_escalate:
            return escalated, RepairAction.ESCALATE
        return (
            replace(state, phase=RepairPhase.REJECTED, error_code=ErrorCode.GENERATION_FAILURE),
            RepairAction.REJECT,
        )

    if state.repairs < max_repairs:
        return (
            replace(state, phase=RepairPhase.REPAIRING, repairs=state.repairs + 1, attempts=state.attempts + 1),
            RepairAction.REPAIR,
        )
    if can_escalate:
        return escalated, RepairAction.ESCALATE

    code = ErrorCode.ORIGINALITY_FAILURE if outcome == AttemptOutcome.ORIGINALITY_FAILED else ErrorCode.GUARDRAIL_FAILURE
    return replace(state, phase=RepairPhase.REJECTED, error_code=code), RepairAction.REJECT


GenerateFn = Callable[[GenerationRequest], Awaitable[GenerationResult]]


@dataclass
class RepairResult:
    accepted: bool
    state: RepairState
    verdict: Optional[ValidationVerdict] = None
    usage: Usage = field(default_factory=Usage)
    message: str = ""
    failed_rules: List[str] = field(default_factory=list)
    history: List[Tuple[AttemptOutcome, RepairAction]] = field(default_factory=list)

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.state.error_code

    @property
    def tier_used(self) -> Tier:
        return self.state.tier

    @property
    def attempts(self) -> int:
        return self.state.attempts


class RepairController:
    """
    Drives ``transition`` with real I/O.

    ``generate`` is injected so the item pipeline can wrap every call with budget
    accounting. Originality is gated only after every rule passes, and only when the
    primary section was generated in this run.
    """

    def __init__(
        self,
        engine: ValidationEngine,
        generate: GenerateFn,
        *,
        guard: Optional[OriginalityGuard] = None,
        max_repairs: int = 2,
        allow_escalation: bool = True,
    ) -> None:
        self.engine = engine
        self._generate = generate
        self.guard = guard
        self.max_repairs = max(0, int(max_repairs))
        self.allow_escalation = allow_escalation

    def _originality(self, item: WorkItem, verdict: ValidationVerdict) -> Optional[OriginalityReport]:
        if self.guard is None or PRIMARY_SECTION in verdict.preserved:
            return None
        return self.guard.admit(item.id, str(verdict.content.get(PRIMARY_SECTION, "")))

    async def run(
        self,
        item: WorkItem,
        evidence: EvidenceRecord,
        *,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> RepairResult:
        preserved = item.populated_fields()
        missing = item.missing_fields()
        state = RepairState()
        result = RepairResult(accepted=False, state=state)
        repair: Optional[RepairInstruction] = None

        while True:
            if should_stop is not None and should_stop():
                raise RunInterrupted("Stop requested before generation", {"item_id": item.id})

            request = GenerationRequest(
                item_id=item.id,
                display_name=item.display_name,
                missing_fields=missing,
                evidence=evidence,
                tier=state.tier,
                repair=repair,
            )
            failures: List[RuleOutcome] = []
            previous: Dict = {}
            try:
                generated = await self._generate(request)
            except GenerationError as exc:
                outcome = AttemptOutcome.GENERATION_FAILED
                result.message = str(exc)
            else:
                result.usage = result.usage.merged(generated.usage)
                previous = generated.to_wire()
                verdict = self.engine.validate(generated, item=item, evidence=evidence, preserved=preserved)
                result.verdict = verdict
                if not verdict.passed:
                    outcome = AttemptOutcome.RULES_FAILED
                    failures = verdict.failures
                    result.failed_rules = verdict.failed_rule_ids
                    result.message = f"{len(failures)} rule(s) failed"
                else:
                    report = self._originality(item, verdict)
                    if report is None or report.passed:
                        outcome = AttemptOutcome.PASSED
                    else:
                        outcome = AttemptOutcome.ORIGINALITY_FAILED
                        detail = report.describe(self.guard.threshold)
                        failures = [RuleOutcome(rule_id="originality", section=PRIMARY_SECTION, passed=False, detail=detail)]
                        result.failed_rules = [failures[0].label]
                        result.message = detail

            state, action = transition(
                state, outcome, max_repairs=self.max_repairs, allow_escalation=self.allow_escalation
            )
            result.state = state
            result.history.append((outcome, action))
            logger.debug("Item %s: %s -> %s (%s tier)", item.id, outcome.value, action.value, state.tier.value)

            if action == RepairAction.ACCEPT:
                result.accepted = True
                result.message = ""
                result.failed_rules = []
                return result
            if action == RepairAction.REJECT:
                return result
            if action == RepairAction.REPAIR:
                repair = RepairInstruction(failures=failures, previous=previous)
            else:
                repair = None
