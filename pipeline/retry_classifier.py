"""Offline reject-log analysis: buckets, retry ceiling, recovery plans and probing."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from core import ErrorCode, ItemStatus, RejectRecord, WorkItem
from sources import EvidenceFetcher, raise_for_flags
from storage import AppendOnlyLog, CheckpointStore, RejectLog, atomic_write_text
from utils.exceptions import EvidenceError


logger = logging.getLogger(__name__)


# Free-text failure messages from older runs, first match wins.
LEGACY_PATTERNS: List[Tuple[re.Pattern, ErrorCode]] = [
    (re.compile(r"\b404\b|status 4\d\d|not found", re.IGNORECASE), ErrorCode.EVIDENCE_UNAVAILABLE),
    (re.compile(r"evidence.*insufficient|insufficient (?:evidence|visible)", re.IGNORECASE), ErrorCode.THIN_EVIDENCE),
    (re.compile(r"captcha|cookie|enable javascript", re.IGNORECASE), ErrorCode.BLOCKED_EVIDENCE),
    (re.compile(r"content.?type", re.IGNORECASE), ErrorCode.BAD_CONTENT_TYPE),
    (
        re.compile(r"fetch failed|econnreset|enotfound|socket hang up|timed? ?out|etimedout|network", re.IGNORECASE),
        ErrorCode.NETWORK_FAILURE,
    ),
    (re.compile(r"rate.?limit|\b429\b|overloaded|capacity", re.IGNORECASE), ErrorCode.GENERATION_FAILURE),
    (re.compile(r"similar|originality|duplicate opening", re.IGNORECASE), ErrorCode.ORIGINALITY_FAILURE),
    (
        re.compile(r"guardrail|grounding check failed|repair failed|primary keyword.*missing", re.IGNORECASE),
        ErrorCode.GUARDRAIL_FAILURE,
    ),
    (re.compile(r"budget", re.IGNORECASE), ErrorCode.BUDGET_EXCEEDED),
]


def classify_message(message: str) -> Optional[ErrorCode]:
    text = str(message or "")
    for pattern, code in LEGACY_PATTERNS:
        if pattern.search(text):
            return code
    return None


@dataclass
class RecoveryPlan:
    """One follow-up pass over a bucket."""

    code: ErrorCode
    item_ids: List[str]
    relaxed: bool = False
    probe_first: bool = False
    override: bool = True


@dataclass
class BucketReport:
    buckets: Dict[str, List[str]] = field(default_factory=dict)
    parked: List[str] = field(default_factory=list)
    files: Dict[str, str] = field(default_factory=dict)

    def counts(self) -> Dict[str, int]:
        return {code: len(ids) for code, ids in sorted(self.buckets.items())}


@dataclass
class ProbeReport:
    viable: List[str] = field(default_factory=list)
    failing: Dict[str, str] = field(default_factory=dict)


RELAXED_CODES = frozenset({ErrorCode.GUARDRAIL_FAILURE})
PROBE_CODES = frozenset({ErrorCode.EVIDENCE_UNAVAILABLE, ErrorCode.NETWORK_FAILURE})
RETRYABLE_CODES = frozenset(
    {
        ErrorCode.GUARDRAIL_FAILURE,
        ErrorCode.ORIGINALITY_FAILURE,
        ErrorCode.GENERATION_FAILURE,
        ErrorCode.EVIDENCE_UNAVAILABLE,
        ErrorCode.NETWORK_FAILURE,
    }
)


class RetryClassifier:
    """
    Reads the reject log (latest record per item, items since accepted dropped) and
    turns it into recovery work. Items whose retry count reached the ceiling are
    parked as ``Abandoned`` and never planned again.
    """

    def __init__(
        self,
        reject_log: RejectLog,
        checkpoint: CheckpointStore,
        *,
        retry_ceiling: int = 3,
        recovery_dir: Optional[Path] = None,
    ) -> None:
        self.reject_log = reject_log
        self.checkpoint = checkpoint
        self.retry_ceiling = max(0, int(retry_ceiling))
        self.recovery_dir = Path(recovery_dir) if recovery_dir else reject_log.path.parent / "recovery"

    def latest_rejects(self) -> Dict[str, RejectRecord]:
        latest = self.reject_log.latest_by_item()
        return {
            item_id: record
            for item_id, record in latest.items()
            if self.checkpoint.state_of(item_id) != ItemStatus.DONE
        }

    def _park_exhausted(self, latest: Dict[str, RejectRecord]) -> List[str]:
        candidates = []
        for item_id, record in latest.items():
            if record.error_code == ErrorCode.ABANDONED:
                continue
            entry = self.checkpoint.get(item_id)
            if entry is not None and entry.retry_count >= self.retry_ceiling:
                candidates.append(item_id)
        parked = self.checkpoint.park(candidates)
        for item_id in parked:
            record = RejectRecord(
                item_id=item_id,
                error_code=ErrorCode.ABANDONED,
                message=f"Retry ceiling {self.retry_ceiling} reached (last: {latest[item_id].error_code.value})",
                source_url=latest[item_id].source_url,
            )
            self.reject_log.append(record)
            latest[item_id] = record
        if parked:
            logger.info("Parked %d item(s) as Abandoned", len(parked))
        return parked

    def bucketize(self, *, write: bool = True) -> BucketReport:
        latest = self.latest_rejects()
        report = BucketReport(parked=self._park_exhausted(latest))
        for item_id, record in latest.items():
            report.buckets.setdefault(record.error_code.value, []).append(item_id)
        for ids in report.buckets.values():
            ids.sort()

        if write:
            for code, ids in report.buckets.items():
                path = self.recovery_dir / f"rejects-{code}.txt"
                atomic_write_text(path, "\n".join(ids) + "\n")
                report.files[code] = str(path)
        logger.info("Bucketized %d reject(s): %s", len(latest), report.counts())
        return report

    def plan(self, report: Optional[BucketReport] = None) -> List[RecoveryPlan]:
        report = report or self.bucketize(write=False)
        plans: List[RecoveryPlan] = []
        for code_value, ids in sorted(report.buckets.items()):
            code = ErrorCode(code_value)
            if code not in RETRYABLE_CODES or not ids:
                continue
            plans.append(
                RecoveryPlan(
                    code=code,
                    item_ids=list(ids),
                    relaxed=code in RELAXED_CODES,
                    probe_first=code in PROBE_CODES,
                )
            )
        return plans

    async def probe(
        self, items: Iterable[WorkItem], fetcher: EvidenceFetcher, *, concurrency: int = 4
    ) -> ProbeReport:
        """Re-test evidence only; never touches generation."""
        report = ProbeReport()
        slots = asyncio.Semaphore(max(1, concurrency))

        async def _one(item: WorkItem) -> None:
            async with slots:
                try:
                    record = await fetcher.inspect(item.source_url, use_cache=False)
                    raise_for_flags(record)
                except EvidenceError as exc:
                    report.failing[item.id] = exc.code
                    return
            report.viable.append(item.id)

        await asyncio.gather(*(_one(item) for item in items))
        report.viable.sort()
        logger.info("Probe: %d viable, %d still failing", len(report.viable), len(report.failing))
        return report

    def import_legacy(self, path: Path) -> int:
        """Append reject records for rows of an older log that carry only free text."""
        imported = 0
        for row in AppendOnlyLog(path).read():
            item_id = str(row.get("item_id") or row.get("slug") or row.get("id") or "").strip()
            if not item_id:
                continue
            message = str(row.get("message") or row.get("error") or "")
            raw_code = row.get("error_code") or row.get("errorCode")
            try:
                code = ErrorCode(raw_code) if raw_code else None
            except ValueError:
                code = None
            code = code or classify_message(message) or ErrorCode.GUARDRAIL_FAILURE
            self.reject_log.append(
                RejectRecord(item_id=item_id, error_code=code, message=message, source_url=str(row.get("url") or ""))
            )
            imported += 1
        logger.info("Imported %d legacy reject(s) from %s", imported, Path(path).name)
        return imported
