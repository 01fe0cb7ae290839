"""Output layout and service wiring shared by the CLI entrypoints."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from config import Settings
from core import Tier
from intelligence import GenerationClient
from pipeline import BudgetTracker, ItemPipeline, OriginalityGuard, RetryClassifier
from sources import EvidenceFetcher
from storage import AcceptedLog, AppendOnlyLog, CheckpointStore, EvidenceCache, RejectLog
from validation import ValidationEngine, ValidationPolicy, relaxation_from_settings

from .run_lock import RunLock
from .worker_pool import WorkerPool


@dataclass(frozen=True)
class RunPaths:
    """Files under one output directory."""

    root: Path

    @property
    def accepted(self) -> Path:
        return self.root / "accepted.jsonl"

    @property
    def rejects(self) -> Path:
        return self.root / "rejects.jsonl"

    @property
    def checkpoint(self) -> Path:
        return self.root / "checkpoint.json"

    @property
    def fingerprints(self) -> Path:
        return self.root / "fingerprints.jsonl"

    @property
    def usage(self) -> Path:
        return self.root / "usage.json"

    @property
    def run_meta(self) -> Path:
        return self.root / "run-meta.json"

    @property
    def recovery(self) -> Path:
        return self.root / "recovery"

    @property
    def cache(self) -> Path:
        return self.root / "cache"

    @property
    def dry_run(self) -> Path:
        return self.root / "dry-run.jsonl"

    @property
    def lock(self) -> Path:
        return self.root / ".run.lock"


def build_policy(settings: Settings, *, relaxed: bool = False) -> ValidationPolicy:
    policy = ValidationPolicy.from_settings(settings.validation)
    if relaxed:
        policy = policy.relaxed(relaxation_from_settings(settings.validation))
    return policy


def build_checkpoint(settings: Settings, paths: RunPaths) -> CheckpointStore:
    return CheckpointStore(
        paths.checkpoint,
        lease_timeout=settings.run.lease_timeout_seconds,
        retry_ceiling=settings.run.retry_ceiling,
    )


def build_fetcher(settings: Settings, paths: RunPaths) -> EvidenceFetcher:
    cache = EvidenceCache(paths.cache, ttl=settings.fetch.cache_ttl)
    return EvidenceFetcher(settings.fetch, cache=cache)


def build_classifier(settings: Settings, paths: RunPaths, checkpoint: Optional[CheckpointStore] = None) -> RetryClassifier:
    return RetryClassifier(
        RejectLog(paths.rejects),
        checkpoint or build_checkpoint(settings, paths),
        retry_ceiling=settings.run.retry_ceiling,
        recovery_dir=paths.recovery,
    )


def seed_call_cost(settings: Settings, client: GenerationClient) -> float:
    """Configured first-call estimate, else a full-length primary call at list price."""
    if settings.budget.seed_call_cost_usd > 0:
        return settings.budget.seed_call_cost_usd
    return client.cost_of(Tier.PRIMARY, settings.budget.seed_prompt_tokens, settings.generation.max_tokens)


def build_pool(
    settings: Settings,
    paths: RunPaths,
    *,
    client: Optional[GenerationClient] = None,
    fetcher: Optional[EvidenceFetcher] = None,
    install_signal_handlers: bool = True,
) -> WorkerPool:
    """Wire every service for a generation run from settings."""
    run = settings.run
    policy = build_policy(settings, relaxed=run.relaxed)
    client = client or GenerationClient.from_settings(settings.generation, policy=policy)
    pipeline = ItemPipeline(
        fetcher=fetcher or build_fetcher(settings, paths),
        client=client,
        engine=ValidationEngine(policy),
        checkpoint=build_checkpoint(settings, paths),
        accepted_log=AcceptedLog(paths.accepted),
        reject_log=RejectLog(paths.rejects),
        budget=BudgetTracker.from_settings(settings.budget, seed_call_cost=seed_call_cost(settings, client)),
        guard=OriginalityGuard.from_settings(paths.fingerprints, settings.originality),
        max_repairs=run.max_repairs,
        allow_escalation=run.allow_escalation,
        override=run.override,
        force_recrawl=settings.fetch.force_recrawl,
        dry_run=run.dry_run,
        preview_log=AppendOnlyLog(paths.dry_run) if run.dry_run else None,
    )
    return WorkerPool(
        pipeline,
        concurrency=run.concurrency,
        run_lock=RunLock(paths.lock, stale_after=run.stale_lock_seconds),
        output_dir=paths.root,
        install_signal_handlers=install_signal_handlers,
    )
