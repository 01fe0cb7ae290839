"""CLI entrypoint for generation runs, evidence probes and reject triage."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Set

from config import Settings, get_settings
from core import ErrorCode
from orchestrator import RunPaths, build_checkpoint, build_classifier, build_fetcher, build_pool
from sources.catalog import load_work_items, read_id_list
from storage import AcceptedLog, RejectLog
from utils import PipelineError, setup_logger


def _print(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """CLI flags win over environment settings."""
    run_updates: Dict[str, Any] = {}
    for flag, field in (
        ("data_dir", "data_dir"),
        ("concurrency", "concurrency"),
        ("retry_ceiling", "retry_ceiling"),
        ("log_level", "log_level"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            run_updates[field] = value
    for flag in ("probe_only", "dry_run", "relaxed", "override"):
        if getattr(args, flag, False):
            run_updates[flag] = True
    updates: Dict[str, Any] = {}
    if run_updates:
        updates["run"] = settings.run.model_copy(update=run_updates)
    budget = getattr(args, "budget", None)
    if budget is not None:
        updates["budget"] = settings.budget.model_copy(update={"cap_usd": budget})
    if getattr(args, "force_recrawl", False):
        updates["fetch"] = settings.fetch.model_copy(update={"force_recrawl": True})
    return settings.model_copy(update=updates) if updates else settings


def _selected_ids(args: argparse.Namespace, paths: RunPaths) -> Optional[Set[str]]:
    ids: Optional[Set[str]] = None
    if getattr(args, "only_ids", None):
        ids = read_id_list(Path(args.only_ids))
    bucket = getattr(args, "bucket", None)
    if bucket:
        bucket_file = paths.recovery / f"rejects-{ErrorCode(bucket).value}.txt"
        bucket_ids = read_id_list(bucket_file) if bucket_file.exists() else set()
        ids = bucket_ids if ids is None else ids & bucket_ids
    return ids


async def _probe(settings: Settings, paths: RunPaths, items) -> Dict[str, Any]:
    classifier = build_classifier(settings, paths)
    async with build_fetcher(settings, paths) as fetcher:
        report = await classifier.probe(items, fetcher, concurrency=settings.run.concurrency)
    return {"probed": len(items), "viable": report.viable, "failing": report.failing}


async def _run(settings: Settings, paths: RunPaths, items) -> Dict[str, Any]:
    pool = build_pool(settings, paths)
    try:
        summary = await pool.run(items)
    finally:
        await pool.pipeline.fetcher.aclose()
        await pool.pipeline.client.aclose()
    return summary.model_dump(mode="json")


def _status(settings: Settings, paths: RunPaths) -> Dict[str, Any]:
    checkpoint = build_checkpoint(settings, paths)
    accepted = AcceptedLog(paths.accepted)
    rejects = RejectLog(paths.rejects).latest_by_item()
    by_code: Dict[str, int] = {}
    for record in rejects.values():
        by_code[record.error_code.value] = by_code.get(record.error_code.value, 0) + 1
    return {
        "data_dir": str(paths.root),
        "checkpoint": checkpoint.counts(),
        "accepted": len(accepted.ids()),
        "rejects_by_code": by_code,
        "problems": checkpoint.check_invariants(accepted.ids()),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Catalog copy pipeline CLI")
    parser.add_argument("--data-dir", default=None, help="Output directory (default: RUN_DATA_DIR)")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Generate copy for work items")
    run.add_argument("--input", required=True, help="JSONL or CSV of work items")
    run.add_argument("--only-ids", default=None, help="File with one item id per line")
    run.add_argument("--bucket", default=None, help="Restrict to a recovery bucket, e.g. GuardrailFailure")
    run.add_argument("--limit", type=int, default=0)
    run.add_argument("--concurrency", type=int, default=None)
    run.add_argument("--budget", type=float, default=None, help="Hard spend cap in USD (0 disables)")
    run.add_argument("--retry-ceiling", type=int, default=None)
    run.add_argument("--probe-only", action="store_true", help="Fetch and classify evidence only")
    run.add_argument("--dry-run", action="store_true", help="Fetch evidence and write previews, no generation")
    run.add_argument("--force-recrawl", action="store_true", help="Ignore cached evidence")
    run.add_argument("--relaxed", action="store_true", help="Use relaxed validation bands")
    run.add_argument("--override", action="store_true", help="Reprocess rejected items")

    probe = sub.add_parser("probe", help="Re-test evidence viability without generation")
    probe.add_argument("--input", required=True)
    probe.add_argument("--only-ids", default=None)
    probe.add_argument("--bucket", default=None)
    probe.add_argument("--limit", type=int, default=0)
    probe.add_argument("--concurrency", type=int, default=None)

    bucketize = sub.add_parser("bucketize", help="Group rejects by code and plan recovery passes")
    bucketize.add_argument("--retry-ceiling", type=int, default=None)
    bucketize.add_argument("--legacy", default=None, help="Older reject log with free-text errors to import first")

    sub.add_parser("status", help="Checkpoint and log summary")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = _apply_overrides(get_settings(), args)
    setup_logger(level=settings.run.log_level)
    paths = RunPaths(Path(settings.run.data_dir))

    try:
        if args.command in ("run", "probe"):
            items = load_work_items(Path(args.input), only_ids=_selected_ids(args, paths), limit=args.limit)
            if args.command == "probe" or settings.run.probe_only:
                _print(asyncio.run(_probe(settings, paths, items)))
            else:
                _print(asyncio.run(_run(settings, paths, items)))
            return 0

        if args.command == "bucketize":
            classifier = build_classifier(settings, paths)
            imported = classifier.import_legacy(Path(args.legacy)) if args.legacy else 0
            report = classifier.bucketize()
            plans = classifier.plan(report)
            _print(
                {
                    "imported": imported,
                    "buckets": report.counts(),
                    "parked": report.parked,
                    "files": report.files,
                    "plans": [
                        {
                            "code": plan.code.value,
                            "items": len(plan.item_ids),
                            "relaxed": plan.relaxed,
                            "probe_first": plan.probe_first,
                        }
                        for plan in plans
                    ],
                }
            )
            return 0

        if args.command == "status":
            _print(_status(settings, paths))
            return 0
    except PipelineError as exc:
        _print({"error": exc.__class__.__name__, "message": exc.message, "details": exc.details})
        return 1
    return 2


if __name__ == "__main__":
    sys.exit(main())
