from __future__ import annotations

import json
from pathlib import Path

from config import Settings
from core import AcceptedRecord, ErrorCode, RejectRecord
from main import _apply_overrides, build_parser, main
from storage import AcceptedLog, CheckpointStore, RejectLog


def _stdout_json(capsys) -> dict:
    return json.loads(capsys.readouterr().out.strip().splitlines()[-1])


def _seed(data_dir: Path) -> None:
    checkpoint = CheckpointStore(data_dir / "checkpoint.json")
    checkpoint.mark_in_flight("done-item")
    AcceptedLog(data_dir / "accepted.jsonl").append_once(AcceptedRecord(item_id="done-item"))
    checkpoint.mark_done("done-item", "ref")

    rejects = RejectLog(data_dir / "rejects.jsonl")
    for item_id, code in (("g1", ErrorCode.GUARDRAIL_FAILURE), ("n1", ErrorCode.NETWORK_FAILURE)):
        checkpoint.mark_in_flight(item_id)
        checkpoint.mark_rejected(item_id, code)
        rejects.append(RejectRecord(item_id=item_id, error_code=code))


def test_status_reports_counts(tmp_path: Path, capsys) -> None:
    _seed(tmp_path)

    assert main(["--data-dir", str(tmp_path), "status"]) == 0

    payload = _stdout_json(capsys)
    assert payload["accepted"] == 1
    assert payload["checkpoint"]["done"] == 1
    assert payload["checkpoint"]["rejected"] == 2
    assert payload["rejects_by_code"] == {"GuardrailFailure": 1, "NetworkFailure": 1}
    assert payload["problems"] == []


def test_bucketize_writes_recovery_files_and_plans(tmp_path: Path, capsys) -> None:
    _seed(tmp_path)

    assert main(["--data-dir", str(tmp_path), "bucketize"]) == 0

    payload = _stdout_json(capsys)
    assert payload["buckets"] == {"GuardrailFailure": 1, "NetworkFailure": 1}
    plans = {plan["code"]: plan for plan in payload["plans"]}
    assert plans["GuardrailFailure"]["relaxed"] is True
    assert plans["NetworkFailure"]["probe_first"] is True
    assert (tmp_path / "recovery" / "rejects-GuardrailFailure.txt").read_text(encoding="utf-8") == "g1\n"


def test_bucketize_imports_legacy_log(tmp_path: Path, capsys) -> None:
    legacy = tmp_path / "legacy.jsonl"
    legacy.write_text(json.dumps({"slug": "old", "error": "Captcha challenge"}) + "\n", encoding="utf-8")

    assert main(["--data-dir", str(tmp_path / "out"), "bucketize", "--legacy", str(legacy)]) == 0

    payload = _stdout_json(capsys)
    assert payload["imported"] == 1
    assert payload["buckets"] == {"BlockedEvidence": 1}
    assert payload["plans"] == []


def test_parser_accepts_run_flags() -> None:
    args = build_parser().parse_args(
        ["run", "--input", "items.jsonl", "--budget", "2.5", "--override", "--relaxed", "--bucket", "GuardrailFailure"]
    )
    assert args.command == "run"
    assert args.budget == 2.5
    assert args.override and args.relaxed
    assert args.bucket == "GuardrailFailure"


def test_parser_accepts_dry_run_and_force_recrawl() -> None:
    args = build_parser().parse_args(["run", "--input", "items.jsonl", "--dry-run", "--force-recrawl"])
    assert args.dry_run and args.force_recrawl

    settings = _apply_overrides(Settings(), args)
    assert settings.run.dry_run is True
    assert settings.fetch.force_recrawl is True
    assert _apply_overrides(Settings(), build_parser().parse_args(["status"])).fetch.force_recrawl is False
