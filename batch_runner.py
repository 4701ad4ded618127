"""
batch_runner.py - Batch Pre-Eligibility Evaluation for CTP Requests

Reads wound episodes and encounters from CSV, runs the deterministic
pre-eligibility gate for each episode, and writes auditable artifacts.

Input (CTP_INPUT_DIR, default ./input):
    episodes.csv    episode_id, wound_type, wound_location, primary_diagnosis,
                    start_date, status, state
    encounters.csv  encounter_id, episode_id, date, notes, diabetic_status,
                    procedure_codes, length, width, depth, area, unit, method,
                    interventions (optional)
    Multi-valued cells (notes, procedure_codes, interventions) are '|' separated.

Output (CTP_OUTPUT_DIR, default ./output):
    pre_eligibility_results.json   full results, schema-validated
    pre_eligibility_summary.csv    one row per episode
    audit_log.jsonl                hash-chained decision log (verify_audit.py)

Usage:
    $ python batch_runner.py
    $ python batch_runner.py --input-dir data/ --as-of 2024-03-01
    $ python batch_runner.py --episode-id EP-001
"""

from __future__ import annotations

import argparse
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from audit_logger import get_audit_logger
from config import (
    AUDIT_LOG_FILE,
    CSV_LIST_SEPARATOR,
    ENCOUNTERS_FILENAME,
    EPISODES_FILENAME,
    INPUT_DIR,
    LOG_LEVEL,
    OUTPUT_DIR,
    RESULTS_FILENAME,
    SNAPSHOT_PATH,
    SUMMARY_FILENAME,
)
from eligibility_engine import perform_pre_eligibility_checks
from policy_constants import LCD_JURISDICTION, LCD_POLICY_ID, mac_jurisdiction_for_state
from policy_snapshot import snapshot_sha256
from policy_utils import normalize, parse_timestamp
from schema_validation import validate_eligibility_report

logger = logging.getLogger(__name__)

_MEASUREMENT_COLUMNS = ("length", "width", "depth", "area", "unit", "method")
SUMMARY_COLUMNS = [
    "episode_id",
    "overall_eligible",
    "wound_category",
    "days_of_care",
    "percent_reduction",
    "lcd_phase",
    "lcd_compliance",
    "data_quality_grade",
    "weekly_documentation",
    "mac_jurisdiction",
    "failure_count",
    "failure_reasons",
]


def _now_iso() -> str:
    """Generate ISO 8601 timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _cell(row: dict[str, Any], key: str) -> Optional[str]:
    raw = row.get(key)
    return str(raw).strip() if normalize(raw) else None


def _split(cell: Optional[str]) -> list[str]:
    if not cell:
        return []
    return [part.strip() for part in cell.split(CSV_LIST_SEPARATOR) if part.strip()]


def _encounter_from_row(row: dict[str, Any]) -> dict[str, Any]:
    measurements = {k: _cell(row, k) for k in _MEASUREMENT_COLUMNS if _cell(row, k) is not None}
    return {
        "id": _cell(row, "encounter_id"),
        "date": _cell(row, "date"),
        "notes": _split(_cell(row, "notes")),
        "diabetic_status": _cell(row, "diabetic_status"),
        "procedure_codes": [{"code": c} for c in _split(_cell(row, "procedure_codes"))],
        "conservative_care": {"interventions": [{"name": n} for n in _split(_cell(row, "interventions"))]},
        "wound_details": {"measurements": measurements} if measurements else {},
    }


def load_episodes(input_dir: Path) -> tuple[list[dict[str, Any]], dict[str, list[dict[str, Any]]]]:
    """
    Returns (episodes, encounters_by_episode). All cells are read as strings;
    parsing and validation happen inside the gate.
    """
    episodes_path = input_dir / EPISODES_FILENAME
    encounters_path = input_dir / ENCOUNTERS_FILENAME
    missing = [str(p) for p in (episodes_path, encounters_path) if not p.exists()]
    if missing:
        raise FileNotFoundError(f"Missing required data files: {', '.join(missing)}")

    df_episodes = pd.read_csv(episodes_path, dtype=str, keep_default_na=False)
    df_encounters = pd.read_csv(encounters_path, dtype=str, keep_default_na=False)

    if "episode_id" not in df_episodes.columns or "episode_id" not in df_encounters.columns:
        raise ValueError(f"Column 'episode_id' is required in both {EPISODES_FILENAME} and {ENCOUNTERS_FILENAME}")

    episodes = [
        {
            "id": _cell(row, "episode_id"),
            "wound_type": _cell(row, "wound_type") or "",
            "wound_location": _cell(row, "wound_location") or "",
            "primary_diagnosis": _cell(row, "primary_diagnosis"),
            "start_date": _cell(row, "start_date"),
            "status": _cell(row, "status") or "active",
            "state": _cell(row, "state"),
        }
        for row in df_episodes.to_dict(orient="records")
        if _cell(row, "episode_id")
    ]

    encounters_by_episode: dict[str, list[dict[str, Any]]] = {}
    for episode_id, group in df_encounters.groupby("episode_id", sort=False):
        encounters_by_episode[str(episode_id)] = [_encounter_from_row(r) for r in group.to_dict(orient="records")]

    return episodes, encounters_by_episode


def _summary_row(result: dict[str, Any], state: Optional[str]) -> dict[str, Any]:
    area = result.get("area_reduction_check") or {}
    lcd = result.get("lcd_compliance") or {}
    quality = result.get("quality_report") or {}
    weekly = result.get("weekly_compliance") or {}
    return {
        "episode_id": result["episode_id"],
        "overall_eligible": result["overall_eligible"],
        "wound_category": result["wound_type_check"]["details"].get("category"),
        "days_of_care": result["conservative_care_check"].get("days_of_care"),
        "percent_reduction": area.get("percent_reduction"),
        "lcd_phase": lcd.get("phase"),
        "lcd_compliance": lcd.get("overall_compliance"),
        "data_quality_grade": quality.get("data_quality_grade"),
        "weekly_documentation": weekly.get("status"),
        "mac_jurisdiction": mac_jurisdiction_for_state(state),
        "failure_count": len(result["failure_reasons"]),
        "failure_reasons": " | ".join(result["failure_reasons"]),
    }


def run_batch(
    input_dir: Path = INPUT_DIR,
    output_dir: Path = OUTPUT_DIR,
    audit_log_file: Path = AUDIT_LOG_FILE,
    as_of: Optional[datetime] = None,
    episode_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Evaluate every episode and write artifacts.

    Raises:
        FileNotFoundError: if either input CSV is missing.
        jsonschema.ValidationError: if the assembled report violates the schema.
    """
    episodes, encounters_by_episode = load_episodes(Path(input_dir))
    if episode_id:
        episodes = [e for e in episodes if e["id"] == episode_id]
        if not episodes:
            logger.warning("Episode %s not found in %s", episode_id, EPISODES_FILENAME)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    audit = get_audit_logger(audit_log_file)
    now = as_of or datetime.now(timezone.utc)

    logger.info("Batch starting: %d episode(s) under LCD %s -> %s", len(episodes), LCD_POLICY_ID, output_dir)

    results: list[dict[str, Any]] = []
    summary: list[dict[str, Any]] = []
    errors: list[dict[str, str]] = []
    for i, episode in enumerate(episodes):
        start = time.time()
        encounters = encounters_by_episode.get(episode["id"], [])
        try:
            result = perform_pre_eligibility_checks(episode, encounters, now=now).to_dict()
        except (ValueError, TypeError, KeyError) as e:
            logger.error("Error processing episode %s: %s", episode["id"], e)
            errors.append({"episode_id": episode["id"], "error": str(e)})
            continue

        results.append(result)
        summary.append(_summary_row(result, episode.get("state")))
        audit.log_event(
            "PRE_ELIGIBILITY_DECISION",
            details={
                "policy_id": LCD_POLICY_ID,
                "overall_eligible": result["overall_eligible"],
                "failure_reasons": result["failure_reasons"],
                "policy_violations": result["policy_violations"],
            },
            episode_id=episode["id"],
        )
        logger.info(
            "[%d/%d] Episode %s -> %s (%dms)",
            i + 1,
            len(episodes),
            episode["id"],
            "ELIGIBLE" if result["overall_eligible"] else "NOT ELIGIBLE",
            int((time.time() - start) * 1000),
        )

    output: dict[str, Any] = {
        "metadata": {
            "timestamp": _now_iso(),
            "as_of": now.isoformat(),
            "policy_id": LCD_POLICY_ID,
            "jurisdiction": LCD_JURISDICTION,
            "snapshot_sha256": snapshot_sha256(SNAPSHOT_PATH),
            "episode_count": len(results),
            "eligible_count": sum(1 for r in results if r["overall_eligible"]),
            "error_count": len(errors),
        },
        "results": results,
        "errors": errors,
    }
    validate_eligibility_report(output)

    with open(output_dir / RESULTS_FILENAME, "w", encoding="utf-8") as f:
        json.dump(output, f, indent=2)
    pd.DataFrame(summary, columns=SUMMARY_COLUMNS).to_csv(output_dir / SUMMARY_FILENAME, index=False)

    audit.log_event(
        "BATCH_COMPLETE",
        details={
            "policy_id": LCD_POLICY_ID,
            "episode_count": len(results),
            "eligible_count": output["metadata"]["eligible_count"],
            "error_count": len(errors),
        },
    )
    logger.info(
        "Batch complete: %d/%d eligible, %d error(s)",
        output["metadata"]["eligible_count"],
        len(results),
        len(errors),
    )
    return output


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"CTP pre-eligibility batch (LCD {LCD_POLICY_ID})")
    parser.add_argument("--input-dir", type=Path, default=INPUT_DIR)
    parser.add_argument("--output-dir", type=Path, default=OUTPUT_DIR)
    parser.add_argument("--audit-log", type=Path, default=AUDIT_LOG_FILE)
    parser.add_argument("--as-of", help="Evaluation date (ISO-8601); defaults to now")
    parser.add_argument("--episode-id", help="Run only for a specific episode")
    return parser.parse_args(argv)


if __name__ == "__main__":
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = _parse_args()
    as_of = parse_timestamp(args.as_of) if args.as_of else None
    if args.as_of and as_of is None:
        raise SystemExit(f"Invalid --as-of value: {args.as_of!r}")
    run_batch(args.input_dir, args.output_dir, args.audit_log, as_of=as_of, episode_id=args.episode_id)
