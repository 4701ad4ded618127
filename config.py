"""
config.py - Centralized Configuration for the CTP Pre-Eligibility Gate

Single source of truth for environment variables and runtime paths.
Clinical thresholds are NOT configured here; they come from the LCD snapshot
(see policy_constants.py) so the gate cannot drift from the published policy.
"""

import os
from pathlib import Path

# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

def _as_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_path(name: str, default: str) -> Path:
    raw = os.getenv(name, default).strip()
    path = Path(raw)
    if not path.is_absolute():
        path = PROJECT_ROOT / path
    return path


PROJECT_ROOT = Path(__file__).resolve().parent

# -----------------------------------------------------------------------------
# Policy snapshot
# -----------------------------------------------------------------------------
POLICY_ID = os.getenv("CTP_POLICY_ID", "L39806").strip()
SNAPSHOT_PATH = _as_path("CTP_SNAPSHOT_PATH", f"policies/{POLICY_ID}.json")
SCHEMA_DIR = _as_path("CTP_SCHEMA_DIR", "schemas")

# -----------------------------------------------------------------------------
# Orchestrator behaviour
# -----------------------------------------------------------------------------
INCLUDE_QUALITY_REPORT = _as_bool("CTP_INCLUDE_QUALITY_REPORT", "true")
ENABLE_AUTO_CORRECTION = _as_bool("CTP_ENABLE_AUTO_CORRECTION", "false")

# =============================================================================
# BATCH ARTIFACTS
# =============================================================================
INPUT_DIR = _as_path("CTP_INPUT_DIR", "input")
OUTPUT_DIR = _as_path("CTP_OUTPUT_DIR", "output")
AUDIT_LOG_FILE = _as_path("CTP_AUDIT_LOG_FILE", "output/audit_log.jsonl")

EPISODES_FILENAME = "episodes.csv"
ENCOUNTERS_FILENAME = "encounters.csv"
RESULTS_FILENAME = "pre_eligibility_results.json"
SUMMARY_FILENAME = "pre_eligibility_summary.csv"

# Multi-valued CSV cells (notes, procedure codes) are split on this separator
CSV_LIST_SEPARATOR = os.getenv("CTP_CSV_LIST_SEPARATOR", "|")

LOG_LEVEL = os.getenv("CTP_LOG_LEVEL", "INFO").strip().upper()
