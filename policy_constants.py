# policy_constants.py
"""
Snapshot-derived constants for LCD L39806 (CTPs for DFU and VLU).

All values are loaded from the canonical policy snapshot (policies/L39806.json)
so the classifier, the timeline validator and the phase-compliance engine share
one set of thresholds and patterns.
"""

from __future__ import annotations

from typing import Any

from config import POLICY_ID, SNAPSHOT_PATH
from policy_snapshot import load_policy_snapshot
from schema_validation import validate_lcd_snapshot


def _as_list(val: Any) -> list[Any]:
    if val is None:
        return []
    if isinstance(val, list):
        return val
    return [val]


def _as_str_list(val: Any) -> list[str]:
    out: list[str] = []
    for x in _as_list(val):
        if isinstance(x, str) and x.strip():
            out.append(x.strip())
    return out


def _require(snapshot: dict, path: list[str]) -> Any:
    cur: Any = snapshot
    for k in path:
        if not isinstance(cur, dict) or k not in cur:
            raise ImportError(f"Policy snapshot invalid: missing key path: {'/'.join(path)}")
        cur = cur[k]
    return cur


# Load and validate once at import for deterministic behavior
_SNAPSHOT = load_policy_snapshot(SNAPSHOT_PATH, POLICY_ID)
validate_lcd_snapshot(_SNAPSHOT)

# -----------------------------------------------------------------------------
# Policy metadata
# -----------------------------------------------------------------------------
LCD_POLICY_ID = str(_require(_SNAPSHOT, ["policy_id"]))
LCD_JURISDICTION = str(_require(_SNAPSHOT, ["jurisdiction"]))
LCD_EFFECTIVE_DATE = str(_require(_SNAPSHOT, ["effective_date"]))
LCD_LAST_UPDATED = str(_require(_SNAPSHOT, ["last_updated"]))
COVERED_INDICATIONS = _as_str_list(_require(_SNAPSHOT, ["covered_indications"]))

# -----------------------------------------------------------------------------
# Thresholds
# -----------------------------------------------------------------------------
_thresholds = _require(_SNAPSHOT, ["thresholds"])

MIN_CONSERVATIVE_CARE_DAYS = int(_thresholds["min_conservative_care_days"])
# Pre-CTP: conservative care has failed while reduction stays BELOW this value
PRE_CTP_MAX_REDUCTION_PERCENT = float(_thresholds["pre_ctp_max_reduction_percent"])
# Post-CTP: therapy is working when reduction is AT OR ABOVE this value
POST_CTP_MIN_REDUCTION_PERCENT = float(_thresholds["post_ctp_min_reduction_percent"])
EVALUATION_WINDOW_DAYS = int(_thresholds["evaluation_window_days"])
WINDOW_TOLERANCE_DAYS = int(_thresholds["window_tolerance_days"])
WINDOW_EXTENSION_DAYS = int(_thresholds["window_extension_days"])

# -----------------------------------------------------------------------------
# Wound-type rules (ordered; first match wins)
# -----------------------------------------------------------------------------
_wound_rules = _require(_SNAPSHOT, ["wound_type_rules"])
DISQUALIFYING_WOUND_RULES: list[dict[str, Any]] = _as_list(_wound_rules.get("disqualifying"))
COVERED_WOUND_RULES: list[dict[str, Any]] = _as_list(_wound_rules.get("covered"))

DISQUALIFYING_CATEGORY_ORDER = [str(r.get("category")) for r in DISQUALIFYING_WOUND_RULES]
COVERED_RULE_ORDER = [str(r.get("category")) for r in COVERED_WOUND_RULES]

if not {"DFU", "VLU"}.issubset(COVERED_RULE_ORDER):
    raise ImportError("Policy snapshot invalid: covered rules must define DFU and VLU.")

# Site-dependent evidence (e.g. L97.*) is categorized by wound location
_location_rules = _wound_rules.get("location_resolved") or {}
LOCATION_CODE_PATTERNS = _as_str_list(_location_rules.get("code_patterns"))
LOCATION_TEXT_PATTERNS = _as_str_list(_location_rules.get("text_patterns"))
LOCATION_SITE_PATTERNS: list[dict[str, Any]] = _as_list(_location_rules.get("sites"))

# -----------------------------------------------------------------------------
# Diabetic status
# -----------------------------------------------------------------------------
_synonyms = _require(_SNAPSHOT, ["diabetic_status_synonyms"])
DIABETIC_SYNONYMS = _as_str_list(_synonyms.get("diabetic"))
NONDIABETIC_SYNONYMS = _as_str_list(_synonyms.get("nondiabetic"))

# -----------------------------------------------------------------------------
# CTP evidence
# -----------------------------------------------------------------------------
_ctp = _require(_SNAPSHOT, ["ctp_detection"])
CTP_CPT_CODES = _as_str_list(_ctp.get("cpt_codes"))
CTP_HCPCS_PATTERNS = _as_str_list(_ctp.get("hcpcs_patterns"))
CTP_PRODUCT_PATTERNS = _as_str_list(_ctp.get("product_patterns"))
CTP_GENERIC_APPLICATION_PATTERNS = _as_str_list(_ctp.get("generic_application_patterns"))

# -----------------------------------------------------------------------------
# MAC regions
# -----------------------------------------------------------------------------
MAC_REGIONS: list[dict[str, Any]] = _as_list(_SNAPSHOT.get("mac_regions"))


def mac_jurisdiction_for_state(state: Any) -> str | None:
    """Return e.g. 'Palmetto GBA Jurisdiction J' for a two-letter state code."""
    code = str(state or "").strip().upper()
    if not code:
        return None
    for region in MAC_REGIONS:
        if code in _as_str_list(region.get("states")):
            return f"{region.get('mac')} Jurisdiction {region.get('jurisdiction')}"
    return None


# -----------------------------------------------------------------------------
# Standard citations
# -----------------------------------------------------------------------------
COVERAGE_SCOPE_CITATION = f"Medicare LCD {LCD_POLICY_ID} covers only DFU and VLU"
DFU_DIABETIC_CITATION = f"DFU diagnosis requires diabetic patient per Medicare LCD {LCD_POLICY_ID}"
MIN_CARE_CITATION = (
    f"Medicare LCD {LCD_POLICY_ID} requires minimum {MIN_CONSERVATIVE_CARE_DAYS} days "
    "of conservative care before CTP application"
)
EFFECTIVE_CARE_CITATION = (
    f"Medicare LCD {LCD_POLICY_ID}: wounds with >= {PRE_CTP_MAX_REDUCTION_PERCENT:g}% area reduction "
    "after conservative care do not qualify for CTP"
)
