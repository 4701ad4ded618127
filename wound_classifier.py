# wound_classifier.py
"""
Wound-type classification against LCD L39806 coverage.

Only diabetic foot ulcers (DFU) and venous leg ulcers (VLU) are covered.
Traumatic, surgical, pressure and arterial wounds are excluded outright, and
a DFU is rejected when the patient is explicitly documented as non-diabetic.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from models import ValidationResult
from policy_constants import (
    COVERAGE_SCOPE_CITATION,
    DFU_DIABETIC_CITATION,
    DIABETIC_SYNONYMS,
    NONDIABETIC_SYNONYMS,
)
from policy_utils import matches_term, normalize
from rules.wound_type_rules import COVERED_RULES, DISQUALIFYING_RULES, first_match, resolve_by_location

logger = logging.getLogger(__name__)

DIABETIC = "diabetic"
NONDIABETIC = "nondiabetic"
UNKNOWN = "unknown"

_DIABETIC_EXACT = {normalize(s) for s in DIABETIC_SYNONYMS}
_NONDIABETIC_EXACT = {normalize(s) for s in NONDIABETIC_SYNONYMS}
# Phrase matching only uses multi-letter synonyms; "y"/"n"/"no" are exact-only
_DIABETIC_PHRASES = [s for s in _DIABETIC_EXACT if len(s) > 3]
_NONDIABETIC_PHRASES = [s for s in _NONDIABETIC_EXACT if len(s) > 4]


def normalize_diabetic_status(raw: Any) -> str:
    """
    Map free-form diabetic status to diabetic / nondiabetic / unknown.

    'non-diabetic', 'Not diabetic' -> nondiabetic
    'T2DM', 'Type 2 diabetes mellitus, controlled' -> diabetic
    'prediabetic', '', None -> unknown
    """
    if isinstance(raw, bool):
        return DIABETIC if raw else NONDIABETIC
    s = normalize(raw).replace("_", " ")
    if not s:
        return UNKNOWN
    if s in _NONDIABETIC_EXACT:
        return NONDIABETIC
    if s in _DIABETIC_EXACT:
        return DIABETIC
    if "prediabet" in s or "pre-diabet" in s:
        return UNKNOWN
    # Negated phrases contain the positive word, so test them first
    if any(matches_term(s, p) for p in _NONDIABETIC_PHRASES):
        return NONDIABETIC
    if any(matches_term(s, p) for p in _DIABETIC_PHRASES):
        return DIABETIC
    return UNKNOWN


def _clinical_text(wound_type: Optional[str], notes: Iterable[str]) -> str:
    parts = [str(wound_type or "")]
    parts.extend(str(n) for n in notes if normalize(n))
    return " \n".join(p for p in parts if p.strip())


def validate_wound_type_for_coverage(
    wound_type: Optional[str],
    primary_diagnosis: Optional[str],
    notes: Iterable[str],
    diabetic_status: Any,
    *,
    wound_location: Optional[str] = None,
) -> ValidationResult:
    """
    Classify the wound and decide whether it is a covered indication.

    Disqualifying categories are tried first, then VLU and DFU evidence, then
    site-dependent evidence (L97.*, full-thickness ulcer) resolved by the wound
    location (falling back to the wound type text when no location is given).
    """
    status = normalize_diabetic_status(diabetic_status)
    text = _clinical_text(wound_type, notes)
    code = (primary_diagnosis or "").strip().upper() or None

    # 1) Disqualifying categories (ordered)
    excluded = first_match(DISQUALIFYING_RULES, code, text)
    if excluded:
        logger.debug("Wound excluded as %s via %s", excluded.category, excluded.evidence_source)
        return ValidationResult(
            is_valid=False,
            reason=(
                f"Wound classified as {excluded.label} "
                f"({_describe_evidence(excluded.evidence_source, excluded.evidence)}); "
                "not a covered indication"
            ),
            policy_violation=f"{COVERAGE_SCOPE_CITATION}; {excluded.category} wounds are excluded from CTP coverage",
            details={
                "category": excluded.category,
                "matched_rule": excluded.label,
                "evidence_source": excluded.evidence_source,
                "diabetic_status": status,
            },
        )

    # 2) Covered categories (VLU before DFU)
    covered = first_match(COVERED_RULES, code, text)
    if covered is None:
        covered = resolve_by_location(code, text, wound_location or wound_type or "")
    if covered is None:
        return ValidationResult(
            is_valid=False,
            reason="Wound type unclassifiable: no DFU or VLU evidence in diagnosis code or documentation",
            policy_violation=COVERAGE_SCOPE_CITATION,
            details={"category": "unclassifiable", "diabetic_status": status},
        )

    details = {
        "category": covered.category,
        "matched_rule": covered.label,
        "evidence_source": covered.evidence_source,
        "diabetic_status": status,
    }
    if covered.category == "DFU" and status == NONDIABETIC:
        return ValidationResult(
            is_valid=False,
            reason="DFU classification rejected: patient has confirmed non-diabetic status",
            policy_violation=DFU_DIABETIC_CITATION,
            details=details,
        )

    reason = f"{covered.category} meets Medicare LCD covered indication"
    if covered.category == "DFU" and status == UNKNOWN:
        reason += " (diabetic status not documented)"
    return ValidationResult(is_valid=True, reason=reason, details=details)


def _describe_evidence(source: str, evidence: str) -> str:
    if source == "diagnosis_code":
        return f"diagnosis code {evidence}"
    return f"documentation mentions '{evidence}'"
