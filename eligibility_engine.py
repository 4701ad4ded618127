# eligibility_engine.py
"""
Deterministic CTP pre-eligibility gate for Medicare LCD L39806.

Runs, in order:
  1. wound-type classification (DFU / VLU only)
  2. conservative-care timeline (>= 28 days before first CTP)
  3. measurement extraction and geometry
  4. area reduction: first measured encounter vs the one just before the first CTP
  5. phase-specific LCD reduction compliance (reported, not gating)
  6. optional measurement quality report
  7. standard-of-care components, weekly documentation coverage and depth
     progression (reported, not gating)

A case is eligible only when none of the critical checks fail. The returned
audit trail is PHI-redacted; nothing is logged or persisted here.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional

from care_standards import analyze_depth_progression, assess_standard_of_care, assess_weekly_compliance
from care_timeline import validate_conservative_care_timeline
from config import ENABLE_AUTO_CORRECTION, INCLUDE_QUALITY_REPORT
from lcd_compliance import POST_CTP, PRE_CTP, validate_medicare_reduction
from measurement_quality import assess_measurement_quality
from models import (
    AreaReductionResult,
    Encounter,
    Episode,
    MeasurementParseFailure,
    PreEligibilityCheckResult,
    ValidationResult,
    WoundMeasurement,
)
from phi_sanitizer import sanitize_audit_text, sanitize_audit_trail
from policy_constants import (
    EFFECTIVE_CARE_CITATION,
    LCD_JURISDICTION,
    LCD_POLICY_ID,
    MIN_CONSERVATIVE_CARE_DAYS,
    PRE_CTP_MAX_REDUCTION_PERCENT,
)
from policy_utils import to_utc_date, utc_now
from wound_classifier import UNKNOWN, normalize_diabetic_status, validate_wound_type_for_coverage
from wound_geometry import extract_wound_measurements

logger = logging.getLogger(__name__)

WOUND_TYPE_FAILURE = "Wound type not covered"
TIMELINE_FAILURE = "Conservative care timeline insufficient"
MEASUREMENT_FAILURE = "No valid wound measurements"
EFFECTIVE_CARE_FAILURE = "Conservative care was effective"


def calculate_area_reduction(initial: WoundMeasurement, current: WoundMeasurement) -> AreaReductionResult:
    """meets_ctp_threshold is True while the reduction stays below the 50% ceiling."""
    if initial.area <= 0:
        pct = 0.0
    else:
        pct = (initial.area - current.area) / initial.area * 100.0
    return AreaReductionResult(
        initial_area=round(initial.area, 4),
        current_area=round(current.area, 4),
        percent_reduction=round(pct, 2),
        meets_ctp_threshold=pct < PRE_CTP_MAX_REDUCTION_PERCENT,
        details={
            "initial_measurement_id": initial.id,
            "current_measurement_id": current.id,
            "threshold_percent": PRE_CTP_MAX_REDUCTION_PERCENT,
        },
    )


def _latest_diabetic_status(dated: list[tuple[Optional[date], int, Encounter]]) -> str:
    """Most recent encounter with a recognized status wins."""
    ordered = sorted(dated, key=lambda t: (t[0] or date.min, t[1]))
    for _, _, enc in reversed(ordered):
        status = normalize_diabetic_status(enc.diabetic_status)
        if status != UNKNOWN:
            return status
    return UNKNOWN


def _extract_all_measurements(
    dated: list[tuple[Optional[date], int, Encounter]],
    enable_auto_correction: bool,
) -> tuple[list[tuple[date, WoundMeasurement]], list[dict[str, Any]]]:
    measured: list[tuple[date, WoundMeasurement]] = []
    failures: list[dict[str, Any]] = []
    for day, _, enc in sorted(dated, key=lambda t: (t[0] or date.min, t[1])):
        if day is None:
            continue
        result = extract_wound_measurements(
            enc.wound_details,
            enable_auto_correction=enable_auto_correction,
            timestamp=day,
            measurement_id=f"{enc.id}-measurement",
        )
        if isinstance(result, MeasurementParseFailure):
            failures.append({"encounter_id": enc.id, **result.to_dict()})
        else:
            measured.append((day, result))
    return measured, failures


def perform_pre_eligibility_checks(
    episode: Any,
    encounters: Iterable[Any],
    *,
    now: Optional[datetime] = None,
    min_days_required: Optional[int] = None,
    include_quality_report: Optional[bool] = None,
    enable_auto_correction: Optional[bool] = None,
) -> PreEligibilityCheckResult:
    ep = Episode.from_mapping(episode)
    items = [Encounter.from_mapping(e, i) for i, e in enumerate(encounters)]
    now = now or utc_now()
    min_days = MIN_CONSERVATIVE_CARE_DAYS if min_days_required is None else int(min_days_required)
    quality = INCLUDE_QUALITY_REPORT if include_quality_report is None else include_quality_report
    auto_correct = ENABLE_AUTO_CORRECTION if enable_auto_correction is None else enable_auto_correction

    dated = [(to_utc_date(enc.date), i, enc) for i, enc in enumerate(items)]
    failures: list[str] = []
    violations: list[str] = []
    audit: list[str] = [
        f"Pre-eligibility evaluation for episode {ep.id} under LCD {LCD_POLICY_ID} ({LCD_JURISDICTION})",
        f"{len(items)} encounter(s) supplied",
    ]

    # 1) Wound type
    notes = [n for enc in items for n in enc.notes]
    wound_check = validate_wound_type_for_coverage(
        ep.wound_type,
        ep.primary_diagnosis,
        notes,
        _latest_diabetic_status(dated),
        wound_location=ep.wound_location,
    )
    audit.append(f"Wound type check: {'PASS' if wound_check.is_valid else 'FAIL'} - {wound_check.reason}")
    if not wound_check.is_valid:
        failures.append(f"{WOUND_TYPE_FAILURE}: {wound_check.reason}")
        if wound_check.policy_violation:
            violations.append(wound_check.policy_violation)

    # 2) Conservative-care timeline
    timeline = validate_conservative_care_timeline(items, min_days_required=min_days, now=now)
    audit.append(f"Conservative care check: {'PASS' if timeline.is_valid else 'FAIL'} - {timeline.reason}")
    if not timeline.is_valid:
        failures.append(f"{TIMELINE_FAILURE}: {timeline.reason}")
        if timeline.policy_violation:
            violations.append(timeline.policy_violation)

    # 3) Measurements
    measured, parse_failures = _extract_all_measurements(dated, auto_correct)
    if measured:
        measurement_check = ValidationResult(
            is_valid=True,
            reason=f"{len(measured)} encounter(s) with valid wound measurements",
            details={"measured_encounters": len(measured), "parse_failures": parse_failures},
        )
    else:
        measurement_check = ValidationResult(
            is_valid=False,
            reason="No encounter contains a parseable wound measurement",
            details={"measured_encounters": 0, "parse_failures": parse_failures},
        )
        failures.append(f"{MEASUREMENT_FAILURE}: {measurement_check.reason}")
    audit.append(f"Measurement check: {'PASS' if measurement_check.is_valid else 'FAIL'} - {measurement_check.reason}")
    if parse_failures:
        audit.append(f"{len(parse_failures)} encounter measurement(s) could not be parsed")

    # 4) Area reduction
    area_check: Optional[AreaReductionResult] = None
    first_ctp = timeline.first_ctp_date
    if measured:
        initial = measured[0][1]
        if first_ctp is not None:
            before = [m for d, m in measured if d < first_ctp]
            comparison = before[-1] if before else initial
        else:
            comparison = measured[-1][1]
        area_check = calculate_area_reduction(initial, comparison)
        audit.append(
            f"Area reduction {area_check.percent_reduction:.1f}% "
            f"({area_check.initial_area:.2f} -> {area_check.current_area:.2f} cm2); "
            + (
                f"below {PRE_CTP_MAX_REDUCTION_PERCENT:g}% threshold, CTP may be indicated"
                if area_check.meets_ctp_threshold
                else f"at or above {PRE_CTP_MAX_REDUCTION_PERCENT:g}% threshold"
            )
        )
        if (
            timeline.is_valid
            and (timeline.days_of_care or 0) >= min_days
            and area_check.percent_reduction >= PRE_CTP_MAX_REDUCTION_PERCENT
        ):
            failures.append(
                f"{EFFECTIVE_CARE_FAILURE}: {area_check.percent_reduction:.1f}% area reduction after "
                f"{timeline.days_of_care} days of conservative care; CTP not medically necessary"
            )
            violations.append(EFFECTIVE_CARE_CITATION)

    # 5) Phase compliance (independent signal)
    lcd_result = None
    if measured:
        phase = POST_CTP if first_ctp is not None else PRE_CTP
        lcd_result = validate_medicare_reduction(
            ep.id,
            [m for _, m in measured],
            phase,
            ctp_start_date=first_ctp,
            now=now,
        )
        audit.append(f"LCD phase compliance ({phase}): {lcd_result.overall_compliance}")

    # 6) Quality report
    quality_report = None
    if quality and measured:
        quality_report = assess_measurement_quality([m for _, m in measured])
        audit.append(f"Measurement data quality grade {quality_report.data_quality_grade}")

    # 7) Standard of care and documentation (independent signals)
    category = wound_check.details.get("category")
    standard_of_care = assess_standard_of_care(items, category)
    audit.append(
        "Standard of care: "
        + ("required components documented" if standard_of_care.required_components_met else "required component missing")
    )
    weekly = None
    known_days = sorted(d for d, _, _ in dated if d is not None)
    start = to_utc_date(ep.start_date) or (known_days[0] if known_days else None)
    if start is not None:
        weekly = assess_weekly_compliance(items, start, now, ep.documented_exceptions)
        audit.append(
            f"Weekly documentation {weekly.status} ({weekly.coverage_percent:.1f}% of {len(weekly.required_weeks)} week(s))"
        )
    depth_progression = None
    if measured:
        depth_progression = analyze_depth_progression([m for _, m in measured])
        if depth_progression.concern_level != "none" or depth_progression.volume_alert:
            audit.append(
                f"Depth progression concern {depth_progression.concern_level}; "
                f"volume alert {depth_progression.volume_alert or 'none'}"
            )

    eligible = not failures
    audit.append(
        "Overall: ELIGIBLE for CTP consideration"
        if eligible
        else f"Overall: NOT ELIGIBLE ({len(failures)} critical failure(s))"
    )
    logger.debug("Episode %s pre-eligibility: eligible=%s failures=%d", ep.id, eligible, len(failures))

    return PreEligibilityCheckResult(
        episode_id=ep.id,
        wound_type_check=wound_check,
        conservative_care_check=timeline,
        measurement_check=measurement_check,
        area_reduction_check=area_check,
        overall_eligible=eligible,
        failure_reasons=[sanitize_audit_text(f) for f in failures],
        policy_violations=[sanitize_audit_text(v) for v in violations],
        audit_trail=sanitize_audit_trail(audit),
        evaluated_at=now,
        lcd_compliance=lcd_result,
        quality_report=quality_report,
        standard_of_care=standard_of_care,
        weekly_compliance=weekly,
        depth_progression=depth_progression,
    )


def evaluate_from_episode_record(episode: Any, encounters: Iterable[Any], **kwargs: Any) -> dict:
    """Dictionary form of perform_pre_eligibility_checks for JSON callers."""
    return perform_pre_eligibility_checks(episode, encounters, **kwargs).to_dict()
