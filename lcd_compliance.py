# lcd_compliance.py
"""
Phase-specific wound-area reduction compliance for LCD L39806.

  pre-ctp : baseline = first measurement. Conservative care has FAILED (and a
            CTP is indicated) while the reduction stays below 50%.
  post-ctp: baseline = measurement nearest the CTP start, at or before it.
            Therapy is working when the reduction is at least 20% per
            rolling 4-week interval.

All day arithmetic is on UTC calendar dates, so a DST shift between two
measurements never changes the day count.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from measurement_quality import coerce_records, select_best_measurement_per_day
from models import (
    FourWeekPeriod,
    MeasurementRecord,
    MedicareLCDComplianceResult,
    PhaseAnalysis,
    PolicyMetadata,
)
from phi_sanitizer import sanitize_audit_trail
from policy_constants import (
    EVALUATION_WINDOW_DAYS,
    LCD_EFFECTIVE_DATE,
    LCD_JURISDICTION,
    LCD_LAST_UPDATED,
    LCD_POLICY_ID,
    POST_CTP_MIN_REDUCTION_PERCENT,
    PRE_CTP_MAX_REDUCTION_PERCENT,
    WINDOW_EXTENSION_DAYS,
    WINDOW_TOLERANCE_DAYS,
)
from policy_utils import days_between, to_utc_date, utc_now

logger = logging.getLogger(__name__)

PRE_CTP = "pre-ctp"
POST_CTP = "post-ctp"
PHASES = (PRE_CTP, POST_CTP)

COMPLIANT = "compliant"
NON_COMPLIANT = "non_compliant"
INSUFFICIENT_DATA = "insufficient_data"

_PHASE_LABEL = {PRE_CTP: "Pre-CTP", POST_CTP: "Post-CTP"}


def policy_metadata() -> PolicyMetadata:
    return PolicyMetadata(
        policy_id=LCD_POLICY_ID,
        jurisdiction=LCD_JURISDICTION,
        effective_date=LCD_EFFECTIVE_DATE,
        last_updated=LCD_LAST_UPDATED,
    )


def reduction_percentage(baseline_area: float, current_area: float) -> float:
    if baseline_area <= 0:
        return 0.0
    return (baseline_area - current_area) / baseline_area * 100.0


def meets_phase_threshold(phase: str, reduction: float) -> bool:
    if phase == PRE_CTP:
        return reduction < PRE_CTP_MAX_REDUCTION_PERCENT
    return reduction >= POST_CTP_MIN_REDUCTION_PERCENT


def _phase_analysis(phase: str, meets: bool) -> PhaseAnalysis:
    if phase == PRE_CTP:
        return PhaseAnalysis(phase, PRE_CTP_MAX_REDUCTION_PERCENT, "below", meets)
    return PhaseAnalysis(phase, POST_CTP_MIN_REDUCTION_PERCENT, "at_or_above", meets)


def select_baseline(
    records: list[MeasurementRecord],
    phase: str,
    ctp_start: Optional[date] = None,
) -> MeasurementRecord:
    """records must be chronological and one-per-day."""
    if phase == POST_CTP and ctp_start is not None:
        before = [r for r in records if r.day <= ctp_start]
        if before:
            return before[-1]
    return records[0]


def select_window_measurement(
    records: list[MeasurementRecord],
    window_start: date,
) -> Optional[MeasurementRecord]:
    """
    Measurement closest to day 28 of the window.

    Prefers offsets within +/-7 days of the target (ties -> later measurement);
    otherwise the closest measurement after the window start up to day 35.
    """
    target = EVALUATION_WINDOW_DAYS
    offsets = [((r.day - window_start).days, r) for r in records]

    def closest(candidates):
        if not candidates:
            return None
        # min by distance; later measurement wins ties
        return min(candidates, key=lambda pair: (abs(pair[0] - target), -pair[0]))[1]

    within = [(o, r) for o, r in offsets if abs(o - target) <= WINDOW_TOLERANCE_DAYS]
    hit = closest(within)
    if hit is not None:
        return hit
    extended = [(o, r) for o, r in offsets if 0 < o <= WINDOW_EXTENSION_DAYS]
    return closest(extended)


def analyze_four_week_periods(
    records: list[MeasurementRecord],
    baseline: MeasurementRecord,
    phase: str,
) -> list[FourWeekPeriod]:
    periods: list[FourWeekPeriod] = []
    after = [r for r in records if r.day > baseline.day]
    if not after:
        return periods

    last_day = after[-1].day
    period_number = 1
    window_start = baseline.day
    window_baseline = baseline.area
    while (window_start + timedelta(days=EVALUATION_WINDOW_DAYS - WINDOW_TOLERANCE_DAYS)) <= last_day or period_number == 1:
        pick = select_window_measurement(after, window_start)
        if pick is None:
            break
        reduction = reduction_percentage(window_baseline, pick.area)
        periods.append(
            FourWeekPeriod(
                period_number=period_number,
                start_date=window_start,
                end_date=window_start + timedelta(days=EVALUATION_WINDOW_DAYS),
                baseline_area=window_baseline,
                current_area=pick.area,
                reduction_percentage=round(reduction, 2),
                days_from_start=(pick.day - window_start).days,
                meets_threshold=meets_phase_threshold(phase, reduction),
                measurement_id=pick.id,
            )
        )
        period_number += 1
        window_start = window_start + timedelta(days=EVALUATION_WINDOW_DAYS)
        window_baseline = pick.area
        after = [r for r in after if r.day > pick.day]
        if not after:
            break
    return periods


def _verdict_note(phase: str, reduction: float, meets: bool) -> str:
    pct = f"{reduction:.1f}%"
    if phase == PRE_CTP:
        if meets:
            return (
                f"Pre-CTP phase: {pct} area reduction (<{PRE_CTP_MAX_REDUCTION_PERCENT:g}%) - "
                "conservative care insufficient, CTP indicated"
            )
        return (
            f"Pre-CTP phase: {pct} area reduction (>={PRE_CTP_MAX_REDUCTION_PERCENT:g}%) - "
            "conservative care was effective - CTP not medically necessary"
        )
    if meets:
        return (
            f"Post-CTP phase: {pct} area reduction (>={POST_CTP_MIN_REDUCTION_PERCENT:g}%) - "
            "continued CTP therapy justified"
        )
    return (
        f"Post-CTP phase: {pct} area reduction (<{POST_CTP_MIN_REDUCTION_PERCENT:g}%) - "
        "CTP therapy not effective - discontinue treatment"
    )


def validate_medicare_reduction(
    episode_id: str,
    measurement_history: Iterable[Any],
    phase: str,
    ctp_start_date: Any = None,
    now: Optional[datetime] = None,
) -> MedicareLCDComplianceResult:
    if phase not in PHASES:
        raise ValueError(f"Unknown phase {phase!r}; expected one of {PHASES}")
    ctp_start: Optional[date] = None
    if phase == POST_CTP:
        if ctp_start_date is None:
            raise ValueError("Post-CTP phase validation requires a CTP start date")
        ctp_start = to_utc_date(ctp_start_date)
        if ctp_start is None:
            raise ValueError(f"Unparseable CTP start date: {ctp_start_date!r}")

    label = _PHASE_LABEL[phase]
    today = to_utc_date(now or utc_now())
    audit: list[str] = [
        f"{label} LCD {LCD_POLICY_ID} reduction analysis for episode {episode_id} "
        f"({LCD_JURISDICTION}, effective {LCD_EFFECTIVE_DATE})"
    ]

    raw_records, skipped = coerce_records(measurement_history)
    if skipped:
        audit.append(f"Skipped {skipped} measurement(s) without a parseable timestamp or positive area")
    records = select_best_measurement_per_day(raw_records)
    if len(records) < len(raw_records):
        audit.append(f"Collapsed {len(raw_records) - len(records)} same-day duplicate measurement(s)")

    metadata = policy_metadata()
    if not records:
        audit.append("No usable measurements; compliance cannot be evaluated")
        return MedicareLCDComplianceResult(
            episode_id=episode_id,
            phase=phase,
            baseline_area=None,
            baseline_date=None,
            current_area=None,
            current_date=None,
            days_from_baseline=0,
            current_reduction_percentage=0.0,
            phase_analysis=_phase_analysis(phase, False),
            four_week_period_analysis=[],
            overall_compliance=INSUFFICIENT_DATA,
            policy_metadata=metadata,
            next_evaluation_date=None,
            audit_trail=sanitize_audit_trail(audit),
            regulatory_notes=[f"Insufficient data: no usable wound measurements for LCD {LCD_POLICY_ID} evaluation"],
        )

    baseline = select_baseline(records, phase, ctp_start)
    current = records[-1]
    reduction = reduction_percentage(baseline.area, current.area)
    meets = meets_phase_threshold(phase, reduction)
    days_from_baseline = (current.day - baseline.day).days
    elapsed = days_between(baseline.day, today)

    audit.append(f"Baseline {baseline.area:.2f} cm2 on {baseline.day.isoformat()} ({baseline.id})")
    audit.append(f"Current {current.area:.2f} cm2 on {current.day.isoformat()} ({current.id})")
    audit.append(f"Area reduction {reduction:.1f}% over {days_from_baseline} days")

    periods = analyze_four_week_periods(records, baseline, phase)
    for p in periods:
        audit.append(
            f"Period {p.period_number}: {p.reduction_percentage:.1f}% "
            f"({'meets' if p.meets_threshold else 'does not meet'} {label} threshold)"
        )

    notes: list[str] = []
    if len(records) < 2 or current.day <= baseline.day:
        overall = INSUFFICIENT_DATA
        notes.append("Insufficient data: at least two measurements after baseline are required for LCD evaluation")
    elif elapsed < EVALUATION_WINDOW_DAYS:
        overall = INSUFFICIENT_DATA
        notes.append(
            f"Insufficient data: only {elapsed} days since baseline; "
            f"{EVALUATION_WINDOW_DAYS} days required for LCD evaluation"
        )
    else:
        overall = COMPLIANT if meets else NON_COMPLIANT
        notes.append(_verdict_note(phase, reduction, meets))
    notes.append(f"Policy reference: LCD {LCD_POLICY_ID}, {LCD_JURISDICTION}")
    audit.append(f"Overall compliance: {overall}")
    logger.debug("Episode %s %s compliance: %s", episode_id, phase, overall)

    return MedicareLCDComplianceResult(
        episode_id=episode_id,
        phase=phase,
        baseline_area=baseline.area,
        baseline_date=baseline.day,
        current_area=current.area,
        current_date=current.day,
        days_from_baseline=days_from_baseline,
        current_reduction_percentage=round(reduction, 2),
        phase_analysis=_phase_analysis(phase, meets),
        four_week_period_analysis=periods,
        overall_compliance=overall,
        policy_metadata=metadata,
        next_evaluation_date=current.day + timedelta(days=EVALUATION_WINDOW_DAYS),
        audit_trail=sanitize_audit_trail(audit),
        regulatory_notes=sanitize_audit_trail(notes),
    )
