# care_standards.py
"""
Non-gating standard-of-care signals reported alongside the pre-eligibility decision.

  - standard-of-care components: offloading (DFU), compression (VLU),
    infection control and patient education
  - weekly documentation coverage by ISO week, with documented exceptions
  - depth and volume progression between measured encounters

None of these change overall eligibility; they tell the reviewer what the
record is missing before a CTP request is submitted.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Any, Iterable, Optional

from models import (
    DepthInterval,
    DepthProgressionResult,
    DocumentedException,
    Encounter,
    StandardOfCareResult,
    WeeklyComplianceResult,
    WoundMeasurement,
)
from policy_utils import normalize, to_utc_date
from rules.context_rules import find_active_mention

logger = logging.getLogger(__name__)

# =============================================================================
# STANDARD OF CARE
# =============================================================================

# Each component: structured intervention types, then name/note phrases
_OFFLOADING_TYPES = ("offloading",)
_OFFLOADING_TEXT = re.compile(
    r"\b(offload(?:ing|ed)?|tcc|total contact cast|(?:cam |walker |offloading )?boot|felted foam)\b", re.IGNORECASE
)
_COMPRESSION_TYPES = ("compression_therapy", "compression")
_COMPRESSION_TEXT = re.compile(r"\b(compression|unna boot|multi-?layer wrap|wrap|bandag(?:e|ing))\b", re.IGNORECASE)
_INFECTION_TYPES = ("infection_management", "debridement")
_INFECTION_TEXT = re.compile(r"\b(antibiotics?|antiseptic|antimicrobial|debride(?:ment|d)?)\b", re.IGNORECASE)
_EDUCATION_TYPES = ("education", "nutrition_counseling")
_EDUCATION_TEXT = re.compile(r"\b(education|educated|teaching|nutrition counsel(?:l)?ing)\b", re.IGNORECASE)

OFFLOADING_RECOMMENDATION = "IMMEDIATE: Implement appropriate offloading strategy"
COMPRESSION_RECOMMENDATION = "IMMEDIATE: Initiate compression therapy per ABI results"
INFECTION_RECOMMENDATION = "Document infection control (debridement or antimicrobial management)"
EDUCATION_RECOMMENDATION = "Document patient education on wound care and risk reduction"


def _interventions(enc: Encounter) -> list[tuple[str, str]]:
    """(type, name) pairs from an encounter's structured conservative-care record."""
    out: list[tuple[str, str]] = []
    for item in enc.conservative_care.get("interventions") or []:
        if isinstance(item, dict):
            out.append((normalize(item.get("type")), normalize(item.get("name"))))
        elif normalize(item):
            out.append(("", normalize(item)))
    return out


def _component_evidence(
    encounters: list[Encounter],
    types: tuple[str, ...],
    text: re.Pattern[str],
) -> Optional[str]:
    """Encounter id carrying the first evidence for a component, or None."""
    for enc in encounters:
        for itype, name in _interventions(enc):
            if any(t in itype for t in types) or (name and text.search(name)):
                return enc.id
        for note in enc.notes:
            if find_active_mention(text, note):
                return enc.id
    return None


def assess_standard_of_care(encounters: Iterable[Any], wound_category: Optional[str]) -> StandardOfCareResult:
    """
    Offloading is only assessed for DFU and compression only for VLU;
    the other category reports None for that component.
    """
    items = [Encounter.from_mapping(e, i) for i, e in enumerate(encounters)]
    evidence: dict[str, Optional[str]] = {}

    offloading: Optional[bool] = None
    if wound_category == "DFU":
        evidence["offloading"] = _component_evidence(items, _OFFLOADING_TYPES, _OFFLOADING_TEXT)
        offloading = evidence["offloading"] is not None

    compression: Optional[bool] = None
    if wound_category == "VLU":
        evidence["compression"] = _component_evidence(items, _COMPRESSION_TYPES, _COMPRESSION_TEXT)
        compression = evidence["compression"] is not None

    evidence["infection_control"] = _component_evidence(items, _INFECTION_TYPES, _INFECTION_TEXT)
    evidence["patient_education"] = _component_evidence(items, _EDUCATION_TYPES, _EDUCATION_TEXT)

    recommendations: list[str] = []
    if offloading is False:
        recommendations.append(OFFLOADING_RECOMMENDATION)
    if compression is False:
        recommendations.append(COMPRESSION_RECOMMENDATION)
    if evidence["infection_control"] is None:
        recommendations.append(INFECTION_RECOMMENDATION)
    if evidence["patient_education"] is None:
        recommendations.append(EDUCATION_RECOMMENDATION)

    return StandardOfCareResult(
        wound_category=wound_category,
        offloading=offloading,
        compression=compression,
        infection_control=evidence["infection_control"] is not None,
        patient_education=evidence["patient_education"] is not None,
        evidence=evidence,
        recommendations=recommendations,
    )


# =============================================================================
# WEEKLY DOCUMENTATION COVERAGE
# =============================================================================

EXCUSABLE_EXCEPTION_TYPES = frozenset({"holiday", "inpatient-stay", "medical-emergency", "patient-unavailable"})
AT_RISK_COVERAGE_PERCENT = 85.0


def iso_week_id(day: date) -> str:
    """2024-01-01 -> '2024-W01'; 2024-12-30 -> '2025-W01'."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def expected_iso_weeks(start: date, end: date) -> list[str]:
    """Every ISO week from the week containing `start` through the week containing `end`."""
    cursor = start - timedelta(days=start.weekday())
    weeks: list[str] = []
    while cursor <= end:
        weeks.append(iso_week_id(cursor))
        cursor += timedelta(days=7)
    return weeks


def _has_measurement(enc: Encounter) -> bool:
    details = enc.wound_details or {}
    return bool(details.get("measurements") or details.get("current_measurement") or details.get("currentMeasurement"))


def assess_weekly_compliance(
    encounters: Iterable[Any],
    start_date: Any,
    current_date: Any,
    documented_exceptions: Iterable[Any] = (),
) -> WeeklyComplianceResult:
    """
    A week is documented when an encounter in it carries a wound measurement.
    A missing week is excused only by a valid exception of an excusable type.
    """
    start = to_utc_date(start_date)
    end = to_utc_date(current_date)
    if start is None or end is None:
        raise ValueError(f"Unparseable date in weekly compliance: {start_date!r}, {current_date!r}")

    required = expected_iso_weeks(start, end)
    required_set = set(required)
    documented: set[str] = set()
    for i, raw in enumerate(encounters):
        enc = Encounter.from_mapping(raw, i)
        day = to_utc_date(enc.date)
        if day is not None and _has_measurement(enc):
            documented.add(iso_week_id(day))
    documented &= required_set
    missing = [w for w in required if w not in documented]

    exceptions = [
        ex if isinstance(ex, DocumentedException) else DocumentedException.from_mapping(ex)
        for ex in documented_exceptions
    ]
    valid: list[DocumentedException] = []
    excused: set[str] = set()
    for ex in exceptions:
        if ex is None or not ex.is_valid_exception or ex.type not in EXCUSABLE_EXCEPTION_TYPES:
            continue
        if ex.week in missing and ex.week not in excused:
            valid.append(ex)
            excused.add(ex.week)
    still_missing = [w for w in missing if w not in excused]

    coverage = 100.0 if not required else (len(documented) + len(excused)) / len(required) * 100.0
    if not still_missing:
        status, light = ("compliant", "green") if not valid else ("compliant-with-exception", "yellow")
    elif coverage >= AT_RISK_COVERAGE_PERCENT:
        status, light = "at-risk", "yellow"
    else:
        status, light = "non-compliant", "red"

    logger.debug("Weekly documentation %s: %d/%d weeks", status, len(documented) + len(excused), len(required))
    return WeeklyComplianceResult(
        required_weeks=required,
        documented_weeks=sorted(documented),
        missing_weeks=still_missing,
        coverage_percent=round(coverage, 2),
        status=status,
        traffic_light=light,
        valid_exceptions=valid,
    )


# =============================================================================
# DEPTH / VOLUME PROGRESSION
# =============================================================================

# Depth increase rates, mm per week
MINOR_INCREASE_PER_WEEK = 0.5
MODERATE_INCREASE_PER_WEEK = 1.0
CRITICAL_INCREASE_PER_WEEK = 2.0
# Volume increase from first to latest measurement, percent
MODERATE_VOLUME_INCREASE_PERCENT = 25.0
MAJOR_VOLUME_INCREASE_PERCENT = 50.0


def _concern_level(rate: float) -> str:
    if rate >= CRITICAL_INCREASE_PER_WEEK:
        return "critical"
    if rate >= MODERATE_INCREASE_PER_WEEK:
        return "moderate"
    if rate >= MINOR_INCREASE_PER_WEEK:
        return "minor"
    return "none"


def analyze_depth_progression(measurements: Iterable[WoundMeasurement]) -> DepthProgressionResult:
    """
    Depths are in cm (as produced by wound_geometry) and reported in mm.
    Same-day intervals count as one day.
    """
    dated = sorted(
        (m for m in measurements if m.timestamp is not None),
        key=lambda m: m.timestamp,
    )
    with_depth = [m for m in dated if m.depth is not None]

    intervals: list[DepthInterval] = []
    for prev, cur in zip(with_depth, with_depth[1:]):
        days = max((cur.timestamp.date() - prev.timestamp.date()).days, 1)
        change_mm = (cur.depth - prev.depth) * 10.0
        intervals.append(
            DepthInterval(
                from_measurement_id=prev.id,
                to_measurement_id=cur.id,
                days=days,
                depth_change_mm=round(change_mm, 2),
                rate_mm_per_week=round(change_mm / days * 7.0, 2),
            )
        )

    streak = best_streak = 0
    for interval in intervals:
        streak = streak + 1 if interval.rate_mm_per_week >= MINOR_INCREASE_PER_WEEK else 0
        best_streak = max(best_streak, streak)

    if intervals:
        total = round((with_depth[-1].depth - with_depth[0].depth) * 10.0, 2)
        max_rate: Optional[float] = max(i.rate_mm_per_week for i in intervals)
        trend = "deepening" if total > 0 else "healing" if total < 0 else "stable"
        concern = _concern_level(max_rate)
    else:
        total, max_rate, trend, concern = None, None, "insufficient_data", "none"

    volumes = [m for m in dated if m.volume]
    initial_volume = current_volume = change_pct = None
    alert: Optional[str] = None
    if len(volumes) >= 2:
        initial_volume = round(volumes[0].volume, 4)
        current_volume = round(volumes[-1].volume, 4)
        change_pct = round((volumes[-1].volume - volumes[0].volume) / volumes[0].volume * 100.0, 2)
        if change_pct >= MAJOR_VOLUME_INCREASE_PERCENT:
            alert = "major"
        elif change_pct >= MODERATE_VOLUME_INCREASE_PERCENT:
            alert = "moderate"

    return DepthProgressionResult(
        depth_measurement_count=len(with_depth),
        depth_trend=trend,
        total_depth_change_mm=total,
        max_rate_mm_per_week=max_rate,
        concern_level=concern,
        consecutive_deepening_intervals=best_streak,
        intervals=intervals,
        initial_volume=initial_volume,
        current_volume=current_volume,
        volume_change_percent=change_pct,
        volume_alert=alert,
    )
