# measurement_quality.py
"""
Measurement quality control: outliers, trend and gap flags, deterministic
same-day deduplication, healing velocity and an A-F data-quality grade.

Outlier scale:
  n <= 5  -> median absolute deviation x 1.4826 (robust for tiny samples)
  n >  5  -> population standard deviation
Both use a 2.5 threshold.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import numpy as np

from models import (
    HealingVelocityMetrics,
    MeasurementQualityReport,
    MeasurementRecord,
    MeasurementValidationRecord,
)

logger = logging.getLogger(__name__)

OUTLIER_THRESHOLD = 2.5
MAD_SCALE = 1.4826
SMALL_SAMPLE_MAX = 5
TREND_CHANGE_LIMIT = 0.5
MAX_GAP_DAYS = 14
EXPECTED_WEEKLY_REDUCTION_PCT = 10.0
TREND_BAND_PCT = 2.5

_STATUS_WEIGHT = {"validated": 1.0, "pending": 0.5, "needs_review": 0.25, "flagged": 0.0}
_DOCUMENTED_METHODS = {"rectangular", "elliptical", "irregular", "planimetry", "digital", "ruler"}

_GRADES = ((0.9, "A"), (0.8, "B"), (0.7, "C"), (0.6, "D"))


def coerce_records(values: Iterable[Any]) -> tuple[list[MeasurementRecord], int]:
    """Returns (usable records, number skipped for missing timestamp/area)."""
    records: list[MeasurementRecord] = []
    skipped = 0
    for i, v in enumerate(values):
        rec = MeasurementRecord.from_value(v, i)
        if rec is None:
            skipped += 1
        else:
            records.append(rec)
    return records, skipped


# =============================================================================
# SAME-DAY DEDUPLICATION
# =============================================================================

def measurement_selection_score(rec: MeasurementRecord) -> float:
    status = _STATUS_WEIGHT.get(rec.validation_status, 0.25)
    richness = 0.0
    if rec.length and rec.width:
        richness += 0.5
    if rec.depth:
        richness += 0.25
    if rec.has_polygon:
        richness += 0.25
    documented = 1.0 if rec.method in _DOCUMENTED_METHODS else 0.0
    return round(0.5 * status + 0.3 * richness + 0.2 * documented, 6)


def select_best_measurement_per_day(records: Iterable[MeasurementRecord]) -> list[MeasurementRecord]:
    """
    Keep one record per UTC calendar day, chronologically ordered.

    Ranking: weighted quality score, then latest timestamp, then id,
    so the outcome never depends on input order.
    """
    by_day: dict = {}
    for rec in records:
        by_day.setdefault(rec.day, []).append(rec)
    return [min(by_day[d], key=_rank) for d in sorted(by_day)]


def _rank(rec: MeasurementRecord) -> tuple:
    # Ascending: best score, then latest timestamp, then lexicographically smallest id
    return (-measurement_selection_score(rec), -rec.timestamp.timestamp(), rec.id)


# =============================================================================
# ANOMALIES
# =============================================================================

def _outlier_flags(areas: np.ndarray) -> np.ndarray:
    n = areas.size
    if n < 3:
        return np.zeros(n, dtype=bool)
    if n <= SMALL_SAMPLE_MAX:
        center = float(np.median(areas))
        deviations = np.abs(areas - center)
        scale = float(np.median(deviations)) * MAD_SCALE
        if scale == 0.0:
            # Mean absolute deviation fallback (normal-consistent factor)
            scale = float(np.mean(deviations)) * 1.2533
    else:
        center = float(np.mean(areas))
        scale = float(np.std(areas))
    if scale == 0.0:
        return np.zeros(n, dtype=bool)
    return np.abs(areas - center) / scale > OUTLIER_THRESHOLD


def detect_measurement_anomalies(records: Iterable[MeasurementRecord]) -> list[MeasurementValidationRecord]:
    ordered = sorted(records, key=lambda r: (r.timestamp, r.id))
    if not ordered:
        return []
    areas = np.array([r.area for r in ordered], dtype=float)
    outliers = _outlier_flags(areas)

    out: list[MeasurementValidationRecord] = []
    for i, rec in enumerate(ordered):
        trend = False
        gap = False
        recommendations: list[str] = []
        if i > 0:
            prev = ordered[i - 1]
            if prev.area > 0 and abs(rec.area - prev.area) / prev.area > TREND_CHANGE_LIMIT:
                trend = True
                recommendations.append("Area changed by more than 50% since the previous measurement; confirm technique")
            if (rec.day - prev.day).days > MAX_GAP_DAYS:
                gap = True
                recommendations.append(f"More than {MAX_GAP_DAYS} days since the previous measurement")
        is_outlier = bool(outliers[i])
        if is_outlier:
            recommendations.append("Statistical outlier; re-measure or document the reason for the change")

        score = 1.0
        if is_outlier:
            score -= 0.4
        if trend:
            score -= 0.2
        if gap:
            score -= 0.1
        if rec.validation_status == "flagged":
            score -= 0.2
        elif rec.validation_status == "validated":
            score += 0.05
        score = round(min(1.0, max(0.0, score)), 3)

        out.append(
            MeasurementValidationRecord(
                measurement_id=rec.id,
                quality_score=score,
                is_outlier=is_outlier,
                has_inconsistent_trend=trend,
                has_gap=gap,
                needs_clinical_review=is_outlier or trend,
                recommendations=recommendations,
            )
        )
    return out


# =============================================================================
# HEALING VELOCITY
# =============================================================================

def calculate_healing_velocity(records: Iterable[MeasurementRecord]) -> HealingVelocityMetrics:
    ordered = sorted(records, key=lambda r: (r.timestamp, r.id))
    if len(ordered) < 2:
        return HealingVelocityMetrics(None, None, "insufficient_data", None, 0.0)

    first, last = ordered[0], ordered[-1]
    total_days = (last.day - first.day).days
    if total_days <= 0:
        return HealingVelocityMetrics(None, None, "insufficient_data", None, 0.0)

    weeks = total_days / 7.0
    average = ((first.area - last.area) / first.area * 100.0) / weeks

    interval_rates: list[float] = []
    for prev, cur in zip(ordered, ordered[1:]):
        days = (cur.day - prev.day).days
        if days <= 0 or prev.area <= 0:
            continue
        interval_rates.append(((prev.area - cur.area) / prev.area * 100.0) / (days / 7.0))
    peak = float(np.max(interval_rates)) if interval_rates else average

    if average > TREND_BAND_PCT:
        trend = "improving"
    elif average < -TREND_BAND_PCT:
        trend = "deteriorating"
    else:
        trend = "stalled"

    projected: Optional[float] = None
    absolute_weekly = (first.area - last.area) / weeks
    if absolute_weekly > 0:
        projected = round(last.area / absolute_weekly, 1)

    efficiency = round(min(1.0, max(0.0, average / EXPECTED_WEEKLY_REDUCTION_PCT)), 3)
    return HealingVelocityMetrics(
        average_weekly_reduction_rate=round(average, 2),
        peak_weekly_reduction_rate=round(peak, 2),
        trend=trend,
        projected_healing_weeks=projected,
        healing_efficiency=efficiency,
    )


def grade_data_quality(scores: Iterable[float]) -> str:
    values = list(scores)
    if not values:
        return "F"
    mean = float(np.mean(values))
    for floor, grade in _GRADES:
        if mean >= floor:
            return grade
    return "F"


def assess_measurement_quality(measurements: Iterable[Any]) -> MeasurementQualityReport:
    records, skipped = coerce_records(measurements)
    selected = select_best_measurement_per_day(records)
    selected_ids = {r.id for r in selected}
    discarded = sorted(r.id for r in records if r.id not in selected_ids)
    if skipped:
        logger.debug("Skipped %d measurements without timestamp or area", skipped)

    anomaly_records = detect_measurement_anomalies(selected)
    return MeasurementQualityReport(
        records=anomaly_records,
        velocity=calculate_healing_velocity(selected),
        data_quality_grade=grade_data_quality(r.quality_score for r in anomaly_records),
        selected_measurement_ids=[r.id for r in selected],
        discarded_measurement_ids=discarded,
    )
