# models.py
"""
Dataclasses shared by the pre-eligibility gate.

Caller input arrives as plain mappings (EHR exports, JSON request bodies,
CSV rows) using snake_case or camelCase keys. `from_mapping()` coerces those
into typed objects; every result type exposes `to_dict()` with JSON-safe values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

from policy_utils import normalize, parse_timestamp


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return default


def _as_list(val: Any) -> list[Any]:
    if val is None:
        return []
    if isinstance(val, (list, tuple)):
        return list(val)
    return [val]


def _iso(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return _iso(value)


# =============================================================================
# INPUTS
# =============================================================================

@dataclass
class ProcedureCode:
    code: str
    description: str = ""

    @classmethod
    def from_value(cls, value: Any) -> "ProcedureCode":
        if isinstance(value, ProcedureCode):
            return value
        if isinstance(value, Mapping):
            return cls(
                code=str(_pick(value, "code", default="")).strip(),
                description=str(_pick(value, "description", "display", default="")).strip(),
            )
        return cls(code=str(value).strip())

    def to_dict(self) -> dict:
        return {"code": self.code, "description": self.description}


@dataclass
class Episode:
    id: str
    wound_type: str = ""
    wound_location: str = ""
    primary_diagnosis: Optional[str] = None
    start_date: Any = None
    status: str = "active"
    state: Optional[str] = None
    documented_exceptions: list[dict] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Any) -> "Episode":
        if isinstance(data, Episode):
            return data
        diagnosis = _pick(data, "primary_diagnosis", "primaryDiagnosis", "primaryDiagnosisCode")
        return cls(
            id=str(_pick(data, "id", "episode_id", "episodeId", default="")),
            wound_type=str(_pick(data, "wound_type", "woundType", default="")),
            wound_location=str(_pick(data, "wound_location", "woundLocation", default="")),
            primary_diagnosis=str(diagnosis).strip() if normalize(diagnosis) else None,
            start_date=_pick(data, "start_date", "episodeStartDate", "startDate"),
            status=str(_pick(data, "status", default="active")),
            state=_pick(data, "state", "patient_state"),
            documented_exceptions=[
                dict(x) for x in _as_list(_pick(data, "documented_exceptions", "documentedExceptions")) if isinstance(x, Mapping)
            ],
        )


@dataclass
class Encounter:
    id: str
    date: Any
    notes: list[str] = field(default_factory=list)
    diabetic_status: Any = None
    wound_details: dict = field(default_factory=dict)
    conservative_care: dict = field(default_factory=dict)
    procedure_codes: list[ProcedureCode] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Any, index: int = 0) -> "Encounter":
        if isinstance(data, Encounter):
            return data
        notes = [str(n) for n in _as_list(_pick(data, "notes", "note")) if normalize(n)]
        codes = [
            ProcedureCode.from_value(c)
            for c in _as_list(_pick(data, "procedure_codes", "procedureCodes"))
            if c
        ]
        return cls(
            id=str(_pick(data, "id", "encounter_id", "encounterId", default=f"encounter-{index + 1}")),
            date=_pick(data, "date", "encounter_date", "encounterDate", "dateOfService"),
            notes=notes,
            diabetic_status=_pick(data, "diabetic_status", "diabeticStatus"),
            wound_details=dict(_pick(data, "wound_details", "woundDetails", default={}) or {}),
            conservative_care=dict(_pick(data, "conservative_care", "conservativeCare", default={}) or {}),
            procedure_codes=codes,
        )


# =============================================================================
# MEASUREMENTS
# =============================================================================

@dataclass
class AutoCorrectionSuggestion:
    field: str
    issue: str
    suggestion: str
    suggested_value: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "field": self.field,
            "issue": self.issue,
            "suggestion": self.suggestion,
            "suggested_value": self.suggested_value,
        }


@dataclass
class AutoCorrections:
    """Advisory only. The measurement it is attached to is never altered."""

    suggestions: list[AutoCorrectionSuggestion]
    confidence: float

    def to_dict(self) -> dict:
        return {
            "suggestions": [s.to_dict() for s in self.suggestions],
            "confidence": self.confidence,
        }


@dataclass
class WoundMeasurement:
    length: float
    width: float
    area: float
    area_method: str
    depth: Optional[float] = None
    unit: str = "cm"
    vertices: list[tuple[float, float]] = field(default_factory=list)
    method: Optional[str] = None
    timestamp: Optional[datetime] = None
    validation_status: str = "pending"
    id: Optional[str] = None
    volume: Optional[float] = None
    auto_corrections: Optional[AutoCorrections] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "length": self.length,
            "width": self.width,
            "depth": self.depth,
            "area": self.area,
            "area_method": self.area_method,
            "unit": self.unit,
            "vertices": [list(v) for v in self.vertices],
            "method": self.method,
            "timestamp": _iso(self.timestamp),
            "validation_status": self.validation_status,
            "volume": self.volume,
            "auto_corrections": self.auto_corrections.to_dict() if self.auto_corrections else None,
        }


@dataclass
class MeasurementParseFailure:
    reason: str
    field: str
    raw_value: Any = None

    is_valid = False

    def to_dict(self) -> dict:
        raw = self.raw_value if isinstance(self.raw_value, (int, float, str)) or self.raw_value is None else str(self.raw_value)
        return {"is_valid": False, "reason": self.reason, "field": self.field, "raw_value": raw}


@dataclass
class MeasurementRecord:
    """A single dated area observation used for trend and phase analysis."""

    id: str
    area: float
    timestamp: datetime
    validation_status: str = "pending"
    method: Optional[str] = None
    length: Optional[float] = None
    width: Optional[float] = None
    depth: Optional[float] = None
    has_polygon: bool = False

    @property
    def day(self) -> date:
        return self.timestamp.date()

    @classmethod
    def from_value(cls, value: Any, index: int = 0) -> Optional["MeasurementRecord"]:
        """
        Coerce a WoundMeasurement or mapping; returns None when the entry has
        no parseable timestamp or no positive area.
        """
        if isinstance(value, MeasurementRecord):
            return value
        if isinstance(value, WoundMeasurement):
            if value.timestamp is None or not value.area or value.area <= 0:
                return None
            return cls(
                id=value.id or f"measurement-{index + 1}",
                area=float(value.area),
                timestamp=value.timestamp,
                validation_status=value.validation_status,
                method=value.method,
                length=value.length,
                width=value.width,
                depth=value.depth,
                has_polygon=len(value.vertices) >= 3,
            )
        if not isinstance(value, Mapping):
            return None
        ts = parse_timestamp(_pick(value, "timestamp", "measurement_timestamp", "measurementTimestamp", "date"))
        area = _to_float(_pick(value, "area", "calculated_area", "calculatedArea"))
        if ts is None or area is None or area <= 0:
            return None
        return cls(
            id=str(_pick(value, "id", default=f"measurement-{index + 1}")),
            area=area,
            timestamp=ts,
            validation_status=normalize(_pick(value, "validation_status", "validationStatus", default="pending")) or "pending",
            method=normalize(_pick(value, "method", "measurementMethod")) or None,
            length=_to_float(_pick(value, "length")),
            width=_to_float(_pick(value, "width")),
            depth=_to_float(_pick(value, "depth")),
            has_polygon=len(_as_list(_pick(value, "vertices", "polygon"))) >= 3,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "area": self.area,
            "timestamp": _iso(self.timestamp),
            "validation_status": self.validation_status,
            "method": self.method,
        }


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if out != out or out in (float("inf"), float("-inf")):
        return None
    return out


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class ValidationResult:
    is_valid: bool
    reason: str
    policy_violation: Optional[str] = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "reason": self.reason,
            "policy_violation": self.policy_violation,
            "details": _jsonable(self.details),
        }


@dataclass
class CtpEvent:
    date: date
    encounter_id: str
    source: str  # procedure_code | note_text
    evidence: str

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "encounter_id": self.encounter_id,
            "source": self.source,
            "evidence": self.evidence,
        }


@dataclass
class ConservativeCareTimelineResult(ValidationResult):
    days_of_care: Optional[int] = None
    first_encounter_date: Optional[date] = None
    first_ctp_date: Optional[date] = None
    ctp_events: list[CtpEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        out = super().to_dict()
        out.update(
            {
                "days_of_care": self.days_of_care,
                "first_encounter_date": _iso(self.first_encounter_date),
                "first_ctp_date": _iso(self.first_ctp_date),
                "ctp_events": [e.to_dict() for e in self.ctp_events],
            }
        )
        return out


@dataclass
class AreaReductionResult:
    initial_area: float
    current_area: float
    percent_reduction: float
    meets_ctp_threshold: bool
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "initial_area": self.initial_area,
            "current_area": self.current_area,
            "percent_reduction": self.percent_reduction,
            "meets_ctp_threshold": self.meets_ctp_threshold,
            "details": _jsonable(self.details),
        }


@dataclass
class FourWeekPeriod:
    period_number: int
    start_date: date
    end_date: date
    baseline_area: float
    current_area: float
    reduction_percentage: float
    days_from_start: int
    meets_threshold: bool
    measurement_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "period_number": self.period_number,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "baseline_area": self.baseline_area,
            "current_area": self.current_area,
            "reduction_percentage": self.reduction_percentage,
            "days_from_start": self.days_from_start,
            "meets_threshold": self.meets_threshold,
            "measurement_id": self.measurement_id,
        }


@dataclass
class PhaseAnalysis:
    current_phase: str
    phase_specific_threshold: float
    threshold_direction: str  # below | at_or_above
    meets_phase_requirement: bool

    def to_dict(self) -> dict:
        return {
            "current_phase": self.current_phase,
            "phase_specific_threshold": self.phase_specific_threshold,
            "threshold_direction": self.threshold_direction,
            "meets_phase_requirement": self.meets_phase_requirement,
        }


@dataclass
class PolicyMetadata:
    policy_id: str
    jurisdiction: str
    effective_date: str
    last_updated: str

    def to_dict(self) -> dict:
        return {
            "policy_id": self.policy_id,
            "jurisdiction": self.jurisdiction,
            "effective_date": self.effective_date,
            "last_updated": self.last_updated,
        }


@dataclass
class MedicareLCDComplianceResult:
    episode_id: str
    phase: str
    baseline_area: Optional[float]
    baseline_date: Optional[date]
    current_area: Optional[float]
    current_date: Optional[date]
    days_from_baseline: int
    current_reduction_percentage: float
    phase_analysis: PhaseAnalysis
    four_week_period_analysis: list[FourWeekPeriod]
    overall_compliance: str  # compliant | non_compliant | insufficient_data
    policy_metadata: PolicyMetadata
    next_evaluation_date: Optional[date]
    audit_trail: list[str] = field(default_factory=list)
    regulatory_notes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "episode_id": self.episode_id,
            "phase": self.phase,
            "baseline_area": self.baseline_area,
            "baseline_date": _iso(self.baseline_date),
            "current_area": self.current_area,
            "current_date": _iso(self.current_date),
            "days_from_baseline": self.days_from_baseline,
            "current_reduction_percentage": self.current_reduction_percentage,
            "phase_analysis": self.phase_analysis.to_dict(),
            "four_week_period_analysis": [p.to_dict() for p in self.four_week_period_analysis],
            "overall_compliance": self.overall_compliance,
            "policy_metadata": self.policy_metadata.to_dict(),
            "next_evaluation_date": _iso(self.next_evaluation_date),
            "audit_trail": list(self.audit_trail),
            "regulatory_notes": list(self.regulatory_notes),
        }


@dataclass
class MeasurementValidationRecord:
    measurement_id: str
    quality_score: float
    is_outlier: bool = False
    has_inconsistent_trend: bool = False
    has_gap: bool = False
    needs_clinical_review: bool = False
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "measurement_id": self.measurement_id,
            "quality_score": self.quality_score,
            "validation_flags": {
                "is_outlier": self.is_outlier,
                "has_inconsistent_trend": self.has_inconsistent_trend,
                "has_gap": self.has_gap,
                "needs_clinical_review": self.needs_clinical_review,
            },
            "recommendations": list(self.recommendations),
        }


@dataclass
class HealingVelocityMetrics:
    average_weekly_reduction_rate: Optional[float]
    peak_weekly_reduction_rate: Optional[float]
    trend: str  # improving | stalled | deteriorating | insufficient_data
    projected_healing_weeks: Optional[float]
    healing_efficiency: float

    def to_dict(self) -> dict:
        return {
            "average_weekly_reduction_rate": self.average_weekly_reduction_rate,
            "peak_weekly_reduction_rate": self.peak_weekly_reduction_rate,
            "trend": self.trend,
            "projected_healing_weeks": self.projected_healing_weeks,
            "healing_efficiency": self.healing_efficiency,
        }


@dataclass
class MeasurementQualityReport:
    records: list[MeasurementValidationRecord]
    velocity: HealingVelocityMetrics
    data_quality_grade: str
    selected_measurement_ids: list[str] = field(default_factory=list)
    discarded_measurement_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "records": [r.to_dict() for r in self.records],
            "velocity": self.velocity.to_dict(),
            "data_quality_grade": self.data_quality_grade,
            "selected_measurement_ids": list(self.selected_measurement_ids),
            "discarded_measurement_ids": list(self.discarded_measurement_ids),
        }


# =============================================================================
# STANDARD OF CARE / DOCUMENTATION
# =============================================================================

@dataclass
class StandardOfCareResult:
    """Component is None when it is not required for the wound category."""

    wound_category: Optional[str]
    offloading: Optional[bool]
    compression: Optional[bool]
    infection_control: bool
    patient_education: bool
    evidence: dict = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)

    @property
    def required_components_met(self) -> bool:
        return self.offloading is not False and self.compression is not False

    def to_dict(self) -> dict:
        return {
            "wound_category": self.wound_category,
            "offloading": self.offloading,
            "compression": self.compression,
            "infection_control": self.infection_control,
            "patient_education": self.patient_education,
            "required_components_met": self.required_components_met,
            "evidence": _jsonable(self.evidence),
            "recommendations": list(self.recommendations),
        }


@dataclass
class DocumentedException:
    week: str
    type: str
    reason: str = ""
    is_valid_exception: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Optional["DocumentedException"]:
        """'week' is an ISO week ("2024-W03"); a 'date' is converted to its ISO week."""
        week = _pick(data, "week")
        if week is None:
            day = parse_timestamp(_pick(data, "date"))
            if day is None:
                return None
            year, wk, _ = day.date().isocalendar()
            week = f"{year}-W{wk:02d}"
        flag = _pick(data, "is_valid_exception", "isValidException", default=False)
        return cls(
            week=str(week).strip().upper(),
            type=normalize(_pick(data, "type", default="other")).replace("_", "-"),
            reason=str(_pick(data, "reason", default="")),
            is_valid_exception=flag is True or normalize(flag) in {"true", "yes", "y", "1"},
        )

    def to_dict(self) -> dict:
        return {
            "week": self.week,
            "type": self.type,
            "reason": self.reason,
            "is_valid_exception": self.is_valid_exception,
        }


@dataclass
class WeeklyComplianceResult:
    required_weeks: list[str]
    documented_weeks: list[str]
    missing_weeks: list[str]
    coverage_percent: float
    status: str  # compliant | compliant-with-exception | at-risk | non-compliant
    traffic_light: str  # green | yellow | red
    valid_exceptions: list[DocumentedException] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "required_weeks": list(self.required_weeks),
            "documented_weeks": list(self.documented_weeks),
            "missing_weeks": list(self.missing_weeks),
            "coverage_percent": self.coverage_percent,
            "status": self.status,
            "traffic_light": self.traffic_light,
            "valid_exceptions": [e.to_dict() for e in self.valid_exceptions],
        }


@dataclass
class DepthInterval:
    from_measurement_id: Optional[str]
    to_measurement_id: Optional[str]
    days: int
    depth_change_mm: float
    rate_mm_per_week: float

    def to_dict(self) -> dict:
        return {
            "from_measurement_id": self.from_measurement_id,
            "to_measurement_id": self.to_measurement_id,
            "days": self.days,
            "depth_change_mm": self.depth_change_mm,
            "rate_mm_per_week": self.rate_mm_per_week,
        }


@dataclass
class DepthProgressionResult:
    depth_measurement_count: int
    depth_trend: str  # healing | stable | deepening | insufficient_data
    total_depth_change_mm: Optional[float]
    max_rate_mm_per_week: Optional[float]
    concern_level: str  # none | minor | moderate | critical
    consecutive_deepening_intervals: int
    intervals: list[DepthInterval] = field(default_factory=list)
    initial_volume: Optional[float] = None
    current_volume: Optional[float] = None
    volume_change_percent: Optional[float] = None
    volume_alert: Optional[str] = None  # moderate | major

    def to_dict(self) -> dict:
        return {
            "depth_measurement_count": self.depth_measurement_count,
            "depth_trend": self.depth_trend,
            "total_depth_change_mm": self.total_depth_change_mm,
            "max_rate_mm_per_week": self.max_rate_mm_per_week,
            "concern_level": self.concern_level,
            "consecutive_deepening_intervals": self.consecutive_deepening_intervals,
            "intervals": [i.to_dict() for i in self.intervals],
            "initial_volume": self.initial_volume,
            "current_volume": self.current_volume,
            "volume_change_percent": self.volume_change_percent,
            "volume_alert": self.volume_alert,
        }


@dataclass
class PreEligibilityCheckResult:
    episode_id: str
    wound_type_check: ValidationResult
    conservative_care_check: ConservativeCareTimelineResult
    measurement_check: ValidationResult
    area_reduction_check: Optional[AreaReductionResult]
    overall_eligible: bool
    failure_reasons: list[str]
    policy_violations: list[str]
    audit_trail: list[str]
    evaluated_at: datetime
    lcd_compliance: Optional[MedicareLCDComplianceResult] = None
    quality_report: Optional[MeasurementQualityReport] = None
    standard_of_care: Optional[StandardOfCareResult] = None
    weekly_compliance: Optional[WeeklyComplianceResult] = None
    depth_progression: Optional[DepthProgressionResult] = None

    def to_dict(self) -> dict:
        return {
            "episode_id": self.episode_id,
            "overall_eligible": self.overall_eligible,
            "failure_reasons": list(self.failure_reasons),
            "policy_violations": list(self.policy_violations),
            "wound_type_check": self.wound_type_check.to_dict(),
            "conservative_care_check": self.conservative_care_check.to_dict(),
            "measurement_check": self.measurement_check.to_dict(),
            "area_reduction_check": self.area_reduction_check.to_dict() if self.area_reduction_check else None,
            "lcd_compliance": self.lcd_compliance.to_dict() if self.lcd_compliance else None,
            "quality_report": self.quality_report.to_dict() if self.quality_report else None,
            "standard_of_care": self.standard_of_care.to_dict() if self.standard_of_care else None,
            "weekly_compliance": self.weekly_compliance.to_dict() if self.weekly_compliance else None,
            "depth_progression": self.depth_progression.to_dict() if self.depth_progression else None,
            "audit_trail": list(self.audit_trail),
            "evaluated_at": _iso(self.evaluated_at),
        }
