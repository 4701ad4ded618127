# wound_geometry.py
"""
Wound geometry: unit normalization, area and volume algorithms, polygon checks,
and the parse-and-normalize step that turns raw wound details into a typed
WoundMeasurement (or a structured MeasurementParseFailure).

All areas are in cm^2. Every linear value is converted to centimeters exactly
once, inside extract_wound_measurements; the area algorithms assume cm input.
Volume is informational and never feeds a coverage decision.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from models import (
    AutoCorrectionSuggestion,
    AutoCorrections,
    MeasurementParseFailure,
    WoundMeasurement,
)
from policy_utils import normalize, parse_timestamp

logger = logging.getLogger(__name__)

UNIT_TO_CM = {"mm": 0.1, "cm": 1.0, "in": 2.54, "m": 100.0}

_UNIT_ALIASES = {
    "mm": "mm",
    "millimeter": "mm",
    "millimeters": "mm",
    "millimetre": "mm",
    "millimetres": "mm",
    "cm": "cm",
    "centimeter": "cm",
    "centimeters": "cm",
    "centimetre": "cm",
    "centimetres": "cm",
    "in": "in",
    "inch": "in",
    "inches": "in",
    '"': "in",
    "m": "m",
    "meter": "m",
    "meters": "m",
    "metre": "m",
    "metres": "m",
}

MIN_PLAUSIBLE_AREA_CM2 = 0.1
MAX_PLAUSIBLE_AREA_CM2 = 1000.0
MAX_PLAUSIBLE_ASPECT_RATIO = 10.0
MAX_AUTO_CORRECTION_CONFIDENCE = 0.9
UNIT_MIXUP_CONFIDENCE = 0.4

AREA_METHODS = ("explicit", "irregular", "elliptical", "rectangular")
MEASUREMENT_METHODS = ("rectangular", "elliptical", "irregular", "planimetry")
VOLUME_METHODS = ("ellipsoid", "truncated_ellipsoid")

_NUMBER_WITH_UNIT = re.compile(r'^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:e[-+]?\d+)?)\s*([a-z"]+)?\s*$', re.IGNORECASE)


# =============================================================================
# UNITS
# =============================================================================

def normalize_unit(unit: Any) -> Optional[str]:
    """Canonical unit name (mm, cm, in, m) or None if unrecognized."""
    key = normalize(unit)
    if not key:
        return None
    return _UNIT_ALIASES.get(key.rstrip("."))


def normalize_to_cm(value: float, unit: str) -> float:
    """
    Convert one linear value to centimeters.

    Identity for 'cm', so applying it to an already-normalized value is safe.
    Raises ValueError for unknown units.
    """
    canonical = normalize_unit(unit)
    if canonical is None:
        raise ValueError(f"Unknown measurement unit: {unit!r}")
    if canonical == "cm":
        return float(value)
    return float(value) * UNIT_TO_CM[canonical]


# =============================================================================
# AREA ALGORITHMS (cm input)
# =============================================================================

def calculate_rectangular_area(length: float, width: float) -> float:
    return length * width


def calculate_elliptical_area(length: float, width: float) -> float:
    return math.pi * (length / 2.0) * (width / 2.0)


def _shoelace(vertices: Sequence[tuple[float, float]]) -> float:
    total = 0.0
    n = len(vertices)
    for i in range(n):
        x1, y1 = vertices[i]
        x2, y2 = vertices[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    return abs(total) / 2.0


@dataclass
class PolygonValidation:
    is_valid: bool
    is_self_intersecting: bool
    area_plausible: bool
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "is_self_intersecting": self.is_self_intersecting,
            "area_plausible": self.area_plausible,
            "recommendations": list(self.recommendations),
        }


@dataclass
class IrregularAreaResult:
    area: float
    validation: PolygonValidation

    def to_dict(self) -> dict:
        return {"area": self.area, "validation": self.validation.to_dict()}


def _orientation(p, q, r) -> int:
    val = (q[1] - p[1]) * (r[0] - q[0]) - (q[0] - p[0]) * (r[1] - q[1])
    if abs(val) < 1e-12:
        return 0
    return 1 if val > 0 else 2


def _on_segment(p, q, r) -> bool:
    return min(p[0], r[0]) <= q[0] <= max(p[0], r[0]) and min(p[1], r[1]) <= q[1] <= max(p[1], r[1])


def _segments_intersect(p1, q1, p2, q2) -> bool:
    o1 = _orientation(p1, q1, p2)
    o2 = _orientation(p1, q1, q2)
    o3 = _orientation(p2, q2, p1)
    o4 = _orientation(p2, q2, q1)
    if o1 != o2 and o3 != o4:
        return True
    # Collinear overlaps
    if o1 == 0 and _on_segment(p1, p2, q1):
        return True
    if o2 == 0 and _on_segment(p1, q2, q1):
        return True
    if o3 == 0 and _on_segment(p2, p1, q2):
        return True
    if o4 == 0 and _on_segment(p2, q1, q2):
        return True
    return False


def _coerce_vertices(vertices: Sequence[Any]) -> list[tuple[float, float]]:
    out: list[tuple[float, float]] = []
    for v in vertices:
        if isinstance(v, Mapping):
            x, y = v.get("x"), v.get("y")
        else:
            x, y = v[0], v[1]
        out.append((float(x), float(y)))
    return out


def validate_polygon_vertex_order(vertices: Sequence[Any]) -> PolygonValidation:
    """
    Check a traced wound outline (cm).

    Every pair of non-adjacent edges is tested for intersection, O(n^2).
    """
    pts = _coerce_vertices(vertices)
    recommendations: list[str] = []
    n = len(pts)
    if n < 3:
        return PolygonValidation(
            is_valid=False,
            is_self_intersecting=False,
            area_plausible=False,
            recommendations=["Trace at least 3 vertices to define a wound outline"],
        )

    self_intersecting = False
    for i in range(n):
        a1, a2 = pts[i], pts[(i + 1) % n]
        for j in range(i + 2, n):
            if i == 0 and j == n - 1:
                continue  # shares vertex 0
            b1, b2 = pts[j], pts[(j + 1) % n]
            if _segments_intersect(a1, a2, b1, b2):
                self_intersecting = True
                break
        if self_intersecting:
            break
    if self_intersecting:
        recommendations.append("Reorder vertices: polygon has self-intersections")

    if any(pts[i] == pts[(i + 1) % n] for i in range(n)):
        recommendations.append("Remove duplicate consecutive vertices")

    area = _shoelace(pts)
    area_plausible = MIN_PLAUSIBLE_AREA_CM2 <= area <= MAX_PLAUSIBLE_AREA_CM2
    if not area_plausible:
        recommendations.append(
            f"Polygon area {area:.2f} cm2 outside plausible range "
            f"({MIN_PLAUSIBLE_AREA_CM2}-{MAX_PLAUSIBLE_AREA_CM2:g} cm2); verify tracing units"
        )

    return PolygonValidation(
        is_valid=not self_intersecting and area_plausible,
        is_self_intersecting=self_intersecting,
        area_plausible=area_plausible,
        recommendations=recommendations,
    )


def calculate_irregular_wound_area(vertices: Sequence[Any], unit: str = "cm") -> IrregularAreaResult:
    """
    Shoelace area of a traced outline, orientation independent.

    Raises ValueError for fewer than 3 vertices.
    """
    if vertices is None or len(vertices) < 3:
        raise ValueError("Irregular wound area requires at least 3 vertices")
    pts = [(normalize_to_cm(x, unit), normalize_to_cm(y, unit)) for x, y in _coerce_vertices(vertices)]
    return IrregularAreaResult(area=_shoelace(pts), validation=validate_polygon_vertex_order(pts))


def calculate_smart_wound_area(
    length: float,
    width: float,
    area: Optional[float] = None,
    vertices: Optional[Sequence[Any]] = None,
    method: Optional[str] = None,
) -> tuple[float, str]:
    """
    Pick the area algorithm by precedence:
    explicit area > irregular polygon (>= 3 vertices) > elliptical > rectangular.
    A 'rectangular' method tag selects length x width when no explicit area or polygon exists.
    Returns (area_cm2, area_method).
    """
    if area is not None and area > 0:
        return area, "explicit"
    if vertices is not None and len(vertices) >= 3:
        return calculate_irregular_wound_area(vertices).area, "irregular"
    if normalize(method) == "rectangular":
        return calculate_rectangular_area(length, width), "rectangular"
    if length > 0 and width > 0:
        return calculate_elliptical_area(length, width), "elliptical"
    return calculate_rectangular_area(length, width), "rectangular"


# =============================================================================
# VOLUME (informational only)
# =============================================================================

def calculate_wound_volume(length: float, width: float, depth: float, method: str = "ellipsoid") -> float:
    """
    ellipsoid:           (4/3)·pi·(L/2)(W/2)(D/2)
    truncated_ellipsoid: half ellipsoid with depth as the semi-axis, (2/3)·pi·(L/2)(W/2)·D
    """
    if method == "ellipsoid":
        return (4.0 / 3.0) * math.pi * (length / 2.0) * (width / 2.0) * (depth / 2.0)
    if method == "truncated_ellipsoid":
        return (2.0 / 3.0) * math.pi * (length / 2.0) * (width / 2.0) * depth
    raise ValueError(f"Unknown volume method: {method!r}")


# =============================================================================
# PARSE AND NORMALIZE
# =============================================================================

def _parse_linear(raw: Any) -> tuple[Optional[float], Optional[str]]:
    """'4.0' -> (4.0, None); '40 mm' -> (40.0, 'mm'); garbage -> (None, None)."""
    if raw is None or isinstance(raw, bool):
        return None, None
    if isinstance(raw, (int, float)):
        value = float(raw)
        return (value, None) if math.isfinite(value) else (None, None)
    m = _NUMBER_WITH_UNIT.match(str(raw))
    if not m:
        return None, None
    value = float(m.group(1))
    if not math.isfinite(value):
        return None, None
    return value, m.group(2)


def _suggest_corrections(length: float, width: float, area: float) -> Optional[AutoCorrections]:
    suggestions: list[AutoCorrectionSuggestion] = []
    confidences: list[float] = []

    ratio = max(length, width) / min(length, width)
    if ratio > MAX_PLAUSIBLE_ASPECT_RATIO:
        short_side = "width" if width < length else "length"
        suggestions.append(
            AutoCorrectionSuggestion(
                field=short_side,
                issue=f"Extreme aspect ratio {ratio:.1f}:1",
                suggestion=f"Verify {short_side}; value may have been recorded in a different unit",
            )
        )
        confidences.append(min(MAX_AUTO_CORRECTION_CONFIDENCE, MAX_PLAUSIBLE_ASPECT_RATIO / ratio))

    if area > MAX_PLAUSIBLE_AREA_CM2:
        suggestions.append(
            AutoCorrectionSuggestion(
                field="area",
                issue=f"Area {area:.1f} cm2 exceeds plausible range",
                suggestion="Verify unit; measurement may have been recorded in mm",
                suggested_value=round(area / 100.0, 2),
            )
        )
        confidences.append(UNIT_MIXUP_CONFIDENCE)
    elif area < MIN_PLAUSIBLE_AREA_CM2:
        suggestions.append(
            AutoCorrectionSuggestion(
                field="area",
                issue=f"Area {area:.3f} cm2 below plausible range",
                suggestion="Verify unit; measurement may have been recorded in cm but labelled mm",
                suggested_value=round(area * 100.0, 2),
            )
        )
        confidences.append(UNIT_MIXUP_CONFIDENCE)

    if not suggestions:
        return None
    return AutoCorrections(suggestions=suggestions, confidence=round(min(confidences), 2))


def extract_wound_measurements(
    wound_details: Optional[Mapping[str, Any]],
    enable_auto_correction: bool = False,
    timestamp: Any = None,
    measurement_id: Optional[str] = None,
) -> WoundMeasurement | MeasurementParseFailure:
    """
    Parse raw wound details into a WoundMeasurement in centimeters.

    Accepts either {"measurements": {...}} or the measurement mapping itself.
    Input-shape problems come back as MeasurementParseFailure, never raised.
    """
    details = wound_details or {}
    m = details.get("measurements") if isinstance(details.get("measurements"), Mapping) else details
    if not m:
        return MeasurementParseFailure(reason="No wound measurements documented", field="measurements")

    raw_unit = m.get("unit") or m.get("units") or "cm"
    unit = normalize_unit(raw_unit)
    if unit is None:
        return MeasurementParseFailure(reason=f"Unrecognized measurement unit {raw_unit!r}", field="unit", raw_value=raw_unit)

    dims: dict[str, float] = {}
    for name in ("length", "width"):
        value, inline_unit = _parse_linear(m.get(name))
        if value is None or value <= 0:
            return MeasurementParseFailure(
                reason=f"Wound {name} must be a finite positive number",
                field=name,
                raw_value=m.get(name),
            )
        value_unit = normalize_unit(inline_unit) if inline_unit else unit
        if value_unit is None:
            return MeasurementParseFailure(reason=f"Unrecognized unit on {name}", field=name, raw_value=m.get(name))
        dims[name] = normalize_to_cm(value, value_unit)

    depth: Optional[float] = None
    if m.get("depth") not in (None, ""):
        value, inline_unit = _parse_linear(m.get("depth"))
        value_unit = normalize_unit(inline_unit) if inline_unit else unit
        if value is None or value < 0 or value_unit is None:
            return MeasurementParseFailure(
                reason="Wound depth must be a finite non-negative number",
                field="depth",
                raw_value=m.get("depth"),
            )
        depth = normalize_to_cm(value, value_unit)

    explicit_area: Optional[float] = None
    raw_area = m.get("area", m.get("calculated_area", m.get("calculatedArea")))
    if raw_area not in (None, ""):
        value, _ = _parse_linear(raw_area)
        if value is None or value <= 0:
            return MeasurementParseFailure(
                reason="Wound area must be a finite positive number",
                field="area",
                raw_value=raw_area,
            )
        # Area is in unit^2
        explicit_area = value * (UNIT_TO_CM[unit] ** 2)

    vertices: list[tuple[float, float]] = []
    raw_vertices = m.get("vertices") or m.get("polygon") or []
    if raw_vertices:
        try:
            vertices = [(normalize_to_cm(x, unit), normalize_to_cm(y, unit)) for x, y in _coerce_vertices(raw_vertices)]
        except (TypeError, ValueError, KeyError, IndexError):
            return MeasurementParseFailure(reason="Wound outline vertices are malformed", field="vertices")
        if not all(math.isfinite(c) for pt in vertices for c in pt):
            return MeasurementParseFailure(reason="Wound outline vertices are malformed", field="vertices")

    method = normalize(m.get("method") or m.get("measurement_method") or m.get("measurementMethod")) or None
    area, area_method = calculate_smart_wound_area(
        dims["length"],
        dims["width"],
        area=explicit_area,
        vertices=vertices if len(vertices) >= 3 else None,
        method=method,
    )

    volume = None
    if depth:
        volume = calculate_wound_volume(dims["length"], dims["width"], depth)

    corrections = _suggest_corrections(dims["length"], dims["width"], area) if enable_auto_correction else None

    return WoundMeasurement(
        length=dims["length"],
        width=dims["width"],
        depth=depth,
        area=area,
        area_method=area_method,
        unit="cm",
        vertices=vertices,
        method=method,
        timestamp=parse_timestamp(timestamp if timestamp is not None else m.get("timestamp")),
        validation_status=normalize(m.get("validation_status") or m.get("validationStatus")) or "pending",
        id=measurement_id or (str(m["id"]) if m.get("id") is not None else None),
        volume=volume,
        auto_corrections=corrections,
    )
