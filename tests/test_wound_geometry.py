import math

import pytest

from models import MeasurementParseFailure, WoundMeasurement
from wound_geometry import (
    calculate_elliptical_area,
    calculate_irregular_wound_area,
    calculate_rectangular_area,
    calculate_smart_wound_area,
    calculate_wound_volume,
    extract_wound_measurements,
    normalize_to_cm,
    normalize_unit,
    validate_polygon_vertex_order,
)


@pytest.mark.parametrize(
    "unit,expected",
    [("mm", "mm"), ("Millimeters", "mm"), ("cm", "cm"), ("inches", "in"), ('"', "in"), ("m", "m"), ("ft", None), ("", None)],
)
def test_normalize_unit(unit, expected):
    assert normalize_unit(unit) == expected


def test_normalize_to_cm():
    assert normalize_to_cm(40, "mm") == pytest.approx(4.0)
    assert normalize_to_cm(1, "in") == pytest.approx(2.54)
    assert normalize_to_cm(0.05, "m") == pytest.approx(5.0)


def test_normalize_to_cm_is_idempotent_for_cm():
    once = normalize_to_cm(40, "mm")
    assert normalize_to_cm(once, "cm") == once


def test_normalize_to_cm_unknown_unit_raises():
    with pytest.raises(ValueError):
        normalize_to_cm(1, "furlong")


def test_basic_areas():
    assert calculate_rectangular_area(4, 3) == 12
    assert calculate_elliptical_area(4, 3) == pytest.approx(math.pi * 3)


def test_irregular_area_square_either_orientation():
    ccw = [(0, 0), (2, 0), (2, 2), (0, 2)]
    cw = list(reversed(ccw))
    assert calculate_irregular_wound_area(ccw).area == pytest.approx(4.0)
    assert calculate_irregular_wound_area(cw).area == pytest.approx(4.0)
    assert calculate_irregular_wound_area(ccw).validation.is_valid is True


def test_irregular_area_converts_units():
    square_mm = [(0, 0), (20, 0), (20, 20), (0, 20)]
    assert calculate_irregular_wound_area(square_mm, unit="mm").area == pytest.approx(4.0)


def test_irregular_area_requires_three_vertices():
    with pytest.raises(ValueError):
        calculate_irregular_wound_area([(0, 0), (1, 1)])


def test_self_intersecting_polygon_flagged():
    bowtie = [(0, 0), (2, 2), (2, 0), (0, 2)]
    result = validate_polygon_vertex_order(bowtie)
    assert result.is_self_intersecting is True
    assert result.is_valid is False
    assert any("self-intersections" in r for r in result.recommendations)


def test_implausible_polygon_area_flagged():
    tiny = [(0, 0), (0.1, 0), (0.1, 0.1)]
    result = validate_polygon_vertex_order(tiny)
    assert result.area_plausible is False
    assert result.is_self_intersecting is False


def test_smart_area_precedence():
    square = [(0, 0), (2, 0), (2, 2), (0, 2)]
    assert calculate_smart_wound_area(4, 3, area=10.0, vertices=square) == (10.0, "explicit")
    assert calculate_smart_wound_area(4, 3, vertices=square) == (pytest.approx(4.0), "irregular")
    area, method = calculate_smart_wound_area(4, 3)
    assert method == "elliptical"
    assert area == pytest.approx(9.42, abs=0.01)
    assert calculate_smart_wound_area(4, 3, method="rectangular") == (12, "rectangular")


def test_volume_methods():
    assert calculate_wound_volume(2, 2, 2, "ellipsoid") == pytest.approx(4.0 / 3.0 * math.pi)
    assert calculate_wound_volume(2, 2, 1, "truncated_ellipsoid") == pytest.approx(2.0 / 3.0 * math.pi)
    with pytest.raises(ValueError):
        calculate_wound_volume(1, 1, 1, "cone")


def test_extract_converts_mm_once():
    result = extract_wound_measurements({"measurements": {"length": 40, "width": 30, "unit": "mm"}})
    assert isinstance(result, WoundMeasurement)
    assert result.length == pytest.approx(4.0)
    assert result.width == pytest.approx(3.0)
    assert result.unit == "cm"
    assert result.area_method == "elliptical"
    assert result.area == pytest.approx(9.42, abs=0.01)


def test_extract_accepts_numeric_strings():
    result = extract_wound_measurements({"length": "4.0", "width": "3 cm", "depth": "0.5"})
    assert isinstance(result, WoundMeasurement)
    assert result.length == 4.0
    assert result.width == 3.0
    assert result.depth == 0.5
    assert result.volume is not None


def test_extract_explicit_area_in_unit_squared():
    result = extract_wound_measurements({"length": 40, "width": 30, "area": 900, "unit": "mm"})
    assert result.area_method == "explicit"
    assert result.area == pytest.approx(9.0)


def test_extract_polygon():
    result = extract_wound_measurements(
        {"length": 2, "width": 2, "vertices": [{"x": 0, "y": 0}, {"x": 2, "y": 0}, {"x": 2, "y": 2}, {"x": 0, "y": 2}]}
    )
    assert result.area_method == "irregular"
    assert result.area == pytest.approx(4.0)


@pytest.mark.parametrize(
    "measurements,field",
    [
        ({"length": "abc", "width": 3}, "length"),
        ({"length": 4, "width": -1}, "width"),
        ({"length": 4, "width": float("nan")}, "width"),
        ({"length": 4, "width": 3, "unit": "furlong"}, "unit"),
        ({"length": 4, "width": 3, "depth": "deep"}, "depth"),
        ({}, "measurements"),
    ],
)
def test_extract_parse_failures(measurements, field):
    result = extract_wound_measurements({"measurements": measurements} if measurements else {})
    assert isinstance(result, MeasurementParseFailure)
    assert result.field == field
    assert result.is_valid is False


def test_auto_correction_suggests_without_modifying():
    result = extract_wound_measurements({"length": 20, "width": 0.5, "unit": "cm"}, enable_auto_correction=True)
    assert isinstance(result, WoundMeasurement)
    assert result.auto_corrections is not None
    assert result.auto_corrections.confidence < 0.5
    assert result.length == 20
    assert result.width == 0.5


def test_auto_correction_disabled_by_default():
    result = extract_wound_measurements({"length": 20, "width": 0.5})
    assert result.auto_corrections is None


def test_auto_correction_absent_for_plausible_wound():
    result = extract_wound_measurements({"length": 4, "width": 3}, enable_auto_correction=True)
    assert result.auto_corrections is None
