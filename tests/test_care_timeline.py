from datetime import datetime, timedelta, timezone

import pytest

from care_timeline import validate_conservative_care_timeline
from rules.ctp_detection_rules import find_ctp_note, is_ctp_procedure_code

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _enc(date, notes=None, codes=None, enc_id=None):
    return {
        "id": enc_id or f"enc-{date}",
        "date": date,
        "notes": notes or [],
        "procedureCodes": [{"code": c, "description": ""} for c in (codes or [])],
    }


def test_ctp_too_early_is_policy_violation():
    encounters = [
        _enc("2024-01-01", ["Initial wound assessment"]),
        _enc("2024-01-15", ["CTP application"], ["Q4100"]),
    ]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is False
    assert "only 14 days" in result.reason
    assert "minimum 28 days" in result.policy_violation
    assert result.days_of_care == 14


def test_ctp_after_minimum_is_valid():
    encounters = [
        _enc("2024-01-01", ["Initial wound assessment"]),
        _enc("2024-01-30", ["CTP application after failed conservative care"], ["15271"]),
    ]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is True
    assert "Conservative care timeline meets requirements" in result.reason
    assert result.days_of_care == 29
    assert result.first_ctp_date.isoformat() == "2024-01-30"
    assert result.ctp_events[0].source == "procedure_code"


@pytest.mark.parametrize("ctp_date,expected", [("2024-01-29", True), ("2024-01-28", False)])
def test_boundary_28_days(ctp_date, expected):
    encounters = [_enc("2024-01-01"), _enc(ctp_date, codes=["15275"])]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is expected


def test_no_ctp_enough_days_is_valid():
    encounters = [_enc("2024-01-01"), _enc("2024-01-20")]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is True
    assert result.first_ctp_date is None
    assert result.details["state"] == "no_ctp"


def test_no_ctp_too_early_has_no_policy_violation():
    encounters = [_enc("2024-05-20")]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is False
    assert result.policy_violation is None
    assert result.days_of_care == 12


def test_unsorted_encounters_are_ordered():
    encounters = [
        _enc("2024-02-05", codes=["Q4186"]),
        _enc("2024-01-01"),
        _enc("2024-01-20"),
    ]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.first_encounter_date.isoformat() == "2024-01-01"
    assert result.days_of_care == 35
    assert result.is_valid is True


def test_note_text_detects_ctp():
    encounters = [
        _enc("2024-01-01"),
        _enc("2024-01-10", ["Apligraf applied to wound bed"]),
    ]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is False
    assert result.ctp_events[0].source == "note_text"
    assert result.ctp_events[0].evidence.lower() == "apligraf"


def test_unparseable_date_returns_invalid():
    result = validate_conservative_care_timeline([_enc("2024-01-01"), _enc("soon")], now=NOW)
    assert result.is_valid is False
    assert "could not be parsed" in result.reason


def test_empty_encounters():
    result = validate_conservative_care_timeline([], now=NOW)
    assert result.is_valid is False


def test_custom_minimum():
    encounters = [_enc("2024-01-01"), _enc("2024-01-15", codes=["15271"])]
    assert validate_conservative_care_timeline(encounters, min_days_required=14, now=NOW).is_valid is True


@pytest.mark.parametrize(
    "code,expected",
    [("15271", True), ("15278", True), ("15271-RT", True), ("Q4100", True), ("q4186", True),
     ("A2001", True), ("97597", False), ("Q410", False), ("", False)],
)
def test_is_ctp_procedure_code(code, expected):
    assert is_ctp_procedure_code(code) is expected


@pytest.mark.parametrize(
    "note,expected",
    [
        ("Graft #2 placed", True),
        ("application # 1 of EpiFix", True),
        ("Dermagraft applied", True),
        ("Continue offloading and moist dressing", False),
        ("Discussed CTP options with family", False),
        ("Not a candidate for skin substitute at this time", False),
        ("Patient denies prior Apligraf application", False),
        ("Consider Dermagraft if no progress", False),
        ("Dermagraft applied; no signs of infection", True),
    ],
)
def test_find_ctp_note(note, expected):
    assert (find_ctp_note([note]) is not None) is expected


def test_negated_product_mention_is_not_a_ctp_application():
    encounters = [
        _enc("2024-01-01", ["Initial wound assessment"]),
        _enc("2024-01-10", ["Not a candidate for skin substitute at this time"]),
        _enc("2024-02-05", ["Skin substitute applied"], ["15271"]),
    ]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is True
    assert result.policy_violation is None
    assert result.days_of_care == 35
    assert [e.encounter_id for e in result.ctp_events] == ["enc-2024-02-05"]


def test_ctp_code_counts_regardless_of_note_wording():
    encounters = [_enc("2024-01-01"), _enc("2024-01-10", ["No skin substitute discussed"], ["Q4186"])]
    result = validate_conservative_care_timeline(encounters, now=NOW)
    assert result.is_valid is False
    assert result.ctp_events[0].source == "procedure_code"


def test_elapsed_days_use_utc_date_of_aware_now():
    # 03:00 at UTC+5 on Jan 29 is still Jan 28 in UTC
    now = datetime(2024, 1, 29, 3, 0, tzinfo=timezone(timedelta(hours=5)))
    result = validate_conservative_care_timeline([_enc("2024-01-01")], now=now)
    assert result.days_of_care == 27
    assert result.is_valid is False
