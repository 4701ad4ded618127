import pytest

from wound_classifier import normalize_diabetic_status, validate_wound_type_for_coverage


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("diabetic", "diabetic"),
        ("Diabetic", "diabetic"),
        ("T2DM", "diabetic"),
        ("Type 2 diabetes mellitus, controlled", "diabetic"),
        ("non-diabetic", "nondiabetic"),
        ("Non Diabetic", "nondiabetic"),
        ("nondiabetic", "nondiabetic"),
        ("No history of diabetes", "nondiabetic"),
        ("no", "nondiabetic"),
        (True, "diabetic"),
        (False, "nondiabetic"),
        ("prediabetic", "unknown"),
        ("", "unknown"),
        (None, "unknown"),
        ("unknown", "unknown"),
    ],
)
def test_normalize_diabetic_status(raw, expected):
    assert normalize_diabetic_status(raw) == expected


def test_traumatic_code_disqualifies():
    result = validate_wound_type_for_coverage(
        "Laceration of lower leg",
        "S81.802A",
        ["Patient sustained injury in fall"],
        "non-diabetic",
    )
    assert result.is_valid is False
    assert "traumatic wound" in result.reason
    assert "Medicare LCD L39806 covers only DFU and VLU" in result.policy_violation
    assert result.details["category"] == "traumatic"
    assert result.details["evidence_source"] == "diagnosis_code"


@pytest.mark.parametrize(
    "wound_type,code,category",
    [
        ("Surgical wound dehiscence", "T81.31XA", "surgical"),
        ("Stage 3 pressure ulcer of sacrum", "L89.153", "pressure"),
        ("Arterial ulcer, left ankle", None, "arterial"),
        ("Decubitus ulcer", None, "pressure"),
    ],
)
def test_disqualifying_categories(wound_type, code, category):
    result = validate_wound_type_for_coverage(wound_type, code, [], "diabetic")
    assert result.is_valid is False
    assert result.details["category"] == category
    assert result.policy_violation is not None


def test_disqualifying_order_traumatic_before_pressure():
    result = validate_wound_type_for_coverage(
        "Pressure ulcer",
        None,
        ["Traumatic skin tear over the heel"],
        "unknown",
    )
    assert result.details["category"] == "traumatic"


def test_pressure_injury_is_not_traumatic():
    result = validate_wound_type_for_coverage("Pressure injury, stage 2", None, [], "unknown")
    assert result.details["category"] == "pressure"


def test_vlu_valid():
    result = validate_wound_type_for_coverage(
        "Venous leg ulcer",
        "I83.012",
        ["Compression therapy continued"],
        "nondiabetic",
    )
    assert result.is_valid is True
    assert result.details["category"] == "VLU"


def test_vlu_tried_before_dfu():
    result = validate_wound_type_for_coverage(
        "Ulcer of lower leg",
        "E11.622",
        ["Chronic venous insufficiency with edema"],
        "diabetic",
    )
    assert result.is_valid is True
    assert result.details["category"] == "VLU"


def test_dfu_valid_for_diabetic():
    result = validate_wound_type_for_coverage(
        "Diabetic foot ulcer",
        "E11.621",
        ["Diabetic foot ulcer, standard wound care initiated"],
        "diabetic",
    )
    assert result.is_valid is True
    assert result.details["category"] == "DFU"
    assert result.policy_violation is None


def test_dfu_rejected_for_confirmed_nondiabetic():
    result = validate_wound_type_for_coverage(
        "Diabetic foot ulcer",
        "E11.621",
        ["Foot ulcer on plantar surface"],
        "non-diabetic",
    )
    assert result.is_valid is False
    assert "confirmed non-diabetic" in result.reason
    assert "DFU diagnosis requires diabetic patient" in result.policy_violation


def test_dfu_with_unknown_status_passes():
    result = validate_wound_type_for_coverage("Diabetic foot ulcer", "E11.621", [], None)
    assert result.is_valid is True
    assert result.details["diabetic_status"] == "unknown"
    assert "not documented" in result.reason


def test_unclassifiable():
    result = validate_wound_type_for_coverage("Chronic wound", "L98.9", ["Wound care provided"], "diabetic")
    assert result.is_valid is False
    assert "unclassifiable" in result.reason
    assert result.details["category"] == "unclassifiable"


@pytest.mark.parametrize(
    "wound_type,code,notes,status,category",
    [
        (
            "Diabetic foot ulcer",
            "E11.621",
            ["Patient denies trauma to the foot; neuropathic ulcer plantar surface"],
            "diabetic",
            "DFU",
        ),
        ("Venous leg ulcer", "I83.013", ["History of burn to left forearm, healed"], "nondiabetic", "VLU"),
        ("Diabetic foot ulcer", "E11.621", ["Heel checked, no pressure injury noted"], "diabetic", "DFU"),
        ("Venous leg ulcer", "I83.013", ["Family history of pressure ulcer"], "unknown", "VLU"),
    ],
)
def test_inactive_mentions_do_not_disqualify(wound_type, code, notes, status, category):
    result = validate_wound_type_for_coverage(wound_type, code, notes, status)
    assert result.is_valid is True
    assert result.details["category"] == category


def test_active_mention_after_negated_clause_still_disqualifies():
    result = validate_wound_type_for_coverage(
        "Diabetic foot ulcer",
        "E11.621",
        ["No drainage; laceration from broken glass on plantar foot"],
        "diabetic",
    )
    assert result.is_valid is False
    assert result.details["category"] == "traumatic"
    assert "laceration" in result.reason


def test_disqualifying_code_ignores_note_context():
    result = validate_wound_type_for_coverage("Ulcer", "L89.613", ["Denies pressure ulcer history"], "diabetic")
    assert result.details["category"] == "pressure"
    assert result.details["evidence_source"] == "diagnosis_code"


def test_negated_covered_text_is_not_evidence():
    result = validate_wound_type_for_coverage("Chronic wound", None, ["Ruled out venous insufficiency"], "unknown")
    assert result.details["category"] == "unclassifiable"


@pytest.mark.parametrize("code", ["E10.628", "E11.69", "E13.621", "E08.621"])
def test_diabetic_complication_codes_map_to_dfu(code):
    result = validate_wound_type_for_coverage("Ulcer", code, [], "diabetic")
    assert result.is_valid is True
    assert result.details["category"] == "DFU"


@pytest.mark.parametrize(
    "wound_type,code,location,category,source",
    [
        ("Chronic ulcer", "L97.419", "left heel", "DFU", "diagnosis_code"),
        ("Chronic ulcer", "L97.529", "right great toe", "DFU", "diagnosis_code"),
        ("Chronic ulcer", "L97.219", "right calf", "VLU", "diagnosis_code"),
        ("Chronic ulcer", "L97.319", "left medial ankle", "VLU", "diagnosis_code"),
        ("Full-thickness ulcer", None, "left great toe", "DFU", "clinical_text"),
        ("Full thickness wound", None, "left lower leg", "VLU", "clinical_text"),
    ],
)
def test_site_dependent_ulcers_resolve_by_location(wound_type, code, location, category, source):
    result = validate_wound_type_for_coverage(wound_type, code, [], "diabetic", wound_location=location)
    assert result.is_valid is True
    assert result.details["category"] == category
    assert result.details["evidence_source"] == source


def test_location_falls_back_to_wound_type_text():
    result = validate_wound_type_for_coverage("Ulcer of left heel", "L97.419", [], "diabetic")
    assert result.details["category"] == "DFU"


@pytest.mark.parametrize("location", [None, "", "sacrum"])
def test_site_dependent_ulcer_without_foot_or_leg_site_is_unclassifiable(location):
    result = validate_wound_type_for_coverage("Chronic ulcer", "L97.419", [], "diabetic", wound_location=location)
    assert result.is_valid is False
    assert result.details["category"] == "unclassifiable"


def test_location_resolved_dfu_still_requires_diabetic_patient():
    result = validate_wound_type_for_coverage(
        "Chronic ulcer", "L97.419", [], "non-diabetic", wound_location="left heel"
    )
    assert result.is_valid is False
    assert result.policy_violation.startswith("DFU diagnosis requires diabetic patient")
