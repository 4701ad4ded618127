import copy

import jsonschema
import pytest

from policy_snapshot import load_policy_snapshot
from schema_validation import validate_eligibility_report, validate_lcd_snapshot


def _validation_result(valid=True):
    return {"is_valid": valid, "reason": "ok", "policy_violation": None, "details": {}}


def _report():
    return {
        "metadata": {
            "timestamp": "2024-03-01T00:00:00+00:00",
            "policy_id": "L39806",
            "jurisdiction": "Palmetto GBA Jurisdiction J",
            "snapshot_sha256": "a" * 64,
            "episode_count": 1,
            "eligible_count": 1,
        },
        "results": [
            {
                "episode_id": "EP-1",
                "overall_eligible": True,
                "failure_reasons": [],
                "policy_violations": [],
                "wound_type_check": _validation_result(),
                "conservative_care_check": _validation_result(),
                "measurement_check": _validation_result(),
                "area_reduction_check": None,
                "lcd_compliance": None,
                "quality_report": None,
                "audit_trail": ["Pre-eligibility evaluation for episode EP-1"],
                "evaluated_at": "2024-03-01T00:00:00+00:00",
            }
        ],
    }


def test_report_fixture_matches_schema():
    validate_eligibility_report(_report())


def test_report_missing_metadata_fails():
    report = _report()
    del report["metadata"]["snapshot_sha256"]
    with pytest.raises(jsonschema.ValidationError):
        validate_eligibility_report(report)


def test_report_bad_validation_result_fails():
    report = _report()
    report["results"][0]["wound_type_check"]["is_valid"] = "yes"
    with pytest.raises(jsonschema.ValidationError):
        validate_eligibility_report(report)


def test_snapshot_without_thresholds_fails():
    snapshot = copy.deepcopy(load_policy_snapshot())
    del snapshot["thresholds"]["min_conservative_care_days"]
    with pytest.raises(jsonschema.ValidationError):
        validate_lcd_snapshot(snapshot)


def test_location_site_must_name_a_covered_category():
    snapshot = copy.deepcopy(load_policy_snapshot())
    snapshot["wound_type_rules"]["location_resolved"]["sites"][0]["category"] = "pressure"
    with pytest.raises(jsonschema.ValidationError):
        validate_lcd_snapshot(snapshot)
