from datetime import date, datetime, timezone

import pytest

from policy_utils import days_between, has_word_boundary, matches_term, normalize, parse_timestamp, to_utc_date


def test_normalize():
    assert normalize("  TeSt  ") == "test"
    assert normalize(None) == ""
    assert normalize(123) == "123"
    assert normalize(float("nan")) == ""
    assert normalize("NaN") == ""

def test_has_word_boundary():
    assert has_word_boundary("Start word end", "word") is True
    assert has_word_boundary("swordfish", "word") is False
    assert has_word_boundary("WORD match", "word") is True

def test_matches_term():
    assert matches_term("Type-2 diabetes mellitus", "type 2 diabetes") is True
    assert matches_term("type 2 diabetes", "type 2 diabetes") is True
    assert matches_term("non-diabetic", "non diabetic") is True
    assert matches_term("prediabetes", "diabetes") is False
    assert matches_term("", "diabetes") is False


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2024-01-15", date(2024, 1, 15)),
        ("2024-01-15T23:30:00Z", date(2024, 1, 15)),
        ("2024-01-15T22:00:00-05:00", date(2024, 1, 16)),  # 03:00 UTC next day
        ("01/15/2024", date(2024, 1, 15)),
        (date(2024, 1, 15), date(2024, 1, 15)),
        (datetime(2024, 1, 15, 12, tzinfo=timezone.utc), date(2024, 1, 15)),
    ],
)
def test_to_utc_date(raw, expected):
    assert to_utc_date(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "not a date", "2024-13-45", "13/45/2024"])
def test_parse_timestamp_rejects_garbage(raw):
    assert parse_timestamp(raw) is None


def test_naive_timestamp_is_utc():
    dt = parse_timestamp("2024-01-01T10:00:00")
    assert dt.tzinfo is not None
    assert dt.utcoffset().total_seconds() == 0


def test_days_between_across_dst():
    # Spring-forward in the US happens on 2024-03-10
    assert days_between("2024-03-09T10:00:00-05:00", "2024-04-06T10:00:00-04:00") == 28


def test_days_between_raises_on_unparseable():
    with pytest.raises(ValueError):
        days_between("garbage", "2024-01-01")
