# care_timeline.py
"""
Conservative-care (standard of care) timeline validation.

LCD L39806 requires at least 28 days of documented conservative care before the
first CTP application. Three terminal states:

  - no CTP yet, enough days elapsed   -> valid (CTP may now be considered)
  - no CTP yet, too early             -> invalid, no policy violation
  - CTP applied before the minimum    -> invalid, policy violation
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional

from models import ConservativeCareTimelineResult, CtpEvent, Encounter
from policy_constants import MIN_CARE_CITATION, MIN_CONSERVATIVE_CARE_DAYS
from policy_utils import to_utc_date, utc_now
from rules.ctp_detection_rules import find_ctp_code, find_ctp_note

logger = logging.getLogger(__name__)


def detect_ctp_events(dated: list[tuple[date, Encounter]]) -> list[CtpEvent]:
    """One event per encounter; a procedure code outranks note text as evidence."""
    events: list[CtpEvent] = []
    for day, enc in dated:
        code = find_ctp_code(enc.procedure_codes)
        if code:
            events.append(CtpEvent(day, enc.id, "procedure_code", code))
            continue
        phrase = find_ctp_note(enc.notes)
        if phrase:
            events.append(CtpEvent(day, enc.id, "note_text", phrase))
    return events


def validate_conservative_care_timeline(
    encounters: Iterable[Any],
    min_days_required: int = MIN_CONSERVATIVE_CARE_DAYS,
    now: Optional[datetime] = None,
) -> ConservativeCareTimelineResult:
    items = [Encounter.from_mapping(e, i) for i, e in enumerate(encounters)]
    if not items:
        return ConservativeCareTimelineResult(
            is_valid=False,
            reason="No encounters documented; conservative care cannot be established",
        )

    dated: list[tuple[date, Encounter]] = []
    for idx, enc in enumerate(items):
        day = to_utc_date(enc.date)
        if day is None:
            return ConservativeCareTimelineResult(
                is_valid=False,
                reason=f"Encounter date could not be parsed (encounter {idx + 1}: {enc.date!r})",
                details={"encounter_index": idx},
            )
        dated.append((day, enc))

    # sorted() is stable, so same-day encounters keep input order
    dated = sorted(dated, key=lambda pair: pair[0])
    first_day = dated[0][0]
    events = detect_ctp_events(dated)
    details = {
        "min_days_required": min_days_required,
        "encounter_count": len(dated),
        "ctp_event_count": len(events),
    }

    if not events:
        today = to_utc_date(now or utc_now())
        elapsed = (today - first_day).days
        details["state"] = "no_ctp"
        if elapsed >= min_days_required:
            return ConservativeCareTimelineResult(
                is_valid=True,
                reason=(
                    f"No CTP application documented; {elapsed} days of conservative care "
                    f"meet the {min_days_required}-day minimum"
                ),
                details=details,
                days_of_care=elapsed,
                first_encounter_date=first_day,
            )
        return ConservativeCareTimelineResult(
            is_valid=False,
            reason=(
                f"Conservative care ongoing for only {elapsed} days; "
                f"{min_days_required} days required before CTP can be considered"
            ),
            details=details,
            days_of_care=elapsed,
            first_encounter_date=first_day,
        )

    first_ctp = events[0]
    days_of_care = (first_ctp.date - first_day).days
    details["state"] = "ctp_applied"
    details["first_ctp_source"] = first_ctp.source
    logger.debug("First CTP evidence after %d days (%s)", days_of_care, first_ctp.source)

    if days_of_care >= min_days_required:
        return ConservativeCareTimelineResult(
            is_valid=True,
            reason=(
                "Conservative care timeline meets requirements: "
                f"{days_of_care} days before first CTP application"
            ),
            details=details,
            days_of_care=days_of_care,
            first_encounter_date=first_day,
            first_ctp_date=first_ctp.date,
            ctp_events=events,
        )
    return ConservativeCareTimelineResult(
        is_valid=False,
        reason=(
            f"CTP applied after only {days_of_care} days of conservative care "
            f"(minimum {min_days_required} days)"
        ),
        policy_violation=MIN_CARE_CITATION,
        details=details,
        days_of_care=days_of_care,
        first_encounter_date=first_day,
        first_ctp_date=first_ctp.date,
        ctp_events=events,
    )
