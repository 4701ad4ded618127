"""
wound_type_rules.py - Ordered wound-category rules for LCD L39806

Each rule pairs ICD-10 code patterns (tested against the primary diagnosis)
with clinical-text patterns (tested against the wound type and encounter notes).
Order is significant: the first matching rule decides the category.

Disqualifying order: traumatic, surgical, pressure, arterial.
Covered order:       VLU, DFU (venous evidence wins over ambiguous diabetic text).

Site-dependent evidence (non-pressure chronic ulcer codes L97.*, "full-thickness
ulcer") carries no category of its own; the wound location decides it.

Text evidence only counts when its context is active; "denies trauma" or
"history of burn" is not a traumatic wound. Codes are taken as coded.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

from policy_constants import (
    COVERED_WOUND_RULES,
    DISQUALIFYING_WOUND_RULES,
    LOCATION_CODE_PATTERNS,
    LOCATION_SITE_PATTERNS,
    LOCATION_TEXT_PATTERNS,
)
from rules.context_rules import find_active_mention


@dataclass(frozen=True)
class RuleMatch:
    category: str
    label: str
    evidence_source: str  # diagnosis_code | clinical_text
    evidence: str


def _compile_all(patterns: Any) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns or [])


def _code_hit(patterns: tuple[re.Pattern[str], ...], diagnosis_code: Optional[str]) -> Optional[str]:
    code = (diagnosis_code or "").strip().upper()
    if code and any(p.search(code) for p in patterns):
        return code
    return None


def _text_hit(patterns: tuple[re.Pattern[str], ...], clinical_text: str) -> Optional[str]:
    if not clinical_text:
        return None
    for pattern in patterns:
        m = find_active_mention(pattern, clinical_text)
        if m:
            return m.group(0)
    return None


@dataclass(frozen=True)
class PatternRule:
    category: str
    label: str
    code_patterns: tuple[re.Pattern[str], ...]
    text_patterns: tuple[re.Pattern[str], ...]

    @classmethod
    def from_snapshot(cls, entry: dict[str, Any]) -> "PatternRule":
        return cls(
            category=str(entry["category"]),
            label=str(entry["label"]),
            code_patterns=_compile_all(entry.get("code_patterns")),
            text_patterns=_compile_all(entry.get("text_patterns")),
        )

    def match(self, diagnosis_code: Optional[str], clinical_text: str) -> Optional[RuleMatch]:
        """Diagnosis code evidence is checked before free text."""
        code = _code_hit(self.code_patterns, diagnosis_code)
        if code:
            return RuleMatch(self.category, self.label, "diagnosis_code", code)
        phrase = _text_hit(self.text_patterns, clinical_text)
        if phrase:
            return RuleMatch(self.category, self.label, "clinical_text", phrase)
        return None


DISQUALIFYING_RULES: tuple[PatternRule, ...] = tuple(
    PatternRule.from_snapshot(r) for r in DISQUALIFYING_WOUND_RULES
)
COVERED_RULES: tuple[PatternRule, ...] = tuple(PatternRule.from_snapshot(r) for r in COVERED_WOUND_RULES)

_LOCATION_CODES = _compile_all(LOCATION_CODE_PATTERNS)
_LOCATION_TEXT = _compile_all(LOCATION_TEXT_PATTERNS)
# Ordered: foot sites are tried before leg sites ("toe of left leg" is a foot wound)
_SITES: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = tuple(
    (str(entry["category"]), _compile_all(entry.get("site_patterns"))) for entry in LOCATION_SITE_PATTERNS
)
_SITE_LABELS = {str(r["category"]): str(r["label"]) for r in COVERED_WOUND_RULES}


def first_match(
    rules: tuple[PatternRule, ...],
    diagnosis_code: Optional[str],
    clinical_text: str,
) -> Optional[RuleMatch]:
    for rule in rules:
        hit = rule.match(diagnosis_code, clinical_text)
        if hit:
            return hit
    return None


def site_category(location: str) -> Optional[str]:
    """'left heel' -> DFU, 'right medial calf' -> VLU, 'sacrum' -> None."""
    for category, patterns in _SITES:
        if any(p.search(location or "") for p in patterns):
            return category
    return None


def resolve_by_location(
    diagnosis_code: Optional[str],
    clinical_text: str,
    wound_location: str,
) -> Optional[RuleMatch]:
    """
    Categorize site-dependent ulcers (L97.*, full-thickness ulcer) by where they are.
    Returns None when there is no site-dependent evidence or the site is not a
    foot or leg site.
    """
    evidence = _code_hit(_LOCATION_CODES, diagnosis_code)
    source = "diagnosis_code"
    if evidence is None:
        evidence = _text_hit(_LOCATION_TEXT, clinical_text)
        source = "clinical_text"
    if evidence is None:
        return None
    category = site_category(wound_location)
    if category is None:
        return None
    return RuleMatch(category, _SITE_LABELS.get(category, category), source, evidence)
