"""
context_rules.py - Deterministic context classification for documentation mentions

Classifies a matched clinical phrase as:
- ACTIVE (current finding about this wound)
- NEGATED (explicitly denied or ruled out)
- FAMILY_HISTORY (not the patient)
- HISTORICAL (past, resolved)
- HYPOTHETICAL (uncertain, possible)

Only ACTIVE mentions count as evidence. Diagnosis codes are never filtered.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

# \b ensures word boundaries so "his" doesn't match "history"

# "denies trauma", "negative for", "ruled out", "no pressure injury"
REGEX_NEGATION = re.compile(
    r"\b(denies|denied|negative|ruled out|no evidence of|not detected|resolved|no history|no family|no|not|never|without)\b",
    re.IGNORECASE,
)

# "history of", "prior", "remote", "status post", "s/p"
REGEX_HISTORICAL = re.compile(
    r"\b(history of|hx of|prior|past|previous|previously|remote|resolved|status post|s/p|former|healed)\b",
    re.IGNORECASE,
)

# "family history", "mother had"
REGEX_FAMILY = re.compile(
    r"\b(family history|fam hx|fhx|mother|father|brother|sister|grandparent|aunt|uncle)\b",
    re.IGNORECASE,
)

# "possible", "concern for", "risk of"
REGEX_UNCERTAINTY = re.compile(
    r"\b(possible|probable|suspected|concern for|monitor for|risk of|evaluate for|check for|consider|candidate for)\b",
    re.IGNORECASE,
)

# A mention's scope starts after the nearest clause break before it
_CLAUSE_BREAK = re.compile(r"[.;:!?\n]|\bbut\b", re.IGNORECASE)

ACTIVE = "ACTIVE"


@dataclass
class ContextClassification:
    context_type: str  # ACTIVE, HISTORICAL, NEGATED, FAMILY_HISTORY, HYPOTHETICAL
    confidence: str    # EVIDENCE, SIGNAL, CLEARED

    @property
    def is_active(self) -> bool:
        return self.context_type == ACTIVE


def classify_context(text: str) -> ContextClassification:
    """
    Classify the context of a matched term within a snippet.

    Precedence: negation, family history, historical, hypothetical, then active.
    "denies history of burn" is NEGATED rather than HISTORICAL.
    """
    lower_text = (text or "").lower()

    if _has_pattern(REGEX_NEGATION, lower_text):
        return ContextClassification("NEGATED", "CLEARED")

    if _has_pattern(REGEX_FAMILY, lower_text):
        return ContextClassification("FAMILY_HISTORY", "SIGNAL")

    if _has_pattern(REGEX_HISTORICAL, lower_text):
        return ContextClassification("HISTORICAL", "SIGNAL")

    if _has_pattern(REGEX_UNCERTAINTY, lower_text):
        return ContextClassification("HYPOTHETICAL", "SIGNAL")

    return ContextClassification(ACTIVE, "EVIDENCE")


def mention_window(text: str, start: int, end: int) -> str:
    """
    The clause leading up to a match, ending with the matched text.

    "Patient denies trauma to the foot; neuropathic ulcer" gives
    "Patient denies trauma" for "trauma" and " neuropathic ulcer" for
    "neuropathic ulcer".
    """
    clause_start = 0
    for brk in _CLAUSE_BREAK.finditer(text, 0, start):
        clause_start = brk.end()
    return text[clause_start:end]


def classify_mention(text: str, start: int, end: int) -> ContextClassification:
    return classify_context(mention_window(text, start, end))


def find_active_mention(pattern: re.Pattern[str], text: str) -> re.Match[str] | None:
    """First match of `pattern` in `text` whose context is ACTIVE."""
    for m in pattern.finditer(text or ""):
        if classify_mention(text, m.start(), m.end()).is_active:
            return m
    return None


def _has_pattern(pattern: re.Pattern[str], text: str) -> bool:
    return bool(pattern.search(text))
