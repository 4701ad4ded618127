# phi_sanitizer.py
"""
Redaction pass for audit-trail strings.

Anything that leaves the deterministic core in free text (audit trail,
failure reasons, policy notes) goes through here first. Each PHI pattern is
replaced with the fixed placeholder, and the pass is idempotent: sanitizing
already-sanitized text changes nothing.
"""

from __future__ import annotations

import re
from typing import Iterable

PHI_PLACEHOLDER = "[REDACTED]"

_NAME = r"[A-Z][a-z]+(?:[-'][A-Z][a-z]+)?"

# Ordered: SSN before phone so a 3-2-4 pattern is never half-eaten by the phone rule
_PHI_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("ssn", re.compile(r"\b\d{3}-\d{2}-\d{4}\b")),
    ("phone", re.compile(r"(?:\+?1[-.\s]?)?(?:\(\d{3}\)\s?|\b\d{3}[-.\s])\d{3}[-.\s]\d{4}\b")),
    ("mrn", re.compile(r"\bMRN\s*[:#]?\s*[A-Za-z0-9-]*\d[A-Za-z0-9-]*", re.IGNORECASE)),
    ("provider_name", re.compile(rf"\b(?:Dr\.?|Doctor|NP|RN)\s+{_NAME}(?:\s+{_NAME})?")),
    ("patient_name", re.compile(rf"\b(?:Patient|Pt\.?|Mr\.|Mrs\.|Ms\.|Miss)(?:\s+name)?:?\s+{_NAME}(?:\s+{_NAME})?")),
)


def redact_phi(text: str) -> tuple[str, int]:
    """Returns (sanitized_text, number_of_redactions)."""
    if not text:
        return text or "", 0
    total = 0
    out = text
    for _, pattern in _PHI_PATTERNS:
        out, n = pattern.subn(PHI_PLACEHOLDER, out)
        total += n
    return out, total


def sanitize_audit_text(text: str) -> str:
    return redact_phi(text)[0]


def sanitize_audit_trail(entries: Iterable[str]) -> list[str]:
    return [sanitize_audit_text(str(e)) for e in entries]
