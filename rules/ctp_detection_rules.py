"""
ctp_detection_rules.py - Evidence that a CTP was applied at an encounter

Two independent channels:
  1. Procedure codes: CPT skin-substitute application codes (15271-15278)
     and HCPCS skin-substitute product codes (Q4xxx, A2xxx).
  2. Note text: product names and generic "graft #N" / "application #N" phrasing.
     Only active mentions count; "Not a candidate for skin substitute" is not
     an application. Procedure codes are never context-filtered.
"""
from __future__ import annotations

import re
from typing import Iterable, Optional

from models import ProcedureCode
from policy_constants import (
    CTP_CPT_CODES,
    CTP_GENERIC_APPLICATION_PATTERNS,
    CTP_HCPCS_PATTERNS,
    CTP_PRODUCT_PATTERNS,
)
from rules.context_rules import find_active_mention

_CPT_CODES = frozenset(c.upper() for c in CTP_CPT_CODES)
_HCPCS = tuple(re.compile(p, re.IGNORECASE) for p in CTP_HCPCS_PATTERNS)
_NOTE_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE) for p in CTP_PRODUCT_PATTERNS + CTP_GENERIC_APPLICATION_PATTERNS
)


def is_ctp_procedure_code(code: str) -> bool:
    c = (code or "").strip().upper()
    if not c:
        return False
    # Modifiers are ignored: "15271-RT" -> "15271"
    c = re.split(r"[-\s]", c, maxsplit=1)[0]
    return c in _CPT_CODES or any(p.match(c) for p in _HCPCS)


def find_ctp_code(codes: Iterable[ProcedureCode]) -> Optional[str]:
    for pc in codes:
        if is_ctp_procedure_code(pc.code):
            return pc.code.strip().upper()
    return None


def find_ctp_note(notes: Iterable[str]) -> Optional[str]:
    for note in notes:
        for pattern in _NOTE_PATTERNS:
            m = find_active_mention(pattern, note or "")
            if m:
                return m.group(0)
    return None
