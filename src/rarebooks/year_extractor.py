"""Publication-year heuristics for Russian-language lot descriptions."""

from __future__ import annotations

import re
from datetime import datetime

MIN_YEAR = 1500
# Bare four-digit fallback stops at 2019: newer numbers in antiquarian
# listings are far more often prices or catalogue numbers than years.
FALLBACK_MAX_YEAR = 2019

# Ranges and bounds ("до 1990", "1905-1917") describe a period, not an edition
_EXCLUDED = [
    re.compile(r"(?:до|before)\s+\d{4}", re.IGNORECASE),
    re.compile(r"(?:от|from)\s+\d{4}", re.IGNORECASE),
    re.compile(r"\d{4}\s*[-–—]\s*\d{4}"),
    re.compile(r"\d{4}-"),
    re.compile(r"-\d{4}"),
]

# In priority order
_CONTEXT = [
    re.compile(r"в\s+(\d{4})\b"),
    re.compile(r"(\d{4})\s+г\.?"),
    re.compile(r"(\d{4})г\.?"),
]

_FALLBACK = re.compile(r"\b(1[5-9]\d{2}|20[01]\d)\b")


def extract_year(text: str | None) -> int | None:
    """Return the most plausible publication year mentioned in *text*."""
    if not text:
        return None

    for pattern in _EXCLUDED:
        text = pattern.sub("", text)

    current_year = datetime.now().year
    for pattern in _CONTEXT:
        for m in pattern.finditer(text):
            year = int(m.group(1))
            if MIN_YEAR <= year <= current_year:
                return year

    m = _FALLBACK.search(text)
    if m:
        year = int(m.group(1))
        if year <= FALLBACK_MAX_YEAR:
            return year
    return None
