"""Lenient parsing of the date strings search providers and pages carry."""

import re
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser

_MONTH = (
    r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec)[a-z]*\.?"
)

_CONTENT_DATE = re.compile(
    r"(\d{4}[-/]\d{1,2}[-/]\d{1,2}"
    r"|\d{1,2}[-/]\d{1,2}[-/]\d{4}"
    rf"|{_MONTH} \d{{1,2}}, \d{{4}}"
    rf"|\d{{1,2}} {_MONTH} \d{{4}})"
)


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601, RFC-2822 or human-readable date into an aware UTC
    datetime. Naive values are taken to be UTC. Returns None when the
    string is not a date.
    """
    if not value:
        return None
    try:
        parsed = parser.parse(value.strip())
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def find_date_in_text(text: str) -> Optional[datetime]:
    """Return the first parseable date embedded in free text."""
    for match in _CONTENT_DATE.finditer(text or ""):
        parsed = parse_date(match.group(1))
        if parsed is not None:
            return parsed
    return None
