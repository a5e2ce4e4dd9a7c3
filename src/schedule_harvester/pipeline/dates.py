"""
Date and time normalization for schedule text.

Schedule lines are free text such as ``"December 12, 2025 7PM KST"`` or
``"Dec 5 (Pre-release: Nov 28)"``. Parsing never raises: anything that cannot
be turned into a real calendar date degrades to ``None`` and the caller keeps
the raw text.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from ..models.records import EventKind

MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "sept": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}

_FULL_MONTHS = "January|February|March|April|May|June|July|August|September|October|November|December"
_ANY_MONTH = "Sept|Sep|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Oct|Nov|Dec|" + _FULL_MONTHS

PRIMARY_DATE_RE = re.compile(
    rf"\b({_FULL_MONTHS})\b\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s+(\d{{4}})\b)?",
    re.IGNORECASE,
)
SHORT_DATE_RE = re.compile(
    rf"\b({_ANY_MONTH})\b\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?\b(?:,?\s+(\d{{4}})\b)?",
    re.IGNORECASE,
)
TIME_12H_RE = re.compile(r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\b\.?", re.IGNORECASE)
TIME_24H_RE = re.compile(r"(?<![\d:])([01]?\d|2[0-3]):([0-5]\d)(?![\d:])")
ZONE_RE = re.compile(r"\b(KST|JST|UTC|GMT|EST|EDT|ET|PST|PDT|PT)\b", re.IGNORECASE)

TITLE_MONTH_YEAR_RE = re.compile(rf"\b({_FULL_MONTHS})\b\s+(\d{{4}})\b", re.IGNORECASE)
TITLE_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")

ZONE_ABBREVIATIONS = {
    "KST": "Asia/Seoul",
    "JST": "Asia/Tokyo",
    "UTC": "UTC",
    "GMT": "UTC",
    "ET": "America/New_York",
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "PT": "America/Los_Angeles",
    "PST": "America/Los_Angeles",
    "PDT": "America/Los_Angeles",
}

# Secondary phrases in a date line, each yielding its own event kind
SECONDARY_PHRASES: tuple[tuple[str, re.Pattern, EventKind], ...] = (
    (
        "Pre-release",
        re.compile(rf"Pre-?release\s*[:·\-]\s*((?:{_ANY_MONTH})\.?\s+\d{{1,2}})", re.IGNORECASE),
        EventKind.PRE_RELEASE,
    ),
    (
        "Album Release",
        re.compile(rf"Album Release\s*[:·\-]\s*((?:{_ANY_MONTH})\.?\s+\d{{1,2}})", re.IGNORECASE),
        EventKind.SUB_RELEASE,
    ),
)


@dataclass(frozen=True)
class ParsedDate:
    """A calendar date with optional local time."""

    date: date
    time: Optional[str]
    tz: str
    raw: str


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def infer_year_hint(title: str) -> Optional[int]:
    """Year named by a page title: "Month YYYY" first, else a bare year."""
    title = _collapse(title)
    m = TITLE_MONTH_YEAR_RE.search(title)
    if m:
        return int(m.group(2))
    m = TITLE_YEAR_RE.search(title)
    return int(m.group(1)) if m else None


def resolve_year(explicit: Optional[str], year_hint: Optional[int], now: datetime, tz: str) -> int:
    if explicit:
        return int(explicit)
    if year_hint:
        return year_hint
    return now.astimezone(ZoneInfo(tz)).year


def parse_time(text: str) -> Optional[str]:
    """First 12-hour or 24-hour time token as ``HH:MM``."""
    m = TIME_12H_RE.search(text)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        if 1 <= hour <= 12 and minute <= 59:
            pm = m.group(3).lower() == "p"
            if pm and hour < 12:
                hour += 12
            elif not pm and hour == 12:
                hour = 0
            return f"{hour:02d}:{minute:02d}"
    m = TIME_24H_RE.search(text)
    if m:
        return f"{int(m.group(1)):02d}:{m.group(2)}"
    return None


def parse_zone(text: str, default_tz: str) -> str:
    m = ZONE_RE.search(text)
    return ZONE_ABBREVIATIONS[m.group(1).upper()] if m else default_tz


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_primary_date(
    text: str,
    year_hint: Optional[int],
    now: datetime,
    default_tz: str,
) -> Optional[ParsedDate]:
    """Parse the main date of a schedule line.

    Args:
        text: Raw date line
        year_hint: Year inferred from the page, if any
        now: Current instant (used when no year is known)
        default_tz: Canonical zone of the source

    Returns:
        ParsedDate, or None when no month/day is present or the date is impossible
    """
    text = _collapse(text)
    m = PRIMARY_DATE_RE.search(text)
    if not m:
        return None

    tz = parse_zone(text, default_tz)
    year = resolve_year(m.group(3), year_hint, now, default_tz)
    day = _safe_date(year, MONTHS[m.group(1).lower()], int(m.group(2)))
    if day is None:
        return None
    # The matched date span is never searched, so "12" in the date is never an hour
    time = parse_time(text[m.end() :]) or parse_time(text[: m.start()])
    return ParsedDate(date=day, time=time, tz=tz, raw=text)


def parse_month_day(text: str, year_hint: Optional[int], now: datetime, default_tz: str) -> Optional[date]:
    """Parse a short or full month name plus day."""
    m = SHORT_DATE_RE.search(_collapse(text))
    if not m:
        return None
    year = resolve_year(m.group(3), year_hint, now, default_tz)
    return _safe_date(year, MONTHS[m.group(1).lower()], int(m.group(2)))


def parse_secondary_dates(
    text: str,
    year_hint: Optional[int],
    now: datetime,
    default_tz: str,
) -> list[tuple[EventKind, ParsedDate]]:
    """Dates announced by secondary phrases ("Pre-release: Nov 28", ...)."""
    text = _collapse(text)
    found: list[tuple[EventKind, ParsedDate]] = []
    for label, pattern, kind in SECONDARY_PHRASES:
        m = pattern.search(text)
        if not m:
            continue
        day = parse_month_day(m.group(1), year_hint, now, default_tz)
        if day is not None:
            found.append((kind, ParsedDate(date=day, time=None, tz=default_tz, raw=f"{label}: {m.group(1)}")))
    return found
