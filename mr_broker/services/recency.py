# =============================================================================
# Recency - Document Timestamps from Live Metadata and Filenames
# =============================================================================
#
# Sources are ranked newest first. A document's timestamp is resolved with
# one policy everywhere:
#
#   1. live modified time from the current folder listing
#   2. a date parsed from the filename
#   3. the modified time stored on the index entry at ingestion
#   4. 0 (oldest)
#
# Filename parsing is an ordered list of independent, pure matchers. The
# first matcher that finds a date wins:
#
#   1. explicit year-month   "June 2024", "Jun_2024", "2024-06", "06/2024"
#   2. quarter + year        "Q1 2024", "2024Q1", "Q1-24" -> end of quarter
#   3. bare year             "Deck 2023" -> Jan 1
#   4. numeric suffix        "Report_202403", "Report_20240315"
#
# All timestamps are UTC epoch seconds.
# =============================================================================

from __future__ import annotations

import calendar
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

MONTHS = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

_MONTH_NAME = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?"
    r"|aug(?:ust)?|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_MONTH_YEAR_RE = re.compile(_MONTH_NAME + r"[\s_\-.,']*((?:19|20)\d{2})(?!\d)", re.IGNORECASE)
_YEAR_MONTH_RE = re.compile(r"(?<!\d)((?:19|20)\d{2})[-_./](0[1-9]|1[0-2])(?!\d)")
_MONTH_SLASH_YEAR_RE = re.compile(r"(?<!\d)(0?[1-9]|1[0-2])[-_./]((?:19|20)\d{2})(?!\d)")
_QUARTER_YEAR_RE = re.compile(r"(?<![a-z])q([1-4])[\s_\-.']*((?:19|20)?\d{2})(?!\d)", re.IGNORECASE)
_YEAR_QUARTER_RE = re.compile(r"(?<!\d)((?:19|20)\d{2})[\s_\-.]*q([1-4])(?!\d)", re.IGNORECASE)
_BARE_YEAR_RE = re.compile(r"(?<!\d)(20\d{2}|19\d{2})(?!\d)")
_NUMERIC_SUFFIX_RE = re.compile(r"(?<!\d)(\d{6,8})$")

_EXTENSION_RE = re.compile(r"\.(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{2,5}$")
_DISPLAY_SUFFIX_RE = re.compile(
    r"[\s_\-.]+(?:v\d+(?:\.\d+)*|final|draft|copy|\d{8}|\d{6}|\d{4}-\d{2}(?:-\d{2})?)$"
    r"|\s*\(\d+\)$",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Timestamp Helpers
# ---------------------------------------------------------------------------


def _epoch(year: int, month: int, day: int = 1) -> float:
    return datetime(year, month, day, tzinfo=timezone.utc).timestamp()


def _month_index(name: str) -> int:
    """1-based month for a full or abbreviated month name."""
    prefix = name.lower()[:3]
    return next(i for i, month in enumerate(MONTHS, start=1) if month.startswith(prefix))


def parse_iso_timestamp(value: str | None) -> float:
    """Epoch seconds of an ISO-8601 string such as Drive's modifiedTime; 0 if unparseable."""
    if not value:
        return 0.0
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _full_year(value: str) -> int:
    year = int(value)
    return year + 2000 if year < 100 else year


# ---------------------------------------------------------------------------
# Filename Matchers
# ---------------------------------------------------------------------------
# Each matcher takes a filename and returns an epoch or None. When a name
# holds several candidates of the same kind the latest one is used.
# ---------------------------------------------------------------------------


def match_year_month(name: str) -> float | None:
    candidates = [
        _epoch(int(m.group(2)), _month_index(m.group(1)))
        for m in _MONTH_YEAR_RE.finditer(name)
        if not _preceded_by_letter(name, m.start())
    ]
    candidates += [_epoch(int(m.group(1)), int(m.group(2))) for m in _YEAR_MONTH_RE.finditer(name)]
    candidates += [
        _epoch(int(m.group(2)), int(m.group(1))) for m in _MONTH_SLASH_YEAR_RE.finditer(name)
    ]
    return max(candidates, default=None)


def match_quarter_year(name: str) -> float | None:
    """Quarter + year, dated at the last day of the quarter."""
    quarters = [(_full_year(m.group(2)), int(m.group(1))) for m in _QUARTER_YEAR_RE.finditer(name)]
    quarters += [(int(m.group(1)), int(m.group(2))) for m in _YEAR_QUARTER_RE.finditer(name)]
    if not quarters:
        return None
    year, quarter = max(quarters)
    last_month = quarter * 3
    return _epoch(year, last_month, calendar.monthrange(year, last_month)[1])


def match_bare_year(name: str) -> float | None:
    years = [int(y) for y in _BARE_YEAR_RE.findall(name)]
    return _epoch(max(years), 1) if years else None


def match_numeric_suffix(name: str) -> float | None:
    """A trailing yyyymm or yyyymmdd run of digits."""
    match = _NUMERIC_SUFFIX_RE.search(_EXTENSION_RE.sub("", name).strip())
    if not match:
        return None
    digits = match.group(1)
    if len(digits) == 7:
        return None
    year, month = int(digits[:4]), int(digits[4:6])
    day = int(digits[6:8]) if len(digits) == 8 else 1
    if not 1900 <= year <= 2099 or not 1 <= month <= 12:
        return None
    if not 1 <= day <= calendar.monthrange(year, month)[1]:
        return None
    return _epoch(year, month, day)


def _preceded_by_letter(text: str, index: int) -> bool:
    return index > 0 and text[index - 1].isalpha()


FilenameMatcher = Callable[[str], "float | None"]

FILENAME_MATCHERS: list[FilenameMatcher] = [
    match_year_month,
    match_quarter_year,
    match_bare_year,
    match_numeric_suffix,
]


def filename_timestamp(name: str) -> float:
    """Timestamp parsed from a filename by the first matcher that succeeds; 0 if none."""
    for matcher in FILENAME_MATCHERS:
        found = matcher(name)
        if found is not None:
            return found
    return 0.0


# ---------------------------------------------------------------------------
# Recency Policy
# ---------------------------------------------------------------------------


def resolve_recency(
    file_id: str,
    name: str,
    live_modified: Mapping[str, float] | None = None,
    stored_modified: str | None = None,
) -> float:
    """
    Resolve one document's timestamp: live modified time, then filename
    date, then stored modified time, then 0.
    """
    if live_modified:
        live = live_modified.get(file_id)
        if live:
            return live
    from_name = filename_timestamp(name)
    if from_name:
        return from_name
    return parse_iso_timestamp(stored_modified)


def display_name(name: str) -> str:
    """Strip the extension and trailing version/date suffixes for display."""
    stem = _EXTENSION_RE.sub("", name).strip()
    cleaned = stem
    while True:
        shorter = _DISPLAY_SUFFIX_RE.sub("", cleaned).strip()
        if shorter == cleaned or not shorter:
            break
        cleaned = shorter
    return cleaned or stem or name


# ---------------------------------------------------------------------------
# Month/Year Labels
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateLabel:
    """Human month/year label, e.g. DateLabel("June", "2024"); empty when unknown."""

    month: str = ""
    year: str = ""

    def __str__(self) -> str:
        return f"{self.month} {self.year}".strip()


def label_date(text: str, fallback_iso: str | None = None) -> DateLabel:
    """
    The latest month/year mentioned in `text` (month names or mm/yyyy),
    else the month/year of `fallback_iso`, else an empty label.
    """
    candidates = [
        (int(m.group(2)), _month_index(m.group(1)))
        for m in _MONTH_YEAR_RE.finditer(text)
        if not _preceded_by_letter(text, m.start())
    ]
    candidates += [(int(m.group(2)), int(m.group(1))) for m in _MONTH_SLASH_YEAR_RE.finditer(text)]
    if candidates:
        year, month = max(candidates)
        return DateLabel(MONTHS[month - 1].capitalize(), str(year))

    epoch = parse_iso_timestamp(fallback_iso)
    if epoch:
        parsed = datetime.fromtimestamp(epoch, tz=timezone.utc)
        return DateLabel(MONTHS[parsed.month - 1].capitalize(), str(parsed.year))
    return DateLabel()
