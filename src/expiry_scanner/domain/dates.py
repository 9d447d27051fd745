"""Turn OCR date strings into a single plausible expiration date."""

from __future__ import annotations

import re
from datetime import date
from typing import Callable, Iterable, List, Optional, Pattern, Tuple

from ..logging import get_logger
from .models import ParsedDate

LOG = get_logger("dates")

MIN_YEAR = 2000
MAX_YEAR = 2100
CENTURY_WINDOW = 10
HORIZON_YEARS = 5

# (label, regex, day group, month group, year group); day group None means day 1.
# Order matters: the first structural match decides how a string is read.
_PATTERNS: Tuple[Tuple[str, Pattern[str], Optional[int], int, int], ...] = (
    ("MM/YYYY", re.compile(r"^(\d{1,2})/(\d{4})$"), None, 1, 2),
    ("MM/YY", re.compile(r"^(\d{1,2})/(\d{2})$"), None, 1, 2),
    ("DD/MM/YY", re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{2})$"), 1, 2, 3),
    ("DD/MM/YYYY", re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$"), 1, 2, 3),
    ("YYYY/MM/DD", re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$"), 3, 2, 1),
    ("DDMMYY", re.compile(r"^(\d{2})(\d{2})(\d{2})$"), 1, 2, 3),
    ("MMYY", re.compile(r"^(\d{2})(\d{2})$"), None, 1, 2),
)


def clean_date_string(value: str) -> str:
    """Strip noise around a date string and normalize separators to '/'."""
    s = re.sub(r"[^0-9/.\-]", "", (value or "").strip())
    return re.sub(r"[.\-]", "/", s)


def format_date(d: date) -> str:
    """Return DD/MM/YYYY."""
    return f"{d.day:02d}/{d.month:02d}/{d.year}"


def _add_years(d: date, years: int) -> date:
    try:
        return d.replace(year=d.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return d.replace(year=d.year + years, day=28)


class DateParser:
    """Parse and rank candidate expiry dates.

    ``today`` is the clock used both for two-digit century inference and for
    the plausibility window; tests pin it to a fixed date.
    """

    def __init__(self, today: Callable[[], date] = date.today) -> None:
        self._today = today

    def normalize_year(self, year: int) -> int:
        """Expand a two-digit year, leaning towards the future.

        Years beyond ``current two-digit year + 10`` are read as the previous
        century.
        """
        if year >= 100:
            return year
        current_year = self._today().year
        two_digit_year = current_year % 100
        current_century = current_year - two_digit_year
        if year > two_digit_year + CENTURY_WINDOW:
            return current_century - 100 + year
        return current_century + year

    def parse_date(self, value: str) -> Optional[ParsedDate]:
        """Return the validated {day, month, year} for a string, or None."""
        s = clean_date_string(value)
        if not s:
            return None
        for label, regex, day_idx, month_idx, year_idx in _PATTERNS:
            m = regex.match(s)
            if not m:
                continue
            day = int(m.group(day_idx)) if day_idx else 1
            month = int(m.group(month_idx))
            raw_year = m.group(year_idx)
            year = int(raw_year)
            if len(raw_year) == 2:
                year = self.normalize_year(year)
            if not (1 <= month <= 12 and 1 <= day <= 31 and MIN_YEAR <= year <= MAX_YEAR):
                LOG.debug(f"Rejected {value!r} as {label}: out of range ({day}/{month}/{year})")
                return None
            try:
                date(year, month, day)
            except ValueError:
                LOG.debug(f"Rejected {value!r} as {label}: no such calendar day")
                return None
            return ParsedDate(day=day, month=month, year=year)
        return None

    def parse_dates(self, values: Iterable[str]) -> List[date]:
        out: List[date] = []
        for v in values:
            parsed = self.parse_date(v)
            if parsed is not None:
                out.append(parsed.to_date())
        return out

    def get_most_likely_expiration_date(self, dates: Iterable[date]) -> Optional[date]:
        """Return the earliest date strictly inside (today, today + 5 years)."""
        today = self._today()
        horizon = _add_years(today, HORIZON_YEARS)
        plausible = sorted(d for d in dates if today < d < horizon)
        if not plausible:
            return None
        return plausible[0]
