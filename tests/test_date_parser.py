import os
import sys
from datetime import date, timedelta

import pytest

# Ensure src/ is importable when tests run from repo root
sys.path.insert(0, os.path.abspath("src"))

from expiry_scanner.domain.dates import DateParser, clean_date_string, format_date
from expiry_scanner.domain.models import ParsedDate
from expiry_scanner.orchestrator.ocr import find_date_strings


TODAY = date(2025, 6, 15)


@pytest.fixture
def parser():
    return DateParser(today=lambda: TODAY)


def test_clean_date_string_strips_noise_and_normalizes_separators():
    assert clean_date_string("  EXP: 12.08-2026 ") == "12/08/2026"
    assert clean_date_string("LOT") == ""


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("08/2027", ParsedDate(1, 8, 2027)),
        ("08/27", ParsedDate(1, 8, 2027)),
        ("12/08/26", ParsedDate(12, 8, 2026)),
        ("12/08/2026", ParsedDate(12, 8, 2026)),
        ("2027/03/04", ParsedDate(4, 3, 2027)),
        ("300926", ParsedDate(30, 9, 2026)),
        ("0827", ParsedDate(1, 8, 2027)),
        ("1/2/2026", ParsedDate(1, 2, 2026)),
        ("12.08.2026", ParsedDate(12, 8, 2026)),
        ("12-08-26", ParsedDate(12, 8, 2026)),
        ("29/02/28", ParsedDate(29, 2, 2028)),
    ],
)
def test_parse_date_accepts_supported_shapes(parser, raw, expected):
    assert parser.parse_date(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "13/2027",      # month out of range
        "00/05/26",     # day 0
        "32/01/26",     # day 32
        "31/02/24",     # no such calendar day
        "29/02/25",     # not a leap year
        "31/04/2026",
        "12/08/1999",   # year below range
        "2101/01/01",   # year above range
        "1/2/345",
        "abc",
        "",
        "1234567",
    ],
)
def test_parse_date_rejects_invalid_input(parser, raw):
    assert parser.parse_date(raw) is None


def test_short_ambiguous_form_is_read_as_month_and_year(parser):
    # "12/08" matches MM/YY before any day-first reading is tried
    assert parser.parse_date("12/08") == ParsedDate(1, 12, 2008)


def test_two_digit_year_century_boundary(parser):
    # current two-digit year 25 -> window ends at 35
    assert parser.normalize_year(0) == 2000
    assert parser.normalize_year(25) == 2025
    assert parser.normalize_year(35) == 2035
    assert parser.normalize_year(36) == 1936
    assert parser.normalize_year(80) == 1980
    assert parser.normalize_year(2031) == 2031


def test_parse_date_applies_century_rule(parser):
    assert parser.parse_date("01/01/35") == ParsedDate(1, 1, 2035)
    # 1936 and 1980 fall outside the accepted year range
    assert parser.parse_date("01/01/36") is None
    assert parser.parse_date("01/01/80") is None


def test_century_rule_follows_the_clock():
    later = DateParser(today=lambda: date(2091, 1, 1))
    assert later.normalize_year(99) == 2099
    assert later.normalize_year(5) == 2005


def test_parse_dates_keeps_only_successes(parser):
    assert parser.parse_dates(["12/08/26", "junk", "31/02/24", "0827"]) == [
        date(2026, 8, 12),
        date(2027, 8, 1),
    ]


def test_most_likely_picks_soonest_plausible_future_date(parser):
    candidates = [
        TODAY - timedelta(days=1),
        TODAY + timedelta(days=3),
        date(2035, 6, 15),
    ]
    assert parser.get_most_likely_expiration_date(candidates) == TODAY + timedelta(days=3)


def test_most_likely_window_is_exclusive(parser):
    assert parser.get_most_likely_expiration_date([TODAY]) is None
    assert parser.get_most_likely_expiration_date([date(2030, 6, 15)]) is None
    assert parser.get_most_likely_expiration_date([date(2030, 6, 14)]) == date(2030, 6, 14)


def test_most_likely_empty_and_all_past(parser):
    assert parser.get_most_likely_expiration_date([]) is None
    assert parser.get_most_likely_expiration_date([date(2024, 1, 1), date(2025, 6, 1)]) is None


def test_most_likely_horizon_from_leap_day():
    leap = DateParser(today=lambda: date(2028, 2, 29))
    assert leap.get_most_likely_expiration_date([date(2033, 2, 27)]) == date(2033, 2, 27)
    assert leap.get_most_likely_expiration_date([date(2033, 2, 28)]) is None


def test_ocr_text_to_date_end_to_end(parser):
    assert parser.parse_dates(find_date_strings("ABC 12/08/26 XYZ")) == [date(2026, 8, 12)]
    assert parser.parse_dates(find_date_strings("300924")) == [date(2024, 9, 30)]


def test_format_date():
    assert format_date(date(2026, 8, 2)) == "02/08/2026"
