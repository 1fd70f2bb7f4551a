from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime

import pytest

from promoscraper.errors import ParseError
from promoscraper.promotions import calculate_next_run, next_day_at, parse_expiry_date, read_expiry_date

from fakes import FakeElement, FakePage

TODAY = date(2024, 5, 8)


def test_parse_expiry_date_after_marker() -> None:
    assert parse_expiry_date("wo 8 mei t/m di 14 mei", today=TODAY) == date(2024, 5, 14)


def test_parse_expiry_date_accepts_abbreviations_and_year() -> None:
    assert parse_expiry_date("t/m 3 okt.", today=date(2024, 9, 30)) == date(2024, 10, 3)
    assert parse_expiry_date("geldig t/m 2 Januari 2025", today=TODAY) == date(2025, 1, 2)
    assert parse_expiry_date("t/m 30 juni", today=TODAY) == date(2024, 6, 30)


def test_parse_expiry_date_rolls_over_new_year() -> None:
    assert parse_expiry_date("ma 30 dec t/m zo 5 jan", today=date(2024, 12, 30)) == date(2025, 1, 5)


def test_parse_expiry_date_keeps_last_years_period_after_new_year() -> None:
    expires_on = parse_expiry_date("wo 25 dec t/m di 31 dec", today=date(2025, 1, 1))

    assert expires_on == date(2024, 12, 31)
    assert calculate_next_run(expires_on) == datetime(2025, 1, 1, 0, 0)
    assert parse_expiry_date("t/m 28 december", today=date(2025, 1, 3)) == date(2024, 12, 28)


def test_parse_expiry_date_without_marker_warns_and_parses_full_text(caplog) -> None:
    with caplog.at_level(logging.WARNING):
        assert parse_expiry_date("geldig tot 14 mei", today=TODAY) == date(2024, 5, 14)
    assert any("t/m" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize("raw", ["t/m binnenkort", "", None, "t/m 31 februari"])
def test_parse_expiry_date_raises_on_unparseable_text(raw) -> None:
    with pytest.raises(ParseError):
        parse_expiry_date(raw, today=TODAY, retailer="Dirk")


def test_calculate_next_run_is_midnight_after_expiry() -> None:
    assert calculate_next_run(date(2024, 5, 14)) == datetime(2024, 5, 15, 0, 0)
    assert calculate_next_run(date(2024, 12, 31)) == datetime(2025, 1, 1, 0, 0)


def test_next_day_at_defaults_to_one_past_midnight() -> None:
    assert next_day_at(datetime(2024, 5, 15, 13, 45)) == datetime(2024, 5, 16, 0, 1)


def test_read_expiry_date_from_page() -> None:
    page = FakePage(elements={".expires": FakeElement("wo 8 mei t/m 14 mei")})
    result = asyncio.run(read_expiry_date(page, ".expires", timeout_ms=10, retailer="PLUS", today=TODAY))
    assert result == date(2024, 5, 14)


def test_read_expiry_date_missing_element_is_parse_error() -> None:
    with pytest.raises(ParseError):
        asyncio.run(read_expiry_date(FakePage(), ".expires", timeout_ms=10, retailer="PLUS", today=TODAY))
