"""Promotion period parsing and next-run scheduling."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Any

from promoscraper.errors import ParseError
from promoscraper.logging_config import get_logger, retailer_logger

LOGGER = get_logger(__name__)

EXPIRY_MARKER = "t/m"
ROLLOVER_DAYS = 180

DUTCH_MONTHS: dict[str, int] = {
    "januari": 1,
    "jan": 1,
    "februari": 2,
    "feb": 2,
    "maart": 3,
    "mrt": 3,
    "april": 4,
    "apr": 4,
    "mei": 5,
    "juni": 6,
    "jun": 6,
    "juli": 7,
    "jul": 7,
    "augustus": 8,
    "aug": 8,
    "september": 9,
    "sep": 9,
    "sept": 9,
    "oktober": 10,
    "okt": 10,
    "november": 11,
    "nov": 11,
    "december": 12,
    "dec": 12,
}

# Longest names first so "juni" is not consumed as "jun".
_MONTH_ALTERNATION = "|".join(sorted(DUTCH_MONTHS, key=len, reverse=True))
_DATE_PATTERN = re.compile(
    rf"(?P<day>\d{{1,2}})\s*(?P<month>{_MONTH_ALTERNATION})\.?(?:\s+(?P<year>\d{{4}}))?(?![a-z])",
    re.IGNORECASE,
)


def expiry_fragment(raw: str, *, retailer: str | None = None) -> str:
    """Return the text following the ``t/m`` marker, or *raw* when it is absent."""

    index = raw.find(EXPIRY_MARKER)
    if index == -1:
        retailer_logger(LOGGER, retailer or "-").warning(
            "No %r marker found in promotion period %r; parsing the full text", EXPIRY_MARKER, raw
        )
        return raw.strip()
    return raw[index + len(EXPIRY_MARKER):].strip()


def parse_expiry_date(raw: str | None, *, today: date | None = None, retailer: str | None = None) -> date:
    """Parse a Dutch promotion period such as ``"wo 8 t/m di 14 mei"``.

    Raises :class:`ParseError` when no ``<day> <month>`` pair can be found.
    """

    if raw is None or not raw.strip():
        raise ParseError("Promotion period text is empty", retailer=retailer, raw_text=raw)

    reference = today or date.today()
    fragment = expiry_fragment(raw, retailer=retailer)
    match = _DATE_PATTERN.search(fragment)
    if not match:
        raise ParseError(
            f"Could not parse promotion expiry date from {raw!r}",
            retailer=retailer,
            raw_text=raw,
        )

    day = int(match.group("day"))
    month = DUTCH_MONTHS[match.group("month").lower()]
    explicit_year = match.group("year")
    year = int(explicit_year) if explicit_year else reference.year

    try:
        expires_on = date(year, month, day)
    except ValueError as exc:
        raise ParseError(
            f"Invalid promotion expiry date in {raw!r}: {exc}", retailer=retailer, raw_text=raw
        ) from exc

    if explicit_year:
        return expires_on

    # A period ending in late December read in January belongs to last year,
    # one ending in early January read in December to next year.
    shift = 0
    if (reference - expires_on).days > ROLLOVER_DAYS:
        shift = 1
    elif (expires_on - reference).days > ROLLOVER_DAYS:
        shift = -1
    if shift:
        try:
            expires_on = expires_on.replace(year=year + shift)
        except ValueError as exc:
            raise ParseError(
                f"Invalid promotion expiry date in {raw!r}: {exc}", retailer=retailer, raw_text=raw
            ) from exc
    return expires_on


def calculate_next_run(expires_on: date) -> datetime:
    """Midnight of the day after the promotion expires."""

    return datetime.combine(expires_on + timedelta(days=1), time.min)


def next_day_at(now: datetime, *, hour: int = 0, minute: int = 1) -> datetime:
    """Return tomorrow at ``hour:minute`` relative to *now* (naive local time)."""

    tomorrow = (now + timedelta(days=1)).date()
    return datetime.combine(tomorrow, time(hour=hour, minute=minute))


async def read_expiry_date(
    page: Any,
    selector: str,
    *,
    timeout_ms: int,
    retailer: str,
    today: date | None = None,
) -> date:
    """Read the promotion period element from *page* and parse its expiry date."""

    log = retailer_logger(LOGGER, retailer)
    try:
        handle = await page.wait_for_selector(selector, timeout=timeout_ms)
    except Exception as exc:
        raise ParseError(
            f"Promotion period element {selector!r} not found: {exc}", retailer=retailer
        ) from exc
    if handle is None:
        raise ParseError(f"Promotion period element {selector!r} not found", retailer=retailer)

    raw = await handle.text_content()
    expires_on = parse_expiry_date(raw, today=today, retailer=retailer)
    log.info("Promotion expires on %s", expires_on.isoformat())
    return expires_on
