"""Normalization helpers for scraped text values."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from promoscraper.logging_config import get_logger

LOGGER = get_logger(__name__)

ZERO = Decimal("0.00")
_CENTS = Decimal("0.01")
_PRICE_PATTERN = re.compile(r"(?P<number>\d+(?:[.,]\d+)?|[.,]\d+)")
_WHITESPACE = re.compile(r"\s+")


def parse_price(text: str | None, *, field: str = "price", product: str | None = None) -> Decimal:
    """Parse a price-like string into a :class:`~decimal.Decimal` rounded to cents.

    The first number in *text* wins; currency symbols and surrounding words
    are ignored and ``,`` is accepted as the decimal separator. Missing or
    unparseable text yields ``0.00`` and a warning, never an exception.
    """

    label = f" for {product!r}" if product else ""
    if text is None or not str(text).strip():
        LOGGER.warning("Missing %s%s; defaulting to 0", field, label)
        return ZERO

    match = _PRICE_PATTERN.search(str(text))
    if not match:
        LOGGER.warning("Malformed %s%s: %r; defaulting to 0", field, label, text)
        return ZERO

    number = match.group("number").replace(",", ".")
    try:
        value = Decimal(number)
    except InvalidOperation:  # pragma: no cover - the pattern only admits digits
        LOGGER.warning("Malformed %s%s: %r; defaulting to 0", field, label, text)
        return ZERO
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def split_price(euros: str | None, cents: str | None) -> str:
    """Join separately rendered euro and cent nodes into ``"<euros>.<cents>"``."""

    whole = re.sub(r"\D", "", euros or "") or "0"
    fraction = re.sub(r"\D", "", cents or "") or "00"
    return f"{whole}.{fraction}"


def clean_text(value: str | None) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value).strip()


def sanitize_category_name(raw: str | None) -> str:
    """Strip commas and ``"& "`` connectors from a category heading."""

    text = clean_text(raw)
    text = text.replace(",", "").replace("& ", "")
    return clean_text(text)


def join_tags(parts: Iterable[str | None]) -> str:
    """Space-join non-empty tag texts; no tags gives an empty string."""

    return " ".join(clean for clean in (clean_text(part) for part in parts) if clean)
