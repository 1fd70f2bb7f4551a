"""In-memory result rows produced by a scrape run."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class ProductDiscountRecord:
    """One discounted product as seen on the retailer's page during a run."""

    name: str
    original_price: Decimal
    discount_price: Decimal
    promotional_tag: str
    category: str
    retailer: str
    expires_on: date
