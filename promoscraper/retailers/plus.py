"""PLUS: the discount price is split over two adjacent text nodes."""

from __future__ import annotations

from decimal import Decimal

from promoscraper.normalizers import parse_price
from promoscraper.retailers.base import RawProduct, ScriptedExtractor, build_script, discount_parts

_BODY = """
  originalPrice = text(first(config.original_price[0]));
  discountParts = config.discount_price.slice(0, 2).map((selector) => text(first(selector)));
"""


class PlusExtractor(ScriptedExtractor):
    key = "plus"
    script = build_script(_BODY)

    def original_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        return parse_price(raw.get("originalPrice"), field="original price", product=product)

    def discount_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        # "1." followed by "99" reads as "1.99".
        joined = "".join(part for part in discount_parts(raw)[:2] if part)
        return parse_price(joined or None, field="discount price", product=product)
