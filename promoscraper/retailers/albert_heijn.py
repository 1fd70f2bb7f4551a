"""Albert Heijn: prices are published in a data attribute on the price element."""

from __future__ import annotations

from decimal import Decimal

from promoscraper.normalizers import parse_price
from promoscraper.retailers.base import RawProduct, ScriptedExtractor, build_script, discount_parts

# original_price / discount_price are [element selector, attribute name].
_BODY = """
  const attributeOf = (selectors) => {
    const node = first(selectors[0]);
    return node && selectors[1] ? node.getAttribute(selectors[1]) : null;
  };
  originalPrice = attributeOf(config.original_price);
  discountParts = [attributeOf(config.discount_price)];
"""


class AlbertHeijnExtractor(ScriptedExtractor):
    key = "albert-heijn"
    script = build_script(_BODY)

    def original_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        return parse_price(raw.get("originalPrice"), field="original price", product=product)

    def discount_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        parts = discount_parts(raw)
        return parse_price(parts[0] if parts else None, field="discount price", product=product)
