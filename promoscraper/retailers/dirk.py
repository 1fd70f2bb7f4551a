"""Dirk: euros and cents are rendered as separate text nodes."""

from __future__ import annotations

from decimal import Decimal

from promoscraper.normalizers import parse_price, split_price
from promoscraper.retailers.base import RawProduct, ScriptedExtractor, build_script, discount_parts

# original_price: [label selector, child holding the amount]; the first label
# with that child wins. discount_price: [euros, cents, alternative cents].
_BODY = """
  for (const label of all(config.original_price[0])) {
    const amount = config.original_price[1] ? label.querySelector(config.original_price[1]) : label;
    const value = text(amount);
    if (value) {
      originalPrice = value;
      break;
    }
  }
  discountParts = config.discount_price.map((selector) => text(first(selector)));
"""


class DirkExtractor(ScriptedExtractor):
    key = "dirk"
    script = build_script(_BODY)

    def original_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        return parse_price(raw.get("originalPrice"), field="original price", product=product)

    def discount_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        parts = discount_parts(raw) + [None, None, None]
        euros, cents, alt_cents = parts[0], parts[1], parts[2]
        if not (euros or cents or alt_cents):
            return parse_price(None, field="discount price", product=product)
        return parse_price(split_price(euros, cents or alt_cents), field="discount price", product=product)
