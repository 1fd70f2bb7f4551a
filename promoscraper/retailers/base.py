"""Shared extraction protocol for retailer product anchors.

Every retailer reads one product anchor with a single in-page evaluation.
The script returns raw strings only::

    {
        "name": "Apples",
        "originalPrice": "2.50",          # or null
        "discountParts": ["1", "99"],     # retailer specific, entries may be null
        "tags": ["1+1", "gratis"],
    }

Parsing into decimals happens in Python so a malformed price degrades to
``0`` with a warning instead of ``NaN`` leaking out of the browser.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Protocol

from promoscraper.config import ProductFieldSelectors
from promoscraper.logging_config import get_logger
from promoscraper.normalizers import clean_text, join_tags

LOGGER = get_logger(__name__)

RawProduct = Mapping[str, Any]

# Helpers available to every retailer body: ``element`` is the product anchor
# and ``config`` the serialised ProductFieldSelectors.
SCRIPT_PRELUDE = """
  const text = (node) => (node && node.textContent ? node.textContent.trim() : null);
  const first = (selector) => (selector ? element.querySelector(selector) : null);
  const all = (selector) => (selector ? Array.from(element.querySelectorAll(selector)) : []);
  const name = text(first(config.name[0])) || "";
  const tags = all(config.promotional_tag[0]).map(text).filter(Boolean);
"""


def build_script(body: str) -> str:
    """Wrap a retailer *body* that assigns ``originalPrice`` and ``discountParts``."""

    return (
        "(element, config) => {\n"
        + SCRIPT_PRELUDE
        + "  let originalPrice = null;\n"
        + "  let discountParts = [];\n"
        + body
        + "\n  return { name, originalPrice, discountParts, tags };\n}"
    )


@dataclass(frozen=True)
class ProductFields:
    name: str
    original_price: Decimal
    discount_price: Decimal
    promotional_tag: str


class ExtractionProtocol(Protocol):
    """Capability set implemented once per retailer price convention."""

    key: str
    script: str

    async def extract_product_fields(self, handle: Any, fields: ProductFieldSelectors) -> RawProduct:
        ...

    def original_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        ...

    def discount_price(self, raw: RawProduct, *, product: str | None = None) -> Decimal:
        ...


class ScriptedExtractor:
    """Runs ``self.script`` against a product anchor in one round-trip."""

    key = ""
    script = ""

    async def extract_product_fields(self, handle: Any, fields: ProductFieldSelectors) -> RawProduct:
        result = await handle.evaluate(self.script, fields.as_payload())
        return result or {}


def discount_parts(raw: RawProduct) -> list[str | None]:
    parts = raw.get("discountParts") or []
    return [part if part is None else str(part) for part in parts]


async def extract_product(extractor: ExtractionProtocol, handle: Any, fields: ProductFieldSelectors) -> ProductFields:
    """Read one product anchor into typed fields.

    Price problems are absorbed by the extractor (``0`` plus a warning); a
    failing in-page evaluation propagates so the caller can drop the product.
    """

    raw = await extractor.extract_product_fields(handle, fields)
    name = clean_text(raw.get("name"))
    if not name:
        LOGGER.warning("Product name not found with selector %r", fields.name[0])
    product = name or None
    return ProductFields(
        name=name,
        original_price=extractor.original_price(raw, product=product),
        discount_price=extractor.discount_price(raw, product=product),
        promotional_tag=join_tags(raw.get("tags") or []),
    )
