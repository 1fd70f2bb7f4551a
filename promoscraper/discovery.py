"""Locate category sections and their product anchors on a promotions page."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from promoscraper.logging_config import get_logger, retailer_logger
from promoscraper.normalizers import sanitize_category_name

LOGGER = get_logger(__name__)

HEADING_TEXT_PREFIX = "text="

# (container selector, heading selector) pairs tried in order when a category
# is configured by its heading text.
SECTION_LAYOUTS: tuple[tuple[str, str], ...] = (
    ("section.department", "h2"),
    ("div.ThemeGrid_Container", "h2.promo-category-offer > span[data-expression]"),
)

FIND_SECTION_SCRIPT = """
({ text, layouts }) => {
  for (const [containerSelector, headingSelector] of layouts) {
    for (const container of document.querySelectorAll(containerSelector)) {
      const heading = container.querySelector(headingSelector);
      if (heading && heading.textContent && heading.textContent.trim() === text) {
        return container;
      }
    }
  }
  return null;
}
"""


@dataclass(frozen=True)
class CategoryScan:
    """A resolved category section: its display name and product anchors."""

    selector: str
    name: str
    products: tuple[Any, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.products)


def is_heading_text_selector(selector: str) -> bool:
    """True when *selector* names a section heading (``text=Vlees & vis``).

    Everything without the ``text=`` prefix is a CSS selector, including
    tag-led ones such as ``section.department`` or ``div > ul``.
    """

    stripped = (selector or "").strip()
    return stripped.startswith(HEADING_TEXT_PREFIX) and bool(heading_text(stripped))


def heading_text(selector: str) -> str:
    stripped = (selector or "").strip()
    if stripped.startswith(HEADING_TEXT_PREFIX):
        stripped = stripped[len(HEADING_TEXT_PREFIX):].strip()
    return stripped


async def find_section_by_heading(page: Any, text: str) -> Any | None:
    handle = await page.evaluate_handle(
        FIND_SECTION_SCRIPT,
        {"text": text.strip(), "layouts": [list(layout) for layout in SECTION_LAYOUTS]},
    )
    if handle is None:
        return None
    return handle.as_element()


async def discover_category(
    page: Any,
    category_selector: str,
    product_selector: str,
    *,
    retailer: str = "-",
) -> CategoryScan:
    """Resolve one category container and list the product anchors inside it.

    The category name is read once here and carried on the returned scan so
    every product in the section reuses it. A missing container or a DOM
    failure is logged and yields an empty scan.
    """

    log = retailer_logger(LOGGER, retailer)
    name = ""
    try:
        if is_heading_text_selector(category_selector):
            text = heading_text(category_selector)
            container = await find_section_by_heading(page, text)
            name = sanitize_category_name(text)
        else:
            container = await page.query_selector(category_selector)

        if container is None:
            log.error("Category section %r not found", category_selector)
            return CategoryScan(selector=category_selector, name=name)

        if not name:
            heading = await container.query_selector("h2, h3")
            if heading is not None:
                name = sanitize_category_name(await heading.text_content())

        products = await container.query_selector_all(product_selector)
    except Exception as exc:
        log.error("Failed to read category %r with product selector %r: %s", category_selector, product_selector, exc)
        return CategoryScan(selector=category_selector, name=name)

    log.info("Found %d products in category %r", len(products), name or category_selector)
    return CategoryScan(selector=category_selector, name=name, products=tuple(products))
