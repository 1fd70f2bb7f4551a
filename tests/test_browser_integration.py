"""Happy-path scrape against real Chromium; skipped when no browser is installed."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date
from decimal import Decimal
from urllib.parse import quote

import pytest

pytest.importorskip("playwright.async_api")

from promoscraper.config import parse_target
from promoscraper.errors import SessionError
from promoscraper.orchestrator import scrape_target

TODAY = date(2024, 5, 15)

AH_PAGE = """
<html><body>
  <button id="decline-cookies" onclick="this.remove()">Weigeren</button>
  <div class="period"><span>wo 15 t/m di 21 mei</span></div>
  <section id="fruit">
    <h2>Fruit, verse sappen</h2>
    <a class="card">
      <p class="title">Hollandse appels</p>
      <span class="was" data-price="2.49">2.49</span>
      <span class="now" data-price="1.99">1.99</span>
      <div class="shields"><span>2e halve prijs</span></div>
    </a>
    <a class="card">
      <p class="title">Conference peren</p>
      <span class="was" data-price="3,10">3,10</span>
      <span class="now" data-price="">-</span>
    </a>
  </section>
</body></html>
"""

DIRK_PAGE = """
<html><body>
  <div class="offer-runtime">Geldig t/m zondag 19 mei</div>
  <section class="department">
    <h2>Zuivel & kaas</h2>
    <article data-product-id="1">
      <p class="title">Halfvolle melk</p>
      <div class="price-label"></div>
      <div class="price-label"><span class="regular-price">1.29</span></div>
      <span class="price-large">0</span><span class="price-small">99</span>
    </article>
  </section>
</body></html>
"""


def _data_url(html: str) -> str:
    return "data:text/html;charset=utf-8," + quote(html)


def _run(target, settings):
    try:
        return asyncio.run(scrape_target(target, settings=settings, today=TODAY))
    except SessionError as exc:
        pytest.skip(f"Chromium not available: {exc}")


@pytest.fixture()
def browser_settings(settings):
    return replace(settings, cookie_timeout_ms=2000, selector_timeout_ms=5000, navigation_timeout_ms=15000)


def test_attribute_prices_in_real_browser(browser_settings) -> None:
    target = parse_target(
        "albert-heijn",
        {
            "name": "Albert Heijn",
            "url": _data_url(AH_PAGE),
            "identifiers": {
                "cookie_decline": "#decline-cookies",
                "promotion_expires": ".period span",
                "product_categories": ["#fruit"],
                "products": "a.card",
                "product_fields": {
                    "name": ["p.title"],
                    "original_price": ["span.was", "data-price"],
                    "discount_price": ["span.now", "data-price"],
                    "promotional_tag": [".shields span"],
                },
            },
        },
    )

    result = _run(target, browser_settings)

    assert result.expires_on == date(2024, 5, 21)
    assert [(r.name, r.original_price, r.discount_price, r.promotional_tag) for r in result.records] == [
        ("Hollandse appels", Decimal("2.49"), Decimal("1.99"), "2e halve prijs"),
        ("Conference peren", Decimal("3.10"), Decimal("0.00"), ""),
    ]
    assert {r.category for r in result.records} == {"Fruit verse sappen"}


def test_heading_section_and_split_prices_in_real_browser(browser_settings) -> None:
    target = parse_target(
        "dirk",
        {
            "name": "Dirk",
            "url": _data_url(DIRK_PAGE),
            "identifiers": {
                "cookie_decline": "",
                "promotion_expires": ".offer-runtime",
                "product_categories": ["text=Zuivel & kaas", "text=Diepvries"],
                "products": "article[data-product-id]",
                "product_fields": {
                    "name": ["p.title"],
                    "original_price": [".price-label", "span.regular-price"],
                    "discount_price": [".price-large", ".price-small", ".price-small-alt"],
                },
            },
        },
    )

    result = _run(target, browser_settings)

    assert result.expires_on == date(2024, 5, 19)
    assert result.categories_skipped == 1
    [record] = result.records
    assert record.name == "Halfvolle melk"
    assert record.original_price == Decimal("1.29")
    assert record.discount_price == Decimal("0.99")
    assert record.category == "Zuivel kaas"
