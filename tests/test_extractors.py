from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

import pytest

from promoscraper.config import ProductFieldSelectors
from promoscraper.errors import ConfigError
from promoscraper.retailers.albert_heijn import AlbertHeijnExtractor
from promoscraper.retailers.base import extract_product
from promoscraper.retailers.dirk import DirkExtractor
from promoscraper.retailers.plus import PlusExtractor
from promoscraper.retailers.registry import get_extractor

from fakes import FakeElement

FIELDS = ProductFieldSelectors(
    name=("p.title",),
    original_price=("span.price", "data-price"),
    discount_price=("span.bonus", "data-price"),
    promotional_tag=("span.shield",),
)


def test_registry_returns_one_extractor_per_price_convention() -> None:
    assert isinstance(get_extractor("albert-heijn"), AlbertHeijnExtractor)
    assert isinstance(get_extractor("Dirk"), DirkExtractor)
    assert isinstance(get_extractor(" plus "), PlusExtractor)


def test_registry_rejects_unknown_key() -> None:
    with pytest.raises(ConfigError):
        get_extractor("jumbo")


@pytest.mark.parametrize("extractor", [AlbertHeijnExtractor(), DirkExtractor(), PlusExtractor()])
def test_scripts_are_single_function_returning_all_fields(extractor) -> None:
    script = extractor.script
    assert script.startswith("(element, config) =>")
    assert "return { name, originalPrice, discountParts, tags };" in script


def test_albert_heijn_reads_attribute_values() -> None:
    raw = {"originalPrice": "2.49", "discountParts": ["1.99"]}
    extractor = AlbertHeijnExtractor()
    assert extractor.original_price(raw) == Decimal("2.49")
    assert extractor.discount_price(raw) == Decimal("1.99")


def test_dirk_joins_euros_and_cents() -> None:
    extractor = DirkExtractor()
    assert extractor.discount_price({"discountParts": ["1", "29", None]}) == Decimal("1.29")
    assert extractor.discount_price({"discountParts": ["2", None, "49"]}) == Decimal("2.49")
    assert extractor.discount_price({"discountParts": [None, "89", None]}) == Decimal("0.89")
    assert extractor.original_price({"originalPrice": "3.19"}) == Decimal("3.19")


def test_plus_concatenates_price_nodes() -> None:
    extractor = PlusExtractor()
    assert extractor.discount_price({"discountParts": ["1.", "99"]}) == Decimal("1.99")
    assert extractor.original_price({"originalPrice": "2.79"}) == Decimal("2.79")


@pytest.mark.parametrize("extractor", [AlbertHeijnExtractor(), DirkExtractor(), PlusExtractor()])
def test_malformed_prices_become_zero(extractor, caplog) -> None:
    raw = {"originalPrice": "op=op", "discountParts": []}
    with caplog.at_level(logging.WARNING):
        assert extractor.original_price(raw) == Decimal("0")
        assert extractor.discount_price(raw) == Decimal("0")
        assert extractor.discount_price({}) == Decimal("0")
    assert caplog.records


def test_extract_product_uses_one_evaluation() -> None:
    handle = FakeElement(
        payload={
            "name": "  Apples ",
            "originalPrice": "2.50",
            "discountParts": ["1.99"],
            "tags": ["1+1", "free"],
        }
    )
    fields = asyncio.run(extract_product(AlbertHeijnExtractor(), handle, FIELDS))

    assert handle.evaluate_calls == 1
    assert fields.name == "Apples"
    assert fields.original_price == Decimal("2.50")
    assert fields.discount_price == Decimal("1.99")
    assert fields.promotional_tag == "1+1 free"


def test_extract_product_keeps_empty_name_and_tag() -> None:
    handle = FakeElement(payload={"name": "", "originalPrice": None, "discountParts": [None], "tags": []})
    fields = asyncio.run(extract_product(AlbertHeijnExtractor(), handle, FIELDS))

    assert fields.name == ""
    assert fields.promotional_tag == ""
    assert fields.original_price == Decimal("0")


def test_extract_product_propagates_evaluation_failure() -> None:
    handle = FakeElement(error=RuntimeError("Execution context was destroyed"))
    with pytest.raises(RuntimeError):
        asyncio.run(extract_product(DirkExtractor(), handle, FIELDS))
