"""In-memory stand-ins for Playwright pages, element handles and sessions."""

from __future__ import annotations

from typing import Any

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from promoscraper.config import ScrapeTarget, parse_target


class FakeElement:
    def __init__(
        self,
        text: str = "",
        *,
        children: dict[str, list["FakeElement"]] | None = None,
        payload: dict[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.text = text
        self.children = children or {}
        self.payload = payload
        self.error = error
        self.evaluate_calls = 0

    async def query_selector(self, selector: str) -> "FakeElement | None":
        matches = self.children.get(selector) or []
        return matches[0] if matches else None

    async def query_selector_all(self, selector: str) -> list["FakeElement"]:
        return list(self.children.get(selector, []))

    async def text_content(self) -> str:
        return self.text

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluate_calls += 1
        if self.error is not None:
            raise self.error
        return self.payload

    def as_element(self) -> "FakeElement":
        return self


class FakeHandle:
    def __init__(self, element: FakeElement | None) -> None:
        self.element = element

    def as_element(self) -> FakeElement | None:
        return self.element


class FakePage:
    def __init__(
        self,
        *,
        elements: dict[str, FakeElement] | None = None,
        sections: dict[str, FakeElement] | None = None,
    ) -> None:
        self.elements = elements or {}
        self.sections = sections or {}
        self.waited: list[str] = []
        self.clicked: list[str] = []

    async def query_selector(self, selector: str) -> FakeElement | None:
        return self.elements.get(selector)

    async def wait_for_selector(self, selector: str, **kwargs: Any) -> FakeElement | None:
        self.waited.append(selector)
        element = self.elements.get(selector)
        if element is None:
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")
        return element

    async def click(self, selector: str) -> None:
        self.clicked.append(selector)

    async def evaluate_handle(self, script: str, arg: dict[str, Any]) -> FakeHandle:
        return FakeHandle(self.sections.get(arg["text"]))


class FakeSession:
    def __init__(
        self,
        page: FakePage,
        *,
        launch_error: Exception | None = None,
        navigate_error: Exception | None = None,
    ) -> None:
        self.page = page
        self.launch_error = launch_error
        self.navigate_error = navigate_error
        self.calls: list[str] = []
        self.cookie_selectors: list[str] = []
        self.close_count = 0

    async def launch(self) -> FakePage:
        self.calls.append("launch")
        if self.launch_error is not None:
            raise self.launch_error
        return self.page

    async def navigate(self, url: str) -> None:
        self.calls.append(f"navigate:{url}")
        if self.navigate_error is not None:
            raise self.navigate_error

    async def dismiss_cookie_banner(self, selector: str, *, timeout_ms: int = 30000) -> bool:
        self.cookie_selectors.append(selector)
        return bool(selector)

    async def close(self) -> None:
        self.calls.append("close")
        self.close_count += 1


def product(name: str, original: str | None, discount: str | None, tags: list[str] | None = None) -> FakeElement:
    """A product anchor whose in-page evaluation yields Albert Heijn style raw fields."""

    return FakeElement(
        payload={
            "name": name,
            "originalPrice": original,
            "discountParts": [discount],
            "tags": tags or [],
        }
    )


def make_target(
    *,
    key: str = "albert-heijn",
    name: str = "Albert Heijn",
    categories: tuple[str, ...] = ("#fruit",),
    cookie: str = "",
    extractor: str = "albert-heijn",
) -> ScrapeTarget:
    return parse_target(
        key,
        {
            "name": name,
            "url": f"https://example.test/{key}",
            "extractor": extractor,
            "identifiers": {
                "cookie_decline": cookie,
                "promotion_expires": ".expires",
                "product_categories": list(categories),
                "products": "a.product",
                "product_fields": {
                    "name": ["p.title"],
                    "original_price": ["span.price", "data-price"],
                    "discount_price": ["span.bonus", "data-price"],
                    "promotional_tag": ["span.shield"],
                },
            },
        },
    )
