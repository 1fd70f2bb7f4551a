"""Browser session lifecycle for a single retailer run."""

from __future__ import annotations

from typing import Any, Callable

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from promoscraper.errors import SessionError
from promoscraper.logging_config import get_logger, retailer_logger
from promoscraper.playwright_env import close_browser, launch_browser

LOGGER = get_logger(__name__)


class BrowserSession:
    """One browser, one context and one page, released exactly once.

    Use as ``async with BrowserSession(retailer=...) as session:``; the
    browser is closed on every exit path.
    """

    def __init__(
        self,
        *,
        retailer: str,
        navigation_timeout_ms: int = 60000,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.retailer = retailer
        self.navigation_timeout_ms = navigation_timeout_ms
        self._playwright_factory = playwright_factory
        self._manager: Any = None
        self._playwright: Any = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._closed = False
        self._log = retailer_logger(LOGGER, retailer)

    @property
    def page(self) -> Page:
        if self._page is None:
            raise SessionError("Browser session has not been launched", retailer=self.retailer)
        return self._page

    async def launch(self) -> Page:
        """Start Chromium with the configured context and open one page."""

        self._log.info("Launching browser")
        try:
            self._manager = self._playwright_factory()
            self._playwright = await self._manager.start()
            self._browser, self._context = await launch_browser(self._playwright)
            self._page = await self._context.new_page()
        except Exception as exc:
            await self.close()
            raise SessionError(f"Failed to launch browser: {exc}", retailer=self.retailer) from exc
        return self._page

    async def navigate(self, url: str) -> None:
        """Load *url* and wait until the DOM content has been parsed."""

        self._log.info("Navigating to %s", url)
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        except SessionError:
            raise
        except Exception as exc:
            raise SessionError(
                f"Failed to navigate to {url}: {exc}", retailer=self.retailer, url=url
            ) from exc

    async def dismiss_cookie_banner(self, selector: str, *, timeout_ms: int = 30000) -> bool:
        """Best-effort click on the cookie decline button.

        An empty *selector* means the site shows no banner: nothing is waited
        for and nothing is logged above info. A timeout or click failure is
        logged as a warning and the run continues.
        """

        if not selector:
            self._log.info("No cookie banner configured; skipping dismissal")
            return False

        page = self.page
        try:
            await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
            await page.click(selector)
            await page.wait_for_selector(selector, state="hidden", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            self._log.warning("Cookie banner %r not dismissed within %d ms", selector, timeout_ms)
            return False
        except Exception as exc:
            self._log.warning("Cookie banner %r could not be dismissed: %s", selector, exc)
            return False
        self._log.info("Cookie banner dismissed")
        return True

    async def close(self) -> None:
        """Release page, context, browser and the Playwright driver; idempotent."""

        if self._closed:
            return
        self._closed = True
        await close_browser(self._browser, self._context)
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                self._log.debug("Ignoring error while stopping Playwright: %s", exc)
        self._playwright = None
        self._page = None
        self._context = None
        self._browser = None
        self._log.info("Browser closed")

    async def __aenter__(self) -> "BrowserSession":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
