"""Centralised helpers for Playwright launch, context and stealth configuration."""

from __future__ import annotations

import os
import shlex
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import Browser, BrowserContext, Playwright
from playwright_stealth import Stealth

from promoscraper.logging_config import get_logger

LOGGER = get_logger(__name__)

_FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
DEFAULT_LOCALE = "nl-NL"
DEFAULT_TIMEZONE = "Europe/Amsterdam"
# Amsterdam city centre.
DEFAULT_GEOLOCATION = {"latitude": 52.3676, "longitude": 4.9041}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def headless_enabled() -> bool:
    """Return True if Playwright should run in headless mode."""

    return _as_bool(os.getenv("PROMOSCRAPER_HEADLESS"), True)


def stealth_enabled() -> bool:
    """Return True when stealth evasion scripts should be applied."""

    return _as_bool(os.getenv("PROMOSCRAPER_STEALTH"), True)


def user_agent() -> str:
    return os.getenv("PROMOSCRAPER_USER_AGENT") or DEFAULT_USER_AGENT


def locale() -> str:
    return os.getenv("PROMOSCRAPER_LOCALE") or DEFAULT_LOCALE


def timezone_id() -> str:
    return os.getenv("PROMOSCRAPER_TIMEZONE") or DEFAULT_TIMEZONE


def _proxy_config() -> dict[str, str] | None:
    raw = os.getenv("PROMOSCRAPER_PROXY")
    if not raw:
        return None
    parsed = urlparse(raw)
    if not parsed.scheme:
        return {"server": f"http://{raw}"}
    return {"server": raw}


def slow_mo_ms() -> int | None:
    value = _env_int("PROMOSCRAPER_SLOW_MO_MS", 0)
    return value if value > 0 else None


def launch_kwargs() -> dict[str, Any]:
    """Return kwargs passed to ``chromium.launch``."""

    args = [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--disable-infobars",
        f"--lang={locale()}",
        "--no-default-browser-check",
        "--no-sandbox",
    ]
    extra_args = os.getenv("PROMOSCRAPER_CHROMIUM_ARGS")
    if extra_args:
        args.extend(shlex.split(extra_args))

    kwargs: dict[str, Any] = {
        "headless": headless_enabled(),
        "args": args,
    }

    channel = os.getenv("PROMOSCRAPER_BROWSER_CHANNEL")
    if channel:
        kwargs["channel"] = channel

    proxy = _proxy_config()
    if proxy:
        kwargs["proxy"] = proxy

    slow_mo = slow_mo_ms()
    if slow_mo:
        kwargs["slow_mo"] = slow_mo

    return kwargs


def context_kwargs() -> dict[str, Any]:
    """Return kwargs passed to ``browser.new_context``."""

    kwargs: dict[str, Any] = {
        "user_agent": user_agent(),
        "viewport": dict(DEFAULT_VIEWPORT),
        "locale": locale(),
        "timezone_id": timezone_id(),
        "geolocation": dict(DEFAULT_GEOLOCATION),
        "permissions": ["geolocation"],
        "extra_http_headers": {"Accept-Language": f"{locale()},{locale().split('-')[0]};q=0.9"},
    }
    if _as_bool(os.getenv("PROMOSCRAPER_IGNORE_HTTPS_ERRORS"), False):
        kwargs["ignore_https_errors"] = True
    return kwargs


def _stealth_instance() -> Stealth | None:
    if not stealth_enabled():
        return None
    language = locale()
    return Stealth(
        navigator_languages_override=(language, language.split("-")[0]),
        navigator_platform_override=os.getenv("PROMOSCRAPER_PLATFORM", "Win32"),
        navigator_user_agent_override=user_agent(),
        navigator_vendor_override=os.getenv("PROMOSCRAPER_VENDOR", "Google Inc."),
    )


async def apply_stealth(context: BrowserContext) -> bool:
    """Install stealth evasions on *context*; returns False when disabled or failing."""

    instance = _stealth_instance()
    if instance is None:
        return False
    try:
        await instance.apply_stealth_async(context)
    except Exception as exc:
        LOGGER.warning("Stealth evasions could not be applied: %s", exc)
        return False
    return True


async def launch_browser(playwright: Playwright) -> tuple[Browser, BrowserContext]:
    """Launch Chromium according to env overrides and open a configured context."""

    browser = await playwright.chromium.launch(**launch_kwargs())
    try:
        context = await browser.new_context(**context_kwargs())
    except Exception:
        await browser.close()
        raise
    await apply_stealth(context)
    return browser, context


async def close_browser(browser: Browser | None, context: BrowserContext | None) -> None:
    """Close the provided browser/context pair without raising."""

    if context is not None:
        try:
            await context.close()
        except Exception as exc:
            LOGGER.debug("Ignoring error while closing browser context: %s", exc)

    if browser is not None:
        try:
            await browser.close()
        except Exception as exc:
            LOGGER.debug("Ignoring error while closing browser: %s", exc)
