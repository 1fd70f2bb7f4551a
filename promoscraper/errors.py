"""Exception types raised by the scraping pipeline."""

from __future__ import annotations


class ScraperError(RuntimeError):
    """Base class for failures that abort a single retailer run."""

    def __init__(self, message: str, *, retailer: str | None = None) -> None:
        super().__init__(message)
        self.retailer = retailer


class SessionError(ScraperError):
    """The browser could not be launched or the entry page could not be loaded."""

    def __init__(self, message: str, *, retailer: str | None = None, url: str | None = None) -> None:
        super().__init__(message, retailer=retailer)
        self.url = url


class ParseError(ScraperError):
    """The promotion period text did not yield an expiry date."""

    def __init__(self, message: str, *, retailer: str | None = None, raw_text: str | None = None) -> None:
        super().__init__(message, retailer=retailer)
        self.raw_text = raw_text


class ReconciliationError(ScraperError):
    """A persistence operation failed while replacing a retailer's discounts."""


class ConfigError(ScraperError):
    """Retailer or application configuration is missing or malformed."""


class UnknownRetailerError(ConfigError):
    """No scrape target is configured for the requested retailer key."""

    def __init__(self, key: str, *, known: list[str] | None = None) -> None:
        valid = ", ".join(known or [])
        message = f"Unknown supermarket: {key}."
        if valid:
            message += f" Valid values: {valid}"
        super().__init__(message)
        self.key = key
