"""Logging configuration helpers for the promoscraper application."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, MutableMapping

LOG_DIR = os.getenv("PROMOSCRAPER_LOG_DIR", "logs")
LOG_FILE = os.path.join(LOG_DIR, "app.log")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger with console and rotating file handlers.

    Records still propagate so the root logger (and pytest's ``caplog``) sees
    them; handlers are attached once per logger name.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(DEFAULT_LEVEL)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(DEFAULT_LEVEL)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(DEFAULT_LEVEL)

        logger.addHandler(file_handler)
        logger.addHandler(console_handler)

    return logger


class RetailerLogAdapter(logging.LoggerAdapter):
    """Prefix every message with the retailer a scrape run belongs to."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        retailer = (self.extra or {}).get("retailer") or "-"
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("retailer", retailer)
        kwargs["extra"] = extra
        return f"[{retailer}] {msg}", kwargs


def retailer_logger(logger: logging.Logger, retailer: str) -> RetailerLogAdapter:
    """Return *logger* wrapped so its records carry the retailer name."""

    return RetailerLogAdapter(logger, {"retailer": retailer})
