"""Run alert and healthcheck helpers."""

from __future__ import annotations

import os
import time
from typing import Iterable, Mapping
from urllib.parse import urlparse

import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from promoscraper.logging_config import get_logger

LOGGER = get_logger(__name__)


class Notifier:
    """Send run alerts via Telegram when credentials are present."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        env = os.environ if env is None else env
        self._telegram_token = env.get("TELEGRAM_BOT_TOKEN")
        self._telegram_chat = env.get("TELEGRAM_CHAT_ID")
        self._last_send = 0.0

    @property
    def enabled(self) -> bool:
        return bool(self._telegram_token and self._telegram_chat)

    def notify_run_failed(self, retailer: str, error: str, *, run_id: int | None = None) -> bool:
        """Alert that a scrape run for *retailer* failed."""

        lines = [f"Scrape failed: {retailer}", f"Error: {error}"]
        if run_id is not None:
            lines.append(f"Run: #{run_id}")
        return self._dispatch(lines)

    def notify_run_empty(self, retailer: str, *, run_id: int | None = None) -> bool:
        """Alert that a run finished without a single product; discounts were kept."""

        lines = [
            f"Empty scrape: {retailer}",
            "No products were found; active discounts were left untouched.",
        ]
        if run_id is not None:
            lines.append(f"Run: #{run_id}")
        return self._dispatch(lines)

    def _dispatch(self, lines: list[str]) -> bool:
        if not self.enabled:
            LOGGER.debug("Alert (noop): %s", " | ".join(lines))
            return False
        try:
            self._send_telegram(lines)
        except Exception as exc:
            LOGGER.warning("Alert delivery failed via telegram: %s", exc)
            return False
        return True

    def _throttle(self) -> None:
        elapsed = time.monotonic() - self._last_send
        if elapsed < 1:
            time.sleep(1 - elapsed)
        self._last_send = time.monotonic()

    @retry(wait=wait_exponential(multiplier=0.5, max=10), stop=stop_after_attempt(5), reraise=True)
    def _send_telegram(self, lines: Iterable[str]) -> None:
        self._throttle()
        url = f"https://api.telegram.org/bot{self._telegram_token}/sendMessage"
        payload = {
            "chat_id": self._telegram_chat,
            "text": "\n".join(lines),
            "disable_web_page_preview": True,
        }
        response = requests.post(url, json=payload, timeout=8)
        if response.status_code >= 400:
            raise RuntimeError(f"HTTP {response.status_code}")


def ping_healthcheck(url: str | None) -> bool:
    """GET *url* after a successful run; failures only log a warning."""

    if not url:
        LOGGER.debug("healthcheck: disabled")
        return False
    parsed = urlparse(str(url))
    host = parsed.netloc or parsed.path
    verify_env = os.getenv("HEALTHCHECK_VERIFY")
    verify = True if verify_env is None else verify_env.strip().lower() not in {"0", "false", "no"}
    try:
        response = requests.get(url, timeout=5, verify=verify)
    except requests.RequestException as exc:
        LOGGER.warning("Healthcheck ping failed for host=%s: %s", host, exc)
        return False
    if response.status_code >= 400:
        LOGGER.warning("Healthcheck returned status %s for host=%s", response.status_code, host)
        return False
    LOGGER.info("healthcheck ok | host=%s status=%s", host, response.status_code)
    return True
