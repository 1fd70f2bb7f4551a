"""Drive one retailer scrape from browser launch to reconciled discounts."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from promoscraper.alerts.notifier import Notifier, ping_healthcheck
from promoscraper.browser import BrowserSession
from promoscraper.config import RetailerConfig, ScrapeTarget, Settings
from promoscraper.discovery import discover_category
from promoscraper.errors import ScraperError
from promoscraper.logging_config import get_logger, retailer_logger
from promoscraper.promotions import read_expiry_date
from promoscraper.records import ProductDiscountRecord
from promoscraper.retailers.base import ExtractionProtocol, extract_product
from promoscraper.retailers.registry import get_extractor
from promoscraper.storage import repo
from promoscraper.storage.models_sql import RUN_EMPTY, RUN_FAILED, RUN_SUCCESS
from promoscraper.storage.reconcile import ReconciliationSummary, prepare_records, reconcile_retailer

LOGGER = get_logger(__name__)


class ScrapeState(str, Enum):
    INIT = "init"
    NAVIGATED = "navigated"
    COOKIES_HANDLED = "cookies_handled"
    EXPIRY_READ = "expiry_read"
    CATEGORY_SCAN = "category_scan"
    PRODUCT_SCAN = "product_scan"
    CLOSED = "closed"


@dataclass
class ScrapeResult:
    retailer: str
    expires_on: date
    records: list[ProductDiscountRecord] = field(default_factory=list)
    categories_scanned: int = 0
    categories_skipped: int = 0
    products_dropped: int = 0


async def scrape_target(
    target: ScrapeTarget,
    *,
    settings: Settings,
    session: Any | None = None,
    extractor: ExtractionProtocol | None = None,
    today: date | None = None,
) -> ScrapeResult:
    """Scrape every configured category of *target* into records.

    Session, navigation and expiry failures propagate as
    :class:`~promoscraper.errors.ScraperError`; a missing category or a
    failing product is logged and skipped. The browser session is closed on
    every path.
    """

    log = retailer_logger(LOGGER, target.name)
    extractor = extractor or get_extractor(target.extractor)
    session = session or BrowserSession(
        retailer=target.name,
        navigation_timeout_ms=settings.navigation_timeout_ms,
    )
    identifiers = target.identifiers
    state = ScrapeState.INIT

    def advance(new_state: ScrapeState) -> None:
        nonlocal state
        log.debug("State %s -> %s", state.value, new_state.value)
        state = new_state

    try:
        await session.launch()
        await session.navigate(target.url)
        advance(ScrapeState.NAVIGATED)

        await session.dismiss_cookie_banner(identifiers.cookie_decline, timeout_ms=settings.cookie_timeout_ms)
        advance(ScrapeState.COOKIES_HANDLED)

        expires_on = await read_expiry_date(
            session.page,
            identifiers.promotion_expires,
            timeout_ms=settings.selector_timeout_ms,
            retailer=target.name,
            today=today,
        )
        advance(ScrapeState.EXPIRY_READ)

        result = ScrapeResult(retailer=target.name, expires_on=expires_on)
        for category_selector in identifiers.product_categories:
            advance(ScrapeState.CATEGORY_SCAN)
            scan = await discover_category(
                session.page,
                category_selector,
                identifiers.products,
                retailer=target.name,
            )
            result.categories_scanned += 1
            if not scan.products:
                log.warning("No products in category %r; skipping", category_selector)
                result.categories_skipped += 1
                continue

            advance(ScrapeState.PRODUCT_SCAN)
            for index, handle in enumerate(scan.products):
                try:
                    fields = await extract_product(extractor, handle, identifiers.product_fields)
                except Exception as exc:
                    log.warning("Dropping product %d in category %r: %s", index, scan.name, exc)
                    result.products_dropped += 1
                    continue
                result.records.append(
                    ProductDiscountRecord(
                        name=fields.name,
                        original_price=fields.original_price,
                        discount_price=fields.discount_price,
                        promotional_tag=fields.promotional_tag,
                        category=scan.name,
                        retailer=target.name,
                        expires_on=expires_on,
                    )
                )
                log.debug("Scraped %r in %r", fields.name, scan.name)
    finally:
        await session.close()
        advance(ScrapeState.CLOSED)

    log.info(
        "Scraped %d products from %d categories (%d skipped, %d products dropped)",
        len(result.records),
        result.categories_scanned,
        result.categories_skipped,
        result.products_dropped,
    )
    return result


@dataclass
class RunOutcome:
    run_id: int | None
    retailer: str
    status: str
    products_scraped: int = 0
    summary: ReconciliationSummary | None = None
    error: str | None = None
    expires_on: date | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == RUN_SUCCESS

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.ok,
            "run_id": self.run_id,
            "retailer": self.retailer,
            "status": self.status,
            "products_scraped": self.products_scraped,
            "expires_on": self.expires_on.isoformat() if self.expires_on else None,
            "duration_seconds": self.duration_seconds,
        }
        if self.summary is not None:
            data.update(self.summary.as_dict())
        if self.error:
            data["error"] = self.error
        return data


Scraper = Callable[..., Awaitable[ScrapeResult]]


def _finalize(
    session_factory: sessionmaker[Session], finalizer: Callable[..., bool], run_id: int, *args, **kwargs
) -> bool:
    """Record the outcome of *run_id*; a database failure is logged, not raised."""

    try:
        with session_factory() as session, session.begin():
            return finalizer(session, run_id, *args, **kwargs)
    except SQLAlchemyError as exc:
        LOGGER.error("Could not record the outcome of run %s: %s", run_id, exc)
        return False


async def run_scrape(
    key: str,
    *,
    retailers: RetailerConfig,
    session_factory: sessionmaker[Session],
    settings: Settings,
    notifier: Notifier | None = None,
    scraper: Scraper = scrape_target,
) -> RunOutcome:
    """Scrape and reconcile one retailer, recording the run in ``scraper_runs``.

    Unknown keys raise :class:`~promoscraper.errors.UnknownRetailerError`
    before anything is written; every per-run failure is captured in the
    returned :class:`RunOutcome` instead of raised.
    """

    target = retailers.target(key)
    log = retailer_logger(LOGGER, target.name)
    started = time.monotonic()

    def elapsed() -> float:
        return round(time.monotonic() - started, 3)

    try:
        with session_factory() as db, db.begin():
            run_id = repo.create_run(db, target.name).id
    except SQLAlchemyError as exc:
        message = f"Could not start run: {exc}"
        log.error("%s", message)
        if notifier is not None:
            notifier.notify_run_failed(target.name, message, run_id=None)
        return RunOutcome(
            run_id=None, retailer=target.name, status=RUN_FAILED, error=message, duration_seconds=elapsed()
        )

    def failed(message: str, *, products_scraped: int = 0) -> RunOutcome:
        log.error("Run %s failed: %s", run_id, message)
        _finalize(session_factory, repo.finalize_run_failure, run_id, message, products_scraped=products_scraped)
        if notifier is not None:
            notifier.notify_run_failed(target.name, message, run_id=run_id)
        return RunOutcome(
            run_id=run_id,
            retailer=target.name,
            status=RUN_FAILED,
            products_scraped=products_scraped,
            error=message,
            duration_seconds=elapsed(),
        )

    try:
        result = await scraper(target, settings=settings)
    except ScraperError as exc:
        return failed(str(exc))
    except Exception as exc:
        log.exception("Unexpected error while scraping")
        return failed(f"{type(exc).__name__}: {exc}")

    records, _ = prepare_records(result.records, retailer=target.name)
    if not records and not settings.allow_empty_reconcile:
        message = "No products scraped; existing discounts kept"
        log.warning("Run %s produced no products; skipping reconciliation", run_id)
        _finalize(session_factory, repo.finalize_run_empty, run_id, message)
        if notifier is not None:
            notifier.notify_run_empty(target.name, run_id=run_id)
        return RunOutcome(
            run_id=run_id,
            retailer=target.name,
            status=RUN_EMPTY,
            error=message,
            expires_on=result.expires_on,
            duration_seconds=elapsed(),
        )

    try:
        summary = reconcile_retailer(session_factory, target.name, records, result.expires_on)
    except ScraperError as exc:
        return failed(str(exc), products_scraped=len(records))

    _finalize(
        session_factory,
        repo.finalize_run_success,
        run_id,
        products_scraped=len(records),
        products_created=summary.products_created,
        products_updated=summary.products_updated,
        discounts_created=summary.discounts_created,
        discounts_deactivated=summary.discounts_deactivated,
    )
    if settings.healthcheck_url:
        ping_healthcheck(settings.healthcheck_url)
    return RunOutcome(
        run_id=run_id,
        retailer=target.name,
        status=RUN_SUCCESS,
        products_scraped=len(records),
        summary=summary,
        expires_on=result.expires_on,
        duration_seconds=elapsed(),
    )
