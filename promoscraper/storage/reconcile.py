"""Replace a retailer's discount set with the result of its latest scrape.

Soft reconciliation: products are upserted and never deleted, the retailer's
previously active discounts are marked inactive and one fresh active discount
is inserted per scraped record. Deactivate and insert share one transaction
so readers never observe a retailer without active discounts.
"""

from __future__ import annotations

import threading
import zlib
from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterable

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from promoscraper.errors import ReconciliationError
from promoscraper.logging_config import get_logger, retailer_logger
from promoscraper.records import ProductDiscountRecord

from . import repo
from .db import is_postgres

LOGGER = get_logger(__name__)

_LOCKS_GUARD = threading.Lock()
_RETAILER_LOCKS: dict[str, threading.Lock] = defaultdict(threading.Lock)


@dataclass(frozen=True)
class ReconciliationSummary:
    products_created: int = 0
    products_updated: int = 0
    discounts_created: int = 0
    discounts_deactivated: int = 0
    records_discarded: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def retailer_lock(retailer: str) -> threading.Lock:
    """Process-wide lock serialising reconciliations of one retailer."""

    with _LOCKS_GUARD:
        return _RETAILER_LOCKS[retailer]


def advisory_lock_key(retailer: str) -> int:
    """Stable signed 32-bit key for ``pg_advisory_xact_lock``."""

    value = zlib.crc32(retailer.encode("utf-8"))
    return value - (1 << 32) if value >= (1 << 31) else value


def prepare_records(
    records: Iterable[ProductDiscountRecord], *, retailer: str | None = None
) -> tuple[list[ProductDiscountRecord], int]:
    """Drop empty-named records and repeated names (first occurrence wins).

    Returns the kept records and how many were discarded.
    """

    log = retailer_logger(LOGGER, retailer or "-")
    kept: list[ProductDiscountRecord] = []
    seen: set[str] = set()
    empty = duplicates = 0
    for record in records:
        name = record.name.strip()
        if not name:
            empty += 1
            continue
        if name in seen:
            duplicates += 1
            continue
        seen.add(name)
        kept.append(record)
    if empty:
        log.warning("Discarded %d records without a product name", empty)
    if duplicates:
        log.info("Skipped %d duplicate product names", duplicates)
    return kept, empty + duplicates


def reconcile(
    session: Session,
    retailer: str,
    records: Iterable[ProductDiscountRecord],
    expires_on: date,
) -> ReconciliationSummary:
    """Apply one scrape result for *retailer* inside the caller's transaction.

    Only flushes; committing or rolling back belongs to the caller.
    """

    log = retailer_logger(LOGGER, retailer)
    kept, discarded = prepare_records(records, retailer=retailer)

    products = []
    created = updated = 0
    for record in kept:
        product, is_new = repo.upsert_product(session, record.name.strip(), retailer, record.category)
        products.append(product)
        if is_new:
            created += 1
        else:
            updated += 1

    deactivated = repo.deactivate_discounts_for_retailer(session, retailer)

    for record, product in zip(kept, products):
        repo.insert_discount(
            session,
            product,
            original_price=record.original_price,
            discount_price=record.discount_price,
            promotional_tag=record.promotional_tag,
            expires_on=record.expires_on,
        )

    repo.upsert_scheduled_run(session, retailer, expires_on)

    summary = ReconciliationSummary(
        products_created=created,
        products_updated=updated,
        discounts_created=len(kept),
        discounts_deactivated=deactivated,
        records_discarded=discarded,
    )
    log.info(
        "Reconciled: %d products created, %d updated, %d discounts deactivated, %d created",
        summary.products_created,
        summary.products_updated,
        summary.discounts_deactivated,
        summary.discounts_created,
    )
    return summary


def reconcile_retailer(
    session_factory: sessionmaker[Session],
    retailer: str,
    records: Iterable[ProductDiscountRecord],
    expires_on: date,
) -> ReconciliationSummary:
    """Run :func:`reconcile` in its own transaction under the retailer's lock.

    Raises :class:`ReconciliationError` after rolling back on any database error.
    """

    records = list(records)
    with retailer_lock(retailer):
        try:
            with session_factory() as session, session.begin():
                if is_postgres(session.get_bind()):
                    session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_lock_key(retailer)})
                return reconcile(session, retailer, records, expires_on)
        except SQLAlchemyError as exc:
            retailer_logger(LOGGER, retailer).error("Reconciliation failed and was rolled back: %s", exc)
            raise ReconciliationError(f"Reconciliation failed for {retailer}: {exc}", retailer=retailer) from exc
