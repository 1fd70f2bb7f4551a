"""Repository helpers for interacting with persistent storage."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from promoscraper.logging_config import get_logger
from promoscraper.promotions import calculate_next_run

from .models_sql import (
    RUN_EMPTY,
    RUN_FAILED,
    RUN_RUNNING,
    RUN_SUCCESS,
    Discount,
    Product,
    ScheduledRun,
    ScraperRun,
    utcnow,
)

LOGGER = get_logger(__name__)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as the UTC they were stored as."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Products ------------------------------------------------------------------


def upsert_product(session: Session, name: str, retailer: str, category: str) -> tuple[Product, bool]:
    """Insert or refresh the product keyed by ``(name, retailer)``.

    Returns the product and whether it was created. Existing rows only have
    ``category`` and ``updated_at`` touched.
    """

    stmt = select(Product).where(Product.name == name, Product.retailer == retailer)
    product = session.execute(stmt).scalar_one_or_none()
    created = product is None
    if product is None:
        product = Product(name=name, retailer=retailer, category=category)
        session.add(product)
    else:
        product.category = category
        product.updated_at = utcnow()
    session.flush()
    return product, created


def get_product(session: Session, product_id: int) -> Product | None:
    return session.get(Product, product_id)


def list_products(
    session: Session,
    *,
    retailer: str | None = None,
    category: str | None = None,
) -> list[Product]:
    stmt = select(Product)
    if retailer:
        stmt = stmt.where(Product.retailer == retailer)
    if category:
        stmt = stmt.where(Product.category == category)
    stmt = stmt.order_by(Product.retailer, Product.category, Product.name)
    return list(session.scalars(stmt))


def search_products(session: Session, term: str, *, limit: int = 100) -> list[Product]:
    """Case-insensitive substring search on product names."""

    pattern = f"%{term.strip()}%"
    stmt = select(Product).where(Product.name.ilike(pattern)).order_by(Product.name).limit(limit)
    return list(session.scalars(stmt))


def count_products(session: Session) -> int:
    return int(session.execute(select(func.count(Product.id))).scalar_one())


# Discounts -----------------------------------------------------------------


def insert_discount(
    session: Session,
    product: Product,
    *,
    original_price: Decimal,
    discount_price: Decimal,
    promotional_tag: str,
    expires_on: date,
) -> Discount:
    if product.id is None:
        session.flush()
    discount = Discount(
        product_id=product.id,
        original_price=original_price,
        discount_price=discount_price,
        promotional_tag=promotional_tag,
        expires_on=expires_on,
        active=True,
    )
    session.add(discount)
    session.flush()
    return discount


def deactivate_discounts_for_retailer(session: Session, retailer: str) -> int:
    """Mark every active discount of *retailer*'s products inactive; returns the count."""

    retailer_products = select(Product.id).where(Product.retailer == retailer)
    stmt = (
        update(Discount)
        .where(Discount.active.is_(True), Discount.product_id.in_(retailer_products))
        .values(active=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    result = session.execute(stmt)
    session.flush()
    return int(result.rowcount or 0)


def deactivate_expired_discounts(session: Session, today: date) -> int:
    """Retire active discounts whose promotion ended before *today*."""

    stmt = (
        update(Discount)
        .where(Discount.active.is_(True), Discount.expires_on < today)
        .values(active=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    result = session.execute(stmt)
    session.flush()
    count = int(result.rowcount or 0)
    if count:
        LOGGER.info("Deactivated %d expired discounts", count)
    return count


def list_active_discounts(session: Session, *, retailer: str | None = None) -> list[tuple[Discount, Product]]:
    stmt = (
        select(Discount, Product)
        .join(Product, Discount.product_id == Product.id)
        .where(Discount.active.is_(True))
    )
    if retailer:
        stmt = stmt.where(Product.retailer == retailer)
    stmt = stmt.order_by(Product.retailer, Product.category, Product.name)
    return [(row[0], row[1]) for row in session.execute(stmt)]


def discounts_for_product(session: Session, product_id: int) -> list[Discount]:
    stmt = select(Discount).where(Discount.product_id == product_id).order_by(Discount.id)
    return list(session.scalars(stmt))


def count_active_discounts(session: Session) -> int:
    stmt = select(func.count(Discount.id)).where(Discount.active.is_(True))
    return int(session.execute(stmt).scalar_one())


# Scheduled runs ------------------------------------------------------------


def upsert_scheduled_run(
    session: Session,
    retailer: str,
    expires_on: date,
    *,
    enabled: bool = True,
) -> ScheduledRun:
    """Schedule *retailer*'s next run for midnight after *expires_on*."""

    next_run_at = calculate_next_run(expires_on)
    scheduled = get_scheduled_run(session, retailer)
    if scheduled is None:
        scheduled = ScheduledRun(retailer=retailer, next_run_at=next_run_at)
        session.add(scheduled)
    scheduled.next_run_at = next_run_at
    scheduled.promotion_expires_on = expires_on
    scheduled.enabled = enabled
    scheduled.updated_at = utcnow()
    session.flush()
    LOGGER.info("Scheduled next %s run at %s", retailer, next_run_at.isoformat())
    return scheduled


def get_scheduled_run(session: Session, retailer: str) -> ScheduledRun | None:
    stmt = select(ScheduledRun).where(ScheduledRun.retailer == retailer)
    return session.execute(stmt).scalar_one_or_none()


def list_scheduled_runs(session: Session, *, enabled_only: bool = False) -> list[ScheduledRun]:
    stmt = select(ScheduledRun)
    if enabled_only:
        stmt = stmt.where(ScheduledRun.enabled.is_(True))
    return list(session.scalars(stmt.order_by(ScheduledRun.next_run_at)))


def list_due_scheduled_runs(session: Session, now: datetime) -> list[ScheduledRun]:
    """Enabled schedules whose ``next_run_at`` is at or before *now* (naive local)."""

    stmt = (
        select(ScheduledRun)
        .where(ScheduledRun.enabled.is_(True), ScheduledRun.next_run_at <= now)
        .order_by(ScheduledRun.next_run_at)
    )
    return list(session.scalars(stmt))


def set_scheduled_run_enabled(session: Session, retailer: str, enabled: bool) -> ScheduledRun | None:
    scheduled = get_scheduled_run(session, retailer)
    if scheduled is None:
        LOGGER.warning("No scheduled run for %s to %s", retailer, "enable" if enabled else "disable")
        return None
    scheduled.enabled = enabled
    scheduled.updated_at = utcnow()
    session.flush()
    return scheduled


def update_next_run_at(session: Session, retailer: str, next_run_at: datetime) -> ScheduledRun | None:
    scheduled = get_scheduled_run(session, retailer)
    if scheduled is None:
        LOGGER.warning("No scheduled run for %s to move to %s", retailer, next_run_at.isoformat())
        return None
    scheduled.next_run_at = next_run_at
    scheduled.updated_at = utcnow()
    session.flush()
    return scheduled


# Scraper runs --------------------------------------------------------------


def create_run(session: Session, retailer: str) -> ScraperRun:
    run = ScraperRun(retailer=retailer, status=RUN_RUNNING, started_at=utcnow())
    session.add(run)
    session.flush()
    LOGGER.info("Started scraper run %s for %s", run.id, retailer)
    return run


def _finalize(session: Session, run_id: int, status: str, **values: Any) -> bool:
    run = session.get(ScraperRun, run_id)
    if run is None:
        LOGGER.warning("Cannot finalize unknown scraper run %s", run_id)
        return False
    if run.status != RUN_RUNNING:
        LOGGER.warning("Scraper run %s already finalized as %s; refusing %s", run_id, run.status, status)
        return False

    completed_at = utcnow()
    started_at = as_utc(run.started_at) or completed_at
    run.status = status
    run.completed_at = completed_at
    run.duration_seconds = round((completed_at - started_at).total_seconds(), 3)
    for key, value in values.items():
        setattr(run, key, value)
    session.flush()
    LOGGER.info("Scraper run %s for %s finished: %s", run_id, run.retailer, status)
    return True


def finalize_run_success(
    session: Session,
    run_id: int,
    *,
    products_scraped: int,
    products_created: int = 0,
    products_updated: int = 0,
    discounts_created: int = 0,
    discounts_deactivated: int = 0,
) -> bool:
    return _finalize(
        session,
        run_id,
        RUN_SUCCESS,
        products_scraped=products_scraped,
        products_created=products_created,
        products_updated=products_updated,
        discounts_created=discounts_created,
        discounts_deactivated=discounts_deactivated,
    )


def finalize_run_failure(session: Session, run_id: int, error_message: str, *, products_scraped: int = 0) -> bool:
    return _finalize(
        session,
        run_id,
        RUN_FAILED,
        error_message=error_message,
        products_scraped=products_scraped,
    )


def finalize_run_empty(session: Session, run_id: int, message: str) -> bool:
    return _finalize(session, run_id, RUN_EMPTY, error_message=message, products_scraped=0)


def get_run(session: Session, run_id: int) -> ScraperRun | None:
    return session.get(ScraperRun, run_id)


def list_runs(session: Session, *, limit: int = 100) -> list[ScraperRun]:
    stmt = select(ScraperRun).order_by(ScraperRun.started_at.desc(), ScraperRun.id.desc()).limit(limit)
    return list(session.scalars(stmt))


def list_runs_for_retailer(session: Session, retailer: str, *, limit: int = 50) -> list[ScraperRun]:
    stmt = (
        select(ScraperRun)
        .where(ScraperRun.retailer == retailer)
        .order_by(ScraperRun.started_at.desc(), ScraperRun.id.desc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def last_run_for_retailer(session: Session, retailer: str, *, status: str | None = None) -> ScraperRun | None:
    stmt = select(ScraperRun).where(ScraperRun.retailer == retailer)
    if status:
        stmt = stmt.where(ScraperRun.status == status)
    stmt = stmt.order_by(ScraperRun.started_at.desc(), ScraperRun.id.desc()).limit(1)
    return session.execute(stmt).scalar_one_or_none()


def run_stats(session: Session) -> dict[str, Any]:
    """Totals over all runs; ``success_rate`` is a percentage rounded to 2 decimals."""

    stmt = select(
        func.count(ScraperRun.id),
        func.sum(case((ScraperRun.status == RUN_SUCCESS, 1), else_=0)),
        func.sum(case((ScraperRun.status == RUN_FAILED, 1), else_=0)),
        func.sum(case((ScraperRun.status == RUN_EMPTY, 1), else_=0)),
    )
    total, successful, failed, empty = session.execute(stmt).one()
    total = int(total or 0)
    successful = int(successful or 0)
    rate = round(successful / total * 100, 2) if total else 0.0
    return {
        "total_runs": total,
        "successful_runs": successful,
        "failed_runs": int(failed or 0),
        "empty_runs": int(empty or 0),
        "success_rate": rate,
    }


# Dashboard -----------------------------------------------------------------


def dashboard_stats(session: Session) -> dict[str, Any]:
    stats = run_stats(session)
    upcoming = list_scheduled_runs(session, enabled_only=True)
    next_run = upcoming[0] if upcoming else None
    return {
        "total_runs": stats["total_runs"],
        "success_rate": stats["success_rate"],
        "scraped_products": count_active_discounts(session),
        "unique_products": count_products(session),
        "next_scheduled_run": (
            f"{next_run.retailer} at {next_run.next_run_at.isoformat(sep=' ', timespec='minutes')}"
            if next_run
            else "Not scheduled"
        ),
    }


def retailer_statuses(session: Session, retailers: Iterable[tuple[str, str]]) -> list[dict[str, Any]]:
    """Latest run state per ``(key, display name)`` pair, ``pending`` when never run."""

    active_counts = dict(
        session.execute(
            select(Product.retailer, func.count(func.distinct(Product.id)))
            .join(Discount, Discount.product_id == Product.id)
            .where(Discount.active.is_(True))
            .group_by(Product.retailer)
        ).all()
    )

    statuses: list[dict[str, Any]] = []
    for key, name in retailers:
        last_run = last_run_for_retailer(session, name)
        if last_run is None:
            statuses.append({"key": key, "name": name, "status": "pending"})
            continue
        last_seen = as_utc(last_run.completed_at or last_run.started_at)
        statuses.append(
            {
                "key": key,
                "name": name,
                "status": last_run.status,
                "last_run": last_seen.isoformat() if last_seen else None,
                "products_scraped": int(active_counts.get(name, 0)),
                "run_id": last_run.id,
            }
        )
    return statuses
