from __future__ import annotations

import threading
import time
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from promoscraper.errors import ReconciliationError
from promoscraper.records import ProductDiscountRecord
from promoscraper.storage import reconcile as reconcile_module
from promoscraper.storage import repo
from promoscraper.storage.db import get_engine, init_db, make_session
from promoscraper.storage.models_sql import Discount, Product, ScheduledRun
from promoscraper.storage.reconcile import advisory_lock_key, prepare_records, reconcile, reconcile_retailer

EXPIRES = date(2024, 5, 14)


def _record(name: str, *, retailer: str = "Dirk", category: str = "Fruit", price: str = "1.99") -> ProductDiscountRecord:
    return ProductDiscountRecord(
        name=name,
        original_price=Decimal("2.49"),
        discount_price=Decimal(price),
        promotional_tag="1+1 gratis",
        category=category,
        retailer=retailer,
        expires_on=EXPIRES,
    )


def _active(session, retailer: str | None = None) -> list[Discount]:
    stmt = select(Discount).join(Product).where(Discount.active.is_(True))
    if retailer:
        stmt = stmt.where(Product.retailer == retailer)
    return list(session.scalars(stmt))


def test_first_reconcile_creates_products_discounts_and_schedule(db_session) -> None:
    summary = reconcile(db_session, "Dirk", [_record("Appels"), _record("Peren")], EXPIRES)
    db_session.commit()

    assert summary.products_created == 2
    assert summary.products_updated == 0
    assert summary.discounts_created == 2
    assert summary.discounts_deactivated == 0
    scheduled = db_session.scalars(select(ScheduledRun)).one()
    assert scheduled.next_run_at == datetime(2024, 5, 15, 0, 0)
    assert scheduled.enabled is True


def test_reconcile_twice_keeps_one_active_discount_per_product(db_session) -> None:
    records = [_record("Appels"), _record("Peren"), _record("Bananen")]
    reconcile(db_session, "Dirk", records, EXPIRES)
    db_session.commit()
    summary = reconcile(db_session, "Dirk", records, EXPIRES)
    db_session.commit()

    active = _active(db_session, "Dirk")
    assert len(active) == 3
    assert len({discount.product_id for discount in active}) == 3
    assert summary.products_updated == 3
    assert summary.discounts_deactivated == 3
    assert db_session.execute(select(func.count(Discount.id))).scalar_one() == 6


def test_shrinking_result_set_retires_missing_products(db_session) -> None:
    names = [f"Product {index}" for index in range(10)]
    reconcile(db_session, "Dirk", [_record(name) for name in names], EXPIRES)
    db_session.commit()

    summary = reconcile(db_session, "Dirk", [_record(name) for name in names[:7]], EXPIRES)
    db_session.commit()

    assert summary.discounts_deactivated == 10
    assert summary.discounts_created == 7
    assert len(_active(db_session, "Dirk")) == 7
    inactive_products = {
        discount.product_id
        for discount in db_session.scalars(select(Discount).where(Discount.active.is_(False)))
    }
    active_products = {discount.product_id for discount in _active(db_session, "Dirk")}
    assert len(inactive_products - active_products) == 3
    assert db_session.execute(select(func.count(Product.id))).scalar_one() == 10


def test_reconcile_is_scoped_to_one_retailer(db_session) -> None:
    reconcile(db_session, "PLUS", [_record("Kaas", retailer="PLUS")], EXPIRES)
    reconcile(db_session, "Dirk", [_record("Kaas")], EXPIRES)
    db_session.commit()

    reconcile(db_session, "Dirk", [_record("Melk")], EXPIRES)
    db_session.commit()

    plus_active = _active(db_session, "PLUS")
    assert len(plus_active) == 1
    assert [discount.product.name for discount in _active(db_session, "Dirk")] == ["Melk"]


def test_product_names_are_unique_per_retailer(db_session) -> None:
    reconcile(db_session, "Dirk", [_record("Kaas", category="Zuivel")], EXPIRES)
    reconcile(db_session, "Dirk", [_record("Kaas", category="Kaas & vleeswaren")], EXPIRES)
    reconcile(db_session, "PLUS", [_record("Kaas", retailer="PLUS")], EXPIRES)
    db_session.commit()

    rows = db_session.execute(
        select(Product.name, Product.retailer, func.count(Product.id)).group_by(Product.name, Product.retailer)
    ).all()
    assert all(count == 1 for _, _, count in rows)
    dirk_kaas = db_session.scalars(select(Product).where(Product.retailer == "Dirk")).one()
    assert dirk_kaas.category == "Kaas & vleeswaren"


def test_every_discount_references_an_existing_product(db_session) -> None:
    reconcile(db_session, "Dirk", [_record("Appels"), _record("Peren")], EXPIRES)
    reconcile(db_session, "Dirk", [_record("Peren")], EXPIRES)
    db_session.commit()

    orphans = db_session.execute(
        select(func.count(Discount.id))
        .select_from(Discount)
        .outerjoin(Product, Discount.product_id == Product.id)
        .where(Product.id.is_(None))
    ).scalar_one()
    assert orphans == 0


def test_empty_names_and_duplicates_are_discarded(db_session) -> None:
    summary = reconcile(
        db_session,
        "Dirk",
        [_record("Appels", price="1.00"), _record(""), _record("  "), _record("Appels", price="9.99")],
        EXPIRES,
    )
    db_session.commit()

    assert summary.records_discarded == 3
    assert summary.discounts_created == 1
    (discount,) = _active(db_session, "Dirk")
    assert discount.discount_price == Decimal("1.00")


def test_prepare_records_keeps_first_occurrence() -> None:
    kept, discarded = prepare_records([_record("A", price="1"), _record("B"), _record("A", price="2")])
    assert [record.name for record in kept] == ["A", "B"]
    assert kept[0].discount_price == Decimal("1")
    assert discarded == 1


def test_reconcile_retailer_commits_in_one_transaction(session_factory) -> None:
    summary = reconcile_retailer(session_factory, "Dirk", [_record("Appels")], EXPIRES)

    assert summary.discounts_created == 1
    with session_factory() as session:
        assert len(_active(session, "Dirk")) == 1


def test_reconcile_retailer_rolls_back_on_database_error(session_factory, monkeypatch) -> None:
    reconcile_retailer(session_factory, "Dirk", [_record("Appels")], EXPIRES)

    def broken_insert(*args, **kwargs):
        raise OperationalError("INSERT INTO discounts", {}, Exception("disk I/O error"))

    monkeypatch.setattr(reconcile_module.repo, "insert_discount", broken_insert)
    with pytest.raises(ReconciliationError):
        reconcile_retailer(session_factory, "Dirk", [_record("Peren")], EXPIRES)

    with session_factory() as session:
        active = _active(session, "Dirk")
        assert [discount.product.name for discount in active] == ["Appels"]
        assert repo.get_scheduled_run(session, "Dirk") is not None


def test_advisory_lock_key_is_stable_signed_int() -> None:
    key = advisory_lock_key("Albert Heijn")
    assert key == advisory_lock_key("Albert Heijn")
    assert -(2**31) <= key < 2**31


def _run_concurrently(session_factory, monkeypatch, retailers: list[str]) -> list[tuple[str, float, float]]:
    """Reconcile *retailers* on parallel threads through a slowed ``reconcile``."""

    spans: list[tuple[str, float, float]] = []
    spans_guard = threading.Lock()
    real_reconcile = reconcile_module.reconcile

    def slow_reconcile(session, retailer, records, expires_on):
        started = time.monotonic()
        time.sleep(0.2)
        summary = real_reconcile(session, retailer, records, expires_on)
        with spans_guard:
            spans.append((retailer, started, time.monotonic()))
        return summary

    monkeypatch.setattr(reconcile_module, "reconcile", slow_reconcile)
    barrier = threading.Barrier(len(retailers))
    errors: list[Exception] = []

    def worker(retailer: str) -> None:
        barrier.wait()
        try:
            reconcile_retailer(session_factory, retailer, [_record("Appels", retailer=retailer)], EXPIRES)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(retailer,)) for retailer in retailers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    assert errors == []
    return sorted(spans, key=lambda span: span[1])


@pytest.fixture()
def file_session_factory(tmp_path):
    engine = get_engine(f"sqlite:///{tmp_path / 'promos.sqlite'}")
    init_db(engine)
    try:
        yield make_session(engine)
    finally:
        engine.dispose()


def test_same_retailer_reconciliations_run_one_at_a_time(file_session_factory, monkeypatch) -> None:
    spans = _run_concurrently(file_session_factory, monkeypatch, ["Dirk", "Dirk"])

    assert len(spans) == 2
    (_, _, first_end), (_, second_start, _) = spans
    assert second_start >= first_end

    with file_session_factory() as session:
        assert len(_active(session, "Dirk")) == 1


def test_different_retailers_reconcile_in_parallel(file_session_factory, monkeypatch) -> None:
    spans = _run_concurrently(file_session_factory, monkeypatch, ["Dirk", "PLUS"])

    assert {retailer for retailer, _, _ in spans} == {"Dirk", "PLUS"}
    (_, _, first_end), (_, second_start, _) = spans
    assert second_start < first_end

    with file_session_factory() as session:
        assert len(_active(session, "Dirk")) == 1
        assert len(_active(session, "PLUS")) == 1
