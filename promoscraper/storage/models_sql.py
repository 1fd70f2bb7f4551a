"""SQLAlchemy ORM models for application storage."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_FAILED = "failed"
RUN_EMPTY = "empty"
RUN_STATUSES = (RUN_RUNNING, RUN_SUCCESS, RUN_FAILED, RUN_EMPTY)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""


class Product(Base):
    """A product as sold by one retailer; unique per (name, retailer)."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="")
    retailer: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    discounts: Mapped[list["Discount"]] = relationship(back_populates="product")

    __table_args__ = (
        UniqueConstraint("name", "retailer", name="uq_products_name_retailer"),
        Index("ix_products_retailer", "retailer"),
        Index("ix_products_category", "category"),
    )


class Discount(Base):
    """One promotion period's price for a product; retired rows keep active=False."""

    __tablename__ = "discounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id"), nullable=False)
    original_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    discount_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    promotional_tag: Mapped[str] = mapped_column(String, nullable=False, default="")
    expires_on: Mapped[date] = mapped_column(Date, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    product: Mapped[Product] = relationship(back_populates="discounts")

    __table_args__ = (
        Index("ix_discounts_product_active", "product_id", "active"),
        Index("ix_discounts_expires_on", "expires_on"),
    )


class ScheduledRun(Base):
    """Next planned scrape for a retailer, derived from its promotion expiry."""

    __tablename__ = "scheduled_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    retailer: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    # Naive local wall-clock time; the scheduler compares it with datetime.now().
    next_run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    promotion_expires_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ScraperRun(Base):
    """Audit record of one scrape run; finalized exactly once."""

    __tablename__ = "scraper_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    retailer: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=RUN_RUNNING)
    products_scraped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    products_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    products_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discounts_deactivated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discounts_created: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_scraper_runs_retailer_started", "retailer", "started_at"),
        Index("ix_scraper_runs_status", "status"),
    )
