"""Database connectivity helpers."""

from __future__ import annotations

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from promoscraper.logging_config import get_logger

from .models_sql import Base

LOGGER = get_logger(__name__)


def _apply_sqlite_pragmas(engine: Engine, timeout_value: float) -> None:
    """Enable WAL mode and foreign keys so API reads do not block scraper writes."""

    busy_ms = int(timeout_value * 1000)
    in_memory = engine.url.database in (None, "", ":memory:")

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):  # pragma: no cover - exercised via engine use
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute(f"PRAGMA busy_timeout = {busy_ms}")
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
        finally:
            cursor.close()


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


def get_engine(url: str, *, busy_timeout: int | float | None = None, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine for *url*; SQLite gets connection pragmas."""

    timeout_value = float(busy_timeout) if busy_timeout is not None else 30.0
    parsed = make_url(url)

    if parsed.get_backend_name() == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": timeout_value}}
        if parsed.database in (None, "", ":memory:"):
            # One shared connection so every session sees the same in-memory database.
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, future=True, echo=echo, **kwargs)
        _apply_sqlite_pragmas(engine, timeout_value)
        return engine

    return create_engine(url, future=True, echo=echo, pool_pre_ping=True)


def make_session(engine: Engine) -> sessionmaker[Session]:
    """Create a configured session factory bound to *engine*."""

    return sessionmaker(engine, expire_on_commit=False, future=True)


def init_db(engine: Engine) -> None:
    """Initialise database schema, creating only missing tables."""

    Base.metadata.create_all(engine, checkfirst=True)
    LOGGER.info("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))


def test_connection(engine: Engine) -> bool:
    """Return True when a trivial query succeeds against *engine*."""

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as exc:
        LOGGER.error("Database connection failed: %s", exc)
        return False
    return True


# pytest would otherwise collect this helper from test modules that import it.
test_connection.__test__ = False  # type: ignore[attr-defined]
