from __future__ import annotations

import pytest
from sqlalchemy.orm import sessionmaker

from promoscraper.config import Settings
from promoscraper.storage.db import get_engine, init_db, make_session


@pytest.fixture()
def engine():
    engine = get_engine("sqlite:///:memory:")
    init_db(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return make_session(engine)


@pytest.fixture()
def db_session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite:///:memory:",
        cookie_timeout_ms=10,
        selector_timeout_ms=10,
        navigation_timeout_ms=10,
    )
