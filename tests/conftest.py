from pathlib import Path
from typing import Any, Callable, Generator

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import LedgerSettings
from db.db import create_db_engine, init_db
from db.models import Base
from services.ledger_engine import LedgerEngine
from tests.helpers.clock import ManualClock
from tests.helpers.price_sources import ScriptedPriceSource

engine: Engine = create_db_engine("sqlite:///:memory:")
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def file_session_factory(tmp_path: Path) -> sessionmaker[Session]:
    """Database shared between threads; the in-memory one is per thread."""
    return init_db(db_file=tmp_path / "turnip_market.db")


@pytest.fixture(scope="function")
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture(scope="function")
def price_source() -> ScriptedPriceSource:
    return ScriptedPriceSource(default=20)


@pytest.fixture(scope="function")
def settings() -> LedgerSettings:
    return LedgerSettings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture(scope="function")
def sessions() -> sessionmaker[Session]:
    return session_factory


@pytest.fixture(scope="function")
def make_ledger(price_source: ScriptedPriceSource, clock: ManualClock) -> Callable[..., LedgerEngine]:
    def _make(*, source: ScriptedPriceSource | None = None, **overrides: Any) -> LedgerEngine:
        settings = LedgerSettings(_env_file=None, **overrides)  # type: ignore[call-arg]
        return LedgerEngine(session_factory, settings, price_source=source or price_source, clock=clock)

    return _make


@pytest.fixture(scope="function")
def ledger(make_ledger: Callable[..., LedgerEngine]) -> LedgerEngine:
    return make_ledger()
