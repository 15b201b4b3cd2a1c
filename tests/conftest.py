from __future__ import annotations

import datetime as dt
from typing import Any, Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from pantry.services.counties import County
from pantry.services.counties import Region
from pantry.services.resource_store import ResourceStore


class FakeClock:
    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2025, 3, 1, 12, 0, tzinfo=dt.UTC)

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine: Engine, clock: FakeClock) -> ResourceStore:
    store = ResourceStore(engine, clock=clock)
    store.ensure_schema()
    return store


@pytest.fixture
def montgomery() -> County:
    return County(state="PA", geoid="42091", name="Montgomery County", latitude=40.21, longitude=-75.37)


@pytest.fixture
def county_region(montgomery: County) -> Region:
    return Region.for_county(montgomery)
