from __future__ import annotations

from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from feedbackhub.connector import MongoConnector


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start: datetime | None = None, step: timedelta = timedelta(minutes=1)) -> None:
        self._current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._step = step

    def __call__(self) -> datetime:
        value = self._current
        self._current += self._step
        return value


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def mongo_connector() -> MongoConnector:
    client = mongomock.MongoClient(tz_aware=True)
    return MongoConnector("mongodb://localhost:27017", "feedbackhub_test", client=client)
