from __future__ import annotations

import mongomock
import pytest

from feedbackhub.config import Settings
from feedbackhub.connector import MongoConnector
from feedbackhub.errors import BackendUnavailableError


def test_connect_without_uri_is_unavailable() -> None:
    connector = MongoConnector.from_settings(Settings())

    assert connector.configured is False
    with pytest.raises(BackendUnavailableError):
        connector.collection("feedbacks")
    assert connector.ping() is False


def test_connect_reuses_database_until_closed() -> None:
    client = mongomock.MongoClient()
    connector = MongoConnector("mongodb://localhost:27017", "feedbackhub_test", client=client)

    first = connector.connect()
    assert connector.connect() is first
    assert first.name == "feedbackhub_test"
    assert connector.database_name == "feedbackhub_test"

    connector.close()
    assert connector.configured is True
