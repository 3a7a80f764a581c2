from __future__ import annotations

import pytest
from bson import ObjectId

from feedbackhub.connector import MongoConnector
from feedbackhub.feedback import MongoFeedbackStore, seed_sample_feedback
from feedbackhub.models import HIGH_RATING, LOW_RATING, FeedbackSubmission


@pytest.fixture()
def store(mongo_connector: MongoConnector, clock) -> MongoFeedbackStore:
    return MongoFeedbackStore(mongo_connector, "feedbacks", clock=clock)


def test_create_stores_document(store: MongoFeedbackStore, mongo_connector: MongoConnector) -> None:
    created = store.create(
        FeedbackSubmission(
            email="alice@example.com",
            rating=2,
            text="Slow checkout",
            category=LOW_RATING,
            source_ip="10.0.0.1",
        )
    )

    document = mongo_connector.collection("feedbacks").find_one({"_id": ObjectId(created.id)})
    assert document is not None
    assert document["rating"] == 2
    assert document["invited_by"] == []
    assert created.source_ip == "10.0.0.1"


def test_list_pages_newest_first(store: MongoFeedbackStore) -> None:
    created = seed_sample_feedback(store)

    result = store.list(page=2, page_size=2)
    assert result.total == 5
    assert result.total_pages == 3
    assert [item.id for item in result.items] == [created[2].id, created[1].id]

    high = store.list(category=HIGH_RATING)
    assert high.total == 3


def test_stats_use_aggregation(store: MongoFeedbackStore) -> None:
    seed_sample_feedback(store)

    stats = store.stats()
    assert stats.total == 5
    assert stats.by_category[HIGH_RATING].avg_rating == 4.7
    assert stats.by_category[LOW_RATING].avg_rating == 1.5


def test_delete_ignores_malformed_ids(store: MongoFeedbackStore) -> None:
    created = seed_sample_feedback(store)

    assert store.delete("not-an-object-id") is False
    assert store.delete(str(ObjectId())) is False
    assert store.delete(created[0].id) is True
    assert store.delete_many(["bogus", created[1].id, created[2].id]) == 2
    assert store.delete_many(["bogus"]) == 0
    assert store.list().total == 2


def test_toggle_invitation_round_trip(store: MongoFeedbackStore) -> None:
    created = seed_sample_feedback(store)

    assert store.toggle_invitation(created[0].id, "admin-1") is True
    assert store.toggle_invitation(created[1].id, "admin-1") is True
    stats = store.invitation_stats()
    assert stats.invited == 2
    assert stats.not_invited == 3
    assert stats.ratio_percent == 40.0

    assert store.toggle_invitation(created[0].id, "admin-1") is True
    assert store.invitation_stats().invited == 1
    assert store.toggle_invitation("bogus", "admin-1") is False
    assert store.toggle_invitation(str(ObjectId()), "admin-1") is False


def test_list_by_email_and_clear(store: MongoFeedbackStore) -> None:
    seed_sample_feedback(store)

    matches = store.list_by_email("mike@example.com")
    assert [item.rating for item in matches] == [2]

    store.clear()
    assert store.list().total == 0
