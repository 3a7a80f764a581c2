"""Feedback persistence with a JSON file backend, a MongoDB backend and fallback."""
from __future__ import annotations

import abc
import logging
import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING

from .config import STORAGE_MONGODB, Settings, resolve_storage_mode
from .connector import MongoConnector
from .errors import ValidationError
from .filestore import JsonFileAccessor
from .models import (
    HIGH_RATING,
    LOW_RATING,
    CategoryStats,
    Feedback,
    FeedbackPage,
    FeedbackStats,
    FeedbackSubmission,
    InvitationStats,
)

logger = logging.getLogger("feedbackhub.feedback")

Clock = Callable[[], datetime]


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _round_half_up(numerator: int, denominator: int) -> float:
    value = Decimal(numerator) / Decimal(denominator)
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def _build_stats(rows: Iterable[Tuple[str, int, int]]) -> FeedbackStats:
    """Build stats from ``(category, count, rating_sum)`` rows."""

    by_category: Dict[str, CategoryStats] = {}
    total = 0
    for category, count, rating_sum in rows:
        if not count:
            continue
        total += count
        by_category[category] = CategoryStats(
            count=count,
            avg_rating=_round_half_up(rating_sum, count),
        )
    return FeedbackStats(total=total, by_category=by_category)


def _build_invitation_stats(invited: int, total: int) -> InvitationStats:
    ratio = _round_half_up(invited * 100, total) if total else 0.0
    return InvitationStats(
        invited=invited,
        not_invited=total - invited,
        total=total,
        ratio_percent=ratio,
    )


class FeedbackStore(abc.ABC):
    """Storage-agnostic contract for feedback records."""

    backend_name = "abstract"

    def __init__(
        self,
        *,
        default_page_size: int = 50,
        max_page_size: int = 100,
        clock: Clock = _current_timestamp,
    ) -> None:
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self._clock = clock

    @abc.abstractmethod
    def create(self, submission: FeedbackSubmission) -> Feedback:
        """Persist a new record, assigning its id and creation time."""

    def list(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        category: Optional[str] = None,
    ) -> FeedbackPage:
        """Return one page of records, newest first."""

        if page < 1:
            raise ValidationError("page must be at least 1")
        size = self.default_page_size if page_size is None else page_size
        if size < 1:
            raise ValidationError("page_size must be at least 1")
        size = min(size, self.max_page_size)

        items, total = self._fetch_page(category, (page - 1) * size, size)
        return FeedbackPage(
            items=items,
            total=total,
            page=page,
            page_size=size,
            total_pages=math.ceil(total / size),
        )

    @abc.abstractmethod
    def _fetch_page(
        self, category: Optional[str], offset: int, limit: int
    ) -> Tuple[List[Feedback], int]:
        """Return the requested window and the total number of matches."""

    @abc.abstractmethod
    def list_by_email(self, email: str) -> List[Feedback]:
        """Every record submitted with ``email``, newest first, unpaginated."""

    @abc.abstractmethod
    def stats(self) -> FeedbackStats: ...

    @abc.abstractmethod
    def delete(self, feedback_id: str) -> bool: ...

    @abc.abstractmethod
    def delete_many(self, feedback_ids: Iterable[str]) -> int: ...

    @abc.abstractmethod
    def toggle_invitation(self, feedback_id: str, user_id: str) -> bool:
        """Add ``user_id`` to the record's invitations, or remove it if present."""

    @abc.abstractmethod
    def invitation_stats(self) -> InvitationStats: ...

    @abc.abstractmethod
    def clear(self) -> None:
        """Remove every record."""


class FileFeedbackStore(FeedbackStore):
    """Keeps every record in one JSON array that is rewritten on each change."""

    backend_name = "file"

    def __init__(self, accessor: JsonFileAccessor, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._accessor = accessor

    @property
    def path(self):
        return self._accessor.path

    def _load(self) -> List[Dict[str, Any]]:
        return [record for record in self._accessor.read_all() or [] if isinstance(record, dict)]

    def _save(self, records: List[Dict[str, Any]]) -> None:
        self._accessor.write_all(records)

    @staticmethod
    def _to_feedback(record: Mapping[str, Any]) -> Feedback:
        return Feedback(
            id=str(record["id"]),
            email=str(record["email"]),
            rating=int(record["rating"]),
            text=str(record.get("text", "")),
            category=str(record["category"]),
            created_at=_as_utc(record["created_at"]),
            name=record.get("name"),
            source_ip=record.get("source_ip"),
            user_agent=record.get("user_agent"),
            invited_by=tuple(record.get("invited_by") or ()),
        )

    def _sorted(self, records: Iterable[Mapping[str, Any]]) -> List[Feedback]:
        items = [self._to_feedback(record) for record in records]
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items

    def create(self, submission: FeedbackSubmission) -> Feedback:
        created_at = self._clock()
        record = {
            "id": str(ObjectId()),
            "email": submission.email,
            "rating": submission.rating,
            "text": submission.text,
            "name": submission.name,
            "category": submission.category,
            "created_at": created_at.isoformat(),
            "source_ip": submission.source_ip,
            "user_agent": submission.user_agent,
            "invited_by": [],
        }
        records = self._load()
        records.append(record)
        self._save(records)
        return self._to_feedback(record)

    def _fetch_page(
        self, category: Optional[str], offset: int, limit: int
    ) -> Tuple[List[Feedback], int]:
        records = self._load()
        if category is not None:
            records = [record for record in records if record.get("category") == category]
        items = self._sorted(records)
        return items[offset : offset + limit], len(items)

    def list_by_email(self, email: str) -> List[Feedback]:
        return self._sorted(record for record in self._load() if record.get("email") == email)

    def stats(self) -> FeedbackStats:
        totals: Dict[str, List[int]] = {}
        for record in self._load():
            entry = totals.setdefault(str(record["category"]), [0, 0])
            entry[0] += 1
            entry[1] += int(record["rating"])
        return _build_stats((category, count, rating_sum) for category, (count, rating_sum) in totals.items())

    def delete(self, feedback_id: str) -> bool:
        return self.delete_many([feedback_id]) > 0

    def delete_many(self, feedback_ids: Iterable[str]) -> int:
        targets = set(feedback_ids)
        records = self._load()
        remaining = [record for record in records if record.get("id") not in targets]
        removed = len(records) - len(remaining)
        if removed:
            self._save(remaining)
        return removed

    def toggle_invitation(self, feedback_id: str, user_id: str) -> bool:
        records = self._load()
        for record in records:
            if record.get("id") != feedback_id:
                continue
            invited = list(record.get("invited_by") or [])
            if user_id in invited:
                invited.remove(user_id)
            else:
                invited.append(user_id)
            record["invited_by"] = invited
            self._save(records)
            return True
        return False

    def invitation_stats(self) -> InvitationStats:
        records = self._load()
        invited = sum(1 for record in records if record.get("invited_by"))
        return _build_invitation_stats(invited, len(records))

    def clear(self) -> None:
        self._save([])


class MongoFeedbackStore(FeedbackStore):
    """Stores each record as a document in a MongoDB collection."""

    backend_name = "mongodb"

    def __init__(self, connector: MongoConnector, collection_name: str = "feedbacks", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._connector = connector
        self._collection_name = collection_name

    def _collection(self):
        return self._connector.collection(self._collection_name)

    @staticmethod
    def _object_id(feedback_id: str) -> Optional[ObjectId]:
        if not ObjectId.is_valid(feedback_id):
            return None
        return ObjectId(feedback_id)

    @staticmethod
    def _to_feedback(document: Mapping[str, Any]) -> Feedback:
        return Feedback(
            id=str(document["_id"]),
            email=str(document["email"]),
            rating=int(document["rating"]),
            text=str(document.get("text", "")),
            category=str(document["category"]),
            created_at=_as_utc(document["created_at"]),
            name=document.get("name"),
            source_ip=document.get("source_ip"),
            user_agent=document.get("user_agent"),
            invited_by=tuple(document.get("invited_by") or ()),
        )

    def create(self, submission: FeedbackSubmission) -> Feedback:
        document = {
            "email": submission.email,
            "rating": submission.rating,
            "text": submission.text,
            "name": submission.name,
            "category": submission.category,
            "created_at": self._clock(),
            "source_ip": submission.source_ip,
            "user_agent": submission.user_agent,
            "invited_by": [],
        }
        result = self._collection().insert_one(document)
        document["_id"] = result.inserted_id
        return self._to_feedback(document)

    def _fetch_page(
        self, category: Optional[str], offset: int, limit: int
    ) -> Tuple[List[Feedback], int]:
        query: Dict[str, Any] = {} if category is None else {"category": category}
        collection = self._collection()
        total = collection.count_documents(query)
        cursor = collection.find(query).sort("created_at", DESCENDING).skip(offset).limit(limit)
        return [self._to_feedback(document) for document in cursor], total

    def list_by_email(self, email: str) -> List[Feedback]:
        cursor = self._collection().find({"email": email}).sort("created_at", DESCENDING)
        return [self._to_feedback(document) for document in cursor]

    def stats(self) -> FeedbackStats:
        pipeline = [
            {
                "$group": {
                    "_id": "$category",
                    "count": {"$sum": 1},
                    "rating_sum": {"$sum": "$rating"},
                }
            }
        ]
        rows = self._collection().aggregate(pipeline)
        return _build_stats((str(row["_id"]), int(row["count"]), int(row["rating_sum"])) for row in rows)

    def delete(self, feedback_id: str) -> bool:
        object_id = self._object_id(feedback_id)
        if object_id is None:
            return False
        return self._collection().delete_one({"_id": object_id}).deleted_count > 0

    def delete_many(self, feedback_ids: Iterable[str]) -> int:
        object_ids = [oid for oid in (self._object_id(value) for value in feedback_ids) if oid is not None]
        if not object_ids:
            return 0
        return self._collection().delete_many({"_id": {"$in": object_ids}}).deleted_count

    def toggle_invitation(self, feedback_id: str, user_id: str) -> bool:
        object_id = self._object_id(feedback_id)
        if object_id is None:
            return False
        collection = self._collection()
        document = collection.find_one({"_id": object_id}, {"invited_by": 1})
        if document is None:
            return False
        if user_id in (document.get("invited_by") or []):
            update = {"$pull": {"invited_by": user_id}}
        else:
            update = {"$addToSet": {"invited_by": user_id}}
        collection.update_one({"_id": object_id}, update)
        return True

    def invitation_stats(self) -> InvitationStats:
        collection = self._collection()
        total = collection.count_documents({})
        invited = collection.count_documents({"invited_by.0": {"$exists": True}})
        return _build_invitation_stats(invited, total)

    def clear(self) -> None:
        self._collection().delete_many({})


class FallbackFeedbackStore(FeedbackStore):
    """Tries the primary store and re-runs failed operations on the fallback.

    Successful primary writes are not mirrored, so the two stores drift
    apart whenever the primary fails.
    """

    def __init__(self, primary: FeedbackStore, fallback: FeedbackStore) -> None:
        super().__init__(
            default_page_size=primary.default_page_size,
            max_page_size=primary.max_page_size,
        )
        self.primary = primary
        self.fallback = fallback

    @property
    def backend_name(self) -> str:  # type: ignore[override]
        return f"{self.primary.backend_name}+{self.fallback.backend_name}-fallback"

    def _attempt(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return getattr(self.primary, operation)(*args, **kwargs)
        except ValidationError:
            raise
        except Exception as exc:
            logger.warning(
                "%s store failed during %s (%s: %s); falling back to %s store",
                self.primary.backend_name,
                operation,
                type(exc).__name__,
                exc,
                self.fallback.backend_name,
            )
            return getattr(self.fallback, operation)(*args, **kwargs)

    def create(self, submission: FeedbackSubmission) -> Feedback:
        return self._attempt("create", submission)

    def list(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        category: Optional[str] = None,
    ) -> FeedbackPage:
        return self._attempt("list", page, page_size, category)

    def _fetch_page(
        self, category: Optional[str], offset: int, limit: int
    ) -> Tuple[List[Feedback], int]:
        return self._attempt("_fetch_page", category, offset, limit)

    def list_by_email(self, email: str) -> List[Feedback]:
        return self._attempt("list_by_email", email)

    def stats(self) -> FeedbackStats:
        return self._attempt("stats")

    def delete(self, feedback_id: str) -> bool:
        return self._attempt("delete", feedback_id)

    def delete_many(self, feedback_ids: Iterable[str]) -> int:
        return self._attempt("delete_many", list(feedback_ids))

    def toggle_invitation(self, feedback_id: str, user_id: str) -> bool:
        return self._attempt("toggle_invitation", feedback_id, user_id)

    def invitation_stats(self) -> InvitationStats:
        return self._attempt("invitation_stats")

    def clear(self) -> None:
        self._attempt("clear")


def build_feedback_store(
    settings: Settings,
    connector: Optional[MongoConnector] = None,
    *,
    clock: Clock = _current_timestamp,
) -> FeedbackStore:
    """Select the feedback backend once, from configuration."""

    options = {
        "default_page_size": settings.default_page_size,
        "max_page_size": settings.max_page_size,
        "clock": clock,
    }
    file_store = FileFeedbackStore(JsonFileAccessor(settings.feedback_file_path), **options)

    if resolve_storage_mode(settings) != STORAGE_MONGODB:
        logger.info("Storing feedback in %s", settings.feedback_file_path)
        return file_store

    if connector is None:
        connector = MongoConnector.from_settings(settings)
    mongo_store = MongoFeedbackStore(connector, settings.feedback_collection, **options)
    logger.info(
        "Storing feedback in MongoDB collection %s.%s with file fallback",
        settings.mongodb_database,
        settings.feedback_collection,
    )
    return FallbackFeedbackStore(mongo_store, file_store)


SAMPLE_FEEDBACK: Tuple[FeedbackSubmission, ...] = (
    FeedbackSubmission(
        email="john@example.com",
        rating=5,
        text="Amazing service! The team was very responsive and helpful.",
        name="John Smith",
        category=HIGH_RATING,
        source_ip="192.168.1.1",
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    ),
    FeedbackSubmission(
        email="sarah@example.com",
        rating=4,
        text="Great experience overall. Would recommend to others.",
        name="Sarah Johnson",
        category=HIGH_RATING,
        source_ip="192.168.1.2",
        user_agent="Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
    ),
    FeedbackSubmission(
        email="mike@example.com",
        rating=2,
        text="The service was slow and the interface was confusing.",
        name="Mike Wilson",
        category=LOW_RATING,
        source_ip="192.168.1.3",
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 14_7_1 like Mac OS X) AppleWebKit/605.1.15",
    ),
    FeedbackSubmission(
        email="lisa@example.com",
        rating=1,
        text="Terrible experience. Nothing worked as expected.",
        name="Lisa Brown",
        category=LOW_RATING,
        source_ip="192.168.1.4",
        user_agent="Mozilla/5.0 (Android 11; Mobile; rv:68.0) Gecko/68.0 Firefox/88.0",
    ),
    FeedbackSubmission(
        email="david@example.com",
        rating=5,
        text="Excellent! Fast, reliable, and user-friendly.",
        name="David Lee",
        category=HIGH_RATING,
        source_ip="192.168.1.5",
        user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    ),
)


def seed_sample_feedback(store: FeedbackStore) -> List[Feedback]:
    """Insert the demo records used by the development dashboard."""

    return [store.create(submission) for submission in SAMPLE_FEEDBACK]


__all__ = [
    "FallbackFeedbackStore",
    "FeedbackStore",
    "FileFeedbackStore",
    "MongoFeedbackStore",
    "SAMPLE_FEEDBACK",
    "build_feedback_store",
    "seed_sample_feedback",
]
