"""Domain models for feedback records and user accounts."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


HIGH_RATING = "high-rating"
LOW_RATING = "low-rating"


def category_for_rating(rating: int) -> str:
    """Return the category a rating belongs to (4-5 high, 1-3 low)."""

    if rating < 1 or rating > 5:
        raise ValueError("Rating must be between 1 and 5")
    return HIGH_RATING if rating >= 4 else LOW_RATING


@dataclass(frozen=True)
class FeedbackSubmission:
    """Caller-supplied fields of a feedback record."""

    email: str
    rating: int
    text: str
    category: str
    name: Optional[str] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class Feedback:
    """A stored rating and comment."""

    id: str
    email: str
    rating: int
    text: str
    category: str
    created_at: datetime
    name: Optional[str] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    invited_by: tuple[str, ...] = ()

    @property
    def is_invited(self) -> bool:
        return bool(self.invited_by)


@dataclass(frozen=True)
class FeedbackPage:
    items: List[Feedback]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass(frozen=True)
class CategoryStats:
    count: int
    avg_rating: float


@dataclass(frozen=True)
class FeedbackStats:
    total: int
    by_category: Dict[str, CategoryStats] = field(default_factory=dict)


@dataclass(frozen=True)
class InvitationStats:
    invited: int
    not_invited: int
    total: int
    ratio_percent: float


class SignupStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class User:
    """Represents an account that may sign in to the dashboard."""

    id: str
    email: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    is_super_user: bool = False
    is_approved: bool = False
    is_active: bool = True


@dataclass(frozen=True)
class SignupRequest:
    """A pending (or decided) application for a dashboard account."""

    id: str
    email: str
    password_hash: str
    status: SignupStatus
    created_at: datetime
    updated_at: datetime
    name: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None


__all__ = [
    "CategoryStats",
    "Feedback",
    "FeedbackPage",
    "FeedbackStats",
    "FeedbackSubmission",
    "HIGH_RATING",
    "InvitationStats",
    "LOW_RATING",
    "SignupRequest",
    "SignupStatus",
    "User",
    "category_for_rating",
]
