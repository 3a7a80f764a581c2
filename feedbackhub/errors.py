"""Exception types shared by the feedback store and account services."""
from __future__ import annotations


class FeedbackHubError(Exception):
    """Base class for expected, user-facing failures."""


class ValidationError(FeedbackHubError, ValueError):
    """Input was missing, malformed, or out of range."""


class ConflictError(FeedbackHubError):
    """The request clashes with existing state (duplicates, terminal states)."""


class AuthenticationError(FeedbackHubError):
    """Credentials were rejected. The message never says which check failed."""


class NotFoundError(FeedbackHubError, LookupError):
    """The referenced record does not exist."""


class BackendUnavailableError(FeedbackHubError):
    """The document database cannot be reached or is not configured."""


__all__ = [
    "AuthenticationError",
    "BackendUnavailableError",
    "ConflictError",
    "FeedbackHubError",
    "NotFoundError",
    "ValidationError",
]
