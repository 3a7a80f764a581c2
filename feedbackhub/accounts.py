"""Dashboard accounts, credential checks and the signup approval workflow."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional

from bson import ObjectId
from passlib.context import CryptContext
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError

from .config import Settings
from .connector import MongoConnector
from .errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from .models import SignupRequest, SignupStatus, User

logger = logging.getLogger("feedbackhub.accounts")

USERS_COLLECTION = "users"
SIGNUP_REQUESTS_COLLECTION = "signup_requests"

_INVALID_CREDENTIALS = "Invalid email or password"

_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalise_email(email: str) -> str:
    return email.strip().lower()


def _hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def _verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def _object_id(value: str) -> Optional[ObjectId]:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def _document_to_user(document: Mapping[str, Any]) -> User:
    return User(
        id=str(document["_id"]),
        email=str(document["email"]),
        password_hash=str(document.get("password_hash") or ""),
        name=document.get("name"),
        is_super_user=bool(document.get("is_super_user", False)),
        is_approved=bool(document.get("is_approved", False)),
        is_active=bool(document.get("is_active", False)),
        created_at=_as_utc(document["created_at"]),
        updated_at=_as_utc(document["updated_at"]),
    )


def _document_to_request(document: Mapping[str, Any]) -> SignupRequest:
    return SignupRequest(
        id=str(document["_id"]),
        email=str(document["email"]),
        password_hash=str(document.get("password_hash") or ""),
        name=document.get("name"),
        status=SignupStatus(document["status"]),
        created_at=_as_utc(document["created_at"]),
        updated_at=_as_utc(document["updated_at"]),
        decided_by=document.get("decided_by"),
        decided_at=_as_utc(document.get("decided_at")),
    )


class AccountManager:
    """Users and signup requests stored in MongoDB.

    There is no file fallback here: database errors propagate to the caller
    so account data never silently diverges.
    """

    def __init__(
        self,
        connector: MongoConnector,
        settings: Optional[Settings] = None,
        *,
        clock: Callable[[], datetime] = _current_timestamp,
    ) -> None:
        self._connector = connector
        self._settings = settings or Settings()
        self._clock = clock
        self._users_indexed = False

    @property
    def password_min_length(self) -> int:
        return self._settings.password_min_length

    def _users(self):
        collection = self._connector.collection(USERS_COLLECTION)
        if not self._users_indexed:
            collection.create_index([("email", ASCENDING)], unique=True)
            self._users_indexed = True
        return collection

    def _requests(self):
        return self._connector.collection(SIGNUP_REQUESTS_COLLECTION)

    def _check_password_policy(self, password: str, *, label: str = "Password") -> None:
        if len(password) < self.password_min_length:
            raise ValidationError(
                f"{label} must be at least {self.password_min_length} characters long"
            )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def seed_super_user(self) -> Optional[User]:
        """Create the configured super-user unless it already exists."""

        email = self._settings.super_user_email
        password = self._settings.super_user_password
        if not email or not password:
            logger.warning("Super user credentials are not configured; skipping seeding")
            return None

        existing = self.get_by_email(email)
        if existing is not None:
            return existing

        now = self._clock()
        document = {
            "email": _normalise_email(email),
            "password_hash": _hash_password(password),
            "name": "Super Admin",
            "is_super_user": True,
            "is_approved": True,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        result = self._users().insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Super user %s created", document["email"])
        return _document_to_user(document)

    def get_by_id(self, user_id: str) -> Optional[User]:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        document = self._users().find_one({"_id": object_id})
        if document is None:
            return None
        return _document_to_user(document)

    def get_by_email(self, email: str) -> Optional[User]:
        document = self._users().find_one({"email": _normalise_email(email)})
        if document is None:
            return None
        return _document_to_user(document)

    def list_users(self) -> List[User]:
        cursor = self._users().find({}).sort("created_at", DESCENDING)
        return [_document_to_user(document) for document in cursor]

    def login(self, email: str, password: str) -> User:
        """Return the user for valid credentials on an active, approved account."""

        user = self.get_by_email(email) if email else None
        if user is None:
            _pwd_context.dummy_verify()
            reason = "unknown email"
        elif not _verify_password(password, user.password_hash):
            reason = "wrong password"
        elif not user.is_active:
            reason = "account inactive"
        elif not user.is_approved:
            reason = "account not approved"
        else:
            logger.info("User %s signed in", user.id)
            return user

        logger.info("Rejected sign-in for %s: %s", email, reason)
        raise AuthenticationError(_INVALID_CREDENTIALS)

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        self._check_password_policy(new_password, label="New password")

        user = self.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        if not _verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")
        if _verify_password(new_password, user.password_hash):
            raise ConflictError("New password must be different from current password")

        self._users().update_one(
            {"_id": ObjectId(user.id)},
            {"$set": {"password_hash": _hash_password(new_password), "updated_at": self._clock()}},
        )
        logger.info("Password changed for user %s", user.id)

    # ------------------------------------------------------------------
    # Signup requests
    # ------------------------------------------------------------------
    def register_user(self, email: str, password: str, name: Optional[str] = None) -> SignupRequest:
        """Store a pending signup request for later approval."""

        normalised = _normalise_email(email or "")
        if not normalised:
            raise ValidationError("Email is required")
        self._check_password_policy(password or "")

        if self._users().find_one({"email": normalised}) is not None:
            raise ConflictError("User with this email already exists")
        if self._requests().find_one({"email": normalised}) is not None:
            raise ConflictError("Signup request already exists for this email")

        now = self._clock()
        document = {
            "email": normalised,
            "password_hash": _hash_password(password),
            "name": name.strip() if name and name.strip() else None,
            "status": SignupStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
        result = self._requests().insert_one(document)
        document["_id"] = result.inserted_id
        logger.info("Signup request %s received for %s", result.inserted_id, normalised)
        return _document_to_request(document)

    def get_signup_request(self, request_id: str) -> Optional[SignupRequest]:
        object_id = _object_id(request_id)
        if object_id is None:
            return None
        document = self._requests().find_one({"_id": object_id})
        if document is None:
            return None
        return _document_to_request(document)

    def list_signup_requests(self, status: Optional[SignupStatus] = None) -> List[SignupRequest]:
        query = {} if status is None else {"status": SignupStatus(status).value}
        cursor = self._requests().find(query).sort("created_at", DESCENDING)
        return [_document_to_request(document) for document in cursor]

    def _load_pending(self, request_id: str) -> SignupRequest:
        if _object_id(request_id) is None:
            raise ValidationError("Invalid request ID format")
        request = self.get_signup_request(request_id)
        if request is None:
            raise NotFoundError("Signup request not found")
        if request.status is not SignupStatus.PENDING:
            raise ConflictError("Request is not pending")
        return request

    def _decide(self, request: SignupRequest, status: SignupStatus, approver_id: str) -> SignupRequest:
        now = self._clock()
        result = self._requests().update_one(
            {"_id": ObjectId(request.id), "status": SignupStatus.PENDING.value},
            {
                "$set": {
                    "status": status.value,
                    "decided_by": approver_id,
                    "decided_at": now,
                    "updated_at": now,
                }
            },
        )
        if result.matched_count == 0:
            raise ConflictError("Request is not pending")
        decided = self.get_signup_request(request.id)
        if decided is None:
            raise NotFoundError("Signup request not found")
        return decided

    def approve(self, request_id: str, approver_id: str) -> User:
        """Mark a pending request approved and create its account.

        The request is claimed first with an update conditioned on it still
        being pending, so only one concurrent approval gets to insert the user.
        If the email is already taken the request goes back to pending.
        """

        request = self._load_pending(request_id)
        self._decide(request, SignupStatus.APPROVED, approver_id)

        now = self._clock()
        document = {
            "email": request.email,
            "password_hash": request.password_hash,
            "name": request.name,
            "is_super_user": False,
            "is_approved": True,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        try:
            result = self._users().insert_one(document)
        except DuplicateKeyError as exc:
            self._requests().update_one(
                {"_id": ObjectId(request.id), "status": SignupStatus.APPROVED.value},
                {
                    "$set": {"status": SignupStatus.PENDING.value, "updated_at": self._clock()},
                    "$unset": {"decided_by": "", "decided_at": ""},
                },
            )
            raise ConflictError("User with this email already exists") from exc
        document["_id"] = result.inserted_id

        logger.info("Signup request %s approved by %s", request.id, approver_id)
        return _document_to_user(document)

    def reject(self, request_id: str, approver_id: str) -> SignupRequest:
        request = self._load_pending(request_id)
        decided = self._decide(request, SignupStatus.REJECTED, approver_id)
        logger.info("Signup request %s rejected by %s", request.id, approver_id)
        return decided


__all__ = [
    "AccountManager",
    "SIGNUP_REQUESTS_COLLECTION",
    "USERS_COLLECTION",
]
