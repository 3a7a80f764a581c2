"""Tests for the signup approval workflow and credential checks."""

from __future__ import annotations

import pytest
from bson import ObjectId

from feedbackhub.accounts import SIGNUP_REQUESTS_COLLECTION, USERS_COLLECTION, AccountManager
from feedbackhub.config import Settings
from feedbackhub.connector import MongoConnector
from feedbackhub.errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from feedbackhub.models import SignupStatus


@pytest.fixture()
def settings() -> Settings:
    return Settings(super_user_email="Admin@Example.com", super_user_password="admin-pass")


@pytest.fixture()
def accounts(mongo_connector: MongoConnector, settings: Settings, clock) -> AccountManager:
    manager = AccountManager(mongo_connector, settings, clock=clock)
    manager.seed_super_user()
    return manager


@pytest.fixture()
def admin(accounts: AccountManager):
    user = accounts.get_by_email("admin@example.com")
    assert user is not None
    return user


def test_seed_super_user_is_idempotent(accounts: AccountManager, mongo_connector: MongoConnector) -> None:
    again = accounts.seed_super_user()

    assert again is not None
    assert again.is_super_user and again.is_approved and again.is_active
    assert again.email == "admin@example.com"
    assert mongo_connector.collection(USERS_COLLECTION).count_documents({}) == 1


def test_seed_super_user_requires_configuration(mongo_connector: MongoConnector) -> None:
    manager = AccountManager(mongo_connector, Settings())
    assert manager.seed_super_user() is None
    assert mongo_connector.collection(USERS_COLLECTION).count_documents({}) == 0


def test_register_user_creates_pending_request(accounts: AccountManager, mongo_connector: MongoConnector) -> None:
    request = accounts.register_user("  New.User@Example.com ", "secret1", "New User")

    assert request.status is SignupStatus.PENDING
    assert request.email == "new.user@example.com"
    assert request.password_hash != "secret1"
    assert mongo_connector.collection(USERS_COLLECTION).count_documents({}) == 1
    assert [item.id for item in accounts.list_signup_requests(SignupStatus.PENDING)] == [request.id]


def test_register_user_validates_input(accounts: AccountManager) -> None:
    with pytest.raises(ValidationError):
        accounts.register_user("", "secret1")
    with pytest.raises(ValidationError):
        accounts.register_user("short@example.com", "12345")


def test_register_user_rejects_duplicates(accounts: AccountManager) -> None:
    accounts.register_user("dup@example.com", "secret1")

    with pytest.raises(ConflictError):
        accounts.register_user("DUP@example.com", "another1")
    with pytest.raises(ConflictError):
        accounts.register_user("admin@example.com", "secret1")


def test_pending_user_cannot_sign_in(accounts: AccountManager) -> None:
    accounts.register_user("pending@example.com", "secret1")

    with pytest.raises(AuthenticationError) as excinfo:
        accounts.login("pending@example.com", "secret1")
    assert str(excinfo.value) == "Invalid email or password"


def test_approve_creates_user_that_can_sign_in(accounts: AccountManager, admin) -> None:
    request = accounts.register_user("bob@example.com", "secret1", "Bob")

    user = accounts.approve(request.id, admin.id)

    assert user.is_approved and user.is_active and not user.is_super_user
    assert user.name == "Bob"
    decided = accounts.get_signup_request(request.id)
    assert decided is not None
    assert decided.status is SignupStatus.APPROVED
    assert decided.decided_by == admin.id
    assert decided.decided_at is not None
    assert accounts.login("Bob@Example.com", "secret1").id == user.id


def test_decided_requests_are_terminal(accounts: AccountManager, admin, mongo_connector: MongoConnector) -> None:
    approved = accounts.register_user("once@example.com", "secret1")
    accounts.approve(approved.id, admin.id)
    rejected = accounts.register_user("never@example.com", "secret1")
    result = accounts.reject(rejected.id, admin.id)

    assert result.status is SignupStatus.REJECTED
    with pytest.raises(ConflictError):
        accounts.approve(approved.id, admin.id)
    assert mongo_connector.collection(USERS_COLLECTION).count_documents({"email": "once@example.com"}) == 1
    with pytest.raises(ConflictError):
        accounts.reject(rejected.id, admin.id)
    with pytest.raises(ConflictError):
        accounts.approve(rejected.id, admin.id)
    with pytest.raises(ConflictError):
        accounts.register_user("never@example.com", "secret1")
    assert accounts.get_by_email("never@example.com") is None


def test_decisions_require_valid_request_ids(accounts: AccountManager, admin) -> None:
    with pytest.raises(ValidationError):
        accounts.approve("not-an-id", admin.id)
    with pytest.raises(NotFoundError):
        accounts.reject(str(ObjectId()), admin.id)


def test_login_rejects_bad_credentials_uniformly(
    accounts: AccountManager,
    admin,
    mongo_connector: MongoConnector,
) -> None:
    messages = set()
    for email, password in (("admin@example.com", "wrong"), ("ghost@example.com", "admin-pass")):
        with pytest.raises(AuthenticationError) as excinfo:
            accounts.login(email, password)
        messages.add(str(excinfo.value))

    mongo_connector.collection(USERS_COLLECTION).update_one(
        {"_id": ObjectId(admin.id)}, {"$set": {"is_active": False}}
    )
    with pytest.raises(AuthenticationError) as excinfo:
        accounts.login("admin@example.com", "admin-pass")
    messages.add(str(excinfo.value))

    mongo_connector.collection(USERS_COLLECTION).update_one(
        {"_id": ObjectId(admin.id)}, {"$set": {"is_active": True, "is_approved": False}}
    )
    with pytest.raises(AuthenticationError) as excinfo:
        accounts.login("admin@example.com", "admin-pass")
    messages.add(str(excinfo.value))

    assert messages == {"Invalid email or password"}


def test_change_password_rules(accounts: AccountManager, admin) -> None:
    with pytest.raises(ValidationError):
        accounts.change_password(admin.id, "admin-pass", "123")
    with pytest.raises(ValidationError):
        accounts.change_password(admin.id, "wrong-pass", "new-secret")
    with pytest.raises(ConflictError):
        accounts.change_password(admin.id, "admin-pass", "admin-pass")
    with pytest.raises(NotFoundError):
        accounts.change_password(str(ObjectId()), "admin-pass", "new-secret")

    accounts.change_password(admin.id, "admin-pass", "new-secret")

    assert accounts.login("admin@example.com", "new-secret").id == admin.id
    with pytest.raises(AuthenticationError):
        accounts.login("admin@example.com", "admin-pass")


def test_list_signup_requests_newest_first(accounts: AccountManager, admin, mongo_connector: MongoConnector) -> None:
    first = accounts.register_user("first@example.com", "secret1")
    second = accounts.register_user("second@example.com", "secret1")
    accounts.reject(first.id, admin.id)

    assert [item.id for item in accounts.list_signup_requests()] == [second.id, first.id]
    assert [item.id for item in accounts.list_signup_requests(SignupStatus.REJECTED)] == [first.id]
    assert mongo_connector.collection(SIGNUP_REQUESTS_COLLECTION).count_documents({}) == 2


def test_list_users_newest_first(accounts: AccountManager, admin) -> None:
    request = accounts.register_user("later@example.com", "secret1")
    later = accounts.approve(request.id, admin.id)

    assert [user.id for user in accounts.list_users()] == [later.id, admin.id]
    assert accounts.get_by_id("not-an-id") is None


def test_concurrent_approval_creates_single_user(
    accounts: AccountManager,
    admin,
    mongo_connector: MongoConnector,
    monkeypatch,
) -> None:
    request = accounts.register_user("race@example.com", "secret1")
    load_pending = AccountManager._load_pending

    def load_then_lose_race(self, request_id):
        loaded = load_pending(self, request_id)
        monkeypatch.setattr(AccountManager, "_load_pending", load_pending)
        self.approve(request_id, "other-admin")
        return loaded

    monkeypatch.setattr(AccountManager, "_load_pending", load_then_lose_race)

    with pytest.raises(ConflictError):
        accounts.approve(request.id, admin.id)

    assert mongo_connector.collection(USERS_COLLECTION).count_documents({"email": "race@example.com"}) == 1
    decided = accounts.get_signup_request(request.id)
    assert decided is not None
    assert decided.decided_by == "other-admin"


def test_approve_returns_request_to_pending_when_email_is_taken(
    accounts: AccountManager,
    admin,
    mongo_connector: MongoConnector,
) -> None:
    request = accounts.register_user("taken@example.com", "secret1")
    mongo_connector.collection(USERS_COLLECTION).insert_one(
        {"email": "taken@example.com", "password_hash": "", "created_at": admin.created_at, "updated_at": admin.created_at}
    )

    with pytest.raises(ConflictError):
        accounts.approve(request.id, admin.id)

    restored = accounts.get_signup_request(request.id)
    assert restored is not None
    assert restored.status is SignupStatus.PENDING
    assert restored.decided_by is None
    assert mongo_connector.collection(USERS_COLLECTION).count_documents({"email": "taken@example.com"}) == 1


def test_user_emails_are_unique(accounts: AccountManager, mongo_connector: MongoConnector) -> None:
    indexes = mongo_connector.collection(USERS_COLLECTION).index_information()

    assert any(
        index.get("unique") and index["key"] == [("email", 1)]
        for index in indexes.values()
    )
