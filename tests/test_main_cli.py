from pathlib import Path

import mongomock
import pytest

import main
from feedbackhub.accounts import AccountManager
from feedbackhub.config import Settings
from feedbackhub.connector import MongoConnector
from feedbackhub.models import SignupStatus
from main import _parse_args


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_signups_subcommand_parses_decisions() -> None:
    args = _parse_args(["signups", "approve", "65a000000000000000000001", "--approver", "admin@example.com"])
    assert args.command == "signups"
    assert args.action == "approve"
    assert args.request_id == "65a000000000000000000001"
    assert args.approver == "admin@example.com"


def test_signups_decision_requires_request_id() -> None:
    with pytest.raises(SystemExit):
        _parse_args(["signups", "reject"])


def test_sample_data_add_and_clear(tmp_path: Path, capsys) -> None:
    settings = Settings(feedback_file_path=tmp_path / "feedback.json")

    assert main._sample_data(settings, "add") == 0
    assert "Added 5 sample feedback records" in capsys.readouterr().out
    assert main._sample_data(settings, "clear") == 0
    assert "Cleared all feedback" in capsys.readouterr().out

    production = Settings(environment="production", feedback_file_path=tmp_path / "feedback.json")
    assert main._sample_data(production, "add") == 1


def test_signups_approve_and_list(monkeypatch, capsys) -> None:
    settings = Settings(super_user_email="admin@example.com", super_user_password="admin-pass")
    connector = MongoConnector("mongodb://localhost:27017", "feedbackhub_test", client=mongomock.MongoClient())
    accounts = AccountManager(connector, settings)
    accounts.seed_super_user()
    request = accounts.register_user("bob@example.com", "bob-secret")
    monkeypatch.setattr(main.MongoConnector, "from_settings", classmethod(lambda cls, _settings: connector))

    assert main._signups(settings, _parse_args(["signups", "list"])) == 0
    assert "bob@example.com" in capsys.readouterr().out

    assert main._signups(settings, _parse_args(["signups", "approve", request.id])) == 0
    assert "created user bob@example.com" in capsys.readouterr().out
    assert accounts.get_signup_request(request.id).status is SignupStatus.APPROVED

    assert main._signups(settings, _parse_args(["signups", "reject", request.id])) == 1
    assert "Request is not pending" in capsys.readouterr().out


def test_signups_decision_requires_super_user(monkeypatch, capsys) -> None:
    settings = Settings()
    connector = MongoConnector("mongodb://localhost:27017", "feedbackhub_test", client=mongomock.MongoClient())
    monkeypatch.setattr(main.MongoConnector, "from_settings", classmethod(lambda cls, _settings: connector))

    args = _parse_args(["signups", "approve", "65a000000000000000000001", "--approver", "nobody@example.com"])
    assert main._signups(settings, args) == 1
    assert "--approver" in capsys.readouterr().out
