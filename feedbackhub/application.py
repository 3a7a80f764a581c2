"""Application factory wiring configuration, storage and accounts together."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from pymongo.errors import PyMongoError

from .accounts import AccountManager
from .config import Settings, load_settings
from .connector import MongoConnector
from .errors import BackendUnavailableError
from .feedback import build_feedback_store
from .notifier import WebhookNotifier
from .service import create_app
from .sessions import SessionManager

logger = logging.getLogger("feedbackhub.application")


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    """Create the ASGI application from the environment."""

    app_settings = settings or load_settings()
    connector = MongoConnector.from_settings(app_settings)
    accounts = AccountManager(connector, app_settings)

    if connector.configured:
        try:
            accounts.seed_super_user()
        except (PyMongoError, BackendUnavailableError):
            logger.exception("Unable to seed the super user at startup")
    else:
        logger.warning("MONGODB_URI is not set; sign-in and signup will be unavailable")

    return create_app(
        settings=app_settings,
        connector=connector,
        feedback_store=build_feedback_store(app_settings, connector),
        accounts=accounts,
        notifier=WebhookNotifier.from_settings(app_settings),
        session_manager=SessionManager(ttl=timedelta(hours=app_settings.session_ttl_hours)),
    )


__all__ = ["create_application"]
