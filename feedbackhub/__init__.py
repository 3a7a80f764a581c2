"""Feedback collection service with a review dashboard and signup approval."""

from __future__ import annotations

from typing import Any

from .config import Settings, load_settings


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the API application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


def create_application(*args: Any, **kwargs: Any):
    """Factory function that builds the application from the environment."""

    from .application import create_application as _create_application

    return _create_application(*args, **kwargs)


__all__ = [
    "Settings",
    "load_settings",
    "create_app",
    "create_application",
]
