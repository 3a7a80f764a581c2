"""Configuration loading for the feedback service."""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml


STORAGE_FILE = "file"
STORAGE_MONGODB = "mongodb"
_STORAGE_MODES = {STORAGE_FILE, STORAGE_MONGODB}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

DEFAULT_KLAVIYO_TRACK_URL = "https://a.klaviyo.com/api/track"

# Environment variable -> settings field.
_ENV_FIELDS: Dict[str, str] = {
    "FEEDBACKHUB_ENV": "environment",
    "FEEDBACKHUB_STORAGE_MODE": "storage_mode",
    "FORCE_FILE_STORAGE": "force_file_storage",
    "MONGODB_URI": "mongodb_uri",
    "MONGODB_DATABASE": "mongodb_database",
    "MONGODB_FEEDBACK_COLLECTION": "feedback_collection",
    "FEEDBACK_FILE_PATH": "feedback_file_path",
    "SUPER_USER_EMAIL": "super_user_email",
    "SUPER_USER_PASSWORD": "super_user_password",
    "PASSWORD_MIN_LENGTH": "password_min_length",
    "FEEDBACKHUB_DEFAULT_PAGE_SIZE": "default_page_size",
    "FEEDBACKHUB_MAX_PAGE_SIZE": "max_page_size",
    "KLAVIYO_PUBLIC_KEY": "klaviyo_public_key",
    "KLAVIYO_TRACK_URL": "klaviyo_track_url",
    "FEEDBACKHUB_SESSION_TTL_HOURS": "session_ttl_hours",
    "FEEDBACKHUB_SESSION_SECURE": "secure_cookies",
}


def default_feedback_file_path() -> Path:
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "feedback.json").resolve(strict=False)


def _parse_flag(value: object) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES or lowered == "":
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _parse_positive_int(name: str, value: object) -> int:
    try:
        number = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc
    if number < 1:
        raise ValueError(f"{name} must be at least 1")
    return number


def _optional_text(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration consumed by the stores and the HTTP layer."""

    environment: str = "development"
    storage_mode: Optional[str] = None
    force_file_storage: bool = False
    mongodb_uri: Optional[str] = None
    mongodb_database: str = "trustpilot"
    feedback_collection: str = "feedbacks"
    feedback_file_path: Path = default_feedback_file_path()
    super_user_email: Optional[str] = None
    super_user_password: Optional[str] = None
    password_min_length: int = 6
    default_page_size: int = 50
    max_page_size: int = 100
    klaviyo_public_key: Optional[str] = None
    klaviyo_track_url: str = DEFAULT_KLAVIYO_TRACK_URL
    session_ttl_hours: int = 24 * 7
    secure_cookies: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @staticmethod
    def from_dict(data: Mapping[str, object], base: Optional["Settings"] = None) -> "Settings":
        """Return ``base`` (or the defaults) updated with the supplied raw values."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        updates: Dict[str, object] = {}
        for key, raw in data.items():
            if raw is None:
                continue
            if key in {"force_file_storage", "secure_cookies"}:
                updates[key] = _parse_flag(raw)
            elif key in {"password_min_length", "default_page_size", "max_page_size", "session_ttl_hours"}:
                updates[key] = _parse_positive_int(key, raw)
            elif key == "feedback_file_path":
                updates[key] = Path(str(raw)).expanduser().resolve(strict=False)
            elif key == "storage_mode":
                mode = str(raw).strip().lower()
                if mode and mode not in _STORAGE_MODES:
                    raise ValueError(f"Unsupported storage mode '{raw}'")
                updates[key] = mode or None
            elif key == "environment":
                updates[key] = str(raw).strip().lower() or "development"
            elif key in {"mongodb_database", "feedback_collection", "klaviyo_track_url"}:
                text = _optional_text(raw)
                if text:
                    updates[key] = text
            else:
                updates[key] = _optional_text(raw)

        settings = replace(base or Settings(), **updates)
        if settings.default_page_size > settings.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return settings


def resolve_storage_mode(settings: Settings) -> str:
    """Decide whether feedback is stored in the JSON file or in MongoDB."""

    if settings.storage_mode:
        return settings.storage_mode
    if settings.force_file_storage or settings.environment == "development":
        return STORAGE_FILE
    if settings.is_production and settings.mongodb_uri:
        return STORAGE_MONGODB
    return STORAGE_FILE


def load_config_file(config_path: Path) -> Dict[str, object]:
    """Load raw settings from a YAML mapping."""

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return raw


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> Settings:
    """Build settings from an optional YAML file and the environment.

    Environment variables take precedence over values from the file.
    """

    env = os.environ if environ is None else environ

    if config_path is None and env.get("FEEDBACKHUB_CONFIG"):
        config_path = Path(env["FEEDBACKHUB_CONFIG"]).expanduser()

    settings = Settings()
    if config_path is not None:
        settings = Settings.from_dict(load_config_file(config_path), base=settings)

    from_env = {field_name: env[var] for var, field_name in _ENV_FIELDS.items() if var in env}
    return Settings.from_dict(from_env, base=settings)


__all__ = [
    "STORAGE_FILE",
    "STORAGE_MONGODB",
    "Settings",
    "default_feedback_file_path",
    "load_config_file",
    "load_settings",
    "resolve_storage_mode",
]
