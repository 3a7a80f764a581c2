"""Forward feedback events to the Klaviyo track endpoint."""
from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from .config import DEFAULT_KLAVIYO_TRACK_URL, Settings
from .models import Feedback

logger = logging.getLogger("feedbackhub.notifier")

EVENT_NAME = "Send feedback"


@dataclass(frozen=True)
class NotifyResult:
    success: bool
    error: Optional[str] = None


def build_feedback_event(token: str, feedback: Feedback) -> Dict[str, object]:
    """Return the track API payload describing a feedback submission."""

    return {
        "token": token,
        "event": EVENT_NAME,
        "customer_properties": {
            "$email": feedback.email,
            "$first_name": feedback.name or "Anonymous",
        },
        "properties": {
            "feedback_type": feedback.category,
            "rating": feedback.rating,
            "feedback_text": feedback.text,
            "submitted_at": feedback.created_at.isoformat(),
            "ip_address": feedback.source_ip or "unknown",
            "rating_category": "Positive" if feedback.rating >= 4 else "Negative",
        },
        "time": int(feedback.created_at.timestamp()),
    }


class WebhookNotifier:
    """Best-effort event delivery. Failures are logged and reported, never raised."""

    def __init__(
        self,
        public_key: Optional[str],
        *,
        track_url: str = DEFAULT_KLAVIYO_TRACK_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._public_key = public_key
        self._track_url = track_url
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "WebhookNotifier":
        return cls(settings.klaviyo_public_key, track_url=settings.klaviyo_track_url)

    @property
    def enabled(self) -> bool:
        return bool(self._public_key)

    def send(self, feedback: Feedback) -> NotifyResult:
        if not self._public_key:
            logger.warning("KLAVIYO_PUBLIC_KEY not configured, skipping feedback event")
            return NotifyResult(success=False, error="Klaviyo not configured")

        payload = build_feedback_event(self._public_key, feedback)
        encoded = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.get(
                    self._track_url,
                    params={"data": encoded},
                    headers={"Accept": "text/html"},
                )
        except httpx.HTTPError as exc:
            logger.error("Error sending feedback event for %s: %s", feedback.id, exc)
            return NotifyResult(success=False, error=str(exc))

        if response.is_success:
            logger.info(
                "Feedback event sent for %s (type=%s, rating=%s)",
                feedback.id,
                feedback.category,
                feedback.rating,
            )
            return NotifyResult(success=True)

        logger.error(
            "Klaviyo API error for %s: %s %s",
            feedback.id,
            response.status_code,
            response.text.strip(),
        )
        return NotifyResult(
            success=False,
            error=f"Klaviyo API error: {response.status_code} {response.reason_phrase}",
        )


__all__ = ["EVENT_NAME", "NotifyResult", "WebhookNotifier", "build_feedback_event"]
