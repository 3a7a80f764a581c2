"""Lazily established, shared MongoDB connection."""
from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError
from pymongo.server_api import ServerApi

from .config import Settings
from .errors import BackendUnavailableError

logger = logging.getLogger("feedbackhub.connector")

DEFAULT_TIMEOUT_MS = 5_000


class MongoConnector:
    """Owns the process-wide MongoDB client.

    The client is created on first use and reused afterwards. Construct one
    connector at startup and pass it to every component that needs the
    database. A pre-built ``client`` may be supplied, which is how tests
    inject an in-memory implementation.
    """

    def __init__(
        self,
        uri: Optional[str],
        database_name: str,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        client: Any = None,
    ) -> None:
        self._uri = uri
        self._database_name = database_name
        self._timeout_ms = timeout_ms
        self._client = client
        self._database: Optional[Database] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoConnector":
        return cls(settings.mongodb_uri, settings.mongodb_database)

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self._uri)

    @property
    def database_name(self) -> str:
        return self._database_name

    def connect(self) -> Database:
        """Return the database handle, creating the client if required."""

        with self._lock:
            if self._database is not None:
                return self._database

            if self._client is None:
                if not self._uri:
                    raise BackendUnavailableError("MONGODB_URI is not configured")
                self._client = MongoClient(
                    self._uri,
                    server_api=ServerApi("1", strict=True, deprecation_errors=True),
                    serverSelectionTimeoutMS=self._timeout_ms,
                    connectTimeoutMS=self._timeout_ms,
                    tz_aware=True,
                )
                logger.info("MongoDB client created for database %s", self._database_name)

            self._database = self._client[self._database_name]
            return self._database

    def collection(self, name: str) -> Collection:
        return self.connect()[name]

    def ping(self) -> bool:
        """Return ``True`` when the server answers a ping within the timeout."""

        try:
            self.connect().command("ping")
        except (PyMongoError, BackendUnavailableError) as exc:
            logger.warning("MongoDB ping failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
            self._client = None
            self._database = None


__all__ = ["DEFAULT_TIMEOUT_MS", "MongoConnector"]
