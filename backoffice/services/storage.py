"""
File storage adapters for project documents.

Architecture:
    document_service → get_storage() → FileStorage adapter
                                         └── LocalFileStorage (disk, dev/test)

The adapter is registered on ``app.extensions["file_storage"]`` by the app
factory. Download links are short-lived HS256 tokens signed with the
application secret; ``resolve_signed_path`` verifies one and returns the
storage path it grants.
"""

import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

logger = logging.getLogger(__name__)

SIGNED_URL_TTL = 60
ALGORITHM = "HS256"


class StorageError(Exception):
    """The storage backend failed to save, remove or sign a file."""


class FileStorage(ABC):
    """Storage backend contract used by document_service."""

    @abstractmethod
    def save(self, path: str, content: bytes, mime_type: str) -> None:
        """Store *content* at *path*; must not overwrite an existing object."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Delete the object at *path*."""

    @abstractmethod
    def signed_url(self, path: str, expires_in: int = SIGNED_URL_TTL) -> str:
        """Return a time-limited URL granting read access to *path*."""


class LocalFileStorage(FileStorage):
    """Stores files under a local root directory."""

    def __init__(self, root: str, url_prefix: str = "/api/v1/documents/download"):
        self.root = os.path.abspath(root)
        self.url_prefix = url_prefix

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root, path))
        if not full.startswith(self.root + os.sep):
            raise StorageError(f"Path escapes storage root: {path}")
        return full

    def save(self, path, content, mime_type):
        full = self._full_path(path)
        if os.path.exists(full):
            raise StorageError(f"Object already exists: {path}")
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as fh:
                fh.write(content)
        except OSError as exc:
            raise StorageError(str(exc)) from exc

    def remove(self, path):
        try:
            os.remove(self._full_path(path))
        except FileNotFoundError:
            logger.warning("Storage remove: %s already gone", path)
        except OSError as exc:
            raise StorageError(str(exc)) from exc

    def signed_url(self, path, expires_in=SIGNED_URL_TTL):
        self._full_path(path)
        return f"{self.url_prefix}?token={sign_path(path, expires_in)}"

    def open_path(self, path: str) -> str:
        """Absolute filesystem path for serving a verified download."""
        full = self._full_path(path)
        if not os.path.exists(full):
            raise StorageError(f"Object not found: {path}")
        return full


# ── Signed download tokens ───────────────────────────────────────────────────


def _secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def sign_path(path: str, expires_in: int = SIGNED_URL_TTL) -> str:
    now = datetime.now(timezone.utc)
    payload = {"path": path, "type": "download", "iat": now, "exp": now + timedelta(seconds=expires_in)}
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def resolve_signed_path(token: str) -> str:
    """Return the storage path granted by *token*; raises jwt.InvalidTokenError."""
    payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    if payload.get("type") != "download" or not payload.get("path"):
        raise jwt.InvalidTokenError("Not a download token")
    return payload["path"]


def get_storage() -> FileStorage:
    return current_app.extensions["file_storage"]
