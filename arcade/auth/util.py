from __future__ import annotations

import base64
import hashlib
import os
from datetime import datetime, timezone


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def hash_token(token: str) -> str:
    """One-way hash used as the storage key for session tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def utcnow() -> datetime:
    """Seam for tests."""
    return datetime.now(timezone.utc)
