"""Utility helpers for token generation and UTC time handling."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Optional

TOKEN_BYTES = 32


def generate_token() -> str:
    """Generate a 64 character hex token for API keys, sessions and OAuth state."""

    return secrets.token_hex(TOKEN_BYTES)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime.

    Naive values are treated as UTC. Some backends (SQLite) hand back naive
    datetimes even for ``timezone=True`` columns.
    """

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
