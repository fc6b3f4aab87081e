"""Data models for the credentials table and OAuth token payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum


class Platform(StrEnum):
    """External content platforms a member can link."""

    YOUTUBE = "youtube"
    TWITCH = "twitch"

    @classmethod
    def parse(cls, value: str) -> Platform | None:
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


@dataclass
class TokenExchange:
    """Token payload returned by a provider's code exchange or refresh.

    ``expires_in`` is relative (seconds); the credential store turns it
    into an absolute expiry when saving.
    """

    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_in: int | None = None
    scope: str | None = None

    @classmethod
    def from_response(cls, data: dict) -> TokenExchange:
        """Build from a provider's JSON token response."""
        scope = data.get("scope")
        if isinstance(scope, list):
            scope = " ".join(scope)
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type") or "bearer",
            expires_in=int(expires_in) if expires_in else None,
            scope=scope,
        )


@dataclass
class Credential:
    """Delegated OAuth credential for one (user, platform) pair."""

    user_id: int
    platform: Platform
    access_token: str
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_at: datetime | None = None
    scope: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """A credential without expiry never expires."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))
