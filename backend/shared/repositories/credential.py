"""Repository for the credentials table.

This is the only code allowed to mutate credential rows. There is at most
one current credential per (user, platform); saving replaces the prior row.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Literal

import asyncpg

from shared.models.credential import Credential, Platform, TokenExchange

logger = logging.getLogger(__name__)

_CREDENTIAL_COLUMNS = (
    "user_id, platform, access_token, refresh_token, token_type, "
    "expires_at, scope, created_at, updated_at"
)


def _to_credential(row: asyncpg.Record) -> Credential:
    data = dict(row)
    data["platform"] = Platform(data["platform"])
    return Credential(**data)


def _deleted_count(status: str) -> int:
    """Parse asyncpg's ``DELETE n`` command status."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class CredentialRepository:
    """Pure SQL operations for delegated OAuth credentials."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def save_credential(
        self,
        user_id: int,
        platform: Platform,
        token: TokenExchange,
        *,
        now: datetime | None = None,
    ) -> Credential:
        """Insert or replace the credential for (user, platform).

        The provider reports a relative ``expires_in``; it is stored as an
        absolute expiry. No ``expires_in`` means the credential never
        expires.
        """
        now = now or datetime.now(UTC)
        expires_at = now + timedelta(seconds=token.expires_in) if token.expires_in else None

        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO credentials
                    (user_id, platform, access_token, refresh_token, token_type, expires_at, scope)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (user_id, platform) DO UPDATE SET
                    access_token  = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    token_type    = EXCLUDED.token_type,
                    expires_at    = EXCLUDED.expires_at,
                    scope         = EXCLUDED.scope,
                    updated_at    = NOW()
                RETURNING {_CREDENTIAL_COLUMNS}
                """,
                user_id,
                platform.value,
                token.access_token,
                token.refresh_token,
                token.token_type,
                expires_at,
                token.scope,
            )
        logger.debug(f"Saved {platform.value} credential for user {user_id}")
        return _to_credential(row)

    async def get_credential(self, user_id: int, platform: Platform) -> Credential | None:
        """Return the current credential, or None when the user never linked."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CREDENTIAL_COLUMNS} FROM credentials "
                "WHERE user_id = $1 AND platform = $2",
                user_id,
                platform.value,
            )
            return _to_credential(row) if row else None

    async def list_credentials(self, user_id: int) -> list[Credential]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_CREDENTIAL_COLUMNS} FROM credentials WHERE user_id = $1",
                user_id,
            )
            return [_to_credential(r) for r in rows]

    async def delete_credential(
        self, user_id: int, platform: Platform | Literal["all"]
    ) -> int:
        """Delete one platform's credential, or all of them.

        Idempotent: deleting a credential that does not exist succeeds and
        returns 0.
        """
        async with self.pool.acquire() as conn:
            if platform == "all":
                status: str = await conn.execute(
                    "DELETE FROM credentials WHERE user_id = $1",
                    user_id,
                )
            else:
                status = await conn.execute(
                    "DELETE FROM credentials WHERE user_id = $1 AND platform = $2",
                    user_id,
                    Platform(platform).value,
                )
        return _deleted_count(status)

    async def sweep_expired(self, now: datetime | None = None) -> dict[Platform, int]:
        """Delete every credential whose expiry is before *now*.

        Credentials with no expiry are never swept. Returns removed row
        counts per platform.
        """
        now = now or datetime.now(UTC)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                DELETE FROM credentials
                WHERE expires_at IS NOT NULL AND expires_at < $1
                RETURNING platform
                """,
                now,
            )
        counts = {platform: 0 for platform in Platform}
        for row in rows:
            counts[Platform(row["platform"])] += 1
        return counts
