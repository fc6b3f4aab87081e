"""Repository for the users table."""

from __future__ import annotations

import asyncpg

from shared.models.user import User

_USER_COLUMNS = "id, discord_id, display_name, created_at, updated_at"


class UserRepository:
    """Pure SQL operations for users."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def ensure_user(self, discord_id: str, display_name: str) -> User:
        """Insert the member if unknown, refresh the display name otherwise."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO users (discord_id, display_name)
                VALUES ($1, $2)
                ON CONFLICT (discord_id) DO UPDATE SET
                    display_name = EXCLUDED.display_name,
                    updated_at   = NOW()
                RETURNING {_USER_COLUMNS}
                """,
                discord_id,
                display_name,
            )
            return User(**dict(row))

    async def get_user(self, discord_id: str) -> User | None:
        """Look up a member by chat identity."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_USER_COLUMNS} FROM users WHERE discord_id = $1",
                discord_id,
            )
            return User(**dict(row)) if row else None
