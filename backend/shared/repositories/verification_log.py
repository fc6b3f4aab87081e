"""Repository for the append-only verification_logs table."""

from __future__ import annotations

import asyncpg

from shared.models.verification import VerificationLogEntry


class VerificationLogRepository:
    """Audit history of platform checks. Rows are never updated or deleted."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def append(
        self,
        user_id: int,
        platform: str,
        verification_type: str,
        result: str,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO verification_logs (user_id, platform, verification_type, result)
                VALUES ($1, $2, $3, $4)
                """,
                user_id,
                platform,
                verification_type,
                result,
            )

    async def list_history(self, user_id: int, limit: int = 10) -> list[VerificationLogEntry]:
        """Most recent entries first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, user_id, platform, verification_type, result, checked_at
                FROM verification_logs
                WHERE user_id = $1
                ORDER BY checked_at DESC, id DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
            return [VerificationLogEntry(**dict(r)) for r in rows]
