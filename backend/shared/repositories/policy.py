"""Repository for the community_policies table."""

from __future__ import annotations

import logging
from typing import Any

import asyncpg

from shared.cache import AsyncTTLCache, cached
from shared.models.policy import CommunityPolicy

logger = logging.getLogger(__name__)

# Policies are read on every verification and written rarely by admins.
# The cache is per process, so a write made by the other process shows up
# here only once the entry expires.
POLICY_CACHE_TTL = 10
_policy_cache = AsyncTTLCache(maxsize=256, ttl=POLICY_CACHE_TTL)

_POLICY_COLUMNS = (
    "guild_id, guild_name, youtube_channel_id, twitch_channel_name, "
    "verified_role_id, admin_role_id, auto_assign_role, require_youtube, "
    "require_twitch_follow, require_twitch_sub, created_at, updated_at"
)

# Fields an administrator may change. Defaults for the boolean flags live in
# the table definition and only apply when the row is first created.
MUTABLE_FIELDS = frozenset(
    {
        "guild_name",
        "youtube_channel_id",
        "twitch_channel_name",
        "verified_role_id",
        "admin_role_id",
        "auto_assign_role",
        "require_youtube",
        "require_twitch_follow",
        "require_twitch_sub",
    }
)


class PolicyRepository:
    """Pure SQL operations for per-guild verification policies."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    @cached(cache=_policy_cache, key_func=lambda self, guild_id: f"policy:{guild_id}")
    async def get_policy(self, guild_id: str) -> CommunityPolicy | None:
        """Get a guild's policy, or None when the guild is unconfigured."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_POLICY_COLUMNS} FROM community_policies WHERE guild_id = $1",
                guild_id,
            )
            return CommunityPolicy(**dict(row)) if row else None

    async def upsert_policy(self, guild_id: str, **fields: Any) -> CommunityPolicy:
        """Create or partially update a guild's policy.

        Only the given fields are written. On first creation every omitted
        field takes its column default (auto_assign_role, require_youtube and
        require_twitch_follow true; require_twitch_sub false). On update the
        omitted fields keep their stored values.
        """
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown policy fields: {', '.join(sorted(unknown))}")

        updates: list[str] = []
        values: list[Any] = []
        idx = 1
        for name in sorted(fields):
            updates.append(f"{name} = ${idx}")
            values.append(fields[name])
            idx += 1
        values.append(guild_id)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                created = await conn.fetchval(
                    """
                    INSERT INTO community_policies (guild_id)
                    VALUES ($1)
                    ON CONFLICT (guild_id) DO NOTHING
                    RETURNING TRUE
                    """,
                    guild_id,
                )
                if updates:
                    row = await conn.fetchrow(
                        f"UPDATE community_policies "
                        f"SET {', '.join(updates)}, updated_at = NOW() "
                        f"WHERE guild_id = ${idx} "
                        f"RETURNING {_POLICY_COLUMNS}",
                        *values,
                    )
                else:
                    row = await conn.fetchrow(
                        f"SELECT {_POLICY_COLUMNS} FROM community_policies WHERE guild_id = $1",
                        guild_id,
                    )

        _policy_cache.invalidate(f"policy:{guild_id}")
        action = "created" if created else "updated"
        logger.info(f"Policy {action} for guild {guild_id}: {sorted(fields)}")
        return CommunityPolicy(**dict(row))

    async def delete_policy(self, guild_id: str) -> bool:
        """Delete a guild's policy. Returns True if a row was deleted."""
        async with self.pool.acquire() as conn:
            result: str = await conn.execute(
                "DELETE FROM community_policies WHERE guild_id = $1",
                guild_id,
            )
        _policy_cache.invalidate(f"policy:{guild_id}")
        return result == "DELETE 1"

    async def list_policies(self) -> list[CommunityPolicy]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_POLICY_COLUMNS} FROM community_policies ORDER BY guild_id"
            )
            return [CommunityPolicy(**dict(r)) for r in rows]
