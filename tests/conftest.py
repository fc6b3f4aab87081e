"""Shared fixtures: in-memory repositories and scripted platform adapters."""

from __future__ import annotations

import asyncio
import itertools
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.models.credential import Credential, Platform, TokenExchange
from shared.models.policy import CommunityPolicy
from shared.models.user import User
from shared.models.verification import CheckResult, VerificationKind, VerificationLogEntry
from shared.platforms.base import PlatformAdapter, TokenRefreshResult
from shared.repositories.policy import MUTABLE_FIELDS, _policy_cache
from shared.verification import (
    AccountLinkService,
    EntitlementApplier,
    PendingLinkStore,
    TokenJanitor,
    VerificationEngine,
    VerificationOrchestrator,
)

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


# ============================================
# In-memory repositories
# ============================================


class FakeUserRepository:
    def __init__(self) -> None:
        self.users: dict[str, User] = {}
        self._ids = itertools.count(1)

    async def ensure_user(self, discord_id: str, display_name: str) -> User:
        user = self.users.get(discord_id)
        if user is None:
            user = User(id=next(self._ids), discord_id=discord_id, display_name=display_name, created_at=NOW)
            self.users[discord_id] = user
        else:
            user.display_name = display_name
        return user

    async def get_user(self, discord_id: str) -> User | None:
        return self.users.get(discord_id)


class FakeCredentialRepository:
    def __init__(self) -> None:
        self.rows: dict[tuple[int, Platform], Credential] = {}

    async def save_credential(
        self, user_id: int, platform: Platform, token: TokenExchange, *, now: datetime | None = None
    ) -> Credential:
        now = now or NOW
        credential = Credential(
            user_id=user_id,
            platform=platform,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            token_type=token.token_type,
            expires_at=now + timedelta(seconds=token.expires_in) if token.expires_in else None,
            scope=token.scope,
            created_at=now,
            updated_at=now,
        )
        self.rows[(user_id, platform)] = credential
        return credential

    async def get_credential(self, user_id: int, platform: Platform) -> Credential | None:
        return self.rows.get((user_id, platform))

    async def list_credentials(self, user_id: int) -> list[Credential]:
        return [c for (uid, _), c in self.rows.items() if uid == user_id]

    async def delete_credential(self, user_id: int, platform: Platform | str) -> int:
        keys = [k for k in self.rows if k[0] == user_id and (platform == "all" or k[1] == platform)]
        for key in keys:
            del self.rows[key]
        return len(keys)

    async def sweep_expired(self, now: datetime | None = None) -> dict[Platform, int]:
        now = now or NOW
        counts = {p: 0 for p in Platform}
        for key, credential in list(self.rows.items()):
            if credential.expires_at is not None and credential.expires_at < now:
                del self.rows[key]
                counts[key[1]] += 1
        return counts


class FakePolicyRepository:
    def __init__(self) -> None:
        self.policies: dict[str, CommunityPolicy] = {}

    async def get_policy(self, guild_id: str) -> CommunityPolicy | None:
        return self.policies.get(guild_id)

    async def upsert_policy(self, guild_id: str, **fields: Any) -> CommunityPolicy:
        unknown = set(fields) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown policy fields: {', '.join(sorted(unknown))}")
        policy = self.policies.setdefault(guild_id, CommunityPolicy(guild_id=guild_id))
        for name, value in fields.items():
            setattr(policy, name, value)
        return policy

    async def delete_policy(self, guild_id: str) -> bool:
        return self.policies.pop(guild_id, None) is not None

    async def list_policies(self) -> list[CommunityPolicy]:
        return [self.policies[k] for k in sorted(self.policies)]


class FakeLogRepository:
    def __init__(self) -> None:
        self.entries: list[VerificationLogEntry] = []

    async def append(self, user_id: int, platform: str, verification_type: str, result: str) -> None:
        self.entries.append(
            VerificationLogEntry(
                id=len(self.entries) + 1,
                user_id=user_id,
                platform=platform,
                verification_type=verification_type,
                result=result,
                checked_at=NOW + timedelta(seconds=len(self.entries)),
            )
        )

    async def list_history(self, user_id: int, limit: int = 10) -> list[VerificationLogEntry]:
        mine = [e for e in self.entries if e.user_id == user_id]
        return list(reversed(mine))[:limit]


# ============================================
# Scripted adapters
# ============================================


class ScriptedAdapter(PlatformAdapter):
    """Adapter double whose check outcomes are set per kind.

    An outcome may be a ``CheckResult``, an exception to raise, or a delay
    in seconds (``float``) before answering ``success(True)``.
    """

    def __init__(
        self,
        platform: Platform,
        kinds: set[VerificationKind],
        outcomes: dict[VerificationKind, Any] | None = None,
        channels: dict[str, str | None] | None = None,
        refresh_result: TokenRefreshResult | None = None,
    ) -> None:
        super().__init__(http=MagicMock())
        self.platform = platform  # type: ignore[misc]
        self.supported_kinds = frozenset(kinds)  # type: ignore[misc]
        self.outcomes = outcomes or {}
        self.channels = channels or {}
        self.refresh_result = refresh_result or TokenRefreshResult(success=False, error="no script")
        self.calls: list[tuple[VerificationKind, str, str]] = []
        self.resolved: list[str] = []
        self.refreshed: list[Credential] = []
        self.revoked: list[str] = []

    def authorization_url(self, state: str) -> str:
        return f"https://auth.example/{self.platform.value}?state={state}"

    async def exchange_code(self, code: str) -> TokenExchange:
        return TokenExchange(access_token=f"{self.platform.value}-{code}", refresh_token="r", expires_in=3600)

    async def refresh(self, credential: Credential) -> TokenRefreshResult:
        self.refreshed.append(credential)
        return self.refresh_result

    async def revoke(self, access_token: str) -> None:
        self.revoked.append(access_token)

    async def resolve_channel(self, name_or_id: str) -> str | None:
        self.resolved.append(name_or_id)
        return self.channels.get(name_or_id, f"id-{name_or_id}")

    async def check(self, kind: VerificationKind, credential: Credential, channel_id: str) -> CheckResult:
        self.calls.append((kind, credential.access_token, channel_id))
        outcome = self.outcomes.get(kind, CheckResult.success(True))
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, float):
            await asyncio.sleep(outcome)
            return CheckResult.success(True)
        return outcome


def youtube_adapter(**kwargs: Any) -> ScriptedAdapter:
    return ScriptedAdapter(Platform.YOUTUBE, {VerificationKind.YOUTUBE_SUBSCRIPTION}, **kwargs)


def twitch_adapter(**kwargs: Any) -> ScriptedAdapter:
    return ScriptedAdapter(
        Platform.TWITCH,
        {VerificationKind.TWITCH_FOLLOW, VerificationKind.TWITCH_SUBSCRIPTION},
        **kwargs,
    )


def token(access: str, refresh: str | None = None, expires_in: int | None = 3600) -> TokenExchange:
    return TokenExchange(access_token=access, refresh_token=refresh, expires_in=expires_in)


# ============================================
# Mocked asyncpg pool
# ============================================


def async_cm(value: Any) -> MagicMock:
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=value)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


@pytest.fixture
def conn() -> MagicMock:
    connection = MagicMock()
    connection.fetchrow = AsyncMock()
    connection.fetchval = AsyncMock()
    connection.fetch = AsyncMock(return_value=[])
    connection.execute = AsyncMock()
    connection.transaction = MagicMock(side_effect=lambda: async_cm(None))
    return connection


@pytest.fixture
def pool(conn: MagicMock) -> MagicMock:
    mock_pool = MagicMock()
    mock_pool.acquire = MagicMock(side_effect=lambda *a, **kw: async_cm(conn))
    return mock_pool


# ============================================
# Engine fixtures
# ============================================


@pytest.fixture(autouse=True)
def clear_policy_cache():
    _policy_cache.clear()
    yield
    _policy_cache.clear()


@pytest.fixture
def users() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def credentials() -> FakeCredentialRepository:
    return FakeCredentialRepository()


@pytest.fixture
def policies() -> FakePolicyRepository:
    return FakePolicyRepository()


@pytest.fixture
def logs() -> FakeLogRepository:
    return FakeLogRepository()


@pytest.fixture
def yt() -> ScriptedAdapter:
    return youtube_adapter()


@pytest.fixture
def tw() -> ScriptedAdapter:
    return twitch_adapter()


@pytest.fixture
def adapters(yt: ScriptedAdapter, tw: ScriptedAdapter) -> dict[Platform, PlatformAdapter]:
    return {Platform.YOUTUBE: yt, Platform.TWITCH: tw}


@pytest.fixture
def orchestrator(users, credentials, policies, logs, adapters) -> VerificationOrchestrator:
    return VerificationOrchestrator(
        users=users,
        credentials=credentials,
        policies=policies,
        logs=logs,
        adapters=adapters,
        timeout=0.5,
        clock=lambda: NOW,
    )


@pytest.fixture
def engine(users, credentials, policies, logs, adapters, orchestrator) -> VerificationEngine:
    return VerificationEngine(
        users=users,
        credentials=credentials,
        policies=policies,
        logs=logs,
        adapters=adapters,
        orchestrator=orchestrator,
        applier=EntitlementApplier(),
        linker=AccountLinkService(
            users=users,
            credentials=credentials,
            logs=logs,
            adapters=adapters,
            pending=PendingLinkStore(ttl=600),
            clock=lambda: NOW,
        ),
        janitor=TokenJanitor(credentials, interval=3600, clock=lambda: NOW),
    )


@pytest.fixture
def scenario_policy(policies: FakePolicyRepository) -> CommunityPolicy:
    policy = CommunityPolicy(
        guild_id="g1",
        guild_name="Test Guild",
        youtube_channel_id="UC1",
        twitch_channel_name="foo",
        verified_role_id="999",
        require_youtube=True,
        require_twitch_follow=True,
        require_twitch_sub=False,
    )
    policies.policies["g1"] = policy
    return policy
