"""Account linking: OAuth state, credential persistence, status and disconnect."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from shared.cache import _MISSING, AsyncTTLCache
from shared.errors import InvalidOAuthState, UnsupportedPlatform
from shared.models.credential import Credential, Platform, TokenExchange
from shared.models.verification import VerificationLogEntry
from shared.platforms.base import PlatformAdapter
from shared.repositories import (
    CredentialRepository,
    UserRepository,
    VerificationLogRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class PendingLink:
    """Who started an OAuth flow, kept until the provider calls back."""

    member_id: str
    display_name: str
    platform: Platform
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class PendingLinkStore:
    """Time-bounded map of OAuth state token -> PendingLink.

    Each state can be consumed once; unconsumed states expire after
    ``ttl`` seconds.
    """

    def __init__(
        self,
        ttl: float = 600,
        maxsize: int = 4096,
        timer: Callable[[], float] | None = None,
    ) -> None:
        self._cache = AsyncTTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def create(self, member_id: str, display_name: str, platform: Platform) -> str:
        state = secrets.token_urlsafe(32)
        self._cache.set(state, PendingLink(member_id, display_name, platform))
        return state

    def consume(self, state: str) -> PendingLink | None:
        link = self._cache.pop(state)
        return None if link is _MISSING else link

    def sweep(self) -> None:
        self._cache.expire()

    def __len__(self) -> int:
        return self._cache.size


class LinkState(StrEnum):
    CONNECTED = "connected"
    EXPIRED = "expired"
    DISCONNECTED = "disconnected"


@dataclass
class LinkStatus:
    member_id: str
    platforms: dict[Platform, LinkState]
    linked_since: datetime | None = None
    history: list[VerificationLogEntry] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "member_id": self.member_id,
            "platforms": {p.value: s.value for p, s in self.platforms.items()},
            "linked_since": self.linked_since.isoformat() if self.linked_since else None,
            "history": [
                {
                    "platform": e.platform,
                    "verification_type": e.verification_type,
                    "result": e.result,
                    "checked_at": e.checked_at.isoformat() if e.checked_at else None,
                }
                for e in self.history
            ],
        }


def parse_platform(name: str | Platform) -> Platform:
    platform = name if isinstance(name, Platform) else Platform.parse(name)
    if platform is None:
        raise UnsupportedPlatform(str(name))
    return platform


class AccountLinkService:
    """Owns the member side of credentials: link, status, disconnect."""

    def __init__(
        self,
        *,
        users: UserRepository,
        credentials: CredentialRepository,
        logs: VerificationLogRepository,
        adapters: Mapping[Platform, PlatformAdapter],
        pending: PendingLinkStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.users = users
        self.credentials = credentials
        self.logs = logs
        self.adapters = dict(adapters)
        self.pending = pending or PendingLinkStore()
        self._clock = clock or (lambda: datetime.now(UTC))

    def _adapter(self, platform: Platform) -> PlatformAdapter:
        adapter = self.adapters.get(platform)
        if adapter is None:
            raise UnsupportedPlatform(platform.value)
        return adapter

    async def link_start(self, member_id: str, display_name: str, platform: str | Platform) -> str:
        """Record the member and return the provider's consent URL."""
        platform = parse_platform(platform)
        adapter = self._adapter(platform)
        await self.users.ensure_user(member_id, display_name)
        state = self.pending.create(member_id, display_name, platform)
        logger.info(f"Started {platform.value} link for member {member_id}")
        return adapter.authorization_url(state)

    async def complete_callback(self, platform: str | Platform, code: str, state: str) -> Credential:
        """Handle the provider redirect: consume state, exchange code, save.

        Raises ``InvalidOAuthState`` for an unknown, expired, reused or
        cross-platform state and ``LinkError`` when the exchange fails.
        """
        platform = parse_platform(platform)
        pending = self.pending.consume(state)
        if pending is None or pending.platform is not platform:
            raise InvalidOAuthState()

        exchange = await self._adapter(platform).exchange_code(code)
        return await self.complete_link(
            pending.member_id, platform, exchange, display_name=pending.display_name
        )

    async def complete_link(
        self,
        member_id: str,
        platform: str | Platform,
        exchange: TokenExchange,
        display_name: str | None = None,
    ) -> Credential:
        platform = parse_platform(platform)
        if display_name is None:
            existing = await self.users.get_user(member_id)
            display_name = existing.display_name if existing else member_id
        user = await self.users.ensure_user(member_id, display_name)
        credential = await self.credentials.save_credential(
            user.id, platform, exchange, now=self._clock()
        )
        logger.info(f"Linked {platform.value} account for member {member_id}")
        return credential

    async def status(self, member_id: str, history_limit: int = 5) -> LinkStatus:
        user = await self.users.get_user(member_id)
        if user is None:
            return LinkStatus(member_id, {p: LinkState.DISCONNECTED for p in Platform})

        now = self._clock()
        linked = {c.platform: c for c in await self.credentials.list_credentials(user.id)}
        platforms: dict[Platform, LinkState] = {}
        for platform in Platform:
            credential = linked.get(platform)
            if credential is None:
                platforms[platform] = LinkState.DISCONNECTED
            elif credential.is_expired(now):
                platforms[platform] = LinkState.EXPIRED
            else:
                platforms[platform] = LinkState.CONNECTED

        history = await self.logs.list_history(user.id, limit=history_limit)
        return LinkStatus(member_id, platforms, linked_since=user.created_at, history=history)

    async def disconnect(self, member_id: str, platform: str | Platform) -> int:
        """Delete the member's credential for one platform or ``"all"``.

        Idempotent; an unknown member is not an error. Provider-side
        revocation is attempted after the local delete and never blocks it.
        """
        target: Platform | str = "all" if platform == "all" else parse_platform(platform)

        user = await self.users.get_user(member_id)
        if user is None:
            return 0

        if target == "all":
            revocable = await self.credentials.list_credentials(user.id)
        else:
            credential = await self.credentials.get_credential(user.id, target)
            revocable = [credential] if credential else []

        removed = await self.credentials.delete_credential(user.id, target)
        for credential in revocable:
            adapter = self.adapters.get(credential.platform)
            if adapter is not None:
                await adapter.revoke(credential.access_token)

        logger.info(f"Disconnected {target} for member {member_id} ({removed} removed)")
        return removed
