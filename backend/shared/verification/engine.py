"""Verification engine facade shared by the API server and the Discord bot."""

from __future__ import annotations

import logging
from typing import Any

import asyncpg
import httpx

from shared.config import Settings
from shared.models.credential import Credential, Platform, TokenExchange
from shared.models.policy import CommunityPolicy, PolicyValidation
from shared.models.verification import Decision, VerificationLogEntry
from shared.platforms import PlatformAdapter, TwitchAdapter, YouTubeAdapter
from shared.repositories import (
    CredentialRepository,
    PolicyRepository,
    UserRepository,
    VerificationLogRepository,
)

from .entitlement import ApplyResult, EntitlementApplier, RoleManager
from .janitor import TokenJanitor
from .linking import AccountLinkService, LinkStatus, PendingLinkStore
from .orchestrator import VerificationOrchestrator

logger = logging.getLogger(__name__)


class VerificationEngine:
    """Single entry point for verification, linking and policy management."""

    def __init__(
        self,
        *,
        users: UserRepository,
        credentials: CredentialRepository,
        policies: PolicyRepository,
        logs: VerificationLogRepository,
        adapters: dict[Platform, PlatformAdapter],
        orchestrator: VerificationOrchestrator,
        applier: EntitlementApplier,
        linker: AccountLinkService,
        janitor: TokenJanitor,
    ) -> None:
        self.users = users
        self.credentials = credentials
        self.policies = policies
        self.logs = logs
        self.adapters = adapters
        self.orchestrator = orchestrator
        self.applier = applier
        self.linker = linker
        self.janitor = janitor

    # ==================== Verification ====================

    async def verify(self, guild_id: str, member_id: str) -> Decision:
        return await self.orchestrator.verify(guild_id, member_id)

    async def verify_and_apply(
        self, guild_id: str, member_id: str, roles: RoleManager
    ) -> tuple[Decision, ApplyResult]:
        """Evaluate the guild's policy and grant the verified role if met."""
        policy, user = await self.orchestrator.load_context(guild_id, member_id)
        decision = await self.orchestrator.evaluate(policy, user)
        return decision, await self.applier.apply(decision, policy, roles)

    async def history(self, member_id: str, limit: int = 10) -> list[VerificationLogEntry]:
        user = await self.users.get_user(member_id)
        if user is None:
            return []
        return await self.logs.list_history(user.id, limit=limit)

    # ==================== Linking ====================

    async def link_start(self, member_id: str, display_name: str, platform: str | Platform) -> str:
        return await self.linker.link_start(member_id, display_name, platform)

    async def complete_callback(self, platform: str | Platform, code: str, state: str) -> Credential:
        return await self.linker.complete_callback(platform, code, state)

    async def complete_link(
        self, member_id: str, platform: str | Platform, exchange: TokenExchange
    ) -> Credential:
        return await self.linker.complete_link(member_id, platform, exchange)

    async def status(self, member_id: str) -> LinkStatus:
        return await self.linker.status(member_id)

    async def disconnect(self, member_id: str, platform: str | Platform) -> int:
        return await self.linker.disconnect(member_id, platform)

    # ==================== Policy ====================

    async def configure(self, guild_id: str, **fields: Any) -> CommunityPolicy:
        return await self.policies.upsert_policy(guild_id, **fields)

    async def get_policy(self, guild_id: str) -> CommunityPolicy | None:
        return await self.policies.get_policy(guild_id)

    async def delete_policy(self, guild_id: str) -> bool:
        return await self.policies.delete_policy(guild_id)

    async def list_policies(self) -> list[CommunityPolicy]:
        return await self.policies.list_policies()

    async def validate_policy(self, guild_id: str) -> PolicyValidation:
        policy = await self.policies.get_policy(guild_id)
        if policy is None:
            return PolicyValidation(errors=["Configuration not found"])
        return policy.validate()

    # ==================== Lifecycle ====================

    async def aclose(self) -> None:
        await self.janitor.stop()
        for adapter in self.adapters.values():
            await adapter.aclose()


def build_engine(
    pool: asyncpg.Pool,
    settings: Settings,
    *,
    http: httpx.AsyncClient | None = None,
) -> VerificationEngine:
    """Wire repositories, adapters and services for one process."""
    users = UserRepository(pool)
    credentials = CredentialRepository(pool)
    policies = PolicyRepository(pool)
    logs = VerificationLogRepository(pool)

    if not settings.google_client_id:
        logger.warning("GOOGLE_CLIENT_ID not set, YouTube linking will fail")
    if not settings.twitch_client_id:
        logger.warning("TWITCH_CLIENT_ID not set, Twitch linking will fail")

    adapters: dict[Platform, PlatformAdapter] = {
        Platform.YOUTUBE: YouTubeAdapter(
            settings.google_client_id,
            settings.google_client_secret,
            settings.youtube_redirect_uri,
            settings.youtube_api_key,
            http=http,
            timeout=settings.verification_timeout,
        ),
        Platform.TWITCH: TwitchAdapter(
            settings.twitch_client_id,
            settings.twitch_client_secret,
            settings.twitch_redirect_uri,
            http=http,
            timeout=settings.verification_timeout,
        ),
    }

    return VerificationEngine(
        users=users,
        credentials=credentials,
        policies=policies,
        logs=logs,
        adapters=adapters,
        orchestrator=VerificationOrchestrator(
            users=users,
            credentials=credentials,
            policies=policies,
            logs=logs,
            adapters=adapters,
            timeout=settings.verification_timeout,
        ),
        applier=EntitlementApplier(),
        linker=AccountLinkService(
            users=users,
            credentials=credentials,
            logs=logs,
            adapters=adapters,
            pending=PendingLinkStore(ttl=settings.oauth_state_ttl),
        ),
        janitor=TokenJanitor(credentials, interval=settings.token_sweep_interval),
    )
