"""Verification Orchestrator.

Evaluates one community policy for one member against live platform state:

    policy loaded -> per-platform preparation (credential, refresh, channel)
                  -> concurrent checks -> audit log -> Decision

Every adapter outcome is folded into the Decision; only store failures
propagate.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime

from shared.errors import Unauthenticated, Unconfigured
from shared.models.credential import Credential, Platform
from shared.models.policy import CommunityPolicy
from shared.models.user import User
from shared.models.verification import CheckResult, Decision, VerificationKind
from shared.platforms.base import PlatformAdapter
from shared.repositories import (
    CredentialRepository,
    PolicyRepository,
    UserRepository,
    VerificationLogRepository,
)

logger = logging.getLogger(__name__)


def required_kinds(policy: CommunityPolicy) -> list[VerificationKind]:
    """Kinds whose ``require_*`` flag is set, in declaration order."""
    return [kind for kind in VerificationKind if getattr(policy, kind.policy_flag)]


@dataclass
class _PlatformContext:
    """Request-local state shared by every kind on one platform."""

    adapter: PlatformAdapter | None = None
    credential: Credential | None = None
    channel_id: str | None = None
    blocker: CheckResult | None = None


class VerificationOrchestrator:
    """Fan out the required platform checks and fold them into a Decision."""

    def __init__(
        self,
        *,
        users: UserRepository,
        credentials: CredentialRepository,
        policies: PolicyRepository,
        logs: VerificationLogRepository,
        adapters: Mapping[Platform, PlatformAdapter],
        timeout: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.users = users
        self.credentials = credentials
        self.policies = policies
        self.logs = logs
        self.adapters = dict(adapters)
        self.timeout = timeout
        self._clock = clock or (lambda: datetime.now(UTC))

    async def load_context(self, guild_id: str, member_id: str) -> tuple[CommunityPolicy, User]:
        """Load the policy and the member, aborting when either is missing."""
        policy = await self.policies.get_policy(guild_id)
        if policy is None:
            raise Unconfigured(guild_id)
        user = await self.users.get_user(member_id)
        if user is None:
            raise Unauthenticated(member_id)
        return policy, user

    async def verify(self, guild_id: str, member_id: str) -> Decision:
        policy, user = await self.load_context(guild_id, member_id)
        return await self.evaluate(policy, user)

    async def evaluate(self, policy: CommunityPolicy, user: User) -> Decision:
        kinds = required_kinds(policy)
        channel_fields = {kind.platform: kind.channel_field for kind in kinds}

        contexts = dict(
            zip(
                channel_fields,
                await asyncio.gather(
                    *(self._prepare(policy, user, p, f) for p, f in channel_fields.items())
                ),
                strict=True,
            )
        )
        outcomes = await asyncio.gather(*(self._check(kind, contexts[kind.platform]) for kind in kinds))

        decision = Decision(guild_id=policy.guild_id, member_id=user.discord_id)
        for kind, (result, invoked) in zip(kinds, outcomes, strict=True):
            decision.results[kind] = result
            if invoked:
                await self.logs.append(
                    user.id, kind.platform.value, kind.verification_type, result.label(kind)
                )

        logger.info(decision.summary())
        return decision

    # ------------------------------------------------------------------
    # Per-platform preparation
    # ------------------------------------------------------------------

    async def _prepare(
        self, policy: CommunityPolicy, user: User, platform: Platform, channel_field: str
    ) -> _PlatformContext:
        """Resolve everything the platform's checks share, once per request.

        The first failing step becomes the blocker for all of the platform's
        kinds: missing channel, missing adapter, missing or unrefreshable
        credential, unresolvable channel.
        """
        ctx = _PlatformContext(adapter=self.adapters.get(platform))

        configured = (getattr(policy, channel_field) or "").strip()
        if not configured:
            ctx.blocker = CheckResult.failure("channel not configured")
            return ctx
        if ctx.adapter is None:
            ctx.blocker = CheckResult.failure("unsupported")
            return ctx

        credential = await self.credentials.get_credential(user.id, platform)
        if credential is None:
            ctx.blocker = CheckResult.reauth(f"no {platform.value} account linked")
            return ctx
        if credential.is_expired(self._clock()):
            credential = await self._refresh(ctx.adapter, credential)
            if credential is None:
                ctx.blocker = CheckResult.reauth(f"{platform.value} credential expired")
                return ctx
        ctx.credential = credential

        try:
            ctx.channel_id = await asyncio.wait_for(
                ctx.adapter.resolve_channel(configured), timeout=self.timeout
            )
        except TimeoutError:
            logger.warning(f"{platform.value} channel lookup for {configured!r} timed out")
            ctx.blocker = CheckResult.failure("channel lookup timed out")
            return ctx
        except Exception as e:
            logger.exception(
                f"{platform.value} channel lookup for {configured!r} raised {type(e).__name__}"
            )
            ctx.blocker = CheckResult.failure(
                f"{platform.value} channel lookup failed ({type(e).__name__})"
            )
            return ctx
        if not ctx.channel_id:
            ctx.blocker = CheckResult.failure(f"{platform.value} channel {configured!r} not found")
        return ctx

    async def _refresh(self, adapter: PlatformAdapter, credential: Credential) -> Credential | None:
        """Refresh a locally expired credential and persist the result."""
        if not credential.refresh_token:
            return None
        try:
            refreshed = await asyncio.wait_for(adapter.refresh(credential), timeout=self.timeout)
        except TimeoutError:
            logger.warning(f"{credential.platform.value} token refresh for user {credential.user_id} timed out")
            return None
        except Exception as e:
            logger.exception(
                f"{credential.platform.value} token refresh for user {credential.user_id} "
                f"raised {type(e).__name__}"
            )
            return None
        if not refreshed.success or refreshed.token is None:
            logger.info(
                f"{credential.platform.value} token refresh for user {credential.user_id} "
                f"failed: {refreshed.error}"
            )
            return None
        return await self.credentials.save_credential(
            credential.user_id, credential.platform, refreshed.token, now=self._clock()
        )

    # ------------------------------------------------------------------
    # Per-kind check
    # ------------------------------------------------------------------

    async def _check(self, kind: VerificationKind, ctx: _PlatformContext) -> tuple[CheckResult, bool]:
        """Run one check. Returns the result and whether an adapter was invoked."""
        adapter, credential, channel_id = ctx.adapter, ctx.credential, ctx.channel_id
        if ctx.blocker is not None:
            return ctx.blocker, False
        if adapter is None or credential is None or not channel_id:
            return CheckResult.failure("not prepared"), False
        if not adapter.supports(kind):
            return CheckResult.failure("unsupported"), False

        try:
            result = await asyncio.wait_for(
                adapter.check(kind, credential, channel_id), timeout=self.timeout
            )
        except TimeoutError:
            logger.warning(f"{kind.value} check timed out after {self.timeout}s")
            result = CheckResult.failure("timed out")
        except Exception as e:
            logger.exception(f"{kind.value} check raised {type(e).__name__}")
            result = CheckResult.failure(f"{kind.value} check failed ({type(e).__name__})")
        return result, True

