"""Entitlement Applier: turns a satisfied Decision into a role grant."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

from shared.models.policy import CommunityPolicy
from shared.models.verification import Decision

logger = logging.getLogger(__name__)


class RoleManager(Protocol):
    """Role-mutation capability of the chat platform, bound to one guild."""

    async def has_role(self, member_id: str, role_id: str) -> bool: ...

    async def grant_role(self, member_id: str, role_id: str) -> None:
        """Grant the role. Raises on failure."""
        ...


class GrantStatus(StrEnum):
    DISABLED = "disabled"
    NOT_MET = "not_met"
    NO_ROLE_CONFIGURED = "no_role_configured"
    ALREADY_HELD = "already_held"
    GRANTED = "granted"
    FAILED = "failed"


@dataclass
class ApplyResult:
    status: GrantStatus
    role_id: str | None = None
    error: str | None = None

    @property
    def granted(self) -> bool:
        return self.status is GrantStatus.GRANTED

    @property
    def holds_role(self) -> bool:
        return self.status in (GrantStatus.GRANTED, GrantStatus.ALREADY_HELD)

    def as_dict(self) -> dict:
        data: dict = {"status": self.status.value, "role_id": self.role_id}
        if self.error:
            data["error"] = self.error
        return data


class EntitlementApplier:
    """Grant-only role applier.

    A grant is attempted only after ``has_role`` reports the role missing,
    and applies for the same (guild, member) are serialised so concurrent
    requests cannot both grant. Roles are never revoked.
    """

    def __init__(self, max_locks: int = 1024) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._max_locks = max_locks

    def _get_lock(self, key: tuple[str, str]) -> asyncio.Lock:
        if key not in self._locks:
            # Prune idle locks before growing
            if len(self._locks) >= self._max_locks:
                for k in list(self._locks):
                    if not self._locks[k].locked():
                        del self._locks[k]
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def apply(
        self, decision: Decision, policy: CommunityPolicy, roles: RoleManager
    ) -> ApplyResult:
        """Grant the verified role if the decision allows it.

        Grant failures are returned as ``FAILED``; they never invalidate the
        decision itself.
        """
        member_id = decision.member_id
        role_id = policy.verified_role_id

        if not policy.auto_assign_role:
            logger.info(f"Auto-assign disabled for guild {policy.guild_id}, not granting {member_id}")
            return ApplyResult(GrantStatus.DISABLED, role_id)
        if not decision.all_conditions_met:
            return ApplyResult(GrantStatus.NOT_MET, role_id)
        if not role_id:
            logger.warning(f"Guild {policy.guild_id} has no verified role configured")
            return ApplyResult(GrantStatus.NO_ROLE_CONFIGURED)

        async with self._get_lock((policy.guild_id, member_id)):
            try:
                if await roles.has_role(member_id, role_id):
                    return ApplyResult(GrantStatus.ALREADY_HELD, role_id)
                await roles.grant_role(member_id, role_id)
            except Exception as e:
                logger.error(
                    f"Failed to grant role {role_id} to {member_id} in guild {policy.guild_id}: "
                    f"{type(e).__name__}: {e}"
                )
                return ApplyResult(GrantStatus.FAILED, role_id, error=str(e) or type(e).__name__)

        logger.info(f"Granted role {role_id} to {member_id} in guild {policy.guild_id}")
        return ApplyResult(GrantStatus.GRANTED, role_id)
