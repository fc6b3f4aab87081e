"""Data models for the community_policies table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class CommunityPolicy:
    """Per-guild requirement set and the role it unlocks."""

    guild_id: str
    guild_name: str | None = None
    youtube_channel_id: str | None = None
    twitch_channel_name: str | None = None
    verified_role_id: str | None = None
    admin_role_id: str | None = None
    auto_assign_role: bool = True
    require_youtube: bool = True
    require_twitch_follow: bool = True
    require_twitch_sub: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def requires_anything(self) -> bool:
        return self.require_youtube or self.require_twitch_follow or self.require_twitch_sub

    def validate(self) -> PolicyValidation:
        """Check the policy for admin-facing problems.

        Validation never blocks a verification attempt: an invalid policy
        still evaluates, with unconfigured channels counting as not met.
        """
        result = PolicyValidation()

        if not self.verified_role_id:
            result.errors.append("Verified role is not configured")
        if self.require_youtube and not self.youtube_channel_id:
            result.errors.append("YouTube subscription is required but no YouTube channel is set")
        if (self.require_twitch_follow or self.require_twitch_sub) and not self.twitch_channel_name:
            result.errors.append("Twitch is required but no Twitch channel is set")

        if not self.admin_role_id:
            result.warnings.append("No admin role configured")
        if not self.requires_anything:
            result.warnings.append("No verification required - every member will pass")

        return result


@dataclass
class PolicyValidation:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def as_dict(self) -> dict:
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}
