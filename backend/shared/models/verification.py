"""Verification outcome models and the verification_logs table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from .credential import Platform


class VerificationKind(StrEnum):
    """One checkable condition a community can require."""

    YOUTUBE_SUBSCRIPTION = "youtube_subscription"
    TWITCH_FOLLOW = "twitch_follow"
    TWITCH_SUBSCRIPTION = "twitch_subscription"

    @property
    def platform(self) -> Platform:
        return _KIND_PLATFORM[self]

    @property
    def policy_flag(self) -> str:
        """Name of the ``CommunityPolicy`` flag that requires this kind."""
        return _KIND_FLAG[self]

    @property
    def channel_field(self) -> str:
        """Name of the ``CommunityPolicy`` field holding the target channel."""
        return _PLATFORM_CHANNEL_FIELD[self.platform]

    @property
    def verification_type(self) -> str:
        return "follow" if self is VerificationKind.TWITCH_FOLLOW else "subscription"


_KIND_PLATFORM = {
    VerificationKind.YOUTUBE_SUBSCRIPTION: Platform.YOUTUBE,
    VerificationKind.TWITCH_FOLLOW: Platform.TWITCH,
    VerificationKind.TWITCH_SUBSCRIPTION: Platform.TWITCH,
}
_KIND_FLAG = {
    VerificationKind.YOUTUBE_SUBSCRIPTION: "require_youtube",
    VerificationKind.TWITCH_FOLLOW: "require_twitch_follow",
    VerificationKind.TWITCH_SUBSCRIPTION: "require_twitch_sub",
}
_PLATFORM_CHANNEL_FIELD = {
    Platform.YOUTUBE: "youtube_channel_id",
    Platform.TWITCH: "twitch_channel_name",
}


class CheckStatus(StrEnum):
    OK = "ok"
    NEEDS_AUTH = "needs_auth"
    ERROR = "error"


@dataclass(frozen=True)
class CheckResult:
    """Three-way outcome of a single platform check.

    ``OK`` carries a definitive boolean; ``NEEDS_AUTH`` means the provider
    rejected the credential (or none is usable); ``ERROR`` is any other
    failure and is safe to retry on a later request.
    """

    status: CheckStatus
    value: bool = False
    tier: str | None = None
    plan_name: str | None = None
    is_gift: bool | None = None
    error: str | None = None

    @classmethod
    def success(
        cls,
        value: bool,
        tier: str | None = None,
        plan_name: str | None = None,
        is_gift: bool | None = None,
    ) -> CheckResult:
        return cls(CheckStatus.OK, value=value, tier=tier, plan_name=plan_name, is_gift=is_gift)

    @classmethod
    def reauth(cls, error: str | None = None) -> CheckResult:
        return cls(CheckStatus.NEEDS_AUTH, error=error)

    @classmethod
    def failure(cls, error: str) -> CheckResult:
        return cls(CheckStatus.ERROR, error=error)

    @property
    def ok(self) -> bool:
        return self.status is CheckStatus.OK

    @property
    def needs_auth(self) -> bool:
        return self.status is CheckStatus.NEEDS_AUTH

    @property
    def satisfied(self) -> bool:
        return self.ok and self.value

    @property
    def tier_level(self) -> str:
        """Twitch tier as 1/2/3 ("1000" -> "1"), or "unknown"."""
        if not self.tier:
            return "unknown"
        try:
            return str(int(self.tier) // 1000)
        except ValueError:
            return self.tier

    def label(self, kind: VerificationKind) -> str:
        """Audit-log label for this outcome.

        Anything other than a positive definitive answer is recorded with
        the negative label of the kind.
        """
        if kind is VerificationKind.TWITCH_FOLLOW:
            return "followed" if self.satisfied else "not_followed"
        if not self.satisfied:
            return "not_subscribed"
        if kind is VerificationKind.TWITCH_SUBSCRIPTION:
            return f"subscribed_tier_{self.tier_level}"
        return "subscribed"

    def as_dict(self) -> dict:
        data: dict = {"ok": self.ok, "value": self.value, "needs_auth": self.needs_auth}
        if self.tier is not None:
            data["tier"] = self.tier
        if self.plan_name is not None:
            data["plan_name"] = self.plan_name
        if self.is_gift is not None:
            data["is_gift"] = self.is_gift
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class Decision:
    """Aggregated result of evaluating one policy for one member.

    ``results`` holds exactly the kinds the policy requires. Kinds that are
    not required are vacuously satisfied, so a policy requiring nothing
    always passes.
    """

    guild_id: str
    member_id: str
    results: dict[VerificationKind, CheckResult] = field(default_factory=dict)
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def all_conditions_met(self) -> bool:
        return all(result.satisfied for result in self.results.values())

    @property
    def needs_auth(self) -> bool:
        return any(result.needs_auth for result in self.results.values())

    @property
    def has_errors(self) -> bool:
        return any(result.status is CheckStatus.ERROR for result in self.results.values())

    def summary(self) -> str:
        """One-line rendering used for the decision log line."""
        kinds = ",".join(
            f"{kind.value}={result.status.value}:{result.value}"
            for kind, result in self.results.items()
        )
        return (
            f"Decision guild={self.guild_id} member={self.member_id} "
            f"met={self.all_conditions_met} kinds=[{kinds}]"
        )

    def as_dict(self) -> dict:
        return {
            "guild_id": self.guild_id,
            "member_id": self.member_id,
            "results": {kind.value: result.as_dict() for kind, result in self.results.items()},
            "all_conditions_met": self.all_conditions_met,
            "needs_auth": self.needs_auth,
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass
class VerificationLogEntry:
    """Append-only audit record of one adapter invocation."""

    id: int
    user_id: int
    platform: str
    verification_type: str
    result: str
    checked_at: datetime | None = None
