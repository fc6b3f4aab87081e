"""Exceptions raised by the verification engine.

Platform check failures are not exceptions: they are ``CheckResult``
values folded into the Decision. Only conditions that end a request early
are raised.
"""


class VerificationError(Exception):
    """Base class for engine errors shown to members or admins."""


class Unconfigured(VerificationError):
    """The guild has no verification policy."""

    def __init__(self, guild_id: str):
        self.guild_id = guild_id
        super().__init__(f"Guild {guild_id} is not configured; ask an admin to configure it")


class Unauthenticated(VerificationError):
    """The member has never started linking an account."""

    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__(f"Member {member_id} has no linked accounts; link your accounts first")


class UnsupportedPlatform(VerificationError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unsupported platform: {name!r}")


class InvalidOAuthState(VerificationError):
    """The OAuth callback state is unknown, expired or already used."""

    def __init__(self) -> None:
        super().__init__("Invalid or expired OAuth state")


class LinkError(VerificationError):
    """The provider refused or failed the authorization-code exchange."""

    def __init__(self, platform: str, reason: str):
        self.platform = platform
        self.reason = reason
        super().__init__(f"{platform} account linking failed: {reason}")
