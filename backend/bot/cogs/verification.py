"""
Verification Cog
Account linking, role verification and per-guild policy setup
"""

import logging
from urllib.parse import urlencode

import discord
from discord import app_commands
from discord.ext import commands

from shared.errors import VerificationError
from shared.models.policy import CommunityPolicy
from shared.models.verification import CheckResult, CheckStatus, Decision, VerificationKind
from shared.verification import ApplyResult, GrantStatus, LinkState, VerificationEngine

logger = logging.getLogger(__name__)

_KIND_TITLES = {
    VerificationKind.YOUTUBE_SUBSCRIPTION: "YouTube subscription",
    VerificationKind.TWITCH_FOLLOW: "Twitch follow",
    VerificationKind.TWITCH_SUBSCRIPTION: "Twitch subscription",
}

_STATE_ICONS = {
    LinkState.CONNECTED: "🟢 connected",
    LinkState.EXPIRED: "🟡 expired, relink with /link",
    LinkState.DISCONNECTED: "⚪ not linked",
}

_GRANT_MESSAGES = {
    GrantStatus.GRANTED: "Role granted",
    GrantStatus.ALREADY_HELD: "You already have the verified role",
    GrantStatus.DISABLED: "Automatic role assignment is off; ask an admin",
    GrantStatus.NO_ROLE_CONFIGURED: "No verified role is configured; ask an admin",
    GrantStatus.NOT_MET: "Requirements not met yet",
    GrantStatus.FAILED: "Could not assign the role",
}


class DiscordRoleManager:
    """Role-mutation capability bound to one guild."""

    def __init__(self, guild: discord.Guild):
        self.guild = guild

    async def _member(self, member_id: str) -> discord.Member:
        member = self.guild.get_member(int(member_id))
        if member is None:
            member = await self.guild.fetch_member(int(member_id))
        return member

    async def has_role(self, member_id: str, role_id: str) -> bool:
        member = await self._member(member_id)
        return any(role.id == int(role_id) for role in member.roles)

    async def grant_role(self, member_id: str, role_id: str) -> None:
        role = self.guild.get_role(int(role_id))
        if role is None:
            raise LookupError(f"Role {role_id} does not exist in {self.guild.name}")
        member = await self._member(member_id)
        await member.add_roles(role, reason="Rolegate verification passed")


def is_guild_admin(member: discord.Member, policy: CommunityPolicy | None) -> bool:
    """Administrator, Manage Server, or the policy's admin role."""
    perms = member.guild_permissions
    if perms.administrator or perms.manage_guild:
        return True
    if policy is not None and policy.admin_role_id:
        return any(str(role.id) == policy.admin_role_id for role in member.roles)
    return False


def _error_embed(message: str) -> discord.Embed:
    return discord.Embed(title="Verification", description=message, color=discord.Color.red())


def _describe_result(result: CheckResult) -> str:
    if result.status is CheckStatus.NEEDS_AUTH:
        return "🔑 Link or re-link your account with /link"
    if result.status is CheckStatus.ERROR:
        return f"⚠️ Could not check right now ({result.error}); try again later"
    if not result.value:
        return "❌ Not met"
    if result.tier:
        gift = ", gifted" if result.is_gift else ""
        return f"✅ Tier {result.tier_level}{gift}"
    return "✅ Met"


def decision_embed(decision: Decision, applied: ApplyResult | None = None) -> discord.Embed:
    met = decision.all_conditions_met
    embed = discord.Embed(
        title="Verification passed" if met else "Verification not passed",
        color=discord.Color.green() if met else discord.Color.orange(),
    )
    if not decision.results:
        embed.description = "This server requires no platform checks."
    for kind, result in decision.results.items():
        embed.add_field(name=_KIND_TITLES[kind], value=_describe_result(result), inline=False)
    if applied is not None:
        text = _GRANT_MESSAGES[applied.status]
        if applied.error:
            text = f"{text}: {applied.error}"
        if applied.role_id and applied.holds_role:
            text = f"{text} (<@&{applied.role_id}>)"
        embed.add_field(name="Role", value=text, inline=False)
    embed.set_footer(text=f"Checked at {decision.checked_at:%Y-%m-%d %H:%M:%S} UTC")
    return embed


def policy_embed(policy: CommunityPolicy, errors: list[str], warnings: list[str]) -> discord.Embed:
    embed = discord.Embed(
        title=f"Verification setup for {policy.guild_name or policy.guild_id}",
        color=discord.Color.blue() if not errors else discord.Color.red(),
    )
    embed.add_field(name="YouTube channel", value=policy.youtube_channel_id or "not set", inline=True)
    embed.add_field(name="Twitch channel", value=policy.twitch_channel_name or "not set", inline=True)
    embed.add_field(
        name="Verified role",
        value=f"<@&{policy.verified_role_id}>" if policy.verified_role_id else "not set",
        inline=True,
    )
    embed.add_field(
        name="Admin role",
        value=f"<@&{policy.admin_role_id}>" if policy.admin_role_id else "not set",
        inline=True,
    )
    flags = [
        f"{'✅' if policy.require_youtube else '➖'} YouTube subscription",
        f"{'✅' if policy.require_twitch_follow else '➖'} Twitch follow",
        f"{'✅' if policy.require_twitch_sub else '➖'} Twitch subscription",
        f"{'✅' if policy.auto_assign_role else '➖'} Auto-assign role",
    ]
    embed.add_field(name="Requirements", value="\n".join(flags), inline=False)
    if errors:
        embed.add_field(name="Errors", value="\n".join(f"• {e}" for e in errors), inline=False)
    if warnings:
        embed.add_field(name="Warnings", value="\n".join(f"• {w}" for w in warnings), inline=False)
    return embed


class Verification(commands.Cog):
    """Account linking and role verification commands"""

    def __init__(self, bot: commands.Bot):
        self.bot = bot

    @property
    def engine(self) -> VerificationEngine:
        engine = getattr(self.bot, "engine", None)
        if engine is None:
            raise RuntimeError("Verification engine not initialised")
        return engine

    def _link_url(self, platform: str, user: discord.abc.User) -> str:
        api_url = self.bot.settings.api_url.rstrip("/")  # type: ignore[attr-defined]
        query = urlencode({"discord_id": str(user.id), "discord_username": user.display_name})
        return f"{api_url}/auth/{platform}?{query}"

    async def _check_admin(
        self, interaction: discord.Interaction
    ) -> tuple[bool, CommunityPolicy | None]:
        """Load the guild policy and check the caller may administer it.

        Sends the rejection itself when the caller is not an admin.
        """
        policy = await self.engine.get_policy(str(interaction.guild_id))
        if not isinstance(interaction.user, discord.Member) or not is_guild_admin(
            interaction.user, policy
        ):
            await interaction.response.send_message(
                embed=_error_embed("You need Administrator, Manage Server or the admin role."),
                ephemeral=True,
            )
            logger.warning(
                f"Unauthorised setup attempt by {interaction.user} in guild {interaction.guild_id}"
            )
            return False, policy
        return True, policy

    # ==================== Member commands ====================

    @app_commands.command(name="verify", description="Check your linked accounts and get the verified role")
    @app_commands.guild_only()
    async def verify(self, interaction: discord.Interaction):
        guild = interaction.guild
        if guild is None:
            return
        await interaction.response.defer(ephemeral=True)
        try:
            decision, applied = await self.engine.verify_and_apply(
                str(guild.id), str(interaction.user.id), DiscordRoleManager(guild)
            )
        except VerificationError as e:
            await interaction.followup.send(embed=_error_embed(str(e)), ephemeral=True)
            return
        await interaction.followup.send(embed=decision_embed(decision, applied), ephemeral=True)

    @app_commands.command(name="link", description="Link your YouTube and Twitch accounts")
    async def link(self, interaction: discord.Interaction):
        view = discord.ui.View()
        view.add_item(
            discord.ui.Button(label="Link YouTube", url=self._link_url("youtube", interaction.user))
        )
        view.add_item(
            discord.ui.Button(label="Link Twitch", url=self._link_url("twitch", interaction.user))
        )
        embed = discord.Embed(
            title="Link your accounts",
            description="Open each link, approve access, then run /verify.",
            color=discord.Color.blurple(),
        )
        await interaction.response.send_message(embed=embed, view=view, ephemeral=True)

    @app_commands.command(name="status", description="Show your linked accounts")
    async def status(self, interaction: discord.Interaction):
        status = await self.engine.status(str(interaction.user.id))
        embed = discord.Embed(title="Linked accounts", color=discord.Color.blue())
        for platform, state in status.platforms.items():
            embed.add_field(name=platform.value.title(), value=_STATE_ICONS[state], inline=True)
        if status.linked_since:
            embed.add_field(
                name="Member since", value=status.linked_since.strftime("%Y-%m-%d"), inline=False
            )
        if status.history:
            lines = [
                f"{e.checked_at:%Y-%m-%d %H:%M} {e.platform} {e.verification_type}: {e.result}"
                if e.checked_at
                else f"{e.platform} {e.verification_type}: {e.result}"
                for e in status.history
            ]
            embed.add_field(name="Recent checks", value="\n".join(lines), inline=False)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="disconnect", description="Remove a linked account")
    @app_commands.describe(platform="Which account to remove")
    @app_commands.choices(
        platform=[
            app_commands.Choice(name="YouTube", value="youtube"),
            app_commands.Choice(name="Twitch", value="twitch"),
            app_commands.Choice(name="All", value="all"),
        ]
    )
    async def disconnect(self, interaction: discord.Interaction, platform: app_commands.Choice[str]):
        removed = await self.engine.disconnect(str(interaction.user.id), platform.value)
        message = (
            f"Disconnected {platform.name}." if removed else f"No {platform.name} account was linked."
        )
        await interaction.response.send_message(message, ephemeral=True)

    # ==================== Admin commands ====================

    @app_commands.command(name="setup", description="Show this server's verification setup")
    @app_commands.guild_only()
    async def setup_command(self, interaction: discord.Interaction):
        allowed, policy = await self._check_admin(interaction)
        if not allowed:
            return
        if policy is None:
            await interaction.response.send_message(
                embed=_error_embed("This server is not configured yet. Use /configure."),
                ephemeral=True,
            )
            return
        validation = policy.validate()
        await interaction.response.send_message(
            embed=policy_embed(policy, validation.errors, validation.warnings), ephemeral=True
        )

    @app_commands.command(name="configure", description="Change this server's verification setup")
    @app_commands.guild_only()
    @app_commands.describe(
        youtube_channel="YouTube channel id (UC...) or @handle",
        twitch_channel="Twitch channel login name",
        verified_role="Role granted to verified members",
        admin_role="Role allowed to manage verification",
        require_youtube="Require a YouTube subscription",
        require_twitch_follow="Require a Twitch follow",
        require_twitch_sub="Require a Twitch subscription",
        auto_assign_role="Grant the role automatically on /verify",
    )
    async def configure(
        self,
        interaction: discord.Interaction,
        youtube_channel: str | None = None,
        twitch_channel: str | None = None,
        verified_role: discord.Role | None = None,
        admin_role: discord.Role | None = None,
        require_youtube: bool | None = None,
        require_twitch_follow: bool | None = None,
        require_twitch_sub: bool | None = None,
        auto_assign_role: bool | None = None,
    ):
        allowed, _ = await self._check_admin(interaction)
        guild = interaction.guild
        if not allowed or guild is None:
            return

        fields: dict = {"guild_name": guild.name}
        if youtube_channel is not None:
            fields["youtube_channel_id"] = youtube_channel.strip()
        if twitch_channel is not None:
            fields["twitch_channel_name"] = twitch_channel.strip().lstrip("@").lower()
        if verified_role is not None:
            fields["verified_role_id"] = str(verified_role.id)
        if admin_role is not None:
            fields["admin_role_id"] = str(admin_role.id)
        for name, value in (
            ("require_youtube", require_youtube),
            ("require_twitch_follow", require_twitch_follow),
            ("require_twitch_sub", require_twitch_sub),
            ("auto_assign_role", auto_assign_role),
        ):
            if value is not None:
                fields[name] = value

        policy = await self.engine.configure(str(guild.id), **fields)
        validation = policy.validate()
        logger.info(f"{interaction.user} configured guild {guild.id}: {sorted(fields)}")
        await interaction.response.send_message(
            embed=policy_embed(policy, validation.errors, validation.warnings), ephemeral=True
        )

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ):
        logger.error(f"Command error: {error}", exc_info=error)
        message = "Something went wrong while running this command."
        if interaction.response.is_done():
            await interaction.followup.send(message, ephemeral=True)
        else:
            await interaction.response.send_message(message, ephemeral=True)


async def setup(bot: commands.Bot):
    await bot.add_cog(Verification(bot))
