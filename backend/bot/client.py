"""
Rolegate Discord Bot
discord.py 2.x with slash commands
"""

import asyncio
import logging

import discord
from discord.ext import commands

from shared.config import Settings, get_settings
from shared.database import DatabaseManager, PoolConfig
from shared.logging import setup_logging
from shared.migrations.runner import MigrationRunner
from shared.verification import VerificationEngine, build_engine

logger = logging.getLogger("rolegate_bot")


class RolegateBot(commands.Bot):
    """Discord client that owns the verification engine for its process."""

    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.members = True  # role checks need member data

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )

        self.settings = settings
        self.db_manager = DatabaseManager(settings.database_url, PoolConfig.for_service("bot"))
        self.engine: VerificationEngine | None = None

        self.initial_extensions = [
            "bot.cogs.verification",
        ]

    async def setup_hook(self):
        """Connect storage, build the engine, load cogs and sync commands"""
        await self.db_manager.connect()
        await MigrationRunner(self.db_manager.pool).run_pending()

        self.engine = build_engine(self.db_manager.pool, self.settings)
        if self.settings.enable_token_janitor:
            self.engine.janitor.start()

        loaded = []
        failed = []
        for extension in self.initial_extensions:
            try:
                await self.load_extension(extension)
                loaded.append(extension.split(".")[-1])
            except Exception as e:
                failed.append(f"{extension.split('.')[-1]} ({e})")

        if loaded:
            logger.info(f"Loaded cogs: {', '.join(loaded)}")
        if failed:
            logger.error(f"Failed to load: {', '.join(failed)}")

        guild_id = self.settings.discord_guild_id
        if guild_id:
            # Guild sync is immediate; global sync can take up to an hour
            guild = discord.Object(id=int(guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info(f"Synced slash commands to guild {guild_id}")
        else:
            await self.tree.sync()
            logger.info("Synced slash commands globally")

    async def on_ready(self):
        logger.info(f"Bot ready: {self.user} (ID: {self.user.id if self.user else '?'})")
        logger.info(f"Connected to {len(self.guilds)} guilds | discord.py {discord.__version__}")

    async def close(self):
        if self.engine is not None:
            await self.engine.aclose()
            self.engine = None
        await self.db_manager.disconnect()
        await super().close()


async def main():
    """Bot entry point"""
    settings = get_settings()
    setup_logging(settings.log_level)

    if not settings.discord_bot_token:
        logger.error("DISCORD_BOT_TOKEN is not set")
        logger.error("Set it in backend/.env: DISCORD_BOT_TOKEN=your_token_here")
        return

    async with RolegateBot(settings) as bot:
        try:
            await bot.start(settings.discord_bot_token)
        except (KeyboardInterrupt, asyncio.CancelledError):
            if not bot.is_closed():
                await bot.close()
