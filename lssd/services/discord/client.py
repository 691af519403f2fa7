"""
Discord Client (Chat Facade)

This module owns the Discord connection itself.

Responsibilities:
- connect to Discord and report readiness
- register the recorder command group on a discord.py Bot
- route guild messages to command processing
- implement the ChatNotifier surface (send text, add reaction)
- expose a clean async start() / close() contract

IMPORTANT:
- This client MUST NOT create its own event loop
- Login or connect failure during start() is fatal to the caller
"""

from __future__ import annotations

import asyncio
from typing import Optional

import discord
from discord.ext import commands

from lssd.services.discord.commands import recorder as recorder_commands
from lssd.shared.logging.logger import get_logger

# NOTE: routed to Discord runtime log file
log = get_logger("discord.client", runtime="discord")


class DiscordClient:
    """
    Thin wrapper around discord.py Bot.
    """

    def __init__(self, token: str):
        if not token:
            raise RuntimeError("DISCORD_BOT_TOKEN not found in environment")

        log.info(f"Discord bot token present: {bool(token)}")

        self._token: str = token
        self._client: Optional[commands.Bot] = None
        self._ready_event = asyncio.Event()
        self._connect_task: Optional[asyncio.Task] = None
        self._handler = None
        self._command_prefix = "!"
        self._closed = False

    def attach(self, handler) -> None:
        """
        Route recorder commands to `handler` (a RecorderCommandHandler).

        Raises ValueError when the handler prefix cannot be split into a
        bot prefix and a group name.
        """
        self._command_prefix, _ = recorder_commands.split_prefix(handler.prefix)
        self._handler = handler

    # --------------------------------------------------

    @staticmethod
    def build_intents() -> discord.Intents:
        intents = discord.Intents.none()
        intents.guilds = True
        intents.guild_messages = True
        intents.guild_reactions = True
        # Privileged; required to read command text
        intents.message_content = True
        return intents

    def _build_bot(self) -> commands.Bot:
        """
        Construct the discord.py Bot and register the recorder commands.
        """
        bot = commands.Bot(
            command_prefix=self._command_prefix,
            intents=self.build_intents(),
            help_command=None,
            case_insensitive=True,
        )

        # --------------------------------------------------
        # Command Registration
        # --------------------------------------------------
        if self._handler is not None:
            recorder_commands.setup(bot, self._handler)

        # --------------------------------------------------
        # Lifecycle Events
        # --------------------------------------------------

        @bot.event
        async def on_ready():
            log.info(
                f"Discord connected as {bot.user} "
                f"(id={bot.user.id}) "
                f"guilds={len(bot.guilds)}"
            )
            self._ready_event.set()

        @bot.event
        async def on_resumed():
            log.info("Discord connection resumed")

        @bot.event
        async def on_disconnect():
            log.warning("Discord connection lost")

        @bot.event
        async def on_message(message: discord.Message):
            await self._on_message(bot, message)

        @bot.event
        async def on_command_error(ctx: commands.Context, error: commands.CommandError):
            self._on_command_error(ctx, error)

        return bot

    async def _on_message(self, bot: commands.Bot, message: discord.Message):
        if bot.user is not None and message.author.id == bot.user.id:
            return
        if message.guild is None:
            return

        await bot.process_commands(message)

    def _on_command_error(self, ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.CommandInvokeError):
            log.error(
                f"Command handling failed for message {ctx.message.id}",
                exc_info=error.original,
            )
            return
        log.info(f"Command rejected for message {ctx.message.id}: {error}")

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self):
        """
        Log in, open the gateway connection and wait until ready.
        """
        if self._client is not None:
            raise RuntimeError("Discord client already running")

        log.info("Initializing Discord client")
        self._client = self._build_bot()

        await self._client.login(self._token)
        self._connect_task = asyncio.create_task(self._client.connect())

        ready = asyncio.create_task(self._ready_event.wait())
        try:
            await asyncio.wait(
                {ready, self._connect_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            ready.cancel()

        if self._connect_task.done():
            # connect() only returns early on failure
            exc = self._connect_task.exception()
            raise RuntimeError(f"Discord connection failed: {exc}") from exc

        log.info("Discord client ready")

    async def close(self):
        """
        Gracefully close the Discord connection. Idempotent.
        """
        if self._closed or self._client is None:
            return
        self._closed = True

        log.info("Closing Discord connection")

        try:
            await self._client.close()
        except Exception as e:
            log.warning(f"Discord close error ignored: {e}")

        if self._connect_task is not None:
            try:
                await self._connect_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.warning(f"Discord connection task ended with error: {e}")

        self._ready_event.clear()
        log.info("Discord client stopped")

    # --------------------------------------------------
    # ChatNotifier
    # --------------------------------------------------

    async def _resolve_channel(self, channel_id: int):
        if self._client is None:
            raise RuntimeError("Discord client is not running")
        channel = self._client.get_channel(channel_id)
        if channel is None:
            channel = await self._client.fetch_channel(channel_id)
        return channel

    async def send_message(self, channel_id: int, content: str) -> None:
        channel = await self._resolve_channel(channel_id)
        await channel.send(content)

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        channel = await self._resolve_channel(channel_id)
        await channel.get_partial_message(message_id).add_reaction(emoji)

    # --------------------------------------------------

    @property
    def ready(self) -> bool:
        return self._ready_event.is_set()
