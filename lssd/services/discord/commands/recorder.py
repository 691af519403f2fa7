"""
Recorder chat commands.

Registers the `!lssd` command group on the discord.py Bot and drives the
RecordingSupervisor. Replies go through the ChatNotifier so the handler
can be exercised without a gateway connection.

Commands:
- add <url-or-id>     queue or start a recording
- cancel <url-or-id>  withdraw a queued broadcast or stop a recording
- list                show queued broadcasts and active recordings
- help                show the command summary
"""

from __future__ import annotations

import re
from typing import Tuple

from discord.ext import commands

from lssd.services.recorder.models import (
    Listing,
    LiveStream,
    RecorderError,
    UserInputError,
)
from lssd.services.recorder.supervisor import RecordingSupervisor
from lssd.services.youtube.api.video_info import ProbeError, VideoInfoAPI
from lssd.services.youtube.models.video_info import LiveStatus
from lssd.services.youtube.video_id import extract_video_id
from lssd.shared.chat.notifier import ACK_EMOJI, ChatNotifier, MessageRef
from lssd.shared.logging.logger import get_logger

log = get_logger("discord.commands.recorder", runtime="discord")

_PREFIX_RE = re.compile(r"^([^\w\s]*)(\w[\w-]*)$")


def split_prefix(prefix: str) -> Tuple[str, str]:
    """
    "!lssd" -> ("!", "lssd"): the bot command prefix and the group name.
    """
    match = _PREFIX_RE.match(prefix)
    if not match:
        raise ValueError(f"unusable command prefix: {prefix!r}")
    return match.group(1), match.group(2)


def format_listing(listing: Listing) -> str:
    lines = ["**Queued**:"]
    lines.extend(f"● `{vid}` - {title}" for vid, title in listing.waiting)
    lines.append("**Recordings**:")
    lines.extend(f"● `{vid}` - {title}" for vid, title in listing.recording)
    return "\n".join(lines) + "\n"


class RecorderCommandHandler:
    def __init__(
        self,
        *,
        supervisor: RecordingSupervisor,
        video_api: VideoInfoAPI,
        notifier: ChatNotifier,
        prefix: str = "!lssd",
    ):
        self._supervisor = supervisor
        self._video_api = video_api
        self._notifier = notifier
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    # --------------------------------------------------
    # Commands
    # --------------------------------------------------

    async def cmd_add(self, argument: str, origin: MessageRef):
        video_id = extract_video_id(argument)
        if not video_id:
            await self._reply(origin, f"invalid live url: {argument}")
            return

        try:
            info = await self._video_api.probe(video_id)
        except ProbeError as e:
            log.error(f"[{video_id}] add aborted, probe failed: {e}")
            return

        if info.live_status is LiveStatus.NON_LIVE_CONTENT:
            await self._reply(origin, f"`{video_id}` is not live content")
            return

        entry = LiveStream(video_id=video_id, info=info, origin=origin)
        try:
            await self._supervisor.add(entry)
        except UserInputError as e:
            log.info(f"[{video_id}] add rejected: {e}")
            await self._reply(origin, str(e))
            return
        except RecorderError as e:
            log.warning(f"[{video_id}] add failed: {e}")
            return

        await self._ack(origin)

    async def cmd_cancel(self, argument: str, origin: MessageRef):
        video_id = extract_video_id(argument)
        if not video_id:
            await self._reply(origin, f"invalid live url: {argument}")
            return

        await self._supervisor.cancel(video_id)
        await self._ack(origin)

    async def cmd_list(self, origin: MessageRef):
        listing = await self._supervisor.list()
        await self._reply(origin, format_listing(listing))

    async def cmd_help(self, origin: MessageRef):
        p = self._prefix
        await self._reply(
            origin,
            "\n".join(
                [
                    f"`{p} add <url-or-id>` - record a live broadcast (queued until it starts)",
                    f"`{p} cancel <url-or-id>` - withdraw a queued broadcast or stop its recording",
                    f"`{p} list` - show queued broadcasts and active recordings",
                ]
            ),
        )

    # --------------------------------------------------
    # Chat I/O
    # --------------------------------------------------

    async def _reply(self, origin: MessageRef, content: str):
        try:
            await self._notifier.send_message(origin.channel_id, content)
        except Exception as e:
            log.error(f"Failed to reply in channel {origin.channel_id}: {e}")

    async def _ack(self, origin: MessageRef):
        try:
            await self._notifier.add_reaction(origin.channel_id, origin.message_id, ACK_EMOJI)
        except Exception as e:
            log.error(f"Failed to add reaction to message {origin.message_id}: {e}")


# --------------------------------------------------
# Command Registration
# --------------------------------------------------

def _origin(ctx: commands.Context) -> MessageRef:
    return MessageRef(channel_id=ctx.channel.id, message_id=ctx.message.id)


def setup(bot: commands.Bot, handler: RecorderCommandHandler) -> commands.Group:
    """
    Register the recorder command group on `bot`.

    The bot's command_prefix must be the symbol part of handler.prefix
    (see split_prefix); the word part names the group.
    """
    _, group_name = split_prefix(handler.prefix)

    @bot.group(name=group_name, invoke_without_command=True, case_insensitive=True)
    async def recorder(ctx: commands.Context, *, rest: str = ""):
        log.debug(f"Unknown recorder command ignored: {rest!r}")

    @recorder.command(name="add")
    async def add(ctx: commands.Context, *, target: str = ""):
        await handler.cmd_add(target.strip(), _origin(ctx))

    @recorder.command(name="cancel")
    async def cancel(ctx: commands.Context, *, target: str = ""):
        await handler.cmd_cancel(target.strip(), _origin(ctx))

    @recorder.command(name="list")
    async def list_(ctx: commands.Context):
        await handler.cmd_list(_origin(ctx))

    @recorder.command(name="help")
    async def help_(ctx: commands.Context):
        await handler.cmd_help(_origin(ctx))

    log.info("Discord recorder commands registered")
    return recorder
