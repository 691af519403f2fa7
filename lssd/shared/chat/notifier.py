from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

ACK_EMOJI = "🆗"


@dataclass(frozen=True)
class MessageRef:
    """
    Coordinates of the chat message that requested a recording.
    """

    channel_id: int
    message_id: int


class ChatNotifier(Protocol):
    """
    Outbound chat surface consumed by the recorder.

    Implemented by DiscordClient; tests provide an in-memory fake.
    """

    async def send_message(self, channel_id: int, content: str) -> None:
        ...

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        ...

    async def close(self) -> None:
        ...
