from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from lssd.services.youtube.models.video_info import VideoInfo
from lssd.shared.chat.notifier import MessageRef
from lssd.shared.runtime.cancellation import CancelToken


class Bucket(Enum):
    CREATED = "created"
    WAITING = "waiting"
    RECORDING = "recording"
    REMOVED = "removed"


class RecorderError(Exception):
    """Base class for supervisor errors."""


class UserInputError(RecorderError):
    """Errors that are reported back to the requesting chat user."""


class NotLiveContent(UserInputError):
    def __init__(self, video_id: str):
        super().__init__(f"`{video_id}` is not live content")
        self.video_id = video_id


class AlreadyQueued(UserInputError):
    def __init__(self, video_id: str):
        super().__init__(f"`{video_id}` has already been queued")
        self.video_id = video_id


class AlreadyRecording(UserInputError):
    def __init__(self, video_id: str):
        super().__init__(f"`{video_id}` is already being recorded")
        self.video_id = video_id


class RecordingWithdrawn(RecorderError):
    """The entry was cancelled while being promoted."""


class SupervisorClosed(RecorderError):
    """The supervisor is shutting down and accepts no new captures."""


@dataclass
class LiveStream:
    """
    Supervisor entry for one nominated broadcast.

    `cancel` is only set while the entry is being promoted or recorded.
    """

    video_id: str
    info: VideoInfo
    origin: MessageRef
    cancel: Optional[CancelToken] = None
    bucket: Bucket = Bucket.CREATED

    @property
    def title(self) -> str:
        return self.info.title

    @property
    def watch_url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.video_id}"


@dataclass
class Listing:
    waiting: List[Tuple[str, str]] = field(default_factory=list)
    recording: List[Tuple[str, str]] = field(default_factory=list)
