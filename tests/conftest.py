import asyncio
import os
from typing import Dict, List, Optional, Tuple

# Console logging only during tests
os.environ["LSSD_LOG_DIR"] = ""

import pytest  # noqa: E402

from lssd.services.recorder.capture import CaptureResult  # noqa: E402
from lssd.services.recorder.models import LiveStream  # noqa: E402
from lssd.services.recorder.supervisor import RecordingSupervisor  # noqa: E402
from lssd.services.youtube.api.video_info import NetworkError  # noqa: E402
from lssd.services.youtube.models.video_info import (  # noqa: E402
    LiveStatus,
    Thumbnail,
    VideoInfo,
)
from lssd.shared.chat.notifier import MessageRef  # noqa: E402

VIDEO_ID = "dQw4w9WgXcQ"
OTHER_ID = "jNQXAC9IVRw"

_FLAGS = {
    LiveStatus.NON_LIVE_CONTENT: dict(is_live_content=False),
    LiveStatus.UPCOMING: dict(is_live_content=True, is_upcoming=True),
    LiveStatus.LIVE_NOW: dict(is_live_content=True, is_live=True),
    LiveStatus.ENDED: dict(is_live_content=True),
}


def make_info(video_id: str = VIDEO_ID, status: LiveStatus = LiveStatus.UPCOMING, **kwargs) -> VideoInfo:
    fields = dict(
        video_id=video_id,
        title=f"title of {video_id}",
        channel_id="UC123",
        author="someone",
        thumbnails=(Thumbnail(url=f"https://i.ytimg.com/vi/{video_id}/default.jpg"),),
    )
    fields.update(_FLAGS[status])
    fields.update(kwargs)
    return VideoInfo(**fields)


def make_entry(video_id: str = VIDEO_ID, status: LiveStatus = LiveStatus.UPCOMING) -> LiveStream:
    return LiveStream(
        video_id=video_id,
        info=make_info(video_id, status),
        origin=MessageRef(channel_id=100, message_id=200),
    )


class FakeNotifier:
    def __init__(self):
        self.messages: List[Tuple[int, str]] = []
        self.reactions: List[Tuple[int, int, str]] = []
        self.closed = 0

    async def send_message(self, channel_id: int, content: str) -> None:
        self.messages.append((channel_id, content))

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        self.reactions.append((channel_id, message_id, emoji))

    async def close(self) -> None:
        self.closed += 1

    def texts(self) -> List[str]:
        return [content for _, content in self.messages]


class FakeVideoAPI:
    """
    Probe results keyed by video ID; a missing key raises NetworkError.
    Entries in `errors` are raised as-is.
    """

    def __init__(self):
        self.infos: Dict[str, VideoInfo] = {}
        self.errors: Dict[str, Exception] = {}
        self.probes: List[str] = []
        self.thumbnail: Optional[bytes] = b"\xff\xd8jpeg"

    async def probe(self, video_id: str) -> VideoInfo:
        self.probes.append(video_id)
        await asyncio.sleep(0)
        if video_id in self.errors:
            raise self.errors[video_id]
        if video_id not in self.infos:
            raise NetworkError(f"no such video {video_id}")
        return self.infos[video_id]

    async def fetch_thumbnail(self, info: VideoInfo) -> bytes:
        if self.thumbnail is None:
            raise NetworkError("thumbnail unavailable")
        return self.thumbnail


class FakeRunner:
    """
    Stands in for CaptureRunner; a capture lasts until its token fires
    or the test calls finish().
    """

    def __init__(self):
        self.started: List[str] = []
        self.interrupted: List[str] = []
        self._done: Dict[str, asyncio.Event] = {}
        self.mp4_flags: List[bool] = []

    async def record(self, entry, token, record_dir, *, mp4=False):
        self.started.append(entry.video_id)
        self.mp4_flags.append(mp4)
        done = self._done.setdefault(entry.video_id, asyncio.Event())
        cancelled = asyncio.create_task(token.wait())
        finished = asyncio.create_task(done.wait())
        await asyncio.wait({cancelled, finished}, return_when=asyncio.FIRST_COMPLETED)
        cancelled.cancel()
        finished.cancel()
        if token.cancelled:
            self.interrupted.append(entry.video_id)
        return CaptureResult(entry.video_id, record_dir, interrupted=token.cancelled)

    def finish(self, video_id: str):
        self._done.setdefault(video_id, asyncio.Event()).set()


async def settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def video_api():
    return FakeVideoAPI()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
async def supervisor(notifier, video_api, runner, tmp_path):
    sup = RecordingSupervisor(
        notifier=notifier,
        video_api=video_api,
        runner=runner,
        record_dir=tmp_path,
        poll_interval=3600,
    )
    await sup.start()
    yield sup
    await sup.shutdown()


async def eventually(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
