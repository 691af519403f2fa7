from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class LiveStatus(Enum):
    NON_LIVE_CONTENT = "non_live_content"
    UPCOMING = "upcoming"
    LIVE_NOW = "live_now"
    ENDED = "ended"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Thumbnail:
    url: str
    width: int = 0
    height: int = 0


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _section(container: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{key} is not an object")
    return value


def _flag(container: Dict[str, Any], key: str) -> bool:
    value = container.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{key} is not a boolean")
    return value


def _dimension(item: Dict[str, Any], key: str) -> int:
    value = item.get(key) or 0
    # JSON booleans are ints in Python
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"thumbnail {key} is not a number")
    return int(value)


def _parse_thumbnails(details: Dict[str, Any]) -> Tuple[Thumbnail, ...]:
    items = _section(details, "thumbnail").get("thumbnails") or []
    if not isinstance(items, list):
        raise ValueError("thumbnails is not a list")
    thumbnails = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError("thumbnail entry is not an object")
        if not item.get("url"):
            continue
        thumbnails.append(
            Thumbnail(
                url=str(item["url"]),
                width=_dimension(item, "width"),
                height=_dimension(item, "height"),
            )
        )
    return tuple(thumbnails)


@dataclass(frozen=True)
class VideoInfo:
    """
    Snapshot of a broadcast taken from one player_response document.

    Thumbnails keep the platform order; the recorder uses the first one.
    """

    video_id: str
    title: str = ""
    channel_id: str = ""
    author: str = ""
    thumbnails: Tuple[Thumbnail, ...] = ()
    is_live_content: bool = False
    is_upcoming: bool = False
    is_live: bool = False
    playability_status: str = ""
    playability_reason: str = ""
    is_live_now: bool = False
    start_timestamp: Optional[datetime] = None
    end_timestamp: Optional[datetime] = None
    length_seconds: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def live_status(self) -> LiveStatus:
        if not self.is_live_content:
            return LiveStatus.NON_LIVE_CONTENT
        if self.is_upcoming:
            return LiveStatus.UPCOMING
        if self.is_live:
            return LiveStatus.LIVE_NOW
        if not self.is_upcoming and not self.is_live:
            return LiveStatus.ENDED
        return LiveStatus.UNKNOWN

    @property
    def thumbnail_url(self) -> Optional[str]:
        return self.thumbnails[0].url if self.thumbnails else None

    @classmethod
    def from_player_response(cls, data: Dict[str, Any]) -> "VideoInfo":
        """
        Raises ValueError when a section or flag has the wrong JSON type.
        """
        if not isinstance(data, dict):
            raise ValueError("player_response is not an object")

        playability = _section(data, "playabilityStatus")
        details = _section(data, "videoDetails")
        microformat = _section(data, "microformat")
        renderer = _section(microformat, "playerMicroformatRenderer")
        broadcast = _section(microformat, "liveBroadcastDetails") or _section(
            renderer, "liveBroadcastDetails"
        )

        length = renderer.get("lengthSeconds")
        try:
            length_seconds = int(length) if length not in (None, "") else None
        except (TypeError, ValueError):
            length_seconds = None

        return cls(
            video_id=str(details.get("videoId") or ""),
            title=str(details.get("title") or ""),
            channel_id=str(details.get("channelId") or ""),
            author=str(details.get("author") or ""),
            thumbnails=_parse_thumbnails(details),
            is_live_content=_flag(details, "isLiveContent"),
            is_upcoming=_flag(details, "isUpcoming"),
            is_live=_flag(details, "isLive"),
            playability_status=str(playability.get("status") or ""),
            playability_reason=str(playability.get("reason") or ""),
            is_live_now=_flag(broadcast, "isLiveNow"),
            start_timestamp=_parse_timestamp(broadcast.get("startTimestamp")),
            end_timestamp=_parse_timestamp(broadcast.get("endTimestamp")),
            length_seconds=length_seconds,
            raw=data,
        )
