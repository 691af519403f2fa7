from __future__ import annotations

import json
from typing import Optional
from urllib.parse import parse_qs

import httpx

from lssd.services.youtube.models.video_info import VideoInfo
from lssd.shared.logging.logger import get_logger

log = get_logger("youtube.video_info")


class ProbeError(Exception):
    """Base class for metadata lookup failures."""


class NetworkError(ProbeError):
    pass


class DecodeError(ProbeError):
    pass


class PlatformError(ProbeError):
    pass


class VideoInfoAPI:
    """
    YouTube video-info lookup (legacy get_video_info endpoint).

    Responsibilities:
    - Fetch the form-encoded video info for one video ID
    - Decode the embedded player_response document into VideoInfo
    - Download thumbnail images for recordings

    Holds no supervisor state and is safe to call concurrently.
    """

    VIDEO_INFO_URL = "https://youtube.com/get_video_info"
    EMBED_URL = "https://youtube.googleapis.com/v/"

    def __init__(
        self,
        *,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    # ------------------------------------------------------------

    def video_info_params(self, video_id: str) -> dict:
        return {
            "video_id": video_id,
            "eurl": f"{self.EMBED_URL}{video_id}",
        }

    async def probe(self, video_id: str) -> VideoInfo:
        """
        Fetch the current state of a broadcast.

        Raises NetworkError, DecodeError or PlatformError.
        """
        client = self._get_client()
        try:
            r = await client.get(
                self.VIDEO_INFO_URL,
                params=self.video_info_params(video_id),
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            raise NetworkError(f"video info request failed for {video_id}: {e}") from e

        return self.parse_video_info(r.text, video_id=video_id)

    @staticmethod
    def parse_video_info(body: str, *, video_id: str = "") -> VideoInfo:
        try:
            data = parse_qs(body, keep_blank_values=True, strict_parsing=False)
        except ValueError as e:
            raise DecodeError(f"malformed video info body for {video_id}: {e}") from e

        status = (data.get("status") or [""])[0]
        if status != "ok":
            reason = (data.get("reason") or [""])[0]
            raise PlatformError(f"failed to get player_response: {reason}")

        raw_player_response = (data.get("player_response") or [""])[0]
        if not raw_player_response:
            raise DecodeError(f"player_response missing for {video_id}")

        try:
            player_response = json.loads(raw_player_response)
        except json.JSONDecodeError as e:
            raise DecodeError(f"player_response is not valid JSON for {video_id}: {e}") from e

        if not isinstance(player_response, dict):
            raise DecodeError(f"player_response is not an object for {video_id}")

        try:
            info = VideoInfo.from_player_response(player_response)
        except (AttributeError, TypeError, ValueError) as e:
            raise DecodeError(f"unexpected player_response layout for {video_id}: {e}") from e

        if info.playability_status == "ERROR":
            raise PlatformError(f"failed to get video info: {info.playability_reason}")

        if not info.video_id and video_id:
            log.debug(f"[{video_id}] player_response carried no videoId")
        return info

    # ------------------------------------------------------------
    # Thumbnails
    # ------------------------------------------------------------

    async def fetch_thumbnail(self, info: VideoInfo) -> bytes:
        url = info.thumbnail_url
        if not url:
            raise DecodeError("no thumbnail image")

        client = self._get_client()
        try:
            r = await client.get(url)
        except httpx.HTTPError as e:
            raise NetworkError(f"thumbnail request failed: {e}") from e

        if r.status_code != httpx.codes.OK:
            raise NetworkError(
                f"failed to request thumbnail: {r.status_code} {r.reason_phrase}"
            )
        return r.content
