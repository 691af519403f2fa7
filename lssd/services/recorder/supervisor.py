"""
Recording Supervisor

Owns the two recorder indices and every capture started from them.

- waiting:   nominated broadcasts that are not live yet
- recording: broadcasts with a capture in flight

Lock discipline:
- waiting lock first, released, then recording lock
- the two locks are never held at the same time
- no lock is held across a network probe or a chat send
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional, Set

from lssd.services.recorder.capture import CaptureError, CaptureRunner
from lssd.services.recorder.models import (
    AlreadyQueued,
    AlreadyRecording,
    Bucket,
    Listing,
    LiveStream,
    NotLiveContent,
    RecorderError,
    RecordingWithdrawn,
    SupervisorClosed,
)
from lssd.services.youtube.api.video_info import ProbeError, VideoInfoAPI
from lssd.services.youtube.models.video_info import LiveStatus, VideoInfo
from lssd.shared.chat.notifier import ChatNotifier
from lssd.shared.logging.logger import get_logger
from lssd.shared.runtime.cancellation import CancelToken

log = get_logger("recorder.supervisor")


class RecordingSupervisor:
    """
    Scheduler-safe contract:
    - start() launches the poller
    - shutdown() is idempotent and returns once every capture has exited
    """

    def __init__(
        self,
        *,
        notifier: ChatNotifier,
        video_api: VideoInfoAPI,
        runner: CaptureRunner,
        record_dir: Path | str,
        mp4: bool = False,
        poll_interval: float = 10.0,
    ):
        self._notifier = notifier
        self._video_api = video_api
        self._runner = runner
        self._record_dir = Path(record_dir)
        self._mp4 = mp4
        self._poll_interval = poll_interval

        self._waiting: Dict[str, LiveStream] = {}
        self._waiting_lock = asyncio.Lock()
        # Entries taken out of waiting but not yet in recording
        self._promoting: Dict[str, List[LiveStream]] = {}

        self._recording: Dict[str, LiveStream] = {}
        self._recording_lock = asyncio.Lock()

        self._cancel = CancelToken("supervisor")
        self._poller: Optional[asyncio.Task] = None
        self._captures: Set[asyncio.Task] = set()
        self._thumbnails: Set[asyncio.Task] = set()
        self._shutdown_started = False
        self._shutdown_done = asyncio.Event()

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self):
        if self._poller is not None:
            log.warning("Recording supervisor already running")
            return
        self._record_dir.mkdir(parents=True, exist_ok=True)
        log.info(
            f"Recording supervisor starting (dir={self._record_dir}, "
            f"format={'mp4' if self._mp4 else 'ts'}, poll={self._poll_interval}s)"
        )
        self._poller = asyncio.create_task(self._poll_loop())

    async def shutdown(self):
        if self._shutdown_started:
            await self._shutdown_done.wait()
            return
        self._shutdown_started = True

        log.info("Recording supervisor shutdown initiated")
        self._cancel.cancel("shutdown")

        if self._poller is not None:
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.warning(f"Poller exited with error: {e}")

        # Captures propagate the root cancellation into their children
        while self._captures:
            log.info(f"Waiting for {len(self._captures)} capture(s) to finish")
            await asyncio.gather(*list(self._captures), return_exceptions=True)
        if self._thumbnails:
            await asyncio.gather(*list(self._thumbnails), return_exceptions=True)

        async with self._waiting_lock:
            for entry in self._waiting.values():
                entry.bucket = Bucket.REMOVED
            self._waiting.clear()

        try:
            await self._notifier.close()
        except Exception as e:
            log.warning(f"Chat close error ignored: {e}")

        self._shutdown_done.set()
        log.info("Recording supervisor shutdown complete")

    # --------------------------------------------------
    # Commands
    # --------------------------------------------------

    async def add(self, entry: LiveStream):
        status = entry.info.live_status
        if status is LiveStatus.NON_LIVE_CONTENT:
            raise NotLiveContent(entry.video_id)

        if status is LiveStatus.LIVE_NOW:
            async with self._waiting_lock:
                if self._shutdown_started:
                    raise SupervisorClosed("recorder is shutting down")
                # A queued copy of the same broadcast is superseded
                queued = self._waiting.pop(entry.video_id, None)
                if queued is not None:
                    queued.bucket = Bucket.REMOVED
                self._begin_promotion(entry)
            await self._finish_promotion(entry)
            return

        async with self._waiting_lock:
            if self._shutdown_started:
                raise SupervisorClosed("recorder is shutting down")
            if entry.video_id in self._waiting:
                raise AlreadyQueued(entry.video_id)
            entry.bucket = Bucket.WAITING
            self._waiting[entry.video_id] = entry

        log.info(f"queue added: {entry.video_id} ({status.value})")

    async def cancel(self, video_id: str) -> bool:
        withdrawn = False

        async with self._waiting_lock:
            queued = self._waiting.pop(video_id, None)
            if queued is not None:
                queued.bucket = Bucket.REMOVED
                withdrawn = True
            for promoting in self._promoting.get(video_id, ()):
                if promoting.cancel is not None:
                    promoting.cancel.cancel("cancelled by user")
                    withdrawn = True

        async with self._recording_lock:
            active = self._recording.pop(video_id, None)
            if active is not None:
                active.bucket = Bucket.REMOVED
                if active.cancel is not None:
                    active.cancel.cancel("cancelled by user")
                withdrawn = True

        if withdrawn:
            log.info(f"live {video_id} was cancelled")
        else:
            log.info(f"cancel ignored: {video_id} is neither queued nor recording")
        return withdrawn

    async def list(self) -> Listing:
        listing = Listing()
        async with self._waiting_lock:
            listing.waiting = [(vid, e.title) for vid, e in self._waiting.items()]
        async with self._recording_lock:
            listing.recording = [(vid, e.title) for vid, e in self._recording.items()]
        return listing

    async def start_recording(self, entry: LiveStream):
        video_id = entry.video_id

        async with self._recording_lock:
            if self._cancel.cancelled:
                raise SupervisorClosed("recorder is shutting down")
            if video_id in self._recording:
                raise AlreadyRecording(video_id)
            if entry.cancel is None:
                entry.cancel = self._cancel.child(f"live:{video_id}")
            elif entry.cancel.cancelled:
                entry.cancel.release()
                entry.bucket = Bucket.REMOVED
                raise RecordingWithdrawn(f"{video_id} was cancelled before recording started")

            entry.bucket = Bucket.RECORDING
            self._recording[video_id] = entry

            announced = asyncio.Event()
            capture = asyncio.create_task(self._run_capture(entry, announced))
            self._captures.add(capture)
            capture.add_done_callback(self._captures.discard)

            thumbnail = asyncio.create_task(self._save_thumbnail(entry))
            self._thumbnails.add(thumbnail)
            thumbnail.add_done_callback(self._thumbnails.discard)

        log.info(f"live {video_id} recording was started")
        try:
            await self._notify(entry, f"live `{video_id}` recording was started")
        finally:
            announced.set()

    # --------------------------------------------------
    # Capture + thumbnail tasks
    # --------------------------------------------------

    async def _run_capture(self, entry: LiveStream, announced: asyncio.Event):
        video_id = entry.video_id
        try:
            await self._runner.record(entry, entry.cancel, self._record_dir, mp4=self._mp4)
        except CaptureError as e:
            log.error(f"live {video_id} capture failed: {e}")
        except Exception:
            log.exception(f"live {video_id} capture crashed")

        log.info(f"live {video_id} recording was stopped")

        async with self._recording_lock:
            # cancel() may already have removed it
            if self._recording.get(video_id) is entry:
                del self._recording[video_id]
            entry.bucket = Bucket.REMOVED
            if entry.cancel is not None:
                entry.cancel.release()

        await announced.wait()
        await self._notify(entry, f"live `{video_id}` recording was finished")

    async def _save_thumbnail(self, entry: LiveStream):
        path = self._record_dir / f"{entry.video_id}.jpg"
        try:
            image = await self._video_api.fetch_thumbnail(entry.info)
            await asyncio.to_thread(path.write_bytes, image)
        except ProbeError as e:
            log.error(f"failed to download the thumbnail image of live {entry.video_id}: {e}")
            return
        except OSError as e:
            log.error(f"failed to write the thumbnail image of live {entry.video_id}: {e}")
            return
        log.debug(f"[{entry.video_id}] thumbnail saved to {path}")

    async def _notify(self, entry: LiveStream, content: str):
        try:
            await self._notifier.send_message(entry.origin.channel_id, content)
        except Exception as e:
            log.warning(f"[{entry.video_id}] chat notification failed: {e}")

    # --------------------------------------------------
    # Poller
    # --------------------------------------------------

    async def _poll_loop(self):
        try:
            while not self._cancel.cancelled:
                try:
                    await asyncio.wait_for(self._cancel.wait(), timeout=self._poll_interval)
                except asyncio.TimeoutError:
                    pass
                if self._cancel.cancelled:
                    break
                try:
                    await self.poll_once()
                except Exception:
                    log.exception("periodic check failed")
        except asyncio.CancelledError:
            log.debug("Poller cancelled")
            raise
        log.info("Poller stopped")

    async def poll_once(self):
        log.info("periodic check started")

        async with self._waiting_lock:
            snapshot = list(self._waiting.values())

        for entry in snapshot:
            if self._cancel.cancelled:
                break
            await self._refresh(entry)

        log.info("periodic check finished")

    async def _refresh(self, entry: LiveStream):
        video_id = entry.video_id
        log.info(f"checking {video_id}")

        info: Optional[VideoInfo] = None
        try:
            info = await self._video_api.probe(video_id)
        except ProbeError as e:
            log.error(f"[{video_id}] probe failed: {e}")
        except Exception:
            log.exception(f"[{video_id}] probe crashed")

        async with self._waiting_lock:
            if self._waiting.get(video_id) is not entry:
                # Cancelled or replaced while probing
                return
            if info is None:
                del self._waiting[video_id]
                entry.bucket = Bucket.REMOVED
                log.info(f"{video_id} was deleted from waiting queue")
                return
            entry.info = info
            if info.live_status is not LiveStatus.LIVE_NOW:
                return
            del self._waiting[video_id]
            self._begin_promotion(entry)

        try:
            await self._finish_promotion(entry)
        except RecorderError as e:
            log.info(f"[{video_id}] promotion skipped: {e}")

    def _begin_promotion(self, entry: LiveStream):
        """
        Must be called with the waiting lock held, after the entry has
        left the waiting index.
        """
        entry.cancel = self._cancel.child(f"live:{entry.video_id}")
        # A live add can race a poller promotion of the same ID
        self._promoting.setdefault(entry.video_id, []).append(entry)

    async def _finish_promotion(self, entry: LiveStream):
        video_id = entry.video_id
        try:
            await self.start_recording(entry)
        except RecorderError:
            if entry.bucket is not Bucket.RECORDING and entry.cancel is not None:
                entry.cancel.release()
                entry.cancel = None
                entry.bucket = Bucket.REMOVED
            raise
        finally:
            async with self._waiting_lock:
                # Identity, not dataclass equality
                pending = [e for e in self._promoting.get(video_id, []) if e is not entry]
                if pending:
                    self._promoting[video_id] = pending
                else:
                    self._promoting.pop(video_id, None)

    # --------------------------------------------------
    # Read-only introspection
    # --------------------------------------------------

    @property
    def worker_count(self) -> int:
        return len(self._captures)

    @property
    def closed(self) -> bool:
        return self._shutdown_started

    def is_waiting(self, video_id: str) -> bool:
        return video_id in self._waiting

    def is_recording(self, video_id: str) -> bool:
        return video_id in self._recording

    def snapshot(self) -> Dict[str, List[str]]:
        return {
            "waiting": list(self._waiting),
            "recording": list(self._recording),
            "promoting": list(self._promoting),
        }
