from __future__ import annotations

import asyncio
import contextlib
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence

from lssd.services.recorder.models import LiveStream
from lssd.shared.logging.logger import get_logger
from lssd.shared.runtime.cancellation import CancelToken

log = get_logger("recorder.capture")


class CaptureError(Exception):
    """Base class for capture failures."""


class LaunchError(CaptureError):
    pass


class LogError(CaptureError):
    pass


class ChildFailure(CaptureError):
    def __init__(self, video_id: str, returncodes: Dict[str, int]):
        detail = ", ".join(f"{name}={code}" for name, code in returncodes.items())
        super().__init__(f"[{video_id}] capture exited abnormally ({detail})")
        self.video_id = video_id
        self.returncodes = returncodes


@dataclass
class CaptureResult:
    video_id: str
    output_path: Path
    log_paths: List[Path] = field(default_factory=list)
    returncodes: Dict[str, int] = field(default_factory=dict)
    interrupted: bool = False


def ts_file_name(entry: LiveStream) -> str:
    return f"{entry.video_id}.ts"


def _close_fd(fd: int) -> None:
    with contextlib.suppress(OSError):
        os.close(fd)


class CaptureRunner:
    """
    Runs the external capture tools for one broadcast.

    TS mode runs streamlink alone; MP4 mode pipes streamlink into ffmpeg
    with stream copy. Both block until every child has exited. Firing the
    given token interrupts the children with SIGINT.
    """

    def __init__(self, streamlink_path: str = "streamlink", ffmpeg_path: str = "ffmpeg"):
        self._streamlink_path = streamlink_path
        self._ffmpeg_path = ffmpeg_path

    # --------------------------------------------------
    # Command lines
    # --------------------------------------------------

    def ts_command(self, entry: LiveStream, output_path: Path) -> List[str]:
        return [
            self._streamlink_path,
            "--loglevel", "info",
            "--hls-live-restart",
            "-o", str(output_path),
            entry.watch_url,
            "best",
        ]

    def puller_command(self, entry: LiveStream) -> List[str]:
        return [
            self._streamlink_path,
            "--loglevel", "info",
            "--hls-live-restart",
            "-O",
            entry.watch_url,
            "best",
        ]

    def muxer_command(self, output_path: Path) -> List[str]:
        return [
            self._ffmpeg_path,
            "-i", "-",
            "-c", "copy",
            str(output_path),
        ]

    # --------------------------------------------------

    async def record(
        self,
        entry: LiveStream,
        token: CancelToken,
        record_dir: Path | str,
        *,
        mp4: bool = False,
    ) -> CaptureResult:
        if mp4:
            return await self.record_mp4(entry, token, record_dir)
        return await self.record_ts(entry, token, record_dir)

    async def record_ts(
        self,
        entry: LiveStream,
        token: CancelToken,
        record_dir: Path | str,
    ) -> CaptureResult:
        record_dir = Path(record_dir)
        filename = ts_file_name(entry)
        output_path = record_dir / filename
        log_path = record_dir / f"{filename}.log"
        result = CaptureResult(entry.video_id, output_path, [log_path])

        if token.cancelled:
            log.info(f"[{entry.video_id}] capture cancelled before launch")
            result.interrupted = True
            return result

        try:
            log_file = open(log_path, "wb")
        except OSError as e:
            raise LogError(f"[{entry.video_id}] cannot create {log_path}: {e}") from e

        with log_file:
            cmd = self.ts_command(entry, output_path)
            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=log_file,
                )
            except OSError as e:
                raise LaunchError(f"[{entry.video_id}] cannot launch {cmd[0]}: {e}") from e

            log.info(f"[{entry.video_id}] streamlink started (pid={process.pid}) -> {output_path}")

            result.returncodes, result.interrupted = await self._supervise(
                entry, token, {"streamlink": process}
            )

        self._check(result)
        return result

    async def record_mp4(
        self,
        entry: LiveStream,
        token: CancelToken,
        record_dir: Path | str,
    ) -> CaptureResult:
        record_dir = Path(record_dir)
        filename = ts_file_name(entry)
        output_path = record_dir / f"{filename}.mp4"
        puller_log_path = record_dir / f"{filename}.0.log"
        muxer_log_path = record_dir / f"{filename}.1.log"
        result = CaptureResult(
            entry.video_id, output_path, [puller_log_path, muxer_log_path]
        )

        if token.cancelled:
            log.info(f"[{entry.video_id}] capture cancelled before launch")
            result.interrupted = True
            return result

        with contextlib.ExitStack() as stack:
            try:
                puller_log = stack.enter_context(open(puller_log_path, "wb"))
                muxer_log = stack.enter_context(open(muxer_log_path, "wb"))
            except OSError as e:
                raise LogError(f"[{entry.video_id}] cannot create capture log: {e}") from e

            read_fd, write_fd = os.pipe()

            puller_cmd = self.puller_command(entry)
            try:
                puller = await asyncio.create_subprocess_exec(
                    *puller_cmd,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=write_fd,
                    stderr=puller_log,
                )
            except OSError as e:
                _close_fd(read_fd)
                raise LaunchError(
                    f"[{entry.video_id}] cannot launch {puller_cmd[0]}: {e}"
                ) from e
            finally:
                # The write end now belongs to the puller only
                _close_fd(write_fd)

            muxer_cmd = self.muxer_command(output_path)
            try:
                muxer = await asyncio.create_subprocess_exec(
                    *muxer_cmd,
                    stdin=read_fd,
                    stdout=muxer_log,
                    stderr=muxer_log,
                )
            except OSError as e:
                _close_fd(read_fd)
                await self._terminate(entry, puller)
                raise LaunchError(
                    f"[{entry.video_id}] cannot launch {muxer_cmd[0]}: {e}"
                ) from e
            _close_fd(read_fd)

            log.info(
                f"[{entry.video_id}] streamlink (pid={puller.pid}) | "
                f"ffmpeg (pid={muxer.pid}) started -> {output_path}"
            )

            result.returncodes, result.interrupted = await self._supervise(
                entry, token, {"streamlink": puller, "ffmpeg": muxer}
            )

        self._check(result)
        return result

    # --------------------------------------------------
    # Child supervision
    # --------------------------------------------------

    async def _supervise(
        self,
        entry: LiveStream,
        token: CancelToken,
        processes: Dict[str, asyncio.subprocess.Process],
    ):
        scope = token.child(f"capture:{entry.video_id}")
        watcher = asyncio.create_task(
            self._watch(entry, scope, list(processes.values()))
        )
        try:
            codes = await asyncio.gather(*(p.wait() for p in processes.values()))
        except asyncio.CancelledError:
            self._interrupt(entry, list(processes.values()))
            raise
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher
            scope.release()

        returncodes = dict(zip(processes.keys(), codes))
        log.info(f"[{entry.video_id}] capture processes exited: {returncodes}")
        return returncodes, scope.cancelled

    async def _watch(
        self,
        entry: LiveStream,
        scope: CancelToken,
        processes: Sequence[asyncio.subprocess.Process],
    ):
        await scope.wait()
        log.info(f"[{entry.video_id}] capture interrupted ({scope.reason or 'cancelled'})")
        self._interrupt(entry, processes)

    def _interrupt(
        self,
        entry: LiveStream,
        processes: Sequence[asyncio.subprocess.Process],
    ):
        for process in processes:
            if process.returncode is not None:
                continue
            try:
                process.send_signal(signal.SIGINT)
            except ProcessLookupError as e:
                log.debug(f"[{entry.video_id}] pid={process.pid} already gone: {e}")

    async def _terminate(self, entry: LiveStream, process: asyncio.subprocess.Process):
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
        code = await process.wait()
        log.warning(f"[{entry.video_id}] terminated orphaned pid={process.pid} (code={code})")

    @staticmethod
    def _check(result: CaptureResult):
        if result.interrupted:
            return
        failed = {name: code for name, code in result.returncodes.items() if code != 0}
        if failed:
            raise ChildFailure(result.video_id, failed)
