"""Tests for the recording supervisor state machine."""

import asyncio
import json
import random
from urllib.parse import urlencode

import httpx
import pytest

from lssd.services.recorder.models import (
    AlreadyQueued,
    AlreadyRecording,
    Bucket,
    NotLiveContent,
    RecordingWithdrawn,
    SupervisorClosed,
)
from lssd.services.recorder.supervisor import RecordingSupervisor
from lssd.services.youtube.api.video_info import VideoInfoAPI
from lssd.services.youtube.models.video_info import LiveStatus
from tests.conftest import (
    OTHER_ID,
    VIDEO_ID,
    FakeNotifier,
    FakeRunner,
    FakeVideoAPI,
    eventually,
    make_entry,
    make_info,
    settle,
)


def assert_exclusive(sup: RecordingSupervisor):
    snap = sup.snapshot()
    assert not set(snap["waiting"]) & set(snap["recording"])


class TestAdd:
    async def test_upcoming_is_queued(self, supervisor, notifier):
        entry = make_entry(status=LiveStatus.UPCOMING)

        await supervisor.add(entry)

        assert supervisor.is_waiting(VIDEO_ID)
        assert not supervisor.is_recording(VIDEO_ID)
        assert entry.bucket is Bucket.WAITING
        assert entry.cancel is None
        assert notifier.messages == []

    async def test_duplicate_queue_is_rejected(self, supervisor):
        await supervisor.add(make_entry())

        with pytest.raises(AlreadyQueued):
            await supervisor.add(make_entry())

    async def test_non_live_content_is_rejected(self, supervisor):
        with pytest.raises(NotLiveContent) as exc:
            await supervisor.add(make_entry(status=LiveStatus.NON_LIVE_CONTENT))

        assert str(exc.value) == f"`{VIDEO_ID}` is not live content"
        assert supervisor.snapshot() == {"waiting": [], "recording": [], "promoting": []}

    async def test_already_live_goes_straight_to_recording(self, supervisor, notifier, runner):
        entry = make_entry(status=LiveStatus.LIVE_NOW)

        await supervisor.add(entry)
        await settle()

        assert supervisor.is_recording(VIDEO_ID)
        assert not supervisor.is_waiting(VIDEO_ID)
        assert entry.bucket is Bucket.RECORDING
        assert entry.cancel is not None
        assert runner.started == [VIDEO_ID]
        assert notifier.texts() == [f"live `{VIDEO_ID}` recording was started"]

    async def test_live_add_supersedes_queued_copy(self, supervisor):
        await supervisor.add(make_entry(status=LiveStatus.UPCOMING))

        await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))

        assert not supervisor.is_waiting(VIDEO_ID)
        assert supervisor.is_recording(VIDEO_ID)

    async def test_second_live_add_reports_already_recording(self, supervisor, notifier):
        await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))

        with pytest.raises(AlreadyRecording):
            await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))

        assert notifier.texts().count(f"live `{VIDEO_ID}` recording was started") == 1


class TestCancel:
    async def test_cancel_queued(self, supervisor):
        entry = make_entry()
        await supervisor.add(entry)

        assert await supervisor.cancel(VIDEO_ID) is True

        assert not supervisor.is_waiting(VIDEO_ID)
        assert entry.bucket is Bucket.REMOVED

    async def test_cancel_unknown_is_noop(self, supervisor):
        assert await supervisor.cancel(VIDEO_ID) is False

    async def test_cancel_while_recording(self, supervisor, notifier, runner):
        entry = make_entry(status=LiveStatus.LIVE_NOW)
        await supervisor.add(entry)
        await settle()

        await supervisor.cancel(VIDEO_ID)

        assert not supervisor.is_recording(VIDEO_ID)
        assert entry.cancel.cancelled

        await supervisor.shutdown()

        assert runner.interrupted == [VIDEO_ID]
        assert notifier.texts() == [
            f"live `{VIDEO_ID}` recording was started",
            f"live `{VIDEO_ID}` recording was finished",
        ]

    async def test_completion_tolerates_prior_cancel(self, supervisor, runner):
        await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))
        await settle()
        await supervisor.cancel(VIDEO_ID)
        runner.finish(VIDEO_ID)

        await eventually(lambda: supervisor.worker_count == 0)

        assert not supervisor.is_recording(VIDEO_ID)

    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_interleaved_add_cancel(self, supervisor, seed):
        rng = random.Random(seed)
        last = None
        for _ in range(40):
            op = rng.choice(["add", "cancel"])
            if op == "add":
                try:
                    await supervisor.add(make_entry(status=LiveStatus.UPCOMING))
                except AlreadyQueued:
                    pass
            else:
                await supervisor.cancel(VIDEO_ID)
            last = op
            assert_exclusive(supervisor)

        assert supervisor.is_waiting(VIDEO_ID) is (last == "add")


    async def test_cancel_reaches_every_pending_promotion(self, supervisor):
        first = make_entry(status=LiveStatus.LIVE_NOW)
        second = make_entry(status=LiveStatus.LIVE_NOW)

        # Both promotions park on the recording lock
        async with supervisor._recording_lock:
            adds = [asyncio.create_task(supervisor.add(e)) for e in (first, second)]
            await settle()
            assert supervisor.snapshot()["promoting"] == [VIDEO_ID]
            cancel = asyncio.create_task(supervisor.cancel(VIDEO_ID))
            await settle()

        results = await asyncio.gather(*adds, return_exceptions=True)

        assert await cancel is True
        assert all(isinstance(r, RecordingWithdrawn) for r in results)
        assert not supervisor.is_recording(VIDEO_ID)
        assert supervisor.snapshot()["promoting"] == []
        assert supervisor.worker_count == 0


class TestCaptureCompletion:
    async def test_finished_capture_is_removed_and_announced(self, supervisor, notifier, runner):
        await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))
        await settle()

        runner.finish(VIDEO_ID)
        await eventually(lambda: supervisor.worker_count == 0)

        assert not supervisor.is_recording(VIDEO_ID)
        assert notifier.texts()[-1] == f"live `{VIDEO_ID}` recording was finished"
        assert notifier.messages[-1][0] == 100

    async def test_thumbnail_is_written(self, supervisor, tmp_path):
        await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))

        for _ in range(50):
            if (tmp_path / f"{VIDEO_ID}.jpg").exists():
                break
            await asyncio.sleep(0.01)

        assert (tmp_path / f"{VIDEO_ID}.jpg").read_bytes() == b"\xff\xd8jpeg"

    async def test_thumbnail_failure_is_not_fatal(self, supervisor, video_api, tmp_path):
        video_api.thumbnail = None

        await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))
        await settle()

        assert supervisor.is_recording(VIDEO_ID)
        assert not (tmp_path / f"{VIDEO_ID}.jpg").exists()

    async def test_list_snapshot(self, supervisor):
        await supervisor.add(make_entry(OTHER_ID, LiveStatus.UPCOMING))
        await supervisor.add(make_entry(VIDEO_ID, LiveStatus.LIVE_NOW))

        listing = await supervisor.list()

        assert listing.waiting == [(OTHER_ID, f"title of {OTHER_ID}")]
        assert listing.recording == [(VIDEO_ID, f"title of {VIDEO_ID}")]


class TestPoller:
    async def test_upcoming_then_live_is_promoted(self, supervisor, video_api, notifier, runner):
        await supervisor.add(make_entry(status=LiveStatus.UPCOMING))

        video_api.infos[VIDEO_ID] = make_info(status=LiveStatus.UPCOMING)
        await supervisor.poll_once()
        assert supervisor.is_waiting(VIDEO_ID)

        video_api.infos[VIDEO_ID] = make_info(status=LiveStatus.LIVE_NOW)
        await supervisor.poll_once()
        await settle()

        assert not supervisor.is_waiting(VIDEO_ID)
        assert supervisor.is_recording(VIDEO_ID)
        assert runner.started == [VIDEO_ID]
        assert notifier.texts().count(f"live `{VIDEO_ID}` recording was started") == 1

    async def test_failed_probe_drops_entry(self, supervisor, video_api):
        await supervisor.add(make_entry())

        await supervisor.poll_once()

        assert not supervisor.is_waiting(VIDEO_ID)
        assert video_api.probes == [VIDEO_ID]

    async def test_ended_stays_queued_with_fresh_info(self, supervisor, video_api):
        entry = make_entry()
        await supervisor.add(entry)
        video_api.infos[VIDEO_ID] = make_info(status=LiveStatus.ENDED, title="renamed")

        await supervisor.poll_once()

        assert supervisor.is_waiting(VIDEO_ID)
        assert entry.info.title == "renamed"

    async def test_cancel_during_probe_wins(self, supervisor, video_api):
        await supervisor.add(make_entry())
        video_api.infos[VIDEO_ID] = make_info(status=LiveStatus.LIVE_NOW)

        poll = asyncio.create_task(supervisor.poll_once())
        await asyncio.sleep(0)
        await supervisor.cancel(VIDEO_ID)
        await poll

        assert not supervisor.is_waiting(VIDEO_ID)
        assert not supervisor.is_recording(VIDEO_ID)

    async def test_promotion_races_live_add(self, supervisor, video_api, notifier):
        await supervisor.add(make_entry())
        video_api.infos[VIDEO_ID] = make_info(status=LiveStatus.LIVE_NOW)

        poll = asyncio.create_task(supervisor.poll_once())
        await asyncio.sleep(0)
        try:
            await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))
        except AlreadyRecording:
            pass
        await poll
        await settle()

        assert supervisor.is_recording(VIDEO_ID)
        assert not supervisor.is_waiting(VIDEO_ID)
        assert notifier.texts().count(f"live `{VIDEO_ID}` recording was started") == 1

    async def test_unexpected_probe_error_does_not_stall_queue(self, supervisor, video_api, runner):
        await supervisor.add(make_entry(VIDEO_ID))
        await supervisor.add(make_entry(OTHER_ID))
        video_api.errors[VIDEO_ID] = AttributeError("'list' object has no attribute 'get'")
        video_api.infos[OTHER_ID] = make_info(OTHER_ID, LiveStatus.LIVE_NOW)

        await supervisor.poll_once()
        await settle()

        assert not supervisor.is_waiting(VIDEO_ID)
        assert supervisor.is_recording(OTHER_ID)
        assert runner.started == [OTHER_ID]

    async def test_malformed_player_response_is_dropped(self, notifier, runner, tmp_path):
        live = {"videoDetails": {"videoId": OTHER_ID, "isLiveContent": True, "isLive": True}}
        bodies = {
            VIDEO_ID: urlencode({"status": "ok", "player_response": json.dumps({"videoDetails": ["junk"]})}),
            OTHER_ID: urlencode({"status": "ok", "player_response": json.dumps(live)}),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text=bodies[request.url.params["video_id"]])

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sup = RecordingSupervisor(
                notifier=notifier,
                video_api=VideoInfoAPI(client=client),
                runner=runner,
                record_dir=tmp_path,
                poll_interval=3600,
            )
            await sup.add(make_entry(VIDEO_ID))
            await sup.add(make_entry(OTHER_ID))

            await sup.poll_once()
            await settle()

            assert sup.snapshot()["waiting"] == []
            assert sup.is_recording(OTHER_ID)
            await sup.shutdown()

    async def test_poll_loop_runs_on_interval(self, notifier, video_api, runner, tmp_path):
        sup = RecordingSupervisor(
            notifier=notifier,
            video_api=video_api,
            runner=runner,
            record_dir=tmp_path,
            poll_interval=0.01,
        )
        await sup.start()
        await sup.add(make_entry())
        video_api.infos[VIDEO_ID] = make_info(status=LiveStatus.LIVE_NOW)

        for _ in range(100):
            if sup.is_recording(VIDEO_ID):
                break
            await asyncio.sleep(0.01)

        assert sup.is_recording(VIDEO_ID)
        await sup.shutdown()


class TestShutdown:
    async def test_shutdown_interrupts_all_captures(self, tmp_path):
        notifier, video_api, runner = FakeNotifier(), FakeVideoAPI(), FakeRunner()
        sup = RecordingSupervisor(
            notifier=notifier,
            video_api=video_api,
            runner=runner,
            record_dir=tmp_path,
            poll_interval=3600,
        )
        await sup.start()
        await sup.add(make_entry(VIDEO_ID, LiveStatus.LIVE_NOW))
        await sup.add(make_entry(OTHER_ID, LiveStatus.LIVE_NOW))
        await sup.add(make_entry("M7lc1UVf-VE", LiveStatus.UPCOMING))
        await settle()

        await sup.shutdown()

        assert sorted(runner.interrupted) == sorted([VIDEO_ID, OTHER_ID])
        assert sup.snapshot() == {"waiting": [], "recording": [], "promoting": []}
        assert sup.worker_count == 0
        finished = [t for t in notifier.texts() if t.endswith("was finished")]
        assert len(finished) == 2
        assert notifier.closed == 1

    async def test_shutdown_is_idempotent(self, supervisor, notifier):
        await supervisor.shutdown()
        await supervisor.shutdown()

        assert notifier.closed == 1
        assert supervisor.closed

    async def test_no_new_work_after_shutdown(self, supervisor):
        await supervisor.shutdown()

        with pytest.raises(SupervisorClosed):
            await supervisor.add(make_entry(status=LiveStatus.UPCOMING))
        with pytest.raises(SupervisorClosed):
            await supervisor.add(make_entry(status=LiveStatus.LIVE_NOW))

        assert supervisor.snapshot() == {"waiting": [], "recording": [], "promoting": []}

    async def test_mp4_flag_reaches_runner(self, notifier, video_api, runner, tmp_path):
        sup = RecordingSupervisor(
            notifier=notifier,
            video_api=video_api,
            runner=runner,
            record_dir=tmp_path,
            mp4=True,
        )
        await sup.add(make_entry(status=LiveStatus.LIVE_NOW))
        await settle()
        await sup.shutdown()

        assert runner.mp4_flags == [True]
