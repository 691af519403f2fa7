import asyncio
import signal
import sys

from lssd.services.discord.client import DiscordClient
from lssd.services.discord.commands.recorder import RecorderCommandHandler
from lssd.services.files.server import RecordFileServer
from lssd.services.recorder.capture import CaptureRunner
from lssd.services.recorder.supervisor import RecordingSupervisor
from lssd.services.youtube.api.video_info import VideoInfoAPI
from lssd.shared.config.settings import load_config
from lssd.shared.logging.logger import get_logger

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # CONFIG (.env + environment)
    # --------------------------------------------------
    config = load_config()
    log.info("Environment variables loaded")
    log.info("lssd booting")

    config.recorder.record_dir.mkdir(parents=True, exist_ok=True)

    # --------------------------------------------------
    # CORE SYSTEMS
    # --------------------------------------------------
    video_api = VideoInfoAPI(timeout=config.probe.timeout)
    runner = CaptureRunner(
        streamlink_path=config.recorder.streamlink_path,
        ffmpeg_path=config.recorder.ffmpeg_path,
    )
    discord_client = DiscordClient(config.discord.token)

    supervisor = RecordingSupervisor(
        notifier=discord_client,
        video_api=video_api,
        runner=runner,
        record_dir=config.recorder.record_dir,
        mp4=config.recorder.mp4,
        poll_interval=config.recorder.poll_interval,
    )
    discord_client.attach(
        RecorderCommandHandler(
            supervisor=supervisor,
            video_api=video_api,
            notifier=discord_client,
            prefix=config.discord.command_prefix,
        )
    )

    # --------------------------------------------------
    # CHAT GATEWAY (FATAL ON FAILURE)
    # --------------------------------------------------
    try:
        await discord_client.start()
    except Exception as e:
        log.error(f"Failed to connect to Discord: {e}")
        await discord_client.close()
        await video_api.aclose()
        raise

    await supervisor.start()

    file_server = RecordFileServer(
        config.recorder.record_dir,
        host=config.file_server.host,
        port=config.file_server.port,
        enabled=config.file_server.enabled,
    )
    try:
        file_server.start()
    except OSError as e:
        log.error(f"File server failed to start: {e}")

    log.info("lssd has started")

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("signal received")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN: CAPTURES FIRST, THEN CHAT
    # --------------------------------------------------
    try:
        await supervisor.shutdown()
    except Exception as e:
        log.warning(f"Supervisor shutdown error ignored: {e}")

    file_server.stop()
    await video_api.aclose()

    log.info("lssd stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    SIGINT / SIGTERM set the stop event from the signal context.
    """

    def _handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    stop_event = asyncio.Event()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    _install_signal_handlers(loop, stop_event)

    exit_code = 0
    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")

    except Exception as e:
        log.error(f"lssd failed: {e}")
        exit_code = 1

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(run())
