from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from lssd.shared.logging.logger import get_logger

log = get_logger("shared.config.settings")


class ConfigError(RuntimeError):
    pass


@dataclass
class RecorderConfig:
    record_dir: Path
    record_format: str = "ts"
    poll_interval: float = 10.0
    streamlink_path: str = "streamlink"
    ffmpeg_path: str = "ffmpeg"

    @property
    def mp4(self) -> bool:
        # Only the exact string selects muxed output
        return self.record_format == "mp4"


@dataclass
class FileServerConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class DiscordConfig:
    token: str = ""
    command_prefix: str = "!lssd"


@dataclass
class ProbeConfig:
    timeout: float = 15.0


@dataclass
class LssdConfig:
    recorder: RecorderConfig
    file_server: FileServerConfig = field(default_factory=FileServerConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        log.warning(f"{key}={raw!r} is not a number; using {default}")
        return default
    if value <= 0:
        log.warning(f"{key}={raw!r} must be positive; using {default}")
        return default
    return value


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        log.warning(f"{key}={raw!r} is not an integer; using {default}")
        return default


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def load_config(
    env: Optional[Mapping[str, str]] = None,
    *,
    require_token: bool = True,
) -> LssdConfig:
    """
    Build the runtime configuration from environment variables.

    When `env` is omitted, `.env` is loaded first and os.environ is used.
    RECORD_DIR is always required; DISCORD_BOT_TOKEN unless
    require_token=False.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    record_dir = env.get("RECORD_DIR", "").strip()
    if not record_dir:
        raise ConfigError("RECORD_DIR not found in environment")

    token = env.get("DISCORD_BOT_TOKEN", "").strip()
    if require_token and not token:
        raise ConfigError("DISCORD_BOT_TOKEN not found in environment")

    recorder = RecorderConfig(
        record_dir=Path(record_dir),
        record_format=env.get("RECORD_FORMAT", "ts"),
        poll_interval=_get_float(env, "LSSD_POLL_INTERVAL", 10.0),
        streamlink_path=env.get("STREAMLINK_PATH") or "streamlink",
        ffmpeg_path=env.get("FFMPEG_PATH") or "ffmpeg",
    )

    file_server = FileServerConfig(
        enabled=_get_bool(env, "LSSD_HTTP_ENABLED", True),
        host=env.get("LSSD_HTTP_HOST") or "0.0.0.0",
        port=_get_int(env, "LSSD_HTTP_PORT", 8080),
    )

    discord = DiscordConfig(
        token=token,
        command_prefix=env.get("LSSD_COMMAND_PREFIX") or "!lssd",
    )

    probe = ProbeConfig(timeout=_get_float(env, "LSSD_PROBE_TIMEOUT", 15.0))

    log.debug(
        "[BOOT] Config resolved: "
        f"record_dir={recorder.record_dir} "
        f"format={'mp4' if recorder.mp4 else 'ts'} "
        f"poll={recorder.poll_interval}s "
        f"http={'ON' if file_server.enabled else 'OFF'}:{file_server.port} "
        f"token={'SET' if token else 'MISSING'}"
    )

    return LssdConfig(
        recorder=recorder,
        file_server=file_server,
        discord=discord,
        probe=probe,
    )
