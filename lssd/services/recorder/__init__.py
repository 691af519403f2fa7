"""
Recorder Package

Recording supervision for nominated YouTube broadcasts.

Contained responsibilities:
- waiting / recording indices and the promotion poller (supervisor)
- streamlink / ffmpeg child-process lifecycle (capture)
- entry and error types (models)

IMPORTANT:
- Importing this package MUST NOT create asyncio tasks
- Captures are only started through RecordingSupervisor
"""

from lssd.services.recorder.capture import CaptureRunner
from lssd.services.recorder.supervisor import RecordingSupervisor

__all__ = [
    "CaptureRunner",
    "RecordingSupervisor",
]
