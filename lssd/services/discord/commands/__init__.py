"""
Discord command surfaces.

- recorder → add / cancel / list / help for the recording supervisor
"""

from lssd.services.discord.commands.recorder import (
    RecorderCommandHandler,
    format_listing,
    setup,
    split_prefix,
)

__all__ = [
    "RecorderCommandHandler",
    "format_listing",
    "setup",
    "split_prefix",
]
