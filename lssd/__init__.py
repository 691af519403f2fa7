"""lssd: records YouTube live broadcasts on request from Discord."""

__version__ = "0.1.0"
