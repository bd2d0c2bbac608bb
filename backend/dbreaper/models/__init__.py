"""
SQLAlchemy models for the reaper.
"""

from dbreaper.models.reap_log import ReapLog, ReapStatus

__all__ = [
    "ReapLog",
    "ReapStatus",
]
