from repo_activity_sync.utils.datetime import (
    isoformat_z,
    naive_utc,
    to_utc,
    utcnow,
)
from repo_activity_sync.utils.logging import sanitize_for_log

__all__ = [
    "isoformat_z",
    "naive_utc",
    "to_utc",
    "utcnow",
    "sanitize_for_log",
]
