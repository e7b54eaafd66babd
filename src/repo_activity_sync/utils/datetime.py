from datetime import datetime, timezone
from typing import Optional, overload


@overload
def to_utc(dt: None) -> None: ...


@overload
def to_utc(dt: datetime) -> datetime: ...


def to_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetime has UTC tzinfo. Handles None gracefully."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def naive_utc(dt: datetime) -> datetime:
    """Convert datetime to naive UTC (strips tzinfo). BSON round-trips naive UTC."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(dt: datetime) -> str:
    """Render an instant the way the GitHub API expects ``GitTimestamp`` values."""
    return to_utc(dt).isoformat(timespec="seconds").replace("+00:00", "Z")
