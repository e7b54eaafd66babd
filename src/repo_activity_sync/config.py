"""Runtime settings for the activity sync engine.

All values come from environment variables (see ``SyncSettings.from_env``) so
the engine can be wired identically by the CLI, workers and tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Mapping, Optional

DEFAULT_MONGODB_URI = "mongodb://localhost:27017/repo_activity"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"

# Average days per month used when turning MONTHS_TO_ANALYZE into a horizon.
DAYS_PER_MONTH = 30.44

_TRUTHY = ("true", "1", "yes", "on")
_FALSY = ("false", "0", "no", "off")


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _float_env(
    env: Mapping[str, str], name: str, default: Optional[float]
) -> Optional[float]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _bool_env(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class SyncSettings:
    github_token: Optional[str] = None
    mongodb_uri: str = DEFAULT_MONGODB_URI
    mongo_db_name: Optional[str] = None

    months_to_analyze: int = 6
    max_commits_per_repo: int = 100
    max_prs_per_repo: int = 100
    max_issues_per_repo: int = 100

    incremental_sync_interval_hours: float = 4
    full_sync_interval_hours: float = 24
    max_incremental_items: int = 50
    enable_incremental_sync: bool = True
    sync_batch_size: int = 10
    sync_timeout_seconds: Optional[float] = None

    github_graphql_url: str = DEFAULT_GRAPHQL_URL
    request_timeout_seconds: float = 30

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "SyncSettings":
        """Build settings from environment variables.

        :param env: Mapping to read from; defaults to ``os.environ``.
        :raises ValueError: If a numeric or boolean variable cannot be parsed.
        """
        env = os.environ if env is None else env
        return cls(
            github_token=env.get("GITHUB_TOKEN") or None,
            mongodb_uri=env.get("MONGODB_URI") or DEFAULT_MONGODB_URI,
            mongo_db_name=env.get("MONGO_DB_NAME") or None,
            months_to_analyze=_int_env(env, "MONTHS_TO_ANALYZE", 6),
            max_commits_per_repo=_int_env(env, "MAX_COMMITS_PER_REPO", 100),
            max_prs_per_repo=_int_env(env, "MAX_PRS_PER_REPO", 100),
            max_issues_per_repo=_int_env(env, "MAX_ISSUES_PER_REPO", 100),
            incremental_sync_interval_hours=_float_env(
                env, "INCREMENTAL_SYNC_INTERVAL_HOURS", 4
            ),
            full_sync_interval_hours=_float_env(env, "FULL_SYNC_INTERVAL_HOURS", 24),
            max_incremental_items=_int_env(env, "MAX_INCREMENTAL_ITEMS", 50),
            enable_incremental_sync=_bool_env(env, "ENABLE_INCREMENTAL_SYNC", True),
            sync_batch_size=_int_env(env, "SYNC_BATCH_SIZE", 10),
            sync_timeout_seconds=_float_env(env, "SYNC_TIMEOUT_SECONDS", None),
            github_graphql_url=env.get("GITHUB_GRAPHQL_URL") or DEFAULT_GRAPHQL_URL,
            request_timeout_seconds=_float_env(env, "GITHUB_API_TIMEOUT", 30),
        )

    @property
    def incremental_sync_interval(self) -> timedelta:
        return timedelta(hours=self.incremental_sync_interval_hours)

    @property
    def full_sync_interval(self) -> timedelta:
        return timedelta(hours=self.full_sync_interval_hours)

    def analysis_start_date(self, now: datetime) -> datetime:
        return now - timedelta(days=self.months_to_analyze * DAYS_PER_MONTH)

    def incremental_sync_expiry(self, now: datetime) -> datetime:
        return now - self.incremental_sync_interval

    def full_sync_expiry(self, now: datetime) -> datetime:
        return now - self.full_sync_interval


def load_dotenv(path: Path) -> int:
    """
    Load a .env file into process environment (without overriding existing vars).
    Returns the number of variables set.
    """
    if not path.exists():
        return 0
    loaded = 0
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or key in os.environ:
            continue
        if (len(value) >= 2) and ((value[0] == value[-1]) and value[0] in {"'", '"'}):
            value = value[1:-1]
        os.environ[key] = value
        loaded += 1
    return loaded
