"""Administrative operations over stored watermarks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Union

from repo_activity_sync.config import SyncSettings
from repo_activity_sync.models.sync import RepoRef, SyncWatermark
from repo_activity_sync.sync.watermarks import MongoWatermarkStore
from repo_activity_sync.utils.datetime import utcnow
from repo_activity_sync.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatermarkStatus:
    watermark: SyncWatermark
    needs_incremental: bool
    needs_full: bool


class SyncAdmin:
    def __init__(
        self,
        store: MongoWatermarkStore,
        settings: SyncSettings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.settings = settings
        self._clock = clock

    async def status(self, username: str) -> List[WatermarkStatus]:
        now = self._clock()
        incremental_expiry = self.settings.incremental_sync_expiry(now)
        full_expiry = self.settings.full_sync_expiry(now)
        statuses = []
        for wm in await self.store.find_all_by_username(username):
            fresh = await self.store.is_incremental_sync_valid(
                username, wm.repo, incremental_expiry
            )
            needs_full = await self.store.is_full_sync_required(
                username, wm.repo, full_expiry
            )
            statuses.append(
                WatermarkStatus(
                    watermark=wm, needs_incremental=not fresh, needs_full=needs_full
                )
            )
        return statuses

    async def cleanup(self, older_than_days: int) -> int:
        if older_than_days <= 0:
            raise ValueError("older_than_days must be positive")
        cutoff = self._clock() - timedelta(days=older_than_days)
        return await self.store.cleanup(cutoff)

    async def reset(self, username: str, repo: Union[RepoRef, str]) -> bool:
        ref = RepoRef.parse(repo)
        deleted = await self.store.delete_by_username_and_repo(username, ref.full_name)
        if deleted:
            logger.info(
                "Reset sync watermark for %s in %s",
                sanitize_for_log(username),
                sanitize_for_log(ref.full_name),
            )
        return deleted
