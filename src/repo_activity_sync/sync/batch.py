from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple, Union

from repo_activity_sync.exceptions import SyncFailure
from repo_activity_sync.models.sync import RepoRef, SyncOutcome
from repo_activity_sync.processors.base import BaseProcessor
from repo_activity_sync.sync.engine import IncrementalSyncEngine
from repo_activity_sync.utils.logging import sanitize_for_log

logger = logging.getLogger(__name__)

SyncPair = Tuple[str, RepoRef]


@dataclass
class BatchSyncResult:
    outcomes: Dict[SyncPair, SyncOutcome] = field(default_factory=dict)
    failures: Dict[Tuple[str, Union[RepoRef, str]], Exception] = field(
        default_factory=dict
    )

    @property
    def ok(self) -> bool:
        return not self.failures


class SyncBatchProcessor(BaseProcessor[SyncPair, SyncOutcome]):
    """Runs the engine over several (username, repo) pairs for one caller.

    Pairs are independent: a failure is recorded against its pair and the
    rest of the batch continues.
    """

    def __init__(
        self,
        engine: IncrementalSyncEngine,
        credential: str,
        *,
        max_concurrent: int | None = None,
    ) -> None:
        super().__init__(
            max_concurrent=max_concurrent or engine.settings.sync_batch_size,
            logger=logger,
        )
        self.engine = engine
        self.credential = credential
        self.result = BatchSyncResult()

    async def process_single(self, item: SyncPair) -> SyncOutcome:
        username, repo = item
        return await self.engine.sync_user_repo_activity(
            username, repo, self.credential
        )

    async def store_result(self, item: SyncPair, result: SyncOutcome) -> None:
        self.result.outcomes[item] = result

    async def on_item_error(self, item: SyncPair, exc: Exception) -> None:
        username, repo = item
        level = logging.WARNING if isinstance(exc, SyncFailure) else logging.ERROR
        logger.log(
            level,
            "Sync failed for %s in %s: %s",
            sanitize_for_log(username),
            sanitize_for_log(repo.full_name),
            sanitize_for_log(exc),
        )
        self.result.failures[item] = exc

    async def run(
        self, pairs: Sequence[Tuple[str, Union[RepoRef, str]]]
    ) -> BatchSyncResult:
        self.result = BatchSyncResult()
        items: List[SyncPair] = []
        for username, repo in pairs:
            try:
                item = (username, RepoRef.parse(repo))
            except ValueError as exc:
                logger.warning(
                    "Skipping %s in %s: %s",
                    sanitize_for_log(username),
                    sanitize_for_log(repo),
                    sanitize_for_log(exc),
                )
                self.result.failures[(username, repo)] = exc
                continue
            if item not in items:
                items.append(item)
        await self.process_batch(items)
        return self.result
