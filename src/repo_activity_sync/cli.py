from __future__ import annotations

import argparse
import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import List, Optional

from repo_activity_sync.config import SyncSettings, load_dotenv
from repo_activity_sync.connectors.graphql import GitHubGraphQLClient
from repo_activity_sync.models.sync import RepoRef
from repo_activity_sync.storage.mongo import MongoStore
from repo_activity_sync.sync.admin import SyncAdmin
from repo_activity_sync.sync.batch import SyncBatchProcessor
from repo_activity_sync.sync.engine import IncrementalSyncEngine
from repo_activity_sync.sync.fetcher import DeltaFetcher

logger = logging.getLogger(__name__)


def _repo_arg(value: str) -> RepoRef:
    try:
        return RepoRef.parse(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _open_store(settings: SyncSettings) -> MongoStore:
    return MongoStore(settings.mongodb_uri, db_name=settings.mongo_db_name)


async def _cmd_sync(ns: argparse.Namespace) -> int:
    settings = SyncSettings.from_env()
    token = ns.token or settings.github_token
    if not token:
        raise SystemExit("sync requires --token or GITHUB_TOKEN")

    async with _open_store(settings) as store, GitHubGraphQLClient(
        settings.github_graphql_url, timeout=settings.request_timeout_seconds
    ) as client:
        await store.ensure_indexes()
        engine = IncrementalSyncEngine(
            DeltaFetcher(client), store.watermarks(), store, settings
        )
        processor = SyncBatchProcessor(engine, token)
        result = await processor.run([(ns.user, repo) for repo in ns.repo])

    for (username, repo), outcome in sorted(
        result.outcomes.items(), key=lambda kv: kv[0][1].full_name
    ):
        mode = "incremental" if outcome.is_incremental else "full/cached"
        print(
            f"{username}\t{repo.full_name}\t{mode}\t"
            f"commits={outcome.commits} prs={outcome.pull_requests} "
            f"issues={outcome.issues} pr_comments={outcome.pr_comments} "
            f"issue_comments={outcome.issue_comments} "
            f"fetched={outcome.items_fetched}"
        )
    for (username, repo), exc in result.failures.items():
        print(f"{username}\t{repo}\tFAILED\t{exc}")
    return 0 if result.ok else 1


async def _cmd_status(ns: argparse.Namespace) -> int:
    settings = SyncSettings.from_env()
    async with _open_store(settings) as store:
        admin = SyncAdmin(store.watermarks(), settings)
        statuses = await admin.status(ns.user)
    if not statuses:
        print(f"No sync records for {ns.user}")
        return 0
    for status in statuses:
        wm = status.watermark
        flags = []
        if status.needs_incremental:
            flags.append("stale")
        if status.needs_full:
            flags.append("full-due")
        totals = " ".join(f"{k}={v}" for k, v in wm.total_items.as_dict().items())
        print(
            f"{wm.repo}\tlast_sync={wm.last_sync_date.isoformat()}\t{totals}\t"
            f"{','.join(flags) or 'fresh'}"
        )
    return 0


async def _cmd_cleanup(ns: argparse.Namespace) -> int:
    settings = SyncSettings.from_env()
    async with _open_store(settings) as store:
        removed = await SyncAdmin(store.watermarks(), settings).cleanup(
            ns.older_than_days
        )
    print(f"Removed {removed} sync records")
    return 0


async def _cmd_reset(ns: argparse.Namespace) -> int:
    settings = SyncSettings.from_env()
    async with _open_store(settings) as store:
        deleted = await SyncAdmin(store.watermarks(), settings).reset(
            ns.user, ns.repo
        )
    print("Reset" if deleted else "No sync record found")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repo-activity-sync",
        description="Incrementally sync per-user repository activity into MongoDB.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING). Defaults to env LOG_LEVEL or INFO.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync_parser = sub.add_parser("sync", help="Sync a user's activity in repositories.")
    sync_parser.add_argument("--user", required=True, help="GitHub login.")
    sync_parser.add_argument(
        "--repo",
        required=True,
        action="append",
        type=_repo_arg,
        help="Repository as owner/name (repeatable).",
    )
    sync_parser.add_argument(
        "--token", default=None, help="GitHub token (defaults to GITHUB_TOKEN)."
    )
    sync_parser.set_defaults(func=_cmd_sync)

    status_parser = sub.add_parser("status", help="Show stored sync watermarks.")
    status_parser.add_argument("--user", required=True)
    status_parser.set_defaults(func=_cmd_status)

    cleanup_parser = sub.add_parser(
        "cleanup", help="Delete sync records older than a retention threshold."
    )
    cleanup_parser.add_argument("--older-than-days", type=int, required=True)
    cleanup_parser.set_defaults(func=_cmd_cleanup)

    reset_parser = sub.add_parser(
        "reset", help="Delete one sync record so the next sync is a full sync."
    )
    reset_parser.add_argument("--user", required=True)
    reset_parser.add_argument("--repo", required=True, type=_repo_arg)
    reset_parser.set_defaults(func=_cmd_reset)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if os.getenv("DISABLE_DOTENV", "").strip().lower() not in {
        "1",
        "true",
        "yes",
        "on",
    }:
        load_dotenv(Path.cwd() / ".env")

    parser = build_parser()
    ns = parser.parse_args(argv)

    level_name = str(getattr(ns, "log_level", "") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(ns))
    return int(func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
