"""
Sync Orchestrator - refreshes every configured owner, repo, org and package.

Runs the GitHub and npm phases concurrently with bounded fan-out:
- owners: 5 at a time, repos: 4 per owner, repository page scrapes: 10
- npm orgs: 2 at a time, packages: 20 per org

A failing owner, repo, org or package is logged and counted, never fatal to
the run. Whatever happens, the run ends by replacing the recurring "sync"
schedule so exactly one periodic job exists with the latest arguments.

Event format (every key optional, defaults come from configuration):
{
    "github_owners": ["get-convex"],
    "github_repos": ["get-convex/convex-helpers"],
    "npm_orgs": ["convex-dev"],
    "npm_packages": ["convex"],
    "min_stars": 1
}
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Optional

import httpx
from botocore.exceptions import ClientError

from collectors.github_collector import GitHubCollector
from collectors.http_client import close_http_clients
from collectors.npm_collector import (
    fetch_download_stats,
    fetch_org_packages_page,
    fetch_package_created,
)
from shared.config import Settings
from shared.constants import (
    DEFAULT_SYNC_INTERVAL_MINUTES,
    NPM_ORG_CONCURRENCY,
    NPM_PACKAGE_CONCURRENCY,
    OWNER_CONCURRENCY,
    REPO_CONCURRENCY,
    SYNC_JOB_NAME,
)
from shared.errors import APIError, NotFoundError
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.metrics import emit_sync_summary
from shared.scheduler import ScheduleClient
from stats.reconcile import (
    delete_npm_package,
    upsert_npm_org_aggregate,
    upsert_npm_package,
    upsert_owner_aggregate,
    upsert_repo,
)

logger = logging.getLogger(__name__)

MIN_REMAINING_MS = 30_000  # Skip new units when Lambda has < 30s left

# Failures isolated to a single unit of work
UNIT_ERRORS = (APIError, ClientError, httpx.HTTPError, KeyError, ValueError)


@dataclass
class SyncRequest:
    """Arguments of one sync run. Repos are "owner/name" strings."""

    github_access_token: Optional[str] = None
    github_owners: list[str] = field(default_factory=list)
    github_repos: list[str] = field(default_factory=list)
    npm_orgs: list[str] = field(default_factory=list)
    npm_packages: list[str] = field(default_factory=list)
    min_stars: int = 1

    @classmethod
    def from_event(cls, event: dict, settings: Settings) -> "SyncRequest":
        """Merge invocation arguments over the configured defaults."""
        event = event or {}

        def pick(key: str, default):
            value = event.get(key)
            return default if value is None else value

        return cls(
            github_access_token=event.get("github_access_token") or settings.github_access_token,
            github_owners=list(pick("github_owners", settings.github_owners)),
            github_repos=list(pick("github_repos", settings.github_repos)),
            npm_orgs=list(pick("npm_orgs", settings.npm_orgs)),
            npm_packages=list(pick("npm_packages", settings.npm_packages)),
            min_stars=int(pick("min_stars", settings.min_stars)),
        )

    def schedule_payload(self) -> dict:
        """Arguments for the next scheduled run. The token is re-resolved from configuration."""
        payload = asdict(self)
        del payload["github_access_token"]
        return payload


def _out_of_time(context) -> bool:
    return bool(context) and context.get_remaining_time_in_millis() < MIN_REMAINING_MS


class SyncOrchestrator:
    """Drives fetchers and the reconciliation layer for one sync run."""

    def __init__(
        self,
        github: GitHubCollector,
        scheduler: ScheduleClient,
        interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
        job_name: str = SYNC_JOB_NAME,
    ):
        self.github = github
        self.scheduler = scheduler
        self.interval_minutes = interval_minutes
        self.job_name = job_name

    async def run(self, request: SyncRequest, context=None) -> dict:
        """
        Sync everything in the request, then replace the recurring schedule.

        Returns:
            Summary of counts per outcome plus the schedule result
        """
        start_time = time.time()
        counts: Counter = Counter()
        schedule_result = "failed"

        try:
            results = await asyncio.gather(
                self._sync_github(request, counts, context),
                self._sync_npm(request, counts, context),
                return_exceptions=True,
            )
            for phase, result in zip(("github", "npm"), results):
                if isinstance(result, Exception):
                    counts[f"{phase}_phase_failed"] += 1
                    logger.error(f"Sync {phase} phase failed: {result}", exc_info=result)
        finally:
            schedule_result = self._reschedule(request)

        duration = time.time() - start_time
        summary = {**counts, "schedule": schedule_result, "duration_seconds": round(duration, 2)}
        logger.info("Sync completed", extra={"summary": summary})

        emit_sync_summary(counts, duration)
        return summary

    def _reschedule(self, request: SyncRequest) -> str:
        try:
            return self.scheduler.replace(
                self.job_name, self.interval_minutes, request.schedule_payload()
            )
        except (ClientError, APIError) as e:
            logger.error(f"Failed to replace {self.job_name} schedule: {e}")
            return "failed"

    # GitHub

    async def _sync_github(self, request: SyncRequest, counts: Counter, context) -> None:
        owner_semaphore = asyncio.Semaphore(OWNER_CONCURRENCY)

        async def guarded(owner: str) -> None:
            async with owner_semaphore:
                if _out_of_time(context):
                    counts["owners_skipped"] += 1
                    return
                try:
                    await self.sync_owner(owner, request.min_stars, counts)
                except NotFoundError:
                    counts["owners_failed"] += 1
                    logger.warning(f"GitHub owner {owner} not found, skipping")
                except UNIT_ERRORS as e:
                    counts["owners_failed"] += 1
                    logger.error(f"Failed to sync GitHub owner {owner}: {e}")

        await asyncio.gather(*(guarded(owner) for owner in request.github_owners))
        await self._sync_explicit_repos(request, counts, context)

    async def sync_owner(self, owner: str, min_stars: int, counts: Counter) -> dict:
        """Upsert every public repository of an owner, then its aggregate."""
        account = await self.github.get_account(owner)
        login = account["login"]
        is_org = account["type"] == "Organization"

        repo_semaphore = asyncio.Semaphore(REPO_CONCURRENCY)

        async def guarded(item: dict) -> None:
            async with repo_semaphore:
                await self._sync_repo_item(item, min_stars, counts)

        page: Optional[int] = 1
        while page:
            repo_page = await self.github.list_repos_page(login, page, is_org)
            await asyncio.gather(*(guarded(item) for item in repo_page.items))
            page = repo_page.next_page

        result = upsert_owner_aggregate(login)
        counts["owners_synced"] += 1
        return result

    async def _sync_repo_item(self, item: dict, min_stars: int, counts: Counter) -> None:
        owner, name = item["owner"], item["name"]
        try:
            if item["star_count"] < min_stars:
                result = upsert_repo(owner, name, star_count=item["star_count"])
            else:
                page_data = await self.github.get_repo_page_data(owner, name)
                if not page_data.measured:
                    counts["repos_unmeasured"] += 1
                result = upsert_repo(
                    owner,
                    name,
                    star_count=item["star_count"],
                    contributor_count=page_data.contributor_count or None,
                    dependent_count=page_data.dependent_count or None,
                )
            counts[f"repos_{result}"] += 1
        except UNIT_ERRORS as e:
            counts["repos_failed"] += 1
            logger.error(f"Failed to sync repo {owner}/{name}: {e}")

    async def _sync_explicit_repos(self, request: SyncRequest, counts: Counter, context) -> None:
        owners = {}
        for full_name in request.github_repos:
            if _out_of_time(context):
                counts["repos_skipped"] += 1
                continue
            owner, _, name = full_name.partition("/")
            if not owner or not name:
                counts["repos_failed"] += 1
                logger.warning(f"Ignoring malformed repo name {full_name!r}")
                continue
            try:
                item = await self.github.get_repo(owner, name)
            except UNIT_ERRORS as e:
                counts["repos_failed"] += 1
                logger.error(f"Failed to fetch repo {full_name}: {e}")
                continue
            await self._sync_repo_item(item, request.min_stars, counts)
            owners[item["owner"].lower()] = item["owner"]

        for owner in owners.values():
            try:
                upsert_owner_aggregate(owner)
            except UNIT_ERRORS as e:
                logger.error(f"Failed to update aggregate for {owner}: {e}")

    # npm

    async def _sync_npm(self, request: SyncRequest, counts: Counter, context) -> None:
        org_semaphore = asyncio.Semaphore(NPM_ORG_CONCURRENCY)

        async def guarded_org(org: str) -> None:
            async with org_semaphore:
                if _out_of_time(context):
                    counts["orgs_skipped"] += 1
                    return
                try:
                    await self.sync_npm_org(org, counts)
                except UNIT_ERRORS as e:
                    counts["orgs_failed"] += 1
                    logger.error(f"Failed to sync npm org {org}: {e}")

        package_semaphore = asyncio.Semaphore(NPM_PACKAGE_CONCURRENCY)

        async def guarded_package(name: str) -> None:
            async with package_semaphore:
                if _out_of_time(context):
                    counts["packages_skipped"] += 1
                    return
                await self._sync_npm_package(name, None, None, counts)

        await asyncio.gather(
            *(guarded_org(org) for org in request.npm_orgs),
            *(guarded_package(name) for name in request.npm_packages),
        )

    async def sync_npm_org(self, org: str, counts: Counter) -> dict:
        """Upsert every package listed for an org, then its aggregate."""
        package_semaphore = asyncio.Semaphore(NPM_PACKAGE_CONCURRENCY)

        async def guarded(pkg: dict) -> None:
            async with package_semaphore:
                await self._sync_npm_package(pkg["name"], pkg.get("created"), org, counts)

        page = 0
        while True:
            listing = await fetch_org_packages_page(org, page)
            await asyncio.gather(*(guarded(pkg) for pkg in listing.packages))
            if not listing.has_more:
                break
            page += 1

        result = upsert_npm_org_aggregate(org)
        counts["orgs_synced"] += 1
        return result

    async def _sync_npm_package(
        self, name: str, created_ms: Optional[int], org: Optional[str], counts: Counter
    ) -> None:
        try:
            if created_ms is None:
                created_ms = await fetch_package_created(name)
            stats = await fetch_download_stats(name, created_ms)
            if stats is None:
                # Listed by the org but unknown to the downloads API
                if org:
                    delete_npm_package(name)
                    counts["packages_deleted"] += 1
                else:
                    counts["packages_failed"] += 1
                    logger.warning(f"npm package {name} has no download stats")
                return
            result = upsert_npm_package(name, stats.total, stats.day_of_week_averages, org=org)
            counts[f"packages_{result}"] += 1
        except UNIT_ERRORS as e:
            counts["packages_failed"] += 1
            logger.error(f"Failed to sync npm package {name}: {e}")


def build_orchestrator(settings: Settings, token: Optional[str] = None) -> SyncOrchestrator:
    """Wire an orchestrator from configuration."""
    scheduler = ScheduleClient(
        settings.schedule_group, settings.sync_function_arn, settings.scheduler_role_arn
    )
    return SyncOrchestrator(
        GitHubCollector(token or settings.github_access_token),
        scheduler,
        interval_minutes=settings.sync_interval_minutes,
    )


def run_sync(orchestrator: SyncOrchestrator, request: SyncRequest, context=None) -> dict:
    """Run a sync to completion on a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(orchestrator.run(request, context))
    finally:
        loop.run_until_complete(close_http_clients())
        loop.close()


def handler(event, context):
    """
    Lambda handler for the sync job.

    Invoked manually or by the recurring schedule this function registers.
    """
    configure_structured_logging()
    set_request_id(event)

    settings = Settings.from_env()
    request = SyncRequest.from_event(event, settings)
    logger.info(
        "Starting sync",
        extra={
            "github_owners": len(request.github_owners),
            "github_repos": len(request.github_repos),
            "npm_orgs": len(request.npm_orgs),
            "npm_packages": len(request.npm_packages),
        },
    )

    orchestrator = build_orchestrator(settings, request.github_access_token)
    return run_sync(orchestrator, request, context)
