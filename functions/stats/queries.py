"""
Read-side lookups over the cached stats.

Batch lookups return one entry per requested name, in request order, with
None for names that are not stored. Owner names match case-insensitively;
npm names are exact.
"""

import logging
import time
from typing import Optional

from shared import dynamo
from shared.config import Settings
from shared.constants import DAY_MS, NPM_ORGS_TABLE, NPM_PACKAGES_TABLE, OWNERS_TABLE, REPOS_TABLE
from shared.types import GithubOwner, GithubRepo, NpmOrg, NpmPackage

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


def get_github_owners(names: list[str]) -> list[Optional[GithubOwner]]:
    """Owner rows for each name, None where the owner is not tracked."""
    if not names:
        return []
    items = dynamo.batch_find(OWNERS_TABLE, [{"name_normalized": n.lower()} for n in names])
    by_key = {item["name_normalized"]: item for item in items}
    return [by_key.get(name.lower()) for name in names]


def get_github_owner(name: str) -> Optional[GithubOwner]:
    return dynamo.find(OWNERS_TABLE, {"name_normalized": name.lower()})


def get_all_github_owners(settings: Settings) -> list[Optional[GithubOwner]]:
    """Owner rows for every configured owner."""
    return get_github_owners(settings.github_owners)


def get_github_repo(owner: str, name: str) -> Optional[GithubRepo]:
    return dynamo.find(
        REPOS_TABLE, {"owner_normalized": owner.lower(), "name_normalized": name.lower()}
    )


def _with_download_timestamp(org: dict, now: int) -> dict:
    # Orgs that never aggregated still need a range start for the forecast
    if not org.get("download_count_updated_at"):
        return {**org, "download_count_updated_at": now - DAY_MS}
    return org


def get_npm_orgs(names: list[str]) -> list[Optional[NpmOrg]]:
    """Org rows for each name, None where the org is not tracked."""
    if not names:
        return []
    now = _now_ms()
    items = dynamo.batch_find(NPM_ORGS_TABLE, [{"name": n} for n in names])
    by_name = {item["name"]: _with_download_timestamp(item, now) for item in items}
    return [by_name.get(name) for name in names]


def get_npm_org(name: str) -> Optional[NpmOrg]:
    org = dynamo.find(NPM_ORGS_TABLE, {"name": name})
    return _with_download_timestamp(org, _now_ms()) if org else None


def get_all_npm_orgs(settings: Settings) -> list[Optional[NpmOrg]]:
    """Org rows for every configured org."""
    return get_npm_orgs(settings.npm_orgs)


def get_npm_package(name: str) -> Optional[NpmPackage]:
    return dynamo.find(NPM_PACKAGES_TABLE, {"name": name})


def get_npm_packages(names: list[str]) -> dict:
    """
    Combined stats over a set of packages.

    Unknown names contribute nothing. Timestamps are the latest of the
    packages found, or 0 when none were.
    """
    combined = {
        "download_count": 0,
        "day_of_week_averages": [0] * 7,
        "download_count_updated_at": 0,
        "updated_at": 0,
    }
    if not names:
        return combined

    for pkg in dynamo.batch_find(NPM_PACKAGES_TABLE, [{"name": n} for n in names]):
        combined["download_count"] += pkg.get("download_count") or 0
        for idx, value in enumerate((pkg.get("day_of_week_averages") or [])[:7]):
            combined["day_of_week_averages"][idx] += value or 0
        combined["download_count_updated_at"] = max(
            combined["download_count_updated_at"], pkg.get("download_count_updated_at") or 0
        )
        combined["updated_at"] = max(combined["updated_at"], pkg.get("updated_at") or 0)

    return combined
