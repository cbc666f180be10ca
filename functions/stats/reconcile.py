"""
Reconciliation layer - idempotent writes of fetched stats.

Bulk sync treats a falsy incoming value as "not measured" and never lets it
overwrite a stored value. Writes whose merged result equals the stored row
are skipped, so re-running a sync is cheap and safe.

Owner and org rows are aggregates over their children and are recomputed
from the child rows rather than maintained incrementally. The one exception
is the webhook star update, which adjusts the owner total by the delta.
"""

import logging
import time
from typing import Optional

from shared import dynamo
from shared.constants import (
    DEPENDENT_COUNT_REFRESH_MS,
    NPM_ORGS_TABLE,
    NPM_PACKAGES_ORG_INDEX,
    NPM_PACKAGES_TABLE,
    OWNERS_TABLE,
    REPOS_TABLE,
)
from shared.errors import NotFoundError
from shared.types import DependentCountSnapshot, GithubOwner, NpmOrg

logger = logging.getLogger(__name__)

REPO_COUNT_FIELDS = ("star_count", "contributor_count", "dependent_count")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _repo_key(owner: str, name: str) -> dict:
    return {"owner_normalized": owner.lower(), "name_normalized": name.lower()}


def _owner_key(owner: str) -> dict:
    return {"name_normalized": owner.lower()}


def _baseline_is_stale(previous: Optional[dict], now: int) -> bool:
    """The forecast baseline only moves when absent or captured longer than the refresh interval ago."""
    if not previous:
        return True
    captured_at = previous.get("refreshed_at") or previous.get("updated_at") or 0
    return now - captured_at >= DEPENDENT_COUNT_REFRESH_MS


def _baseline_from(row: dict, now: int) -> Optional[DependentCountSnapshot]:
    """
    Snapshot a row's current dependent count as the next forecast baseline.

    The snapshot keeps the time the count was recorded, so the forecast
    range spans the interval the growth actually took. Zero counts make
    no baseline.
    """
    count = row.get("dependent_count")
    if not count:
        return None
    return {
        "count": count,
        "updated_at": row.get("dependent_count_updated_at") or row.get("updated_at") or now,
        "refreshed_at": now,
    }


def upsert_repo(
    owner: str,
    name: str,
    star_count: Optional[int] = None,
    contributor_count: Optional[int] = None,
    dependent_count: Optional[int] = None,
) -> str:
    """
    Insert or merge a repository row.

    Returns:
        "inserted", "updated" or "unchanged"
    """
    key = _repo_key(owner, name)
    incoming = {
        "star_count": star_count,
        "contributor_count": contributor_count,
        "dependent_count": dependent_count,
    }
    now = _now_ms()

    existing = dynamo.find(REPOS_TABLE, key)
    if existing is None:
        fields = {
            "owner": owner,
            "name": name,
            **{field: value or 0 for field, value in incoming.items()},
            "updated_at": now,
        }
        if dependent_count:
            fields["dependent_count_updated_at"] = now
        if dynamo.insert(REPOS_TABLE, key, fields):
            logger.debug(f"Inserted repo {owner}/{name}")
            return "inserted"
        # Created concurrently; merge into the row that won
        existing = dynamo.find(REPOS_TABLE, key) or {}

    merged = {
        field: value if value else existing.get(field, 0)
        for field, value in incoming.items()
    }
    if all(merged[field] == existing.get(field, 0) for field in REPO_COUNT_FIELDS):
        return "unchanged"

    updates = {**merged, "updated_at": now}
    old_dependents = existing.get("dependent_count", 0)
    if merged["dependent_count"] != old_dependents:
        updates["dependent_count_updated_at"] = now
        baseline = _baseline_from(existing, now)
        if baseline and _baseline_is_stale(existing.get("dependent_count_previous"), now):
            updates["dependent_count_previous"] = baseline

    dynamo.patch(REPOS_TABLE, key, updates)
    logger.debug(f"Updated repo {owner}/{name}")
    return "updated"


def _ensure_owner(owner: str, now: int) -> dict:
    key = _owner_key(owner)
    existing = dynamo.find(OWNERS_TABLE, key)
    if existing is not None:
        return existing

    fields = {
        "name": owner,
        "star_count": 0,
        "contributor_count": 0,
        "dependent_count": 0,
        "updated_at": now,
    }
    if not dynamo.insert(OWNERS_TABLE, key, fields):
        return dynamo.find(OWNERS_TABLE, key) or {**fields, **key}
    logger.info(f"Created owner {owner}")
    return {**fields, **key}


def upsert_owner_aggregate(owner: str) -> GithubOwner:
    """
    Recompute an owner's totals from its repository rows.

    Creates the owner row on first use. The dependent-count baseline is
    refreshed whenever the stored one is absent or stale, even if the totals
    did not change; a zero stored count is replaced by the new total so the
    forecast does not see a jump from nothing. Writes are skipped when
    neither the totals nor the baseline move.

    Returns:
        The owner row as stored after the update
    """
    now = _now_ms()
    existing = _ensure_owner(owner, now)
    repos = dynamo.query_all(REPOS_TABLE, "owner_normalized", owner.lower())

    totals = {
        field: sum(repo.get(field) or 0 for repo in repos) for field in REPO_COUNT_FIELDS
    }
    changed = any(totals[field] != existing.get(field, 0) for field in REPO_COUNT_FIELDS)

    baseline = None
    if _baseline_is_stale(existing.get("dependent_count_previous"), now):
        baseline = _baseline_from(existing, now)
        if baseline is None and totals["dependent_count"]:
            baseline = {"count": totals["dependent_count"], "updated_at": now, "refreshed_at": now}

    if not changed and baseline is None:
        return existing

    updates = {**totals, "updated_at": now}
    if totals["dependent_count"] != existing.get("dependent_count", 0):
        updates["dependent_count_updated_at"] = now
    if baseline is not None:
        updates["dependent_count_previous"] = baseline

    dynamo.patch(OWNERS_TABLE, _owner_key(owner), updates)
    logger.info(
        f"Updated owner {owner} aggregate",
        extra={"owner": owner, "repo_count": len(repos), **totals},
    )
    return {**existing, **updates}


def update_repo_stars(owner: str, name: str, star_count: int) -> int:
    """
    Apply a single repository's star count from a webhook delivery.

    Unlike bulk upserts this sets the value explicitly, zero included. The
    owner total is adjusted by the delta and clamped at zero so duplicate
    or reordered deliveries cannot drive it negative.

    Returns:
        The owner's new star count

    Raises:
        NotFoundError: the owner is not tracked
    """
    owner_row = dynamo.find(OWNERS_TABLE, _owner_key(owner))
    if owner_row is None:
        raise NotFoundError("github_owner", owner)

    now = _now_ms()
    key = _repo_key(owner, name)
    repo = dynamo.find(REPOS_TABLE, key)

    if repo is None:
        dynamo.insert(
            REPOS_TABLE,
            key,
            {
                "owner": owner,
                "name": name,
                "star_count": star_count,
                "contributor_count": 0,
                "dependent_count": 0,
                "updated_at": now,
            },
        )
        old_stars = 0
    else:
        dynamo.patch(REPOS_TABLE, key, {"star_count": star_count, "updated_at": now})
        old_stars = repo.get("star_count", 0)

    owner_stars = max(0, owner_row.get("star_count", 0) - old_stars + star_count)
    dynamo.patch(OWNERS_TABLE, _owner_key(owner), {"star_count": owner_stars, "updated_at": now})

    logger.info(
        f"Webhook star update {owner}/{name}: {old_stars} -> {star_count}",
        extra={"owner": owner, "repo": name, "owner_star_count": owner_stars},
    )
    return owner_stars


def upsert_npm_package(
    name: str,
    download_count: int,
    day_of_week_averages: list[int],
    org: Optional[str] = None,
) -> str:
    """
    Insert or merge an npm package row.

    Returns:
        "inserted", "updated" or "unchanged"
    """
    now = _now_ms()
    key = {"name": name}

    existing = dynamo.find(NPM_PACKAGES_TABLE, key)
    if existing is None:
        fields = {
            "org": org,
            "download_count": download_count or 0,
            "day_of_week_averages": list(day_of_week_averages or [0] * 7),
            "download_count_updated_at": now,
            "updated_at": now,
        }
        if dynamo.insert(NPM_PACKAGES_TABLE, key, fields):
            return "inserted"
        existing = dynamo.find(NPM_PACKAGES_TABLE, key) or {}

    merged = {
        "download_count": download_count or existing.get("download_count", 0),
        "day_of_week_averages": (
            list(day_of_week_averages)
            if day_of_week_averages and any(day_of_week_averages)
            else existing.get("day_of_week_averages", [0] * 7)
        ),
        "org": org or existing.get("org"),
    }
    if all(merged[field] == existing.get(field) for field in merged):
        return "unchanged"

    updates = {**merged, "updated_at": now}
    if merged["org"] is None:
        del updates["org"]
    if merged["download_count"] != existing.get("download_count"):
        updates["download_count_updated_at"] = now

    dynamo.patch(NPM_PACKAGES_TABLE, key, updates)
    return "updated"


def delete_npm_package(name: str) -> None:
    """Remove a package the registry no longer knows."""
    dynamo.delete(NPM_PACKAGES_TABLE, {"name": name})
    logger.info(f"Deleted npm package {name}")


def upsert_npm_org_aggregate(org: str) -> NpmOrg:
    """
    Recompute an org's download total and weekday averages from its packages.

    Creates the org row on first use. A zero or unchanged total leaves the
    stored aggregate alone.

    Returns:
        The org row as stored after the update
    """
    now = _now_ms()
    key = {"name": org}
    existing = dynamo.find(NPM_ORGS_TABLE, key)
    if existing is None:
        existing = {
            "name": org,
            "download_count": 0,
            "day_of_week_averages": [0] * 7,
            "download_count_updated_at": now,
            "updated_at": now,
        }
        if not dynamo.insert(NPM_ORGS_TABLE, key, existing):
            existing = dynamo.find(NPM_ORGS_TABLE, key) or existing

    packages = dynamo.query_all(
        NPM_PACKAGES_TABLE, "org", org, index_name=NPM_PACKAGES_ORG_INDEX
    )
    download_count = sum(pkg.get("download_count") or 0 for pkg in packages)
    if not download_count or download_count == existing.get("download_count"):
        return existing

    averages = [0] * 7
    for pkg in packages:
        for idx, value in enumerate((pkg.get("day_of_week_averages") or [])[:7]):
            averages[idx] += value or 0

    updates = {
        "download_count": download_count,
        "download_count_updated_at": now,
        "day_of_week_averages": averages,
        "updated_at": now,
    }
    dynamo.patch(NPM_ORGS_TABLE, key, updates)
    logger.info(
        f"Updated npm org {org} aggregate",
        extra={"org": org, "package_count": len(packages), "download_count": download_count},
    )
    return {**existing, **updates}
