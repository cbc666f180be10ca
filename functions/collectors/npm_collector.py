"""
npm collector - organization package listings and download statistics.

Fetches:
- Organization package listings (website JSON endpoint, paginated)
- Package creation timestamps (registry)
- Lifetime download totals and recent day-of-week averages (downloads API)

Rate limit: ~1000 requests/hour (undocumented but conservative)
"""

import logging
import math
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

import httpx

from collectors.http_client import get_http_client
from shared.constants import (
    DAY_OF_WEEK_SAMPLE_WEEKS,
    NPM_API,
    NPM_RANGE_WINDOW_DAYS,
    NPM_REGISTRY,
    NPM_TRAILING_WINDOW_DAYS,
    NPM_WEB,
)
from shared.errors import NotAnOrgError, NotFoundError, TransientFetchError
from shared.logging_utils import log_external_call

logger = logging.getLogger(__name__)

# Asks the npm website for its JSON page model instead of HTML
ORG_PAGE_HEADERS = {
    "cache-control": "no-cache",
    "x-spiferack": "1",
}

SCOPE_NOT_FOUND_MESSAGE = "NotFoundError: Scope not found"


@dataclass(frozen=True)
class OrgPackagesPage:
    """One page of an npm organization's package listing."""

    packages: list[dict]  # {"name": str, "created": epoch ms}
    has_more: bool


@dataclass(frozen=True)
class DownloadStats:
    total: int
    day_of_week_averages: list[int]  # index 0 = Sunday


def encode_scoped_package(name: str) -> str:
    """
    URL-encode scoped npm package names for the registry API.

    Scoped packages like @babel/core need the forward slash encoded:
    @babel/core -> @babel%2Fcore

    Note: The @ symbol should NOT be encoded for npm registry.
    """
    if name.startswith("@") and "/" in name:
        scope, package_name = name.split("/", 1)
        return f"{scope}%2F{package_name}"
    return name


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _day_of_week(day: str) -> int:
    """Weekday index with 0 = Sunday for an ISO date string."""
    return (date.fromisoformat(day[:10]).weekday() + 1) % 7


def day_of_week_averages(downloads: list[dict]) -> list[int]:
    """
    Average downloads per weekday over the most recent occurrences.

    Each slot is the rounded mean of the last DAY_OF_WEEK_SAMPLE_WEEKS
    occurrences of that weekday; missing occurrences count as zero.
    """
    by_weekday: list[list[int]] = [[] for _ in range(7)]
    for entry in sorted(downloads, key=lambda d: d["day"]):
        by_weekday[_day_of_week(entry["day"])].append(entry.get("downloads") or 0)

    return [
        _round_half_up(sum(samples[-DAY_OF_WEEK_SAMPLE_WEEKS:]) / DAY_OF_WEEK_SAMPLE_WEEKS)
        for samples in by_weekday
    ]


async def _get_json(url: str, service: str, headers: Optional[dict] = None) -> tuple[int, dict]:
    """GET a JSON document, returning (status, body). 5xx and network errors are transient."""
    client = get_http_client()
    start = time.monotonic()
    try:
        resp = await client.get(url, headers=headers)
    except httpx.RequestError as e:
        log_external_call(logger, service, url, False, (time.monotonic() - start) * 1000, str(e))
        raise TransientFetchError(f"{service} request failed: {e}", service=service) from e

    latency_ms = (time.monotonic() - start) * 1000
    if resp.status_code >= 500 or resp.status_code == 429:
        log_external_call(logger, service, url, False, latency_ms, f"HTTP {resp.status_code}")
        raise TransientFetchError(f"{service} returned {resp.status_code}", service=service)

    try:
        body = resp.json()
    except ValueError as e:
        log_external_call(logger, service, url, False, latency_ms, "invalid JSON")
        raise TransientFetchError(f"{service} returned invalid JSON", service=service) from e

    log_external_call(logger, service, url, resp.status_code < 400, latency_ms)
    return resp.status_code, body if isinstance(body, dict) else {}


async def fetch_org_packages_page(org: str, page: int) -> OrgPackagesPage:
    """
    Fetch one page (0-based) of an organization's packages.

    Raises:
        NotFoundError: the scope does not exist
        NotAnOrgError: the scope belongs to a user
        TransientFetchError: the listing could not be read
    """
    _, data = await _get_json(f"{NPM_WEB}/org/{org}?page={page}", "npm_web", ORG_PAGE_HEADERS)

    packages = data.get("packages")
    if not packages and data.get("message") == SCOPE_NOT_FOUND_MESSAGE:
        raise NotFoundError("npm_org", org)
    if (data.get("scope") or {}).get("type") == "user":
        raise NotAnOrgError(org)
    if not packages:
        raise TransientFetchError(f"No packages for {org}, page {page}", service="npm_web")

    return OrgPackagesPage(
        packages=[
            {"name": obj["name"], "created": (obj.get("created") or {}).get("ts")}
            for obj in packages.get("objects", [])
        ],
        has_more=bool((packages.get("urls") or {}).get("next")),
    )


async def fetch_package_created(name: str) -> int:
    """
    Fetch a package's creation time from the registry.

    Returns:
        Creation timestamp in epoch milliseconds

    Raises:
        NotFoundError: the registry does not know the package
    """
    status, data = await _get_json(f"{NPM_REGISTRY}/{encode_scoped_package(name)}", "npm_registry")

    if status == 404 or data.get("error") == "Not found":
        raise NotFoundError("npm_package", name)
    if "error" in data:
        raise TransientFetchError(f"npm registry error for {name}: {data['error']}", service="npm_registry")

    created = (data.get("time") or {}).get("created")
    if not created:
        raise TransientFetchError(f"Package {name} has no creation time", service="npm_registry")

    created_at = datetime.fromisoformat(created.replace("Z", "+00:00"))
    return int(created_at.timestamp() * 1000)


async def _fetch_range(name: str, start: date, end: date) -> Optional[dict]:
    """Fetch a download range; None when the downloads API does not know the package."""
    url = f"{NPM_API}/downloads/range/{start.isoformat()}:{end.isoformat()}/{name}"
    status, data = await _get_json(url, "npm_downloads")

    error = data.get("error")
    if error:
        if status == 404 or "not found" in str(error).lower():
            return None
        raise TransientFetchError(f"npm downloads error for {name}: {error}", service="npm_downloads")
    return data


async def fetch_download_stats(
    name: str, created_ms: int, today: Optional[date] = None
) -> Optional[DownloadStats]:
    """
    Walk a package's download history from creation to today.

    The downloads API only answers bounded ranges, so the lifetime total is
    summed over consecutive NPM_RANGE_WINDOW_DAYS windows. A trailing
    NPM_TRAILING_WINDOW_DAYS window ending yesterday then feeds the weekday
    averages.

    Returns:
        DownloadStats, or None when the downloads API does not know the package
    """
    today = today or datetime.now(timezone.utc).date()
    start = min(datetime.fromtimestamp(created_ms / 1000, tz=timezone.utc).date(), today)

    total = 0
    while True:
        end = min(start + timedelta(days=NPM_RANGE_WINDOW_DAYS), today)
        page = await _fetch_range(name, start, end)
        if page is None:
            return None

        total += sum(entry.get("downloads") or 0 for entry in page.get("downloads", []))

        last_day = page.get("end") or end.isoformat()
        if last_day >= today.isoformat():
            break
        start = end + timedelta(days=1)
        if start > today:
            break

    # Today is still accumulating, so the trailing window ends yesterday
    trailing_end = today - timedelta(days=1)
    trailing = await _fetch_range(
        name, trailing_end - timedelta(days=NPM_TRAILING_WINDOW_DAYS), trailing_end
    )
    if trailing is None:
        return None

    return DownloadStats(
        total=total,
        day_of_week_averages=day_of_week_averages(trailing.get("downloads", [])),
    )
