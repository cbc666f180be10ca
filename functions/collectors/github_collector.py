"""
GitHub collector - star, contributor and dependent counts.

Provides:
- Account probe (user vs organization)
- Paginated public repository listing with star counts
- Single repository lookup
- Contributor and dependent counts scraped from the repository page

Rate limit: 5,000 requests/hour with token. The repository page is not part
of the API and is fetched without the token.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from collectors.http_client import get_github_client, get_http_client
from shared.constants import (
    GITHUB_API,
    GITHUB_REPOS_PER_PAGE,
    GITHUB_WEB,
    PAGE_SCRAPE_CONCURRENCY,
    REPO_PAGE_ATTEMPTS,
)
from shared.errors import NotFoundError, TransientFetchError
from shared.logging_utils import log_external_call
from shared.retry import RetryConfig, retry_async

logger = logging.getLogger(__name__)

# Counters on the repository page sometimes fail to render; retry the page
SCRAPE_RETRY_CONFIG = RetryConfig(
    max_retries=REPO_PAGE_ATTEMPTS - 1,
    base_delay=1.0,
    max_delay=4.0,
    retryable_exceptions=(TransientFetchError, httpx.RequestError),
)

_SPAN_TAG_RE = re.compile(r"<span\b[^>]*>", re.IGNORECASE)
_CLASS_RE = re.compile(r'\bclass="([^"]*)"', re.IGNORECASE)
_TITLE_RE = re.compile(r'\btitle="([^"]*)"', re.IGNORECASE)

# One semaphore per event loop; Lambda creates a new loop per invocation
_page_semaphores: dict[int, asyncio.Semaphore] = {}


@dataclass(frozen=True)
class RepoPage:
    """One page of an owner's repository listing."""

    items: list[dict]
    next_page: Optional[int]


@dataclass(frozen=True)
class RepoPageData:
    """Counts scraped from a repository page. measured=False means give-up."""

    contributor_count: int
    dependent_count: int
    measured: bool = True


def _page_semaphore() -> asyncio.Semaphore:
    loop_id = id(asyncio.get_running_loop())
    semaphore = _page_semaphores.get(loop_id)
    if semaphore is None:
        _page_semaphores.clear()
        semaphore = asyncio.Semaphore(PAGE_SCRAPE_CONCURRENCY)
        _page_semaphores[loop_id] = semaphore
    return semaphore


def _parse_count(text: str) -> int:
    try:
        return int(text.replace(",", "").strip())
    except ValueError:
        return 0


def parse_counter(html: str, href_suffix: str) -> Optional[int]:
    """
    Find the first non-zero counter badge inside a link ending in href_suffix.

    Mirrors the selector ``a[href$="<suffix>"] > span.Counter[title]``: the
    title attribute carries the exact number ("1,234") while the visible text
    may be abbreviated ("1.2k").

    Returns:
        The count, or None when no link carries a non-zero counter
    """
    anchor_re = re.compile(
        r'<a\b[^>]*\bhref="[^"]*' + re.escape(href_suffix) + r'"[^>]*>(.*?)</a>',
        re.IGNORECASE | re.DOTALL,
    )
    for match in anchor_re.finditer(html):
        for tag in _SPAN_TAG_RE.findall(match.group(1)):
            classes = _CLASS_RE.search(tag)
            title = _TITLE_RE.search(tag)
            if not classes or "Counter" not in classes.group(1).split() or not title:
                continue
            count = _parse_count(title.group(1))
            if count:
                return count
    return None


def _repo_item(data: dict) -> dict:
    return {
        "owner": (data.get("owner") or {}).get("login", ""),
        "name": data.get("name", ""),
        "star_count": data.get("stargazers_count") or 0,
    }


class GitHubCollector:
    """
    GitHub API collector with rate limit awareness and retry logic.
    """

    def __init__(self, token: str):
        """
        Initialize collector.

        Args:
            token: GitHub Personal Access Token (5K requests/hour)
        """
        self.token = token
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {token}",
        }

        self._rate_limit_remaining = 5000
        self._rate_limit_reset: Optional[int] = None

    async def _request_with_retry(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[dict] = None,
        max_retries: int = 3,
    ) -> Optional[Any]:
        """
        Make request with exponential backoff retry.

        Handles:
        - Rate limiting (403 with X-RateLimit-Remaining: 0)
        - Server errors (5xx)
        - Network errors

        Returns:
            Response JSON or None if not found

        Raises:
            TransientFetchError: server errors or rate limiting outlasted retries
        """
        for attempt in range(max_retries):
            start = time.monotonic()
            try:
                resp = await client.get(url, params=params)
            except httpx.RequestError as e:
                log_external_call(
                    logger, "github", url, False, (time.monotonic() - start) * 1000, str(e)
                )
                if attempt == max_retries - 1:
                    logger.error(f"Failed after {max_retries} retries: {url} - {e}")
                    raise TransientFetchError(f"GitHub request failed: {e}", service="github") from e
                await asyncio.sleep(2**attempt)
                continue

            latency_ms = (time.monotonic() - start) * 1000

            # Track rate limits from response headers
            if "X-RateLimit-Remaining" in resp.headers:
                self._rate_limit_remaining = int(resp.headers.get("X-RateLimit-Remaining", 5000))
            if "X-RateLimit-Reset" in resp.headers:
                self._rate_limit_reset = int(resp.headers.get("X-RateLimit-Reset", 0))

            if resp.status_code == 200:
                log_external_call(logger, "github", url, True, latency_ms)
                return resp.json()

            if resp.status_code == 404:
                logger.debug(f"Resource not found: {url}")
                return None

            if resp.status_code == 403:
                if self._rate_limit_remaining == 0:
                    now = int(datetime.now(timezone.utc).timestamp())
                    wait_time = max(0, (self._rate_limit_reset or now) - now)
                    wait_time = min(wait_time, 60)  # Cap at 60 seconds
                    logger.warning(f"Rate limited. Waiting {wait_time}s")
                    await asyncio.sleep(wait_time)
                    continue
                # Other 403 (e.g., blocked repo)
                logger.warning(f"Access forbidden: {url}")
                return None

            if resp.status_code >= 500:
                log_external_call(
                    logger, "github", url, False, latency_ms, f"HTTP {resp.status_code}"
                )
                logger.warning(f"Server error {resp.status_code}, retrying...")
                if attempt < max_retries - 1:
                    await asyncio.sleep(2**attempt)
                continue

            resp.raise_for_status()

        raise TransientFetchError(
            f"GitHub API unavailable after {max_retries} attempts: {url}", service="github"
        )

    async def get_account(self, owner: str) -> dict:
        """
        Probe an account to learn its canonical login and type.

        Returns:
            {"login": str, "type": "User" | "Organization"}

        Raises:
            NotFoundError: the account does not exist
        """
        client = get_github_client(self.headers)
        data = await self._request_with_retry(client, f"{GITHUB_API}/users/{owner}")
        if data is None:
            raise NotFoundError("github_owner", owner)
        return {"login": data.get("login") or owner, "type": data.get("type", "User")}

    async def list_repos_page(self, owner: str, page: int, is_org: bool) -> RepoPage:
        """
        Fetch one page (1-based) of an owner's public repositories.

        A page shorter than GITHUB_REPOS_PER_PAGE is the last one.
        """
        client = get_github_client(self.headers)
        if is_org:
            url = f"{GITHUB_API}/orgs/{owner}/repos"
            params = {"type": "public", "per_page": GITHUB_REPOS_PER_PAGE, "page": page}
        else:
            url = f"{GITHUB_API}/users/{owner}/repos"
            params = {"type": "owner", "per_page": GITHUB_REPOS_PER_PAGE, "page": page}

        data = await self._request_with_retry(client, url, params=params)
        if data is None:
            raise NotFoundError("github_owner", owner)

        items = [_repo_item(repo) for repo in data]
        next_page = page + 1 if len(items) >= GITHUB_REPOS_PER_PAGE else None
        return RepoPage(items=items, next_page=next_page)

    async def get_repo(self, owner: str, name: str) -> dict:
        """
        Fetch a single repository.

        Raises:
            NotFoundError: the repository does not exist or is not visible
        """
        client = get_github_client(self.headers)
        data = await self._request_with_retry(client, f"{GITHUB_API}/repos/{owner}/{name}")
        if data is None:
            raise NotFoundError("github_repo", f"{owner}/{name}")
        return _repo_item(data)

    async def get_repo_page_data(self, owner: str, name: str) -> RepoPageData:
        """
        Scrape contributor and dependent counts from the repository page.

        Either counter can be missing from a given render, so the page is
        fetched up to REPO_PAGE_ATTEMPTS times until both are present. After
        that the result is returned with measured=False and zero counts.
        """

        async def scrape_repo_page() -> RepoPageData:
            url = f"{GITHUB_WEB}/{owner}/{name}"
            start = time.monotonic()
            resp = await get_http_client().get(url)
            latency_ms = (time.monotonic() - start) * 1000

            if resp.status_code == 429 or resp.status_code >= 500:
                log_external_call(
                    logger, "github_web", url, False, latency_ms, f"HTTP {resp.status_code}"
                )
                raise TransientFetchError(
                    f"Repository page returned {resp.status_code}", service="github_web"
                )
            if resp.status_code != 200:
                log_external_call(
                    logger, "github_web", url, False, latency_ms, f"HTTP {resp.status_code}"
                )
                return RepoPageData(0, 0, measured=False)

            html = resp.text
            contributor_count = parse_counter(html, "graphs/contributors")
            dependent_count = parse_counter(html, "network/dependents")
            if contributor_count is None or dependent_count is None:
                raise TransientFetchError(
                    f"Counters missing from {owner}/{name} page", service="github_web"
                )

            log_external_call(logger, "github_web", url, True, latency_ms)
            return RepoPageData(contributor_count, dependent_count)

        async with _page_semaphore():
            return await retry_async(
                scrape_repo_page,
                config=SCRAPE_RETRY_CONFIG,
                fallback=RepoPageData(0, 0, measured=False),
            )
