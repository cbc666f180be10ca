"""
Tests for npm collector.

Tests cover:
- Organization listing (pagination, unknown scope, user scope)
- Package creation time lookup
- Download range walk and weekday averages

Run with: PYTHONPATH=functions pytest tests/test_npm_collector.py -v
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

import httpx
import pytest

from shared.errors import NotAnOrgError, NotFoundError, TransientFetchError


def run_async(coro):
    """Helper to run async functions in sync tests."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_mock_transport(handler):
    """Create a mock transport for httpx that routes requests to handler."""
    async def mock_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)
    return httpx.MockTransport(mock_handler)


def patched_client(handler):
    """Patch httpx.AsyncClient so every new client uses the mock transport."""
    original_init = httpx.AsyncClient.__init__

    def patched_init(self, *args, **kwargs):
        kwargs["transport"] = create_mock_transport(handler)
        original_init(self, *args, **kwargs)

    return patch.object(httpx.AsyncClient, "__init__", patched_init)


def date_ms(year, month, day):
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp() * 1000)


def daily(start: date, end: date, value_for=lambda day: 1):
    days = []
    current = start
    while current <= end:
        days.append({"day": current.isoformat(), "downloads": value_for(current)})
        current += timedelta(days=1)
    return days


class TestEncodeScopedPackage:
    def test_scoped(self):
        from collectors.npm_collector import encode_scoped_package

        assert encode_scoped_package("@babel/core") == "@babel%2Fcore"

    def test_unscoped(self):
        from collectors.npm_collector import encode_scoped_package

        assert encode_scoped_package("lodash") == "lodash"


class TestFetchOrgPackagesPage:
    def test_parses_packages_and_next_page(self):
        from collectors.npm_collector import fetch_org_packages_page

        def handler(request):
            assert request.url.host == "www.npmjs.com"
            assert request.url.path == "/org/convex-dev"
            assert request.url.params["page"] == "2"
            assert request.headers["x-spiferack"] == "1"
            assert request.headers["cache-control"] == "no-cache"
            return httpx.Response(
                200,
                json={
                    "scope": {"type": "org"},
                    "packages": {
                        "objects": [
                            {"name": "@convex-dev/auth", "created": {"ts": 1700000000000}},
                            {"name": "@convex-dev/stats", "created": {"ts": 1710000000000}},
                        ],
                        "urls": {"next": "/org/convex-dev?page=3"},
                    },
                },
            )

        with patched_client(handler):
            page = run_async(fetch_org_packages_page("convex-dev", 2))

        assert page.packages == [
            {"name": "@convex-dev/auth", "created": 1700000000000},
            {"name": "@convex-dev/stats", "created": 1710000000000},
        ]
        assert page.has_more is True

    def test_last_page(self):
        from collectors.npm_collector import fetch_org_packages_page

        body = {"scope": {"type": "org"}, "packages": {"objects": [], "urls": {"next": ""}}}
        with patched_client(lambda request: httpx.Response(200, json=body)):
            page = run_async(fetch_org_packages_page("convex-dev", 0))

        assert page.packages == []
        assert page.has_more is False

    def test_unknown_scope(self):
        from collectors.npm_collector import fetch_org_packages_page

        body = {"message": "NotFoundError: Scope not found"}
        with patched_client(lambda request: httpx.Response(404, json=body)):
            with pytest.raises(NotFoundError) as exc_info:
                run_async(fetch_org_packages_page("nope", 0))

        assert exc_info.value.code == "npm_org_not_found"

    def test_user_scope_is_not_an_org(self):
        from collectors.npm_collector import fetch_org_packages_page

        body = {"scope": {"type": "user"}, "packages": {"objects": [], "urls": {}}}
        with patched_client(lambda request: httpx.Response(200, json=body)):
            with pytest.raises(NotAnOrgError):
                run_async(fetch_org_packages_page("someone", 0))

    def test_server_error_is_transient(self):
        from collectors.npm_collector import fetch_org_packages_page

        with patched_client(lambda request: httpx.Response(503, text="unavailable")):
            with pytest.raises(TransientFetchError):
                run_async(fetch_org_packages_page("convex-dev", 0))


class TestFetchPackageCreated:
    def test_parses_creation_time(self):
        from collectors.npm_collector import fetch_package_created

        def handler(request):
            assert request.url.host == "registry.npmjs.org"
            assert request.url.raw_path == b"/@convex-dev%2Fauth"
            return httpx.Response(200, json={"time": {"created": "2024-01-02T00:00:00.000Z"}})

        with patched_client(handler):
            created = run_async(fetch_package_created("@convex-dev/auth"))

        assert created == date_ms(2024, 1, 2)

    def test_not_found(self):
        from collectors.npm_collector import fetch_package_created

        with patched_client(lambda request: httpx.Response(404, json={"error": "Not found"})):
            with pytest.raises(NotFoundError):
                run_async(fetch_package_created("missing-package"))


class TestDayOfWeekAverages:
    def test_last_four_occurrences(self):
        from collectors.npm_collector import day_of_week_averages

        # 2024-01-01 is a Monday; five Mondays in 29 days, the first is excluded
        downloads = daily(
            date(2024, 1, 1), date(2024, 1, 29), lambda d: 1000 if d == date(2024, 1, 1) else d.weekday() + 1
        )

        averages = day_of_week_averages(downloads)

        # Index 0 = Sunday (weekday 6 -> 7 downloads), index 1 = Monday
        assert averages == [7, 1, 2, 3, 4, 5, 6]

    def test_missing_occurrences_count_as_zero(self):
        from collectors.npm_collector import day_of_week_averages

        downloads = [{"day": "2024-01-01", "downloads": 10}]  # one Monday

        averages = day_of_week_averages(downloads)

        assert averages[1] == 3  # 10 / 4 = 2.5 rounds half up
        assert sum(averages) == 3


class TestFetchDownloadStats:
    def test_walks_windows_and_trailing_month(self):
        from collectors.npm_collector import fetch_download_stats

        today = date(2024, 6, 30)
        created = date(2022, 1, 1)
        requested = []

        def handler(request):
            assert request.url.host == "api.npmjs.org"
            _, _, _, span, name = request.url.path.split("/", 4)
            assert name == "convex"
            start_s, end_s = span.split(":")
            start, end = date.fromisoformat(start_s), date.fromisoformat(end_s)
            requested.append((start, end))
            return httpx.Response(
                200,
                json={"start": start_s, "end": end_s, "package": name, "downloads": daily(start, end)},
            )

        with patched_client(handler):
            stats = run_async(fetch_download_stats("convex", date_ms(2022, 1, 1), today=today))

        # Two 510-day windows reach today, then the 30 days up to yesterday
        assert requested[0] == (created, created + timedelta(days=510))
        assert requested[1][0] == created + timedelta(days=511)
        assert requested[-2][1] == today
        assert requested[-1] == (today - timedelta(days=31), today - timedelta(days=1))
        assert len(requested) == 3

        assert stats.total == (today - created).days + 1
        assert stats.day_of_week_averages == [1] * 7

    def test_partial_today_excluded_from_averages(self):
        from collectors.npm_collector import fetch_download_stats

        today = date(2024, 6, 30)

        def handler(request):
            start_s, end_s = request.url.path.split("/")[3].split(":")
            downloads = daily(
                date.fromisoformat(start_s),
                date.fromisoformat(end_s),
                lambda day: 0 if day == today else 8,
            )
            return httpx.Response(200, json={"end": end_s, "downloads": downloads})

        with patched_client(handler):
            stats = run_async(fetch_download_stats("convex", date_ms(2024, 6, 1), today=today))

        assert stats.total == 29 * 8
        assert stats.day_of_week_averages == [8] * 7

    def test_unknown_package_returns_none(self):
        from collectors.npm_collector import fetch_download_stats

        body = {"error": "package not-a-package not found"}
        with patched_client(lambda request: httpx.Response(404, json=body)):
            stats = run_async(fetch_download_stats("not-a-package", date_ms(2024, 1, 1), today=date(2024, 2, 1)))

        assert stats is None

    def test_created_today(self):
        from collectors.npm_collector import fetch_download_stats

        today = date(2024, 3, 1)
        requested = []

        def handler(request):
            span = request.url.path.split("/")[3]
            requested.append(span)
            start_s, end_s = span.split(":")
            return httpx.Response(
                200,
                json={
                    "end": end_s,
                    "downloads": daily(date.fromisoformat(start_s), date.fromisoformat(end_s), lambda d: 0),
                },
            )

        with patched_client(handler):
            stats = run_async(fetch_download_stats("fresh", date_ms(2024, 3, 1), today=today))

        assert requested[0] == "2024-03-01:2024-03-01"
        assert len(requested) == 2
        assert stats.total == 0
        assert stats.day_of_week_averages == [0] * 7
