"""
Shared HTTP Client with Connection Pooling.

Provides reusable httpx.AsyncClient instances shared by the GitHub and npm
collectors so a sync run reuses connections across hundreds of requests.

Usage:
    from collectors.http_client import get_http_client

    async def fetch():
        client = get_http_client()
        response = await client.get("https://registry.npmjs.org/react")

Testing:
    Set USE_CONNECTION_POOLING=false in test fixtures to disable connection
    pooling. A new client is then created per call, which lets tests patch
    httpx.AsyncClient.__init__ with a MockTransport.

Resource Management:
    Pooled clients are recreated when the event loop changes (Lambda creates
    a new loop per invocation while reusing the execution context) and are
    released by close_http_clients() at the end of a handler.
"""

import asyncio
import hashlib
import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(
    30.0,  # Total timeout
    connect=10.0,  # Connection timeout
)

DEFAULT_LIMITS = httpx.Limits(
    max_connections=100,
    max_keepalive_connections=20,
    keepalive_expiry=30.0,
)

USER_AGENT = "oss-stats-sync/1.0"

# Pooled clients keyed by header fingerprint, with the loop they belong to
_clients: dict[str, httpx.AsyncClient] = {}
_client_loop_ids: dict[str, Optional[int]] = {}


def _use_connection_pooling() -> bool:
    """Check if connection pooling is enabled (runtime check)."""
    return os.environ.get("USE_CONNECTION_POOLING", "true").lower() == "true"


def _new_client(headers: dict) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=DEFAULT_TIMEOUT,
        limits=DEFAULT_LIMITS,
        follow_redirects=True,
        http2=False,
        headers={"User-Agent": USER_AGENT, **headers},
    )


def _get_pooled_client(headers: dict) -> httpx.AsyncClient:
    if not _use_connection_pooling():
        return _new_client(headers)

    # Hash so tokens are never used as plain-text dict keys
    fingerprint = hashlib.sha256(repr(sorted(headers.items())).encode()).hexdigest()[:16]

    try:
        current_loop_id = id(asyncio.get_running_loop())
    except RuntimeError:
        current_loop_id = None

    if fingerprint in _clients and _client_loop_ids.get(fingerprint) != current_loop_id:
        logger.debug("Event loop changed, recreating HTTP client")
        del _clients[fingerprint]
        del _client_loop_ids[fingerprint]

    if fingerprint not in _clients:
        logger.debug("Initializing pooled HTTP client")
        _clients[fingerprint] = _new_client(headers)
        _client_loop_ids[fingerprint] = current_loop_id

    return _clients[fingerprint]


def get_http_client() -> httpx.AsyncClient:
    """Get a client for unauthenticated requests (npm, GitHub web pages)."""
    return _get_pooled_client({})


def get_github_client(headers: dict) -> httpx.AsyncClient:
    """
    Get a cached HTTP client for the GitHub API.

    Cached by a hash of the headers, so a rotated token gets a new client.
    """
    return _get_pooled_client(headers)


async def close_http_clients() -> None:
    """Close all pooled clients."""
    for fingerprint, client in list(_clients.items()):
        await client.aclose()
        del _clients[fingerprint]
        _client_loop_ids.pop(fingerprint, None)
    logger.debug("Closed pooled HTTP clients")
