"""Shared request utilities for API handlers."""

import base64
import logging
from typing import Optional

logger = logging.getLogger(__name__)


def get_header(event: dict, name: str) -> Optional[str]:
    """Look up a request header case-insensitively.

    API Gateway preserves the client's header casing, and GitHub sends
    mixed case (X-Hub-Signature-256) while proxies may lowercase it.
    """
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def get_raw_body(event: dict) -> bytes:
    """Return the request body exactly as received."""
    body = event.get("body") or ""
    if event.get("isBase64Encoded"):
        return base64.b64decode(body)
    return body.encode("utf-8")


def get_query_list(event: dict, name: str) -> Optional[list[str]]:
    """Parse a comma separated query parameter; None when it is absent."""
    params = event.get("queryStringParameters") or {}
    value = params.get(name)
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]
