"""
API Gateway response builders.

The stats endpoint answers with JSON; the webhook answers with an empty body
on success so GitHub records a clean delivery.
"""

import json
from decimal import Decimal
from typing import Any, Dict, Optional

JSON_HEADERS = {"Content-Type": "application/json"}


def decimal_default(obj: Any) -> Any:
    """JSON serializer for Decimal types from DynamoDB."""
    if isinstance(obj, Decimal):
        return int(obj) if obj % 1 == 0 else float(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _response(status_code: int, body: str, headers: Dict[str, str]) -> dict:
    return {"statusCode": status_code, "headers": headers, "body": body}


def error_response(
    status_code: int,
    code: str,
    message: str,
    headers: Optional[Dict[str, str]] = None,
    details: Optional[Dict[str, Any]] = None,
) -> dict:
    """
    Build an error response with body {"error": {"code", "message"[, "details"]}}.

    Args:
        status_code: HTTP status code
        code: Machine-readable error code (snake_case)
        message: Human-readable error message
        headers: Additional response headers
        details: Optional additional error details
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details

    return _response(
        status_code,
        json.dumps({"error": error}, default=decimal_default),
        {**JSON_HEADERS, **(headers or {})},
    )


def success_response(
    data: Any,
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
) -> dict:
    """Build a JSON response; Decimals from DynamoDB are serialized as numbers."""
    return _response(
        status_code,
        json.dumps(data, default=decimal_default),
        {**JSON_HEADERS, **(headers or {})},
    )


def empty_response(status_code: int = 200) -> dict:
    """Build a response with no body."""
    return _response(status_code, "", {})
