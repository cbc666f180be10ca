"""
Error taxonomy for OSS Stats.

Every error carries an HTTP status so handlers can turn it into an
API Gateway response without a lookup table.
"""

import json
from typing import Optional


class APIError(Exception):
    """Base class for errors surfaced to a caller."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 400,
        details: Optional[dict] = None,
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> dict:
        """Convert to API Gateway response format."""
        body = {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }
        if self.details:
            body["error"]["details"] = self.details

        return {
            "statusCode": self.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": json.dumps(body),
        }


class NotFoundError(APIError):
    """Unknown owner, org, repo or package."""

    def __init__(self, kind: str, name: str):
        super().__init__(
            code=f"{kind}_not_found",
            message=f"{kind.replace('_', ' ').capitalize()} '{name}' not found",
            status_code=404,
        )
        self.kind = kind
        self.name = name


class NotAnOrgError(APIError):
    """npm scope resolves to a user rather than an organization."""

    def __init__(self, name: str):
        super().__init__(
            code="not_an_org",
            message=f"{name} is a user, not an org - only npm orgs are supported",
            status_code=400,
        )
        self.name = name


class TransientFetchError(APIError):
    """Upstream fetch failed in a way that may succeed on retry."""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(
            code="transient_fetch_failure",
            message=message,
            status_code=503,
            details={"service": service} if service else None,
        )


class SignatureInvalidError(APIError):
    """Webhook signature missing or does not match the shared secret."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(
            code="invalid_signature",
            message=message,
            status_code=401,
        )


class InvalidPayloadError(APIError):
    """Webhook or request body does not match the expected schema."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(
            code="invalid_payload",
            message=message,
            status_code=400,
            details=details,
        )


class ConfigurationError(APIError):
    """Required configuration (usually a secret) is missing."""

    def __init__(self, message: str):
        super().__init__(
            code="configuration_error",
            message=message,
            status_code=500,
        )
