"""
GitHub Webhook Handler - POST /events/github

Applies live star count changes between scheduled syncs. Every delivery is
authenticated with the X-Hub-Signature-256 HMAC before anything in the body
is parsed.

Responses:
- 200 empty body: star count applied, or a ping
- 400: body is not a repository event with an integer star count
- 401: signature missing or wrong
- 404: the repository owner is not tracked
- 500: configuration or storage failure
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass

from botocore.exceptions import ClientError

from shared.config import Settings
from shared.errors import APIError, ConfigurationError, InvalidPayloadError, SignatureInvalidError
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.metrics import emit_metric
from shared.request_utils import get_header, get_raw_body
from shared.response_utils import empty_response, error_response
from stats.reconcile import update_repo_stars

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


@dataclass(frozen=True)
class StarEvent:
    owner: str
    name: str
    star_count: int


def verify_signature(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Check a GitHub HMAC-SHA256 signature header against the raw body."""
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature_header[len(SIGNATURE_PREFIX):], expected)


def _require_string(value, field_name: str) -> str:
    if not isinstance(value, str) or not value:
        raise InvalidPayloadError(f"{field_name} must be a non-empty string", {"field": field_name})
    return value


def parse_star_event(body: bytes) -> StarEvent:
    """
    Validate a webhook body and extract the repository star count.

    Raises:
        InvalidPayloadError: the body is not JSON or lacks a required field
    """
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidPayloadError("Body is not valid JSON") from e

    if not isinstance(payload, dict):
        raise InvalidPayloadError("Body must be a JSON object")

    repository = payload.get("repository")
    if not isinstance(repository, dict):
        raise InvalidPayloadError("repository is required", {"field": "repository"})

    owner = repository.get("owner")
    if not isinstance(owner, dict):
        raise InvalidPayloadError("repository.owner is required", {"field": "repository.owner"})

    stars = repository.get("stargazers_count")
    if isinstance(stars, bool) or not isinstance(stars, int) or stars < 0:
        raise InvalidPayloadError(
            "repository.stargazers_count must be a non-negative integer",
            {"field": "repository.stargazers_count"},
        )

    return StarEvent(
        owner=_require_string(owner.get("login"), "repository.owner.login"),
        name=_require_string(repository.get("name"), "repository.name"),
        star_count=stars,
    )


def handler(event, context):
    """Lambda handler for GitHub webhook deliveries."""
    configure_structured_logging()
    set_request_id(event)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logger.error(f"Webhook not configured: {e.message}")
        return error_response(e.status_code, e.code, "Webhook not configured")

    body = get_raw_body(event)
    if not verify_signature(body, get_header(event, "x-hub-signature-256"), settings.github_webhook_secret):
        logger.warning("Rejected GitHub webhook with invalid signature")
        emit_metric("WebhookRejected", dimensions={"Reason": "signature"})
        return SignatureInvalidError().to_response()

    event_type = get_header(event, "x-github-event") or "unknown"
    if event_type == "ping":
        logger.info("Received GitHub ping")
        return empty_response(200)

    try:
        star_event = parse_star_event(body)
        update_repo_stars(star_event.owner, star_event.name, star_event.star_count)
    except APIError as e:
        logger.warning(f"Webhook {event_type} rejected: {e.message}")
        emit_metric("WebhookRejected", dimensions={"Reason": e.code})
        return e.to_response()
    except ClientError as e:
        logger.error(f"Storage error handling webhook {event_type}: {e}")
        return error_response(500, "internal_error", "Failed to apply webhook")
    except Exception as e:
        logger.exception(f"Unexpected error handling webhook {event_type}: {e}")
        return error_response(500, "internal_error", "Failed to apply webhook")

    emit_metric("WebhookApplied", dimensions={"Event": event_type})
    return empty_response(200)
