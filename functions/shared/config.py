"""
Runtime configuration for OSS Stats handlers.

Secrets come from the environment or, when an ARN is configured instead,
from Secrets Manager. Missing secrets fail fast with ConfigurationError.
"""

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Optional

from botocore.exceptions import ClientError

from .aws_clients import get_secretsmanager
from .constants import DEFAULT_SCHEDULE_GROUP, DEFAULT_SYNC_INTERVAL_MINUTES
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Cached secret values with TTL, keyed by ARN
_secret_cache: dict[str, tuple[str, float]] = {}
SECRET_CACHE_TTL = 300  # 5 minutes


def _split_list(value: Optional[str]) -> list[str]:
    """Parse a comma separated env value into a list of trimmed names."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def get_secret(arn: Optional[str], json_key: str) -> Optional[str]:
    """
    Retrieve a secret string from Secrets Manager (cached with TTL).

    Secrets may be stored as plain strings or as JSON objects such as
    {"token": "ghp_..."}; json_key selects the field in the latter case.
    """
    if not arn:
        return None

    cached = _secret_cache.get(arn)
    if cached and (time.time() - cached[1]) < SECRET_CACHE_TTL:
        return cached[0]

    try:
        response = get_secretsmanager().get_secret_value(SecretId=arn)
    except ClientError as e:
        logger.error(f"Failed to retrieve secret {json_key}: {e}")
        return None

    secret_string = response.get("SecretString", "")
    try:
        secret_json = json.loads(secret_string)
        value = secret_json.get(json_key) if isinstance(secret_json, dict) else None
        value = value or secret_string
    except json.JSONDecodeError:
        value = secret_string

    _secret_cache[arn] = (value, time.time())
    return value


def clear_secret_cache() -> None:
    """Drop cached secrets. Used in tests."""
    _secret_cache.clear()


@dataclass(frozen=True)
class Settings:
    """
    Configuration shared by the sync, webhook and query handlers.

    Both secrets are required: constructing Settings without them raises
    ConfigurationError rather than letting a handler run half-configured.
    """

    github_access_token: str
    github_webhook_secret: str
    github_owners: list[str] = field(default_factory=list)
    github_repos: list[str] = field(default_factory=list)
    npm_orgs: list[str] = field(default_factory=list)
    npm_packages: list[str] = field(default_factory=list)
    min_stars: int = 1
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    schedule_group: str = DEFAULT_SCHEDULE_GROUP
    sync_function_arn: Optional[str] = None
    scheduler_role_arn: Optional[str] = None

    def __post_init__(self):
        if not self.github_access_token:
            raise ConfigurationError("GITHUB_ACCESS_TOKEN is required")
        if not self.github_webhook_secret:
            raise ConfigurationError("GITHUB_WEBHOOK_SECRET is required")
        if self.min_stars < 0:
            raise ConfigurationError("MIN_STARS must be zero or positive")
        if self.sync_interval_minutes < 1:
            raise ConfigurationError("SYNC_INTERVAL_MINUTES must be at least 1")

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables and Secrets Manager."""
        token = os.environ.get("GITHUB_ACCESS_TOKEN") or get_secret(
            os.environ.get("GITHUB_TOKEN_SECRET_ARN"), "token"
        )
        webhook_secret = os.environ.get("GITHUB_WEBHOOK_SECRET") or get_secret(
            os.environ.get("GITHUB_WEBHOOK_SECRET_ARN"), "secret"
        )

        try:
            min_stars = int(os.environ.get("MIN_STARS", "1"))
            interval = int(os.environ.get("SYNC_INTERVAL_MINUTES", str(DEFAULT_SYNC_INTERVAL_MINUTES)))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}") from e

        return cls(
            github_access_token=token or "",
            github_webhook_secret=webhook_secret or "",
            github_owners=_split_list(os.environ.get("GITHUB_OWNERS")),
            github_repos=_split_list(os.environ.get("GITHUB_REPOS")),
            npm_orgs=_split_list(os.environ.get("NPM_ORGS")),
            npm_packages=_split_list(os.environ.get("NPM_PACKAGES")),
            min_stars=min_stars,
            sync_interval_minutes=interval,
            schedule_group=os.environ.get("SCHEDULE_GROUP") or DEFAULT_SCHEDULE_GROUP,
            sync_function_arn=os.environ.get("SYNC_FUNCTION_ARN") or None,
            scheduler_role_arn=os.environ.get("SCHEDULER_ROLE_ARN") or None,
        )
