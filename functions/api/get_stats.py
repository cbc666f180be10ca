"""
Get Stats Handler - GET /stats

Returns cached owner and org stats with forecast inputs for live counters.

Query parameters (comma separated, each defaults to the configured list):
- github_owners
- npm_orgs
- npm_packages: combined totals over the named packages (omitted when absent)
"""

import logging
import time

from botocore.exceptions import ClientError

from shared.config import Settings
from shared.errors import ConfigurationError
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.request_utils import get_query_list
from shared.response_utils import error_response, success_response
from stats.forecast import github_dependent_forecast, npm_download_forecast
from stats.queries import (
    get_all_github_owners,
    get_all_npm_orgs,
    get_github_owners,
    get_npm_orgs,
    get_npm_packages,
)

logger = logging.getLogger(__name__)

MAX_NAMES = 100


def _with_dependent_forecast(owner):
    if owner is None:
        return None
    return {**owner, "forecast": github_dependent_forecast(owner)}


def _with_download_forecast(record, now: int):
    if record is None:
        return None
    return {**record, "forecast": npm_download_forecast(record, now)}


def handler(event, context):
    """Lambda handler for GET /stats."""
    configure_structured_logging()
    set_request_id(event)
    event = event or {}

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        logger.error(f"Stats endpoint not configured: {e.message}")
        return error_response(e.status_code, e.code, "Service not configured")

    owners = get_query_list(event, "github_owners")
    orgs = get_query_list(event, "npm_orgs")
    packages = get_query_list(event, "npm_packages")

    if any(len(names) > MAX_NAMES for names in (owners or [], orgs or [], packages or [])):
        return error_response(400, "too_many_names", f"At most {MAX_NAMES} names per parameter")

    now = int(time.time() * 1000)
    try:
        owner_rows = get_all_github_owners(settings) if owners is None else get_github_owners(owners)
        org_rows = get_all_npm_orgs(settings) if orgs is None else get_npm_orgs(orgs)
        body = {
            "github_owners": [_with_dependent_forecast(o) for o in owner_rows],
            "npm_orgs": [_with_download_forecast(o, now) for o in org_rows],
        }
        if packages:
            body["npm_packages"] = _with_download_forecast(get_npm_packages(packages), now)
    except ClientError as e:
        logger.error(f"Failed to read stats: {e}")
        return error_response(500, "internal_error", "Failed to read stats")

    return success_response(body, headers={"Cache-Control": "public, max-age=60"})
