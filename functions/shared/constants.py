"""
Shared constants for OSS Stats.
"""

import os

# DynamoDB tables
OWNERS_TABLE = os.environ.get("OWNERS_TABLE", "oss-stats-github-owners")
REPOS_TABLE = os.environ.get("REPOS_TABLE", "oss-stats-github-repos")
NPM_ORGS_TABLE = os.environ.get("NPM_ORGS_TABLE", "oss-stats-npm-orgs")
NPM_PACKAGES_TABLE = os.environ.get("NPM_PACKAGES_TABLE", "oss-stats-npm-packages")

NPM_PACKAGES_ORG_INDEX = "org-index"

# External APIs
GITHUB_API = "https://api.github.com"
GITHUB_WEB = "https://github.com"
NPM_REGISTRY = "https://registry.npmjs.org"
NPM_API = "https://api.npmjs.org"
NPM_WEB = "https://www.npmjs.com"

# Timeouts
DEFAULT_TIMEOUT = 30.0

# Scheduling
SYNC_JOB_NAME = "sync"
DEFAULT_SYNC_INTERVAL_MINUTES = 60
DEFAULT_SCHEDULE_GROUP = "oss-stats"

# Baseline used by the dependent-count forecast only moves this often
DEPENDENT_COUNT_REFRESH_MS = 55 * 60 * 1000
DAY_MS = 24 * 60 * 60 * 1000

# Concurrency caps (third-party rate limits, not correctness)
OWNER_CONCURRENCY = 5
REPO_CONCURRENCY = 4
PAGE_SCRAPE_CONCURRENCY = 10
NPM_ORG_CONCURRENCY = 2
NPM_PACKAGE_CONCURRENCY = 20

GITHUB_REPOS_PER_PAGE = 100
REPO_PAGE_ATTEMPTS = 3

# npm statistics endpoint only answers bounded ranges (~17 months)
NPM_RANGE_WINDOW_DAYS = 17 * 30
NPM_TRAILING_WINDOW_DAYS = 30
DAY_OF_WEEK_SAMPLE_WEEKS = 4

CLEAR_PAGE_SIZE = 200

# DynamoDB throttling error codes that should trigger retry
THROTTLING_ERRORS = (
    "ProvisionedThroughputExceededException",
    "RequestLimitExceeded",
    "ThrottlingException",
    "InternalServerError",
)
