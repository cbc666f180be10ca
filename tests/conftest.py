"""
Shared pytest fixtures for OSS Stats tests.
"""

import os
import sys

import boto3
import pytest
from moto import mock_aws

# Add functions directory to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "functions"))

TEST_GITHUB_TOKEN = "ghp_test_token"
TEST_WEBHOOK_SECRET = "whsec_test_secret"
TEST_SYNC_FUNCTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:oss-stats-sync"
TEST_SCHEDULER_ROLE_ARN = "arn:aws:iam::123456789012:role/oss-stats-scheduler"


def pytest_configure(config):
    """Set AWS credentials before test collection.

    This runs before test collection starts, ensuring boto3 resource
    creation during imports doesn't fail with NoRegionError.
    """
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
    os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
    os.environ.setdefault("AWS_REGION", "us-east-1")

    # Disable HTTP client connection pooling in tests to allow proper mocking
    # Each test creates fresh clients, allowing httpx.MockTransport to work
    os.environ["USE_CONNECTION_POOLING"] = "false"


@pytest.fixture(autouse=True)
def aws_credentials():
    """Set fake AWS credentials for all tests."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    os.environ["AWS_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def app_env(monkeypatch):
    """Configuration every handler needs, with no configured targets."""
    monkeypatch.setenv("GITHUB_ACCESS_TOKEN", TEST_GITHUB_TOKEN)
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
    monkeypatch.setenv("SYNC_FUNCTION_ARN", TEST_SYNC_FUNCTION_ARN)
    monkeypatch.setenv("SCHEDULER_ROLE_ARN", TEST_SCHEDULER_ROLE_ARN)
    for name in ("GITHUB_OWNERS", "GITHUB_REPOS", "NPM_ORGS", "NPM_PACKAGES", "MIN_STARS"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_aws_clients():
    """Reset shared AWS client singletons between tests."""
    yield
    try:
        from shared.aws_clients import reset_clients
        reset_clients()
    except ImportError:
        pass


@pytest.fixture(autouse=True)
def reset_secret_cache():
    """Reset the Secrets Manager cache between tests to prevent pollution."""
    yield
    try:
        from shared.config import clear_secret_cache
        clear_secret_cache()
    except ImportError:
        pass


def create_dynamodb_tables(dynamodb):
    """Create all DynamoDB tables with their GSIs.

    Args:
        dynamodb: boto3 DynamoDB resource
    """
    dynamodb.create_table(
        TableName="oss-stats-github-owners",
        KeySchema=[{"AttributeName": "name_normalized", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "name_normalized", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )

    dynamodb.create_table(
        TableName="oss-stats-github-repos",
        KeySchema=[
            {"AttributeName": "owner_normalized", "KeyType": "HASH"},
            {"AttributeName": "name_normalized", "KeyType": "RANGE"},
        ],
        AttributeDefinitions=[
            {"AttributeName": "owner_normalized", "AttributeType": "S"},
            {"AttributeName": "name_normalized", "AttributeType": "S"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )

    dynamodb.create_table(
        TableName="oss-stats-npm-orgs",
        KeySchema=[{"AttributeName": "name", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "name", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )

    dynamodb.create_table(
        TableName="oss-stats-npm-packages",
        KeySchema=[{"AttributeName": "name", "KeyType": "HASH"}],
        AttributeDefinitions=[
            {"AttributeName": "name", "AttributeType": "S"},
            {"AttributeName": "org", "AttributeType": "S"},
        ],
        GlobalSecondaryIndexes=[
            {
                "IndexName": "org-index",
                "KeySchema": [{"AttributeName": "org", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
        BillingMode="PAY_PER_REQUEST",
    )


@pytest.fixture
def mock_dynamodb():
    """Provide mocked DynamoDB with tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        create_dynamodb_tables(dynamodb)
        yield dynamodb


class FakeScheduler:
    """In-memory stand-in for ScheduleClient that records calls."""

    def __init__(self, fail: bool = False):
        self.schedules = {}
        self.calls = []
        self.fail = fail

    def replace(self, name, interval_minutes, payload):
        self.calls.append((name, interval_minutes, payload))
        if self.fail:
            from botocore.exceptions import ClientError

            raise ClientError(
                {"Error": {"Code": "ServiceUnavailable", "Message": "down"}}, "UpdateSchedule"
            )
        result = "updated" if name in self.schedules else "created"
        self.schedules[name] = {"interval_minutes": interval_minutes, "payload": payload}
        return result


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()


class FakeContext:
    """Lambda context with a fixed remaining time."""

    function_name = "oss-stats-test"
    aws_request_id = "test-request-id"

    def __init__(self, remaining_ms: int = 900_000):
        self.remaining_ms = remaining_ms

    def get_remaining_time_in_millis(self):
        return self.remaining_ms
