"""
Centralized AWS client factory with lazy initialization.

Defers boto3 client/resource creation until first use so cold starts
only pay for the services a handler actually touches.
"""

_dynamodb = None
_scheduler = None
_secretsmanager = None
_cloudwatch = None


def get_dynamodb():
    """Get DynamoDB resource, creating it lazily on first use."""
    global _dynamodb
    if _dynamodb is None:
        import boto3
        _dynamodb = boto3.resource("dynamodb")
    return _dynamodb


def get_scheduler():
    """Get EventBridge Scheduler client, creating it lazily on first use."""
    global _scheduler
    if _scheduler is None:
        import boto3
        _scheduler = boto3.client("scheduler")
    return _scheduler


def get_secretsmanager():
    """Get Secrets Manager client, creating it lazily on first use."""
    global _secretsmanager
    if _secretsmanager is None:
        import boto3
        _secretsmanager = boto3.client("secretsmanager")
    return _secretsmanager


def get_cloudwatch():
    """Get CloudWatch client, creating it lazily on first use."""
    global _cloudwatch
    if _cloudwatch is None:
        import boto3
        _cloudwatch = boto3.client("cloudwatch")
    return _cloudwatch


def reset_clients():
    """Reset all cached clients. Used in tests for clean state."""
    global _dynamodb, _scheduler, _secretsmanager, _cloudwatch
    _dynamodb = None
    _scheduler = None
    _secretsmanager = None
    _cloudwatch = None
