"""
DynamoDB helpers used as a keyed document store.

Every table is addressed by its natural key; these helpers give the
reconciliation layer find/insert/patch/delete plus paginated scans and
partition queries, and convert DynamoDB Decimals back to ints on read.
"""

import logging
import random
import time
from decimal import Decimal
from typing import Any, Optional

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from .aws_clients import get_dynamodb
from .constants import THROTTLING_ERRORS

logger = logging.getLogger(__name__)


def get_table(table_name: str):
    """Get a DynamoDB Table resource."""
    return get_dynamodb().Table(table_name)


def from_dynamo(value: Any) -> Any:
    """Recursively convert DynamoDB Decimals to int (or float when fractional)."""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def find(table_name: str, key: dict, max_retries: int = 3) -> Optional[dict]:
    """
    Get a single item by key with retry for throttling.

    Args:
        table_name: DynamoDB table name
        key: Full primary key
        max_retries: Maximum number of attempts for throttling errors

    Returns:
        Item dict or None if not found

    Raises:
        ClientError for non-throttling failures or exhausted retries
    """
    table = get_table(table_name)

    for attempt in range(max_retries):
        try:
            response = table.get_item(Key=key)
            item = response.get("Item")
            return from_dynamo(item) if item else None
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code in THROTTLING_ERRORS and attempt < max_retries - 1:
                base_delay = min(0.1 * (2 ** attempt), 2.0)
                delay = base_delay + random.uniform(0, base_delay * 0.5)
                logger.warning(
                    f"DynamoDB throttled reading {table_name} {key}, "
                    f"retry {attempt + 1}/{max_retries} in {delay:.2f}s"
                )
                time.sleep(delay)
                continue
            raise

    return None


def insert(table_name: str, key: dict, fields: dict) -> bool:
    """
    Insert a new item, refusing to overwrite an existing one.

    Returns:
        True if inserted, False if an item with this key already existed
    """
    item = {**fields, **key}
    # Unset optionals are omitted rather than stored as NULL
    item = {k: v for k, v in item.items() if v is not None}
    first_key = next(iter(key))

    try:
        get_table(table_name).put_item(
            Item=item,
            ConditionExpression="attribute_not_exists(#k)",
            ExpressionAttributeNames={"#k": first_key},
        )
        return True
    except ClientError as e:
        if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
            return False
        raise


def patch(table_name: str, key: dict, fields: dict) -> None:
    """
    Update only the given fields of an existing item.

    None values remove the attribute.
    """
    set_parts = []
    remove_parts = []
    names = {}
    values = {}

    for i, (field_name, value) in enumerate(fields.items()):
        names[f"#f{i}"] = field_name
        if value is None:
            remove_parts.append(f"#f{i}")
        else:
            values[f":v{i}"] = value
            set_parts.append(f"#f{i} = :v{i}")

    if not set_parts and not remove_parts:
        return

    expression = ""
    if set_parts:
        expression += "SET " + ", ".join(set_parts)
    if remove_parts:
        expression += " REMOVE " + ", ".join(remove_parts)

    kwargs = {
        "Key": key,
        "UpdateExpression": expression.strip(),
        "ExpressionAttributeNames": names,
    }
    if values:
        kwargs["ExpressionAttributeValues"] = values

    get_table(table_name).update_item(**kwargs)


def delete(table_name: str, key: dict) -> None:
    """Delete an item by key (no-op if it does not exist)."""
    get_table(table_name).delete_item(Key=key)


def paginate(
    table_name: str, page_size: int, cursor: Optional[dict] = None
) -> tuple[list[dict], Optional[dict]]:
    """
    Scan one bounded page of a table.

    Returns:
        Tuple of (items, next_cursor); next_cursor is None when done
    """
    scan_kwargs = {"Limit": page_size}
    if cursor:
        scan_kwargs["ExclusiveStartKey"] = cursor

    response = get_table(table_name).scan(**scan_kwargs)
    items = [from_dynamo(item) for item in response.get("Items", [])]
    return items, response.get("LastEvaluatedKey")


def query_all(
    table_name: str,
    key_name: str,
    key_value: str,
    index_name: Optional[str] = None,
) -> list[dict]:
    """
    Query every item whose partition (or index) key equals key_value.

    Handles pagination so aggregate recomputation sees the full set.
    """
    table = get_table(table_name)
    query_kwargs = {"KeyConditionExpression": Key(key_name).eq(key_value)}
    if index_name:
        query_kwargs["IndexName"] = index_name

    items = []
    response = table.query(**query_kwargs)
    items.extend(response.get("Items", []))

    while "LastEvaluatedKey" in response:
        response = table.query(ExclusiveStartKey=response["LastEvaluatedKey"], **query_kwargs)
        items.extend(response.get("Items", []))

    return [from_dynamo(item) for item in items]


def batch_find(table_name: str, keys: list[dict]) -> list[dict]:
    """
    Get many items by key with proper UnprocessedKeys handling.

    Duplicate keys are requested once. Missing items are simply absent
    from the result; callers match items back to keys themselves.
    """
    unique_keys = []
    seen = set()
    for key in keys:
        fingerprint = tuple(sorted(key.items()))
        if fingerprint not in seen:
            seen.add(fingerprint)
            unique_keys.append(key)

    results = []
    batch_size = 25  # DynamoDB BatchGetItem limit
    max_retries = 5

    for i in range(0, len(unique_keys), batch_size):
        request_items = {table_name: {"Keys": unique_keys[i : i + batch_size]}}
        retry_count = 0

        while request_items and retry_count < max_retries:
            response = get_dynamodb().batch_get_item(RequestItems=request_items)
            results.extend(response.get("Responses", {}).get(table_name, []))

            # Handle UnprocessedKeys with exponential backoff
            unprocessed = response.get("UnprocessedKeys", {})
            if unprocessed:
                retry_count += 1
                unprocessed_count = len(unprocessed.get(table_name, {}).get("Keys", []))

                if retry_count >= max_retries:
                    logger.error(f"Max retries ({max_retries}) exceeded for {unprocessed_count} unprocessed keys")
                    break

                base_delay = min(0.1 * (2 ** retry_count), 2.0)
                delay = base_delay + random.uniform(0, base_delay * 0.5)
                logger.warning(f"Retry {retry_count}/{max_retries}: {unprocessed_count} unprocessed keys (delay: {delay:.2f}s)")
                time.sleep(delay)
                request_items = unprocessed
            else:
                request_items = None

    return [from_dynamo(item) for item in results]
