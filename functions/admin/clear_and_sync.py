"""
Clear and Sync - wipe cached repo and package rows, then run a fresh sync.

Used to recover from model changes or corrupted aggregates. Owner and org
rows are kept; the sync recomputes them from the fresh child rows.

Tables are cleared one bounded page at a time so a table of any size never
needs a single large request.

Usage (run locally):
    PYTHONPATH=functions python functions/admin/clear_and_sync.py --dry-run
    PYTHONPATH=functions python functions/admin/clear_and_sync.py --yes

Lambda invocation requires {"confirm": true} in the event.
"""

import argparse
import logging

from collectors.sync_orchestrator import SyncOrchestrator, SyncRequest, build_orchestrator, run_sync
from shared import dynamo
from shared.config import Settings
from shared.constants import CLEAR_PAGE_SIZE, NPM_PACKAGES_TABLE, REPOS_TABLE
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.response_utils import error_response

logger = logging.getLogger(__name__)

CLEARED_TABLES = (REPOS_TABLE, NPM_PACKAGES_TABLE)


def clear_table(table_name: str, page_size: int = CLEAR_PAGE_SIZE) -> int:
    """
    Delete every row of a table, one scanned page at a time.

    Returns:
        Number of page cycles; an empty table takes one
    """
    table = dynamo.get_table(table_name)
    key_names = [key["AttributeName"] for key in table.key_schema]

    cycles = 0
    deleted = 0
    cursor = None
    while True:
        items, cursor = dynamo.paginate(table_name, page_size, cursor)
        cycles += 1

        with table.batch_writer() as batch:
            for item in items:
                batch.delete_item(Key={name: item[name] for name in key_names})
        deleted += len(items)

        logger.info(f"Cleared page {cycles} of {table_name} ({len(items)} rows)")
        if not cursor:
            break

    logger.info(f"Cleared {table_name}: {deleted} rows in {cycles} cycles")
    return cycles


def count_rows(table_name: str, page_size: int = CLEAR_PAGE_SIZE) -> int:
    """Count rows page by page without modifying anything."""
    total = 0
    cursor = None
    while True:
        items, cursor = dynamo.paginate(table_name, page_size, cursor)
        total += len(items)
        if not cursor:
            return total


def clear_and_sync(request: SyncRequest, orchestrator: SyncOrchestrator, context=None) -> dict:
    """
    Clear repo and package tables completely, then run a sync.

    The sync only starts after both tables are empty.
    """
    cleared = {table_name: clear_table(table_name) for table_name in CLEARED_TABLES}
    summary = run_sync(orchestrator, request, context)
    return {"cleared": cleared, "sync": summary}


def handler(event, context):
    """Lambda handler for clear-and-sync."""
    configure_structured_logging()
    set_request_id(event)

    event = event or {}
    if event.get("confirm") is not True:
        return error_response(400, "confirmation_required", 'Pass {"confirm": true} to clear tables')

    settings = Settings.from_env()
    request = SyncRequest.from_event(event, settings)
    orchestrator = build_orchestrator(settings, request.github_access_token)
    return clear_and_sync(request, orchestrator, context)


def main():
    parser = argparse.ArgumentParser(description="Clear cached repo and package rows, then resync")
    parser.add_argument("--yes", action="store_true", help="Confirm deleting all repo and package rows")
    parser.add_argument("--dry-run", action="store_true", help="Report row counts without deleting")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    if args.dry_run:
        for table_name in CLEARED_TABLES:
            logger.info(f"[DRY RUN] Would clear {count_rows(table_name)} rows from {table_name}")
        return

    if not args.yes:
        parser.error("refusing to clear tables without --yes")

    settings = Settings.from_env()
    request = SyncRequest.from_event({}, settings)
    result = clear_and_sync(request, build_orchestrator(settings))
    logger.info(f"Done: {result}")


if __name__ == "__main__":
    main()
