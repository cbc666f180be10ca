"""
EventBridge Scheduler client for the recurring sync job.

The client is constructed with the component's namespace (the schedule
group) and passed to whatever needs it; there is no module-level handle.
replace() updates a schedule in place when it exists and creates it
otherwise, so there is never a window with no registered job.
"""

import json
import logging
from typing import Optional

from botocore.exceptions import ClientError

from .aws_clients import get_scheduler
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def rate_expression(interval_minutes: int) -> str:
    """Build an EventBridge rate expression for a minute interval."""
    unit = "minute" if interval_minutes == 1 else "minutes"
    return f"rate({interval_minutes} {unit})"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class ScheduleClient:
    """Named interval schedules within one schedule group."""

    def __init__(
        self,
        namespace: str,
        target_arn: Optional[str],
        role_arn: Optional[str],
        client=None,
    ):
        if not target_arn:
            raise ConfigurationError("SYNC_FUNCTION_ARN is required to schedule sync")
        if not role_arn:
            raise ConfigurationError("SCHEDULER_ROLE_ARN is required to schedule sync")

        self.namespace = namespace
        self.target_arn = target_arn
        self.role_arn = role_arn
        self._client = client
        self._group_ready = False

    @property
    def client(self):
        if self._client is None:
            self._client = get_scheduler()
        return self._client

    def ensure_group(self) -> None:
        """Create the namespace schedule group if it does not exist yet."""
        if self._group_ready:
            return
        try:
            self.client.get_schedule_group(Name=self.namespace)
        except ClientError as e:
            if _error_code(e) != "ResourceNotFoundException":
                raise
            try:
                self.client.create_schedule_group(Name=self.namespace)
                logger.info(f"Created schedule group {self.namespace}")
            except ClientError as create_error:
                if _error_code(create_error) != "ConflictException":
                    raise
        self._group_ready = True

    def get(self, name: str) -> Optional[dict]:
        """Return the schedule definition, or None if it is not registered."""
        self.ensure_group()
        try:
            return self.client.get_schedule(Name=name, GroupName=self.namespace)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return None
            raise

    def delete(self, name: str) -> bool:
        """Delete a schedule. Returns False if it was not registered."""
        self.ensure_group()
        try:
            self.client.delete_schedule(Name=name, GroupName=self.namespace)
            return True
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return False
            raise

    def _definition(self, name: str, interval_minutes: int, payload: dict) -> dict:
        return {
            "Name": name,
            "GroupName": self.namespace,
            "ScheduleExpression": rate_expression(interval_minutes),
            "FlexibleTimeWindow": {"Mode": "OFF"},
            "State": "ENABLED",
            "Target": {
                "Arn": self.target_arn,
                "RoleArn": self.role_arn,
                "Input": json.dumps(payload, sort_keys=True),
            },
        }

    def register(self, name: str, interval_minutes: int, payload: dict) -> None:
        """Create a new schedule; fails with ConflictException if the name is taken."""
        self.ensure_group()
        self.client.create_schedule(**self._definition(name, interval_minutes, payload))
        logger.info(f"Registered schedule {self.namespace}/{name} every {interval_minutes}m")

    def replace(self, name: str, interval_minutes: int, payload: dict) -> str:
        """
        Replace-or-create a schedule under a fixed name.

        Returns:
            "updated" if an existing schedule was replaced, "created" otherwise
        """
        definition = self._definition(name, interval_minutes, payload)

        if self.get(name) is not None:
            self.client.update_schedule(**definition)
            logger.info(f"Replaced schedule {self.namespace}/{name} every {interval_minutes}m")
            return "updated"

        try:
            self.client.create_schedule(**definition)
        except ClientError as e:
            # Another invocation created it between get and create
            if _error_code(e) != "ConflictException":
                raise
            self.client.update_schedule(**definition)
            logger.info(f"Replaced concurrently created schedule {self.namespace}/{name}")
            return "updated"

        logger.info(f"Registered schedule {self.namespace}/{name} every {interval_minutes}m")
        return "created"
