"""
CloudWatch Metrics Helper

Emits custom sync metrics. Metric failures never fail a handler.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .aws_clients import get_cloudwatch

logger = logging.getLogger(__name__)

NAMESPACE = os.environ.get("CLOUDWATCH_NAMESPACE", "OssStats")


def emit_metric(
    metric_name: str,
    value: float = 1.0,
    unit: str = "Count",
    dimensions: Optional[Dict[str, str]] = None,
) -> None:
    """
    Emit a custom metric to CloudWatch.

    Example:
        emit_metric("WebhookRejected", dimensions={"Reason": "signature"})
    """
    emit_batch_metrics(
        [
            {
                "metric_name": metric_name,
                "value": value,
                "unit": unit,
                "dimensions": dimensions,
            }
        ]
    )


def emit_batch_metrics(metrics: list[Dict[str, Any]]) -> None:
    """
    Emit multiple metrics in as few API calls as possible.

    Args:
        metrics: List of metric dictionaries with keys:
            - metric_name (str)
            - value (float)
            - unit (str, optional)
            - dimensions (dict, optional)
    """
    try:
        metric_data = []

        for metric in metrics:
            data = {
                "MetricName": metric["metric_name"],
                "Value": metric.get("value", 1.0),
                "Unit": metric.get("unit") or "Count",
                "Timestamp": datetime.now(timezone.utc),
            }

            dimensions = metric.get("dimensions")
            if dimensions:
                data["Dimensions"] = [
                    {"Name": k, "Value": v} for k, v in dimensions.items()
                ]

            metric_data.append(data)

        # CloudWatch allows up to 20 metrics per request
        for i in range(0, len(metric_data), 20):
            get_cloudwatch().put_metric_data(
                Namespace=NAMESPACE,
                MetricData=metric_data[i : i + 20],
            )

        logger.debug(f"Emitted {len(metric_data)} metrics in batch")

    except Exception as e:
        logger.warning(f"Failed to emit batch metrics: {e}")


# Summary counters published after every sync run, as (metric, counter key)
SYNC_SUMMARY_METRICS = (
    ("OwnersSynced", "owners_synced"),
    ("OwnersFailed", "owners_failed"),
    ("ReposFailed", "repos_failed"),
    ("ReposUnmeasured", "repos_unmeasured"),
    ("NpmOrgsSynced", "orgs_synced"),
    ("NpmOrgsFailed", "orgs_failed"),
    ("NpmPackagesFailed", "packages_failed"),
    ("NpmPackagesDeleted", "packages_deleted"),
)


def emit_sync_summary(counts: Dict[str, int], duration_seconds: float) -> None:
    """Publish the outcome counters of one sync run; absent counters are sent as 0."""
    metrics: list[Dict[str, Any]] = [
        {"metric_name": "SyncDuration", "value": duration_seconds, "unit": "Seconds"}
    ]
    metrics.extend(
        {"metric_name": metric_name, "value": counts.get(key, 0)}
        for metric_name, key in SYNC_SUMMARY_METRICS
    )
    emit_batch_metrics(metrics)
