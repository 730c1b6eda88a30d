"""
Metrics collection and emission for observability.

This module provides metrics tracking for:
- Comment writes per job (created, updated, unchanged, deleted)
- Outbound API call counts and latency
- Operator-facing counters (rate limits, access denials)
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from notifier.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)


class JobMetrics:
    """
    Collects metrics while a single job is handled.

    Tracks:
    - Handling start/end time
    - Comment writes by kind
    - API call counts and latency per service
    - Final outcome
    """

    def __init__(self, job_id: str, event: str):
        self.job_id = job_id
        self.event = event

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.duration_ms: Optional[int] = None

        self.comments: Dict[str, int] = {
            "created": 0,
            "updated": 0,
            "unchanged": 0,
            "deleted": 0,
        }

        self.api_calls: Dict[str, int] = {}
        self.api_latencies: Dict[str, list[float]] = {}

        self.outcome: str = "running"

    def start(self) -> None:
        """Mark job handling start."""
        self.start_time = datetime.now(timezone.utc)
        self.outcome = "running"

    def complete(self, outcome: str = "completed") -> None:
        """
        Mark job handling completion.

        Args:
            outcome: Final outcome ('completed', 'stopped', 'retried', 'dead_lettered')
        """
        self.end_time = datetime.now(timezone.utc)
        self.outcome = outcome

        if self.start_time:
            duration = (self.end_time - self.start_time).total_seconds()
            self.duration_ms = int(duration * 1000)

        logger.info(f"Job metrics for {self.event}", extra=self.get_summary())

    def record_comment(self, kind: str) -> None:
        """Record a comment write of the given kind."""
        self.comments[kind] = self.comments.get(kind, 0) + 1

    def record_api_call(self, service: str, duration_ms: float) -> None:
        """
        Record an API call and its latency.

        Args:
            service: Service name (e.g., 'github', 'slack')
            duration_ms: Call duration in milliseconds
        """
        self.api_calls[service] = self.api_calls.get(service, 0) + 1
        self.api_latencies.setdefault(service, []).append(duration_ms)

    def get_summary(self) -> Dict[str, Any]:
        """Get summary of collected metrics."""
        summary: Dict[str, Any] = {
            "job_id": self.job_id,
            "event": self.event,
            "outcome": self.outcome,
            "duration_ms": self.duration_ms,
            "comments": dict(self.comments),
            "api_calls": dict(self.api_calls),
        }

        latency_stats = {}
        for service, latencies in self.api_latencies.items():
            if latencies:
                latency_stats[service] = {
                    "count": len(latencies),
                    "min_ms": round(min(latencies), 2),
                    "max_ms": round(max(latencies), 2),
                    "avg_ms": round(sum(latencies) / len(latencies), 2),
                }
        if latency_stats:
            summary["api_latencies"] = latency_stats

        return summary


@asynccontextmanager
async def track_api_call(
    metrics: Optional[JobMetrics],
    service: str,
    method: str,
    endpoint: str,
    logger_adapter
):
    """
    Context manager to time an outbound API call.

    Usage:
        async with track_api_call(metrics, "github", "GET", path, logger):
            response = await client.get(path)
    """
    start_time = time.time()
    error = None

    try:
        yield
    except Exception as e:
        error = e
        raise
    finally:
        duration_ms = (time.time() - start_time) * 1000

        if metrics:
            metrics.record_api_call(service, duration_ms)

        log_api_call(
            logger_adapter,
            service=service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            error=str(error) if error else None
        )


def emit_metric(metric_name: str, value: float = 1, **tags: Any) -> None:
    """
    Emit a metric as a structured log line.

    Args:
        metric_name: Metric name (e.g. 'github.rate_limited')
        value: Metric value
        **tags: Metric tags/labels
    """
    logger.info(
        f"Metric: {metric_name}",
        extra={
            "metric_name": metric_name,
            "metric_value": value,
            "metric_tags": tags,
        }
    )
