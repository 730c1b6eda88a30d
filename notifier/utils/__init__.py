"""
Utility modules for the notification worker.
"""

from notifier.utils.logging import (
    get_logger,
    setup_logging,
    log_job_event,
    log_api_call,
    log_error_with_context,
)
from notifier.utils.metrics import (
    JobMetrics,
    track_api_call,
    emit_metric,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "log_job_event",
    "log_api_call",
    "log_error_with_context",
    "JobMetrics",
    "track_api_call",
    "emit_metric",
]
