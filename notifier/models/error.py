"""Domain error and worker outcome models."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Kind discriminator of a NotificationError."""

    ACCESS_DENIED = "access_denied"          # bot lacks permission on repo/org
    RATE_LIMITED = "rate_limited"            # remote API throttling
    INVALID_STATUS = "invalid_status"        # local precondition violated
    PR_ACCESS_DENIED = "pr_access_denied"    # PR bot not enabled for the org
    VALIDATION_FAILURE = "validation_failure"  # malformed inbound payload
    TRANSIENT_FAILURE = "transient_failure"  # network, timeout or unclassified remote error


class NotificationError(Exception):
    """
    Single tagged error raised by the notification services.

    Carries a kind discriminator, structured context (repo, query, ...)
    and the underlying transport error when there is one.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message
        self.context = context or {}
        self.cause = cause

    @property
    def is_retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT_FAILURE

    @classmethod
    def access_denied(cls, message: str, cause: Optional[BaseException] = None, **context: Any) -> "NotificationError":
        return cls(ErrorKind.ACCESS_DENIED, message, context, cause)

    @classmethod
    def rate_limited(cls, message: str, cause: Optional[BaseException] = None, **context: Any) -> "NotificationError":
        return cls(ErrorKind.RATE_LIMITED, message, context, cause)

    @classmethod
    def invalid_status(cls, message: str, cause: Optional[BaseException] = None, **context: Any) -> "NotificationError":
        return cls(ErrorKind.INVALID_STATUS, message, context, cause)

    @classmethod
    def pr_access_denied(cls, message: str, cause: Optional[BaseException] = None, **context: Any) -> "NotificationError":
        return cls(ErrorKind.PR_ACCESS_DENIED, message, context, cause)

    @classmethod
    def validation_failure(cls, message: str, cause: Optional[BaseException] = None, **context: Any) -> "NotificationError":
        return cls(ErrorKind.VALIDATION_FAILURE, message, context, cause)

    @classmethod
    def transient(cls, message: str, cause: Optional[BaseException] = None, **context: Any) -> "NotificationError":
        return cls(ErrorKind.TRANSIENT_FAILURE, message, context, cause)


class WorkerStopError(Exception):
    """
    Raised by a task to acknowledge and drop the job without a retry.

    Args:
        message: Why the job was stopped
        level: Log level the worker records the stop at ('info', 'warning', 'error')
        context: Structured context for the operator log
        report: False for stops that are not an operational incident
    """

    def __init__(
        self,
        message: str,
        level: str = "warning",
        context: Optional[Dict[str, Any]] = None,
        report: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.level = level
        self.context = context or {}
        self.report = report
