"""Data models for the notification worker."""

from .account import Organization, OrgSettings, SlackSettings, User
from .comment import BotComment, CommitStatus, CommitStatusState, PullRequestSummary
from .error import ErrorKind, NotificationError, WorkerStopError
from .instance import (
    AppCodeVersion,
    Build,
    Container,
    ContextVersion,
    Instance,
    Owner,
)
from .jobs import (
    ContainerLifeCycleJob,
    GitHubBotNotifyJob,
    InstanceChangeJob,
    InstanceDeletedJob,
    InstanceDeployedJob,
    InvoicePaymentFailedJob,
    OrganizationCreatedJob,
    PaymentMethodChangeJob,
    PullRequestOpenedJob,
    QueuedJob,
    TrialEventJob,
    UserAddedJob,
)
from .push_event import Commit, LifecycleState, PushEvent

__all__ = [
    # Push models
    "Commit",
    "LifecycleState",
    "PushEvent",
    # Instance models
    "AppCodeVersion",
    "Build",
    "Container",
    "ContextVersion",
    "Instance",
    "Owner",
    # Source-control models
    "BotComment",
    "CommitStatus",
    "CommitStatusState",
    "PullRequestSummary",
    # Account models
    "Organization",
    "OrgSettings",
    "SlackSettings",
    "User",
    # Error models
    "ErrorKind",
    "NotificationError",
    "WorkerStopError",
    # Job payloads
    "QueuedJob",
    "ContainerLifeCycleJob",
    "GitHubBotNotifyJob",
    "InstanceChangeJob",
    "InstanceDeletedJob",
    "InstanceDeployedJob",
    "InvoicePaymentFailedJob",
    "OrganizationCreatedJob",
    "PaymentMethodChangeJob",
    "PullRequestOpenedJob",
    "TrialEventJob",
    "UserAddedJob",
]
