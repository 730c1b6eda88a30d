"""Source-control comment, pull request and status data models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class BotComment(BaseModel):
    """Comment on a pull request as returned by the source-control API."""

    id: int
    body: str
    author_login: Optional[str] = None


class PullRequestSummary(BaseModel):
    """Open pull request and the branch it was opened from."""

    number: int
    head_ref: str
    head_sha: Optional[str] = None


class CommitStatusState(str, Enum):
    """Commit status states accepted by the source-control API."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    FAILURE = "failure"


class CommitStatus(BaseModel):
    """Commit status payload."""

    sha: str
    state: CommitStatusState
    target_url: str
    description: str
    context: str  # 'runnable/<instanceName>'
