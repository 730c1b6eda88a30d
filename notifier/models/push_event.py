"""Push event data models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LifecycleState(str, Enum):
    """Lifecycle state of a deployed instance."""

    BUILDING = "building"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class CommitAuthor(BaseModel):
    """Author block of a pushed commit."""

    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None


class Commit(BaseModel):
    """Single commit from a push commit log."""

    model_config = ConfigDict(extra="allow")

    id: str
    message: str = ""
    url: Optional[str] = None
    author: Optional[CommitAuthor] = None


class PushEvent(BaseModel):
    """Code push that triggered a notification."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    repo: str  # 'owner/name'
    branch: str
    pr_number: Optional[int] = Field(default=None, alias="number")
    state: Optional[str] = None  # LifecycleState value, free text from upstream
    commit: Optional[str] = None
    commit_log: List[Commit] = Field(default_factory=list, alias="commitLog")

    @property
    def owner(self) -> str:
        return self.repo.split("/")[0]

    def for_pull_request(self, pr_number: int) -> "PushEvent":
        """Copy of this event targeted at a single pull request."""
        return self.model_copy(update={"pr_number": pr_number})

    def with_state(self, state: Optional[str]) -> "PushEvent":
        return self.model_copy(update={"state": state})
