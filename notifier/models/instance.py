"""Deployed instance (document store) data models."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from notifier.models.push_event import PushEvent


class _Document(BaseModel):
    """Base for documents read from the store: camelCase keys, unknown keys kept."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Owner(_Document):
    """Owner of an instance (a GitHub user or org)."""

    github: int
    username: Optional[str] = None


class CreatedBy(_Document):
    """GitHub identity of the user that created a document."""

    github: Optional[int] = None


class AppCodeVersion(_Document):
    """Source-control reference (repo + branch + commit) of a build context."""

    repo: str
    branch: str
    lower_repo: Optional[str] = Field(default=None, alias="lowerRepo")
    lower_branch: Optional[str] = Field(default=None, alias="lowerBranch")
    commit: Optional[str] = None
    additional_repo: bool = Field(default=False, alias="additionalRepo")

    @property
    def repo_path(self) -> str:
        """Lower-cased 'owner/name' used for API calls."""
        return (self.lower_repo or self.repo).lower()


class TriggeredAction(_Document):
    """What triggered a build; carries the push info for auto deploys."""

    manual: bool = False
    app_code_version: Optional[PushEvent] = Field(default=None, alias="appCodeVersion")


class Build(_Document):
    """Build status of a context version."""

    failed: bool = False
    completed: Optional[Union[datetime, int, str]] = None
    triggered_action: Optional[TriggeredAction] = Field(default=None, alias="triggeredAction")


class ContextVersion(_Document):
    """One build attempt of an instance (a build context)."""

    id: Optional[str] = Field(default=None, alias="_id")
    context: Optional[str] = None
    state: Optional[str] = None
    build: Build = Field(default_factory=Build)
    app_code_versions: List[AppCodeVersion] = Field(default_factory=list, alias="appCodeVersions")
    created_by: Optional[CreatedBy] = Field(default=None, alias="createdBy")

    def main_app_code_version(self) -> Optional[AppCodeVersion]:
        """First app code version that is not an additional repo."""
        for acv in self.app_code_versions:
            if not acv.additional_repo:
                return acv
        return None


class ContainerState(_Document):
    status: Optional[str] = Field(default=None, alias="Status")


class ContainerInspect(_Document):
    state: ContainerState = Field(default_factory=ContainerState, alias="State")


class Container(_Document):
    """Container attached to an instance."""

    inspect: ContainerInspect = Field(default_factory=ContainerInspect)
    ports: Optional[Dict[str, Any]] = Field(default_factory=dict)  # insertion ordered, e.g. {"80/tcp": [...]}
    docker_container: Optional[str] = Field(default=None, alias="dockerContainer")

    @property
    def status(self) -> Optional[str]:
        return self.inspect.state.status


class Instance(_Document):
    """Deployed environment tied to a code branch."""

    id: Optional[str] = Field(default=None, alias="_id")
    name: str
    owner: Owner
    short_hash: Optional[str] = Field(default=None, alias="shortHash")
    master_pod: bool = Field(default=False, alias="masterPod")
    parent: Optional[str] = None
    isolated: Optional[str] = None
    is_isolation_group_master: bool = Field(default=False, alias="isIsolationGroupMaster")
    is_testing: bool = Field(default=False, alias="isTesting")
    containers: List[Container] = Field(default_factory=list)
    container: Optional[Container] = None
    context_versions: List[ContextVersion] = Field(default_factory=list, alias="contextVersions")
    context_version: Optional[ContextVersion] = Field(default=None, alias="contextVersion")
    created_by: Optional[CreatedBy] = Field(default=None, alias="createdBy")

    @property
    def primary_container(self) -> Optional[Container]:
        if self.containers:
            return self.containers[0]
        return self.container

    @property
    def primary_context_version(self) -> Optional[ContextVersion]:
        if self.context_versions:
            return self.context_versions[0]
        return self.context_version

    def main_app_code_version(self) -> Optional[AppCodeVersion]:
        cv = self.primary_context_version
        if cv is None:
            return None
        return cv.main_app_code_version()

    def has_container(self) -> bool:
        return self.primary_container is not None

    def to_document(self) -> Dict[str, Any]:
        """Serialize back to the camelCase document shape used on the queue."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
