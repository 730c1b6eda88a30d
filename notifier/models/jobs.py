"""Inbound job payload models, one per queue event."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from notifier.models.instance import Instance
from notifier.models.push_event import PushEvent

USER_CONTAINER = "user-container"
IMAGE_BUILDER_CONTAINER = "image-builder-container"


class _Job(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class GitHubBotNotifyJob(_Job):
    """`github.bot.notify`: {pushInfo: {repo, branch, state}, instance: {...}}"""

    push_info: PushEvent = Field(alias="pushInfo")
    instance: Instance

    @field_validator("instance", mode="before")
    @classmethod
    def _require_context_versions(cls, value: Any) -> Any:
        if isinstance(value, dict) and not isinstance(value.get("contextVersions"), list):
            raise ValueError("instance.contextVersions is required")
        return value


class InstanceChangeJob(_Job):
    """`instance.updated`: {instance: {...}}"""

    instance: Instance


class InstanceDeletedJob(InstanceChangeJob):
    """`instance.deleted`: {instance: {owner, contextVersions: [...]}}"""

    @field_validator("instance", mode="before")
    @classmethod
    def _require_context_versions(cls, value: Any) -> Any:
        if isinstance(value, dict) and not isinstance(value.get("contextVersions"), list):
            raise ValueError("instance.contextVersions is required")
        return value


class InstanceDeployedJob(_Job):
    """`instance.deployed`: {instanceId, cvId}"""

    instance_id: str = Field(alias="instanceId")
    cv_id: str = Field(alias="cvId")


class _HeadRepo(_Job):
    full_name: str


class _Head(_Job):
    ref: str
    repo: _HeadRepo


class _PullRequest(_Job):
    head: _Head


class _PullRequestPayload(_Job):
    pull_request: _PullRequest


class PullRequestOpenedJob(_Job):
    """`github.pull-request.opened`: GitHub webhook payload wrapper."""

    payload: _PullRequestPayload

    @property
    def repo(self) -> str:
        return self.payload.pull_request.head.repo.full_name

    @property
    def branch(self) -> str:
        return self.payload.pull_request.head.ref


class ContainerConfig(_Job):
    labels: Dict[str, str] = Field(alias="Labels")

    @field_validator("labels")
    @classmethod
    def _require_type_labels(cls, labels: Dict[str, str]) -> Dict[str, str]:
        container_type = labels.get("type")
        if not container_type:
            raise ValueError("Labels.type is required")
        if container_type == USER_CONTAINER and not labels.get("contextVersionId"):
            raise ValueError("Labels.contextVersionId is required for user containers")
        if container_type == IMAGE_BUILDER_CONTAINER and not labels.get("contextVersion._id"):
            raise ValueError("Labels['contextVersion._id'] is required for image builders")
        return labels


class ContainerExitState(_Job):
    exit_code: Optional[int] = Field(default=None, alias="ExitCode")
    error: Optional[str] = Field(default=None, alias="Error")


class InspectData(_Job):
    id: Optional[str] = Field(default=None, alias="Id")
    config: ContainerConfig = Field(alias="Config")
    state: ContainerExitState = Field(default_factory=ContainerExitState, alias="State")


class ContainerLifeCycleJob(_Job):
    """`container.life-cycle.started` / `.died`"""

    id: str
    needs_inspect: bool = Field(default=False, alias="needsInspect")
    inspect_data: Optional[InspectData] = Field(default=None, alias="inspectData")

    @model_validator(mode="after")
    def _require_inspect_data(self) -> "ContainerLifeCycleJob":
        if self.needs_inspect and self.inspect_data is None:
            raise ValueError("inspectData is required when needsInspect is set")
        return self

    @property
    def container_type(self) -> Optional[str]:
        if self.inspect_data is None:
            return None
        return self.inspect_data.config.labels.get("type")

    @property
    def context_version_id(self) -> Optional[str]:
        if self.inspect_data is None:
            return None
        labels = self.inspect_data.config.labels
        return labels.get("contextVersion._id") or labels.get("contextVersionId")


class NamedOrganization(_Job):
    id: Optional[int] = None
    name: str


class IdentifiedOrganization(_Job):
    id: int
    name: Optional[str] = None


class FullOrganization(_Job):
    id: int
    name: str


class GitHubUserRef(_Job):
    github_id: int = Field(alias="githubId")


class OrganizationUserRef(_Job):
    id: int
    github_id: int = Field(alias="githubId")


class OrganizationCreatorRef(_Job):
    github_id: int = Field(alias="githubId")
    github_username: str = Field(alias="githubUsername")


class TrialEventJob(_Job):
    """`organization.trial.ending` / `organization.trial.ended`"""

    organization: FullOrganization


class PaymentMethodChangeJob(_Job):
    """`organization.payment-method.added` / `.removed`"""

    organization: NamedOrganization
    payment_method_owner: GitHubUserRef = Field(alias="paymentMethodOwner")


class InvoicePaymentFailedJob(_Job):
    """`organization.invoice.payment-failed`"""

    invoice_payment_has_failed_for_24_hours: bool = Field(alias="invoicePaymentHasFailedFor24Hours")
    organization: FullOrganization
    payment_method_owner: GitHubUserRef = Field(alias="paymentMethodOwner")


class UserAddedJob(_Job):
    """`organization.user.added`"""

    organization: IdentifiedOrganization
    user: OrganizationUserRef


class OrganizationCreatedJob(_Job):
    """`organization.created`"""

    organization: NamedOrganization
    creator: OrganizationCreatorRef


class QueuedJob(BaseModel):
    """Envelope of a job on the broker queue."""

    job_id: str
    event: str
    payload: Dict[str, Any]
    attempt: int = 0
