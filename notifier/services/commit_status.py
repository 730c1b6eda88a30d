"""
GitHub commit statuses for testing instances.

Statuses are posted with the token of the user who created the build, so
they show up as coming from that user's access.
"""

from typing import Callable, Optional

from notifier.models.comment import CommitStatus, CommitStatusState
from notifier.models.error import NotificationError
from notifier.models.instance import AppCodeVersion, Instance
from notifier.models.jobs import IMAGE_BUILDER_CONTAINER, ContainerLifeCycleJob
from notifier.services.document_store import DocumentStore
from notifier.services.github_client import GitHubClient
from notifier.utils.logging import get_logger

logger = get_logger(__name__)

DESCRIPTIONS = {
    CommitStatusState.PENDING: "Tests are running",
    CommitStatusState.SUCCESS: "Tests completed successfully",
    CommitStatusState.ERROR: "Tests did not pass",
    CommitStatusState.FAILURE: "Build failure",
}

TESTS_RUNNING = "Tests are running"
TEST_CONTAINER_BUILDING = "Test container is building"

GitHubClientFactory = Callable[[str], GitHubClient]


def calculate_status(job: ContainerLifeCycleJob) -> Optional[CommitStatusState]:
    """
    Commit status for a container that died.

    Image builders only report failed builds; user containers report
    success on a clean exit and error otherwise.
    """
    state = job.inspect_data.state if job.inspect_data else None
    exited_properly = bool(state) and state.exit_code == 0 and not state.error
    if job.container_type == IMAGE_BUILDER_CONTAINER:
        return None if exited_properly else CommitStatusState.FAILURE
    return CommitStatusState.SUCCESS if exited_properly else CommitStatusState.ERROR


class GitHubStatus:
    """Sets commit statuses for instances."""

    def __init__(self, store: DocumentStore, github_factory: GitHubClientFactory, web_url: str):
        """
        Args:
            store: Document store used to find the build creator and master instance
            github_factory: Builds a GitHub client for an access token
            web_url: Base URL of the web app, used for the status target URL
        """
        self.store = store
        self.github_factory = github_factory
        self.web_url = web_url.rstrip("/")

    def target_url(self, instance: Instance) -> str:
        return f"{self.web_url}/{instance.owner.username}/{instance.name}"

    async def set_status(
        self,
        instance: Instance,
        main_acv: AppCodeVersion,
        state: CommitStatusState,
        description: Optional[str] = None
    ) -> None:
        """
        Post a commit status for the instance's main commit.

        Raises:
            NotificationError: INVALID_STATUS when the build creator, their
                user or their access token cannot be found; gateway errors
                from the status call
        """
        log = logger.with_context(repo=main_acv.repo_path, instance_id=instance.id)
        log.info("Setting commit status", extra={"state": state.value, "sha": main_acv.commit})

        cv = instance.primary_context_version
        creator_id = cv.created_by.github if cv and cv.created_by else None
        if not creator_id:
            raise NotificationError.invalid_status(
                "Context Version is missing createdBy github", instance_id=instance.id
            )
        user = await self.store.find_user_by_github_id(creator_id)
        if user is None:
            raise NotificationError.invalid_status(
                "No user in runnable with createdBy id", github_id=creator_id
            )
        token = user.github_access_token
        if not token:
            raise NotificationError.invalid_status(
                "Runnable user does not have accessToken", github_id=creator_id
            )
        if not main_acv.commit:
            raise NotificationError.invalid_status(
                "App code version has no commit", instance_id=instance.id
            )

        context_name = instance.name
        if not instance.master_pod:
            master = await self.store.find_master_instance(instance.parent or "")
            if master is None:
                raise NotificationError.invalid_status(
                    "Master instance not found", parent=instance.parent
                )
            context_name = master.name

        status = CommitStatus(
            sha=main_acv.commit,
            state=state,
            target_url=self.target_url(instance),
            description=description or DESCRIPTIONS[state],
            context=f"runnable/{context_name}",
        )
        github = self.github_factory(token)
        try:
            await github.create_commit_status(main_acv.repo_path, status)
        finally:
            await github.aclose()
