"""GitHub deployment statuses for auto deployed instances."""

from notifier.models.error import NotificationError
from notifier.models.instance import Instance
from notifier.models.push_event import PushEvent
from notifier.services.github_client import GitHubClient
from notifier.utils.logging import get_logger, log_error_with_context

logger = get_logger(__name__)


class GitHubDeploy:
    """Marks commits as deployed through the GitHub Deployments API."""

    def __init__(self, github: GitHubClient, web_url: str, enabled: bool):
        """
        Args:
            github: Client authenticated as the user who pushed
            web_url: Base URL of the web app, used for the status target URL
            enabled: Deployment statuses feature flag
        """
        self.github = github
        self.web_url = web_url.rstrip("/")
        self.enabled = enabled

    def target_url(self, instance: Instance) -> str:
        return f"{self.web_url}/{instance.owner.username}/{instance.name}"

    async def deployment_succeeded(self, push_event: PushEvent, instance: Instance) -> bool:
        """
        Create a deployment for the pushed commit and mark it successful.

        Failures are logged, not raised.

        Returns:
            True when the success status was posted
        """
        if not self.enabled or not push_event.commit:
            return False
        log = logger.with_context(repo=push_event.repo, branch=push_event.branch, instance_id=instance.id)
        try:
            deployment_id = await self.github.create_deployment(
                push_event.repo,
                ref=push_event.commit,
                description=f"Deploying to {instance.name} on Runnable.",
            )
            await self.github.create_deployment_status(
                push_event.repo,
                deployment_id,
                state="success",
                target_url=self.target_url(instance),
                description=f"Deployed to {instance.name} on Runnable.",
            )
        except NotificationError as e:
            log_error_with_context(log, "Failed to mark deployment as succeeded", e, kind=e.kind.value)
            return False
        log.info("Deployment marked as succeeded")
        return True
