"""
Comment reconciler.

Keeps exactly one bot comment per pull request in sync with the latest
deployment state: find the bot's comment, render the candidate body, then
create, update or leave it alone.
"""

import asyncio
from typing import Awaitable, Iterable, List, Optional, Sequence

from notifier.models.comment import PullRequestSummary
from notifier.models.error import NotificationError
from notifier.models.instance import Instance
from notifier.models.push_event import LifecycleState, PushEvent
from notifier.services.github_client import GitHubClient
from notifier.services.message_renderer import GitHubBotMessage
from notifier.utils.logging import get_logger, log_error_with_context
from notifier.utils.metrics import JobMetrics

logger = get_logger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


class CommentReconciler:
    """Create-or-update of the bot comment on pull requests."""

    def __init__(
        self,
        github: GitHubClient,
        renderer: GitHubBotMessage,
        bot_login: str,
        metrics: Optional[JobMetrics] = None
    ):
        """
        Args:
            github: Client authenticated as the bot account
            renderer: Comment body renderer
            bot_login: Login of the bot account; comments are matched on it
            metrics: Per-job metrics collector
        """
        self.github = github
        self.renderer = renderer
        self.bot_login = bot_login
        self.metrics = metrics

    def _record(self, kind: str) -> None:
        if self.metrics:
            self.metrics.record_comment(kind)

    async def upsert_comment(
        self,
        push_event: PushEvent,
        instance: Instance,
        isolated_instances: Optional[Sequence[Instance]] = None
    ) -> str:
        """
        Create or update the bot comment on `push_event.pr_number`.

        Args:
            push_event: Push targeted at a single pull request
            instance: Deployed instance
            isolated_instances: Other instances of the isolation group

        Returns:
            'created', 'updated' or 'unchanged'

        Raises:
            NotificationError: INVALID_STATUS when the push is running but
                the instance has no container; gateway errors otherwise
        """
        if push_event.pr_number is None:
            raise NotificationError.invalid_status(
                "Push event is not targeted at a pull request",
                repo=push_event.repo,
                branch=push_event.branch,
            )
        if push_event.state == LifecycleState.RUNNING.value and not instance.has_container():
            raise NotificationError.invalid_status(
                "Cannot notify about a running instance without a container",
                repo=push_event.repo,
                branch=push_event.branch,
                pr_number=push_event.pr_number,
                instance_id=instance.id,
            )

        log = logger.with_context(
            repo=push_event.repo,
            branch=push_event.branch,
            pr_number=push_event.pr_number,
            instance_id=instance.id,
        )

        existing = await self.github.find_comment_by_author(
            push_event.repo, push_event.pr_number, self.bot_login
        )
        body = self.renderer.render(push_event, instance, isolated_instances)

        if existing is None:
            log.info("Creating new bot comment")
            await self.github.create_comment(push_event.repo, push_event.pr_number, body)
            self._record(CREATED)
            return CREATED

        if existing.body != body:
            log.info("Updating bot comment", extra={"comment_id": existing.id})
            await self.github.update_comment(push_event.repo, existing.id, body)
            self._record(UPDATED)
            return UPDATED

        log.info("Bot comment is up to date", extra={"comment_id": existing.id})
        self._record(UNCHANGED)
        return UNCHANGED

    async def prune_duplicate_comments(self, repo: str, pr_number: int) -> int:
        """
        Delete every bot comment on the PR except the oldest one.

        Returns:
            Number of deleted comments
        """
        comments = await self.github.find_comments_by_author(repo, pr_number, self.bot_login)
        duplicates = comments[1:]
        for comment in duplicates:
            logger.info(
                "Deleting duplicate bot comment",
                extra={"repo": repo, "pr_number": pr_number, "comment_id": comment.id}
            )
            await self.github.delete_comment(repo, comment.id)
            self._record("deleted")
        return len(duplicates)

    async def upsert_all_for_branch(
        self,
        push_event: PushEvent,
        instance: Instance,
        isolated_instances: Optional[Sequence[Instance]] = None
    ) -> List[str]:
        """
        Upsert the bot comment on every open PR of the push branch.

        Per-PR upserts run concurrently; every one is attempted and the
        first failure, if any, is raised once all of them finished.

        Returns:
            Upsert outcome per pull request, in PR listing order
        """
        prs = await self.github.list_open_pull_requests_for_branch(push_event.repo, push_event.branch)
        logger.info(
            f"Found {len(prs)} open pull requests for branch",
            extra={"repo": push_event.repo, "branch": push_event.branch}
        )

        async def reconcile(pr: PullRequestSummary) -> str:
            try:
                await self.prune_duplicate_comments(push_event.repo, pr.number)
            except NotificationError as e:
                log_error_with_context(
                    logger, "Failed to prune duplicate bot comments", e,
                    repo=push_event.repo, pr_number=pr.number
                )
            return await self.upsert_comment(
                push_event.for_pull_request(pr.number), instance, isolated_instances
            )

        return await self._run_all(
            [reconcile(pr) for pr in prs],
            prs,
            "Failed to upsert bot comment",
            push_event.repo,
        )

    async def delete_branch_notifications(self, repo: str, branch: str) -> None:
        """Delete the bot comments on every open PR of `branch`."""
        prs = await self.github.list_open_pull_requests_for_branch(repo, branch)
        await self._delete_for_pull_requests(repo, prs)

    async def delete_all_notifications(self, repo: str) -> None:
        """Delete the bot comments on every open PR of `repo`."""
        prs = await self.github.list_open_pull_requests(repo)
        await self._delete_for_pull_requests(repo, prs)

    async def _delete_for_pull_requests(self, repo: str, prs: Sequence[PullRequestSummary]) -> None:
        async def delete_comments(pr: PullRequestSummary) -> None:
            comments = await self.github.find_comments_by_author(repo, pr.number, self.bot_login)
            for comment in comments:
                await self.github.delete_comment(repo, comment.id)
                self._record("deleted")

        await self._run_all(
            [delete_comments(pr) for pr in prs],
            prs,
            "Failed to delete bot comments",
            repo,
        )

    async def _run_all(
        self,
        coroutines: Iterable[Awaitable],
        prs: Sequence[PullRequestSummary],
        message: str,
        repo: str
    ) -> list:
        results = await asyncio.gather(*coroutines, return_exceptions=True)
        first_error: Optional[BaseException] = None
        for pr, result in zip(prs, results):
            if isinstance(result, BaseException):
                log_error_with_context(logger, message, result, repo=repo, pr_number=pr.number)
                if first_error is None:
                    first_error = result
        if first_error is not None:
            raise first_error
        return list(results)
