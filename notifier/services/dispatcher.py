"""
Notification dispatcher.

Entry point of every queue event. Validates the payload, gathers what the
notification needs from the document store and hands off to the comment
reconciler, commit statuses, Slack or email.

Domain errors are translated into worker outcomes here and nowhere else:
- ACCESS_DENIED, INVALID_STATUS, PR_ACCESS_DENIED: stop, informational
- RATE_LIMITED: stop, flagged for operators
- VALIDATION_FAILURE: stop, not reported as an incident
- TRANSIENT_FAILURE: propagated so the worker retries the job
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from notifier.models.account import User
from notifier.models.comment import CommitStatusState
from notifier.models.error import ErrorKind, NotificationError, WorkerStopError
from notifier.models.instance import Instance
from notifier.models.jobs import (
    IMAGE_BUILDER_CONTAINER,
    USER_CONTAINER,
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
from notifier.models.push_event import PushEvent
from notifier.services.comment_reconciler import CommentReconciler
from notifier.services.commit_status import (
    TEST_CONTAINER_BUILDING,
    TESTS_RUNNING,
    GitHubStatus,
    calculate_status,
)
from notifier.services.deployment_status import GitHubDeploy
from notifier.services.document_store import DocumentStore
from notifier.services.github_client import GitHubClient
from notifier.services.message_renderer import GitHubBotMessage
from notifier.services.organization_notifier import OrganizationNotifier
from notifier.services.redis_client import RedisClient
from notifier.services.slack import SlackNotifier
from notifier.services.state_classifier import instance_state, push_info_for_instance
from notifier.utils.logging import ContextLoggerAdapter, get_logger, log_error_with_context
from notifier.utils.metrics import JobMetrics, emit_metric

logger = get_logger(__name__)

PRBOT_ENABLED_EVENT = "organization.integration.prbot.enabled"

ModelT = TypeVar("ModelT", bound=BaseModel)
Handler = Callable[[Dict[str, Any], ContextLoggerAdapter, Optional[JobMetrics]], Awaitable[None]]

STOP_MESSAGES = {
    ErrorKind.ACCESS_DENIED: "Runnabot has no access to an org",
    ErrorKind.RATE_LIMITED: "Runnabot has reached rate-limit",
    ErrorKind.INVALID_STATUS: "Notification preconditions failed",
    ErrorKind.PR_ACCESS_DENIED: "Org does not allow PR bot",
    ErrorKind.VALIDATION_FAILURE: "Invalid job",
}


class NotificationDispatcher:
    """Routes queue events to their notification handlers."""

    def __init__(
        self,
        settings,
        store: DocumentStore,
        queue: RedisClient,
        slack: SlackNotifier,
        organizations: Optional[OrganizationNotifier],
        bot_github_factory: Optional[Callable[[], GitHubClient]] = None,
        github_factory: Optional[Callable[[str], GitHubClient]] = None,
        renderer: Optional[GitHubBotMessage] = None,
    ):
        """
        Args:
            settings: Application settings (feature flags, bot login, URLs)
            store: Document store
            queue: Broker client used to publish follow-up tasks
            slack: Slack notifier
            organizations: Organization email notifier; None disables organization events
            bot_github_factory: Builds a GitHub client authenticated as the bot
            github_factory: Builds a GitHub client for a user access token
            renderer: Bot comment renderer
        """
        self.settings = settings
        self.store = store
        self.queue = queue
        self.slack = slack
        self.organizations = organizations
        self.bot_github_factory = bot_github_factory or (lambda: GitHubClient.for_bot(settings))
        self.github_factory = github_factory or (
            lambda token: GitHubClient(
                token,
                api_url=settings.github_api_url,
                timeout=settings.github_timeout_seconds,
            )
        )
        self.renderer = renderer or GitHubBotMessage.from_settings(settings)
        self.github_status = GitHubStatus(store, self.github_factory, settings.web_url)

        self.handlers: Dict[str, Handler] = {
            "github.bot.notify": self.handle_push_notification,
            "container.life-cycle.died": self.handle_container_died,
            "container.life-cycle.started": self.handle_container_started,
            "instance.deleted": self.handle_instance_deleted,
            "instance.deployed": self.handle_instance_deployed,
            "instance.updated": self.handle_instance_updated,
            "github.pull-request.opened": self.handle_pull_request_opened,
        }
        if organizations is not None:
            self.handlers.update(self.organization_handlers())

    def organization_handlers(self) -> Dict[str, Handler]:
        return {
            "organization.trial.ending": self.handle_trial_ending,
            "organization.trial.ended": self.handle_trial_ended,
            "organization.payment-method.added": self.handle_payment_method_added,
            "organization.payment-method.removed": self.handle_payment_method_removed,
            "organization.invoice.payment-failed": self.handle_invoice_payment_failed,
            "organization.user.added": self.handle_user_added,
            "organization.created": self.handle_organization_created,
        }

    @property
    def events(self) -> List[str]:
        return list(self.handlers)

    # ========== Boundary ==========

    async def dispatch(self, job: QueuedJob, metrics: Optional[JobMetrics] = None) -> None:
        """
        Handle one queue job.

        Raises:
            WorkerStopError: The job must be acknowledged and dropped
            Exception: Anything else; the worker retries the job
        """
        handler = self.handlers.get(job.event)
        if handler is None:
            raise WorkerStopError(f"No handler for event {job.event}", level="error")

        log = logger.with_context(job_id=job.job_id, event=job.event)
        try:
            await handler(job.payload, log, metrics)
        except NotificationError as e:
            self.stop_on_domain_error(e, log)
            raise

    def stop_on_domain_error(self, error: NotificationError, log: ContextLoggerAdapter) -> None:
        """
        Translate a domain error into a worker stop.

        Returns normally only for retryable errors, which the caller
        re-raises unchanged.

        Raises:
            WorkerStopError: For every non-retryable kind
        """
        context = dict(error.context)
        context["kind"] = error.kind.value
        context["err"] = error.message

        if error.kind is ErrorKind.TRANSIENT_FAILURE:
            log_error_with_context(log, "Notification failed, will retry", error, **context)
            return

        if error.kind is ErrorKind.RATE_LIMITED:
            emit_metric("github.rate_limited", 1)
            raise WorkerStopError(STOP_MESSAGES[error.kind], level="warning", context=context) from error

        if error.kind is ErrorKind.VALIDATION_FAILURE:
            raise WorkerStopError(STOP_MESSAGES[error.kind], level="error", context=context, report=False) from error

        message = STOP_MESSAGES[error.kind]
        if error.kind is ErrorKind.INVALID_STATUS:
            message = error.message
        raise WorkerStopError(message, level="info", context=context) from error

    @staticmethod
    def validate(model: Type[ModelT], payload: Dict[str, Any]) -> ModelT:
        """Parse a job payload, failing with VALIDATION_FAILURE."""
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise NotificationError.validation_failure(
                "Invalid job", cause=e, errors=e.errors(include_url=False)
            ) from e

    def _reconciler(self, github: GitHubClient, metrics: Optional[JobMetrics]) -> CommentReconciler:
        github.metrics = metrics
        return CommentReconciler(github, self.renderer, self.settings.runnabot_github_username, metrics)

    async def _find_user(self, github_id: Optional[int]) -> Optional[User]:
        if not github_id:
            return None
        return await self.store.find_user_by_github_id(github_id)

    async def _publish_bot_notify(self, push_event: PushEvent, instance: Instance) -> None:
        document = instance.to_document()
        if "contextVersions" not in document and "contextVersion" in document:
            document["contextVersions"] = [document["contextVersion"]]
        await self.queue.publish_github_bot_notify({
            "pushInfo": push_event.model_dump(mode="json", by_alias=True, exclude_none=True),
            "instance": document,
        })

    # ========== PR bot comments ==========

    async def handle_push_notification(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`github.bot.notify`: upsert the bot comment on every open PR of the pushed branch."""
        job = self.validate(GitHubBotNotifyJob, payload)
        instance = job.instance
        push_event = job.push_info
        log = log.with_context(repo=push_event.repo, branch=push_event.branch, instance_id=instance.id)

        if not self.settings.enable_github_pr_comments:
            log.info("GitHub PR comments disabled")
            return

        isolated_instances: List[Instance] = []
        if instance.is_isolation_group_master and instance.isolated:
            isolated_instances = await self.store.find_isolated_siblings(instance.isolated, instance.id)

        if not push_event.state:
            state = instance_state(instance)
            if state is None:
                log.info("Instance state cannot be determined, not notifying")
                return
            push_event = push_event.with_state(state.value)

        github = self.bot_github_factory()
        try:
            await self.check_pr_bot_enabled_and_accept_invite(github, instance.owner.username or push_event.owner, log)
            outcomes = await self._reconciler(github, metrics).upsert_all_for_branch(
                push_event, instance, isolated_instances
            )
        finally:
            await github.aclose()
        log.info("PR comments reconciled", extra={"outcomes": outcomes})

    async def check_pr_bot_enabled_and_accept_invite(
        self,
        github: GitHubClient,
        org_name: str,
        log: ContextLoggerAdapter = logger
    ) -> None:
        """
        Make sure the bot is a member of `org_name`.

        Orgs already flagged as PR bot enabled are trusted; otherwise the
        pending invitation is accepted and the org gets flagged.

        Raises:
            NotificationError: ACCESS_DENIED when the bot was never invited
        """
        org = await self.store.find_organization_by_name(org_name)
        if org is not None and org.pr_bot_enabled:
            return
        log.info("prBotEnabled not set, accepting invitation", extra={"org_name": org_name})
        await github.accept_org_invitation(org_name)
        if org is not None:
            await self.queue.enqueue_job(PRBOT_ENABLED_EVENT, {"organization": {"id": org.id}})

    async def handle_instance_updated(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`instance.updated`: schedule a bot notification for the instance."""
        job = self.validate(InstanceChangeJob, payload)
        push_event = push_info_for_instance(job.instance)
        if push_event is None:
            raise WorkerStopError(
                "Instance does not need to be notified",
                level="info",
                context={"instance_id": job.instance.id},
            )
        await self._publish_bot_notify(push_event, job.instance)

    async def handle_pull_request_opened(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`github.pull-request.opened`: schedule a notification for every instance of the PR branch."""
        job = self.validate(PullRequestOpenedJob, payload)
        log = log.with_context(repo=job.repo, branch=job.branch)
        instances = await self.store.find_instances(job.repo, job.branch)
        log.info(f"Found {len(instances)} instances for pull request branch")
        for instance in instances:
            push_event = push_info_for_instance(instance)
            if push_event is None:
                log.info("Instance should not be notified", extra={"instance_id": instance.id})
                continue
            await self._publish_bot_notify(push_event, instance)

    async def handle_instance_deleted(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`instance.deleted`: remove bot comments for whitelisted orgs."""
        job = self.validate(InstanceDeletedJob, payload)
        instance = job.instance
        if instance.owner.github not in self.settings.whitelisted_org_ids:
            return
        acv = instance.main_app_code_version()
        if acv is None:
            return
        log = log.with_context(repo=acv.repo, branch=acv.branch, instance_id=instance.id)

        github = self.bot_github_factory()
        try:
            reconciler = self._reconciler(github, metrics)
            if instance.master_pod:
                log.info("Deleting all notifications")
                await reconciler.delete_all_notifications(acv.repo)
            else:
                log.info("Deleting branch notifications")
                await reconciler.delete_branch_notifications(acv.repo, acv.branch)
        finally:
            await github.aclose()

    # ========== Deploys ==========

    async def handle_instance_deployed(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`instance.deployed`: Slack DM the pusher and post a GitHub deployment status."""
        job = self.validate(InstanceDeployedJob, payload)
        log = log.with_context(instance_id=job.instance_id)

        instance, cv = await asyncio.gather(
            self.store.find_instance(job.instance_id),
            self.store.find_context_version(job.cv_id),
        )
        if instance is None:
            raise WorkerStopError("Instance not found", level="info")
        if not instance.owner.username:
            raise WorkerStopError("Instance owner username was not found")
        if cv is None:
            raise WorkerStopError("ContextVersion not found", level="info")

        creator_id = instance.created_by.github if instance.created_by else None
        pusher_id = cv.created_by.github if cv.created_by else None
        instance_creator, push_user, org_settings = await asyncio.gather(
            self._find_user(creator_id),
            self._find_user(pusher_id),
            self.store.find_settings_by_owner(instance.owner.github),
        )
        if instance_creator is None:
            raise WorkerStopError("Instance creator not found", level="info")
        log.info("Found all the data for the deployed instance")

        active_user = push_user or instance_creator
        triggered = cv.build.triggered_action
        push_event = triggered.app_code_version if triggered else None

        if org_settings is not None and push_user is not None and push_event is not None:
            try:
                await self.slack.notify_on_auto_deploy(org_settings, push_event, push_user.github_username, instance)
                log.info("Slack notification success")
            except NotificationError as e:
                log_error_with_context(log, "Slack notification error", e)

        token = active_user.github_access_token
        if push_event is not None and push_event.commit and token:
            github = self.github_factory(token)
            try:
                deploy = GitHubDeploy(github, self.settings.web_url, self.settings.enable_github_deployment_statuses)
                await deploy.deployment_succeeded(push_event, instance)
            finally:
                await github.aclose()

    # ========== Commit statuses ==========

    async def handle_container_started(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`container.life-cycle.started`: mark commits of testing instances pending."""
        job = self.validate(ContainerLifeCycleJob, payload)
        container_type = job.container_type
        if container_type not in (USER_CONTAINER, IMAGE_BUILDER_CONTAINER):
            return

        cv_id = job.context_version_id
        cv = await self.store.find_context_version(cv_id)
        if cv is None or not cv.context:
            raise WorkerStopError(
                "Could not find context version by id", level="info", context={"cv_id": cv_id}, report=False
            )
        instances = await self.store.find_testing_instances_by_context(cv.context)
        if not instances:
            raise WorkerStopError(
                "Testing instance not found with context version id",
                level="info",
                context={"cv_id": cv_id},
                report=False,
            )

        description = TESTS_RUNNING if container_type == USER_CONTAINER else TEST_CONTAINER_BUILDING
        for instance in instances:
            main_acv = instance.main_app_code_version()
            if main_acv is None:
                raise WorkerStopError("Instance is not a repo based instance", level="info", report=False)
            log.info("Populating github status for instance", extra={"instance_id": instance.id})
            await self.github_status.set_status(instance, main_acv, CommitStatusState.PENDING, description)

    async def handle_container_died(
        self,
        payload: Dict[str, Any],
        log: ContextLoggerAdapter = logger,
        metrics: Optional[JobMetrics] = None
    ) -> None:
        """`container.life-cycle.died`: report the test result of testing instances."""
        job = self.validate(ContainerLifeCycleJob, payload)
        if job.inspect_data is None:
            return
        container_type = job.container_type
        if container_type not in (USER_CONTAINER, IMAGE_BUILDER_CONTAINER):
            return

        cv_id = job.context_version_id
        instances = await self.store.find_testing_instances_by_context_version(cv_id)
        if not instances:
            raise WorkerStopError(
                "Testing instance not found with context version id", level="info", context={"cv_id": cv_id}
            )

        for instance in instances:
            container = instance.primary_container
            docker_container = container.docker_container if container else None
            if container_type == USER_CONTAINER and docker_container and docker_container != job.inspect_data.id:
                raise WorkerStopError("User container is not attached to instance", level="info")
            main_acv = instance.main_app_code_version()
            if main_acv is None:
                raise WorkerStopError("Instance is not a repo based instance", level="info")
            state = calculate_status(job)
            if state is None:
                log.debug("Calculated status is null, not reporting")
                continue
            log.info("Populating github status for instance", extra={"instance_id": instance.id})
            await self.github_status.set_status(instance, main_acv, state)

    # ========== Organization emails ==========

    async def handle_trial_ending(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.trial_ending(self.validate(TrialEventJob, payload))

    async def handle_trial_ended(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.trial_ended(self.validate(TrialEventJob, payload))

    async def handle_payment_method_added(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.payment_method_added(self.validate(PaymentMethodChangeJob, payload))

    async def handle_payment_method_removed(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.payment_method_removed(self.validate(PaymentMethodChangeJob, payload))

    async def handle_invoice_payment_failed(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.invoice_payment_failed(self.validate(InvoicePaymentFailedJob, payload))

    async def handle_user_added(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.user_added(self.validate(UserAddedJob, payload))

    async def handle_organization_created(self, payload, log=logger, metrics=None) -> None:
        await self.organizations.organization_created(self.validate(OrganizationCreatedJob, payload))
