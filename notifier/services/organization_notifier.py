"""
Organization billing and membership emails.

Each handler resolves recipients in the document store and sends one
email copy. Missing recipients and email API failures stop the job.
"""

from typing import List

from notifier.models.error import NotificationError, WorkerStopError
from notifier.models.jobs import (
    InvoicePaymentFailedJob,
    OrganizationCreatedJob,
    PaymentMethodChangeJob,
    TrialEventJob,
    UserAddedJob,
)
from notifier.services.document_store import DocumentStore
from notifier.services.email import SendGridClient
from notifier.utils.logging import get_logger

logger = get_logger(__name__)


class OrganizationNotifier:
    """Sends organization lifecycle emails."""

    def __init__(self, store: DocumentStore, sendgrid: SendGridClient):
        self.store = store
        self.sendgrid = sendgrid

    async def get_all_user_emails(self, org_id: int) -> List[str]:
        """Emails of every member of the organization."""
        org = await self.store.find_organization(org_id)
        if org is None:
            return []
        return await self.store.find_user_emails_by_github_ids(org.member_github_ids)

    async def get_user_email(self, github_id: int) -> str:
        user = await self.store.find_user_by_github_id(github_id)
        if user is None:
            raise WorkerStopError("User did not exist on github", context={"github_id": github_id})
        if not user.email:
            raise WorkerStopError("User does not have an email", context={"github_id": github_id})
        return user.email

    async def _all_member_emails(self, org_id: int) -> List[str]:
        emails = await self.get_all_user_emails(org_id)
        logger.debug("Fetched all emails for organization", extra={"org_id": org_id, "count": len(emails)})
        if not emails:
            raise WorkerStopError("No email addresses found for organization", context={"org_id": org_id})
        return emails

    @staticmethod
    def _email_failed(error: NotificationError) -> WorkerStopError:
        return WorkerStopError("Failed to send email", context={"err": str(error)})

    async def trial_ending(self, job: TrialEventJob) -> None:
        emails = await self._all_member_emails(job.organization.id)
        try:
            await self.sendgrid.trial_ending(job.organization.name, emails)
        except NotificationError as e:
            raise self._email_failed(e) from e

    async def trial_ended(self, job: TrialEventJob) -> None:
        emails = await self._all_member_emails(job.organization.id)
        try:
            await self.sendgrid.trial_ended(job.organization.name, emails)
        except NotificationError as e:
            raise self._email_failed(e) from e

    async def payment_method_added(self, job: PaymentMethodChangeJob) -> None:
        email = await self.get_user_email(job.payment_method_owner.github_id)
        try:
            await self.sendgrid.payment_method_added(job.organization.name, email)
        except NotificationError as e:
            raise self._email_failed(e) from e

    async def payment_method_removed(self, job: PaymentMethodChangeJob) -> None:
        email = await self.get_user_email(job.payment_method_owner.github_id)
        try:
            await self.sendgrid.payment_method_removed(job.organization.name, email)
        except NotificationError as e:
            raise self._email_failed(e) from e

    async def invoice_payment_failed(self, job: InvoicePaymentFailedJob) -> None:
        """
        First failure goes to the payment method owner; once the invoice
        has been failing for 24 hours every member is told.
        """
        try:
            if not job.invoice_payment_has_failed_for_24_hours:
                email = await self.get_user_email(job.payment_method_owner.github_id)
                await self.sendgrid.billing_error_to_admin(job.organization.name, email)
                return
            emails = await self._all_member_emails(job.organization.id)
            await self.sendgrid.billing_error_to_all_members(job.organization.name, emails)
        except NotificationError as e:
            raise self._email_failed(e) from e

    async def user_added(self, job: UserAddedJob) -> None:
        org = await self.store.find_organization(job.organization.id)
        if org is None:
            raise WorkerStopError("Org does not exist", level="info", context={"org_id": job.organization.id})
        if not org.is_active:
            raise WorkerStopError("Org has been disabled", level="info", context={"org_id": org.id})
        if org.creator is not None and org.creator.id == job.user.id:
            raise WorkerStopError(
                "This is the organization creator. Welcome email already sent",
                level="info",
                context={"org_id": org.id},
            )
        user = await self.store.find_user_by_github_id(job.user.github_id)
        username = user.github_username if user else None
        if not username:
            raise WorkerStopError("User does not exist or does not have a username")
        if not user.email:
            raise WorkerStopError("User does not exist or does not have an email")
        try:
            await self.sendgrid.user_added_to_organization(org.name, user.email, username)
        except NotificationError as e:
            raise self._email_failed(e) from e

    async def organization_created(self, job: OrganizationCreatedJob) -> None:
        user = await self.store.find_user_by_github_id(job.creator.github_id)
        if user is None or not user.email:
            raise WorkerStopError("Organization creator does not exist or does not have an email")
        try:
            await self.sendgrid.welcome_email_for_organization(
                job.organization.name, user.email, job.creator.github_username
            )
        except NotificationError as e:
            raise self._email_failed(e) from e
