"""
Transactional organization emails through the SendGrid v3 API.

Copy templates use `%key%` placeholders that are substituted before the
message is sent.
"""

from typing import Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel

from notifier.models.error import NotificationError
from notifier.utils.logging import get_logger
from notifier.utils.metrics import track_api_call

logger = get_logger(__name__)


class EmailCopy(BaseModel):
    subject: str
    body: str


PAYMENT_METHOD_ADDED = EmailCopy(
    subject="Your payment method has been added",
    body=(
        "Your payment info has been added to %organizationName%.\n\n"
        "We’ll charge future payments to your card for %organizationName%. You can update your card "
        "anytime from Runnable, or with the button below. Thanks for waiting! Now the "
        "%organizationName% environment is good to go."
    ),
)

PAYMENT_METHOD_REMOVED = EmailCopy(
    subject="Your payment method has been removed",
    body=(
        "Your payment info has been removed from %organizationName%.\n\n"
        "Just wanted to let you know that your payment info has been removed by someone else on your "
        "team and your card will not be charged on the next bill."
    ),
)

TRIAL_ENDING = EmailCopy(
    subject="Your free trial is ending in 3 days.",
    body=(
        "Your free trial is ending in 3 days.\n\n"
        "Upgrade your plan so you and the rest of the %organizationName% org can keep using Runnable."
    ),
)

TRIAL_ENDED = EmailCopy(
    subject="Your free trial has ended.",
    body=(
        "Your free trial has ended.\n\n"
        "%organizationName%‘s account on Runnable has been paused. But don’t worry; we’ll keep "
        "everything just as you left it. Upgrade your plan to pick up right where you left off."
    ),
)

BILLING_ERROR_ADMIN = EmailCopy(
    subject="Your payment has been declined.",
    body=(
        "Your payment has been declined.\n\n"
        "We tried to process the subscription for %organizationName% using the card you supplied, "
        "but it was declined.\n\n"
        "Please update it soon to ensure uninterrupted service. If we don’t receive payment within "
        "72 hours, we’ll pause your containers until the balance is paid."
    ),
)

BILLING_ERROR_ALL = EmailCopy(
    subject="Your payment has been declined.",
    body=(
        "Your payment has been declined.\n\n"
        "We tried to process the subscription for %organizationName%, but the card was declined.\n\n"
        "Please update it soon to ensure uninterrupted service. If we don’t receive payment within "
        "48 hours, we’ll pause your containers until the balance is paid."
    ),
)

WELCOME_EMAIL_FOR_ORGANIZATION = EmailCopy(
    subject="Welcome to Runnable!",
    body=(
        "Hi %userName%,\n\n"
        "Thanks for signing up! We’re very excited for you to begin accelerating %organizationName%’s "
        "development with full-stack environments for every branch.\n\n"
        "Your full-featured trial is free for the next 14 days. Simply add a payment method under the "
        "Settings menu to continue using Runnable without interruption.\n\n"
        "While you’re getting set up, check out our Documentation for answers to common questions and "
        "examples for setting up popular stacks. Our Dev-Ops experts are here to help in case you get "
        "stuck. Reach us via the in-app chat messenger or by replying to this email.\n\n"
        "Cheers,\n\n"
        "Team Runnable\n"
    ),
)

USER_ADDED_TO_ORG = EmailCopy(
    subject="Welcome to Runnable!",
    body=(
        "Hi %userName%,\n\n"
        "Welcome to %organizationName%’s team on Runnable! We’re very excited for you to accelerate "
        "your development with full-stack environments for every branch.\n\n"
        "As you’re exploring our features, check out our Documentation for answers to common questions "
        "and examples for setting up popular stacks. Our Dev-Ops experts are here to help in case you "
        "get stuck. Reach us via the in-app chat messenger or by replying to this email.\n\n"
        "Cheers,\n\n"
        "Team Runnable"
    ),
)


def substitute(text: str, substitutions: Dict[str, Optional[str]]) -> str:
    """Replace `%key%` placeholders; None values are left untouched."""
    for key, value in substitutions.items():
        if value is not None:
            text = text.replace(key, value)
    return text


class SendGridClient:
    """Sends emails through the SendGrid v3 mail API."""

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str,
        api_url: str = "https://api.sendgrid.com/v3",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Raises:
            ValueError: If no API key is configured
        """
        if not api_key:
            raise ValueError("Configuration error: SendGrid key is not defined")
        self.sender_email = sender_email
        self.sender_name = sender_name
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "SendGridClient":
        return cls(
            api_key=settings.sendgrid_key,
            sender_email=settings.sendgrid_sender_email,
            sender_name=settings.sendgrid_sender_name,
            api_url=settings.sendgrid_api_url,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send_email(
        self,
        recipients: Sequence[str],
        copy: EmailCopy,
        substitutions: Dict[str, Optional[str]]
    ) -> None:
        """
        Send one email per recipient.

        Args:
            recipients: Email addresses; each gets a separate personalization
            copy: Subject and body template
            substitutions: Placeholder values, e.g. {'%organizationName%': 'acme'}

        Raises:
            NotificationError: TRANSIENT_FAILURE when SendGrid rejects the request
        """
        body = substitute(copy.body, substitutions)
        payload = {
            "personalizations": [{"to": [{"email": email}]} for email in recipients],
            "from": {"email": self.sender_email, "name": self.sender_name},
            "subject": substitute(copy.subject, substitutions),
            "content": [
                {"type": "text/plain", "value": body},
                {"type": "text/html", "value": body.replace("\n", "<br>")},
            ],
        }
        logger.info("sendEmail", extra={"subject": payload["subject"], "recipients": len(recipients)})
        try:
            async with track_api_call(None, "sendgrid", "POST", "/mail/send", logger):
                response = await self._client.post("/mail/send", json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError.transient("Failed to send email", cause=e, subject=payload["subject"]) from e

    async def trial_ending(self, organization_name: str, emails: List[str]) -> None:
        await self.send_email(emails, TRIAL_ENDING, {"%organizationName%": organization_name})

    async def trial_ended(self, organization_name: str, emails: List[str]) -> None:
        await self.send_email(emails, TRIAL_ENDED, {"%organizationName%": organization_name})

    async def payment_method_added(self, organization_name: str, email: str) -> None:
        await self.send_email([email], PAYMENT_METHOD_ADDED, {"%organizationName%": organization_name})

    async def payment_method_removed(self, organization_name: str, email: str) -> None:
        await self.send_email([email], PAYMENT_METHOD_REMOVED, {"%organizationName%": organization_name})

    async def billing_error_to_admin(self, organization_name: str, email: str) -> None:
        await self.send_email([email], BILLING_ERROR_ADMIN, {"%organizationName%": organization_name})

    async def billing_error_to_all_members(self, organization_name: str, emails: List[str]) -> None:
        await self.send_email(emails, BILLING_ERROR_ALL, {"%organizationName%": organization_name})

    async def welcome_email_for_organization(self, organization_name: str, email: str, username: str) -> None:
        await self.send_email(
            [email],
            WELCOME_EMAIL_FOR_ORGANIZATION,
            {"%organizationName%": organization_name, "%userName%": username},
        )

    async def user_added_to_organization(self, organization_name: str, email: str, username: str) -> None:
        await self.send_email(
            [email],
            USER_ADDED_TO_ORG,
            {"%organizationName%": organization_name, "%userName%": username},
        )
