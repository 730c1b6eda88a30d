"""
Slack direct messages for deployment events.

SlackClient talks to the Slack Web API with an org's bot token;
SlackNotifier decides who gets a message and suppresses repeats.
"""

import hashlib
import json
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from notifier.models.account import OrgSettings
from notifier.models.error import NotificationError
from notifier.models.instance import Instance
from notifier.models.push_event import Commit, PushEvent
from notifier.services.message_tracker import MessageTracker
from notifier.utils.logging import get_logger
from notifier.utils.metrics import emit_metric, track_api_call

logger = get_logger(__name__)

REF_SLACK = "ref=slack"
COMMIT_MESSAGE_LENGTH = 50


class SlackClient:
    """Minimal async Slack Web API client."""

    def __init__(
        self,
        api_token: str,
        api_url: str = "https://slack.com/api",
        username: Optional[str] = None,
        icon_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.username = username
        self.icon_url = icon_url
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/") + "/",
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SlackClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with track_api_call(None, "slack", "POST", method, logger):
                response = await self._client.post(method, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError.transient(f"Slack {method} failed", cause=e, method=method) from e
        data = response.json()
        if not data.get("ok"):
            raise NotificationError.transient(
                f"Slack {method} failed", method=method, slack_error=data.get("error")
            )
        return data

    async def open_private_channel(self, slack_user_id: str) -> Optional[str]:
        """Open (or reuse) the IM channel with a user and return its id."""
        data = await self._call("conversations.open", {"users": slack_user_id})
        return (data.get("channel") or {}).get("id")

    async def send_channel_message(self, channel_id: str, message: Dict[str, Any]) -> Dict[str, Any]:
        """Post `message` to a channel as the bot user."""
        payload = dict(message)
        payload["channel"] = channel_id
        payload["username"] = self.username
        payload["icon_url"] = self.icon_url
        return await self._call("chat.postMessage", payload)

    async def send_private_message(self, slack_user_id: str, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        logger.info("sendPrivateMessage", extra={"slack_user_id": slack_user_id})
        channel_id = await self.open_private_channel(slack_user_id)
        if not channel_id:
            return None
        return await self.send_channel_message(channel_id, message)


def create_slack_link(url: str, title: str) -> str:
    return f"<{url}|{title}>"


def slack_escape(text: str) -> str:
    """Slack escaping: only &, < and > need replacing."""
    return text.replace("&", "&amp").replace("<", "&lt").replace(">", "&gt")


def _letter_or_space(match) -> str:
    char = match.group(0)
    return "A" if char.upper() != char.lower() else " "


def prune(text: str, length: int, prune_str: str = "...") -> str:
    """
    Cut `text` to at most `length` chars on a word boundary and append `prune_str`.

    The result may be up to len(prune_str) longer than `length`. Text that
    would not get shorter is returned unchanged.
    """
    if len(text) <= length:
        return text
    # letters of the trailing word become 'A', anything else a space
    template = re.sub(r".(?=\W*\w*\Z)", _letter_or_space, text[:length + 1], flags=re.ASCII)
    if re.fullmatch(r"\w\w", template[-2:], flags=re.ASCII):
        template = re.sub(r"\s*\S+\Z", "", template)
    else:
        template = template[:-1].rstrip()
    if len(template + prune_str) > len(text):
        return text
    return text[:len(template)] + prune_str


def commit_message_cleanup(message: str) -> str:
    """Collapse a commit message to one line pruned at 50 chars."""
    one_line = " ".join(message.splitlines())
    return prune(one_line, COMMIT_MESSAGE_LENGTH).strip()


class AutoDeployText:
    """Builds the auto deploy message text."""

    def __init__(self, web_url: str, full_api_domain: str):
        self.web_url = web_url.rstrip("/")
        self.full_api_domain = full_api_domain.rstrip("/")

    def wrap_github_link(self, url: str) -> str:
        return f"{self.full_api_domain}/actions/redirect?url={quote(url, safe='')}"

    def server_link(self, instance: Instance) -> str:
        url = f"{self.web_url}/{instance.owner.username}/{instance.name}?{REF_SLACK}"
        return create_slack_link(url, instance.name)

    def more_changes(self, repo: str, commits: List[Commit]) -> str:
        if len(commits) <= 1:
            return ""
        first_id = commits[0].id[:12]
        last_id = commits[-1].id[:12]
        target = f"https://github.com/{repo}/compare/{first_id}...{last_id}"
        return f" and <{self.wrap_github_link(target)}|{len(commits) - 1} more>"

    def render(self, push_event: PushEvent, instance: Instance) -> str:
        commits = list(push_event.commit_log)
        head = commits[-1] if commits else Commit(id=push_event.commit or "")
        if not commits:
            commits = [head]
        head_url = head.url or f"https://github.com/{push_event.repo}/commit/{head.id}"

        text = "Your " + create_slack_link(self.wrap_github_link(head_url), "changes")
        text += " (" + slack_escape(commit_message_cleanup(head.message))
        text += self.more_changes(push_event.repo, commits) + ") to "
        text += f"{push_event.repo} ({push_event.branch})"
        text += " are deployed on " + self.server_link(instance)
        return text


def create_auto_deploy_text(push_event: PushEvent, instance: Instance, web_url: str, full_api_domain: str) -> str:
    return AutoDeployText(web_url, full_api_domain).render(push_event, instance)


def message_key(slack_id: str, message: Dict[str, Any]) -> str:
    """Stable hash of a (recipient, message) pair."""
    raw = json.dumps({"slackId": slack_id, "message": message}, sort_keys=True)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class SlackNotifier:
    """Sends deployment DMs to users through their org's Slack bot."""

    def __init__(
        self,
        settings,
        tracker: MessageTracker,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Application settings
            tracker: Dedup cache shared by every job of the process
            transport: Optional httpx transport for the Slack clients
        """
        self.settings = settings
        self.tracker = tracker
        self.transport = transport
        self.text = AutoDeployText(settings.web_url, settings.full_api_domain)

    def can_send_message(self, org_settings: OrgSettings) -> bool:
        slack = org_settings.slack
        return bool(self.settings.enable_slack_messages and slack and slack.enabled)

    def _client(self, api_token: str) -> SlackClient:
        return SlackClient(
            api_token,
            api_url=self.settings.slack_api_url,
            username=self.settings.slack_bot_username,
            icon_url=self.settings.slack_bot_image,
            transport=self.transport,
        )

    async def send_direct_message(
        self,
        org_settings: OrgSettings,
        github_username: str,
        message: Dict[str, Any]
    ) -> bool:
        """
        DM the Slack user mapped to `github_username`.

        Returns:
            True when a message was sent; False when the user has no Slack
            mapping or the same message was sent recently

        Raises:
            NotificationError: Slack API failure
        """
        slack = org_settings.slack
        slack_id = slack.github_username_to_slack_id_map.get(github_username) if slack else None
        if not slack_id or not slack.api_token:
            logger.debug("No slack mapping for user", extra={"github_username": github_username})
            return False

        key = message_key(slack_id, message)
        if self.tracker.get(key):
            logger.info("Same slack message was sent recently", extra={"github_username": github_username})
            return False

        async with self._client(slack.api_token) as client:
            await client.send_private_message(slack_id, message)
        self.tracker.set(key, True)
        return True

    async def notify_on_auto_deploy(
        self,
        org_settings: OrgSettings,
        push_event: PushEvent,
        github_username: Optional[str],
        instance: Optional[Instance]
    ) -> bool:
        """DM the pusher that their commit was auto deployed."""
        if not self.can_send_message(org_settings) or instance is None or not github_username:
            return False
        message = {"text": self.text.render(push_event, instance)}
        sent = await self.send_direct_message(org_settings, github_username, message)
        emit_metric("slack.deploy", 1, github_username=github_username)
        return sent
