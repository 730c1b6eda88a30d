"""
GitHub bot message renderer.

Renders the markdown body of the bot comment posted on pull requests.
Rendering is deterministic: identical inputs always produce byte-identical
output, which is what lets the reconciler skip unchanged comments.
"""

import re
from typing import Callable, List, Optional, Sequence

from notifier.models.instance import Instance
from notifier.models.push_event import LifecycleState, PushEvent

ICON_TEMPLATE = '<img src="https://s3-us-west-1.amazonaws.com/runnable-design/status-{color}.svg" title="{title}" width="9" height="9">'

STATUS_ICONS = {
    LifecycleState.RUNNING.value: ICON_TEMPLATE.format(color="green", title="Running"),
    LifecycleState.STOPPED.value: ICON_TEMPLATE.format(color="gray", title="Stopped"),
    LifecycleState.BUILDING.value: ICON_TEMPLATE.format(color="orange", title="Building"),
}
FAILED_ICON = ICON_TEMPLATE.format(color="red", title="Failed")

ATTRIBUTION = "From [Runnable](http://runnable.com)*</sub>"

HostnameFormatter = Callable[[Instance, str], str]


def create_link(title: str, url: str) -> str:
    """Markdown link."""
    return f"[{title}]({url})"


def render_status_icon(state: Optional[str]) -> str:
    """Icon for a lifecycle state; anything unknown renders as failed."""
    if state is None:
        return FAILED_ICON
    return STATUS_ICONS.get(str(getattr(state, "value", state)), FAILED_ICON)


def cleanup_instance_name(instance_name: str) -> str:
    """Drop a '<shortHash>--' prefix: everything after the first '--'."""
    _, sep, rest = instance_name.partition("--")
    if not sep:
        return instance_name
    return rest


def instance_ports(instance: Instance) -> List[str]:
    """Exposed ports of the primary container without the transport suffix."""
    container = instance.primary_container
    if container is None or not container.ports:
        return []
    return [port.split("/")[0] for port in container.ports]


def default_port(instance: Instance) -> str:
    """':<port>' suffix for the container URL, empty when port 80 is exposed."""
    ports = instance_ports(instance)
    if ports and "80" not in ports:
        return f":{ports[0]}"
    return ""


def get_branch_name(instance: Instance) -> Optional[str]:
    acv = instance.main_app_code_version()
    return acv.branch if acv else None


def _name_key(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", name.lower())


def format_instance_name(instance: Instance) -> str:
    """
    Human readable instance name.

    Branch instances are named '<branch>-<masterName>'; those render as
    '<masterName>/<branch>'. Anything else renders as the cleaned name.
    Punctuation in the branch may have been replaced by '-' in the
    instance name, so the prefix is compared on letters and digits only.
    """
    instance_name = cleanup_instance_name(instance.name)
    branch_name = get_branch_name(instance)
    if not branch_name:
        return instance_name
    branch_prefix = branch_name + "-"
    if not _name_key(instance_name).startswith(_name_key(branch_prefix)):
        return instance_name
    master_name = instance_name[len(branch_prefix):]
    return f"{master_name}/{branch_name}"


def direct_hostname(instance: Instance, user_content_domain: str) -> str:
    """
    Direct hostname of an instance's container.

    '<shortHash>-<name>-staging-<owner>.<domain>', lower-cased.
    """
    owner = instance.owner.username or ""
    name = instance.name if instance.master_pod else cleanup_instance_name(instance.name)
    parts = [p for p in (instance.short_hash, name) if p]
    host = "-".join(parts) + f"-staging-{owner}.{user_content_domain}"
    return host.lower()


class GitHubBotMessage:
    """Renders GitHub bot comments for deployed instances."""

    def __init__(
        self,
        web_url: str,
        user_content_domain: str,
        container_url_protocol: str = "http",
        hostname_formatter: HostnameFormatter = direct_hostname,
    ):
        self.web_url = web_url.rstrip("/")
        self.user_content_domain = user_content_domain
        self.container_url_protocol = container_url_protocol
        self.hostname_formatter = hostname_formatter

    @classmethod
    def from_settings(cls, settings) -> "GitHubBotMessage":
        return cls(
            web_url=settings.web_url,
            user_content_domain=settings.user_content_domain,
            container_url_protocol=settings.container_url_protocol,
        )

    def instance_url(self, instance: Instance) -> str:
        return f"{self.web_url}/{instance.owner.username}/{instance.name}"

    def container_url(self, instance: Instance) -> str:
        host = self.hostname_formatter(instance, self.user_content_domain)
        return f"{self.container_url_protocol}://{host}{default_port(instance)}"

    def render(
        self,
        push_event: PushEvent,
        instance: Instance,
        isolated_instances: Optional[Sequence[Instance]] = None
    ) -> str:
        """
        Render the comment body.

        Args:
            push_event: Push the instance was deployed from
            instance: Deployed instance
            isolated_instances: Other instances of the isolation group

        Returns:
            Markdown comment body
        """
        message = "Deployed "
        message += render_status_icon(push_event.state) + " "
        message += create_link(format_instance_name(instance), self.container_url(instance))
        message += ". "
        message += create_link("View on Runnable", self.instance_url(instance))
        message += "."
        message += self.render_footer(isolated_instances)
        return message

    def render_footer(self, isolated_instances: Optional[Sequence[Instance]]) -> str:
        isolated_links = self.render_isolated_instances(isolated_instances)
        if not isolated_links:
            return "\n<sub>*" + ATTRIBUTION
        return "\n" + isolated_links + "*— " + ATTRIBUTION

    def render_isolated_instances(self, isolated_instances: Optional[Sequence[Instance]]) -> str:
        if not isolated_instances:
            return ""
        links = [
            create_link(format_instance_name(sibling), self.instance_url(sibling))
            for sibling in isolated_instances
        ]
        return "<sub>Related containers: " + ", ".join(links)
