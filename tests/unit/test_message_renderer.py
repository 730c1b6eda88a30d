"""
Unit tests for the GitHub bot message renderer.
"""

import pytest

from notifier.models.instance import Instance
from notifier.models.push_event import PushEvent
from notifier.services.message_renderer import (
    FAILED_ICON,
    STATUS_ICONS,
    GitHubBotMessage,
    cleanup_instance_name,
    default_port,
    direct_hostname,
    format_instance_name,
    render_status_icon,
)


def make_instance(name: str, branch: str = "feature-1", **extra) -> Instance:
    doc = {
        "name": name,
        "owner": {"github": 42, "username": "codenow"},
        "contextVersions": [{"appCodeVersions": [{"repo": "codenow/hellonode", "branch": branch}]}],
    }
    doc.update(extra)
    return Instance.model_validate(doc)


@pytest.fixture
def renderer() -> GitHubBotMessage:
    return GitHubBotMessage(web_url="https://app.runnable.io", user_content_domain="runnableapp.com")


@pytest.fixture
def push_event() -> PushEvent:
    return PushEvent(repo="codenow/hellonode", branch="feature-1", number=3, state="running")


class TestInstanceNames:
    """Test instance name formatting."""
    
    def test_cleanup_drops_hash_prefix(self):
        assert cleanup_instance_name("ga71a12--feature-1-hellonode") == "feature-1-hellonode"
        assert cleanup_instance_name("hellonode") == "hellonode"
    
    def test_branch_instance_name(self):
        """Test branch instances render as '<master>/<branch>'."""
        assert format_instance_name(make_instance("feature-1-hellonode")) == "hellonode/feature-1"
    
    def test_branch_with_slash(self):
        instance = make_instance("feature-login-hellonode", branch="feature/login")
        
        assert format_instance_name(instance) == "hellonode/feature/login"
    
    def test_name_without_branch_prefix(self):
        assert format_instance_name(make_instance("hellonode")) == "hellonode"
    
    def test_branch_with_punctuation(self):
        """Test dots and underscores in the branch match dashes in the name."""
        instance = make_instance("fix-bug-v2-hellonode", branch="fix_bug.v2")
        
        assert format_instance_name(instance) == "hellonode/fix_bug.v2"


class TestContainerUrl:
    """Test container hostnames and ports."""
    
    def test_direct_hostname_for_master(self):
        instance = make_instance("feature-1-hellonode", shortHash="GA71A12", masterPod=True)
        
        assert direct_hostname(instance, "runnableapp.com") == "ga71a12-feature-1-hellonode-staging-codenow.runnableapp.com"
    
    def test_direct_hostname_cleans_child_name(self):
        instance = make_instance("ga71a12--feature-1-hellonode", shortHash="e4rov2")
        
        assert direct_hostname(instance, "runnableapp.com") == "e4rov2-feature-1-hellonode-staging-codenow.runnableapp.com"
    
    def test_default_port_skipped_for_port_80(self):
        instance = make_instance("api", containers=[{"ports": {"3000/tcp": [], "80/tcp": []}}])
        
        assert default_port(instance) == ""
    
    def test_default_port_uses_first_port(self):
        instance = make_instance("api", containers=[{"ports": {"3000/tcp": [], "8080/tcp": []}}])
        
        assert default_port(instance) == ":3000"
    
    def test_default_port_without_container(self):
        assert default_port(make_instance("api")) == ""
    
    def test_default_port_with_null_ports(self):
        instance = make_instance("api", containers=[{"ports": None}])
        
        assert default_port(instance) == ""


class TestStatusIcons:
    """Test status icon selection."""
    
    @pytest.mark.parametrize("state", ["running", "stopped", "building"])
    def test_known_states(self, state):
        assert render_status_icon(state) == STATUS_ICONS[state]
    
    @pytest.mark.parametrize("state", ["failed", "bogus", None])
    def test_unknown_states_render_as_failed(self, state):
        assert render_status_icon(state) == FAILED_ICON


class TestRender:
    """Test full comment rendering."""
    
    def test_render_master_instance(self, renderer, push_event):
        """Test a running master instance without isolated siblings."""
        instance = make_instance("feature-1-hellonode", shortHash="ga71a12", masterPod=True)
        
        message = renderer.render(push_event, instance)
        
        assert message.startswith("Deployed " + STATUS_ICONS["running"] + " ")
        assert "[hellonode/feature-1](http://ga71a12-feature-1-hellonode-staging-codenow" in message
        assert "[View on Runnable](https://app.runnable.io/codenow/feature-1-hellonode)." in message
        assert message.endswith("\n<sub>*From [Runnable](http://runnable.com)*</sub>")
    
    def test_render_with_isolated_instances(self, renderer, push_event):
        """Test isolated siblings are linked in the footer."""
        instance = make_instance("feature-1-hellonode", shortHash="ga71a12", masterPod=True)
        siblings = [make_instance("feature-1-mongo"), make_instance("redis")]
        
        message = renderer.render(push_event, instance, siblings)
        
        assert (
            "\n<sub>Related containers: "
            "[mongo/feature-1](https://app.runnable.io/codenow/feature-1-mongo), "
            "[redis](https://app.runnable.io/codenow/redis)"
            "*— From [Runnable](http://runnable.com)*</sub>"
        ) in message
    
    def test_render_is_deterministic(self, renderer, push_event):
        instance = make_instance("feature-1-hellonode", shortHash="ga71a12", masterPod=True)
        
        assert renderer.render(push_event, instance) == renderer.render(push_event, instance)
    
    def test_render_uses_configured_protocol(self, push_event):
        renderer = GitHubBotMessage("https://app.runnable.io", "runnableapp.com", container_url_protocol="https")
        instance = make_instance("hellonode", shortHash="ga71a12", masterPod=True)
        
        assert "(https://ga71a12-hellonode-staging-codenow.runnableapp.com)" in renderer.render(push_event, instance)
    
    def test_render_container_with_null_ports(self, renderer, push_event):
        """Test a container document with null ports renders without a port."""
        instance = make_instance(
            "hellonode",
            shortHash="ga71a12",
            masterPod=True,
            containers=[{"ports": None, "inspect": {"State": {"Status": "running"}}}],
        )
        
        message = renderer.render(push_event, instance)
        
        assert "(http://ga71a12-hellonode-staging-codenow.runnableapp.com)" in message
