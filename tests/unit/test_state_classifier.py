"""
Unit tests for the instance state classifier.
"""

import pytest

from notifier.models.instance import Container, ContextVersion, Instance
from notifier.models.push_event import LifecycleState
from notifier.services.state_classifier import classify, instance_state, push_info_for_instance


def build_context(**build) -> ContextVersion:
    return ContextVersion.model_validate({"build": build})


def container(status: str) -> Container:
    return Container.model_validate({"inspect": {"State": {"Status": status}}})


class TestClassify:
    """Test classification of build context / container pairs."""
    
    def test_completed_build_with_exited_container_is_stopped(self):
        """Test a completed build whose container exited."""
        assert classify(build_context(failed=False, completed=1000), container("exited")) == LifecycleState.STOPPED
    
    def test_started_build_without_container_is_building(self):
        """Test a build that has only started."""
        cv = ContextVersion.model_validate({"state": "build_started", "build": {}})
        
        assert classify(cv, None) == LifecycleState.BUILDING
    
    def test_completed_build_with_running_container_is_running(self):
        assert classify(build_context(completed=1000), container("running")) == LifecycleState.RUNNING
    
    def test_completed_build_without_container_is_running(self):
        assert classify(build_context(completed="2016-05-01T00:00:00Z"), None) == LifecycleState.RUNNING
    
    @pytest.mark.parametrize("status", [None, "exited", "running"])
    def test_failed_wins_over_completed(self, status):
        """Test a failed build is failed whatever else is set."""
        cont = container(status) if status else None
        
        assert classify(build_context(failed=True, completed=1000), cont) == LifecycleState.FAILED
    
    def test_undeterminable_state(self):
        """Test a build that neither failed, completed nor started."""
        assert classify(build_context(), None) is None
    
    def test_missing_build_context(self):
        assert classify(None, container("running")) is None
    
    def test_classify_is_pure(self):
        """Test repeated calls give the same result without mutating inputs."""
        cv = build_context(completed=1000)
        cont = container("exited")
        before = (cv.model_dump(), cont.model_dump())
        
        assert classify(cv, cont) == classify(cv, cont)
        assert (cv.model_dump(), cont.model_dump()) == before


class TestInstanceState:
    """Test classification of whole instances."""
    
    @pytest.fixture
    def instance_doc(self) -> dict:
        return {
            "_id": "inst_1",
            "name": "feature-1-api",
            "owner": {"github": 42, "username": "acme"},
            "contextVersions": [{
                "build": {"completed": 1000},
                "appCodeVersions": [
                    {"repo": "acme/config", "branch": "main", "additionalRepo": True},
                    {"repo": "Acme/API", "branch": "feature-1", "commit": "abc123"},
                ],
            }],
            "containers": [{"inspect": {"State": {"Status": "running"}}}],
        }
    
    def test_instance_state_uses_first_container(self, instance_doc):
        instance_doc["containers"].append({"inspect": {"State": {"Status": "exited"}}})
        
        assert instance_state(Instance.model_validate(instance_doc)) == LifecycleState.RUNNING
    
    def test_instance_state_falls_back_to_single_container(self, instance_doc):
        instance_doc.pop("containers")
        instance_doc["container"] = {"inspect": {"State": {"Status": "exited"}}}
        
        assert instance_state(Instance.model_validate(instance_doc)) == LifecycleState.STOPPED
    
    def test_push_info_uses_main_repo(self, instance_doc):
        """Test additional repos are skipped when building the push event."""
        push_event = push_info_for_instance(Instance.model_validate(instance_doc))
        
        assert push_event.repo == "Acme/API"
        assert push_event.branch == "feature-1"
        assert push_event.commit == "abc123"
        assert push_event.state == "running"
    
    def test_no_push_info_for_undeterminable_state(self, instance_doc):
        instance_doc["contextVersions"][0]["build"] = {}
        
        assert push_info_for_instance(Instance.model_validate(instance_doc)) is None
    
    def test_no_push_info_without_repo(self, instance_doc):
        instance_doc["contextVersions"][0]["appCodeVersions"] = []
        
        assert push_info_for_instance(Instance.model_validate(instance_doc)) is None
