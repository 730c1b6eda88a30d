"""
State classifier.

Derives the lifecycle state of an instance from its latest build context
and its attached container. Pure functions, no I/O.
"""

from typing import Optional

from notifier.models.instance import Container, ContextVersion, Instance
from notifier.models.push_event import LifecycleState, PushEvent

BUILD_STARTED = "build_started"
CONTAINER_EXITED = "exited"


def classify(
    build_context: Optional[ContextVersion],
    container: Optional[Container]
) -> Optional[LifecycleState]:
    """
    Classify a build context / container pair.

    First match wins: a failed build beats a completed timestamp left over
    from an earlier attempt.

    Args:
        build_context: Latest build context of the instance
        container: Container attached to the instance, if any

    Returns:
        LifecycleState, or None when the state cannot be determined and
        the instance must not be notified about
    """
    if build_context is None:
        return None
    build = build_context.build
    if build.failed:
        return LifecycleState.FAILED
    if build.completed:
        if container is not None and container.status == CONTAINER_EXITED:
            return LifecycleState.STOPPED
        return LifecycleState.RUNNING
    if build_context.state == BUILD_STARTED:
        return LifecycleState.BUILDING
    return None


def instance_state(instance: Instance) -> Optional[LifecycleState]:
    """Classify an instance using its primary build context and container."""
    return classify(instance.primary_context_version, instance.primary_container)


def push_info_for_instance(instance: Instance) -> Optional[PushEvent]:
    """
    Build the push event an instance should be notified about.

    Returns:
        PushEvent for the instance's primary repo and branch, or None when
        the instance is not repo based or its state is undeterminable
    """
    acv = instance.main_app_code_version()
    if acv is None:
        return None
    state = instance_state(instance)
    if state is None:
        return None
    return PushEvent(repo=acv.repo, branch=acv.branch, state=state.value, commit=acv.commit)
