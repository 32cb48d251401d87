"""Broken pod detection: init containers crash-looping because CNI never set up the pod."""

from __future__ import annotations

from cni_repair.config import FilterCriteria
from cni_repair.models import InitContainerStatus, Pod, TerminatedState

COMPLETED_REASON = "Completed"


def matches_termination_message(criteria: FilterCriteria, state: TerminatedState) -> bool:
    """Compare termination messages ignoring surrounding whitespace. An empty filter matches anything."""
    expected = criteria.init_container_termination_message.strip()
    return expected == "" or expected == (state.message or "").strip()


def matches_exit_code(criteria: FilterCriteria, state: TerminatedState) -> bool:
    """Compare exit codes. A zero filter matches any exit code."""
    expected = criteria.init_container_exit_code
    return expected == 0 or expected == state.exit_code


def exited_cleanly(container: InitContainerStatus) -> bool:
    """Check whether the container's current run has finished successfully."""
    state = container.state_terminated
    return state is not None and (state.reason == COMPLETED_REASON or state.exit_code == 0)


def is_broken(pod: Pod, criteria: FilterCriteria) -> bool:
    """Check if a pod matches the broken pod filter criteria.

    Only pods carrying the sidecar annotation are considered (when one is
    configured). The first init container whose last termination matches both
    the message and exit code filters makes the pod broken. A container whose
    current run exited cleanly is never treated as broken, whatever its history.
    """
    if criteria.sidecar_annotation and criteria.sidecar_annotation not in pod.annotations:
        return False

    for container in pod.init_container_statuses:
        if criteria.init_container_name and container.name != criteria.init_container_name:
            continue

        if exited_cleanly(container):
            continue

        # The current state flips to running between restarts; the last termination does not.
        state = container.last_terminated
        if state is not None and matches_termination_message(criteria, state) and matches_exit_code(criteria, state):
            return True

    return False
