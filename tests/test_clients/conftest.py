"""Client-specific test fixtures: raw Kubernetes pod objects and API errors."""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException


def _make_terminated(reason: str | None, exit_code: int, message: str | None = None) -> MagicMock:
    state = MagicMock()
    state.terminated.reason = reason
    state.terminated.exit_code = exit_code
    state.terminated.message = message
    return state


def _make_running() -> MagicMock:
    state = MagicMock()
    state.terminated = None
    return state


def make_k8s_pod(
    name: str = "reviews-v1-7d9b",
    namespace: str = "bookinfo",
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    init_statuses: list[MagicMock] | None = None,
    node_name: str = "node-1",
    resource_version: str = "4242",
) -> MagicMock:
    """Build a MagicMock shaped like a kubernetes V1Pod."""
    pod = MagicMock()
    pod.metadata.name = name
    pod.metadata.namespace = namespace
    pod.metadata.labels = labels
    pod.metadata.annotations = annotations
    pod.metadata.resource_version = resource_version
    pod.spec.node_name = node_name
    pod.status.init_container_statuses = init_statuses
    return pod


def make_init_status(
    name: str = "istio-validation",
    state: MagicMock | None = None,
    last_state: MagicMock | None = None,
) -> MagicMock:
    status = MagicMock()
    status.name = name
    status.state = state if state is not None else _make_running()
    status.last_state = last_state if last_state is not None else _make_running()
    return status


@pytest.fixture
def k8s_pod_factory() -> Callable[..., MagicMock]:
    return make_k8s_pod


@pytest.fixture
def crashlooping_k8s_pod() -> MagicMock:
    """A sidecar-injected pod whose validation init container last exited with 126."""
    return make_k8s_pod(
        labels={"app": "reviews"},
        annotations={"sidecar.istio.io/status": "{}"},
        init_statuses=[
            make_init_status(
                state=_make_running(),
                last_state=_make_terminated("Error", 126, "iptables rules missing"),
            )
        ],
    )


@pytest.fixture
def completed_init_status() -> MagicMock:
    return make_init_status(state=_make_terminated("Completed", 0))


@pytest.fixture
def api_conflict() -> ApiException:
    return ApiException(status=409, reason="Conflict")


@pytest.fixture
def api_unavailable() -> ApiException:
    return ApiException(status=503, reason="Service Unavailable")
