"""Shared test fixtures: pod builders and an in-memory pod store."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from cni_repair.clients.pod_store import PodStoreError
from cni_repair.config import FilterCriteria, RemediationOptions
from cni_repair.metrics import RepairMetrics
from cni_repair.models import InitContainerStatus, Pod, TerminatedState

SIDECAR_ANNOTATION = "sidecar.istio.io/status"
INIT_CONTAINER = "istio-validation"


def make_pod(
    name: str = "productpage-v1-abc123",
    namespace: str = "default",
    annotations: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    init_container: str = INIT_CONTAINER,
    exit_code: int | None = 126,
    message: str = "",
    current: TerminatedState | None = None,
    init_container_statuses: list[InitContainerStatus] | None = None,
    resource_version: str | None = "1001",
) -> Pod:
    """Build a pod whose init container last terminated with ``exit_code``.

    Defaults describe a broken pod: sidecar annotation present and the
    validation init container crash-looping with exit code 126. Pass
    ``exit_code=None`` for an init container with no previous termination.
    """
    if init_container_statuses is None:
        last = None if exit_code is None else TerminatedState(reason="Error", exit_code=exit_code, message=message)
        init_container_statuses = [
            InitContainerStatus(name=init_container, state_terminated=current, last_terminated=last),
        ]
    return Pod(
        name=name,
        namespace=namespace,
        annotations={SIDECAR_ANNOTATION: "{}"} if annotations is None else annotations,
        labels=labels or {},
        init_container_statuses=init_container_statuses,
        resource_version=resource_version,
    )


class InMemoryPodStore:
    """Pod store keeping pods in a dict, with injectable failures."""

    def __init__(self, pods: list[Pod] | None = None) -> None:
        self.pods: dict[str, Pod] = {p.key: p for p in pods or []}
        self.list_calls: list[tuple[str, str]] = []
        self.updates: list[Pod] = []
        self.deletes: list[tuple[str, str]] = []
        self.fail_list = False
        self.fail_update: set[str] = set()
        self.fail_delete: set[str] = set()

    def list(self, label_selector: str = "", field_selector: str = "") -> list[Pod]:
        self.list_calls.append((label_selector, field_selector))
        if self.fail_list:
            raise PodStoreError("list pods", reason="connection refused")
        return list(self.pods.values())

    def update(self, pod: Pod) -> Pod:
        if pod.key in self.fail_update:
            raise PodStoreError("update pod", pod.namespace, pod.name, "(409) Conflict")
        self.updates.append(pod)
        self.pods[pod.key] = pod
        return pod

    def delete(self, namespace: str, name: str) -> None:
        key = f"{namespace}/{name}"
        if key in self.fail_delete:
            raise PodStoreError("delete pod", namespace, name, "(500) Internal Server Error")
        self.deletes.append((namespace, name))
        self.pods.pop(key, None)


@pytest.fixture
def pod_factory() -> Callable[..., Pod]:
    return make_pod


@pytest.fixture
def filters() -> FilterCriteria:
    return FilterCriteria()


@pytest.fixture
def label_options() -> RemediationOptions:
    return RemediationOptions(label_pods=True)


@pytest.fixture
def delete_options() -> RemediationOptions:
    return RemediationOptions(delete_pods=True)


@pytest.fixture
def metrics() -> RepairMetrics:
    return RepairMetrics()


@pytest.fixture
def store_factory() -> Callable[..., InMemoryPodStore]:
    def _factory(*pods: Any) -> InMemoryPodStore:
        return InMemoryPodStore(list(pods))

    return _factory
