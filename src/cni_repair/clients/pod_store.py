"""Pod store: the list / update / delete surface the reconciler depends on, and its Kubernetes implementation."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Protocol

import structlog
from kubernetes import client as k8s_client
from kubernetes import watch as k8s_watch

from cni_repair.clients import load_k8s_api_client
from cni_repair.models import InitContainerStatus, Pod, TerminatedState

log = structlog.get_logger()


class PodStoreError(Exception):
    """A list, update, or delete call against the pod store failed."""

    def __init__(self, operation: str, namespace: str | None = None, name: str | None = None, reason: str = "") -> None:
        self.operation = operation
        self.namespace = namespace
        self.name = name
        self.reason = reason
        target = f" {namespace}/{name}" if name else ""
        super().__init__(f"{operation}{target} failed: {reason}" if reason else f"{operation}{target} failed")


class PodStore(Protocol):
    """Narrow pod API used by the reconciler."""

    def list(self, label_selector: str = "", field_selector: str = "") -> list[Pod]: ...

    def update(self, pod: Pod) -> Pod: ...

    def delete(self, namespace: str, name: str) -> None: ...


def _terminated_from_k8s(state: Any) -> TerminatedState | None:
    terminated = state.terminated if state else None
    if terminated is None:
        return None
    return TerminatedState(
        reason=terminated.reason,
        exit_code=terminated.exit_code or 0,
        message=terminated.message,
    )


def pod_from_k8s(pod: Any) -> Pod:
    """Convert a kubernetes V1Pod into an immutable Pod snapshot."""
    statuses = []
    for cs in (pod.status.init_container_statuses if pod.status else None) or []:
        statuses.append(
            InitContainerStatus(
                name=cs.name,
                state_terminated=_terminated_from_k8s(cs.state),
                last_terminated=_terminated_from_k8s(cs.last_state),
            )
        )
    return Pod(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace,
        labels=pod.metadata.labels or {},
        annotations=pod.metadata.annotations or {},
        init_container_statuses=statuses,
        node_name=pod.spec.node_name if pod.spec else None,
        resource_version=pod.metadata.resource_version,
    )


def _describe(error: Exception) -> str:
    reason = getattr(error, "reason", None)
    status = getattr(error, "status", None)
    if status is not None and reason:
        return f"({status}) {reason}"
    return str(error) or type(error).__name__


class KubernetesPodStore:
    """Pod store backed by the Kubernetes Core V1 API, across all namespaces."""

    def __init__(self, kubeconfig: str | None = None, context: str | None = None) -> None:
        self._kubeconfig = kubeconfig
        self._context = context
        self._api: k8s_client.CoreV1Api | None = None
        self._watcher: k8s_watch.Watch | None = None

    def _get_api(self) -> k8s_client.CoreV1Api:
        if self._api is None:
            api_client = load_k8s_api_client(self._kubeconfig, self._context)
            self._api = k8s_client.CoreV1Api(api_client)
        return self._api

    def connect(self) -> None:
        """Build the API client now so configuration errors surface before any reconciliation."""
        self._get_api()

    @staticmethod
    def _selector_kwargs(label_selector: str, field_selector: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        return kwargs

    def list(self, label_selector: str = "", field_selector: str = "") -> list[Pod]:
        """List pods in all namespaces matching the selectors.

        Raises:
            PodStoreError: If the API call fails.
        """
        api = self._get_api()
        try:
            pod_list = api.list_pod_for_all_namespaces(**self._selector_kwargs(label_selector, field_selector))
        except Exception as e:
            log.error("failed_to_list_pods", label_selector=label_selector, field_selector=field_selector, error=str(e))
            raise PodStoreError("list pods", reason=_describe(e)) from e
        return [pod_from_k8s(p) for p in pod_list.items]

    def update(self, pod: Pod) -> Pod:
        """Write the pod's labels back.

        The stored resource version is sent along, so the API server rejects the
        write with a conflict if the pod changed since it was read.

        Raises:
            PodStoreError: If the API call fails.
        """
        api = self._get_api()
        metadata: dict[str, Any] = {"labels": dict(pod.labels)}
        if pod.resource_version:
            metadata["resourceVersion"] = pod.resource_version
        try:
            updated = api.patch_namespaced_pod(pod.name, pod.namespace, {"metadata": metadata})
        except Exception as e:
            log.error("failed_to_update_pod", namespace=pod.namespace, pod=pod.name, error=str(e))
            raise PodStoreError("update pod", pod.namespace, pod.name, _describe(e)) from e
        return pod_from_k8s(updated)

    def delete(self, namespace: str, name: str) -> None:
        """Delete a pod by namespace and name.

        Raises:
            PodStoreError: If the API call fails.
        """
        api = self._get_api()
        try:
            api.delete_namespaced_pod(name, namespace)
        except Exception as e:
            log.error("failed_to_delete_pod", namespace=namespace, pod=name, error=str(e))
            raise PodStoreError("delete pod", namespace, name, _describe(e)) from e

    def watch(
        self, label_selector: str = "", field_selector: str = "", timeout_seconds: int | None = None
    ) -> Iterator[tuple[str, Pod]]:
        """Stream pod events as ``(event_type, pod)`` until the server closes the watch."""
        api = self._get_api()
        kwargs = self._selector_kwargs(label_selector, field_selector)
        if timeout_seconds is not None:
            kwargs["timeout_seconds"] = timeout_seconds
        watcher = k8s_watch.Watch()
        self._watcher = watcher
        try:
            for event in watcher.stream(api.list_pod_for_all_namespaces, **kwargs):
                obj = event.get("object")
                if obj is None or not hasattr(obj, "metadata"):
                    continue
                yield event["type"], pod_from_k8s(obj)
        finally:
            watcher.stop()

    def stop_watch(self) -> None:
        """Interrupt an open watch stream, if any."""
        if self._watcher is not None:
            self._watcher.stop()
