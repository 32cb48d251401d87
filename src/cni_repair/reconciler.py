"""Broken pod reconciler: label or delete pods whose CNI setup raced the sidecar."""

from __future__ import annotations

import structlog

from cni_repair.clients.pod_store import PodStore, PodStoreError
from cni_repair.config import FilterCriteria, RemediationOptions
from cni_repair.detection import is_broken
from cni_repair.metrics import MetricsSink, NullMetrics
from cni_repair.models import ActionType, Pod, PodFailure, ReconcileOutcome, RepairReport, ResultType

log = structlog.get_logger()


class BrokenPodReconciler:
    """Detects broken pods and applies the configured remediation to them.

    Every action re-checks the pod against the filters before touching it, so a
    pod that recovered between listing and acting is skipped. Each attempt is
    counted in the metrics sink exactly once.
    """

    def __init__(
        self,
        store: PodStore,
        filters: FilterCriteria,
        options: RemediationOptions,
        metrics: MetricsSink | None = None,
    ) -> None:
        self.store = store
        self.filters = filters
        self.options = options
        self.metrics = metrics or NullMetrics()

    def _outcome(self, action: ActionType, result: ResultType, pod: Pod) -> ReconcileOutcome:
        self.metrics.record(action, result)
        return ReconcileOutcome(action=action, result=result, pod=pod.key)

    def detect_pod(self, pod: Pod) -> bool:
        """Check if a pod matches this reconciler's filter criteria."""
        return is_broken(pod, self.filters)

    def reconcile_pod(self, pod: Pod) -> ReconcileOutcome | None:
        """Apply the configured action to one pod.

        Deleting takes precedence over labeling. Returns None when neither
        action is enabled.

        Raises:
            PodStoreError: If the label update or the delete fails.
        """
        log.debug("reconciling_pod", namespace=pod.namespace, pod=pod.name)
        if self.options.delete_pods:
            return self.delete_broken_pod(pod)
        if self.options.label_pods:
            return self.label_broken_pod(pod)
        return None

    def label_broken_pod(self, pod: Pod) -> ReconcileOutcome:
        """Label a broken pod, leaving any existing value of the label key untouched.

        Raises:
            PodStoreError: If the pod update fails.
        """
        if not self.detect_pod(pod):
            return self._outcome("label", "skip", pod)

        key, value = self.options.pod_label_key, self.options.pod_label_value
        log.info("pod_detected_broken", namespace=pod.namespace, pod=pod.name, action="label")

        if key in pod.labels:
            log.info("pod_already_labeled", namespace=pod.namespace, pod=pod.name, label_key=key)
            return self._outcome("label", "skip", pod)

        log.info("labeling_pod", namespace=pod.namespace, pod=pod.name, label=f"{key}={value}")
        try:
            self.store.update(pod.with_label(key, value))
        except PodStoreError as e:
            log.error("pod_label_failed", namespace=pod.namespace, pod=pod.name, error=str(e))
            self.metrics.record("label", "fail")
            raise
        return self._outcome("label", "success", pod)

    def delete_broken_pod(self, pod: Pod) -> ReconcileOutcome:
        """Delete a broken pod so its controller recreates it.

        Raises:
            PodStoreError: If the delete fails.
        """
        if not self.detect_pod(pod):
            return self._outcome("delete", "skip", pod)

        log.info("pod_detected_broken", namespace=pod.namespace, pod=pod.name, action="delete")
        try:
            self.store.delete(pod.namespace, pod.name)
        except PodStoreError as e:
            log.error("pod_delete_failed", namespace=pod.namespace, pod=pod.name, error=str(e))
            self.metrics.record("delete", "fail")
            raise
        return self._outcome("delete", "success", pod)

    def list_broken_pods(self) -> list[Pod]:
        """List every pod matching the selectors, then keep the broken ones in order.

        The selectors narrow the list server-side; the termination history can
        only be matched locally.

        Raises:
            PodStoreError: If the pod list cannot be fetched.
        """
        pods = self.store.list(self.filters.label_selectors, self.filters.field_selectors)
        broken = [p for p in pods if self.detect_pod(p)]
        log.info("listed_broken_pods", total=len(pods), broken=len(broken))
        return broken

    def label_broken_pods(self) -> RepairReport:
        """Label every broken pod. Per-pod failures are collected, never fatal to the batch.

        Raises:
            PodStoreError: If the pod list cannot be fetched.
        """
        report = RepairReport(action="label")
        for pod in self.list_broken_pods():
            try:
                report.add(self.label_broken_pod(pod))
            except PodStoreError as e:
                report.failures.append(PodFailure(namespace=pod.namespace, name=pod.name, error=e))
        self._log_report(report)
        return report

    def delete_broken_pods(self) -> RepairReport:
        """Delete every broken pod. Per-pod failures are collected, never fatal to the batch.

        Raises:
            PodStoreError: If the pod list cannot be fetched.
        """
        report = RepairReport(action="delete")
        for pod in self.list_broken_pods():
            log.info("deleting_broken_pod", namespace=pod.namespace, pod=pod.name)
            try:
                report.add(self.delete_broken_pod(pod))
            except PodStoreError as e:
                report.failures.append(PodFailure(namespace=pod.namespace, name=pod.name, error=e))
        self._log_report(report)
        return report

    @staticmethod
    def _log_report(report: RepairReport) -> None:
        log.info(
            "repair_run_completed",
            action=report.action,
            succeeded=len(report.succeeded),
            skipped=len(report.skipped),
            failed=len(report.failures),
        )
