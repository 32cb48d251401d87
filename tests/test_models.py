"""Tests for pod snapshot models, outcomes, and repair reports."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cni_repair.clients.pod_store import PodStoreError
from cni_repair.models import Pod, PodFailure, ReconcileOutcome, RepairError, RepairReport


class TestPod:
    def test_key(self) -> None:
        assert Pod(name="reviews", namespace="bookinfo").key == "bookinfo/reviews"

    def test_is_frozen(self) -> None:
        pod = Pod(name="reviews", namespace="bookinfo")
        with pytest.raises(ValidationError):
            pod.name = "other"  # type: ignore[misc]

    def test_with_label_returns_copy(self) -> None:
        pod = Pod(name="reviews", namespace="bookinfo", labels={"app": "reviews"})
        labeled = pod.with_label("cni.istio.io/uninitialized", "true")
        assert labeled is not pod
        assert labeled.labels == {"app": "reviews", "cni.istio.io/uninitialized": "true"}
        assert pod.labels == {"app": "reviews"}
        assert labeled.name == pod.name


class TestReconcileOutcome:
    def test_rejects_unknown_result(self) -> None:
        with pytest.raises(ValidationError):
            ReconcileOutcome(action="label", result="maybe", pod="default/p")  # type: ignore[arg-type]

    def test_rejects_unknown_action(self) -> None:
        with pytest.raises(ValidationError):
            ReconcileOutcome(action="restart", result="success", pod="default/p")  # type: ignore[arg-type]


class TestRepairReport:
    def test_add_sorts_outcomes(self) -> None:
        report = RepairReport(action="delete")
        report.add(ReconcileOutcome(action="delete", result="success", pod="default/a"))
        report.add(ReconcileOutcome(action="delete", result="skip", pod="default/b"))
        assert report.succeeded == ["default/a"]
        assert report.skipped == ["default/b"]
        assert report.ok
        assert report.total == 2

    def test_raise_for_failures_without_failures(self) -> None:
        RepairReport(action="label").raise_for_failures()

    def test_repair_error_names_every_failed_pod(self) -> None:
        first = PodStoreError("delete pod", "default", "a", "(500) boom")
        second = PodStoreError("delete pod", "kube-system", "b", "(503) unavailable")
        report = RepairReport(
            action="delete",
            failures=[
                PodFailure(namespace="default", name="a", error=first),
                PodFailure(namespace="kube-system", name="b", error=second),
            ],
        )

        with pytest.raises(RepairError) as exc_info:
            report.raise_for_failures()

        error = exc_info.value
        assert error.action == "delete"
        assert error.message.startswith("failed to delete 2 pods:")
        assert "default/a" in error.message
        assert "kube-system/b" in error.message
        assert list(error.exceptions) == [first, second]

    def test_repair_error_is_an_exception_group(self) -> None:
        failure = PodFailure(namespace="default", name="a", error=PodStoreError("update pod", "default", "a"))
        with pytest.raises(ExceptionGroup):
            raise RepairError("label", [failure])

    def test_repair_error_args_carry_message_and_exceptions(self) -> None:
        error_a = PodStoreError("delete pod", "default", "a", "(500) boom")
        error = RepairError("delete", [PodFailure(namespace="default", name="a", error=error_a)])

        assert error.args == (error.message, [error_a])
        assert error.args[0] == "failed to delete 1 pod: default/a: delete pod default/a failed: (500) boom"
