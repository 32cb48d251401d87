"""Pydantic v2 models for pod snapshots, reconcile outcomes, and bulk repair reports."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ActionType = Literal["label", "delete"]
ResultType = Literal["success", "skip", "fail"]


# --- Pod snapshot models ---


class TerminatedState(BaseModel):
    """Why a container run ended."""

    model_config = ConfigDict(frozen=True)

    reason: str | None = None
    exit_code: int = 0
    message: str | None = None


class InitContainerStatus(BaseModel):
    """Current and previous termination records of one init container."""

    model_config = ConfigDict(frozen=True)

    name: str
    # Set only while the current run has exited.
    state_terminated: TerminatedState | None = None
    # Last finished run; survives restarts, so it holds the crash-loop signature.
    last_terminated: TerminatedState | None = None


class Pod(BaseModel):
    """Immutable snapshot of a pod as read from the pod store."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    init_container_statuses: list[InitContainerStatus] = Field(default_factory=list)
    node_name: str | None = None
    resource_version: str | None = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def with_label(self, key: str, value: str) -> Pod:
        """Return a copy of this pod carrying an extra label."""
        return self.model_copy(update={"labels": {**self.labels, key: value}})


# --- Outcome models ---


class ReconcileOutcome(BaseModel):
    """Result of one remediation attempt. Recorded for observability only."""

    model_config = ConfigDict(frozen=True)

    action: ActionType
    result: ResultType
    pod: str


class PodFailure(BaseModel):
    """A pod whose remediation failed during a bulk run."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    namespace: str
    name: str
    error: Exception

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class RepairError(ExceptionGroup):
    """Raised when at least one pod in a bulk run could not be remediated."""

    def __new__(cls, action: str, failures: list[PodFailure]) -> RepairError:
        details = "; ".join(f"{f.key}: {f.error}" for f in failures)
        noun = "pod" if len(failures) == 1 else "pods"
        message = f"failed to {action} {len(failures)} {noun}: {details}"
        self = super().__new__(cls, message, [f.error for f in failures])
        self.action = action
        self.failures = failures
        return self

    def __init__(self, action: str, failures: list[PodFailure]) -> None:
        super().__init__(self.message, list(self.exceptions))

    def derive(self, excs: Sequence[Exception]) -> ExceptionGroup[Exception]:
        return ExceptionGroup(self.message, excs)


class RepairReport(BaseModel):
    """Outcome of a bulk label or delete run over every broken pod."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: ActionType
    succeeded: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failures: list[PodFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.skipped) + len(self.failures)

    def add(self, outcome: ReconcileOutcome) -> None:
        if outcome.result == "success":
            self.succeeded.append(outcome.pod)
        elif outcome.result == "skip":
            self.skipped.append(outcome.pod)

    def raise_for_failures(self) -> None:
        """Raise a RepairError naming every failed pod, if any failed."""
        if self.failures:
            raise RepairError(self.action, self.failures)
