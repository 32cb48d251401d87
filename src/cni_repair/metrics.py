"""Repair counters, incremented once per remediation attempt."""

from __future__ import annotations

from typing import Protocol

import structlog
from prometheus_client import CollectorRegistry, Counter, start_http_server

from cni_repair.models import ActionType, ResultType

log = structlog.get_logger()

REPAIRED_PODS_METRIC = "cni_repair_pods_repaired_total"


class MetricsSink(Protocol):
    """Anything that can count remediation attempts by action type and result."""

    def record(self, action: ActionType, result: ResultType) -> None: ...


class RepairMetrics:
    """Prometheus counter of repaired pods, labeled by type and result.

    Each instance owns its registry, so tests and embedded uses never collide
    with the process-wide default registry.
    """

    name = REPAIRED_PODS_METRIC

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        self._repaired = Counter(
            REPAIRED_PODS_METRIC,
            "Total number of pods repaired by the CNI repair controller",
            ["type", "result"],
            registry=self.registry,
        )

    def record(self, action: ActionType, result: ResultType) -> None:
        self._repaired.labels(type=action, result=result).inc()

    def count(self, action: ActionType, result: ResultType) -> int:
        value = self.registry.get_sample_value(REPAIRED_PODS_METRIC, {"type": action, "result": result})
        return int(value or 0)

    def snapshot(self) -> dict[str, int]:
        """Return counts as ``{"<type>_<result>": n}`` for logging."""
        counts: dict[str, int] = {}
        for metric in self._repaired.collect():
            for sample in metric.samples:
                if sample.name != REPAIRED_PODS_METRIC:
                    continue
                counts[f"{sample.labels['type']}_{sample.labels['result']}"] = int(sample.value)
        return dict(sorted(counts.items()))

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Expose the registry on ``http://<addr>:<port>/metrics`` from a daemon thread."""
        start_http_server(port, addr=addr, registry=self.registry)
        log.info("metrics_server_started", port=port, addr=addr)


class NullMetrics:
    """Sink that discards every increment."""

    def record(self, action: ActionType, result: ResultType) -> None:
        return None
