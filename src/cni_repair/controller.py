"""Daemon mode: watch pods and reconcile each one as it is added or modified."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Protocol

import structlog

from cni_repair.clients.pod_store import PodStoreError
from cni_repair.models import Pod
from cni_repair.reconciler import BrokenPodReconciler

log = structlog.get_logger()

RECONCILED_EVENTS = {"ADDED", "MODIFIED"}
# stop() takes effect between events or at server timeout; must stay below the pod termination grace period.
WATCH_TIMEOUT_SECONDS = 20
RESTART_DELAY_SECONDS = 5.0


class PodWatcher(Protocol):
    def watch(
        self, label_selector: str = "", field_selector: str = "", timeout_seconds: int | None = None
    ) -> Iterator[tuple[str, Pod]]: ...

    def stop_watch(self) -> None: ...


class RepairController:
    """Feeds watched pod events into a BrokenPodReconciler until stopped.

    Errors from a single pod are logged and the loop moves on. When the watch
    stream ends (server timeout) it is reopened; when it fails, it is reopened
    after a short fixed delay.
    """

    def __init__(self, reconciler: BrokenPodReconciler, watcher: PodWatcher) -> None:
        self._reconciler = reconciler
        self._watcher = watcher
        self._stop = threading.Event()

    def handle_event(self, event_type: str, pod: Pod) -> None:
        if event_type not in RECONCILED_EVENTS:
            return
        try:
            self._reconciler.reconcile_pod(pod)
        except PodStoreError as e:
            log.error("reconcile_failed", namespace=pod.namespace, pod=pod.name, error=str(e))

    def run(self, stop_event: threading.Event | None = None) -> None:
        """Block until ``stop()`` is called or ``stop_event`` is set."""
        if stop_event is not None:
            self._stop = stop_event
        filters = self._reconciler.filters
        log.info("repair_controller_started")
        while not self._stop.is_set():
            try:
                for event_type, pod in self._watcher.watch(
                    filters.label_selectors, filters.field_selectors, timeout_seconds=WATCH_TIMEOUT_SECONDS
                ):
                    if self._stop.is_set():
                        break
                    self.handle_event(event_type, pod)
            except Exception as e:
                if self._stop.is_set():
                    break
                log.error("watch_stream_failed", error=str(e))
                self._stop.wait(RESTART_DELAY_SECONDS)
        log.info("repair_controller_stopped")

    def stop(self) -> None:
        self._stop.set()
        self._watcher.stop_watch()
