"""Command-line entry point: parse options, then run one repair pass or the watch loop."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from cni_repair.clients.pod_store import KubernetesPodStore, PodStoreError
from cni_repair.config import (
    SETTINGS,
    ConfigError,
    ControllerOptions,
    build_options,
    env_var_name,
    load_config_file,
    load_env_overrides,
)
from cni_repair.controller import RepairController
from cni_repair.metrics import RepairMetrics
from cni_repair.models import RepairError, RepairReport
from cni_repair.reconciler import BrokenPodReconciler

log = structlog.get_logger()

CONFIG_ENV = "REPAIR_CONFIG"

_HELP: dict[str, str] = {
    "node_name": "The name of the managed node (will manage all nodes if unset)",
    "sidecar_annotation": (
        "An annotation key that indicates this pod contains an istio sidecar. "
        "All pods without this annotation will be ignored. The value of the annotation is ignored."
    ),
    "init_container_name": (
        "The name of the istio init container (will crash-loop if CNI is not configured for the pod)"
    ),
    "init_container_termination_message": (
        "The expected termination message for the init container when crash-looping because of CNI misconfiguration"
    ),
    "init_container_exit_code": (
        "Expected exit code for the init container when crash-looping because of CNI misconfiguration"
    ),
    "label_selectors": "A set of label selectors in label=value format that will be added to the pod list filters",
    "field_selectors": "A set of field selectors in label=value format that will be added to the pod list filters",
    "enabled": "Whether to enable race condition repair or not",
    "delete_pods": "Controller will delete pods",
    "label_pods": "Controller will label pods",
    "run_as_daemon": "Controller will run in a loop",
    "broken_pod_label_key": "The key portion of the label which will be set by the reconciler if label-pods is true",
    "broken_pod_label_value": (
        "The value portion of the label which will be set by the reconciler if label-pods is true"
    ),
    "metrics_port": "Port to serve Prometheus metrics on (0 disables the exporter)",
}


def configure_logging(level: str = "info") -> None:
    """Configure structlog for JSON output to stderr, or console output on a terminal."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cni-repair",
        description="Detect and repair pods whose init container crash-loops because CNI did not set up the pod.",
    )
    for name, kind in SETTINGS.items():
        if name == "log_level":
            continue
        flag = "--repair-" + name.replace("_", "-")
        help_text = f"{_HELP[name]} (env: {env_var_name(name)})"
        if kind is bool:
            parser.add_argument(flag, dest=name, nargs="?", const="true", default=None, metavar="BOOL", help=help_text)
        else:
            parser.add_argument(flag, dest=name, type=kind, default=None, help=help_text)
    parser.add_argument("--config", default=None, help=f"Optional YAML file of repair settings (env: {CONFIG_ENV})")
    parser.add_argument(
        "--kubeconfig", default=None, help="Path to a kubeconfig file (default: in-cluster, then ~/.kube/config)"
    )
    parser.add_argument("--context", default=None, help="Kubeconfig context to use")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        help=f"Log level (env: {env_var_name('log_level')}, default: info)",
    )
    return parser


def resolve_settings(args: argparse.Namespace, environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Merge settings: command-line flags over environment over config file."""
    env = os.environ if environ is None else environ
    settings: dict[str, Any] = {}

    config_path = args.config or env.get(CONFIG_ENV)
    if config_path:
        settings.update(load_config_file(Path(config_path)))

    settings.update(load_env_overrides(dict(env)))
    settings.update({name: value for name in SETTINGS if (value := getattr(args, name, None)) is not None})
    return settings


def log_current_options(options: ControllerOptions) -> None:
    """Log a human-readable description of the active options and filters."""
    filters, remediation = options.filters, options.remediation
    if options.run_as_daemon:
        log.info("controller_option", option="running as a daemon")
    if remediation.delete_pods:
        log.info("controller_option", option="deleting broken pods, pod labeling deactivated")
    if remediation.label_pods and not remediation.delete_pods:
        log.info(
            "controller_option",
            option="labeling broken pods",
            label=f"{remediation.pod_label_key}={remediation.pod_label_value}",
        )
    if filters.sidecar_annotation:
        log.info("filter_option", sidecar_annotation=filters.sidecar_annotation)
    if filters.field_selectors:
        log.info("filter_option", field_selectors=filters.field_selectors)
    if filters.label_selectors:
        log.info("filter_option", label_selectors=filters.label_selectors)
    if filters.init_container_name:
        log.info("filter_option", init_container_name=filters.init_container_name)
    if filters.init_container_termination_message:
        log.info("filter_option", init_container_termination_message=filters.init_container_termination_message)
    if filters.init_container_exit_code != 0:
        log.info("filter_option", init_container_exit_code=filters.init_container_exit_code)


def run_once(reconciler: BrokenPodReconciler) -> int:
    """Repair every currently broken pod once. Returns the process exit status."""
    options = reconciler.options
    reports: list[RepairReport] = []
    try:
        if options.delete_pods:
            reports.append(reconciler.delete_broken_pods())
        elif options.label_pods:
            reports.append(reconciler.label_broken_pods())
        else:
            log.warning("no_repair_action_configured")
    except PodStoreError as e:
        log.error("repair_failed", error=str(e))
        return 1

    status = 0
    for report in reports:
        try:
            report.raise_for_failures()
        except RepairError as e:
            log.error("repair_failed", action=e.action, failed=len(e.failures), error=e.message)
            status = 1
    return status


def run_daemon(reconciler: BrokenPodReconciler, store: KubernetesPodStore) -> int:
    controller = RepairController(reconciler, store)

    def _handle_signal(signum: int, _frame: Any) -> None:
        log.info("received_signal", signal=signal.Signals(signum).name)
        controller.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    try:
        controller.run()
    except KeyboardInterrupt:
        controller.stop()
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or os.environ.get(env_var_name("log_level"), "info"))
    log.info("starting_cni_repair")

    try:
        options = build_options(resolve_settings(args), kubeconfig=args.kubeconfig, context=args.context)
    except ConfigError as e:
        log.error("startup_failed", error=str(e))
        return 1

    # The config file may set the level too; it is only known once options are built.
    configure_logging(options.log_level)

    if not options.enabled:
        log.info("cni_repair_disabled")
        return 0

    store = KubernetesPodStore(options.kubeconfig, options.context)
    try:
        store.connect()
    except Exception as e:
        log.error("startup_failed", error=f"could not construct Kubernetes client: {e}")
        return 1

    metrics = RepairMetrics()
    if options.metrics_port:
        try:
            metrics.serve(options.metrics_port)
        except OSError as e:
            log.error("startup_failed", error=f"could not serve metrics on port {options.metrics_port}: {e}")
            return 1
    reconciler = BrokenPodReconciler(store, options.filters, options.remediation, metrics)
    log_current_options(options)

    try:
        if options.run_as_daemon:
            return run_daemon(reconciler, store)
        return run_once(reconciler)
    finally:
        log.info("repair_metrics", metric=metrics.name, **metrics.snapshot())


if __name__ == "__main__":
    sys.exit(main())
