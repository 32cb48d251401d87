"""Filter criteria, remediation options, and environment / YAML overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from cni_repair.validation import (
    validate_exit_code,
    validate_field_selectors,
    validate_label_key,
    validate_label_value,
    validate_port,
)

# Exit code of the istio-validation init container when traffic redirection is missing.
VALIDATION_ERROR_CODE = 126

DEFAULT_SIDECAR_ANNOTATION = "sidecar.istio.io/status"
DEFAULT_INIT_CONTAINER_NAME = "istio-validation"
DEFAULT_LABEL_KEY = "cni.istio.io/uninitialized"
DEFAULT_LABEL_VALUE = "true"

ENV_PREFIX = "REPAIR_"


class ConfigError(ValueError):
    """Raised when the repair configuration cannot be built."""


@dataclass(frozen=True)
class FilterCriteria:
    """Rules a pod must match to be considered broken.

    An empty string or a zero exit code is a wildcard, never a "require empty" match.
    """

    sidecar_annotation: str = DEFAULT_SIDECAR_ANNOTATION
    init_container_name: str = DEFAULT_INIT_CONTAINER_NAME
    init_container_termination_message: str = ""
    init_container_exit_code: int = VALIDATION_ERROR_CODE
    label_selectors: str = ""
    field_selectors: str = ""


@dataclass(frozen=True)
class RemediationOptions:
    """What to do with a broken pod. Deleting wins over labeling."""

    label_pods: bool = False
    delete_pods: bool = False
    pod_label_key: str = DEFAULT_LABEL_KEY
    pod_label_value: str = DEFAULT_LABEL_VALUE


@dataclass(frozen=True)
class ControllerOptions:
    """Process-level options wrapping the filters and remediation settings."""

    filters: FilterCriteria = field(default_factory=FilterCriteria)
    remediation: RemediationOptions = field(default_factory=RemediationOptions)
    node_name: str = ""
    run_as_daemon: bool = False
    enabled: bool = True
    kubeconfig: str | None = None
    context: str | None = None
    log_level: str = "info"
    metrics_port: int = 0


# Setting name -> value type. Names match the long flag without the "repair-" prefix.
SETTINGS: dict[str, type] = {
    "node_name": str,
    "sidecar_annotation": str,
    "init_container_name": str,
    "init_container_termination_message": str,
    "init_container_exit_code": int,
    "label_selectors": str,
    "field_selectors": str,
    "enabled": bool,
    "delete_pods": bool,
    "label_pods": bool,
    "run_as_daemon": bool,
    "broken_pod_label_key": str,
    "broken_pod_label_value": str,
    "log_level": str,
    "metrics_port": int,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def parse_bool(value: Any) -> bool:
    """Interpret a flag, env, or YAML value as a boolean."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    msg = f"Invalid boolean value: {value!r}"
    raise ConfigError(msg)


def _coerce(name: str, value: Any) -> Any:
    kind = SETTINGS[name]
    if kind is bool:
        return parse_bool(value)
    if kind is int:
        try:
            return int(value)
        except (TypeError, ValueError):
            msg = f"Invalid integer for {name}: {value!r}"
            raise ConfigError(msg) from None
    return "" if value is None else str(value)


def env_var_name(name: str) -> str:
    """Return the environment variable bound to a setting, e.g. REPAIR_DELETE_PODS."""
    return ENV_PREFIX + name.upper()


def load_env_overrides(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Collect settings from REPAIR_* environment variables."""
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name in SETTINGS:
        raw = env.get(env_var_name(name))
        if raw is not None:
            overrides[name] = _coerce(name, raw)
    return overrides


def load_config_file(path: Path) -> dict[str, Any]:
    """Parse a YAML repair configuration file.

    Keys may be written with dashes or underscores and with or without the
    ``repair`` prefix, so a file can mirror the command-line flags
    (``repair-delete-pods: true``) or the settings names (``delete_pods: true``).
    Settings may also be nested under a top-level ``repair`` mapping.

    Raises:
        ConfigError: If the file is missing, malformed, or names an unknown setting.
    """
    if not path.exists():
        msg = f"Repair configuration file not found: {path}"
        raise ConfigError(msg)

    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        msg = f"Repair configuration file {path} is not valid YAML: {e}"
        raise ConfigError(msg) from e

    if raw is None:
        return {}
    if isinstance(raw, dict) and isinstance(raw.get("repair"), dict):
        raw = raw["repair"]
    if not isinstance(raw, dict):
        msg = f"Repair configuration file {path} must contain a mapping, got {type(raw).__name__}."
        raise ConfigError(msg)

    settings: dict[str, Any] = {}
    unknown: list[str] = []
    for key, value in raw.items():
        name = str(key).replace("-", "_")
        name = name.removeprefix("repair_")
        if name not in SETTINGS:
            unknown.append(str(key))
            continue
        settings[name] = _coerce(name, value)

    if unknown:
        msg = f"Repair configuration file {path} has unknown settings: {', '.join(sorted(unknown))}."
        raise ConfigError(msg)
    return settings


def fold_node_name(node_name: str, field_selectors: str) -> str:
    """Prepend a spec.nodeName field selector when a node name is set."""
    if not node_name:
        return field_selectors
    node_selector = f"spec.nodeName={node_name}"
    if not field_selectors:
        return node_selector
    return f"{node_selector},{field_selectors}"


def build_options(
    settings: dict[str, Any],
    kubeconfig: str | None = None,
    context: str | None = None,
) -> ControllerOptions:
    """Turn a resolved settings mapping into validated, immutable options.

    Missing settings take their defaults. The node name, when set, is folded
    into the field selectors so the pod store only lists pods on that node.

    Raises:
        ConfigError: If a label key/value, exit code, selector, or port is invalid.
    """
    unknown = set(settings) - set(SETTINGS)
    if unknown:
        msg = f"Unknown repair settings: {', '.join(sorted(unknown))}"
        raise ConfigError(msg)

    def get(name: str, default: Any) -> Any:
        return _coerce(name, settings[name]) if name in settings else default

    node_name = get("node_name", "")
    exit_code = get("init_container_exit_code", VALIDATION_ERROR_CODE)
    label_key = get("broken_pod_label_key", DEFAULT_LABEL_KEY)
    label_value = get("broken_pod_label_value", DEFAULT_LABEL_VALUE)
    field_selectors = get("field_selectors", "")
    metrics_port = get("metrics_port", 0)

    try:
        validate_exit_code(exit_code)
        validate_label_key(label_key)
        validate_label_value(label_value)
        validate_field_selectors(field_selectors)
        validate_port(metrics_port)
    except ValueError as e:
        raise ConfigError(str(e)) from e

    filters = FilterCriteria(
        sidecar_annotation=get("sidecar_annotation", DEFAULT_SIDECAR_ANNOTATION),
        init_container_name=get("init_container_name", DEFAULT_INIT_CONTAINER_NAME),
        init_container_termination_message=get("init_container_termination_message", ""),
        init_container_exit_code=exit_code,
        label_selectors=get("label_selectors", ""),
        field_selectors=fold_node_name(node_name, field_selectors),
    )
    remediation = RemediationOptions(
        label_pods=get("label_pods", False),
        delete_pods=get("delete_pods", False),
        pod_label_key=label_key,
        pod_label_value=label_value,
    )
    return ControllerOptions(
        filters=filters,
        remediation=remediation,
        node_name=node_name,
        run_as_daemon=get("run_as_daemon", False),
        enabled=get("enabled", True),
        kubeconfig=kubeconfig,
        context=context,
        log_level=get("log_level", "info"),
        metrics_port=metrics_port,
    )
