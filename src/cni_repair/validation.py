"""Validation helpers for repair configuration values."""

from __future__ import annotations

import re

# Kubernetes qualified name: alphanumeric at both ends, '-', '_' and '.' inside, max 63 chars.
_NAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9_.\-]{0,61}[A-Za-z0-9])?$")

# DNS subdomain used as a label key prefix, max 253 chars.
_PREFIX_RE = re.compile(r"^[a-z0-9]([a-z0-9\-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9\-]*[a-z0-9])?)*$")
_MAX_PREFIX_LENGTH = 253

# One field selector term: key=value, key==value or key!=value.
_FIELD_TERM_RE = re.compile(r"^[A-Za-z0-9_.\-/]+\s*(==|!=|=)\s*[^,=!]*$")


def validate_label_key(key: str) -> None:
    """Validate a label key such as ``cni.istio.io/uninitialized``."""
    if not key:
        msg = "Invalid label key: must not be empty."
        raise ValueError(msg)

    prefix, sep, name = key.rpartition("/")
    if sep and (not prefix or len(prefix) > _MAX_PREFIX_LENGTH or not _PREFIX_RE.match(prefix)):
        msg = f"Invalid label key: {key!r}. Prefix must be a DNS subdomain."
        raise ValueError(msg)
    if not _NAME_RE.match(name):
        msg = f"Invalid label key: {key!r}. Name must be 1-63 alphanumeric characters, '-', '_' or '.'."
        raise ValueError(msg)


def validate_label_value(value: str) -> None:
    """Validate a label value. The empty string is a valid label value."""
    if value and not _NAME_RE.match(value):
        msg = f"Invalid label value: {value!r}. Must be at most 63 alphanumeric characters, '-', '_' or '.'."
        raise ValueError(msg)


def validate_exit_code(exit_code: int) -> None:
    """Validate a container exit code filter; 0 matches any exit code."""
    if not 0 <= exit_code <= 255:
        msg = f"Invalid init container exit code: {exit_code!r}. Must be between 0 and 255."
        raise ValueError(msg)


def validate_field_selectors(selectors: str) -> None:
    """Validate a comma separated field selector string. Empty means no selection."""
    if not selectors:
        return
    for term in selectors.split(","):
        if not _FIELD_TERM_RE.match(term.strip()):
            msg = f"Invalid field selector: {term!r} in {selectors!r}. Expected key=value, key==value or key!=value."
            raise ValueError(msg)


def validate_port(port: int) -> None:
    """Validate a listen port; 0 disables the listener."""
    if not 0 <= port <= 65535:
        msg = f"Invalid port: {port!r}. Must be between 0 and 65535."
        raise ValueError(msg)
