"""Kubernetes client construction."""

from __future__ import annotations

import structlog
from kubernetes import client as k8s_client
from kubernetes.config import ConfigException, load_incluster_config, new_client_from_config

log = structlog.get_logger()


def load_k8s_api_client(kubeconfig: str | None = None, context: str | None = None) -> k8s_client.ApiClient:
    """Create a Kubernetes API client.

    An explicit kubeconfig or context always goes through the kubeconfig loader.
    Otherwise the in-cluster service account is tried first, then the default
    kubeconfig location.

    Raises:
        ConfigException: If no usable configuration is found.
    """
    if kubeconfig or context:
        log.debug("loading_kubeconfig", kubeconfig=kubeconfig, context=context)
        return new_client_from_config(config_file=kubeconfig, context=context)

    try:
        configuration = k8s_client.Configuration()
        load_incluster_config(client_configuration=configuration)
    except ConfigException:
        log.debug("in_cluster_config_unavailable")
        return new_client_from_config()

    log.debug("loaded_in_cluster_config")
    return k8s_client.ApiClient(configuration)
