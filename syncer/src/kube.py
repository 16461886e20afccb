from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from kubernetes import client, config
from kubernetes.client import CoreV1Api
from kubernetes.config.config_exception import ConfigException

from syncer.src.errors import BootstrapError

LOGGER = logging.getLogger(__name__)


def kubeconfig_path(env: Mapping[str, str] | None = None) -> str:
    """Return ``$KUBECONFIG`` when set, else ``~/.kube/config``."""
    values = env if env is not None else os.environ
    override = values.get("KUBECONFIG")
    if override:
        return override
    return os.path.join(os.path.expanduser("~"), ".kube", "config")


def load_kube_configuration(env: Mapping[str, str] | None = None) -> None:
    """Load Kubernetes client configuration.

    Attempts in-cluster config first (running inside a pod), falling back
    to the local kubeconfig for development.  Raises :class:`BootstrapError`
    when neither source is usable.
    """
    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
        return
    except ConfigException:
        LOGGER.info("In-cluster configuration unavailable, falling back to local kubeconfig")

    path = kubeconfig_path(env)
    try:
        config.load_kube_config(config_file=path)
    except (ConfigException, OSError) as exc:
        raise BootstrapError(f"failed to load kubeconfig from {path}: {exc}") from exc
    LOGGER.info("Loaded local kubeconfig from %s", path)


def build_core_client() -> CoreV1Api:
    """Return a CoreV1 API client using the active kube configuration."""
    try:
        return client.CoreV1Api()
    except Exception as exc:
        raise BootstrapError(f"failed to create Kubernetes client: {exc}") from exc
