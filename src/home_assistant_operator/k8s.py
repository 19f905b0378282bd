"""Kubernetes client helpers."""

import logging
from collections import namedtuple

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from . import crd

logger = logging.getLogger(__name__)

Clients = namedtuple("Clients", ["core", "networking", "custom"])

# Initialize clients
_clients = None


def load_config():
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")


def init_clients():
    """Initialize Kubernetes clients."""
    global _clients

    load_config()
    _clients = Clients(
        core=client.CoreV1Api(),
        networking=client.NetworkingV1Api(),
        custom=client.CustomObjectsApi(),
    )
    return _clients


def get_clients():
    """Get initialized Kubernetes clients."""
    if _clients is None:
        init_clients()
    return _clients


def read_or_none(read, name, namespace):
    """Call a ``read_namespaced_*`` method, mapping 404 to None."""
    try:
        return read(name=name, namespace=namespace)
    except ApiException as e:
        if e.status == 404:
            return None
        raise


def get_instance(custom_api, name, namespace):
    """Get an Instance custom resource as a dict, or None if it does not exist."""
    try:
        return custom_api.get_namespaced_custom_object(
            group=crd.GROUP,
            version=crd.VERSION,
            namespace=namespace,
            plural=crd.PLURAL,
            name=name,
        )
    except ApiException as e:
        if e.status == 404:
            return None
        logger.error(f"Error getting Instance {namespace}/{name}: {e}")
        raise
