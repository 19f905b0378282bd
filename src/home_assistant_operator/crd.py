"""CRD schema constants and helpers."""

# CRD Group, Version, and Kind
GROUP = "home-assistant.lmatfy.io"
VERSION = "v1alpha1"
PLURAL = "instances"
KIND = "Instance"

# API version string
API_VERSION = f"{GROUP}/{VERSION}"

# Status phases
PHASE_PENDING = "Pending"
PHASE_CREATED = "Created"
PHASE_FAILED = "Failed"

# Status reasons
REASON_RECONCILED = "Reconciled"
REASON_RECONCILE_FAILED = "ReconcileFailed"
REASON_INVALID_SPEC = "InvalidSpec"

# Home Assistant listens on a fixed port
HTTP_PORT = 8123
HTTP_PORT_NAME = "http"

DEFAULT_STORAGE_SIZE = "1Gi"
CLAIM_SUFFIX = "-config"

# Identity labels
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_NAME = "app.kubernetes.io/name"
LABEL_VERSION = "app.kubernetes.io/version"


def claim_name(name):
    """Name of the configuration volume claim of an instance."""
    return f"{name}{CLAIM_SUFFIX}"
