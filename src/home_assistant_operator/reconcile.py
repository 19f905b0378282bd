"""Core reconciliation logic.

Every invocation starts from scratch: the Instance is read, its state decides
between converging and tearing down, and each dependent kind is then handled
independently from what is currently observed in the cluster.

==========  ======================  =========================================
State       Observed Instance       Action
==========  ======================  =========================================
PRESENT     exists, not deleting    converge PVC, Pod, Service, Ingress
ABSENT      404 or being deleted    delete Ingress, Service, Pod, PVC
==========  ======================  =========================================

Per kind, the existing object decides the outcome: missing objects are
created, drifted objects are replaced, matching objects are left alone. The
PVC is only ever created, and the Ingress is deleted while disabled.
"""

import enum
import logging
from collections import namedtuple
from functools import partial

from kubernetes import client
from kubernetes.client.rest import ApiException

from . import crd
from .errors import InvalidSpecError, ReconcileError
from .k8s import get_clients, get_instance, read_or_none
from .templates import (
    create_ingress_manifest,
    create_pod_manifest,
    create_pvc_manifest,
    create_service_manifest,
    ingress_enabled,
)

logger = logging.getLogger(__name__)


class InstanceState(str, enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"

    def __str__(self):
        return self.value


class Kind(str, enum.Enum):
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    POD = "Pod"
    SERVICE = "Service"
    INGRESS = "Ingress"

    def __str__(self):
        return self.value


class Outcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    UNCHANGED = "unchanged"

    def __str__(self):
        return self.value


class ReconcileResult(namedtuple("ReconcileResult", ["state", "outcomes"])):
    """State the Instance was found in and what happened to each kind."""

    @property
    def changed(self):
        return any(outcome is not Outcome.UNCHANGED for outcome in self.outcomes.values())


Resource = namedtuple("Resource", ["kind", "read", "create", "replace", "delete"])

# Spec fields pushed on update, everything else is left as the server has it
POD_FIELDS = ("affinity", "host_network", "tolerations", "volumes", "containers")
SERVICE_FIELDS = ("type", "ports", "selector")
INGRESS_FIELDS = ("ingress_class_name", "rules", "tls")

_serializer = client.ApiClient()


def _resource(clients, kind):
    core, networking = clients.core, clients.networking
    if kind is Kind.PERSISTENT_VOLUME_CLAIM:
        return Resource(
            kind,
            core.read_namespaced_persistent_volume_claim,
            core.create_namespaced_persistent_volume_claim,
            core.replace_namespaced_persistent_volume_claim,
            core.delete_namespaced_persistent_volume_claim,
        )
    if kind is Kind.POD:
        return Resource(
            kind,
            core.read_namespaced_pod,
            core.create_namespaced_pod,
            core.replace_namespaced_pod,
            core.delete_namespaced_pod,
        )
    if kind is Kind.SERVICE:
        return Resource(
            kind,
            core.read_namespaced_service,
            core.create_namespaced_service,
            core.replace_namespaced_service,
            core.delete_namespaced_service,
        )
    return Resource(
        kind,
        networking.read_namespaced_ingress,
        networking.create_namespaced_ingress,
        networking.replace_namespaced_ingress,
        networking.delete_namespaced_ingress,
    )


def _contains(observed, wanted):
    """True when every field set in ``wanted`` has the same value in ``observed``.

    Lists match when the wanted items appear in the observed list in order,
    so entries the API server appends (token volumes, mounts) are tolerated.
    """
    if isinstance(wanted, dict):
        observed = observed or {}
        return isinstance(observed, dict) and all(
            _contains(observed.get(key), value) for key, value in wanted.items()
        )
    if isinstance(wanted, list):
        if observed is not None and not isinstance(observed, list):
            return False
        remaining = iter(observed or [])
        return all(any(_contains(item, value) for item in remaining) for value in wanted)
    if not wanted and not observed:
        # The server omits false and empty values
        return True
    return observed == wanted


def matches(observed, desired):
    """Whether an existing object already carries the desired state."""
    return _contains(
        _serializer.sanitize_for_serialization(observed),
        _serializer.sanitize_for_serialization(desired),
    )


def _merge_by(key, existing, desired):
    """Desired items replace existing items with the same key; other existing items stay in place."""
    if desired is None:
        return existing
    wanted = {key(item): item for item in desired}
    merged = [wanted.pop(key(item), item) for item in existing or []]
    return merged + [item for item in desired if key(item) in wanted]


def _name(item):
    return item.name


def _merge_containers(existing, desired):
    # Mounts added by the API server (service account token) must survive an update
    observed = {container.name: container for container in existing or []}
    for container in desired or []:
        current = observed.get(container.name)
        if current is not None:
            container.volume_mounts = _merge_by(_name, current.volume_mounts, container.volume_mounts)
    return _merge_by(_name, existing, desired)


# Pod volumes and mounts cannot change after creation, so list fields are merged
MERGERS = {
    "volumes": partial(_merge_by, _name),
    "containers": _merge_containers,
    "tolerations": partial(_merge_by, lambda toleration: (toleration.key, toleration.effect)),
}


def _merge_owner_references(existing, desired):
    """Replace references to the Instance, e.g. a stale uid after it was recreated."""
    if not desired:
        return existing
    owners = {(ref.kind, ref.name) for ref in desired}
    kept = [ref for ref in existing or [] if (ref.kind, ref.name) not in owners]
    return kept + desired


def overlay(observed, desired, fields):
    """Write desired metadata overlays and spec ``fields`` onto the observed object."""
    metadata = observed.metadata
    metadata.labels = {**(metadata.labels or {}), **(desired.metadata.labels or {})}
    annotations = {**(metadata.annotations or {}), **(desired.metadata.annotations or {})}
    metadata.annotations = annotations or None
    metadata.owner_references = _merge_owner_references(
        metadata.owner_references, desired.metadata.owner_references
    )
    for field in fields:
        value = getattr(desired.spec, field)
        if field in MERGERS:
            value = MERGERS[field](getattr(observed.spec, field), value)
        setattr(observed.spec, field, value)
    return observed


def _create(resource, desired):
    name, namespace = desired.metadata.name, desired.metadata.namespace
    try:
        resource.create(namespace=namespace, body=desired)
    except ApiException as e:
        if e.status != 409:
            raise
        # Created by a concurrent reconcile, the next pass compares it
        logger.info(f"{resource.kind} {namespace}/{name} already exists")
        return Outcome.UNCHANGED
    logger.info(f"{resource.kind} {namespace}/{name} created")
    return Outcome.CREATED


def _replace(resource, observed, desired, fields):
    name, namespace = desired.metadata.name, desired.metadata.namespace
    resource.replace(name=name, namespace=namespace, body=overlay(observed, desired, fields))
    logger.info(f"{resource.kind} {namespace}/{name} updated")
    return Outcome.UPDATED


def _delete(resource, name, namespace):
    try:
        resource.delete(name=name, namespace=namespace)
    except ApiException as e:
        if e.status == 404:
            return Outcome.UNCHANGED
        raise
    logger.info(f"{resource.kind} {namespace}/{name} deleted")
    return Outcome.DELETED


def _converge(resource, desired, fields):
    observed = read_or_none(resource.read, desired.metadata.name, desired.metadata.namespace)
    if observed is None:
        return _create(resource, desired)
    if matches(observed, desired):
        logger.debug(f"{resource.kind} {desired.metadata.namespace}/{desired.metadata.name} is up to date")
        return Outcome.UNCHANGED
    return _replace(resource, observed, desired, fields)


def ensure_pvc(clients, name, namespace, spec, uid=None):
    """Ensure the configuration PVC exists; an existing claim is never modified."""
    resource = _resource(clients, Kind.PERSISTENT_VOLUME_CLAIM)
    pvc_name = crd.claim_name(name)
    if read_or_none(resource.read, pvc_name, namespace) is not None:
        logger.debug(f"PVC {namespace}/{pvc_name} already exists")
        return Outcome.UNCHANGED
    return _create(resource, create_pvc_manifest(name, namespace, spec, uid))


def ensure_pod(clients, name, namespace, spec, uid=None):
    """Ensure the pod exists and runs the declared spec.

    Most pod spec fields are immutable. When the API server rejects the update
    the pod is deleted, and the next reconcile recreates it from scratch.
    """
    resource = _resource(clients, Kind.POD)
    desired = create_pod_manifest(name, namespace, spec, uid)
    observed = read_or_none(resource.read, name, namespace)
    if observed is None:
        return _create(resource, desired)
    if matches(observed, desired):
        logger.debug(f"Pod {namespace}/{name} is up to date")
        return Outcome.UNCHANGED
    try:
        return _replace(resource, observed, desired, POD_FIELDS)
    except ApiException as e:
        if e.status != 422:
            raise
        logger.warning(f"Pod {namespace}/{name} cannot be updated in place, recreating: {e.reason}")
        return _delete(resource, name, namespace)


def ensure_service(clients, name, namespace, spec, uid=None):
    desired = create_service_manifest(name, namespace, spec, uid)
    return _converge(_resource(clients, Kind.SERVICE), desired, SERVICE_FIELDS)


def ensure_ingress(clients, name, namespace, spec, uid=None):
    """Create or update the ingress while enabled, delete it once disabled."""
    resource = _resource(clients, Kind.INGRESS)
    if not ingress_enabled(spec):
        if read_or_none(resource.read, name, namespace) is None:
            return Outcome.UNCHANGED
        return _delete(resource, name, namespace)
    return _converge(resource, create_ingress_manifest(name, namespace, spec, uid), INGRESS_FIELDS)


def _run(name, namespace, state, steps):
    """Run every step, collecting outcomes and failures per kind."""
    outcomes = {}
    failures = {}
    for kind, step in steps:
        try:
            outcomes[kind] = step()
        except InvalidSpecError as e:
            logger.error(f"Invalid spec for {kind} of Instance {namespace}/{name}: {e}")
            failures[kind] = e
        except Exception as e:
            logger.error(f"Failed to reconcile {kind} of Instance {namespace}/{name}: {e}", exc_info=True)
            failures[kind] = e

    result = ReconcileResult(state, outcomes)
    if failures:
        raise ReconcileError(name, namespace, failures, result)
    return result


def converge(clients, name, namespace, instance):
    """Bring every dependent of a present Instance to its desired state."""
    spec = instance.get("spec") or {}
    uid = instance.get("metadata", {}).get("uid")
    steps = [
        (Kind.PERSISTENT_VOLUME_CLAIM, partial(ensure_pvc, clients, name, namespace, spec, uid)),
        (Kind.POD, partial(ensure_pod, clients, name, namespace, spec, uid)),
        (Kind.SERVICE, partial(ensure_service, clients, name, namespace, spec, uid)),
        (Kind.INGRESS, partial(ensure_ingress, clients, name, namespace, spec, uid)),
    ]
    return _run(name, namespace, InstanceState.PRESENT, steps)


def _remove(resource, name, namespace):
    if read_or_none(resource.read, name, namespace) is None:
        return Outcome.UNCHANGED
    return _delete(resource, name, namespace)


def teardown(clients, name, namespace):
    """Delete every dependent of an Instance that no longer exists."""
    logger.info(f"Cleaning up resources of Instance {namespace}/{name}")
    steps = [
        (kind, partial(_remove, _resource(clients, kind), resource_name, namespace))
        for kind, resource_name in (
            (Kind.INGRESS, name),
            (Kind.SERVICE, name),
            (Kind.POD, name),
            (Kind.PERSISTENT_VOLUME_CLAIM, crd.claim_name(name)),
        )
    ]
    return _run(name, namespace, InstanceState.ABSENT, steps)


def instance_state(instance):
    """An Instance that is being finalized counts as gone."""
    if instance is None or instance.get("metadata", {}).get("deletionTimestamp"):
        return InstanceState.ABSENT
    return InstanceState.PRESENT


def reconcile_instance(name, namespace, clients=None):
    """Reconcile one Instance identifier.

    Returns a ``ReconcileResult``. Raises ``ReconcileError`` when any kind
    failed, after every other kind has been attempted; a failure to read the
    Instance itself propagates unchanged.
    """
    clients = clients or get_clients()

    instance = get_instance(clients.custom, name, namespace)
    state = instance_state(instance)
    logger.debug(f"Reconciling Instance {namespace}/{name} ({state})")

    if state is InstanceState.ABSENT:
        return teardown(clients, name, namespace)
    return converge(clients, name, namespace, instance)
