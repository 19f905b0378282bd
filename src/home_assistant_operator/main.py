"""Main operator entrypoint using Kopf."""

import logging

import kopf
from kubernetes.client.rest import ApiException

from . import config, crd, k8s
from .errors import ReconcileError
from .reconcile import InstanceState, Outcome, reconcile_instance, teardown

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MANAGED = {crd.LABEL_MANAGED_BY: config.MANAGED_BY}


@kopf.on.startup()
def startup_fn(settings: kopf.OperatorSettings, **kwargs):
    """Initialize Kubernetes clients and operator settings."""
    k8s.init_clients()
    settings.batching.worker_limit = config.WORKER_LIMIT
    settings.posting.enabled = config.POSTING_ENABLED
    logger.info(f"Operator started (managed-by={config.MANAGED_BY}, worker limit={config.WORKER_LIMIT})")


def report_status(patch, status, phase, reason, message):
    """Patch the Instance status, skipping the write when nothing changed."""
    current = (status.get("phase"), status.get("reason"), status.get("message"))
    if current == (phase, reason, message):
        return
    patch.status["phase"] = phase
    patch.status["reason"] = reason
    patch.status["message"] = message


def run_reconcile(name, namespace, status, patch):
    """Reconcile an Instance and record the outcome on its status."""
    try:
        result = reconcile_instance(name, namespace)
    except ReconcileError as e:
        reason = crd.REASON_INVALID_SPEC if e.permanent else crd.REASON_RECONCILE_FAILED
        report_status(patch, status, crd.PHASE_FAILED, reason, e.details())
        raise

    if result.state is InstanceState.ABSENT:
        # Being deleted, the status goes away with the object
        return result
    if result.changed:
        changes = ", ".join(f"{kind} {outcome}" for kind, outcome in result.outcomes.items()
                            if outcome is not Outcome.UNCHANGED)
        logger.info(f"Instance {namespace}/{name} reconciled: {changes}")
    report_status(patch, status, crd.PHASE_CREATED, crd.REASON_RECONCILED, "All resources are reconciled")
    return result


@kopf.on.create(crd.GROUP, crd.VERSION, crd.PLURAL)
@kopf.on.update(crd.GROUP, crd.VERSION, crd.PLURAL)
@kopf.on.resume(crd.GROUP, crd.VERSION, crd.PLURAL)
def instance_handler(name, namespace, status, patch, reason, **kwargs):
    """Handle Instance create/update/resume events."""
    logger.info(f"Handling Instance {name} in namespace {namespace} ({reason})")
    if not status.get("phase"):
        patch.status["phase"] = crd.PHASE_PENDING

    try:
        run_reconcile(name, namespace, status, patch)
    except ReconcileError as e:
        if e.permanent:
            raise kopf.PermanentError(str(e))
        raise kopf.TemporaryError(str(e), delay=config.RETRY_DELAY)
    except ApiException as e:
        logger.error(f"Reconciliation error: {e}", exc_info=True)
        raise kopf.TemporaryError(f"Reconciliation failed: {e}", delay=config.RETRY_DELAY)


@kopf.timer(crd.GROUP, crd.VERSION, crd.PLURAL, interval=config.RECONCILE_INTERVAL)
def instance_timer(name, namespace, status, patch, **kwargs):
    """Periodic reconciliation timer."""
    logger.debug(f"Timer reconciliation for Instance {namespace}/{name}")
    try:
        run_reconcile(name, namespace, status, patch)
    except (ReconcileError, ApiException) as e:
        logger.error(f"Timer reconciliation error: {e}")


@kopf.on.delete(crd.GROUP, crd.VERSION, crd.PLURAL)
def instance_delete(name, namespace, **kwargs):
    """Handle Instance deletion."""
    logger.info(f"Instance {name} deleted, cleaning up resources")
    try:
        teardown(k8s.get_clients(), name, namespace)
    except ReconcileError as e:
        raise kopf.TemporaryError(str(e), delay=config.RETRY_DELAY)


@kopf.on.event("v1", "pods", labels=MANAGED)
@kopf.on.event("v1", "services", labels=MANAGED)
@kopf.on.event("v1", "persistentvolumeclaims", labels=MANAGED)
@kopf.on.event("networking.k8s.io", "v1", "ingresses", labels=MANAGED)
def dependent_deleted(event, labels, namespace, **kwargs):
    """Reconcile the owning Instance when one of its resources disappears."""
    if event.get("type") != "DELETED":
        return
    owner = labels.get(crd.LABEL_INSTANCE)
    if not owner:
        return

    logger.info(f"Resource of Instance {namespace}/{owner} deleted, reconciling")
    try:
        reconcile_instance(owner, namespace)
    except (ReconcileError, ApiException) as e:
        logger.warning(f"Reconciliation of Instance {namespace}/{owner} failed: {e}")


def main():
    try:
        kopf.run()
    except KeyboardInterrupt:
        logger.info("Operator stopped by user")


if __name__ == "__main__":
    main()
