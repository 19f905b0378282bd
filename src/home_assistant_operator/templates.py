"""Kubernetes resource templates.

Everything in this module is pure: an Instance spec (the ``spec`` dict of the
custom resource) goes in, ``kubernetes.client`` models come out. Fields copied
verbatim from the Instance (``env``, ``affinity``) stay in their camelCase dict
form, the client serializes dicts as they are.
"""

from kubernetes import client
from kubernetes.utils import parse_quantity

from . import config, crd
from .errors import InvalidSpecError

# Pods survive this long on a node that stops reporting before eviction
TOLERATION_SECONDS = 300
DBUS_SOCKET_PATH = "/run/dbus"
CONFIG_MOUNT_PATH = "/config"


def image_tag(spec):
    """Image tag the instance runs."""
    return spec.get("version") or config.DEFAULT_VERSION


def image(spec):
    return f"{config.IMAGE_REPOSITORY}:{image_tag(spec)}"


def identity_labels(name, spec):
    """Labels identifying an instance's resources; they take precedence over user labels."""
    return {
        crd.LABEL_INSTANCE: name,
        crd.LABEL_MANAGED_BY: config.MANAGED_BY,
        crd.LABEL_NAME: name,
        crd.LABEL_VERSION: image_tag(spec),
    }


def selector_labels(name):
    return {
        crd.LABEL_INSTANCE: name,
        crd.LABEL_NAME: name,
    }


def merge_labels(name, spec, existing=None):
    """Overlay user labels, then identity labels, onto ``existing``."""
    labels = dict(existing or {})
    labels.update(spec.get("labels") or {})
    labels.update(identity_labels(name, spec))
    return labels


def merge_annotations(spec, existing=None):
    annotations = dict(existing or {})
    annotations.update(spec.get("annotations") or {})
    return annotations


def owner_references(name, uid):
    """Owner references pointing back at the Instance, or None without a uid."""
    if not uid:
        return None
    return [
        client.V1OwnerReference(
            api_version=crd.API_VERSION,
            kind=crd.KIND,
            name=name,
            uid=uid,
            controller=True,
            block_owner_deletion=True,
        )
    ]


def object_meta(name, namespace, spec, uid, resource_name=None):
    return client.V1ObjectMeta(
        name=resource_name or name,
        namespace=namespace,
        labels=merge_labels(name, spec),
        annotations=merge_annotations(spec) or None,
        owner_references=owner_references(name, uid),
    )


def storage_size(spec):
    """Requested claim size, validated as a Kubernetes quantity."""
    size = (spec.get("persistence") or {}).get("size") or crd.DEFAULT_STORAGE_SIZE
    try:
        parse_quantity(size)
    except ValueError as e:
        raise InvalidSpecError(f"Invalid persistence size {size!r}: {e}") from e
    return size


def create_pvc_manifest(name, namespace, spec, uid=None):
    """Create the configuration PVC manifest."""
    persistence = spec.get("persistence") or {}
    return client.V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=object_meta(name, namespace, spec, uid, crd.claim_name(name)),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteOnce"],
            storage_class_name=persistence.get("storageClassName"),
            resources=client.V1VolumeResourceRequirements(
                requests={"storage": storage_size(spec)}
            ),
        ),
    )


def _tcp_probe(failure_threshold, period_seconds):
    return client.V1Probe(
        failure_threshold=failure_threshold,
        period_seconds=period_seconds,
        success_threshold=1,
        timeout_seconds=1,
        tcp_socket=client.V1TCPSocketAction(port=crd.HTTP_PORT),
    )


def _tolerations():
    return [
        client.V1Toleration(
            effect="NoExecute",
            key=key,
            operator="Exists",
            toleration_seconds=TOLERATION_SECONDS,
        )
        for key in ("node.kubernetes.io/not-ready", "node.kubernetes.io/unreachable")
    ]


def create_pod_manifest(name, namespace, spec, uid=None):
    """Create the Home Assistant pod manifest."""
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=object_meta(name, namespace, spec, uid),
        spec=client.V1PodSpec(
            affinity=spec.get("affinity") or None,
            host_network=bool(spec.get("hostNetwork", False)),
            tolerations=_tolerations(),
            containers=[
                client.V1Container(
                    name=name,
                    image=image(spec),
                    image_pull_policy="IfNotPresent",
                    env=spec.get("env") or None,
                    ports=[
                        client.V1ContainerPort(
                            name=crd.HTTP_PORT_NAME,
                            container_port=crd.HTTP_PORT,
                            host_port=crd.HTTP_PORT,
                            protocol="TCP",
                        )
                    ],
                    # Slow first boots get 30 x 5s before liveness takes over
                    startup_probe=_tcp_probe(30, 5),
                    liveness_probe=_tcp_probe(3, 10),
                    readiness_probe=_tcp_probe(3, 10),
                    # Bluetooth and other local buses need a privileged container
                    security_context=client.V1SecurityContext(privileged=True),
                    volume_mounts=[
                        client.V1VolumeMount(name="config", mount_path=CONFIG_MOUNT_PATH),
                        client.V1VolumeMount(name="dbus", mount_path=DBUS_SOCKET_PATH),
                    ],
                )
            ],
            volumes=[
                client.V1Volume(
                    name="config",
                    persistent_volume_claim=client.V1PersistentVolumeClaimVolumeSource(
                        claim_name=crd.claim_name(name)
                    ),
                ),
                client.V1Volume(
                    name="dbus",
                    host_path=client.V1HostPathVolumeSource(path=DBUS_SOCKET_PATH),
                ),
            ],
        ),
    )


def create_service_manifest(name, namespace, spec, uid=None):
    """Create the ClusterIP service manifest."""
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=object_meta(name, namespace, spec, uid),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector=selector_labels(name),
            ports=[
                client.V1ServicePort(
                    name=crd.HTTP_PORT_NAME,
                    port=crd.HTTP_PORT,
                    protocol="TCP",
                    target_port=crd.HTTP_PORT_NAME,
                )
            ],
        ),
    )


def ingress_enabled(spec):
    return bool((spec.get("ingress") or {}).get("enabled", False))


def create_ingress_manifest(name, namespace, spec, uid=None):
    """Create the ingress manifest routing the declared host to the service."""
    ingress = spec.get("ingress") or {}
    host = ingress.get("host") or None
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=object_meta(name, namespace, spec, uid),
        spec=client.V1IngressSpec(
            ingress_class_name=ingress.get("ingressClassName"),
            rules=[
                client.V1IngressRule(
                    host=host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path="/",
                                path_type="Prefix",
                                backend=client.V1IngressBackend(
                                    service=client.V1IngressServiceBackend(
                                        name=name,
                                        port=client.V1ServiceBackendPort(
                                            number=crd.HTTP_PORT
                                        ),
                                    )
                                ),
                            )
                        ]
                    ),
                )
            ],
            tls=[
                client.V1IngressTLS(
                    hosts=[host] if host else None,
                    secret_name=ingress.get("secretName") or None,
                )
            ],
        ),
    )


def desired_manifests(name, namespace, spec, uid=None):
    """All dependents an instance should have, in reconcile order."""
    manifests = [
        create_pvc_manifest(name, namespace, spec, uid),
        create_pod_manifest(name, namespace, spec, uid),
        create_service_manifest(name, namespace, spec, uid),
    ]
    if ingress_enabled(spec):
        manifests.append(create_ingress_manifest(name, namespace, spec, uid))
    return manifests
