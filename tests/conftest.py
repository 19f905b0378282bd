import copy
from functools import partial

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from home_assistant_operator import crd
from home_assistant_operator.k8s import Clients


class FakeApi:
    """Routes ``<verb>_namespaced_<kind>`` calls to the fake cluster."""

    def __init__(self, cluster):
        self._cluster = cluster

    def __getattr__(self, attr):
        verb, _, kind = attr.partition("_namespaced_")
        if not kind or verb not in ("read", "create", "replace", "delete"):
            raise AttributeError(attr)
        return partial(getattr(self._cluster, verb), kind)


class FakeCustomObjectsApi:
    def __init__(self, cluster):
        self._cluster = cluster

    def get_namespaced_custom_object(self, group, version, namespace, plural, name):
        assert (group, version, plural) == (crd.GROUP, crd.VERSION, crd.PLURAL)
        self._cluster.fail_if_requested("get", "instance")
        try:
            return copy.deepcopy(self._cluster.instances[(namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found")


def _volume_layout(pod):
    serialize = client.ApiClient().sanitize_for_serialization
    return (
        serialize(pod.spec.volumes),
        [serialize(container.volume_mounts) for container in pod.spec.containers],
    )


class FakeCluster:
    """In-memory object store recording every call made against it."""

    def __init__(self):
        self.objects = {}
        self.instances = {}
        self.calls = []
        self.failures = {}
        self.immutable_pod_volumes = False
        self.clients = Clients(
            core=FakeApi(self),
            networking=FakeApi(self),
            custom=FakeCustomObjectsApi(self),
        )

    def fail_once(self, verb, kind, status=500, reason="Internal Server Error"):
        self.failures[(verb, kind)] = ApiException(status=status, reason=reason)

    def fail_if_requested(self, verb, kind):
        error = self.failures.pop((verb, kind), None)
        if error is not None:
            raise error

    def add_instance(self, name="home", namespace="default", uid="uid-1234", **spec):
        self.instances[(namespace, name)] = {
            "apiVersion": crd.API_VERSION,
            "kind": crd.KIND,
            "metadata": {"name": name, "namespace": namespace, "uid": uid},
            "spec": spec,
        }
        return self.instances[(namespace, name)]

    def remove_instance(self, name="home", namespace="default"):
        del self.instances[(namespace, name)]

    def get(self, kind, name, namespace="default"):
        return self.objects.get((kind, namespace, name))

    def mutations(self):
        return [call for call in self.calls if call[0] != "read"]

    def reset_calls(self):
        self.calls = []

    def read(self, kind, name, namespace):
        self.calls.append(("read", kind, name))
        self.fail_if_requested("read", kind)
        try:
            return copy.deepcopy(self.objects[(kind, namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found")

    def create(self, kind, namespace, body):
        name = body.metadata.name
        self.calls.append(("create", kind, name))
        self.fail_if_requested("create", kind)
        if (kind, namespace, name) in self.objects:
            raise ApiException(status=409, reason="Conflict")
        self.objects[(kind, namespace, name)] = copy.deepcopy(body)

    def replace(self, kind, name, namespace, body):
        self.calls.append(("replace", kind, name))
        self.fail_if_requested("replace", kind)
        current = self.objects.get((kind, namespace, name))
        if current is None:
            raise ApiException(status=404, reason="Not Found")
        if kind == "pod" and self.immutable_pod_volumes and _volume_layout(current) != _volume_layout(body):
            raise ApiException(status=422, reason="Unprocessable Entity")
        self.objects[(kind, namespace, name)] = copy.deepcopy(body)

    def add_token_volume(self, name="home", namespace="default"):
        """Mimic the API server: mount a service account token and forbid volume changes."""
        pod = self.objects[("pod", namespace, name)]
        pod.spec.volumes.append(client.V1Volume(
            name="kube-api-access-x",
            projected=client.V1ProjectedVolumeSource(sources=[]),
        ))
        pod.spec.containers[0].volume_mounts.append(client.V1VolumeMount(
            name="kube-api-access-x",
            mount_path="/var/run/secrets/kubernetes.io/serviceaccount",
            read_only=True,
        ))
        self.immutable_pod_volumes = True

    def delete(self, kind, name, namespace):
        self.calls.append(("delete", kind, name))
        self.fail_if_requested("delete", kind)
        try:
            del self.objects[(kind, namespace, name)]
        except KeyError:
            raise ApiException(status=404, reason="Not Found")


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def ingress_spec():
    return {
        "enabled": True,
        "host": "home-assistant.example.com",
        "secretName": "wildcard-example-com-tls",
    }
