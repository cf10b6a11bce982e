"""
Shared test fixtures: in-memory stores, a fixed clock and pool factories.
"""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from runner_pool_operator.config import OperatorConfig
from runner_pool_operator.models import Pool, WorkerInstance
from runner_pool_operator.reconcile import PoolReconciler
from runner_pool_operator.registry import InMemoryRegistryAPI
from runner_pool_operator.stores import CredentialStore, PoolStore, ResourceStore

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
NAMESPACE = "ci"
POOL_NAME = "runners"
POOL_UID = "0b7c5e1e-pool"


def pool_object(name=POOL_NAME, min_runners=1, max_runners=2, **spec):
    body = {
        "apiVersion": "actions.runnerpool.io/v1alpha1",
        "kind": "RunnerPool",
        "metadata": {"name": name, "namespace": NAMESPACE, "uid": POOL_UID, "generation": 1},
        "spec": {
            "organization": "acme",
            "minRunners": min_runners,
            "maxRunners": max_runners,
            "tokenRef": {"name": "github-pat", "key": "GH_TOKEN"},
            "podTemplateSpec": {
                "metadata": {
                    "labels": {"app": "runner"},
                    "annotations": {"someAnnotationKey": "someAnnotationValue"},
                },
                "spec": {"containers": [{"name": "runner", "image": "runner:latest"}]},
            },
        },
    }
    body["spec"].update(spec)
    return body


def worker(name, age=timedelta(hours=1), finalizers=None, now=NOW, **kwargs):
    return WorkerInstance(
        name=name,
        namespace=NAMESPACE,
        created_at=now - age,
        phase=kwargs.pop("phase", "Running"),
        finalizers=list(finalizers) if finalizers is not None else [OperatorConfig().finalizer],
        **kwargs,
    )


class FakeResourceStore(ResourceStore):
    """Pods in a dict; a pod with finalizers only disappears once they are cleared."""

    def __init__(self, clock=lambda: NOW):
        self.clock = clock
        self.pods = {}
        self.created = []
        self.deleted = []
        self.updated = []
        self._counter = 0

    def add(self, instance):
        self.pods[instance.name] = instance
        return instance

    def list(self, pool):
        return [copy.copy(w) for w in self.pods.values()]

    def create(self, pool):
        self._counter += 1
        instance = WorkerInstance(
            name=f"{pool.name}-pod-{self._counter:05d}",
            namespace=pool.namespace,
            created_at=self.clock(),
            phase="Pending",
            finalizers=[OperatorConfig().finalizer],
        )
        self.pods[instance.name] = instance
        self.created.append(instance.name)
        return instance

    def delete(self, instance):
        stored = self.pods.get(instance.name)
        if stored is None:
            return False
        self.deleted.append(instance.name)
        if stored.finalizers:
            stored.deleting = True
        else:
            del self.pods[instance.name]
        return True

    def update(self, instance):
        self.updated.append(instance.name)
        stored = self.pods.get(instance.name)
        if stored is None:
            return
        stored.finalizers = list(instance.finalizers)
        if stored.deleting and not stored.finalizers:
            del self.pods[instance.name]

    @property
    def mutations(self):
        return len(self.created) + len(self.deleted) + len(self.updated)


class FakeCredentialStore(CredentialStore):
    def __init__(self, reference="pat-token"):
        self.credentials = {}
        self.reference = reference
        self.puts = []

    def get(self, pool):
        return self.credentials.get(pool.name)

    def put(self, pool, credential):
        self.credentials[pool.name] = credential
        self.puts.append(credential)

    def reference_token(self, pool):
        return self.reference


class FakePoolStore(PoolStore):
    def __init__(self, *objects):
        self.objects = {(o["metadata"]["namespace"], o["metadata"]["name"]): o for o in objects}
        self.status_updates = []

    def get(self, namespace, name):
        obj = self.objects.get((namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def update_status(self, namespace, name, status):
        self.status_updates.append(status.to_dict())
        self.objects[(namespace, name)]["status"] = status.to_dict()

    def status(self, name=POOL_NAME):
        return self.objects[(NAMESPACE, name)].get("status")


@pytest.fixture
def config():
    return OperatorConfig()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def registry(clock):
    return InMemoryRegistryAPI(clock=clock)


@pytest.fixture
def resources(clock):
    return FakeResourceStore(clock)


@pytest.fixture
def credential_store():
    return FakeCredentialStore()


@pytest.fixture
def pool():
    return Pool.from_object(pool_object())


@pytest.fixture
def make_reconciler(resources, credential_store, registry, config, clock):
    def _make(*objects):
        pools = FakePoolStore(*objects)
        reconciler = PoolReconciler(pools, resources, credential_store, registry, config, clock=clock)
        return reconciler, pools

    return _make
