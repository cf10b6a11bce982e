"""Kubernetes client helpers and Kubernetes-backed stores."""

import base64
import logging

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from . import crd
from .credentials import parse_expiry
from .models import RegistrationCredential, WorkerInstance
from .stores import CredentialStore, PoolStore, ResourceStore
from .templates import create_pod_manifest, create_token_secret_manifest

logger = logging.getLogger(__name__)

# Initialize clients
_v1 = None
_custom_api = None


def init_clients():
    """Initialize Kubernetes clients."""
    global _v1, _custom_api

    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")

    _v1 = client.CoreV1Api()
    _custom_api = client.CustomObjectsApi()

    return _v1, _custom_api


def get_clients():
    """Get initialized Kubernetes clients."""
    global _v1, _custom_api
    if _v1 is None or _custom_api is None:
        init_clients()
    return _v1, _custom_api


def is_owned_by(obj, uid):
    return any(ref.uid == uid for ref in (obj.metadata.owner_references or []))


class KubernetesResourceStore(ResourceStore):
    """Runner pods, selected by the pool label and filtered by owner."""

    def __init__(self, v1, operator_config, timeout=None):
        self.v1 = v1
        self.config = operator_config
        self.timeout = timeout or operator_config.request_timeout

    def list(self, pool):
        pods = self.v1.list_namespaced_pod(
            namespace=pool.namespace,
            label_selector=f"{self.config.pool_label}={pool.name}",
            _request_timeout=self.timeout,
        )
        # owner filtering cannot be done server-side
        return [WorkerInstance.from_pod(pod) for pod in pods.items if is_owned_by(pod, pool.uid)]

    def create(self, pool):
        pod = create_pod_manifest(pool, self.config)
        created = self.v1.create_namespaced_pod(
            namespace=pool.namespace, body=pod, _request_timeout=self.timeout
        )
        logger.info(f"Created pod {created.metadata.namespace}/{created.metadata.name}")
        return WorkerInstance.from_pod(created)

    def delete(self, worker):
        try:
            self.v1.delete_namespaced_pod(
                name=worker.name, namespace=worker.namespace, _request_timeout=self.timeout
            )
            logger.info(f"Deleted pod {worker.namespace}/{worker.name}")
            return True
        except ApiException as e:
            if e.status == 404:
                return False
            logger.error(f"Error deleting pod: {e}")
            raise

    def update(self, worker):
        pod = worker.resource
        if pod is None:
            pod = self.v1.read_namespaced_pod(
                name=worker.name, namespace=worker.namespace, _request_timeout=self.timeout
            )
        pod.metadata.finalizers = list(worker.finalizers)
        worker.resource = self.v1.replace_namespaced_pod(
            name=worker.name, namespace=worker.namespace, body=pod, _request_timeout=self.timeout
        )


class KubernetesCredentialStore(CredentialStore):
    """Registration tokens in one secret per pool."""

    def __init__(self, v1, operator_config, timeout=None):
        self.v1 = v1
        self.config = operator_config
        self.timeout = timeout or operator_config.request_timeout

    def _read_secret(self, name, namespace):
        try:
            return self.v1.read_namespaced_secret(
                name=name, namespace=namespace, _request_timeout=self.timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def get(self, pool):
        secret = self._read_secret(self.config.token_secret_name(pool.name), pool.namespace)
        if secret is None:
            return None
        annotations = secret.metadata.annotations or {}
        return RegistrationCredential(
            token=_decode(secret.data, self.config.token_key),
            expires_at=parse_expiry(annotations.get(self.config.expiry_annotation)),
        )

    def put(self, pool, credential):
        name = self.config.token_secret_name(pool.name)
        body = create_token_secret_manifest(pool, credential, self.config)
        if self._read_secret(name, pool.namespace) is None:
            self.v1.create_namespaced_secret(
                namespace=pool.namespace, body=body, _request_timeout=self.timeout
            )
            logger.info(f"Created registration secret {pool.namespace}/{name}")
        else:
            self.v1.patch_namespaced_secret(
                name=name, namespace=pool.namespace, body=body, _request_timeout=self.timeout
            )
            logger.info(f"Updated registration secret {pool.namespace}/{name}")

    def reference_token(self, pool):
        ref = pool.spec.token_ref
        if not ref.name:
            return ""
        secret = self.v1.read_namespaced_secret(
            name=ref.name, namespace=pool.namespace, _request_timeout=self.timeout
        )
        return _decode(secret.data, ref.key)


class KubernetesPoolStore(PoolStore):
    """RunnerPool custom objects and their status subresource."""

    def __init__(self, custom_api, timeout=30.0):
        self.custom_api = custom_api
        self.timeout = timeout

    def get(self, namespace, name):
        try:
            return self.custom_api.get_namespaced_custom_object(
                crd.GROUP, crd.VERSION, namespace, crd.PLURAL, name,
                _request_timeout=self.timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def update_status(self, namespace, name, status):
        self.custom_api.patch_namespaced_custom_object_status(
            crd.GROUP, crd.VERSION, namespace, crd.PLURAL, name,
            body={"status": status.to_dict()},
            _request_timeout=self.timeout,
        )


def _decode(data, key):
    value = (data or {}).get(key)
    if not value:
        return ""
    return base64.b64decode(value).decode("utf-8")
