"""Main operator entrypoint using Kopf."""

import logging

import kopf

from . import crd
from .config import OperatorConfig
from .k8s import (
    KubernetesCredentialStore,
    KubernetesPoolStore,
    KubernetesResourceStore,
    get_clients,
)
from .reconcile import PoolReconciler
from .registry import GitHubRegistryAPI, InMemoryRegistryAPI

logger = logging.getLogger(__name__)

_reconciler = None


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def build_registry(operator_config):
    if operator_config.registry == "memory":
        logger.warning("Using in-memory runner registry, no runners will really be registered")
        return InMemoryRegistryAPI()
    return GitHubRegistryAPI(
        base_url=operator_config.github_url,
        timeout=operator_config.request_timeout,
    )


def build_reconciler(operator_config):
    v1, custom_api = get_clients()
    return PoolReconciler(
        pool_store=KubernetesPoolStore(custom_api, timeout=operator_config.request_timeout),
        resource_store=KubernetesResourceStore(v1, operator_config),
        credential_store=KubernetesCredentialStore(v1, operator_config),
        registry=build_registry(operator_config),
        config=operator_config,
        events=kopf.info,
    )


def get_reconciler():
    global _reconciler
    if _reconciler is None:
        operator_config = OperatorConfig.from_env()
        _reconciler = build_reconciler(operator_config)
    return _reconciler


@kopf.on.startup()
def configure(**kwargs):
    """Set up logging, clients and the reconciler before handlers run."""
    operator_config = OperatorConfig.from_env()
    configure_logging(operator_config.log_level)
    global _reconciler
    _reconciler = build_reconciler(operator_config)
    logger.info(f"Runner pool operator started (registry: {operator_config.registry})")


@kopf.daemon(crd.GROUP, crd.VERSION, crd.PLURAL)
def runnerpool_daemon(name, namespace, stopped, **kwargs):
    """Reconcile one RunnerPool on its reconciliation period.

    One daemon runs per pool, so passes of the same pool never overlap.
    """
    reconciler = get_reconciler()
    while not stopped:
        try:
            outcome = reconciler.reconcile(namespace, name)
        except Exception as e:
            logger.error(f"Reconciliation error: {e}", exc_info=True)
            raise kopf.TemporaryError(f"Reconciliation failed: {e}", delay=30)

        if outcome.done:
            return
        logger.debug(f"RunnerPool {namespace}/{name}: {outcome.kind.value}, next pass in {outcome.requeue_after}s")
        stopped.wait(outcome.requeue_after)


@kopf.on.delete(crd.GROUP, crd.VERSION, crd.PLURAL)
def runnerpool_delete(body, name, namespace, **kwargs):
    """Handle RunnerPool deletion."""
    logger.info(f"RunnerPool {namespace}/{name} deleted, unregistering its runners")
    try:
        remaining = get_reconciler().finalize(body)
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        raise kopf.PermanentError(str(e))
    if remaining:
        raise kopf.TemporaryError(f"{remaining} runners of {namespace}/{name} are still busy", delay=30)
    # Owner references remove the token secret once the pool is gone


def run():
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    run()
