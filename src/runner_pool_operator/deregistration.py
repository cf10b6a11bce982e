"""Registry cleanup ahead of pod deletion.

Every runner pod is created with the registration finalizer. The finalizer
is only removed after the runner has been deregistered, so Kubernetes
cannot finish deleting a pod whose runner is still known to the registry.
"""

import enum
import logging

from .registry import RegistryError

logger = logging.getLogger(__name__)


class DeregistrationState(enum.IntEnum):
    ACTIVE = 0
    REQUESTED = 1
    DEREGISTERED = 2
    DELETABLE = 3


class DeregistrationGuard:
    def __init__(self, resource_store, registry, config):
        self.resource_store = resource_store
        self.registry = registry
        self.config = config

    def release(self, pool, pair, token) -> DeregistrationState:
        """Deregister the pair's runner and clear the pod's finalizer.

        A registry rejection leaves the pair ACTIVE; store failures propagate.
        """
        worker = pair.worker
        if not worker.has_marker(self.config.finalizer):
            return DeregistrationState.DEREGISTERED

        state = DeregistrationState.REQUESTED
        if pair.entry is not None and pair.entry.name and pair.entry.id:
            logger.info(f"Unregistering runner {pair.entry.name} (id {pair.entry.id})")
            try:
                self.registry.deregister(pool.spec.scope, token, pair.entry.id)
            except RegistryError as e:
                # usually still running a job, next pass tries again
                logger.warning(f"Could not unregister runner {pair.entry.name}: {e}")
                return DeregistrationState.ACTIVE

        logger.debug(f"Runner pod {pair.namespaced_name} is {state.name}, clearing finalizer")
        worker.clear_marker(self.config.finalizer)
        self.resource_store.update(worker)
        return DeregistrationState.DEREGISTERED

    def retire(self, pool, pair, token) -> DeregistrationState:
        state = self.release(pool, pair, token)
        if state < DeregistrationState.DEREGISTERED:
            return state
        self.resource_store.delete(pair.worker)
        logger.info(f"Retired runner pod {pair.namespaced_name}")
        return DeregistrationState.DELETABLE

    def sweep(self, pool, view, token):
        """Release every pod that is leaving the pool.

        Completed or evicted pods that nobody is deleting yet are deleted here.
        """
        for pair in view.deletion_sweep_candidates():
            state = self.release(pool, pair, token)
            if state < DeregistrationState.DEREGISTERED:
                continue
            if not pair.worker.terminating:
                logger.info(f"Deleting {pair.worker.lifecycle} pod {pair.namespaced_name}")
                self.resource_store.delete(pair.worker)
