"""Core reconciliation logic."""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from . import crd
from .credentials import CredentialManager
from .deregistration import DeregistrationGuard, DeregistrationState
from .models import (
    Condition,
    Pool,
    PoolStatus,
    ValidationError,
    format_time,
    reconciliation_period,
)
from .pairing import PairingView, entries_for_pool
from .scaling import ScalingAction, decide, growth_amount, retirement_candidates

logger = logging.getLogger(__name__)


class OutcomeKind(enum.Enum):
    OK = "Ok"
    RETRY = "Retry"
    FAIL = "Fail"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    requeue_after: Optional[float] = None
    message: str = ""

    @property
    def done(self):
        return self.requeue_after is None


class PoolReconciler:
    """Runs one reconciliation pass for a RunnerPool.

    A pass refreshes the registration token, releases runners whose pods are
    leaving, and then grows the pool or retires one idle runner. Passes for
    the same pool must not overlap; the caller serializes them.
    """

    def __init__(self, pool_store, resource_store, credential_store, registry, config, clock=None, events=None):
        self.pool_store = pool_store
        self.resource_store = resource_store
        self.credential_store = credential_store
        self.registry = registry
        self.config = config
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        # called as events(body, reason=..., message=...), e.g. kopf.info
        self.events = events
        self.credentials = CredentialManager(credential_store, registry, config, clock=self.clock)
        self.guard = DeregistrationGuard(resource_store, registry, config)

    def reconcile(self, namespace, name) -> Outcome:
        logger.info(f"Reconciling RunnerPool {namespace}/{name}")
        default_period = reconciliation_period(None).total_seconds()

        try:
            obj = self.pool_store.get(namespace, name)
        except Exception as e:
            logger.error(f"Could not read RunnerPool {namespace}/{name}: {e}", exc_info=True)
            return Outcome(OutcomeKind.FAIL, default_period, str(e))

        if obj is None:
            # owned pods and secrets are garbage collected with the pool
            logger.info(f"RunnerPool {namespace}/{name} not found, stopping")
            return Outcome(OutcomeKind.OK)

        period = reconciliation_period(obj.get("spec")).total_seconds()
        generation = obj.get("metadata", {}).get("generation")

        try:
            pool = Pool.from_object(obj)
        except ValidationError as e:
            logger.error(f"Validation error for RunnerPool {namespace}/{name}: {e}")
            status = PoolStatus.from_dict(obj.get("status"))
            return self._finish(
                namespace, name, status, generation, period,
                OutcomeKind.RETRY, crd.REASON_VALIDATION_FAILED, str(e),
            )

        try:
            kind, reason, message = self.handle_scaling(pool)
        except Exception as e:
            logger.error(f"Reconciliation error for RunnerPool {namespace}/{name}: {e}", exc_info=True)
            kind, reason, message = OutcomeKind.FAIL, crd.REASON_FAILED, str(e)

        return self._finish(
            pool.namespace, pool.name, pool.status, pool.generation, period, kind, reason, message
        )

    def build_view(self, pool, token) -> PairingView:
        workers = self.resource_store.list(pool)
        entries = entries_for_pool(
            self.registry.list_entries(pool.spec.scope, token),
            self.config.worker_name_prefix(pool.name),
        )
        view = PairingView.build(workers, entries)
        logger.debug(f"RunnerPool {pool.namespace}/{pool.name}: {view}")
        return view

    def handle_scaling(self, pool):
        now = self.clock()
        token = self.credential_store.reference_token(pool)
        view = self.build_view(pool, token)

        # keep the registration token fresh
        self.credentials.ensure_fresh(pool)

        # pods may have been deleted directly, not through the operator
        leaving = view.deletion_sweep_candidates()
        self.guard.sweep(pool, view, token)

        if not view.in_sync():
            logger.info(
                f"Pods and runner API not in sync for {pool.namespace}/{pool.name} "
                f"({view.pool_size()} pods, {view.registered_count()} runners), returning early"
            )
            return (
                OutcomeKind.RETRY,
                crd.REASON_OUT_OF_SYNC,
                f"{view.pool_size()} pods but {view.registered_count()} registered runners",
            )

        if leaving:
            # counts still include them until they are gone
            logger.info(
                f"{len(leaving)} runner pods of {pool.namespace}/{pool.name} are leaving, "
                f"holding scaling until the next pass"
            )
            return (
                OutcomeKind.RETRY,
                crd.REASON_OUT_OF_SYNC,
                f"{len(leaving)} pods are leaving the pool",
            )

        action = decide(view, pool.spec)
        if action is ScalingAction.GROW:
            self.scale_up(pool, view)
        elif action is ScalingAction.SHRINK:
            logger.info(
                f"Scaling down {pool.namespace}/{pool.name}: {view.registered_count()} runners, "
                f"{view.idle_count()} idle, maxRunners {pool.spec.max_runners}"
            )
            self.scale_down(pool, view, token, now)
        else:
            pool.status.current_size = view.pool_size()

        return OutcomeKind.OK, crd.REASON_SUCCEEDED, ""

    def scale_up(self, pool, view):
        amount = growth_amount(view, pool.spec)
        logger.info(f"Scaling up {pool.namespace}/{pool.name} by {amount}")

        pool.status.current_size = view.pool_size()
        self.pool_store.update_status(pool.namespace, pool.name, pool.status)

        for _ in range(amount):
            created = self.resource_store.create(pool)
            self.post_event(pool, f"Created pod {created.namespace}/{created.name}")
        pool.status.current_size += amount

    def scale_down(self, pool, view, token, now):
        """Retire the first idle runner that the registry lets go of."""
        pool.status.current_size = view.pool_size()
        candidates = retirement_candidates(view, pool.spec, now)
        if not candidates:
            logger.info(f"No idle runner of {pool.namespace}/{pool.name} is past minTTL yet")
            return None

        for pair in candidates:
            state = self.guard.retire(pool, pair, token)
            if state is DeregistrationState.DELETABLE:
                self.post_event(pool, f"Deleted pod {pair.namespaced_name}")
                pool.status.current_size -= 1
                return pair
        return None

    def post_event(self, pool, message, reason="Scaling"):
        """Record a Kubernetes Event on the pool object."""
        if self.events is None:
            return
        body = {
            "apiVersion": crd.API_VERSION,
            "kind": crd.KIND,
            "metadata": {"name": pool.name, "namespace": pool.namespace, "uid": pool.uid},
        }
        self.events(body, reason=reason, message=message)

    def finalize(self, obj) -> int:
        """Retire every runner of a pool that is being deleted.

        Returns how many runners could not be released yet.
        """
        pool = Pool.from_object(dict(obj))
        token = self.credential_store.reference_token(pool)
        view = self.build_view(pool, token)
        remaining = 0
        for pair in view.pairs:
            if self.guard.retire(pool, pair, token) is not DeregistrationState.DELETABLE:
                remaining += 1
        return remaining

    def _finish(self, namespace, name, status, generation, period, kind, reason, message):
        condition = Condition(
            type=crd.CONDITION_RECONCILE_SUCCESS,
            status="False" if kind is OutcomeKind.FAIL or reason == crd.REASON_VALIDATION_FAILED else "True",
            reason=reason,
            message=message,
            last_transition_time=format_time(self.clock()),
            observed_generation=generation,
        )
        status.record(condition)
        try:
            self.pool_store.update_status(namespace, name, status)
        except Exception as e:
            logger.error(f"Could not update status of RunnerPool {namespace}/{name}: {e}", exc_info=True)
            return Outcome(OutcomeKind.FAIL, period, str(e))
        return Outcome(kind, period, message)
