"""Scaling decisions and retirement selection.

Everything here is pure: the reconciler applies the decisions.
"""

import enum
from datetime import datetime
from typing import List

from .models import PoolSpec
from .pairing import PairingView, WorkerRegistryPair


class ScalingAction(enum.Enum):
    GROW = "grow"
    SHRINK = "shrink"
    HOLD = "hold"


def should_grow(view: PairingView, spec: PoolSpec) -> bool:
    registered = view.registered_count()
    return registered < spec.min_runners or (view.all_busy() and registered < spec.max_runners)


def should_shrink(view: PairingView, spec: PoolSpec) -> bool:
    # idle > 1 keeps one idle runner around as a warm standby
    registered = view.registered_count()
    return registered > spec.max_runners or (view.idle_count() > 1 and registered > spec.min_runners)


def growth_amount(view: PairingView, spec: PoolSpec) -> int:
    return max(spec.min_runners - view.registered_count(), 1)


def decide(view: PairingView, spec: PoolSpec) -> ScalingAction:
    if should_grow(view, spec):
        return ScalingAction.GROW
    elif should_shrink(view, spec):
        return ScalingAction.SHRINK
    return ScalingAction.HOLD


def retirement_candidates(view: PairingView, spec: PoolSpec, now: datetime) -> List[WorkerRegistryPair]:
    """Idle pairs past the pool's minTTL, ordered by its deletionOrder."""
    return view.idle_candidates(spec.min_ttl, spec.deletion_order, now)
