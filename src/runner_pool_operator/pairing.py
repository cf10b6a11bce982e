"""Pairing of runner pods with registry entries."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from . import crd
from .models import RegistryEntry, WorkerInstance


@dataclass(frozen=True)
class WorkerRegistryPair:
    worker: WorkerInstance
    entry: Optional[RegistryEntry] = None

    @property
    def name(self):
        return self.worker.name

    @property
    def namespaced_name(self):
        return f"{self.worker.namespace}/{self.worker.name}"

    @property
    def registered(self):
        return self.entry is not None

    @property
    def busy(self):
        return self.entry is not None and self.entry.busy


def entries_for_pool(entries, prefix) -> List[RegistryEntry]:
    """Registry entries named after the pool's pods, e.g. ``runners-pod-``."""
    return [e for e in entries if e.name.startswith(prefix)]


class PairingView:
    """Join of a pool's pods and its registry entries by name.

    Counts follow the two input lists independently; a pod that has not
    registered yet raises ``pool_size`` but not ``registered_count``, which
    is what ``in_sync`` detects.
    """

    def __init__(self, workers, entries):
        self.workers = list(workers)
        self.entries = list(entries)
        by_name = {entry.name: entry for entry in self.entries}
        self.pairs = [WorkerRegistryPair(w, by_name.get(w.name)) for w in self.workers]

    @classmethod
    def build(cls, workers, entries) -> "PairingView":
        return cls(workers, entries)

    def pool_size(self):
        return len(self.workers)

    def registered_count(self):
        return len(self.entries)

    def in_sync(self):
        return self.pool_size() == self.registered_count()

    def busy_count(self):
        return sum(1 for entry in self.entries if entry.busy)

    def idle_count(self):
        return self.registered_count() - self.busy_count()

    def all_busy(self):
        return self.busy_count() == self.registered_count()

    def idle_candidates(self, ttl_floor: timedelta, order: str, now: datetime) -> List[WorkerRegistryPair]:
        """Registered, idle, live pairs older than ``ttl_floor``, in retirement order."""
        idles = [
            pair
            for pair in self.pairs
            if pair.registered
            and not pair.busy
            and not pair.worker.terminating
            and now >= pair.worker.created_at + ttl_floor
        ]
        return sorted(
            idles,
            key=lambda pair: pair.worker.created_at,
            reverse=order == crd.MOST_RECENT,
        )

    def deletion_sweep_candidates(self) -> List[WorkerRegistryPair]:
        """Pairs whose pod is leaving: terminating, evicted or completed."""
        return [
            pair
            for pair in self.pairs
            if pair.worker.terminating or pair.worker.evicted or pair.worker.completed
        ]

    def __repr__(self):
        return (
            f"PairingView(pods={self.pool_size()}, runners={self.registered_count()}, "
            f"busy={self.busy_count()}, idle={self.idle_count()})"
        )
