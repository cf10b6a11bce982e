"""Unit tests for pairing runner pods with registry entries."""

from datetime import timedelta

import pytest

from conftest import NOW, worker
from runner_pool_operator import crd
from runner_pool_operator.models import RegistryEntry
from runner_pool_operator.pairing import PairingView, entries_for_pool


@pytest.fixture
def workers():
    return [
        worker("runners-pod-1", age=timedelta(minutes=30)),
        worker("runners-pod-2", age=timedelta(minutes=20)),
        worker("runners-pod-3", age=timedelta(minutes=10)),
    ]


def entries(*names, busy=()):
    return [RegistryEntry(name, i + 1, name in busy) for i, name in enumerate(names)]


class TestCounts:
    def test_in_sync(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3"))
        assert view.pool_size() == 3
        assert view.registered_count() == 3
        assert view.in_sync()

    @pytest.mark.parametrize("n_workers, n_entries", [(3, 2), (2, 3)])
    def test_out_of_sync(self, workers, n_workers, n_entries):
        names = ["runners-pod-1", "runners-pod-2", "runners-pod-3"]
        view = PairingView.build(workers[:n_workers], entries(*names[:n_entries]))
        assert not view.in_sync()

    def test_busy_and_idle(self, workers):
        view = PairingView.build(
            workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3", busy={"runners-pod-2"})
        )
        assert view.busy_count() == 1
        assert view.idle_count() == 2
        assert not view.all_busy()

    def test_all_busy_with_no_entries(self):
        view = PairingView.build([], [])
        assert view.all_busy()
        assert view.in_sync()

    def test_unregistered_pod_has_empty_registry_side(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1"))
        by_name = {p.name: p for p in view.pairs}
        assert by_name["runners-pod-1"].registered
        assert not by_name["runners-pod-2"].registered
        assert by_name["runners-pod-2"].entry is None

    def test_entry_without_pod_is_not_paired(self, workers):
        view = PairingView.build(workers[:1], entries("runners-pod-1", "runners-pod-9"))
        assert [p.name for p in view.pairs] == ["runners-pod-1"]
        assert view.registered_count() == 2


def test_entries_for_pool_filters_by_prefix():
    all_entries = entries("runners-pod-1", "other-pod-1", "runners-gpu-pod-1", "runners-pod-2")
    assert [e.name for e in entries_for_pool(all_entries, "runners-pod-")] == ["runners-pod-1", "runners-pod-2"]


class TestIdleCandidates:
    def test_oldest_first(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3"))
        idles = view.idle_candidates(timedelta(0), crd.LEAST_RECENT, NOW)
        assert [p.name for p in idles] == ["runners-pod-1", "runners-pod-2", "runners-pod-3"]

    def test_newest_first(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3"))
        idles = view.idle_candidates(timedelta(0), crd.MOST_RECENT, NOW)
        assert [p.name for p in idles] == ["runners-pod-3", "runners-pod-2", "runners-pod-1"]

    def test_busy_and_terminating_are_excluded(self, workers):
        workers[0].deleting = True
        view = PairingView.build(
            workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3", busy={"runners-pod-2"})
        )
        idles = view.idle_candidates(timedelta(0), crd.LEAST_RECENT, NOW)
        assert [p.name for p in idles] == ["runners-pod-3"]

    def test_ttl_floor(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3"))
        idles = view.idle_candidates(timedelta(minutes=15), crd.LEAST_RECENT, NOW)
        assert [p.name for p in idles] == ["runners-pod-1", "runners-pod-2"]

    def test_ttl_floor_is_inclusive(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1", "runners-pod-2", "runners-pod-3"))
        idles = view.idle_candidates(timedelta(minutes=10), crd.LEAST_RECENT, NOW)
        assert len(idles) == 3

    def test_unregistered_pods_are_not_candidates(self, workers):
        view = PairingView.build(workers, entries("runners-pod-1"))
        idles = view.idle_candidates(timedelta(0), crd.LEAST_RECENT, NOW)
        assert [p.name for p in idles] == ["runners-pod-1"]


class TestDeletionSweep:
    def test_terminating_evicted_and_completed(self):
        pods = [
            worker("runners-pod-1", deleting=True),
            worker("runners-pod-2", phase="Failed", reason="Evicted"),
            worker("runners-pod-3", phase="Succeeded"),
            worker("runners-pod-4"),
            worker("runners-pod-5", phase="Failed"),
        ]
        view = PairingView.build(pods, entries("runners-pod-1", busy={"runners-pod-1"}))
        names = [p.name for p in view.deletion_sweep_candidates()]
        assert names == ["runners-pod-1", "runners-pod-2", "runners-pod-3"]
