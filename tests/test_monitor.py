"""
Unit tests for the CostImpactMonitor orchestrator.

Tests discovery, pruning, partial failure isolation and snapshot
aggregation.
"""

import threading
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from cost_impact_monitor.core.monitor import CostImpactMonitor
from cost_impact_monitor.core.risk import RiskLevel
from cost_impact_monitor.errors import BackendUnavailableError, TransientBackendError
from cost_impact_monitor.storage.models import Space, Unit

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)

HEAVY_MANIFEST = """
kind: Deployment
spec:
  replicas: 4
  template:
    spec:
      containers:
        - name: app
          resources:
            requests: {cpu: "8", memory: 32Gi}
"""


def _unit(unit_id: str, space_id: str, live_status: str = None, data: str = "") -> Unit:
    return Unit(
        id=unit_id,
        space_id=space_id,
        name=unit_id,
        revision=1,
        updated_at=NOW,
        live_status=live_status,
        data=data,
    )


class FakeBackend:
    """In-memory configuration backend."""

    def __init__(self, spaces, units):
        self.spaces = spaces
        self.units = units
        self.failing = set()
        self.records = []

    def list_spaces(self):
        return list(self.spaces)

    def list_units(self, space_id):
        if space_id in self.failing:
            raise TransientBackendError(f"{space_id} timed out")
        return list(self.units.get(space_id, []))

    def create_record(self, space_id, kind, payload):
        self.records.append((space_id, kind, payload))


def _backend() -> FakeBackend:
    return FakeBackend(
        spaces=[Space("s-1", "alpha"), Space("s-2", "beta"), Space("s-3", "gamma")],
        units={
            "s-1": [_unit("a1", "s-1", live_status="applied"), _unit("a2", "s-1")],
            "s-2": [_unit("b1", "s-2", live_status="applied")],
            "s-3": [_unit("c1", "s-3", data=HEAVY_MANIFEST)],
        },
    )


class TestStart:
    """Test startup discovery."""

    def test_start_discovers_spaces(self):
        """Verify start returns the number of monitored spaces."""
        monitor = CostImpactMonitor(_backend(), clock=lambda: NOW)
        assert monitor.start() == 3
        assert sorted(monitor.space_ids()) == ["s-1", "s-2", "s-3"]

    def test_unreachable_backend(self):
        """Verify an unreachable backend fails startup clearly."""
        backend = Mock()
        backend.list_spaces.side_effect = TransientBackendError("connection refused")
        monitor = CostImpactMonitor(backend)

        with pytest.raises(BackendUnavailableError, match="Cannot reach"):
            monitor.start()

    def test_zero_spaces(self):
        """Verify a backend without spaces fails startup."""
        monitor = CostImpactMonitor(FakeBackend([], {}))
        with pytest.raises(BackendUnavailableError, match="zero spaces"):
            monitor.start()

    def test_invalid_settings(self):
        """Verify interval and worker count must be positive."""
        with pytest.raises(ValueError, match="interval must be > 0"):
            CostImpactMonitor(_backend(), interval=0)
        with pytest.raises(ValueError, match="max_workers must be > 0"):
            CostImpactMonitor(_backend(), max_workers=0)


class TestMonitorAllSpaces:
    """Test one analysis tick."""

    def test_snapshot_totals(self):
        """Verify the snapshot aggregates every space."""
        monitor = CostImpactMonitor(_backend(), clock=lambda: NOW)
        monitor.start()
        snapshot = monitor.monitor_all_spaces()

        assert snapshot.total_spaces == 3
        assert snapshot.total_cost == pytest.approx(20.0)
        assert snapshot.pending_change_count == 2
        assert snapshot.high_risk_count == 1
        assert snapshot.computed_at == NOW
        assert snapshot.failed_spaces == ()
        assert [s.space_name for s in snapshot.per_space] == ["alpha", "beta", "gamma"]

    def test_projected_cost_invariant(self):
        """Verify projected equals current plus pending deltas in every space."""
        monitor = CostImpactMonitor(_backend(), clock=lambda: NOW)
        monitor.start()
        snapshot = monitor.monitor_all_spaces()

        for space in snapshot.per_space:
            deltas = sum(change.cost_delta for change in space.pending_changes)
            assert space.projected_cost == pytest.approx(space.current_cost + deltas)
        assert snapshot.projected_cost == pytest.approx(
            sum(space.projected_cost for space in snapshot.per_space)
        )

    def test_failed_space_keeps_last_known_values(self):
        """Verify one space timing out doesn't affect the others."""
        backend = _backend()
        monitor = CostImpactMonitor(backend, clock=lambda: NOW)
        monitor.start()
        first = monitor.monitor_all_spaces()

        backend.failing.add("s-2")
        backend.units["s-1"].append(_unit("a3", "s-1"))
        second = monitor.monitor_all_spaces()

        assert second.failed_spaces == ("s-2",)
        assert second.total_spaces == 3
        spaces = {s.space_id: s for s in second.per_space}
        first_spaces = {s.space_id: s for s in first.per_space}
        assert spaces["s-2"] == first_spaces["s-2"]
        assert len(spaces["s-1"].pending_changes) == 2

    def test_discovery_failure_keeps_known_spaces(self):
        """Verify a failed space listing doesn't fail the tick."""
        backend = _backend()
        monitor = CostImpactMonitor(backend, clock=lambda: NOW)
        monitor.start()
        backend.list_spaces = Mock(side_effect=TransientBackendError("down"))

        snapshot = monitor.monitor_all_spaces()

        assert snapshot.total_spaces == 3

    def test_stale_spaces_pruned(self):
        """Verify spaces the backend no longer reports are dropped."""
        backend = _backend()
        monitor = CostImpactMonitor(backend, clock=lambda: NOW)
        monitor.start()
        backend.spaces = [Space("s-1", "alpha"), Space("s-4", "delta")]

        added, removed = monitor.discover_spaces()

        assert added == ["s-4"]
        assert sorted(removed) == ["s-2", "s-3"]
        assert sorted(monitor.space_ids()) == ["s-1", "s-4"]

    def test_pruning_disabled(self):
        """Verify stale spaces are kept when pruning is off."""
        backend = _backend()
        monitor = CostImpactMonitor(backend, prune_stale_spaces=False)
        monitor.start()
        backend.spaces = [Space("s-1", "alpha")]

        added, removed = monitor.discover_spaces()

        assert removed == []
        assert len(monitor.space_ids()) == 3

    def test_pending_changes_across_spaces(self):
        """Verify pending changes are listed from every space."""
        monitor = CostImpactMonitor(_backend(), clock=lambda: NOW)
        monitor.start()
        monitor.monitor_all_spaces()

        changes = monitor.get_pending_changes()
        assert sorted(c.unit_id for c in changes) == ["a2", "c1"]
        heavy = next(c for c in changes if c.unit_id == "c1")
        assert heavy.risk_level == RiskLevel.CRITICAL
        assert heavy.auto_approve is False


class TestSnapshotAccess:
    """Test snapshot reads."""

    def test_snapshot_before_first_tick(self):
        """Verify a snapshot is available before any tick completes."""
        monitor = CostImpactMonitor(_backend(), clock=lambda: NOW)
        monitor.start()
        snapshot = monitor.get_snapshot()
        assert snapshot.total_spaces == 3
        assert snapshot.total_cost == 0.0
        assert all(s.last_analysis is None for s in snapshot.per_space)

    def test_snapshot_is_last_committed(self):
        """Verify reads return the last committed tick."""
        monitor = CostImpactMonitor(_backend(), clock=lambda: NOW)
        monitor.start()
        committed = monitor.monitor_all_spaces()
        assert monitor.get_snapshot() is committed


class TestRunLoop:
    """Test the scheduling loop."""

    def test_shutdown_stops_loop(self):
        """Verify run_forever returns after shutdown."""
        monitor = CostImpactMonitor(_backend(), interval=60, poll_interval=60)
        monitor.start()
        ticked = threading.Event()
        original = monitor.monitor_all_spaces

        def tick():
            snapshot = original()
            ticked.set()
            return snapshot

        monitor.monitor_all_spaces = tick
        thread = threading.Thread(target=monitor.run_forever)
        thread.start()
        assert ticked.wait(5)

        monitor.shutdown()
        thread.join(5)
        assert not thread.is_alive()

    def test_request_analysis_runs_tick_early(self):
        """Verify an external notification wakes the loop before the interval."""
        monitor = CostImpactMonitor(_backend(), interval=3600, poll_interval=3600)
        monitor.start()
        ticks = []
        second_tick = threading.Event()
        original = monitor.monitor_all_spaces

        def tick():
            snapshot = original()
            ticks.append(snapshot)
            if len(ticks) >= 2:
                second_tick.set()
            return snapshot

        monitor.monitor_all_spaces = tick
        thread = threading.Thread(target=monitor.run_forever)
        thread.start()
        try:
            while not ticks:
                threading.Event().wait(0.01)
            monitor.request_analysis()
            assert second_tick.wait(5)
        finally:
            monitor.shutdown()
            thread.join(5)
