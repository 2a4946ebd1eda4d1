"""
Cost impact orchestration.

The CostImpactMonitor owns one SpaceMonitor per discovered space, runs a
concurrent analysis of every space on a fixed interval (or early, when an
external change notification arrives) and assembles the global snapshot.

Failure isolation:
1. Space discovery failure - keep monitoring the spaces already known
2. Space analysis failure - keep that space's last-known values, flag it
3. Nothing fails the tick or the loop
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from .change_detector import ChangeDetector
from .locks import ReadWriteLock
from .pricing import CostEstimator
from .risk import RiskAssessor
from .snapshot import GlobalSnapshot, assemble_snapshot
from .space_monitor import PendingChange, SpaceMonitor, utcnow
from .triggers import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_WARNING_THRESHOLD,
    CostWarningHook,
    DeploymentHistoryHook,
    TriggerProcessor,
)
from cost_impact_monitor.clients.runtime import RuntimeUsageClient
from cost_impact_monitor.errors import (
    BackendUnavailableError,
    SpaceAnalysisError,
    TransientBackendError,
)
from cost_impact_monitor.storage.models import Space
from cost_impact_monitor.storage.repository import DeploymentHistoryRepository

logger = structlog.get_logger()

DEFAULT_INTERVAL = 60.0
DEFAULT_MAX_WORKERS = 8


class CostImpactMonitor:
    """Orchestrates cost analysis across all spaces.

    Collaborators are injected; the monitor holds no global state. The
    space map is guarded by a read-write lock: discovery writes it,
    analysis and snapshot reads only read it.
    """

    def __init__(
        self,
        backend,
        estimator: Optional[CostEstimator] = None,
        assessor: Optional[RiskAssessor] = None,
        repository: Optional[DeploymentHistoryRepository] = None,
        runtime: Optional[RuntimeUsageClient] = None,
        interval: float = DEFAULT_INTERVAL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_workers: int = DEFAULT_MAX_WORKERS,
        prune_stale_spaces: bool = True,
        warning_threshold: float = DEFAULT_WARNING_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        self.backend = backend
        self.estimator = estimator or CostEstimator()
        self.assessor = assessor or RiskAssessor()
        self.repository = repository
        self.interval = interval
        self.max_workers = max_workers
        self.prune_stale_spaces = prune_stale_spaces
        self.clock = clock

        self._spaces: Dict[str, SpaceMonitor] = {}
        self._lock = ReadWriteLock()
        self._snapshot: Optional[GlobalSnapshot] = None
        self._stop = threading.Event()
        self._wake = threading.Event()

        self.trigger_processor = TriggerProcessor(
            spaces=self,
            backend=backend,
            estimator=self.estimator,
            runtime=runtime,
            detector=ChangeDetector(),
            poll_interval=poll_interval,
        )
        self.trigger_processor.register_pre_apply(CostWarningHook(backend, warning_threshold))
        self.trigger_processor.register_post_apply(DeploymentHistoryHook(self.space_monitor))

    def start(self) -> int:
        """Discover spaces before the first tick.

        Returns:
            Number of spaces being monitored

        Raises:
            BackendUnavailableError: If the backend can't be reached or
                reports no spaces at all
        """
        try:
            self.discover_spaces()
        except TransientBackendError as e:
            raise BackendUnavailableError(
                f"Cannot reach the configuration backend to discover spaces: {e}"
            ) from e

        count = len(self.space_ids())
        if count == 0:
            raise BackendUnavailableError(
                "The configuration backend reported zero spaces; check the URL, "
                "credentials and that at least one space exists"
            )
        return count

    def discover_spaces(self) -> Tuple[List[str], List[str]]:
        """Sync the space map with the backend's space list.

        Returns:
            (added space IDs, removed space IDs)

        Raises:
            TransientBackendError: If the space list can't be fetched
        """
        spaces = self.backend.list_spaces()
        reported = {space.id: space for space in spaces}

        added: List[str] = []
        removed: List[str] = []
        with self._lock.write_locked():
            for space_id, space in reported.items():
                if space_id not in self._spaces:
                    self._spaces[space_id] = self._new_space_monitor(space)
                    added.append(space_id)
            if self.prune_stale_spaces:
                for space_id in list(self._spaces):
                    if space_id not in reported:
                        del self._spaces[space_id]
                        removed.append(space_id)

        for space_id in added:
            logger.info("space_monitored", space=reported[space_id].name, space_id=space_id)
        for space_id in removed:
            self.trigger_processor.forget_space(space_id)
            logger.info("space_dropped", space_id=space_id)
        if added or removed:
            logger.info("spaces_discovered", total=len(reported), added=len(added), removed=len(removed))
        return added, removed

    def space_ids(self) -> List[str]:
        with self._lock.read_locked():
            return list(self._spaces)

    def space_monitor(self, space_id: str) -> Optional[SpaceMonitor]:
        with self._lock.read_locked():
            return self._spaces.get(space_id)

    def analyze_space(self, space: SpaceMonitor) -> None:
        """Analyze one space from a single unit listing.

        Raises:
            SpaceAnalysisError: If the space's units can't be listed
        """
        try:
            units = self.backend.list_units(space.space_id)
        except TransientBackendError as e:
            raise SpaceAnalysisError(space.space_id, e) from e
        space.analyze(units)

    def monitor_all_spaces(self) -> GlobalSnapshot:
        """Run one analysis tick across every known space.

        Returns:
            The snapshot committed for this tick
        """
        try:
            self.discover_spaces()
        except TransientBackendError as e:
            logger.warning("space_discovery_failed", error=str(e))

        with self._lock.read_locked():
            spaces = list(self._spaces.values())

        failed: List[str] = []
        if spaces:
            with ThreadPoolExecutor(max_workers=min(len(spaces), self.max_workers)) as pool:
                futures = {pool.submit(self.analyze_space, space): space for space in spaces}
                for future in as_completed(futures):
                    space = futures[future]
                    try:
                        future.result()
                    except SpaceAnalysisError as e:
                        failed.append(space.space_id)
                        logger.warning("space_analysis_failed", space=space.space.name, error=str(e.cause))
                    except Exception:
                        failed.append(space.space_id)
                        logger.exception("space_analysis_crashed", space=space.space.name)

        with self._lock.write_locked():
            snapshot = assemble_snapshot(
                (space.snapshot() for space in self._spaces.values()),
                computed_at=self.clock(),
                failed_spaces=failed,
            )
            self._snapshot = snapshot

        logger.info(
            "monitoring_tick_completed",
            spaces=snapshot.total_spaces,
            failed=len(failed),
            total_cost=round(snapshot.total_cost, 2),
            projected_cost=round(snapshot.projected_cost, 2),
            pending_changes=snapshot.pending_change_count,
            high_risk_changes=snapshot.high_risk_count,
        )
        return snapshot

    def get_snapshot(self) -> GlobalSnapshot:
        """Last committed snapshot, annotated with when it was computed.

        Before the first tick completes, an on-demand aggregation of the
        (empty) per-space state is returned.
        """
        with self._lock.read_locked():
            if self._snapshot is not None:
                return self._snapshot
            return assemble_snapshot(
                (space.snapshot() for space in self._spaces.values()),
                computed_at=self.clock(),
            )

    def get_pending_changes(self) -> List[PendingChange]:
        return self.get_snapshot().pending_changes

    def request_analysis(self) -> None:
        """Run the next tick now (external change notification)."""
        self._wake.set()

    def run_forever(self) -> None:
        """Run ticks until :meth:`shutdown` is called.

        The trigger processor polls on its own thread in the meantime.
        """
        self._stop.clear()
        self.trigger_processor.start()
        logger.info("monitor_started", interval=self.interval, spaces=len(self.space_ids()))
        try:
            while not self._stop.is_set():
                try:
                    self.monitor_all_spaces()
                except Exception:
                    logger.exception("monitoring_tick_crashed")
                self._wake.wait(self.interval)
                self._wake.clear()
        finally:
            self.trigger_processor.stop()
            logger.info("monitor_stopped")

    def shutdown(self) -> None:
        """Stop scheduling ticks; an in-flight tick finishes first."""
        self._stop.set()
        self._wake.set()

    def _new_space_monitor(self, space: Space) -> SpaceMonitor:
        return SpaceMonitor(
            space=space,
            estimator=self.estimator,
            assessor=self.assessor,
            repository=self.repository,
            clock=self.clock,
        )
