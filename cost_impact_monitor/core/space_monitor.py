"""
Per-space cost state.

A SpaceMonitor holds the current and projected cost of one space, the
changes that have not reached the runtime yet, a bounded deployment
history and the resulting cost trend.

Invariant after every analysis:
    projected_cost == current_cost + sum(change.cost_delta for pending changes)
"""

import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from .pricing import CostEstimator
from .risk import RiskAssessment, RiskAssessor, RiskLevel
from .trend import CostTrend, compute_cost_trend, compute_variance
from cost_impact_monitor.errors import MalformedUnitError
from cost_impact_monitor.storage.models import DeploymentCostRecord, Space, Unit
from cost_impact_monitor.storage.repository import HISTORY_LIMIT, DeploymentHistoryRepository

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChangeKind(Enum):
    """Kind of change a pending unit represents."""
    CREATE = "create"  # never deployed
    UPDATE = "update"  # deployed, newer revision not yet live


@dataclass(frozen=True)
class CostImpact:
    """Predicted cost impact of deploying a unit's current revision."""
    space_id: str
    unit_id: str
    unit_name: str
    change_kind: ChangeKind
    current_cost: float
    monthly_cost: float
    cost_delta: float
    risk: RiskAssessment
    note: str = ""


@dataclass(frozen=True)
class PendingChange:
    """A unit not yet reflected in the live runtime. Recomputed every tick."""
    unit_id: str
    unit_name: str
    change_kind: ChangeKind
    current_cost: float
    projected_cost: float
    cost_delta: float
    risk_level: RiskLevel
    auto_approve: bool
    assessment: str
    analyzed_at: datetime
    note: str = ""


@dataclass(frozen=True)
class SpaceSnapshot:
    """Fully committed, read-only view of a SpaceMonitor."""
    space_id: str
    space_name: str
    last_analysis: Optional[datetime]
    current_cost: float
    projected_cost: float
    pending_changes: Tuple[PendingChange, ...]
    deployment_history: Tuple[DeploymentCostRecord, ...]
    cost_trend: CostTrend


class SpaceMonitor:
    """Cost state for a single space.

    Only the analysis task for this space writes the derived cost fields.
    Deployment records may arrive from the trigger processor at any time;
    both paths commit under the monitor's lock, and readers only ever see
    fully committed state through :meth:`snapshot`.
    """

    def __init__(
        self,
        space: Space,
        estimator: CostEstimator,
        assessor: RiskAssessor,
        repository: Optional[DeploymentHistoryRepository] = None,
        history_limit: int = HISTORY_LIMIT,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.space = space
        self.estimator = estimator
        self.assessor = assessor
        self.repository = repository
        self.clock = clock

        self._lock = threading.Lock()
        self._history = deque(maxlen=history_limit)
        if repository is not None:
            self._history.extend(repository.history(space.id))

        self._last_analysis: Optional[datetime] = None
        self._current_cost = 0.0
        self._projected_cost = 0.0
        self._pending: Tuple[PendingChange, ...] = ()
        self._live_costs: Dict[str, float] = {}
        self._predicted: Dict[str, float] = {}
        self._trend = compute_cost_trend(list(self._history), 0.0)

    @property
    def space_id(self) -> str:
        return self.space.id

    @property
    def current_cost(self) -> float:
        with self._lock:
            return self._current_cost

    @property
    def projected_cost(self) -> float:
        with self._lock:
            return self._projected_cost

    @property
    def pending_changes(self) -> List[PendingChange]:
        with self._lock:
            return list(self._pending)

    @property
    def history(self) -> List[DeploymentCostRecord]:
        with self._lock:
            return list(self._history)

    @property
    def cost_trend(self) -> CostTrend:
        with self._lock:
            return self._trend

    def analyze(self, units: Iterable[Unit]) -> None:
        """Recompute all derived state from one consistent unit listing.

        Live units contribute to the current cost, as does the running
        revision of a deployed unit that has a newer revision pending. Every
        unit that is not live becomes a PendingChange. A unit with an
        unparseable manifest degrades to a zero-delta, low-risk PendingChange
        instead of failing the space.

        Idempotent for identical input and history.
        """
        now = self.clock()
        units = list(units)
        with self._lock:
            live_costs = dict(self._live_costs)

        current = 0.0
        pending: List[PendingChange] = []
        predicted: Dict[str, float] = {}
        seen_live: Dict[str, float] = {}

        for unit in units:
            try:
                cost = self.estimator.estimate(unit)
            except MalformedUnitError as e:
                logger.warning("malformed_unit", space=self.space.name, unit=unit.name, reason=e.reason)
                if not unit.is_live:
                    change = self._degraded_change(unit, e, live_costs.get(unit.id), now)
                    current += change.current_cost
                    pending.append(change)
                continue

            predicted[unit.id] = cost
            if unit.is_live:
                current += cost
                seen_live[unit.id] = cost
            else:
                impact = self._impact(unit, cost, live_costs.get(unit.id))
                # An updated unit keeps running its previous revision until applied
                current += impact.current_cost
                pending.append(self._pending_change(impact, now))

        # Keep last-known live cost for units still listed
        listed = {unit.id for unit in units}
        live_costs = {uid: c for uid, c in live_costs.items() if uid in listed}
        live_costs.update(seen_live)

        projected = current + sum(change.cost_delta for change in pending)

        with self._lock:
            self._current_cost = current
            self._projected_cost = projected
            self._pending = tuple(pending)
            self._live_costs = live_costs
            self._predicted = predicted
            self._last_analysis = now
            self._trend = compute_cost_trend(list(self._history), projected)

        logger.info(
            "space_analyzed",
            space=self.space.name,
            current_cost=round(current, 2),
            projected_cost=round(projected, 2),
            pending_changes=len(pending),
        )

    def predict_impact(self, unit: Unit) -> CostImpact:
        """Predict the impact of deploying a unit's current revision."""
        try:
            cost = self.estimator.estimate(unit)
            note = ""
        except MalformedUnitError as e:
            cost = self.estimator.estimate_monthly_cost(unit)
            note = f"Manifest could not be parsed, baseline cost used: {e.reason}"
        with self._lock:
            previous = self._live_costs.get(unit.id)
            self._predicted[unit.id] = cost
        impact = self._impact(unit, cost, previous)
        if note:
            impact = replace(impact, note=note)
        return impact

    def record_deployment(
        self,
        unit_id: str,
        actual_cost: float,
        unit_name: Optional[str] = None,
    ) -> DeploymentCostRecord:
        """Record the observed cost of a deployment.

        Compares ``actual_cost`` with the last predicted cost for the unit,
        appends the record (oldest evicted beyond the history limit) and
        refreshes the cost trend.
        """
        with self._lock:
            predicted = self._predicted.get(unit_id, 0.0)
            variance, accurate = compute_variance(predicted, actual_cost)
            record = DeploymentCostRecord(
                space_id=self.space.id,
                unit_id=unit_id,
                unit_name=unit_name or unit_id,
                deploy_time=self.clock(),
                predicted_cost=predicted,
                actual_cost=actual_cost,
                variance_pct=variance,
                accurate=accurate,
            )
            self._history.append(record)
            self._trend = compute_cost_trend(list(self._history), self._projected_cost)

        logger.info(
            "deployment_recorded",
            space=self.space.name,
            unit=record.unit_name,
            predicted_cost=predicted,
            actual_cost=actual_cost,
            variance_pct=round(variance, 2),
            accurate=accurate,
        )
        if self.repository is not None:
            self.repository.append(record)
        return record

    def snapshot(self) -> SpaceSnapshot:
        with self._lock:
            return SpaceSnapshot(
                space_id=self.space.id,
                space_name=self.space.name,
                last_analysis=self._last_analysis,
                current_cost=self._current_cost,
                projected_cost=self._projected_cost,
                pending_changes=self._pending,
                deployment_history=tuple(self._history),
                cost_trend=self._trend,
            )

    def _impact(self, unit: Unit, cost: float, previous: Optional[float]) -> CostImpact:
        if not unit.ever_deployed:
            kind = ChangeKind.CREATE
            current = 0.0
        else:
            kind = ChangeKind.UPDATE
            # Without a known live cost the change is assumed cost-neutral
            current = previous if previous is not None else cost
        delta = cost - current
        return CostImpact(
            space_id=self.space.id,
            unit_id=unit.id,
            unit_name=unit.name,
            change_kind=kind,
            current_cost=current,
            monthly_cost=cost,
            cost_delta=delta,
            risk=self.assessor.assess(delta, unit.labels),
        )

    def _pending_change(self, impact: CostImpact, now: datetime) -> PendingChange:
        return PendingChange(
            unit_id=impact.unit_id,
            unit_name=impact.unit_name,
            change_kind=impact.change_kind,
            current_cost=impact.current_cost,
            projected_cost=impact.monthly_cost,
            cost_delta=impact.cost_delta,
            risk_level=impact.risk.level,
            auto_approve=impact.risk.auto_approve,
            assessment=self.assessor.describe(
                impact.unit_name, impact.change_kind.value, impact.cost_delta, impact.risk,
            ),
            analyzed_at=now,
        )

    def _degraded_change(
        self,
        unit: Unit,
        error: MalformedUnitError,
        previous: Optional[float],
        now: datetime,
    ) -> PendingChange:
        running = previous if unit.ever_deployed and previous is not None else 0.0
        return PendingChange(
            unit_id=unit.id,
            unit_name=unit.name,
            change_kind=ChangeKind.UPDATE if unit.ever_deployed else ChangeKind.CREATE,
            current_cost=running,
            projected_cost=running,
            cost_delta=0.0,
            risk_level=RiskLevel.LOW,
            auto_approve=False,
            assessment="Cost analysis unavailable",
            analyzed_at=now,
            note=f"Manifest could not be parsed: {error.reason}",
        )
