"""
Pre-apply and post-apply trigger processing.

Polls every monitored space, feeds the listings through the
ChangeDetector and runs the registered hook chains:

- pre-apply hooks once per newly observed transition into PENDING_APPLY,
  with the predicted cost impact;
- post-apply hooks once per transition into APPLIED, with the usage
  measured from the orchestration runtime.

Hooks are advisory. A failing hook is logged and never stops sibling
hooks or the poll loop. Delivery is at-least-once: a lost detector cache
can repeat an advisory warning.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import structlog

from .change_detector import ChangeDetector, Transition, UnitState
from .pricing import CostEstimator
from .space_monitor import CostImpact, SpaceMonitor
from cost_impact_monitor.clients.runtime import RuntimeUsageClient
from cost_impact_monitor.errors import HookError, TransientBackendError
from cost_impact_monitor.storage.models import Unit

logger = structlog.get_logger()

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_WARNING_THRESHOLD = 100.0
COST_WARNING_KIND = "cost-warning"


@dataclass(frozen=True)
class ActualUsage:
    """Resource consumption measured after a unit was applied."""
    unit_id: str
    unit_name: str
    cpu_cores: float
    memory_gib: float
    pods: int
    monthly_cost: float
    measured_at: datetime


class PreApplyHook(Protocol):
    def handle(self, unit: Unit, impact: CostImpact) -> None:
        ...


class PostApplyHook(Protocol):
    def handle(self, unit: Unit, actual: ActualUsage) -> None:
        ...


class SpaceSource(Protocol):
    """What the processor needs from the orchestrator."""

    def space_ids(self) -> List[str]:
        ...

    def space_monitor(self, space_id: str) -> Optional[SpaceMonitor]:
        ...


class CostWarningHook:
    """Warn about, and record, changes that raise monthly cost sharply."""

    def __init__(self, backend, threshold: float = DEFAULT_WARNING_THRESHOLD):
        self.backend = backend
        self.threshold = threshold

    def handle(self, unit: Unit, impact: CostImpact) -> None:
        if impact.cost_delta <= self.threshold:
            return
        logger.warning(
            "high_cost_warning",
            unit=unit.name,
            space_id=unit.space_id,
            cost_delta=round(impact.cost_delta, 2),
            risk=impact.risk.level.value,
        )
        self.backend.create_record(unit.space_id, COST_WARNING_KIND, {
            "unit_id": impact.unit_id,
            "unit_name": impact.unit_name,
            "change_kind": impact.change_kind.value,
            "monthly_cost": impact.monthly_cost,
            "cost_delta": round(impact.cost_delta, 2),
            "risk": impact.risk.level.value,
            "factors": list(impact.risk.factors),
            "recommendation": impact.risk.recommendation,
            "auto_approve": impact.risk.auto_approve,
        })


class DeploymentHistoryHook:
    """Feed measured deployment cost back into the owning SpaceMonitor."""

    def __init__(self, lookup: Callable[[str], Optional[SpaceMonitor]]):
        self.lookup = lookup

    def handle(self, unit: Unit, actual: ActualUsage) -> None:
        logger.info("unit_deployed", unit=unit.name, actual_cost=actual.monthly_cost)
        space = self.lookup(unit.space_id)
        if space is None:
            logger.warning("deployment_for_unknown_space", unit=unit.name, space_id=unit.space_id)
            return
        space.record_deployment(unit.id, actual.monthly_cost, unit_name=unit.name)


class TriggerProcessor:
    """Drives the pre-apply/post-apply lifecycle on its own poll cadence."""

    def __init__(
        self,
        spaces: SpaceSource,
        backend,
        estimator: CostEstimator,
        runtime: Optional[RuntimeUsageClient] = None,
        detector: Optional[ChangeDetector] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        self.spaces = spaces
        self.backend = backend
        self.estimator = estimator
        self.runtime = runtime
        self.detector = detector or ChangeDetector()
        self.poll_interval = poll_interval

        self.pre_apply_hooks: List[PreApplyHook] = []
        self.post_apply_hooks: List[PostApplyHook] = []

        # (unit id, state) -> (revision, updated_at) of the last handled transition
        self._last_processed: Dict[Tuple[str, UnitState], Tuple[int, datetime]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register_pre_apply(self, hook: PreApplyHook) -> None:
        self.pre_apply_hooks.append(hook)

    def register_post_apply(self, hook: PostApplyHook) -> None:
        self.post_apply_hooks.append(hook)

    def poll_once(self) -> int:
        """Poll every known space once.

        A space whose listing fails is skipped until the next poll.

        Returns:
            Number of transitions whose hooks ran
        """
        handled = 0
        for space_id in self.spaces.space_ids():
            try:
                units = self.backend.list_units(space_id)
            except TransientBackendError as e:
                logger.warning("trigger_poll_failed", space_id=space_id, error=str(e))
                continue
            handled += self.process(self.detector.observe(space_id, units))
        return handled

    def process(self, transitions: Sequence[Transition]) -> int:
        handled = 0
        for transition in transitions:
            if self._already_processed(transition):
                continue
            if transition.state == UnitState.PENDING_APPLY:
                done = self._run_pre_apply(transition.unit)
            else:
                done = self._run_post_apply(transition)
            if done:
                self._mark_processed(transition)
                handled += 1
        return handled

    def forget_space(self, space_id: str) -> None:
        self.detector.forget_space(space_id)

    def start(self) -> None:
        """Start polling on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="trigger-processor", daemon=True)
        self._thread.start()
        logger.info("trigger_processor_started", poll_interval=self.poll_interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("trigger_processor_stopped")

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("trigger_poll_crashed")
            self._stop.wait(self.poll_interval)

    def _run_pre_apply(self, unit: Unit) -> bool:
        space = self.spaces.space_monitor(unit.space_id)
        if space is None:
            return False
        impact = space.predict_impact(unit)
        self._run_chain("pre_apply", self.pre_apply_hooks, unit, impact)
        return True

    def _run_post_apply(self, transition: Transition) -> bool:
        unit = transition.unit
        if self.runtime is None:
            logger.debug("runtime_not_configured", unit=unit.name)
            return True
        try:
            usage = self.runtime.get_usage(unit)
        except TransientBackendError as e:
            # Re-emit the transition on the next poll
            logger.warning("usage_query_failed", unit=unit.name, error=str(e))
            self.detector.reset(unit.id, transition.previous)
            return False

        actual = ActualUsage(
            unit_id=unit.id,
            unit_name=unit.name,
            cpu_cores=usage.cpu_cores,
            memory_gib=usage.memory_gib,
            pods=usage.pods,
            monthly_cost=self.estimator.cost_from_usage(usage.cpu_cores, usage.memory_gib, usage.pods),
            measured_at=usage.measured_at,
        )
        self._run_chain("post_apply", self.post_apply_hooks, unit, actual)
        return True

    def _run_chain(self, chain: str, hooks: Iterable, unit: Unit, context) -> None:
        for hook in hooks:
            try:
                hook.handle(unit, context)
            except Exception as e:
                error = HookError(type(hook).__name__, unit.id, e)
                logger.error("hook_failed", chain=chain, hook=error.hook, unit=unit.name, error=str(e))

    def _already_processed(self, transition: Transition) -> bool:
        unit = transition.unit
        with self._lock:
            last = self._last_processed.get((unit.id, transition.state))
        if last is None:
            return False
        last_revision, last_updated = last
        return unit.revision <= last_revision and unit.updated_at <= last_updated

    def _mark_processed(self, transition: Transition) -> None:
        unit = transition.unit
        with self._lock:
            self._last_processed[(unit.id, transition.state)] = (unit.revision, unit.updated_at)
