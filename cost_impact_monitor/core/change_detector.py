"""
Change detection over polled unit listings.

Per-unit states:

    UNSEEN -> PENDING_APPLY -> APPLIED -> PENDING_APPLY (on re-edit)

- UNSEEN/APPLIED -> PENDING_APPLY: first observation of an undeployed
  unit, or a revision/update timestamp newer than the cached one.
- PENDING_APPLY -> APPLIED: the unit's live status reports it applied.

A unit that is already live when first observed is seeded as APPLIED
without emitting a transition.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List

from cost_impact_monitor.storage.models import Unit


class UnitState(Enum):
    """Lifecycle state of a unit as seen by the detector."""
    UNSEEN = "unseen"
    PENDING_APPLY = "pending_apply"
    APPLIED = "applied"


@dataclass(frozen=True)
class Transition:
    """A state change observed for one unit."""
    unit: Unit
    previous: UnitState
    state: UnitState


@dataclass
class _Observation:
    space_id: str
    state: UnitState
    revision: int
    updated_at: datetime


class ChangeDetector:
    """Remembers the last observed revision and state of every unit.

    The cache lives in memory only; losing it can re-emit a transition
    for a unit that was already processed.
    """

    def __init__(self):
        self._cache: Dict[str, _Observation] = {}
        self._lock = threading.Lock()

    def state_of(self, unit_id: str) -> UnitState:
        with self._lock:
            observation = self._cache.get(unit_id)
            return observation.state if observation else UnitState.UNSEEN

    def observe(self, space_id: str, units: Iterable[Unit]) -> List[Transition]:
        """Compare a space's unit listing with the cache.

        Units of the space missing from the listing are forgotten.

        Args:
            space_id: Space the listing belongs to
            units: Complete unit listing for the space

        Returns:
            Transitions in listing order
        """
        transitions: List[Transition] = []
        listed = set()
        with self._lock:
            for unit in units:
                listed.add(unit.id)
                transitions.extend(self._observe_unit(space_id, unit))

            stale = [
                unit_id for unit_id, observation in self._cache.items()
                if observation.space_id == space_id and unit_id not in listed
            ]
            for unit_id in stale:
                del self._cache[unit_id]
        return transitions

    def reset(self, unit_id: str, state: UnitState) -> None:
        """Put a unit back into ``state`` so its next transition is re-emitted."""
        with self._lock:
            observation = self._cache.get(unit_id)
            if observation is None:
                return
            if state == UnitState.UNSEEN:
                del self._cache[unit_id]
            else:
                observation.state = state

    def forget_space(self, space_id: str) -> None:
        with self._lock:
            for unit_id in [u for u, o in self._cache.items() if o.space_id == space_id]:
                del self._cache[unit_id]

    def _observe_unit(self, space_id: str, unit: Unit) -> List[Transition]:
        cached = self._cache.get(unit.id)

        if cached is None:
            state = UnitState.APPLIED if unit.is_live else UnitState.PENDING_APPLY
            self._cache[unit.id] = _Observation(space_id, state, unit.revision, unit.updated_at)
            if state == UnitState.APPLIED:
                return []
            return [Transition(unit, UnitState.UNSEEN, UnitState.PENDING_APPLY)]

        advanced = unit.revision > cached.revision or unit.updated_at > cached.updated_at
        previous = cached.state
        cached.revision = max(cached.revision, unit.revision)
        cached.updated_at = max(cached.updated_at, unit.updated_at)

        transitions: List[Transition] = []
        if advanced and previous == UnitState.APPLIED:
            transitions.append(Transition(unit, previous, UnitState.PENDING_APPLY))
            previous = UnitState.PENDING_APPLY
        elif advanced and previous == UnitState.PENDING_APPLY and not unit.is_live:
            # Re-edited before it was applied
            transitions.append(Transition(unit, previous, UnitState.PENDING_APPLY))

        if unit.is_live and previous == UnitState.PENDING_APPLY:
            transitions.append(Transition(unit, previous, UnitState.APPLIED))
            previous = UnitState.APPLIED

        cached.state = previous
        return transitions
