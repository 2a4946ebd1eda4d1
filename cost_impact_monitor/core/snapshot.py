"""
Global snapshot assembly.

Aggregates committed SpaceMonitor snapshots into the read-only view
served to dashboards. Snapshots are never persisted.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Tuple

from .space_monitor import PendingChange, SpaceSnapshot


@dataclass(frozen=True)
class GlobalSnapshot:
    """Cost state across every monitored space at ``computed_at``."""
    computed_at: datetime
    total_spaces: int
    total_cost: float
    projected_cost: float
    pending_change_count: int
    high_risk_count: int
    per_space: Tuple[SpaceSnapshot, ...]
    failed_spaces: Tuple[str, ...] = ()

    @property
    def pending_changes(self) -> List[PendingChange]:
        return [change for space in self.per_space for change in space.pending_changes]


def assemble_snapshot(
    spaces: Iterable[SpaceSnapshot],
    computed_at: datetime,
    failed_spaces: Iterable[str] = (),
) -> GlobalSnapshot:
    """Aggregate per-space snapshots.

    Spaces that failed this tick still contribute their last-known values;
    they are listed in ``failed_spaces`` so staleness stays visible.

    Args:
        spaces: Committed snapshots, one per monitored space
        computed_at: When the aggregation was computed
        failed_spaces: IDs of spaces whose analysis failed this tick

    Returns:
        GlobalSnapshot with totals and per-space detail
    """
    per_space = tuple(sorted(spaces, key=lambda s: (s.space_name, s.space_id)))
    return GlobalSnapshot(
        computed_at=computed_at,
        total_spaces=len(per_space),
        total_cost=sum(s.current_cost for s in per_space),
        projected_cost=sum(s.projected_cost for s in per_space),
        pending_change_count=sum(len(s.pending_changes) for s in per_space),
        high_risk_count=sum(
            1 for s in per_space for change in s.pending_changes if change.risk_level.is_high
        ),
        per_space=per_space,
        failed_spaces=tuple(sorted(failed_spaces)),
    )
