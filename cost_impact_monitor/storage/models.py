"""
Data models for storage layer.

Defines the entities observed from the configuration backend and the
persisted deployment cost records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

LIVE_STATUSES = frozenset({"applied", "ready"})


@dataclass(frozen=True)
class Space:
    """A logical grouping of configuration units tracked for cost."""
    id: str
    name: str


@dataclass(frozen=True)
class Unit:
    """One declared, labeled configuration document within a space.

    Units are never mutated by the monitor. Only ``live_status`` and
    ``live_revision`` change as the backend reports deployment progress.
    """
    id: str
    space_id: str
    name: str
    revision: int
    updated_at: datetime
    labels: Dict[str, str] = field(default_factory=dict)
    live_status: Optional[str] = None  # None = never deployed
    live_revision: Optional[int] = None
    data: str = ""

    @property
    def is_live(self) -> bool:
        """Whether the runtime reports the current revision as applied."""
        if self.live_status is None:
            return False
        if self.live_status.lower() not in LIVE_STATUSES:
            return False
        if self.live_revision is not None and self.live_revision < self.revision:
            return False
        return True

    @property
    def ever_deployed(self) -> bool:
        return self.live_status is not None


@dataclass(frozen=True)
class DeploymentCostRecord:
    """Immutable comparison of predicted vs. observed cost for one deployment.

    Append-only; a space keeps only its most recent records.
    """
    space_id: str
    unit_id: str
    unit_name: str
    deploy_time: datetime
    predicted_cost: float
    actual_cost: float
    variance_pct: float
    accurate: bool
