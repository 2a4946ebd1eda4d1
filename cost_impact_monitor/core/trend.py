"""
Cost trend and prediction accuracy.

Derives the recent direction of a space's realized cost from its
deployment history and measures how far observed costs land from
predictions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

from cost_impact_monitor.storage.models import DeploymentCostRecord

STABLE_THRESHOLD_PCT = 5.0  # |change| at or below this is "stable"
ACCURACY_THRESHOLD_PCT = 10.0  # |variance| at or below this is "accurate"


class TrendDirection(Enum):
    """Direction of realized monthly cost."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class CostTrend:
    """Recent cost movement for a space."""
    direction: TrendDirection
    weekly_delta_pct: float
    monthly_delta_pct: float
    projected_monthly_cost: float


def compute_variance(predicted_cost: float, actual_cost: float) -> Tuple[float, bool]:
    """Relative difference between an observed and a predicted cost.

    Args:
        predicted_cost: Cost predicted before deployment
        actual_cost: Cost observed after deployment

    Returns:
        (variance in percent, whether it is within the accuracy threshold).
        Without a positive prediction the variance is 0 and never accurate.
    """
    if predicted_cost <= 0:
        return 0.0, False
    variance = (actual_cost - predicted_cost) / predicted_cost * 100
    return variance, abs(variance) <= ACCURACY_THRESHOLD_PCT


def compute_cost_trend(history: Sequence[DeploymentCostRecord], projected_cost: float) -> CostTrend:
    """Compute a space's cost trend from its deployment history.

    The weekly change compares the last two records; the monthly change
    compares the oldest and newest retained records. Fewer than two
    records means a stable trend.

    Args:
        history: Deployment records, oldest first
        projected_cost: Current projected monthly cost of the space

    Returns:
        CostTrend for the space
    """
    if len(history) < 2:
        return CostTrend(
            direction=TrendDirection.STABLE,
            weekly_delta_pct=0.0,
            monthly_delta_pct=0.0,
            projected_monthly_cost=projected_cost,
        )

    weekly = _percent_change(history[-2].actual_cost, history[-1].actual_cost)
    monthly = _percent_change(history[0].actual_cost, history[-1].actual_cost)

    if weekly > STABLE_THRESHOLD_PCT:
        direction = TrendDirection.INCREASING
    elif weekly < -STABLE_THRESHOLD_PCT:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE

    return CostTrend(
        direction=direction,
        weekly_delta_pct=weekly,
        monthly_delta_pct=monthly,
        projected_monthly_cost=projected_cost,
    )


def _percent_change(before: float, after: float) -> float:
    if before == 0:
        return 0.0
    return (after - before) / before * 100
