"""
Risk assessment for cost changes.

Maps a monthly cost delta and the unit's labels to a coarse risk level
and a recommendation. The result is advisory only: nothing here gates a
deployment.

Thresholds on |cost delta| (USD/month):
1. < 50  - low
2. < 200 - medium
3. < 500 - high
4. otherwise critical

A production-like label raises "low" to "medium" and always disables
auto-approval.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Tuple

from cost_impact_monitor.clients.narrator import Narrator, NullNarrator


class RiskLevel(Enum):
    """Risk levels in order of severity."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    @property
    def is_high(self) -> bool:
        """High or critical."""
        return self.rank >= RiskLevel.HIGH.rank


_LEVEL_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

RECOMMENDATIONS = {
    RiskLevel.CRITICAL: "DO NOT DEPLOY without executive approval",
    RiskLevel.HIGH: "Review with team lead before deployment",
    RiskLevel.MEDIUM: "Review cost optimization opportunities",
    RiskLevel.LOW: "Safe to deploy",
}

DEFAULT_PRODUCTION_LABELS: Dict[str, FrozenSet[str]] = {
    "env": frozenset({"production", "prod"}),
    "environment": frozenset({"production", "prod"}),
}

LOW_THRESHOLD = 50.0
MEDIUM_THRESHOLD = 200.0
HIGH_THRESHOLD = 500.0


@dataclass(frozen=True)
class RiskAssessment:
    """Deterministic outcome of a risk assessment."""
    level: RiskLevel
    factors: Tuple[str, ...]
    recommendation: str
    auto_approve: bool


def level_for_delta(cost_delta: float) -> RiskLevel:
    """Risk level from the magnitude of a cost delta alone."""
    magnitude = abs(cost_delta)
    if magnitude < LOW_THRESHOLD:
        return RiskLevel.LOW
    if magnitude < MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    if magnitude < HIGH_THRESHOLD:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def is_production(
    labels: Mapping[str, str],
    production_labels: Mapping[str, FrozenSet[str]] = DEFAULT_PRODUCTION_LABELS,
) -> bool:
    """True when any label marks the unit as production-like."""
    for key, values in production_labels.items():
        value = labels.get(key)
        if value is not None and value.strip().lower() in values:
            return True
    return False


def assess_risk(
    cost_delta: float,
    labels: Mapping[str, str],
    production_labels: Mapping[str, FrozenSet[str]] = DEFAULT_PRODUCTION_LABELS,
) -> RiskAssessment:
    """Assess the risk of a monthly cost change.

    Args:
        cost_delta: Change in monthly cost (positive = increase)
        labels: Contextual labels of the unit being changed
        production_labels: Label key -> values that mark production

    Returns:
        RiskAssessment with level, factors, recommendation and auto-approve flag
    """
    level = level_for_delta(cost_delta)
    direction = "increase" if cost_delta >= 0 else "decrease"
    factors = []

    if level == RiskLevel.CRITICAL:
        factors.append(f"Very high cost {direction}")
    elif level == RiskLevel.HIGH:
        factors.append(f"Significant cost {direction}")
    elif level == RiskLevel.MEDIUM:
        factors.append(f"Moderate cost {direction}")

    auto_approve = not level.is_high
    if is_production(labels, production_labels):
        if level == RiskLevel.LOW:
            level = RiskLevel.MEDIUM
        factors.append("Production environment")
        auto_approve = False

    return RiskAssessment(
        level=level,
        factors=tuple(factors),
        recommendation=RECOMMENDATIONS[level],
        auto_approve=auto_approve,
    )


@dataclass(frozen=True)
class RiskAssessor:
    """Risk assessment plus optional narrative from a :class:`Narrator`.

    The narrator only contributes text; it never changes the level or the
    auto-approve flag.
    """
    production_labels: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: dict(DEFAULT_PRODUCTION_LABELS)
    )
    narrator: Narrator = field(default_factory=NullNarrator)

    def assess(self, cost_delta: float, labels: Mapping[str, str]) -> RiskAssessment:
        return assess_risk(cost_delta, labels, self.production_labels)

    def describe(
        self,
        unit_name: str,
        change_kind: str,
        cost_delta: float,
        assessment: RiskAssessment,
    ) -> str:
        """Human-readable assessment: recommendation, then any narrative."""
        text = assessment.recommendation
        if assessment.factors:
            text = f"{text} ({', '.join(assessment.factors)})"
        narrative = self.narrator.narrate(
            unit_name=unit_name,
            change_kind=change_kind,
            cost_delta=cost_delta,
            risk_level=assessment.level.value,
        )
        if narrative:
            text = f"{text}\n{narrative}"
        return text
