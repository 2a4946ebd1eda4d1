"""
Pricing calculations and monthly cost estimation.

Maps declared (or observed) CPU and memory to a monthly cost using a
fixed pricing table. Every function here is deterministic: identical
input always yields identical output, so predicted and observed costs
can be compared meaningfully.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .resources import ResourceRequest, parse_resource_hints
from cost_impact_monitor.errors import MalformedUnitError
from cost_impact_monitor.storage.models import Unit

HOURS_PER_MONTH = Decimal("720")  # 24 * 30


@dataclass(frozen=True)
class PricingTable:
    """Compute pricing for a cluster (defaults: AWS us-east-1, m5 class)."""
    cpu_hourly: Decimal = Decimal("0.024")  # Per vCPU per hour
    memory_gib_hourly: Decimal = Decimal("0.006")  # Per GiB per hour
    pod_overhead_monthly: Decimal = Decimal("2.00")  # Per pod per month
    baseline_monthly: Decimal = Decimal("10.00")  # Units with no resource hints

    def __post_init__(self):
        """Validate rates are non-negative."""
        for name in ("cpu_hourly", "memory_gib_hourly", "pod_overhead_monthly", "baseline_monthly"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


PRICING_TABLE = PricingTable()


def calculate_cost(request: ResourceRequest, pricing: PricingTable = PRICING_TABLE) -> float:
    """Calculate monthly cost for declared resources.

    Args:
        request: Declared resources (already multiplied by replicas)
        pricing: Pricing table to apply

    Returns:
        Monthly cost rounded to 2 decimal places
    """
    compute = (request.cpu_cores * pricing.cpu_hourly
               + request.memory_gib * pricing.memory_gib_hourly) * HOURS_PER_MONTH
    overhead = Decimal(request.replicas) * pricing.pod_overhead_monthly
    return _to_cents(compute + overhead)


def cost_from_usage(
    cpu_cores: float,
    memory_gib: float,
    replicas: int = 1,
    pricing: PricingTable = PRICING_TABLE,
) -> float:
    """Price observed usage with the same table used for predictions."""
    request = ResourceRequest(
        cpu_cores=Decimal(str(cpu_cores)),
        memory_gib=Decimal(str(memory_gib)),
        replicas=replicas,
    )
    return calculate_cost(request, pricing)


@dataclass(frozen=True)
class CostEstimator:
    """Estimates a unit's monthly cost from its declared resources.

    No state and no side effects.
    """
    pricing: PricingTable = field(default_factory=PricingTable)

    def estimate(self, unit: Unit) -> float:
        """Estimate monthly cost, raising on unparseable manifests.

        Raises:
            MalformedUnitError: If the unit's manifest can't be parsed
        """
        request = parse_resource_hints(unit)
        if request is None:
            return _to_cents(self.pricing.baseline_monthly)
        return calculate_cost(request, self.pricing)

    def estimate_monthly_cost(self, unit: Unit) -> float:
        """Estimate monthly cost; never fails.

        Missing hints and unparseable manifests both degrade to the
        baseline cost.
        """
        try:
            return self.estimate(unit)
        except MalformedUnitError:
            return _to_cents(self.pricing.baseline_monthly)

    def cost_from_usage(self, cpu_cores: float, memory_gib: float, replicas: int = 1) -> float:
        return cost_from_usage(cpu_cores, memory_gib, replicas, self.pricing)


def estimate_monthly_cost(unit: Unit, pricing: Optional[PricingTable] = None) -> float:
    """Module-level shortcut for :meth:`CostEstimator.estimate_monthly_cost`."""
    return CostEstimator(pricing or PRICING_TABLE).estimate_monthly_cost(unit)


def _to_cents(amount: Decimal) -> float:
    return float(amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
