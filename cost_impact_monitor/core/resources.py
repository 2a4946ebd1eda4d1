"""
Resource hint extraction.

Reads declared CPU, memory and replica hints from a unit's manifest
(or, failing that, its labels) for cost calculation.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import yaml

from cost_impact_monitor.errors import MalformedUnitError
from cost_impact_monitor.storage.models import Unit

WORKLOAD_KINDS = frozenset({
    "Deployment", "StatefulSet", "DaemonSet", "ReplicaSet", "Pod",
})

_CPU_SUFFIXES = {
    "n": Decimal("0.000000001"),
    "u": Decimal("0.000001"),
    "m": Decimal("0.001"),
}

_GIB = Decimal(1024 ** 3)

# Longest suffixes first so "Gi" wins over "G"
_MEMORY_SUFFIXES = [
    ("Ki", Decimal(1024)),
    ("Mi", Decimal(1024 ** 2)),
    ("Gi", Decimal(1024 ** 3)),
    ("Ti", Decimal(1024 ** 4)),
    ("Pi", Decimal(1024 ** 5)),
    ("Ei", Decimal(1024 ** 6)),
    ("k", Decimal(10 ** 3)),
    ("M", Decimal(10 ** 6)),
    ("G", Decimal(10 ** 9)),
    ("T", Decimal(10 ** 12)),
    ("P", Decimal(10 ** 15)),
    ("E", Decimal(10 ** 18)),
]


@dataclass(frozen=True)
class ResourceRequest:
    """Declared resources for a unit, already multiplied out by replicas.

    Contains exact values from the manifest without any pricing logic.
    """
    cpu_cores: Decimal
    memory_gib: Decimal
    replicas: int

    @property
    def is_empty(self) -> bool:
        """True when nothing was declared."""
        return self.cpu_cores == 0 and self.memory_gib == 0


def parse_cpu(quantity: Any) -> Decimal:
    """Parse a Kubernetes CPU quantity ("500m", "2", 0.5) into cores.

    Raises:
        ValueError: If the quantity is not a valid CPU amount
    """
    text = str(quantity).strip()
    if not text:
        raise ValueError("empty CPU quantity")

    multiplier = Decimal(1)
    if text[-1] in _CPU_SUFFIXES:
        multiplier = _CPU_SUFFIXES[text[-1]]
        text = text[:-1]

    try:
        value = Decimal(text) * multiplier
    except InvalidOperation:
        raise ValueError(f"invalid CPU quantity: {quantity!r}")
    if value < 0 or not value.is_finite():
        raise ValueError(f"invalid CPU quantity: {quantity!r}")
    return value


def parse_memory(quantity: Any) -> Decimal:
    """Parse a Kubernetes memory quantity ("2Gi", "512Mi", "1G") into GiB.

    Raises:
        ValueError: If the quantity is not a valid memory amount
    """
    text = str(quantity).strip()
    if not text:
        raise ValueError("empty memory quantity")

    multiplier = Decimal(1)
    for suffix, factor in _MEMORY_SUFFIXES:
        if text.endswith(suffix):
            multiplier = factor
            text = text[:-len(suffix)]
            break

    try:
        value = Decimal(text) * multiplier
    except InvalidOperation:
        raise ValueError(f"invalid memory quantity: {quantity!r}")
    if value < 0 or not value.is_finite():
        raise ValueError(f"invalid memory quantity: {quantity!r}")
    return value / _GIB


def parse_resource_hints(unit: Unit) -> Optional[ResourceRequest]:
    """Extract declared resources from a unit.

    The manifest is read first; label hints (``cpu``, ``memory``,
    ``replicas``) are used only when the manifest declares no resources.

    Args:
        unit: Unit to inspect

    Returns:
        ResourceRequest, or None when the unit declares no hints at all

    Raises:
        MalformedUnitError: If the manifest or a quantity cannot be parsed
    """
    try:
        from_manifest = _hints_from_manifest(unit.data)
        if from_manifest is not None and not from_manifest.is_empty:
            return from_manifest
        replicas = from_manifest.replicas if from_manifest is not None else None
        return _hints_from_labels(unit.labels, replicas)
    except yaml.YAMLError as e:
        raise MalformedUnitError(unit.id, f"invalid YAML: {e}")
    except (ValueError, TypeError) as e:
        raise MalformedUnitError(unit.id, str(e))


def _hints_from_manifest(data: str) -> Optional[ResourceRequest]:
    if not data or not data.strip():
        return None

    workloads = [
        doc for doc in yaml.safe_load_all(data)
        if isinstance(doc, dict) and doc.get("kind") in WORKLOAD_KINDS
    ]
    if not workloads:
        return None

    cpu = Decimal(0)
    memory = Decimal(0)
    replicas_total = 0
    for doc in workloads:
        replicas = _replicas(doc)
        replicas_total += replicas
        for container in _containers(doc):
            resources = _mapping(container.get("resources"), "resources")
            requests = _mapping(resources.get("requests"), "resources.requests")
            limits = _mapping(resources.get("limits"), "resources.limits")
            cpu_q = requests.get("cpu", limits.get("cpu"))
            mem_q = requests.get("memory", limits.get("memory"))
            if cpu_q is not None:
                cpu += parse_cpu(cpu_q) * replicas
            if mem_q is not None:
                memory += parse_memory(mem_q) * replicas

    return ResourceRequest(cpu_cores=cpu, memory_gib=memory, replicas=replicas_total)


def _mapping(value: Any, field: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field} must be a mapping, got {type(value).__name__}")
    return value


def _replicas(doc: Dict[str, Any]) -> int:
    if doc.get("kind") in ("Pod", "DaemonSet"):
        return 1
    spec = _mapping(doc.get("spec"), "spec")
    replicas = spec.get("replicas", 1)
    if replicas is None:
        return 1
    if isinstance(replicas, bool) or not isinstance(replicas, int) or replicas < 0:
        raise ValueError(f"invalid replica count: {replicas!r}")
    return replicas


def _containers(doc: Dict[str, Any]) -> List[Dict[str, Any]]:
    spec = _mapping(doc.get("spec"), "spec")
    if doc.get("kind") != "Pod":
        template = _mapping(spec.get("template"), "spec.template")
        spec = _mapping(template.get("spec"), "spec.template.spec")
    containers = spec.get("containers") or []
    if not isinstance(containers, list):
        raise ValueError("containers must be a list")
    return [c for c in containers if isinstance(c, dict)]


def _hints_from_labels(labels: Dict[str, str], replicas: Optional[int]) -> Optional[ResourceRequest]:
    if "cpu" not in labels and "memory" not in labels:
        return None

    if "replicas" in labels:
        replicas = int(labels["replicas"])
        if replicas < 0:
            raise ValueError(f"invalid replica count: {labels['replicas']!r}")
    elif replicas is None:
        replicas = 1

    cpu = parse_cpu(labels["cpu"]) if "cpu" in labels else Decimal(0)
    memory = parse_memory(labels["memory"]) if "memory" in labels else Decimal(0)
    return ResourceRequest(
        cpu_cores=cpu * replicas,
        memory_gib=memory * replicas,
        replicas=replicas,
    )
