"""
Orchestration runtime usage client.

Queries the Kubernetes metrics API for the CPU and memory a deployed unit
actually consumes. Used only by post-apply accounting.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

import requests
import structlog

from cost_impact_monitor.core.resources import parse_cpu, parse_memory
from cost_impact_monitor.errors import TransientBackendError
from cost_impact_monitor.storage.models import Unit

logger = structlog.get_logger()

METRICS_PATH = "/apis/metrics.k8s.io/v1beta1/namespaces/{namespace}/pods"


@dataclass(frozen=True)
class ResourceUsage:
    """Observed consumption summed across a unit's pods."""
    cpu_cores: float
    memory_gib: float
    pods: int
    measured_at: datetime


class RuntimeUsageClient:
    """Reads pod metrics for a unit from the orchestration runtime."""

    def __init__(
        self,
        api_url: str,
        token: Optional[str] = None,
        namespace: str = "default",
        selector_label: str = "app",
        timeout: float = 10.0,
        verify: Any = True,
        session: Optional[requests.Session] = None,
    ):
        if not api_url or not api_url.strip():
            raise ValueError("api_url is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.api_url = api_url.rstrip("/")
        self.namespace = namespace
        self.selector_label = selector_label
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.verify = verify
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def get_usage(self, unit: Unit) -> ResourceUsage:
        """Measure a unit's current resource usage.

        Pods are matched by ``<selector_label>=<unit name>`` in the unit's
        ``namespace`` label (or the client's default namespace).

        Raises:
            TransientBackendError: If the metrics API can't be queried or
                reports no pods for the unit yet
        """
        namespace = unit.labels.get("namespace", self.namespace)
        url = self.api_url + METRICS_PATH.format(namespace=namespace)
        params = {"labelSelector": f"{self.selector_label}={unit.name}"}

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientBackendError(f"GET {url} failed: {e}")
        if not 200 <= response.status_code < 300:
            raise TransientBackendError(
                f"GET {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            pods = response.json().get("items") or []
            cpu = Decimal(0)
            memory = Decimal(0)
            for pod in pods:
                for container in pod.get("containers") or []:
                    usage = container.get("usage") or {}
                    cpu += parse_cpu(usage.get("cpu", "0"))
                    memory += parse_memory(usage.get("memory", "0"))
        except (ValueError, AttributeError) as e:
            raise TransientBackendError(f"GET {url} returned unusable metrics: {e}")
        if not pods:
            # Metrics lag behind a fresh rollout; retry on the next poll
            raise TransientBackendError(f"GET {url} returned no pod metrics for {unit.name}")

        logger.debug("runtime_usage_measured", unit=unit.name, pods=len(pods),
                     cpu_cores=float(cpu), memory_gib=float(memory))
        return ResourceUsage(
            cpu_cores=float(cpu),
            memory_gib=float(memory),
            pods=len(pods),
            measured_at=datetime.now(timezone.utc),
        )
