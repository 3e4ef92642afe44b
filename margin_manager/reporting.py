"""Read-only aggregates over the current margin state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional, Sequence

from .allocations import MarginAllocation, clamp_unit_interval
from .deployments import MarginDeployment
from .events import MarginEvent
from .forecasting import MarginUtilization
from .models import MarginStatus, MarginThreshold, MarginType
from .policies import optimal_band
from .recommendations import MarginRecommendation
from .serialization import to_iso

_CRITICAL_STATUSES = frozenset({MarginStatus.CRITICAL, MarginStatus.EXHAUSTED})


@dataclass(frozen=True)
class MarginMetrics:
    total_margin: Decimal
    total_allocated: Decimal
    total_available: Decimal
    average_utilization: Decimal
    margin_efficiency: Decimal
    critical_margins: int
    optimal_margins: int
    last_updated: datetime

    def to_payload(self) -> dict[str, object]:
        return {
            "total_margin": str(self.total_margin),
            "total_allocated": str(self.total_allocated),
            "total_available": str(self.total_available),
            "average_utilization": str(self.average_utilization),
            "margin_efficiency": str(self.margin_efficiency),
            "critical_margins": self.critical_margins,
            "optimal_margins": self.optimal_margins,
            "last_updated": to_iso(self.last_updated),
        }


@dataclass(frozen=True)
class MarginStatusSnapshot:
    allocations: tuple[MarginAllocation, ...]
    active_deployments: tuple[MarginDeployment, ...]
    recent_events: tuple[MarginEvent, ...]
    utilization_trends: tuple[MarginUtilization, ...]
    recommendations: tuple[MarginRecommendation, ...]

    def to_payload(self) -> dict[str, object]:
        return {
            "allocations": [item.to_payload() for item in self.allocations],
            "active_deployments": [item.to_payload() for item in self.active_deployments],
            "recent_events": [item.to_payload() for item in self.recent_events],
            "utilization_trends": [item.to_payload() for item in self.utilization_trends],
            "recommendations": [item.to_payload() for item in self.recommendations],
        }


def band_fit(utilization_rate: Decimal, threshold: Optional[MarginThreshold]) -> Decimal:
    """1 inside the optimal band, falling linearly to 0 at 0% or 100% utilization."""

    band = optimal_band(threshold)
    if band is None:
        return Decimal("1") - clamp_unit_interval(utilization_rate)
    low, high = band
    if low <= utilization_rate <= high:
        return Decimal("1")
    if utilization_rate < low:
        if low <= 0:
            return Decimal("0")
        return clamp_unit_interval(utilization_rate / low)
    headroom = Decimal("1") - high
    if headroom <= 0:
        return Decimal("0")
    return clamp_unit_interval((Decimal("1") - utilization_rate) / headroom)


def in_optimal_band(utilization_rate: Decimal, threshold: Optional[MarginThreshold]) -> bool:
    band = optimal_band(threshold)
    if band is None:
        return False
    return band[0] <= utilization_rate <= band[1]


def compute_metrics(
    allocations: Sequence[MarginAllocation],
    thresholds: Mapping[MarginType, MarginThreshold],
    *,
    last_updated: datetime,
) -> MarginMetrics:
    if not allocations:
        zero = Decimal("0")
        return MarginMetrics(
            total_margin=zero,
            total_allocated=zero,
            total_available=zero,
            average_utilization=zero,
            margin_efficiency=zero,
            critical_margins=0,
            optimal_margins=0,
            last_updated=last_updated,
        )
    count = Decimal(len(allocations))
    total_margin = sum((item.total for item in allocations), Decimal("0"))
    total_allocated = sum((item.allocated for item in allocations), Decimal("0"))
    average_utilization = sum(
        (item.utilization_rate for item in allocations), Decimal("0")
    ) / count
    efficiency = sum(
        (band_fit(item.utilization_rate, thresholds.get(item.margin_type)) for item in allocations),
        Decimal("0"),
    ) / count
    return MarginMetrics(
        total_margin=total_margin,
        total_allocated=total_allocated,
        total_available=total_margin - total_allocated,
        average_utilization=clamp_unit_interval(average_utilization),
        margin_efficiency=clamp_unit_interval(
            efficiency.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
        ),
        critical_margins=sum(1 for item in allocations if item.status in _CRITICAL_STATUSES),
        optimal_margins=sum(
            1
            for item in allocations
            if in_optimal_band(item.utilization_rate, thresholds.get(item.margin_type))
        ),
        last_updated=last_updated,
    )


__all__ = [
    "MarginMetrics",
    "MarginStatusSnapshot",
    "band_fit",
    "compute_metrics",
    "in_optimal_band",
]
