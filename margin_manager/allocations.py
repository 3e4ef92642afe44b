"""Per-margin-type allocation records and their status derivation."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Mapping, Optional

from .models import MARGIN_TYPES, MarginStatus, MarginThreshold, MarginType
from .serialization import to_iso

BASELINE_UTILIZATION = Decimal("0.2")
HUNDRED = Decimal("100")

DEFAULT_CAPACITIES: dict[MarginType, Decimal] = {
    MarginType.TIME: Decimal("100"),
    MarginType.CAPACITY: Decimal("1000"),
    MarginType.MATERIAL: Decimal("500"),
    MarginType.FINANCIAL: Decimal("100000"),
}

_STATUS_ORDER: dict[MarginStatus, int] = {
    MarginStatus.AVAILABLE: 0,
    MarginStatus.CONSTRAINED: 1,
    MarginStatus.CRITICAL: 2,
    MarginStatus.EXHAUSTED: 3,
}


@dataclass(frozen=True)
class MarginAllocation:
    margin_type: MarginType
    total: Decimal
    allocated: Decimal
    available: Decimal
    utilization_rate: Decimal
    status: MarginStatus
    last_updated: datetime

    def to_payload(self) -> dict[str, str]:
        return {
            "margin_type": self.margin_type.value,
            "total": str(self.total),
            "allocated": str(self.allocated),
            "available": str(self.available),
            "utilization_rate": str(self.utilization_rate),
            "status": self.status.value,
            "last_updated": to_iso(self.last_updated),
        }


def clamp_unit_interval(value: Decimal) -> Decimal:
    if value < 0:
        return Decimal("0")
    if value > 1:
        return Decimal("1")
    return value


def status_for_utilization(
    utilization_rate: Decimal,
    threshold: Optional[MarginThreshold],
    *,
    offset: Decimal = Decimal("0"),
) -> MarginStatus:
    """Derive status from utilization; ``offset`` lowers every threshold by that many points."""

    if threshold is None or not threshold.is_active:
        return MarginStatus.AVAILABLE
    percent = utilization_rate * HUNDRED
    if percent >= threshold.emergency_threshold - offset:
        return MarginStatus.EXHAUSTED
    if percent >= threshold.critical_threshold - offset:
        return MarginStatus.CRITICAL
    if percent >= threshold.warning_threshold - offset:
        return MarginStatus.CONSTRAINED
    return MarginStatus.AVAILABLE


def status_rank(status: MarginStatus) -> int:
    return _STATUS_ORDER[status]


class MarginAllocationStore:
    """Holds exactly one allocation per margin type for the lifetime of a system."""

    def __init__(
        self,
        now: datetime,
        capacities: Optional[Mapping[MarginType, Decimal]] = None,
    ) -> None:
        self._allocations: dict[MarginType, MarginAllocation] = {}
        overrides = dict(capacities or {})
        for margin_type in MARGIN_TYPES:
            total = overrides.get(margin_type, DEFAULT_CAPACITIES[margin_type])
            allocated = total * BASELINE_UTILIZATION
            self._allocations[margin_type] = MarginAllocation(
                margin_type=margin_type,
                total=total,
                allocated=allocated,
                available=total - allocated,
                utilization_rate=BASELINE_UTILIZATION,
                status=MarginStatus.AVAILABLE,
                last_updated=now,
            )

    def get(self, margin_type: MarginType) -> MarginAllocation:
        return self._allocations[margin_type]

    def all(self) -> list[MarginAllocation]:
        return [self._allocations[margin_type] for margin_type in MARGIN_TYPES]

    def apply_utilization(
        self,
        margin_type: MarginType,
        utilization_rate: Decimal,
        threshold: Optional[MarginThreshold],
        now: datetime,
    ) -> tuple[MarginAllocation, MarginAllocation]:
        previous = self._allocations[margin_type]
        rate = clamp_unit_interval(utilization_rate)
        allocated = previous.total * rate
        updated = replace(
            previous,
            allocated=allocated,
            available=previous.total - allocated,
            utilization_rate=rate,
            status=status_for_utilization(rate, threshold),
            last_updated=now,
        )
        self._allocations[margin_type] = updated
        return previous, updated

    def resize(self, margin_type: MarginType, total: Decimal, now: datetime) -> MarginAllocation:
        """Change a type's capacity while keeping its utilization rate."""

        previous = self._allocations[margin_type]
        allocated = total * previous.utilization_rate
        updated = replace(
            previous,
            total=total,
            allocated=allocated,
            available=total - allocated,
            last_updated=now,
        )
        self._allocations[margin_type] = updated
        return updated

    def restatus(self, thresholds: Mapping[MarginType, MarginThreshold], now: datetime) -> None:
        for margin_type, allocation in list(self._allocations.items()):
            status = status_for_utilization(
                allocation.utilization_rate, thresholds.get(margin_type)
            )
            if status != allocation.status:
                self._allocations[margin_type] = replace(
                    allocation, status=status, last_updated=now
                )


__all__ = [
    "BASELINE_UTILIZATION",
    "DEFAULT_CAPACITIES",
    "MarginAllocation",
    "MarginAllocationStore",
    "clamp_unit_interval",
    "status_for_utilization",
    "status_rank",
]
