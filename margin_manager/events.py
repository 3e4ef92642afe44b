"""Append-only audit records for margin state changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from .allocations import BASELINE_UTILIZATION, MarginAllocation
from .deployments import MarginDeployment
from .models import MarginEventType, MarginType
from .serialization import normalize, to_iso

Impact = Literal["low", "medium", "high"]


def _empty_details() -> dict[str, Any]:
    return {}


@dataclass(frozen=True)
class MarginEvent:
    id: str
    timestamp: datetime
    event_type: MarginEventType
    margin_type: MarginType
    description: str
    impact: Impact
    policy_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=_empty_details)

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "event_type": self.event_type.value,
            "margin_type": self.margin_type.value,
            "description": self.description,
            "impact": self.impact,
            "policy_id": self.policy_id,
            "details": normalize(self.details),
        }


def allocation_impact(allocation: MarginAllocation) -> Impact:
    """Impact grows with distance from the baseline utilization."""

    change = abs(allocation.utilization_rate - BASELINE_UTILIZATION)
    if change > Decimal("0.3"):
        return "high"
    if change > Decimal("0.15"):
        return "medium"
    return "low"


def deployment_impact(deployment: MarginDeployment) -> Impact:
    if deployment.priority <= 2:
        return "high"
    if deployment.priority == 3:
        return "medium"
    return "low"


def allocation_details(previous: MarginAllocation, updated: MarginAllocation) -> dict[str, Any]:
    return {
        "previous_allocated": previous.allocated,
        "new_allocated": updated.allocated,
        "previous_utilization_rate": previous.utilization_rate,
        "utilization_rate": updated.utilization_rate,
        "previous_status": previous.status.value,
        "status": updated.status.value,
    }


def deployment_details(deployment: MarginDeployment) -> dict[str, Any]:
    return {
        "deployment_id": deployment.id,
        "amount": deployment.amount,
        "reason": deployment.reason,
        "priority": deployment.priority,
        "status": deployment.status.value,
        "estimated_duration": deployment.estimated_duration,
    }


__all__ = [
    "Impact",
    "MarginEvent",
    "allocation_details",
    "allocation_impact",
    "deployment_details",
    "deployment_impact",
]
