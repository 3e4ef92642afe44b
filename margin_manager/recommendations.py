"""Recommendations for margins whose utilization leaves the optimal band."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Literal, Optional

from .allocations import HUNDRED, MarginAllocation
from .models import MarginThreshold, MarginType

RecommendationType = Literal["increase_allocation", "optimize_allocation"]
RecommendationPriority = Literal["low", "medium", "high"]

# Cost of one unit of margin, used for rough effort estimates.
UNIT_COSTS: dict[MarginType, Decimal] = {
    MarginType.TIME: Decimal("100"),
    MarginType.CAPACITY: Decimal("50"),
    MarginType.MATERIAL: Decimal("25"),
    MarginType.FINANCIAL: Decimal("1"),
}


@dataclass(frozen=True)
class MarginRecommendation:
    id: str
    margin_type: MarginType
    recommendation_type: RecommendationType
    priority: RecommendationPriority
    description: str
    rationale: str
    suggested_action: str
    expected_benefit: str
    implementation_effort: Literal["low", "medium", "high"]
    estimated_cost: Decimal
    timeframe: Literal["immediate", "planned"]

    def to_payload(self) -> dict[str, str]:
        return {
            "id": self.id,
            "margin_type": self.margin_type.value,
            "recommendation_type": self.recommendation_type,
            "priority": self.priority,
            "description": self.description,
            "rationale": self.rationale,
            "suggested_action": self.suggested_action,
            "expected_benefit": self.expected_benefit,
            "implementation_effort": self.implementation_effort,
            "estimated_cost": str(self.estimated_cost),
            "timeframe": self.timeframe,
        }


def recommend(
    allocation: MarginAllocation,
    threshold: Optional[MarginThreshold],
    next_id: Callable[[], str],
) -> Optional[MarginRecommendation]:
    """Return a recommendation when utilization sits outside the optimal band."""

    if threshold is None or not threshold.is_active:
        return None
    percent = allocation.utilization_rate * HUNDRED
    band = threshold.optimal_range
    label = allocation.margin_type.value
    if percent > band.max:
        amount = _units((percent - band.max) / HUNDRED * allocation.total)
        return MarginRecommendation(
            id=next_id(),
            margin_type=allocation.margin_type,
            recommendation_type="increase_allocation",
            priority="high",
            description=f"Increase {label} margin reserve to return to the optimal range",
            rationale=(
                f"Current utilization ({_pct(percent)}%) above optimal maximum ({band.max}%)"
            ),
            suggested_action=f"Release or procure an additional {amount} units of {label} margin",
            expected_benefit="Improved system resilience and reduced risk",
            implementation_effort="medium",
            estimated_cost=amount * UNIT_COSTS[allocation.margin_type],
            timeframe="immediate",
        )
    if percent < band.min:
        amount = _units((band.min - percent) / HUNDRED * allocation.total)
        return MarginRecommendation(
            id=next_id(),
            margin_type=allocation.margin_type,
            recommendation_type="optimize_allocation",
            priority="medium",
            description=f"Optimize {label} margin allocation for better efficiency",
            rationale=(
                f"Current utilization ({_pct(percent)}%) below optimal minimum ({band.min}%)"
            ),
            suggested_action=f"Commit {amount} idle units of {label} margin to planned work",
            expected_benefit="Improved resource utilization and cost efficiency",
            implementation_effort="low",
            estimated_cost=-(amount * UNIT_COSTS[allocation.margin_type]) / 2,
            timeframe="planned",
        )
    return None


def _units(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _pct(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


__all__ = [
    "MarginRecommendation",
    "RecommendationPriority",
    "RecommendationType",
    "UNIT_COSTS",
    "recommend",
]
