"""Short-horizon utilization projections per margin type."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal, Mapping, Optional, Sequence

from .allocations import HUNDRED, MarginAllocation, clamp_unit_interval
from .models import MarginStatus, MarginThreshold, MarginType
from .serialization import to_iso

RiskLevel = Literal["low", "medium", "high"]

DEFAULT_TIME_HORIZON_DAYS = 7
TREND_WINDOW = 10
MIN_TREND_SPAN_SECONDS = Decimal("3600")
MAX_DAILY_DRIFT = Decimal("0.05")
RISING_TREND = Decimal("0.01")
BASE_CONFIDENCE = Decimal("0.85")
MIN_CONFIDENCE = Decimal("0.3")
CONFIDENCE_DECAY_PER_DAY = Decimal("0.005")
THIN_HISTORY_PENALTY = Decimal("0.1")
SECONDS_PER_DAY = Decimal("86400")

FORECAST_ASSUMPTIONS: tuple[str, ...] = (
    "Current utilization trends continue",
    "No major system changes",
    "Standard operational patterns",
)


@dataclass(frozen=True)
class MarginUtilization:
    """One point of the utilization trend series."""

    margin_type: MarginType
    utilization_rate: Decimal
    allocated: Decimal
    available: Decimal
    status: MarginStatus
    timestamp: datetime

    def to_payload(self) -> dict[str, str]:
        return {
            "margin_type": self.margin_type.value,
            "utilization_rate": str(self.utilization_rate),
            "allocated": str(self.allocated),
            "available": str(self.available),
            "status": self.status.value,
            "timestamp": to_iso(self.timestamp),
        }


@dataclass(frozen=True)
class MarginProjection:
    margin_type: MarginType
    current_utilization: Decimal
    projected_utilization: Decimal
    projected_available: Decimal
    daily_trend: Decimal
    risk_level: RiskLevel
    recommendations: tuple[str, ...]

    def to_payload(self) -> dict[str, object]:
        return {
            "margin_type": self.margin_type.value,
            "current_utilization": str(self.current_utilization),
            "projected_utilization": str(self.projected_utilization),
            "projected_available": str(self.projected_available),
            "daily_trend": str(self.daily_trend),
            "risk_level": self.risk_level,
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class MarginForecast:
    time_horizon: int
    generated_at: datetime
    projections: tuple[MarginProjection, ...]
    confidence: Decimal
    assumptions: tuple[str, ...]

    def to_payload(self) -> dict[str, object]:
        return {
            "time_horizon": self.time_horizon,
            "generated_at": to_iso(self.generated_at),
            "projections": [projection.to_payload() for projection in self.projections],
            "confidence": str(self.confidence),
            "assumptions": list(self.assumptions),
        }


class ForecastEngine:
    """Extrapolate utilization with a bounded linear drift taken from recent history."""

    def forecast(
        self,
        allocations: Sequence[MarginAllocation],
        history: Sequence[MarginUtilization],
        thresholds: Mapping[MarginType, MarginThreshold],
        *,
        time_horizon: int,
        now: datetime,
    ) -> MarginForecast:
        if time_horizon <= 0:
            raise ValueError("time_horizon must be a positive number of days")
        horizon = Decimal(time_horizon)
        projections: list[MarginProjection] = []
        thin_history = False
        for allocation in allocations:
            points = [point for point in history if point.margin_type == allocation.margin_type]
            if len(points) < 2:
                thin_history = True
            drift = daily_trend(points[-TREND_WINDOW:])
            projected = _round(clamp_unit_interval(allocation.utilization_rate + drift * horizon))
            threshold = thresholds.get(allocation.margin_type)
            projections.append(
                MarginProjection(
                    margin_type=allocation.margin_type,
                    current_utilization=allocation.utilization_rate,
                    projected_utilization=projected,
                    projected_available=_round(allocation.total * (1 - projected)),
                    daily_trend=_round(drift),
                    risk_level=projection_risk(projected, threshold),
                    recommendations=projection_recommendations(
                        allocation.margin_type, projected, drift, threshold
                    ),
                )
            )
        return MarginForecast(
            time_horizon=time_horizon,
            generated_at=now,
            projections=tuple(projections),
            confidence=forecast_confidence(time_horizon, thin_history=thin_history),
            assumptions=FORECAST_ASSUMPTIONS,
        )


def daily_trend(points: Sequence[MarginUtilization]) -> Decimal:
    """Utilization change per day between the first and last point, clamped."""

    if len(points) < 2:
        return Decimal("0")
    first = points[0]
    last = points[-1]
    span_seconds = Decimal(str((last.timestamp - first.timestamp).total_seconds()))
    if span_seconds < MIN_TREND_SPAN_SECONDS:
        return Decimal("0")
    drift = (last.utilization_rate - first.utilization_rate) / (span_seconds / SECONDS_PER_DAY)
    return max(-MAX_DAILY_DRIFT, min(MAX_DAILY_DRIFT, drift))


def projection_risk(projected: Decimal, threshold: Optional[MarginThreshold]) -> RiskLevel:
    if threshold is None or not threshold.is_active:
        return "medium"
    percent = projected * HUNDRED
    if percent >= threshold.critical_threshold:
        return "high"
    if percent >= threshold.warning_threshold:
        return "medium"
    return "low"


def projection_recommendations(
    margin_type: MarginType,
    projected: Decimal,
    drift: Decimal,
    threshold: Optional[MarginThreshold],
) -> tuple[str, ...]:
    if threshold is None or not threshold.is_active:
        return ()
    percent = projected * HUNDRED
    label = margin_type.value
    recommendations: list[str] = []
    if percent >= threshold.warning_threshold:
        recommendations.append(f"Consider increasing {label} margin allocation")
    if drift > RISING_TREND:
        recommendations.append(
            f"Monitor {label} utilization closely - upward trend detected"
        )
    if percent >= threshold.critical_threshold:
        recommendations.append(f"Prepare emergency margin deployment for {label}")
    return tuple(recommendations)


def forecast_confidence(time_horizon: int, *, thin_history: bool) -> Decimal:
    confidence = BASE_CONFIDENCE - CONFIDENCE_DECAY_PER_DAY * Decimal(time_horizon)
    if thin_history:
        confidence -= THIN_HISTORY_PENALTY
    return max(MIN_CONFIDENCE, min(BASE_CONFIDENCE, confidence))


def _round(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


__all__ = [
    "DEFAULT_TIME_HORIZON_DAYS",
    "FORECAST_ASSUMPTIONS",
    "ForecastEngine",
    "MarginForecast",
    "MarginProjection",
    "MarginUtilization",
    "RiskLevel",
    "daily_trend",
    "forecast_confidence",
    "projection_recommendations",
    "projection_risk",
]
