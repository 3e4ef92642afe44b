"""Deployment decision table and the margin deployment lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .allocations import HUNDRED, MarginAllocation, status_for_utilization
from .errors import DeploymentTransitionError
from .models import (
    DeploymentStatus,
    MarginStatus,
    MarginThreshold,
    MarginType,
    ResilienceMode,
    Signal,
    SignalSeverity,
    SignalType,
)
from .serialization import to_iso

REQUESTED_BY = "margin-management-system"
EMERGENCY_FLOOR_SHARE = Decimal("0.05")

# Percentage points subtracted from every threshold when judging urgency in a mode.
MODE_THRESHOLD_OFFSETS: dict[ResilienceMode, Decimal] = {
    ResilienceMode.NORMAL: Decimal("0"),
    ResilienceMode.ELEVATED: Decimal("5"),
    ResilienceMode.HIGH_STRESS: Decimal("10"),
    ResilienceMode.EMERGENCY: Decimal("10"),
    ResilienceMode.RECOVERY: Decimal("0"),
    ResilienceMode.MAINTENANCE: Decimal("0"),
}

_ESCALATED_MODES = frozenset(
    {ResilienceMode.ELEVATED, ResilienceMode.HIGH_STRESS, ResilienceMode.EMERGENCY}
)

BASE_DURATION_MINUTES: dict[MarginType, Decimal] = {
    MarginType.TIME: Decimal("60"),
    MarginType.CAPACITY: Decimal("30"),
    MarginType.MATERIAL: Decimal("120"),
    MarginType.FINANCIAL: Decimal("15"),
}

_TRANSITIONS: dict[DeploymentStatus, frozenset[DeploymentStatus]] = {
    DeploymentStatus.PENDING: frozenset(
        {DeploymentStatus.IN_PROGRESS, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.IN_PROGRESS: frozenset(
        {DeploymentStatus.COMPLETED, DeploymentStatus.FAILED}
    ),
    DeploymentStatus.COMPLETED: frozenset(),
    DeploymentStatus.FAILED: frozenset(),
}

FINAL_STATUSES = frozenset({DeploymentStatus.COMPLETED, DeploymentStatus.FAILED})


@dataclass(frozen=True)
class DeploymentDecision:
    margin_type: MarginType
    priority: int
    emergency: bool
    reason: str
    signal_id: str


@dataclass(frozen=True)
class MarginDeployment:
    id: str
    margin_type: MarginType
    amount: Decimal
    priority: int
    status: DeploymentStatus
    reason: str
    requested_at: datetime
    requested_by: str
    estimated_duration: Decimal
    expected_outcome: str
    signal_id: Optional[str] = None
    policy_id: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status not in FINAL_STATUSES

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "margin_type": self.margin_type.value,
            "amount": str(self.amount),
            "priority": self.priority,
            "status": self.status.value,
            "reason": self.reason,
            "requested_at": to_iso(self.requested_at),
            "requested_by": self.requested_by,
            "estimated_duration": str(self.estimated_duration),
            "expected_outcome": self.expected_outcome,
            "signal_id": self.signal_id,
            "policy_id": self.policy_id,
            "started_at": to_iso(self.started_at) if self.started_at else None,
            "finished_at": to_iso(self.finished_at) if self.finished_at else None,
            "failure_reason": self.failure_reason,
        }


def plan_deployment(
    signal: Signal,
    allocation: MarginAllocation,
    threshold: Optional[MarginThreshold],
    mode: ResilienceMode,
    *,
    relevant: bool = True,
) -> Optional[DeploymentDecision]:
    """Decide whether one signal warrants drawing down one margin type."""

    percent = _percent(allocation.utilization_rate)
    margin_type = allocation.margin_type

    if signal.type == SignalType.EMERGENCY:
        return DeploymentDecision(
            margin_type=margin_type,
            priority=1,
            emergency=True,
            reason=(
                f"Emergency signal {signal.id} ({signal.severity.value}) in {mode.value} mode"
                f" - {margin_type.value} utilization {percent}%"
            ),
            signal_id=signal.id,
        )
    if signal.severity == SignalSeverity.CRITICAL and mode in (
        ResilienceMode.EMERGENCY,
        ResilienceMode.HIGH_STRESS,
    ) and relevant:
        return DeploymentDecision(
            margin_type=margin_type,
            priority=1 if mode == ResilienceMode.EMERGENCY else 2,
            emergency=True,
            reason=(
                f"Emergency escalation: critical {signal.type.value} signal {signal.id}"
                f" in {mode.value} mode - {margin_type.value} utilization {percent}%"
            ),
            signal_id=signal.id,
        )
    if not relevant:
        return None

    effective = status_for_utilization(
        allocation.utilization_rate,
        threshold,
        offset=MODE_THRESHOLD_OFFSETS.get(mode, Decimal("0")),
    )
    if effective == MarginStatus.EXHAUSTED:
        return DeploymentDecision(
            margin_type=margin_type,
            priority=1,
            emergency=False,
            reason=f"Margin exhausted: {percent}% utilized in {mode.value} mode",
            signal_id=signal.id,
        )
    if effective == MarginStatus.CRITICAL:
        return DeploymentDecision(
            margin_type=margin_type,
            priority=2,
            emergency=False,
            reason=f"Critical threshold reached: {percent}% utilized in {mode.value} mode",
            signal_id=signal.id,
        )
    if (
        effective == MarginStatus.CONSTRAINED
        and signal.severity in (SignalSeverity.HIGH, SignalSeverity.CRITICAL)
        and mode in _ESCALATED_MODES
    ):
        return DeploymentDecision(
            margin_type=margin_type,
            priority=3,
            emergency=False,
            reason=(
                f"Warning threshold reached under {mode.value} posture:"
                f" {percent}% utilized after {signal.severity.value} signal"
            ),
            signal_id=signal.id,
        )
    return None


def deployment_amount(
    allocation: MarginAllocation,
    threshold: Optional[MarginThreshold],
    *,
    emergency: bool,
) -> Decimal:
    """Amount of margin to release so utilization returns to the optimal band floor."""

    target_rate = Decimal("0")
    if threshold is not None:
        target_rate = threshold.optimal_range.min / HUNDRED
    gap = (allocation.utilization_rate - target_rate) * allocation.total
    amount = min(gap, allocation.allocated)
    if emergency:
        floor = allocation.total * EMERGENCY_FLOOR_SHARE
        amount = min(max(amount, floor), allocation.allocated)
    if amount <= 0:
        return Decimal("0")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def estimated_duration(margin_type: MarginType, amount: Decimal, total: Decimal) -> Decimal:
    """Minutes the deployment is expected to take; scales with the share of total released."""

    share = amount / total if total > 0 else Decimal("0")
    scaling = min(Decimal("2"), max(Decimal("0.5"), share * Decimal("10")))
    return (BASE_DURATION_MINUTES[margin_type] * scaling).quantize(
        Decimal("0.1"), rounding=ROUND_HALF_UP
    )


def expected_outcome(margin_type: MarginType, amount: Decimal) -> str:
    if margin_type == MarginType.TIME:
        return f"Increase available time buffer by {amount} hours"
    if margin_type == MarginType.CAPACITY:
        return f"Increase system capacity by {amount} units"
    if margin_type == MarginType.MATERIAL:
        return f"Increase material inventory by {amount} units"
    return f"Increase financial buffer by ${amount:,.2f}"


def initial_status(decision: DeploymentDecision, mode: ResilienceMode, immediate: bool) -> DeploymentStatus:
    if decision.emergency and (mode == ResilienceMode.EMERGENCY or immediate):
        return DeploymentStatus.IN_PROGRESS
    return DeploymentStatus.PENDING


def transition(
    deployment: MarginDeployment,
    target: DeploymentStatus,
    now: datetime,
    *,
    failure_reason: Optional[str] = None,
) -> MarginDeployment:
    if target not in _TRANSITIONS[deployment.status]:
        raise DeploymentTransitionError(deployment.id, deployment.status, target)
    if target == DeploymentStatus.IN_PROGRESS:
        return replace(deployment, status=target, started_at=now)
    if target == DeploymentStatus.FAILED:
        return replace(
            deployment,
            status=target,
            finished_at=now,
            failure_reason=failure_reason or "deployment failed",
        )
    return replace(deployment, status=target, finished_at=now)


def _percent(rate: Decimal) -> Decimal:
    return (rate * HUNDRED).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


__all__ = [
    "BASE_DURATION_MINUTES",
    "DeploymentDecision",
    "FINAL_STATUSES",
    "MODE_THRESHOLD_OFFSETS",
    "MarginDeployment",
    "REQUESTED_BY",
    "deployment_amount",
    "estimated_duration",
    "expected_outcome",
    "initial_status",
    "plan_deployment",
    "transition",
]
