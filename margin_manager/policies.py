"""Built-in thresholds and policies plus the rules that gate which policy applies."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from .allocations import HUNDRED, clamp_unit_interval
from .models import (
    MARGIN_TYPES,
    AllocationRule,
    MarginPolicy,
    MarginThreshold,
    MarginType,
    OptimalRange,
    PolicyTriggerConditions,
    ResilienceMode,
    Signal,
    SignalSeverity,
    SignalType,
)

NORMAL_OPERATIONS_POLICY_ID = "normal-operations-policy"
MAX_SEVERITY_MULTIPLIER = Decimal("2")

SEVERITY_INCREMENTS: dict[SignalSeverity, Decimal] = {
    SignalSeverity.CRITICAL: Decimal("0.5"),
    SignalSeverity.HIGH: Decimal("0.3"),
    SignalSeverity.MEDIUM: Decimal("0.1"),
    SignalSeverity.LOW: Decimal("0.05"),
}

SIGNAL_RELEVANCE: dict[SignalType, tuple[MarginType, ...]] = {
    SignalType.EMERGENCY: MARGIN_TYPES,
    SignalType.ASSET_CONDITION: (MarginType.CAPACITY, MarginType.MATERIAL),
    SignalType.PERFORMANCE_DEGRADATION: (MarginType.CAPACITY, MarginType.TIME),
    SignalType.RISK_ESCALATION: (MarginType.TIME, MarginType.FINANCIAL),
    SignalType.MAINTENANCE: (MarginType.TIME, MarginType.MATERIAL),
    SignalType.ENVIRONMENTAL: (MarginType.CAPACITY, MarginType.MATERIAL),
    SignalType.OPERATIONAL: (MarginType.TIME, MarginType.CAPACITY),
    SignalType.COMPLIANCE: (MarginType.TIME, MarginType.FINANCIAL),
    SignalType.OTHER: MARGIN_TYPES,
}


def _threshold(
    margin_type: MarginType,
    warning: str,
    critical: str,
    emergency: str,
    optimal_min: str,
    optimal_max: str,
) -> MarginThreshold:
    return MarginThreshold(
        margin_type=margin_type,
        warning_threshold=Decimal(warning),
        critical_threshold=Decimal(critical),
        emergency_threshold=Decimal(emergency),
        optimal_range=OptimalRange(min=Decimal(optimal_min), max=Decimal(optimal_max)),
    )


def default_thresholds() -> dict[MarginType, MarginThreshold]:
    return {
        MarginType.TIME: _threshold(MarginType.TIME, "80", "90", "95", "15", "30"),
        MarginType.CAPACITY: _threshold(MarginType.CAPACITY, "75", "85", "92", "20", "40"),
        MarginType.MATERIAL: _threshold(MarginType.MATERIAL, "70", "80", "90", "25", "50"),
        MarginType.FINANCIAL: _threshold(MarginType.FINANCIAL, "85", "92", "97", "10", "25"),
    }


def _rules(priority: int, **bands: tuple[str, str]) -> dict[MarginType, AllocationRule]:
    return {
        MarginType(name.upper()): AllocationRule(
            min=Decimal(low), max=Decimal(high), priority=priority
        )
        for name, (low, high) in bands.items()
    }


def default_policies() -> list[MarginPolicy]:
    return [
        MarginPolicy(
            id="emergency-response-policy",
            name="Emergency Response Policy",
            description="Commit the bulk of every margin during emergency situations",
            trigger_conditions=PolicyTriggerConditions(
                signal_types=[SignalType.EMERGENCY, SignalType.ASSET_CONDITION],
                severity_levels=[SignalSeverity.CRITICAL],
                resilience_modes=[ResilienceMode.EMERGENCY, ResilienceMode.HIGH_STRESS],
            ),
            allocation_rules=_rules(
                1,
                time=("80", "100"),
                capacity=("80", "100"),
                material=("80", "100"),
                financial=("80", "100"),
            ),
            deployment_strategy="immediate",
        ),
        MarginPolicy(
            id="risk-escalation-policy",
            name="Risk Escalation Policy",
            description="Increase margins when risk levels escalate",
            trigger_conditions=PolicyTriggerConditions(
                signal_types=[SignalType.RISK_ESCALATION],
                severity_levels=[SignalSeverity.HIGH, SignalSeverity.MEDIUM],
                resilience_modes=[ResilienceMode.ELEVATED],
            ),
            allocation_rules=_rules(
                2,
                time=("20", "50"),
                capacity=("25", "60"),
                material=("30", "70"),
                financial=("15", "40"),
            ),
            deployment_strategy="graduated",
        ),
        MarginPolicy(
            id="maintenance-window-policy",
            name="Maintenance Window Policy",
            description="Allocate additional margins during planned maintenance",
            trigger_conditions=PolicyTriggerConditions(
                signal_types=[SignalType.MAINTENANCE],
                severity_levels=[SignalSeverity.LOW, SignalSeverity.MEDIUM],
                resilience_modes=[ResilienceMode.MAINTENANCE],
            ),
            allocation_rules=_rules(
                3,
                time=("30", "60"),
                capacity=("20", "40"),
                material=("40", "80"),
                financial=("10", "30"),
            ),
            deployment_strategy="scheduled",
        ),
        MarginPolicy(
            id=NORMAL_OPERATIONS_POLICY_ID,
            name="Normal Operations Policy",
            description="Maintain optimal margins during normal operations",
            trigger_conditions=PolicyTriggerConditions(
                signal_types=[],
                severity_levels=[SignalSeverity.LOW],
                resilience_modes=[ResilienceMode.NORMAL],
            ),
            allocation_rules=_rules(
                4,
                time=("15", "30"),
                capacity=("20", "40"),
                material=("25", "50"),
                financial=("10", "25"),
            ),
            deployment_strategy="maintenance",
        ),
    ]


def policy_matches(
    policy: MarginPolicy, signals: Sequence[Signal], mode: ResilienceMode
) -> bool:
    if not policy.is_active:
        return False
    conditions = policy.trigger_conditions
    if conditions.signal_types:
        wanted_types = set(conditions.signal_types)
        if not any(signal.type in wanted_types for signal in signals):
            return False
    if conditions.severity_levels:
        wanted_severities = set(conditions.severity_levels)
        if not any(signal.severity in wanted_severities for signal in signals):
            return False
    if conditions.resilience_modes and mode not in conditions.resilience_modes:
        return False
    return True


def applicable_policies(
    policies: Sequence[MarginPolicy], signals: Sequence[Signal], mode: ResilienceMode
) -> list[MarginPolicy]:
    """Matching active policies in declaration order, else the normal-operations fallback."""

    matched = [policy for policy in policies if policy_matches(policy, signals, mode)]
    if matched:
        return matched
    for policy in policies:
        if policy.id == NORMAL_OPERATIONS_POLICY_ID and policy.is_active:
            return [policy]
    return []


def severity_multiplier(signals: Iterable[Signal]) -> Decimal:
    multiplier = Decimal("1")
    for signal in signals:
        multiplier += SEVERITY_INCREMENTS.get(signal.severity, Decimal("0"))
    return min(MAX_SEVERITY_MULTIPLIER, multiplier)


def relevant_margin_types(signal: Signal) -> tuple[MarginType, ...]:
    explicit = _explicit_margin_types(signal.data)
    if explicit:
        return explicit
    return SIGNAL_RELEVANCE.get(signal.type, MARGIN_TYPES)


def _explicit_margin_types(data: dict[str, Any]) -> tuple[MarginType, ...]:
    raw = data.get("margin_types")
    if raw is None:
        raw = data.get("marginTypes")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return ()
    requested: set[MarginType] = set()
    for item in raw:
        if isinstance(item, MarginType):
            requested.add(item)
        elif isinstance(item, str):
            try:
                requested.add(MarginType(item.strip().upper()))
            except ValueError:
                continue
    return tuple(margin_type for margin_type in MARGIN_TYPES if margin_type in requested)


def policy_utilization(
    current: Decimal, rule: AllocationRule, multiplier: Decimal
) -> Decimal:
    """Scale current utilization by the signal multiplier and hold it inside the rule band."""

    low = rule.min / HUNDRED
    high = rule.max / HUNDRED
    scaled = current * multiplier
    return clamp_unit_interval(max(low, min(high, scaled)))


def optimal_band(threshold: Optional[MarginThreshold]) -> Optional[tuple[Decimal, Decimal]]:
    if threshold is None or not threshold.is_active:
        return None
    return (
        threshold.optimal_range.min / HUNDRED,
        threshold.optimal_range.max / HUNDRED,
    )


__all__ = [
    "NORMAL_OPERATIONS_POLICY_ID",
    "SIGNAL_RELEVANCE",
    "applicable_policies",
    "default_policies",
    "default_thresholds",
    "optimal_band",
    "policy_matches",
    "policy_utilization",
    "relevant_margin_types",
    "severity_multiplier",
]
