"""Pydantic models and enums for margin management inputs and configuration."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel


class MarginType(str, Enum):
    TIME = "TIME"
    CAPACITY = "CAPACITY"
    MATERIAL = "MATERIAL"
    FINANCIAL = "FINANCIAL"


class MarginStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    CONSTRAINED = "CONSTRAINED"
    CRITICAL = "CRITICAL"
    EXHAUSTED = "EXHAUSTED"


class ResilienceMode(str, Enum):
    NORMAL = "NORMAL"
    ELEVATED = "ELEVATED"
    HIGH_STRESS = "HIGH_STRESS"
    EMERGENCY = "EMERGENCY"
    RECOVERY = "RECOVERY"
    MAINTENANCE = "MAINTENANCE"


class SignalType(str, Enum):
    ASSET_CONDITION = "ASSET_CONDITION"
    PERFORMANCE_DEGRADATION = "PERFORMANCE_DEGRADATION"
    RISK_ESCALATION = "RISK_ESCALATION"
    EMERGENCY = "EMERGENCY"
    MAINTENANCE = "MAINTENANCE"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    OPERATIONAL = "OPERATIONAL"
    COMPLIANCE = "COMPLIANCE"
    OTHER = "OTHER"


class SignalSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class SignalSource(str, Enum):
    IOT_SENSOR = "IOT_SENSOR"
    USER_REPORT = "USER_REPORT"
    SYSTEM_MONITOR = "SYSTEM_MONITOR"
    EXTERNAL_API = "EXTERNAL_API"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    MAINTENANCE = "MAINTENANCE"
    COMMUNITY = "COMMUNITY"
    PREDICTIVE = "PREDICTIVE"
    EMERGENCY_SERVICE = "EMERGENCY_SERVICE"


class MarginStrategy(str, Enum):
    STATIC = "STATIC"
    DYNAMIC = "DYNAMIC"
    ADAPTIVE = "ADAPTIVE"
    ANTIFRAGILE = "ANTIFRAGILE"


class MarginEventType(str, Enum):
    ALLOCATION_ADJUSTED = "ALLOCATION_ADJUSTED"
    DEPLOYMENT_REQUESTED = "DEPLOYMENT_REQUESTED"
    THRESHOLD_BREACHED = "THRESHOLD_BREACHED"
    STATUS_RECOVERED = "STATUS_RECOVERED"
    DEPLOYMENT_COMPLETED = "DEPLOYMENT_COMPLETED"
    DEPLOYMENT_FAILED = "DEPLOYMENT_FAILED"


class DeploymentStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


MARGIN_TYPES: tuple[MarginType, ...] = (
    MarginType.TIME,
    MarginType.CAPACITY,
    MarginType.MATERIAL,
    MarginType.FINANCIAL,
)

DeploymentStrategy = Literal["immediate", "graduated", "scheduled", "maintenance"]


class _CamelModel(BaseModel):
    """Accept both snake_case and the camelCase keys used by the web layer."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SignalMetadata(_CamelModel):
    confidence: Decimal = Decimal("1")
    related_signals: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    custom: dict[str, Any] = Field(default_factory=dict)


class Signal(_CamelModel):
    """External observation that may warrant a margin response."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    id: str = Field(min_length=1)
    type: SignalType
    severity: SignalSeverity
    timestamp: datetime
    source: Optional[SignalSource] = None
    data: dict[str, Any] = Field(default_factory=dict)
    organisation_id: Optional[str] = None
    metadata: SignalMetadata = Field(default_factory=SignalMetadata)

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class OptimalRange(_CamelModel):
    min: Decimal
    max: Decimal


class MarginThreshold(_CamelModel):
    """Utilization percentages at which a margin type changes status."""

    margin_type: MarginType
    warning_threshold: Decimal
    critical_threshold: Decimal
    emergency_threshold: Decimal
    optimal_range: OptimalRange
    is_active: bool = True


class AllocationRule(_CamelModel):
    """Utilization band (percent of total) a policy holds a margin type in."""

    min: Decimal
    max: Decimal
    priority: int = 4


class PolicyTriggerConditions(_CamelModel):
    signal_types: list[SignalType] = Field(default_factory=list)
    severity_levels: list[SignalSeverity] = Field(default_factory=list)
    resilience_modes: list[ResilienceMode] = Field(default_factory=list)


class MarginPolicy(_CamelModel):
    id: str
    name: str
    description: str = ""
    trigger_conditions: PolicyTriggerConditions = Field(
        default_factory=PolicyTriggerConditions
    )
    allocation_rules: dict[MarginType, AllocationRule] = Field(default_factory=dict)
    deployment_strategy: DeploymentStrategy = "graduated"
    is_active: bool = True

    @field_validator("allocation_rules", mode="before")
    @classmethod
    def _normalize_rule_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        normalized: dict[Any, Any] = {}
        for key, rule in value.items():
            normalized[_margin_type_key(key)] = rule
        return normalized


class MarginConfiguration(_CamelModel):
    enabled: bool = True
    default_strategy: MarginStrategy = MarginStrategy.DYNAMIC
    margin_types: list[MarginType] = Field(default_factory=list)
    default_thresholds: list[MarginThreshold] = Field(default_factory=list)
    default_policies: list[MarginPolicy] = Field(default_factory=list)
    margin_capacities: dict[MarginType, Decimal] = Field(default_factory=dict)
    update_interval: int = Field(default=60_000, ge=0)
    retention_period: int = Field(default=30, ge=1)
    status_event_limit: int = Field(default=50, ge=1)
    trend_points_limit: int = Field(default=96, ge=1)

    @field_validator("margin_capacities", mode="before")
    @classmethod
    def _normalize_capacity_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {_margin_type_key(key): amount for key, amount in value.items()}

    @field_validator("margin_capacities")
    @classmethod
    def _positive_capacities(cls, value: dict[MarginType, Decimal]) -> dict[MarginType, Decimal]:
        for margin_type, amount in value.items():
            if amount <= 0:
                raise ValueError(f"capacity for {margin_type.value} must be positive")
        return value

    def managed_types(self) -> tuple[MarginType, ...]:
        if not self.margin_types:
            return MARGIN_TYPES
        return tuple(item for item in MARGIN_TYPES if item in self.margin_types)


def _margin_type_key(key: Any) -> Any:
    """Map ``timeMargin`` / ``time_margin`` / ``TIME`` style keys to a MarginType."""

    if isinstance(key, MarginType):
        return key
    if not isinstance(key, str):
        return key
    cleaned = key.strip()
    lowered = cleaned.lower()
    for suffix in ("_margin", "margin"):
        if lowered.endswith(suffix) and len(lowered) > len(suffix):
            lowered = lowered[: -len(suffix)]
            break
    for margin_type in MARGIN_TYPES:
        if margin_type.value.lower() == lowered:
            return margin_type
    return cleaned


def parse_signals(raw: Iterable[Any] | None) -> tuple[list[Signal], int]:
    """Validate a raw batch, keeping input order and counting dropped entries."""

    if raw is None:
        return [], 0
    valid: list[Signal] = []
    dropped = 0
    for entry in raw:
        if isinstance(entry, Signal):
            valid.append(entry)
            continue
        if not isinstance(entry, Mapping):
            dropped += 1
            continue
        try:
            valid.append(Signal.model_validate(dict(entry)))
        except ValidationError:
            dropped += 1
    return valid, dropped


__all__ = [
    "AllocationRule",
    "DeploymentStatus",
    "DeploymentStrategy",
    "MARGIN_TYPES",
    "MarginConfiguration",
    "MarginEventType",
    "MarginPolicy",
    "MarginStatus",
    "MarginStrategy",
    "MarginThreshold",
    "MarginType",
    "OptimalRange",
    "PolicyTriggerConditions",
    "ResilienceMode",
    "Signal",
    "SignalMetadata",
    "SignalSeverity",
    "SignalSource",
    "SignalType",
    "parse_signals",
]
