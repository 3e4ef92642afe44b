"""Margin management for asset resilience: allocations, deployments and forecasts."""

from .allocations import MarginAllocation, status_for_utilization
from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .deployments import MarginDeployment
from .errors import DeploymentTransitionError, MarginError, UnknownDeploymentError
from .events import MarginEvent
from .forecasting import MarginForecast, MarginProjection, MarginUtilization
from .models import (
    AllocationRule,
    DeploymentStatus,
    MarginConfiguration,
    MarginEventType,
    MarginPolicy,
    MarginStatus,
    MarginStrategy,
    MarginThreshold,
    MarginType,
    OptimalRange,
    PolicyTriggerConditions,
    ResilienceMode,
    Signal,
    SignalSeverity,
    SignalSource,
    SignalType,
)
from .recommendations import MarginRecommendation
from .reporting import MarginMetrics, MarginStatusSnapshot
from .system import MarginManagementSystem, ProcessingResult

__all__ = [
    "AllocationRule",
    "Clock",
    "DeploymentStatus",
    "DeploymentTransitionError",
    "MarginAllocation",
    "MarginConfiguration",
    "MarginDeployment",
    "MarginError",
    "MarginEvent",
    "MarginEventType",
    "MarginForecast",
    "MarginManagementSystem",
    "MarginMetrics",
    "MarginPolicy",
    "MarginProjection",
    "MarginRecommendation",
    "MarginStatus",
    "MarginStatusSnapshot",
    "MarginStrategy",
    "MarginThreshold",
    "MarginType",
    "MarginUtilization",
    "OptimalRange",
    "PolicyTriggerConditions",
    "ProcessingResult",
    "ResilienceMode",
    "Settings",
    "Signal",
    "SignalSeverity",
    "SignalSource",
    "SignalType",
    "SystemClock",
    "UnknownDeploymentError",
    "get_settings",
    "status_for_utilization",
]
