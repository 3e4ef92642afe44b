"""Margin management: signal-driven allocation, deployment requests and forecasting.

A ``MarginManagementSystem`` owns all of its state (allocations, deployments,
events, utilization history and outstanding recommendations) and is meant to
be used by one caller at a time. Share an instance across threads only behind
an external lock; the expected layout is one instance per organisation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic.alias_generators import to_camel

from . import metrics
from .allocations import MarginAllocation, MarginAllocationStore, status_rank
from .clock import Clock, SystemClock
from .config import Settings, get_settings
from .deployments import (
    REQUESTED_BY,
    DeploymentDecision,
    MarginDeployment,
    deployment_amount,
    estimated_duration,
    expected_outcome,
    initial_status,
    plan_deployment,
    transition,
)
from .errors import UnknownDeploymentError
from .events import (
    Impact,
    MarginEvent,
    allocation_details,
    allocation_impact,
    deployment_details,
    deployment_impact,
)
from .forecasting import (
    DEFAULT_TIME_HORIZON_DAYS,
    FORECAST_ASSUMPTIONS,
    ForecastEngine,
    MarginForecast,
    MarginUtilization,
    forecast_confidence,
)
from .logger import get_logger
from .models import (
    MARGIN_TYPES,
    DeploymentStatus,
    MarginConfiguration,
    MarginEventType,
    MarginPolicy,
    MarginStatus,
    MarginThreshold,
    MarginType,
    ResilienceMode,
    Signal,
    parse_signals,
)
from .policies import (
    applicable_policies,
    default_policies,
    default_thresholds,
    policy_utilization,
    relevant_margin_types,
    severity_multiplier,
)
from .recommendations import MarginRecommendation, recommend
from .reporting import MarginMetrics, MarginStatusSnapshot, compute_metrics

logger = get_logger(__name__)

ThresholdInput = Union[MarginThreshold, Mapping[str, Any]]
PolicyInput = Union[MarginPolicy, Mapping[str, Any]]


@dataclass(frozen=True)
class ProcessingResult:
    """What a single ``process_signals`` call produced."""

    allocations: tuple[MarginAllocation, ...]
    deployments: tuple[MarginDeployment, ...]
    recommendations: tuple[MarginRecommendation, ...]
    events: tuple[MarginEvent, ...]

    @classmethod
    def empty(cls) -> "ProcessingResult":
        return cls(allocations=(), deployments=(), recommendations=(), events=())

    def to_payload(self) -> dict[str, object]:
        return {
            "allocations": [item.to_payload() for item in self.allocations],
            "deployments": [item.to_payload() for item in self.deployments],
            "recommendations": [item.to_payload() for item in self.recommendations],
            "events": [item.to_payload() for item in self.events],
        }


class MarginManagementSystem:
    """Keep time, capacity, material and financial margins in their operating bands."""

    def __init__(
        self,
        config: Optional[Union[MarginConfiguration, Mapping[str, Any]]] = None,
        *,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if config is None:
            config = (settings or get_settings()).margin_configuration()
        elif not isinstance(config, MarginConfiguration):
            config = MarginConfiguration.model_validate(dict(config))
        self._config = config
        self._clock: Clock = clock or SystemClock()
        self._last_now: Optional[datetime] = None
        now = self._now()
        self._started_at = now
        self._metrics_watermark = now
        self._sequence = 0

        self._thresholds: dict[MarginType, MarginThreshold] = default_thresholds()
        for threshold in config.default_thresholds:
            self._thresholds[threshold.margin_type] = threshold
        self._policies: list[MarginPolicy] = list(config.default_policies) or default_policies()

        self._store = MarginAllocationStore(now, config.margin_capacities)
        self._store.restatus(self._thresholds, now)
        self._deployments: dict[str, MarginDeployment] = {}
        self._events: list[MarginEvent] = []
        self._history: list[MarginUtilization] = []
        self._recommendations: dict[MarginType, MarginRecommendation] = {}
        self._forecaster = ForecastEngine()

        logger.info(
            "margin management system initialized",
            enabled=config.enabled,
            strategy=config.default_strategy.value,
            policies=len(self._policies),
        )

    @property
    def config(self) -> MarginConfiguration:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def thresholds(self) -> dict[MarginType, MarginThreshold]:
        return dict(self._thresholds)

    @property
    def policies(self) -> list[MarginPolicy]:
        return list(self._policies)

    def process_signals(
        self,
        signals: Optional[Iterable[Any]],
        mode: Union[ResilienceMode, str],
    ) -> ProcessingResult:
        """Apply a batch of signals under a resilience mode and report what changed."""

        if not self._config.enabled:
            logger.debug("margin processing skipped", reason="disabled")
            return ProcessingResult.empty()

        mode = _coerce_mode(mode)
        valid, dropped = parse_signals(signals)
        if dropped:
            metrics.SIGNALS_DROPPED.inc(dropped)
            logger.warning("dropped malformed margin signals", dropped=dropped)
        if not valid:
            return ProcessingResult(
                allocations=tuple(self._store.all()),
                deployments=(),
                recommendations=(),
                events=(),
            )
        metrics.SIGNALS_PROCESSED.labels(mode=mode.value).inc(len(valid))

        now = self._now()
        events: list[MarginEvent] = []
        policies = applicable_policies(self._policies, valid, mode)
        for policy in policies:
            logger.info("applying margin policy", policy_id=policy.id, mode=mode.value)
            events.extend(self._apply_policy(policy, valid, now))

        immediate = any(policy.deployment_strategy == "immediate" for policy in policies)
        deployments = self._request_deployments(valid, mode, policies, immediate, now)
        for deployment in deployments:
            events.append(
                self._event(
                    MarginEventType.DEPLOYMENT_REQUESTED,
                    deployment.margin_type,
                    f"Margin deployment requested for {deployment.margin_type.value}:"
                    f" {deployment.amount} ({deployment.reason})",
                    deployment_impact(deployment),
                    now,
                    policy_id=deployment.policy_id,
                    details=deployment_details(deployment),
                )
            )

        recommendations = self._refresh_recommendations()
        self._record_history(now)
        self._events.extend(events)
        self._prune(now)
        for event in events:
            metrics.EVENTS_RECORDED.labels(event_type=event.event_type.value).inc()

        logger.info(
            "processed margin signals",
            mode=mode.value,
            signals=len(valid),
            dropped=dropped,
            policies=[policy.id for policy in policies],
            deployments=len(deployments),
            recommendations=len(recommendations),
            events=len(events),
        )
        return ProcessingResult(
            allocations=tuple(self._store.all()),
            deployments=tuple(deployments),
            recommendations=tuple(recommendations),
            events=tuple(events),
        )

    def get_status(self) -> MarginStatusSnapshot:
        if not self._config.enabled:
            return MarginStatusSnapshot((), (), (), (), ())
        cutoff = self._retention_cutoff(self._now())
        events = [event for event in self._events if event.timestamp >= cutoff]
        trends = [point for point in self._history if point.timestamp >= cutoff]
        return MarginStatusSnapshot(
            allocations=tuple(self._store.all()),
            active_deployments=tuple(
                deployment for deployment in self._deployments.values() if deployment.is_active
            ),
            recent_events=tuple(events[-self._config.status_event_limit :]),
            utilization_trends=tuple(trends[-self._config.trend_points_limit :]),
            recommendations=tuple(
                self._recommendations[margin_type]
                for margin_type in MARGIN_TYPES
                if margin_type in self._recommendations
            ),
        )

    def get_metrics(self) -> MarginMetrics:
        now = self._now()
        allocations = self._store.all() if self._config.enabled else []
        latest = max([now, self._metrics_watermark] + [item.last_updated for item in allocations])
        self._metrics_watermark = latest
        return compute_metrics(allocations, self._thresholds, last_updated=latest)

    def generate_forecast(self, time_horizon: int = DEFAULT_TIME_HORIZON_DAYS) -> MarginForecast:
        now = self._now()
        if not self._config.enabled:
            if time_horizon <= 0:
                raise ValueError("time_horizon must be a positive number of days")
            return MarginForecast(
                time_horizon=time_horizon,
                generated_at=now,
                projections=(),
                confidence=forecast_confidence(time_horizon, thin_history=True),
                assumptions=FORECAST_ASSUMPTIONS,
            )
        return self._forecaster.forecast(
            self._store.all(),
            self._history,
            self._thresholds,
            time_horizon=time_horizon,
            now=now,
        )

    def update_config(self, partial: Union[MarginConfiguration, Mapping[str, Any]]) -> None:
        if isinstance(partial, MarginConfiguration):
            updates = partial.model_dump(exclude_unset=True)
        else:
            updates = _config_updates(partial)
        merged = self._config.model_dump()
        merged.update(updates)
        self._config = MarginConfiguration.model_validate(merged)

        if "default_thresholds" in updates and self._config.default_thresholds:
            self.update_thresholds(self._config.default_thresholds)
        if "default_policies" in updates:
            self._policies = list(self._config.default_policies) or default_policies()
        if "margin_capacities" in updates:
            now = self._now()
            for margin_type, total in self._config.margin_capacities.items():
                self._store.resize(margin_type, total, now)
        logger.info("margin configuration updated", fields=sorted(updates))

    def update_thresholds(self, thresholds: Iterable[ThresholdInput]) -> None:
        for item in thresholds:
            threshold = (
                item if isinstance(item, MarginThreshold) else MarginThreshold.model_validate(dict(item))
            )
            self._thresholds[threshold.margin_type] = threshold
        self._store.restatus(self._thresholds, self._now())
        logger.info(
            "margin thresholds updated",
            margin_types=[margin_type.value for margin_type in self._thresholds],
        )

    def update_policies(self, policies: Iterable[PolicyInput]) -> None:
        self._policies = [
            item if isinstance(item, MarginPolicy) else MarginPolicy.model_validate(dict(item))
            for item in policies
        ]
        logger.info("margin policies updated", policy_ids=[policy.id for policy in self._policies])

    def get_deployment(self, deployment_id: str) -> MarginDeployment:
        try:
            return self._deployments[deployment_id]
        except KeyError:
            raise UnknownDeploymentError(deployment_id) from None

    def deployment_history(self) -> tuple[MarginDeployment, ...]:
        return tuple(self._deployments.values())

    def advance_deployment(
        self,
        deployment_id: str,
        status: Union[DeploymentStatus, str],
        *,
        failure_reason: Optional[str] = None,
    ) -> MarginDeployment:
        """Move a deployment along pending -> in_progress -> completed, or to failed."""

        deployment = self.get_deployment(deployment_id)
        now = self._now()
        updated = transition(deployment, DeploymentStatus(status), now, failure_reason=failure_reason)
        self._deployments[deployment_id] = updated
        if updated.status == DeploymentStatus.COMPLETED:
            event = self._event(
                MarginEventType.DEPLOYMENT_COMPLETED,
                updated.margin_type,
                f"Margin deployment {updated.id} completed: {updated.expected_outcome}",
                "low",
                now,
                policy_id=updated.policy_id,
                details=deployment_details(updated),
            )
        elif updated.status == DeploymentStatus.FAILED:
            event = self._event(
                MarginEventType.DEPLOYMENT_FAILED,
                updated.margin_type,
                f"Margin deployment {updated.id} failed: {updated.failure_reason}",
                "high",
                now,
                policy_id=updated.policy_id,
                details=deployment_details(updated),
            )
        else:
            event = None
        if event is not None:
            self._events.append(event)
            metrics.EVENTS_RECORDED.labels(event_type=event.event_type.value).inc()
        logger.info(
            "margin deployment advanced",
            deployment_id=deployment_id,
            status=updated.status.value,
        )
        return updated

    def _apply_policy(
        self, policy: MarginPolicy, signals: list[Signal], now: datetime
    ) -> list[MarginEvent]:
        events: list[MarginEvent] = []
        for margin_type in self._config.managed_types():
            rule = policy.allocation_rules.get(margin_type)
            if rule is None:
                continue
            relevant = [signal for signal in signals if margin_type in relevant_margin_types(signal)]
            current = self._store.get(margin_type)
            target = policy_utilization(current.utilization_rate, rule, severity_multiplier(relevant))
            if target == current.utilization_rate:
                continue
            previous, updated = self._store.apply_utilization(
                margin_type, target, self._thresholds.get(margin_type), now
            )
            events.extend(self._allocation_events(previous, updated, policy.id, now))
        return events

    def _allocation_events(
        self,
        previous: MarginAllocation,
        updated: MarginAllocation,
        policy_id: str,
        now: datetime,
    ) -> list[MarginEvent]:
        label = updated.margin_type.value
        details = allocation_details(previous, updated)
        events = [
            self._event(
                MarginEventType.ALLOCATION_ADJUSTED,
                updated.margin_type,
                f"{label} margin allocation adjusted from {previous.allocated} to"
                f" {updated.allocated} of {updated.total} by {policy_id}",
                allocation_impact(updated),
                now,
                policy_id=policy_id,
                details=details,
            )
        ]
        before = status_rank(previous.status)
        after = status_rank(updated.status)
        if after > before:
            events.append(
                self._event(
                    MarginEventType.THRESHOLD_BREACHED,
                    updated.margin_type,
                    f"{label} margin moved from {previous.status.value} to {updated.status.value}",
                    "high"
                    if updated.status in (MarginStatus.CRITICAL, MarginStatus.EXHAUSTED)
                    else "medium",
                    now,
                    policy_id=policy_id,
                    details=details,
                )
            )
        elif after < before:
            events.append(
                self._event(
                    MarginEventType.STATUS_RECOVERED,
                    updated.margin_type,
                    f"{label} margin recovered from {previous.status.value} to {updated.status.value}",
                    "low",
                    now,
                    policy_id=policy_id,
                    details=details,
                )
            )
        return events

    def _request_deployments(
        self,
        signals: list[Signal],
        mode: ResilienceMode,
        policies: list[MarginPolicy],
        immediate: bool,
        now: datetime,
    ) -> list[MarginDeployment]:
        managed = self._config.managed_types()
        chosen: dict[MarginType, DeploymentDecision] = {}
        for signal in signals:
            relevant = relevant_margin_types(signal)
            for margin_type in managed:
                decision = plan_deployment(
                    signal,
                    self._store.get(margin_type),
                    self._thresholds.get(margin_type),
                    mode,
                    relevant=margin_type in relevant,
                )
                if decision is None:
                    continue
                best = chosen.get(margin_type)
                if best is None or _outranks(decision, best):
                    chosen[margin_type] = decision

        deployments: list[MarginDeployment] = []
        for margin_type in MARGIN_TYPES:
            decision = chosen.get(margin_type)
            if decision is None:
                continue
            allocation = self._store.get(margin_type)
            amount = deployment_amount(
                allocation, self._thresholds.get(margin_type), emergency=decision.emergency
            )
            if amount <= 0:
                continue
            status = initial_status(decision, mode, immediate)
            deployment = MarginDeployment(
                id=self._next_id("deployment", margin_type),
                margin_type=margin_type,
                amount=amount,
                priority=decision.priority,
                status=status,
                reason=decision.reason,
                requested_at=now,
                requested_by=REQUESTED_BY,
                estimated_duration=estimated_duration(margin_type, amount, allocation.total),
                expected_outcome=expected_outcome(margin_type, amount),
                signal_id=decision.signal_id,
                policy_id=_policy_for(policies, margin_type),
                started_at=now if status == DeploymentStatus.IN_PROGRESS else None,
            )
            self._deployments[deployment.id] = deployment
            deployments.append(deployment)
            metrics.DEPLOYMENTS_REQUESTED.labels(
                margin_type=margin_type.value, priority=str(deployment.priority)
            ).inc()
            logger.info(
                "margin deployment requested",
                deployment_id=deployment.id,
                margin_type=margin_type.value,
                amount=str(amount),
                priority=deployment.priority,
                status=status.value,
            )
        return deployments

    def _refresh_recommendations(self) -> list[MarginRecommendation]:
        produced: list[MarginRecommendation] = []
        for allocation in self._store.all():
            margin_type = allocation.margin_type
            recommendation = recommend(
                allocation,
                self._thresholds.get(margin_type),
                lambda: self._next_id("rec", margin_type),
            )
            if recommendation is None:
                self._recommendations.pop(margin_type, None)
                continue
            self._recommendations[margin_type] = recommendation
            produced.append(recommendation)
        return produced

    def _record_history(self, now: datetime) -> None:
        for allocation in self._store.all():
            self._history.append(
                MarginUtilization(
                    margin_type=allocation.margin_type,
                    utilization_rate=allocation.utilization_rate,
                    allocated=allocation.allocated,
                    available=allocation.available,
                    status=allocation.status,
                    timestamp=now,
                )
            )
            metrics.MARGIN_UTILIZATION.labels(margin_type=allocation.margin_type.value).set(
                float(allocation.utilization_rate)
            )

    def _prune(self, now: datetime) -> None:
        cutoff = self._retention_cutoff(now)
        self._events = [event for event in self._events if event.timestamp >= cutoff]
        self._history = [point for point in self._history if point.timestamp >= cutoff]
        self._deployments = {
            deployment_id: deployment
            for deployment_id, deployment in self._deployments.items()
            if deployment.is_active or deployment.requested_at >= cutoff
        }

    def _retention_cutoff(self, now: datetime) -> datetime:
        return now - timedelta(days=self._config.retention_period)

    def _event(
        self,
        event_type: MarginEventType,
        margin_type: MarginType,
        description: str,
        impact: Impact,
        now: datetime,
        *,
        policy_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> MarginEvent:
        return MarginEvent(
            id=self._next_id("event", margin_type),
            timestamp=now,
            event_type=event_type,
            margin_type=margin_type,
            description=description,
            impact=impact,
            policy_id=policy_id,
            details=details or {},
        )

    def _next_id(self, kind: str, margin_type: MarginType) -> str:
        self._sequence += 1
        return f"{kind}-{self._sequence:06d}-{margin_type.value.lower()}"

    def _now(self) -> datetime:
        current = self._clock.now()
        if self._last_now is not None and current < self._last_now:
            current = self._last_now
        self._last_now = current
        return current


def _coerce_mode(mode: Union[ResilienceMode, str]) -> ResilienceMode:
    if isinstance(mode, ResilienceMode):
        return mode
    return ResilienceMode(str(mode).strip().upper())


def _outranks(decision: DeploymentDecision, best: DeploymentDecision) -> bool:
    """Lower priority number wins; on a tie an emergency beats a threshold decision."""

    return (decision.priority, not decision.emergency) < (best.priority, not best.emergency)


def _policy_for(policies: list[MarginPolicy], margin_type: MarginType) -> Optional[str]:
    for policy in policies:
        if margin_type in policy.allocation_rules:
            return policy.id
    return None


def _config_updates(partial: Mapping[str, Any]) -> dict[str, Any]:
    """Translate camelCase or snake_case keys to field names, dropping unknown keys."""

    lookup: dict[str, str] = {}
    for name in MarginConfiguration.model_fields:
        lookup[name] = name
        lookup[to_camel(name)] = name
    updates: dict[str, Any] = {}
    ignored: list[str] = []
    for key, value in partial.items():
        name = lookup.get(str(key))
        if name is None:
            ignored.append(str(key))
            continue
        updates[name] = value
    if ignored:
        logger.warning("ignored unknown margin configuration keys", keys=sorted(ignored))
    return updates


__all__ = ["MarginManagementSystem", "ProcessingResult"]
