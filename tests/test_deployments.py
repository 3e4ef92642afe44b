from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest import TestCase

from margin_manager.allocations import MarginAllocation, MarginAllocationStore
from margin_manager.deployments import (
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
from margin_manager.errors import DeploymentTransitionError
from margin_manager.models import DeploymentStatus, MarginType, ResilienceMode, Signal
from margin_manager.policies import default_thresholds
from tests.support import START, make_signal


def _signal(signal_type: str = "OPERATIONAL", severity: str = "LOW") -> Signal:
    return Signal.model_validate(make_signal(signal_type=signal_type, severity=severity))


def _allocation(margin_type: MarginType, rate: str) -> MarginAllocation:
    store = MarginAllocationStore(START)
    _, updated = store.apply_utilization(
        margin_type, Decimal(rate), default_thresholds()[margin_type], START
    )
    return updated


def _deployment(status: DeploymentStatus = DeploymentStatus.PENDING) -> MarginDeployment:
    return MarginDeployment(
        id="deployment-000001-time",
        margin_type=MarginType.TIME,
        amount=Decimal("5.00"),
        priority=2,
        status=status,
        reason="Emergency escalation",
        requested_at=START,
        requested_by=REQUESTED_BY,
        estimated_duration=Decimal("30.0"),
        expected_outcome="Increase available time buffer by 5.00 hours",
    )


class TestPlanDeployment(TestCase):
    def setUp(self) -> None:
        self.thresholds = default_thresholds()

    def test_emergency_signal_deploys_in_any_mode(self) -> None:
        for mode in ResilienceMode:
            with self.subTest(mode=mode):
                decision = plan_deployment(
                    _signal("EMERGENCY", "LOW"),
                    _allocation(MarginType.TIME, "0.2"),
                    self.thresholds[MarginType.TIME],
                    mode,
                    relevant=False,
                )
                assert decision is not None
                self.assertEqual(decision.priority, 1)
                self.assertTrue(decision.emergency)
                self.assertTrue(decision.reason.startswith("Emergency"))

    def test_critical_signal_escalates_by_mode(self) -> None:
        allocation = _allocation(MarginType.CAPACITY, "0.2")
        threshold = self.thresholds[MarginType.CAPACITY]
        signal = _signal("OPERATIONAL", "CRITICAL")

        emergency = plan_deployment(signal, allocation, threshold, ResilienceMode.EMERGENCY)
        stressed = plan_deployment(signal, allocation, threshold, ResilienceMode.HIGH_STRESS)
        normal = plan_deployment(signal, allocation, threshold, ResilienceMode.NORMAL)
        unrelated = plan_deployment(
            signal, allocation, threshold, ResilienceMode.EMERGENCY, relevant=False
        )

        assert emergency is not None and stressed is not None
        self.assertEqual((emergency.priority, emergency.emergency), (1, True))
        self.assertEqual((stressed.priority, stressed.emergency), (2, True))
        self.assertIn("Emergency escalation", stressed.reason)
        self.assertIsNone(normal)
        self.assertIsNone(unrelated)

    def test_mode_offset_tightens_effective_status(self) -> None:
        allocation = _allocation(MarginType.TIME, "0.86")
        threshold = self.thresholds[MarginType.TIME]
        signal = _signal("OPERATIONAL", "MEDIUM")

        stressed = plan_deployment(signal, allocation, threshold, ResilienceMode.HIGH_STRESS)
        normal = plan_deployment(signal, allocation, threshold, ResilienceMode.NORMAL)

        assert stressed is not None
        self.assertEqual(stressed.priority, 1)
        self.assertFalse(stressed.emergency)
        self.assertIn("exhausted", stressed.reason)
        self.assertIsNone(normal)

    def test_critical_status_requests_priority_two(self) -> None:
        decision = plan_deployment(
            _signal("OPERATIONAL", "LOW"),
            _allocation(MarginType.TIME, "0.91"),
            self.thresholds[MarginType.TIME],
            ResilienceMode.NORMAL,
        )
        assert decision is not None
        self.assertEqual(decision.priority, 2)

    def test_constrained_margin_needs_high_severity_in_escalated_mode(self) -> None:
        allocation = _allocation(MarginType.TIME, "0.76")
        threshold = self.thresholds[MarginType.TIME]

        elevated = plan_deployment(
            _signal("OPERATIONAL", "HIGH"), allocation, threshold, ResilienceMode.ELEVATED
        )
        low = plan_deployment(
            _signal("OPERATIONAL", "LOW"), allocation, threshold, ResilienceMode.ELEVATED
        )
        recovery = plan_deployment(
            _signal("OPERATIONAL", "HIGH"), allocation, threshold, ResilienceMode.RECOVERY
        )

        assert elevated is not None
        self.assertEqual(elevated.priority, 3)
        self.assertIsNone(low)
        self.assertIsNone(recovery)


class TestDeploymentSizing(TestCase):
    def setUp(self) -> None:
        self.thresholds = default_thresholds()

    def test_amount_restores_optimal_floor(self) -> None:
        amount = deployment_amount(
            _allocation(MarginType.TIME, "0.9"), self.thresholds[MarginType.TIME], emergency=False
        )
        self.assertEqual(amount, Decimal("75.00"))

    def test_emergency_amount_has_floor(self) -> None:
        time_amount = deployment_amount(
            _allocation(MarginType.TIME, "0.15"), self.thresholds[MarginType.TIME], emergency=True
        )
        financial = deployment_amount(
            _allocation(MarginType.FINANCIAL, "0.2"),
            self.thresholds[MarginType.FINANCIAL],
            emergency=True,
        )
        self.assertEqual(time_amount, Decimal("5.00"))
        self.assertEqual(financial, Decimal("10000.00"))

    def test_emergency_floor_never_exceeds_allocated(self) -> None:
        allocation = _allocation(MarginType.TIME, "0.02")
        amount = deployment_amount(
            allocation, self.thresholds[MarginType.TIME], emergency=True
        )
        self.assertEqual(amount, Decimal("2.00"))
        self.assertLessEqual(amount, allocation.allocated)

        empty = _allocation(MarginType.TIME, "0")
        self.assertEqual(
            deployment_amount(empty, self.thresholds[MarginType.TIME], emergency=True),
            Decimal("0"),
        )

    def test_amount_is_zero_below_band(self) -> None:
        amount = deployment_amount(
            _allocation(MarginType.TIME, "0.1"), self.thresholds[MarginType.TIME], emergency=False
        )
        self.assertEqual(amount, Decimal("0"))

    def test_estimated_duration_scales_with_share(self) -> None:
        self.assertEqual(
            estimated_duration(MarginType.TIME, Decimal("75"), Decimal("100")), Decimal("120.0")
        )
        self.assertEqual(
            estimated_duration(MarginType.CAPACITY, Decimal("10"), Decimal("1000")), Decimal("15.0")
        )
        self.assertEqual(
            estimated_duration(MarginType.MATERIAL, Decimal("50"), Decimal("500")), Decimal("120.0")
        )

    def test_expected_outcome_wording(self) -> None:
        self.assertEqual(
            expected_outcome(MarginType.FINANCIAL, Decimal("10000.00")),
            "Increase financial buffer by $10,000.00",
        )
        self.assertIn("hours", expected_outcome(MarginType.TIME, Decimal("5.00")))


class TestDeploymentLifecycle(TestCase):
    def test_initial_status(self) -> None:
        emergency = DeploymentDecision(MarginType.TIME, 1, True, "Emergency signal", "s")
        routine = DeploymentDecision(MarginType.TIME, 2, False, "Critical threshold", "s")

        self.assertEqual(
            initial_status(emergency, ResilienceMode.EMERGENCY, False), DeploymentStatus.IN_PROGRESS
        )
        self.assertEqual(
            initial_status(emergency, ResilienceMode.HIGH_STRESS, True), DeploymentStatus.IN_PROGRESS
        )
        self.assertEqual(
            initial_status(emergency, ResilienceMode.HIGH_STRESS, False), DeploymentStatus.PENDING
        )
        self.assertEqual(
            initial_status(routine, ResilienceMode.EMERGENCY, True), DeploymentStatus.PENDING
        )

    def test_happy_path_stamps_times(self) -> None:
        started = START + timedelta(minutes=1)
        finished = START + timedelta(minutes=30)

        running = transition(_deployment(), DeploymentStatus.IN_PROGRESS, started)
        done = transition(running, DeploymentStatus.COMPLETED, finished)

        self.assertEqual(running.started_at, started)
        self.assertEqual(done.finished_at, finished)
        self.assertFalse(done.is_active)

    def test_failure_records_reason(self) -> None:
        failed = transition(
            _deployment(), DeploymentStatus.FAILED, START, failure_reason="crew unavailable"
        )
        self.assertEqual(failed.failure_reason, "crew unavailable")
        self.assertEqual(failed.status, DeploymentStatus.FAILED)

    def test_illegal_transitions_raise(self) -> None:
        with self.assertRaises(DeploymentTransitionError):
            transition(_deployment(), DeploymentStatus.COMPLETED, START)
        with self.assertRaises(ValueError):
            transition(_deployment(DeploymentStatus.COMPLETED), DeploymentStatus.FAILED, START)
