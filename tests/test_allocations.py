from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from unittest import TestCase

from margin_manager.allocations import (
    MarginAllocationStore,
    status_for_utilization,
    status_rank,
)
from margin_manager.models import MarginStatus, MarginType
from margin_manager.policies import default_thresholds
from tests.support import START


class TestStatusDerivation(TestCase):
    def setUp(self) -> None:
        self.threshold = default_thresholds()[MarginType.TIME]

    def test_status_steps_through_thresholds(self) -> None:
        cases = {
            Decimal("0.5"): MarginStatus.AVAILABLE,
            Decimal("0.8"): MarginStatus.CONSTRAINED,
            Decimal("0.9"): MarginStatus.CRITICAL,
            Decimal("0.95"): MarginStatus.EXHAUSTED,
            Decimal("1"): MarginStatus.EXHAUSTED,
        }
        for rate, expected in cases.items():
            with self.subTest(rate=rate):
                self.assertEqual(status_for_utilization(rate, self.threshold), expected)

    def test_offset_lowers_every_threshold(self) -> None:
        self.assertEqual(
            status_for_utilization(Decimal("0.85"), self.threshold, offset=Decimal("10")),
            MarginStatus.EXHAUSTED,
        )
        self.assertEqual(
            status_for_utilization(Decimal("0.85"), self.threshold),
            MarginStatus.CONSTRAINED,
        )

    def test_missing_or_inactive_threshold_is_available(self) -> None:
        inactive = self.threshold.model_copy(update={"is_active": False})
        self.assertEqual(status_for_utilization(Decimal("1"), None), MarginStatus.AVAILABLE)
        self.assertEqual(status_for_utilization(Decimal("1"), inactive), MarginStatus.AVAILABLE)

    def test_status_rank_orders_by_severity(self) -> None:
        ranks = [status_rank(status) for status in MarginStatus]
        self.assertEqual(ranks, sorted(ranks))


class TestMarginAllocationStore(TestCase):
    def test_initial_allocations_sit_at_baseline(self) -> None:
        store = MarginAllocationStore(START)
        allocations = store.all()

        self.assertEqual([item.margin_type for item in allocations], list(MarginType))
        for allocation in allocations:
            self.assertEqual(allocation.utilization_rate, Decimal("0.2"))
            self.assertEqual(allocation.allocated + allocation.available, allocation.total)
        self.assertEqual(store.get(MarginType.FINANCIAL).allocated, Decimal("20000.0"))

    def test_capacity_overrides(self) -> None:
        store = MarginAllocationStore(START, {MarginType.TIME: Decimal("40")})
        self.assertEqual(store.get(MarginType.TIME).total, Decimal("40"))
        self.assertEqual(store.get(MarginType.TIME).allocated, Decimal("8.0"))

    def test_apply_utilization_clamps_and_restatuses(self) -> None:
        store = MarginAllocationStore(START)
        thresholds = default_thresholds()
        later = START + timedelta(minutes=5)

        previous, updated = store.apply_utilization(
            MarginType.CAPACITY, Decimal("1.5"), thresholds[MarginType.CAPACITY], later
        )

        self.assertEqual(previous.utilization_rate, Decimal("0.2"))
        self.assertEqual(updated.utilization_rate, Decimal("1"))
        self.assertEqual(updated.available, Decimal("0"))
        self.assertEqual(updated.status, MarginStatus.EXHAUSTED)
        self.assertEqual(updated.last_updated, later)
        self.assertIs(store.get(MarginType.CAPACITY), updated)

    def test_resize_keeps_utilization_rate(self) -> None:
        store = MarginAllocationStore(START)
        updated = store.resize(MarginType.MATERIAL, Decimal("1000"), START)
        self.assertEqual(updated.utilization_rate, Decimal("0.2"))
        self.assertEqual(updated.allocated, Decimal("200.0"))
        self.assertEqual(updated.available, Decimal("800.0"))

    def test_restatus_applies_new_thresholds(self) -> None:
        store = MarginAllocationStore(START)
        thresholds = default_thresholds()
        thresholds[MarginType.TIME] = thresholds[MarginType.TIME].model_copy(
            update={
                "warning_threshold": Decimal("10"),
                "critical_threshold": Decimal("15"),
                "emergency_threshold": Decimal("18"),
            }
        )
        later = START + timedelta(minutes=10)
        store.restatus(thresholds, later)
        self.assertEqual(store.get(MarginType.TIME).status, MarginStatus.EXHAUSTED)
        self.assertEqual(store.get(MarginType.TIME).last_updated, later)
        self.assertEqual(store.get(MarginType.CAPACITY).status, MarginStatus.AVAILABLE)
        self.assertEqual(store.get(MarginType.CAPACITY).last_updated, START)
