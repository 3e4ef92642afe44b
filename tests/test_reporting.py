from __future__ import annotations

from decimal import Decimal
from unittest import TestCase

from margin_manager.allocations import MarginAllocationStore
from margin_manager.events import allocation_impact
from margin_manager.models import MarginType
from margin_manager.policies import default_thresholds
from margin_manager.recommendations import recommend
from margin_manager.reporting import band_fit, compute_metrics, in_optimal_band
from tests.support import START


class TestBandFit(TestCase):
    def setUp(self) -> None:
        self.threshold = default_thresholds()[MarginType.CAPACITY]

    def test_inside_band_is_perfect(self) -> None:
        self.assertEqual(band_fit(Decimal("0.3"), self.threshold), Decimal("1"))
        self.assertTrue(in_optimal_band(Decimal("0.4"), self.threshold))

    def test_falls_linearly_outside_band(self) -> None:
        self.assertEqual(band_fit(Decimal("0.1"), self.threshold), Decimal("0.5"))
        self.assertEqual(band_fit(Decimal("0.7"), self.threshold), Decimal("0.5"))
        self.assertEqual(band_fit(Decimal("1"), self.threshold), Decimal("0"))
        self.assertEqual(band_fit(Decimal("0"), self.threshold), Decimal("0"))
        self.assertFalse(in_optimal_band(Decimal("0.7"), self.threshold))

    def test_metrics_count_critical_margins(self) -> None:
        store = MarginAllocationStore(START)
        thresholds = default_thresholds()
        store.apply_utilization(
            MarginType.MATERIAL, Decimal("0.85"), thresholds[MarginType.MATERIAL], START
        )
        store.apply_utilization(
            MarginType.FINANCIAL, Decimal("1"), thresholds[MarginType.FINANCIAL], START
        )

        metrics = compute_metrics(store.all(), thresholds, last_updated=START)

        self.assertEqual(metrics.critical_margins, 2)
        self.assertEqual(metrics.optimal_margins, 2)
        self.assertEqual(metrics.total_available, metrics.total_margin - metrics.total_allocated)


class TestRecommendations(TestCase):
    def setUp(self) -> None:
        self.store = MarginAllocationStore(START)
        self.thresholds = default_thresholds()
        self.ids = iter(f"rec-{index}" for index in range(1, 10))

    def _next_id(self) -> str:
        return next(self.ids)

    def test_over_utilized_margin_gets_increase(self) -> None:
        _, allocation = self.store.apply_utilization(
            MarginType.TIME, Decimal("0.5"), self.thresholds[MarginType.TIME], START
        )
        recommendation = recommend(allocation, self.thresholds[MarginType.TIME], self._next_id)

        assert recommendation is not None
        self.assertEqual(recommendation.id, "rec-1")
        self.assertEqual(recommendation.recommendation_type, "increase_allocation")
        self.assertEqual(recommendation.priority, "high")
        self.assertEqual(recommendation.estimated_cost, Decimal("2000.00"))
        self.assertIn("above optimal maximum", recommendation.rationale)

    def test_under_utilized_margin_gets_optimize(self) -> None:
        allocation = self.store.get(MarginType.MATERIAL)
        recommendation = recommend(allocation, self.thresholds[MarginType.MATERIAL], self._next_id)

        assert recommendation is not None
        self.assertEqual(recommendation.recommendation_type, "optimize_allocation")
        self.assertEqual(recommendation.timeframe, "planned")
        self.assertLess(recommendation.estimated_cost, 0)

    def test_in_band_margin_consumes_no_id(self) -> None:
        allocation = self.store.get(MarginType.TIME)
        self.assertIsNone(recommend(allocation, self.thresholds[MarginType.TIME], self._next_id))
        self.assertIsNone(recommend(allocation, None, self._next_id))
        self.assertEqual(self._next_id(), "rec-1")


class TestEventImpact(TestCase):
    def test_impact_grows_with_distance_from_baseline(self) -> None:
        store = MarginAllocationStore(START)
        thresholds = default_thresholds()
        cases = {"0.25": "low", "0.4": "medium", "0.8": "high"}
        for rate, expected in cases.items():
            with self.subTest(rate=rate):
                _, allocation = store.apply_utilization(
                    MarginType.TIME, Decimal(rate), thresholds[MarginType.TIME], START
                )
                self.assertEqual(allocation_impact(allocation), expected)
