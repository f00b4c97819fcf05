import threading
import unittest

from plansmith.catalog import PlanCatalog
from plansmith.candidates import DIMENSIONS
from plansmith.encoder import SemanticEncoder
from plansmith.intent import Regime
from plansmith.scoring import (
    QualityScorer,
    arithmetic_mean,
    balance_score,
    correctness_score,
    duration_score,
    elegance_score,
    harmonic_mean,
    performance_score,
    regime_alignment,
    unify,
    weighted_harmonic_mean,
)
from plansmith.store import PlanTypeStats, UserProfile
from plansmith.vector import GOLDEN_RATIO


def _catalog():
    return PlanCatalog.from_config(None, SemanticEncoder())


class MeanTests(unittest.TestCase):
    def test_weak_dimension_dominates(self):
        self.assertAlmostEqual(harmonic_mean([9, 9, 9, 9, 3]), 5 / (4 / 9 + 1 / 3))
        self.assertLess(harmonic_mean([9, 9, 9, 9, 3]), harmonic_mean([7.5] * 5))
        self.assertGreater(arithmetic_mean([9, 9, 9, 9, 3]), arithmetic_mean([7.5] * 5))

    def test_harmonic_is_below_arithmetic_for_unequal_values(self):
        for values in ([1, 2, 3], [0.5, 9.5], [2, 8, 8, 8], [9, 9, 9, 9, 3]):
            self.assertLess(harmonic_mean(values), arithmetic_mean(values))

    def test_harmonic_equals_arithmetic_only_when_all_equal(self):
        for values in ([10, 10, 10], [7.5] * 5, [0.25, 0.25]):
            self.assertAlmostEqual(harmonic_mean(values), arithmetic_mean(values))
        self.assertLess(harmonic_mean([7.5, 7.5, 7.5, 7.5, 7.4]), arithmetic_mean([7.5, 7.5, 7.5, 7.5, 7.4]))

    def test_zero_and_negative(self):
        self.assertEqual(harmonic_mean([5, 0, 5]), 0.0)
        self.assertEqual(harmonic_mean([]), 0.0)
        with self.assertRaises(ValueError):
            harmonic_mean([5, -1])

    def test_unify_floors_zero_unless_hard_fail(self):
        soft = unify([10, 10, 10, 10, 0])
        self.assertGreater(soft, 0.0)
        self.assertLess(soft, 0.01)
        self.assertEqual(unify([10, 10, 10, 10, 0], hard_fail_on_zero=True), 0.0)
        self.assertAlmostEqual(unify([7.5] * 5), 7.5)

    def test_weighted_harmonic_mean_with_equal_weights(self):
        values = [4.0, 6.0, 9.0]
        self.assertAlmostEqual(weighted_harmonic_mean((v, 1.0) for v in values), harmonic_mean(values))
        self.assertEqual(weighted_harmonic_mean([]), 0.0)


class DimensionTests(unittest.TestCase):
    def test_duration_curve(self):
        self.assertEqual(duration_score(0.01), 10.0)
        self.assertEqual(duration_score(10.0), 0.0)
        self.assertAlmostEqual(duration_score(0.5), 5.0)

    def test_performance_prefers_fast_and_cheap(self):
        fast, _ = performance_score(0.03, 0.05)
        slow, _ = performance_score(2.5, 1.5)
        self.assertGreater(fast, slow)

    def test_correctness_tracks_similarity(self):
        close, parts = correctness_score(1.0, 0.9, 0.9, 3, 0)
        far, _ = correctness_score(0.4, 0.9, 0.9, 3, 0)
        self.assertGreater(close, far)
        self.assertEqual(parts["complexity"], 10.0)

    def test_negative_similarity_is_clamped(self):
        score, parts = correctness_score(-0.5, 0.9, 0.9, 3, 0)
        self.assertEqual(parts["similarity"], 0.0)
        self.assertGreater(score, 0.0)

    def test_regime_alignment(self):
        self.assertEqual(regime_alignment(Regime.STABILIZATION, Regime.STABILIZATION), 10.0)
        self.assertEqual(regime_alignment(Regime.OPTIMIZATION, Regime.STABILIZATION), 7.0)
        self.assertEqual(regime_alignment(Regime.EXPLORATION, Regime.STABILIZATION), 4.0)

    def test_balance_rewards_golden_ratio(self):
        self.assertAlmostEqual(balance_score({"a": GOLDEN_RATIO, "b": 1.0}), 10.0)
        self.assertEqual(balance_score({"a": 5}), 9.0)
        self.assertLess(balance_score({"a": 9, "b": 1}), balance_score({"a": 5, "b": 3}))

    def test_elegance_penalizes_branching(self):
        simple, _ = elegance_score(1, 0, ["index"])
        tangled, _ = elegance_score(6, 2, ["index"])
        self.assertGreater(simple, tangled)
        _, parts = elegance_score(1, 0, ["unheard_of"])
        self.assertEqual(parts["optimizations"], 7.0)


class QualityScorerTests(unittest.TestCase):
    def setUp(self):
        self.catalog = _catalog()
        self.plan = self.catalog.get("indexed_lookup")
        self.candidate = self.plan.instantiate("test", self.plan.vector, 0.9, Regime.STABILIZATION, "")

    def test_breakdown_is_bounded_and_unified_by_harmonic_mean(self):
        breakdown = QualityScorer().score(
            self.candidate,
            self.plan.vector,
            PlanTypeStats(plan_type="indexed_lookup"),
            intent_regime=Regime.STABILIZATION,
            confidence=0.95,
        )
        for score in breakdown.scores():
            self.assertGreaterEqual(score, 0.0)
            self.assertLessEqual(score, 10.0)
        self.assertAlmostEqual(breakdown.unified, harmonic_mean(breakdown.scores()))
        self.assertLessEqual(breakdown.unified, arithmetic_mean(breakdown.scores()))
        self.assertEqual(set(breakdown.components), set(DIMENSIONS))
        self.assertNotIn("profile", breakdown.components["synergy"])

    def test_profile_similarity_feeds_synergy(self):
        profile = UserProfile(user_id="u1", preference=self.plan.vector)
        breakdown = QualityScorer().score(
            self.candidate,
            self.plan.vector,
            PlanTypeStats(plan_type="indexed_lookup"),
            profile=profile,
            intent_regime=Regime.STABILIZATION,
        )
        self.assertAlmostEqual(breakdown.components["synergy"]["profile"], 10.0)

    def test_score_all_drops_failures(self):
        other = self.catalog.get("full_scan")
        broken = other.instantiate("test", other.vector, 0.5, Regime.EXPLORATION, "")

        class FlakyScorer(QualityScorer):
            def score(self, candidate, *args, **kwargs):
                if candidate is broken:
                    raise RuntimeError("boom")
                return QualityScorer.score(self, candidate, *args, **kwargs)

        outcome = FlakyScorer().score_all([self.candidate, broken], self.plan.vector, {}, timeout=2.0)
        self.assertEqual(outcome.candidates, [self.candidate])
        self.assertEqual(outcome.dropped, 1)
        self.assertFalse(outcome.partial)
        self.assertIsNotNone(self.candidate.quality)

    def test_score_all_respects_deadline(self):
        other = self.catalog.get("full_scan")
        slow = other.instantiate("test", other.vector, 0.5, Regime.EXPLORATION, "")
        release = threading.Event()

        class SlowScorer(QualityScorer):
            def score(self, candidate, *args, **kwargs):
                if candidate is slow:
                    release.wait(2.0)
                return QualityScorer.score(self, candidate, *args, **kwargs)

        try:
            outcome = SlowScorer().score_all([self.candidate, slow], self.plan.vector, {}, timeout=0.2)
        finally:
            release.set()
        self.assertTrue(outcome.partial)
        self.assertEqual([c.id for c in outcome.candidates], [self.candidate.id])


if __name__ == "__main__":
    unittest.main()
