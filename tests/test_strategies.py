import tempfile
import threading
import unittest
from dataclasses import replace
from pathlib import Path

from plansmith.catalog import PlanCatalog
from plansmith.encoder import SemanticEncoder
from plansmith.generator import CandidateGenerator
from plansmith.indicators import SystemIndicators
from plansmith.intent import Regime
from plansmith.store import InteractionRecord, PlanStore
from plansmith.strategies import (
    GenerationContext,
    HistoryLookupStrategy,
    NeighborhoodExplorationStrategy,
    ProfilePredictiveStrategy,
    StateAwareStrategy,
    Strategy,
    StrategyKind,
    build_strategies,
)
from plansmith.vector import SemanticVector


class _BaseStrategyTest(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = PlanStore(Path(self._tmp.name))
        self.encoder = SemanticEncoder()
        self.catalog = PlanCatalog.from_config(None, self.encoder)
        encoding = self.encoder.encode({"action": "search", "entity": "customer", "certainty": "high"})
        self.ctx = GenerationContext(
            vector=encoding.vector,
            regime=encoding.regime,
            confidence=encoding.confidence,
            catalog=self.catalog,
            store=self.store,
        )

    def tearDown(self):
        self._tmp.cleanup()

    def _seed(self, plan_type, vector, success=True):
        plan = self.catalog.get(plan_type)
        self.store.append_interaction(InteractionRecord.create(
            user_id=None,
            candidate_id="cand-seed",
            plan_type=plan_type,
            strategy_origin="history_lookup",
            regime="stabilization",
            intent_vector=vector.as_list(),
            plan_vector=plan.vector.as_list(),
            success=success,
            duration=0.02,
            quality=None,
            title=plan.title,
            description=plan.description,
            plan_payload=dict(plan.payload),
            estimated_duration=plan.estimated_duration,
            estimated_cost=plan.estimated_cost,
        ))
        self.store.update_stats(plan_type, lambda s: s.observe(success, 0.02))


class HistoryLookupTests(_BaseStrategyTest):
    def test_empty_history(self):
        self.assertEqual(HistoryLookupStrategy().generate(self.ctx), [])

    def test_similar_successes_become_candidates(self):
        self._seed("indexed_lookup", self.ctx.vector)
        self._seed("indexed_lookup", self.ctx.vector)
        self._seed("full_scan", self.ctx.vector, success=False)
        far = SemanticVector(-self.ctx.vector.w, -self.ctx.vector.x, -self.ctx.vector.y, -self.ctx.vector.z)
        self._seed("cached_read", far)

        candidates = HistoryLookupStrategy().generate(self.ctx)
        self.assertEqual([c.plan_type for c in candidates], ["indexed_lookup"])
        candidate = candidates[0]
        stats = self.store.get_stats("indexed_lookup")
        self.assertAlmostEqual(candidate.confidence, stats.success_rate, places=6)
        self.assertEqual(candidate.regime, Regime.STABILIZATION)
        self.assertEqual(candidate.estimated_duration, 0.02)
        self.assertEqual(candidate.strategy_origin, StrategyKind.HISTORY_LOOKUP.value)

    def test_top_m_limit(self):
        for plan_type in ("indexed_lookup", "cached_read", "aggregate_report", "batched_write"):
            self._seed(plan_type, self.ctx.vector)
        self.assertEqual(len(HistoryLookupStrategy(top_m=3).generate(self.ctx)), 3)


class NeighborhoodTests(_BaseStrategyTest):
    def test_variants_claim_distinct_buckets(self):
        candidates = NeighborhoodExplorationStrategy().generate(self.ctx)
        self.assertEqual(len(candidates), 4)
        self.assertEqual(len({c.plan_type for c in candidates}), 4)
        for candidate in candidates:
            self.assertEqual(candidate.regime, Regime.EXPLORATION)
            self.assertAlmostEqual(candidate.confidence, 0.55)
            self.assertTrue(candidate.vector.is_unit())
        first = candidates[0]
        self.assertEqual(self.catalog.nearest(first.vector).name, first.plan_type)

    def test_closest_variant_claims_first(self):
        candidates = NeighborhoodExplorationStrategy().generate(self.ctx)
        sims = [c.vector.similarity(self.ctx.vector) for c in candidates]
        self.assertEqual(sims, sorted(sims, reverse=True))

    def test_small_catalog_caps_candidates(self):
        catalog = PlanCatalog.from_config(
            [
                {"name": "indexed_lookup", "anchor": {"action": "search", "entity": "customer", "certainty": "high"}},
                {"name": "full_scan", "anchor": {"action": "search", "entity": "event", "certainty": "low"}},
            ],
            self.encoder,
        )
        candidates = NeighborhoodExplorationStrategy().generate(replace(self.ctx, catalog=catalog))
        self.assertEqual(sorted(c.plan_type for c in candidates), ["full_scan", "indexed_lookup"])

    def test_deterministic(self):
        first = NeighborhoodExplorationStrategy().generate(self.ctx)
        second = NeighborhoodExplorationStrategy().generate(self.ctx)
        self.assertEqual([c.plan_type for c in first], [c.plan_type for c in second])

    def test_variant_count(self):
        strategy = NeighborhoodExplorationStrategy()
        self.assertEqual(len(strategy.variants(self.ctx.vector)), 4 + 2 + 3)


class StateAwareTests(_BaseStrategyTest):
    def test_favorable_cache_leads_with_fast_plan(self):
        ctx = replace(self.ctx, indicators=SystemIndicators(cache_hit_rate=0.9, load=0.2))
        candidates = StateAwareStrategy().generate(ctx)
        self.assertEqual(
            [c.plan_type for c in candidates],
            ["cached_read", "indexed_lookup", "sharded_fanout"],
        )
        self.assertAlmostEqual(candidates[0].confidence, ctx.confidence * (0.5 + 0.45 * 0.9))
        self.assertAlmostEqual(candidates[1].confidence, ctx.confidence * (0.95 - 0.45 * 0.2))
        for candidate in candidates:
            self.assertEqual(candidate.regime, Regime.STABILIZATION)
            self.assertEqual(candidate.strategy_origin, StrategyKind.STATE_AWARE.value)

    def test_busy_system_leads_with_distributed_plan(self):
        ctx = replace(self.ctx, indicators=SystemIndicators(cache_hit_rate=0.9, load=0.95))
        candidates = StateAwareStrategy().generate(ctx)
        self.assertEqual(
            [c.plan_type for c in candidates],
            ["sharded_fanout", "indexed_lookup", "cached_read"],
        )
        self.assertAlmostEqual(candidates[0].confidence, ctx.confidence * (0.5 + 0.35 * 0.95))

    def test_baseline_keeps_the_intent_vector(self):
        [_, baseline, _] = StateAwareStrategy().generate(self.ctx)
        self.assertEqual(baseline.plan_type, "indexed_lookup")
        self.assertAlmostEqual(baseline.vector.similarity(self.ctx.vector), 1.0, places=6)

    def test_baseline_matching_a_role_plan_is_not_repeated(self):
        encoding = self.encoder.encode({"action": "search", "entity": "product", "certainty": "high"})
        ctx = replace(self.ctx, vector=encoding.vector)
        candidates = StateAwareStrategy().generate(ctx)
        self.assertEqual([c.plan_type for c in candidates], ["sharded_fanout", "cached_read"])


class ProfilePredictiveTests(_BaseStrategyTest):
    def test_requires_known_user(self):
        self.assertEqual(ProfilePredictiveStrategy().generate(self.ctx), [])
        ctx = replace(self.ctx, user_id="nobody")
        self.assertEqual(ProfilePredictiveStrategy().generate(ctx), [])

    def test_follows_sequence_pattern(self):
        def history(profile):
            profile.preference = self.ctx.vector
            for plan_type in ("indexed_lookup", "aggregate_report", "indexed_lookup"):
                profile.observe(plan_type, Regime.OPTIMIZATION, True)
            return profile

        self.store.update_profile("u1", history)
        ctx = replace(self.ctx, user_id="u1")
        [candidate] = ProfilePredictiveStrategy().generate(ctx)
        self.assertEqual(candidate.plan_type, "aggregate_report")
        self.assertEqual(candidate.regime, Regime.OPTIMIZATION)
        self.assertAlmostEqual(candidate.confidence, 1.0, places=6)

    def test_falls_back_to_nearest_plan(self):
        def single(profile):
            profile.preference = self.ctx.vector
            return profile.observe("indexed_lookup", Regime.STABILIZATION, True)

        self.store.update_profile("u2", single)
        [candidate] = ProfilePredictiveStrategy().generate(replace(self.ctx, user_id="u2"))
        self.assertEqual(candidate.plan_type, self.catalog.nearest(self.ctx.vector).name)
        self.assertAlmostEqual(candidate.confidence, 0.6, places=6)


class _ExplodingStrategy(Strategy):
    kind = StrategyKind.STATE_AWARE

    def generate(self, ctx):
        raise RuntimeError("indicator source exploded")


class _StuckStrategy(Strategy):
    kind = StrategyKind.PROFILE_PREDICTIVE

    def __init__(self, release):
        self.release = release

    def generate(self, ctx):
        self.release.wait(2.0)
        return []


class CandidateGeneratorTests(_BaseStrategyTest):
    def test_all_strategies_report(self):
        result = CandidateGenerator(build_strategies({}), timeout=2.0).generate(self.ctx)
        self.assertEqual(
            [r.kind for r in result.reports],
            [k.value for k in StrategyKind],
        )
        self.assertEqual(result.failed, [])
        origins = [c.strategy_origin for c in result.candidates]
        self.assertIn("neighborhood_exploration", origins)
        self.assertIn("state_aware", origins)

    def test_failure_and_timeout_are_isolated(self):
        release = threading.Event()
        strategies = [
            HistoryLookupStrategy(),
            NeighborhoodExplorationStrategy(),
            _ExplodingStrategy(),
            _StuckStrategy(release),
        ]
        try:
            result = CandidateGenerator(strategies, timeout=0.3).generate(self.ctx)
        finally:
            release.set()
        statuses = {r.kind: r.status for r in result.reports}
        self.assertEqual(statuses["history_lookup"], "empty")
        self.assertEqual(statuses["neighborhood_exploration"], "ok")
        self.assertEqual(statuses["state_aware"], "failed")
        self.assertEqual(statuses["profile_predictive"], "timeout")
        self.assertEqual(sorted(result.failed), ["profile_predictive", "state_aware"])
        self.assertTrue(result.candidates)
        self.assertTrue(all(c.strategy_origin == "neighborhood_exploration" for c in result.candidates))


if __name__ == "__main__":
    unittest.main()
