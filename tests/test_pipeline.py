import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx

from plansmith.config import Config, load_config
from plansmith.indicators import IndicatorsClient, SystemIndicators
from plansmith.intent import Regime
from plansmith.pipeline import (
    STATUS_BELOW_THRESHOLD,
    STATUS_NO_MATCH,
    STATUS_OK,
    SynthesisEngine,
    UnknownCandidateError,
)

PRECISE = {"action": "search", "entity": "customer", "attributes": [], "certainty": "high"}
HEDGED = {"action": "search", "entity": "customer", "attributes": [], "certainty": "maybe"}


def _engine(data_dir) -> SynthesisEngine:
    raw = load_config()
    raw["data_dir"] = str(data_dir)
    return SynthesisEngine(Config(raw))


def _seed_history(engine: SynthesisEngine, summary, plan_types, times=3):
    encoding = engine.encode(summary)
    for name in plan_types:
        plan = engine.catalog.get(name)
        for _ in range(times):
            chosen = plan.instantiate("history_lookup", encoding.vector, 0.9, encoding.regime, "seed")
            engine.recorder.record(
                chosen,
                outcome_success=True,
                duration=0.02,
                intent_vector=encoding.vector,
                intent_regime=encoding.regime,
            )


class SynthesisEngineTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name)
        self.engine = _engine(self.data_dir)

    def tearDown(self):
        self._tmp.cleanup()

    def test_precise_request_with_history_stabilizes(self):
        _seed_history(self.engine, PRECISE, ["indexed_lookup", "cached_read"])
        result = self.engine.synthesize(PRECISE, indicators=SystemIndicators())
        self.assertEqual(result.status, STATUS_OK)
        self.assertEqual(result.regime, Regime.STABILIZATION)
        self.assertEqual(result.threshold, 9.0)
        self.assertGreaterEqual(len(result.candidates), 2)
        self.assertLessEqual(len(result.candidates), 4)
        for candidate in result.candidates:
            self.assertGreaterEqual(candidate.unified, 9.0)
        unified = [c.unified for c in result.candidates]
        self.assertEqual(unified, sorted(unified, reverse=True))
        self.assertEqual({c.plan_type for c in result.candidates}, {"indexed_lookup", "cached_read"})

    def test_precise_request_on_fresh_store_stabilizes(self):
        for indicators in (None, SystemIndicators(cache_hit_rate=0.95, load=0.1)):
            result = self.engine.synthesize(PRECISE, indicators=indicators)
            self.assertEqual(result.status, STATUS_OK)
            self.assertEqual(result.regime, Regime.STABILIZATION)
            self.assertGreaterEqual(len(result.candidates), 2)
            self.assertLessEqual(len(result.candidates), 4)
            for candidate in result.candidates:
                self.assertGreaterEqual(candidate.unified, 9.0)
            plan_types = [c.plan_type for c in result.candidates]
            self.assertEqual(len(set(plan_types)), len(plan_types))
            self.assertIn("indexed_lookup", plan_types)
        self.assertEqual(self.engine.store.recent_interactions(), [])

    def test_hedged_request_explores(self):
        _seed_history(self.engine, PRECISE, ["indexed_lookup", "cached_read"])
        precise = self.engine.synthesize(PRECISE, indicators=SystemIndicators())
        hedged = self.engine.synthesize(HEDGED, indicators=SystemIndicators())
        self.assertEqual(hedged.regime, Regime.EXPLORATION)
        self.assertEqual(hedged.threshold, 7.0)
        self.assertIn(hedged.status, (STATUS_OK, STATUS_BELOW_THRESHOLD))
        self.assertLessEqual(len(hedged.candidates), 4)
        for candidate in hedged.candidates:
            self.assertGreaterEqual(candidate.unified, 7.0)
        if hedged.candidates:
            def mean_confidence(result):
                return sum(c.confidence for c in result.candidates) / len(result.candidates)
            self.assertLess(mean_confidence(hedged), mean_confidence(precise))

    def test_degenerate_request_is_no_match(self):
        result = self.engine.synthesize({})
        self.assertEqual(result.status, STATUS_NO_MATCH)
        self.assertEqual(result.regime, Regime.EXPLORATION)
        self.assertEqual(result.candidates, [])
        self.assertTrue(result.suggestion)
        self.assertEqual(result.to_dict()["status"], "no_match")

    def test_impossible_bar_is_below_threshold(self):
        result = self.engine.synthesize(PRECISE, threshold_override=10.01)
        self.assertEqual(result.status, STATUS_BELOW_THRESHOLD)
        self.assertEqual(result.candidates, [])
        self.assertIsNotNone(result.best_rejected)
        self.assertIn("Best candidate", result.suggestion)
        self.assertGreater(result.generated, 0)

    def test_free_text_is_resolved_with_lexicon(self):
        result = self.engine.synthesize(text="maybe find a customer", threshold_override=0.0)
        self.assertEqual(result.category, "search:customer")
        self.assertEqual(result.regime, Regime.EXPLORATION)
        self.assertTrue(result.candidates)

    def test_record_choice_updates_learning_state(self):
        result = self.engine.synthesize(PRECISE, user_id="u1", threshold_override=0.0)
        chosen = result.candidates[0]
        ack = self.engine.record_choice(chosen.id, success=True, duration=0.03, user_id="u1")
        self.assertTrue(ack.ok)
        self.assertEqual(self.engine.store.get_stats(chosen.plan_type).execution_count, 1)
        profile = self.engine.profile("u1")
        self.assertEqual(profile.recent_plan_types, [chosen.plan_type])
        [record] = self.engine.store.recent_interactions()
        self.assertEqual(record.candidate_id, chosen.id)

    def test_record_choice_from_a_new_engine(self):
        result = self.engine.synthesize(PRECISE, threshold_override=0.0)
        chosen = result.candidates[-1]
        fresh = _engine(self.data_dir)
        ack = fresh.record_choice(chosen.id, success=False, duration=1.2)
        self.assertEqual(ack.stats["failure_count"], 1)
        self.assertEqual(fresh.candidate(chosen.id).plan_type, chosen.plan_type)

    def test_unknown_candidate(self):
        with self.assertRaises(UnknownCandidateError):
            self.engine.record_choice("cand-missing", success=True, duration=0.1)

    def test_audit_trail(self):
        self.engine.synthesize(PRECISE, threshold_override=0.0)
        events = [e["event"] for e in self.engine.audit.tail()]
        self.assertEqual(events[0], "synthesis.start")
        self.assertIn("strategy.result", events)
        self.assertEqual(events[-1], "synthesis.complete")

    def test_result_serializes(self):
        result = self.engine.synthesize(PRECISE, threshold_override=0.0)
        payload = json.loads(json.dumps(result.to_dict()))
        self.assertEqual(payload["status"], "ok")
        first = payload["candidates"][0]
        for key in ("id", "title", "description", "confidence", "regime", "quality_breakdown", "estimated_duration"):
            self.assertIn(key, first)
        self.assertEqual(len(payload["strategies"]), 4)

    def test_indicator_errors_are_drained_into_audit(self):
        client = IndicatorsClient(base_url="http://indicators.local")
        raw = load_config()
        raw["data_dir"] = str(self.data_dir)
        engine = SynthesisEngine(Config(raw), indicators=client)
        fake = MagicMock()
        fake.__enter__.return_value = fake
        fake.get.side_effect = httpx.ConnectError("refused")
        with patch("plansmith.indicators.httpx.Client", return_value=fake):
            engine.synthesize(PRECISE, threshold_override=0.0)
            engine.synthesize(PRECISE, threshold_override=0.0)
        self.assertEqual(client.errors, [])
        errors = [e for e in engine.audit.tail() if e["event"] == "indicators.error"]
        self.assertEqual(len(errors), 2)
        self.assertEqual(errors[0]["data"]["action"], "indicators")
        self.assertNotEqual(errors[0]["call_id"], errors[1]["call_id"])

    def test_strategy_budget_comes_from_config(self):
        raw = load_config()
        raw["data_dir"] = str(self.data_dir)
        raw.setdefault("generator", {})["strategy_timeout_seconds"] = 0.25
        config = Config(raw)
        engine = SynthesisEngine(config)
        self.assertEqual(engine.generator.timeout, config.strategy_timeout_seconds)
        self.assertAlmostEqual(engine.generator.timeout, 0.25)

    def test_unavailable_store_degrades(self):
        blocker = self.data_dir / "blocked"
        blocker.write_text("")
        engine = _engine(blocker)
        result = engine.synthesize(PRECISE, user_id="u1", threshold_override=0.0)
        self.assertEqual(result.status, STATUS_OK)
        self.assertTrue(result.candidates)


if __name__ == "__main__":
    unittest.main()
