"""Core synthesis pipeline for Plansmith."""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import threading
import time
import uuid

from plansmith.audit import AuditLog
from plansmith.candidates import Candidate
from plansmith.catalog import PlanCatalog
from plansmith.config import Config
from plansmith.encoder import Encoding, SemanticEncoder
from plansmith.feedback import FeedbackAck, FeedbackRecorder
from plansmith.generator import CandidateGenerator, StrategyReport
from plansmith.indicators import IndicatorsClient, SystemIndicators
from plansmith.intent import IntentSummary, Regime, RegimePolicy
from plansmith.lexicon import Lexicon
from plansmith.scoring import QualityScorer
from plansmith.selection import CardinalitySelector
from plansmith.store import PlanStore, PlanTypeStats, StoreUnavailableError, UserProfile
from plansmith.strategies import GenerationContext, build_strategies

STATUS_OK = "ok"
STATUS_NO_MATCH = "no_match"
STATUS_BELOW_THRESHOLD = "below_threshold"
STATUS_TIMEOUT = "timeout"

NO_MATCH_SUGGESTION = "Refine the request with a clear action and target, for example 'find customer by email'."


class UnknownCandidateError(Exception):
    """Raised when a choice is recorded for a candidate the engine never returned."""


@dataclass
class SynthesisResult:
    call_id: str
    status: str
    regime: Regime
    threshold: float
    confidence: float
    category: str
    candidates: List[Candidate] = field(default_factory=list)
    elapsed_ms: float = 0.0
    suggestion: Optional[str] = None
    strategies: List[StrategyReport] = field(default_factory=list)
    partial: bool = False
    generated: int = 0
    best_rejected: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "call_id": self.call_id,
            "status": self.status,
            "regime": self.regime.value,
            "threshold": self.threshold,
            "confidence": round(self.confidence, 4),
            "category": self.category,
            "candidates": [c.to_summary() for c in self.candidates],
            "elapsed_ms": round(self.elapsed_ms, 2),
            "strategies": [r.to_dict() for r in self.strategies],
            "partial": self.partial,
            "generated": self.generated,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.best_rejected is not None:
            payload["best_rejected"] = round(self.best_rejected, 4)
        return payload


class SynthesisEngine:
    def __init__(
        self,
        config: Config,
        store: PlanStore | None = None,
        indicators: IndicatorsClient | None = None,
    ) -> None:
        self.config = config
        self.lexicon = Lexicon.from_config(config.lexicon)
        self.encoder = SemanticEncoder.from_config(config.encoder, self.lexicon)
        self.policy = RegimePolicy.from_config(config.regimes)
        self.catalog = PlanCatalog.from_config(config.catalog, self.encoder)
        self.store = store or PlanStore(config.data_dir)
        self.generator = CandidateGenerator(build_strategies(config.generator), timeout=config.strategy_timeout_seconds)
        self.scorer = QualityScorer.from_config(config.scoring)
        self.selector = CardinalitySelector.from_config(config.selection, self.policy)
        self.recorder = FeedbackRecorder.from_config(self.store, config.feedback)
        self.indicators = indicators or IndicatorsClient.from_config(config.indicators)
        self.audit = AuditLog(config.data_dir / "audit.jsonl", enabled=bool(config.pipeline.get("audit", True)))
        self._candidates: "OrderedDict[str, Tuple[Candidate, Encoding]]" = OrderedDict()
        self._candidates_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    # Intent resolution

    def resolve_summary(
        self,
        summary: IntentSummary | Dict[str, Any] | None = None,
        text: str | None = None,
    ) -> IntentSummary:
        if isinstance(summary, IntentSummary):
            return summary
        if isinstance(summary, dict):
            return IntentSummary.from_dict(summary)
        if text:
            return self.lexicon.extract(text)
        return IntentSummary()

    def encode(
        self,
        summary: IntentSummary | Dict[str, Any] | None = None,
        text: str | None = None,
        user_id: str | None = None,
    ) -> Encoding:
        intent = self.resolve_summary(summary, text)
        profile = self._load_profile(user_id) if self.encoder.bias_weight > 0 else None
        return self.encoder.encode(intent, bias=profile.preference if profile else None)

    # Synthesis

    def synthesize(
        self,
        summary: IntentSummary | Dict[str, Any] | None = None,
        text: str | None = None,
        user_id: str | None = None,
        indicators: SystemIndicators | Dict[str, Any] | None = None,
        timeout: float | None = None,
        threshold_override: float | None = None,
    ) -> SynthesisResult:
        call_id = uuid.uuid4().hex[:12]
        started = time.perf_counter()
        budget = float(timeout) if timeout is not None else self.config.call_timeout_seconds
        deadline = started + budget

        def remaining() -> float:
            return max(0.0, deadline - time.perf_counter())

        intent = self.resolve_summary(summary, text)
        profile = self._load_profile(user_id)
        bias = profile.preference if profile and self.encoder.bias_weight > 0 else None
        encoding = self.encoder.encode(intent, bias=bias)
        threshold = threshold_override if threshold_override is not None else self.policy.threshold(encoding.regime)
        self.audit.log("synthesis.start", {
            "intent": intent.to_dict(),
            "user_id": user_id,
            "encoding": encoding.to_dict(),
            "budget_seconds": budget,
        }, call_id=call_id)

        def finish(result: SynthesisResult) -> SynthesisResult:
            result.elapsed_ms = (time.perf_counter() - started) * 1000
            self._remember(result.candidates, encoding)
            if result.candidates:
                self._persist_latest(call_id, result.candidates, encoding)
            self.audit.log("synthesis.complete", {
                "status": result.status,
                "returned": [c.id for c in result.candidates],
                "generated": result.generated,
                "partial": result.partial,
                "elapsed_ms": round(result.elapsed_ms, 2),
            }, call_id=call_id)
            return result

        base = dict(
            call_id=call_id,
            regime=encoding.regime,
            threshold=threshold,
            confidence=encoding.confidence,
            category=encoding.category,
        )
        no_match_base = {
            **base,
            "regime": Regime.EXPLORATION,
            "threshold": threshold_override if threshold_override is not None
            else self.policy.threshold(Regime.EXPLORATION),
        }
        if encoding.degenerate:
            return finish(SynthesisResult(
                status=STATUS_NO_MATCH,
                suggestion=NO_MATCH_SUGGESTION,
                **no_match_base,
            ))

        ctx = GenerationContext(
            vector=encoding.vector,
            regime=encoding.regime,
            confidence=encoding.confidence,
            catalog=self.catalog,
            store=self.store,
            indicators=self._indicators(indicators, call_id),
            user_id=user_id,
        )
        generation = self.generator.generate(ctx, timeout=remaining())
        for report in generation.reports:
            self.audit.log("strategy.result", report.to_dict(), call_id=call_id)
        if not generation.candidates:
            return finish(SynthesisResult(
                status=STATUS_NO_MATCH,
                suggestion=NO_MATCH_SUGGESTION,
                strategies=generation.reports,
                partial=bool(generation.failed),
                **no_match_base,
            ))

        stats = self._load_stats({c.plan_type for c in generation.candidates})
        scoring = self.scorer.score_all(
            generation.candidates,
            encoding.vector,
            stats,
            profile=profile,
            intent_regime=encoding.regime,
            confidence=encoding.confidence,
            timeout=remaining(),
        )
        selection = self.selector.select(scoring.candidates, encoding.regime, threshold_override)
        result = SynthesisResult(
            status=STATUS_OK,
            candidates=selection.selected,
            strategies=generation.reports,
            partial=scoring.partial or bool(generation.failed),
            generated=len(generation.candidates),
            best_rejected=selection.best_rejected,
            **base,
        )
        if not selection.selected:
            if not scoring.candidates and scoring.partial:
                result.status = STATUS_TIMEOUT
                result.suggestion = "Scoring ran out of time; retry with a larger timeout."
            else:
                result.status = STATUS_BELOW_THRESHOLD
                best = selection.best_rejected or 0.0
                result.suggestion = (
                    f"Best candidate scored {best:.2f} against a {threshold:.1f} bar; "
                    "retry with a lower threshold or a more specific request."
                )
        return finish(result)

    # Feedback

    def record_choice(
        self,
        candidate_id: str,
        success: bool,
        duration: float,
        user_id: str | None = None,
        summary: IntentSummary | Dict[str, Any] | None = None,
        text: str | None = None,
        timed_out: bool = False,
    ) -> FeedbackAck:
        entry = self._lookup(candidate_id)
        if entry is None:
            raise UnknownCandidateError(candidate_id)
        candidate, encoding = entry
        if summary is not None or text:
            encoding = self.encoder.encode(self.resolve_summary(summary, text))
        ack = self.recorder.record(
            candidate,
            outcome_success=success,
            duration=duration,
            user_id=user_id,
            intent_vector=encoding.vector,
            intent_regime=encoding.regime,
            timed_out=timed_out,
        )
        self.audit.log("feedback.recorded", {
            "candidate_id": candidate_id,
            "plan_type": candidate.plan_type,
            "success": success,
            "duration": duration,
            "user_id": user_id,
            "queued": ack.queued,
        }, call_id=ack.interaction_id)
        return ack

    def candidate(self, candidate_id: str) -> Candidate | None:
        entry = self._lookup(candidate_id)
        return entry[0] if entry else None

    # Read-side helpers

    def stats(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.store.list_stats()]

    def profile(self, user_id: str) -> UserProfile | None:
        return self.store.get_profile(user_id)

    def _remember(self, candidates: List[Candidate], encoding: Encoding) -> None:
        limit = self.config.candidate_cache_size
        with self._candidates_lock:
            for candidate in candidates:
                self._candidates[candidate.id] = (candidate, encoding)
                self._candidates.move_to_end(candidate.id)
            while len(self._candidates) > limit:
                self._candidates.popitem(last=False)

    def _persist_latest(self, call_id: str, candidates: List[Candidate], encoding: Encoding) -> None:
        payload = {
            "call_id": call_id,
            "encoding": encoding.to_dict(),
            "candidates": [c.to_dict() for c in candidates],
        }
        try:
            self.store.write_latest(payload)
        except StoreUnavailableError as exc:
            self.logger.warning("Could not persist latest result: %s", exc)

    def _lookup(self, candidate_id: str) -> Tuple[Candidate, Encoding] | None:
        """Find a returned candidate in memory, then in the last persisted result."""
        with self._candidates_lock:
            entry = self._candidates.get(candidate_id)
        if entry is not None:
            return entry
        try:
            latest = self.store.read_latest() or {}
        except StoreUnavailableError as exc:
            self.logger.warning("Could not read latest result: %s", exc)
            return None
        for data in latest.get("candidates") or []:
            if isinstance(data, dict) and data.get("id") == candidate_id:
                return Candidate.from_dict(data), Encoding.from_dict(latest.get("encoding") or {})
        return None

    def _load_profile(self, user_id: str | None) -> UserProfile | None:
        if not user_id:
            return None
        try:
            return self.store.get_profile(user_id)
        except StoreUnavailableError as exc:
            self.logger.warning("Profile store unavailable, using neutral profile: %s", exc)
            return None

    def _load_stats(self, plan_types: set[str]) -> Dict[str, PlanTypeStats]:
        stats: Dict[str, PlanTypeStats] = {}
        for plan_type in sorted(plan_types):
            try:
                stats[plan_type] = self.store.stats_or_default(plan_type)
            except StoreUnavailableError as exc:
                self.logger.warning("Stats store unavailable for %s, using neutral stats: %s", plan_type, exc)
                stats[plan_type] = PlanTypeStats(plan_type=plan_type)
        return stats

    def _indicators(
        self,
        indicators: SystemIndicators | Dict[str, Any] | None,
        call_id: str | None = None,
    ) -> SystemIndicators:
        if isinstance(indicators, SystemIndicators):
            return indicators
        if isinstance(indicators, dict):
            return SystemIndicators.from_dict(indicators)
        current = self.indicators.current()
        for error in self.indicators.drain_errors():
            self.audit.log("indicators.error", error, call_id=call_id)
        return current
