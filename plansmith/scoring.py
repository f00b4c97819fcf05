"""Quality scoring: five dimensions unified by a harmonic mean.

Every dimension is a small pure function over explicit inputs and is
itself a weighted harmonic mean of its components, so a weak component
drags its dimension down before the top-level unification does the same
across dimensions.
"""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import math
import time

from plansmith.candidates import Candidate, QualityBreakdown
from plansmith.intent import Regime
from plansmith.store import PlanTypeStats, UserProfile
from plansmith.vector import GOLDEN_RATIO, SemanticVector

logger = logging.getLogger(__name__)

SCORE_MAX = 10.0
ZERO_FLOOR = 1e-3

INSTANT_SECONDS = 0.05
SLOW_SECONDS = 5.0

KNOWN_OPTIMIZATIONS = {"index", "cache", "top_k", "sqrt_sizing", "ranked", "batching"}


def arithmetic_mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def harmonic_mean(values: Sequence[float]) -> float:
    """n / sum(1/x). Any zero collapses the mean to zero; negatives are rejected."""
    if not values:
        return 0.0
    if any(v < 0 for v in values):
        raise ValueError("harmonic mean is undefined for negative values")
    if any(v == 0 for v in values):
        return 0.0
    return len(values) / sum(1.0 / v for v in values)


def weighted_harmonic_mean(parts: Iterable[Tuple[float, float]], floor: float = ZERO_FLOOR) -> float:
    """sum(w) / sum(w / max(x, floor)) over (value, weight) pairs."""
    total_weight = 0.0
    denominator = 0.0
    for value, weight in parts:
        if weight <= 0:
            continue
        total_weight += weight
        denominator += weight / max(value, floor)
    if total_weight <= 0:
        return 0.0
    return total_weight / denominator


def unify(scores: Sequence[float], floor: float = ZERO_FLOOR, hard_fail_on_zero: bool = False) -> float:
    """Top-level harmonic mean over dimension scores.

    Scores at or below zero are floored to `floor` unless hard_fail_on_zero
    is set, in which case any such score makes the whole result zero.
    """
    if not scores:
        return 0.0
    if hard_fail_on_zero and any(s <= 0 for s in scores):
        return 0.0
    return harmonic_mean([max(s, floor) for s in scores])


def _clamp(value: float, low: float = 0.0, high: float = SCORE_MAX) -> float:
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def correctness_score(
    similarity: float,
    success_rate: float,
    confidence: float,
    step_count: int,
    joins: int,
) -> Tuple[float, Dict[str, float]]:
    complexity = max(0, step_count - 3) + 2 * max(0, joins)
    parts = {
        "similarity": _clamp(SCORE_MAX * similarity),
        "success_rate": _clamp(SCORE_MAX * success_rate),
        "confidence": _clamp(SCORE_MAX * confidence),
        "complexity": SCORE_MAX / (1.0 + 0.1 * complexity),
    }
    weights = {"similarity": 0.5, "success_rate": 0.2, "confidence": 0.15, "complexity": 0.15}
    return weighted_harmonic_mean((parts[k], weights[k]) for k in parts), parts


def duration_score(seconds: float) -> float:
    """10 for near-instant plans, 0 for multi-second ones, log-scaled between."""
    if seconds <= INSTANT_SECONDS:
        return SCORE_MAX
    if seconds >= SLOW_SECONDS:
        return 0.0
    span = math.log10(SLOW_SECONDS / INSTANT_SECONDS)
    return _clamp(SCORE_MAX * (1.0 - math.log10(seconds / INSTANT_SECONDS) / span))


def performance_score(estimated_duration: float, estimated_cost: float) -> Tuple[float, Dict[str, float]]:
    parts = {
        "duration": duration_score(estimated_duration),
        "cost": SCORE_MAX / (1.0 + max(0.0, estimated_cost)),
    }
    return weighted_harmonic_mean([(parts["duration"], 0.7), (parts["cost"], 0.3)]), parts


def reliability_score(
    error_rate: float,
    timeout_rate: float,
    dependency_count: int,
    edge_case_count: int,
) -> Tuple[float, Dict[str, float]]:
    parts = {
        "errors": _clamp(SCORE_MAX * (1.0 - error_rate)),
        "timeouts": _clamp(SCORE_MAX * (1.0 - timeout_rate)),
        "dependencies": SCORE_MAX / (1.0 + 0.05 * max(0, dependency_count - 1)),
        "edge_cases": 7.0 + 3.0 * min(1.0, max(0, edge_case_count) / 3.0),
    }
    weights = {"errors": 0.35, "timeouts": 0.25, "dependencies": 0.2, "edge_cases": 0.2}
    return weighted_harmonic_mean((parts[k], weights[k]) for k in parts), parts


def regime_alignment(plan_regime: Regime, intent_regime: Regime) -> float:
    distance = abs(Regime.parse(plan_regime).rank - Regime.parse(intent_regime).rank)
    return {0: 10.0, 1: 7.0}.get(distance, 4.0)


def balance_score(components: Dict[str, Any]) -> float:
    """Closeness of the two largest components' ratio to the golden ratio."""
    sizes = sorted(
        (float(v) for v in (components or {}).values() if isinstance(v, (int, float)) and v > 0),
        reverse=True,
    )
    if len(sizes) < 2:
        return 9.0
    deviation = abs(sizes[0] / sizes[1] - GOLDEN_RATIO) / GOLDEN_RATIO
    return SCORE_MAX - 4.0 * min(1.0, deviation)


def synergy_score(
    plan_regime: Regime,
    intent_regime: Regime,
    profile_similarity: Optional[float],
    components: Dict[str, Any],
) -> Tuple[float, Dict[str, float]]:
    parts = {
        "regime": regime_alignment(plan_regime, intent_regime),
        "balance": balance_score(components),
    }
    weighted = [(parts["regime"], 0.4), (parts["balance"], 0.2)]
    if profile_similarity is not None:
        parts["profile"] = _clamp(SCORE_MAX * profile_similarity)
        weighted.append((parts["profile"], 0.4))
    return weighted_harmonic_mean(weighted), parts


def elegance_score(branches: int, joins: int, optimizations: Iterable[str]) -> Tuple[float, Dict[str, float]]:
    cyclomatic = 1 + max(0, branches) + max(0, joins)
    recognized = {str(o).lower() for o in optimizations or []} & KNOWN_OPTIMIZATIONS
    parts = {
        "complexity": SCORE_MAX / (1.0 + 0.1 * max(0, cyclomatic - 2)),
        "optimizations": min(SCORE_MAX, 7.0 + 1.5 * len(recognized)),
    }
    return weighted_harmonic_mean([(parts["complexity"], 0.7), (parts["optimizations"], 0.3)]), parts


@dataclass
class ScoringOutcome:
    candidates: List[Candidate] = field(default_factory=list)
    partial: bool = False
    dropped: int = 0


@dataclass
class QualityScorer:
    floor: float = ZERO_FLOOR
    hard_fail_on_zero: bool = False
    max_workers: int = 4

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "QualityScorer":
        config = config or {}
        return cls(
            floor=float(config.get("zero_floor", ZERO_FLOOR)),
            hard_fail_on_zero=bool(config.get("hard_fail_on_zero", False)),
            max_workers=int(config.get("max_workers", 4)),
        )

    def score(
        self,
        candidate: Candidate,
        vector: SemanticVector,
        stats: PlanTypeStats,
        profile: Optional[UserProfile] = None,
        intent_regime: Regime = Regime.OPTIMIZATION,
        confidence: float = 1.0,
    ) -> QualityBreakdown:
        payload = candidate.plan_payload or {}
        steps = payload.get("steps") or []
        joins = int(payload.get("joins", 0) or 0)
        branches = int(payload.get("branches", 0) or 0)
        correctness, c_parts = correctness_score(
            candidate.vector.similarity(vector),
            stats.success_rate,
            confidence,
            len(steps),
            joins,
        )
        performance, p_parts = performance_score(candidate.estimated_duration, candidate.estimated_cost)
        reliability, r_parts = reliability_score(
            stats.error_rate,
            stats.timeout_rate,
            len(payload.get("dependencies") or []),
            len(payload.get("edge_cases") or []),
        )
        synergy, s_parts = synergy_score(
            candidate.regime,
            intent_regime,
            profile.preference.similarity(candidate.vector) if profile else None,
            payload.get("components") or {},
        )
        elegance, e_parts = elegance_score(branches, joins, payload.get("optimizations") or [])
        dims = [correctness, performance, reliability, synergy, elegance]
        return QualityBreakdown(
            correctness=correctness,
            performance=performance,
            reliability=reliability,
            synergy=synergy,
            elegance=elegance,
            unified=unify(dims, floor=self.floor, hard_fail_on_zero=self.hard_fail_on_zero),
            components={
                "correctness": c_parts,
                "performance": p_parts,
                "reliability": r_parts,
                "synergy": s_parts,
                "elegance": e_parts,
            },
        )

    def score_all(
        self,
        candidates: List[Candidate],
        vector: SemanticVector,
        stats: Dict[str, PlanTypeStats],
        profile: Optional[UserProfile] = None,
        intent_regime: Regime = Regime.OPTIMIZATION,
        confidence: float = 1.0,
        timeout: float | None = None,
    ) -> ScoringOutcome:
        """Score candidates in parallel; anything unscored when time runs out is dropped."""
        if not candidates:
            return ScoringOutcome()
        started = time.perf_counter()
        pool = ThreadPoolExecutor(max_workers=max(1, self.max_workers), thread_name_prefix="plansmith-score")
        try:
            futures = {
                pool.submit(
                    self.score,
                    candidate,
                    vector,
                    stats.get(candidate.plan_type) or PlanTypeStats(plan_type=candidate.plan_type),
                    profile,
                    intent_regime,
                    confidence,
                ): candidate
                for candidate in candidates
            }
            done, pending = wait(futures, timeout=timeout)
            scored: List[Candidate] = []
            for future in done:
                candidate = futures[future]
                try:
                    candidate.quality = future.result()
                except Exception:
                    logger.warning("Scoring failed for candidate %s", candidate.id, exc_info=True)
                    continue
                scored.append(candidate)
            for future in pending:
                future.cancel()
            if pending:
                logger.warning(
                    "Scoring deadline hit after %.3fs, dropped %d candidates",
                    time.perf_counter() - started,
                    len(pending),
                )
            order = {id(c): idx for idx, c in enumerate(candidates)}
            scored.sort(key=lambda c: order[id(c)])
            return ScoringOutcome(candidates=scored, partial=bool(pending), dropped=len(candidates) - len(scored))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
