"""The four candidate generation strategies."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import logging

from plansmith.candidates import Candidate, new_candidate_id
from plansmith.catalog import PlanCatalog, PlanType
from plansmith.indicators import SystemIndicators
from plansmith.intent import Regime
from plansmith.store import PlanStore
from plansmith.vector import SemanticVector

logger = logging.getLogger(__name__)

DEFAULT_SCALE_FACTORS: List[Tuple[float, float, float, float]] = [
    (1.25, 1.0, 1.0, 0.8),
    (0.8, 1.25, 1.0, 1.0),
    (1.0, 0.8, 1.25, 1.0),
    (1.0, 1.0, 0.8, 1.25),
]
DEFAULT_SLERP_BLENDS = [0.15, 0.3]


class StrategyKind(str, Enum):
    HISTORY_LOOKUP = "history_lookup"
    NEIGHBORHOOD_EXPLORATION = "neighborhood_exploration"
    STATE_AWARE = "state_aware"
    PROFILE_PREDICTIVE = "profile_predictive"


@dataclass(frozen=True)
class GenerationContext:
    """Read-only inputs shared by every strategy in one synthesis call."""

    vector: SemanticVector
    regime: Regime
    confidence: float
    catalog: PlanCatalog
    store: PlanStore
    indicators: SystemIndicators = field(default_factory=SystemIndicators)
    user_id: Optional[str] = None


class Strategy:
    kind: StrategyKind

    def generate(self, ctx: GenerationContext) -> List[Candidate]:
        raise NotImplementedError


@dataclass
class HistoryLookupStrategy(Strategy):
    kind = StrategyKind.HISTORY_LOOKUP
    max_records: int = 200
    top_m: int = 3
    min_similarity: float = 0.5

    def generate(self, ctx: GenerationContext) -> List[Candidate]:
        records = ctx.store.recent_interactions(limit=self.max_records, success_only=True)
        matches = []
        for record in records:
            if len(record.intent_vector) != 4:
                continue
            sim = SemanticVector.from_list(record.intent_vector).similarity(ctx.vector)
            if sim >= self.min_similarity:
                matches.append((sim, record))
        matches.sort(key=lambda item: -item[0])

        candidates: List[Candidate] = []
        seen: set[str] = set()
        for sim, record in matches:
            if record.plan_type in seen:
                continue
            seen.add(record.plan_type)
            stats = ctx.store.stats_or_default(record.plan_type)
            duration = record.duration if record.duration > 0 else record.estimated_duration
            candidates.append(Candidate(
                id=new_candidate_id(),
                strategy_origin=self.kind.value,
                title=record.title,
                description=record.description,
                confidence=sim * stats.success_rate,
                regime=ctx.regime,
                estimated_duration=duration,
                estimated_cost=record.estimated_cost,
                plan_payload=dict(record.plan_payload),
                reasoning_text=(
                    f"Succeeded {stats.success_count} of {stats.execution_count} times; "
                    f"matched a past request at similarity {sim:.3f}."
                ),
                plan_type=record.plan_type,
                vector=SemanticVector.from_list(record.intent_vector),
            ))
            if len(candidates) >= self.top_m:
                break
        return candidates


@dataclass
class NeighborhoodExplorationStrategy(Strategy):
    kind = StrategyKind.NEIGHBORHOOD_EXPLORATION
    confidence: float = 0.55
    scale_factors: List[Tuple[float, float, float, float]] = field(default_factory=lambda: list(DEFAULT_SCALE_FACTORS))
    slerp_blends: List[float] = field(default_factory=lambda: list(DEFAULT_SLERP_BLENDS))
    perturbations: int = 3
    perturb_radius: float = 0.15
    max_candidates: int = 4
    reference: SemanticVector = field(default_factory=SemanticVector.neutral)

    def variants(self, vector: SemanticVector) -> List[SemanticVector]:
        result = [vector.scaled(factors) for factors in self.scale_factors]
        result.extend(vector.slerp(self.reference, blend) for blend in self.slerp_blends)
        result.extend(vector.perturbed(idx, self.perturb_radius) for idx in range(self.perturbations))
        return result

    def generate(self, ctx: GenerationContext) -> List[Candidate]:
        """Closest variants first; each claims its nearest bucket not already claimed."""
        variants = sorted(
            enumerate(self.variants(ctx.vector)),
            key=lambda item: (-item[1].similarity(ctx.vector), item[0]),
        )
        claimed: set[str] = set()
        ranked: List[Tuple[float, SemanticVector, PlanType]] = []
        for _, variant in variants:
            if len(ranked) >= self.max_candidates:
                break
            for bucket in ctx.catalog.ranked(variant):
                if bucket.name not in claimed:
                    claimed.add(bucket.name)
                    ranked.append((variant.similarity(ctx.vector), variant, bucket))
                    break
        return [
            bucket.instantiate(
                self.kind.value,
                variant,
                self.confidence,
                Regime.EXPLORATION,
                f"Nearby variant (similarity {sim:.3f}) maps to the {bucket.name} bucket.",
            )
            for sim, variant, bucket in ranked
        ]


@dataclass
class StateAwareStrategy(Strategy):
    """Plans ordered by current system indicators.

    A warm cache with load headroom puts the fast plan first, otherwise the
    load-distributing plan leads. The intent's own nearest plan follows as
    the baseline, then the remaining role plan.
    """

    kind = StrategyKind.STATE_AWARE
    hit_rate_threshold: float = 0.7
    load_ceiling: float = 0.85
    blend: float = 0.25

    def generate(self, ctx: GenerationContext) -> List[Candidate]:
        indicators = ctx.indicators
        hit_rate, load = indicators.cache_hit_rate, indicators.load
        favorable = hit_rate >= self.hit_rate_threshold and load < self.load_ceiling
        fast = (
            ctx.catalog.by_role("fast"),
            0.5 + 0.45 * hit_rate,
            f"Cache hit rate {hit_rate:.2f} makes a cheap read path {'the first choice' if favorable else 'a fallback'}.",
        )
        distributed = (
            ctx.catalog.by_role("distributed"),
            0.5 + 0.35 * load,
            f"Load {load:.2f} with cache hit rate {hit_rate:.2f} "
            f"{'leaves spreading the work as a fallback' if favorable else 'favors spreading the work'}.",
        )
        baseline = (
            ctx.catalog.nearest(ctx.vector),
            0.95 - 0.45 * load,
            f"Closest plan to the request, discounted for load {load:.2f}.",
        )
        ordered = [fast, baseline, distributed] if favorable else [distributed, baseline, fast]

        candidates: List[Candidate] = []
        seen: set[str] = set()
        for plan, weight, reason in ordered:
            if plan is None or plan.name in seen:
                continue
            seen.add(plan.name)
            candidates.append(plan.instantiate(
                self.kind.value,
                ctx.vector.slerp(plan.vector, self.blend),
                ctx.confidence * weight,
                ctx.regime,
                reason,
            ))
        return candidates


@dataclass
class ProfilePredictiveStrategy(Strategy):
    kind = StrategyKind.PROFILE_PREDICTIVE
    blend: float = 0.3

    def generate(self, ctx: GenerationContext) -> List[Candidate]:
        if not ctx.user_id:
            return []
        profile = ctx.store.get_profile(ctx.user_id)
        if profile is None or profile.interactions == 0:
            return []
        sim = profile.preference.similarity(ctx.vector)
        next_type = profile.next_plan_type()
        plan = ctx.catalog.get(next_type) if next_type else None
        pattern = plan is not None
        if plan is None:
            plan = ctx.catalog.nearest(profile.preference)
        if plan is None:
            return []
        confidence = max(0.0, sim) * (1.0 if pattern else 0.6)
        reason = (
            f"Usually follows {profile.recent_plan_types[-1]} with {plan.name}."
            if pattern
            else f"Closest plan to this user's preferences (similarity {sim:.3f})."
        )
        return [plan.instantiate(
            self.kind.value,
            ctx.vector.slerp(profile.preference, self.blend),
            confidence,
            profile.dominant_regime() or ctx.regime,
            reason,
        )]


def build_strategies(config: Dict[str, Any]) -> List[Strategy]:
    """The fixed strategy set, tuned from the `generator` config section."""
    config = config or {}
    history = config.get("history", {}) or {}
    neighborhood = config.get("neighborhood", {}) or {}
    state = config.get("state_aware", {}) or {}
    profile = config.get("profile", {}) or {}
    scale_factors = neighborhood.get("scale_factors")
    return [
        HistoryLookupStrategy(
            max_records=int(history.get("max_records", 200)),
            top_m=int(history.get("top_m", 3)),
            min_similarity=float(history.get("min_similarity", 0.5)),
        ),
        NeighborhoodExplorationStrategy(
            confidence=float(neighborhood.get("confidence", 0.55)),
            scale_factors=[tuple(float(f) for f in row) for row in scale_factors]
            if isinstance(scale_factors, list) else list(DEFAULT_SCALE_FACTORS),
            slerp_blends=[float(b) for b in neighborhood.get("slerp_blends", DEFAULT_SLERP_BLENDS)],
            perturbations=int(neighborhood.get("perturbations", 3)),
            perturb_radius=float(neighborhood.get("perturb_radius", 0.15)),
            max_candidates=int(neighborhood.get("max_candidates", 4)),
        ),
        StateAwareStrategy(
            hit_rate_threshold=float(state.get("hit_rate_threshold", 0.7)),
            load_ceiling=float(state.get("load_ceiling", 0.85)),
            blend=float(state.get("blend", 0.25)),
        ),
        ProfilePredictiveStrategy(blend=float(profile.get("blend", 0.3))),
    ]
