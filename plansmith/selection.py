"""Gating, ranking and sublinear result sizing."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple
import math

from plansmith.candidates import Candidate
from plansmith.intent import Regime, RegimePolicy

MIN_RESULTS = 2
MAX_RESULTS = 4
DUPLICATE_SIMILARITY = 0.999


def result_count(n: int, min_results: int = MIN_RESULTS, max_results: int = MAX_RESULTS) -> int:
    """k = clamp(round(sqrt(n) * log2(max(n, 2))), min, max), never above n."""
    if n <= 0:
        return 0
    raw = round(math.sqrt(n) * math.log2(max(n, 2)))
    return min(n, max(min_results, min(max_results, raw)))


def rank(candidates: List[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.unified, -c.confidence, c.id))


@dataclass
class SelectionOutcome:
    selected: List[Candidate] = field(default_factory=list)
    rejected: List[Candidate] = field(default_factory=list)
    survivors: int = 0
    duplicates: int = 0

    @property
    def best_rejected(self) -> float | None:
        if not self.rejected:
            return None
        return max(c.unified for c in self.rejected)


@dataclass
class CardinalitySelector:
    policy: RegimePolicy = field(default_factory=RegimePolicy)
    min_results: int = MIN_RESULTS
    max_results: int = MAX_RESULTS
    collapse_duplicates: bool = True
    diverse: bool = True

    @classmethod
    def from_config(cls, config: Dict[str, Any], policy: RegimePolicy | None = None) -> "CardinalitySelector":
        config = config or {}
        min_results = max(1, int(config.get("min_results", MIN_RESULTS)))
        return cls(
            policy=policy or RegimePolicy(),
            min_results=min_results,
            max_results=max(min_results, int(config.get("max_results", MAX_RESULTS))),
            collapse_duplicates=bool(config.get("collapse_duplicates", True)),
            diverse=bool(config.get("diverse", True)),
        )

    def threshold_for(self, candidate: Candidate, intent_regime: Regime | None = None) -> float:
        """The stricter of the candidate's own regime bar and the intent's bar."""
        threshold = self.policy.threshold(candidate.regime)
        if intent_regime is not None:
            threshold = max(threshold, self.policy.threshold(intent_regime))
        return threshold

    def gate(
        self,
        candidates: List[Candidate],
        intent_regime: Regime | None = None,
        threshold_override: float | None = None,
    ) -> Tuple[List[Candidate], List[Candidate]]:
        passed: List[Candidate] = []
        rejected: List[Candidate] = []
        for candidate in candidates:
            if candidate.quality is None:
                rejected.append(candidate)
                continue
            bar = threshold_override if threshold_override is not None else self.threshold_for(candidate, intent_regime)
            if candidate.unified >= bar:
                passed.append(candidate)
            else:
                rejected.append(candidate)
        return passed, rejected

    def collapse(self, ranked: List[Candidate]) -> Tuple[List[Candidate], int]:
        """Drop lower-ranked candidates of the same plan type sitting on the same vector."""
        kept: List[Candidate] = []
        dropped = 0
        for candidate in ranked:
            duplicate = any(
                other.plan_type == candidate.plan_type
                and other.vector.similarity(candidate.vector) > DUPLICATE_SIMILARITY
                for other in kept
            )
            if duplicate:
                dropped += 1
                continue
            kept.append(candidate)
        return kept, dropped

    def diversify(self, ranked: List[Candidate], k: int) -> List[Candidate]:
        """Greedy max-min pick of k, kept in rank order.

        The best candidate goes first. Each further pick prefers a plan type
        not yet picked, then the candidate least similar to its closest pick.
        """
        if len(ranked) <= k:
            return list(ranked)
        picked = [ranked[0]]
        pool = list(ranked[1:])
        while len(picked) < k and pool:
            def spread(candidate: Candidate) -> Tuple[bool, float]:
                repeat = any(p.plan_type == candidate.plan_type for p in picked)
                closest = max(p.vector.similarity(candidate.vector) for p in picked)
                return repeat, closest

            best = min(pool, key=spread)
            picked.append(best)
            pool = [c for c in pool if c is not best]
        order = {id(c): idx for idx, c in enumerate(ranked)}
        return sorted(picked, key=lambda c: order[id(c)])

    def select(
        self,
        candidates: List[Candidate],
        intent_regime: Regime | None = None,
        threshold_override: float | None = None,
    ) -> SelectionOutcome:
        passed, rejected = self.gate(candidates, intent_regime, threshold_override)
        ranked = rank(passed)
        duplicates = 0
        if self.collapse_duplicates:
            ranked, duplicates = self.collapse(ranked)
        k = result_count(len(ranked), self.min_results, self.max_results)
        selected = self.diversify(ranked, k) if self.diverse else ranked[:k]
        return SelectionOutcome(
            selected=selected,
            rejected=rejected,
            survivors=len(ranked),
            duplicates=duplicates,
        )
