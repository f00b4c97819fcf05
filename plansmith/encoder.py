"""Semantic encoder: intent summary -> unit vector, regime and confidence."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import hashlib
import logging

from plansmith.intent import IntentSummary, Regime
from plansmith.lexicon import Lexicon
from plansmith.scoring import harmonic_mean
from plansmith.vector import SemanticVector

logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS = {
    "action": 0.4,
    "entity": 0.3,
    "attributes": 0.2,
    "certainty": 0.1,
}

CERTAINTY_CLARITY = {
    "high": 1.0,
    "certain": 1.0,
    "sure": 1.0,
    "medium": 0.75,
    "low": 0.45,
}

DEGENERATE_CONFIDENCE = 0.1


@dataclass(frozen=True)
class Encoding:
    vector: SemanticVector
    regime: Regime
    confidence: float
    category: str
    clarity: Dict[str, float] = field(default_factory=dict)
    hedged: bool = False
    degenerate: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Encoding":
        return cls(
            vector=SemanticVector.from_list(data.get("vector") or []),
            regime=Regime.parse(data.get("regime"), default=Regime.EXPLORATION),
            confidence=float(data.get("confidence", DEGENERATE_CONFIDENCE)),
            category=str(data.get("category", "any:any")),
            clarity={str(k): float(v) for k, v in (data.get("clarity") or {}).items()},
            hedged=bool(data.get("hedged", False)),
            degenerate=bool(data.get("degenerate", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vector": self.vector.as_list(),
            "regime": self.regime.value,
            "confidence": round(self.confidence, 6),
            "category": self.category,
            "clarity": {k: round(v, 6) for k, v in self.clarity.items()},
            "hedged": self.hedged,
            "degenerate": self.degenerate,
        }


def field_seed(name: str, value: str) -> tuple[float, float, float, float]:
    """Stable 64-bit hash of one field, split into four components in [-1, 1]."""
    digest = hashlib.blake2b(f"{name}:{value}".encode("utf-8"), digest_size=8).digest()
    parts = []
    for offset in range(0, 8, 2):
        raw = int.from_bytes(digest[offset:offset + 2], "big")
        parts.append(raw / 65535.0 * 2.0 - 1.0)
    return parts[0], parts[1], parts[2], parts[3]


@dataclass
class SemanticEncoder:
    lexicon: Lexicon = field(default_factory=Lexicon)
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS))
    stabilization_confidence: float = 0.85
    exploration_confidence: float = 0.6
    bias_weight: float = 0.0

    @classmethod
    def from_config(cls, config: Dict[str, Any], lexicon: Lexicon | None = None) -> "SemanticEncoder":
        config = config or {}
        weights = dict(DEFAULT_FIELD_WEIGHTS)
        for key, value in (config.get("weights") or {}).items():
            if key in weights:
                weights[key] = float(value)
        return cls(
            lexicon=lexicon or Lexicon(),
            weights=weights,
            stabilization_confidence=float(config.get("stabilization_confidence", 0.85)),
            exploration_confidence=float(config.get("exploration_confidence", 0.6)),
            bias_weight=max(0.0, min(1.0, float(config.get("bias_weight", 0.0)))),
        )

    def encode(self, summary: IntentSummary | Dict[str, Any] | None, bias: Optional[SemanticVector] = None) -> Encoding:
        if not isinstance(summary, IntentSummary):
            summary = IntentSummary.from_dict(summary)
        if summary.is_degenerate:
            logger.debug("Degenerate intent summary, using default encoding")
            return Encoding(
                vector=SemanticVector.neutral(),
                regime=Regime.EXPLORATION,
                confidence=DEGENERATE_CONFIDENCE,
                category="any:any",
                clarity={},
                hedged=self.lexicon.has_hedge(summary.certainty),
                degenerate=True,
            )

        vector = self._blend(summary)
        if bias is not None and self.bias_weight > 0:
            vector = vector.blend(bias, self.bias_weight)

        hedged = self.lexicon.has_hedge(summary.certainty)
        clarity = {
            "action": self._term_clarity(summary.action, self.lexicon.known_action(summary.action)),
            "entity": self._term_clarity(summary.entity, self.lexicon.known_entity(summary.entity)),
            "attributes": self._attribute_clarity(len(summary.attributes)),
            "certainty": self._certainty_clarity(summary.certainty, hedged),
        }
        confidence = harmonic_mean(list(clarity.values()))
        return Encoding(
            vector=vector,
            regime=self._regime_for(confidence, hedged),
            confidence=confidence,
            category=f"{summary.action or 'any'}:{summary.entity or 'any'}",
            clarity=clarity,
            hedged=hedged,
        )

    def _blend(self, summary: IntentSummary) -> SemanticVector:
        fields = {
            "action": summary.action,
            "entity": summary.entity,
            "attributes": ",".join(sorted(summary.attributes)),
            "certainty": summary.certainty,
        }
        acc = [0.0, 0.0, 0.0, 0.0]
        for name, value in fields.items():
            weight = self.weights.get(name, 0.0)
            for idx, component in enumerate(field_seed(name, value)):
                acc[idx] += weight * component
        return SemanticVector.of(*acc)

    def _regime_for(self, confidence: float, hedged: bool) -> Regime:
        if hedged or confidence < self.exploration_confidence:
            return Regime.EXPLORATION
        if confidence >= self.stabilization_confidence:
            return Regime.STABILIZATION
        return Regime.OPTIMIZATION

    @staticmethod
    def _term_clarity(value: str, known: bool) -> float:
        if not value:
            return 0.1
        return 1.0 if known else 0.6

    @staticmethod
    def _attribute_clarity(count: int) -> float:
        if count <= 3:
            return 0.95
        return max(0.5, 0.95 - 0.1 * (count - 3))

    @staticmethod
    def _certainty_clarity(certainty: str, hedged: bool) -> float:
        if hedged:
            return 0.2
        if not certainty:
            return 0.5
        return CERTAINTY_CLARITY.get(certainty, 0.5)
