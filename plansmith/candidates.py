"""Candidate plans and their quality breakdowns."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import uuid

from plansmith.intent import Regime
from plansmith.vector import SemanticVector

DIMENSIONS = ("correctness", "performance", "reliability", "synergy", "elegance")


@dataclass(frozen=True)
class QualityBreakdown:
    correctness: float
    performance: float
    reliability: float
    synergy: float
    elegance: float
    unified: float
    components: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def scores(self) -> list[float]:
        return [getattr(self, name) for name in DIMENSIONS]

    def weakest(self) -> str:
        return min(DIMENSIONS, key=lambda name: getattr(self, name))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityBreakdown":
        return cls(
            unified=float(data.get("unified", 0.0)),
            components={
                str(dim): {str(k): float(v) for k, v in (parts or {}).items()}
                for dim, parts in (data.get("components") or {}).items()
            },
            **{name: float(data.get(name, 0.0)) for name in DIMENSIONS},
        )

    def to_dict(self, include_components: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {name: round(getattr(self, name), 4) for name in DIMENSIONS}
        payload["unified"] = round(self.unified, 4)
        payload["weakest"] = self.weakest()
        if include_components:
            payload["components"] = {
                dim: {k: round(v, 4) for k, v in parts.items()}
                for dim, parts in self.components.items()
            }
        return payload


def new_candidate_id() -> str:
    return "cand-" + uuid.uuid4().hex[:12]


@dataclass
class Candidate:
    id: str
    strategy_origin: str
    title: str
    description: str
    confidence: float
    regime: Regime
    estimated_duration: float
    estimated_cost: float
    plan_payload: Dict[str, Any]
    reasoning_text: str
    plan_type: str
    vector: SemanticVector
    quality: Optional[QualityBreakdown] = None

    def __post_init__(self) -> None:
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        self.regime = Regime.parse(self.regime)

    @property
    def unified(self) -> float:
        return self.quality.unified if self.quality else 0.0

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            "regime": self.regime.value,
            "quality_breakdown": self.quality.to_dict() if self.quality else None,
            "estimated_duration": self.estimated_duration,
            "plan_type": self.plan_type,
            "strategy_origin": self.strategy_origin,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_summary()
        payload.update({
            "estimated_cost": self.estimated_cost,
            "plan_payload": self.plan_payload,
            "reasoning_text": self.reasoning_text,
            "vector": self.vector.as_list(),
        })
        if self.quality:
            payload["quality_breakdown"] = self.quality.to_dict(include_components=True)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        quality = data.get("quality_breakdown")
        return cls(
            id=str(data["id"]),
            strategy_origin=str(data.get("strategy_origin", "")),
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            confidence=float(data.get("confidence", 0.0)),
            regime=Regime.parse(data.get("regime"), default=Regime.EXPLORATION),
            estimated_duration=float(data.get("estimated_duration", 0.0)),
            estimated_cost=float(data.get("estimated_cost", 0.0)),
            plan_payload=dict(data.get("plan_payload") or {}),
            reasoning_text=str(data.get("reasoning_text", "")),
            plan_type=str(data.get("plan_type", "")),
            vector=SemanticVector.from_list(data.get("vector") or []),
            quality=QualityBreakdown.from_dict(quality) if isinstance(quality, dict) else None,
        )
