"""Intent summaries and operating regimes."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Tuple


class Regime(str, Enum):
    EXPLORATION = "exploration"
    OPTIMIZATION = "optimization"
    STABILIZATION = "stabilization"

    @property
    def rank(self) -> int:
        return REGIME_ORDER.index(self)

    @classmethod
    def parse(cls, value: Any, default: "Regime | None" = None) -> "Regime":
        if isinstance(value, Regime):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            if default is None:
                raise
            return default


REGIME_ORDER = (Regime.EXPLORATION, Regime.OPTIMIZATION, Regime.STABILIZATION)

DEFAULT_THRESHOLDS = {
    Regime.EXPLORATION: 7.0,
    Regime.OPTIMIZATION: 8.5,
    Regime.STABILIZATION: 9.0,
}

DEFAULT_TARGET_FREQUENCIES = {
    Regime.EXPLORATION: 0.30,
    Regime.OPTIMIZATION: 0.20,
    Regime.STABILIZATION: 0.50,
}


@dataclass(frozen=True)
class IntentSummary:
    """Structured output of lexical extraction, consumed once by the encoder."""

    action: str = ""
    entity: str = ""
    attributes: Tuple[str, ...] = ()
    certainty: str = ""

    @classmethod
    def from_dict(cls, payload: Dict[str, Any] | None) -> "IntentSummary":
        if not isinstance(payload, dict):
            return cls()
        raw_attrs = payload.get("attributes") or []
        if isinstance(raw_attrs, str):
            raw_attrs = [raw_attrs]
        attrs = tuple(
            _clean(item) for item in raw_attrs if isinstance(item, (str, int, float)) and _clean(item)
        )
        return cls(
            action=_clean(payload.get("action")),
            entity=_clean(payload.get("entity")),
            attributes=attrs,
            certainty=_clean(payload.get("certainty")),
        )

    @property
    def is_degenerate(self) -> bool:
        return not self.action and not self.entity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "entity": self.entity,
            "attributes": list(self.attributes),
            "certainty": self.certainty,
        }


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).strip().lower().split())


@dataclass
class RegimePolicy:
    thresholds: Dict[Regime, float] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    target_frequencies: Dict[Regime, float] = field(default_factory=lambda: dict(DEFAULT_TARGET_FREQUENCIES))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RegimePolicy":
        thresholds = dict(DEFAULT_THRESHOLDS)
        frequencies = dict(DEFAULT_TARGET_FREQUENCIES)
        for regime in REGIME_ORDER:
            entry = (config or {}).get(regime.value)
            if not isinstance(entry, dict):
                continue
            if entry.get("threshold") is not None:
                thresholds[regime] = float(entry["threshold"])
            if entry.get("target_frequency") is not None:
                frequencies[regime] = float(entry["target_frequency"])
        return cls(thresholds=thresholds, target_frequencies=frequencies)

    def threshold(self, regime: Regime | str) -> float:
        return self.thresholds[Regime.parse(regime)]

    def describe(self) -> Dict[str, Dict[str, float]]:
        return {
            regime.value: {
                "threshold": self.thresholds[regime],
                "target_frequency": self.target_frequencies[regime],
            }
            for regime in REGIME_ORDER
        }
