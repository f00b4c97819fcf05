"""System indicators consumed by the state-aware strategy."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import logging
import time

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemIndicators:
    cache_hit_rate: float = 0.5
    load: float = 0.5
    source: str = "default"

    @classmethod
    def from_dict(cls, payload: Dict[str, Any] | None, source: str = "caller") -> "SystemIndicators":
        if not isinstance(payload, dict):
            return cls()
        return cls(
            cache_hit_rate=_fraction(payload.get("cache_hit_rate"), 0.5),
            load=_fraction(payload.get("load"), 0.5),
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"cache_hit_rate": self.cache_hit_rate, "load": self.load, "source": self.source}


def _fraction(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


@dataclass
class IndicatorsClient:
    """Reads indicators from an HTTP endpoint returning {cache_hit_rate, load}."""

    base_url: Optional[str] = None
    timeout: float = 0.25
    cache_ttl: float = 5.0
    errors: list[dict] = field(default_factory=list)
    _cached: Optional[SystemIndicators] = None
    _cached_time: float = 0.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "IndicatorsClient":
        config = config or {}
        return cls(
            base_url=config.get("base_url") or None,
            timeout=float(config.get("timeout_seconds", 0.25)),
            cache_ttl=float(config.get("cache_ttl_seconds", 5.0)),
        )

    def _record_error(self, action: str, exc: Exception) -> None:
        self.errors.append({"action": action, "error": str(exc), "time": time.time()})

    def drain_errors(self) -> list[dict]:
        errors = list(self.errors)
        self.errors.clear()
        return errors

    def current(self) -> SystemIndicators:
        if not self.base_url:
            return SystemIndicators()
        if self._cached is not None and time.time() - self._cached_time < self.cache_ttl:
            return self._cached
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(f"{self.base_url.rstrip('/')}/indicators")
                resp.raise_for_status()
                indicators = SystemIndicators.from_dict(resp.json(), source="remote")
        except httpx.TimeoutException as exc:
            self._record_error("indicators", exc)
            logger.warning("Indicators source timed out after %ss", self.timeout)
            return self._cached or SystemIndicators()
        except (httpx.HTTPError, ValueError) as exc:
            self._record_error("indicators", exc)
            logger.warning("Indicators source unavailable: %s", exc)
            return self._cached or SystemIndicators()
        self._cached = indicators
        self._cached_time = time.time()
        return indicators
