"""Persistent store for plan-type statistics, user profiles and interactions."""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import hashlib
import json
import logging
import re
import threading
import uuid
try:
    import fcntl  # type: ignore
except Exception:  # pragma: no cover - non-POSIX environments
    fcntl = None

from plansmith.intent import Regime
from plansmith.vector import SemanticVector

logger = logging.getLogger(__name__)

PRIOR_SUCCESS_RATE = 0.8
PRIOR_ERROR_RATE = 0.05
PRIOR_TIMEOUT_RATE = 0.02
PRIOR_WEIGHT = 2.0
MAX_RECENT_PLAN_TYPES = 20


class StoreUnavailableError(Exception):
    """Raised when the backing store cannot be read or written."""


def _now() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


def _safe_key(value: str) -> str:
    slug = re.sub(r"[^a-z0-9._-]+", "-", str(value).strip().lower()).strip("-") or "key"
    suffix = hashlib.blake2b(str(value).encode("utf-8"), digest_size=4).hexdigest()
    return f"{slug[:48]}-{suffix}"


@dataclass
class PlanTypeStats:
    plan_type: str
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    timeout_count: int = 0
    avg_duration: float = 0.0
    avg_quality: float = 0.0
    updated_at: str = ""

    def _smoothed(self, count: int, prior: float) -> float:
        return (count + prior * PRIOR_WEIGHT) / (self.execution_count + PRIOR_WEIGHT)

    @property
    def success_rate(self) -> float:
        return self._smoothed(self.success_count, PRIOR_SUCCESS_RATE)

    @property
    def error_rate(self) -> float:
        return self._smoothed(max(0, self.failure_count - self.timeout_count), PRIOR_ERROR_RATE)

    @property
    def timeout_rate(self) -> float:
        return self._smoothed(self.timeout_count, PRIOR_TIMEOUT_RATE)

    def observe(
        self,
        success: bool,
        duration: float,
        quality: float | None = None,
        timed_out: bool = False,
        mode: str = "cumulative",
        alpha: float = 0.2,
    ) -> "PlanTypeStats":
        self.execution_count += 1
        if success:
            self.success_count += 1
        else:
            self.failure_count += 1
            if timed_out:
                self.timeout_count += 1
        self.avg_duration = self._average(self.avg_duration, float(duration), mode, alpha)
        if quality is not None:
            self.avg_quality = self._average(self.avg_quality, float(quality), mode, alpha)
        self.updated_at = _now()
        return self

    def _average(self, current: float, value: float, mode: str, alpha: float) -> float:
        if self.execution_count <= 1:
            return value
        if mode == "ewma":
            return current + alpha * (value - current)
        return current + (value - current) / self.execution_count

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["success_rate"] = round(self.success_rate, 6)
        payload["error_rate"] = round(self.error_rate, 6)
        payload["timeout_rate"] = round(self.timeout_rate, 6)
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanTypeStats":
        return cls(
            plan_type=str(data.get("plan_type", "")),
            execution_count=int(data.get("execution_count", 0)),
            success_count=int(data.get("success_count", 0)),
            failure_count=int(data.get("failure_count", 0)),
            timeout_count=int(data.get("timeout_count", 0)),
            avg_duration=float(data.get("avg_duration", 0.0)),
            avg_quality=float(data.get("avg_quality", 0.0)),
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass
class UserProfile:
    user_id: str
    preference: SemanticVector = field(default_factory=SemanticVector.neutral)
    interactions: int = 0
    successes: int = 0
    regime_counts: Dict[str, int] = field(default_factory=dict)
    recent_plan_types: List[str] = field(default_factory=list)
    updated_at: str = ""

    def nudge(self, target: SemanticVector, alpha: float) -> "UserProfile":
        """Move the preference toward target without ever replacing it outright."""
        alpha = max(0.0, min(1.0, alpha))
        self.preference = self.preference.blend(target, alpha)
        return self

    def observe(self, plan_type: str, regime: Regime, success: bool) -> "UserProfile":
        self.interactions += 1
        if success:
            self.successes += 1
        key = Regime.parse(regime).value
        self.regime_counts[key] = self.regime_counts.get(key, 0) + 1
        self.recent_plan_types = (self.recent_plan_types + [plan_type])[-MAX_RECENT_PLAN_TYPES:]
        self.updated_at = _now()
        return self

    def dominant_regime(self) -> Regime | None:
        if not self.regime_counts:
            return None
        ranked = sorted(self.regime_counts.items(), key=lambda item: (-item[1], item[0]))
        return Regime.parse(ranked[0][0], default=Regime.EXPLORATION)

    def next_plan_type(self) -> str | None:
        """Most frequent successor of the latest plan type in the recent log."""
        history = self.recent_plan_types
        if len(history) < 2:
            return None
        last = history[-1]
        successors = Counter(
            history[idx + 1] for idx in range(len(history) - 1) if history[idx] == last
        )
        if not successors:
            return None
        best = max(successors.values())
        for plan_type in reversed(history):
            if successors.get(plan_type) == best:
                return plan_type
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "preference": self.preference.as_list(),
            "interactions": self.interactions,
            "successes": self.successes,
            "regime_counts": dict(self.regime_counts),
            "recent_plan_types": list(self.recent_plan_types),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        pref = data.get("preference")
        return cls(
            user_id=str(data.get("user_id", "")),
            preference=SemanticVector.from_list(pref) if isinstance(pref, list) else SemanticVector.neutral(),
            interactions=int(data.get("interactions", 0)),
            successes=int(data.get("successes", 0)),
            regime_counts={str(k): int(v) for k, v in (data.get("regime_counts") or {}).items()},
            recent_plan_types=[str(p) for p in (data.get("recent_plan_types") or [])][-MAX_RECENT_PLAN_TYPES:],
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass(frozen=True)
class InteractionRecord:
    id: str
    timestamp: str
    user_id: Optional[str]
    candidate_id: str
    plan_type: str
    strategy_origin: str
    regime: str
    intent_vector: List[float]
    plan_vector: List[float]
    success: bool
    duration: float
    quality: Optional[float]
    title: str
    description: str
    plan_payload: Dict[str, Any]
    estimated_duration: float = 0.0
    estimated_cost: float = 0.0

    @classmethod
    def create(cls, **kwargs: Any) -> "InteractionRecord":
        return cls(id="int-" + uuid.uuid4().hex[:12], timestamp=_now(), **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractionRecord":
        return cls(
            id=str(data["id"]),
            timestamp=str(data.get("timestamp", "")),
            user_id=data.get("user_id"),
            candidate_id=str(data.get("candidate_id", "")),
            plan_type=str(data.get("plan_type", "")),
            strategy_origin=str(data.get("strategy_origin", "")),
            regime=str(data.get("regime", Regime.EXPLORATION.value)),
            intent_vector=[float(v) for v in data.get("intent_vector") or []],
            plan_vector=[float(v) for v in data.get("plan_vector") or []],
            success=bool(data.get("success", False)),
            duration=float(data.get("duration", 0.0)),
            quality=float(data["quality"]) if data.get("quality") is not None else None,
            title=str(data.get("title", "")),
            description=str(data.get("description", "")),
            plan_payload=dict(data.get("plan_payload") or {}),
            estimated_duration=float(data.get("estimated_duration", 0.0)),
            estimated_cost=float(data.get("estimated_cost", 0.0)),
        )


@dataclass
class PlanStore:
    """Keyed JSON records; every write to one key is serialized by its own lock."""

    data_dir: Path
    _locks: Dict[str, threading.Lock] = field(default_factory=dict, repr=False)
    _locks_guard: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)

    def _stats_dir(self) -> Path:
        return self.data_dir / "stats"

    def _profiles_dir(self) -> Path:
        return self.data_dir / "profiles"

    def _stats_path(self, plan_type: str) -> Path:
        return self._stats_dir() / f"{_safe_key(plan_type)}.json"

    def _profile_path(self, user_id: str) -> Path:
        return self._profiles_dir() / f"{_safe_key(user_id)}.json"

    def _interactions_path(self) -> Path:
        return self.data_dir / "interactions.jsonl"

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    # Plan-type statistics

    def get_stats(self, plan_type: str) -> PlanTypeStats | None:
        data = self._read_json(self._stats_path(plan_type))
        return PlanTypeStats.from_dict(data) if data else None

    def stats_or_default(self, plan_type: str) -> PlanTypeStats:
        return self.get_stats(plan_type) or PlanTypeStats(plan_type=plan_type)

    def list_stats(self) -> List[PlanTypeStats]:
        stats = []
        if not self._stats_dir().exists():
            return stats
        for path in sorted(self._stats_dir().glob("*.json")):
            data = self._read_json(path)
            if data:
                stats.append(PlanTypeStats.from_dict(data))
        return stats

    def update_stats(self, plan_type: str, updater: Callable[[PlanTypeStats], PlanTypeStats]) -> PlanTypeStats:
        def _update(data: Dict[str, Any] | None) -> Dict[str, Any]:
            current = PlanTypeStats.from_dict(data) if data else PlanTypeStats(plan_type=plan_type)
            return asdict(updater(current))
        with self._lock_for(f"stats:{plan_type}"):
            return PlanTypeStats.from_dict(self._locked_update(self._stats_path(plan_type), _update))

    # User profiles

    def get_profile(self, user_id: str) -> UserProfile | None:
        data = self._read_json(self._profile_path(user_id))
        return UserProfile.from_dict(data) if data else None

    def update_profile(self, user_id: str, updater: Callable[[UserProfile], UserProfile]) -> UserProfile:
        def _update(data: Dict[str, Any] | None) -> Dict[str, Any]:
            current = UserProfile.from_dict(data) if data else UserProfile(user_id=user_id)
            return updater(current).to_dict()
        with self._lock_for(f"profile:{user_id}"):
            return UserProfile.from_dict(self._locked_update(self._profile_path(user_id), _update))

    # Latest synthesis result

    def _latest_path(self) -> Path:
        return self.data_dir / "latest.json"

    def write_latest(self, payload: Dict[str, Any]) -> None:
        path = self._latest_path()
        with self._lock_for("latest"):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            except OSError as exc:
                raise StoreUnavailableError(f"cannot write {path}: {exc}") from exc

    def read_latest(self) -> Dict[str, Any] | None:
        return self._read_json(self._latest_path())

    # Interaction log

    def append_interaction(self, record: InteractionRecord) -> None:
        path = self._interactions_path()
        with self._lock_for("interactions"):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(record.to_dict()) + "\n")
            except OSError as exc:
                raise StoreUnavailableError(f"cannot append interaction: {exc}") from exc

    def recent_interactions(
        self,
        limit: int = 200,
        success_only: bool = False,
        user_id: str | None = None,
    ) -> List[InteractionRecord]:
        path = self._interactions_path()
        if not path.exists():
            return []
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise StoreUnavailableError(f"cannot read interactions: {exc}") from exc
        records: List[InteractionRecord] = []
        for line in reversed(lines):
            if len(records) >= limit:
                break
            if not line.strip():
                continue
            try:
                record = InteractionRecord.from_dict(json.loads(line))
            except (ValueError, KeyError, TypeError):
                logger.warning("Skipping malformed interaction line")
                continue
            if success_only and not record.success:
                continue
            if user_id is not None and record.user_id != user_id:
                continue
            records.append(record)
        return records

    # File helpers

    def _read_json(self, path: Path) -> Dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except ValueError:
            logger.warning("Ignoring corrupt store record %s", path)
            return None
        except OSError as exc:
            raise StoreUnavailableError(f"cannot read {path}: {exc}") from exc

    def _locked_update(self, path: Path, updater) -> Dict[str, Any]:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(exist_ok=True)
            with path.open("r+", encoding="utf-8") as handle:
                if fcntl is not None:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
                try:
                    handle.seek(0)
                    raw = handle.read()
                    try:
                        current = json.loads(raw) if raw.strip() else None
                    except ValueError:
                        logger.warning("Replacing corrupt store record %s", path)
                        current = None
                    updated = updater(current)
                    handle.seek(0)
                    handle.truncate()
                    handle.write(json.dumps(updated, indent=2))
                    return updated
                finally:
                    if fcntl is not None:
                        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError as exc:
            raise StoreUnavailableError(f"cannot update {path}: {exc}") from exc
