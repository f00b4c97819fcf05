"""Feedback recorder: the only write path for plan statistics and user profiles."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
import logging
import threading

from plansmith.candidates import Candidate
from plansmith.intent import Regime
from plansmith.store import InteractionRecord, PlanStore, StoreUnavailableError
from plansmith.vector import SemanticVector

logger = logging.getLogger(__name__)


@dataclass
class FeedbackAck:
    ok: bool
    interaction_id: str
    queued: bool = False
    pending: int = 0
    stats: Optional[Dict[str, Any]] = None
    profile: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "interaction_id": self.interaction_id,
            "queued": self.queued,
            "pending": self.pending,
            "stats": self.stats,
            "profile": self.profile,
        }


@dataclass
class FeedbackRecorder:
    store: PlanStore
    learning_rate: float = 0.2
    average_mode: str = "cumulative"
    ewma_alpha: float = 0.2
    retries: int = 2
    max_pending: int = 1000
    _pending: Deque[Tuple[str, Callable[[], Any]]] = field(default_factory=deque, repr=False)
    _pending_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if not 0.0 < self.learning_rate <= 1.0:
            raise ValueError(f"learning_rate must be in (0, 1], got {self.learning_rate}")
        if self.average_mode not in ("cumulative", "ewma"):
            raise ValueError(f"unknown average mode: {self.average_mode}")

    @classmethod
    def from_config(cls, store: PlanStore, config: Dict[str, Any]) -> "FeedbackRecorder":
        config = config or {}
        return cls(
            store=store,
            learning_rate=float(config.get("learning_rate", 0.2)),
            average_mode=str(config.get("average", "cumulative")),
            ewma_alpha=float(config.get("ewma_alpha", 0.2)),
            retries=max(0, int(config.get("retries", 2))),
            max_pending=int(config.get("max_pending", 1000)),
        )

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def record(
        self,
        chosen: Candidate,
        outcome_success: bool,
        duration: float,
        user_id: Optional[str] = None,
        intent_vector: Optional[SemanticVector] = None,
        intent_regime: Optional[Regime] = None,
        timed_out: bool = False,
    ) -> FeedbackAck:
        self.flush()
        quality = chosen.quality.unified if chosen.quality else None
        record = InteractionRecord.create(
            user_id=user_id,
            candidate_id=chosen.id,
            plan_type=chosen.plan_type,
            strategy_origin=chosen.strategy_origin,
            regime=Regime.parse(intent_regime or chosen.regime).value,
            intent_vector=(intent_vector or chosen.vector).as_list(),
            plan_vector=chosen.vector.as_list(),
            success=bool(outcome_success),
            duration=max(0.0, float(duration)),
            quality=quality,
            title=chosen.title,
            description=chosen.description,
            plan_payload=dict(chosen.plan_payload),
            estimated_duration=chosen.estimated_duration,
            estimated_cost=chosen.estimated_cost,
        )
        results: Dict[str, Any] = {}
        queued = False

        def _stats():
            return self.store.update_stats(
                chosen.plan_type,
                lambda s: s.observe(
                    success=record.success,
                    duration=record.duration,
                    quality=quality,
                    timed_out=timed_out,
                    mode=self.average_mode,
                    alpha=self.ewma_alpha,
                ),
            )

        ops: List[Tuple[str, Callable[[], Any]]] = [
            ("interaction", lambda: self.store.append_interaction(record)),
            ("stats", _stats),
        ]
        if user_id:
            ops.append(("profile", lambda: self.store.update_profile(
                user_id,
                lambda p: p.nudge(chosen.vector, self.learning_rate).observe(
                    chosen.plan_type, record.regime, record.success
                ),
            )))
        for name, op in ops:
            ok, value = self._attempt(name, op)
            if ok:
                results[name] = value
            else:
                self._enqueue(name, op)
                queued = True

        stats = results.get("stats")
        profile = results.get("profile")
        return FeedbackAck(
            ok=True,
            interaction_id=record.id,
            queued=queued,
            pending=self.pending,
            stats=stats.to_dict() if stats is not None else None,
            profile=profile.to_dict() if profile is not None else None,
        )

    def flush(self) -> int:
        """Retry queued writes in order; returns how many were applied."""
        applied = 0
        while True:
            with self._pending_lock:
                if not self._pending:
                    return applied
                name, op = self._pending[0]
            try:
                op()
            except StoreUnavailableError:
                logger.warning("Store still unavailable for %s write, %d feedback writes pending", name, self.pending)
                return applied
            with self._pending_lock:
                if self._pending and self._pending[0][1] is op:
                    self._pending.popleft()
            applied += 1

    def _attempt(self, name: str, op: Callable[[], Any]) -> Tuple[bool, Any]:
        for attempt in range(self.retries + 1):
            try:
                return True, op()
            except StoreUnavailableError as exc:
                logger.warning("Feedback write %s failed (attempt %d): %s", name, attempt + 1, exc)
        return False, None

    def _enqueue(self, name: str, op: Callable[[], Any]) -> None:
        with self._pending_lock:
            if len(self._pending) >= self.max_pending:
                dropped, _ = self._pending.popleft()
                logger.error("Feedback queue full, dropping oldest pending %s write", dropped)
            self._pending.append((name, op))
