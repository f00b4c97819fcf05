"""Concurrent fan-out over the generation strategies."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import time

from plansmith.candidates import Candidate
from plansmith.strategies import GenerationContext, Strategy

logger = logging.getLogger(__name__)


@dataclass
class StrategyReport:
    kind: str
    status: str  # ok, empty, failed, timeout
    count: int = 0
    elapsed_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "kind": self.kind,
            "status": self.status,
            "count": self.count,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class GenerationResult:
    candidates: List[Candidate] = field(default_factory=list)
    reports: List[StrategyReport] = field(default_factory=list)
    elapsed_ms: float = 0.0

    @property
    def failed(self) -> List[str]:
        return [r.kind for r in self.reports if r.status in ("failed", "timeout")]


class CandidateGenerator:
    def __init__(self, strategies: List[Strategy], timeout: float = 0.5) -> None:
        self.strategies = strategies
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def _run_one(self, strategy: Strategy, ctx: GenerationContext) -> tuple[List[Candidate], float]:
        start = time.perf_counter()
        result = strategy.generate(ctx) or []
        return list(result), (time.perf_counter() - start) * 1000

    def generate(self, ctx: GenerationContext, timeout: float | None = None) -> GenerationResult:
        """Run all strategies concurrently; failures and timeouts contribute nothing."""
        budget = self.timeout if timeout is None else max(0.0, min(self.timeout, timeout))
        start = time.perf_counter()
        pool = ThreadPoolExecutor(max_workers=max(1, len(self.strategies)), thread_name_prefix="plansmith-gen")
        try:
            futures = {pool.submit(self._run_one, strategy, ctx): strategy for strategy in self.strategies}
            done, pending = wait(futures, timeout=budget)
            by_kind: Dict[str, tuple[List[Candidate], StrategyReport]] = {}
            for future in done:
                kind = futures[future].kind.value
                try:
                    candidates, elapsed = future.result()
                except Exception as exc:
                    self.logger.warning("Strategy %s failed", kind, exc_info=True)
                    by_kind[kind] = ([], StrategyReport(kind=kind, status="failed", error=str(exc)))
                    continue
                status = "ok" if candidates else "empty"
                by_kind[kind] = (
                    candidates,
                    StrategyReport(kind=kind, status=status, count=len(candidates), elapsed_ms=elapsed),
                )
            for future in pending:
                future.cancel()
                kind = futures[future].kind.value
                self.logger.warning("Strategy %s exceeded %.3fs budget", kind, budget)
                by_kind[kind] = ([], StrategyReport(kind=kind, status="timeout", elapsed_ms=budget * 1000))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        # Concatenate in the fixed strategy order so output is stable.
        result = GenerationResult(elapsed_ms=(time.perf_counter() - start) * 1000)
        for strategy in self.strategies:
            candidates, report = by_kind[strategy.kind.value]
            result.candidates.extend(candidates)
            result.reports.append(report)
        return result
