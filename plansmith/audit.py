"""Structured audit logging for synthesis calls and recorded choices."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List
import json
import logging
import threading
import time

logger = logging.getLogger(__name__)


@dataclass
class AuditLog:
    path: Path
    enabled: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def log(self, event: str, data: Dict[str, Any] | None = None, call_id: str | None = None) -> None:
        if not self.enabled:
            return
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "event": event,
            "call_id": call_id,
            "data": data or {},
        }
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(payload, default=str) + "\n")
        except OSError:
            logger.warning("Failed to write audit event %s", event, exc_info=True)

    def tail(self, limit: int = 50) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        events = []
        for line in self.path.read_text(encoding="utf-8").splitlines()[-limit:]:
            try:
                events.append(json.loads(line))
            except ValueError:
                continue
        return events
