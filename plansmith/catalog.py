"""Known plan-type buckets that strategies map vectors onto."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import copy

from plansmith.candidates import Candidate, new_candidate_id
from plansmith.intent import IntentSummary, Regime
from plansmith.vector import SemanticVector

DEFAULT_CATALOG: List[Dict[str, Any]] = [
    {
        "name": "indexed_lookup",
        "title": "Indexed point lookup",
        "description": "Resolve the key through an index and read only the matching rows.",
        "anchor": {"action": "search", "entity": "customer", "certainty": "high"},
        "estimated_duration": 0.03,
        "estimated_cost": 0.05,
        "payload": {
            "steps": ["resolve_index", "point_lookup", "project_fields"],
            "joins": 0,
            "branches": 1,
            "dependencies": ["primary_store"],
            "edge_cases": ["missing_key", "duplicate_key", "null_fields"],
            "optimizations": ["index", "top_k"],
            "components": {"lookup": 5, "projection": 3},
        },
    },
    {
        "name": "cached_read",
        "title": "Cache-first read",
        "description": "Serve from the result cache and fall back to the primary store on a miss.",
        "anchor": {"action": "search", "entity": "product", "certainty": "high"},
        "role": "fast",
        "estimated_duration": 0.01,
        "estimated_cost": 0.02,
        "payload": {
            "steps": ["check_cache", "fallback_read"],
            "joins": 0,
            "branches": 1,
            "dependencies": ["cache", "primary_store"],
            "edge_cases": ["cache_miss", "stale_entry", "cold_start"],
            "optimizations": ["cache"],
            "components": {"cache": 5, "fallback": 3},
        },
    },
    {
        "name": "full_scan",
        "title": "Filtered full scan",
        "description": "Scan the whole collection and filter in a single pass.",
        "anchor": {"action": "search", "entity": "event", "certainty": "low"},
        "estimated_duration": 2.5,
        "estimated_cost": 1.5,
        "payload": {
            "steps": ["scan", "filter", "sort"],
            "joins": 0,
            "branches": 2,
            "dependencies": ["primary_store"],
            "edge_cases": ["empty_result"],
            "optimizations": [],
            "components": {"scan": 8, "filter": 2},
        },
    },
    {
        "name": "aggregate_report",
        "title": "Grouped aggregate report",
        "description": "Group matching rows and compute ranked aggregates.",
        "anchor": {"action": "aggregate", "entity": "order", "certainty": "medium"},
        "estimated_duration": 0.8,
        "estimated_cost": 0.6,
        "payload": {
            "steps": ["filter", "group", "aggregate", "format"],
            "joins": 1,
            "branches": 2,
            "dependencies": ["primary_store"],
            "edge_cases": ["empty_group", "null_measure"],
            "optimizations": ["ranked"],
            "components": {"aggregate": 5, "grouping": 3},
        },
    },
    {
        "name": "join_enrichment",
        "title": "Join and enrich",
        "description": "Join the primary rows with related records before projecting.",
        "anchor": {"action": "compare", "entity": "invoice", "certainty": "medium"},
        "estimated_duration": 0.4,
        "estimated_cost": 0.4,
        "payload": {
            "steps": ["select", "join", "join", "project"],
            "joins": 2,
            "branches": 2,
            "dependencies": ["primary_store", "secondary_store"],
            "edge_cases": ["orphan_rows", "fan_out"],
            "optimizations": ["index"],
            "components": {"join": 6, "select": 3},
        },
    },
    {
        "name": "sharded_fanout",
        "title": "Sharded fan-out",
        "description": "Partition the work across shards and merge the ranked partial results.",
        "anchor": {"action": "aggregate", "entity": "event", "certainty": "medium"},
        "role": "distributed",
        "estimated_duration": 0.25,
        "estimated_cost": 0.5,
        "payload": {
            "steps": ["partition", "fan_out", "merge"],
            "joins": 0,
            "branches": 2,
            "dependencies": ["shard_pool", "primary_store"],
            "edge_cases": ["slow_shard", "partial_merge", "empty_shard"],
            "optimizations": ["sqrt_sizing", "top_k"],
            "components": {"fanout": 5, "merge": 3},
        },
    },
    {
        "name": "batched_write",
        "title": "Batched write",
        "description": "Validate changes and commit them in bounded batches.",
        "anchor": {"action": "update", "entity": "order", "certainty": "high"},
        "estimated_duration": 0.3,
        "estimated_cost": 0.3,
        "payload": {
            "steps": ["validate", "batch", "commit"],
            "joins": 0,
            "branches": 2,
            "dependencies": ["primary_store", "queue"],
            "edge_cases": ["conflict", "partial_batch"],
            "optimizations": [],
            "components": {"batch": 5, "validate": 3},
        },
    },
    {
        "name": "streaming_export",
        "title": "Streaming export",
        "description": "Stream matching rows to an export sink in pages.",
        "anchor": {"action": "export", "entity": "customer", "certainty": "medium"},
        "estimated_duration": 3.0,
        "estimated_cost": 0.8,
        "payload": {
            "steps": ["select", "paginate", "serialize", "write_sink"],
            "joins": 0,
            "branches": 1,
            "dependencies": ["primary_store", "export_sink"],
            "edge_cases": ["sink_unavailable", "large_page"],
            "optimizations": [],
            "components": {"stream": 5, "serialize": 3},
        },
    },
]


@dataclass(frozen=True)
class PlanType:
    name: str
    title: str
    description: str
    vector: SemanticVector
    estimated_duration: float
    estimated_cost: float
    payload: Dict[str, Any] = field(default_factory=dict)
    role: str = ""

    def instantiate(
        self,
        strategy: str,
        vector: SemanticVector,
        confidence: float,
        regime: Regime,
        reasoning: str,
    ) -> Candidate:
        return Candidate(
            id=new_candidate_id(),
            strategy_origin=strategy,
            title=self.title,
            description=self.description,
            confidence=confidence,
            regime=regime,
            estimated_duration=self.estimated_duration,
            estimated_cost=self.estimated_cost,
            plan_payload=copy.deepcopy(self.payload),
            reasoning_text=reasoning,
            plan_type=self.name,
            vector=vector,
        )


@dataclass
class PlanCatalog:
    plan_types: Dict[str, PlanType]

    @classmethod
    def from_config(cls, entries: List[Dict[str, Any]] | None, encoder) -> "PlanCatalog":
        """Build buckets whose vectors come from encoding each entry's anchor intent."""
        plan_types: Dict[str, PlanType] = {}
        for entry in entries or DEFAULT_CATALOG:
            name = str(entry.get("name") or "").strip()
            if not name:
                continue
            anchor = IntentSummary.from_dict(entry.get("anchor") or {"action": name})
            plan_types[name] = PlanType(
                name=name,
                title=str(entry.get("title") or name.replace("_", " ").title()),
                description=str(entry.get("description") or ""),
                vector=encoder.encode(anchor).vector,
                estimated_duration=float(entry.get("estimated_duration", 1.0)),
                estimated_cost=float(entry.get("estimated_cost", 1.0)),
                payload=dict(entry.get("payload") or {}),
                role=str(entry.get("role") or ""),
            )
        return cls(plan_types)

    def get(self, name: str) -> Optional[PlanType]:
        return self.plan_types.get(name)

    def names(self) -> List[str]:
        return list(self.plan_types)

    def ranked(self, vector: SemanticVector) -> List[PlanType]:
        """All buckets, most similar to `vector` first; ties go to the earlier name."""
        return sorted(
            self.plan_types.values(),
            key=lambda plan_type: (-plan_type.vector.similarity(vector), plan_type.name),
        )

    def nearest(self, vector: SemanticVector) -> Optional[PlanType]:
        ranked = self.ranked(vector)
        return ranked[0] if ranked else None

    def by_role(self, role: str) -> Optional[PlanType]:
        for name in sorted(self.plan_types):
            if self.plan_types[name].role == role:
                return self.plan_types[name]
        return None
