"""Keyword tables mapping raw request text to an intent summary.

This is a thin stand-in for a real lexical-extraction service: it only
knows the words listed in the tables below (or in the `lexicon` config
section) and produces the small structured summary the encoder consumes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import re

from plansmith.intent import IntentSummary

DEFAULT_ACTIONS: Dict[str, List[str]] = {
    "search": ["search", "find", "lookup", "look up", "locate", "get", "fetch", "show"],
    "aggregate": ["count", "sum", "total", "average", "aggregate", "report", "summarize"],
    "create": ["create", "add", "insert", "register", "new"],
    "update": ["update", "change", "modify", "edit", "set"],
    "delete": ["delete", "remove", "drop", "purge"],
    "export": ["export", "download", "dump", "extract"],
    "compare": ["compare", "diff", "versus", "vs"],
}

DEFAULT_ENTITIES: Dict[str, List[str]] = {
    "customer": ["customer", "customers", "client", "clients", "user", "users", "account", "accounts"],
    "order": ["order", "orders", "purchase", "purchases", "transaction", "transactions"],
    "product": ["product", "products", "item", "items", "sku", "inventory"],
    "invoice": ["invoice", "invoices", "bill", "bills", "payment", "payments"],
    "event": ["event", "events", "log", "logs", "activity"],
}

DEFAULT_ATTRIBUTES: Dict[str, List[str]] = {
    "recent": ["recent", "latest", "last", "new"],
    "active": ["active", "enabled", "open"],
    "top": ["top", "best", "highest", "most"],
    "by_region": ["region", "country", "city"],
    "by_date": ["today", "yesterday", "week", "month", "year", "date"],
}

DEFAULT_HEDGES = ["maybe", "perhaps", "possibly", "not sure", "i think", "might", "somehow", "kind of", "sort of"]

DEFAULT_CERTAINTY: Dict[str, List[str]] = {
    "high": ["exactly", "precisely", "all", "every", "specific", "must"],
    "low": ["some", "any", "whatever", "roughly", "about"],
}


def _merge_table(base: Dict[str, List[str]], override: Any) -> Dict[str, List[str]]:
    result = {key: list(words) for key, words in base.items()}
    if not isinstance(override, dict):
        return result
    for key, words in override.items():
        if isinstance(words, list):
            result[str(key)] = [str(word).lower() for word in words]
    return result


def _contains(text: str, phrase: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(phrase) + r"(?![a-z0-9])", text) is not None


@dataclass
class Lexicon:
    actions: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_ACTIONS))
    entities: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_ENTITIES))
    attributes: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_ATTRIBUTES))
    certainty: Dict[str, List[str]] = field(default_factory=lambda: dict(DEFAULT_CERTAINTY))
    hedges: List[str] = field(default_factory=lambda: list(DEFAULT_HEDGES))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Lexicon":
        config = config or {}
        hedges = config.get("hedges")
        return cls(
            actions=_merge_table(DEFAULT_ACTIONS, config.get("actions")),
            entities=_merge_table(DEFAULT_ENTITIES, config.get("entities")),
            attributes=_merge_table(DEFAULT_ATTRIBUTES, config.get("attributes")),
            certainty=_merge_table(DEFAULT_CERTAINTY, config.get("certainty")),
            hedges=[str(h).lower() for h in hedges] if isinstance(hedges, list) else list(DEFAULT_HEDGES),
        )

    def known_action(self, value: str) -> bool:
        return value in self.actions

    def known_entity(self, value: str) -> bool:
        return value in self.entities

    def has_hedge(self, text: str) -> bool:
        lowered = (text or "").lower()
        return any(_contains(lowered, hedge) for hedge in self.hedges)

    def _first_match(self, text: str, table: Dict[str, List[str]]) -> Optional[str]:
        best: tuple[int, str] | None = None
        for key, words in table.items():
            for word in [key] + words:
                match = re.search(r"(?<![a-z0-9])" + re.escape(word) + r"(?![a-z0-9])", text)
                if match and (best is None or match.start() < best[0]):
                    best = (match.start(), key)
        return best[1] if best else None

    def extract(self, text: str) -> IntentSummary:
        lowered = " ".join((text or "").lower().split())
        if not lowered:
            return IntentSummary()
        action = self._first_match(lowered, self.actions) or ""
        entity = self._first_match(lowered, self.entities) or ""
        attributes = tuple(
            key for key, words in self.attributes.items()
            if any(_contains(lowered, word) for word in words)
        )
        if self.has_hedge(lowered):
            certainty = next(h for h in self.hedges if _contains(lowered, h))
        elif any(_contains(lowered, word) for word in self.certainty.get("high", [])):
            certainty = "high"
        elif any(_contains(lowered, word) for word in self.certainty.get("low", [])):
            certainty = "low"
        elif action and entity:
            certainty = "medium"
        else:
            certainty = ""
        return IntentSummary(action=action, entity=entity, attributes=attributes, certainty=certainty)
