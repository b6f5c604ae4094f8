"""
Data models shared by index sync and the retrieval pipeline.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

# Intent categories understood by the query processor
INTENT_TYPES = [
    "navigation", "editing", "visual", "search", "window",
    "buffer", "command", "motion", "macro", "general",
]


@dataclass
class KeybindingRecord:
    """A keybinding snapshot from the source of truth. Identity is `id`."""

    id: str
    keys: str
    command: str
    description: str = ""
    mode: str = ""
    plugin: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeybindingRecord":
        metadata = data.get("metadata") or {}
        return cls(
            id=str(data["id"]),
            keys=data.get("keys", ""),
            command=data.get("command", ""),
            description=data.get("description") or "",
            mode=data.get("mode") or "",
            plugin=data.get("plugin") or None,
            metadata={str(k): str(v) for k, v in metadata.items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "keys": self.keys,
            "command": self.command,
            "description": self.description,
            "mode": self.mode,
            "plugin": self.plugin,
            "metadata": dict(self.metadata),
        }


def load_records(path: Union[str, Path]) -> List[KeybindingRecord]:
    """Load keybinding records from a JSON file.

    Accepts either a bare list of records or an object with a
    `keybindings` list.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, dict):
        data = data.get("keybindings", [])

    return [KeybindingRecord.from_dict(item) for item in data]


@dataclass
class QueryIntent:
    """Classified purpose of a natural-language query."""

    type: str
    confidence: float
    keywords: List[str] = field(default_factory=list)
    context: Dict[str, str] = field(default_factory=dict)
    suggestions: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessedQuery:
    """Result of query processing. One per query, never mutated."""

    original: str
    expanded: str
    intent: Optional[QueryIntent]
    synonyms: List[str]
    search_terms: List[str]
    boost_factors: Dict[str, float]


@dataclass
class RankedResult:
    """Final output unit of a query."""

    keybinding: Dict[str, Any]
    relevance: float
    explanation: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keybinding": dict(self.keybinding),
            "relevance": self.relevance,
            "explanation": self.explanation,
        }
