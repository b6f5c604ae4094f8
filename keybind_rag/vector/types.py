"""
Index document and search hit types for the keybinding vector index.
"""

from typing import Dict, Optional
import numpy as np
from dataclasses import dataclass


@dataclass
class IndexDocument:
    """A searchable document derived from one keybinding record."""

    id: str
    """Keybinding id; the index upserts by this value"""

    content: str
    """Canonical searchable text"""

    vector: Optional[np.ndarray]
    """Embedding of `content`. Replaced on change, never mutated in place"""

    metadata: Dict[str, str]
    """Structured keybinding fields plus caller metadata"""


@dataclass
class SearchHit:
    """A single similarity-search result."""

    document: IndexDocument
    """The matched document"""

    score: float
    """Similarity in [0, 1], higher is more similar"""

    distance: float
    """Cosine distance in [0, 2]"""

    @property
    def id(self) -> str:
        return self.document.id

    @property
    def metadata(self) -> Dict[str, str]:
        return self.document.metadata


def distance_to_score(distance: float) -> float:
    """Map a cosine distance in [0, 2] to a similarity score in [0, 1]."""
    score = 1.0 - distance / 2.0
    return max(0.0, min(1.0, score))
