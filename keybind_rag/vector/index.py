"""
Vector index interface and an in-memory cosine-similarity implementation.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import numpy as np

from .types import IndexDocument, SearchHit, distance_to_score
from .embeddings import EmbeddingEmitter


class IVectorIndex(ABC):
    """Abstract interface for the keybinding vector index."""

    emitter: EmbeddingEmitter
    """Embeds search text and documents stored without a vector"""

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the index for use."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Return True when the index can serve requests."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release resources."""
        pass

    @abstractmethod
    def store(self, documents: List[IndexDocument]) -> None:
        """Upsert documents by id."""
        pass

    def search(self, text: str, limit: int = 10) -> List[SearchHit]:
        """Return up to `limit` hits ranked by similarity to `text`."""
        return self.search_vector(self.emitter.embed(text), limit)

    @abstractmethod
    def search_vector(self, vector: np.ndarray, limit: int = 10) -> List[SearchHit]:
        """Return up to `limit` hits ranked by similarity to an already embedded query."""
        pass

    @abstractmethod
    def delete(self, ids: List[str]) -> None:
        """Delete documents by id. Unknown ids are ignored."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all documents from the index."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of indexed documents."""
        pass


def _normalize(vector: np.ndarray) -> Optional[np.ndarray]:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return None
    return vector / norm


class SimpleInMemoryVectorIndex(IVectorIndex):
    """In-memory implementation of IVectorIndex using cosine similarity.

    Documents without a vector are embedded on store; search text is
    embedded through the same emitter. Score is `1 - distance / 2` where
    distance is the cosine distance.
    """

    def __init__(self, emitter: EmbeddingEmitter):
        self.emitter = emitter
        self._documents: Dict[str, IndexDocument] = {}
        self._index: Dict[str, np.ndarray] = {}  # id -> normalized vector
        self._lock = threading.Lock()

    def initialize(self) -> None:
        pass

    def health_check(self) -> bool:
        return True

    def close(self) -> None:
        pass

    def store(self, documents: List[IndexDocument]) -> None:
        prepared = []
        for document in documents:
            vector = document.vector
            if vector is None:
                vector = self.emitter.embed(document.content)
            vector = np.asarray(vector, dtype=np.float32)
            prepared.append((document, vector))

        with self._lock:
            for document, vector in prepared:
                self._documents[document.id] = IndexDocument(
                    id=document.id,
                    content=document.content,
                    vector=vector,
                    metadata=dict(document.metadata),
                )
                normalized = _normalize(vector)
                if normalized is not None:
                    self._index[document.id] = normalized
                else:
                    # Zero vectors are kept but never match
                    self._index.pop(document.id, None)

    def search_vector(self, vector: np.ndarray, limit: int = 10) -> List[SearchHit]:
        query_vector = _normalize(np.asarray(vector, dtype=np.float32))
        if query_vector is None:
            return []

        with self._lock:
            if not self._index:
                return []
            ids = list(self._index.keys())
            matrix = np.vstack([self._index[record_id] for record_id in ids])
            documents = [self._documents[record_id] for record_id in ids]

        similarities = matrix @ query_vector
        # Stable sort keeps insertion order on equal similarity
        order = np.argsort(-similarities, kind="stable")[:limit]

        hits = []
        for position in order:
            distance = float(1.0 - similarities[position])
            hits.append(SearchHit(
                document=documents[position],
                score=distance_to_score(distance),
                distance=distance,
            ))
        return hits

    def delete(self, ids: List[str]) -> None:
        with self._lock:
            for record_id in ids:
                self._documents.pop(record_id, None)
                self._index.pop(record_id, None)

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()
            self._index.clear()

    def count(self) -> int:
        return len(self._documents)

    def get(self, record_id: str) -> Optional[IndexDocument]:
        return self._documents.get(record_id)
