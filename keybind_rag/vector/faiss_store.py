"""
FAISS-backed vector index for larger keybinding corpora.
"""

import threading
from typing import Dict, List, Optional
import numpy as np

from .types import IndexDocument, SearchHit, distance_to_score
from .index import IVectorIndex
from .embeddings import EmbeddingEmitter


class FaissVectorIndex(IVectorIndex):
    """FAISS-backed implementation of IVectorIndex.

    Vectors are L2-normalized and held in an IndexIDMap2 over IndexFlatIP, so
    inner product equals cosine similarity and ids can be removed for
    updates and deletes. Document content and metadata live beside the
    FAISS index, keyed by the same int64 ids.
    """

    def __init__(self, emitter: EmbeddingEmitter, dimension: int = 384):
        """
        Initialize FAISS vector index.

        Args:
            emitter: Embedding emitter used for search text and vectorless documents
            dimension: Dimension of the vectors (default: 384 for hash embeddings)
        """
        try:
            import faiss
            self.faiss = faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.emitter = emitter
        self.dimension = dimension
        self.index = self._new_index()

        self.id_to_vector_index: Dict[str, int] = {}
        self.documents: Dict[int, IndexDocument] = {}  # Vector index -> document
        self.next_vector_index = 0
        self._lock = threading.Lock()

    def _new_index(self):
        return self.faiss.IndexIDMap2(self.faiss.IndexFlatIP(self.dimension))

    def initialize(self) -> None:
        pass

    def health_check(self) -> bool:
        return self.index is not None

    def close(self) -> None:
        pass

    def _prepare_vector(self, document: IndexDocument) -> Optional[np.ndarray]:
        vector = document.vector
        if vector is None:
            vector = self.emitter.embed(document.content)
        vector = np.asarray(vector, dtype=np.float32)

        # Check dimension match and normalize vector for cosine similarity
        if len(vector) != self.dimension:
            raise ValueError(f"Vector dimension {len(vector)} does not match expected dimension {self.dimension}")

        norm = np.linalg.norm(vector)
        if norm == 0:  # Zero vectors cannot be ranked by cosine
            return None
        return vector / norm

    def _remove_locked(self, record_id: str) -> None:
        vector_index = self.id_to_vector_index.pop(record_id, None)
        if vector_index is None:
            return
        self.index.remove_ids(np.array([vector_index], dtype=np.int64))
        self.documents.pop(vector_index, None)

    def store(self, documents: List[IndexDocument]) -> None:
        """Upsert documents. Existing ids are removed before the new vectors are added."""
        if not documents:
            return

        prepared = [(document, self._prepare_vector(document)) for document in documents]

        with self._lock:
            vectors_to_add = []
            ids_to_add = []
            for document, vector in prepared:
                self._remove_locked(document.id)
                if vector is None:
                    continue

                vector_index = self.next_vector_index
                self.next_vector_index += 1

                self.id_to_vector_index[document.id] = vector_index
                self.documents[vector_index] = IndexDocument(
                    id=document.id,
                    content=document.content,
                    vector=vector,
                    metadata=dict(document.metadata),
                )
                vectors_to_add.append(vector)
                ids_to_add.append(vector_index)

            if vectors_to_add:
                batch_vectors = np.vstack(vectors_to_add).astype(np.float32)
                self.index.add_with_ids(batch_vectors, np.array(ids_to_add, dtype=np.int64))

    def search_vector(self, vector: np.ndarray, limit: int = 10) -> List[SearchHit]:
        """Search for documents similar to an embedded query and return ranked hits."""
        query_vector = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(query_vector)
        if norm == 0:
            return []
        query_array = np.asarray(query_vector / norm, dtype=np.float32).reshape(1, -1)

        with self._lock:
            if not self.index.ntotal:
                return []
            scores, indices = self.index.search(query_array, min(limit, self.index.ntotal))

            hits = []
            for similarity, vector_index in zip(scores[0], indices[0]):
                document = self.documents.get(int(vector_index))
                if document is None:  # FAISS pads missing results with -1
                    continue
                distance = float(1.0 - similarity)
                hits.append(SearchHit(
                    document=document,
                    score=distance_to_score(distance),
                    distance=distance,
                ))
        return hits

    def delete(self, ids: List[str]) -> None:
        with self._lock:
            for record_id in ids:
                self._remove_locked(record_id)

    def clear(self) -> None:
        """Clear all documents from the FAISS index."""
        with self._lock:
            self.index = self._new_index()
            self.id_to_vector_index.clear()
            self.documents.clear()
            self.next_vector_index = 0

    def count(self) -> int:
        return len(self.id_to_vector_index)
