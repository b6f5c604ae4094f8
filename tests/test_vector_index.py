"""
In-memory cosine vector index.
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from keybind_rag.vector.embeddings import DeterministicHashEmbedding, EmbeddingEmitter
from keybind_rag.vector.index import IVectorIndex, SimpleInMemoryVectorIndex
from keybind_rag.vector.types import IndexDocument, distance_to_score


def axis_emitter(mapping):
    """Emitter whose provider returns fixed vectors for known texts."""
    provider = MagicMock()
    provider.embed_text.side_effect = lambda text: mapping[text]
    return EmbeddingEmitter(provider)


def doc(record_id, vector, **metadata):
    return IndexDocument(id=record_id, content=f"content {record_id}",
                         vector=np.array(vector, dtype=np.float32), metadata=metadata)


def test_vector_index_interface():
    index = SimpleInMemoryVectorIndex(EmbeddingEmitter(DeterministicHashEmbedding(8)))

    assert isinstance(index, IVectorIndex)
    assert index.health_check()


def test_search_orders_by_similarity():
    emitter = axis_emitter({"x": [1.0, 0.0, 0.0]})
    index = SimpleInMemoryVectorIndex(emitter)
    index.store([
        doc("far", [0.0, 1.0, 0.0]),
        doc("near", [1.0, 0.1, 0.0], keys="dd"),
        doc("opposite", [-1.0, 0.0, 0.0]),
    ])

    hits = index.search("x", limit=3)

    assert [hit.id for hit in hits] == ["near", "far", "opposite"]
    assert hits[0].metadata["keys"] == "dd"
    assert all(0.0 <= hit.score <= 1.0 for hit in hits)
    assert hits[1].score == pytest.approx(0.5)
    assert hits[2].score == pytest.approx(0.0)
    assert hits[2].distance == pytest.approx(2.0)


def test_search_respects_limit():
    emitter = axis_emitter({"x": [1.0, 0.0]})
    index = SimpleInMemoryVectorIndex(emitter)
    index.store([doc(f"k{i}", [1.0, i * 0.1]) for i in range(5)])

    assert len(index.search("x", limit=2)) == 2


def test_store_upserts_by_id():
    emitter = axis_emitter({"x": [1.0, 0.0]})
    index = SimpleInMemoryVectorIndex(emitter)
    index.store([doc("k1", [0.0, 1.0])])
    index.store([doc("k1", [1.0, 0.0], command="replaced")])

    hits = index.search("x", limit=5)

    assert index.count() == 1
    assert hits[0].metadata["command"] == "replaced"
    assert hits[0].score == pytest.approx(1.0)


def test_store_embeds_documents_without_vectors():
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(32))
    index = SimpleInMemoryVectorIndex(emitter)
    index.store([IndexDocument(id="k1", content="gg go to top", vector=None, metadata={})])

    assert index.get("k1").vector is not None
    assert index.search("go to top", limit=1)[0].id == "k1"


def test_delete_and_clear():
    emitter = axis_emitter({"x": [1.0, 0.0]})
    index = SimpleInMemoryVectorIndex(emitter)
    index.store([doc("k1", [1.0, 0.0]), doc("k2", [0.0, 1.0])])

    index.delete(["k1", "unknown"])
    assert [hit.id for hit in index.search("x", limit=5)] == ["k2"]

    index.clear()
    assert index.count() == 0
    assert index.search("x", limit=5) == []


def test_zero_vectors_never_match():
    emitter = axis_emitter({"x": [1.0, 0.0]})
    index = SimpleInMemoryVectorIndex(emitter)
    index.store([doc("zero", [0.0, 0.0])])

    assert index.count() == 1
    assert index.search("x", limit=5) == []


def test_distance_to_score_clamps():
    assert distance_to_score(0.0) == 1.0
    assert distance_to_score(1.0) == 0.5
    assert distance_to_score(2.5) == 0.0
    assert distance_to_score(-0.1) == 1.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
