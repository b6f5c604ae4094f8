"""
Vector layer - index documents, embeddings and similarity search.
"""

# Package initialization for vector module
from .types import IndexDocument, SearchHit
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    InferenceEmbedding,
    EmbeddingEmitter,
)
from .index import IVectorIndex, SimpleInMemoryVectorIndex
from .faiss_store import FaissVectorIndex

__all__ = [
    'IndexDocument',
    'SearchHit',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'InferenceEmbedding',
    'EmbeddingEmitter',
    'IVectorIndex',
    'SimpleInMemoryVectorIndex',
    'FaissVectorIndex',
]
