"""
Wiring of the retrieval pipeline from configuration.
"""

from dataclasses import dataclass
from typing import Optional

from .agents.inference import IInferenceClient
from .agents.query_processor import QueryProcessor
from .agents.response_generator import ResponseGenerator
from .agents.retrieval_agent import AgentConfig, RetrievalAgent
from .core import config
from .core.fingerprints import ChangeDetector, IFingerprintTable
from .core.rwlock import ReadWriteLock
from .core.vectorizer import IncrementalVectorizer, VectorizerConfig
from .vector.embeddings import EmbeddingEmitter
from .vector.index import IVectorIndex


@dataclass
class Pipeline:
    emitter: EmbeddingEmitter
    index: IVectorIndex
    vectorizer: IncrementalVectorizer
    processor: QueryProcessor
    generator: ResponseGenerator
    agent: RetrievalAgent
    lock: ReadWriteLock


def build_pipeline(inference: Optional[IInferenceClient] = None,
                   index: Optional[IVectorIndex] = None,
                   table: Optional[IFingerprintTable] = None,
                   emitter: Optional[EmbeddingEmitter] = None) -> Pipeline:
    """Assemble every component. Arguments override the configured defaults."""
    emitter = emitter or config.get_embedding_emitter(inference)
    index = index or config.get_vector_index(emitter)
    table = table if table is not None else config.get_fingerprint_table()
    lock = ReadWriteLock()

    vectorizer = IncrementalVectorizer(
        index, emitter, ChangeDetector(table), lock=lock,
        config=VectorizerConfig(batch_size=config.VECTORIZE_BATCH_SIZE),
    )
    processor = QueryProcessor(emitter)
    generator = ResponseGenerator(emitter, processor)
    agent = RetrievalAgent(
        index, processor, generator, vectorizer=vectorizer, lock=lock,
        config=AgentConfig(
            max_search_results=config.MAX_SEARCH_RESULTS,
            similarity_threshold=config.SIMILARITY_THRESHOLD,
            user_boost=config.USER_BOOST,
        ),
    )
    return Pipeline(emitter, index, vectorizer, processor, generator, agent, lock)
