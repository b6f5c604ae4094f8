"""
Retrieval agent - the per-query pipeline from raw text to ranked keybindings.

reject empty -> process query -> similarity search -> threshold filter ->
context + generate -> rank, with similarity-only ranking as the fallback
when generation fails. Only a search failure ends a query with an error.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .query_processor import QueryProcessor
from .response_generator import ResponseGenerator, filter_hits
from ..core.errors import KeybindRagError
from ..core.models import KeybindingRecord, ProcessedQuery, QueryIntent, RankedResult
from ..core.rwlock import ReadWriteLock
from ..core.vectorizer import IncrementalVectorizer, UpdateResult
from ..util.logging import logger
from ..vector.index import IVectorIndex

STATUS_OK = "ok"
STATUS_DEGRADED = "degraded"
STATUS_NO_MATCHES = "no_matches"
STATUS_REJECTED = "rejected"
STATUS_ERROR = "error"


@dataclass
class AgentConfig:
    max_search_results: int = 10
    similarity_threshold: float = 0.3
    user_boost: float = 0.2


@dataclass
class AgentResult:
    results: List[RankedResult] = field(default_factory=list)
    reasoning: str = ""
    error: Optional[str] = None
    status: str = STATUS_OK
    intent: Optional[QueryIntent] = None
    processed_query: Optional[ProcessedQuery] = None
    used_fallback: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        intent = None
        if self.intent is not None:
            intent = {
                "type": self.intent.type,
                "confidence": self.intent.confidence,
                "keywords": list(self.intent.keywords),
            }
        return {
            "results": [result.to_dict() for result in self.results],
            "reasoning": self.reasoning,
            "error": self.error,
            "status": self.status,
            "intent": intent,
            "expanded_query": self.processed_query.expanded if self.processed_query else None,
            "used_fallback": self.used_fallback,
            "duration_ms": self.duration_ms,
        }


class RetrievalAgent:
    """Answers keybinding queries against the vector index."""

    def __init__(self, index: IVectorIndex, processor: QueryProcessor, generator: ResponseGenerator,
                 vectorizer: Optional[IncrementalVectorizer] = None, lock: Optional[ReadWriteLock] = None,
                 config: Optional[AgentConfig] = None):
        self.index = index
        self.processor = processor
        self.generator = generator
        self.vectorizer = vectorizer
        self.config = config or AgentConfig()
        if lock is None:
            lock = vectorizer.lock if vectorizer is not None else ReadWriteLock()
        self.lock = lock
        # Source boost is an agent setting; the generator applies it
        self.generator.config.user_boost = self.config.user_boost

    def process(self, query: str, limit: Optional[int] = None) -> AgentResult:
        start_time = time.time()
        result = self._process(query or "", limit)
        result.duration_ms = round((time.time() - start_time) * 1000, 2)

        status = "failed" if result.status == STATUS_ERROR else "success"
        logger.log_query(query or "", len(result.results), result.duration_ms, status,
                         {"status": result.status, "fallback": result.used_fallback})
        return result

    def _process(self, query: str, limit: Optional[int]) -> AgentResult:
        if not query.strip():
            return AgentResult(reasoning="Empty query provided", status=STATUS_REJECTED)

        processed = self.processor.process(query)
        search_limit = limit or self.config.max_search_results

        try:
            # Only the index lookup holds the read lock
            query_vector = self.index.emitter.embed(processed.expanded)
            with self.lock.read_lock():
                hits = self.index.search_vector(query_vector, search_limit)
        except Exception as e:
            logger.log_operation("query.search", "failed", {"error": str(e)})
            return AgentResult(
                reasoning="Vector search failed",
                error=f"Search failed: {e}",
                status=STATUS_ERROR,
                intent=processed.intent,
                processed_query=processed,
            )

        filtered = filter_hits(hits, self.config.similarity_threshold)
        if not filtered:
            return AgentResult(
                reasoning="No keybindings found matching the query criteria",
                status=STATUS_NO_MATCHES,
                intent=processed.intent,
                processed_query=processed,
            )

        try:
            results, analysis = self.generator.generate(processed, filtered, limit)
        except KeybindRagError as e:
            logger.log_operation("query.generate", "degraded", {"error": str(e)})
            return AgentResult(
                results=self.generator.fallback_rank(filtered, limit),
                reasoning=(f"Found {len(filtered)} keybindings using vector similarity search "
                           "(LLM enhancement unavailable)"),
                status=STATUS_DEGRADED,
                intent=processed.intent,
                processed_query=processed,
                used_fallback=True,
            )

        reasoning = analysis.reasoning or analysis.analysis or (
            f"Found {len(filtered)} keybindings matching the query")
        return AgentResult(
            results=results,
            reasoning=reasoning,
            status=STATUS_OK,
            intent=processed.intent,
            processed_query=processed,
        )

    def update_index(self, records: List[KeybindingRecord]) -> UpdateResult:
        if self.vectorizer is None:
            raise RuntimeError("RetrievalAgent was created without a vectorizer")
        return self.vectorizer.incremental_update(records)

    def health(self) -> Dict[str, Any]:
        index_ok = self.index.health_check()
        inference = self.generator.emitter.inference
        inference_ok = inference.health_check() if inference is not None else False
        return {
            "index": index_ok,
            "inference": inference_ok,
            "indexed_documents": self.index.count(),
            "status": "healthy" if index_ok and inference_ok else ("degraded" if index_ok else "unhealthy"),
        }
