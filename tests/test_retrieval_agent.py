"""
End-to-end query scenarios for the retrieval agent over an in-memory index.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest

from keybind_rag.agents.mock_inference import MockInferenceClient
from keybind_rag.agents.retrieval_agent import (
    STATUS_DEGRADED,
    STATUS_ERROR,
    STATUS_NO_MATCHES,
    STATUS_OK,
    STATUS_REJECTED,
    AgentConfig,
    RetrievalAgent,
)
from keybind_rag.core.errors import IndexServiceError
from keybind_rag.core.fingerprints import InMemoryFingerprintTable
from keybind_rag.core.models import KeybindingRecord
from keybind_rag.pipeline import build_pipeline
from keybind_rag.vector import DeterministicHashEmbedding, EmbeddingEmitter, SimpleInMemoryVectorIndex

RECORDS = [
    KeybindingRecord(id="kb-dd", keys="dd", command="delete line",
                     description="Delete the current line", mode="n"),
    KeybindingRecord(id="kb-yy", keys="yy", command="yank line",
                     description="Copy line into register", mode="n"),
    KeybindingRecord(id="kb-w", keys="w", command="word forward",
                     description="Move to start of next word", mode="n"),
    KeybindingRecord(id="kb-zz", keys="zz", command="center view",
                     description="Scroll so the cursor is centered", mode="n"),
]


@pytest.fixture
def inference():
    return MockInferenceClient(dimension=384)


@pytest.fixture
def pipeline(inference):
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(384), inference=inference)
    return build_pipeline(
        inference=inference,
        index=SimpleInMemoryVectorIndex(emitter),
        table=InMemoryFingerprintTable(),
        emitter=emitter,
    )


@pytest.fixture
def agent(pipeline):
    pipeline.agent.update_index(RECORDS)
    return pipeline.agent


def test_delete_line_query_ranks_dd_first(agent):
    result = agent.process("delete current line")

    assert result.status == STATUS_OK
    assert result.error is None
    assert result.intent.type == "editing"
    assert result.results[0].keybinding["keys"] == "dd"
    assert result.results[0].keybinding["id"] == "kb-dd"
    assert all(0.0 <= r.relevance <= 1.0 for r in result.results)
    assert result.processed_query.expanded.startswith("delete current line ")
    assert result.duration_ms >= 0


def test_single_record_scenario(pipeline):
    pipeline.agent.update_index([KeybindingRecord(id="t1", keys="dd", command="delete line", mode="n")])

    result = pipeline.agent.process("delete current line")

    assert result.results[0].keybinding["keys"] == "dd"
    assert result.results[0].relevance > 0


@pytest.mark.parametrize("query", ["", "   ", None])
def test_empty_query_rejected(agent, query):
    agent.index = MagicMock(wraps=agent.index)

    result = agent.process(query)

    assert result.status == STATUS_REJECTED
    assert result.reasoning == "Empty query provided"
    assert result.error is None
    assert result.results == []
    agent.index.search_vector.assert_not_called()


def test_identical_content_different_ids(pipeline):
    twins = [
        KeybindingRecord(id="left", keys="dd", command="delete line", description="Delete line", mode="n"),
        KeybindingRecord(id="right", keys="dd", command="delete line", description="Delete line", mode="n"),
    ]

    update = pipeline.agent.update_index(twins)
    result = pipeline.agent.process("delete line")

    assert update.new_count == 2
    assert pipeline.index.count() == 2
    assert len(pipeline.vectorizer.detector.table) == 2
    assert {r.keybinding["id"] for r in result.results} == {"left", "right"}
    assert result.results[0].relevance == pytest.approx(result.results[1].relevance)


def test_search_failure_reports_error(agent):
    agent.index = MagicMock()
    agent.index.search_vector.side_effect = IndexServiceError("connection refused")

    result = agent.process("delete current line")

    assert result.status == STATUS_ERROR
    assert result.error.startswith("Search failed:")
    assert "connection refused" in result.error
    assert result.results == []


def test_no_matches(pipeline):
    result = pipeline.agent.process("delete current line")

    assert result.status == STATUS_NO_MATCHES
    assert result.reasoning == "No keybindings found matching the query criteria"
    assert result.results == []
    assert result.error is None


def test_threshold_filters_everything(agent):
    agent.config.similarity_threshold = 1.01

    result = agent.process("delete current line")

    assert result.status == STATUS_NO_MATCHES


def test_generation_failure_falls_back_to_similarity(agent, inference):
    inference.fail_generate = True

    result = agent.process("delete current line")

    assert result.status == STATUS_DEGRADED
    assert result.used_fallback is True
    assert result.error is None
    assert result.reasoning.endswith("keybindings using vector similarity search (LLM enhancement unavailable)")
    assert result.reasoning.startswith(f"Found {len(RECORDS)} ")
    assert result.results[0].keybinding["keys"] == "dd"
    relevances = [r.relevance for r in result.results]
    assert relevances == sorted(relevances, reverse=True)


def test_user_boost_applies_to_user_keybindings(pipeline, inference):
    inference.fail_generate = True
    pipeline.agent.config.user_boost = 0.5
    pipeline.generator.config.user_boost = 0.5
    records = [
        KeybindingRecord(id="builtin", keys="dd", command="delete line", description="Delete line"),
        KeybindingRecord(id="mine", keys="dD", command="delete line", description="Delete line",
                         metadata={"source": "user"}),
    ]
    pipeline.agent.update_index(records)

    result = pipeline.agent.process("delete line")

    assert result.results[0].keybinding["id"] == "mine"
    assert result.results[0].keybinding["source"] == "user"
    assert result.results[0].relevance <= 1.0


def test_agent_config_sets_generator_boost(pipeline):
    agent = RetrievalAgent(pipeline.index, pipeline.processor, pipeline.generator,
                           config=AgentConfig(user_boost=0.35))

    assert pipeline.generator.config.user_boost == pytest.approx(0.35)
    assert agent.lock is not None


def test_limit_caps_results(agent):
    result = agent.process("delete current line", limit=2)

    assert len(result.results) <= 2


def test_update_index_incremental(agent, pipeline):
    changed = [
        RECORDS[0],
        KeybindingRecord(id="kb-yy", keys="Y", command="yank line",
                         description="Copy line into register", mode="n"),
    ]

    result = agent.update_index(changed)

    assert result.modified_count == 1
    assert result.deleted_count == 2
    assert pipeline.index.count() == 2


def test_update_index_requires_vectorizer(pipeline):
    agent = RetrievalAgent(pipeline.index, pipeline.processor, pipeline.generator)

    with pytest.raises(RuntimeError):
        agent.update_index(RECORDS)


def test_health(agent, inference):
    health = agent.health()
    assert health["status"] == "healthy"
    assert health["indexed_documents"] == len(RECORDS)

    inference.fail_generate = True
    inference.fail_embed = True
    assert agent.health()["status"] == "degraded"


def test_concurrent_queries_and_updates(agent):
    variants = [
        RECORDS,
        RECORDS[:2],
        [KeybindingRecord(id="kb-dd", keys="dd", command="delete line",
                          description="Remove the line under the cursor", mode="n")] + RECORDS[1:],
    ]

    def query(_):
        return agent.process("delete current line")

    def update(i):
        return agent.update_index(variants[i % len(variants)])

    with ThreadPoolExecutor(max_workers=8) as executor:
        queries = [executor.submit(query, i) for i in range(20)]
        updates = [executor.submit(update, i) for i in range(6)]
        results = [future.result() for future in queries]
        for future in updates:
            future.result()

    assert all(r.status in (STATUS_OK, STATUS_NO_MATCHES) for r in results)
    for r in results:
        ids = [res.keybinding["id"] for res in r.results]
        assert len(ids) == len(set(ids))

    # Ending with a full resync leaves nothing to do
    agent.update_index(RECORDS)
    resync = agent.update_index(RECORDS)
    assert resync.changed_count == 0
    assert resync.deleted_count == 0
    assert agent.index.count() == len(RECORDS)


def test_to_dict(agent):
    payload = agent.process("delete current line").to_dict()

    assert payload["status"] == "ok"
    assert payload["intent"]["type"] == "editing"
    assert payload["results"][0]["keybinding"]["keys"] == "dd"
    assert payload["expanded_query"].startswith("delete current line")


def test_plain_exception_from_inference_client_degrades(pipeline, inference):
    pipeline.agent.update_index([KeybindingRecord(id="t1", keys="dd", command="delete line", mode="n")])

    with patch.object(inference, "generate", side_effect=ConnectionError("connection refused")):
        result = pipeline.agent.process("delete current line")

    assert result.status == STATUS_DEGRADED
    assert result.used_fallback is True
    assert result.error is None
    assert result.results[0].keybinding["keys"] == "dd"


class GatedEmbedding(DeterministicHashEmbedding):
    """Blocks while embedding text containing `token` until released."""

    def __init__(self, token):
        super().__init__(384)
        self.token = token
        self.started = threading.Event()
        self.release = threading.Event()

    def embed_text(self, text):
        if self.token in text:
            self.started.set()
            self.release.wait(5)
        return super().embed_text(text)


def test_slow_query_embedding_does_not_hold_read_lock(inference):
    provider = GatedEmbedding("slowquery")
    emitter = EmbeddingEmitter(provider, inference=inference)
    pipeline = build_pipeline(inference=inference, index=SimpleInMemoryVectorIndex(emitter),
                              table=InMemoryFingerprintTable(), emitter=emitter)
    agent = pipeline.agent
    agent.update_index(RECORDS)

    with ThreadPoolExecutor(max_workers=2) as executor:
        slow = executor.submit(agent.process, "slowquery delete line")
        assert provider.started.wait(5)
        assert pipeline.lock._readers == 0

        sync = executor.submit(agent.update_index, RECORDS[:2])
        assert sync.result(timeout=2).deleted_count == 2

        start = time.time()
        fast = agent.process("delete current line")
        assert time.time() - start < 1.0
        assert fast.status == STATUS_OK

        provider.release.set()
        assert slow.result(timeout=5).status in (STATUS_OK, STATUS_NO_MATCHES)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
