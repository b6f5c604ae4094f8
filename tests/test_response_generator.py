"""
Ranking and generation behaviour of the response generator.
"""

from unittest.mock import MagicMock

import pytest

from keybind_rag.agents.inference import GenerateResponse
from keybind_rag.agents.mock_inference import MockInferenceClient
from keybind_rag.agents.query_processor import QueryProcessor
from keybind_rag.agents.response_generator import (
    GeneratorConfig,
    ResponseGenerator,
    default_explanation,
    filter_hits,
    keys_similar,
    normalize_keys,
)
from keybind_rag.agents.response_parser import AnalysisResult, Recommendation
from keybind_rag.core.errors import InferenceServiceError
from keybind_rag.core.models import ProcessedQuery, QueryIntent
from keybind_rag.vector import DeterministicHashEmbedding, EmbeddingEmitter, IndexDocument, SearchHit


def make_hit(record_id, score, keys=None, source="builtin", content=None, **metadata):
    metadata.setdefault("keys", keys or record_id)
    metadata.setdefault("command", f"cmd-{record_id}")
    metadata.setdefault("description", f"desc {record_id}")
    metadata.setdefault("mode", "n")
    metadata.setdefault("source", source)
    document = IndexDocument(id=record_id, content=content or record_id, vector=None, metadata=metadata)
    return SearchHit(document=document, score=score, distance=2.0 * (1.0 - score))


def make_processed(query="delete current line", intent_type="editing", keywords=("delete",),
                   synonyms=(), search_terms=None, boost_factors=None):
    return ProcessedQuery(
        original=query,
        expanded=query,
        intent=QueryIntent(type=intent_type, confidence=0.8, keywords=list(keywords)),
        synonyms=list(synonyms),
        search_terms=query.split() if search_terms is None else search_terms,
        boost_factors=boost_factors or {},
    )


def recommendation(keys, score, explanation="because"):
    return Recommendation(keys=keys, command="", description="", mode="", score=score, explanation=explanation)


@pytest.fixture
def generator():
    emitter = MagicMock()
    return ResponseGenerator(emitter, QueryProcessor())


def test_filter_hits_monotonic_in_threshold():
    hits = [make_hit(f"k{i}", score) for i, score in enumerate([0.9, 0.2, 0.55, 0.3, 0.75])]

    previous = None
    for threshold in [0.0, 0.25, 0.3, 0.5, 0.8, 1.0]:
        kept = filter_hits(hits, threshold)
        ids = {hit.id for hit in kept}
        assert all(hit.score >= threshold for hit in kept)
        if previous is not None:
            assert ids <= previous
        previous = ids

    assert [hit.id for hit in filter_hits(hits, 0.3)] == ["k0", "k2", "k3", "k4"]


@pytest.mark.parametrize("score,source,expected", [
    (0.95, "user", 1.0),
    (0.5, "user", 0.7),
    (0.5, "builtin", 0.5),
    (1.4, "builtin", 1.0),
    (-0.2, "builtin", 0.0),
])
def test_apply_boost_clamps(generator, score, source, expected):
    hit = make_hit("a", 0.5, source=source)

    assert generator.apply_boost(score, hit) == pytest.approx(expected)


def test_rank_uses_matching_recommendation(generator):
    hits = [make_hit("a", 0.5, keys="dd"), make_hit("b", 0.6, keys="x")]
    analysis = AnalysisResult(recommendations=[recommendation(" dd ", 0.9, "Deletes the line")])

    results = generator.rank(hits, analysis)

    assert [r.keybinding["keys"] for r in results] == ["dd", "x"]
    # 0.4 * 0.5 + 0.6 * 0.9 + rank-one bonus 0.05
    assert results[0].relevance == pytest.approx(0.79)
    assert results[0].explanation == "Deletes the line"
    # 0.8 * 0.6 less the vector-only penalty
    assert results[1].relevance == pytest.approx(0.38)
    assert results[1].explanation == default_explanation(hits[1])


def test_rank_ignores_recommendations_below_threshold(generator):
    hits = [make_hit("a", 0.6, keys="dd")]
    analysis = AnalysisResult(recommendations=[recommendation("dd", 0.1)])

    results = generator.rank(hits, analysis)

    assert results[0].relevance == pytest.approx(0.38)


def test_rank_ties_keep_hit_order(generator):
    hits = [make_hit(record_id, 0.5) for record_id in ["c", "a", "b"]]

    results = generator.rank(hits, AnalysisResult())

    assert [r.keybinding["id"] for r in results] == ["c", "a", "b"]


def test_rank_boosts_user_keybindings(generator):
    hits = [make_hit("builtin", 0.7), make_hit("mine", 0.6, source="user")]

    results = generator.rank(hits, AnalysisResult())

    assert [r.keybinding["id"] for r in results] == ["mine", "builtin"]
    assert results[0].relevance == pytest.approx(0.58)
    assert all(0.0 <= r.relevance <= 1.0 for r in results)


def test_rank_respects_limits():
    generator = ResponseGenerator(MagicMock(), QueryProcessor(), config=GeneratorConfig(max_results=2))
    hits = [make_hit(f"k{i}", 0.9 - i * 0.1) for i in range(5)]

    assert len(generator.rank(hits, AnalysisResult())) == 2
    assert len(generator.rank(hits, AnalysisResult(), limit=4)) == 4


def test_rank_matches_keys_fuzzily(generator):
    hits = [make_hit("a", 0.5, keys="<c-d>"), make_hit("b", 0.5, keys="<c-u>")]
    analysis = AnalysisResult(recommendations=[recommendation("<C-d>", 0.8, "Scrolls half a page down")])

    results = generator.rank(hits, analysis)

    assert results[0].keybinding["keys"] == "<c-d>"
    assert results[0].explanation == "Scrolls half a page down"
    # Fuzzy matches keep 0.9 of the similarity score
    assert results[0].relevance == pytest.approx(0.4 * 0.45 + 0.6 * 0.8 + 0.05)
    assert results[1].explanation == default_explanation(hits[1])


def test_rank_prefers_exact_keys_over_fuzzy(generator):
    hits = [make_hit("upper", 0.5, keys="<C-d>"), make_hit("lower", 0.5, keys="<c-d>")]
    analysis = AnalysisResult(recommendations=[recommendation("<c-d>", 0.8, "exact")])

    results = generator.rank(hits, analysis)

    assert results[0].keybinding["id"] == "lower"
    assert results[0].explanation == "exact"
    assert results[1].relevance == pytest.approx(0.3)


def test_rank_applies_query_boost_factors(generator):
    hits = [make_hit("a", 0.5, keys="dd")]
    analysis = AnalysisResult(recommendations=[recommendation("dd", 0.8)])
    processed = make_processed(keywords=[], search_terms=[],
                               boost_factors={"intent_editing": 0.12, "high_confidence_intent": 0.1})

    plain = generator.rank(hits, analysis)[0].relevance
    boosted = generator.rank(hits, analysis, processed=processed)[0].relevance

    assert plain == pytest.approx(0.73)
    assert boosted == pytest.approx(0.95)


def test_rank_boosts_intent_keywords_and_synonyms(generator):
    hits = [make_hit("a", 0.5, keys="dd", description="Remove the line")]
    analysis = AnalysisResult(recommendations=[recommendation("dd", 0.8)])

    keyword = generator.rank(hits, analysis, processed=make_processed(keywords=["line"], search_terms=[]))
    synonym = generator.rank(hits, analysis, processed=make_processed(keywords=[], synonyms=["remove"], search_terms=[]))

    assert keyword[0].relevance == pytest.approx(0.83)
    assert synonym[0].relevance == pytest.approx(0.78)


def test_rank_counts_search_terms_for_unrecommended_hits(generator):
    hits = [make_hit("a", 0.5, content="dd delete line")]
    processed = make_processed(search_terms=["delete", "line", "paste"])

    results = generator.rank(hits, AnalysisResult(), processed=processed)

    assert results[0].relevance == pytest.approx(0.4)


def test_rank_clamps_stacked_boosts(generator):
    hits = [make_hit("a", 0.9, keys="dd", source="user", content="dd delete current line")]
    analysis = AnalysisResult(recommendations=[recommendation("dd", 1.0)])
    processed = make_processed(boost_factors={"intent_editing": 0.15, "high_confidence_intent": 0.1})

    results = generator.rank(hits, analysis, processed=processed)

    assert results[0].relevance == 1.0


@pytest.mark.parametrize("a,b,expected", [
    ("<C-d>", "<c-d>", True),
    ("<C-d>", "Ctrl-D", True),
    ("<M-x>", "<A-x>", True),
    ("<Esc>", "<Escape>", True),
    ("<CR>", "<Enter>", True),
    ("<leader>ff", "<Leader> ff", True),
    ("<C-d>", "<C-u>", False),
    ("dd", "yy", False),
    ("d", "dd", False),
    ("", "dd", False),
])
def test_keys_similar(a, b, expected):
    assert keys_similar(a, b) is expected
    assert keys_similar(b, a) is expected


def test_normalize_keys():
    assert normalize_keys("<C-d>") == "ctrld"
    assert normalize_keys("<C-S-d>") == "ctrlsd"
    assert normalize_keys("gg") == "gg"


def test_default_explanation():
    hit = make_hit("a", 0.5, keys="dd", description="Delete line", mode="n")

    assert default_explanation(hit) == "Keybinding 'dd' matches your query: Delete line (in n mode)"


def test_fallback_rank_uses_similarity(generator):
    hits = [make_hit("a", 0.4), make_hit("b", 0.8)]

    results = generator.fallback_rank(hits)

    assert [r.keybinding["id"] for r in results] == ["b", "a"]
    assert results[0].relevance == pytest.approx(0.8)


def test_generate_with_mock_inference():
    inference = MockInferenceClient(dimension=32)
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(32), inference=inference)
    generator = ResponseGenerator(emitter, QueryProcessor(emitter))
    hits = [
        make_hit("x", 0.7, keys="x", command="delete char", description="Delete character"),
        make_hit("dd", 0.6, keys="dd", command="delete line", description="Delete current line"),
    ]

    results, analysis = generator.generate(make_processed(keywords=["line"]), hits)

    # dd matches the intent keyword and all three query terms, overtaking x
    assert [r.keybinding["keys"] for r in results] == ["dd", "x"]
    assert results[0].relevance == pytest.approx(1.0)
    assert results[1].relevance == pytest.approx(0.95)
    assert results[0].explanation == "Directly performs the requested action"
    assert analysis.reasoning.startswith("Ranked by")

    prompt = inference.calls[-1]["prompt"]
    assert "User request: delete current line" in prompt
    assert "Query intent: editing" in prompt
    assert "1. x (delete char): Delete character [mode n]" in prompt


def test_generate_raises_on_empty_text(generator):
    generator.emitter.generate.return_value = GenerateResponse(text="   ")

    with pytest.raises(InferenceServiceError):
        generator.generate(make_processed(), [make_hit("a", 0.5)])


def test_generate_propagates_inference_failure():
    inference = MockInferenceClient(dimension=16)
    inference.fail_generate = True
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(16), inference=inference)
    generator = ResponseGenerator(emitter, QueryProcessor())

    with pytest.raises(InferenceServiceError):
        generator.generate(make_processed(), [make_hit("a", 0.5)])


def test_generate_passes_generation_settings(generator):
    generator.config = GeneratorConfig(max_tokens=123, temperature=0.3)
    generator.emitter.generate.return_value = GenerateResponse(text="REASONING:\nok")

    generator.generate(make_processed(), [make_hit("a", 0.5)])

    kwargs = generator.emitter.generate.call_args.kwargs
    assert kwargs == {"max_tokens": 123, "temperature": 0.3}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
