"""
Embedding providers and the EmbeddingEmitter.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from keybind_rag.agents.inference import GenerateRequest, GenerateResponse
from keybind_rag.core.errors import EmptyContentError, InferenceServiceError, InputError
from keybind_rag.vector.embeddings import (
    DeterministicHashEmbedding,
    EmbeddingEmitter,
    IEmbeddingProvider,
    InferenceEmbedding,
    SentenceTransformerEmbedding,
    normalize_text,
)


def cosine(a, b):
    a, b = np.asarray(a), np.asarray(b)
    return float(a @ b / (np.linalg.norm(a) * np.linalg.norm(b)))


def test_embedding_interface():
    """Test that the embedding provider implements the interface correctly."""
    embedder = DeterministicHashEmbedding(dimension=384)

    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384


def test_deterministic_embedding():
    """Test that the same input always produces the same output."""
    first = DeterministicHashEmbedding(dimension=384)
    second = DeterministicHashEmbedding(dimension=384)

    assert first.embed_text("delete current line") == second.embed_text("delete current line")
    assert len(first.embed_text("delete current line")) == 384


def test_shared_words_are_similar():
    """Texts sharing words are closer than texts sharing none."""
    embedder = DeterministicHashEmbedding(dimension=384)
    doc = embedder.embed_text("dd delete line mode:n")

    related = cosine(doc, embedder.embed_text("delete the line"))
    unrelated = cosine(doc, embedder.embed_text("scroll window upward"))

    assert related > unrelated
    assert related > 0.3


def test_case_and_punctuation_insensitive():
    embedder = DeterministicHashEmbedding(dimension=128)

    assert embedder.embed_text("Delete, LINE!") == embedder.embed_text("delete line")


def test_symbol_only_text_gets_a_vector():
    embedder = DeterministicHashEmbedding(dimension=64)

    assert any(value != 0.0 for value in embedder.embed_text("$"))


def test_sentence_transformer_is_lazy():
    with patch("keybind_rag.vector.embeddings.SentenceTransformer") as model_cls:
        model_cls.return_value.encode.return_value = np.array([0.1, 0.2, 0.3])
        embedder = SentenceTransformerEmbedding("tiny-model")

        model_cls.assert_not_called()
        assert embedder.embed_text("hello") == pytest.approx([0.1, 0.2, 0.3])
        assert embedder.get_dimension() == 3
        model_cls.assert_called_once_with("tiny-model")


def test_inference_embedding_uses_client():
    client = MagicMock()
    client.embed.return_value = [0.5, 0.5]
    embedder = InferenceEmbedding(client)

    assert embedder.embed_text("gg") == [0.5, 0.5]
    assert embedder.get_dimension() == 2
    client.embed.assert_called_once_with("gg")


def test_emitter_normalizes_and_truncates():
    provider = MagicMock()
    provider.embed_text.return_value = [1.0, 0.0]
    emitter = EmbeddingEmitter(provider, max_chars=5)

    vector = emitter.embed("  ab \n\t cdef  ")

    provider.embed_text.assert_called_once_with("ab cd")
    assert vector.dtype == np.float32


def test_emitter_rejects_empty_text_without_backend_call():
    provider = MagicMock()
    emitter = EmbeddingEmitter(provider)

    with pytest.raises(EmptyContentError):
        emitter.embed(" \n ")
    provider.embed_text.assert_not_called()


def test_emitter_wraps_backend_failures():
    provider = MagicMock()
    provider.embed_text.side_effect = ConnectionError("refused")
    emitter = EmbeddingEmitter(provider)

    with pytest.raises(InferenceServiceError):
        emitter.embed("dd")


def test_emitter_generate_delegates():
    inference = MagicMock()
    inference.generate.return_value = GenerateResponse(text="ok", token_count=1)
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(8), inference=inference)

    response = emitter.generate("explain dd", max_tokens=50, temperature=0.2)

    assert response.text == "ok"
    inference.generate.assert_called_once_with(GenerateRequest(prompt="explain dd", max_tokens=50, temperature=0.2))


def test_emitter_generate_wraps_client_failures():
    inference = MagicMock()
    inference.generate.side_effect = ConnectionError("refused")
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(8), inference=inference)

    with pytest.raises(InferenceServiceError) as exc_info:
        emitter.generate("explain dd")

    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_emitter_generate_requirements():
    emitter = EmbeddingEmitter(DeterministicHashEmbedding(8))
    with pytest.raises(InferenceServiceError):
        emitter.generate("anything")

    emitter.inference = MagicMock()
    with pytest.raises(InputError):
        emitter.generate("   ")


def test_normalize_text():
    assert normalize_text("  a \t b\n\nc ") == "a b c"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
