"""
Embedding providers and the EmbeddingEmitter that fronts them.

Providers turn text into vectors. The emitter normalizes and truncates input
before embedding and forwards generation requests to the inference client.
"""

from abc import ABC, abstractmethod
import hashlib
import re
from typing import List, Optional
import numpy as np
from sentence_transformers import SentenceTransformer

from ..agents.inference import GenerateRequest, GenerateResponse, IInferenceClient
from ..core.errors import EmptyContentError, InferenceServiceError, InputError, KeybindRagError

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hashed bag-of-words embedding.

    Each lower-cased alphanumeric token is hashed into one of `dimension`
    buckets with a hash-derived sign, so texts sharing words have positive
    cosine similarity. Reproducible across processes and needs no model
    download, which makes it the default for tests and offline use.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using hash function."""
        vector = [0.0] * self.dimension

        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            # Symbol-only text such as "$" or "%" still gets a stable bucket
            tokens = [text.strip()]

        for token in tokens:
            hex_dig = hashlib.md5(token.encode()).hexdigest()
            bucket = int(hex_dig[:8], 16) % self.dimension
            sign = 1.0 if int(hex_dig[8:10], 16) % 2 == 0 else -1.0
            vector[bucket] += sign

        return vector

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Defaults to all-MiniLM-L6-v2 (384 dimensions), small enough for local
    keybinding corpora.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            # Get dimension by encoding a dummy string
            dummy_embedding = self.model.encode("test", convert_to_tensor=False)
            self._dimension = len(dummy_embedding)
        return self._dimension


class InferenceEmbedding(IEmbeddingProvider):
    """Embedding provider backed by the inference service's embed call."""

    def __init__(self, client: IInferenceClient, dimension: Optional[int] = None):
        self.client = client
        self._dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        vector = self.client.embed(text)
        if self._dimension is None:
            self._dimension = len(vector)
        return vector

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.client.embed("test"))
        return self._dimension


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return " ".join(text.split())


class EmbeddingEmitter:
    """
    Single entry point for embedding and generation calls.

    Embedding input is whitespace-normalized and truncated to `max_chars`;
    empty input is rejected with EmptyContentError before any backend call.
    Backend failures surface as InferenceServiceError.
    """

    def __init__(self, provider: IEmbeddingProvider, inference: Optional[IInferenceClient] = None, max_chars: int = 8000):
        self.provider = provider
        self.inference = inference
        self.max_chars = max_chars

    def prepare(self, text: str) -> str:
        """Normalize and truncate text for embedding."""
        normalized = normalize_text(text or "")
        if len(normalized) > self.max_chars:
            normalized = normalized[:self.max_chars]
        return normalized

    def embed(self, text: str) -> np.ndarray:
        """Embed one text. Raises EmptyContentError on empty input."""
        prepared = self.prepare(text)
        if not prepared:
            raise EmptyContentError()

        try:
            vector = self.provider.embed_text(prepared)
        except KeybindRagError:
            raise
        except Exception as e:
            raise InferenceServiceError(f"embedding failed: {e}") from e

        return np.asarray(vector, dtype=np.float32)

    def embed_batch(self, texts: List[str]) -> List[np.ndarray]:
        """Embed several texts. The first failure aborts the whole batch."""
        return [self.embed(text) for text in texts]

    def get_dimension(self) -> int:
        return self.provider.get_dimension()

    def generate(self, prompt: str, max_tokens: int = 500, temperature: float = 0.1) -> GenerateResponse:
        """Run text generation through the inference client."""
        if self.inference is None:
            raise InferenceServiceError("no generation backend configured")
        if not prompt or not prompt.strip():
            raise InputError("Cannot generate from an empty prompt")

        request = GenerateRequest(prompt=prompt, max_tokens=max_tokens, temperature=temperature)
        try:
            return self.inference.generate(request)
        except KeybindRagError:
            raise
        except Exception as e:
            raise InferenceServiceError(f"generation failed: {e}") from e
