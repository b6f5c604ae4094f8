"""
Inference service client - embeddings and text generation via a local Ollama instance.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import ollama

from ..core.errors import InferenceServiceError
from ..util.logging import logger


@dataclass
class GenerateRequest:
    prompt: str
    max_tokens: int = 500
    temperature: float = 0.1


@dataclass
class GenerateResponse:
    text: str
    token_count: int = 0


class IInferenceClient(ABC):
    """Abstract interface for the inference service."""

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the client (connect, verify models)."""
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Return True when the service is reachable."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release resources."""
        pass

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embed text. Fails on empty input."""
        pass

    @abstractmethod
    def generate(self, request: GenerateRequest) -> GenerateResponse:
        """Generate text for a prompt."""
        pass


class OllamaInferenceClient(IInferenceClient):
    """
    Inference client backed by the ollama Python library.
    Generation uses `model_name`; embeddings use `embed_model`.
    """

    def __init__(self, model_name: str, embed_model: str, host: Optional[str] = None):
        self.model_name = model_name
        self.embed_model = embed_model
        self.host = host
        self._client = None

    @property
    def client(self) -> ollama.Client:
        if self._client is None:
            self._client = ollama.Client(host=self.host) if self.host else ollama.Client()
        return self._client

    def initialize(self) -> None:
        if not self.health_check():
            raise InferenceServiceError(f"Ollama not reachable at {self.host or 'default host'}")

    def health_check(self) -> bool:
        """Check if Ollama is available."""
        try:
            self.client.list()
            return True
        except Exception:
            return False

    def close(self) -> None:
        self._client = None

    def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise InferenceServiceError("cannot embed empty text")

        try:
            response = self.client.embeddings(model=self.embed_model, prompt=text)
        except ollama.ResponseError as e:
            logger.log_inference_call("embed", self.embed_model, "failed", {"error": str(e)})
            raise InferenceServiceError(f"Ollama model error: {e}") from e
        except Exception as e:
            logger.log_inference_call("embed", self.embed_model, "failed", {"error": str(e)})
            raise InferenceServiceError(f"Ollama unreachable: {e}") from e

        embedding = response["embedding"]
        if not embedding:
            raise InferenceServiceError("Ollama returned an empty embedding")
        return list(embedding)

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        start_time = time.time()
        try:
            response = self.client.generate(
                model=self.model_name,
                prompt=request.prompt,
                options={
                    'temperature': request.temperature,
                    'num_predict': request.max_tokens
                }
            )
        except ollama.ResponseError as e:
            logger.log_inference_call("generate", self.model_name, "failed", {"error": str(e)})
            raise InferenceServiceError(f"Ollama model error: {e}") from e
        except Exception as e:
            logger.log_inference_call("generate", self.model_name, "failed", {"error": str(e)})
            raise InferenceServiceError(f"Ollama unreachable: {e}") from e

        text = response["response"] or ""
        token_count = response.get("eval_count") or 0

        logger.log_inference_call("generate", self.model_name, "success", {
            "duration_ms": round((time.time() - start_time) * 1000, 2),
            "tokens": token_count
        })
        return GenerateResponse(text=text, token_count=token_count)

    def get_status(self) -> Dict[str, Any]:
        return {
            "provider": "ollama",
            "model": self.model_name,
            "embed_model": self.embed_model,
            "available": self.health_check()
        }


def check_ollama_health(host: Optional[str] = None) -> bool:
    """
    Global function to check Ollama service health.
    Used by the health endpoint.
    """
    try:
        client = ollama.Client(host=host) if host else ollama.Client()
        client.list()
        return True
    except Exception:
        return False
