"""
Mock inference client that simulates the inference service without external dependencies.
Used for testing, development, and when Ollama is unavailable.
"""

import re
from typing import Any, Dict, List

from .inference import GenerateRequest, GenerateResponse, IInferenceClient
from ..core.errors import InferenceServiceError

_CONTEXT_LINE = re.compile(r"^\d+\.\s+(?P<keys>.+?)\s+\((?P<command>[^)]*)\):\s*(?P<description>[^\[,]*)")


class MockInferenceClient(IInferenceClient):
    """
    Deterministic stand-in for the inference service.

    Classification prompts get a fixed structured answer, expansion prompts a
    fixed term list, and generation prompts a recommendation list built from
    the keybindings listed in the prompt's context. Every call is recorded in
    `calls`. Set `fail_generate` / `fail_embed` to simulate an outage.
    """

    def __init__(self, dimension: int = 384, intent_reply: str = None, expansion_reply: str = None):
        # Imported here, vector.embeddings depends on this package
        from ..vector.embeddings import DeterministicHashEmbedding

        self._embedder = DeterministicHashEmbedding(dimension)
        self.intent_reply = intent_reply or (
            "Intent: general\n"
            "Confidence: 0.5\n"
            "Keywords: help\n"
            "Context: mock classification\n"
            "Suggestions: try a more specific query"
        )
        self.expansion_reply = expansion_reply or "Terms: shortcut, keymap, binding"
        self.fail_generate = False
        self.fail_embed = False
        self.calls: List[Dict[str, Any]] = []

    def initialize(self) -> None:
        pass

    def health_check(self) -> bool:
        return not (self.fail_generate and self.fail_embed)

    def close(self) -> None:
        pass

    def embed(self, text: str) -> List[float]:
        self.calls.append({"call": "embed", "text": text})
        if self.fail_embed:
            raise InferenceServiceError("mock embedding outage")
        if not text or not text.strip():
            raise InferenceServiceError("cannot embed empty text")
        return self._embedder.embed_text(text)

    def generate(self, request: GenerateRequest) -> GenerateResponse:
        self.calls.append({"call": "generate", "prompt": request.prompt,
                           "max_tokens": request.max_tokens, "temperature": request.temperature})
        if self.fail_generate:
            raise InferenceServiceError("mock generation outage")

        prompt = request.prompt
        if "RECOMMENDATIONS:" in prompt:
            text = self._mock_analysis(prompt)
        elif prompt.startswith("Classify the intent"):
            text = self.intent_reply
        elif prompt.startswith("Suggest related terms"):
            text = self.expansion_reply
        else:
            text = "I'm running in mock mode and have limited capabilities right now."

        return GenerateResponse(text=text, token_count=len(text.split()))

    def _mock_analysis(self, prompt: str) -> str:
        """Recommend each keybinding found in the prompt context, best first."""
        lines = ["ANALYSIS:", "I am confident these keybindings match the request.", "",
                 "RECOMMENDATIONS:"]

        rank = 0
        for raw in prompt.splitlines():
            match = _CONTEXT_LINE.match(raw.strip())
            if not match:
                continue
            rank += 1
            score = max(0.5, 0.95 - 0.05 * (rank - 1))
            lines.append(
                f"{rank}. Keys: {match.group('keys')} | Command: {match.group('command')} | "
                f"Description: {match.group('description').strip()} | Mode: n | "
                f"Score: {score:.2f} | Explanation: Directly performs the requested action"
            )
            if rank >= 5:
                break

        lines += ["", "REASONING:", "Ranked by how directly each command performs the request.",
                  "", "ALTERNATIVES:", "- Use a count prefix to repeat the action"]
        return "\n".join(lines)

    def get_status(self) -> Dict[str, Any]:
        return {"provider": "mock", "available": self.health_check(), "calls": len(self.calls)}
