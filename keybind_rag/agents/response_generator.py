"""
Response generation - context build, generation, parsing and ranking of keybinding hits.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .query_processor import QueryProcessor
from .response_parser import AnalysisResult, Recommendation, ResponseParser
from ..core.errors import InferenceServiceError
from ..core.models import ProcessedQuery, RankedResult
from ..vector.embeddings import EmbeddingEmitter
from ..vector.types import SearchHit

# Score combination for hits a recommendation names
LLM_WEIGHT = 0.6
VECTOR_WEIGHT = 0.4
FUZZY_MATCH_WEIGHT = 0.9
RANK_POSITION_WEIGHT = 0.05
INTENT_KEYWORD_BOOST = 0.1
# Hits no recommendation names
VECTOR_ONLY_WEIGHT = 0.8
VECTOR_ONLY_PENALTY = -0.1
# Per query term or synonym found in the result
TERM_MATCH_BOOST = 0.05

_KEY_GROUP_RE = re.compile(r"<([^<>]+)>")
_KEY_ALIASES = {
    "c": "ctrl", "control": "ctrl",
    "a": "alt", "m": "alt", "meta": "alt",
    "d": "cmd", "command": "cmd",
    "escape": "esc",
    "return": "ret", "enter": "ret", "cr": "ret",
    "space": "spc",
}


@dataclass
class GeneratorConfig:
    max_tokens: int = 500
    temperature: float = 0.1
    user_boost: float = 0.2
    relevance_threshold: float = 0.3
    max_results: int = 5


def filter_hits(hits: List[SearchHit], threshold: float) -> List[SearchHit]:
    """Drop hits scoring below `threshold`, keeping order."""
    return [hit for hit in hits if hit.score >= threshold]


def keybinding_view(hit: SearchHit) -> Dict[str, Any]:
    metadata = hit.metadata
    return {
        "id": metadata.get("keybinding_id", hit.id),
        "keys": metadata.get("keys", ""),
        "command": metadata.get("command", ""),
        "description": metadata.get("description", ""),
        "mode": metadata.get("mode", ""),
        "plugin": metadata.get("plugin"),
        "source": metadata.get("source", "builtin"),
    }


def default_explanation(hit: SearchHit) -> str:
    metadata = hit.metadata
    explanation = f"Keybinding '{metadata.get('keys', hit.id)}' matches your query"
    description = metadata.get("description") or metadata.get("command")
    if description:
        explanation += f": {description}"
    if metadata.get("mode"):
        explanation += f" (in {metadata['mode']} mode)"
    return explanation


def _normalize_chord(chord: str) -> str:
    parts = [part for part in chord.split("-") if part]
    if not parts:
        return chord
    # Single letters alias only in modifier position: <C-d> is ctrl+d, not ctrl+cmd
    names = [_KEY_ALIASES.get(part, part) for part in parts[:-1]]
    last = parts[-1]
    names.append(_KEY_ALIASES.get(last, last) if len(last) > 1 else last)
    return "".join(names)


def normalize_keys(keys: str) -> str:
    """Canonical spelling of a key sequence for fuzzy comparison."""
    text = keys.strip().lower()
    if "<" not in text and "-" in text.strip("-"):
        text = f"<{text}>"
    text = _KEY_GROUP_RE.sub(lambda m: _normalize_chord(m.group(1)), text)
    return re.sub(r"[\s_<>]", "", text)


def keys_similar(a: str, b: str) -> bool:
    """Same keys modulo case, brackets, separators and modifier aliases, or one containing the other."""
    left, right = normalize_keys(a), normalize_keys(b)
    if not left or not right:
        return False
    if left == right:
        return True
    shorter, longer = sorted((left, right), key=len)
    return len(shorter) > 1 and shorter in longer


def matched_terms(processed: Optional[ProcessedQuery], text: str, synonym_text: str = "") -> List[str]:
    """Search terms found in `text` and synonyms found in `synonym_text`, deduplicated."""
    if processed is None:
        return []
    text, synonym_text = text.lower(), synonym_text.lower()
    terms = [term for term in processed.search_terms if term.lower() in text]
    terms.extend(synonym for synonym in processed.synonyms if synonym_text and synonym.lower() in synonym_text)
    return list(dict.fromkeys(terms))


class ResponseGenerator:
    """
    Combines similarity hits with a generated analysis into ranked results.

    A hit whose keys a recommendation names (exactly, or failing that
    through `keys_similar`) blends 0.6 of the recommendation score with 0.4
    of its similarity score, then picks up rank-position, intent and
    matched-term boosts from the processed query. Hits no recommendation
    names keep 0.8 of their similarity score less a small penalty and get
    a default explanation. User-sourced hits get `user_boost`; relevance is
    clamped to [0, 1] and sorted descending with original hit order
    breaking ties.
    """

    def __init__(self, emitter: EmbeddingEmitter, processor: QueryProcessor,
                 parser: Optional[ResponseParser] = None, config: Optional[GeneratorConfig] = None):
        self.emitter = emitter
        self.processor = processor
        self.parser = parser or ResponseParser()
        self.config = config or GeneratorConfig()

    def build_prompt(self, processed: ProcessedQuery, context: str) -> str:
        intent_line = ""
        if processed.intent is not None:
            intent_line = f"Query intent: {processed.intent.type} (confidence {processed.intent.confidence:.2f})\n"

        return (
            "You are an expert on editor keybindings. Using only the keybindings in the context, "
            "recommend the best matches for the user's request.\n\n"
            f"User request: {processed.original}\n"
            f"{intent_line}\n"
            f"Context:\n{context}\n\n"
            "Respond using these sections:\n"
            "ANALYSIS:\n<what the user is trying to do>\n\n"
            "RECOMMENDATIONS:\n"
            "1. Keys: <keys> | Command: <command> | Description: <description> | Mode: <mode> | "
            "Score: <0.0-1.0> | Explanation: <why it fits>\n\n"
            "REASONING:\n<how the recommendations were ranked>\n\n"
            "ALTERNATIVES:\n- <other approaches>"
        )

    def apply_boost(self, relevance: float, hit: SearchHit) -> float:
        if hit.metadata.get("source") == "user":
            relevance += self.config.user_boost
        return max(0.0, min(1.0, relevance))

    def _sorted(self, results: List[RankedResult], limit: Optional[int]) -> List[RankedResult]:
        # list.sort is stable, so equal relevance keeps hit order
        results.sort(key=lambda result: result.relevance, reverse=True)
        return results[:limit or self.config.max_results]

    def match_recommendations(self, hits: List[SearchHit],
                              analysis: AnalysisResult) -> List[Optional[Tuple[int, Recommendation, bool]]]:
        """
        Pair each hit with the recommendation naming its keys.

        Returns one entry per hit: None, or (rank, recommendation, exact).
        Exact keys matches are taken first; a recommendation left unclaimed
        may then pair with a hit whose keys are merely similar.
        """
        ranked = [
            (rank, recommendation)
            for rank, recommendation in enumerate(analysis.recommendations, start=1)
            if recommendation.score >= self.config.relevance_threshold
        ]

        matches: List[Optional[Tuple[int, Recommendation, bool]]] = [None] * len(hits)
        claimed = set()
        for i, hit in enumerate(hits):
            keys = hit.metadata.get("keys", "").strip()
            for rank, recommendation in ranked:
                if recommendation.keys.strip() == keys:
                    matches[i] = (rank, recommendation, True)
                    claimed.add(rank)
                    break

        for i, hit in enumerate(hits):
            if matches[i] is not None:
                continue
            keys = hit.metadata.get("keys", "")
            for rank, recommendation in ranked:
                if rank not in claimed and keys_similar(recommendation.keys, keys):
                    matches[i] = (rank, recommendation, False)
                    claimed.add(rank)
                    break
        return matches

    def combine(self, hit: SearchHit, match: Optional[Tuple[int, Recommendation, bool]],
                processed: Optional[ProcessedQuery]) -> float:
        """Relevance of one hit before the user boost and clamp."""
        if match is None:
            terms = matched_terms(processed, hit.document.content)
            return hit.score * VECTOR_ONLY_WEIGHT + VECTOR_ONLY_PENALTY + TERM_MATCH_BOOST * len(terms)

        rank, recommendation, exact = match
        vector_score = hit.score if exact else hit.score * FUZZY_MATCH_WEIGHT
        relevance = VECTOR_WEIGHT * vector_score + LLM_WEIGHT * recommendation.score
        relevance += RANK_POSITION_WEIGHT * max(0.0, 1.0 - 0.1 * (rank - 1))
        if processed is None:
            return relevance

        description = recommendation.description or hit.metadata.get("description", "")
        intent = processed.intent
        if intent is not None:
            relevance += processed.boost_factors.get(f"intent_{intent.type}", 0.0)
            relevance += processed.boost_factors.get("high_confidence_intent", 0.0)
            described = f"{recommendation.keys} {description}".lower()
            if any(keyword.lower() in described for keyword in intent.keywords):
                relevance += INTENT_KEYWORD_BOOST

        text = " ".join([recommendation.keys, recommendation.command, description, hit.document.content])
        terms = matched_terms(processed, text, synonym_text=description)
        return relevance + TERM_MATCH_BOOST * len(terms)

    def rank(self, hits: List[SearchHit], analysis: AnalysisResult, limit: Optional[int] = None,
             processed: Optional[ProcessedQuery] = None) -> List[RankedResult]:
        results = []
        for hit, match in zip(hits, self.match_recommendations(hits, analysis)):
            explanation = default_explanation(hit)
            if match is not None and match[1].explanation:
                explanation = match[1].explanation

            results.append(RankedResult(
                keybinding=keybinding_view(hit),
                relevance=self.apply_boost(self.combine(hit, match, processed), hit),
                explanation=explanation,
            ))
        return self._sorted(results, limit)

    def fallback_rank(self, hits: List[SearchHit], limit: Optional[int] = None) -> List[RankedResult]:
        """Similarity-only ranking used when generation is unavailable."""
        results = [
            RankedResult(
                keybinding=keybinding_view(hit),
                relevance=self.apply_boost(hit.score, hit),
                explanation=default_explanation(hit),
            )
            for hit in hits
        ]
        return self._sorted(results, limit)

    def generate(self, processed: ProcessedQuery, hits: List[SearchHit],
                 limit: Optional[int] = None) -> Tuple[List[RankedResult], AnalysisResult]:
        """Build context, generate, parse and rank. Raises InferenceServiceError if generation fails."""
        context = self.processor.build_context(processed.original, hits, processed.intent)
        prompt = self.build_prompt(processed, context)

        response = self.emitter.generate(prompt, max_tokens=self.config.max_tokens,
                                         temperature=self.config.temperature)
        if not response.text.strip():
            raise InferenceServiceError("generation returned no text")

        analysis = self.parser.parse(response.text)
        return self.rank(hits, analysis, limit, processed), analysis
