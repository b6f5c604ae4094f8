"""
Query processing - intent classification, synonym expansion, search terms and ranking boosts.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .formatters import build_context
from .response_parser import parse_fields, parse_score, split_list
from ..core.errors import KeybindRagError
from ..core.models import INTENT_TYPES, ProcessedQuery, QueryIntent
from ..util.logging import logger
from ..vector.embeddings import EmbeddingEmitter
from ..vector.types import SearchHit

# Ordered: the first matching category wins
INTENT_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("navigation", re.compile(r"(move|jump|go|navigate|cursor|position).*(to|at|beginning|end|start|line|word|character|top|bottom)")),
    ("editing", re.compile(r"(delete|remove|cut|insert|add|change|replace|edit|modify|substitute).*(word|line|character|text|block)")),
    ("visual", re.compile(r"(select|highlight|mark|visual|block|region).*(text|word|line|paragraph)")),
    ("search", re.compile(r"(search|find|locate|grep|pattern|match).*(text|word|string|file)")),
    ("window", re.compile(r"(window|split|pane|tab|layout|view).*(open|close|switch|move|resize)")),
    ("buffer", re.compile(r"(buffer|file|document).*(open|close|switch|save|load|edit)")),
    ("command", re.compile(r"(command|ex|colon).*(mode|execute|run)")),
    ("motion", re.compile(r"(motion|movement|text object).*(word|sentence|paragraph|block)")),
    ("macro", re.compile(r"(macro|record|replay|repeat).*(command|sequence)")),
]

INTENT_CATEGORIES = {
    "navigation": "cursor_movement",
    "editing": "text_manipulation",
    "visual": "selection",
    "search": "finding",
    "window": "layout",
    "buffer": "file_management",
}

SYNONYMS: Dict[str, List[str]] = {
    "delete": ["remove", "cut", "erase", "clear"],
    "copy": ["yank", "duplicate"],
    "paste": ["put", "insert"],
    "move": ["navigate", "jump", "go"],
    "search": ["find", "locate", "grep"],
    "replace": ["substitute", "change"],
    "word": ["term", "token"],
    "line": ["row"],
    "column": ["col"],
    "start": ["beginning", "begin"],
    "end": ["finish", "last"],
    "next": ["forward"],
    "previous": ["back", "backward", "prev"],
    "up": ["above"],
    "down": ["below"],
    "left": ["backward"],
    "right": ["forward"],
    "select": ["highlight", "mark"],
    "split": ["divide", "separate"],
    "close": ["quit", "exit"],
    "open": ["load", "edit"],
    "save": ["write", "store"],
    "undo": ["revert", "back"],
    "redo": ["forward", "repeat"],
}

INTENT_SYNONYMS: Dict[str, List[str]] = {
    "navigation": ["move", "jump", "go", "cursor", "position"],
    "editing": ["change", "modify", "insert", "delete", "edit", "text"],
    "visual": ["select", "highlight", "mark", "block", "region"],
    "search": ["find", "locate", "pattern", "match", "grep"],
    "window": ["split", "pane", "tab", "layout", "view"],
    "buffer": ["file", "document", "switch", "open", "close"],
}

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "how", "what", "where", "when", "why", "i", "want", "need",
    "can", "should",
}

EXPANSION_PREFIXES = ("related terms:", "expansion:", "terms:")

_WORD_RE = re.compile(r"[a-z0-9]+")
_EDGE_PUNCTUATION = ".,?!;\"'"


@dataclass
class QueryProcessorConfig:
    max_expansion_terms: int = 5
    context_window_size: int = 2000
    synonym_boost_factor: float = 0.1
    intent_boost_factor: float = 0.15
    pattern_confidence: float = 0.8
    pattern_threshold: float = 0.7
    high_confidence_threshold: float = 0.8
    high_confidence_bonus: float = 0.1
    default_llm_confidence: float = 0.6
    generic_confidence: float = 0.3
    enable_llm_intent: bool = True
    enable_llm_expansion: bool = True


def generic_intent(query: str, confidence: float = 0.3) -> QueryIntent:
    """Catch-all intent built from the raw query tokens."""
    return QueryIntent(type="general", confidence=confidence, keywords=query.lower().split())


class QueryProcessor:
    """
    Turns a raw query into a ProcessedQuery.

    Pattern classification is tried first and returned directly when its
    confidence clears the threshold. Inference-service calls (classification
    and expansion) are best-effort: failures are logged and the cheaper
    result is used.
    """

    def __init__(self, emitter: Optional[EmbeddingEmitter] = None, config: Optional[QueryProcessorConfig] = None):
        self.emitter = emitter
        self.config = config or QueryProcessorConfig()

    # Intent classification

    def pattern_intent(self, query: str) -> Optional[QueryIntent]:
        normalized = query.lower().strip()
        for intent_type, pattern in INTENT_PATTERNS:
            match = pattern.search(normalized)
            if match:
                context = {"pattern": pattern.pattern}
                if intent_type in INTENT_CATEGORIES:
                    context["category"] = INTENT_CATEGORIES[intent_type]
                return QueryIntent(
                    type=intent_type,
                    confidence=self.config.pattern_confidence,
                    keywords=[group for group in match.groups() if group],
                    context=context,
                )
        return None

    def parse_intent_response(self, text: str, query: str) -> QueryIntent:
        """Read the Intent/Confidence/Keywords/Context/Suggestions layout."""
        fields = parse_fields(text)

        intent_type = fields.get("intent", "").strip().lower()
        if not intent_type:
            return generic_intent(query, self.config.generic_confidence)
        if intent_type not in INTENT_TYPES:
            intent_type = "general"

        intent = QueryIntent(
            type=intent_type,
            confidence=parse_score(fields.get("confidence"), self.config.default_llm_confidence),
            keywords=split_list(fields.get("keywords", "")),
            suggestions=split_list(fields.get("suggestions", "")),
        )
        if fields.get("context"):
            intent.context["llm_context"] = fields["context"]
        return intent

    def llm_intent(self, query: str) -> QueryIntent:
        prompt = (
            "Classify the intent of this editor keybinding query.\n\n"
            f"Query: {query}\n\n"
            f"Categories: {', '.join(INTENT_TYPES)}\n\n"
            "Respond in exactly this format:\n"
            "Intent: <category>\n"
            "Confidence: <0.0-1.0>\n"
            "Keywords: <comma-separated keywords>\n"
            "Context: <short description of what the user wants>\n"
            "Suggestions: <comma-separated related actions>"
        )
        response = self.emitter.generate(prompt, max_tokens=200, temperature=0.1)
        return self.parse_intent_response(response.text, query)

    @staticmethod
    def combine_intents(pattern: Optional[QueryIntent], llm: QueryIntent) -> QueryIntent:
        if pattern is None:
            return llm

        if pattern.type == llm.type:
            keywords = list(dict.fromkeys(pattern.keywords + llm.keywords))
            context = dict(pattern.context)
            context.update(llm.context)
            return QueryIntent(
                type=pattern.type,
                confidence=min(1.0, (pattern.confidence + llm.confidence) / 2),
                keywords=keywords,
                context=context,
                suggestions=list(llm.suggestions),
            )

        # Ties go to the inference result
        return pattern if pattern.confidence > llm.confidence else llm

    def classify_intent(self, query: str) -> QueryIntent:
        pattern = self.pattern_intent(query)
        if pattern is not None and pattern.confidence > self.config.pattern_threshold:
            return pattern

        if self.emitter is None or not self.config.enable_llm_intent:
            return pattern or generic_intent(query, self.config.generic_confidence)

        try:
            llm = self.llm_intent(query)
        except KeybindRagError as e:
            logger.log_operation("query.classify", "degraded", {"error": str(e)})
            return pattern or generic_intent(query, self.config.generic_confidence)

        return self.combine_intents(pattern, llm)

    # Expansion

    def llm_expansion(self, query: str, intent: Optional[QueryIntent]) -> List[str]:
        intent_line = f"Intent: {intent.type}\n" if intent is not None else ""
        prompt = (
            "Suggest related terms for searching editor keybindings.\n\n"
            f"Query: {query}\n{intent_line}\n"
            "Reply with 3-5 related terms as a comma-separated list."
        )
        response = self.emitter.generate(prompt, max_tokens=100, temperature=0.3)

        terms = []
        for line in response.text.splitlines():
            stripped = line.strip()
            for prefix in EXPANSION_PREFIXES:
                if stripped.lower().startswith(prefix):
                    stripped = stripped[len(prefix):]
                    break
            for term in split_list(stripped):
                term = term.strip(_EDGE_PUNCTUATION).lower()
                if len(term) > 1:
                    terms.append(term)
        return terms

    def expand_query(self, query: str, intent: Optional[QueryIntent]) -> Tuple[str, List[str]]:
        tokens = _WORD_RE.findall(query.lower())

        candidates: List[str] = []
        for token in tokens:
            candidates.extend(SYNONYMS.get(token, []))
        if intent is not None:
            candidates.extend(INTENT_SYNONYMS.get(intent.type, []))

        if self.emitter is not None and self.config.enable_llm_expansion:
            try:
                candidates.extend(self.llm_expansion(query, intent))
            except KeybindRagError as e:
                logger.log_operation("query.expand", "degraded", {"error": str(e)})

        # Dedupe in first-seen order
        terms = list(dict.fromkeys(candidates))
        terms = terms[:self.config.max_expansion_terms]

        if not terms:
            return query, []
        return f"{query} {' '.join(terms)}", terms

    # Terms, boosts and context

    @staticmethod
    def extract_search_terms(text: str) -> List[str]:
        terms = []
        for token in text.lower().split():
            token = token.strip(_EDGE_PUNCTUATION)
            if len(token) <= 1 or token in STOP_WORDS:
                continue
            terms.append(token)
        return terms

    def compute_boosts(self, intent: Optional[QueryIntent], synonyms: List[str]) -> Dict[str, float]:
        boosts: Dict[str, float] = {}
        if intent is not None:
            boosts[f"intent_{intent.type}"] = self.config.intent_boost_factor * intent.confidence
            if intent.confidence > self.config.high_confidence_threshold:
                boosts["high_confidence_intent"] = self.config.high_confidence_bonus
        if synonyms:
            boosts["synonym_expansion"] = self.config.synonym_boost_factor
        return boosts

    def build_context(self, query: str, hits: List[SearchHit], intent: Optional[QueryIntent]) -> str:
        return build_context(query, hits, intent, budget=self.config.context_window_size)

    def process(self, query: str) -> ProcessedQuery:
        """Classify, expand and score a query. Failures fall back to the verbatim query."""
        try:
            intent = self.classify_intent(query)
            expanded, synonyms = self.expand_query(query, intent)
        except KeybindRagError as e:
            logger.log_operation("query.process", "degraded", {"error": str(e)})
            return ProcessedQuery(
                original=query,
                expanded=query,
                intent=None,
                synonyms=[],
                search_terms=self.extract_search_terms(query),
                boost_factors={},
            )

        return ProcessedQuery(
            original=query,
            expanded=expanded,
            intent=intent,
            synonyms=synonyms,
            search_terms=self.extract_search_terms(expanded),
            boost_factors=self.compute_boosts(intent, synonyms),
        )
