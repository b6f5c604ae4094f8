"""
Context formatters for the generation prompt, dispatched by intent category.
"""

from typing import Callable, Dict, List, Optional

from ..core.models import QueryIntent
from ..vector.types import SearchHit

INTENT_HIT_LIMIT = 6
USER_HIT_LIMIT = 5
BUILTIN_HIT_LIMIT = 5
BUILTIN_HIT_LIMIT_ALONE = 8
KNOWLEDGE_HIT_LIMIT = 3
KNOWLEDGE_CONTENT_LIMIT = 200


def _keybinding_line(number: int, hit: SearchHit) -> str:
    metadata = hit.metadata
    line = f"\n{number}. {metadata.get('keys', '')} ({metadata.get('command', '')}): {metadata.get('description', '')}"
    mode = metadata.get("mode")
    if mode:
        line += f" [mode {mode}]"
    return line


def _intent_formatter(title: str, section: str) -> Callable[[str, List[SearchHit]], str]:
    """Build a formatter rendering up to INTENT_HIT_LIMIT hits under an intent-specific header."""

    def render(query: str, hits: List[SearchHit]) -> str:
        parts = [f"{title} query: {query}\n\n{section}:"]
        for number, hit in enumerate(hits[:INTENT_HIT_LIMIT], start=1):
            parts.append(_keybinding_line(number, hit))
        return "".join(parts)

    return render


# intent type -> formatter(query, hits)
CONTEXT_FORMATTERS: Dict[str, Callable[[str, List[SearchHit]], str]] = {
    "navigation": _intent_formatter("Navigation", "Movement keybindings"),
    "editing": _intent_formatter("Editing", "Text editing keybindings"),
    "visual": _intent_formatter("Visual selection", "Selection keybindings"),
    "search": _intent_formatter("Search", "Search and find keybindings"),
    "window": _intent_formatter("Window management", "Window and layout keybindings"),
    "buffer": _intent_formatter("Buffer management", "Buffer and file keybindings"),
}


def _bucket(hits: List[SearchHit]):
    user, builtin, knowledge = [], [], []
    for hit in hits:
        if hit.metadata.get("type") == "general_knowledge":
            knowledge.append(hit)
        elif hit.metadata.get("source") == "user":
            user.append(hit)
        else:
            builtin.append(hit)
    return user, builtin, knowledge


def format_general_context(query: str, hits: List[SearchHit], intent: Optional[QueryIntent]) -> str:
    """User keybindings first, then built-ins, then general knowledge."""
    parts = [f"User query: {query}"]
    if intent is not None:
        parts.append(f"\nDetected intent: {intent.type} (confidence: {intent.confidence:.2f})")
        if intent.keywords:
            parts.append(f"\nKey terms: {', '.join(intent.keywords)}")

    user, builtin, knowledge = _bucket(hits)

    if user:
        parts.append("\n\nUser keybindings:")
        for number, hit in enumerate(user[:USER_HIT_LIMIT], start=1):
            parts.append(_keybinding_line(number, hit) + f", Relevance: {hit.score:.2f}")

    if builtin:
        limit = BUILTIN_HIT_LIMIT if user else BUILTIN_HIT_LIMIT_ALONE
        parts.append("\n\nBuilt-in keybindings:")
        for number, hit in enumerate(builtin[:limit], start=1):
            parts.append(_keybinding_line(number, hit) + f", Relevance: {hit.score:.2f}")

    if knowledge:
        parts.append("\n\nGeneral knowledge:")
        for number, hit in enumerate(knowledge[:KNOWLEDGE_HIT_LIMIT], start=1):
            metadata = hit.metadata
            content = metadata.get("content") or hit.document.content
            if len(content) > KNOWLEDGE_CONTENT_LIMIT:
                content = content[:KNOWLEDGE_CONTENT_LIMIT] + "..."
            line = f"\n{number}. {metadata.get('title', hit.id)}: {content}"
            if metadata.get("category"):
                line += f" [{metadata['category']}]"
            if metadata.get("difficulty"):
                line += f" ({metadata['difficulty']} level)"
            parts.append(line)

    return "".join(parts)


def build_context(query: str, hits: List[SearchHit], intent: Optional[QueryIntent], budget: int = 2000) -> str:
    """Render hits for the generation prompt, truncated to `budget` characters."""
    formatter = CONTEXT_FORMATTERS.get(intent.type) if intent is not None else None
    if formatter is not None:
        context = formatter(query, hits)
    else:
        context = format_general_context(query, hits, intent)

    if len(context) > budget:
        context = context[:budget] + "..."
    return context
