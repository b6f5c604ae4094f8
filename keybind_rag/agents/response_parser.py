"""
Tolerant parsing of generated text.

Generated analyses are read as a small line-oriented grammar: section
headers (ANALYSIS:, RECOMMENDATIONS:, REASONING:, ALTERNATIVES:) and
`Key: value` fields. Unmatched content is ignored; nothing here raises on
malformed input.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

DEFAULT_SCORE = 0.6
DEFAULT_ANALYSIS_CONFIDENCE = 0.7

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.\d*|\.\d+|\d+)")
_DENOMINATOR_RE = re.compile(r"\s*/\s*(\d+(?:\.\d+)?)")
_SECTION_RE = re.compile(r"^\s*(ANALYSIS|RECOMMENDATIONS|REASONING|ALTERNATIVES)\s*:\s*(.*)$", re.IGNORECASE)
_RECOMMENDATION_RE = re.compile(
    r"^\s*(?:\d+[.)]\s*|[-*•]\s*)?"
    r"Keys?:\s*(?P<keys>[^|]+?)\s*\|\s*"
    r"Command:\s*(?P<command>[^|]*?)\s*\|\s*"
    r"Description:\s*(?P<description>[^|]*?)\s*"
    r"(?:\|\s*Mode:\s*(?P<mode>[^|]*?)\s*)?"
    r"(?:\|\s*Score:\s*(?P<score>[^|]*?)\s*)?"
    r"(?:\|\s*Explanation:\s*(?P<explanation>.*?)\s*)?$",
    re.IGNORECASE,
)
_SIMPLE_LINE_RE = re.compile(r"^\s*(?:\d+[.)]\s*|[-*•]\s*)(?P<keys>\S+)\s+[-:]\s+(?P<description>.+)$")
_BULLET_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")

# Checked in order; the first phrase present decides the level
_CONFIDENCE_LEVELS = [
    ("very confident", 0.9),
    ("highly confident", 0.9),
    ("confident", 0.8),
    ("likely", 0.7),
    ("possibly", 0.6),
    ("might", 0.6),
    ("uncertain", 0.4),
    ("unsure", 0.4),
]


def parse_score(text: Optional[str], default: float = DEFAULT_SCORE) -> float:
    """Parse a confidence/score value such as "0.85", "85%", "8/10" or "0.9 (high)".

    Returns `default` when no number is present. Fractions are divided out
    and percentages scaled down. Bare values up to 10 clamp to [0, 1];
    larger ones are read as percentages.
    """
    if not text:
        return default
    match = _NUMBER_RE.search(text)
    if not match:
        return default
    try:
        value = float(match.group(0))
    except ValueError:
        return default

    rest = text[match.end():]
    fraction = _DENOMINATOR_RE.match(rest)
    if fraction:
        denominator = float(fraction.group(1))
        if denominator > 0:
            value = value / denominator
    elif rest.lstrip().startswith("%") or value > 10.0:
        value = value / 100.0
    return max(0.0, min(1.0, value))


def split_list(text: str) -> List[str]:
    """Split a comma-separated value, dropping empty items."""
    return [item.strip() for item in text.split(",") if item.strip()]


def parse_fields(text: str) -> Dict[str, str]:
    """Read `Key: value` lines into a dict keyed by lower-cased key. First occurrence wins."""
    fields: Dict[str, str] = {}
    for line in text.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        if key and key not in fields:
            fields[key] = value.strip()
    return fields


@dataclass
class Recommendation:
    keys: str
    command: str = ""
    description: str = ""
    mode: str = ""
    score: float = DEFAULT_SCORE
    explanation: str = ""


@dataclass
class AnalysisResult:
    analysis: str = ""
    recommendations: List[Recommendation] = field(default_factory=list)
    reasoning: str = ""
    alternatives: List[str] = field(default_factory=list)
    confidence: float = DEFAULT_ANALYSIS_CONFIDENCE


def split_sections(text: str) -> Dict[str, List[str]]:
    """Group lines under their section header. Lines before any header go to 'preamble'."""
    sections: Dict[str, List[str]] = {"preamble": []}
    current = "preamble"
    for line in text.splitlines():
        match = _SECTION_RE.match(line)
        if match:
            current = match.group(1).lower()
            sections.setdefault(current, [])
            if match.group(2).strip():
                sections[current].append(match.group(2).strip())
            continue
        sections[current].append(line)
    return sections


def parse_recommendation_line(line: str) -> Optional[Recommendation]:
    match = _RECOMMENDATION_RE.match(line)
    if match:
        return Recommendation(
            keys=match.group("keys").strip(),
            command=(match.group("command") or "").strip(),
            description=(match.group("description") or "").strip(),
            mode=(match.group("mode") or "").strip(),
            score=parse_score(match.group("score")),
            explanation=(match.group("explanation") or "").strip(),
        )

    match = _SIMPLE_LINE_RE.match(line)
    if match:
        return Recommendation(keys=match.group("keys").strip(),
                              description=match.group("description").strip())
    return None


def extract_confidence(text: str) -> float:
    lowered = text.lower()
    for phrase, level in _CONFIDENCE_LEVELS:
        if phrase in lowered:
            return level
    return DEFAULT_ANALYSIS_CONFIDENCE


class ResponseParser:
    """Parses generated analysis text into an AnalysisResult."""

    def parse(self, text: str) -> AnalysisResult:
        result = AnalysisResult()
        if not text or not text.strip():
            return result

        sections = split_sections(text)

        result.analysis = "\n".join(sections.get("analysis", [])).strip()
        result.reasoning = "\n".join(sections.get("reasoning", [])).strip()

        for line in sections.get("recommendations", []):
            recommendation = parse_recommendation_line(line)
            if recommendation:
                result.recommendations.append(recommendation)

        if not result.recommendations:
            # No usable section; scan the whole text for recommendation-shaped lines
            for line in text.splitlines():
                match = _RECOMMENDATION_RE.match(line)
                if match:
                    result.recommendations.append(parse_recommendation_line(line))

        for line in sections.get("alternatives", []):
            alternative = _BULLET_RE.sub("", line).strip()
            if alternative:
                result.alternatives.append(alternative)

        if not result.analysis and not result.reasoning and sections["preamble"]:
            result.reasoning = "\n".join(sections["preamble"]).strip()

        result.confidence = extract_confidence(result.analysis or result.reasoning)
        return result
