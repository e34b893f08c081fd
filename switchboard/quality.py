"""
Text quality heuristics for Switchboard.

Cheap, deterministic signals used to score responses and to compare
outputs from different models. No model calls.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from switchboard.schemas import RequestContext, TaskType


ACTION_PHRASES = ("recommend", "suggest", "should", "consider", "action", "next steps")
STRUCTURE_MARKERS = ("**", "##", "- ")
SENTENCE_SPLIT = re.compile(r"[.!?]+")
KEY_POINT_MIN_LENGTH = 20
SIMILARITY_THRESHOLD = 0.7


def _has_structure(content: str) -> bool:
    return any(marker in content for marker in STRUCTURE_MARKERS)


def score_response(content: str, context: Optional[RequestContext] = None) -> float:
    """
    Quality score in [0, 1] for a single response.

    Short answers score 0.3. Otherwise the base of 0.7 gains 0.1 each for
    length, markdown structure, and at least two action phrases.
    """
    if not content or len(content) < 50:
        return 0.3

    score = 0.7
    lowered = content.lower()
    if len(content) > 200:
        score += 0.1
    if _has_structure(content):
        score += 0.1
    if sum(1 for phrase in ACTION_PHRASES if phrase in lowered) >= 2:
        score += 0.1
    return min(score, 1.0)


def score_insight(content: str) -> float:
    """Quality of one model's contribution to a synthesis."""
    score = 0.7
    if len(content) > 200:
        score += 0.1
    if "recommend" in content or "suggest" in content:
        score += 0.1
    if "**" in content or "##" in content:
        score += 0.05
    return min(score, 1.0)


def extract_key_points(content: str, limit: int = 5) -> list[str]:
    """First ``limit`` substantive sentences of ``content``."""
    sentences = [s.strip() for s in SENTENCE_SPLIT.split(content)]
    return [s for s in sentences if len(s) > KEY_POINT_MIN_LENGTH][:limit]


def similarity(text1: str, text2: str) -> float:
    """Share of words in ``text1`` that also occur in ``text2``, over the joint vocabulary."""
    words1 = text1.lower().split()
    words2 = text2.lower().split()
    vocabulary = set(words1) | set(words2)
    if not vocabulary:
        return 0.0
    other = set(words2)
    return sum(1 for w in words1 if w in other) / len(vocabulary)


def common_points(points1: Sequence[str], points2: Sequence[str]) -> list[str]:
    """Points of ``points1`` that closely match some point of ``points2``."""
    return [
        p1 for p1 in points1
        if any(similarity(p1, p2) > SIMILARITY_THRESHOLD for p2 in points2)
    ]


@dataclass
class Theme:
    text: str
    frequency: int


def common_themes(key_point_sets: Sequence[Sequence[str]]) -> list[Theme]:
    """Key points repeated by at least half of the sources."""
    if not key_point_sets:
        return []
    counts = Counter(p.lower().strip() for points in key_point_sets for p in points)
    needed = -(-len(key_point_sets) // 2)  # ceil
    return [Theme(text, n) for text, n in counts.items() if n >= needed]


def agreements(key_point_sets: Sequence[Sequence[str]]) -> list[Theme]:
    """Themes shared by at least 70% of the sources."""
    return [
        t for t in common_themes(key_point_sets)
        if t.frequency >= len(key_point_sets) * 0.7
    ]


def consensus_level(key_point_sets: Sequence[Sequence[str]]) -> float:
    """Agreements over common themes; 0 with fewer than two sources."""
    if len(key_point_sets) < 2:
        return 0.0
    themes = common_themes(key_point_sets)
    if not themes:
        return 0.0
    return len(agreements(key_point_sets)) / len(themes)


# =============================================================================
# Synthesis assessment criteria
# =============================================================================

def completeness(content: str, key_point_sets: Iterable[Sequence[str]]) -> float:
    """Share of sources whose key points show up in ``content``."""
    sets = list(key_point_sets)
    if not sets:
        return 0.0
    lowered = content.lower()
    covered = sum(
        1 for points in sets if any(p.lower()[:20] in lowered for p in points)
    )
    return covered / len(sets)


def accuracy(key_point_sets: Sequence[Sequence[str]]) -> float:
    return min(consensus_level(key_point_sets) + 0.3, 1.0)


def insight_value(content: str, context: RequestContext) -> float:
    lowered = content.lower()
    score = 0.5
    if "recommend" in lowered or "action" in lowered:
        score += 0.2
    if "strategy" in lowered or "opportunity" in lowered:
        score += 0.2
    if context.task_type == TaskType.EXECUTIVE and "decision" in lowered:
        score += 0.1
    if context.task_type == TaskType.SALES and "deal" in lowered:
        score += 0.1
    return min(score, 1.0)


def clarity(content: str) -> float:
    score = 0.5
    if "##" in content:
        score += 0.2
    if "- " in content or "1." in content:
        score += 0.2
    sentences = SENTENCE_SPLIT.split(content)
    average_length = sum(len(s.split()) for s in sentences) / len(sentences)
    if average_length < 25:
        score += 0.1
    return min(score, 1.0)
