"""
Context analysis for Switchboard.

Builds a ``RequestContext`` from raw content when the caller does not
supply one: task type and industry from keywords, complexity from
length, language from script, urgency and priority from the task type.
"""

import re
from dataclasses import dataclass, replace
from typing import Any, Optional

from switchboard.schemas import (
    Complexity,
    CostCategory,
    Priority,
    RequestContext,
    TaskType,
    Urgency,
)


@dataclass(frozen=True)
class TaskProfile:
    keywords: tuple[str, ...]
    priority: Priority


@dataclass(frozen=True)
class IndustryProfile:
    keywords: tuple[str, ...]
    compliance: tuple[str, ...]
    specialization: bool


# Checked in order; the first with two keyword hits wins
TASK_PROFILES: dict[TaskType, TaskProfile] = {
    TaskType.INTERVIEW: TaskProfile(
        ("interview", "candidate", "hiring", "assessment", "skills", "experience"),
        Priority.HIGH,
    ),
    TaskType.SALES: TaskProfile(
        ("sales", "deal", "negotiation", "pricing", "contract", "proposal"),
        Priority.HIGH,
    ),
    TaskType.EXECUTIVE: TaskProfile(
        ("strategic", "executive", "leadership", "board", "decision", "planning"),
        Priority.CRITICAL,
    ),
    TaskType.TECHNICAL: TaskProfile(
        ("technical", "engineering", "development", "architecture", "code"),
        Priority.MEDIUM,
    ),
    TaskType.TEAM: TaskProfile(
        ("team", "standup", "sync", "coordination", "update", "status"),
        Priority.LOW,
    ),
    TaskType.TRAINING: TaskProfile(
        ("training", "education", "learning", "workshop", "tutorial"),
        Priority.MEDIUM,
    ),
}

# Checked in order; the first with one keyword hit wins
INDUSTRY_PROFILES: dict[str, IndustryProfile] = {
    "healthcare": IndustryProfile(
        ("patient", "medical", "healthcare", "clinical", "diagnosis", "treatment"),
        ("HIPAA",),
        True,
    ),
    "finance": IndustryProfile(
        ("financial", "investment", "banking", "trading", "portfolio", "risk"),
        ("SOX", "PCI"),
        True,
    ),
    "legal": IndustryProfile(
        ("legal", "law", "contract", "compliance", "regulation", "litigation"),
        ("Attorney-Client Privilege",),
        True,
    ),
    "technology": IndustryProfile(
        ("software", "technology", "development", "engineering", "product"),
        ("SOC2",),
        False,
    ),
}

LANGUAGE_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("ja", re.compile(r"[぀-ヿ]")),
    ("zh", re.compile(r"[一-鿿]")),
    ("ko", re.compile(r"[가-힣]")),
    ("ru", re.compile(r"[а-яё]", re.IGNORECASE)),
    ("ar", re.compile(r"[؀-ۿ]")),
    ("non-en", re.compile(r"[àáâãäåæçèéêëìíîïðñòóôõöøùúûüýþÿ]", re.IGNORECASE)),
)

HIGH_COMPLEXITY_CHARS = 2000
LOW_COMPLEXITY_CHARS = 500


def estimate_tokens(text: str) -> int:
    """
    Estimate token count from text.

    Uses a simple heuristic of ~4 characters per token.
    """
    return max(1, len(text) // 4)


class ContextAnalyzer:
    """Keyword-driven request context detection."""

    def __init__(self):
        self._word = re.compile(r"[a-z]+")

    def analyze(self, content: str, **overrides: Any) -> RequestContext:
        """
        Derive a context from content.

        Args:
            content: The request text.
            **overrides: ``RequestContext`` fields that win over detection.

        Returns:
            The detected context with overrides applied.
        """
        lowered = content.lower()
        task_type, priority = self._detect_task(lowered)
        industry, specialization = self._detect_industry(lowered)
        urgency = self._determine_urgency(task_type, priority)

        context = RequestContext(
            task_type=task_type,
            language=self.detect_language(content),
            urgency=urgency,
            complexity=self._determine_complexity(content),
            priority=priority,
            industry=industry,
            specialization=specialization,
            category=self._determine_category(task_type, urgency),
        )
        if overrides:
            context = replace(context, **overrides)
        return context

    def _detect_task(self, lowered: str) -> tuple[TaskType, Priority]:
        for task_type, profile in TASK_PROFILES.items():
            hits = sum(1 for keyword in profile.keywords if keyword in lowered)
            if hits >= 2:
                return task_type, profile.priority
        return TaskType.GENERAL, Priority.MEDIUM

    def _detect_industry(self, lowered: str) -> tuple[Optional[str], bool]:
        words = set(self._word.findall(lowered))
        for industry, profile in INDUSTRY_PROFILES.items():
            if any(keyword in words for keyword in profile.keywords):
                return industry, profile.specialization
        return None, False

    def detect_language(self, content: str) -> str:
        """ISO-ish language code from script, "en" when nothing else matches."""
        for code, pattern in LANGUAGE_PATTERNS:
            if pattern.search(content):
                return code
        return "en"

    def _determine_complexity(self, content: str) -> Complexity:
        if len(content) > HIGH_COMPLEXITY_CHARS:
            return Complexity.HIGH
        if len(content) < LOW_COMPLEXITY_CHARS:
            return Complexity.LOW
        return Complexity.MEDIUM

    def _determine_urgency(self, task_type: TaskType, priority: Priority) -> Urgency:
        if task_type == TaskType.REALTIME:
            return Urgency.REALTIME
        if priority == Priority.CRITICAL or task_type in (
            TaskType.EXECUTIVE, TaskType.INTERVIEW, TaskType.SALES
        ):
            return Urgency.HIGH
        if task_type in (TaskType.TEAM, TaskType.MONITORING):
            return Urgency.LOW
        return Urgency.MEDIUM

    def _determine_category(self, task_type: TaskType, urgency: Urgency) -> CostCategory:
        if urgency == Urgency.REALTIME:
            return CostCategory.REALTIME
        if task_type == TaskType.MONITORING:
            return CostCategory.MONITORING
        return CostCategory.ANALYSIS
