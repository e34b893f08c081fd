"""
Data schemas for Switchboard.

Request context, model descriptors, usage and result structures shared
by every orchestration component.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Optional, Any
import uuid


class TaskType(str, Enum):
    """Kinds of work a request belongs to."""
    EXECUTIVE = "executive"
    SALES = "sales"
    INTERVIEW = "interview"
    TECHNICAL = "technical"
    TEAM = "team"
    TRAINING = "training"
    REALTIME = "realtime"
    MONITORING = "monitoring"
    GENERAL = "general"


class Urgency(str, Enum):
    """How quickly the caller needs an answer."""
    REALTIME = "realtime"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Complexity(str, Enum):
    """Estimated difficulty of the request."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Priority(str, Enum):
    """Business priority of the request."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Provider(str, Enum):
    """Upstream AI providers, in no particular order."""
    AIMLAPI = "aimlapi"
    OPENAI = "openai"
    GOOGLE = "google"
    ANTHROPIC = "anthropic"


DEFAULT_PROVIDER_ORDER: tuple[Provider, ...] = (
    Provider.AIMLAPI,
    Provider.OPENAI,
    Provider.GOOGLE,
    Provider.ANTHROPIC,
)


class CostCategory(str, Enum):
    """Spend categories used for budget allocation."""
    REALTIME = "realtime"
    ANALYSIS = "analysis"
    MONITORING = "monitoring"
    EXPERIMENTAL = "experimental"


class AlertLevel(str, Enum):
    """Budget alert severities, lowest first."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SynthesisMethod(str, Enum):
    """Ways of combining several model outputs."""
    CONSENSUS = "consensus"
    EXPERTISE = "expertise"
    HIERARCHICAL = "hierarchical"
    COMPETITIVE = "competitive"


@dataclass(frozen=True)
class ModelDescriptor:
    """
    Static description of one model offered by one provider.

    Costs are USD per 1K tokens. ``direct_cost_per_1k`` is the price of the
    nearest equivalent bought straight from a first-party provider and is
    used to measure savings.
    """
    model_id: str
    provider: Provider
    input_cost_per_1k: float
    output_cost_per_1k: float
    context_window: int
    rate_limit_per_minute: int = 60
    quality_score: float = 0.7
    speed_score: float = 0.7
    specialties: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    direct_cost_per_1k: Optional[float] = None
    upstream_name: Optional[str] = None  # name sent on the wire, if different

    @property
    def average_cost_per_1k(self) -> float:
        return (self.input_cost_per_1k + self.output_cost_per_1k) / 2

    @property
    def wire_name(self) -> str:
        return self.upstream_name or self.model_id

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        """Cost in USD of a call with the given token counts."""
        return (
            input_tokens / 1000 * self.input_cost_per_1k
            + output_tokens / 1000 * self.output_cost_per_1k
        )

    def has_tag(self, tag: str) -> bool:
        return tag in self.specialties


@dataclass(frozen=True)
class RequestContext:
    """
    Everything the orchestrator knows about a request besides its content.

    Immutable: the components that read it never change it.
    """
    task_type: TaskType = TaskType.GENERAL
    language: str = "en"
    urgency: Urgency = Urgency.MEDIUM
    complexity: Complexity = Complexity.MEDIUM
    priority: Priority = Priority.MEDIUM
    budget_constrained: bool = False
    preferred_model: Optional[str] = None
    industry: Optional[str] = None
    specialization: bool = False
    category: CostCategory = CostCategory.ANALYSIS
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def is_high_priority(self) -> bool:
        """Critical or executive work gets the quality-first strategy."""
        return (
            self.priority in (Priority.CRITICAL, Priority.HIGH)
            or self.task_type == TaskType.EXECUTIVE
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_type": self.task_type.value,
            "language": self.language,
            "urgency": self.urgency.value,
            "complexity": self.complexity.value,
            "priority": self.priority.value,
            "budget_constrained": self.budget_constrained,
            "preferred_model": self.preferred_model,
            "industry": self.industry,
            "specialization": self.specialization,
            "category": self.category.value,
            "request_id": self.request_id,
        }


@dataclass(frozen=True)
class UsageRecord:
    """Token usage reported by a provider."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt_tokens: int, completion_tokens: int) -> "UsageRecord":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def __add__(self, other: "UsageRecord") -> "UsageRecord":
        return UsageRecord(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class RequestOptions:
    """
    Per-call knobs.

    ``model`` pins a catalog model. A pinned request only reaches that
    model's provider unless ``allow_fallback`` is set, in which case the
    remaining providers follow in their declared order.
    """
    system_prompt: Optional[str] = None
    max_tokens: int = 4000
    temperature: float = 0.7
    model: Optional[str] = None
    allow_fallback: bool = True
    expected_output_tokens: int = 500
    timeout_s: Optional[float] = None


@dataclass
class ProviderResponse:
    """What a provider client hands back for one successful call."""
    text: str
    usage: UsageRecord
    model: str
    raw_response: Optional[dict] = None


@dataclass
class AttemptRecord:
    """Outcome of one provider slot in the fallback chain."""
    provider: Provider
    model_id: Optional[str]
    outcome: str  # success, failure, skipped
    reason: Optional[str] = None
    error: Optional[str] = None
    response_time_ms: float = 0.0


@dataclass
class OrchestrationResult:
    """Final result of a single-model request."""
    content: str
    usage: UsageRecord
    model: str
    provider: Provider
    cost: float
    quality_score: float
    fallback_level: int
    response_time_ms: float
    request_id: str
    attempts: list[AttemptRecord] = field(default_factory=list)
    budget_alert: Optional[AlertLevel] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "usage": {
                "prompt_tokens": self.usage.prompt_tokens,
                "completion_tokens": self.usage.completion_tokens,
                "total_tokens": self.usage.total_tokens,
            },
            "model": self.model,
            "provider": self.provider.value,
            "cost": self.cost,
            "quality_score": self.quality_score,
            "fallback_level": self.fallback_level,
            "response_time_ms": self.response_time_ms,
            "request_id": self.request_id,
            "budget_alert": self.budget_alert.value if self.budget_alert else None,
            "attempts": [
                {
                    "provider": a.provider.value,
                    "model": a.model_id,
                    "outcome": a.outcome,
                    "reason": a.reason,
                    "error": a.error,
                }
                for a in self.attempts
            ],
        }
