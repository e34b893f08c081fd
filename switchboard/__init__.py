"""
Switchboard - Route LLM requests across providers on cost, health and quota.

Single requests:
    from switchboard import Orchestrator

    orchestrator = Orchestrator.from_env()
    result = await orchestrator.process(None, "Prepare talking points for the board")
    print(result.provider, result.model)  # "aimlapi" "deepseek-v3.1"
    print(result.cost)                    # 0.0004
    print(result.fallback_level)          # 0 (primary provider answered)

Multi-model synthesis:
    result = await orchestrator.synthesize(None, "Assess this acquisition target")
    print(result.method)           # SynthesisMethod.EXPERTISE
    print(result.models_used)      # ["gpt-5-pro", "claude-4.5-sonnet"]

Budget and health:
    status = orchestrator.get_status()
    print(status["cost_ledger"]["utilization"])  # 0.12

    sub = orchestrator.ctx.events.subscribe(print, types=[EventType.BUDGET_ALERT])
    orchestrator.tick()  # call from your scheduler to roll days and periods
"""

from switchboard.catalog import DEFAULT_MODELS, ModelCatalog, get_default_catalog
from switchboard.circuit_breaker import CircuitBreakerConfig, CircuitState, HealthMonitor
from switchboard.classifier import ContextAnalyzer
from switchboard.config import OrchestratorConfig, ProviderSettings, SynthesisConfig, ConfigError
from switchboard.context import OrchestrationContext
from switchboard.cost_ledger import (
    BudgetAlert,
    BudgetConfig,
    BudgetExceededError,
    CostLedger,
    CostReport,
)
from switchboard.events import Event, EventBus, EventType
from switchboard.fallback import AllProvidersFailedError, FallbackOrchestrator
from switchboard.orchestrator import Orchestrator
from switchboard.providers import (
    MockProvider,
    ProviderAuthError,
    ProviderClient,
    ProviderError,
    ProviderRateLimitError,
    ProviderRegistry,
    ProviderTimeoutError,
    ProviderTransientError,
)
from switchboard.rate_limiter import RateLimiter, RateLimitExceededError
from switchboard.schemas import (
    AlertLevel,
    Complexity,
    CostCategory,
    ModelDescriptor,
    OrchestrationResult,
    Priority,
    Provider,
    RequestContext,
    RequestOptions,
    SynthesisMethod,
    TaskType,
    UsageRecord,
    Urgency,
)
from switchboard.selector import ModelSelector, NoEligibleModelError
from switchboard.storage import InMemoryLedgerStore, SQLiteLedgerStore
from switchboard.synthesis import InsufficientModelsError, SynthesisDisabledError, SynthesisResult
from switchboard.validation import ValidationError


__version__ = "0.3.0"
