"""
Orchestrator facade for Switchboard.

Single entry point for callers: route one request through the fallback
chain, fuse several models with synthesis, and inspect live state.

Usage:
    from switchboard import Orchestrator

    orchestrator = Orchestrator.from_env()
    result = await orchestrator.process(None, "Summarize the Q3 pipeline review")
    print(result.provider, result.model, result.cost)
"""

import logging
from typing import Any, Iterable, Optional

from switchboard.classifier import ContextAnalyzer
from switchboard.config import OrchestratorConfig
from switchboard.context import OrchestrationContext
from switchboard.cost_ledger import PeriodSnapshot
from switchboard.events import EventType
from switchboard.fallback import FallbackOrchestrator
from switchboard.providers import ProviderRegistry
from switchboard.schemas import (
    OrchestrationResult,
    RequestContext,
    RequestOptions,
    SynthesisMethod,
)
from switchboard.selector import ModelSelector
from switchboard.synthesis import SynthesisDisabledError, SynthesisEngine, SynthesisResult
from switchboard.validation import validate_content, validate_models, validate_request


logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Routes requests across providers while tracking cost and health.

    All state lives in the ``OrchestrationContext`` handed in at
    construction; two orchestrators never share anything unless they
    share a context.
    """

    def __init__(self, ctx: Optional[OrchestrationContext] = None):
        self.ctx = ctx or OrchestrationContext.create()
        self.analyzer = ContextAnalyzer()
        self.selector = ModelSelector(
            self.ctx.catalog,
            optimization_enabled=self.ctx.config.optimization_enabled,
            default_strategy=self.ctx.config.default_strategy,
        )
        self.fallback = FallbackOrchestrator(self.ctx, self.selector)
        self.synthesis = SynthesisEngine(self.ctx, self.fallback)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "Orchestrator":
        """Configuration and provider clients from environment variables."""
        ctx = OrchestrationContext.create(
            config=OrchestratorConfig.from_env(),
            registry=ProviderRegistry.from_env(),
            **kwargs,
        )
        return cls(ctx)

    async def aclose(self) -> None:
        await self.ctx.registry.aclose()

    def _context_for(self, context: Optional[RequestContext], content: str) -> RequestContext:
        if context is not None:
            return context
        return self.analyzer.analyze(content)

    # =========================================================================
    # Requests
    # =========================================================================

    async def process(
        self,
        context: Optional[RequestContext],
        content: str,
        options: Optional[RequestOptions] = None,
    ) -> OrchestrationResult:
        """
        Serve one request from the cheapest suitable provider that answers.

        Args:
            context: Request context. Derived from ``content`` when None.
            content: The prompt.
            options: Per-call options.

        Raises:
            ValidationError: Malformed input.
            BudgetExceededError: Budget used up and enforcement enabled.
            NoEligibleModelError: No model fits the request.
            RateLimitExceededError: Every candidate model is over quota.
            AllProvidersFailedError: Every provider failed or was skipped.
        """
        options = options or RequestOptions()
        validate_content(content)
        context = self._context_for(context, content)
        validate_request(content, context, options, self.ctx.catalog)
        self.ctx.ledger.check_budget()

        self.ctx.metrics.record_request(
            context.request_id, context.task_type.value, len(content),
        )
        try:
            result = await self.fallback.process(context, content, options)
        except Exception as exc:
            self.ctx.metrics.record_error(context.request_id, type(exc).__name__, str(exc))
            raise

        self.ctx.metrics.record_outcome(
            request_id=result.request_id,
            provider=result.provider.value,
            model_id=result.model,
            cost=result.cost,
            latency_ms=result.response_time_ms,
            fallback_level=result.fallback_level,
            quality_score=result.quality_score,
        )
        return result

    async def synthesize(
        self,
        context: Optional[RequestContext],
        content: str,
        options: Optional[RequestOptions] = None,
        models: Optional[Iterable[str]] = None,
        method: Optional[SynthesisMethod] = None,
    ) -> SynthesisResult:
        """
        Fuse answers from several models. See ``SynthesisEngine.synthesize``.

        Raises:
            SynthesisDisabledError: Synthesis is switched off.
            BudgetExceededError: Budget used up and enforcement enabled.
            InsufficientModelsError: Fewer than two models could contribute.
        """
        if not self.ctx.config.synthesis.enabled:
            raise SynthesisDisabledError("Multi-model synthesis is disabled")

        options = options or RequestOptions()
        validate_content(content)
        context = self._context_for(context, content)
        validate_request(content, context, options, self.ctx.catalog)
        if models is not None:
            models = list(models)
            validate_models(models, self.ctx.catalog)
        self.ctx.ledger.check_budget()

        self.ctx.metrics.record_request(
            context.request_id, context.task_type.value, len(content), synthesis=True,
        )
        return await self.synthesis.synthesize(context, content, options, models, method)

    # =========================================================================
    # Status and maintenance
    # =========================================================================

    def get_status(self) -> dict[str, Any]:
        """Read-only snapshot for dashboards and health checks."""
        config = self.ctx.config
        return {
            "providers": {
                provider: {
                    **health,
                    "configured": provider in {p.value for p in self.ctx.registry.providers()},
                }
                for provider, health in self.ctx.health.snapshot().items()
            },
            "cost_ledger": self.ctx.ledger.snapshot(),
            "rate_limits": self.ctx.rate_limiter.get_stats(),
            "metrics": self.ctx.metrics.get_stats(),
            "synthesis": self.synthesis.status(),
            "config": {
                "provider_order": [p.value for p in config.provider_order],
                "optimization_enabled": config.optimization_enabled,
                "default_strategy": self.selector.default_strategy,
                "circuit_breaker_enabled": config.circuit_breaker.enabled,
            },
        }

    def tick(self, now: Optional[float] = None) -> dict[str, Any]:
        """
        Periodic housekeeping, driven by the host's scheduler.

        Rolls the daily ledger, starts a new budget period when the month
        has changed (if enabled), and publishes a health report.
        """
        now = self.ctx.clock() if now is None else now
        rolled = self.ctx.ledger.roll_day(now)

        archived: Optional[PeriodSnapshot] = None
        if self.ctx.config.budget.auto_reset_period and self.ctx.ledger.period_month_changed(now):
            archived = self.ctx.ledger.reset_period()

        health = self.ctx.health.snapshot()
        self.ctx.events.publish(
            EventType.HEALTH_REPORT,
            providers=health,
            utilization=self.ctx.ledger.get_budget_utilization(),
        )
        return {
            "day_rolled": rolled.day.isoformat() if rolled else None,
            "period_reset": archived is not None,
            "providers": health,
        }

    def reset_period(self) -> PeriodSnapshot:
        return self.ctx.ledger.reset_period()
