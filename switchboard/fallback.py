"""
Fallback chain for Switchboard.

Walks providers in their declared order until one answers. Each provider
gets a bounded retry loop for transient errors under a single timeout;
auth and permanent errors move straight on to the next provider.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from switchboard.classifier import estimate_tokens
from switchboard.config import ProviderSettings
from switchboard.context import OrchestrationContext
from switchboard.events import EventType
from switchboard.prompts import build_system_prompt
from switchboard.providers import (
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderTransientError,
    translate_error,
)
from switchboard.quality import score_response
from switchboard.rate_limiter import RateLimitExceededError
from switchboard.schemas import (
    AttemptRecord,
    ModelDescriptor,
    OrchestrationResult,
    Provider,
    ProviderResponse,
    RequestContext,
    RequestOptions,
)
from switchboard.selector import ModelSelector, NoEligibleModelError, Selection


logger = logging.getLogger(__name__)


class AllProvidersFailedError(Exception):
    """Raised when every provider in the chain failed or was skipped."""

    def __init__(self, last_error: Optional[BaseException], attempts: list[AttemptRecord]):
        self.last_error = last_error
        self.attempts = attempts
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"All {len(attempts)} providers failed{detail}")


@dataclass
class PlannedAttempt:
    """One provider slot in the chain with the model chosen for it."""
    provider: Provider
    model: ModelDescriptor
    fallback_level: int
    selection: Optional[Selection] = None


class FallbackOrchestrator:
    """
    Runs one request through the provider chain.

    Models are chosen for every provider before any of them is contacted,
    so a request that cannot be served anywhere fails without network
    traffic. Providers are then tried strictly in order and the first
    success wins.
    """

    def __init__(self, ctx: OrchestrationContext, selector: Optional[ModelSelector] = None):
        self.ctx = ctx
        self.selector = selector or ModelSelector(
            ctx.catalog,
            optimization_enabled=ctx.config.optimization_enabled,
            default_strategy=ctx.config.default_strategy,
        )

    def estimate_tokens(self, content: str, options: RequestOptions) -> int:
        """Prompt tokens plus the expected completion."""
        prompt = (options.system_prompt or "") + content
        return estimate_tokens(prompt) + options.expected_output_tokens

    def chain(self, options: RequestOptions) -> list[Provider]:
        """Providers to try, in order."""
        order = list(self.ctx.config.provider_order)
        if not options.model:
            return order
        pinned = self.ctx.catalog.provider_of(options.model)
        if pinned is None:
            return []
        if not options.allow_fallback:
            return [pinned]
        return [pinned] + [p for p in order if p != pinned]

    def plan(
        self,
        context: RequestContext,
        content: str,
        options: RequestOptions,
    ) -> tuple[list[PlannedAttempt], list[AttemptRecord]]:
        """
        Choose a model for every provider in the chain.

        Returns:
            The planned attempts and a record for every provider skipped
            while planning.

        Raises:
            RateLimitExceededError: If every configured provider is over quota.
            NoEligibleModelError: If no configured provider has a usable model.
        """
        tokens = self.estimate_tokens(content, options)
        utilization = self.ctx.ledger.get_budget_utilization()
        planned: list[PlannedAttempt] = []
        skipped: list[AttemptRecord] = []
        limited_models: list[str] = []
        filter_reasons: dict[str, str] = {}
        configured = 0

        for level, provider in enumerate(self.chain(options)):
            if provider not in self.ctx.registry:
                skipped.append(AttemptRecord(provider, None, "skipped", "not_configured"))
                continue
            configured += 1

            if options.model and provider == self.ctx.catalog.provider_of(options.model):
                candidates = [options.model]
            else:
                candidates = [m.model_id for m in self.ctx.catalog.models_for(provider)]

            available = self.ctx.rate_limiter.available(candidates)
            if not available:
                limited_models.extend(candidates)
                skipped.append(AttemptRecord(provider, None, "skipped", "rate_limited"))
                continue

            try:
                selection = self.selector.rank(context, available, tokens, utilization)
            except NoEligibleModelError as exc:
                filter_reasons.update(exc.filter_reasons)
                skipped.append(AttemptRecord(provider, None, "skipped", "no_eligible_model"))
                continue

            planned.append(PlannedAttempt(
                provider=provider,
                model=self.ctx.catalog[selection.model_id],
                fallback_level=level,
                selection=selection,
            ))

        if planned or configured == 0:
            return planned, skipped

        if limited_models and not filter_reasons:
            raise RateLimitExceededError(limited_models)
        raise NoEligibleModelError(
            f"No eligible model for ~{tokens:,} tokens on any configured provider",
            filter_reasons,
        )

    async def process(
        self,
        context: RequestContext,
        content: str,
        options: Optional[RequestOptions] = None,
    ) -> OrchestrationResult:
        """
        Serve ``content`` from the first provider that answers.

        Raises:
            RateLimitExceededError: Nothing could be planned because of quotas.
            NoEligibleModelError: Nothing could be planned otherwise.
            AllProvidersFailedError: Every planned provider failed or was skipped.
        """
        options = options or RequestOptions()
        planned, attempts = self.plan(context, content, options)
        last_error: Optional[BaseException] = None
        started = self.ctx.clock()

        for slot in planned:
            provider, model = slot.provider, slot.model

            reason = self.ctx.health.skip_reason(provider)
            if reason is None and not self.ctx.rate_limiter.allow(model.model_id):
                reason = "rate_limited"
            if reason is None:
                reason = self.ctx.health.acquire(provider)
            if reason is not None:
                logger.warning("Skipping %s (%s)", provider.value, reason)
                attempts.append(AttemptRecord(provider, model.model_id, "skipped", reason))
                self.ctx.events.publish(
                    EventType.PROVIDER_SKIPPED,
                    request_id=context.request_id,
                    provider=provider.value,
                    model=model.model_id,
                    reason=reason,
                )
                continue

            if slot.selection is not None:
                logger.info("Trying %s/%s: %s", provider.value, model.model_id, slot.selection.why)
                self.ctx.events.publish(
                    EventType.MODEL_SELECTED,
                    request_id=context.request_id,
                    provider=provider.value,
                    model=model.model_id,
                    strategy=slot.selection.strategy.name,
                    fallback_level=slot.fallback_level,
                )

            system_prompt = options.system_prompt or build_system_prompt(model, context)
            self.ctx.rate_limiter.record(model.model_id)
            attempt_started = self.ctx.clock()
            try:
                response = await self._send_with_retries(slot, system_prompt, content, options)
            except asyncio.CancelledError:
                self.ctx.health.release(provider)
                raise
            except ProviderError as exc:
                elapsed_ms = (self.ctx.clock() - attempt_started) * 1000
                last_error = exc
                self.ctx.health.record_failure(provider, exc)
                attempts.append(AttemptRecord(
                    provider, model.model_id, "failure",
                    reason=type(exc).__name__, error=str(exc), response_time_ms=elapsed_ms,
                ))
                logger.warning("Provider %s failed: %s", provider.value, exc)
                self.ctx.events.publish(
                    EventType.PROVIDER_FAILURE,
                    request_id=context.request_id,
                    provider=provider.value,
                    model=model.model_id,
                    error=str(exc),
                    status_code=exc.status_code,
                )
                continue

            latency_ms = (self.ctx.clock() - attempt_started) * 1000
            self.ctx.health.record_success(provider, latency_ms)
            attempts.append(AttemptRecord(
                provider, model.model_id, "success", response_time_ms=latency_ms,
            ))
            return self._finish(context, slot, response, attempts, started)

        logger.error(
            "All providers failed for request %s (%d attempts)",
            context.request_id, len(attempts),
        )
        self.ctx.events.publish(
            EventType.ALL_PROVIDERS_FAILED,
            request_id=context.request_id,
            attempts=len(attempts),
            last_error=str(last_error) if last_error else None,
        )
        raise AllProvidersFailedError(last_error, attempts)

    def _finish(
        self,
        context: RequestContext,
        slot: PlannedAttempt,
        response: ProviderResponse,
        attempts: list[AttemptRecord],
        started: float,
    ) -> OrchestrationResult:
        model = slot.model
        cost = model.estimate_cost(response.usage.prompt_tokens, response.usage.completion_tokens)
        alert = self.ctx.ledger.track_cost(model.model_id, response.usage, cost, context.category)
        quality = score_response(response.text, context)
        elapsed_ms = (self.ctx.clock() - started) * 1000

        logger.info(
            "Served by %s/%s at level %d: $%.4f, %.0fms",
            slot.provider.value, model.model_id, slot.fallback_level, cost, elapsed_ms,
        )
        self.ctx.events.publish(
            EventType.PROVIDER_SUCCESS,
            request_id=context.request_id,
            provider=slot.provider.value,
            model=model.model_id,
            cost=cost,
            fallback_level=slot.fallback_level,
            response_time_ms=elapsed_ms,
        )
        return OrchestrationResult(
            content=response.text,
            usage=response.usage,
            model=model.model_id,
            provider=slot.provider,
            cost=cost,
            quality_score=quality,
            fallback_level=slot.fallback_level,
            response_time_ms=elapsed_ms,
            request_id=context.request_id,
            attempts=attempts,
            budget_alert=alert.level if alert else None,
        )

    async def _send_with_retries(
        self,
        slot: PlannedAttempt,
        system_prompt: Optional[str],
        content: str,
        options: RequestOptions,
    ) -> ProviderResponse:
        """One provider attempt: retries for transient errors under one timeout."""
        settings = self.ctx.config.settings_for(slot.provider)
        timeout = options.timeout_s or settings.timeout_s
        deadline = asyncio.get_running_loop().time() + timeout
        try:
            return await asyncio.wait_for(
                self._retry_loop(slot, system_prompt, content, options, settings, deadline),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProviderTimeoutError(
                slot.provider, f"no response within {timeout:g}s"
            ) from exc

    async def _retry_loop(
        self,
        slot: PlannedAttempt,
        system_prompt: Optional[str],
        content: str,
        options: RequestOptions,
        settings: ProviderSettings,
        deadline: float,
    ) -> ProviderResponse:
        """Retries that could not start before ``deadline`` fail over at once."""
        loop = asyncio.get_running_loop()
        client = self.ctx.registry.get(slot.provider)
        if client is None:
            raise ProviderError(slot.provider, "no client registered")

        for attempt in range(1, settings.max_attempts + 1):
            try:
                return await client.send(
                    slot.model,
                    system_prompt,
                    content,
                    max_tokens=options.max_tokens,
                    temperature=options.temperature,
                )
            except ProviderAuthError:
                raise
            except ProviderTransientError as exc:
                if attempt >= settings.max_attempts:
                    raise
                delay = self._retry_delay(exc, attempt, settings)
                if delay >= deadline - loop.time():
                    logger.debug(
                        "Not retrying %s: %.2fs wait outlasts the timeout", slot.provider.value, delay,
                    )
                    raise
                logger.debug(
                    "Retrying %s in %.2fs (attempt %d/%d): %s",
                    slot.provider.value, delay, attempt, settings.max_attempts, exc,
                )
                await self.ctx.sleep(delay)
            except ProviderError:
                raise
            except Exception as exc:
                error = translate_error(slot.provider, exc)
                if not isinstance(error, ProviderTransientError) or attempt >= settings.max_attempts:
                    logger.warning(
                        "Unexpected error from %s", slot.provider.value, exc_info=True,
                    )
                    raise error from exc
                delay = self._retry_delay(error, attempt, settings)
                if delay >= deadline - loop.time():
                    raise error from exc
                await self.ctx.sleep(delay)

        raise ProviderError(slot.provider, "retry loop exhausted")

    def _retry_delay(
        self, exc: ProviderTransientError, attempt: int, settings: ProviderSettings
    ) -> float:
        if isinstance(exc, ProviderRateLimitError) and exc.retry_after is not None:
            return min(exc.retry_after, settings.retry_max_delay_s)
        return settings.backoff(attempt)
