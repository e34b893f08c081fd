"""
Shared runtime state for Switchboard.

One ``OrchestrationContext`` owns the catalog, ledger, health monitor,
rate limiter, event bus and provider registry. Components receive it
explicitly instead of reaching for module globals.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from switchboard.catalog import ModelCatalog, get_default_catalog
from switchboard.circuit_breaker import HealthMonitor
from switchboard.config import OrchestratorConfig
from switchboard.cost_ledger import CostLedger
from switchboard.events import EventBus
from switchboard.metrics import MetricsCollector
from switchboard.providers import ProviderRegistry
from switchboard.rate_limiter import RateLimiter
from switchboard.storage import LedgerStore


@dataclass
class OrchestrationContext:
    config: OrchestratorConfig
    catalog: ModelCatalog
    registry: ProviderRegistry
    events: EventBus
    ledger: CostLedger
    health: HealthMonitor
    rate_limiter: RateLimiter
    metrics: MetricsCollector
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    @classmethod
    def create(
        cls,
        config: Optional[OrchestratorConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        catalog: Optional[ModelCatalog] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        store: Optional[LedgerStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "OrchestrationContext":
        """
        Wire up every component from one configuration.

        Args:
            config: Defaults to ``OrchestratorConfig()``.
            registry: Provider clients. Defaults to an empty registry.
            catalog: Defaults to the built-in model catalog.
            clock: Epoch-seconds time source shared by all components.
            sleep: Coroutine used for retry back-off.
            store: Where archived budget periods are persisted.
            metrics: Defaults to a collector with logging disabled.
        """
        config = config or OrchestratorConfig()
        catalog = catalog or get_default_catalog()
        clock = clock or time.time
        events = EventBus(clock=clock)

        # Catalog quotas first, explicit overrides win
        limits = {m.model_id: m.rate_limit_per_minute for m in catalog.values()}
        limits.update(config.rate_limits)

        metrics = metrics or MetricsCollector(enable_logging=False)
        metrics.attach(events)

        return cls(
            config=config,
            catalog=catalog,
            registry=registry or ProviderRegistry(),
            events=events,
            ledger=CostLedger(catalog, config.budget, clock=clock, events=events, store=store),
            health=HealthMonitor(
                config.provider_order, config.circuit_breaker, clock=clock, events=events,
            ),
            rate_limiter=RateLimiter(limits, default_limit=config.default_rate_limit, clock=clock),
            metrics=metrics,
            clock=clock,
            sleep=sleep or asyncio.sleep,
        )
