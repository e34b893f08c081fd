"""Shared fixtures for Switchboard tests."""

from datetime import datetime, UTC
from typing import Iterable, Optional

import pytest

from switchboard.catalog import ModelCatalog
from switchboard.config import OrchestratorConfig
from switchboard.context import OrchestrationContext
from switchboard.orchestrator import Orchestrator
from switchboard.providers import ProviderClient, ProviderRegistry
from switchboard.schemas import ModelDescriptor, Provider


START = datetime(2026, 3, 10, 12, 0, tzinfo=UTC).timestamp()


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = START):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep that returns at once and remembers each delay."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# One model per provider keeps chain plans predictable
TEST_MODELS = (
    ModelDescriptor(
        model_id="alpha",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.001,
        output_cost_per_1k=0.002,
        context_window=100_000,
        rate_limit_per_minute=5,
        quality_score=0.8,
        specialties=("analytical-reasoning", "sales-insights"),
        direct_cost_per_1k=0.03,
    ),
    ModelDescriptor(
        model_id="bravo",
        provider=Provider.OPENAI,
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.04,
        context_window=100_000,
        quality_score=0.9,
        specialties=("strategic-analysis", "complex-reasoning"),
    ),
    ModelDescriptor(
        model_id="charlie",
        provider=Provider.GOOGLE,
        input_cost_per_1k=0.005,
        output_cost_per_1k=0.01,
        context_window=100_000,
        quality_score=0.85,
        specialties=("multilingual", "cultural-context"),
    ),
    ModelDescriptor(
        model_id="delta",
        provider=Provider.ANTHROPIC,
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        context_window=100_000,
        quality_score=0.8,
        specialties=("realtime", "speed"),
    ),
)


def build_orchestrator(
    clients: Iterable[ProviderClient],
    config: Optional[OrchestratorConfig] = None,
    clock: Optional[FakeClock] = None,
    sleep: Optional[RecordingSleep] = None,
    catalog: Optional[ModelCatalog] = None,
    store=None,
) -> Orchestrator:
    """Orchestrator over the given clients with fake time."""
    ctx = OrchestrationContext.create(
        config=config or OrchestratorConfig(),
        registry=ProviderRegistry(clients),
        catalog=catalog or ModelCatalog(TEST_MODELS),
        clock=clock or FakeClock(),
        sleep=sleep or RecordingSleep(),
        store=store,
    )
    return Orchestrator(ctx)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def catalog() -> ModelCatalog:
    return ModelCatalog(TEST_MODELS)
