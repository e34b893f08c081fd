"""
Basic usage examples for Switchboard.

Runs against mock providers, so no API keys are needed.
"""

import asyncio

from switchboard import (
    EventType,
    MockProvider,
    Orchestrator,
    OrchestrationContext,
    Provider,
    ProviderAuthError,
    ProviderRegistry,
    RequestContext,
    RequestOptions,
    TaskType,
    ValidationError,
)


def build(registry: ProviderRegistry) -> Orchestrator:
    return Orchestrator(OrchestrationContext.create(registry=registry))


async def example_basic():
    """Single request, context derived from the prompt."""
    print("=" * 60)
    print("Example 1: Basic Usage")
    print("=" * 60)

    orchestrator = build(ProviderRegistry([MockProvider(p) for p in Provider]))
    result = await orchestrator.process(None, "Summarize the pricing objections in this deal")

    print(f"Provider: {result.provider.value}")
    print(f"Model: {result.model}")
    print(f"Cost: ${result.cost:.6f}")
    print(f"Quality: {result.quality_score:.2f}")
    print()


async def example_fallback():
    """A rejected key on the first provider falls through to the next."""
    print("=" * 60)
    print("Example 2: Fallback")
    print("=" * 60)

    clients = [MockProvider(p) for p in Provider]
    clients[0] = MockProvider(
        Provider.AIMLAPI, error=ProviderAuthError(Provider.AIMLAPI, "invalid key", 401),
    )
    orchestrator = build(ProviderRegistry(clients))
    result = await orchestrator.process(RequestContext(task_type=TaskType.TECHNICAL), "Review this schema")

    print(f"Served by {result.provider.value} at fallback level {result.fallback_level}")
    for attempt in result.attempts:
        print(f"  {attempt.provider.value:10} {attempt.outcome:8} {attempt.reason or ''}")
    print()


async def example_synthesis():
    """Several models answer and their outputs are fused."""
    print("=" * 60)
    print("Example 3: Multi-model Synthesis")
    print("=" * 60)

    orchestrator = build(ProviderRegistry([MockProvider(p) for p in Provider]))
    result = await orchestrator.synthesize(
        RequestContext(task_type=TaskType.EXECUTIVE), "Should we enter the APAC market next year?",
    )

    print(f"Method: {result.method.value}")
    print(f"Models: {', '.join(result.models_used)}")
    print(f"Overall quality: {result.assessment.overall_score:.2f}")
    print()


async def example_events_and_budget():
    """Subscribe to events and read the ledger."""
    print("=" * 60)
    print("Example 4: Events and Budget")
    print("=" * 60)

    orchestrator = build(ProviderRegistry([MockProvider(p) for p in Provider]))
    orchestrator.ctx.events.subscribe(
        lambda event: print(f"  event: {event.type.value} {event.data.get('model')}"),
        types=[EventType.PROVIDER_SUCCESS],
    )
    for _ in range(3):
        await orchestrator.process(None, "Draft the weekly team status update")

    report = orchestrator.ctx.ledger.get_report()
    print(f"Spent ${report.spent:.6f} over {report.requests} requests")
    print()


async def example_validation():
    """Bad input is rejected before any provider is called."""
    print("=" * 60)
    print("Example 5: Validation")
    print("=" * 60)

    orchestrator = build(ProviderRegistry([MockProvider(p) for p in Provider]))
    try:
        await orchestrator.process(None, "Hello", RequestOptions(temperature=3.0))
    except ValidationError as exc:
        print(f"Rejected: {exc}")
    print()


async def main():
    await example_basic()
    await example_fallback()
    await example_synthesis()
    await example_events_and_budget()
    await example_validation()


if __name__ == "__main__":
    asyncio.run(main())
