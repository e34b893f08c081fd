"""Tests for the metrics collector."""

import json

import pytest

from switchboard.events import EventBus, EventType
from switchboard.metrics import MetricsCollector, Series
from switchboard.providers import MockProvider, ProviderError
from switchboard.schemas import Provider, RequestContext

from conftest import build_orchestrator


class TestCollector:

    def setup_method(self):
        self.metrics = MetricsCollector(enable_logging=False)

    def test_outcome_counters(self):
        self.metrics.record_request("r1", "sales", 120)
        self.metrics.record_outcome("r1", "openai", "bravo", 0.02, 300.0, 1, 0.8)

        stats = self.metrics.get_stats()
        assert stats["counters"]["requests_by_task_sales"] == 1
        assert stats["counters"]["outcomes_by_model_bravo"] == 1
        assert stats["counters"]["outcomes_fallback"] == 1
        assert stats["cost"]["total_usd"] == pytest.approx(0.02)
        assert stats["providers"]["openai"]["served"] == 1
        assert stats["providers"]["openai"]["avg_latency_ms"] == 300.0

    def test_synthesis_averages_skip_failures(self):
        self.metrics.record_synthesis("a", 3, 0.9, 100.0, success=True)
        self.metrics.record_synthesis("b", 0, 0.0, 50.0, success=False)
        self.metrics.record_synthesis("c", 2, 0.7, 150.0, success=True)

        stats = self.metrics.synthesis_stats()
        assert stats["total"] == 3
        assert stats["successful"] == 2
        assert stats["average_models_used"] == pytest.approx(2.5)
        assert stats["average_quality"] == pytest.approx(0.8)
        assert stats["average_response_time_ms"] == pytest.approx(100.0)

    def test_provider_events_counted(self):
        bus = EventBus()
        self.metrics.attach(bus)
        bus.publish(EventType.PROVIDER_FAILURE, provider="google", error="boom")
        bus.publish(EventType.PROVIDER_SKIPPED, provider="google", reason="circuit_open")

        stats = self.metrics.get_stats()
        assert stats["counters"]["failures_by_provider_google"] == 1
        assert stats["counters"]["skips_circuit_open"] == 1
        assert stats["providers"]["google"]["success_rate"] == 0.0
        assert stats["providers"]["google"]["skipped"] == 1

    def test_recent_filters_by_kind(self):
        self.metrics.record_request("r1", "general", 10)
        self.metrics.record_error("r1", "ValidationError", "empty")

        [record] = self.metrics.recent(["error"])
        assert record.fields["error_type"] == "ValidationError"
        assert len(self.metrics.recent()) == 2

    def test_reset(self):
        self.metrics.record_request("r1", "general", 10)
        self.metrics.reset()
        stats = self.metrics.get_stats()
        assert stats["counters"] == {}
        assert stats["total_events"] == 0

    def test_jsonl_file(self, tmp_path):
        path = tmp_path / "metrics.jsonl"
        metrics = MetricsCollector(metrics_file=path, enable_logging=False)
        metrics.record_request("r1", "general", 10)
        metrics.record_error("r1", "AllProvidersFailedError", "nothing answered")

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert [line["kind"] for line in lines] == ["request", "error"]
        assert lines[1]["fields"]["error_message"] == "nothing answered"


def test_series_quantiles():
    series = Series()
    assert series.quantile(95) == 0.0
    for value in range(1, 101):
        series.add(float(value))
    assert series.median() == pytest.approx(50.5)
    assert series.quantile(95) == pytest.approx(95.05)
    assert series.total == 5050.0


@pytest.mark.asyncio
async def test_fallback_feeds_provider_tallies():
    clients = [MockProvider(p) for p in Provider]
    clients[0] = MockProvider(Provider.AIMLAPI, error=ProviderError(Provider.AIMLAPI, "bad request", 400))
    orchestrator = build_orchestrator(clients)

    await orchestrator.process(RequestContext(), "Review the pricing in this deal")

    stats = orchestrator.ctx.metrics.get_stats()
    assert stats["counters"]["failures_by_provider_aimlapi"] == 1
    assert stats["counters"]["outcomes_by_provider_openai"] == 1
    assert stats["counters"]["outcomes_fallback"] == 1
    assert stats["providers"]["openai"]["success_rate"] == 1.0
