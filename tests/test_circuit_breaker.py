"""Tests for provider health and circuit breaking."""

from switchboard.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitState,
    HealthMonitor,
    HealthStatus,
)
from switchboard.events import EventBus, EventType
from switchboard.schemas import Provider

from conftest import FakeClock


class TestCircuitBreaker:
    """Test breaker transitions."""

    def setup_method(self):
        self.clock = FakeClock()
        self.events = EventBus(clock=self.clock)
        self.monitor = HealthMonitor(
            [Provider.AIMLAPI, Provider.OPENAI],
            CircuitBreakerConfig(failure_threshold=3, recovery_threshold=2, open_timeout_s=60),
            clock=self.clock,
            events=self.events,
        )

    def _fail(self, times: int, provider: Provider = Provider.AIMLAPI) -> None:
        for _ in range(times):
            self.monitor.record_failure(provider, "HTTP 500")

    def test_opens_after_threshold(self):
        """Three consecutive failures open the breaker."""
        self._fail(2)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is False

        self._fail(1)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is True
        assert self.monitor.skip_reason(Provider.AIMLAPI) == "circuit_open"
        assert self.monitor.get(Provider.AIMLAPI).state == CircuitState.OPEN

        opened = self.events.drain([EventType.CIRCUIT_OPENED])
        assert len(opened) == 1
        assert opened[0].data["provider"] == "aimlapi"

    def test_other_providers_unaffected(self):
        self._fail(3)
        assert self.monitor.is_circuit_open(Provider.OPENAI) is False
        assert self.monitor.skip_reason(Provider.OPENAI) is None

    def test_success_decrements_failures(self):
        """Successes pay down the failure counter."""
        self._fail(2)
        self.monitor.record_success(Provider.AIMLAPI, 120.0)
        self._fail(1)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is False
        assert self.monitor.get(Provider.AIMLAPI).failures == 2

    def test_half_open_after_timeout(self):
        """After the timeout the breaker lets one probe through."""
        self._fail(3)

        self.clock.advance(60)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is True

        self.clock.advance(1)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is False
        assert self.monitor.get(Provider.AIMLAPI).state == CircuitState.HALF_OPEN
        assert self.monitor.skip_reason(Provider.AIMLAPI) is None

    def test_probe_success_closes(self):
        """A successful probe closes the breaker and clears history."""
        self._fail(3)
        self.clock.advance(61)
        assert self.monitor.skip_reason(Provider.AIMLAPI) is None

        self.monitor.record_success(Provider.AIMLAPI, 80.0)
        health = self.monitor.get(Provider.AIMLAPI)
        assert health.state == CircuitState.CLOSED
        assert health.failures == 0
        assert health.success_rate == 1.0
        assert self.events.drain([EventType.CIRCUIT_CLOSED])

    def test_probe_failure_reopens(self):
        """A failed probe reopens the breaker for another full timeout."""
        self._fail(3)
        self.clock.advance(61)
        assert self.monitor.skip_reason(Provider.AIMLAPI) is None

        self._fail(1)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is True

        self.clock.advance(30)
        assert self.monitor.is_circuit_open(Provider.AIMLAPI) is True
        assert len(self.events.drain([EventType.CIRCUIT_OPENED])) == 2

    def test_degraded_success_rate_opens(self):
        """A sustained low success rate opens the breaker without a failure streak."""
        monitor = HealthMonitor(
            [Provider.AIMLAPI],
            CircuitBreakerConfig(failure_threshold=100, min_requests=10, min_success_rate=0.5),
            clock=self.clock,
        )
        for _ in range(4):
            monitor.record_success(Provider.AIMLAPI, 10.0)
        for _ in range(7):
            monitor.record_failure(Provider.AIMLAPI, "boom")
            monitor.record_success(Provider.AIMLAPI, 10.0)
            monitor.record_failure(Provider.AIMLAPI, "boom")
            if monitor.is_circuit_open(Provider.AIMLAPI):
                break

        health = monitor.get(Provider.AIMLAPI)
        assert health.circuit_open is True
        assert health.status == HealthStatus.UNHEALTHY

    def test_disabled_breaker_never_blocks(self):
        monitor = HealthMonitor(
            [Provider.AIMLAPI], CircuitBreakerConfig(enabled=False), clock=self.clock,
        )
        for _ in range(5):
            monitor.record_failure(Provider.AIMLAPI, "boom")
        assert monitor.is_circuit_open(Provider.AIMLAPI) is False

    def test_force_and_reset(self):
        """Operators can open a breaker by hand and clear it again."""
        self.monitor.force_circuit(Provider.OPENAI, True)
        assert self.monitor.is_circuit_open(Provider.OPENAI) is True

        self.monitor.force_circuit(Provider.OPENAI, False)
        assert self.monitor.is_circuit_open(Provider.OPENAI) is False

        self._fail(3)
        self.monitor.reset(Provider.AIMLAPI)
        health = self.monitor.get(Provider.AIMLAPI)
        assert health.failures == 0
        assert health.total_requests == 0
        assert health.state == CircuitState.CLOSED

    def test_snapshot(self):
        """Snapshots are keyed by provider name."""
        self.monitor.record_success(Provider.AIMLAPI, 100.0)
        self.monitor.record_success(Provider.AIMLAPI, 300.0)
        snapshot = self.monitor.snapshot()

        assert set(snapshot) == {"aimlapi", "openai"}
        assert snapshot["aimlapi"]["average_latency_ms"] == 200.0
        assert snapshot["aimlapi"]["circuit_state"] == "closed"
        assert snapshot["aimlapi"]["successes"] == 2


class TestProbeClaim:
    """Test that only one caller holds the half-open probe."""

    def setup_method(self):
        self.clock = FakeClock()
        self.monitor = HealthMonitor([Provider.AIMLAPI], clock=self.clock)
        self.monitor.force_circuit(Provider.AIMLAPI, True)
        self.clock.advance(61)

    def test_second_caller_is_turned_away(self):
        assert self.monitor.acquire(Provider.AIMLAPI) is None
        assert self.monitor.acquire(Provider.AIMLAPI) == "probe_in_flight"
        assert self.monitor.skip_reason(Provider.AIMLAPI) == "probe_in_flight"
        assert self.monitor.snapshot()["aimlapi"]["probe_in_flight"] is True

    def test_outcome_gives_up_the_claim(self):
        self.monitor.acquire(Provider.AIMLAPI)
        self.monitor.record_failure(Provider.AIMLAPI, "HTTP 502")
        assert self.monitor.skip_reason(Provider.AIMLAPI) == "circuit_open"

        self.clock.advance(61)
        self.monitor.acquire(Provider.AIMLAPI)
        self.monitor.record_success(Provider.AIMLAPI, 50.0)
        assert self.monitor.get(Provider.AIMLAPI).state == CircuitState.CLOSED
        assert self.monitor.acquire(Provider.AIMLAPI) is None
        assert self.monitor.acquire(Provider.AIMLAPI) is None

    def test_release_keeps_breaker_half_open(self):
        self.monitor.acquire(Provider.AIMLAPI)
        self.monitor.release(Provider.AIMLAPI)

        assert self.monitor.get(Provider.AIMLAPI).state == CircuitState.HALF_OPEN
        assert self.monitor.acquire(Provider.AIMLAPI) is None
