"""
Provider health and circuit breaking for Switchboard.

Tracks every provider's recent outcomes and latency, and temporarily
takes a provider out of the fallback chain after repeated failures.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from threading import RLock
from typing import Callable, Iterable, Optional

from switchboard.events import EventBus, EventType
from switchboard.schemas import Provider


logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # One probe allowed through


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 3  # Failures before opening
    recovery_threshold: int = 2  # Close again once failures fall to this
    open_timeout_s: float = 60.0  # Time before a probe is let through
    enabled: bool = True
    min_requests: int = 10  # Requests before the success-rate gate applies
    min_success_rate: float = 0.5
    window_size: int = 50  # Rolling window for latency and success rate


@dataclass
class ProviderHealth:
    """Live health record for one provider."""
    provider: Provider
    window_size: int = 50
    status: HealthStatus = HealthStatus.HEALTHY
    failures: int = 0
    successes: int = 0
    total_requests: int = 0
    circuit_open: bool = False
    opened_at: Optional[float] = None
    probing: bool = False
    probe_in_flight: bool = False
    last_failure: Optional[float] = None
    last_error: Optional[str] = None
    latencies_ms: deque = field(default_factory=deque)
    outcomes: deque = field(default_factory=deque)

    def __post_init__(self):
        self.latencies_ms = deque(self.latencies_ms, maxlen=self.window_size)
        self.outcomes = deque(self.outcomes, maxlen=self.window_size)

    @property
    def success_rate(self) -> float:
        """Share of successes over the rolling window."""
        if not self.outcomes:
            return 1.0
        return sum(1 for ok in self.outcomes if ok) / len(self.outcomes)

    @property
    def average_latency_ms(self) -> float:
        if not self.latencies_ms:
            return 0.0
        return sum(self.latencies_ms) / len(self.latencies_ms)

    @property
    def state(self) -> CircuitState:
        if self.circuit_open:
            return CircuitState.OPEN
        if self.probing:
            return CircuitState.HALF_OPEN
        return CircuitState.CLOSED

    def to_dict(self) -> dict:
        return {
            "provider": self.provider.value,
            "status": self.status.value,
            "circuit_state": self.state.value,
            "probe_in_flight": self.probe_in_flight,
            "failures": self.failures,
            "successes": self.successes,
            "total_requests": self.total_requests,
            "success_rate": self.success_rate,
            "average_latency_ms": self.average_latency_ms,
            "last_failure": self.last_failure,
            "last_error": self.last_error,
        }


class HealthMonitor:
    """
    Health records and circuit breakers for a fixed set of providers.

    A breaker opens once a provider's failure counter reaches
    ``failure_threshold`` or its rolling success rate drops below
    ``min_success_rate`` after ``min_requests`` calls. Successes decrement
    the counter. After ``open_timeout_s`` the breaker half-opens and lets
    exactly one probe through: success closes it and clears the rolling
    window, failure reopens it. Callers that intend to send use ``acquire``
    so only one of them holds the probe while the breaker is half-open.
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
        events: Optional[EventBus] = None,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._events = events
        self._lock = RLock()
        self._health: dict[Provider, ProviderHealth] = {
            p: ProviderHealth(provider=p, window_size=self.config.window_size)
            for p in providers
        }

    def _publish(self, event_type: EventType, **data) -> None:
        if self._events is not None:
            self._events.publish(event_type, **data)

    def _record(self, provider: Provider) -> ProviderHealth:
        health = self._health.get(provider)
        if health is None:
            health = ProviderHealth(provider=provider, window_size=self.config.window_size)
            self._health[provider] = health
        return health

    def _refresh(self, health: ProviderHealth, now: float) -> None:
        if (
            health.circuit_open
            and health.opened_at is not None
            and now - health.opened_at > self.config.open_timeout_s
        ):
            health.circuit_open = False
            health.probing = True
            logger.info("Circuit for %s half-open, allowing one probe", health.provider.value)

    def _passes_rate_gate(self, health: ProviderHealth) -> bool:
        return not (
            health.total_requests > self.config.min_requests
            and health.success_rate < self.config.min_success_rate
        )

    def _open(self, health: ProviderHealth, now: float, reason: str) -> None:
        health.circuit_open = True
        health.opened_at = now
        logger.warning(
            "Circuit opened for %s after %d failures (%s)",
            health.provider.value, health.failures, reason,
        )
        self._publish(
            EventType.CIRCUIT_OPENED,
            provider=health.provider.value,
            failures=health.failures,
            reason=reason,
        )

    def _close(self, health: ProviderHealth, reason: str) -> None:
        health.circuit_open = False
        health.opened_at = None
        health.probing = False
        health.probe_in_flight = False
        logger.info("Circuit closed for %s (%s)", health.provider.value, reason)
        self._publish(EventType.CIRCUIT_CLOSED, provider=health.provider.value, reason=reason)

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, provider: Provider) -> ProviderHealth:
        with self._lock:
            health = self._record(provider)
            self._refresh(health, self._clock())
            return health

    def is_circuit_open(self, provider: Provider) -> bool:
        """True while the breaker blocks ``provider``."""
        if not self.config.enabled:
            return False
        return self.get(provider).circuit_open

    def is_healthy(self, provider: Provider) -> bool:
        """False when the provider's sustained success rate is too low."""
        health = self.get(provider)
        if health.probing:
            return True
        return self._passes_rate_gate(health)

    def skip_reason(self, provider: Provider) -> Optional[str]:
        """Why ``provider`` must not be attempted now, or None."""
        with self._lock:
            health = self.get(provider)
            if self.config.enabled and health.circuit_open:
                return "circuit_open"
            if health.probing:
                return "probe_in_flight" if health.probe_in_flight else None
            if not self._passes_rate_gate(health):
                return "unhealthy"
            return None

    def acquire(self, provider: Provider) -> Optional[str]:
        """
        Like ``skip_reason``, but claims the probe when the breaker is half-open.

        The claim is given up by ``record_success``, ``record_failure`` or
        ``release``.
        """
        with self._lock:
            reason = self.skip_reason(provider)
            if reason is None:
                health = self._record(provider)
                if health.probing:
                    health.probe_in_flight = True
                    logger.info("Probe claimed for %s", provider.value)
            return reason

    def release(self, provider: Provider) -> None:
        """Give up a probe claim without an outcome, e.g. when the call was cancelled."""
        with self._lock:
            self._record(provider).probe_in_flight = False

    # =========================================================================
    # Updates
    # =========================================================================

    def record_success(self, provider: Provider, latency_ms: float) -> None:
        with self._lock:
            health = self._record(provider)
            health.probe_in_flight = False
            health.total_requests += 1
            health.successes += 1
            health.failures = max(0, health.failures - 1)
            health.latencies_ms.append(latency_ms)
            health.outcomes.append(True)

            if health.probing:
                health.failures = 0
                health.outcomes.clear()
                health.outcomes.append(True)
                self._close(health, "probe succeeded")
            elif health.circuit_open and health.failures <= self.config.recovery_threshold:
                self._close(health, "failures recovered")

            health.status = (
                HealthStatus.HEALTHY if self._passes_rate_gate(health) else HealthStatus.UNHEALTHY
            )

    def record_failure(self, provider: Provider, error: object) -> None:
        with self._lock:
            now = self._clock()
            health = self._record(provider)
            health.total_requests += 1
            health.failures += 1
            health.probe_in_flight = False
            health.outcomes.append(False)
            health.last_failure = now
            health.last_error = str(error)

            was_probe = health.probing
            health.probing = False
            degraded = not self._passes_rate_gate(health)
            tripped = health.failures >= self.config.failure_threshold

            if degraded or tripped:
                health.status = HealthStatus.UNHEALTHY

            if self.config.enabled and not health.circuit_open:
                if was_probe:
                    self._open(health, now, "probe failed")
                elif tripped:
                    self._open(health, now, "failure threshold")
                elif degraded:
                    self._open(health, now, "success rate")

    def force_circuit(self, provider: Provider, open_: bool) -> None:
        """Manually open or close a provider's breaker."""
        with self._lock:
            health = self._record(provider)
            if open_ and not health.circuit_open:
                self._open(health, self._clock(), "manual")
            elif not open_ and (health.circuit_open or health.probing):
                self._close(health, "manual")

    def reset(self, provider: Optional[Provider] = None) -> None:
        """
        Forget all history for one provider or every provider.

        Args:
            provider: Provider to reset, or None for all
        """
        with self._lock:
            targets = [provider] if provider else list(self._health)
            for p in targets:
                self._health[p] = ProviderHealth(provider=p, window_size=self.config.window_size)

    def snapshot(self) -> dict[str, dict]:
        with self._lock:
            now = self._clock()
            result = {}
            for provider, health in self._health.items():
                self._refresh(health, now)
                result[provider.value] = health.to_dict()
            return result
