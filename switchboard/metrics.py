"""
Request and provider metrics.

Counters are flat ``name -> int`` so they serialize straight into the status
snapshot. Per-provider tallies are fed both by completed outcomes and by
failure/skip events from the event bus, so a provider that never answered
still shows up with its failure count.
"""

import json
import logging
import statistics as stats
from collections import Counter, deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Iterable, Optional

from switchboard.events import Event, EventBus, EventType


@dataclass
class MetricRecord:
    kind: str
    request_id: str
    fields: dict[str, Any]
    at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass
class ProviderTally:
    """What one provider has done since the last reset."""
    served: int = 0
    failed: int = 0
    skipped: int = 0
    cost_usd: float = 0.0
    latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        attempted = self.served + self.failed
        return self.served / attempted if attempted else 0.0

    def to_dict(self) -> dict:
        return {
            "served": self.served,
            "failed": self.failed,
            "skipped": self.skipped,
            "cost_usd": self.cost_usd,
            "avg_latency_ms": self.latency_ms / self.served if self.served else 0.0,
            "success_rate": self.success_rate,
        }


class Series:
    """Bounded window of samples with summary helpers."""

    def __init__(self, size: int = 1000):
        self._values: deque[float] = deque(maxlen=size)
        self.total = 0.0

    def add(self, value: float) -> None:
        self._values.append(value)
        self.total += value

    def mean(self) -> float:
        return stats.mean(self._values) if self._values else 0.0

    def median(self) -> float:
        return stats.median(self._values) if self._values else 0.0

    def quantile(self, q: int) -> float:
        """q-th percentile (1-99)."""
        values = list(self._values)
        if len(values) < 2:
            return values[0] if values else 0.0
        return stats.quantiles(values, n=100, method="inclusive")[q - 1]

    def __len__(self) -> int:
        return len(self._values)


class MetricsCollector:
    """
    In-process metrics for the orchestrator.

    Keeps counters, latency/cost/quality windows, per-provider tallies and
    a bounded log of raw records. Records can also be appended to a JSONL
    file for offline analysis.
    """

    def __init__(
        self,
        metrics_file: Optional[Path] = None,
        enable_logging: bool = True,
        max_events: int = 10_000,
    ):
        self.metrics_file = Path(metrics_file) if metrics_file else None
        self.enable_logging = enable_logging
        self.logger = logging.getLogger(__name__)
        if enable_logging and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

        self._max_events = max_events
        self._init_state()

    def _init_state(self) -> None:
        self._records: deque[MetricRecord] = deque(maxlen=self._max_events)
        self._counters: Counter[str] = Counter()
        self._providers: dict[str, ProviderTally] = {}
        self._cost = Series()
        self._latency = Series()
        self._quality = Series()
        self._synthesis_times = Series(size=50)
        self._synthesis_total = 0
        self._synthesis_ok = 0
        self._synthesis_models = 0.0
        self._synthesis_quality = 0.0

    def attach(self, bus: EventBus) -> None:
        """Count provider failures and skips as the fallback chain publishes them."""
        bus.subscribe(
            self._on_provider_event,
            types=[EventType.PROVIDER_FAILURE, EventType.PROVIDER_SKIPPED],
        )

    def _on_provider_event(self, event: Event) -> None:
        provider = event.data.get("provider", "unknown")
        tally = self._tally(provider)
        if event.type is EventType.PROVIDER_FAILURE:
            tally.failed += 1
            self._counters[f"failures_by_provider_{provider}"] += 1
        else:
            tally.skipped += 1
            self._counters[f"skips_{event.data.get('reason', 'unknown')}"] += 1

    def _tally(self, provider: str) -> ProviderTally:
        if provider not in self._providers:
            self._providers[provider] = ProviderTally()
        return self._providers[provider]

    def record_request(self, request_id: str, task_type: str, content_length: int, **extra: Any) -> None:
        self._counters["requests_total"] += 1
        self._counters[f"requests_by_task_{task_type}"] += 1
        self._emit("request", request_id, task_type=task_type, content_length=content_length, **extra)

    def record_outcome(
        self,
        request_id: str,
        provider: str,
        model_id: str,
        cost: float,
        latency_ms: float,
        fallback_level: int,
        quality_score: float,
        **extra: Any,
    ) -> None:
        """
        Record a request that a provider served.

        ``fallback_level`` is the provider's position in the chain; anything
        above zero counts towards ``outcomes_fallback``.
        """
        self._counters.update([
            "outcomes_total",
            f"outcomes_by_provider_{provider}",
            f"outcomes_by_model_{model_id}",
        ])
        if fallback_level > 0:
            self._counters["outcomes_fallback"] += 1

        tally = self._tally(provider)
        tally.served += 1
        tally.cost_usd += cost
        tally.latency_ms += latency_ms

        self._cost.add(cost)
        self._latency.add(latency_ms)
        self._quality.add(quality_score)
        self._emit(
            "outcome", request_id,
            provider=provider, model_id=model_id, cost_usd=cost, latency_ms=latency_ms,
            fallback_level=fallback_level, quality_score=quality_score, **extra,
        )

    def record_error(self, request_id: str, error_type: str, error_message: str, **extra: Any) -> None:
        self._counters["errors_total"] += 1
        self._counters[f"errors_{error_type}"] += 1
        self._emit("error", request_id, level=logging.ERROR,
                   error_type=error_type, error_message=error_message, **extra)

    def record_synthesis(
        self,
        request_id: str,
        models_used: int,
        quality_score: float,
        response_time_ms: float,
        success: bool,
        **extra: Any,
    ) -> None:
        """Failed runs count towards the total but not the running averages."""
        self._synthesis_total += 1
        self._synthesis_times.add(response_time_ms)
        if success:
            self._synthesis_ok += 1
            self._synthesis_models += (models_used - self._synthesis_models) / self._synthesis_ok
            self._synthesis_quality += (quality_score - self._synthesis_quality) / self._synthesis_ok
        self._emit(
            "synthesis", request_id,
            models_used=models_used, quality_score=quality_score,
            response_time_ms=response_time_ms, success=success, **extra,
        )

    def _emit(self, kind: str, request_id: str, level: int = logging.INFO, **fields: Any) -> None:
        record = MetricRecord(kind=kind, request_id=request_id, fields=fields)
        self._records.append(record)
        if self.metrics_file is not None:
            with self.metrics_file.open("a") as f:
                f.write(json.dumps(asdict(record), default=str) + "\n")
        if self.enable_logging:
            self.logger.log(level, "%s %s %s", kind, request_id, fields)

    def recent(self, kinds: Optional[Iterable[str]] = None, limit: int = 100) -> list[MetricRecord]:
        """Most recent raw records, newest last."""
        wanted = set(kinds) if kinds else None
        matching = [r for r in self._records if wanted is None or r.kind in wanted]
        return matching[-limit:]

    def synthesis_stats(self) -> dict:
        return {
            "total": self._synthesis_total,
            "successful": self._synthesis_ok,
            "average_models_used": self._synthesis_models,
            "average_quality": self._synthesis_quality,
            "average_response_time_ms": self._synthesis_times.mean(),
        }

    def get_stats(self) -> dict:
        return {
            "counters": dict(self._counters),
            "providers": {name: t.to_dict() for name, t in sorted(self._providers.items())},
            "cost": {
                "total_usd": self._cost.total,
                "avg_usd": self._cost.mean(),
                "p50_usd": self._cost.median(),
                "p95_usd": self._cost.quantile(95),
            },
            "latency": {
                "avg_ms": self._latency.mean(),
                "p50_ms": self._latency.median(),
                "p95_ms": self._latency.quantile(95),
                "p99_ms": self._latency.quantile(99),
            },
            "quality": {"avg": self._quality.mean()},
            "synthesis": self.synthesis_stats(),
            "total_events": len(self._records),
        }

    def reset(self) -> None:
        self._init_state()
