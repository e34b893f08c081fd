"""
Cost ledger for Switchboard.

Authoritative record of spend for the current budget period:
- Totals by provider, category and model
- Budget utilization with info/warning/critical alerts
- Burn-rate projections and exhaustion date
- Savings against first-party provider prices
- Period archive and daily rollover
"""

import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, UTC
from threading import RLock
from typing import Callable, Optional, TYPE_CHECKING

from switchboard.catalog import ModelCatalog
from switchboard.events import EventBus, EventType
from switchboard.schemas import AlertLevel, CostCategory, Provider, UsageRecord

if TYPE_CHECKING:
    from switchboard.storage import LedgerStore


logger = logging.getLogger(__name__)


DEFAULT_DIRECT_COST_PER_1K = 0.03
EXPENSIVE_MODEL_COST_PER_1K = 0.02
PROJECTION_DAYS = 30

DEFAULT_CATEGORY_ALLOCATION: dict[CostCategory, float] = {
    CostCategory.REALTIME: 0.40,
    CostCategory.ANALYSIS: 0.35,
    CostCategory.MONITORING: 0.20,
    CostCategory.EXPERIMENTAL: 0.05,
}

_LEVEL_RANK = {AlertLevel.INFO: 1, AlertLevel.WARNING: 2, AlertLevel.CRITICAL: 3}


@dataclass
class BudgetConfig:
    """Budget configuration."""
    monthly_budget_usd: float = 5000.0
    info_threshold: float = 0.70
    warning_threshold: float = 0.85
    critical_threshold: float = 0.95
    enforcement_enabled: bool = False
    savings_target: float = 0.70
    history_size: int = 12  # Archived periods kept
    daily_history_size: int = 30
    auto_reset_period: bool = True  # Reset when the calendar month changes
    category_allocation: dict[CostCategory, float] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_ALLOCATION)
    )

    def __post_init__(self):
        if self.monthly_budget_usd <= 0:
            raise ValueError("monthly_budget_usd must be positive")
        if not (0 < self.info_threshold <= self.warning_threshold <= self.critical_threshold):
            raise ValueError("alert thresholds must satisfy 0 < info <= warning <= critical")

    def thresholds(self) -> list[tuple[AlertLevel, float]]:
        """Alert levels from highest to lowest."""
        return [
            (AlertLevel.CRITICAL, self.critical_threshold),
            (AlertLevel.WARNING, self.warning_threshold),
            (AlertLevel.INFO, self.info_threshold),
        ]


@dataclass
class ModelUsage:
    requests: int = 0
    cost: float = 0.0
    tokens: int = 0


@dataclass
class LedgerTotals:
    """Running totals for the current period."""
    total: float = 0.0
    daily: float = 0.0
    requests: int = 0
    savings: float = 0.0
    by_provider: dict[str, float] = field(
        default_factory=lambda: {p.value: 0.0 for p in Provider}
    )
    by_category: dict[str, float] = field(
        default_factory=lambda: {c.value: 0.0 for c in CostCategory}
    )
    by_model: dict[str, ModelUsage] = field(default_factory=dict)

    def copy(self) -> "LedgerTotals":
        return LedgerTotals(
            total=self.total,
            daily=self.daily,
            requests=self.requests,
            savings=self.savings,
            by_provider=dict(self.by_provider),
            by_category=dict(self.by_category),
            by_model={
                k: ModelUsage(v.requests, v.cost, v.tokens) for k, v in self.by_model.items()
            },
        )


@dataclass
class Projections:
    daily_burn: float = 0.0
    monthly_projection: float = 0.0
    days_elapsed: int = 1
    exhaustion_date: Optional[datetime] = None


@dataclass
class BudgetAlert:
    """Raised-threshold notification."""
    level: AlertLevel
    utilization: float
    spent: float
    budget: float
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PeriodSnapshot:
    """Archived totals of one closed budget period."""
    period_start: datetime
    period_end: datetime
    budget: float
    total: float
    requests: int
    savings: float
    by_provider: dict[str, float]
    by_category: dict[str, float]
    by_model: dict[str, float]

    @property
    def utilization(self) -> float:
        return self.total / self.budget if self.budget else 0.0


@dataclass
class DailySnapshot:
    day: date
    cost: float
    requests: int


@dataclass
class Recommendation:
    """Suggested change to spending behaviour."""
    kind: str  # budget, savings, models, categories
    priority: str  # high, medium, low
    title: str
    description: str
    action: str


@dataclass
class CostReport:
    """Cost report data."""
    generated_at: datetime
    period_start: datetime
    budget: float
    spent: float
    remaining: float
    utilization: float
    requests: int
    average_cost_per_request: float
    savings: float
    savings_rate: float
    projections: Projections
    by_provider: dict[str, float]
    by_category: dict[str, float]
    top_models: list[tuple[str, float]]  # [(model, cost), ...]
    recommendations: list[Recommendation]
    history: list[PeriodSnapshot]


class BudgetExceededError(Exception):
    """Raised when enforcement is on and the period budget is used up."""

    def __init__(self, spent: float, budget: float):
        self.spent = spent
        self.budget = budget
        super().__init__(
            f"Monthly budget exceeded: ${spent:.4f} spent of ${budget:.4f} budget"
        )


def _as_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, UTC)


class CostLedger:
    """
    Tracks spend against a monthly budget.

    Example:
        ```python
        ledger = CostLedger(catalog, BudgetConfig(monthly_budget_usd=100))
        alert = ledger.track_cost("gpt-4o", usage, 0.42, CostCategory.ANALYSIS)
        if alert:
            notify(alert.message)
        print(ledger.get_budget_utilization())
        ```
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        config: Optional[BudgetConfig] = None,
        clock: Callable[[], float] = time.time,
        events: Optional[EventBus] = None,
        store: Optional["LedgerStore"] = None,
    ):
        self.catalog = catalog
        self.config = config or BudgetConfig()
        self._clock = clock
        self._events = events
        self._store = store
        self._lock = RLock()

        now = self._clock()
        self._period_start = now
        self._current_day = _as_datetime(now).date()
        self._totals = LedgerTotals()
        self._day_requests = 0
        self._projections = Projections()
        self._alert_level: Optional[AlertLevel] = None
        self._history: deque[PeriodSnapshot] = deque(maxlen=self.config.history_size)
        self._daily_history: deque[DailySnapshot] = deque(maxlen=self.config.daily_history_size)

    def _publish(self, event_type: EventType, **data) -> None:
        if self._events is not None:
            self._events.publish(event_type, **data)

    # =========================================================================
    # Recording
    # =========================================================================

    def track_cost(
        self,
        model_id: str,
        usage: UsageRecord,
        actual_cost: float,
        category: CostCategory = CostCategory.ANALYSIS,
    ) -> Optional[BudgetAlert]:
        """
        Record the cost of a completed call.

        Args:
            model_id: Model that served the call.
            usage: Token usage reported by the provider.
            actual_cost: Cost in USD.
            category: Spend category for allocation tracking.

        Returns:
            The alert fired by this call, if a higher threshold was crossed.
        """
        if actual_cost < 0 or math.isnan(actual_cost):
            raise ValueError(f"actual_cost must be a non-negative number, got {actual_cost}")

        with self._lock:
            now = self._clock()
            rolled = self._roll_day(now)

            model = self.catalog.get(model_id)
            provider = model.provider.value if model else "unknown"
            direct_rate = (
                model.direct_cost_per_1k
                if model and model.direct_cost_per_1k is not None
                else DEFAULT_DIRECT_COST_PER_1K
            )
            savings = usage.total_tokens / 1000 * direct_rate - actual_cost

            totals = self._totals
            totals.total += actual_cost
            totals.daily += actual_cost
            totals.requests += 1
            totals.savings += savings
            totals.by_provider[provider] = totals.by_provider.get(provider, 0.0) + actual_cost
            totals.by_category[category.value] = (
                totals.by_category.get(category.value, 0.0) + actual_cost
            )
            model_usage = totals.by_model.setdefault(model_id, ModelUsage())
            model_usage.requests += 1
            model_usage.cost += actual_cost
            model_usage.tokens += usage.total_tokens
            self._day_requests += 1

            self._projections = self._compute_projections(now)
            alert = self._check_alerts(now)
            utilization = self._utilization()

        if rolled is not None:
            self._publish_day(rolled)
        self._publish(
            EventType.COST_TRACKED,
            model=model_id,
            provider=provider,
            category=category.value,
            cost=actual_cost,
            savings=savings,
            utilization=utilization,
        )
        if alert is not None:
            self._publish(
                EventType.BUDGET_ALERT,
                level=alert.level.value,
                utilization=alert.utilization,
                spent=alert.spent,
                budget=alert.budget,
                message=alert.message,
            )
        return alert

    def _check_alerts(self, now: float) -> Optional[BudgetAlert]:
        utilization = self._utilization()
        for level, threshold in self.config.thresholds():
            if utilization >= threshold:
                if self._alert_level is not None and _LEVEL_RANK[level] <= _LEVEL_RANK[self._alert_level]:
                    return None
                self._alert_level = level
                alert = BudgetAlert(
                    level=level,
                    utilization=utilization,
                    spent=self._totals.total,
                    budget=self.config.monthly_budget_usd,
                    message=(
                        f"{level.value.capitalize()}: {threshold:.0%} of monthly budget consumed"
                    ),
                    timestamp=_as_datetime(now),
                )
                log = logger.info if level == AlertLevel.INFO else logger.warning
                log("Budget alert %s at %.1f%% utilization", level.value, utilization * 100)
                return alert
        return None

    def _compute_projections(self, now: float) -> Projections:
        elapsed_days = (now - self._period_start) / 86400
        days_elapsed = max(1, math.ceil(elapsed_days))
        daily_burn = self._totals.total / days_elapsed
        exhaustion = None
        if daily_burn > 0:
            remaining = self.config.monthly_budget_usd - self._totals.total
            exhaustion = _as_datetime(now) + timedelta(days=max(0.0, remaining / daily_burn))
        return Projections(
            daily_burn=daily_burn,
            monthly_projection=daily_burn * PROJECTION_DAYS,
            days_elapsed=days_elapsed,
            exhaustion_date=exhaustion,
        )

    # =========================================================================
    # Budget queries
    # =========================================================================

    def _utilization(self) -> float:
        return self._totals.total / self.config.monthly_budget_usd

    def get_budget_utilization(self) -> float:
        """Spend for the period divided by the monthly budget."""
        with self._lock:
            return self._utilization()

    @property
    def remaining_budget(self) -> float:
        with self._lock:
            return self.config.monthly_budget_usd - self._totals.total

    @property
    def alert_level(self) -> Optional[AlertLevel]:
        """Highest alert level fired in the current period."""
        return self._alert_level

    @property
    def projections(self) -> Projections:
        with self._lock:
            return self._projections

    @property
    def totals(self) -> LedgerTotals:
        """A copy of the running totals."""
        with self._lock:
            return self._totals.copy()

    @property
    def history(self) -> list[PeriodSnapshot]:
        return list(self._history)

    @property
    def daily_history(self) -> list[DailySnapshot]:
        return list(self._daily_history)

    def is_budget_exceeded(self) -> bool:
        return self.get_budget_utilization() >= 1.0

    def check_budget(self) -> None:
        """
        Refuse new work once the budget is used up.

        Raises:
            BudgetExceededError: If enforcement is on and utilization >= 1.
        """
        if not self.config.enforcement_enabled:
            return
        with self._lock:
            if self._utilization() >= 1.0:
                raise BudgetExceededError(self._totals.total, self.config.monthly_budget_usd)

    @property
    def savings_rate(self) -> float:
        """Savings as a share of what the same usage would cost direct."""
        with self._lock:
            if self._totals.requests == 0:
                return 0.0
            direct = self._totals.total + self._totals.savings
            if direct <= 0:
                return 0.0
            return self._totals.savings / direct

    # =========================================================================
    # Period management
    # =========================================================================

    def reset_period(self) -> PeriodSnapshot:
        """
        Archive the current period and start a new one.

        Returns:
            The snapshot of the period just closed.
        """
        with self._lock:
            now = self._clock()
            totals = self._totals
            snapshot = PeriodSnapshot(
                period_start=_as_datetime(self._period_start),
                period_end=_as_datetime(now),
                budget=self.config.monthly_budget_usd,
                total=totals.total,
                requests=totals.requests,
                savings=totals.savings,
                by_provider=dict(totals.by_provider),
                by_category=dict(totals.by_category),
                by_model={k: v.cost for k, v in totals.by_model.items()},
            )
            self._history.append(snapshot)
            self._totals = LedgerTotals()
            self._day_requests = 0
            self._projections = Projections()
            self._alert_level = None
            self._period_start = now
            self._current_day = _as_datetime(now).date()

        if self._store is not None:
            self._store.save_snapshot(snapshot)
        logger.info(
            "Budget period reset: archived $%.4f over %d requests", snapshot.total, snapshot.requests
        )
        self._publish(
            EventType.PERIOD_RESET,
            total=snapshot.total,
            requests=snapshot.requests,
            period_start=snapshot.period_start.isoformat(),
        )
        return snapshot

    def roll_day(self, now: Optional[float] = None) -> Optional[DailySnapshot]:
        """Archive the daily counter if the calendar day has changed."""
        with self._lock:
            rolled = self._roll_day(self._clock() if now is None else now)
        if rolled is not None:
            self._publish_day(rolled)
        return rolled

    def _publish_day(self, rolled: DailySnapshot) -> None:
        self._publish(
            EventType.DAY_ROLLED,
            day=rolled.day.isoformat(),
            cost=rolled.cost,
            requests=rolled.requests,
        )

    def _roll_day(self, now: float) -> Optional[DailySnapshot]:
        today = _as_datetime(now).date()
        if today == self._current_day:
            return None
        snapshot = DailySnapshot(
            day=self._current_day, cost=self._totals.daily, requests=self._day_requests
        )
        self._daily_history.append(snapshot)
        self._totals.daily = 0.0
        self._day_requests = 0
        self._current_day = today
        return snapshot

    def period_month_changed(self, now: Optional[float] = None) -> bool:
        """True when ``now`` falls in a later calendar month than the period start."""
        current = _as_datetime(self._clock() if now is None else now)
        start = _as_datetime(self._period_start)
        return (current.year, current.month) > (start.year, start.month)

    # =========================================================================
    # Analysis
    # =========================================================================

    def get_recommendations(self) -> list[Recommendation]:
        """Spending advice derived from the current period."""
        recommendations = []
        utilization = self.get_budget_utilization()
        savings_rate = self.savings_rate
        totals = self.totals

        if utilization > 0.8:
            recommendations.append(Recommendation(
                kind="budget",
                priority="high",
                title="High Budget Utilization",
                description="Consider switching to more aggressive cost optimization",
                action="switch_to_aggressive_mode",
            ))

        if totals.requests and savings_rate < self.config.savings_target:
            recommendations.append(Recommendation(
                kind="savings",
                priority="medium",
                title="Below Savings Target",
                description=(
                    f"Current savings: {savings_rate:.1%}, "
                    f"Target: {self.config.savings_target:.1%}"
                ),
                action="optimize_model_selection",
            ))

        expensive = self._expensive_models(totals)
        if expensive:
            recommendations.append(Recommendation(
                kind="models",
                priority="medium",
                title="Expensive Model Usage",
                description=f"High usage of expensive models: {', '.join(expensive)}",
                action="review_model_selection",
            ))

        over = self._categories_over_allocation(totals)
        if over:
            recommendations.append(Recommendation(
                kind="categories",
                priority="medium",
                title="Category Budget Overrun",
                description=f"Over budget in: {', '.join(over)}",
                action="rebalance_category_budgets",
            ))

        return recommendations

    def _expensive_models(self, totals: LedgerTotals) -> list[str]:
        expensive = []
        for model_id, usage in totals.by_model.items():
            model = self.catalog.get(model_id)
            if model is None:
                continue
            if (
                model.average_cost_per_1k > EXPENSIVE_MODEL_COST_PER_1K
                and usage.cost > totals.total * 0.1
            ):
                expensive.append(model_id)
        return expensive

    def _categories_over_allocation(self, totals: LedgerTotals) -> list[str]:
        over = []
        for category, share in self.config.category_allocation.items():
            allocated = self.config.monthly_budget_usd * share
            if allocated > 0 and totals.by_category.get(category.value, 0.0) / allocated > 1.1:
                over.append(category.value)
        return over

    def get_report(self, top_n: int = 5) -> CostReport:
        """Full cost report for the current period."""
        totals = self.totals
        top_models = sorted(
            ((m, u.cost) for m, u in totals.by_model.items()),
            key=lambda x: x[1],
            reverse=True,
        )[:top_n]
        return CostReport(
            generated_at=_as_datetime(self._clock()),
            period_start=_as_datetime(self._period_start),
            budget=self.config.monthly_budget_usd,
            spent=totals.total,
            remaining=self.config.monthly_budget_usd - totals.total,
            utilization=totals.total / self.config.monthly_budget_usd,
            requests=totals.requests,
            average_cost_per_request=(totals.total / totals.requests if totals.requests else 0.0),
            savings=totals.savings,
            savings_rate=self.savings_rate,
            projections=self.projections,
            by_provider=totals.by_provider,
            by_category=totals.by_category,
            top_models=top_models,
            recommendations=self.get_recommendations(),
            history=self.history,
        )

    def snapshot(self) -> dict:
        """Serializable view of the ledger for status endpoints."""
        with self._lock:
            totals = self._totals
            projections = self._projections
            return {
                "budget": self.config.monthly_budget_usd,
                "spent": totals.total,
                "daily": totals.daily,
                "requests": totals.requests,
                "remaining": self.config.monthly_budget_usd - totals.total,
                "utilization": self._utilization(),
                "alert_level": self._alert_level.value if self._alert_level else None,
                "enforcement_enabled": self.config.enforcement_enabled,
                "savings": totals.savings,
                "by_provider": dict(totals.by_provider),
                "by_category": dict(totals.by_category),
                "by_model": {k: v.cost for k, v in totals.by_model.items()},
                "projections": {
                    "daily_burn": projections.daily_burn,
                    "monthly_projection": projections.monthly_projection,
                    "exhaustion_date": (
                        projections.exhaustion_date.isoformat()
                        if projections.exhaustion_date else None
                    ),
                },
                "period_start": _as_datetime(self._period_start).isoformat(),
                "archived_periods": len(self._history),
            }
