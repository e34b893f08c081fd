"""Tests for the cost ledger."""

import math
from datetime import timedelta

import pytest

from switchboard.catalog import ModelCatalog
from switchboard.cost_ledger import BudgetConfig, BudgetExceededError, CostLedger
from switchboard.events import EventBus, EventType
from switchboard.schemas import AlertLevel, CostCategory, UsageRecord
from switchboard.storage import InMemoryLedgerStore

from conftest import TEST_MODELS, FakeClock


USAGE = UsageRecord.from_counts(300, 700)
DAY = 86400


class TestCostTracking:
    """Test totals, alerts and enforcement."""

    def setup_method(self):
        self.clock = FakeClock()
        self.events = EventBus(clock=self.clock)
        self.ledger = CostLedger(
            ModelCatalog(TEST_MODELS),
            BudgetConfig(monthly_budget_usd=100.0, enforcement_enabled=True),
            clock=self.clock,
            events=self.events,
        )

    def test_totals_are_exact_sums(self):
        """Totals equal the sum of tracked costs, split by provider, category and model."""
        self.ledger.track_cost("alpha", USAGE, 1.25, CostCategory.REALTIME)
        self.ledger.track_cost("bravo", USAGE, 2.50)
        self.ledger.track_cost("alpha", USAGE, 0.25, CostCategory.REALTIME)

        totals = self.ledger.totals
        assert totals.total == 4.0
        assert totals.requests == 3
        assert totals.by_provider["aimlapi"] == 1.5
        assert totals.by_provider["openai"] == 2.5
        assert totals.by_category["realtime"] == 1.5
        assert totals.by_category["analysis"] == 2.5
        assert totals.by_model["alpha"].requests == 2
        assert totals.by_model["alpha"].tokens == 2000

    def test_budget_scenario_over_budget(self):
        """$30 + $40 + $35 against $100 is 105% and blocks the next request."""
        self.ledger.track_cost("alpha", USAGE, 30.0)
        self.ledger.track_cost("alpha", USAGE, 40.0)
        self.ledger.check_budget()
        self.ledger.track_cost("alpha", USAGE, 35.0)

        assert self.ledger.get_budget_utilization() == pytest.approx(1.05)
        assert self.ledger.is_budget_exceeded()
        with pytest.raises(BudgetExceededError) as exc_info:
            self.ledger.check_budget()
        assert exc_info.value.spent == pytest.approx(105.0)
        assert exc_info.value.budget == 100.0

    def test_no_enforcement_allows_overspend(self):
        ledger = CostLedger(
            ModelCatalog(TEST_MODELS), BudgetConfig(monthly_budget_usd=10.0), clock=self.clock,
        )
        ledger.track_cost("alpha", USAGE, 20.0)
        ledger.check_budget()
        assert ledger.is_budget_exceeded()

    def test_alerts_fire_highest_level_once(self):
        """Only the highest crossed threshold fires, and never twice."""
        assert self.ledger.track_cost("alpha", USAGE, 69.0) is None

        alert = self.ledger.track_cost("alpha", USAGE, 1.0)
        assert alert.level == AlertLevel.INFO

        assert self.ledger.track_cost("alpha", USAGE, 1.0) is None

        alert = self.ledger.track_cost("alpha", USAGE, 25.0)
        assert alert.level == AlertLevel.CRITICAL
        assert self.ledger.alert_level == AlertLevel.CRITICAL

        assert self.ledger.track_cost("alpha", USAGE, 1.0) is None
        levels = [e.data["level"] for e in self.events.drain([EventType.BUDGET_ALERT])]
        assert levels == ["info", "critical"]

    def test_utilization_never_decreases(self):
        seen = []
        for cost in (0.0, 1.5, 0.0, 3.25, 10.0):
            self.ledger.track_cost("alpha", USAGE, cost)
            seen.append(self.ledger.get_budget_utilization())
        assert seen == sorted(seen)

    def test_rejects_bad_costs(self):
        with pytest.raises(ValueError):
            self.ledger.track_cost("alpha", USAGE, -0.01)
        with pytest.raises(ValueError):
            self.ledger.track_cost("alpha", USAGE, math.nan)
        assert self.ledger.totals.requests == 0

    def test_unknown_model_still_tracked(self):
        self.ledger.track_cost("mystery", USAGE, 1.0)
        assert self.ledger.totals.by_provider["unknown"] == 1.0

    def test_savings_against_direct_price(self):
        """1K tokens at a $0.03 direct price cost $0.01 here: $0.02 saved."""
        self.ledger.track_cost("alpha", USAGE, 0.01)

        assert self.ledger.totals.savings == pytest.approx(0.02)
        assert self.ledger.savings_rate == pytest.approx(2 / 3)

    def test_cost_tracked_event(self):
        self.ledger.track_cost("bravo", USAGE, 0.5, CostCategory.MONITORING)
        [event] = self.events.drain([EventType.COST_TRACKED])
        assert event.data["model"] == "bravo"
        assert event.data["provider"] == "openai"
        assert event.data["category"] == "monitoring"
        assert event.data["utilization"] == pytest.approx(0.005)


class TestProjections:
    """Test burn rate and exhaustion date."""

    def setup_method(self):
        self.clock = FakeClock()
        self.ledger = CostLedger(
            ModelCatalog(TEST_MODELS), BudgetConfig(monthly_budget_usd=100.0), clock=self.clock,
        )

    def test_first_day(self):
        self.ledger.track_cost("alpha", USAGE, 10.0)
        projections = self.ledger.projections

        assert projections.days_elapsed == 1
        assert projections.daily_burn == 10.0
        assert projections.monthly_projection == 300.0
        start = self.ledger.get_report().period_start
        assert projections.exhaustion_date == start + timedelta(days=9)

    def test_burn_spreads_over_elapsed_days(self):
        self.clock.advance(3.5 * DAY)
        self.ledger.track_cost("alpha", USAGE, 20.0)

        projections = self.ledger.projections
        assert projections.days_elapsed == 4
        assert projections.daily_burn == 5.0

    def test_no_spend_no_exhaustion(self):
        self.ledger.track_cost("alpha", USAGE, 0.0)
        assert self.ledger.projections.exhaustion_date is None


class TestPeriods:
    """Test daily rollover and period archive."""

    def setup_method(self):
        self.clock = FakeClock()
        self.events = EventBus(clock=self.clock)
        self.store = InMemoryLedgerStore()
        self.ledger = CostLedger(
            ModelCatalog(TEST_MODELS),
            BudgetConfig(monthly_budget_usd=100.0, history_size=2),
            clock=self.clock,
            events=self.events,
            store=self.store,
        )

    def test_day_rolls_on_next_track(self):
        self.ledger.track_cost("alpha", USAGE, 1.0)
        self.clock.advance(DAY)
        self.ledger.track_cost("alpha", USAGE, 2.0)

        [day] = self.ledger.daily_history
        assert day.cost == 1.0
        assert day.requests == 1
        assert self.ledger.totals.daily == 2.0
        assert self.ledger.totals.total == 3.0
        assert len(self.events.drain([EventType.DAY_ROLLED])) == 1

    def test_roll_day_is_idempotent_within_a_day(self):
        self.ledger.track_cost("alpha", USAGE, 1.0)
        assert self.ledger.roll_day() is None
        self.clock.advance(DAY)
        assert self.ledger.roll_day() is not None
        assert self.ledger.roll_day() is None

    def test_reset_period_archives_and_zeroes(self):
        self.ledger.track_cost("alpha", USAGE, 80.0)
        snapshot = self.ledger.reset_period()

        assert snapshot.total == 80.0
        assert snapshot.utilization == 0.8
        assert snapshot.by_model == {"alpha": 80.0}
        assert self.ledger.totals.total == 0.0
        assert self.ledger.get_budget_utilization() == 0.0
        assert self.ledger.alert_level is None
        assert self.ledger.history == [snapshot]
        assert self.store.list_snapshots() == [snapshot]
        assert self.events.drain([EventType.PERIOD_RESET])

    def test_alerts_rearm_after_reset(self):
        assert self.ledger.track_cost("alpha", USAGE, 75.0).level == AlertLevel.INFO
        self.ledger.reset_period()
        assert self.ledger.track_cost("alpha", USAGE, 75.0).level == AlertLevel.INFO

    def test_history_is_bounded(self):
        for cost in (1.0, 2.0, 3.0):
            self.ledger.track_cost("alpha", USAGE, cost)
            self.ledger.reset_period()
        assert [s.total for s in self.ledger.history] == [2.0, 3.0]
        assert len(self.store.list_snapshots()) == 3

    def test_month_change_detection(self):
        assert self.ledger.period_month_changed() is False
        assert self.ledger.period_month_changed(self.clock() + 25 * DAY) is True


class TestRecommendationsAndReport:
    """Test spending advice."""

    def setup_method(self):
        self.clock = FakeClock()
        self.ledger = CostLedger(
            ModelCatalog(TEST_MODELS), BudgetConfig(monthly_budget_usd=100.0), clock=self.clock,
        )

    def test_no_advice_without_spend(self):
        assert self.ledger.get_recommendations() == []

    def test_high_utilization_and_low_savings(self):
        self.ledger.track_cost("bravo", USAGE, 85.0)
        kinds = {r.kind for r in self.ledger.get_recommendations()}
        assert "budget" in kinds
        assert "savings" in kinds

    def test_expensive_model_flagged(self):
        """bravo averages $0.02+/1K tokens and carries most of the spend."""
        self.ledger.track_cost("bravo", USAGE, 1.0)
        [rec] = [r for r in self.ledger.get_recommendations() if r.kind == "models"]
        assert "bravo" in rec.description

    def test_category_overrun(self):
        """Experimental work is allocated 5% of the budget."""
        self.ledger.track_cost("alpha", USAGE, 6.0, CostCategory.EXPERIMENTAL)
        [rec] = [r for r in self.ledger.get_recommendations() if r.kind == "categories"]
        assert "experimental" in rec.description

    def test_report(self):
        self.ledger.track_cost("alpha", USAGE, 1.0)
        self.ledger.track_cost("bravo", USAGE, 3.0)
        report = self.ledger.get_report(top_n=1)

        assert report.spent == 4.0
        assert report.remaining == 96.0
        assert report.requests == 2
        assert report.average_cost_per_request == 2.0
        assert report.top_models == [("bravo", 3.0)]
        assert report.history == []
