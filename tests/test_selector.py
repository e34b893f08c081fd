"""Tests for cost/quality model selection."""

import pytest

from switchboard.catalog import ModelCatalog
from switchboard.schemas import (
    ModelDescriptor,
    Priority,
    Provider,
    RequestContext,
    TaskType,
    Urgency,
)
from switchboard.selector import ModelSelector, NoEligibleModelError


CHEAP = ModelDescriptor(
    model_id="cheap",
    provider=Provider.AIMLAPI,
    input_cost_per_1k=0.001,
    output_cost_per_1k=0.001,
    context_window=16_000,
    quality_score=0.7,
)
PREMIUM = ModelDescriptor(
    model_id="premium",
    provider=Provider.AIMLAPI,
    input_cost_per_1k=0.02,
    output_cost_per_1k=0.02,
    context_window=200_000,
    quality_score=0.95,
    specialties=("executive", "multilingual"),
)


class TestSelection:
    """Test ranking and filtering."""

    def setup_method(self):
        self.selector = ModelSelector(ModelCatalog([CHEAP, PREMIUM]))

    def test_budget_constrained_picks_cheap(self):
        """A budget-constrained, low-urgency request goes to the cheap model."""
        context = RequestContext(budget_constrained=True, urgency=Urgency.LOW)
        selection = self.selector.rank(context, ["cheap", "premium"], 1000)

        assert selection.model_id == "cheap"
        assert selection.strategy.name == "aggressive"
        assert [s.model_id for s in selection.scores] == ["cheap", "premium"]
        assert "aggressive" in selection.why

    def test_high_priority_prefers_quality(self):
        """Executive work with budget headroom favors quality."""
        context = RequestContext(task_type=TaskType.EXECUTIVE, priority=Priority.CRITICAL)
        selection = self.selector.rank(context, ["cheap", "premium"], 1000, budget_utilization=0.1)

        assert selection.strategy.name == "quality"
        assert selection.model_id == "premium"

    def test_preferred_model_wins(self):
        context = RequestContext(preferred_model="premium", budget_constrained=True)
        selection = self.selector.rank(context, ["cheap", "premium"], 1000)
        assert selection.model_id == "premium"
        assert "Preferred" in selection.why

    def test_preferred_model_ignored_when_filtered(self):
        """A preferred model that cannot fit the request is not forced."""
        context = RequestContext(preferred_model="cheap")
        selection = self.selector.rank(context, ["cheap", "premium"], 50_000)
        assert selection.model_id == "premium"
        assert "context window" in selection.filter_reasons["cheap"]

    def test_no_eligible_model(self):
        with pytest.raises(NoEligibleModelError) as exc_info:
            self.selector.rank(RequestContext(), ["cheap", "nope"], 50_000)
        assert set(exc_info.value.filter_reasons) == {"cheap", "nope"}
        assert exc_info.value.filter_reasons["nope"] == "not in catalog"

    def test_optimization_disabled_takes_first(self):
        selector = ModelSelector(ModelCatalog([CHEAP, PREMIUM]), optimization_enabled=False)
        context = RequestContext(task_type=TaskType.EXECUTIVE, priority=Priority.CRITICAL)
        assert selector.select_model(context, ["cheap", "premium"], 1000) == "cheap"

    def test_estimate_cost_split(self):
        """Estimates split tokens 30/70 between input and output."""
        model = ModelDescriptor(
            model_id="split",
            provider=Provider.OPENAI,
            input_cost_per_1k=0.01,
            output_cost_per_1k=0.03,
            context_window=8000,
        )
        assert self.selector.estimate_cost(model, 1000) == pytest.approx(0.003 + 0.021)

    def test_cost_score_ceiling(self):
        assert self.selector.cost_score(0.0) == 1.0
        assert self.selector.cost_score(0.05) == pytest.approx(0.5)
        assert self.selector.cost_score(1.0) == 0.0


class TestStrategies:
    """Test strategy choice and override."""

    def setup_method(self):
        self.selector = ModelSelector(ModelCatalog([CHEAP, PREMIUM]))

    def test_high_utilization_is_aggressive(self):
        context = RequestContext(priority=Priority.CRITICAL)
        assert self.selector.choose_strategy(0.95, context).name == "aggressive"

    def test_high_priority_needs_headroom(self):
        context = RequestContext(priority=Priority.HIGH)
        assert self.selector.choose_strategy(0.3, context).name == "quality"
        assert self.selector.choose_strategy(0.6, context).name == "balanced"

    def test_default_is_balanced(self):
        assert self.selector.choose_strategy(0.0, RequestContext()).name == "balanced"

    def test_set_default_strategy(self):
        self.selector.set_default_strategy("quality")
        assert self.selector.choose_strategy(0.0, RequestContext()).name == "quality"
        # Budget pressure still overrides the default
        assert self.selector.choose_strategy(0.95, RequestContext()).name == "aggressive"

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            self.selector.set_default_strategy("reckless")
        with pytest.raises(ValueError):
            ModelSelector(ModelCatalog([CHEAP]), default_strategy="reckless")


class TestQualityBonuses:
    """Test context affinity bonuses."""

    def setup_method(self):
        self.selector = ModelSelector(ModelCatalog([CHEAP, PREMIUM]))

    def test_task_bonus(self):
        context = RequestContext(task_type=TaskType.EXECUTIVE)
        assert self.selector.quality_for(PREMIUM, context) == pytest.approx(1.0)
        assert self.selector.quality_for(CHEAP, context) == pytest.approx(0.7)

    def test_language_bonus(self):
        model = ModelDescriptor(
            model_id="poly",
            provider=Provider.GOOGLE,
            input_cost_per_1k=0.001,
            output_cost_per_1k=0.001,
            context_window=8000,
            quality_score=0.8,
            specialties=("multilingual",),
        )
        assert self.selector.quality_for(model, RequestContext(language="ja")) == pytest.approx(0.9)
        assert self.selector.quality_for(model, RequestContext()) == pytest.approx(0.8)

    def test_realtime_bonus(self):
        model = ModelDescriptor(
            model_id="quick",
            provider=Provider.ANTHROPIC,
            input_cost_per_1k=0.001,
            output_cost_per_1k=0.001,
            context_window=8000,
            quality_score=0.7,
            specialties=("realtime",),
        )
        context = RequestContext(urgency=Urgency.REALTIME)
        assert self.selector.quality_for(model, context) == pytest.approx(0.75)
