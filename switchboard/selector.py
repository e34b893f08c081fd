"""
Model selection for Switchboard.

Scores candidate models on three things and picks the best:
1. Inverted cost of the request (cheaper is better, capped at a ceiling)
2. Quality for this context (base quality plus specialty bonuses)
3. Cost efficiency versus buying the same work from a direct provider

The weights come from an optimization strategy chosen by how much of
the budget is already used.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from switchboard.catalog import ModelCatalog
from switchboard.schemas import ModelDescriptor, RequestContext, Urgency


logger = logging.getLogger(__name__)


COST_CEILING_USD = 0.10
DEFAULT_DIRECT_COST_PER_1K = 0.03
INPUT_TOKEN_SHARE = 0.3

TASK_AFFINITY_BONUS = 0.05
LANGUAGE_AFFINITY_BONUS = 0.10
URGENCY_AFFINITY_BONUS = 0.05


@dataclass(frozen=True)
class OptimizationStrategy:
    """Weights applied to the three scoring components."""
    name: str
    cost_weight: float
    quality_weight: float
    efficiency_weight: float
    description: str = ""


STRATEGIES: dict[str, OptimizationStrategy] = {
    "aggressive": OptimizationStrategy(
        name="aggressive",
        cost_weight=0.6,
        quality_weight=0.2,
        efficiency_weight=0.2,
        description="Maximize savings when the budget is nearly spent",
    ),
    "balanced": OptimizationStrategy(
        name="balanced",
        cost_weight=0.4,
        quality_weight=0.4,
        efficiency_weight=0.2,
        description="Trade cost against quality evenly",
    ),
    "quality": OptimizationStrategy(
        name="quality",
        cost_weight=0.2,
        quality_weight=0.6,
        efficiency_weight=0.2,
        description="Prefer quality for high-priority work while budget allows",
    ),
}


class NoEligibleModelError(Exception):
    """Raised when no candidate model survives filtering."""

    def __init__(self, message: str, filter_reasons: Optional[dict[str, str]] = None):
        self.filter_reasons = filter_reasons or {}
        super().__init__(message)


@dataclass
class ModelScore:
    """Score breakdown for one candidate."""
    model_id: str
    estimated_cost: float
    cost_score: float
    quality_score: float
    efficiency_score: float
    total: float


@dataclass
class Selection:
    """Outcome of a selection, with the reasoning behind it."""
    model_id: str
    strategy: OptimizationStrategy
    budget_utilization: float
    scores: list[ModelScore] = field(default_factory=list)
    filter_reasons: dict[str, str] = field(default_factory=dict)
    why: str = ""


class ModelSelector:
    """
    Chooses the model for a request.

    The algorithm:
    1. Drop candidates that are unknown or whose context window is too small
    2. Honour the caller's preferred model if it survived
    3. Pick weights from budget utilization and request priority
    4. Score every survivor, highest wins, ties go to the cheaper model
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        optimization_enabled: bool = True,
        default_strategy: str = "balanced",
        cost_ceiling_usd: float = COST_CEILING_USD,
    ):
        if default_strategy not in STRATEGIES:
            raise ValueError(f"Unknown optimization strategy: {default_strategy}")
        self.catalog = catalog
        self.optimization_enabled = optimization_enabled
        self.default_strategy = default_strategy
        self.cost_ceiling_usd = cost_ceiling_usd

    def set_default_strategy(self, name: str) -> OptimizationStrategy:
        """Use ``name`` in place of the balanced strategy."""
        if name not in STRATEGIES:
            raise ValueError(f"Unknown optimization strategy: {name}")
        previous = self.default_strategy
        self.default_strategy = name
        logger.info("Optimization strategy changed from %s to %s", previous, name)
        return STRATEGIES[name]

    # =========================================================================
    # Scoring components
    # =========================================================================

    def choose_strategy(self, budget_utilization: float, context: RequestContext) -> OptimizationStrategy:
        """Pick weights for this request."""
        if budget_utilization > 0.9 or context.budget_constrained:
            return STRATEGIES["aggressive"]
        if budget_utilization < 0.5 and context.is_high_priority:
            return STRATEGIES["quality"]
        return STRATEGIES[self.default_strategy]

    def estimate_cost(self, model: ModelDescriptor, estimated_tokens: int) -> float:
        """Expected cost with a 30/70 input/output token split."""
        input_tokens = estimated_tokens * INPUT_TOKEN_SHARE
        output_tokens = estimated_tokens * (1 - INPUT_TOKEN_SHARE)
        return model.estimate_cost(input_tokens, output_tokens)

    def cost_score(self, estimated_cost: float) -> float:
        return 1 - min(estimated_cost / self.cost_ceiling_usd, 1.0)

    def quality_for(self, model: ModelDescriptor, context: RequestContext) -> float:
        """Base quality adjusted for how well the model fits the context."""
        quality = model.quality_score
        if model.has_tag(context.task_type.value):
            quality += TASK_AFFINITY_BONUS
        if context.language != "en" and model.has_tag("multilingual"):
            quality += LANGUAGE_AFFINITY_BONUS
        if context.urgency == Urgency.REALTIME and model.has_tag("realtime"):
            quality += URGENCY_AFFINITY_BONUS
        return min(quality, 1.0)

    def cost_efficiency(self, model: ModelDescriptor) -> float:
        """Relative saving against the direct-provider price, in [0, 1]."""
        direct = model.direct_cost_per_1k or DEFAULT_DIRECT_COST_PER_1K
        savings = (direct - model.average_cost_per_1k) / direct
        return max(0.0, min(savings, 1.0))

    def score(
        self,
        model: ModelDescriptor,
        context: RequestContext,
        estimated_tokens: int,
        strategy: OptimizationStrategy,
    ) -> ModelScore:
        estimated_cost = self.estimate_cost(model, estimated_tokens)
        cost = self.cost_score(estimated_cost)
        quality = self.quality_for(model, context)
        efficiency = self.cost_efficiency(model)
        total = (
            cost * strategy.cost_weight
            + quality * strategy.quality_weight
            + efficiency * strategy.efficiency_weight
        )
        return ModelScore(
            model_id=model.model_id,
            estimated_cost=estimated_cost,
            cost_score=cost,
            quality_score=quality,
            efficiency_score=efficiency,
            total=total,
        )

    # =========================================================================
    # Selection
    # =========================================================================

    def rank(
        self,
        context: RequestContext,
        candidates: Iterable[str],
        estimated_tokens: int,
        budget_utilization: float = 0.0,
    ) -> Selection:
        """
        Score candidates and explain the pick.

        Raises:
            NoEligibleModelError: If no candidate survives filtering.
        """
        filter_reasons: dict[str, str] = {}
        eligible: list[ModelDescriptor] = []
        for model_id in candidates:
            model = self.catalog.get(model_id)
            if model is None:
                filter_reasons[model_id] = "not in catalog"
            elif model.context_window < estimated_tokens:
                filter_reasons[model_id] = (
                    f"context window {model.context_window:,} < {estimated_tokens:,} tokens"
                )
            else:
                eligible.append(model)

        strategy = self.choose_strategy(budget_utilization, context)

        if not eligible:
            raise NoEligibleModelError(
                f"No eligible model among {len(filter_reasons)} candidates", filter_reasons
            )

        preferred = next(
            (m for m in eligible if m.model_id == context.preferred_model), None
        )
        if preferred is not None:
            score = self.score(preferred, context, estimated_tokens, strategy)
            return Selection(
                model_id=preferred.model_id,
                strategy=strategy,
                budget_utilization=budget_utilization,
                scores=[score],
                filter_reasons=filter_reasons,
                why=f"Preferred model {preferred.model_id} is available",
            )

        if not self.optimization_enabled:
            first = eligible[0]
            return Selection(
                model_id=first.model_id,
                strategy=strategy,
                budget_utilization=budget_utilization,
                scores=[self.score(first, context, estimated_tokens, strategy)],
                filter_reasons=filter_reasons,
                why="Optimization disabled, using first eligible model",
            )

        scores = [self.score(m, context, estimated_tokens, strategy) for m in eligible]
        # Highest score first; equal scores go to the cheaper model
        scores.sort(key=lambda s: (-s.total, s.estimated_cost))
        best = scores[0]

        why = (
            f"Best {strategy.name} score ({best.total:.3f}) among {len(scores)} models: "
            f"est. ${best.estimated_cost:.4f}, quality {best.quality_score:.2f}, "
            f"efficiency {best.efficiency_score:.0%} at {budget_utilization:.0%} budget used"
        )
        logger.debug("Selected %s: %s", best.model_id, why)
        return Selection(
            model_id=best.model_id,
            strategy=strategy,
            budget_utilization=budget_utilization,
            scores=scores,
            filter_reasons=filter_reasons,
            why=why,
        )

    def select_model(
        self,
        context: RequestContext,
        candidates: Iterable[str],
        estimated_tokens: int,
        budget_utilization: float = 0.0,
    ) -> str:
        """Model id of the best candidate. See ``rank``."""
        return self.rank(context, candidates, estimated_tokens, budget_utilization).model_id
