"""
Multi-model synthesis for Switchboard.

Sends one request to several complementary models at once and fuses
their answers. Four fusion methods are available:

- consensus: keep the themes most models agree on
- expertise: lead with the model best suited to the context
- hierarchical: one primary answer checked by the others
- competitive: run the other three and keep the best-scoring one

Models that fail are dropped from the synthesis; the request only fails
when fewer than ``min_models`` insights survive.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from switchboard.context import OrchestrationContext
from switchboard.events import EventType
from switchboard.fallback import FallbackOrchestrator
from switchboard import quality
from switchboard.schemas import (
    Complexity,
    ModelDescriptor,
    Priority,
    Provider,
    RequestContext,
    RequestOptions,
    SynthesisMethod,
    TaskType,
    UsageRecord,
    Urgency,
)


logger = logging.getLogger(__name__)


TYPE_REQUIREMENTS: dict[TaskType, tuple[str, ...]] = {
    TaskType.INTERVIEW: ("strategic-analysis", "decision-support", "analytical-reasoning"),
    TaskType.SALES: ("sales-insights", "analytical-reasoning", "balanced-perspectives"),
    TaskType.EXECUTIVE: ("strategic-analysis", "executive-insights", "complex-reasoning"),
    TaskType.TECHNICAL: ("pattern-recognition", "analytical-reasoning"),
    TaskType.REALTIME: ("real-time-processing", "quick-insights", "speed"),
}

CONTRADICTORY_PAIRS = (
    ("positive", "negative"),
    ("increase", "decrease"),
    ("recommend", "not recommend"),
    ("should", "should not"),
)

SUPPORTING_EXCERPT_CHARS = 200
VALIDATING_EXCERPT_CHARS = 150


class InsufficientModelsError(Exception):
    """Raised when fewer than the required number of models can contribute."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient models for synthesis: {available} available, {required} required"
        )


class SynthesisDisabledError(Exception):
    """Raised when synthesis is switched off in configuration."""


@dataclass
class ModelInsight:
    """One model's contribution to a synthesis."""
    model_id: str
    provider: Provider
    content: str
    usage: UsageRecord
    cost: float
    quality_score: float
    confidence: float
    key_points: list[str] = field(default_factory=list)
    response_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model_id,
            "provider": self.provider.value,
            "quality_score": self.quality_score,
            "confidence": self.confidence,
            "key_points": self.key_points,
            "cost": self.cost,
        }


@dataclass
class QualityAssessment:
    completeness: float
    accuracy: float
    insight: float
    clarity: float
    overall_score: float

    def to_dict(self) -> dict[str, float]:
        return dataclasses.asdict(self)


@dataclass
class Fusion:
    """Output of one fusion method, before assessment."""
    content: str
    method: SynthesisMethod
    quality_score: float
    confidence: float
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class SynthesisResult:
    content: str
    method: SynthesisMethod
    quality_score: float
    confidence: float
    usage: UsageRecord
    cost: float
    models_used: list[str]
    insights: list[ModelInsight]
    assessment: QualityAssessment
    consensus_level: float
    response_time_ms: float
    request_id: str
    failures: dict[str, str] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "method": self.method.value,
            "quality_score": self.quality_score,
            "confidence": self.confidence,
            "usage": dataclasses.asdict(self.usage),
            "cost": self.cost,
            "models_used": self.models_used,
            "insights": [i.to_dict() for i in self.insights],
            "assessment": self.assessment.to_dict(),
            "consensus_level": self.consensus_level,
            "response_time_ms": self.response_time_ms,
            "request_id": self.request_id,
            "failures": self.failures,
            "details": self.details,
        }


def disagreements(key_point_sets: Iterable[Iterable[str]]) -> list[tuple[str, str]]:
    """Pairs of key points that take opposite positions."""
    points = [p for points in key_point_sets for p in points]
    found = []
    for i, first in enumerate(points):
        for second in points[i + 1:]:
            a, b = first.lower(), second.lower()
            if any(
                (x in a and y in b) or (y in a and x in b)
                for x, y in CONTRADICTORY_PAIRS
            ):
                found.append((first, second))
    return found


class SynthesisEngine:
    """
    Fuses answers from several models into one result.

    Each model is called through the fallback orchestrator pinned to that
    model, so rate limits, health and cost tracking apply per call.
    """

    def __init__(self, ctx: OrchestrationContext, fallback: FallbackOrchestrator):
        self.ctx = ctx
        self.fallback = fallback

    @property
    def config(self):
        return self.ctx.config.synthesis

    # =========================================================================
    # Model selection
    # =========================================================================

    def requirements_for(self, context: RequestContext) -> set[str]:
        """Capability tags the context asks for."""
        required = {context.task_type.value, *TYPE_REQUIREMENTS.get(context.task_type, ())}
        if context.language != "en":
            required.update(("multilingual", "cultural-context"))
        if context.urgency == Urgency.REALTIME:
            required.update(("real-time-processing", "speed"))
        if context.complexity == Complexity.HIGH:
            required.update(("complex-reasoning", "strategic-analysis"))
        if context.industry:
            required.add("specialized-domains")
        return required

    def relevance(self, model: ModelDescriptor, context: RequestContext) -> float:
        """How well a model's strengths, less its weaknesses, fit the context."""
        required = self.requirements_for(context)
        score = 0.0
        if model.specialties:
            matches = sum(1 for tag in model.specialties if tag in required)
            score += matches / len(model.specialties) * 0.7
        if model.weaknesses:
            matches = sum(1 for tag in model.weaknesses if tag in required)
            score -= matches / len(model.weaknesses) * 0.3
        return max(0.0, min(1.0, score))

    def usable_models(self) -> list[str]:
        """Catalog models whose provider is configured, healthy and under quota."""
        usable = []
        for provider in self.ctx.config.provider_order:
            if provider not in self.ctx.registry or self.ctx.health.skip_reason(provider):
                continue
            ids = [m.model_id for m in self.ctx.catalog.models_for(provider)]
            usable.extend(self.ctx.rate_limiter.available(ids))
        return usable

    def select_models(
        self,
        context: RequestContext,
        candidates: Optional[Iterable[str]] = None,
        max_models: Optional[int] = None,
    ) -> list[str]:
        """
        Pick a diverse subset of models for ``context``.

        Candidates are ranked by quality, relevance and, when the budget
        is tight, cost. The best model is always taken; further models
        are added only when they bring strengths not yet represented,
        except that the first two slots are always filled.
        """
        pool = list(candidates) if candidates is not None else self.usable_models()
        limit = min(max_models or self.config.max_models, len(pool))
        if limit <= 0:
            return []

        tokens = 1000
        scored: list[tuple[float, ModelDescriptor]] = []
        for model_id in pool:
            model = self.ctx.catalog.get(model_id)
            if model is None:
                continue
            score = model.quality_score * 0.4 + self.relevance(model, context) * 0.4
            if context.budget_constrained:
                cost = self.fallback.selector.estimate_cost(model, tokens)
                score += self.fallback.selector.cost_score(cost) * 0.2
            else:
                score += 0.1
            if context.urgency == Urgency.REALTIME:
                score += model.speed_score * 0.2
            scored.append((score, model))

        # Stable sort keeps candidate order among equal scores
        scored.sort(key=lambda item: -item[0])
        shortlist = [model for _, model in scored[: limit * 2]]

        selected: list[ModelDescriptor] = []
        seen: set[str] = set()
        for model in shortlist:
            if len(selected) >= limit:
                break
            new_strengths = set(model.specialties) - seen
            if not selected or new_strengths or len(selected) < 2:
                selected.append(model)
                seen.update(model.specialties)
        return [m.model_id for m in selected]

    def choose_method(self, context: RequestContext, model_count: int) -> SynthesisMethod:
        if context.urgency == Urgency.REALTIME:
            return SynthesisMethod.CONSENSUS
        if context.task_type == TaskType.EXECUTIVE or context.priority == Priority.CRITICAL:
            return SynthesisMethod.EXPERTISE
        if model_count >= 4 and context.complexity == Complexity.HIGH:
            return SynthesisMethod.COMPETITIVE
        if context.specialization or context.industry:
            return SynthesisMethod.HIERARCHICAL
        return SynthesisMethod.CONSENSUS

    # =========================================================================
    # Synthesis
    # =========================================================================

    async def synthesize(
        self,
        context: RequestContext,
        content: str,
        options: Optional[RequestOptions] = None,
        models: Optional[Iterable[str]] = None,
        method: Optional[SynthesisMethod] = None,
    ) -> SynthesisResult:
        """
        Ask several models and fuse their answers.

        Args:
            context: Request context shared by every model call.
            content: The prompt.
            options: Per-call options; ``model`` and ``allow_fallback`` are
                overridden for each model.
            models: Candidate models. Defaults to every usable model.
            method: Force a fusion method instead of choosing one.

        Raises:
            SynthesisDisabledError: If synthesis is switched off.
            InsufficientModelsError: If fewer than ``min_models`` models are
                selected or answer successfully.
        """
        if not self.config.enabled:
            raise SynthesisDisabledError("Multi-model synthesis is disabled")

        options = options or RequestOptions()
        started = self.ctx.clock()
        try:
            result = await self._synthesize(context, content, options, models, method, started)
        except Exception as exc:
            elapsed_ms = (self.ctx.clock() - started) * 1000
            self.ctx.metrics.record_synthesis(
                context.request_id, 0, 0.0, elapsed_ms, success=False,
            )
            self.ctx.events.publish(
                EventType.SYNTHESIS_FAILED,
                request_id=context.request_id,
                error=str(exc),
                response_time_ms=elapsed_ms,
            )
            raise

        self.ctx.metrics.record_synthesis(
            context.request_id,
            len(result.models_used),
            result.assessment.overall_score,
            result.response_time_ms,
            success=True,
            method=result.method.value,
        )
        self.ctx.events.publish(
            EventType.SYNTHESIS_COMPLETE,
            request_id=context.request_id,
            method=result.method.value,
            models=result.models_used,
            quality_score=result.assessment.overall_score,
            response_time_ms=result.response_time_ms,
        )
        return result

    async def _synthesize(
        self,
        context: RequestContext,
        content: str,
        options: RequestOptions,
        models: Optional[Iterable[str]],
        method: Optional[SynthesisMethod],
        started: float,
    ) -> SynthesisResult:
        required = self.config.min_models
        selected = self.select_models(context, models)
        if len(selected) < required:
            raise InsufficientModelsError(len(selected), required)

        chosen = method or self.choose_method(context, len(selected))
        logger.info(
            "Synthesizing request %s with %s over %s",
            context.request_id, chosen.value, ", ".join(selected),
        )

        outcomes = await asyncio.gather(
            *(self._insight(model_id, context, content, options) for model_id in selected),
            return_exceptions=True,
        )

        insights: list[ModelInsight] = []
        failures: dict[str, str] = {}
        for model_id, outcome in zip(selected, outcomes):
            if isinstance(outcome, ModelInsight):
                insights.append(outcome)
            elif isinstance(outcome, Exception):
                logger.warning("Model %s dropped from synthesis: %s", model_id, outcome)
                failures[model_id] = str(outcome)
            else:
                raise outcome

        if len(insights) < required:
            raise InsufficientModelsError(len(insights), required)

        fusion = self.fuse(chosen, insights, context)
        point_sets = [i.key_points for i in insights]
        assessment = self.assess(fusion.content, point_sets, context)

        usage = UsageRecord()
        for insight in insights:
            usage = usage + insight.usage

        return SynthesisResult(
            content=fusion.content,
            method=chosen,
            quality_score=fusion.quality_score,
            confidence=fusion.confidence,
            usage=usage,
            cost=sum(i.cost for i in insights),
            models_used=[i.model_id for i in insights],
            insights=insights,
            assessment=assessment,
            consensus_level=quality.consensus_level(point_sets),
            response_time_ms=(self.ctx.clock() - started) * 1000,
            request_id=context.request_id,
            failures=failures,
            details=fusion.details,
        )

    async def _insight(
        self,
        model_id: str,
        context: RequestContext,
        content: str,
        options: RequestOptions,
    ) -> ModelInsight:
        pinned = dataclasses.replace(options, model=model_id, allow_fallback=False)
        result = await self.fallback.process(context, content, pinned)
        score = quality.score_insight(result.content)
        model = self.ctx.catalog[model_id]
        return ModelInsight(
            model_id=model_id,
            provider=result.provider,
            content=result.content,
            usage=result.usage,
            cost=result.cost,
            quality_score=score,
            confidence=score * 0.6 + self.relevance(model, context) * 0.4,
            key_points=quality.extract_key_points(result.content),
            response_time_ms=result.response_time_ms,
        )

    # =========================================================================
    # Fusion methods
    # =========================================================================

    def fuse(
        self,
        method: SynthesisMethod,
        insights: list[ModelInsight],
        context: RequestContext,
    ) -> Fusion:
        if method == SynthesisMethod.EXPERTISE:
            return self._expertise(insights, context)
        if method == SynthesisMethod.HIERARCHICAL:
            return self._hierarchical(insights)
        if method == SynthesisMethod.COMPETITIVE:
            return self._competitive(insights, context)
        return self._consensus(insights)

    def _consensus(self, insights: list[ModelInsight]) -> Fusion:
        valid = [i for i in insights if i.quality_score >= self.config.quality_threshold]
        if not valid:
            valid = insights
        point_sets = [i.key_points for i in valid]
        themes = quality.common_themes(point_sets)
        agreed = quality.agreements(point_sets)
        conflicts = disagreements(point_sets)

        lines = ["## Consensus Analysis", ""]
        if themes:
            lines.append("### Key Themes")
            lines += [f"- {t.text} (mentioned by {t.frequency} models)" for t in themes]
            lines.append("")
        if agreed:
            lines.append("### Strong Agreements")
            lines += [f"- {t.text}" for t in agreed]
            lines.append("")
        if conflicts:
            lines.append("### Areas of Disagreement")
            lines += [f'- Conflicting views: "{a}" vs "{b}"' for a, b in conflicts]
            lines.append("")
        lines += [
            "### Synthesized Recommendations",
            "1. Focus on areas where all models agree for highest confidence",
            "2. Investigate disagreements for potential risks or opportunities",
            "3. Consider multiple perspectives when making final decisions",
        ]

        total_weight = sum(i.confidence for i in valid)
        if total_weight > 0:
            weighted = sum(i.quality_score * i.confidence for i in valid) / total_weight
        else:
            weighted = sum(i.quality_score for i in valid) / len(valid)

        return Fusion(
            content="\n".join(lines),
            method=SynthesisMethod.CONSENSUS,
            quality_score=weighted,
            confidence=min(total_weight / len(valid), 1.0),
            details={
                "contributors": [i.model_id for i in valid],
                "common_themes": len(themes),
                "agreements": len(agreed),
                "disagreements": len(conflicts),
            },
        )

    def _expertise_weight(self, insight: ModelInsight, context: RequestContext) -> float:
        model = self.ctx.catalog.get(insight.model_id)
        if model is None:
            return 0.5
        return model.quality_score * 0.6 + self.relevance(model, context) * 0.4

    def _expertise(self, insights: list[ModelInsight], context: RequestContext) -> Fusion:
        weights = {i.model_id: self._expertise_weight(i, context) for i in insights}
        ranked = sorted(insights, key=lambda i: -(i.confidence * weights[i.model_id]))
        primary, supporting = ranked[0], ranked[1:]
        primary_weight = weights[primary.model_id]

        lines = [f"## Expert Analysis (Primary: {primary.model_id})", "", "### Primary Expert Insight", primary.content, ""]
        if supporting:
            lines.append("### Supporting Analysis")
            for insight in supporting:
                lines.append(f"**{insight.model_id}**: {insight.content[:SUPPORTING_EXCERPT_CHARS]}...")
                lines.append("")
        lines += [
            "### Expert Synthesis",
            "The primary expert analysis is validated and enhanced by supporting models, "
            f"with {primary_weight:.2f} expertise confidence.",
        ]

        return Fusion(
            content="\n".join(lines),
            method=SynthesisMethod.EXPERTISE,
            quality_score=primary.quality_score,
            confidence=primary.confidence * primary_weight,
            details={
                "primary_expert": primary.model_id,
                "expertise_weights": {i.model_id: weights[i.model_id] for i in ranked},
            },
        )

    def _validation_level(self, primary: ModelInsight, other: ModelInsight) -> float:
        shared = quality.common_points(primary.key_points, other.key_points)
        most = max(len(primary.key_points), len(other.key_points))
        return len(shared) / most if most else 0.0

    def _hierarchical(self, insights: list[ModelInsight]) -> Fusion:
        primary = insights[0]
        for insight in insights[1:]:
            if insight.quality_score * insight.confidence > primary.quality_score * primary.confidence:
                primary = insight
        validators = [i for i in insights if i is not primary]

        lines = ["## Hierarchical Analysis", "", f"### Primary Analysis ({primary.model_id})", primary.content, ""]
        levels = []
        if validators:
            lines.append("### Validation and Enhancement")
            for insight in validators:
                level = self._validation_level(primary, insight)
                levels.append(level)
                lines.append(
                    f"**{insight.model_id}** ({level * 100:.1f}% validation): "
                    f"{insight.content[:VALIDATING_EXCERPT_CHARS]}..."
                )
                lines.append("")

        return Fusion(
            content="\n".join(lines),
            method=SynthesisMethod.HIERARCHICAL,
            quality_score=primary.quality_score,
            confidence=primary.confidence,
            details={
                "primary_model": primary.model_id,
                "validating_models": [i.model_id for i in validators],
                "validation_score": sum(levels) / len(levels) if levels else 0.0,
            },
        )

    def _method_bonus(self, method: SynthesisMethod, context: RequestContext) -> float:
        fits = {
            SynthesisMethod.CONSENSUS: context.urgency == Urgency.REALTIME,
            SynthesisMethod.EXPERTISE: context.task_type == TaskType.EXECUTIVE,
            SynthesisMethod.HIERARCHICAL: context.specialization,
            SynthesisMethod.COMPETITIVE: context.complexity == Complexity.HIGH,
        }
        return 0.2 if fits.get(method) else 0.1

    def _competitive(self, insights: list[ModelInsight], context: RequestContext) -> Fusion:
        contenders = [
            self._consensus(insights),
            self._expertise(insights, context),
            self._hierarchical(insights),
        ]

        def score(fusion: Fusion) -> float:
            return (
                fusion.quality_score * 0.4
                + fusion.confidence * 0.3
                + self._method_bonus(fusion.method, context) * 0.3
            )

        best = max(contenders, key=score)
        return Fusion(
            content=best.content,
            method=SynthesisMethod.COMPETITIVE,
            quality_score=best.quality_score,
            confidence=best.confidence,
            details={
                **best.details,
                "winning_method": best.method.value,
                "competitive_score": score(best),
                "alternatives": len(contenders) - 1,
            },
        )

    # =========================================================================
    # Assessment
    # =========================================================================

    def assess(
        self,
        content: str,
        key_point_sets: list[list[str]],
        context: RequestContext,
    ) -> QualityAssessment:
        """Weighted quality of a fused answer."""
        scores = {
            "completeness": quality.completeness(content, key_point_sets),
            "accuracy": quality.accuracy(key_point_sets),
            "insight": quality.insight_value(content, context),
            "clarity": quality.clarity(content),
        }
        weights = self.config.quality_weights
        overall = sum(scores[name] * weights[name] for name in scores)
        return QualityAssessment(overall_score=overall, **scores)

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "max_models": self.config.max_models,
            "min_models": self.config.min_models,
            "quality_threshold": self.config.quality_threshold,
            "quality_weights": dict(self.config.quality_weights),
            "methods": [m.value for m in SynthesisMethod],
            "metrics": self.ctx.metrics.synthesis_stats(),
        }
