"""
Model catalog for Switchboard.

Each entry describes one model: which provider serves it, what it costs,
how much context it takes, its per-minute quota and what it is good at.
The catalog is read-only once an orchestrator has been built from it.
"""

from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

from switchboard.schemas import ModelDescriptor, Provider


# =============================================================================
# DEFAULT MODELS
# =============================================================================

DEFAULT_MODELS: tuple[ModelDescriptor, ...] = (

    # -------------------------------------------------------------------------
    # AIMLAPI: aggregated access to frontier models at reduced prices
    # -------------------------------------------------------------------------
    ModelDescriptor(
        model_id="gpt-5-pro",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.00131,
        output_cost_per_1k=0.00525,
        context_window=400_000,
        rate_limit_per_minute=100,
        quality_score=0.95,
        speed_score=0.6,
        specialties=(
            "executive", "interview", "strategic-analysis", "executive-insights",
            "complex-reasoning", "decision-support",
        ),
        weaknesses=("cost-efficiency", "speed"),
        direct_cost_per_1k=0.0375,
    ),
    ModelDescriptor(
        model_id="claude-4.5-sonnet",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.00315,
        output_cost_per_1k=0.01575,
        context_window=200_000,
        rate_limit_per_minute=50,
        quality_score=0.90,
        speed_score=0.7,
        specialties=(
            "sales", "analytical-reasoning", "ethical-analysis",
            "balanced-perspectives", "sales-insights",
        ),
        weaknesses=("real-time-processing", "multilingual"),
        direct_cost_per_1k=0.045,
    ),
    ModelDescriptor(
        model_id="grok-4-fast",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.00021,
        output_cost_per_1k=0.000525,
        context_window=2_000_000,
        rate_limit_per_minute=200,
        quality_score=0.80,
        speed_score=0.95,
        specialties=(
            "realtime", "real-time-processing", "quick-insights",
            "pattern-recognition", "speed",
        ),
        weaknesses=("complex-analysis", "nuanced-reasoning"),
        direct_cost_per_1k=0.025,
    ),
    ModelDescriptor(
        model_id="deepseek-v3.1",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.000588,
        output_cost_per_1k=0.001764,
        context_window=128_000,
        rate_limit_per_minute=500,
        quality_score=0.75,
        speed_score=0.8,
        specialties=(
            "monitoring", "pattern-analysis", "trend-identification",
            "cost-efficiency",
        ),
        weaknesses=("creative-insights", "strategic-thinking"),
        direct_cost_per_1k=0.02,
    ),
    ModelDescriptor(
        model_id="qwen3-max",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.00168,
        output_cost_per_1k=0.00672,
        context_window=262_000,
        rate_limit_per_minute=100,
        quality_score=0.78,
        speed_score=0.75,
        specialties=(
            "multilingual", "cultural-context", "translation",
            "international-business",
        ),
        weaknesses=("english-only-contexts", "technical-depth"),
        direct_cost_per_1k=0.03,
    ),
    ModelDescriptor(
        model_id="gemini-2.5-flash",
        provider=Provider.AIMLAPI,
        input_cost_per_1k=0.000315,
        output_cost_per_1k=0.002625,
        context_window=1_000_000,
        rate_limit_per_minute=150,
        quality_score=0.82,
        speed_score=0.85,
        specialties=(
            "realtime", "multilingual", "balanced-analysis", "general-purpose",
            "cost-effective",
        ),
        weaknesses=("specialized-domains", "premium-insights"),
        direct_cost_per_1k=0.014,
    ),

    # -------------------------------------------------------------------------
    # Direct providers: used when the aggregator is unavailable
    # -------------------------------------------------------------------------
    ModelDescriptor(
        model_id="gpt-4o",
        provider=Provider.OPENAI,
        input_cost_per_1k=0.015,
        output_cost_per_1k=0.06,
        context_window=128_000,
        quality_score=0.92,
        speed_score=0.75,
        specialties=("executive", "general-purpose", "complex-reasoning"),
    ),
    ModelDescriptor(
        model_id="gpt-4-turbo",
        provider=Provider.OPENAI,
        input_cost_per_1k=0.01,
        output_cost_per_1k=0.03,
        context_window=128_000,
        quality_score=0.88,
        speed_score=0.7,
        specialties=("general-purpose", "analytical-reasoning"),
    ),
    ModelDescriptor(
        model_id="gemini-pro",
        provider=Provider.GOOGLE,
        input_cost_per_1k=0.007,
        output_cost_per_1k=0.021,
        context_window=32_760,
        quality_score=0.85,
        speed_score=0.8,
        specialties=("multilingual", "general-purpose"),
    ),
    ModelDescriptor(
        model_id="claude-3-sonnet",
        provider=Provider.ANTHROPIC,
        input_cost_per_1k=0.015,
        output_cost_per_1k=0.075,
        context_window=200_000,
        quality_score=0.88,
        speed_score=0.65,
        specialties=("sales", "analytical-reasoning", "balanced-perspectives"),
        upstream_name="claude-3-sonnet-20240229",
    ),
    ModelDescriptor(
        model_id="claude-3-haiku",
        provider=Provider.ANTHROPIC,
        input_cost_per_1k=0.0025,
        output_cost_per_1k=0.0125,
        context_window=200_000,
        quality_score=0.70,
        speed_score=0.9,
        specialties=("realtime", "quick-insights"),
        upstream_name="claude-3-haiku-20240307",
    ),
)


class ModelCatalog(Mapping[str, ModelDescriptor]):
    """
    Read-only mapping of model id to descriptor.

    Iteration follows insertion order, which is also the tie-break order
    used when everything else about two models is equal.
    """

    def __init__(self, models: Iterable[ModelDescriptor] = DEFAULT_MODELS):
        entries: dict[str, ModelDescriptor] = {}
        for model in models:
            if model.model_id in entries:
                raise ValueError(f"Duplicate model in catalog: {model.model_id}")
            entries[model.model_id] = model
        self._models = MappingProxyType(entries)

    def __getitem__(self, model_id: str) -> ModelDescriptor:
        return self._models[model_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def models_for(self, provider: Provider) -> list[ModelDescriptor]:
        """All models served by ``provider``, in catalog order."""
        return [m for m in self._models.values() if m.provider == provider]

    def provider_of(self, model_id: str) -> Optional[Provider]:
        model = self._models.get(model_id)
        return model.provider if model else None

    def with_models(self, *models: ModelDescriptor) -> "ModelCatalog":
        """Return a new catalog with ``models`` added or replaced."""
        merged = dict(self._models)
        for model in models:
            merged[model.model_id] = model
        return ModelCatalog(merged.values())


def get_default_catalog() -> ModelCatalog:
    """Catalog built from the bundled model list."""
    return ModelCatalog(DEFAULT_MODELS)
