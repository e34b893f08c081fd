"""
Input validation for Switchboard.

Rejects malformed requests before any provider is contacted.
"""

from typing import Iterable, Optional

from switchboard.catalog import ModelCatalog
from switchboard.schemas import RequestContext, RequestOptions


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


MAX_CONTENT_LENGTH = 1_000_000  # 1M characters (~250K tokens)
MAX_OUTPUT_TOKENS = 128_000
MAX_TEMPERATURE = 2.0
MAX_TIMEOUT_S = 600.0


def validate_content(content: str) -> None:
    """
    Validate request content.

    Args:
        content: Text sent to the model

    Raises:
        ValidationError: If content is invalid
    """
    if not isinstance(content, str):
        raise ValidationError(f"Content must be a string, got {type(content).__name__}")

    if not content.strip():
        raise ValidationError("Content cannot be empty or whitespace-only")

    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(
            f"Content too long: {len(content):,} characters "
            f"(max: {MAX_CONTENT_LENGTH:,})"
        )


def validate_model(model_id: Optional[str], catalog: ModelCatalog, field: str = "model") -> None:
    """Reject model ids that are not in the catalog."""
    if model_id is None:
        return
    if model_id not in catalog:
        raise ValidationError(f"Unknown {field}: {model_id!r}")


def validate_models(model_ids: Iterable[str], catalog: ModelCatalog) -> None:
    for model_id in model_ids:
        validate_model(model_id, catalog)


def validate_context(context: RequestContext, catalog: ModelCatalog) -> None:
    if not isinstance(context.language, str) or not context.language.strip():
        raise ValidationError("language must be a non-empty string")
    validate_model(context.preferred_model, catalog, field="preferred_model")


def validate_options(options: RequestOptions, catalog: ModelCatalog) -> None:
    """
    Validate per-call options.

    Raises:
        ValidationError: If any option is out of range
    """
    if not isinstance(options.max_tokens, int) or options.max_tokens <= 0:
        raise ValidationError(f"max_tokens must be a positive integer, got {options.max_tokens!r}")

    if options.max_tokens > MAX_OUTPUT_TOKENS:
        raise ValidationError(
            f"max_tokens too large: {options.max_tokens:,} (max: {MAX_OUTPUT_TOKENS:,})"
        )

    if not isinstance(options.temperature, (int, float)) or not (
        0.0 <= options.temperature <= MAX_TEMPERATURE
    ):
        raise ValidationError(
            f"temperature must be between 0 and {MAX_TEMPERATURE}, got {options.temperature!r}"
        )

    if options.expected_output_tokens < 0:
        raise ValidationError(
            f"expected_output_tokens cannot be negative, got {options.expected_output_tokens}"
        )

    if options.timeout_s is not None and not (0 < options.timeout_s <= MAX_TIMEOUT_S):
        raise ValidationError(
            f"timeout_s must be in (0, {MAX_TIMEOUT_S:.0f}], got {options.timeout_s}"
        )

    validate_model(options.model, catalog)


def validate_request(
    content: str,
    context: RequestContext,
    options: RequestOptions,
    catalog: ModelCatalog,
) -> None:
    """
    Validate all request parameters.

    Raises:
        ValidationError: If any parameter is invalid
    """
    validate_content(content)
    validate_context(context, catalog)
    validate_options(options, catalog)
