"""Configuration for Switchboard."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

from switchboard.circuit_breaker import CircuitBreakerConfig
from switchboard.cost_ledger import BudgetConfig
from switchboard.schemas import DEFAULT_PROVIDER_ORDER, Provider


T = TypeVar("T")

QUALITY_CRITERIA = ("completeness", "accuracy", "insight", "clarity")


class ConfigError(ValueError):
    """Raised when an environment value cannot be parsed."""


@dataclass
class ProviderSettings:
    """Timeout and retry policy for one provider."""
    timeout_s: float = 30.0
    max_attempts: int = 3
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0

    def __post_init__(self):
        if self.timeout_s <= 0:
            raise ConfigError("timeout_s must be positive")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.retry_base_delay_s * 2 ** (attempt - 1), self.retry_max_delay_s)


@dataclass
class SynthesisConfig:
    enabled: bool = True
    max_models: int = 3
    min_models: int = 2
    quality_threshold: float = 0.8
    quality_weights: Dict[str, float] = field(
        default_factory=lambda: {c: 0.25 for c in QUALITY_CRITERIA}
    )

    def __post_init__(self):
        if self.min_models < 2:
            raise ConfigError("min_models must be at least 2")
        if self.max_models < self.min_models:
            raise ConfigError("max_models must be >= min_models")
        if set(self.quality_weights) != set(QUALITY_CRITERIA):
            raise ConfigError(f"quality_weights must cover exactly {', '.join(QUALITY_CRITERIA)}")
        if abs(sum(self.quality_weights.values()) - 1.0) > 1e-9:
            raise ConfigError("quality_weights must sum to 1")


@dataclass
class OrchestratorConfig:
    """Everything an ``Orchestrator`` can be tuned with."""
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    provider_order: tuple[Provider, ...] = DEFAULT_PROVIDER_ORDER
    default_provider_settings: ProviderSettings = field(default_factory=ProviderSettings)
    provider_settings: Dict[Provider, ProviderSettings] = field(default_factory=dict)
    rate_limits: Dict[str, int] = field(default_factory=dict)  # Overrides catalog quotas
    default_rate_limit: int = 60
    optimization_enabled: bool = True
    default_strategy: str = "balanced"

    def __post_init__(self):
        if len(set(self.provider_order)) != len(self.provider_order):
            raise ConfigError("provider_order must not repeat providers")

    def settings_for(self, provider: Provider) -> ProviderSettings:
        return self.provider_settings.get(provider, self.default_provider_settings)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OrchestratorConfig":
        """Build configuration from ``SWITCHBOARD_*`` environment variables."""
        env = os.environ if environ is None else environ

        budget = BudgetConfig(
            monthly_budget_usd=_get(env, "SWITCHBOARD_MONTHLY_BUDGET", float, 5000.0),
            info_threshold=_get(env, "SWITCHBOARD_ALERT_INFO", float, 0.70),
            warning_threshold=_get(env, "SWITCHBOARD_ALERT_WARNING", float, 0.85),
            critical_threshold=_get(env, "SWITCHBOARD_ALERT_CRITICAL", float, 0.95),
            enforcement_enabled=_get(env, "SWITCHBOARD_BUDGET_ENFORCEMENT", _parse_bool, False),
            auto_reset_period=_get(env, "SWITCHBOARD_AUTO_RESET_PERIOD", _parse_bool, True),
        )
        breaker = CircuitBreakerConfig(
            failure_threshold=_get(env, "SWITCHBOARD_FAILURE_THRESHOLD", int, 3),
            recovery_threshold=_get(env, "SWITCHBOARD_RECOVERY_THRESHOLD", int, 2),
            open_timeout_s=_get(env, "SWITCHBOARD_OPEN_TIMEOUT", float, 60.0),
            enabled=_get(env, "SWITCHBOARD_CIRCUIT_BREAKER_ENABLED", _parse_bool, True),
        )
        synthesis = SynthesisConfig(
            enabled=_get(env, "SWITCHBOARD_SYNTHESIS_ENABLED", _parse_bool, True),
            max_models=_get(env, "SWITCHBOARD_SYNTHESIS_MAX_MODELS", int, 3),
            quality_threshold=_get(env, "SWITCHBOARD_SYNTHESIS_QUALITY_THRESHOLD", float, 0.8),
        )
        defaults = ProviderSettings(
            timeout_s=_get(env, "SWITCHBOARD_PROVIDER_TIMEOUT", float, 30.0),
            max_attempts=_get(env, "SWITCHBOARD_PROVIDER_ATTEMPTS", int, 3),
        )

        per_provider: Dict[Provider, ProviderSettings] = {}
        for name, overrides in (_parse_json_env(env, "SWITCHBOARD_PROVIDER_SETTINGS_JSON") or {}).items():
            if not isinstance(overrides, dict):
                raise ConfigError(f"settings for {name} must be an object")
            try:
                per_provider[Provider(name)] = ProviderSettings(**{
                    "timeout_s": defaults.timeout_s,
                    "max_attempts": defaults.max_attempts,
                    **overrides,
                })
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"invalid provider settings for {name}: {exc}") from exc

        rate_limits = {}
        for model_id, limit in (_parse_json_env(env, "SWITCHBOARD_RATE_LIMITS_JSON") or {}).items():
            if not isinstance(limit, int) or limit < 0:
                raise ConfigError(f"rate limit for {model_id} must be a non-negative integer")
            rate_limits[model_id] = limit

        order = DEFAULT_PROVIDER_ORDER
        raw_order = env.get("SWITCHBOARD_PROVIDER_ORDER")
        if raw_order:
            try:
                order = tuple(Provider(p.strip()) for p in raw_order.split(",") if p.strip())
            except ValueError as exc:
                raise ConfigError(f"SWITCHBOARD_PROVIDER_ORDER: {exc}") from exc

        return cls(
            budget=budget,
            circuit_breaker=breaker,
            synthesis=synthesis,
            provider_order=order,
            default_provider_settings=defaults,
            provider_settings=per_provider,
            rate_limits=rate_limits,
            optimization_enabled=_get(env, "SWITCHBOARD_OPTIMIZATION_ENABLED", _parse_bool, True),
            default_strategy=env.get("SWITCHBOARD_DEFAULT_STRATEGY", "balanced"),
        )


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _get(env: Mapping[str, str], name: str, parse: Callable[[str], T], default: T) -> T:
    value = env.get(name)
    if value is None or value == "":
        return default
    try:
        return parse(value)
    except ValueError as exc:
        raise ConfigError(f"{name}: {exc}") from exc


def _parse_json_env(env: Mapping[str, str], var_name: str) -> Dict[str, Any] | None:
    value = env.get(var_name)
    if not value:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{var_name} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError(f"{var_name} must be a JSON object")
    return parsed
