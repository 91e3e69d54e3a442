"""
Configuration for the brok mastery engine.

Two layers:
- MasteryConfig: immutable algorithm tuning (thresholds, weights, format strengths),
  injected into every engine component.
- Settings: environment/.env driven service settings (Pydantic Settings), which
  also know how to build a MasteryConfig.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from functools import lru_cache
from types import MappingProxyType
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from brok.errors import ConfigurationError

# Evidence quality per unit format. Must match the identifiers emitted by
# the content generation service.
FORMAT_STRENGTHS: Mapping[str, float] = MappingProxyType(
    {
        "diagnostic_mcq": 0.4,
        "micro_teach_then_check": 0.6,
        "drill_set": 0.5,
        "applied_free_response": 0.9,
        "error_reversal": 0.7,
    }
)

# Canonical order used when looking for a format the learner has not seen yet.
VARIETY_ORDER: tuple[str, ...] = (
    "diagnostic_mcq",
    "micro_teach_then_check",
    "drill_set",
    "applied_free_response",
)

_UNIT_INTERVAL_FIELDS = (
    "p_master",
    "u_max",
    "s_min",
    "u_decay",
    "stability_alpha",
    "uncertainty_high",
    "mastery_low",
    "mastery_mid",
    "pass_score",
    "confirmation_score",
    "amnesty_score",
    "misconception_cap",
)


@dataclass(frozen=True)
class MasteryConfig:
    """Tuning profile for mastery gating, updates and scheduling."""

    # Gate
    p_master: float = 0.90
    u_max: float = 0.25
    s_min: float = 0.70
    k_confirmations: int = 3
    min_unit_types: int = 2

    # Update
    lr_base: float = 0.3
    u_decay: float = 0.15
    stability_alpha: float = 0.3
    pass_score: float = 0.85
    confirmation_score: float = 0.70
    amnesty_score: float = 0.90
    misconception_cap: float = 0.75
    p_clamp: tuple[float, float] = (0.001, 0.999)
    default_decay_rate: float = 0.01

    # Frontier priority weights
    lambda_uncertainty: float = 0.3
    mu_decay: float = 0.2
    nu_misconception: float = 0.4
    frontier_limit: int = 5

    # Unit-type selection thresholds
    uncertainty_high: float = 0.55
    mastery_low: float = 0.50
    mastery_mid: float = 0.80

    format_strengths: Mapping[str, float] = field(default_factory=lambda: FORMAT_STRENGTHS)
    variety_order: tuple[str, ...] = VARIETY_ORDER

    def __post_init__(self) -> None:
        for name in _UNIT_INTERVAL_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")

        if self.k_confirmations < 1 or self.min_unit_types < 1 or self.frontier_limit < 1:
            raise ConfigurationError("k_confirmations, min_unit_types and frontier_limit must be >= 1")

        for name in ("lr_base", "lambda_uncertainty", "mu_decay", "nu_misconception", "default_decay_rate"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")

        low, high = self.p_clamp
        if not 0.0 < low < high < 1.0:
            raise ConfigurationError(f"p_clamp must satisfy 0 < low < high < 1, got {self.p_clamp}")

        for unit_type, strength in self.format_strengths.items():
            if not 0.0 <= strength <= 1.0:
                raise ConfigurationError(f"format strength for {unit_type} must be within [0, 1]")

        # Freeze whatever mapping the caller handed in
        if not isinstance(self.format_strengths, MappingProxyType):
            object.__setattr__(self, "format_strengths", MappingProxyType(dict(self.format_strengths)))

    def format_strength(self, unit_type: str) -> float:
        """Evidence quality constant for a unit format."""
        try:
            return self.format_strengths[getattr(unit_type, "value", unit_type)]
        except KeyError:
            raise ConfigurationError(f"No format strength configured for unit type '{unit_type}'") from None

    def to_dict(self) -> dict[str, object]:
        """Plain-dict view, for logging and CLI output."""
        result: dict[str, object] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            result[f.name] = dict(value) if isinstance(value, Mapping) else value
        return result


DEFAULT_CONFIG = MasteryConfig()


class Settings(BaseSettings):
    """Service settings loaded from environment variables (prefix BROK_)."""

    model_config = SettingsConfigDict(
        env_prefix="BROK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///brok_state.db",
        description="SQLAlchemy URL for the mastery state store",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_file: str | None = Field(
        default=None,
        description="Optional log file path",
    )

    # ========================================
    # Mastery Gate
    # ========================================
    mastery_p_master: float = Field(default=0.90, ge=0.0, le=1.0, description="Mastery probability threshold")
    mastery_u_max: float = Field(default=0.25, ge=0.0, le=1.0, description="Maximum uncertainty for mastery")
    mastery_s_min: float = Field(default=0.70, ge=0.0, le=1.0, description="Minimum stability for mastery")
    mastery_k_confirmations: int = Field(default=3, ge=1, description="Confirmations required")
    mastery_min_unit_types: int = Field(default=2, ge=1, description="Distinct unit formats required")

    # ========================================
    # Mastery Update
    # ========================================
    mastery_lr_base: float = Field(default=0.3, ge=0.0, description="Base learning rate (logit space)")
    mastery_u_decay: float = Field(default=0.15, ge=0.0, le=1.0, description="Uncertainty decay per unit evidence")
    mastery_stability_alpha: float = Field(default=0.3, ge=0.0, le=1.0, description="Stability EMA alpha")
    mastery_default_decay_rate: float = Field(default=0.01, ge=0.0, description="Decay rate for new states")

    # ========================================
    # Frontier Selection
    # ========================================
    frontier_lambda_uncertainty: float = Field(default=0.3, ge=0.0, description="Priority weight for uncertainty")
    frontier_mu_decay: float = Field(default=0.2, ge=0.0, description="Priority weight for decay risk")
    frontier_nu_misconception: float = Field(default=0.4, ge=0.0, description="Priority weight for misconceptions")
    frontier_limit: int = Field(default=5, ge=1, description="Number of frontier candidates returned")

    # Domain policy: misconceptions that block mastery outright
    critical_misconceptions: str = Field(
        default="",
        description="Comma-separated misconception tags that block mastery",
    )

    def get_mastery_config(self) -> MasteryConfig:
        """Build the immutable engine configuration from these settings."""
        return MasteryConfig(
            p_master=self.mastery_p_master,
            u_max=self.mastery_u_max,
            s_min=self.mastery_s_min,
            k_confirmations=self.mastery_k_confirmations,
            min_unit_types=self.mastery_min_unit_types,
            lr_base=self.mastery_lr_base,
            u_decay=self.mastery_u_decay,
            stability_alpha=self.mastery_stability_alpha,
            default_decay_rate=self.mastery_default_decay_rate,
            lambda_uncertainty=self.frontier_lambda_uncertainty,
            mu_decay=self.frontier_mu_decay,
            nu_misconception=self.frontier_nu_misconception,
            frontier_limit=self.frontier_limit,
        )

    def get_critical_misconceptions(self) -> frozenset[str]:
        return frozenset(tag.strip() for tag in self.critical_misconceptions.split(",") if tag.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
