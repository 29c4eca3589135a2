"""
Configuration settings for the Synthetic Cross-Market Arbitrage engine.
Uses pydantic-settings for validation and environment variable loading.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CovarianceSettings(BaseSettings):
    """Rolling covariance / hedge ratio estimation."""

    # Exponential decay of older samples (5 minutes)
    half_life_ms: float = 300_000.0

    # Per-market rolling window capacity
    max_history_size: int = 1000

    # Below this many matched samples confidence is zero and the stored
    # relationship (placeholder or injected seed) is left as is
    min_samples: int = 10

    # Confidence sample curve: 1 - exp(-n / saturation)
    # 25 -> ~0.86 at 50 samples, ~0.98 at 100 samples
    sample_saturation: float = 25.0


class DetectorSettings(BaseSettings):
    """Opportunity detection thresholds."""

    # 2.5 sigma = ~1% two-tailed probability
    z_score_threshold: float = 2.5

    min_confidence: float = 0.7
    min_correlation: float = 0.7

    # Correlation risk tiers, highest first. The last tier is the hard floor.
    correlation_tiers: tuple[float, ...] = (0.9, 0.8, 0.7)

    # Stake model
    base_stake: float = 1000.0
    payout_multiplier: float = 1.0  # Even money

    # Tail risk (percent) = component average * scale
    tail_risk_scale: float = 10.0

    @field_validator("correlation_tiers")
    @classmethod
    def _tiers_descending(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if not v:
            raise ValueError("at least one correlation tier is required")
        return tuple(sorted(v, reverse=True))


class ProcessingSettings(BaseSettings):
    """Stream processor settings."""

    # Pairs whose timestamps differ by more than this are dropped
    max_latency_delta_ms: int = 500

    min_confidence: float = 0.7
    min_correlation: float = 0.7

    # Hard cap applied after sizing
    max_position_size: float = 25_000.0

    # False = shadow mode (size but never dispatch)
    enable_execution: bool = False


class RiskSettings(BaseSettings):
    """Position sizing and exposure limits."""

    bankroll: float = 100_000.0

    # Fractional Kelly
    kelly_scale: float = 0.5
    max_kelly_fraction: float = 0.25
    edge_ceiling: float = 1.0  # Edge per unit stake that earns the full fraction

    max_tail_risk_pct: float = 5.0

    # Correlation tier -> max total exposure (primary stake + hedge)
    exposure_by_tier: dict[float, float] = Field(default_factory=lambda: {
        0.9: 50_000.0,
        0.8: 25_000.0,
        0.7: 10_000.0,
    })


class CircuitBreakerSettings(BaseSettings):
    """Per-relationship circuit breaker."""

    enabled: bool = True

    # Correlation drop must persist before tripping
    correlation_drop_threshold: float = 0.6
    correlation_drop_duration_seconds: float = 30.0
    cooldown_seconds: float = 300.0

    # |z| beyond this means the model broke, not an opportunity
    residual_explosion_multiplier: float = 6.0

    # Consecutive trips before a manual reset is required
    max_consecutive_rejects: int = 5


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = True

    # Sub-settings
    covariance: CovarianceSettings = Field(default_factory=CovarianceSettings)
    detector: DetectorSettings = Field(default_factory=DetectorSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)


# Global settings instance
settings = Settings()
