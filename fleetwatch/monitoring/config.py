"""Monitoring engine configuration.

Controls correlation and duplicate windows, anomaly sensitivity, predictive
cutoffs, rule severity ratios, scheduler tick intervals and history
retention. All settings can be overridden via ``MONITORING_*`` environment
variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MonitoringConfig(BaseSettings):
    """Configuration for the real-time monitoring engine."""

    model_config = SettingsConfigDict(
        env_prefix="MONITORING_",
        case_sensitive=False,
        extra="ignore",
    )

    # Correlation: group similar open alerts within a trailing window
    correlation_window_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Seconds within which similar alerts share a correlation group",
    )
    correlation_tolerance: float = Field(
        default=0.10,
        ge=0.0,
        le=1.0,
        description="Max relative trigger_value difference for correlated alerts",
    )

    # Suppression
    duplicate_window_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Trailing window for the excessive-duplicates count",
    )
    duplicate_cap: int = Field(
        default=5,
        ge=1,
        description="Alerts with the same entity/metric/type per window before suppression",
    )

    # Rule evaluator
    rule_min_trigger_ratio: float = Field(
        default=0.0,
        ge=0.0,
        lt=1.0,
        description="Triggered ratio at or below which a firing rule emits nothing",
    )
    rule_critical_ratio: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Triggered ratio at or above which a rule alert is critical",
    )
    rule_warning_ratio: float = Field(
        default=0.6,
        gt=0.0,
        le=1.0,
        description="Triggered ratio at or above which a rule alert is warning",
    )

    # Anomaly detector
    anomaly_window_size: int = Field(
        default=30,
        ge=3,
        description="Trailing samples used for the per-metric baseline",
    )
    anomaly_min_samples: int = Field(
        default=10,
        ge=4,
        description="Samples required before any anomaly detection runs",
    )
    sensitivity_low: float = Field(default=3.0, gt=0, description="k for low sensitivity")
    sensitivity_medium: float = Field(default=2.5, gt=0, description="k for medium sensitivity")
    sensitivity_high: float = Field(default=2.0, gt=0, description="k for high sensitivity")
    anomaly_critical_factor: float = Field(
        default=1.5,
        ge=1.0,
        description="z-score multiple of k at which an anomaly becomes critical",
    )
    trend_min_slope: float = Field(
        default=0.05,
        ge=0.0,
        description="Min |slope| per sample on both halves to count a sign reversal",
    )
    trend_acceleration_threshold: float = Field(
        default=0.5,
        gt=0.0,
        description="Min |slope_new - slope_old| per sample to flag acceleration",
    )

    # Predictive risk estimator
    predictive_enabled: bool = Field(
        default=True,
        description="Call the risk scorer during evaluation",
    )
    predictive_warning_probability: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Probability at or above which a prediction becomes a warning",
    )
    predictive_critical_probability: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Probability at or above which a prediction becomes critical",
    )
    predictive_horizons: list[str] = Field(
        default=["1d"],
        description="Horizons passed to the risk scorer",
    )
    predictive_interval_seconds: float = Field(
        default=3600.0,
        ge=0,
        description="Min seconds between scorer calls for one entity",
    )
    predictive_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Per-call timeout for the risk scorer",
    )

    # Scheduler
    ingest_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Polling interval for entities with a metric source",
    )
    alert_queue_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Escalation check tick",
    )
    health_check_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Health check tick",
    )
    entity_inbox_size: int = Field(
        default=100,
        ge=1,
        description="Max queued snapshots per entity worker",
    )

    # History retention
    history_retention_seconds: float = Field(
        default=86400.0,
        gt=0,
        description="Age after which history samples are discarded",
    )
    history_max_samples: int = Field(
        default=500,
        ge=10,
        description="Max samples retained per (entity, metric)",
    )

    def sensitivity_multiplier(self, sensitivity: str) -> float:
        """k for a threshold sensitivity level (medium when unknown)."""
        return {
            "low": self.sensitivity_low,
            "medium": self.sensitivity_medium,
            "high": self.sensitivity_high,
        }.get(sensitivity, self.sensitivity_medium)
