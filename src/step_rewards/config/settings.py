"""
Settings for the step rewards engine
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine configuration with REWARDS_ prefix"""

    model_config = SettingsConfigDict(
        env_prefix="REWARDS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Service identification
    service_name: str = Field(
        default="step-rewards",
        description="Name of the service for logging and metrics",
    )
    environment: str = Field(
        default="development", description="Deployment environment"
    )
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8020, description="Server port")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or console")

    # Storage
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL; in-memory storage when unset",
    )
    database_min_pool_size: int = Field(default=2, ge=1)
    database_max_pool_size: int = Field(default=10, ge=1)
    storage_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Upper bound for a single storage call",
    )

    # Notifications
    kafka_bootstrap_servers: Optional[str] = Field(
        default=None,
        description="Kafka brokers for notification events; logging only when unset",
    )
    kafka_notification_topic: str = Field(
        default="rewards.events.notifications",
        description="Topic receiving tier-advance and goal events",
    )

    # Ledger
    daily_step_cap: int = Field(default=12000, gt=0)
    steps_per_unit: int = Field(default=25, gt=0)
    daily_goal_steps: int = Field(default=10000, gt=0)
    redemption_window_days: int = Field(
        default=7,
        ge=0,
        description="Days after which unredeemed coins are forfeited",
    )

    # Motion validation
    max_speed_kmh: float = Field(default=25.0, gt=0)
    max_gps_accuracy_meters: float = Field(default=100.0, gt=0)

    # Fraud scoring
    fraud_window_size: int = Field(default=10, ge=10, le=50)
    fraud_window_max_users: int = Field(default=10_000, ge=1)
    fraud_high_avg_steps: int = 2000
    fraud_speed_violation_limit: int = 3
    fraud_round_number_limit: int = 2
    fraud_rapid_pair_limit: int = 3
    fraud_rapid_gap_seconds: float = 1.0
    fraud_block_threshold: int = 70
    fraud_limit_threshold: int = 40
    limit_credit_factor: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Share of a limited sample's steps credited to the daily ledger",
    )

    # Device reconciliation
    conflict_tolerance_steps: int = Field(default=500, ge=0)

    # Rollover
    timezone: str = Field(default="UTC", description="IANA zone of the day boundary")
    rollover_cron: str = Field(default="0 0 * * *")
    rollover_grace_seconds: int = Field(default=60, ge=0)
    max_clock_skew_seconds: int = Field(
        default=300, ge=0, description="How far ahead of the server clock a sample may be dated"
    )
    rollover_enabled: bool = True

    # Phases
    phases_file: Optional[str] = Field(
        default=None,
        description="JSON file overriding the built-in phase table",
    )

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v


settings = Settings()
