"""Configuration management for the risk engine.

Rules:
- YAML provides defaults for non-secret config.
- Secrets (SMTP password, webhook URL) come from .env / environment variables and override YAML.
- We do NOT inject YAML into os.environ.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RiskLimitsConfig(BaseModel):
    """Hard risk limits, all expressed as fractions of portfolio value or ratios."""

    max_position_size: float = Field(default=0.02, gt=0.0, le=1.0)
    max_daily_loss: float = Field(default=0.05, gt=0.0, le=1.0)
    max_drawdown: float = Field(default=0.10, gt=0.0, le=1.0)
    margin_threshold: float = Field(default=0.70, gt=0.0, le=1.0)
    risk_free_rate: float = Field(default=0.05, gt=0.0, le=1.0)

    model_config = {"frozen": True}


class RiskConfig(BaseModel):
    """Risk manager configuration."""

    limits: RiskLimitsConfig = Field(default_factory=RiskLimitsConfig)
    reduce_target_ratio: float = Field(
        default=0.9,
        gt=0.0,
        le=1.0,
        description="Partial de-risk aims for margin_threshold * this ratio",
    )
    returns_history: int = Field(default=500, ge=2, le=100_000)
    annualization_factor: int = Field(default=252, ge=1, le=100_000)


class IndicatorConfig(BaseModel):
    """Technical indicator configuration."""

    atr_period: int = Field(default=14, ge=2, le=500)
    macd_fast_period: int = Field(default=12, ge=2, le=500)
    macd_slow_period: int = Field(default=26, ge=2, le=500)
    macd_signal_period: int = Field(default=9, ge=2, le=500)
    macd_signal_mode: str = Field(default="trailing")
    bollinger_period: int = Field(default=20, ge=2, le=500)
    bollinger_std_dev: float = Field(default=2.0, gt=0)
    session_length_sec: int = Field(default=86400, ge=60)
    history_capacity: int = Field(default=500, ge=26, le=1_000_000)

    @field_validator("macd_slow_period")
    @classmethod
    def validate_macd_periods(cls, v: int, info) -> int:
        if "macd_fast_period" in info.data and v <= info.data["macd_fast_period"]:
            raise ValueError("macd_slow_period must be greater than macd_fast_period")
        return v

    @field_validator("macd_signal_mode")
    @classmethod
    def validate_signal_mode(cls, v: str) -> str:
        if str(v).lower() not in ("trailing", "single_point"):
            raise ValueError("macd_signal_mode must be 'trailing' or 'single_point'")
        return str(v).lower()

    @field_validator("history_capacity")
    @classmethod
    def validate_capacity(cls, v: int, info) -> int:
        slow = info.data.get("macd_slow_period", 26)
        if v < slow:
            raise ValueError("history_capacity must cover the slow MACD period")
        return v


class MetricBoundsConfig(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class MonitoringConfig(BaseModel):
    max_series_length: int = Field(default=1000, ge=1, le=100_000)
    zscore_window: int = Field(default=50, ge=2, le=10_000)
    zscore_min_samples: int = Field(default=10, ge=2, le=10_000)
    zscore_threshold: float = Field(default=4.0, gt=0)
    zscore_flat_tolerance: float = Field(default=0.05, ge=0)
    thresholds: Dict[str, MetricBoundsConfig] = Field(default_factory=dict)
    status_path: Optional[str] = Field(default="data/status.json")


class EmailConfig(BaseModel):
    enabled: bool = Field(default=False)
    smtp_host: str = Field(default="localhost")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    use_tls: bool = Field(default=True)
    username: str = Field(default="")
    password: str = Field(default="")
    sender: str = Field(default="risk-engine@localhost")
    recipients: List[str] = Field(default_factory=list)


class NotificationConfig(BaseModel):
    webhook_url: Optional[str] = Field(default=None)
    webhook_timeout_sec: float = Field(default=5.0, gt=0)
    email: EmailConfig = Field(default_factory=EmailConfig)
    dashboard_max_alerts: int = Field(default=200, ge=1, le=10_000)
    dashboard_path: Optional[str] = Field(default=None)


class PaperPositionConfig(BaseModel):
    tradingsymbol: str
    quantity: int
    price: float = Field(gt=0)
    exchange: str = Field(default="NSE")
    producttype: str = Field(default="INTRADAY")


class EngineConfig(BaseModel):
    cycle_interval_seconds: float = Field(default=5.0, gt=0)
    dry_run: bool = Field(default=True)
    paper_starting_equity: float = Field(default=100_000.0, gt=0)
    paper_margin_rate: float = Field(default=0.2, gt=0, le=1.0)
    paper_positions: List[PaperPositionConfig] = Field(default_factory=list)
    tick_replay_delay_sec: float = Field(default=0.0, ge=0)


class APIConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])


class RiskEngineConfig(BaseSettings):
    """Main configuration for the risk engine.

    YAML is parsed as the base config, then env overrides are applied for secrets.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True, description="False renders human-readable console logs")

    risk: RiskConfig = Field(default_factory=RiskConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    api: APIConfig = Field(default_factory=APIConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ValueError(f"Log level must be one of: {sorted(valid)}")
        return str(v).upper()

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "RiskEngineConfig":
        """Load configuration from YAML without polluting the environment.

        Steps:
        1) Parse YAML -> base config dict
        2) Validate into model
        3) Apply env overrides (NOTIFICATIONS__WEBHOOK_URL, etc.) on top
        """
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        try:
            base = cls.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation error: {e}")

        return apply_env_overrides(base)


def apply_env_overrides(base: RiskEngineConfig) -> RiskEngineConfig:
    if os.getenv("LOG_LEVEL"):
        base.log_level = os.getenv("LOG_LEVEL", base.log_level).upper()

    if os.getenv("NOTIFICATIONS__WEBHOOK_URL"):
        base.notifications.webhook_url = os.getenv("NOTIFICATIONS__WEBHOOK_URL")

    if os.getenv("NOTIFICATIONS__EMAIL__USERNAME"):
        base.notifications.email.username = os.getenv("NOTIFICATIONS__EMAIL__USERNAME", "")

    if os.getenv("NOTIFICATIONS__EMAIL__PASSWORD"):
        base.notifications.email.password = os.getenv("NOTIFICATIONS__EMAIL__PASSWORD", "")

    # engine.dry_run: false = send orders to the configured broker
    dry_run_env = os.getenv("ENGINE__DRY_RUN")
    if dry_run_env is not None:
        base.engine.dry_run = str(dry_run_env).lower() in ("1", "true", "yes")

    return base


def load_config(config_path: Optional[Path] = None) -> RiskEngineConfig:
    """Load configuration from YAML + .env (env wins for secrets).

    Without a YAML file the built-in defaults are used.
    """
    load_dotenv(dotenv_path=Path(".env"))

    if config_path is None:
        possible_paths = [Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            return apply_env_overrides(RiskEngineConfig())

    return RiskEngineConfig.from_yaml(config_path)
