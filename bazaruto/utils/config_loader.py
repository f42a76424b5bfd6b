"""
Application configuration loader
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


class DatabaseConfig(BaseModel):
    url: Optional[str] = None
    echo: bool = False
    create_tables: bool = True


class RedisConfig(BaseModel):
    url: Optional[str] = None
    dead_letter_prefix: str = "dead_jobs"
    max_dead_jobs_per_queue: int = Field(default=1000, ge=1)


class JobsConfig(BaseModel):
    queues: Dict[str, int] = Field(
        default_factory=lambda: {
            "default": 2,
            "mailers": 1,
            "processing": 2,
            "heavy": 1,
            "payments": 1,
            "notifications": 2,
            "claims": 1,
        }
    )
    default_timeout: float = Field(default=300.0, gt=0)
    close_timeout: float = Field(default=10.0, ge=0)


class EventsConfig(BaseModel):
    close_timeout: float = Field(default=5.0, ge=0)


class SchedulerConfig(BaseModel):
    """Sweep intervals in seconds."""

    enabled: bool = False
    expired_policies_interval: float = Field(default=3600, gt=0)
    grace_periods_interval: float = Field(default=3600, gt=0)
    auto_renewals_interval: float = Field(default=21600, gt=0)
    renewal_reminders_interval: float = Field(default=86400, gt=0)
    reminder_days_ahead: int = Field(default=30, ge=1)


class PaymentsConfig(BaseModel):
    gateway_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout_seconds: float = Field(default=20.0, gt=0)
    simulated_decline_above: float = Field(default=10_000, ge=0)
    simulated_delay_seconds: float = Field(default=0.1, ge=0)


class RulesConfig(BaseModel):
    path: Optional[str] = None
    persist_updates: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class AppConfig(BaseModel):
    """Complete application configuration"""

    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    payments: PaymentsConfig = Field(default_factory=PaymentsConfig)
    rules: RulesConfig = Field(default_factory=RulesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def rules_path(self) -> Optional[Path]:
        return Path(self.rules.path) if self.rules.path else None


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    if os.getenv("DATABASE_URL"):
        config.database.url = os.environ["DATABASE_URL"]
    if os.getenv("REDIS_URL"):
        config.redis.url = os.environ["REDIS_URL"]
    if os.getenv("BUSINESS_RULES_PATH"):
        config.rules.path = os.environ["BUSINESS_RULES_PATH"]
    if os.getenv("LOG_LEVEL"):
        config.logging.level = os.environ["LOG_LEVEL"].upper()
    if os.getenv("PAYMENT_GATEWAY_URL"):
        config.payments.gateway_url = os.environ["PAYMENT_GATEWAY_URL"]
    if os.getenv("PAYMENT_GATEWAY_API_KEY"):
        config.payments.api_key = os.environ["PAYMENT_GATEWAY_API_KEY"]
    if os.getenv("SCHEDULER_ENABLED"):
        config.scheduler.enabled = os.environ["SCHEDULER_ENABLED"].lower() in ("1", "true", "yes")
    return config


def load_app_config(config_path: Optional[Path] = None, use_env: bool = True) -> AppConfig:
    """
    Load and validate application configuration from YAML file

    Args:
        config_path: Path to config file. Defaults to config/app_config.yml
        use_env: Apply environment variable overrides after loading

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
        ValidationError: If config doesn't match schema
    """
    explicit = config_path is not None
    if config_path is None:
        config_path = Path(__file__).parent.parent.parent / "config" / "app_config.yml"

    if not config_path.exists():
        if explicit:
            raise FileNotFoundError(f"Config file not found: {config_path}")
        logger.warning("Config file %s not found; using defaults", config_path)
        config = AppConfig()
    else:
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        try:
            config = AppConfig(**config_data)
            logger.info("Successfully loaded app config from %s", config_path)
        except ValidationError as e:
            logger.error("Config validation error: %s", e)
            raise

    if use_env:
        config = _apply_env_overrides(config)
    return config
