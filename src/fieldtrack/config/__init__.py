"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="fieldtrack", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root logging level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/fieldtrack",
        description="Async SQLAlchemy connection URL"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Tracking Configuration ==========
    tracking_config_path: Path = Field(
        default=Path("tracking_config.yaml"),
        description="Path to tracking engine YAML configuration"
    )
    offline_threshold_minutes: float = Field(
        default=5.0,
        description="Minutes without a device ping before an agent is offline",
        gt=0
    )
    moving_speed_kmh: float = Field(
        default=5.0,
        description="Speed above which an agent is considered moving",
        ge=0
    )
    stationary_speed_kmh: float = Field(
        default=1.0,
        description="Speed below which an agent is considered stopped",
        ge=0
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FIELDTRACK_",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class AgentStatus(str, Enum):
    """Operational status inferred for a field agent."""
    AVAILABLE = "available"
    IN_TRANSIT = "in_transit"
    IN_SERVICE = "in_service"
    ON_BREAK = "on_break"
    SLA_AT_RISK = "sla_at_risk"
    OFFLINE = "offline"


class RiskLevel(str, Enum):
    """SLA risk classification."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ClusterSeverity(str, Enum):
    """Worst member condition rolled up into a map cluster."""
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class GeofenceShape(str, Enum):
    """Supported geofence geometries."""
    CIRCLE = "circle"
    POLYGON = "polygon"


# ========== Ordering ==========

RISK_LEVEL_ORDER = [RiskLevel.NONE, RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]
