"""
calmplan - Configuration Management
Supports .env files and runtime configuration for the decision service,
the scheduling engine and logging.
"""

from typing import Dict, Any, Optional
from pydantic_settings import BaseSettings
from pydantic import BaseModel, Field, model_validator
from functools import lru_cache


# ============================================
# DECISION SERVICE CONFIGURATION
# ============================================

class DecisionServiceConfig(BaseSettings):
    """
    External decision service configuration.
    Any OpenAI-compatible chat completion endpoint works (OpenAI, Ollama, local LLMs).
    """
    api_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for OpenAI-compatible API"
    )
    api_key: str = Field(
        default="",
        description="API key for the decision service"
    )
    model_name: str = Field(
        default="gpt-4o-mini",
        description="Model name to use for chat completions"
    )
    enabled: bool = Field(
        default=True,
        description="Call the decision service (falls back to rules if disabled)"
    )

    # Stage 1: strategy selection
    strategy_timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        le=120.0,
        description="Timeout for the strategy call"
    )
    strategy_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    strategy_max_tokens: int = Field(default=500, ge=50, le=4000)

    # Stage 2: activity generation
    generation_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=300.0,
        description="Timeout for the activity generation call"
    )
    generation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    generation_max_tokens: int = Field(default=2000, ge=100, le=8000)

    model_config = {
        "env_prefix": "DECISION_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# ENGINE CONFIGURATION
# ============================================

class IntensityThresholds(BaseModel):
    """
    Single threshold table for schedule intensity.

    ratio > overloaded        -> tier high, band overloaded
    busy < ratio <= overloaded     -> tier medium, band busy
    moderate < ratio <= busy       -> tier medium, band moderate
    ratio <= moderate         -> tier low, band open
    """
    overloaded: float = Field(default=0.75, gt=0.0, lt=1.0)
    busy: float = Field(default=0.50, gt=0.0, lt=1.0)
    moderate: float = Field(default=0.25, gt=0.0, lt=1.0)

    @model_validator(mode="after")
    def check_order(self) -> "IntensityThresholds":
        if not (self.moderate < self.busy < self.overloaded):
            raise ValueError("thresholds must satisfy moderate < busy < overloaded")
        return self


class EngineConfig(BaseSettings):
    """Scheduling engine configuration."""

    # Intensity thresholds
    overloaded_threshold: float = Field(default=0.75, gt=0.0, lt=1.0)
    busy_threshold: float = Field(default=0.50, gt=0.0, lt=1.0)
    moderate_threshold: float = Field(default=0.25, gt=0.0, lt=1.0)

    # Validator safety ceilings per band
    overloaded_cap: int = Field(default=5, ge=1, le=50)
    busy_cap: int = Field(default=7, ge=1, le=50)
    moderate_cap: int = Field(default=10, ge=1, le=50)
    open_cap: int = Field(default=15, ge=1, le=50)

    # Day shape
    default_active_minutes: int = Field(
        default=960,
        ge=60,
        le=24 * 60,
        description="Active minutes when no sleep schedule is known (16 hours)"
    )
    default_wake_hour: int = Field(default=7, ge=0, le=23)
    default_bed_hour: int = Field(default=22, ge=1, le=23)

    # Gap finding
    merge_buffer_minutes: int = Field(
        default=5,
        ge=0,
        le=60,
        description="Busy blocks closer than this are merged; also kept clear around each block"
    )
    min_window_minutes: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Smallest free window worth reporting (enables micro activities)"
    )

    random_seed: Optional[int] = Field(
        default=None,
        description="Seed for category diversification on open days"
    )

    model_config = {
        "env_prefix": "ENGINE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }

    @property
    def thresholds(self) -> IntensityThresholds:
        return IntensityThresholds(
            overloaded=self.overloaded_threshold,
            busy=self.busy_threshold,
            moderate=self.moderate_threshold,
        )

    @property
    def caps(self) -> Dict[str, int]:
        return {
            "overloaded": self.overloaded_cap,
            "busy": self.busy_cap,
            "moderate": self.moderate_cap,
            "open": self.open_cap,
        }


# ============================================
# LOGGING CONFIGURATION
# ============================================

class LogConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Root level for the calmplan logger")
    log_dir: str = Field(default="logs", description="Directory for the rotating log file")
    file_logging: bool = Field(default=True, description="Write logs to a rotating file")

    model_config = {
        "env_prefix": "LOG_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore"
    }


# ============================================
# CACHED CONFIGURATION INSTANCES
# ============================================

@lru_cache()
def get_decision_config() -> DecisionServiceConfig:
    """Get cached decision service configuration instance."""
    return DecisionServiceConfig()


@lru_cache()
def get_engine_config() -> EngineConfig:
    """Get cached engine configuration instance."""
    return EngineConfig()


@lru_cache()
def get_log_config() -> LogConfig:
    """Get cached logging configuration instance."""
    return LogConfig()


def reload_config():
    """Clear configuration cache and reload from environment."""
    get_decision_config.cache_clear()
    get_engine_config.cache_clear()
    get_log_config.cache_clear()


# ============================================
# CONFIGURATION SUMMARY
# ============================================

def get_config_summary() -> Dict[str, Any]:
    """
    Get a summary of all configuration values.
    Useful for debugging and the health endpoint.
    """
    decision = get_decision_config()
    engine = get_engine_config()

    return {
        "decision_service": {
            "base_url": decision.api_base_url,
            "model": decision.model_name,
            "enabled": decision.enabled,
            "has_key": bool(decision.api_key),
            "strategy_timeout_s": decision.strategy_timeout_seconds,
            "generation_timeout_s": decision.generation_timeout_seconds,
        },
        "engine": {
            "thresholds": engine.thresholds.model_dump(),
            "caps": engine.caps,
            "default_active_minutes": engine.default_active_minutes,
            "default_active_hours": f"{engine.default_wake_hour:02d}:00 - {engine.default_bed_hour:02d}:00",
            "merge_buffer_minutes": engine.merge_buffer_minutes,
            "min_window_minutes": engine.min_window_minutes,
        },
    }
