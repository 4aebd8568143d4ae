"""
Configuration management with environment variable support and validation.

Design principles:
- Every clinical threshold and confidence constant lives here, not in detection code
- Validation at startup (fail fast)
- Type safety with Pydantic
- Environment overrides for deployment-specific tuning
"""

import logging
import os
from functools import lru_cache
from typing import Literal, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class GlucoseThresholds(BaseModel):
    """Clinical thresholds used by the analyzers (mg/dL and seconds)."""

    range_low: int = Field(default=70, gt=0, description="Lower bound of the target range")
    range_high: int = Field(default=180, gt=0, description="Upper bound of the target range")

    # Dawn phenomenon
    dawn_start_hour: int = Field(default=6, ge=0, le=23)
    dawn_end_hour: int = Field(default=9, ge=0, le=23)
    dawn_min_readings: int = Field(default=5, gt=0)
    dawn_mean_level: float = Field(default=140.0, gt=0.0)

    # Post-meal spike, open interval after the meal
    post_meal_window_start_seconds: float = Field(default=3600.0, ge=0.0)
    post_meal_window_end_seconds: float = Field(default=10800.0, gt=0.0)
    post_meal_spike_level: float = Field(default=180.0, gt=0.0)

    # Trend prediction
    trend_window_size: int = Field(default=10, ge=2)
    trend_delta: float = Field(default=5.0, ge=0.0)

    # Exercise impact, open interval on each side of the session
    exercise_window_seconds: float = Field(default=7200.0, gt=0.0)

    # Recommendations and risk
    high_carb_grams: float = Field(default=45.0, gt=0.0)
    time_in_range_target_pct: float = Field(default=70.0, ge=0.0, le=100.0)
    high_variability_stddev: float = Field(default=50.0, gt=0.0)
    moderate_variability_stddev: float = Field(default=30.0, gt=0.0)
    elevated_average_level: float = Field(default=180.0, gt=0.0)

    @model_validator(mode="after")
    def check_ordering(self) -> "GlucoseThresholds":
        """Reject threshold sets whose bounds are inverted."""
        if self.range_low >= self.range_high:
            raise ValueError("range_low must be below range_high")
        if self.dawn_start_hour > self.dawn_end_hour:
            raise ValueError("dawn_start_hour must not be after dawn_end_hour")
        if self.post_meal_window_start_seconds >= self.post_meal_window_end_seconds:
            raise ValueError("post-meal window start must be before its end")
        if self.moderate_variability_stddev >= self.high_variability_stddev:
            raise ValueError("moderate variability must be below high variability")
        return self


class PatternConfidence(BaseModel):
    """Fixed confidence reported for each kind of finding."""

    dawn_phenomenon: float = Field(default=0.8, ge=0.0, le=1.0)
    post_meal_spike: float = Field(default=0.7, ge=0.0, le=1.0)
    trend_prediction: float = Field(default=0.6, ge=0.0, le=1.0)


class AnalysisConfig(BaseModel):
    """Analysis window and orchestration settings."""

    window_days: int = Field(default=30, gt=0, description="Days of history per analysis")
    timezone: str = Field(default="UTC", description="Zone used for local hour of day")
    fetch_timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Timeout for repository window fetches"
    )
    cache_max_age_days: int = Field(
        default=30, gt=0, description="Published insights older than this are evicted"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(default="INFO", description="Logging level")
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    thresholds: GlucoseThresholds = Field(default_factory=GlucoseThresholds)
    confidence: PatternConfidence = Field(default_factory=PatternConfidence)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> LogLevel:
        v = val.strip().upper()
        return cast(
            LogLevel,
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    thresholds = GlucoseThresholds(
        range_low=int(os.getenv("TIME_IN_RANGE_LOW", "70")),
        range_high=int(os.getenv("TIME_IN_RANGE_HIGH", "180")),
    )

    analysis_config = AnalysisConfig(
        window_days=int(os.getenv("ANALYSIS_WINDOW_DAYS", "30")),
        timezone=os.getenv("ANALYSIS_TIMEZONE", "UTC"),
        fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", "10.0")),
        cache_max_age_days=int(os.getenv("CACHE_MAX_AGE_DAYS", "30")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        thresholds=thresholds,
        confidence=PatternConfidence(),
        analysis=analysis_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def configure_logging(config: LoggingConfig) -> None:
    """Configure structlog once for the process (JSON in production, console in dev)."""
    renderer: structlog.types.Processor
    if config.format == "console":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Configuration validation and helpers
def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nANALYSIS")
    print(f"Window: {config.analysis.window_days} days ({config.analysis.timezone})")
    print(f"Fetch Timeout: {config.analysis.fetch_timeout_seconds}s")
    print(f"Cache Max Age: {config.analysis.cache_max_age_days} days")

    print("\nTHRESHOLDS")
    print(f"Target Range: {config.thresholds.range_low}-{config.thresholds.range_high} mg/dL")
    print(f"Time-in-Range Target: {config.thresholds.time_in_range_target_pct:.0f}%")
    print(f"High-Carb Meal: >{config.thresholds.high_carb_grams:.0f}g")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
