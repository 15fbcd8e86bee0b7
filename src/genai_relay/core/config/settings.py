#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
GenAI streaming relay. All configuration is centralized here so that the
relay, the rate limiter, the metrics sink and the tracing layer read the
same values.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Easy testing with override mechanisms (keyword arguments or reload_settings)

Author: System Architect
Date: 2025-12-05
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _normalize_log_level(value: str) -> str:
    level = value.upper()
    if level == "WARN":
        level = "WARNING"
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}")
    return level


class UpstreamSettings(BaseSettings):
    """
    Upstream chat-completion endpoint configuration.

    STAGE-0.1: Upstream configuration

    The relay talks to any OpenAI-compatible endpoint (a local model runner,
    llama.cpp server, or a hosted API). UPSTREAM_CLIENT selects the transport.
    """

    BASE_URL: str = Field(default="http://localhost:12434/engines/v1", description="Upstream base URL")
    MODEL: str = Field(default="ai/llama3.2:1B-Q8_0", description="Model identifier sent upstream")
    UPSTREAM_CLIENT: Literal["http", "openai", "fake"] = Field(default="http", description="Upstream transport")
    UPSTREAM_API_KEY: str | None = Field(default=None, description="Bearer token for the upstream (optional)")
    UPSTREAM_COMPLETIONS_PATH: str = Field(default="/chat/completions", description="Completions path")
    UPSTREAM_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    UPSTREAM_READ_TIMEOUT: float = Field(default=60.0, description="Read timeout between chunks in seconds")
    MODEL_TEMPERATURE: float = Field(default=0.2, description="Sampling temperature")
    MODEL_MAX_TOKENS: int = Field(default=500, description="Maximum generated tokens")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Rate limiting configuration.

    STAGE-3: Rate limiting thresholds

    Architectural Decision: in-process sliding window
    - Counts admissions in the trailing window ending "now"
    - Keyed per client (user header, token hash or IP)
    """

    RATE_LIMIT_PER_MINUTE: int = Field(default=60, ge=1, description="Admissions per window per client")
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0, description="Sliding window length")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class TimeoutSettings(BaseSettings):
    """
    Downstream exchange deadlines enforced by the request coordinator.

    A stream that has not written its first byte within STREAM_BEGIN_TIMEOUT,
    or has not completed within STREAM_TOTAL_TIMEOUT, is abandoned.
    """

    STREAM_BEGIN_TIMEOUT: float = Field(default=30.0, gt=0, description="Seconds until first byte")
    STREAM_TOTAL_TIMEOUT: float = Field(default=90.0, gt=0, description="Seconds until completion")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class MetricsSettings(BaseSettings):
    """
    Local metrics summary buffer configuration.

    STAGE-M: Summary retention
    """

    METRICS_RETENTION_HOURS: float = Field(default=24.0, gt=0, description="Summary retention horizon")
    METRICS_CLEANUP_INTERVAL_SECONDS: float = Field(default=3600.0, gt=0, description="Minimum gap between prunes")
    ACTIVE_SESSION_TIMEOUT_SECONDS: float = Field(default=1800.0, gt=0, description="Idle time before a client stops counting as active")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class TracingSettings(BaseSettings):
    """
    OpenTelemetry configuration.

    When OTLP_ENDPOINT is unset spans are still created but never exported.
    """

    OTEL_SERVICE_NAME: str = Field(default="genai-relay", description="service.name resource attribute")
    OTLP_ENDPOINT: str | None = Field(default=None, description="OTLP/HTTP collector endpoint")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        return _normalize_log_level(v)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """
    General application settings.

    STAGE-0: Application initialization
    """

    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="GenAI Streaming Relay", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8080, description="API port")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from genai_relay.core.config.settings import get_settings

        settings = get_settings()
        model = settings.upstream.MODEL
        quota = settings.rate_limit.RATE_LIMIT_PER_MINUTE

    Fields are declared flat so that every one of them maps to a single
    environment variable; the section properties below give grouped views.
    """

    # Upstream settings
    BASE_URL: str = Field(default="http://localhost:12434/engines/v1", description="Upstream base URL")
    MODEL: str = Field(default="ai/llama3.2:1B-Q8_0", description="Model identifier sent upstream")
    UPSTREAM_CLIENT: Literal["http", "openai", "fake"] = Field(default="http", description="Upstream transport")
    UPSTREAM_API_KEY: str | None = Field(default=None, description="Bearer token for the upstream (optional)")
    UPSTREAM_COMPLETIONS_PATH: str = Field(default="/chat/completions", description="Completions path")
    UPSTREAM_CONNECT_TIMEOUT: float = Field(default=10.0, description="Connect timeout in seconds")
    UPSTREAM_READ_TIMEOUT: float = Field(default=60.0, description="Read timeout between chunks in seconds")
    MODEL_TEMPERATURE: float = Field(default=0.2, description="Sampling temperature")
    MODEL_MAX_TOKENS: int = Field(default=500, description="Maximum generated tokens")

    # Rate Limiting settings
    RATE_LIMIT_PER_MINUTE: int = Field(default=60, ge=1, description="Admissions per window per client")
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0, description="Sliding window length")

    # Downstream deadlines
    STREAM_BEGIN_TIMEOUT: float = Field(default=30.0, gt=0, description="Seconds until first byte")
    STREAM_TOTAL_TIMEOUT: float = Field(default=90.0, gt=0, description="Seconds until completion")

    # Metrics summary settings
    METRICS_RETENTION_HOURS: float = Field(default=24.0, gt=0, description="Summary retention horizon")
    METRICS_CLEANUP_INTERVAL_SECONDS: float = Field(default=3600.0, gt=0, description="Minimum gap between prunes")
    ACTIVE_SESSION_TIMEOUT_SECONDS: float = Field(default=1800.0, gt=0, description="Idle time before a client stops counting as active")

    # Tracing settings
    OTEL_SERVICE_NAME: str = Field(default="genai-relay", description="service.name resource attribute")
    OTLP_ENDPOINT: str | None = Field(default=None, description="OTLP/HTTP collector endpoint")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="GenAI Streaming Relay", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    API_HOST: str = Field(default="0.0.0.0", description="API host")
    API_PORT: int = Field(default=8080, description="API port")
    CORS_ORIGINS: list[str] = Field(default=["*"], description="Allowed CORS origins")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        return _normalize_log_level(v)

    @property
    def upstream(self) -> "UpstreamSettings":
        """Get upstream settings."""
        return UpstreamSettings(
            BASE_URL=self.BASE_URL,
            MODEL=self.MODEL,
            UPSTREAM_CLIENT=self.UPSTREAM_CLIENT,
            UPSTREAM_API_KEY=self.UPSTREAM_API_KEY,
            UPSTREAM_COMPLETIONS_PATH=self.UPSTREAM_COMPLETIONS_PATH,
            UPSTREAM_CONNECT_TIMEOUT=self.UPSTREAM_CONNECT_TIMEOUT,
            UPSTREAM_READ_TIMEOUT=self.UPSTREAM_READ_TIMEOUT,
            MODEL_TEMPERATURE=self.MODEL_TEMPERATURE,
            MODEL_MAX_TOKENS=self.MODEL_MAX_TOKENS,
        )

    @property
    def rate_limit(self) -> "RateLimitSettings":
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_PER_MINUTE=self.RATE_LIMIT_PER_MINUTE,
            RATE_LIMIT_WINDOW_SECONDS=self.RATE_LIMIT_WINDOW_SECONDS,
        )

    @property
    def timeouts(self) -> "TimeoutSettings":
        """Get downstream deadline settings."""
        return TimeoutSettings(
            STREAM_BEGIN_TIMEOUT=self.STREAM_BEGIN_TIMEOUT,
            STREAM_TOTAL_TIMEOUT=self.STREAM_TOTAL_TIMEOUT,
        )

    @property
    def metrics(self) -> "MetricsSettings":
        """Get metrics summary settings."""
        return MetricsSettings(
            METRICS_RETENTION_HOURS=self.METRICS_RETENTION_HOURS,
            METRICS_CLEANUP_INTERVAL_SECONDS=self.METRICS_CLEANUP_INTERVAL_SECONDS,
            ACTIVE_SESSION_TIMEOUT_SECONDS=self.ACTIVE_SESSION_TIMEOUT_SECONDS,
        )

    @property
    def tracing(self) -> "TracingSettings":
        """Get tracing settings."""
        return TracingSettings(
            OTEL_SERVICE_NAME=self.OTEL_SERVICE_NAME,
            OTLP_ENDPOINT=self.OTLP_ENDPOINT,
        )

    @property
    def logging(self) -> "LoggingSettings":
        """Get logging settings."""
        return LoggingSettings(
            LOG_LEVEL=self.LOG_LEVEL,
            LOG_FORMAT=self.LOG_FORMAT,
        )

    @property
    def app(self) -> "ApplicationSettings":
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
            API_HOST=self.API_HOST,
            API_PORT=self.API_PORT,
            CORS_ORIGINS=self.CORS_ORIGINS,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
