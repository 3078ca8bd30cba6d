"""
Shared Configuration - Application Settings and Environment Management
Centralized configuration management for the offline cache sync layer.

This module provides:
- Environment-based configuration
- Type-safe settings with validation
- Cache, circuit breaker and sync tuning
- Remote data provider configuration
"""
from typing import Optional, List, Tuple
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from enum import Enum


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheSettings(BaseSettings):
    """Cache entry and storage settings."""

    cache_namespace_prefix: str = Field("kn_cache_", description="Prefix for every managed key")
    cache_schema_version: str = Field("1.0.0", description="Current entry schema version")

    # TTLs (seconds)
    cache_short_ttl: float = Field(5 * 60)
    cache_long_ttl: float = Field(7 * 24 * 60 * 60)
    cache_default_ttl: float = Field(24 * 60 * 60)
    cache_future_tolerance: float = Field(60.0)

    # Pair of keys that must be populated together
    cache_consistency_keys: str = Field("agenda_items,attendees")

    # Storage backend
    cache_backend: str = Field("memory", description="memory or redis")
    cache_memory_quota_bytes: Optional[int] = Field(None)
    redis_url: str = Field("redis://localhost:6379")
    redis_timeout: int = Field(5)

    @field_validator("cache_short_ttl", "cache_long_ttl", "cache_default_ttl")
    @classmethod
    def validate_ttl(cls, v):
        if v <= 0:
            raise ValueError("TTL must be positive")
        return v

    @field_validator("cache_backend")
    @classmethod
    def validate_backend(cls, v):
        if v not in ("memory", "redis"):
            raise ValueError("Cache backend must be 'memory' or 'redis'")
        return v

    def get_consistency_keys(self) -> Tuple[str, str]:
        """Get the two keys checked by the health consistency check."""
        keys = [k.strip() for k in self.cache_consistency_keys.split(",") if k.strip()]
        if len(keys) != 2:
            raise ValueError("Exactly two consistency keys are required")
        return keys[0], keys[1]

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class CircuitBreakerSettings(BaseSettings):
    """Circuit breaker configuration settings."""

    circuit_failure_threshold: int = Field(5)
    circuit_window_seconds: float = Field(60.0)
    circuit_cooldown_seconds: float = Field(30.0)
    circuit_call_timeout_seconds: Optional[float] = Field(30.0)

    @field_validator("circuit_failure_threshold")
    @classmethod
    def validate_threshold(cls, v):
        if v < 1:
            raise ValueError("Failure threshold must be at least 1")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class SyncSettings(BaseSettings):
    """Data synchronization settings."""

    sync_resources: str = Field(
        "attendees,standardized_companies,company_aliases,seat_assignments,"
        "agenda_items,agenda_item_speakers,dining_options,hotels,seating_configurations"
    )
    sync_application_resources: str = Field("agenda_item_metadata,dining_item_metadata")
    sync_regulated_resources: str = Field("attendees")
    sync_required_keys: str = Field("agenda_items,attendees")

    # Retry settings for resource refreshers
    sync_retry_attempts: int = Field(3)
    sync_retry_base_delay: float = Field(1.0)
    sync_retry_max_delay: float = Field(30.0)
    sync_fetch_timeout: Optional[float] = Field(30.0)

    # Remote provider
    provider_url: Optional[str] = Field(None)
    provider_api_key: Optional[str] = Field(None)
    provider_email: Optional[str] = Field(None)
    provider_password: Optional[str] = Field(None)
    application_provider_url: Optional[str] = Field(None)
    application_provider_api_key: Optional[str] = Field(None)

    @field_validator("sync_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v):
        if v < 1:
            raise ValueError("Retry attempts must be at least 1")
        return v

    def get_resources(self) -> List[str]:
        """Get the ordered primary resource list."""
        return _split(self.sync_resources)

    def get_application_resources(self) -> List[str]:
        """Get the ordered application resource list."""
        return _split(self.sync_application_resources)

    def get_regulated_resources(self) -> List[str]:
        return _split(self.sync_regulated_resources)

    def get_required_keys(self) -> List[str]:
        return _split(self.sync_required_keys)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class ValidationSettings(BaseSettings):
    """Business rule validation settings."""

    # "first last;first last" identities that must never be cached
    validation_denylist: str = Field("")
    validation_status_field: str = Field("registration_status")
    validation_confirmed_status: str = Field("confirmed")
    validation_pending_status: str = Field("pending")
    validation_active_field: str = Field("is_active")

    def get_denylist(self) -> List[Tuple[str, str]]:
        """Parse denylisted identities into (first_name, last_name) pairs."""
        identities = []
        for item in self.validation_denylist.split(";"):
            parts = item.strip().split(None, 1)
            if len(parts) == 2:
                identities.append((parts[0], parts[1]))
        return identities

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class MonitoringSettings(BaseSettings):
    """Monitoring and logging configuration settings."""

    log_level: LogLevel = Field(LogLevel.INFO)
    log_format: str = Field("json", description="json or console")
    monitor_max_alerts: int = Field(100)

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(Environment.DEVELOPMENT)
    app_name: str = Field("Offline Cache Sync")
    app_version: str = Field("1.0.0")

    # Component settings
    cache: CacheSettings = Field(default_factory=CacheSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == Environment.TESTING

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


def _split(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def validate_configuration(settings: Optional[Settings] = None) -> List[str]:
    """
    Validate the configuration and return any errors.

    Returns:
        List of validation error messages
    """
    settings = settings or get_settings()
    errors = []

    try:
        settings.cache.get_consistency_keys()
    except ValueError as e:
        errors.append(str(e))

    if settings.cache.cache_short_ttl > settings.cache.cache_default_ttl:
        errors.append("Short TTL must not exceed the default TTL")

    if settings.sync.provider_url and not settings.sync.provider_api_key:
        errors.append("PROVIDER_API_KEY is required when PROVIDER_URL is set")

    if settings.is_production() and not settings.sync.provider_url:
        errors.append("PROVIDER_URL should be configured in production")

    if not settings.sync.get_required_keys():
        errors.append("At least one required cache key must be configured")

    return errors
