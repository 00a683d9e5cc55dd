"""
Configuration module for the reservation service
Settings come from RESERVATIONS_* environment variables with strict validation
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .error_models import ConfigurationError
from .logging_adapter import get_safe_logger

logger = get_safe_logger("reservations.config")


class EnvironmentType(str, Enum):
    """Supported environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StorageBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


def time_to_minutes(value: str) -> int:
    """Convert "HH:MM" to minutes after midnight"""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    """Convert minutes after midnight to "HH:MM" """
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


class SlotPolicyConfig(BaseModel):
    """Operating window and capacity policy for time-slot buckets"""

    granularity_minutes: int = Field(default=30, ge=5, le=240, description="Bucket size in minutes")
    opening_time: str = Field(default="11:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    closing_time: str = Field(default="22:00", pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    default_capacity: int = Field(default=50, ge=1, le=10000, description="Guests per bucket")
    max_party_size: int = Field(default=20, ge=1, le=100, description="Largest accepted party")
    alternatives: int = Field(default=3, ge=1, le=10, description="Alternatives offered on conflict")

    @model_validator(mode="after")
    def validate_window(self):
        opening = time_to_minutes(self.opening_time)
        closing = time_to_minutes(self.closing_time)
        if closing < opening:
            raise ValueError("closing_time must not be earlier than opening_time")
        if (closing - opening) % self.granularity_minutes != 0:
            raise ValueError("granularity_minutes must divide the operating window")
        return self


class SessionConfig(BaseModel):
    """Session store configuration"""

    backend: StorageBackend = Field(default=StorageBackend.MEMORY)
    ttl_seconds: int = Field(default=1800, ge=60, le=86400, description="Inactivity expiry")
    lock_timeout_seconds: float = Field(default=10.0, gt=0, le=120)


class RedisConfig(BaseModel):
    """Redis configuration"""

    url: str = Field(default="redis://localhost:6379/0")
    key_prefix: str = Field(default="reservations", min_length=1)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if not v.startswith(('redis://', 'rediss://', 'unix://')):
            raise ValueError('Redis URL must use redis://, rediss:// or unix://')
        return v


class DatabaseConfig(BaseModel):
    """Reservation persistence configuration"""

    url: str = Field(default="sqlite+aiosqlite:///./reservations.db")
    echo: bool = False


class WeatherConfig(BaseModel):
    """Weather advisory collaborator configuration"""

    api_key: Optional[str] = Field(None, description="OpenWeatherMap API key")
    base_url: str = Field(default="https://api.openweathermap.org/data/2.5")
    timeout_seconds: float = Field(default=5.0, gt=0, le=60)
    max_attempts: int = Field(default=2, ge=1, le=5)
    forecast_days: int = Field(default=5, ge=0, le=16)
    default_location: str = Field(default="New York", min_length=1)


class ReservationSettings(BaseSettings):
    """
    Main reservation service configuration.
    Nested blocks are set with a double underscore, e.g. RESERVATIONS_SLOTS__DEFAULT_CAPACITY=40
    """

    model_config = SettingsConfigDict(
        env_prefix='RESERVATIONS_',
        env_file=None,
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='forbid',
        frozen=True,
        env_nested_delimiter='__'
    )

    service_name: str = Field(default="reservations")
    environment: EnvironmentType = Field(default=EnvironmentType.DEVELOPMENT)
    timezone: str = Field(default="Asia/Kolkata", description="Restaurant local timezone")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    lexicon_path: Optional[str] = Field(None, description="Override for the bundled lexicon YAML")
    require_explicit_confirmation: bool = False

    slots: SlotPolicyConfig = Field(default_factory=SlotPolicyConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    weather: WeatherConfig = Field(default_factory=WeatherConfig)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        allowed_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in allowed_levels:
            raise ValueError(f'Log level must be one of: {allowed_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        if v not in ('json', 'console'):
            raise ValueError("Log format must be 'json' or 'console'")
        return v

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f'Unknown timezone: {v}')
        return v


_config: Optional[ReservationSettings] = None


def load_config(**overrides) -> ReservationSettings:
    """Build settings from the environment plus explicit overrides and cache them"""
    global _config
    try:
        config = ReservationSettings(**overrides)
    except ValidationError as e:
        messages = [err["msg"] for err in e.errors()]
        logger.error("configuration_validation_failed", errors=messages)
        raise ConfigurationError(
            "Invalid reservation service configuration",
            details={"errors": messages}
        ) from e

    _config = config
    logger.info(
        "configuration_loaded",
        environment=config.environment.value,
        session_backend=config.sessions.backend.value,
        default_capacity=config.slots.default_capacity,
    )
    return config


def get_config() -> ReservationSettings:
    """Get the cached settings, loading them on first use"""
    if _config is None:
        return load_config()
    return _config


def reset_config() -> None:
    """Drop cached settings"""
    global _config
    _config = None
