"""
Shared configuration management for the document data source.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATASOURCE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")


class DataSourceConfig(BaseConfig):
    """Settings for the caching data source."""

    # Key namespace, so several tenants can share one cache
    cache_prefix: str = Field(default="docstore:")

    # Backing cache
    redis_url: Optional[str] = Field(default=None)
    default_ttl: Optional[int] = Field(default=None)
    memory_cache_max_entries: int = Field(default=10000)
    memory_cache_default_ttl: Optional[int] = Field(default=None)

    # Negative results
    cache_not_found: bool = Field(default=False)
    not_found_ttl: int = Field(default=30)

    # Batching loader
    max_batch_size: Optional[int] = Field(default=None)

    @field_validator("default_ttl", "memory_cache_default_ttl")
    @classmethod
    def _ttl_not_negative(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("TTL must be zero or positive")
        return value

    @field_validator("not_found_ttl", "memory_cache_max_entries")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("max_batch_size")
    @classmethod
    def _batch_size_positive(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("max_batch_size must be positive")
        return value


def get_config(**overrides) -> DataSourceConfig:
    """Get data source configuration, environment first, then overrides."""
    return DataSourceConfig(**overrides)
