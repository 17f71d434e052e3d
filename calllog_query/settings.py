from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QuerySettings(BaseSettings):
    """Runtime configuration for the call-log query engine."""

    model_config = SettingsConfigDict(
        env_prefix="CALLLOG_QUERY_", env_file=".env", extra="ignore"
    )

    # Database
    database_url: str = Field(default="sqlite:///./calllog_query.db")
    debug: bool = Field(default=False)

    # Pagination
    page_size: int = Field(default=50, ge=1, le=1000)

    # Field discovery
    discovery_sample_size: int = Field(default=500, ge=1)

    # Percentiles
    percentile_min_samples: int = Field(default=20, ge=1)
    percentile_lookback_days: Optional[int] = Field(default=None, ge=1)

    # Advisory caches (discovery + percentiles)
    cache_ttl_seconds: float = Field(default=300.0, ge=0)
