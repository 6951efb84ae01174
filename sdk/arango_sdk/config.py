"""
Configuration for the ArangoDB SDK.

Uses pydantic-settings for environment variable loading. Every setting
can be given explicitly or through an ARANGO_-prefixed variable, e.g.
ARANGO_URLS="http://a:8529,http://b:8529".

Invariants:
    - At least one host URL is configured
    - Secrets are never included in repr or logs
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode

from .hosts import LoadBalancingStrategy


class ConnectionSettings(BaseSettings):
    """Connection configuration loaded from arguments or environment."""

    # Servers
    urls: Annotated[List[str], NoDecode] = Field(
        default=["http://127.0.0.1:8529"],
        description="Base URLs of the known servers or coordinators",
    )
    database_name: str = Field(default="_system", description="Default database")
    load_balancing_strategy: LoadBalancingStrategy = Field(
        default=LoadBalancingStrategy.NONE,
        description="NONE, ONE_RANDOM or ROUND_ROBIN",
    )

    # Request dispatch
    pool_size: Optional[int] = Field(
        default=None,
        ge=1,
        description="Max in-flight requests (default 3, or 3 per host for ROUND_ROBIN)",
    )
    max_retries: Optional[int] = Field(
        default=None,
        ge=0,
        description="Failover retries (default one per other known host, 0 disables)",
    )
    retry_on_conflict: int = Field(default=0, ge=0, description="Default conflict retry count")
    timeout: Optional[float] = Field(default=None, gt=0, description="Request timeout seconds")
    response_queue_time_samples: int = Field(
        default=10,
        description="Queue time samples to keep (negative keeps all)",
    )

    # Protocol
    arango_version: int = Field(default=31100, description="Server version sent in headers")
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra default headers")

    # Credentials
    username: str = Field(default="root", description="Basic auth user")
    password: SecretStr = Field(default=SecretStr(""), description="Basic auth password")
    token: Optional[SecretStr] = Field(default=None, description="Bearer token, wins over basic auth")

    model_config = {"env_prefix": "ARANGO_"}

    @field_validator("urls", mode="before")
    @classmethod
    def _split_urls(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("urls")
    @classmethod
    def _require_urls(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("at least one url is required")
        return value

    @property
    def effective_pool_size(self) -> int:
        """Pool size with the strategy-dependent default applied."""
        if self.pool_size is not None:
            return self.pool_size
        if self.load_balancing_strategy is LoadBalancingStrategy.ROUND_ROBIN:
            return 3 * len(self.urls)
        return 3
