"""
Shared configuration management for the OIDC trust core.
"""

from typing import Optional, Set

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrustCoreConfig(BaseSettings):
    """Configuration for token issuance, introspection and issuer discovery.

    Every field can be set from the environment with the ``OIDC_`` prefix,
    e.g. ``OIDC_INTROSPECTION_URL``. Set-valued fields take JSON arrays.
    """

    model_config = SettingsConfigDict(
        env_prefix="OIDC_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Remote calls
    http_timeout: float = Field(default=5.0, gt=0)
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_recovery_timeout: float = Field(default=30.0, ge=0)

    # Introspection
    introspection_url: str = Field(default="http://localhost:8080/introspect")
    introspection_client_id: str = Field(default="")
    introspection_client_secret: str = Field(default="")

    # Token lifetimes, 0 or negative means the token never expires
    default_access_token_validity_seconds: Optional[int] = Field(default=3600)
    default_refresh_token_validity_seconds: Optional[int] = Field(default=None)

    # Issuer discovery
    issuer_whitelist: Set[str] = Field(default_factory=set)
    issuer_blacklist: Set[str] = Field(default_factory=set)
    login_page_url: Optional[str] = Field(default=None)
    identifier_parameter_name: str = Field(default="identifier")
    issuer_cache_ttl_seconds: Optional[int] = Field(default=None)


def get_config(**overrides) -> TrustCoreConfig:
    """Get the trust core configuration, applying explicit overrides."""
    return TrustCoreConfig(**overrides)
