"""
Wiring for the OIDC trust core.
"""

from typing import Optional

import httpx

from shared.circuit_breaker import CircuitBreakerManager
from shared.clock import ClockPolicy, system_clock
from shared.config import TrustCoreConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from .discovery import WebfingerIssuerFetcher, WebfingerIssuerService
from .introspection import IntrospectingTokenService, IntrospectionClient
from .tokens import (
    AuthenticationHolderRepository,
    ClientDetailsService,
    InMemoryAuthenticationHolderRepository,
    InMemoryClientDetailsService,
    InMemoryTokenRepository,
    TokenEnhancer,
    TokenLifecycleService,
    TokenRepository,
)


class OIDCTrustCore:
    """Builds the token, introspection and discovery services from configuration.

    Storage and client registry default to in-memory implementations. All
    remote calls share one httpx client bounded by ``config.http_timeout``.
    """

    def __init__(
        self,
        config: Optional[TrustCoreConfig] = None,
        *,
        token_repository: Optional[TokenRepository] = None,
        authentication_holder_repository: Optional[AuthenticationHolderRepository] = None,
        client_details_service: Optional[ClientDetailsService] = None,
        token_enhancer: Optional[TokenEnhancer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[ClockPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or get_config()
        self.clock = clock or system_clock
        self.metrics = metrics or get_metrics_collector("oidc")
        self.logger = get_logger("oidc.core")

        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.http_timeout)

        self.circuit_breakers = CircuitBreakerManager()
        breaker_settings = {
            "failure_threshold": self.config.circuit_failure_threshold,
            "recovery_timeout": self.config.circuit_recovery_timeout,
            "counted_exceptions": (httpx.HTTPError,),
        }

        self.token_service = TokenLifecycleService(
            token_repository or InMemoryTokenRepository(),
            authentication_holder_repository or InMemoryAuthenticationHolderRepository(),
            client_details_service or InMemoryClientDetailsService(),
            token_enhancer,
            clock=self.clock,
            default_access_token_validity_seconds=self.config.default_access_token_validity_seconds,
            default_refresh_token_validity_seconds=self.config.default_refresh_token_validity_seconds,
            metrics=self.metrics,
        )

        self.introspection = IntrospectingTokenService(
            IntrospectionClient(
                self.config.introspection_url,
                self.config.introspection_client_id,
                self.config.introspection_client_secret,
                http_client=self.http_client,
                timeout=self.config.http_timeout,
                circuit_breaker=self.circuit_breakers.get_circuit_breaker("introspection", **breaker_settings),
            ),
            clock=self.clock,
            metrics=self.metrics,
        )

        self.issuer_service = WebfingerIssuerService(
            WebfingerIssuerFetcher(
                http_client=self.http_client,
                timeout=self.config.http_timeout,
                circuit_breaker=self.circuit_breakers.get_circuit_breaker("webfinger", **breaker_settings),
            ),
            whitelist=self.config.issuer_whitelist,
            blacklist=self.config.issuer_blacklist,
            login_page_url=self.config.login_page_url,
            parameter_name=self.config.identifier_parameter_name,
            cache_ttl_seconds=self.config.issuer_cache_ttl_seconds,
            clock=self.clock,
            metrics=self.metrics,
        )

    async def close(self) -> None:
        """Release the shared HTTP client if the core created it."""
        if self._owns_http_client:
            await self.http_client.aclose()
        self.logger.info("Trust core closed")

    async def __aenter__(self) -> "OIDCTrustCore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def create_trust_core(config: Optional[TrustCoreConfig] = None, **kwargs) -> OIDCTrustCore:
    """Configure logging and build a trust core."""
    config = config or get_config()
    configure_logging("oidc", config.log_level, json_output=config.env != "local")
    return OIDCTrustCore(config, **kwargs)
