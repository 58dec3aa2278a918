"""
Resource-server token service backed by remote introspection.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Request

from shared.cache import ExpiringCache
from shared.clock import ClockPolicy, system_clock
from shared.errors import MalformedResponseError, MissingCredentialsError, TransportError
from shared.logging import get_logger, set_client_context, set_request_id
from shared.metrics import MetricsCollector
from ..models import API_ROLE, AccessToken, Authentication, AuthorizationRequest, as_scope
from .client import IntrospectionClient


@dataclass(frozen=True)
class TokenCacheEntry:
    """A validated token and the identity derived from it."""
    token: AccessToken
    authentication: Authentication


class IntrospectingTokenService:
    """Validates opaque bearer tokens against an introspection endpoint.

    Validated (token, authentication) pairs are cached under the bearer
    string until the token's ``exp``. A token is never reported valid from
    the cache once that moment has passed. Invalid, inactive and
    unreachable-authority outcomes all come back as None; nothing here
    raises for a bad token.

    Concurrent validations of the same token may each call the endpoint;
    the results are identical so the duplicate is harmless.
    """

    def __init__(
        self,
        client: IntrospectionClient,
        *,
        clock: Optional[ClockPolicy] = None,
        role: str = API_ROLE,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.client = client
        self.clock = clock or system_clock
        self.role = role
        self.metrics = metrics
        self.logger = get_logger("oidc.introspection")
        self.cache: ExpiringCache[str, TokenCacheEntry] = ExpiringCache(
            lambda entry: entry.token.expiration,
            self.clock,
            name="introspection"
        )

    def check_cache(self, token_value: str) -> Optional[TokenCacheEntry]:
        """Cached entry for the bearer string if its token has not expired."""
        entry = self.cache.get(token_value)
        if self.metrics is not None:
            self.metrics.record_cache_lookup("introspection", entry is not None)
        return entry

    async def parse_token(self, token_value: str) -> bool:
        """Validate ``token_value`` remotely and cache it; True if it was cached."""
        try:
            response = await self.client.introspect(token_value)
        except TransportError as e:
            self.logger.error("Token introspection request failed", error=e.message)
            self._record("transport_error")
            if self.metrics is not None:
                self.metrics.record_error(e.code, e.service)
            return False
        except MalformedResponseError as e:
            self.logger.warning("Token introspection response unusable", error=e.message)
            self._record("malformed")
            return False

        if response.get("error") is not None:
            self.logger.warning("Introspection endpoint returned an error", error=response.get("error"))
            self._record("error")
            return False

        if response.get("active") is not True:
            self._record("inactive")
            return False

        try:
            entry = self._build_entry(response, token_value)
        except MalformedResponseError as e:
            self.logger.warning("Introspected token could not be parsed", error=e.message)
            self._record("malformed")
            return False

        if entry.token.expiration is None or self.clock.is_expired(entry.token.expiration):
            self._record("expired")
            return False

        self.cache.put(token_value, entry)
        self._record("active")
        self.logger.debug("Introspected token cached", sub=entry.authentication.principal)
        return True

    async def load_authentication(self, token_value: str) -> Optional[Authentication]:
        entry = await self._resolve(token_value)
        return entry.authentication if entry else None

    async def read_access_token(self, token_value: str) -> Optional[AccessToken]:
        entry = await self._resolve(token_value)
        return entry.token if entry else None

    async def authenticate(self, request: Request) -> Optional[Authentication]:
        """Validate the bearer token carried by an incoming request."""
        set_request_id(request.headers.get("X-Request-ID"))
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            raise MissingCredentialsError("Missing or invalid Authorization header")

        token_value = authorization[7:].strip()
        if not token_value:
            raise MissingCredentialsError("Authorization header contained empty bearer token")

        authentication = await self.load_authentication(token_value)
        if authentication is not None:
            set_client_context(authentication.authorization_request.client_id, authentication.principal)
        return authentication

    def purge_cache(self) -> int:
        """Drop cached tokens that expired without being looked up again."""
        removed = self.cache.purge_expired()
        if removed:
            self.logger.debug("Purged expired introspection entries", count=removed)
        return removed

    async def _resolve(self, token_value: str) -> Optional[TokenCacheEntry]:
        entry = self.check_cache(token_value)
        if entry is not None:
            return entry

        if not await self.parse_token(token_value):
            return None

        # The entry may already have expired between caching and this read.
        return self.cache.get(token_value)

    def _build_entry(self, claims: Dict[str, Any], token_value: str) -> TokenCacheEntry:
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise MalformedResponseError("introspection", "active token without a subject")

        exp = claims.get("exp")
        if exp is None:
            expiration = None
        elif isinstance(exp, (int, float)) and not isinstance(exp, bool):
            try:
                expiration = self.clock.from_timestamp(exp)
            except (OverflowError, ValueError, OSError) as e:
                raise MalformedResponseError("introspection", f"invalid exp claim: {exp!r}") from e
        else:
            raise MalformedResponseError("introspection", f"invalid exp claim: {exp!r}")

        scope = claims.get("scope")
        if scope is not None and not isinstance(scope, str):
            raise MalformedResponseError("introspection", "scope claim is not a string")

        client_id = claims.get("client_id")
        request = AuthorizationRequest(
            client_id=client_id if isinstance(client_id, str) else "",
            scope=as_scope(scope),
        )
        authentication = Authentication(
            authorization_request=request,
            principal=subject,
            authorities=frozenset({self.role}),
        )
        token = AccessToken(
            value=token_value,
            client=None,
            scope=request.scope,
            expiration=expiration,
            additional_information=dict(claims),
        )
        return TokenCacheEntry(token=token, authentication=authentication)

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_validation(outcome)
