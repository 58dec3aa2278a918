"""
Token lifecycle service: issues, refreshes, reads and revokes tokens.
"""

import uuid
from typing import Iterable, Optional

from shared.clock import ClockPolicy, system_clock
from shared.errors import (
    InvalidClientError,
    InvalidTokenError,
    MissingCredentialsError,
    UnknownClientError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..models import (
    OFFLINE_ACCESS,
    AccessToken,
    Authentication,
    AuthenticationHolder,
    ClientDetails,
    RefreshToken,
    as_scope,
)
from .repository import (
    AuthenticationHolderRepository,
    ClientDetailsService,
    TokenEnhancer,
    TokenRepository,
)


class TokenLifecycleService:
    """Creates and refreshes access/refresh token pairs.

    Safe to call concurrently for different clients and tokens. Two refreshes
    racing on the same refresh-token value each clear the bound access tokens
    and then save their own; whichever saves last survives alongside the
    other (last writer wins).
    """

    def __init__(
        self,
        token_repository: TokenRepository,
        authentication_holder_repository: AuthenticationHolderRepository,
        client_details_service: ClientDetailsService,
        token_enhancer: Optional[TokenEnhancer] = None,
        *,
        clock: Optional[ClockPolicy] = None,
        default_access_token_validity_seconds: Optional[int] = 3600,
        default_refresh_token_validity_seconds: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.token_repository = token_repository
        self.authentication_holder_repository = authentication_holder_repository
        self.client_details_service = client_details_service
        self.token_enhancer = token_enhancer
        self.clock = clock or system_clock
        self.default_access_token_validity_seconds = default_access_token_validity_seconds
        self.default_refresh_token_validity_seconds = default_refresh_token_validity_seconds
        self.metrics = metrics
        self.logger = get_logger("oidc.tokens")

    async def create_access_token(self, authentication: Optional[Authentication]) -> AccessToken:
        """Issue an access token, plus a refresh token when the grant allows one."""
        if authentication is None or authentication.authorization_request is None:
            raise MissingCredentialsError(
                "No authentication credentials found"
            )

        request = authentication.authorization_request
        client = await self.client_details_service.load_client_by_client_id(request.client_id)
        if client is None:
            raise UnknownClientError(request.client_id)

        holder = await self.authentication_holder_repository.save(
            AuthenticationHolder(authentication=authentication)
        )

        token = AccessToken(
            value=self._generate_value(),
            client=client,
            scope=request.scope,
            expiration=self.clock.expiry_after(self._access_validity(client)),
            authentication_holder=holder,
        )

        refresh_token = None
        if client.allow_refresh and OFFLINE_ACCESS in request.scope:
            refresh_token = RefreshToken(
                value=self._generate_value(),
                client=client,
                authentication_holder=holder,
                expiration=self.clock.expiry_after(self._refresh_validity(client)),
            )
            token.refresh_token = refresh_token

        self._enhance(token, authentication)

        if refresh_token is not None:
            await self.token_repository.save_refresh_token(refresh_token)
            self._record_issued("refresh_token", "authorization")
        await self.token_repository.save_access_token(token)
        self._record_issued("access_token", "authorization")

        self.logger.info(
            "Access token issued",
            client_id=client.client_id,
            scope=sorted(token.scope),
            expires_in=self.clock.expires_in(token.expiration),
            with_refresh=refresh_token is not None
        )
        return token

    async def refresh_access_token(
        self,
        refresh_token_value: str,
        requested_scope: Optional[Iterable[str]] = None,
    ) -> AccessToken:
        """Mint a new access token from a refresh token.

        The scope is the requested one when it is a non-empty subset of the
        originally granted scope; any other request, including an attempt to
        widen the grant, silently falls back to the original scope.
        """
        refresh_token = await self.token_repository.get_refresh_token_by_value(refresh_token_value)
        if refresh_token is None:
            raise InvalidTokenError("Invalid refresh token")

        client = refresh_token.client
        if not client.allow_refresh:
            raise InvalidClientError(
                "Client does not allow refreshing access token",
                details={"client_id": client.client_id}
            )

        if self.clock.is_expired(refresh_token.expiration):
            await self.token_repository.remove_refresh_token(refresh_token)
            raise InvalidTokenError("Expired refresh token")

        await self.token_repository.clear_access_tokens_for_refresh_token(refresh_token)

        holder = refresh_token.authentication_holder
        stored_authentication = holder.authentication
        scope = self._negotiate_scope(holder.scope, requested_scope)

        token = AccessToken(
            value=self._generate_value(),
            client=client,
            scope=scope,
            expiration=self.clock.expiry_after(self._access_validity(client)),
            refresh_token=refresh_token,
            authentication_holder=holder,
        )

        self._enhance(token, stored_authentication)

        await self.token_repository.save_access_token(token)
        self._record_issued("access_token", "refresh_token")

        self.logger.info(
            "Access token refreshed",
            client_id=client.client_id,
            scope=sorted(scope)
        )
        return token

    async def get_access_token(self, value: str) -> AccessToken:
        token = await self.token_repository.get_access_token_by_value(value)
        if token is None:
            raise InvalidTokenError("Access token not found")
        return token

    async def get_refresh_token(self, value: str) -> RefreshToken:
        token = await self.token_repository.get_refresh_token_by_value(value)
        if token is None:
            raise InvalidTokenError("Refresh token not found")
        return token

    async def read_access_token(self, value: str) -> AccessToken:
        """Return a live access token; an expired one is revoked and rejected."""
        token = await self.get_access_token(value)
        if self.clock.is_expired(token.expiration):
            await self.revoke_access_token(token)
            raise InvalidTokenError("Expired access token")
        return token

    async def load_authentication(self, value: str) -> Authentication:
        token = await self.read_access_token(value)
        if token.authentication_holder is None:
            raise InvalidTokenError("Access token has no stored authentication")
        return token.authentication_holder.authentication

    async def revoke_access_token(self, token: AccessToken) -> None:
        await self.token_repository.remove_access_token(token)
        self.logger.info("Access token revoked", client_id=_client_id(token.client))

    async def revoke_refresh_token(self, token: RefreshToken) -> None:
        await self.token_repository.clear_access_tokens_for_refresh_token(token)
        await self.token_repository.remove_refresh_token(token)
        self.logger.info("Refresh token revoked", client_id=token.client.client_id)

    async def clear_expired_tokens(self) -> int:
        """Remove expired access and refresh tokens, returning how many went."""
        now = self.clock.now()
        removed = 0

        for access_token in await self.token_repository.get_expired_access_tokens(now):
            await self.token_repository.remove_access_token(access_token)
            removed += 1

        for refresh_token in await self.token_repository.get_expired_refresh_tokens(now):
            await self.token_repository.remove_refresh_token(refresh_token)
            removed += 1

        if removed:
            self.logger.info("Cleared expired tokens", count=removed)
        return removed

    def _negotiate_scope(self, stored, requested):
        requested = as_scope(requested)
        if not requested:
            return stored
        if requested <= stored:
            return requested
        self.logger.warning(
            "Refresh requested scope outside the original grant, using original scope",
            requested=sorted(requested),
            stored=sorted(stored)
        )
        return stored

    def _enhance(self, token: AccessToken, authentication: Authentication) -> None:
        if self.token_enhancer is None:
            return

        identity = token.identity()
        self.token_enhancer.enhance(token, authentication)
        if token.identity() != identity:
            self.logger.warning(
                "Token enhancer altered identity fields, restoring them",
                client_id=_client_id(token.client)
            )
            token.restore_identity(identity)

    def _access_validity(self, client: ClientDetails) -> Optional[int]:
        if client.access_token_validity_seconds is None:
            return self.default_access_token_validity_seconds
        return client.access_token_validity_seconds

    def _refresh_validity(self, client: ClientDetails) -> Optional[int]:
        if client.refresh_token_validity_seconds is None:
            return self.default_refresh_token_validity_seconds
        return client.refresh_token_validity_seconds

    def _record_issued(self, token_type: str, grant: str) -> None:
        if self.metrics is not None:
            self.metrics.record_token_issued(token_type, grant)

    @staticmethod
    def _generate_value() -> str:
        return str(uuid.uuid4())


def _client_id(client: Optional[ClientDetails]) -> Optional[str]:
    return client.client_id if client else None
