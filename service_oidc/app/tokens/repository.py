"""
Storage and client-registry capabilities used by the token service.

The token service depends only on the protocols below. The in-memory
implementations index everything by opaque value so lookups are O(1); they
back local runs and the test-suite, a production deployment plugs in its
own persistence.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from shared.logging import get_logger
from ..models import AccessToken, Authentication, AuthenticationHolder, ClientDetails, RefreshToken


class TokenRepository(Protocol):
    async def save_access_token(self, token: AccessToken) -> AccessToken: ...

    async def save_refresh_token(self, token: RefreshToken) -> RefreshToken: ...

    async def get_access_token_by_value(self, value: str) -> Optional[AccessToken]: ...

    async def get_refresh_token_by_value(self, value: str) -> Optional[RefreshToken]: ...

    async def clear_access_tokens_for_refresh_token(self, refresh_token: RefreshToken) -> None: ...

    async def remove_access_token(self, token: AccessToken) -> None: ...

    async def remove_refresh_token(self, token: RefreshToken) -> None: ...

    async def get_expired_access_tokens(self, now: datetime) -> List[AccessToken]: ...

    async def get_expired_refresh_tokens(self, now: datetime) -> List[RefreshToken]: ...


class AuthenticationHolderRepository(Protocol):
    async def save(self, holder: AuthenticationHolder) -> AuthenticationHolder: ...


class ClientDetailsService(Protocol):
    async def load_client_by_client_id(self, client_id: str) -> Optional[ClientDetails]: ...


class TokenEnhancer(Protocol):
    def enhance(self, access_token: AccessToken, authentication: Authentication) -> None: ...


class InMemoryTokenRepository:
    """Dict-backed token store."""

    def __init__(self):
        self.logger = get_logger("oidc.tokens.repository")
        self._access_tokens: Dict[str, AccessToken] = {}
        self._refresh_tokens: Dict[str, RefreshToken] = {}
        self._lock = asyncio.Lock()

    async def save_access_token(self, token: AccessToken) -> AccessToken:
        async with self._lock:
            self._access_tokens[token.value] = token
        return token

    async def save_refresh_token(self, token: RefreshToken) -> RefreshToken:
        async with self._lock:
            self._refresh_tokens[token.value] = token
        return token

    async def get_access_token_by_value(self, value: str) -> Optional[AccessToken]:
        return self._access_tokens.get(value)

    async def get_refresh_token_by_value(self, value: str) -> Optional[RefreshToken]:
        return self._refresh_tokens.get(value)

    async def get_access_tokens_for_refresh_token(self, refresh_token: RefreshToken) -> List[AccessToken]:
        return [
            token for token in self._access_tokens.values()
            if token.refresh_token is not None and token.refresh_token.value == refresh_token.value
        ]

    async def clear_access_tokens_for_refresh_token(self, refresh_token: RefreshToken) -> None:
        async with self._lock:
            bound = [
                value for value, token in self._access_tokens.items()
                if token.refresh_token is not None and token.refresh_token.value == refresh_token.value
            ]
            for value in bound:
                del self._access_tokens[value]
        if bound:
            self.logger.debug("Cleared access tokens for refresh token", count=len(bound))

    async def remove_access_token(self, token: AccessToken) -> None:
        async with self._lock:
            self._access_tokens.pop(token.value, None)

    async def remove_refresh_token(self, token: RefreshToken) -> None:
        async with self._lock:
            self._refresh_tokens.pop(token.value, None)

    async def get_expired_access_tokens(self, now: datetime) -> List[AccessToken]:
        return [
            token for token in self._access_tokens.values()
            if token.expiration is not None and token.expiration <= now
        ]

    async def get_expired_refresh_tokens(self, now: datetime) -> List[RefreshToken]:
        return [
            token for token in self._refresh_tokens.values()
            if token.expiration is not None and token.expiration <= now
        ]


class InMemoryAuthenticationHolderRepository:
    """Assigns ids to holders and keeps them by id."""

    def __init__(self):
        self._holders: Dict[str, AuthenticationHolder] = {}

    async def save(self, holder: AuthenticationHolder) -> AuthenticationHolder:
        if holder.id is None:
            holder.id = str(uuid.uuid4())
        self._holders[holder.id] = holder
        return holder

    async def get_by_id(self, holder_id: str) -> Optional[AuthenticationHolder]:
        return self._holders.get(holder_id)


class InMemoryClientDetailsService:
    """Static client registry."""

    def __init__(self, clients: Optional[List[ClientDetails]] = None):
        self._clients: Dict[str, ClientDetails] = {
            client.client_id: client for client in clients or []
        }

    def register(self, client: ClientDetails) -> None:
        self._clients[client.client_id] = client

    async def load_client_by_client_id(self, client_id: str) -> Optional[ClientDetails]:
        return self._clients.get(client_id)
