"""
Domain models for tokens, clients and authorization context.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Iterable, Optional

OFFLINE_ACCESS = "offline_access"
API_ROLE = "ROLE_API"


def as_scope(values: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Normalize a scope given as an iterable or a space-delimited string."""
    if values is None:
        return frozenset()
    if isinstance(values, str):
        return frozenset(values.split())
    return frozenset(values)


@dataclass(frozen=True)
class AuthorizationRequest:
    """What a client asked for: its id, the scope and any extra parameters."""
    client_id: str
    scope: FrozenSet[str] = frozenset()
    parameters: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "scope", as_scope(self.scope))


@dataclass(frozen=True)
class Authentication:
    """An authenticated principal together with the request it was granted under."""
    authorization_request: Optional[AuthorizationRequest]
    principal: Optional[str] = None
    authorities: FrozenSet[str] = frozenset()


@dataclass
class AuthenticationHolder:
    """Stored snapshot of the authorization context behind a refresh token."""
    authentication: Authentication
    id: Optional[str] = None

    @property
    def client_id(self) -> Optional[str]:
        request = self.authentication.authorization_request
        return request.client_id if request else None

    @property
    def scope(self) -> FrozenSet[str]:
        request = self.authentication.authorization_request
        return request.scope if request else frozenset()


@dataclass
class ClientDetails:
    """Registered client configuration, read-only to the token service.

    Validity of ``None`` falls back to the configured default; zero or a
    negative value means tokens never expire.
    """
    client_id: str
    client_secret: Optional[str] = None
    allow_refresh: bool = False
    access_token_validity_seconds: Optional[int] = None
    refresh_token_validity_seconds: Optional[int] = None


@dataclass
class RefreshToken:
    value: str
    client: ClientDetails
    authentication_holder: AuthenticationHolder
    expiration: Optional[datetime] = None


@dataclass
class AccessToken:
    value: str
    client: Optional[ClientDetails]
    scope: FrozenSet[str] = frozenset()
    expiration: Optional[datetime] = None
    refresh_token: Optional[RefreshToken] = None
    authentication_holder: Optional[AuthenticationHolder] = None
    additional_information: Dict[str, Any] = field(default_factory=dict)
    token_type: str = "Bearer"

    def identity(self) -> tuple:
        """Fields that token enhancement must leave untouched."""
        return (
            self.value,
            self.client,
            self.scope,
            self.expiration,
            self.refresh_token,
            self.authentication_holder,
            self.token_type,
        )

    def restore_identity(self, identity: tuple) -> None:
        (
            self.value,
            self.client,
            self.scope,
            self.expiration,
            self.refresh_token,
            self.authentication_holder,
            self.token_type,
        ) = identity
