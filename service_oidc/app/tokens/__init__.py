"""
Token issuance package.

Mints opaque access and refresh tokens for registered clients:

- service: TokenLifecycleService, creation/refresh/revocation with scope
  negotiation and validity windows.
- repository: storage, holder and client-registry protocols plus in-memory
  implementations.

Tokens are opaque random strings; nothing here signs or encrypts them.
"""

from .repository import (
    AuthenticationHolderRepository,
    ClientDetailsService,
    InMemoryAuthenticationHolderRepository,
    InMemoryClientDetailsService,
    InMemoryTokenRepository,
    TokenEnhancer,
    TokenRepository,
)
from .service import TokenLifecycleService

__all__ = [
    "AuthenticationHolderRepository",
    "ClientDetailsService",
    "InMemoryAuthenticationHolderRepository",
    "InMemoryClientDetailsService",
    "InMemoryTokenRepository",
    "TokenEnhancer",
    "TokenLifecycleService",
    "TokenRepository",
]
