"""
Token introspection package.

Validates opaque bearer tokens presented to a resource server by asking the
issuing authorization server (RFC 7662 style form POST) and caching the
answer until the token expires.

- client: IntrospectionClient, the HTTP call with timeout and circuit breaker.
- token_service: IntrospectingTokenService, cache-first validation.
"""

from .client import IntrospectionClient
from .token_service import IntrospectingTokenService, TokenCacheEntry

__all__ = ["IntrospectingTokenService", "IntrospectionClient", "TokenCacheEntry"]
