"""
OIDC trust core package.

Holds the pieces of an OAuth2/OpenID-Connect provider and relying party
that carry protocol and correctness hazards:

- app.tokens: Access/refresh token issuance, refresh and revocation.
- app.introspection: Remote validation of opaque bearer tokens with an
  expiring local cache.
- app.discovery: Identifier normalization and WebFinger issuer discovery.
- app.main: Wiring of the three subsystems from configuration.

Design notes:
- Package import must not perform network calls. All IO happens inside
  the async operations.
- Storage, client registry and HTTP transport are injected capabilities;
  in-memory stores are provided for local use and tests.
- Use the shared/ utilities for logging, metrics, caching and errors.
"""
