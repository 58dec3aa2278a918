"""
Shared utilities for the OIDC trust core.

This package aggregates common building blocks consumed by the service
package:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- circuit_breaker: Resilient external call protection
- clock: Time source and expiry comparisons
- cache: Expiring and request-coalescing caches

Do not import from service_* packages into shared/.
"""
