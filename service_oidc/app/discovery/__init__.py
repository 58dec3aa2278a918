"""
Issuer discovery package.

Turns whatever a user typed into a login box ("joe@example.com",
"example.com/tenant", a full URL) into the OpenID Connect issuer to log in
with:

- normalization: the fixed identifier grammar and scheme inference rules.
- webfinger: the WebFinger request and issuer-link extraction.
- issuer_service: cached, policy-checked resolution plus the request seam.
"""

from .issuer_service import IssuerServiceResponse, WebfingerIssuerService
from .normalization import NormalizedIdentifier, normalize_resource
from .webfinger import ISSUER_REL, WebfingerIssuerFetcher

__all__ = [
    "ISSUER_REL",
    "IssuerServiceResponse",
    "NormalizedIdentifier",
    "WebfingerIssuerFetcher",
    "WebfingerIssuerService",
    "normalize_resource",
]
