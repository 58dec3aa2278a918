"""
Normalization of user-supplied identifiers for OpenID Connect discovery.

Identifiers are matched against a fixed grammar that also accepts bare
``user@host`` input and scheme-less host/path forms:

    [scheme ":" ["//"]] [[userinfo "@"] host [":" port]] [path] ["?" query] ["#" fragment]

and the rules are applied in order:

1. No match means the identifier cannot be normalized.
2. A missing scheme becomes ``acct`` when there is a userinfo part and no
   path, query or port, and ``https`` otherwise.
3. The fragment is always dropped.

Schemes match case-insensitively and are lower-cased.
"""

import re
from dataclasses import dataclass
from typing import Optional

from shared.logging import get_logger

logger = get_logger("oidc.discovery.normalization")

IDENTIFIER_PATTERN = re.compile(
    r"^(?:(?P<scheme>(?i:https|http|acct|mailto)):(?://)?)?"
    r"(?:(?P<userinfo>[^@/?#]+)@)?"
    r"(?P<host>[^@:/?#]+)"
    r"(?::(?P<port>\d*))?"
    r"(?P<path>/[^?#]*)?"
    r"(?:\?(?P<query>[^#]*))?"
    r"(?:#(?P<fragment>.*))?$"
)

HIERARCHICAL_SCHEMES = frozenset({"http", "https"})


@dataclass(frozen=True)
class NormalizedIdentifier:
    """Canonical form of a discovery identifier; hashable so it can key a cache."""
    scheme: str
    host: str
    user_info: Optional[str] = None
    port: Optional[int] = None
    path: Optional[str] = None
    query: Optional[str] = None

    @property
    def is_http(self) -> bool:
        return self.scheme in HIERARCHICAL_SCHEMES

    @property
    def authority(self) -> str:
        authority = self.host
        if self.user_info:
            authority = f"{self.user_info}@{authority}"
        if self.port is not None:
            authority = f"{authority}:{self.port}"
        return authority

    def __str__(self) -> str:
        # acct: and mailto: identifiers carry no "//" authority marker
        separator = "://" if self.is_http else ":"
        rendered = f"{self.scheme}{separator}{self.authority}{self.path or ''}"
        if self.query:
            rendered = f"{rendered}?{self.query}"
        return rendered


def normalize_resource(identifier: Optional[str]) -> Optional[NormalizedIdentifier]:
    """Normalize ``identifier``; returns None when it cannot be normalized."""
    if not identifier:
        logger.warning("Can't normalize null or empty identifier")
        return None

    match = IDENTIFIER_PATTERN.match(identifier)
    if match is None:
        logger.warning("Parser couldn't match input", identifier=identifier)
        return None

    scheme = (match.group("scheme") or "").lower()
    user_info = match.group("userinfo") or None
    port = int(match.group("port")) if match.group("port") else None
    path = match.group("path") or None
    query = match.group("query") or None

    if not scheme:
        if user_info and not path and not query and port is None:
            scheme = "acct"
        else:
            scheme = "https"

    return NormalizedIdentifier(
        scheme=scheme,
        host=match.group("host"),
        user_info=user_info,
        port=port,
        path=path,
        query=query,
    )
