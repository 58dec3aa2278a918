"""
Issuer selection for relying parties via WebFinger discovery.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Request

from shared.cache import LoadingCache
from shared.clock import ClockPolicy
from shared.errors import MalformedResponseError, PolicyViolationError, TransportError
from shared.logging import get_logger, set_request_id
from shared.metrics import MetricsCollector
from .normalization import NormalizedIdentifier, normalize_resource
from .webfinger import WebfingerIssuerFetcher


@dataclass(frozen=True)
class IssuerServiceResponse:
    """Either the issuer to start a login with, or where to send the user instead."""
    issuer: Optional[str] = None
    redirect_url: Optional[str] = None

    @property
    def should_redirect(self) -> bool:
        return self.issuer is None and self.redirect_url is not None


class WebfingerIssuerService:
    """Resolves a user-supplied identifier to an OpenID Connect issuer.

    Discovery results are cached per normalized identifier with at most one
    WebFinger request in flight per identifier. Failed lookups and lookups
    that found no issuer are not cached, so the next request retries them.
    """

    def __init__(
        self,
        fetcher: WebfingerIssuerFetcher,
        *,
        whitelist: Optional[Iterable[str]] = None,
        blacklist: Optional[Iterable[str]] = None,
        login_page_url: Optional[str] = None,
        parameter_name: str = "identifier",
        cache_ttl_seconds: Optional[int] = None,
        clock: Optional[ClockPolicy] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.fetcher = fetcher
        self.whitelist = set(whitelist or ())
        self.blacklist = set(blacklist or ())
        self.login_page_url = login_page_url
        self.parameter_name = parameter_name
        self.metrics = metrics
        self.logger = get_logger("oidc.discovery")
        self.issuers: LoadingCache[NormalizedIdentifier, str] = LoadingCache(
            fetcher.load,
            ttl_seconds=cache_ttl_seconds,
            clock=clock,
            name="issuers"
        )

    async def resolve(self, identifier: Optional[str]) -> Optional[str]:
        """Issuer URL for ``identifier``, or None if it cannot be resolved.

        Raises PolicyViolationError when the resolved issuer is not on a
        non-empty whitelist or is on the blacklist.
        """
        if not identifier:
            return None

        key = normalize_resource(identifier)
        if key is None:
            self._record("unparseable")
            return None

        try:
            issuer = await self.issuers.get(key)
        except (TransportError, MalformedResponseError) as e:
            self.logger.warning("Issue fetching issuer for user input", identifier=identifier, error=e.message)
            self._record("discovery_failed")
            if self.metrics is not None:
                self.metrics.record_error(e.code, e.service)
            return None

        if issuer is None:
            self._record("not_found")
            return None

        if self.whitelist and issuer not in self.whitelist:
            self._record("rejected")
            raise PolicyViolationError(
                f"Whitelist was nonempty, issuer was not in whitelist: {issuer}",
                details={"issuer": issuer}
            )

        if issuer in self.blacklist:
            self._record("rejected")
            raise PolicyViolationError(
                f"Issuer was in blacklist: {issuer}",
                details={"issuer": issuer}
            )

        self._record("resolved")
        return issuer

    async def get_issuer(self, request: Request) -> Optional[IssuerServiceResponse]:
        """Pick the issuer for a login request from its identifier parameter."""
        set_request_id(request.headers.get("X-Request-ID"))
        identifier = request.query_params.get(self.parameter_name)
        if not identifier:
            self.logger.warning("No user input given, directing to login page", login_page_url=self.login_page_url)
            return IssuerServiceResponse(redirect_url=self.login_page_url)

        issuer = await self.resolve(identifier)
        if issuer is None:
            return None
        return IssuerServiceResponse(issuer=issuer)

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_issuer_resolution(outcome)
