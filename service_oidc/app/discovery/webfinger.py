"""
WebFinger lookup of the OpenID Connect issuer for a normalized identifier.
"""

from typing import Any, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import MalformedResponseError, TransportError
from shared.logging import get_logger
from .normalization import NormalizedIdentifier

ISSUER_REL = "http://openid.net/specs/connect/1.0/issuer"
WELL_KNOWN_PATH = "/.well-known/webfinger"
SERVICE_NAME = "webfinger"


class WebfingerIssuerFetcher:
    """Fetches the issuer link for an identifier from its host's WebFinger endpoint.

    Returns the issuer URL, or None when the host answered but named no
    issuer and the identifier is not itself an http(s) URL. Transport and
    parse problems raise TransportError / MalformedResponseError.
    """

    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.timeout = timeout
        self.logger = get_logger("oidc.discovery.webfinger")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            SERVICE_NAME,
            counted_exceptions=(httpx.HTTPError,)
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_url(self, key: NormalizedIdentifier) -> str:
        """WebFinger endpoint for ``key``, without the resource/rel parameters."""
        if key.scheme == "http":
            # Only tolerated for demo deployments
            self.logger.warning("Webfinger endpoint MUST use the https URI scheme", identifier=str(key))
            scheme = "http://"
        else:
            scheme = "https://"

        port = f":{key.port}" if key.port is not None else ""
        url = f"{scheme}{key.host}{port}{key.path or ''}{WELL_KNOWN_PATH}"
        if key.query:
            url = f"{url}?{key.query}"
        return url

    async def load(self, key: NormalizedIdentifier) -> Optional[str]:
        url = self.build_url(key)
        params = {"resource": str(key), "rel": ISSUER_REL}
        self.logger.info("Loading webfinger", url=url, resource=params["resource"])

        body = await self._fetch(url, params)
        issuer = self._find_issuer(body)
        if issuer is not None:
            return issuer

        if key.is_http:
            # Punt and treat the input as the issuer itself
            self.logger.warning("Returning normalized input string as issuer, hoping for the best", identifier=str(key))
            return str(key)

        self.logger.warning("Couldn't find issuer", identifier=str(key))
        return None

    async def _fetch(self, url: str, params: dict) -> Any:
        async def _get() -> httpx.Response:
            response = await self._client.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response

        try:
            response = await self.circuit_breaker.call(_get)
        except httpx.TimeoutException as e:
            raise TransportError(SERVICE_NAME, "request timed out", details={"url": url}) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                SERVICE_NAME,
                f"unexpected status {e.response.status_code}",
                details={"url": url, "status_code": e.response.status_code}
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(SERVICE_NAME, str(e) or type(e).__name__, details={"url": url}) from e

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(SERVICE_NAME, "response is not JSON", details={"url": url}) from e

        if not isinstance(body, dict):
            raise MalformedResponseError(SERVICE_NAME, "response is not a JSON object", details={"url": url})
        return body

    @staticmethod
    def _find_issuer(body: dict) -> Optional[str]:
        links = body.get("links")
        if not isinstance(links, list):
            return None

        for link in links:
            if not isinstance(link, dict):
                continue
            href = link.get("href")
            if link.get("rel") == ISSUER_REL and isinstance(href, str) and href:
                return href
        return None
