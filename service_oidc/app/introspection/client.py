"""
HTTP client for an OAuth2 token introspection endpoint.
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import MalformedResponseError, TransportError
from shared.logging import get_logger

SERVICE_NAME = "introspection"


class IntrospectionClient:
    """Posts tokens to the introspection endpoint and returns the JSON object.

    Every failure surfaces as TransportError (network, timeout, non-2xx,
    open circuit) or MalformedResponseError (body is not a JSON object).
    """

    def __init__(
        self,
        introspection_url: str,
        client_id: str,
        client_secret: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.introspection_url = introspection_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.logger = get_logger("oidc.introspection.client")

        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            SERVICE_NAME,
            counted_exceptions=(httpx.HTTPError,)
        )

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def introspect(self, token: str) -> Dict[str, Any]:
        async def _post() -> httpx.Response:
            response = await self._client.post(
                self.introspection_url,
                data={
                    "token": token,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            return response

        try:
            response = await self.circuit_breaker.call(_post)
        except httpx.TimeoutException as e:
            raise TransportError(SERVICE_NAME, "request timed out", details={"error": str(e)}) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                SERVICE_NAME,
                f"unexpected status {e.response.status_code}",
                details={"status_code": e.response.status_code}
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(SERVICE_NAME, str(e) or type(e).__name__, details={"error": str(e)}) from e

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(SERVICE_NAME, "response is not JSON") from e

        if not isinstance(body, dict):
            raise MalformedResponseError(SERVICE_NAME, "response is not a JSON object")

        return body
