"""
HTTP transport for the backend API.

Adapts blocking `requests` calls to the async request-function shape the
cache manager expects, and turns HTTP failures into tagged FetchErrors.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from fetchcache.resilience.cancellation import CancellationToken
from fetchcache.resilience.errors import FetchError, NetworkError, error_for_status

logger = logging.getLogger("transport")


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _error_message(response: requests.Response) -> str:
    """Best-effort message from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if body.get("message"):
            return str(body["message"])
    return f"HTTP {response.status_code}"


class HttpTransport:
    """
    Network collaborator backed by a requests.Session.

    Usage:
        transport = HttpTransport.from_settings()
        manager = CacheManager.from_settings(transport)
    """

    def __init__(
        self,
        base_url: str,
        api_token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> "HttpTransport":
        if settings is None:
            from config.settings import settings
        return cls(
            base_url=settings.api_base_url,
            api_token=settings.api_token,
            timeout=settings.request_timeout_seconds,
            **kwargs,
        )

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"
        return headers

    async def __call__(
        self,
        endpoint: str,
        params: Dict[str, Any],
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        GET endpoint with params.

        The token is checked before the call starts; a started call runs
        to completion in its worker thread.

        Raises:
            FetchCancelled: If token was already cancelled
            FetchError: Tagged failure (network, auth, server, ...)
        """
        if token is not None:
            token.raise_if_cancelled()
        return await asyncio.to_thread(self.get, endpoint, params)

    def get(self, endpoint: str, params: Dict[str, Any]) -> Any:
        """Blocking GET returning decoded JSON."""
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        try:
            response = self._session.get(
                url,
                headers=self._get_headers(),
                params=params,
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise NetworkError(f"Request to {endpoint} timed out") from exc
        except requests.ConnectionError as exc:
            raise NetworkError(f"Unable to reach {endpoint}") from exc

        if response.status_code >= 400:
            logger.debug(f"GET {endpoint} -> {response.status_code}")
            raise error_for_status(
                response.status_code,
                _error_message(response),
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"Malformed JSON from {endpoint}", status=response.status_code) from exc

    def close(self) -> None:
        self._session.close()
