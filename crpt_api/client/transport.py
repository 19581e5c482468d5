from __future__ import annotations

import time
from typing import Any

import httpx

from ..domain.errors import ConfigurationError, RemoteRejectionError, TransportError
from ..domain.submission import SubmissionResult
from ..observability.logging import get_logger

_BODY_EXCERPT_CHARS = 500


class StaticTokenProvider:
    """Bearer token fixed at startup (config file or --token)."""

    def __init__(self, token: str | None) -> None:
        token = (token or "").strip()
        if not token:
            raise ConfigurationError("an API token is required (api.token or --token).")
        self._token = token

    def get_token(self) -> str:
        return self._token


def _headers(token_provider) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token_provider.get_token()}",
    }


def _to_result(response: httpx.Response, *, started_at: float) -> SubmissionResult:
    elapsed_ms = max(0, int((time.monotonic() - started_at) * 1000))
    if not response.is_success:
        raise RemoteRejectionError(
            f"endpoint rejected the document with HTTP {response.status_code}.",
            status_code=response.status_code,
            details={"body": response.text[:_BODY_EXCERPT_CHARS]},
        )

    body: Any
    try:
        body = response.json()
    except ValueError:
        body = response.text
    return SubmissionResult(status_code=response.status_code, body=body, elapsed_ms=elapsed_ms)


def _transport_error(endpoint: str, e: httpx.HTTPError) -> TransportError:
    return TransportError(
        f"request to {endpoint} failed: {e}",
        details={"endpoint": endpoint, "error_type": type(e).__name__},
    )


class HttpTransport:
    """POSTs a payload to ``<endpoint>?pg=<product group>``.

    No retries here; a transport failure is reported once and the caller decides.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        token_provider,
        timeout_s: float = 30.0,
        client: httpx.Client | None = None,
        logger=None,
    ) -> None:
        self._endpoint = endpoint
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout_s)
        self._logger = logger if logger is not None else get_logger().bind(component="http")

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def send(self, payload: dict[str, Any], group: str) -> SubmissionResult:
        started_at = time.monotonic()
        try:
            response = self._client.post(
                self._endpoint,
                params={"pg": group},
                json=payload,
                headers=_headers(self._token_provider),
            )
        except httpx.HTTPError as e:
            raise _transport_error(self._endpoint, e) from e

        self._logger.debug("http.response", product_group=group, status_code=response.status_code)
        return _to_result(response, started_at=started_at)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class AsyncHttpTransport:
    def __init__(
        self,
        *,
        endpoint: str,
        token_provider,
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
        logger=None,
    ) -> None:
        self._endpoint = endpoint
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout_s)
        self._logger = logger if logger is not None else get_logger().bind(component="http")

    async def send(self, payload: dict[str, Any], group: str) -> SubmissionResult:
        started_at = time.monotonic()
        try:
            response = await self._client.post(
                self._endpoint,
                params={"pg": group},
                json=payload,
                headers=_headers(self._token_provider),
            )
        except httpx.HTTPError as e:
            raise _transport_error(self._endpoint, e) from e

        self._logger.debug("http.response", product_group=group, status_code=response.status_code)
        return _to_result(response, started_at=started_at)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AsyncHttpTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
