from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from ..cancellation import CancellationToken
from ..observability.logging import get_logger
from .document import Document
from .errors import EncodingError, RemoteRejectionError, TransportError
from .ratelimit import AsyncRateLimiter, RateLimiter


@dataclass(frozen=True)
class SubmissionResult:
    status_code: int
    body: Any
    elapsed_ms: int


class Encoder(Protocol):
    def encode(self, document: Document, signature: str) -> dict[str, Any]: ...


class Transport(Protocol):
    def send(self, payload: dict[str, Any], group: str) -> SubmissionResult: ...


class AsyncTransport(Protocol):
    async def send(self, payload: dict[str, Any], group: str) -> SubmissionResult: ...


class SubmissionService:
    """Admission -> encode -> send.

    A slot consumed by a call that later fails (encoding, transport or remote
    rejection) is not refunded: the quota counts attempts, not successes.
    """

    def __init__(self, *, rate_limiter: RateLimiter, encoder: Encoder, transport: Transport, logger=None) -> None:
        self._rate_limiter = rate_limiter
        self._encoder = encoder
        self._transport = transport
        self._logger = logger if logger is not None else get_logger().bind(component="submission")

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def close(self) -> None:
        close = getattr(self._transport, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "SubmissionService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def submit(
        self,
        document: Document,
        signature: str,
        group: str,
        *,
        timeout_s: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> SubmissionResult:
        self._rate_limiter.acquire(timeout_s=timeout_s, cancel_token=cancel_token)

        try:
            payload = self._encoder.encode(document, signature)
        except EncodingError as e:
            self._logger.warning("submission.encoding_failed", product_group=group, error=e.message)
            raise

        try:
            result = self._transport.send(payload, group)
        except RemoteRejectionError as e:
            self._logger.warning("submission.rejected", product_group=group, status_code=e.status_code)
            raise
        except TransportError as e:
            self._logger.warning("submission.transport_failed", product_group=group, error=e.message)
            raise

        self._logger.info(
            "submission.sent",
            product_group=group,
            status_code=result.status_code,
            elapsed_ms=result.elapsed_ms,
        )
        return result


class AsyncSubmissionService:
    """Coroutine counterpart of :class:`SubmissionService`; same no-refund policy."""

    def __init__(
        self,
        *,
        rate_limiter: AsyncRateLimiter,
        encoder: Encoder,
        transport: AsyncTransport,
        logger=None,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._encoder = encoder
        self._transport = transport
        self._logger = logger if logger is not None else get_logger().bind(component="submission")

    @property
    def rate_limiter(self) -> AsyncRateLimiter:
        return self._rate_limiter

    async def aclose(self) -> None:
        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            await aclose()

    async def submit(
        self,
        document: Document,
        signature: str,
        group: str,
        *,
        timeout_s: float | None = None,
    ) -> SubmissionResult:
        await self._rate_limiter.acquire(timeout_s=timeout_s)

        try:
            payload = self._encoder.encode(document, signature)
        except EncodingError as e:
            self._logger.warning("submission.encoding_failed", product_group=group, error=e.message)
            raise

        try:
            result = await self._transport.send(payload, group)
        except RemoteRejectionError as e:
            self._logger.warning("submission.rejected", product_group=group, status_code=e.status_code)
            raise
        except TransportError as e:
            self._logger.warning("submission.transport_failed", product_group=group, error=e.message)
            raise

        self._logger.info(
            "submission.sent",
            product_group=group,
            status_code=result.status_code,
            elapsed_ms=result.elapsed_ms,
        )
        return result
