"""Async client for the PageSpeed Insights ``runPagespeed`` method.

One :meth:`PageSpeedClient.score` call issues one HTTP GET for one
``(url, strategy)`` pair and returns the reduced :class:`CompactMetrics`
record.  The full Lighthouse document never leaves this module.

Failure mapping:

- deadline exceeded (connect, read or total)  -> :class:`CallTimeout`
- non-2xx status                              -> :class:`CallHTTPError`
- transport error (DNS, refused, reset, ...)  -> :class:`CallFailed`
- non-JSON body or no ``lighthouseResult``    -> :class:`CallMalformed`

The API key is sent as a query parameter.  It is never logged and is masked
in any error reason that might echo the request URL back.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from psi_runner.config.settings import Settings
from psi_runner.core.exceptions import (
    CallFailed,
    CallHTTPError,
    CallMalformed,
    CallTimeout,
)
from psi_runner.core.schemas.metrics import CompactMetrics, Strategy
from psi_runner.scorer.config import CATEGORY, ERROR_BODY_EXCERPT_CHARS, USER_AGENT
from psi_runner.scorer.reducer import reduce_response
from psi_runner.scorer.throttle import CallSpacer

logger = structlog.get_logger(__name__)


def _error_detail(response: httpx.Response) -> str | None:
    """Pull a short reason out of a non-2xx scorer response.

    Google APIs answer errors with ``{"error": {"message": "..."}}``; anything
    else falls back to a truncated excerpt of the raw body.
    """
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"][:ERROR_BODY_EXCERPT_CHARS]
    text = response.text.strip()
    return text[:ERROR_BODY_EXCERPT_CHARS] or None


class PageSpeedClient:
    """Scores one URL under one strategy against PageSpeed Insights.

    Args:
        client: Shared :class:`httpx.AsyncClient`.  The caller owns its
            lifecycle.
        api_key: PageSpeed Insights API key.
        api_url: ``runPagespeed`` endpoint.
        timeout_seconds: Hard deadline per call, from connect through body
            read.
        max_filmstrip_frames: Filmstrip cap applied by the reducer.
        spacer: Optional :class:`CallSpacer` shared by every call made
            through this client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        api_url: str,
        timeout_seconds: float,
        max_filmstrip_frames: int,
        spacer: CallSpacer | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._api_url = api_url
        self._timeout = timeout_seconds
        self._max_frames = max_filmstrip_frames
        self._spacer = spacer

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> PageSpeedClient:
        """Build a client (and its per-worker spacer) from application settings."""
        return cls(
            client,
            api_key=settings.google_api_key,
            api_url=settings.pagespeed_api_url,
            timeout_seconds=settings.fetch_timeout_seconds,
            max_filmstrip_frames=settings.max_filmstrip_frames,
            spacer=CallSpacer(settings.inter_call_delay_seconds),
        )

    def _mask(self, text: str) -> str:
        if self._api_key:
            return text.replace(self._api_key, "***")
        return text

    async def score(self, url: str, strategy: Strategy) -> CompactMetrics:
        """Run one scorer call and reduce its response.

        Args:
            url: Page to score.
            strategy: Device emulation to request.

        Returns:
            The compact metrics record for ``strategy``.

        Raises:
            CallFailed: Or one of its subclasses, on any failure.
        """
        if self._spacer is not None:
            await self._spacer.wait()

        params: dict[str, Any] = {
            "url": url,
            "strategy": strategy.value,
            "category": CATEGORY,
            "key": self._api_key,
        }
        log = logger.bind(url=url, strategy=strategy.value)
        started = time.monotonic()

        try:
            response = await asyncio.wait_for(
                self._client.get(
                    self._api_url,
                    params=params,
                    headers={"User-Agent": USER_AGENT},
                    timeout=self._timeout,
                ),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            log.warning("scorer.timeout", timeout_seconds=self._timeout)
            raise CallTimeout(self._timeout, url=url, strategy=strategy.value) from None
        except httpx.RequestError as exc:
            reason = self._mask(f"request error: {str(exc) or type(exc).__name__}")
            log.warning("scorer.request_error", error=reason)
            raise CallFailed(reason, url=url, strategy=strategy.value) from None

        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not response.is_success:
            detail = _error_detail(response)
            log.warning(
                "scorer.http_error",
                status_code=response.status_code,
                elapsed_ms=elapsed_ms,
            )
            raise CallHTTPError(
                response.status_code,
                detail=self._mask(detail) if detail else None,
                url=url,
                strategy=strategy.value,
            )

        try:
            document = response.json()
        except ValueError:
            log.warning("scorer.malformed", reason="body is not JSON")
            raise CallMalformed(
                "response body is not JSON", url=url, strategy=strategy.value
            ) from None

        try:
            metrics = reduce_response(document, strategy, max_frames=self._max_frames)
        except CallMalformed as exc:
            exc.url = url
            log.warning("scorer.malformed", reason=exc.reason)
            raise

        log.info("scorer.call_complete", score=metrics.score, elapsed_ms=elapsed_ms)
        return metrics
