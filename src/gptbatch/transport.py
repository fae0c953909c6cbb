"""
Adaptive congestion control for outbound API calls.

Every request of a client goes through one ``CongestionControlTransport``.
While the remote API accepts requests the transport dispatches them
concurrently. The first ``429 Too Many Requests`` switches the whole client
into serialized mode: one request in flight at a time, each delayed by an
exponentially growing backoff. A streak of successes shrinks the backoff
again until the client returns to concurrent dispatch.
"""

from __future__ import annotations

import asyncio
import enum
import typing as t

import httpx
import structlog

from gptbatch.config import CongestionConfig
from gptbatch.exceptions import TooManyAttemptsError

log = structlog.get_logger(__name__)


class CongestionMode(enum.Enum):
    CONCURRENT = "concurrent"
    SERIALIZED = "serialized"


class _Step(enum.Enum):
    ATTEMPT = "attempt"
    THROTTLE_WAIT = "throttle_wait"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"


class CongestionController:
    """
    Shared congestion state of one client.

    Parameters
    ----------
    config : CongestionConfig | None, optional
        Backoff bounds, factor, success streak threshold and attempt ceiling.

    Notes
    -----
    ``mode`` may be read without the lock; every write to the mode, the
    backoff or the success streak happens under one lock. ``execution_slot``
    is the single slot requests queue on in serialized mode.
    """

    def __init__(self, config: CongestionConfig | None = None) -> None:
        self.config = config or CongestionConfig()
        self._mode = CongestionMode.CONCURRENT
        self._backoff = 0.0
        self._consecutive_successes = 0
        self._state_lock = asyncio.Lock()
        self._slot = asyncio.Lock()

    @property
    def mode(self) -> CongestionMode:
        return self._mode

    @property
    def backoff(self) -> float:
        return self._backoff

    @property
    def consecutive_successes(self) -> int:
        return self._consecutive_successes

    @property
    def execution_slot(self) -> asyncio.Lock:
        return self._slot

    async def current_backoff(self) -> float:
        async with self._state_lock:
            return self._backoff

    async def record_throttled(self) -> None:
        """
        Register a ``429`` response.

        The backoff is raised to the floor first, then multiplied, then
        clamped to the ceiling.
        """
        async with self._state_lock:
            previous_mode = self._mode
            self._mode = CongestionMode.SERIALIZED
            self._consecutive_successes = 0
            if self._backoff < self.config.min_backoff:
                self._backoff = self.config.min_backoff
            self._backoff *= self.config.backoff_factor
            if self._backoff > self.config.max_backoff:
                self._backoff = self.config.max_backoff
            backoff = self._backoff

        if previous_mode is CongestionMode.CONCURRENT:
            log.warning(
                event="Rate limited, switching to serialized dispatch",
                backoff_seconds=backoff,
            )
        else:
            log.info(event="Rate limited, increasing backoff", backoff_seconds=backoff)

    async def record_success(self) -> None:
        """Register a successful response and decay the backoff after a streak."""
        async with self._state_lock:
            self._consecutive_successes += 1
            if self._consecutive_successes < self.config.success_threshold:
                return

            self._consecutive_successes = 0
            self._backoff /= self.config.backoff_factor
            if self._backoff >= self.config.min_backoff:
                log.debug(event="Decreased backoff", backoff_seconds=self._backoff)
                return

            self._backoff = self.config.min_backoff
            if self._mode is CongestionMode.SERIALIZED:
                self._mode = CongestionMode.CONCURRENT
                log.info(event="Recovered from rate limiting, switching to concurrent dispatch")


class CongestionControlTransport(httpx.AsyncBaseTransport):
    """
    ``httpx`` transport applying a ``CongestionController`` around another transport.

    Parameters
    ----------
    transport : httpx.AsyncBaseTransport
        Wrapped transport performing the actual I/O.
    controller : CongestionController
        Congestion state shared by every request of the client.
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        controller: CongestionController,
    ) -> None:
        self._transport = transport
        self.controller = controller

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        # retries replay the body, so it must not be a one-shot stream
        await request.aread()

        max_attempts = self.controller.config.max_attempts
        attempts = 0
        step = _Step.ATTEMPT
        response: httpx.Response | None = None

        while True:
            if step is _Step.ATTEMPT:
                attempts += 1
                if max_attempts > 0 and attempts > max_attempts:
                    step = _Step.EXHAUSTED
                    continue

                response = await self._dispatch(request=request)
                if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
                    await self.controller.record_throttled()
                    await response.aclose()
                    step = _Step.THROTTLE_WAIT
                elif response.is_success:
                    await self.controller.record_success()
                    step = _Step.SUCCESS
                else:
                    return response

            elif step is _Step.THROTTLE_WAIT:
                log.debug(
                    event="Retrying throttled request",
                    method=request.method,
                    url=str(request.url),
                    attempt=attempts,
                )
                step = _Step.ATTEMPT

            elif step is _Step.SUCCESS:
                return t.cast(httpx.Response, response)

            else:
                log.error(
                    event="Giving up on throttled request",
                    method=request.method,
                    url=str(request.url),
                    attempts=max_attempts,
                )
                raise TooManyAttemptsError(
                    max_attempts,
                    operation=f"{request.method} {request.url.path}",
                )

    async def _dispatch(self, *, request: httpx.Request) -> httpx.Response:
        if self.controller.mode is CongestionMode.CONCURRENT:
            return await self._transport.handle_async_request(request)

        async with self.controller.execution_slot:
            backoff = await self.controller.current_backoff()
            await asyncio.sleep(backoff)
            response = await self._transport.handle_async_request(request)
            # the slot covers the whole exchange, body included
            await response.aread()
            return response

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_transport(
    controller: CongestionController,
    base: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncBaseTransport:
    """
    Compose the transport chain of a client.

    Parameters
    ----------
    controller : CongestionController
        Congestion state of the client.
    base : httpx.AsyncBaseTransport | None, optional
        Innermost transport. Defaults to ``httpx.AsyncHTTPTransport``.

    Returns
    -------
    httpx.AsyncBaseTransport
        Outermost transport, to be passed to ``httpx.AsyncClient``.
    """
    return CongestionControlTransport(
        transport=base or httpx.AsyncHTTPTransport(),
        controller=controller,
    )
