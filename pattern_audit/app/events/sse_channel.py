"""
Server-Sent Events push channel.

One logical subscription per ``subscribe`` call against
``{base}/stream/{intake_id}``. A background pump reads the stream and
feeds an asyncio queue; the subscriber drains the queue.

Reconnection rules:
- the subscription ends only on a terminal ``memo_ready`` (server asks
  not to reconnect) or once a connection exhausts its attempt budget
- a clean close or a dropped stream after ``connected`` reconnects with a
  fresh attempt budget
- transport failures, and closes before ``connected``, count against the
  budget and back off exponentially
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Callable, Dict, Optional

import httpx
from httpx_sse import SSEError, aconnect_sse
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from pattern_audit.app.client.api import bearer_headers
from pattern_audit.app.config import Settings
from pattern_audit.app.events.models import PushSignal, PushSignalType

logger = logging.getLogger("pattern_audit.channel")

MAX_STREAM_ATTEMPTS = 5

TokenProvider = Callable[[str], Optional[str]]

_KNOWN_EVENTS: Dict[str, PushSignalType] = {t.value: t for t in PushSignalType}
_CONFIRMATIONS = (PushSignalType.CONNECTED, PushSignalType.RECONNECTED)


class StreamClosedEarly(Exception):
    """The server closed the stream before confirming the subscription."""


def _decode_data(raw: str) -> dict:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class SSEPushChannel:
    STREAM_PATH = "/stream/{intake_id}"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        base_url: str,
        read_timeout: float = 300.0,
        token_provider: Optional[TokenProvider] = None,
        max_attempts: int = MAX_STREAM_ATTEMPTS,
        retry_wait: Optional[wait_base] = None,
        reconnect_delay: float = 1.0,
    ) -> None:
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(connect=10.0, read=read_timeout, write=30.0, pool=10.0)
        self._token_provider = token_provider
        self._max_attempts = max_attempts
        self._retry_wait = retry_wait if retry_wait is not None else wait_exponential(min=1, max=10)
        self._reconnect_delay = reconnect_delay

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        token_provider: Optional[TokenProvider] = None,
    ) -> "SSEPushChannel":
        return cls(
            http_client,
            base_url=settings.api_base_url,
            read_timeout=settings.stream_read_timeout_seconds,
            token_provider=token_provider,
            max_attempts=settings.stream_max_attempts,
            reconnect_delay=settings.stream_reconnect_delay_seconds,
        )

    async def subscribe(self, intake_id: str) -> AsyncIterator[PushSignal]:
        queue: asyncio.Queue[Optional[PushSignal]] = asyncio.Queue()
        pump = asyncio.create_task(self._pump(intake_id, queue))
        try:
            while True:
                signal = await queue.get()
                if signal is None:
                    break
                yield signal
        finally:
            pump.cancel()

    async def _pump(self, intake_id: str, queue: asyncio.Queue[Optional[PushSignal]]) -> None:
        try:
            await self._stream(intake_id, queue)
        except (httpx.HTTPError, SSEError, StreamClosedEarly) as exc:
            logger.error(
                "push channel closed after failures: intake_id=%s error=%s",
                intake_id,
                exc,
            )
        finally:
            queue.put_nowait(None)

    async def _stream(self, intake_id: str, queue: asyncio.Queue[Optional[PushSignal]]) -> None:
        while True:
            terminal = False
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=self._retry_wait,
                retry=retry_if_exception_type((httpx.TransportError, StreamClosedEarly)),
                reraise=True,
            ):
                with attempt:
                    terminal = await self._connect_once(intake_id, queue)
            if terminal:
                return

            logger.info("push channel reconnecting: intake_id=%s", intake_id)
            await asyncio.sleep(self._reconnect_delay)

    async def _connect_once(
        self, intake_id: str, queue: asyncio.Queue[Optional[PushSignal]]
    ) -> bool:
        """
        Read one connection to its end.

        Returns True when the server ended the subscription for good and
        False when a confirmed connection closed and should be reopened.
        """
        token = self._token_provider(intake_id) if self._token_provider else None
        url = self._base_url + self.STREAM_PATH.format(intake_id=intake_id)
        confirmed = False

        try:
            async with aconnect_sse(
                self._client,
                "GET",
                url,
                headers=bearer_headers(token),
                timeout=self._timeout,
            ) as event_source:
                event_source.response.raise_for_status()
                async for sse in event_source.aiter_sse():
                    signal_type = _KNOWN_EVENTS.get(sse.event)
                    if signal_type is None:
                        logger.debug("push channel: ignoring event=%s", sse.event)
                        continue

                    data = _decode_data(sse.data)
                    await queue.put(
                        PushSignal(intake_id=intake_id, signal_type=signal_type, data=data)
                    )
                    if signal_type in _CONFIRMATIONS:
                        confirmed = True

                    # --------------------------------------------------
                    # Terminal: server asked us not to reconnect
                    # --------------------------------------------------
                    if signal_type is PushSignalType.MEMO_READY and data.get("should_reconnect") is False:
                        logger.info("push channel: memo ready, closing intake_id=%s", intake_id)
                        return True
        except httpx.TransportError as exc:
            if not confirmed:
                raise
            logger.warning(
                "push channel dropped after connect: intake_id=%s error=%s", intake_id, exc
            )
            return False

        if not confirmed:
            raise StreamClosedEarly(f"stream for {intake_id} closed before it was confirmed")
        return False
