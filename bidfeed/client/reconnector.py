"""Client-side connection keeper with backoff and transport failover.

State machine::

    disconnected -> connecting -> connected -> disconnected (retry)
                        |                           |
                        +------> failing-over <-----+

A failed connection attempt, or a close while connected, waits an exponential
backoff and tries again on the same transport kind. Once the retries for a kind
are used up the reconnector switches to the other kind and starts counting
afresh; it keeps alternating until ``stop()`` is called.

A connection only clears the failure count once it has proved healthy: it
delivered a message, or it stayed up for ``stable_seconds``. A server that
accepts and immediately closes therefore still backs off and fails over.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from ..subscribers.fsm import ChannelKind

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Any]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILING_OVER = "failing-over"


class ClientTransport(Protocol):
    kind: ChannelKind

    async def connect(self) -> None: ...

    async def listen(self, on_message: EventHandler) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[ChannelKind], ClientTransport]


@dataclass(frozen=True)
class BackoffPolicy:
    base_seconds: float = 1.0
    max_seconds: float = 30.0
    max_retries: int = 5
    stable_seconds: float = 10.0

    def delay(self, failures: int) -> float:
        """Wait before the next attempt after ``failures`` consecutive failures."""
        exponent = max(failures - 1, 0)
        return min(self.base_seconds * (2**exponent), self.max_seconds)


class ClientReconnector:
    def __init__(
        self,
        factory: TransportFactory,
        handler: EventHandler,
        *,
        primary: ChannelKind = ChannelKind.DUPLEX_SOCKET,
        policy: BackoffPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
    ) -> None:
        self._factory = factory
        self._handler = handler
        self._policy = policy or BackoffPolicy()
        self._sleep = sleep
        self._on_state_change = on_state_change
        self.kind = primary
        self.state = ConnectionState.DISCONNECTED
        self.failures = 0
        self.failovers = 0
        self._transport: ClientTransport | None = None
        self._task: asyncio.Task | None = None
        self._stopped = False
        self._backoff_pending = False

    @property
    def backoff_pending(self) -> bool:
        return self._backoff_pending

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self._stopped:
            raise RuntimeError("reconnector was stopped; create a new one")
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Cancel any pending backoff, close the active transport and stay stopped."""
        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._backoff_pending = False
        await self._close_transport()
        self._set_state(ConnectionState.DISCONNECTED)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while not self._stopped:
                self._set_state(ConnectionState.CONNECTING)
                transport = self._factory(self.kind)
                self._transport = transport
                try:
                    await transport.connect()
                except Exception as exc:
                    logger.warning("%s connect failed: %s", self.kind.value, exc)
                    await self._close_transport()
                    await self._after_failure()
                    continue

                self._set_state(ConnectionState.CONNECTED)
                connected_at = loop.time()
                try:
                    await transport.listen(self._dispatch)
                    logger.info("%s connection closed by server", self.kind.value)
                except Exception as exc:
                    logger.warning("%s connection lost: %s", self.kind.value, exc)
                finally:
                    await self._close_transport()
                if self._stopped:
                    break
                if loop.time() - connected_at >= self._policy.stable_seconds:
                    self.failures = 0
                await self._after_failure()
        finally:
            self._backoff_pending = False

    async def _after_failure(self) -> None:
        self.failures += 1
        if self.failures > self._policy.max_retries:
            self._set_state(ConnectionState.FAILING_OVER)
            previous, self.kind = self.kind, self.kind.alternate
            self.failures = 0
            self.failovers += 1
            logger.warning("switching transport from %s to %s", previous.value, self.kind.value)
            return
        self._set_state(ConnectionState.DISCONNECTED)
        delay = self._policy.delay(self.failures)
        logger.info("retrying %s in %.1fs (attempt %d)", self.kind.value, delay, self.failures + 1)
        self._backoff_pending = True
        try:
            await self._sleep(delay)
        finally:
            self._backoff_pending = False

    def _dispatch(self, event: dict[str, Any]) -> None:
        self.failures = 0
        try:
            self._handler(event)
        except Exception:
            logger.exception("event handler failed for %s", event.get("type"))

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as exc:
            logger.debug("error closing %s transport: %s", transport.kind.value, exc)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        if self._on_state_change is not None:
            self._on_state_change(state)
