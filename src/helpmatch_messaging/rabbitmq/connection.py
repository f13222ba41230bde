"""RabbitMQ connection lifecycle: lazy connect, capped backoff, reconnect on close."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING, Any

import aio_pika

from ..backoff import ReconnectBackoff
from ..config import BrokerSettings
from ..exceptions import MessagingConnectionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from aio_pika.abc import AbstractChannel, AbstractConnection

    ConnectFactory = Callable[..., Awaitable[AbstractConnection]]
    ConnectedCallback = Callable[[AbstractChannel], Awaitable[None]]

_logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def _sleep(seconds: float) -> None:
    """Async sleep (overridable for tests)."""
    await asyncio.sleep(seconds)


class RabbitMQConnectionManager:
    """Owns the single broker connection and channel of a service process.

    ``connect()`` never raises: failures are logged and turned into scheduled
    retries using capped exponential backoff until the retry budget runs out.
    A broker-initiated close clears the channel and schedules a reconnect
    after ``reconnect_delay``. Callers treat a missing channel as retryable.

    Callbacks registered with ``add_connected_callback`` run after every
    successful connect, which is how consumers re-subscribe.
    """

    def __init__(
        self,
        settings: BrokerSettings | None = None,
        *,
        url: str | None = None,
        connect_factory: ConnectFactory | None = None,
        **connect_kwargs: Any,
    ) -> None:
        """Configure the manager.

        Args:
            settings: Broker settings; defaults to ``BrokerSettings()``.
            url: Overrides ``settings.url`` when given.
            connect_factory: Coroutine returning a connection; defaults to
                ``aio_pika.connect``. Tests pass ``InMemoryBroker.connect``.
            **connect_kwargs: Passed through to the factory.
        """
        self._settings = settings or BrokerSettings()
        self._url = url or self._settings.url
        self._connect_factory = connect_factory or aio_pika.connect
        self._connect_kwargs = connect_kwargs
        self._backoff = ReconnectBackoff(
            max_retries=self._settings.max_retries,
            initial_delay=self._settings.initial_delay,
            growth_factor=self._settings.growth_factor,
            max_delay=self._settings.max_delay,
        )
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._state = ConnectionState.DISCONNECTED
        self._retry_count = 0
        self._last_error: BaseException | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._connected_callbacks: list[ConnectedCallback] = []
        self._closed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    @property
    def settings(self) -> BrokerSettings:
        return self._settings

    def add_connected_callback(self, callback: ConnectedCallback) -> None:
        """Run *callback(channel)* after every successful connect."""
        self._connected_callbacks.append(callback)

    def get_channel(self) -> AbstractChannel | None:
        """Return the open channel or None. Never blocks."""
        if self._channel is None or self._channel.is_closed:
            return None
        return self._channel

    @property
    def channel(self) -> AbstractChannel:
        """Return the channel; raises if not connected."""
        channel = self.get_channel()
        if channel is None:
            raise MessagingConnectionError("Channel not ready; call connect() first")
        return channel

    async def connect(self) -> None:
        """Open the connection and channel. Idempotent.

        Returns immediately when a channel is open or another attempt is in
        flight. A closed channel on a live connection is reopened without
        reconnecting.
        """
        if self._state is ConnectionState.CONNECTING:
            return
        if self.get_channel() is not None:
            return
        self._closed = False
        self._state = ConnectionState.CONNECTING
        channel: AbstractChannel | None = None
        try:
            if self._connection is None or self._connection.is_closed:
                connection = await self._connect_factory(
                    self._url,
                    **self._connect_kwargs,
                )
                connection.close_callbacks.add(self._on_connection_closed)
                self._connection = connection
            channel = await self._connection.channel()
            if self._settings.prefetch_count:
                await channel.set_qos(prefetch_count=self._settings.prefetch_count)
            channel.close_callbacks.add(self._on_channel_closed)
        except Exception as e:  # noqa: BLE001
            if channel is not None:
                await self._discard_channel(channel)
            self._on_connect_failed(e)
            return

        self._channel = channel
        self._state = ConnectionState.CONNECTED
        self._retry_count = 0
        self._last_error = None
        _logger.info("Connected to RabbitMQ")
        await self._run_connected_callbacks(channel)

    @staticmethod
    async def _discard_channel(channel: AbstractChannel) -> None:
        if channel.is_closed:
            return
        try:
            await channel.close()
        except Exception as e:  # noqa: BLE001
            _logger.warning("Failed to close half-opened channel: %s", e)

    def _on_connect_failed(self, exc: BaseException) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._last_error = exc
        self._retry_count += 1
        _logger.error(
            "RabbitMQ connection error (attempt %d/%d): %s",
            self._retry_count,
            self._backoff.max_retries,
            exc,
        )
        if not self._backoff.should_retry(self._retry_count):
            _logger.critical("Max retries reached. Stopping retry attempts.")
            return
        delay = self._backoff.delay_for(self._retry_count)
        _logger.info("Retrying RabbitMQ connection in %.1fs", delay)
        self._schedule_reconnect(delay)

    def _schedule_reconnect(self, delay: float) -> None:
        if self._closed:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay),
        )

    async def _reconnect_after(self, delay: float) -> None:
        await _sleep(delay)
        self._reconnect_task = None
        await self.connect()

    async def _run_connected_callbacks(self, channel: AbstractChannel) -> None:
        for callback in list(self._connected_callbacks):
            try:
                await callback(channel)
            except Exception:  # noqa: BLE001
                _logger.exception("Connected callback %r failed", callback)

    def _on_connection_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        if self._closed or sender is not self._connection:
            return
        _logger.warning(
            "RabbitMQ connection closed (%s). Reconnecting in %.1fs",
            exc,
            self._settings.reconnect_delay,
        )
        self._connection = None
        self._channel = None
        self._state = ConnectionState.DISCONNECTED
        self._schedule_reconnect(self._settings.reconnect_delay)

    def _on_channel_closed(self, sender: Any, exc: BaseException | None = None) -> None:
        # Channel errors (e.g. PRECONDITION_FAILED) leave the connection usable.
        if self._closed or sender is not self._channel:
            return
        if self._connection is None or self._connection.is_closed:
            return
        _logger.error("RabbitMQ channel closed: %s", exc)
        self._channel = None
        self._state = ConnectionState.DISCONNECTED
        self._schedule_reconnect(self._settings.reconnect_delay)

    async def close(self) -> None:
        """Close channel and connection; no reconnect is scheduled afterwards."""
        self._closed = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        channel, self._channel = self._channel, None
        connection, self._connection = self._connection, None
        self._state = ConnectionState.DISCONNECTED
        if channel is not None and not channel.is_closed:
            await channel.close()
        if connection is not None and not connection.is_closed:
            await connection.close()

    async def health_check(self) -> bool:
        """Return True if connection and channel are open."""
        if self._connection is None or self._connection.is_closed:
            return False
        return self.get_channel() is not None
