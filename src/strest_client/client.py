"""Connection lifecycle manager for the STREST client.

:class:`StrestClient` owns one streaming transport at a time, multiplexes
transactions over it, probes its health with periodic ping requests and
reconnects on a fixed interval after the connection drops.

Everything runs on a single asyncio event loop. :meth:`StrestClient.connect`
and :meth:`StrestClient.send_request` never await; results arrive through
the callbacks registered with each request.
"""

import asyncio
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from strest_client.config import StrestSettings, get_settings
from strest_client.exceptions import (
    ConnectionLostError,
    MalformedPayloadError,
    NotConnectedError,
    TransportUnsupportedError,
)
from strest_client.messages import (
    DEFAULT_METHOD,
    Request,
    Response,
    TransactionIdGenerator,
    coerce_request,
    finalize_for_send,
    parse_response,
    serialize,
)
from strest_client.registry import TransactionRegistry, invoke_callback
from strest_client.telemetry.logger import get_logger
from strest_client.telemetry.metrics import ClientMetrics
from strest_client.timers import PeriodicTimer
from strest_client.transport import Transport, create_transport

logger = get_logger(__name__)

TransportFactory = Callable[[str], Transport]


class ConnectionState(str, Enum):
    """Connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


def _noop(*args: Any) -> None:
    pass


class StrestClient:
    """STREST client multiplexing transactions over one connection."""

    def __init__(
        self,
        url: str | None = None,
        on_open: Callable[["StrestClient"], Any] | None = None,
        on_close: Callable[[str], Any] | None = None,
        *,
        keepalive: bool | None = None,
        ping: str | None = None,
        settings: StrestSettings | None = None,
        transport_factory: TransportFactory | None = None,
        txn_ids: TransactionIdGenerator | None = None,
        metrics: ClientMetrics | None = None,
    ):
        """Initialize the client.

        Args:
            url: Server url; overrides ``settings.url``
            on_open: Called with the client each time the connection opens
            on_close: Called with the close reason each time it closes
            keepalive: Overrides ``settings.keepalive``
            ping: Ping endpoint path; overrides ``settings.ping``
            settings: Base settings, defaults to the cached environment settings
            transport_factory: Builds a transport for a url
            txn_ids: Transaction id source, shared to keep ids unique across clients
            metrics: Prometheus collectors for this client
        """
        base = settings or get_settings()
        overrides = {
            key: value
            for key, value in (("url", url), ("keepalive", keepalive), ("ping", ping))
            if value is not None
        }
        self.settings = StrestSettings(**{**base.model_dump(), **overrides}) if overrides else base

        self.on_open = on_open
        self.on_close = on_close
        self.metrics = metrics or ClientMetrics()
        self.registry = TransactionRegistry(metrics=self.metrics)
        self.txn_ids = txn_ids or TransactionIdGenerator()
        self._transport_factory = transport_factory or self._default_transport

        self._state = ConnectionState.DISCONNECTED
        self._transport: Transport | None = None
        self._opened = asyncio.Event()
        self._closed = asyncio.Event()
        self._shutdown = False

        self._ping_timer = PeriodicTimer(
            self.settings.ping_interval, self._send_ping, name="strest-ping"
        )
        self._reconnect_timer = PeriodicTimer(
            self.settings.reconnect_interval, self._reconnect, name="strest-reconnect"
        )

    @property
    def url(self) -> str:
        return self.settings.url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def transport(self) -> Transport | None:
        return self._transport

    @property
    def connected(self) -> bool:
        return (
            self._state == ConnectionState.OPEN
            and self._transport is not None
            and self._transport.is_open
        )

    @property
    def pending(self) -> int:
        """Number of transactions awaiting completion."""
        return len(self.registry)

    def _default_transport(self, url: str) -> Transport:
        return create_transport(url, open_timeout=self.settings.open_timeout)

    def connect(self) -> None:
        """Start connecting with a fresh transport.

        Does nothing if the connection is already open or connecting. If the
        transport fails to start, the attempt is closed like any other lost
        connection before the error propagates.

        Raises:
            TransportUnsupportedError: If no transport handles the url
        """
        if self._state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            logger.info("connect_ignored", url=self.url, state=self._state.value)
            return

        self._shutdown = False
        try:
            transport = self._transport_factory(self.url)
        except TransportUnsupportedError as e:
            logger.error("transport_unsupported", url=self.url, error=e.message)
            raise

        transport.on_open = lambda: self._handle_open(transport)
        transport.on_message = lambda data: self._handle_message(transport, data)
        transport.on_close = lambda reason: self._handle_close(transport, reason)
        transport.on_error = lambda error: self._handle_error(transport, error)

        self._transport = transport
        self._state = ConnectionState.CONNECTING
        self._closed.clear()
        logger.info("connecting", url=self.url)
        try:
            transport.open()
        except Exception as e:
            logger.error("transport_open_failed", url=self.url, error=str(e))
            self._handle_close(transport, str(e) or type(e).__name__)
            raise

    def close(self, reason: str = "Connection closed by client") -> None:
        """Close the connection.

        Pending transactions fail and, with keepalive enabled, the reconnect
        loop starts. Use :meth:`shutdown` to close for good.
        """
        if self._state not in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            logger.debug("close_ignored", url=self.url, state=self._state.value)
            return
        transport = self._transport
        self._handle_close(transport, reason)
        if transport is not None:
            transport.close()

    def shutdown(self) -> None:
        """Close the connection and stop the ping and reconnect loops."""
        self._shutdown = True
        self._reconnect_timer.cancel()
        self._ping_timer.cancel()
        self.close(reason="Client shutdown")

    async def wait_open(self, timeout: float | None = None) -> bool:
        """Wait for the current connection attempt to settle.

        Returns:
            True once the connection is open; False if it closed first or
            ``timeout`` seconds passed
        """
        if self.connected:
            return True
        waiters = {
            asyncio.ensure_future(self._opened.wait()),
            asyncio.ensure_future(self._closed.wait()),
        }
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.connected

    def send_request(
        self,
        request: Request | Mapping[str, Any],
        on_message: Callable[[Response], Any] | None = None,
        on_complete: Callable[[Any], Any] | None = None,
        on_error: Callable[[ConnectionLostError], Any] | None = None,
    ) -> Request:
        """Send a request and register callbacks for its transaction.

        Args:
            request: A :class:`Request` or a mapping with ``uri``, ``method``
                and ``params``
            on_message: Called with every response frame of the transaction
            on_complete: Called with the transaction id on a complete status
            on_error: Called once with a :class:`ConnectionLostError` if the
                connection drops first

        Returns:
            The finalized request

        Raises:
            NotConnectedError: If the connection is not open
        """
        if not self.connected:
            raise NotConnectedError(state=self._state.value)

        request = coerce_request(request)
        finalize_for_send(request, self.txn_ids, user_agent=self.settings.user_agent)
        txn_id = request.txn_id

        if not self.registry.register(txn_id, on_message, on_complete, on_error):
            logger.error("request_not_sent", txn_id=txn_id, uri=request.uri)
            return request

        try:
            self._transport.send(serialize(request))
        except (ConnectionError, OSError) as e:
            logger.warning("send_failed", txn_id=txn_id, error=str(e))
            self.close(reason=f"Send failed: {e}")
            return request

        self.metrics.requests_sent.labels(method=str(request.method)).inc()
        logger.debug("request_sent", txn_id=txn_id, method=request.method, uri=request.uri)
        return request

    def _is_current(self, transport: Transport) -> bool:
        return transport is self._transport

    def _handle_open(self, transport: Transport) -> None:
        if not self._is_current(transport) or self._state != ConnectionState.CONNECTING:
            logger.debug("stale_open_ignored", url=transport.url)
            return

        self._state = ConnectionState.OPEN
        self._reconnect_timer.cancel()
        if self.settings.ping_enabled:
            self._ping_timer.start()
        self._opened.set()
        logger.info("connection_open", url=self.url, ping=self.settings.ping)
        invoke_callback(self.on_open, self, label="on_open")

    def _handle_message(self, transport: Transport, data: str | bytes) -> None:
        if not self._is_current(transport) or self._state != ConnectionState.OPEN:
            logger.debug("stale_frame_dropped", url=transport.url)
            return

        try:
            response = parse_response(data)
        except MalformedPayloadError as e:
            self.metrics.malformed_frames.inc()
            logger.warning("malformed_payload", error=e.message, raw=e.raw)
            return
        self.registry.dispatch(response)

    def _handle_error(self, transport: Transport, error: Exception) -> None:
        if not self._is_current(transport):
            return
        logger.warning("transport_error", url=self.url, error=str(error))
        self.close(reason=str(error) or type(error).__name__)

    def _handle_close(self, transport: Transport | None, reason: str) -> None:
        if not self._is_current(transport) or self._state not in (
            ConnectionState.OPEN,
            ConnectionState.CONNECTING,
        ):
            return

        self._state = ConnectionState.CLOSED
        self._opened.clear()
        self._closed.set()
        self._ping_timer.cancel()
        logger.info("connection_closed", url=self.url, reason=reason)
        self.registry.fail_all(reason)
        invoke_callback(self.on_close, reason, label="on_close")

        # on_close may already have started a new connection
        if (
            self.settings.keepalive
            and not self._shutdown
            and self._state == ConnectionState.CLOSED
            and not self._reconnect_timer.running
        ):
            logger.info("reconnect_scheduled", url=self.url, interval=self.settings.reconnect_interval)
            self._reconnect_timer.start()

    def _send_ping(self) -> None:
        if not self.connected:
            return
        self.send_request(
            {"uri": self.settings.ping, "method": DEFAULT_METHOD},
            on_message=_noop,
            on_complete=_noop,
            on_error=lambda error: self.close(reason="Ping failed"),
        )

    def _reconnect(self) -> None:
        self.metrics.reconnect_attempts.inc()
        logger.info("reconnect_attempt", url=self.url, state=self._state.value)
        try:
            self.connect()
        except TransportUnsupportedError:
            self._reconnect_timer.cancel()
        except Exception as e:
            logger.warning("reconnect_failed", url=self.url, error=str(e))

    async def __aenter__(self) -> "StrestClient":
        self.connect()
        if not await self.wait_open(self.settings.open_timeout):
            self.shutdown()
            raise NotConnectedError(
                f"Timed out connecting to {self.url}", state=self._state.value
            )
        return self

    async def __aexit__(self, *args) -> None:
        self.shutdown()
