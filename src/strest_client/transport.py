"""Streaming transports carrying STREST frames."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from urllib.parse import urlparse

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from strest_client.exceptions import TransportUnsupportedError
from strest_client.telemetry.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_SCHEMES = ("ws", "wss")


class Transport(ABC):
    """A bidirectional frame transport bound to one url.

    The owner assigns the ``on_open``, ``on_message``, ``on_close`` and
    ``on_error`` handlers before calling :meth:`open`. A transport is used
    for a single connection attempt and is not reopened.
    """

    def __init__(self, url: str):
        self.url = url
        self.on_open: Callable[[], None] | None = None
        self.on_message: Callable[[str], None] | None = None
        self.on_close: Callable[[str], None] | None = None
        self.on_error: Callable[[Exception], None] | None = None

    @abstractmethod
    def open(self) -> None:
        """Begin connecting; completion is reported through ``on_open``."""

    @abstractmethod
    def send(self, data: str) -> None:
        """Queue a frame for delivery without waiting for it."""

    @abstractmethod
    def close(self) -> None:
        """Begin closing; completion is reported through ``on_close``."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether frames can currently be sent."""

    def _emit_open(self) -> None:
        if self.on_open:
            self.on_open()

    def _emit_message(self, data: str) -> None:
        if self.on_message:
            self.on_message(data)

    def _emit_close(self, reason: str) -> None:
        if self.on_close:
            self.on_close(reason)

    def _emit_error(self, error: Exception) -> None:
        if self.on_error:
            self.on_error(error)


class WebSocketTransport(Transport):
    """Transport over a WebSocket connection from the ``websockets`` library.

    A reader task owns the connection and reports events; outbound frames
    go through a queue drained by a writer task, so :meth:`send` returns
    immediately and frames leave in the order they were queued.
    """

    def __init__(self, url: str, open_timeout: float = 10.0):
        super().__init__(url)
        self.open_timeout = open_timeout
        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._closer: asyncio.Task | None = None
        self._closing = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open and not self._closing

    def open(self) -> None:
        if self._task is not None:
            raise RuntimeError("WebSocketTransport instances are single-use")
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"strest-transport {self.url}"
        )

    def send(self, data: str) -> None:
        if not self.is_open:
            raise ConnectionError(f"transport to {self.url} is not open")
        self._outbox.put_nowait(data)

    def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        if self._task is None or self._task.done():
            return
        if self._task is asyncio.current_task():
            # Inside one of our own event handlers; the reader exits
            # through the close handshake.
            if self._ws is not None:
                self._closer = asyncio.get_running_loop().create_task(self._ws.close())
        else:
            self._task.cancel()

    async def _run(self) -> None:
        reason = "Connection closed"
        try:
            async with connect(self.url, open_timeout=self.open_timeout) as ws:
                self._ws = ws
                self._open = True
                logger.info("transport_open", url=self.url)
                self._emit_open()
                writer = asyncio.create_task(self._write_loop(ws))
                writer.add_done_callback(self._writer_done)
                try:
                    async for frame in ws:
                        if isinstance(frame, bytes):
                            frame = frame.decode("utf-8", errors="replace")
                        self._emit_message(frame)
                finally:
                    writer.cancel()
                if ws.close_reason:
                    reason = ws.close_reason
        except asyncio.CancelledError:
            reason = "Connection closed by client"
            raise
        except ConnectionClosed as e:
            reason = str(e)
        except (WebSocketException, OSError, TimeoutError) as e:
            logger.warning("transport_error", url=self.url, error=str(e))
            reason = str(e) or type(e).__name__
            self._emit_error(e)
        finally:
            self._open = False
            self._ws = None
            logger.info("transport_closed", url=self.url, reason=reason)
            self._emit_close(reason)

    async def _write_loop(self, ws: ClientConnection) -> None:
        while True:
            data = await self._outbox.get()
            try:
                await ws.send(data)
            except ConnectionClosed:
                return

    def _writer_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        error = task.exception()
        logger.warning("transport_send_failed", url=self.url, error=str(error))
        self._emit_error(error)
        self.close()


def create_transport(url: str, open_timeout: float = 10.0) -> Transport:
    """Default transport factory.

    Raises:
        TransportUnsupportedError: If the url scheme has no transport
    """
    scheme = urlparse(url).scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise TransportUnsupportedError(url)
    return WebSocketTransport(url, open_timeout=open_timeout)
