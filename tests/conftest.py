"""Pytest configuration and fixtures."""

import json

import pytest

from strest_client.client import StrestClient
from strest_client.config import StrestSettings
from strest_client.telemetry.metrics import ClientMetrics
from strest_client.transport import Transport


class FakeTransport(Transport):
    """In-memory transport driven by the test."""

    def __init__(self, url: str, auto_open: bool = False, open_error: Exception | None = None):
        super().__init__(url)
        self.auto_open = auto_open
        self.open_error = open_error
        self.sent: list[str] = []
        self.opened = False
        self.closed = False
        self.open_calls = 0

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error
        if self.auto_open:
            self.simulate_open()

    def send(self, data: str) -> None:
        if not self.is_open:
            raise ConnectionError("fake transport is not open")
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True

    def simulate_open(self) -> None:
        self.opened = True
        self._emit_open()

    def feed(self, payload) -> None:
        if isinstance(payload, dict):
            payload = json.dumps(payload)
        self._emit_message(payload)

    def drop(self, reason: str = "Connection reset by peer") -> None:
        self.closed = True
        self._emit_close(reason)

    def fail(self, error: Exception) -> None:
        self._emit_error(error)

    @property
    def sent_messages(self) -> list[dict]:
        return [json.loads(data) for data in self.sent]


class FakeTransportFactory:
    """Transport factory recording every transport it builds."""

    def __init__(self, auto_open: bool = False):
        self.auto_open = auto_open
        self.open_error: Exception | None = None
        self.created: list[FakeTransport] = []

    def __call__(self, url: str) -> FakeTransport:
        transport = FakeTransport(url, auto_open=self.auto_open, open_error=self.open_error)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


def complete_frame(txn_id, **headers) -> dict:
    strest = {"txn": {"id": txn_id, "status": "complete"}}
    strest.update(headers)
    return {"strest": strest}


def partial_frame(txn_id, **headers) -> dict:
    strest = {"txn": {"id": txn_id, "status": "continue"}}
    strest.update(headers)
    return {"strest": strest}


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return StrestSettings(
        _env_file=None,
        url="ws://strest.test/socket",
        keepalive=False,
        ping=None,
        ping_interval=0.05,
        reconnect_interval=0.05,
    )


@pytest.fixture
def transports():
    return FakeTransportFactory()


@pytest.fixture
def metrics():
    return ClientMetrics()


@pytest.fixture
def client(settings, transports, metrics):
    return StrestClient(settings=settings, transport_factory=transports, metrics=metrics)


@pytest.fixture
def open_client(client, transports):
    """Client whose transport has reported open."""
    client.connect()
    transports.last.simulate_open()
    return client
