"""STREST message model and wire codec.

Every message wraps a :class:`HeaderTree` that travels on the wire under a
top-level ``strest`` key::

    {"strest": {"v": "2", "method": "GET", "uri": "/echo",
                "txn": {"id": 0, "accept": "multi"}}}
"""

import itertools
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson

from strest_client.exceptions import MalformedPayloadError
from strest_client.headers import HeaderTree

PROTOCOL_VERSION = "2"
USER_AGENT = "PyStrest 2.0"
DEFAULT_METHOD = "GET"
ACCEPT_MULTI = "multi"
STATUS_COMPLETE = "complete"
ENVELOPE_KEY = "strest"


class MessageKind(str, Enum):
    """Discriminant for the two message variants."""

    REQUEST = "request"
    RESPONSE = "response"


class TransactionIdGenerator:
    """Monotonically increasing transaction ids, starting at ``start``.

    One generator is owned by each client; share a single instance between
    clients to keep ids unique across all of them.
    """

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start)
        self.last: int | None = None

    def next(self) -> int:
        self.last = next(self._counter)
        return self.last

    __next__ = next

    def __iter__(self):
        return self


@dataclass
class Message:
    """Header-tree holding base for requests and responses."""

    headers: HeaderTree = field(default_factory=HeaderTree)
    kind: MessageKind = field(init=False)

    def get_header(self, path: str) -> Any:
        return self.headers.get(path)

    def set_header(self, path: str, value: Any) -> None:
        self.headers.set(path, value)

    def set_header_if_absent(self, path: str, value: Any) -> bool:
        return self.headers.set_if_absent(path, value)

    @property
    def txn_id(self) -> Any:
        return self.headers.get("txn.id")


@dataclass
class Request(Message):
    """Outbound request."""

    kind: MessageKind = field(init=False, default=MessageKind.REQUEST)

    def set_uri(self, uri: str) -> None:
        self.headers.set("uri", uri)

    def set_method(self, method: str) -> None:
        self.headers.set("method", method)

    @property
    def uri(self) -> str | None:
        return self.headers.get("uri")

    @property
    def method(self) -> str | None:
        return self.headers.get("method")

    def __str__(self) -> str:
        return serialize(self)


@dataclass
class Response(Message):
    """Inbound response frame.

    ``raw`` keeps the payload exactly as received; ``payload`` is the whole
    decoded document, including any members next to ``strest``.
    """

    raw: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    kind: MessageKind = field(init=False, default=MessageKind.RESPONSE)

    @property
    def status(self) -> str | None:
        return self.headers.get("txn.status")

    @property
    def complete(self) -> bool:
        return self.status == STATUS_COMPLETE

    def __str__(self) -> str:
        return self.raw


def build_request(options: Mapping[str, Any] | None = None, **kwargs: Any) -> Request:
    """Build a request from ``uri``, ``method`` and ``params`` options.

    Supplied values pass through untouched; the method is not validated and
    is left unset when omitted (see :func:`finalize_for_send`).
    """
    values = dict(options or {}, **kwargs)
    request = Request()
    request.set_header("v", PROTOCOL_VERSION)
    request.set_header("user-agent", USER_AGENT)
    for name in ("method", "uri", "params"):
        if values.get(name) is not None:
            request.set_header(name, values[name])
    return request


def coerce_request(request_or_options: Request | Mapping[str, Any]) -> Request:
    if isinstance(request_or_options, Request):
        return request_or_options
    if isinstance(request_or_options, Mapping):
        return build_request(request_or_options)
    raise TypeError(
        f"expected a Request or a mapping of options, got {type(request_or_options).__name__}"
    )


def finalize_for_send(
    request: Request,
    txn_ids: TransactionIdGenerator,
    user_agent: str = USER_AGENT,
) -> Request:
    """Fill in transaction headers that are still missing.

    A transaction id is drawn from ``txn_ids`` only when the request has
    none, so finalizing the same request twice keeps its id.
    """
    request.set_header_if_absent("method", DEFAULT_METHOD)
    request.set_header_if_absent("user-agent", user_agent)
    if request.get_header("txn.id") is None:
        request.set_header("txn.id", txn_ids.next())
    request.set_header_if_absent("txn.accept", ACCEPT_MULTI)
    return request


def serialize(message: Message) -> str:
    return orjson.dumps({ENVELOPE_KEY: message.headers.data}).decode()


def parse_response(raw: str | bytes) -> Response:
    """Parse a wire payload into a :class:`Response`.

    Raises:
        MalformedPayloadError: If the payload is not a JSON object, or its
            ``strest`` member is not an object
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, (bytes, bytearray)) else raw
    try:
        document = orjson.loads(raw)
    except (orjson.JSONDecodeError, TypeError) as e:
        raise MalformedPayloadError(f"Invalid JSON payload: {e}", raw=text) from e

    if not isinstance(document, dict):
        raise MalformedPayloadError("Payload is not a JSON object", raw=text)

    envelope = document.get(ENVELOPE_KEY, {})
    if not isinstance(envelope, dict):
        raise MalformedPayloadError(f"'{ENVELOPE_KEY}' member is not an object", raw=text)

    return Response(headers=HeaderTree(envelope), raw=text, payload=document)


__all__ = [
    "ACCEPT_MULTI",
    "DEFAULT_METHOD",
    "PROTOCOL_VERSION",
    "STATUS_COMPLETE",
    "USER_AGENT",
    "Message",
    "MessageKind",
    "Request",
    "Response",
    "TransactionIdGenerator",
    "build_request",
    "coerce_request",
    "finalize_for_send",
    "parse_response",
    "serialize",
]
