"""Python client for the STREST protocol.

Multiplexes request/response transactions over a single persistent
WebSocket connection, with ping probes and automatic reconnection.
"""

__version__ = "2.0.0"


def get_version():
    return __version__


from strest_client.client import ConnectionState, StrestClient
from strest_client.config import StrestSettings, get_settings
from strest_client.exceptions import (
    ConnectionLostError,
    MalformedPayloadError,
    NotConnectedError,
    StrestException,
    TransactionCollisionError,
    TransportUnsupportedError,
    UnroutableResponseError,
)
from strest_client.headers import HeaderTree
from strest_client.messages import (
    Message,
    MessageKind,
    Request,
    Response,
    TransactionIdGenerator,
    build_request,
    finalize_for_send,
    parse_response,
    serialize,
)
from strest_client.registry import Transaction, TransactionRegistry
from strest_client.transport import Transport, WebSocketTransport, create_transport

__all__ = [
    "__version__",
    "get_version",
    "ConnectionLostError",
    "ConnectionState",
    "HeaderTree",
    "MalformedPayloadError",
    "Message",
    "MessageKind",
    "NotConnectedError",
    "Request",
    "Response",
    "StrestClient",
    "StrestException",
    "StrestSettings",
    "Transaction",
    "TransactionCollisionError",
    "TransactionIdGenerator",
    "TransactionRegistry",
    "Transport",
    "TransportUnsupportedError",
    "UnroutableResponseError",
    "WebSocketTransport",
    "build_request",
    "create_transport",
    "finalize_for_send",
    "get_settings",
    "parse_response",
    "serialize",
]
