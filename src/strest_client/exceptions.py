"""Custom exceptions for the STREST client."""

from typing import Any, Dict, Optional


class StrestException(Exception):
    """Base exception for the STREST client."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "STREST_ERROR"
        self.details = details or {}


class NotConnectedError(StrestException):
    """A request was sent while the connection is not open."""

    def __init__(self, message: str = "Not yet connected", state: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="NOT_CONNECTED", **kwargs)
        if state:
            self.details["state"] = state


class MalformedPayloadError(StrestException):
    """An inbound frame could not be parsed."""

    def __init__(self, message: str, raw: Any = None, **kwargs):
        super().__init__(message, error_code="MALFORMED_PAYLOAD", **kwargs)
        self.raw = raw


class UnroutableResponseError(StrestException):
    """A valid frame arrived for a transaction that is not registered."""

    def __init__(self, txn_id: Any, **kwargs):
        super().__init__(
            f"No transaction registered for id {txn_id!r}",
            error_code="UNROUTABLE_RESPONSE",
            **kwargs,
        )
        self.details["txn_id"] = txn_id


class TransactionCollisionError(StrestException):
    """A transaction id was registered twice."""

    def __init__(self, txn_id: Any, **kwargs):
        super().__init__(
            f"Transaction id {txn_id!r} is already registered",
            error_code="TRANSACTION_COLLISION",
            **kwargs,
        )
        self.details["txn_id"] = txn_id


class ConnectionLostError(StrestException):
    """Delivered to pending transactions when the connection goes away."""

    def __init__(self, reason: str = "Connection closed", **kwargs):
        super().__init__(reason, error_code="CONNECTION_LOST", **kwargs)
        self.reason = reason


class TransportUnsupportedError(StrestException):
    """No transport is available for the configured url."""

    def __init__(self, url: str, **kwargs):
        super().__init__(
            f"No streaming transport supports {url!r}",
            error_code="TRANSPORT_UNSUPPORTED",
            **kwargs,
        )
        self.details["url"] = url


__all__ = [
    "StrestException",
    "NotConnectedError",
    "MalformedPayloadError",
    "UnroutableResponseError",
    "TransactionCollisionError",
    "ConnectionLostError",
    "TransportUnsupportedError",
]
