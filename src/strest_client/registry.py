"""In-flight transaction tracking and response dispatch."""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from strest_client.exceptions import (
    ConnectionLostError,
    TransactionCollisionError,
    UnroutableResponseError,
)
from strest_client.messages import Response
from strest_client.telemetry.logger import get_logger
from strest_client.telemetry.metrics import ClientMetrics

logger = get_logger(__name__)

# Strong references to callback coroutines scheduled on the loop
_background_tasks: set[asyncio.Task] = set()


def invoke_callback(
    callback: Callable | None, *args: Any, label: str = "callback"
) -> asyncio.Future | None:
    """Call a user callback, scheduling it if it returns an awaitable.

    Exceptions raised by the callback are logged and never propagate into
    the connection machinery.

    Returns:
        The scheduled task when the callback returned an awaitable
    """
    if callback is None:
        return None
    try:
        result = callback(*args)
    except Exception:
        logger.exception("callback_failed", callback=label)
        return None
    if inspect.isawaitable(result):
        return _schedule(result)
    return None


def _schedule(awaitable: Any) -> asyncio.Future:
    task = asyncio.ensure_future(awaitable)
    _background_tasks.add(task)
    task.add_done_callback(_finish_background_task)
    return task


async def _invoke_after(
    previous: asyncio.Future, callback: Callable, *args: Any, label: str
) -> None:
    await asyncio.wait([previous])
    invoke_callback(callback, *args, label=label)


def _finish_background_task(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.error("callback_failed", callback=task.get_name(), error=str(task.exception()))


def normalize_txn_id(txn_id: Any) -> Any:
    """Map ids echoed back as decimal strings onto their integer form."""
    if isinstance(txn_id, str) and txn_id.lstrip("-").isdigit():
        return int(txn_id)
    return txn_id


@dataclass
class Transaction:
    """Callback set for one in-flight transaction."""

    id: Any
    on_message: Callable[[Response], Any] | None = None
    on_complete: Callable[[Any], Any] | None = None
    on_error: Callable[[ConnectionLostError], Any] | None = None


class TransactionRegistry:
    """Maps transaction ids to callback sets and routes responses to them."""

    def __init__(self, metrics: ClientMetrics | None = None):
        self._transactions: dict[Any, Transaction] = {}
        self.metrics = metrics

    def register(
        self,
        txn_id: Any,
        on_message: Callable[[Response], Any] | None = None,
        on_complete: Callable[[Any], Any] | None = None,
        on_error: Callable[[ConnectionLostError], Any] | None = None,
    ) -> bool:
        """Track a new transaction.

        Returns:
            False if ``txn_id`` is already registered; the existing entry
            is left untouched
        """
        key = normalize_txn_id(txn_id)
        if key in self._transactions:
            error = TransactionCollisionError(key)
            logger.error("transaction_collision", txn_id=key, error_code=error.error_code)
            return False

        self._transactions[key] = Transaction(key, on_message, on_complete, on_error)
        self._update_gauge()
        return True

    def dispatch(self, response: Response) -> bool:
        """Deliver ``response`` to its transaction.

        A ``complete`` status fires ``on_complete`` and ends the
        transaction; any other status leaves it registered for more frames.

        Returns:
            True if a transaction received the frame
        """
        key = normalize_txn_id(response.get_header("txn.id"))
        txn = self._lookup(key)
        if txn is None:
            error = UnroutableResponseError(key)
            logger.warning(
                "unroutable_response",
                txn_id=key,
                error_code=error.error_code,
                response=str(response),
            )
            if self.metrics:
                self.metrics.unroutable_frames.inc()
            return False

        if self.metrics:
            self.metrics.frames_received.inc()
        delivery = invoke_callback(txn.on_message, response, label="on_message")

        if response.complete:
            # on_message may have triggered connection loss
            if self._transactions.get(key) is txn:
                del self._transactions[key]
                self._update_gauge()
                if self.metrics:
                    self.metrics.transactions_completed.inc()
                if delivery is None:
                    invoke_callback(txn.on_complete, key, label="on_complete")
                elif txn.on_complete is not None:
                    # on_complete follows the scheduled on_message
                    _schedule(_invoke_after(delivery, txn.on_complete, key, label="on_complete"))
        return True

    def fail_all(self, reason: str | ConnectionLostError = "Connection closed") -> int:
        """Fail and forget every pending transaction.

        The registry is emptied before any callback runs, so transactions
        registered from within an error callback survive.

        Returns:
            Number of transactions failed
        """
        error = reason if isinstance(reason, ConnectionLostError) else ConnectionLostError(reason)
        pending, self._transactions = self._transactions, {}
        self._update_gauge()

        if pending:
            logger.info("transactions_failed", count=len(pending), reason=error.reason)
        if self.metrics:
            self.metrics.transactions_failed.inc(len(pending))

        for txn in pending.values():
            invoke_callback(txn.on_error, error, label="on_error")
        return len(pending)

    def get(self, txn_id: Any) -> Transaction | None:
        return self._lookup(normalize_txn_id(txn_id))

    def _lookup(self, key: Any) -> Transaction | None:
        # True == 1 in a dict lookup; a boolean id names no transaction
        if isinstance(key, bool):
            return None
        return self._transactions.get(key)

    def pending_ids(self) -> list[Any]:
        return list(self._transactions)

    def _update_gauge(self) -> None:
        if self.metrics:
            self.metrics.pending_transactions.set(len(self._transactions))

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, txn_id: object) -> bool:
        return self._lookup(normalize_txn_id(txn_id)) is not None
