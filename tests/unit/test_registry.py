"""Unit tests for the transaction registry."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from strest_client.exceptions import ConnectionLostError
from strest_client.messages import parse_response
from strest_client.registry import TransactionRegistry


def frame(txn_id, status=None):
    txn = {"id": txn_id}
    if status:
        txn["status"] = status
    return parse_response(json.dumps({"strest": {"txn": txn}}))


class TestTransactionRegistry:
    """Test suite for transaction registration and dispatch."""

    def test_register_and_lookup(self):
        """Test a registered transaction can be looked up."""
        registry = TransactionRegistry()

        assert registry.register(0, MagicMock()) is True

        assert 0 in registry
        assert len(registry) == 1
        assert registry.get(0).id == 0
        assert registry.pending_ids() == [0]

    def test_duplicate_registration_is_rejected(self):
        """Test a duplicate id keeps the first registration."""
        registry = TransactionRegistry()
        first = MagicMock()
        second = MagicMock()
        registry.register(5, on_message=first)

        with capture_logs() as logs:
            assert registry.register(5, on_message=second) is False

        assert registry.get(5).on_message is first
        assert any(
            log["event"] == "transaction_collision" and log["log_level"] == "error"
            for log in logs
        )

    def test_dispatch_streams_until_complete(self):
        """Test frames stream until a complete status."""
        registry = TransactionRegistry()
        on_message = MagicMock()
        on_complete = MagicMock()
        registry.register(1, on_message, on_complete)

        assert registry.dispatch(frame(1)) is True
        assert registry.dispatch(frame(1, "continue")) is True
        assert 1 in registry
        on_complete.assert_not_called()

        assert registry.dispatch(frame(1, "complete")) is True

        assert on_message.call_count == 3
        on_complete.assert_called_once_with(1)
        assert 1 not in registry

    def test_frames_after_completion_are_unroutable(self):
        """Test frames after completion are dropped."""
        registry = TransactionRegistry()
        on_message = MagicMock()
        registry.register(2, on_message)
        registry.dispatch(frame(2, "complete"))

        with capture_logs() as logs:
            assert registry.dispatch(frame(2, "complete")) is False

        assert on_message.call_count == 1
        assert [log["event"] for log in logs] == ["unroutable_response"]

    def test_unknown_transaction_is_dropped(self, metrics):
        """Test unknown ids are counted as unroutable."""
        registry = TransactionRegistry(metrics=metrics)

        assert registry.dispatch(frame(42)) is False
        assert registry.dispatch(parse_response('{"content": "no headers"}')) is False
        assert metrics.value("unroutable_frames_total") == 2

    def test_string_ids_match_integer_registrations(self):
        """Test decimal string ids match integer ids."""
        registry = TransactionRegistry()
        on_complete = MagicMock()
        registry.register(7, on_complete=on_complete)

        registry.dispatch(frame("7", "complete"))

        on_complete.assert_called_once_with(7)

    def test_missing_callbacks_are_skipped(self):
        """Test transactions without callbacks still complete."""
        registry = TransactionRegistry()
        registry.register(3)

        assert registry.dispatch(frame(3, "complete")) is True
        assert len(registry) == 0

    def test_raising_callback_does_not_stop_completion(self):
        """Test a raising on_message does not block completion."""
        registry = TransactionRegistry()
        on_complete = MagicMock()
        registry.register(4, MagicMock(side_effect=RuntimeError("boom")), on_complete)

        with capture_logs() as logs:
            registry.dispatch(frame(4, "complete"))

        on_complete.assert_called_once_with(4)
        assert any(log["event"] == "callback_failed" for log in logs)

    def test_fail_all_notifies_every_transaction_once(self, metrics):
        """Test fail_all errors every pending transaction once."""
        registry = TransactionRegistry(metrics=metrics)
        callbacks = {}
        for txn_id in range(5):
            callbacks[txn_id] = (MagicMock(), MagicMock(), MagicMock())
            registry.register(txn_id, *callbacks[txn_id])

        assert registry.fail_all("Connection reset") == 5

        assert len(registry) == 0
        for on_message, on_complete, on_error in callbacks.values():
            on_error.assert_called_once()
            error = on_error.call_args[0][0]
            assert isinstance(error, ConnectionLostError)
            assert error.reason == "Connection reset"
            on_message.assert_not_called()
            on_complete.assert_not_called()
        assert metrics.value("transactions_failed_total") == 5
        assert metrics.value("pending_transactions") == 0

    def test_no_callbacks_after_fail_all(self):
        """Test failed transactions get no further callbacks."""
        registry = TransactionRegistry()
        on_message, on_complete, on_error = MagicMock(), MagicMock(), MagicMock()
        registry.register(0, on_message, on_complete, on_error)

        registry.fail_all("gone")
        registry.dispatch(frame(0))
        registry.dispatch(frame(0, "complete"))

        on_error.assert_called_once()
        on_message.assert_not_called()
        on_complete.assert_not_called()

    def test_registration_during_fail_all_survives(self):
        """Test transactions registered from on_error are kept."""
        registry = TransactionRegistry()

        def resend(error):
            registry.register(100, on_error=late_error)

        late_error = MagicMock()
        registry.register(1, on_error=resend)

        registry.fail_all("gone")

        assert 100 in registry
        late_error.assert_not_called()

    def test_connection_loss_inside_on_message_suppresses_completion(self):
        """Test a loss during on_message skips on_complete."""
        registry = TransactionRegistry()
        on_complete = MagicMock()
        on_error = MagicMock()
        registry.register(
            9,
            on_message=lambda response: registry.fail_all("dropped mid-frame"),
            on_complete=on_complete,
            on_error=on_error,
        )

        registry.dispatch(frame(9, "complete"))

        on_error.assert_called_once()
        on_complete.assert_not_called()

    def test_gauge_tracks_pending(self, metrics):
        """Test metrics follow pending and completed transactions."""
        registry = TransactionRegistry(metrics=metrics)
        registry.register(0)
        registry.register(1)
        assert metrics.value("pending_transactions") == 2

        registry.dispatch(frame(0, "complete"))
        assert metrics.value("pending_transactions") == 1
        assert metrics.value("transactions_completed_total") == 1
        assert metrics.value("frames_received_total") == 1

    @pytest.mark.asyncio
    async def test_coroutine_callbacks_are_scheduled(self):
        """Test async callbacks are scheduled on the loop."""
        registry = TransactionRegistry()
        received = []

        async def on_message(response):
            received.append(response.txn_id)

        registry.register(11, on_message)
        registry.dispatch(frame(11))
        await asyncio.sleep(0)

        assert received == [11]

    @pytest.mark.asyncio
    async def test_completion_follows_coroutine_on_message(self):
        """Test on_complete runs after an async on_message for the same frame."""
        registry = TransactionRegistry()
        order = []

        async def on_message(response):
            order.append("message")

        registry.register(12, on_message, lambda txn_id: order.append("complete"))
        registry.dispatch(frame(12, "complete"))

        assert 12 not in registry
        assert order == []
        for _ in range(5):
            await asyncio.sleep(0)

        assert order == ["message", "complete"]

    @pytest.mark.asyncio
    async def test_completion_runs_after_failed_coroutine_on_message(self):
        """Test a raising async on_message still lets the transaction complete."""
        registry = TransactionRegistry()
        on_complete = MagicMock()

        async def on_message(response):
            raise RuntimeError("boom")

        registry.register(13, on_message, on_complete)
        with capture_logs() as logs:
            registry.dispatch(frame(13, "complete"))
            for _ in range(5):
                await asyncio.sleep(0)

        on_complete.assert_called_once_with(13)
        assert any(log["event"] == "callback_failed" for log in logs)

    def test_boolean_id_is_unroutable(self, metrics):
        """Test a boolean transaction id never matches an integer id."""
        registry = TransactionRegistry(metrics=metrics)
        on_message = MagicMock()
        registry.register(1, on_message)

        assert registry.dispatch(frame(True, "complete")) is False

        on_message.assert_not_called()
        assert 1 in registry
        assert True not in registry
        assert metrics.value("unroutable_frames_total") == 1
