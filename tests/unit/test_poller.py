"""Unit tests for payment status polling."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from pixpopup.poller import PaymentStatusPoller


@pytest.mark.unit
class TestPaymentStatusPoller:

    @pytest.mark.asyncio
    async def test_stops_after_paid(self):
        check_status = AsyncMock(side_effect=["pending", "pending", "paid"])
        on_paid = MagicMock()
        poller = PaymentStatusPoller(check_status, interval=0.01)

        handle = poller.start("tx-1", on_paid)
        await asyncio.sleep(0.15)

        on_paid.assert_called_once_with()
        assert check_status.await_count == 3
        assert handle.queries == 3
        assert poller.is_running is False

    @pytest.mark.asyncio
    async def test_query_errors_keep_polling(self):
        check_status = AsyncMock(side_effect=[httpx.ReadTimeout("slow"), ValueError("bad json"), "paid"])
        on_paid = MagicMock()
        poller = PaymentStatusPoller(check_status, interval=0.01)

        poller.start("tx-1", on_paid)
        await asyncio.sleep(0.15)

        on_paid.assert_called_once()
        assert check_status.await_count == 3

    @pytest.mark.asyncio
    async def test_no_queries_after_stop(self):
        check_status = AsyncMock(return_value="pending")
        poller = PaymentStatusPoller(check_status, interval=0.01)

        poller.start("tx-1", MagicMock())
        await asyncio.sleep(0.05)
        poller.stop()
        count = check_status.await_count
        await asyncio.sleep(0.05)

        assert count >= 1
        assert check_status.await_count == count
        poller.stop()

    @pytest.mark.asyncio
    async def test_paid_answer_after_stop_is_ignored(self):
        release = asyncio.Event()
        in_flight = asyncio.Event()

        async def check_status(transaction_id):
            in_flight.set()
            await release.wait()
            return "paid"

        on_paid = MagicMock()
        poller = PaymentStatusPoller(check_status, interval=0.01)
        handle = poller.start("tx-1", on_paid)

        await in_flight.wait()
        handle.active = False
        release.set()
        await asyncio.sleep(0.05)

        on_paid.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_same_transaction_reuses_loop(self):
        poller = PaymentStatusPoller(AsyncMock(return_value="pending"), interval=0.01)

        first = poller.start("tx-1", MagicMock())
        second = poller.start("tx-1", MagicMock())

        assert first is second
        poller.stop()

    @pytest.mark.asyncio
    async def test_start_other_transaction_stops_previous(self):
        check_status = AsyncMock(return_value="pending")
        poller = PaymentStatusPoller(check_status, interval=0.01)

        first = poller.start("tx-1", MagicMock())
        second = poller.start("tx-2", MagicMock())
        await asyncio.sleep(0.05)

        assert first.active is False
        assert second.active is True
        assert {call.args[0] for call in check_status.await_args_list} == {"tx-2"}
        poller.stop()
