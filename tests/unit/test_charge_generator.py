"""Unit tests for charge generation and its retry policy."""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from pixpopup.charges import ChargeGenerator, parse_charge_response
from pixpopup.exceptions import (
    GENERIC_FAILURE_MESSAGE,
    RATE_LIMIT_MESSAGE,
    ChargeTransportError,
    InvalidChargeResponseError,
    RateLimitedError,
)
from pixpopup.models import ChargeMetadata

OK = {"pixCode": "00020126pix", "transactionId": "tx-1", "qrCodeUrl": "https://qr.example/tx-1.png"}


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.mark.unit
class TestParseChargeResponse:

    def test_accepted(self):
        accepted = parse_charge_response(OK)
        assert accepted.code == "00020126pix"
        assert accepted.transaction_id == "tx-1"
        assert accepted.qr_image_url == "https://qr.example/tx-1.png"

    def test_empty_qr_url_means_local_render(self):
        accepted = parse_charge_response({"pixCode": "x", "transactionId": 42, "qrCodeUrl": ""})
        assert accepted.qr_image_url is None
        assert accepted.transaction_id == "42"

    def test_rate_limit_envelope(self):
        with pytest.raises(RateLimitedError) as exc_info:
            parse_charge_response({"error": "RATE_LIMIT", "message": "Aguarde 10 minutos"})
        assert exc_info.value.user_message == "Aguarde 10 minutos"

    def test_rate_limit_default_message(self):
        with pytest.raises(RateLimitedError) as exc_info:
            parse_charge_response({"error": "RATE_LIMIT"})
        assert exc_info.value.user_message == RATE_LIMIT_MESSAGE

    @pytest.mark.parametrize(
        "data",
        [
            {"transactionId": "tx-1"},
            {"pixCode": "x"},
            {"error": "Internal"},
            {"pixCode": 12345, "transactionId": "tx-1"},
            None,
            ["pixCode"],
        ],
    )
    def test_invalid_bodies(self, data):
        with pytest.raises(InvalidChargeResponseError):
            parse_charge_response(data)


@pytest.mark.unit
class TestChargeGenerator:

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, backend, sleep):
        generator = ChargeGenerator(backend, sleep=sleep)

        accepted = await generator.generate(Decimal("50.00"), ChargeMetadata())

        assert accepted.transaction_id == "tx-1"
        backend.create_charge.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self, backend, sleep):
        backend.create_charge.return_value = {"error": "RATE_LIMIT", "message": "Limite atingido"}
        generator = ChargeGenerator(backend, sleep=sleep)

        with pytest.raises(RateLimitedError) as exc_info:
            await generator.generate(Decimal("50.00"), ChargeMetadata())

        assert backend.create_charge.await_count == 1
        assert exc_info.value.attempts == 1
        assert exc_info.value.user_message == "Limite atingido"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transport_failures_exhaust_three_attempts(self, backend, sleep):
        backend.create_charge.side_effect = ChargeTransportError("backend down")
        generator = ChargeGenerator(backend, sleep=sleep)

        with pytest.raises(ChargeTransportError) as exc_info:
            await generator.generate(Decimal("50.00"), ChargeMetadata())

        assert backend.create_charge.await_count == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.user_message == GENERIC_FAILURE_MESSAGE
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)

    @pytest.mark.asyncio
    async def test_recovers_after_malformed_response(self, backend, sleep):
        backend.create_charge.side_effect = [{"error": "oops"}, OK]
        generator = ChargeGenerator(backend, sleep=sleep)

        accepted = await generator.generate(Decimal("20.00"), ChargeMetadata())

        assert accepted.code == "00020126pix"
        assert backend.create_charge.await_count == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_raw_httpx_errors_are_wrapped(self, backend, sleep):
        backend.create_charge.side_effect = httpx.ConnectError("connection refused")
        generator = ChargeGenerator(backend, max_retries=0, sleep=sleep)

        with pytest.raises(ChargeTransportError) as exc_info:
            await generator.generate(Decimal("20.00"), ChargeMetadata())

        assert exc_info.value.attempts == 1
        assert backend.create_charge.await_count == 1

    @pytest.mark.asyncio
    async def test_metadata_passed_through(self, backend, sleep):
        metadata = ChargeMetadata(utm_params={"utm_source": "facebook"}, popup_variant="boost")
        generator = ChargeGenerator(backend, sleep=sleep)

        await generator.generate(Decimal("30.00"), metadata)

        backend.create_charge.assert_awaited_once_with(Decimal("30.00"), metadata)

    @pytest.mark.asyncio
    async def test_mistyped_pix_code_retried(self, backend, sleep):
        backend.create_charge.side_effect = [{"pixCode": 12345, "transactionId": "tx-1"}, OK]
        generator = ChargeGenerator(backend, sleep=sleep)

        accepted = await generator.generate(Decimal("20.00"), ChargeMetadata())

        assert accepted.transaction_id == "tx-1"
        assert backend.create_charge.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TimeoutError("timed out"), OSError("network unreachable"), KeyError("x")])
    async def test_unexpected_backend_errors_treated_as_transport(self, backend, sleep, error):
        backend.create_charge.side_effect = error
        generator = ChargeGenerator(backend, sleep=sleep)

        with pytest.raises(ChargeTransportError) as exc_info:
            await generator.generate(Decimal("20.00"), ChargeMetadata())

        assert backend.create_charge.await_count == 3
        assert exc_info.value.attempts == 3
