"""Charge generation with a bounded retry policy."""

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from pydantic import ValidationError

from .config import config
from .exceptions import (
    ChargeError,
    ChargeTransportError,
    InvalidChargeResponseError,
    RateLimitedError,
)
from .logging_utils import get_logger
from .models import ChargeAccepted, ChargeMetadata

logger = get_logger(__name__)

RATE_LIMIT_ERROR = "RATE_LIMIT"


class ChargeBackend(Protocol):
    """Remote procedure that creates PIX charges."""

    async def create_charge(self, amount: Decimal, metadata: ChargeMetadata) -> Dict[str, Any]: ...


def parse_charge_response(data: Any) -> ChargeAccepted:
    """Turn a generate-pix body into a ChargeAccepted.

    Raises:
        RateLimitedError: The body is the rate-limit envelope.
        InvalidChargeResponseError: The body lacks a PIX code.
    """
    if not isinstance(data, dict):
        raise InvalidChargeResponseError(f"Unexpected response type: {type(data).__name__}")

    if data.get("error") == RATE_LIMIT_ERROR:
        raise RateLimitedError("Charge rate limit reached", user_message=data.get("message"))

    code = data.get("pixCode")
    if not code:
        raise InvalidChargeResponseError("Response missing pixCode")

    transaction_id = data.get("transactionId")
    if not transaction_id:
        raise InvalidChargeResponseError("Response missing transactionId")

    try:
        return ChargeAccepted(
            code=code,
            transaction_id=str(transaction_id),
            qr_image_url=data.get("qrCodeUrl") or None,
        )
    except ValidationError as e:
        raise InvalidChargeResponseError(f"Malformed charge response: {e}") from e


class ChargeGenerator:
    """Requests charges, retrying transport and malformed-response failures.

    A rate-limit answer is surfaced immediately and never retried. Any other
    exception from the backend counts as a transport failure.
    """

    def __init__(
        self,
        backend: ChargeBackend,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the generator.

        Args:
            backend: The charge creation collaborator.
            max_retries: Retries after the first attempt. Defaults to config.
            retry_delay: Seconds between attempts. Defaults to config.
            sleep: Awaitable used for the delay.
        """
        self.backend = backend
        self.max_retries = config.charge_max_retries if max_retries is None else max_retries
        self.retry_delay = config.charge_retry_delay_seconds if retry_delay is None else retry_delay
        self._sleep = sleep

    async def generate(self, amount: Decimal, metadata: ChargeMetadata) -> ChargeAccepted:
        """Generate a charge for ``amount``.

        Args:
            amount: Charge amount in BRL.
            metadata: Attribution and customer metadata.

        Returns:
            The accepted charge.

        Raises:
            RateLimitedError: The backend rate-limited the payer (one attempt).
            ChargeError: Every attempt failed; ``attempts`` holds the count.
        """
        total_attempts = self.max_retries + 1
        last_error: Optional[ChargeError] = None

        for attempt in range(1, total_attempts + 1):
            logger.info(f"Generating PIX charge of {amount} (attempt {attempt}/{total_attempts})")
            try:
                data = await self.backend.create_charge(amount, metadata)
                accepted = parse_charge_response(data)
            except RateLimitedError as e:
                e.attempts = attempt
                logger.warning(f"Charge rate limited: {e.user_message}")
                raise
            except ChargeError as e:
                last_error = e
            except Exception as e:
                last_error = ChargeTransportError(f"{type(e).__name__}: {e}")
            else:
                logger.info(f"PIX charge {accepted.transaction_id} generated on attempt {attempt}")
                return accepted

            logger.warning(f"Charge attempt {attempt} failed: {last_error}")
            if attempt < total_attempts:
                await self._sleep(self.retry_delay)

        last_error.attempts = total_attempts
        logger.error(f"All {total_attempts} charge attempts failed: {last_error}")
        raise last_error
