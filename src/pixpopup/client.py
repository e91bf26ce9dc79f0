"""HTTP client for the PIX backend functions."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from .config import config
from .exceptions import ChargeTransportError
from .logging_utils import get_checkout_id, get_logger
from .models import ChargeMetadata, PixelCredential, ServerConversionRequest

logger = get_logger(__name__)


class PixBackendClient:
    """Talks to generate-pix, check-pix-status, track-conversion and get-pixel-config.

    Implements the charge backend used by ChargeGenerator and the status check
    used by PaymentStatusPoller, and doubles as the server relay for the
    conversion dispatcher.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the backend client.

        Args:
            base_url: Functions base URL. Defaults to config.backend_url.
            api_key: Optional key sent as ``apikey`` and bearer token.
            timeout: Request timeout in seconds.
            transport: Custom httpx transport (tests use httpx.MockTransport).
        """
        self.base_url = (base_url or config.backend_url).rstrip("/")
        self.api_key = api_key if api_key is not None else config.backend_api_key

        headers = {}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or config.request_timeout_seconds,
            headers=headers,
            transport=transport,
        )

    async def close(self):
        """Close the underlying HTTP client."""
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _headers(self) -> Dict[str, str]:
        checkout_id = get_checkout_id()
        return {"X-Checkout-Id": checkout_id} if checkout_id else {}

    async def create_charge(self, amount: Decimal, metadata: ChargeMetadata) -> Dict[str, Any]:
        """Request a PIX charge.

        Args:
            amount: Charge amount in BRL.
            metadata: Attribution, fingerprint and customer fields.

        Returns:
            The backend's JSON body, including the rate-limit envelope.

        Raises:
            ChargeTransportError: On network failure or an unexpected status.
        """
        body = {
            "amount": float(amount),
            "utmParams": metadata.utm_params,
            "userId": metadata.user_id,
            "customerName": metadata.customer_name,
            "customerEmail": metadata.customer_email,
            "fingerprint": metadata.fingerprint,
            "popupModel": metadata.popup_variant,
            "offerId": metadata.offer_id,
        }
        body = {k: v for k, v in body.items() if v is not None}

        try:
            response = await self._http.post("/generate-pix", json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise ChargeTransportError(f"generate-pix request failed: {e}") from e

        if response.status_code == 429 or response.is_success:
            try:
                return response.json()
            except ValueError as e:
                if response.status_code == 429:
                    return {"error": "RATE_LIMIT"}
                raise ChargeTransportError(f"generate-pix returned non-JSON body: {e}") from e

        raise ChargeTransportError(
            f"generate-pix failed: {response.status_code} - {response.text[:200]}"
        )

    async def get_charge_status(self, transaction_id: str) -> str:
        """Query the payment status of a charge.

        Returns:
            The backend status string; only ``"paid"`` is actionable.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx status.
        """
        response = await self._http.post(
            "/check-pix-status",
            json={"transactionId": transaction_id},
            headers=self._headers(),
        )
        response.raise_for_status()
        data = response.json()
        return str(data.get("status") or "pending")

    async def track_conversion(self, request: ServerConversionRequest) -> Dict[str, Any]:
        """Forward one conversion to the server-side relay.

        Raises:
            httpx.HTTPError: On transport failure or a non-2xx status.
        """
        logger.info(f"Relaying {request.event_name} (event_id={request.event_id}) for pixel {request.pixel_id}")
        response = await self._http.post(
            "/track-conversion",
            json=request.to_wire(),
            headers=self._headers(),
        )
        response.raise_for_status()
        return response.json()

    async def get_pixel_config(
        self, user_id: Optional[str] = None, product_id: Optional[str] = None
    ) -> List[PixelCredential]:
        """Fetch the pixels a popup should report to.

        Returns an empty list when the backend has none or cannot be reached.
        """
        body = {"userId": user_id, "productId": product_id}
        try:
            response = await self._http.post(
                "/get-pixel-config",
                json={k: v for k, v in body.items() if v is not None},
                headers=self._headers(),
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Pixel config not available: {e}")
            return []

        pixels = []
        for raw in data.get("pixels", []):
            if not isinstance(raw, dict) or not raw.get("pixelId"):
                continue
            pixels.append(PixelCredential(pixel_id=raw["pixelId"], access_token=raw.get("accessToken")))
        return pixels
