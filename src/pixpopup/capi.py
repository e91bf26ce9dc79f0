"""Graph Conversions API delivery.

Turns a relay request into a server event and posts it to
``{graph_api_url}/{pixel_id}/events``.
"""

import time
from typing import Any, Dict, Optional

import httpx

from .config import config
from .exceptions import ConversionsApiError
from .logging_utils import get_logger
from .models import ServerConversionRequest
from .utils import hash_identity

logger = get_logger(__name__)

DEFAULT_CONTENT_NAME = "Produto"


def build_user_data(request: ServerConversionRequest) -> Dict[str, Any]:
    """Hashed matching fields for one event."""
    first_name, _, last_name = (request.customer_name or "").strip().partition(" ")

    user_data: Dict[str, Any] = {"country": ["br"]}
    hashed = {
        "em": hash_identity(request.customer_email),
        "fn": hash_identity(first_name),
        "ln": hash_identity(last_name),
    }
    for key, value in hashed.items():
        if value:
            user_data[key] = [value]

    if request.transaction_id:
        user_data["external_id"] = [request.transaction_id]
    if request.fbc:
        user_data["fbc"] = request.fbc
    if request.fbp:
        user_data["fbp"] = request.fbp
    return user_data


def build_event(request: ServerConversionRequest, event_time: Optional[int] = None) -> Dict[str, Any]:
    """Build one entry of the ``data`` array.

    Args:
        request: Relay request.
        event_time: Unix seconds, defaults to now.
    """
    event: Dict[str, Any] = {
        "event_name": request.event_name,
        "event_time": event_time if event_time is not None else int(time.time()),
        "action_source": "website",
        "user_data": build_user_data(request),
    }
    if request.event_id:
        event["event_id"] = request.event_id
    if request.source_url:
        event["event_source_url"] = request.source_url

    if request.value is not None:
        custom_data: Dict[str, Any] = {
            "value": request.value,
            "currency": request.currency,
            "content_name": request.product_name or DEFAULT_CONTENT_NAME,
            "content_type": "product",
        }
        if request.transaction_id:
            custom_data["order_id"] = request.transaction_id
        event["custom_data"] = custom_data

    return event


def build_payload(request: ServerConversionRequest, event_time: Optional[int] = None) -> Dict[str, Any]:
    return {"data": [build_event(request, event_time)], "access_token": request.access_token}


class ConversionsApiClient:
    """Posts events to the Graph Conversions API."""

    def __init__(
        self,
        graph_api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.graph_api_url = (graph_api_url or config.graph_api_url).rstrip("/")
        self._http = httpx.AsyncClient(
            timeout=timeout or config.request_timeout_seconds,
            transport=transport,
        )

    async def close(self):
        await self._http.aclose()

    async def send(self, request: ServerConversionRequest) -> Dict[str, Any]:
        """Send one event.

        Returns:
            The upstream JSON body.

        Raises:
            ConversionsApiError: Upstream answered with a non-2xx status.
            httpx.HTTPError: On transport failure.
        """
        url = f"{self.graph_api_url}/{request.pixel_id}/events"
        logger.info(
            f"Sending {request.event_name} (event_id={request.event_id}, value={request.value}) "
            f"to pixel {request.pixel_id}"
        )

        response = await self._http.post(url, json=build_payload(request))
        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:500]}

        if not response.is_success:
            logger.error(f"Conversions API rejected {request.event_name}: {response.status_code} {data}")
            raise ConversionsApiError(response.status_code, data)

        logger.info(f"Conversions API accepted {request.event_name} ({request.event_id})")
        return data
