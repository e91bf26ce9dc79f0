"""Conversion event dispatch over the browser pixel and the server relay.

Every event goes out twice under the same event id: once through the client
pixel (queued until the pixel script reports ready) and once through the
server relay (attempted immediately, in the background). The ad platform
drops whichever copy arrives second.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set

from .config import config
from .logging_utils import get_logger
from .models import (
    AttributionContext,
    ConversionEvent,
    PixelCredential,
    PixelDebugStatus,
    ServerConversionRequest,
    UserData,
)
from .utils import generate_event_id

logger = get_logger(__name__)

STANDARD_EVENTS = frozenset(
    {"PageView", "InitiateCheckout", "AddPaymentInfo", "Purchase", "Lead", "CompleteRegistration"}
)


class ConversionSink(Protocol):
    """The client pixel API."""

    def init(self, pixel_id: str) -> None: ...

    def track(self, event_name: str, params: Dict[str, Any], options: Dict[str, Any]) -> None: ...

    def track_custom(self, event_name: str, params: Dict[str, Any], options: Dict[str, Any]) -> None: ...

    def on_ready(self, callback: Callable[[], None]) -> None: ...


class ServerRelay(Protocol):
    """The server-side conversion relay (see PixBackendClient.track_conversion)."""

    async def track_conversion(self, request: ServerConversionRequest) -> Any: ...


def normalize_params(params: Optional[Dict[str, Any]], currency: str) -> Dict[str, Any]:
    """Drop empty fields and add ``currency`` whenever ``value`` is present."""
    normalized = {k: v for k, v in (params or {}).items() if v is not None}
    if "value" in normalized and not normalized.get("currency"):
        normalized["currency"] = currency
    return normalized


class ConversionEventDispatcher:
    """Process-wide gateway for marketing events.

    Attributes:
        ready: Whether the client pixel has finished loading.
        pending: Events waiting for the pixel, in dispatch order.
    """

    def __init__(
        self,
        relay: Optional[ServerRelay] = None,
        pixels: Optional[Iterable[PixelCredential]] = None,
        currency: Optional[str] = None,
    ):
        self.relay = relay
        self.currency = currency or config.currency
        self.ready = False
        self.pending: List[ConversionEvent] = []
        self.attribution: Optional[AttributionContext] = None

        self._pixels: List[PixelCredential] = list(pixels or [])
        self._sink: Optional[ConversionSink] = None
        self._script_injected = False
        self._script_error: Optional[str] = None
        self._server_deliveries = 0
        self._server_failures = 0
        self._last_server_error: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pixel_ids(self) -> List[str]:
        return [p.pixel_id for p in self._pixels]

    def configure(
        self,
        pixels: Optional[Iterable[PixelCredential]] = None,
        relay: Optional[ServerRelay] = None,
    ) -> None:
        """Install pixel destinations and/or the server relay."""
        if pixels is not None:
            self._pixels = list(pixels)
            logger.info(f"Configured {len(self._pixels)} pixel(s)")
        if relay is not None:
            self.relay = relay

    def bind_attribution(self, attribution: AttributionContext) -> None:
        """Use ``attribution`` for click/browser ids and source URL on server deliveries."""
        self.attribution = attribution

    def attach_sink(self, sink: ConversionSink) -> None:
        """Initialize the client pixel and subscribe to its load callback."""
        self._sink = sink
        for pixel_id in self.pixel_ids:
            try:
                sink.init(pixel_id)
            except Exception as e:
                self.record_load_error(e)
                return
        self._script_injected = True
        sink.on_ready(self.mark_ready)

    def record_load_error(self, error: Any) -> None:
        """Note that the pixel script failed or was blocked. Never raises."""
        self._script_error = str(error)
        logger.warning(f"Pixel script unavailable, relying on server delivery: {error}")

    def dispatch(
        self,
        name: str,
        params: Optional[Dict[str, Any]] = None,
        user_data: Optional[UserData] = None,
        event_id: Optional[str] = None,
    ) -> ConversionEvent:
        """Send a named event through both channels.

        Args:
            name: Event name, e.g. ``Purchase``.
            params: Event fields; ``currency`` is added when ``value`` is set.
            user_data: Identity matching fields, optional.
            event_id: Deduplication key; derived when omitted.

        Returns:
            The normalized event.
        """
        params = normalize_params(params, self.currency)
        event = ConversionEvent(
            name=name,
            event_id=event_id or generate_event_id(name, params.get("transaction_id")),
            params=params,
            user_data=user_data or UserData(),
        )

        self._schedule_server_delivery(event)

        if self.ready:
            self._send_to_pixel(event)
        else:
            self.pending.append(event)
            logger.debug(f"Pixel not ready, queued {name} ({len(self.pending)} pending)")

        return event

    def mark_ready(self) -> None:
        """Flag the pixel as loaded and flush queued events in order."""
        if self._sink is None:
            logger.warning("mark_ready called without an attached pixel sink")
            return

        if not self.ready:
            self.ready = True
            self._script_error = None
            logger.info("Pixel ready")

        if not self.pending:
            return

        pending, self.pending = self.pending, []
        logger.info(f"Flushing {len(pending)} queued event(s) to pixel")
        for event in pending:
            self._send_to_pixel(event)

    def debug_status(self) -> PixelDebugStatus:
        return PixelDebugStatus(
            pixel_ids=self.pixel_ids,
            script_injected=self._script_injected,
            script_loaded=self.ready,
            script_error=self._script_error,
            pending_count=len(self.pending),
            server_deliveries=self._server_deliveries,
            server_failures=self._server_failures,
            last_server_error=self._last_server_error,
        )

    async def drain(self) -> None:
        """Wait for in-flight server deliveries."""
        while self._tasks:
            tasks = list(self._tasks)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._tasks.difference_update(tasks)

    def reset(self) -> None:
        """Return to the unloaded state, dropping queued events and the sink."""
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self.ready = False
        self.pending = []
        self._sink = None
        self._script_injected = False
        self._script_error = None
        self._server_deliveries = 0
        self._server_failures = 0
        self._last_server_error = None

    def _send_to_pixel(self, event: ConversionEvent) -> None:
        options: Dict[str, Any] = {"eventID": event.event_id}
        matching = event.user_data.to_pixel()
        if matching:
            options["user_data"] = matching

        try:
            if event.name in STANDARD_EVENTS:
                self._sink.track(event.name, dict(event.params), options)
            else:
                self._sink.track_custom(event.name, dict(event.params), options)
        except Exception as e:
            self._script_error = str(e)
            logger.warning(f"Pixel rejected {event.name} ({event.event_id}): {e}")
            return

        logger.info(f"Pixel event {event.name} sent (event_id={event.event_id})")

    def _server_requests(self, event: ConversionEvent) -> List[ServerConversionRequest]:
        params = event.params
        user = event.user_data
        attribution = self.attribution
        value = params.get("value")

        return [
            ServerConversionRequest(
                pixel_id=pixel.pixel_id,
                access_token=pixel.access_token,
                event_name=event.name,
                event_id=event.event_id,
                value=float(value) if value is not None else None,
                currency=params.get("currency", self.currency),
                transaction_id=params.get("transaction_id") or user.external_id,
                customer_email=user.email,
                customer_name=user.full_name,
                product_name=params.get("content_name"),
                source_url=attribution.landing_url if attribution else None,
                fbc=user.click_id or (attribution.click_id if attribution else None),
                fbp=user.browser_id or (attribution.browser_id if attribution else None),
            )
            for pixel in self._pixels
            if pixel.access_token
        ]

    def _schedule_server_delivery(self, event: ConversionEvent) -> None:
        if self.relay is None:
            logger.debug(f"No server relay configured, {event.name} sent via pixel only")
            return

        requests = self._server_requests(event)
        if not requests:
            logger.debug(f"No pixel access token available, skipping server delivery of {event.name}")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._record_server_failure(event, "no running event loop")
            return

        for request in requests:
            task = loop.create_task(self._deliver(request))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _deliver(self, request: ServerConversionRequest) -> None:
        try:
            await self.relay.track_conversion(request)
        except Exception as e:
            self._server_failures += 1
            self._last_server_error = str(e)
            logger.error(f"Server delivery of {request.event_name} ({request.event_id}) failed: {e}")
            return
        self._server_deliveries += 1

    def _record_server_failure(self, event: ConversionEvent, reason: str) -> None:
        self._server_failures += 1
        self._last_server_error = reason
        logger.error(f"Server delivery of {event.name} ({event.event_id}) not attempted: {reason}")


def _default_pixels() -> List[PixelCredential]:
    if not config.meta_pixel_id:
        return []
    return [PixelCredential(pixel_id=config.meta_pixel_id, access_token=config.meta_access_token or None)]


# Global dispatcher shared by every popup in the process
dispatcher = ConversionEventDispatcher(pixels=_default_pixels())
