import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before pixpopup.config is imported by any test
os.environ.setdefault("PIXPOPUP_LOG_LEVEL", "DEBUG")
os.environ.setdefault("PIXPOPUP_LOG_FORMAT", "text")
os.environ.setdefault("PIXPOPUP_BACKEND_URL", "http://backend.test/functions/v1")

from pixpopup.attribution import AttributionResolver  # noqa: E402
from pixpopup.events import ConversionEventDispatcher  # noqa: E402
from pixpopup.models import PixelCredential  # noqa: E402
from pixpopup.storage import InMemorySessionStore  # noqa: E402


class RecordingSink:
    """Client pixel double that records every call."""

    def __init__(self):
        self.initialized = []
        self.calls = []
        self.ready_callback = None

    def init(self, pixel_id):
        self.initialized.append(pixel_id)

    def track(self, event_name, params, options):
        self.calls.append(("track", event_name, params, options))

    def track_custom(self, event_name, params, options):
        self.calls.append(("track_custom", event_name, params, options))

    def on_ready(self, callback):
        self.ready_callback = callback

    def load(self):
        """Simulate the pixel script finishing its load."""
        self.ready_callback()

    @property
    def names(self):
        return [call[1] for call in self.calls]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def relay():
    relay = MagicMock()
    relay.track_conversion = AsyncMock(return_value={"success": True})
    return relay


@pytest.fixture
def pixels():
    return [PixelCredential(pixel_id="123456789", access_token="EAAtoken")]


@pytest.fixture
def dispatcher(relay, pixels):
    return ConversionEventDispatcher(relay=relay, pixels=pixels, currency="BRL")


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def resolver(store):
    return AttributionResolver(store=store)


@pytest.fixture
def backend():
    backend = MagicMock()
    backend.create_charge = AsyncMock(
        return_value={"pixCode": "00020126580014br.gov.bcb.pix", "transactionId": "tx-1", "qrCodeUrl": None}
    )
    backend.get_charge_status = AsyncMock(return_value="pending")
    return backend
