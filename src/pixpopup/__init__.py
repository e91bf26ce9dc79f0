"""PIX popup checkout core.

Charge generation, expiration countdown, payment polling and dual-channel
conversion events for donation / checkout popups.
"""

from .attribution import AttributionResolver, resolver
from .charges import ChargeGenerator
from .client import PixBackendClient
from .controller import TransactionController
from .events import ConversionEventDispatcher, dispatcher
from .exceptions import (
    ChargeError,
    ChargeTransportError,
    InvalidAmountError,
    InvalidChargeResponseError,
    PixPopupError,
    RateLimitedError,
    TransactionStateError,
)
from .fingerprint import FingerprintProvider
from .models import (
    AttributionContext,
    ConversionEvent,
    CustomerInfo,
    PixelCredential,
    Transaction,
    TransactionStatus,
    UserData,
)
from .poller import PaymentStatusPoller
from .timer import ExpirationTimer
from .utils import resolve_next_url

__all__ = [
    "AttributionContext",
    "AttributionResolver",
    "ChargeError",
    "ChargeGenerator",
    "ChargeTransportError",
    "ConversionEvent",
    "ConversionEventDispatcher",
    "CustomerInfo",
    "ExpirationTimer",
    "FingerprintProvider",
    "InvalidAmountError",
    "InvalidChargeResponseError",
    "PaymentStatusPoller",
    "PixBackendClient",
    "PixPopupError",
    "PixelCredential",
    "RateLimitedError",
    "Transaction",
    "TransactionController",
    "TransactionStateError",
    "TransactionStatus",
    "UserData",
    "dispatcher",
    "resolver",
    "resolve_next_url",
]
