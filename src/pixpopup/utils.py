"""Utility functions for the PIX popup core."""

import hashlib
import itertools
import time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

_event_seq = itertools.count(1)

TWO_PLACES = Decimal("0.01")


def hash_identity(value: Optional[str]) -> Optional[str]:
    """SHA-256 a matching field the way the Conversions API expects.

    Args:
        value: Raw email or name fragment.

    Returns:
        Hex digest of the lower-cased, trimmed value, or None for empty input.
    """
    if not value or not value.strip():
        return None
    return hashlib.sha256(value.strip().lower().encode()).hexdigest()


def generate_event_id(name: str, transaction_id: Optional[str] = None) -> str:
    """Build a deduplication key for one logical event occurrence.

    The clock component is milliseconds; a process-wide counter keeps two
    events created in the same millisecond apart.
    """
    base = transaction_id or name.lower()
    return f"{base}_{int(time.time() * 1000)}_{next(_event_seq)}"


def to_amount(value: Union[Decimal, float, int, str]) -> Decimal:
    """Coerce to a two-digit Decimal.

    Raises:
        ValueError: If the value is not a finite number.
    """
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    try:
        return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount out of range: {value!r}")


def format_brl(value: Union[Decimal, float, int]) -> str:
    """Format as pt-BR currency, e.g. ``R$ 1.234,56``."""
    amount = to_amount(value)
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,.2f}"
    # 1,234.56 -> 1.234,56
    grouped = grouped.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {grouped}"


def format_countdown(seconds: float) -> str:
    """Render remaining seconds as mm:ss."""
    total = max(0, int(seconds + 0.999))  # 0.2s left still shows 00:01
    mins, secs = divmod(total, 60)
    return f"{mins:02d}:{secs:02d}"


def resolve_next_url(
    upsell_url: Optional[str] = None,
    downsell_url: Optional[str] = None,
    crosssell_url: Optional[str] = None,
    thank_you_url: Optional[str] = None,
) -> Optional[str]:
    """Pick where to send the payer after a confirmed payment.

    Priority is upsell, downsell, cross-sell, thank-you. None means stay on
    the success screen.
    """
    for url in (upsell_url, downsell_url, crosssell_url, thank_you_url):
        if url:
            return url
    return None
