"""Checkout-id based logging utilities.

Provides structured logging with a checkout id so every line emitted on behalf
of one popup instance (generation, countdown, polling, event delivery) can be
grouped together.
"""

import logging
import sys
import uuid
from contextvars import ContextVar, Token
from typing import Optional

# Context variable to store the checkout id for the current popup / task
checkout_id_var: ContextVar[Optional[str]] = ContextVar("checkout_id", default=None)


class CheckoutIdFilter(logging.Filter):
    """Add checkout id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add checkout_id to the log record.

        Args:
            record: The log record to filter.

        Returns:
            Always True to allow the record through.
        """
        record.checkout_id = checkout_id_var.get() or "no-checkout-id"
        return True


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"checkout_id": "%(checkout_id)s", "name": "%(name)s", '
            '"message": "%(message)s"}'
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] [%(checkout_id)s] %(name)s: %(message)s"
        )

    handler.setFormatter(formatter)
    handler.addFilter(CheckoutIdFilter())

    logger.addHandler(handler)


def get_checkout_id() -> Optional[str]:
    """Get the current checkout id, or None if not set."""
    return checkout_id_var.get()


def generate_checkout_id() -> str:
    """Generate a new checkout id.

    Returns:
        A new UUID-based checkout id.
    """
    return f"chk-{uuid.uuid4().hex[:12]}"


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name (typically __name__)."""
    return logging.getLogger(name)


class CheckoutIdContext:
    """Binds a checkout id to log records emitted inside a block.

    Tasks created inside the block copy the context, so a popup's timer,
    poller and relay deliveries keep logging under its id after the block
    exits. Nested blocks restore the outer id on exit.
    """

    def __init__(self, checkout_id: Optional[str] = None):
        self.checkout_id = checkout_id or generate_checkout_id()
        self._token: Optional[Token] = None

    def __enter__(self) -> str:
        self._token = checkout_id_var.set(self.checkout_id)
        return self.checkout_id

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        checkout_id_var.reset(self._token)
        self._token = None
