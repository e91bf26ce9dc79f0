"""Exception hierarchy for the PIX popup core.

Only ``RateLimitedError`` and an exhausted ``ChargeError`` are meant to reach
the screen; every other fault is absorbed inside the core.
"""

from typing import Any, Optional

GENERIC_FAILURE_MESSAGE = (
    "Não foi possível gerar o PIX após várias tentativas. Verifique sua conexão."
)
RATE_LIMIT_MESSAGE = "Você atingiu o limite de PIX. Tente novamente mais tarde."


class PixPopupError(Exception):
    """Base exception for all pixpopup errors."""


class ChargeError(PixPopupError):
    """Charge generation failed.

    Attributes:
        user_message: Text the popup shows when returning to amount selection.
        attempts: Number of backend calls made before giving up.
    """

    default_user_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.user_message = user_message or self.default_user_message
        self.attempts = 0


class RateLimitedError(ChargeError):
    """Backend refused the charge because the payer hit its generation limit.

    Never retried.
    """

    default_user_message = RATE_LIMIT_MESSAGE


class InvalidChargeResponseError(ChargeError):
    """Backend answered without a PIX code."""


class ChargeTransportError(ChargeError):
    """Network or backend failure while generating a charge."""


class InvalidAmountError(PixPopupError):
    """Amount is not positive or falls outside the configured bounds."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class TransactionStateError(PixPopupError):
    """Operation not allowed in the controller's current state."""


class ConversionsApiError(PixPopupError):
    """The Graph Conversions API rejected an event.

    Attributes:
        status_code: Upstream HTTP status.
        detail: Upstream error body.
    """

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"Conversions API error {status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
