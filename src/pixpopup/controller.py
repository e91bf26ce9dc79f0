"""Transaction state machine a popup renders against.

    Idle -> Generating -> AwaitingPayment -> Paid | Expired
    Generating -> Idle            (charge failed, error surfaced)
    AwaitingPayment -> Generating (explicit regenerate)
    any -> Idle                   (close)

Paid and Expired are mutually exclusive: whichever signal is handled first
stops the other's source before changing state, and the late one finds the
controller no longer awaiting payment.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional, Protocol, Union

from .attribution import AttributionResolver
from .attribution import resolver as default_resolver
from .charges import ChargeBackend, ChargeGenerator
from .config import config
from .events import ConversionEventDispatcher
from .events import dispatcher as default_dispatcher
from .exceptions import ChargeError, ChargeTransportError, InvalidAmountError, TransactionStateError
from .fingerprint import FingerprintProvider
from .logging_utils import CheckoutIdContext, generate_checkout_id, get_logger
from .models import (
    AttributionContext,
    ChargeMetadata,
    CustomerInfo,
    Transaction,
    TransactionStatus,
    UserData,
    utcnow,
)
from .poller import PAID, PaymentStatusPoller
from .timer import ExpirationTimer
from .utils import format_brl, format_countdown, generate_event_id, to_amount

logger = get_logger(__name__)


class TransactionBackend(ChargeBackend, Protocol):
    """Charge creation plus status queries (PixBackendClient implements both)."""

    async def get_charge_status(self, transaction_id: str) -> str: ...


class TransactionController:
    """Drives one popup's charge from amount selection to payment.

    Attributes:
        status: Current state.
        transaction: The live charge, None while idle.
        error: Last charge failure, shown when back at amount selection.
    """

    def __init__(
        self,
        backend: TransactionBackend,
        *,
        generator: Optional[ChargeGenerator] = None,
        dispatcher: Optional[ConversionEventDispatcher] = None,
        resolver: Optional[AttributionResolver] = None,
        attribution: Optional[AttributionContext] = None,
        fingerprint: Optional[FingerprintProvider] = None,
        popup_variant: Optional[str] = None,
        content_name: Optional[str] = None,
        offer_id: Optional[str] = None,
        user_id: Optional[str] = None,
        expiry_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None,
        tick_interval: Optional[float] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        on_change: Optional[Callable[["TransactionController"], None]] = None,
    ):
        """Initialize the controller.

        Args:
            backend: Charge creation and status collaborator.
            generator: Charge generator; built around ``backend`` when omitted.
            dispatcher: Event gateway; the process-wide one by default.
            resolver: Attribution resolver; the process-wide one by default.
            attribution: Context passed in by the host page, wins over captured values.
            fingerprint: Device fingerprint provider.
            popup_variant: Sent to the backend as the popup model.
            content_name: ``content_name`` reported on events.
            offer_id: Offer the charge belongs to.
            user_id: Seller account the charge belongs to.
            expiry_seconds: Charge lifetime.
            poll_interval: Seconds between status queries.
            tick_interval: Countdown resolution.
            min_amount: Lowest accepted amount.
            max_amount: Highest accepted amount.
            on_change: Called with the controller after every state change or tick.
        """
        self.backend = backend
        self.generator = generator or ChargeGenerator(backend)
        self.dispatcher = dispatcher or default_dispatcher
        self.resolver = resolver or default_resolver
        self.attribution = attribution
        self.fingerprint = fingerprint or FingerprintProvider(store=self.resolver.store)
        self.popup_variant = popup_variant or config.popup_variant
        self.content_name = content_name or config.content_name
        self.offer_id = offer_id
        self.user_id = user_id
        self.expiry_seconds = expiry_seconds or config.expiry_seconds
        self.min_amount = config.min_amount if min_amount is None else Decimal(min_amount)
        self.max_amount = config.max_amount if max_amount is None else Decimal(max_amount)
        self.on_change = on_change

        self.checkout_id = generate_checkout_id()
        self.status = TransactionStatus.IDLE
        self.transaction: Optional[Transaction] = None
        self.error: Optional[ChargeError] = None

        self._customer: Optional[CustomerInfo] = None
        self._attribution_used: Optional[AttributionContext] = None
        self._generation = 0
        self._timer = ExpirationTimer(self._on_expired, tick_interval, on_tick=lambda _: self._notify())
        self._poller = PaymentStatusPoller(backend.get_charge_status, poll_interval)

    # ------------------------------------------------------------------
    # Read-only views for rendering
    # ------------------------------------------------------------------

    @property
    def remaining_seconds(self) -> float:
        if self.status != TransactionStatus.AWAITING_PAYMENT:
            return 0.0
        return self._timer.remaining()

    @property
    def countdown(self) -> str:
        return format_countdown(self.remaining_seconds)

    @property
    def formatted_amount(self) -> Optional[str]:
        return format_brl(self.transaction.amount) if self.transaction else None

    @property
    def user_message(self) -> Optional[str]:
        return self.error.user_message if self.error else None

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Popup shown: report InitiateCheckout."""
        with CheckoutIdContext(self.checkout_id):
            self.dispatcher.dispatch(
                "InitiateCheckout",
                {"content_name": self.content_name, "currency": self.dispatcher.currency},
            )

    async def generate(
        self,
        amount: Union[Decimal, float, int, str],
        customer: Optional[CustomerInfo] = None,
    ) -> Optional[Transaction]:
        """Request a charge and start waiting for payment.

        Args:
            amount: Amount chosen by the payer.
            customer: Optional payer name / email.

        Returns:
            The awaiting transaction, or None if the popup was closed while
            the charge was being generated.

        Raises:
            InvalidAmountError: Amount rejected before any backend call.
            TransactionStateError: A charge is already in progress or paid.
            ChargeError: Generation failed; the controller is back to Idle.
        """
        if self.status == TransactionStatus.GENERATING:
            raise TransactionStateError("A charge is already being generated")
        if self.status == TransactionStatus.AWAITING_PAYMENT:
            raise TransactionStateError("A charge is awaiting payment; use regenerate()")
        if self.status == TransactionStatus.PAID:
            raise TransactionStateError("Transaction already paid; close() before starting another")

        value = self._validate_amount(amount)

        if self.status == TransactionStatus.EXPIRED:
            self._discard()

        with CheckoutIdContext(self.checkout_id):
            return await self._generate(value, customer)

    async def regenerate(
        self,
        amount: Union[Decimal, float, int, str, None] = None,
        customer: Optional[CustomerInfo] = None,
    ) -> Optional[Transaction]:
        """Discard the current charge and generate a new one.

        Uses the previous amount and customer when not given.
        """
        if self.status == TransactionStatus.GENERATING:
            raise TransactionStateError("A charge is already being generated")
        if self.status == TransactionStatus.PAID:
            raise TransactionStateError("Transaction already paid; close() before starting another")

        if amount is None:
            if self.transaction is None:
                raise TransactionStateError("No previous charge to regenerate")
            amount = self.transaction.amount
        customer = customer or self._customer

        logger.info("Regenerating charge")
        self._discard()
        return await self.generate(amount, customer)

    def close(self) -> None:
        """Popup closed: stop everything and forget the transaction."""
        self._generation += 1
        self._discard()
        self.error = None
        logger.debug("Checkout closed")
        self._notify()

    async def check_now(self) -> bool:
        """One immediate status query (the "I already paid" button).

        Returns:
            True if the transaction is paid afterwards.
        """
        if self.status != TransactionStatus.AWAITING_PAYMENT or self.transaction is None:
            return self.status == TransactionStatus.PAID

        transaction_id = self.transaction.id
        with CheckoutIdContext(self.checkout_id):
            try:
                status = await self.backend.get_charge_status(transaction_id)
            except Exception as e:
                logger.warning(f"Manual status check for {transaction_id} failed: {e}")
                return False

            if status == PAID:
                self._on_paid(transaction_id)
            else:
                logger.info(f"Payment for {transaction_id} not identified yet ({status})")

        return self.status == TransactionStatus.PAID

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate_amount(self, amount: Union[Decimal, float, int, str]) -> Decimal:
        try:
            value = to_amount(amount)
        except ValueError as e:
            raise InvalidAmountError(str(e), user_message="Informe um valor válido")

        if value <= 0:
            raise InvalidAmountError("Amount must be positive", user_message="Informe um valor válido")
        if value < self.min_amount:
            raise InvalidAmountError(
                f"Amount {value} below minimum {self.min_amount}",
                user_message=f"O valor mínimo para doação é de {format_brl(self.min_amount)}",
            )
        if value > self.max_amount:
            raise InvalidAmountError(
                f"Amount {value} above maximum {self.max_amount}",
                user_message=f"O valor máximo para doação é de {format_brl(self.max_amount)}",
            )
        return value

    async def _build_metadata(
        self, attribution: AttributionContext, customer: Optional[CustomerInfo]
    ) -> ChargeMetadata:
        return ChargeMetadata(
            utm_params=dict(attribution.utm_params),
            user_id=self.user_id,
            customer_name=customer.name if customer else None,
            customer_email=customer.email if customer else None,
            fingerprint=await self.fingerprint.get(),
            popup_variant=self.popup_variant,
            offer_id=self.offer_id,
        )

    async def _generate(self, amount: Decimal, customer: Optional[CustomerInfo]) -> Optional[Transaction]:
        self._generation += 1
        generation = self._generation

        self.error = None
        self._customer = customer
        transaction = Transaction(amount=amount, status=TransactionStatus.GENERATING)
        self.transaction = transaction
        self.status = TransactionStatus.GENERATING
        self._notify()

        attribution = self.resolver.resolve(self.attribution)
        self._attribution_used = attribution
        if self.dispatcher.attribution is None and not attribution.is_empty:
            self.dispatcher.bind_attribution(attribution)

        try:
            metadata = await self._build_metadata(attribution, customer)
            accepted = await self.generator.generate(amount, metadata)
        except Exception as e:
            transaction.status = TransactionStatus.FAILED
            if generation != self._generation:
                logger.info("Popup closed during generation, dropping failure")
                return None
            if isinstance(e, ChargeError):
                error = e
            else:
                logger.error(f"Unexpected charge generation failure: {e}", exc_info=True)
                error = ChargeTransportError(f"{type(e).__name__}: {e}")
            self.transaction = None
            self.status = TransactionStatus.IDLE
            self.error = error
            self._notify()
            if error is e:
                raise
            raise error from e

        if generation != self._generation:
            logger.info(f"Popup closed during generation, dropping charge {accepted.transaction_id}")
            return None

        now = utcnow()
        transaction.id = accepted.transaction_id
        transaction.code = accepted.code
        transaction.qr_image_url = accepted.qr_image_url
        transaction.created_at = now
        transaction.expires_at = now + timedelta(seconds=self.expiry_seconds)
        transaction.status = TransactionStatus.AWAITING_PAYMENT
        self.status = TransactionStatus.AWAITING_PAYMENT

        transaction_id = transaction.id
        self._timer.start(self.expiry_seconds)
        self._poller.start(transaction_id, lambda: self._on_paid(transaction_id))

        self.dispatcher.dispatch(
            "PixGenerated",
            {
                "value": float(amount),
                "currency": self.dispatcher.currency,
                "content_name": self.content_name,
            },
            UserData.build(customer, external_id=transaction_id, attribution=attribution),
            event_id=generate_event_id("PixGenerated", transaction_id),
        )

        logger.info(f"Awaiting payment of {format_brl(amount)} for {transaction_id}")
        self._notify()
        return transaction

    def _on_paid(self, transaction_id: str) -> None:
        transaction = self.transaction
        if (
            self.status != TransactionStatus.AWAITING_PAYMENT
            or transaction is None
            or transaction.id != transaction_id
        ):
            logger.info(f"Ignoring payment signal for {transaction_id} in state {self.status.value}")
            return

        # Stop the expiry source before acting on the payment
        self._timer.stop()
        self._poller.stop()

        transaction.status = TransactionStatus.PAID
        transaction.paid_at = utcnow()
        self.status = TransactionStatus.PAID

        self.dispatcher.dispatch(
            "Purchase",
            {
                "value": float(transaction.amount),
                "currency": self.dispatcher.currency,
                "content_name": self.content_name,
                "content_type": "product",
                "transaction_id": transaction_id,
            },
            UserData.build(self._customer, external_id=transaction_id, attribution=self._attribution_used),
            event_id=generate_event_id("Purchase", transaction_id),
        )

        logger.info(f"Transaction {transaction_id} paid")
        self._notify()

    def _on_expired(self) -> None:
        if self.status != TransactionStatus.AWAITING_PAYMENT or self.transaction is None:
            return

        self._poller.stop()
        self.transaction.status = TransactionStatus.EXPIRED
        self.status = TransactionStatus.EXPIRED
        logger.info(f"Transaction {self.transaction.id} expired")
        self._notify()

    def _discard(self) -> None:
        self._timer.stop()
        self._poller.stop()
        self.transaction = None
        self._attribution_used = None
        self.status = TransactionStatus.IDLE

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self)
        except Exception:
            logger.error("on_change callback failed", exc_info=True)
