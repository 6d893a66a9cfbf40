"""
Payment reconciliation.

Implements the mobile money top-up flow:
1. Validate the top-up request (email, amount, subscriber number)
2. Stage a PENDING record under a freshly generated order id
3. Ask the gateway to push the payment prompt to the payer's phone
4. On webhook: update the staged record
5. On COMPLETED: re-query the gateway for the authoritative amount
6. Credit the user's balance exactly once

Webhook ingestion never raises. Every path ends in a WebhookOutcome that
the caller logs; the acknowledgment sent to the gateway does not depend on it.
"""
import asyncio
import re
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from smm_panel.config import Settings
from smm_panel.database.models import PaymentRecord
from smm_panel.integrations.zenopay_client import (
    GatewayError,
    GatewayTimeout,
    GatewayUnavailable,
    ZenoPayClient,
)
from smm_panel.integrations.zenopay_schemas import (
    COMPLETED_STATUS,
    InitiatePaymentRequest,
    extract_status_entry,
    parse_webhook,
)
from smm_panel.monitoring.metrics import metrics

from .ledger import BalanceLedger, LedgerError
from .phone import normalize_subscriber
from .staging import DuplicateOrder, PaymentStagingStore, generate_order_id

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ORDER_ID_ATTEMPTS = 3
GATEWAY_NAME = "ZenoPay"
BUYER_NAME_MAX_LENGTH = 60


class PaymentError(Exception):
    """Base exception for payment errors."""

    pass


class PaymentValidationError(PaymentError):
    """Top-up request failed validation; nothing was stored or sent."""

    pass


class AmountUnparseable(PaymentError):
    """Gateway status carried no positive amount."""

    pass


class WebhookOutcome(str, Enum):
    IGNORED = "ignored"
    STATUS_UPDATED = "status_updated"
    CREDITED = "credited"
    ALREADY_CREDITED = "already_credited"
    NOT_CONFIRMED = "not_confirmed"
    USER_NOT_FOUND = "user_not_found"
    AMOUNT_UNPARSEABLE = "amount_unparseable"
    GATEWAY_ERROR = "gateway_error"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class InitiationResult:
    """Answer returned to the payer once the gateway accepted the payment."""

    order_id: str
    phone: str
    amount: Decimal
    status: str = "PENDING"
    message: str = "Payment request sent. Confirm it on your phone to complete the top-up."


def credit_reference(order_id: str, reference: Optional[str]) -> str:
    """Ledger reference for a gateway credit: ``ZENO:<reference or PUSH>:<order_id>``."""
    return f"ZENO:{reference or 'PUSH'}:{order_id}"


class PaymentReconciler:
    """
    Orchestrates payment initiation and webhook reconciliation.

    Collaborators are injected; nothing here is a process-wide singleton.
    """

    def __init__(
        self,
        settings: Settings,
        gateway: ZenoPayClient,
        store: PaymentStagingStore,
        ledger: BalanceLedger,
    ):
        """
        Initialize reconciler.

        Args:
            settings: Application settings
            gateway: ZenoPay client
            store: Payment staging store
            ledger: Balance ledger
        """
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.ledger = ledger

    def _validate_request(self, email: Any, amount: Any, phone9: Any) -> tuple[str, Decimal, str]:
        """
        Validate a top-up request.

        Returns:
            tuple: (normalized email, amount, canonical phone)

        Raises:
            PaymentValidationError: If any field is invalid
        """
        normalized_email = str(email or "").strip().lower()
        if not EMAIL_PATTERN.match(normalized_email):
            raise PaymentValidationError("Enter a valid email address.")

        if isinstance(amount, bool):
            raise PaymentValidationError("Enter a valid amount.")
        try:
            value = Decimal(str(amount).strip())
        except (InvalidOperation, ValueError) as e:
            raise PaymentValidationError("Enter a valid amount.") from e
        if not value.is_finite():
            raise PaymentValidationError("Enter a valid amount.")
        if value < self.settings.min_amount:
            raise PaymentValidationError(
                f"Minimum top-up amount is {self.settings.min_amount} TZS."
            )

        phone = normalize_subscriber(
            phone9,
            country_code=self.settings.country_code,
            subscriber_digits=self.settings.subscriber_digits,
            mobile_prefixes=self.settings.get_mobile_prefixes(),
        )
        if not phone.valid:
            raise PaymentValidationError(phone.reason)

        return normalized_email, value, phone.normalized

    async def _stage(self, email: str, phone: str, amount: Decimal) -> PaymentRecord:
        # Order ids are generated, so a collision is retried rather than surfaced
        subscriber = phone[-self.settings.subscriber_digits:]
        attempt = 0
        while True:
            attempt += 1
            order_id = generate_order_id(subscriber, prefix=self.settings.order_id_prefix)
            try:
                return await self.store.create(
                    order_id=order_id,
                    email=email,
                    phone=phone,
                    metadata={"gateway": GATEWAY_NAME, "amount": str(amount)},
                )
            except DuplicateOrder:
                logger.warning("order_id_collision", order_id=order_id, attempt=attempt)
                if attempt >= ORDER_ID_ATTEMPTS:
                    raise
                # Next millisecond gives a new timestamp component
                await asyncio.sleep(0.002)

    async def initiate_payment(
        self,
        email: Any,
        amount: Any,
        phone9: Any,
        buyer_name: Optional[str] = None,
    ) -> InitiationResult:
        """
        Start a mobile money top-up.

        Flow:
        1. Validate input (no side effects on failure)
        2. Stage a PENDING record so a fast webhook always resolves
        3. Call the gateway
        4. On gateway failure, remove the staged record and re-raise

        Args:
            email: Requester email, used later to find the user to credit
            amount: Requested amount
            phone9: Subscriber digits without the trunk zero
            buyer_name: Name shown by the gateway (defaults to the email local part)

        Returns:
            InitiationResult: PENDING payment details

        Raises:
            PaymentValidationError: If validation fails
            GatewayTimeout: If the gateway did not answer in time
            GatewayUnavailable: If the gateway could not be reached
            GatewayRejected: If the gateway refused the payment
        """
        start_time = time.time()
        try:
            normalized_email, value, phone = self._validate_request(email, amount, phone9)
        except PaymentValidationError as e:
            metrics.record_initiation("rejected_validation", time.time() - start_time)
            logger.info("payment_validation_failed", reason=str(e))
            raise

        record = await self._stage(normalized_email, phone, value)
        name = (buyer_name or "").strip() or normalized_email.split("@")[0]
        request = InitiatePaymentRequest(
            order_id=record.order_id,
            buyer_name=name[:BUYER_NAME_MAX_LENGTH],
            buyer_phone=phone.lstrip("+"),
            buyer_email=normalized_email,
            amount=value,
            webhook_url=self.settings.webhook_url,
            metadata={"source": self.settings.app_name},
        )

        try:
            response = await self.gateway.initiate(request)
        except GatewayError as e:
            await self.store.delete(record.order_id)
            if isinstance(e, GatewayTimeout):
                outcome = "timeout"
            elif isinstance(e, GatewayUnavailable):
                outcome = "unavailable"
            else:
                outcome = "rejected_gateway"
            metrics.record_initiation(outcome, time.time() - start_time)
            logger.warning(
                "payment_initiation_failed",
                order_id=record.order_id,
                outcome=outcome,
                error=str(e),
            )
            raise

        if response.order_id and response.order_id != record.order_id:
            logger.warning(
                "gateway_order_id_mismatch",
                order_id=record.order_id,
                gateway_order_id=response.order_id,
            )

        metrics.record_initiation("pending", time.time() - start_time)
        logger.info(
            "payment_initiated",
            order_id=record.order_id,
            phone=phone,
            amount=str(value),
        )
        return InitiationResult(order_id=record.order_id, phone=phone, amount=value)

    async def ingest_webhook(self, payload: Any) -> WebhookOutcome:
        """
        Process a gateway notification.

        Never raises: failures are logged and reported as the returned outcome.

        Args:
            payload: Decoded webhook body

        Returns:
            WebhookOutcome: What happened
        """
        start_time = time.time()
        outcome = await self._ingest(payload)
        metrics.record_webhook_event(outcome.value, time.time() - start_time)
        return outcome

    async def _ingest(self, payload: Any) -> WebhookOutcome:
        notification = parse_webhook(payload)
        if notification is None:
            logger.warning("webhook_payload_unusable")
            return WebhookOutcome.IGNORED

        log = logger.bind(order_id=notification.order_id)
        try:
            record = await self.store.update(
                notification.order_id,
                status=notification.payment_status,
                reference=notification.reference,
            )
            if record is None:
                log.info("webhook_unknown_order")
                return WebhookOutcome.IGNORED

            log.info(
                "webhook_status_applied",
                status=record.status,
                reference=record.reference,
            )
            if not notification.is_completed:
                return WebhookOutcome.STATUS_UPDATED

            return await self.settle(notification.order_id)
        except GatewayError as e:
            log.error("webhook_status_query_failed", error=str(e))
            return WebhookOutcome.GATEWAY_ERROR
        except Exception as e:
            log.exception("webhook_processing_error", error=str(e))
            return WebhookOutcome.INTERNAL_ERROR

    async def _query_status(self, order_id: str) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.status_query_attempts),
            wait=wait_exponential(multiplier=self.settings.status_query_backoff, max=10),
            retry=retry_if_exception_type(GatewayUnavailable),
            reraise=True,
        ):
            with attempt:
                return await self.gateway.query_status(order_id)

    async def settle(self, order_id: str) -> WebhookOutcome:
        """
        Credit a completed payment.

        The amount comes from the gateway's status endpoint, never from the
        webhook body. A COMPLETED record left without a credit is picked up
        again by the staging sweeper.

        Args:
            order_id: Order id of a staged record

        Returns:
            WebhookOutcome: CREDITED, ALREADY_CREDITED or the reason nothing was credited

        Raises:
            GatewayError: If the status query kept failing
        """
        record = await self.store.find_by_order_id(order_id)
        if record is None:
            logger.info("settle_unknown_order", order_id=order_id)
            return WebhookOutcome.IGNORED

        body = await self._query_status(order_id)
        entry = extract_status_entry(body)

        gateway_status = (entry.payment_status or "").upper() if entry is not None else ""
        if gateway_status and gateway_status != COMPLETED_STATUS:
            logger.warning(
                "settle_status_not_confirmed",
                order_id=order_id,
                gateway_status=entry.payment_status,
            )
            if gateway_status == "FAILED":
                await self.store.update(order_id, status="FAILED")
            return WebhookOutcome.NOT_CONFIRMED

        amount = entry.amount_value() if entry is not None else None
        if amount is None:
            error = AmountUnparseable(f"No usable amount for {order_id}")
            logger.error(
                "settle_amount_unparseable",
                order_id=order_id,
                raw_amount=entry.amount if entry is not None else None,
                error=str(error),
            )
            return WebhookOutcome.AMOUNT_UNPARSEABLE

        user = await self.ledger.find_user_by_email(record.email)
        if user is None:
            logger.error("settle_user_not_found", order_id=order_id, email=record.email)
            return WebhookOutcome.USER_NOT_FOUND

        reference = credit_reference(order_id, record.reference)
        try:
            entry_row = await self.ledger.credit_once(
                user.id, amount, reference, order_id=order_id
            )
        except LedgerError as e:
            logger.error("settle_credit_failed", order_id=order_id, error=str(e))
            return WebhookOutcome.INTERNAL_ERROR

        if entry_row is None:
            return WebhookOutcome.ALREADY_CREDITED

        logger.info(
            "payment_credited",
            order_id=order_id,
            user_id=user.id,
            amount=str(amount),
            balance_after=str(entry_row.balance_after),
        )
        return WebhookOutcome.CREDITED

    async def get_payment(self, order_id: str) -> Optional[PaymentRecord]:
        return await self.store.find_by_order_id(order_id)

    async def reverify_pending(self, order_id: str) -> WebhookOutcome:
        """
        Ask the gateway about a PENDING record that never got a webhook.

        COMPLETED is recorded and settled, FAILED is recorded, anything else
        leaves the record untouched.

        Raises:
            GatewayError: If the status query kept failing
        """
        body = await self._query_status(order_id)
        entry = extract_status_entry(body)
        status = (entry.payment_status or "").upper() if entry is not None else ""

        if status not in (COMPLETED_STATUS, "FAILED"):
            return WebhookOutcome.IGNORED

        record = await self.store.update(
            order_id,
            status=status,
            reference=entry.reference or entry.transid,
        )
        if record is None:
            return WebhookOutcome.IGNORED

        logger.info("pending_payment_reverified", order_id=order_id, status=status)
        if status == COMPLETED_STATUS:
            return await self.settle(order_id)
        return WebhookOutcome.STATUS_UPDATED

