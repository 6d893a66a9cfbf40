"""
Typed views over ZenoPay payloads.

The gateway does not return uniform shapes: the status endpoint may answer
with ``{"data": [...]}``, ``{"data": {...}}`` or a flat object. These parsers
turn whatever arrives into explicit models and never raise on odd shapes.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

SUCCESS_STATUS = "success"
COMPLETED_STATUS = "COMPLETED"


class InitiatePaymentRequest(BaseModel):
    """Body sent to the gateway to start a mobile money payment."""

    order_id: str
    buyer_name: str
    buyer_phone: str
    buyer_email: str
    amount: Decimal
    webhook_url: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json")
        # ZenoPay expects a JSON number here, not a string
        amount = self.amount
        payload["amount"] = int(amount) if amount == amount.to_integral_value() else float(amount)
        return payload


class InitiateResponse(BaseModel):
    """Gateway answer to a payment initiation."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    status: Optional[str] = None
    order_id: Optional[str] = None
    message: Optional[str] = None
    resultcode: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == SUCCESS_STATUS


class StatusEntry(BaseModel):
    """One order as reported by the status endpoint."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    order_id: Optional[str] = None
    amount: Optional[Any] = None
    payment_status: Optional[str] = None
    reference: Optional[str] = None
    transid: Optional[str] = None
    channel: Optional[str] = None
    msisdn: Optional[str] = None

    def amount_value(self) -> Optional[Decimal]:
        """Return the amount as a positive finite Decimal, or None."""
        return parse_amount(self.amount)


class WebhookNotification(BaseModel):
    """Payment notification posted by the gateway."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    order_id: str = Field(..., min_length=1)
    payment_status: Optional[str] = None
    reference: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.payment_status == COMPLETED_STATUS


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a gateway amount; anything not positive and finite is None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def parse_initiate_response(payload: Any) -> InitiateResponse:
    """Parse an initiation response; unknown shapes yield an empty response."""
    if not isinstance(payload, dict):
        return InitiateResponse()
    try:
        return InitiateResponse.model_validate(payload)
    except ValidationError:
        status = payload.get("status")
        return InitiateResponse(status=status if isinstance(status, str) else None)


def extract_status_entry(payload: Any) -> Optional[StatusEntry]:
    """
    Pick the order entry out of a status response.

    Order of preference: first element of a ``data`` list, a ``data``
    object (itself possibly wrapping a ``data`` list), then the flat payload.
    A top-level ``amount`` fills in when the entry has none.

    Args:
        payload: Decoded JSON body of the status endpoint

    Returns:
        Optional[StatusEntry]: The entry, or None if nothing usable was found
    """
    if isinstance(payload, list):
        payload = {"data": payload}
    if not isinstance(payload, dict):
        return None

    data = payload.get("data", payload)
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data = data["data"]
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        data = payload

    try:
        entry = StatusEntry.model_validate(data)
    except ValidationError:
        return None

    if parse_amount(entry.amount) is None and parse_amount(payload.get("amount")) is not None:
        entry.amount = payload.get("amount")
    return entry


def parse_webhook(payload: Any) -> Optional[WebhookNotification]:
    """Parse a webhook body; returns None when there is no usable order id."""
    if not isinstance(payload, dict):
        return None
    try:
        return WebhookNotification.model_validate(
            {key: value for key, value in payload.items() if value is not None}
        )
    except ValidationError:
        return None
