"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PayRequest(BaseModel):
    """
    Request schema for a mobile money top-up.

    Field formats are checked by the reconciler so that every invalid value
    gets the same user-facing message.
    """

    model_config = ConfigDict(
        coerce_numbers_to_str=True,
        json_schema_extra={
            "examples": [
                {
                    "email": "jane@example.com",
                    "amount": 1000,
                    "phone9": "712345678",
                    "name": "Jane",
                }
            ]
        },
    )

    email: str = Field(..., description="Account email; the credit goes to this user")
    amount: str = Field(..., description="Top-up amount in TZS (minimum 500)")
    phone9: str = Field(
        ..., description="Mobile money number: 9 digits without the leading 0"
    )
    name: Optional[str] = Field(default=None, description="Name shown on the payment prompt")

    @field_validator("email", "amount", "phone9")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()


class PayResponse(BaseModel):
    """Response schema for an accepted top-up."""

    order_id: str = Field(..., description="Order id tracking this payment")
    phone: str = Field(..., description="Canonical phone number the prompt was sent to")
    amount: Decimal = Field(..., description="Requested amount")
    status: str = Field(..., description="Payment status (PENDING)")
    message: str = Field(..., description="User-facing message")


class PaymentStatusResponse(BaseModel):
    """Response schema for a staged payment."""

    order_id: str = Field(..., description="Order id")
    email: str = Field(..., description="Requester email")
    phone: str = Field(..., description="Canonical phone number")
    status: str = Field(..., description="PENDING, COMPLETED or FAILED")
    reference: Optional[str] = Field(default=None, description="Gateway reference")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Gateway metadata")
    created_at: str = Field(..., description="Creation timestamp (ISO 8601)")
    updated_at: str = Field(..., description="Last update timestamp (ISO 8601)")


class TransactionEntry(BaseModel):
    """One ledger entry."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    amount: Decimal
    balance_after: Decimal
    reference: str
    created_at: datetime


class TransactionHistoryResponse(BaseModel):
    """Response schema for a user's balance and recent ledger entries."""

    user_id: int = Field(..., description="User id")
    balance: Decimal = Field(..., description="Current balance")
    transactions: List[TransactionEntry] = Field(
        default_factory=list, description="Latest entries, newest first"
    )


class WebhookAck(BaseModel):
    """Acknowledgment returned to the gateway."""

    status: str = Field(default="ok", description="Always ok")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual check results")
    message: Optional[str] = Field(default=None, description="Status message")
