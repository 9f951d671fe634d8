"""
Payment ledger schemas.

This module defines Pydantic schemas for payment entries recorded against
job orders, the refund mutations the ledger applies, derived billing
summaries, and the payment API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from autoservice.services.job_orders.enums import PaymentStatus


class PaymentEntry(BaseModel):
    """One payment row as seen by the ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_order_id: UUID
    amount: Decimal
    method: Optional[str] = None
    reference: Optional[str] = None
    paid_at: datetime
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class RefundAction(str, Enum):
    """Mutation applied to a payment row while consuming a refund."""

    ADJUSTED = "adjusted"
    DELETED = "deleted"


class RefundMutation(BaseModel):
    """A single write performed by the refund algorithm."""

    payment_id: UUID
    action: RefundAction
    previous_amount: Decimal
    new_amount: Decimal = Decimal("0.00")


class LedgerTotals(BaseModel):
    """Billing figures after the ledger invariants have been applied."""

    total_amount: Decimal
    discount: Decimal
    net_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal


class PaymentSummary(BaseModel):
    """Payment summary recomputed from the payment rows of an order."""

    net_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    payment_status: PaymentStatus
    payment_label: str
    payment_count: int


# ---------------------------------------------------------------------------
# API models
# ---------------------------------------------------------------------------


class PaymentCreateRequest(BaseModel):
    """Payment entry; an optional discount is applied to the order first."""

    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(..., description="Amount received, must be positive")
    discount: Optional[Decimal] = Field(
        None, description="Order discount to apply before recording the payment"
    )
    method: Optional[str] = Field(None, max_length=50)
    reference: Optional[str] = Field(None, max_length=255)
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None


class RefundRequest(BaseModel):
    """Refund against a cancelled order."""

    amount: Decimal = Field(..., description="Amount to refund, must be positive")
    reason: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    """Recorded payment with the order's refreshed summary."""

    payment: PaymentEntry
    summary: PaymentSummary


class PaymentListResponse(BaseModel):
    """Payments recorded against one order, newest first."""

    order_number: str
    items: list[PaymentEntry]
    summary: PaymentSummary


class RefundResponse(BaseModel):
    """Outcome of a fully applied refund."""

    order_number: str
    refunded: Decimal
    mutations: list[RefundMutation]
    summary: PaymentSummary
