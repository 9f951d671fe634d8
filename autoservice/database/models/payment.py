"""
Payment ledger entry model.

Each row is one payment recorded against a job order. Entries are
append-only with respect to sign: refunds reduce or delete rows, they never
insert negative amounts.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from autoservice.database.base import AuditedModel


class JobOrderPayment(AuditedModel):
    """
    Payment recorded against a job order.

    Attributes:
        job_order_id: Owning job order
        amount: Positive payment amount
        method: Payment method (cash, card, transfer, ...)
        reference: External reference (receipt, terminal slip)
        paid_at: When the payment was taken
        notes: Free-text cashier notes
    """

    __tablename__ = "job_order_payments"

    job_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job_orders.id", ondelete="RESTRICT"),
        nullable=False,
        comment="Owning job order",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Payment amount",
    )

    method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    paid_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="When the payment was taken",
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_job_order_payments_job_order", "job_order_id"),
        Index("ix_job_order_payments_job_order_paid_at", "job_order_id", "paid_at"),
        CheckConstraint("amount > 0", name="ck_job_order_payments_amount_positive"),
        {"comment": "Payments recorded against job orders"},
    )
