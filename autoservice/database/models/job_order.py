"""
Job order model for vehicle-service engagements.

This module defines the JobOrder model. Order-level fields (status enums,
labels, money columns, customer and vehicle references) are real columns;
the nested services, roadmap, documents, billing snapshot and exit permit
are kept together in one JSON payload that is written in a single shot.
Rows are never physically deleted; cancellation is a terminal status.
"""

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from autoservice.database.base import AuditedModel
from autoservice.services.job_orders.enums import (
    ExitPermitStatus,
    PaymentStatus,
    WorkStatus,
)


class JobOrder(AuditedModel):
    """
    Job order row.

    Attributes:
        order_number: Unique human-readable number, immutable after create
        status: Persisted work status enum
        work_status_label: Display label mirror of the work status
        payment_status: Persisted payment status enum
        payment_status_label: Display label mirror of the payment status
        total_amount: Sum of billable services
        discount: Discount applied, never above total
        net_amount: total_amount - discount
        amount_paid: Sum of recorded payments
        balance_due: max(0, net_amount - amount_paid)
        data_json: Nested services/roadmap/documents/billing/exit permit
    """

    __tablename__ = "job_orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    order_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Order type (e.g. service, warranty)",
    )

    customer_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    vehicle_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    plate_number: Mapped[Optional[str]] = mapped_column(
        String(30),
        nullable=True,
        comment="Vehicle plate number for history lookups",
    )

    status: Mapped[WorkStatus] = mapped_column(
        SQLEnum(WorkStatus, name="job_order_status", create_constraint=True),
        nullable=False,
        default=WorkStatus.OPEN,
        comment="Persisted work status",
    )

    work_status_label: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Display mirror of the work status",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="job_order_payment_status", create_constraint=True),
        nullable=False,
        default=PaymentStatus.UNPAID,
        comment="Persisted payment status",
    )

    payment_status_label: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Display mirror of the payment status",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    exit_permit_status: Mapped[ExitPermitStatus] = mapped_column(
        SQLEnum(ExitPermitStatus, name="exit_permit_status", create_constraint=True),
        nullable=False,
        default=ExitPermitStatus.NOT_REQUIRED,
    )

    customer_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    data_json: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Nested services, roadmap, documents, billing and exit permit",
    )

    __table_args__ = (
        Index("ix_job_orders_status", "status"),
        Index("ix_job_orders_plate_number", "plate_number"),
        Index("ix_job_orders_status_updated", "status", "updated_at"),
        CheckConstraint("total_amount >= 0", name="ck_job_orders_total_non_negative"),
        CheckConstraint("discount >= 0", name="ck_job_orders_discount_non_negative"),
        CheckConstraint("discount <= total_amount", name="ck_job_orders_discount_le_total"),
        CheckConstraint("net_amount >= 0", name="ck_job_orders_net_non_negative"),
        CheckConstraint("amount_paid >= 0", name="ck_job_orders_paid_non_negative"),
        CheckConstraint("balance_due >= 0", name="ck_job_orders_balance_non_negative"),
        {"comment": "Vehicle service job orders"},
    )
