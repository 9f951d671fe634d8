"""
Service approval request model.

One row per (job order, service line) pair; the id is deterministic so a
second request for the same service upserts the existing row back to
PENDING.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from autoservice.database.base import Base, TimestampMixin
from autoservice.services.job_orders.enums import ApprovalStatus


class ServiceApprovalRequest(Base, TimestampMixin):
    """
    Pending supervisory decision on a service line change.

    Attributes:
        id: ``APR-{job_order_id}-{service_id}`` truncated to 180 chars
        requested_action: Requested service status or "Add Service"
        service_name: Service name snapshot at request time
        price: Service price snapshot at request time
        status: PENDING, APPROVED or REJECTED
    """

    __tablename__ = "service_approval_requests"

    id: Mapped[str] = mapped_column(String(180), primary_key=True)

    job_order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("job_orders.id", ondelete="RESTRICT"),
        nullable=False,
    )

    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    service_id: Mapped[str] = mapped_column(String(255), nullable=False)
    service_name: Mapped[str] = mapped_column(String(200), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=Decimal("0.00"),
    )

    requested_action: Mapped[str] = mapped_column(String(50), nullable=False)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[ApprovalStatus] = mapped_column(
        SQLEnum(ApprovalStatus, name="approval_status", create_constraint=True),
        nullable=False,
        default=ApprovalStatus.PENDING,
    )

    decided_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decision_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_service_approval_requests_status_requested", "status", "requested_at"),
        Index("ix_service_approval_requests_job_order", "job_order_id"),
        {"comment": "Approval requests for disruptive service line changes"},
    )
