"""
Service approval request schemas.

Approval requests gate disruptive changes to service lines (postpone,
cancel) and newly added service lines behind a supervisory decision.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from autoservice.services.job_orders.enums import ApprovalStatus


class ApprovalRequestView(BaseModel):
    """Approval request of record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    job_order_id: UUID
    order_number: str
    service_id: str
    service_name: str
    price: Decimal
    requested_action: str
    requested_by: str
    requested_at: datetime
    status: ApprovalStatus
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_note: Optional[str] = None


class ApprovalDecisionRequest(BaseModel):
    """Supervisor decision on a pending request."""

    approved: bool
    note: Optional[str] = Field(None, max_length=1000)


class ApprovalListResponse(BaseModel):
    """Bounded list of approval requests."""

    items: list[ApprovalRequestView]
    count: int
