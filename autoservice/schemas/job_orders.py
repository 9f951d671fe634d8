"""
Job order Pydantic schemas for the aggregate, raw store records and the API.

This module defines three layers of shapes:

- ``RawJobOrderRecord`` and its nested raw types: what the store hands back,
  every field optional and loosely typed. Only the status normalizer reads
  these.
- The domain aggregate (``JobOrder``, ``ServiceLineItem``, ``RoadmapStep``,
  ``Billing``, ``ExitPermit``, ``QualityCheckRecord``, ``DocumentRef``):
  fully populated, produced by the normalizer and consumed by every other component.
- API request/response models for the job order endpoints.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from autoservice.services.job_orders.enums import (
    ExitPermitStatus,
    PaymentLabel,
    PaymentStatus,
    QualityCheckStatus,
    ServiceStatus,
    StepStatus,
    WorkLabel,
    WorkStatus,
)


# ---------------------------------------------------------------------------
# Raw store shapes
# ---------------------------------------------------------------------------


class RawJobOrderRecord(BaseModel):
    """Job order row as read from the store; every field may be absent."""

    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    id: Optional[Any] = None
    order_number: Optional[str] = None
    order_type: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_id: Optional[str] = None
    plate_number: Optional[str] = None
    status: Optional[str] = None
    work_status_label: Optional[str] = None
    payment_status: Optional[str] = None
    payment_status_label: Optional[str] = None
    total_amount: Optional[Any] = None
    discount: Optional[Any] = None
    net_amount: Optional[Any] = None
    amount_paid: Optional[Any] = None
    balance_due: Optional[Any] = None
    exit_permit_status: Optional[str] = None
    customer_notes: Optional[str] = None
    data_json: Optional[Any] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Domain aggregate
# ---------------------------------------------------------------------------


class ServiceLineItem(BaseModel):
    """One billable service line on a job order."""

    id: str = Field(..., description="Stable service identifier")
    order: int = Field(default=1, ge=1, description="Display order (1-based)")
    name: str = Field(default="Service", description="Service name")
    price: Decimal = Field(default=Decimal("0.00"), ge=0, description="Service price")
    status: str = Field(default=ServiceStatus.PENDING.value, description="Service status")
    assigned_to: Optional[str] = Field(None, description="Assigned actor identity")
    technicians: list[str] = Field(default_factory=list, description="Technician identities")
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    requested_action: Optional[str] = Field(
        None, description="Action awaiting supervisory decision"
    )
    previous_status: Optional[str] = Field(
        None, description="Status held before the pending request"
    )
    approval_status: Optional[str] = Field(
        None, description="Approval state of the pending action ('pending')"
    )
    quality_check_result: Optional[str] = None
    notes: Optional[str] = None


class RoadmapStep(BaseModel):
    """One lifecycle stage with timing and actor metadata."""

    step: str = Field(..., description="Stage name")
    step_status: StepStatus = Field(default=StepStatus.UPCOMING)
    start_timestamp: Optional[datetime] = None
    end_timestamp: Optional[datetime] = None
    action_by: Optional[str] = Field(None, description="Responsible actor identity")


class DocumentRef(BaseModel):
    """Reference to a stored document; the path is opaque to the engine."""

    path: str = Field(..., min_length=1, description="Relative storage path or URL")
    name: Optional[str] = None
    category: Optional[str] = None
    uploaded_by: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class Billing(BaseModel):
    """Billing figures of a job order."""

    total_amount: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    net_amount: Decimal = Decimal("0.00")
    amount_paid: Decimal = Decimal("0.00")
    balance_due: Decimal = Decimal("0.00")
    payment_method: Optional[str] = None
    bill_id: Optional[str] = None


class ExitPermit(BaseModel):
    """Vehicle release authorization, at most one per job order."""

    permit_id: str
    collected_by: str
    mobile: str
    next_service_date: Optional[date] = None
    created_by: Optional[str] = None
    created_at: datetime


class QualityCheckRecord(BaseModel):
    """Order-level quality check outcome and who recorded it."""

    status: QualityCheckStatus = QualityCheckStatus.PENDING
    checked_at: Optional[datetime] = None
    checked_by: Optional[str] = None
    notes: Optional[str] = None


class JobOrder(BaseModel):
    """Normalized job order aggregate.

    ``work_status`` and ``payment_label`` are the canonical display statuses
    derived by the status normalizer; ``status`` and ``payment_status`` are
    the persisted enums they were derived from.
    """

    id: Optional[UUID] = None
    order_number: str
    order_type: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_id: Optional[str] = None
    plate_number: Optional[str] = None
    status: WorkStatus = WorkStatus.OPEN
    work_status: str = WorkLabel.NEW_REQUEST.value
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_label: str = PaymentLabel.UNPAID.value
    services: list[ServiceLineItem] = Field(default_factory=list)
    roadmap: list[RoadmapStep] = Field(default_factory=list)
    documents: list[DocumentRef] = Field(default_factory=list)
    billing: Billing = Field(default_factory=Billing)
    exit_permit: Optional[ExitPermit] = None
    exit_permit_status: ExitPermitStatus = ExitPermitStatus.NOT_REQUIRED
    quality_check: Optional[QualityCheckRecord] = None
    customer_notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def find_service(self, service_id: str) -> Optional[ServiceLineItem]:
        """Return the service line with the given id, if any."""
        for service in self.services:
            if service.id == service_id:
                return service
        return None


# ---------------------------------------------------------------------------
# API request models
# ---------------------------------------------------------------------------


class ServiceLineInput(BaseModel):
    """Service line in a save request."""

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(default=Decimal("0.00"), ge=0)
    status: str = Field(default=ServiceStatus.PENDING.value)
    assigned_to: Optional[str] = None
    technicians: list[str] = Field(default_factory=list)
    notes: Optional[str] = None


class BillingInput(BaseModel):
    """Nested billing block of a save request."""

    total_amount: Optional[Decimal] = Field(None, ge=0)
    discount: Optional[Decimal] = Field(None, ge=0)
    net_amount: Optional[Decimal] = Field(None, ge=0)
    payment_method: Optional[str] = None
    bill_id: Optional[str] = None


class JobOrderSaveRequest(BaseModel):
    """Save contract: create when ``id`` is absent, update in place otherwise."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: Optional[UUID] = None
    order_number: Optional[str] = Field(None, max_length=50)
    order_type: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    vehicle_id: Optional[str] = None
    plate_number: Optional[str] = None
    status: Optional[str] = Field(None, description="Persisted enum value")
    work_status_label: Optional[str] = Field(None, description="Display work status")
    payment_status_label: Optional[str] = None
    services: Optional[list[ServiceLineInput]] = None
    billing: Optional[BillingInput] = None
    documents: list[DocumentRef] = Field(default_factory=list)
    roadmap: Optional[list[RoadmapStep]] = None
    customer_notes: Optional[str] = None

    @field_validator("plate_number")
    @classmethod
    def normalize_plate_number(cls, v: Optional[str]) -> Optional[str]:
        """Store plate numbers uppercase without surrounding spaces."""
        return v.strip().upper() if v else v


class ServiceStatusChangeRequest(BaseModel):
    """Change the status of one service line."""

    status: str = Field(..., min_length=1)


class AddServiceRequest(BaseModel):
    """Add a brand-new service line (enters Pending Approval)."""

    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(default=Decimal("0.00"), ge=0)


class QualityCheckRequest(BaseModel):
    """Quality check decision."""

    approved: bool
    notes: Optional[str] = None


class ExitPermitRequest(BaseModel):
    """Exit permit issuance input."""

    model_config = ConfigDict(str_strip_whitespace=True)

    collected_by: str = Field(..., min_length=1, max_length=200)
    mobile: str = Field(..., min_length=1, max_length=30)
    next_service_date: Optional[date] = None


# ---------------------------------------------------------------------------
# API response models
# ---------------------------------------------------------------------------


class SaveResult(BaseModel):
    """Identity of the persisted record."""

    id: UUID
    order_number: str


class RoadmapStepView(RoadmapStep):
    """Roadmap step with the resolved display name of its actor."""

    action_by_display: Optional[str] = None


class JobOrderResponse(BaseModel):
    """Job order read model returned by the API."""

    id: Optional[UUID]
    order_number: str
    order_type: Optional[str]
    customer_id: Optional[str]
    customer_name: Optional[str]
    customer_phone: Optional[str]
    vehicle_id: Optional[str]
    plate_number: Optional[str]
    status: WorkStatus
    work_status: str
    payment_status: PaymentStatus
    payment_label: str
    services: list[ServiceLineItem]
    roadmap: list[RoadmapStepView]
    documents: list[DocumentRef]
    billing: Billing
    exit_permit: Optional[ExitPermit]
    exit_permit_status: ExitPermitStatus
    exit_permit_status_display: str
    exit_permit_eligible: bool
    quality_check: Optional[QualityCheckRecord]
    customer_notes: Optional[str]
    created_by: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class JobOrderSummary(BaseModel):
    """Compact list entry for dashboards and vehicle history."""

    id: Optional[UUID]
    order_number: str
    plate_number: Optional[str]
    customer_name: Optional[str]
    status: WorkStatus
    work_status: str
    payment_label: str
    net_amount: Decimal
    balance_due: Decimal
    updated_at: Optional[datetime]


class JobOrderListResponse(BaseModel):
    """Bounded list of job orders."""

    items: list[JobOrderSummary]
    count: int
    limit: int
