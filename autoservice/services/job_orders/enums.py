"""Job order status enums for the service lifecycle.

This module defines the persisted work and payment status enums, the display
labels the garage screens use, service line and roadmap step statuses, the
fixed roadmap stages, approval request states and exit permit states.
"""

from enum import Enum
from typing import Optional


class WorkStatus(str, Enum):
    """Persisted work status of a job order.

    Lifecycle:
    - DRAFT -> OPEN
    - OPEN -> IN_PROGRESS -> READY -> COMPLETED
    - any non-terminal state -> CANCELLED
    - COMPLETED, CANCELLED -> (terminal states)
    """

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["WorkStatus"]:
        """Convert a stored string to WorkStatus.

        Args:
            value: Raw enum string, any case

        Returns:
            Matching WorkStatus, or None if the value is empty or unknown
        """
        key = (value or "").strip().upper().replace(" ", "_")
        if not key:
            return None
        try:
            return cls(key)
        except ValueError:
            return None

    def is_terminal(self) -> bool:
        """Check if status is a terminal state (COMPLETED or CANCELLED)."""
        return self in {WorkStatus.COMPLETED, WorkStatus.CANCELLED}


class PaymentStatus(str, Enum):
    """Persisted payment status of a job order."""

    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["PaymentStatus"]:
        """Convert a stored string to PaymentStatus, None if unknown."""
        key = (value or "").strip().upper()
        if not key:
            return None
        try:
            return cls(key)
        except ValueError:
            return None


class WorkLabel(str, Enum):
    """Display labels for work status as shown on garage screens."""

    DRAFT = "Draft"
    NEW_REQUEST = "New Request"
    INSPECTION = "Inspection"
    IN_PROGRESS = "Inprogress"
    QUALITY_CHECK = "Quality Check"
    READY = "Ready"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class PaymentLabel(str, Enum):
    """Display labels for payment status."""

    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    FULLY_PAID = "Fully Paid"
    FULLY_REFUNDED = "Fully Refunded"


class ServiceStatus(str, Enum):
    """Status of a single service line item."""

    PENDING = "Pending"
    IN_PROGRESS = "Inprogress"
    COMPLETED = "Completed"
    POSTPONED = "Postponed"
    CANCELLED = "Cancelled"
    PENDING_APPROVAL = "Pending Approval"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["ServiceStatus"]:
        """Match a service status label case-insensitively, ignoring spaces."""
        key = (value or "").strip().lower().replace(" ", "").replace("_", "")
        for member in cls:
            if member.value.lower().replace(" ", "") == key:
                return member
        if key == "postpone":
            return cls.POSTPONED
        if key in {"cancel", "canceled"}:
            return cls.CANCELLED
        return None

    def is_terminal(self) -> bool:
        """Terminal per-item statuses allow the order to enter quality check."""
        return self in {
            ServiceStatus.COMPLETED,
            ServiceStatus.CANCELLED,
            ServiceStatus.POSTPONED,
        }

    def requires_approval(self) -> bool:
        """Disruptive changes that must pass a supervisory decision."""
        return self in {ServiceStatus.POSTPONED, ServiceStatus.CANCELLED}


class RoadmapStage(str, Enum):
    """Fixed, ordered lifecycle stages of a job order."""

    NEW_REQUEST = "New Request"
    INSPECTION = "Inspection"
    SERVICE_OPERATION = "Service Operation"
    QUALITY_CHECK = "Quality Check"
    READY = "Ready"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def from_string(cls, value: Optional[str]) -> Optional["RoadmapStage"]:
        """Match a stored step name, tolerating underscores and legacy names."""
        key = (value or "").strip().lower().replace("_", " ")
        if key in {"inprogress", "in progress", "service execution"}:
            return cls.SERVICE_OPERATION
        if key in {"newrequest", "new request"}:
            return cls.NEW_REQUEST
        if key in {"qualitycheck", "quality check"}:
            return cls.QUALITY_CHECK
        if key == "canceled":
            return cls.CANCELLED
        for member in cls:
            if member.value.lower() == key:
                return member
        return None

    def is_terminal(self) -> bool:
        return self in {RoadmapStage.COMPLETED, RoadmapStage.CANCELLED}


class StepStatus(str, Enum):
    """Status of a single roadmap step."""

    UPCOMING = "Upcoming"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "StepStatus":
        """Match a stored step status; unknown values read as Upcoming."""
        key = (value or "").strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        if key in {"inprogress", "in progress", "current"}:
            return cls.ACTIVE
        if key in {"done", "complete"}:
            return cls.COMPLETED
        return cls.UPCOMING


class ApprovalStatus(str, Enum):
    """Approval request lifecycle: PENDING -> APPROVED | REJECTED."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    def is_terminal(self) -> bool:
        return self != ApprovalStatus.PENDING


class ExitPermitStatus(str, Enum):
    """Exit permit state persisted on the job order."""

    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"
    NOT_REQUIRED = "NOT_REQUIRED"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "ExitPermitStatus":
        """Map stored or legacy permit labels to the enum.

        Args:
            value: Raw value such as "Created", "not created", "APPROVED"

        Returns:
            Normalized ExitPermitStatus (NOT_REQUIRED when unrecognized)
        """
        key = (value or "").strip().upper().replace("_", " ")
        if key in {"APPROVED", "CREATED"}:
            return cls.APPROVED
        if key in {"PENDING", "NOT CREATED"}:
            return cls.PENDING
        if key == "REJECTED":
            return cls.REJECTED
        return cls.NOT_REQUIRED

    @property
    def display_name(self) -> str:
        """Screen label for the permit state."""
        return {
            ExitPermitStatus.APPROVED: "Created",
            ExitPermitStatus.PENDING: "Pending",
            ExitPermitStatus.REJECTED: "Rejected",
            ExitPermitStatus.NOT_REQUIRED: "Not Required",
        }[self]


class QualityCheckStatus(str, Enum):
    """Order-level quality check outcome."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PASSED = "PASSED"
    FAILED = "FAILED"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "QualityCheckStatus":
        """Map a stored outcome to the enum (PENDING when unrecognized)."""
        key = (value or "").strip().upper().replace(" ", "_")
        try:
            return cls(key)
        except ValueError:
            return cls.PENDING

    @property
    def display_name(self) -> str:
        return {
            QualityCheckStatus.PENDING: "Pending",
            QualityCheckStatus.IN_PROGRESS: "In Progress",
            QualityCheckStatus.PASSED: "Passed",
            QualityCheckStatus.FAILED: "Failed",
        }[self]


# Requested action recorded on a brand-new service line awaiting sign-off
ADD_SERVICE_ACTION = "Add Service"
