"""
Database models package initialization.

Models are imported here to ensure they are registered with the Base
metadata for Alembic migration generation and relationship resolution.
"""

from autoservice.database.base import (
    AuditedModel,
    AuditMixin,
    Base,
    TimestampMixin,
    UUIDMixin,
)
from autoservice.database.models.approval import ServiceApprovalRequest
from autoservice.database.models.job_order import JobOrder
from autoservice.database.models.payment import JobOrderPayment

__all__ = [
    "Base",
    "AuditedModel",
    "TimestampMixin",
    "UUIDMixin",
    "AuditMixin",
    "JobOrder",
    "JobOrderPayment",
    "ServiceApprovalRequest",
]
