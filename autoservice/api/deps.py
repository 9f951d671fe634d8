"""
FastAPI dependencies for actor resolution, services and error mapping.

This module provides dependency functions for database session injection,
actor identity and role resolution from request headers, per-role discount
ceilings, service construction, and the mapping of engine errors to HTTP
responses.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from autoservice.core.config import get_settings
from autoservice.core.exceptions import (
    EligibilityError,
    JobOrderError,
    NotFoundError,
    PartialApplyError,
    StoreError,
    ValidationError,
)
from autoservice.core.logging import get_logger, set_actor
from autoservice.database.connection import get_db
from autoservice.services.approvals.repository import ApprovalRepository
from autoservice.services.approvals.workflow import ServiceApprovalWorkflow
from autoservice.services.directory.service import DirectoryLookupService
from autoservice.services.job_orders.normalizer import normalize_identity
from autoservice.services.job_orders.repository import JobOrderRepository
from autoservice.services.job_orders.service import SYSTEM_ACTOR, JobOrderService
from autoservice.services.payments.repository import PaymentRepository
from autoservice.services.payments.service import PaymentService

logger = get_logger(__name__)

_ERROR_STATUS: dict[type[JobOrderError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    EligibilityError: status.HTTP_409_CONFLICT,
    PartialApplyError: status.HTTP_409_CONFLICT,
    StoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_status_code(error: JobOrderError) -> int:
    """HTTP status for an engine error (500 for unmapped subclasses)."""
    for error_type, code in _ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: JobOrderError) -> HTTPException:
    """
    Convert an engine error to an HTTPException.

    Store failures keep the underlying message; eligibility and
    partial-apply failures also return their context.

    Args:
        error: Raised engine error

    Returns:
        HTTPException to raise from the route
    """
    code = error_status_code(error)
    log = logger.error if code >= 500 else logger.warning
    log(
        "Request failed",
        error_type=type(error).__name__,
        error=error.message,
        status_code=code,
        context=error.context,
    )

    detail: object = error.message
    if isinstance(error, (EligibilityError, PartialApplyError)):
        detail = {"message": error.message, "context": error.context}
    return HTTPException(status_code=code, detail=detail)


async def get_actor(
    x_actor: Annotated[Optional[str], Header(alias="X-Actor")] = None,
) -> str:
    """
    Resolve the acting identity from the X-Actor header.

    Returns:
        Normalized identity, "system" when the header is absent
    """
    actor = normalize_identity(x_actor) or SYSTEM_ACTOR
    set_actor(actor)
    return actor


async def get_actor_role(
    x_actor_role: Annotated[Optional[str], Header(alias="X-Actor-Role")] = None,
) -> Optional[str]:
    """Role of the acting identity from the X-Actor-Role header."""
    role = (x_actor_role or "").strip().lower()
    return role or None


async def get_discount_ceiling(
    role: Annotated[Optional[str], Depends(get_actor_role)],
) -> float:
    """Discount ceiling percent configured for the actor's role."""
    return get_settings().discount_ceiling_for(role)


@lru_cache
def get_directory_service() -> DirectoryLookupService:
    """Process-wide directory lookup service over the shared Redis cache."""
    return DirectoryLookupService()


async def get_job_order_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    directory: Annotated[DirectoryLookupService, Depends(get_directory_service)],
) -> JobOrderService:
    """Job order service bound to the request session."""
    return JobOrderService(
        repository=JobOrderRepository(db),
        approvals=ServiceApprovalWorkflow(ApprovalRepository(db)),
        directory=directory,
    )


async def get_payment_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PaymentService:
    """Payment service bound to the request session."""
    return PaymentService(JobOrderRepository(db), PaymentRepository(db))


async def get_approval_workflow(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ServiceApprovalWorkflow:
    """Approval workflow bound to the request session."""
    return ServiceApprovalWorkflow(ApprovalRepository(db))


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Actor = Annotated[str, Depends(get_actor)]
ActorRole = Annotated[Optional[str], Depends(get_actor_role)]
DiscountCeiling = Annotated[float, Depends(get_discount_ceiling)]
JobOrders = Annotated[JobOrderService, Depends(get_job_order_service)]
Payments = Annotated[PaymentService, Depends(get_payment_service)]
Approvals = Annotated[ServiceApprovalWorkflow, Depends(get_approval_workflow)]
