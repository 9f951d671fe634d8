"""
Approval request repository.

Approval requests are keyed by a deterministic id per (job order, service
line), so requesting again for the same service line resets the existing
row to PENDING instead of creating a second one.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autoservice.core.config import get_settings
from autoservice.core.exceptions import NotFoundError, StoreError
from autoservice.core.logging import get_logger
from autoservice.database.models.approval import ServiceApprovalRequest
from autoservice.schemas.approvals import ApprovalRequestView
from autoservice.services.job_orders.enums import ApprovalStatus

logger = get_logger(__name__)

APPROVAL_ID_MAX_LENGTH = 180


def approval_request_id(job_order_id: uuid.UUID, service_id: str) -> str:
    """Deterministic request id ``APR-{jobOrderId}-{serviceId}``, at most 180 chars."""
    return f"APR-{job_order_id}-{service_id}"[:APPROVAL_ID_MAX_LENGTH]


class ApprovalRepository:
    """Repository for service approval requests."""

    def __init__(self, session: AsyncSession):
        """
        Initialize approval repository.

        Args:
            session: Async database session
        """
        self.session = session
        self.settings = get_settings()

    async def upsert_pending(
        self,
        job_order_id: uuid.UUID,
        order_number: str,
        service_id: str,
        service_name: str,
        price: Decimal,
        requested_action: str,
        requested_by: str,
        requested_at: datetime,
    ) -> ApprovalRequestView:
        """
        Create the request for a service line or reset it to PENDING.

        Args:
            job_order_id: Owning job order
            order_number: Owning order number
            service_id: Service line id
            service_name: Service name snapshot
            price: Service price snapshot
            requested_action: Requested service status or "Add Service"
            requested_by: Requesting actor identity
            requested_at: Request time

        Returns:
            The pending request

        Raises:
            StoreError: If the write fails
        """
        request_id = approval_request_id(job_order_id, service_id)
        try:
            row = await self.session.get(ServiceApprovalRequest, request_id)
            created = row is None
            if row is None:
                row = ServiceApprovalRequest(id=request_id)
                self.session.add(row)

            row.job_order_id = job_order_id
            row.order_number = order_number
            row.service_id = service_id
            row.service_name = service_name
            row.price = price
            row.requested_action = requested_action
            row.requested_by = requested_by
            row.requested_at = requested_at
            row.status = ApprovalStatus.PENDING
            row.decided_by = None
            row.decided_at = None
            row.decision_note = None
            await self.session.flush()

            logger.info(
                "Approval request stored",
                request_id=request_id,
                order_number=order_number,
                requested_action=requested_action,
                created=created,
            )
            return ApprovalRequestView.model_validate(row)

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to store approval request",
                request_id=request_id,
                error=str(e),
            )
            raise StoreError(
                f"Failed to store approval request: {e}",
                request_id=request_id,
                error=str(e),
            ) from e

    async def get(self, request_id: str) -> ApprovalRequestView:
        """
        Load one request.

        Raises:
            NotFoundError: If the request does not exist
            StoreError: If the query fails
        """
        try:
            row = await self.session.get(ServiceApprovalRequest, request_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load approval request", request_id=request_id, error=str(e))
            raise StoreError(
                f"Failed to load approval request: {e}",
                request_id=request_id,
                error=str(e),
            ) from e
        if row is None:
            raise NotFoundError("Approval request not found", request_id=request_id)
        return ApprovalRequestView.model_validate(row)

    async def record_decision(
        self,
        request_id: str,
        status: ApprovalStatus,
        decided_by: str,
        decided_at: datetime,
        note: Optional[str] = None,
    ) -> ApprovalRequestView:
        """
        Write the decision fields of a request.

        Raises:
            NotFoundError: If the request does not exist
            StoreError: If the write fails
        """
        try:
            row = await self.session.get(ServiceApprovalRequest, request_id)
            if row is None:
                raise NotFoundError("Approval request not found", request_id=request_id)
            row.status = status
            row.decided_by = decided_by
            row.decided_at = decided_at
            row.decision_note = note
            await self.session.flush()

            logger.info(
                "Approval decision recorded",
                request_id=request_id,
                status=status.value,
                decided_by=decided_by,
            )
            return ApprovalRequestView.model_validate(row)

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to record decision", request_id=request_id, error=str(e))
            raise StoreError(
                f"Failed to record decision: {e}",
                request_id=request_id,
                error=str(e),
            ) from e

    async def list_pending(self, limit: Optional[int] = None) -> list[ApprovalRequestView]:
        """Pending requests, newest first."""
        stmt = (
            select(ServiceApprovalRequest)
            .where(ServiceApprovalRequest.status == ApprovalStatus.PENDING)
            .order_by(ServiceApprovalRequest.requested_at.desc())
        )
        return await self._list(stmt, limit, query="pending")

    async def list_for_order(
        self, job_order_id: uuid.UUID, limit: Optional[int] = None
    ) -> list[ApprovalRequestView]:
        """All requests of one order, newest first."""
        stmt = (
            select(ServiceApprovalRequest)
            .where(ServiceApprovalRequest.job_order_id == job_order_id)
            .order_by(ServiceApprovalRequest.requested_at.desc())
        )
        return await self._list(stmt, limit, job_order_id=str(job_order_id))

    async def _list(self, stmt, limit: Optional[int], **context) -> list[ApprovalRequestView]:
        cap = self.settings.list_page_limit
        bounded = cap if limit is None or limit <= 0 else min(limit, cap)
        try:
            result = await self.session.execute(stmt.limit(bounded))
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list approval requests", error=str(e), **context)
            raise StoreError(
                f"Failed to list approval requests: {e}",
                error=str(e),
                **context,
            ) from e
        return [ApprovalRequestView.model_validate(row) for row in rows]
