"""
Service approval API endpoints.

Supervisors list pending requests and decide them; a decision is recorded
and then applied to the service line of the owning order.
"""

from typing import Optional

from fastapi import APIRouter, Query

from autoservice.api.deps import Actor, Approvals, JobOrders, to_http_exception
from autoservice.core.exceptions import JobOrderError
from autoservice.core.logging import get_logger
from autoservice.schemas.approvals import (
    ApprovalDecisionRequest,
    ApprovalListResponse,
    ApprovalRequestView,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/pending", response_model=ApprovalListResponse, summary="List pending requests")
async def list_pending(
    workflow: Approvals,
    limit: Optional[int] = Query(None, ge=1, le=2000),
) -> ApprovalListResponse:
    """Pending approval requests, newest first."""
    try:
        items = await workflow.list_pending(limit)
        return ApprovalListResponse(items=items, count=len(items))
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{request_id}/decision",
    response_model=ApprovalRequestView,
    summary="Decide an approval request",
)
async def decide(
    request_id: str,
    request: ApprovalDecisionRequest,
    actor: Actor,
    service: JobOrders,
) -> ApprovalRequestView:
    """
    Approve or reject a pending request and apply it to the service line.

    Raises:
        HTTPException: 400 if already decided, 404 if unknown
    """
    logger.info("Deciding approval request", request_id=request_id, approved=request.approved, actor=actor)
    try:
        return await service.decide_approval(request_id, request.approved, actor, request.note)
    except JobOrderError as e:
        raise to_http_exception(e) from e
