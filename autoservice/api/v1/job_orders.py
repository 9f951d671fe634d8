"""
Job order API endpoints.

This module implements the FastAPI router for the job order lifecycle:
saving orders, point lookups and bounded lists, inspection, service
execution, quality check, cancellation and exit permit issuance. Engine
errors are mapped to HTTP responses through ``to_http_exception``.
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from autoservice.api.deps import Actor, JobOrders, to_http_exception
from autoservice.core.exceptions import JobOrderError
from autoservice.core.logging import get_logger
from autoservice.schemas.approvals import ApprovalListResponse
from autoservice.schemas.job_orders import (
    AddServiceRequest,
    ExitPermitRequest,
    JobOrderListResponse,
    JobOrderResponse,
    JobOrderSaveRequest,
    QualityCheckRequest,
    SaveResult,
    ServiceStatusChangeRequest,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/job-orders", tags=["job-orders"])

LimitQuery = Query(None, ge=1, le=2000, description="Maximum number of orders to return")


@router.post(
    "",
    response_model=SaveResult,
    summary="Save job order",
    description="Create a job order (no id) or update it in place (id present)",
)
async def save_job_order(
    request: JobOrderSaveRequest,
    actor: Actor,
    service: JobOrders,
) -> SaveResult:
    """
    Save a job order.

    Raises:
        HTTPException: 400 on validation failure, 404 for an unknown id,
            503 when the store fails
    """
    logger.info(
        "Saving job order",
        order_number=request.order_number,
        update=request.id is not None,
        actor=actor,
    )
    try:
        return await service.save(request, actor)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.get(
    "/status/{status_class}",
    response_model=JobOrderListResponse,
    summary="List job orders by status",
)
async def list_job_orders_by_status(
    status_class: str,
    service: JobOrders,
    limit: Optional[int] = LimitQuery,
) -> JobOrderListResponse:
    """Dashboard list for one status class (enum value or display label)."""
    try:
        return await service.list_by_status(status_class, limit)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.get(
    "/vehicles/{plate_number}",
    response_model=JobOrderListResponse,
    summary="List job orders of a vehicle",
)
async def list_job_orders_by_plate(
    plate_number: str,
    service: JobOrders,
    limit: Optional[int] = LimitQuery,
    completed_only: bool = Query(False, description="Only completed orders (service history)"),
) -> JobOrderListResponse:
    """Vehicle orders by plate number, newest first."""
    try:
        if completed_only:
            return await service.vehicle_history(plate_number, limit)
        return await service.list_by_plate_number(plate_number, limit)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.get(
    "/exit-permits/candidates",
    response_model=JobOrderListResponse,
    summary="List orders eligible for an exit permit",
)
async def list_exit_permit_candidates(
    service: JobOrders,
    limit: Optional[int] = LimitQuery,
) -> JobOrderListResponse:
    """Ready and fully paid, or cancelled and unpaid/refunded, without a permit."""
    try:
        return await service.list_exit_permit_candidates(limit)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.get(
    "/{order_number}",
    response_model=JobOrderResponse,
    summary="Get job order",
)
async def get_job_order(order_number: str, service: JobOrders) -> JobOrderResponse:
    """
    Point lookup by order number or internal id.

    Raises:
        HTTPException: 404 if the order does not exist
    """
    try:
        order = await service.get(order_number)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.get(
    "/{order_number}/approvals",
    response_model=ApprovalListResponse,
    summary="List approval requests of an order",
)
async def list_order_approvals(order_number: str, service: JobOrders) -> ApprovalListResponse:
    """Approval requests recorded for an order, newest first."""
    try:
        items = await service.list_approvals(order_number)
        return ApprovalListResponse(items=items, count=len(items))
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/inspection/start",
    response_model=JobOrderResponse,
    summary="Start inspection",
)
async def start_inspection(order_number: str, actor: Actor, service: JobOrders) -> JobOrderResponse:
    """Move a new request into inspection."""
    try:
        order = await service.start_inspection(order_number, actor)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/services/{service_id}/status",
    response_model=JobOrderResponse,
    summary="Change service line status",
    description="Postponed and Cancelled create a pending approval request instead",
)
async def change_service_status(
    order_number: str,
    service_id: str,
    request: ServiceStatusChangeRequest,
    actor: Actor,
    service: JobOrders,
) -> JobOrderResponse:
    """Change the status of one service line."""
    try:
        order = await service.change_service_status(order_number, service_id, request.status, actor)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/services",
    response_model=JobOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add service line",
    description="The new line waits in Pending Approval until a supervisor decides",
)
async def add_service(
    order_number: str,
    request: AddServiceRequest,
    actor: Actor,
    service: JobOrders,
) -> JobOrderResponse:
    """Add a service line pending approval."""
    try:
        order, _ = await service.add_service(order_number, request.name, request.price, actor)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/finish-work",
    response_model=JobOrderResponse,
    summary="Finish service work",
)
async def finish_work(order_number: str, actor: Actor, service: JobOrders) -> JobOrderResponse:
    """Hand the order to quality check."""
    try:
        order = await service.finish_work(order_number, actor)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/quality-check",
    response_model=JobOrderResponse,
    summary="Record quality check decision",
)
async def quality_check(
    order_number: str,
    request: QualityCheckRequest,
    actor: Actor,
    service: JobOrders,
) -> JobOrderResponse:
    """Approve to Ready or reject back to service work."""
    try:
        order = await service.quality_check(order_number, request.approved, actor, request.notes)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/cancel",
    response_model=JobOrderResponse,
    summary="Cancel job order",
)
async def cancel_job_order(order_number: str, actor: Actor, service: JobOrders) -> JobOrderResponse:
    """
    Cancel an order.

    Raises:
        HTTPException: 409 if the order is already completed or cancelled
    """
    try:
        order = await service.cancel(order_number, actor)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{order_number}/exit-permit",
    response_model=JobOrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue exit permit",
)
async def create_exit_permit(
    order_number: str,
    request: ExitPermitRequest,
    actor: Actor,
    service: JobOrders,
) -> JobOrderResponse:
    """
    Issue the exit permit.

    Raises:
        HTTPException: 409 if a permit exists or the order is not eligible,
            400 if the next service date is missing
    """
    try:
        order = await service.create_exit_permit(order_number, request, actor)
        return await service.to_response(order)
    except JobOrderError as e:
        raise to_http_exception(e) from e
