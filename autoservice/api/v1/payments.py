"""
Payment API endpoints for job orders.

This module implements the FastAPI router for recording payments, refunding
cancelled orders and reading the payment summary. A refund that runs out of
payment rows part way is answered with 409 and the list of mutations that
were applied, and those mutations are committed rather than rolled back.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from autoservice.api.deps import Actor, DiscountCeiling, Payments, error_status_code, to_http_exception
from autoservice.core.exceptions import JobOrderError, PartialApplyError
from autoservice.core.logging import get_logger
from autoservice.schemas.payments import (
    PaymentCreateRequest,
    PaymentListResponse,
    PaymentResponse,
    PaymentSummary,
    RefundRequest,
    RefundResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/job-orders/{order_number}/payments", tags=["payments"])


@router.get("", response_model=PaymentListResponse, summary="List payments")
async def list_payments(order_number: str, service: Payments) -> PaymentListResponse:
    """Payments of an order, newest first, with their summary."""
    try:
        return await service.list_payments(order_number)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.get("/summary", response_model=PaymentSummary, summary="Recompute payment summary")
async def payment_summary(order_number: str, service: Payments) -> PaymentSummary:
    """Recompute and persist the payment summary from the payment rows."""
    try:
        return await service.refresh_summary(order_number)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
)
async def record_payment(
    order_number: str,
    request: PaymentCreateRequest,
    actor: Actor,
    ceiling: DiscountCeiling,
    service: Payments,
) -> PaymentResponse:
    """
    Record a payment, applying an entered discount first.

    Raises:
        HTTPException: 400 for a non-positive amount, 409 when the discount
            exceeds the role ceiling, 404 for an unknown order
    """
    logger.info(
        "Recording payment",
        order_number=order_number,
        amount=str(request.amount),
        discount=str(request.discount) if request.discount is not None else None,
        actor=actor,
    )
    try:
        return await service.record_payment(order_number, request, actor, ceiling)
    except JobOrderError as e:
        raise to_http_exception(e) from e


@router.post("/refund", response_model=RefundResponse, summary="Refund a cancelled order")
async def refund(
    order_number: str,
    request: RefundRequest,
    actor: Actor,
    service: Payments,
):
    """
    Refund money on a cancelled order, newest payment first.

    Raises:
        HTTPException: 409 when the order is not refundable or the amount
            exceeds the paid sum, 400 for a non-positive amount
    """
    logger.info("Refunding payment", order_number=order_number, amount=str(request.amount), actor=actor)
    try:
        return await service.refund(order_number, request, actor)
    except PartialApplyError as e:
        logger.error(
            "Refund partially applied",
            order_number=order_number,
            context=e.context,
        )
        return JSONResponse(
            status_code=error_status_code(e),
            content={"detail": {"message": e.message, "context": e.context}},
        )
    except JobOrderError as e:
        raise to_http_exception(e) from e
