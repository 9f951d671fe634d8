"""
Payment service orchestrating the billing ledger for job orders.

This module implements the payment entry, refund and summary flows: it
resolves the order, checks eligibility and the role discount ceiling, calls
the payment store primitives through the ledger, and writes the recomputed
payment summary back onto the order after every change.
"""

from typing import Optional

from autoservice.core.exceptions import EligibilityError, PartialApplyError, ValidationError
from autoservice.core.logging import get_logger, log_performance
from autoservice.schemas.job_orders import JobOrder
from autoservice.schemas.payments import (
    PaymentCreateRequest,
    PaymentEntry,
    PaymentListResponse,
    PaymentResponse,
    PaymentSummary,
    RefundRequest,
    RefundResponse,
)
from autoservice.services.job_orders.eligibility import refund_eligible
from autoservice.services.job_orders.enums import PaymentLabel
from autoservice.services.job_orders.normalizer import ZERO, same_status
from autoservice.services.job_orders.repository import JobOrderRepository
from autoservice.services.payments.ledger import (
    REFUND_TOLERANCE,
    apply_refund,
    compute_totals,
    enforce_discount_ceiling,
    paid_sum,
    recompute_summary,
    validate_payment_amount,
)
from autoservice.services.payments.repository import PaymentRepository

logger = get_logger(__name__)

DEFAULT_PAYMENT_METHOD = "Cash"


class PaymentService:
    """
    Service for payment and refund entry against job orders.

    Attributes:
        job_orders: Job order aggregate repository
        payments: Payment row repository
    """

    def __init__(self, job_orders: JobOrderRepository, payments: PaymentRepository):
        """
        Initialize payment service.

        Args:
            job_orders: Job order aggregate repository
            payments: Payment row repository
        """
        self.job_orders = job_orders
        self.payments = payments

    async def _load(self, order_number: str) -> tuple[JobOrder, list[PaymentEntry]]:
        order = await self.job_orders.get_by_order_number(order_number)
        if order.id is None:
            raise ValidationError("Job order has no internal id", order_number=order_number)
        rows = await self.payments.list_payments(order.id)
        return order, rows

    async def _write_summary(
        self, order: JobOrder, rows: list[PaymentEntry], label: Optional[str] = None
    ) -> PaymentSummary:
        summary = recompute_summary(order.billing.net_amount, rows, label_override=label)
        await self.job_orders.update_payment_summary(
            order.id,
            amount_paid=summary.amount_paid,
            balance_due=summary.balance_due,
            payment_status=summary.payment_status,
            payment_label=summary.payment_label,
        )
        return summary

    async def list_payments(self, order_number: str) -> PaymentListResponse:
        """
        List an order's payments with a summary computed from them.

        Raises:
            NotFoundError: If the order does not exist
        """
        order, rows = await self._load(order_number)
        label = (
            PaymentLabel.FULLY_REFUNDED.value
            if same_status(order.payment_label, PaymentLabel.FULLY_REFUNDED.value) and not rows
            else None
        )
        return PaymentListResponse(
            order_number=order.order_number,
            items=rows,
            summary=recompute_summary(order.billing.net_amount, rows, label_override=label),
        )

    async def refresh_summary(self, order_number: str) -> PaymentSummary:
        """
        Recompute and persist the payment summary from the payment rows.

        Raises:
            NotFoundError: If the order does not exist
            StoreError: If a store call fails
        """
        order, rows = await self._load(order_number)
        return await self._write_summary(order, rows)

    async def record_payment(
        self,
        order_number: str,
        request: PaymentCreateRequest,
        actor: str,
        discount_ceiling_percent: float,
    ) -> PaymentResponse:
        """
        Record a payment, applying an entered discount first.

        The discount is checked against the role ceiling and rejected when
        it overshoots; it is never clamped here. When it changes, the order's
        discount and net are saved before the payment is recorded.

        Args:
            order_number: Order number or internal id
            request: Payment entry
            actor: Identity recording the payment
            discount_ceiling_percent: Ceiling for the actor's role

        Returns:
            The recorded payment and the refreshed summary

        Raises:
            ValidationError: If the amount is not positive
            EligibilityError: If the discount exceeds the ceiling
            NotFoundError: If the order does not exist
            StoreError: If a store call fails
        """
        amount = validate_payment_amount(request.amount)
        order, _ = await self._load(order_number)

        if request.discount is not None:
            discount = enforce_discount_ceiling(
                order.billing.total_amount, request.discount, discount_ceiling_percent
            )
            if discount != order.billing.discount:
                totals = compute_totals(
                    order.billing.total_amount, discount, order.billing.amount_paid
                )
                order.billing.discount = totals.discount
                order.billing.net_amount = totals.net_amount
                order.billing.balance_due = totals.balance_due
                if request.method:
                    order.billing.payment_method = request.method
                await self.job_orders.upsert(order, actor)
                logger.info(
                    "Discount applied with payment",
                    order_number=order.order_number,
                    discount=str(totals.discount),
                    net_amount=str(totals.net_amount),
                    actor=actor,
                )

        with log_performance(logger, "record_payment", order_number=order.order_number):
            payment = await self.payments.record_payment(
                order.id,
                amount,
                method=request.method or DEFAULT_PAYMENT_METHOD,
                reference=request.reference,
                paid_at=request.paid_at,
                notes=request.notes,
                created_by=actor,
            )
            rows = await self.payments.list_payments(order.id)
            summary = await self._write_summary(order, rows)

        return PaymentResponse(payment=payment, summary=summary)

    async def refund(self, order_number: str, request: RefundRequest, actor: str) -> RefundResponse:
        """
        Refund money on a cancelled order.

        Args:
            order_number: Order number or internal id
            request: Refund amount and reason
            actor: Identity performing the refund

        Returns:
            The applied mutations and the refreshed summary

        Raises:
            ValidationError: If the amount is not positive
            EligibilityError: If the order is not cancelled, has nothing
                paid, or the amount exceeds the paid sum
            PartialApplyError: If the payment rows ran out mid-refund
            NotFoundError: If the order does not exist
        """
        amount = validate_payment_amount(request.amount)
        order, rows = await self._load(order_number)
        paid = paid_sum(rows)

        if not refund_eligible(order.work_status, [p.amount for p in rows]):
            raise EligibilityError(
                "Refunds are only allowed on cancelled orders with recorded payments",
                order_number=order.order_number,
                work_status=order.work_status,
                amount_paid=str(paid),
            )
        if amount > paid + REFUND_TOLERANCE:
            raise EligibilityError(
                f"Refund amount cannot exceed {paid}",
                order_number=order.order_number,
                requested=str(amount),
                max_refundable=str(paid),
            )

        try:
            mutations = await apply_refund(self.payments, rows, amount)
        except PartialApplyError:
            remaining_rows = await self.payments.list_payments(order.id)
            await self._write_summary(order, remaining_rows)
            raise

        remaining_rows = await self.payments.list_payments(order.id)
        fully_refunded = paid_sum(remaining_rows) <= ZERO
        summary = await self._write_summary(
            order,
            remaining_rows,
            label=PaymentLabel.FULLY_REFUNDED.value if fully_refunded else None,
        )

        logger.info(
            "Refund completed",
            order_number=order.order_number,
            refunded=str(amount),
            fully_refunded=fully_refunded,
            reason=request.reason,
            actor=actor,
        )
        return RefundResponse(
            order_number=order.order_number,
            refunded=amount,
            mutations=mutations,
            summary=summary,
        )
