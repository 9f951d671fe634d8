"""
Payment repository for job order payment rows.

This module implements PaymentRepository, the store behind the billing
ledger. It exposes the three payment primitives (record, adjust, delete)
plus listing, each as a single write or read with the usual rollback and
StoreError wrapping on database failures.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autoservice.core.exceptions import NotFoundError, StoreError
from autoservice.core.logging import get_logger
from autoservice.database.models.payment import JobOrderPayment
from autoservice.schemas.payments import PaymentEntry
from autoservice.services.job_orders.normalizer import normalize_identity, quantize_money

logger = get_logger(__name__)


class PaymentRepository:
    """
    Repository for payment rows.

    Attributes:
        session: Async database session for executing queries
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize payment repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def record_payment(
        self,
        job_order_id: uuid.UUID,
        amount: Decimal,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PaymentEntry:
        """
        Append a payment row.

        Args:
            job_order_id: Owning job order
            amount: Positive, already validated amount
            method: Payment method
            reference: External reference
            paid_at: When the payment was taken (defaults to now)
            notes: Cashier notes
            created_by: Actor identity

        Returns:
            The recorded payment

        Raises:
            StoreError: If the insert fails
        """
        actor = normalize_identity(created_by) or None
        try:
            payment = JobOrderPayment(
                job_order_id=job_order_id,
                amount=quantize_money(amount),
                method=method,
                reference=reference,
                paid_at=paid_at or datetime.now(timezone.utc),
                notes=notes,
                created_by=actor,
                updated_by=actor,
            )
            self.session.add(payment)
            await self.session.flush()
            await self.session.refresh(payment)

            logger.info(
                "Payment recorded",
                payment_id=str(payment.id),
                job_order_id=str(job_order_id),
                amount=str(payment.amount),
                method=method,
            )
            return PaymentEntry.model_validate(payment)

        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to record payment",
                job_order_id=str(job_order_id),
                error=str(e),
            )
            raise StoreError(
                f"Failed to record payment: {e}",
                job_order_id=str(job_order_id),
                error=str(e),
            ) from e

    async def adjust_payment(self, payment_id: uuid.UUID, new_amount: Decimal) -> None:
        """
        Set a payment row to a new, smaller amount.

        Raises:
            NotFoundError: If the payment does not exist
            StoreError: If the update fails
        """
        try:
            payment = await self.session.get(JobOrderPayment, payment_id)
            if payment is None:
                raise NotFoundError("Payment not found", payment_id=str(payment_id))
            previous = payment.amount
            payment.amount = quantize_money(new_amount)
            await self.session.flush()

            logger.info(
                "Payment adjusted",
                payment_id=str(payment_id),
                previous_amount=str(previous),
                new_amount=str(payment.amount),
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to adjust payment", payment_id=str(payment_id), error=str(e))
            raise StoreError(
                f"Failed to adjust payment: {e}",
                payment_id=str(payment_id),
                error=str(e),
            ) from e

    async def delete_payment(self, payment_id: uuid.UUID) -> None:
        """
        Delete a payment row.

        Raises:
            NotFoundError: If the payment does not exist
            StoreError: If the delete fails
        """
        try:
            payment = await self.session.get(JobOrderPayment, payment_id)
            if payment is None:
                raise NotFoundError("Payment not found", payment_id=str(payment_id))
            await self.session.delete(payment)
            await self.session.flush()

            logger.info("Payment deleted", payment_id=str(payment_id))
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to delete payment", payment_id=str(payment_id), error=str(e))
            raise StoreError(
                f"Failed to delete payment: {e}",
                payment_id=str(payment_id),
                error=str(e),
            ) from e

    async def list_payments(self, job_order_id: uuid.UUID) -> list[PaymentEntry]:
        """
        List the payments of an order, newest first.

        Raises:
            StoreError: If the query fails
        """
        try:
            result = await self.session.execute(
                select(JobOrderPayment)
                .where(JobOrderPayment.job_order_id == job_order_id)
                .order_by(JobOrderPayment.paid_at.desc(), JobOrderPayment.created_at.desc())
            )
            rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to list payments",
                job_order_id=str(job_order_id),
                error=str(e),
            )
            raise StoreError(
                f"Failed to list payments: {e}",
                job_order_id=str(job_order_id),
                error=str(e),
            ) from e

        logger.debug("Payments listed", job_order_id=str(job_order_id), count=len(rows))
        return [PaymentEntry.model_validate(row) for row in rows]
