"""
Job order aggregate repository.

This module implements JobOrderRepository, the one read/write surface for
the job order aggregate. Writes store order-level columns plus the nested
services, roadmap, documents, billing and exit permit as a single JSON
payload. Reads resolve a human order number (or an internal id) to a row
through a chain of progressively broader lookups and hand the row to the
status normalizer before anything else sees it.
"""

import uuid
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from autoservice.core.config import get_settings
from autoservice.core.exceptions import NotFoundError, StoreError, ValidationError
from autoservice.core.logging import get_logger, log_performance
from autoservice.database.models.job_order import JobOrder as JobOrderRow
from autoservice.schemas.job_orders import JobOrder, RawJobOrderRecord, SaveResult
from autoservice.services.job_orders.enums import (
    ExitPermitStatus,
    PaymentStatus,
    WorkStatus,
)
from autoservice.services.job_orders.normalizer import (
    ZERO,
    normalize_identity,
    normalize_record,
    payment_label_to_enum,
    quantize_money,
    work_label_to_enum,
)

logger = get_logger(__name__)


def _compact_key(value: str) -> str:
    return "".join(value.split()).upper()


def row_to_record(row: JobOrderRow) -> RawJobOrderRecord:
    """Copy an ORM row into the raw record shape the normalizer accepts."""
    return RawJobOrderRecord(
        id=row.id,
        order_number=row.order_number,
        order_type=row.order_type,
        customer_id=row.customer_id,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        vehicle_id=row.vehicle_id,
        plate_number=row.plate_number,
        status=row.status.value if row.status is not None else None,
        work_status_label=row.work_status_label,
        payment_status=row.payment_status.value if row.payment_status is not None else None,
        payment_status_label=row.payment_status_label,
        total_amount=row.total_amount,
        discount=row.discount,
        net_amount=row.net_amount,
        amount_paid=row.amount_paid,
        balance_due=row.balance_due,
        exit_permit_status=(
            row.exit_permit_status.value if row.exit_permit_status is not None else None
        ),
        customer_notes=row.customer_notes,
        data_json=row.data_json,
        created_by=row.created_by,
        updated_by=row.updated_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def build_payload(order: JobOrder) -> dict[str, Any]:
    """Serialize the nested collections written with every upsert.

    The payload deliberately carries no payments list; payments live in
    their own table.
    """
    return {
        "services": [s.model_dump(mode="json") for s in order.services],
        "roadmap": [s.model_dump(mode="json") for s in order.roadmap],
        "documents": [d.model_dump(mode="json") for d in order.documents],
        "billing": order.billing.model_dump(mode="json"),
        "exit_permit": (
            order.exit_permit.model_dump(mode="json") if order.exit_permit else None
        ),
        "quality_check": (
            order.quality_check.model_dump(mode="json") if order.quality_check else None
        ),
    }


class JobOrderRepository:
    """
    Repository for job order aggregate persistence.

    Every method either returns normalized domain objects or raises one of
    NotFoundError, ValidationError or StoreError.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize job order repository.

        Args:
            session: Async database session
        """
        self.session = session
        self.settings = get_settings()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, order: JobOrder, actor: Optional[str] = None) -> SaveResult:
        """
        Persist the full aggregate in one write.

        Validates the order number and service lines, maps the display work
        status back to the persisted enum, recomputes net and balance from
        the billing figures, then inserts (no id) or updates in place (id).

        Args:
            order: Normalized job order aggregate
            actor: Identity performing the save

        Returns:
            SaveResult with the internal id and order number

        Raises:
            ValidationError: If the order number or service lines are missing,
                or the billing figures are malformed
            NotFoundError: If an update targets an unknown id
            StoreError: If the write fails
        """
        order_number = (order.order_number or "").strip()
        if not order_number:
            raise ValidationError("Missing job order number")

        status = work_label_to_enum(order.work_status)
        if not order.services and status != WorkStatus.CANCELLED:
            raise ValidationError(
                "At least one service line is required",
                order_number=order_number,
            )

        billing = order.billing
        total = billing.total_amount
        discount = billing.discount
        paid = billing.amount_paid
        if total < ZERO or discount < ZERO or paid < ZERO:
            raise ValidationError(
                "Monetary fields must be non-negative",
                order_number=order_number,
            )
        if discount > total:
            logger.warning(
                "Discount clamped to total amount",
                order_number=order_number,
                total_amount=str(total),
                discount=str(discount),
            )
            discount = total
        net = quantize_money(total - discount)
        balance = quantize_money(max(ZERO, net - paid))
        billing.total_amount = quantize_money(total)
        billing.discount = quantize_money(discount)
        billing.amount_paid = quantize_money(paid)
        billing.net_amount = net
        billing.balance_due = balance

        actor_id = normalize_identity(actor) or None
        payment_status = payment_label_to_enum(order.payment_label)

        values: dict[str, Any] = {
            "order_type": order.order_type,
            "customer_id": order.customer_id,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "vehicle_id": order.vehicle_id,
            "plate_number": order.plate_number,
            "status": status,
            "work_status_label": order.work_status,
            "payment_status": payment_status,
            "payment_status_label": order.payment_label,
            "total_amount": billing.total_amount,
            "discount": billing.discount,
            "net_amount": net,
            "amount_paid": billing.amount_paid,
            "balance_due": balance,
            "exit_permit_status": order.exit_permit_status,
            "customer_notes": order.customer_notes,
            "data_json": build_payload(order),
        }

        try:
            with log_performance(logger, "job_order_upsert", order_number=order_number):
                if order.id is None:
                    row = JobOrderRow(
                        id=uuid.uuid4(),
                        order_number=order_number,
                        created_by=actor_id,
                        updated_by=actor_id,
                        **values,
                    )
                    self.session.add(row)
                else:
                    row = await self.session.get(JobOrderRow, order.id)
                    if row is None:
                        raise NotFoundError(
                            "Job order not found",
                            order_id=str(order.id),
                        )
                    for key, value in values.items():
                        setattr(row, key, value)
                    row.updated_by = actor_id
                await self.session.flush()

            logger.info(
                "Job order saved",
                order_id=str(row.id),
                order_number=row.order_number,
                status=status.value,
                created=order.id is None,
            )
            return SaveResult(id=row.id, order_number=row.order_number)

        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(
                "Job order save rejected by store constraints",
                order_number=order_number,
                error=str(e.orig) if e.orig else str(e),
            )
            raise ValidationError(
                "Job order violates a store constraint (duplicate order number?)",
                order_number=order_number,
                error=str(e.orig) if e.orig else str(e),
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to save job order",
                order_number=order_number,
                error=str(e),
            )
            raise StoreError(
                f"Failed to save job order: {e}",
                order_number=order_number,
                error=str(e),
            ) from e

    async def update_payment_summary(
        self,
        order_id: uuid.UUID,
        amount_paid: Decimal,
        balance_due: Decimal,
        payment_status: PaymentStatus,
        payment_label: str,
    ) -> None:
        """
        Write only the payment summary columns of an order.

        Raises:
            NotFoundError: If the order does not exist
            StoreError: If the write fails
        """
        try:
            row = await self.session.get(JobOrderRow, order_id)
            if row is None:
                raise NotFoundError("Job order not found", order_id=str(order_id))
            row.amount_paid = quantize_money(amount_paid)
            row.balance_due = quantize_money(balance_due)
            row.payment_status = payment_status
            row.payment_status_label = payment_label
            billing = dict((row.data_json or {}).get("billing") or {})
            if billing:
                billing["amount_paid"] = str(row.amount_paid)
                billing["balance_due"] = str(row.balance_due)
                row.data_json = {**(row.data_json or {}), "billing": billing}
            await self.session.flush()

            logger.info(
                "Payment summary updated",
                order_id=str(order_id),
                amount_paid=str(row.amount_paid),
                balance_due=str(row.balance_due),
                payment_status=payment_status.value,
            )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to update payment summary",
                order_id=str(order_id),
                error=str(e),
            )
            raise StoreError(
                f"Failed to update payment summary: {e}",
                order_id=str(order_id),
                error=str(e),
            ) from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_row(self, key: str) -> Optional[JobOrderRow]:
        """
        Resolve an order number or internal id to a row.

        Lookup chain: exact order number (unique index), trimmed
        case-insensitive order number, internal id, then a bounded scan
        comparing order numbers with all whitespace removed.

        Args:
            key: Order number or internal id

        Returns:
            Matching row or None

        Raises:
            StoreError: If a query fails
        """
        cleaned = (key or "").strip()
        if not cleaned:
            return None

        try:
            result = await self.session.execute(
                select(JobOrderRow).where(JobOrderRow.order_number == cleaned)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                return row

            result = await self.session.execute(
                select(JobOrderRow)
                .where(func.lower(func.trim(JobOrderRow.order_number)) == cleaned.lower())
                .limit(1)
            )
            row = result.scalars().first()
            if row is not None:
                logger.debug("Job order resolved by filtered scan", key=cleaned)
                return row

            try:
                order_id = uuid.UUID(cleaned)
            except ValueError:
                order_id = None
            if order_id is not None:
                row = await self.session.get(JobOrderRow, order_id)
                if row is not None:
                    logger.debug("Job order resolved by internal id", key=cleaned)
                    return row

            wanted = _compact_key(cleaned)
            result = await self.session.execute(
                select(JobOrderRow.id, JobOrderRow.order_number)
                .order_by(JobOrderRow.updated_at.desc())
                .limit(self.settings.order_lookup_scan_limit)
            )
            for row_id, order_number in result.all():
                if order_number and _compact_key(order_number) == wanted:
                    logger.info(
                        "Job order resolved by full scan",
                        key=cleaned,
                        order_number=order_number,
                    )
                    return await self.session.get(JobOrderRow, row_id)

            return None

        except SQLAlchemyError as e:
            logger.error("Failed to resolve job order", key=cleaned, error=str(e))
            raise StoreError(
                f"Failed to resolve job order: {e}",
                key=cleaned,
                error=str(e),
            ) from e

    async def get_by_order_number(self, key: str) -> JobOrder:
        """
        Load and normalize a job order by order number or internal id.

        Raises:
            NotFoundError: If no order matches
            StoreError: If a query fails
        """
        row = await self.find_row(key)
        if row is None:
            raise NotFoundError("Job order not found", order_number=(key or "").strip())
        return normalize_record(row_to_record(row))

    async def list_by_status_class(
        self, status: WorkStatus, limit: Optional[int] = None
    ) -> list[JobOrder]:
        """List orders in one status class, most recently updated first."""
        stmt = (
            select(JobOrderRow)
            .where(JobOrderRow.status == status)
            .order_by(JobOrderRow.updated_at.desc())
        )
        return await self._list(stmt, limit, status=status.value)

    async def list_by_plate_number(
        self,
        plate_number: str,
        limit: Optional[int] = None,
        status: Optional[WorkStatus] = None,
    ) -> list[JobOrder]:
        """List a vehicle's orders by plate number, newest first."""
        plate = (plate_number or "").strip().upper()
        if not plate:
            raise ValidationError("Plate number is required")
        stmt = select(JobOrderRow).where(func.upper(JobOrderRow.plate_number) == plate)
        if status is not None:
            stmt = stmt.where(JobOrderRow.status == status)
        stmt = stmt.order_by(JobOrderRow.created_at.desc())
        return await self._list(stmt, limit, plate_number=plate)

    async def list_completed_by_plate_number(
        self, plate_number: str, limit: Optional[int] = None
    ) -> list[JobOrder]:
        """Vehicle service history: completed orders for a plate number."""
        return await self.list_by_plate_number(
            plate_number, limit=limit, status=WorkStatus.COMPLETED
        )

    async def list_exit_permit_candidates(self, limit: Optional[int] = None) -> list[JobOrder]:
        """List ready or cancelled orders that have no issued exit permit."""
        stmt = (
            select(JobOrderRow)
            .where(JobOrderRow.status.in_([WorkStatus.READY, WorkStatus.CANCELLED]))
            .where(JobOrderRow.exit_permit_status != ExitPermitStatus.APPROVED)
            .order_by(JobOrderRow.updated_at.desc())
        )
        return await self._list(stmt, limit, query="exit_permit_candidates")

    def bounded_limit(self, limit: Optional[int]) -> int:
        """Cap a requested page size at the configured list limit."""
        cap = self.settings.list_page_limit
        if limit is None or limit <= 0:
            return cap
        return min(limit, cap)

    async def _list(self, stmt: Any, limit: Optional[int], **context: Any) -> list[JobOrder]:
        bounded = self.bounded_limit(limit)
        try:
            result = await self.session.execute(stmt.limit(bounded))
            rows: Sequence[JobOrderRow] = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list job orders", error=str(e), **context)
            raise StoreError(
                f"Failed to list job orders: {e}",
                error=str(e),
                **context,
            ) from e

        logger.debug("Job orders listed", count=len(rows), limit=bounded, **context)
        return [normalize_record(row_to_record(row)) for row in rows]
