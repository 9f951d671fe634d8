"""
Service approval sub-workflow.

Postponing or cancelling a service line, and adding a brand-new one, need a
supervisory decision first. Requesting marks the line "Pending Approval"
and stores a PENDING request; deciding records the decision of record only.
Applying an approved or rejected decision to the line is done by the caller
through ``apply_decision``.

Request states:
    PENDING -> APPROVED | REJECTED (terminal)
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from autoservice.core.exceptions import NotFoundError, ValidationError
from autoservice.core.logging import get_logger
from autoservice.schemas.approvals import ApprovalRequestView
from autoservice.schemas.job_orders import JobOrder, ServiceLineItem
from autoservice.services.approvals.repository import ApprovalRepository
from autoservice.services.job_orders.enums import (
    ADD_SERVICE_ACTION,
    ApprovalStatus,
    ServiceStatus,
)
from autoservice.services.job_orders.normalizer import (
    normalize_identity,
    quantize_money,
    stable_service_id,
)

logger = get_logger(__name__)

PENDING_APPROVAL_MARKER = "pending"
DEFAULT_DECIDER = "System"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_order_id(order: JobOrder) -> None:
    if order.id is None:
        raise ValidationError(
            "Job order must be saved before requesting approvals",
            order_number=order.order_number,
        )


def _status_before_request(service: ServiceLineItem) -> ServiceStatus:
    previous = ServiceStatus.from_string(service.previous_status)
    if previous is not None and previous != ServiceStatus.PENDING_APPROVAL:
        return previous
    # Lines requested before the prior status was recorded
    if service.start_time is not None:
        return ServiceStatus.IN_PROGRESS
    return ServiceStatus.PENDING


def apply_decision(order: JobOrder, request: ApprovalRequestView) -> ServiceLineItem:
    """
    Apply a decided request to its service line in place.

    Approved status changes take the requested status; approved new lines
    become "Pending". Rejected status changes restore the status the line
    held when the request was made; rejected new lines become "Cancelled".
    The pending markers are cleared either way.

    Args:
        order: Job order holding the service line
        request: Decided approval request

    Returns:
        The updated service line

    Raises:
        ValidationError: If the request is still pending
        NotFoundError: If the service line is not on the order
    """
    if request.status == ApprovalStatus.PENDING:
        raise ValidationError("Approval request is not decided yet", request_id=request.id)

    service = order.find_service(request.service_id)
    if service is None:
        raise NotFoundError(
            "Service line not found",
            order_number=order.order_number,
            service_id=request.service_id,
        )

    is_new_line = request.requested_action == ADD_SERVICE_ACTION
    if request.status == ApprovalStatus.APPROVED:
        if is_new_line:
            service.status = ServiceStatus.PENDING.value
        else:
            target = ServiceStatus.from_string(request.requested_action)
            service.status = (target or ServiceStatus.PENDING).value
    elif is_new_line:
        service.status = ServiceStatus.CANCELLED.value
    else:
        service.status = _status_before_request(service).value

    service.requested_action = None
    service.previous_status = None
    service.approval_status = None

    logger.info(
        "Approval decision applied",
        order_number=order.order_number,
        service_id=service.id,
        decision=request.status.value,
        service_status=service.status,
    )
    return service


class ServiceApprovalWorkflow:
    """
    Records approval requests and decisions for service line changes.

    The order passed to the request methods is mutated in place; the caller
    persists it.
    """

    def __init__(
        self,
        repository: ApprovalRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize workflow.

        Args:
            repository: Approval request store
            clock: Source of the current time (UTC)
        """
        self.repository = repository
        self._clock = clock

    async def request_status_change(
        self,
        order: JobOrder,
        service_id: str,
        action: str,
        actor: str,
    ) -> ApprovalRequestView:
        """
        Request postponing or cancelling a service line.

        Args:
            order: Job order holding the line
            service_id: Service line id
            action: "Postponed" / "Cancelled" (verb forms accepted)
            actor: Requesting identity

        Returns:
            The pending request

        Raises:
            ValidationError: If the action does not need approval, the line
                already has that status, or a decision is already pending
            NotFoundError: If the service line is not on the order
        """
        _require_order_id(order)
        target = ServiceStatus.from_string(action)
        if target is None or not target.requires_approval():
            raise ValidationError(
                "Only postpone and cancel require approval",
                action=action,
            )

        service = order.find_service(service_id)
        if service is None:
            raise NotFoundError(
                "Service line not found",
                order_number=order.order_number,
                service_id=service_id,
            )

        current = ServiceStatus.from_string(service.status)
        if current == ServiceStatus.PENDING_APPROVAL:
            raise ValidationError(
                "Service already has a pending approval request",
                service_id=service_id,
                requested_action=service.requested_action,
            )
        if current == target:
            raise ValidationError(
                f"Service is already {target.value}",
                service_id=service_id,
            )

        now = self._clock()
        requested_by = normalize_identity(actor)
        request = await self.repository.upsert_pending(
            job_order_id=order.id,
            order_number=order.order_number,
            service_id=service.id,
            service_name=service.name,
            price=service.price,
            requested_action=target.value,
            requested_by=requested_by,
            requested_at=now,
        )

        service.previous_status = current.value if current else service.status
        service.status = ServiceStatus.PENDING_APPROVAL.value
        service.requested_action = target.value
        service.approval_status = PENDING_APPROVAL_MARKER

        logger.info(
            "Service status change requested",
            order_number=order.order_number,
            service_id=service.id,
            requested_action=target.value,
            requested_by=requested_by,
        )
        return request

    async def request_new_service(
        self,
        order: JobOrder,
        name: str,
        price: Decimal,
        actor: str,
    ) -> tuple[ServiceLineItem, ApprovalRequestView]:
        """
        Append a new service line that waits for approval.

        Returns:
            The new line and its pending request

        Raises:
            ValidationError: If the name is blank or the price negative
        """
        _require_order_id(order)
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Service name is required")
        if price < 0:
            raise ValidationError("Service price cannot be negative", price=str(price))

        existing_ids = {s.id for s in order.services}
        index = len(order.services)
        service_id = stable_service_id(order.order_number, None, index, cleaned)
        while service_id in existing_ids:
            index += 1
            service_id = stable_service_id(order.order_number, None, index, cleaned)

        service = ServiceLineItem(
            id=service_id,
            order=len(order.services) + 1,
            name=cleaned,
            price=quantize_money(price),
            status=ServiceStatus.PENDING_APPROVAL.value,
            requested_action=ADD_SERVICE_ACTION,
            approval_status=PENDING_APPROVAL_MARKER,
        )

        requested_by = normalize_identity(actor)
        request = await self.repository.upsert_pending(
            job_order_id=order.id,
            order_number=order.order_number,
            service_id=service.id,
            service_name=service.name,
            price=service.price,
            requested_action=ADD_SERVICE_ACTION,
            requested_by=requested_by,
            requested_at=self._clock(),
        )
        order.services.append(service)

        logger.info(
            "New service requested",
            order_number=order.order_number,
            service_id=service.id,
            price=str(service.price),
            requested_by=requested_by,
        )
        return service, request

    async def decide(
        self,
        request_id: str,
        approved: bool,
        actor: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ApprovalRequestView:
        """
        Record a decision on a pending request.

        Args:
            request_id: Approval request id
            approved: Approve or reject
            actor: Deciding identity ("System" when absent)
            note: Optional decision note

        Returns:
            The decided request

        Raises:
            NotFoundError: If the request does not exist
            ValidationError: If the request was already decided
        """
        request = await self.repository.get(request_id)
        if request.status.is_terminal():
            raise ValidationError(
                "Approval request already decided",
                request_id=request_id,
                status=request.status.value,
            )

        status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        decided_by = normalize_identity(actor) or DEFAULT_DECIDER
        return await self.repository.record_decision(
            request_id,
            status=status,
            decided_by=decided_by,
            decided_at=self._clock(),
            note=(note or "").strip() or None,
        )

    async def list_pending(self, limit: Optional[int] = None) -> list[ApprovalRequestView]:
        """Pending requests, newest first."""
        return await self.repository.list_pending(limit)

    async def list_for_order(self, order: JobOrder) -> list[ApprovalRequestView]:
        """All requests recorded for an order."""
        _require_order_id(order)
        return await self.repository.list_for_order(order.id)
