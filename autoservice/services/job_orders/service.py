"""
Job order service orchestrating the lifecycle of job orders.

This module implements JobOrderService, the layer between the API and the
engine components. It builds aggregates from save requests, drives roadmap
transitions through the state machine, routes disruptive service changes
through the approval workflow, checks eligibility gates and issues exit
permits. Every mutation loads the normalized aggregate, changes it in
memory and persists it with one repository upsert.
"""

import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from autoservice.core.exceptions import EligibilityError, NotFoundError, ValidationError
from autoservice.core.logging import get_logger
from autoservice.schemas.approvals import ApprovalRequestView
from autoservice.schemas.job_orders import (
    Billing,
    ExitPermit,
    ExitPermitRequest,
    JobOrder,
    JobOrderListResponse,
    JobOrderResponse,
    JobOrderSaveRequest,
    JobOrderSummary,
    QualityCheckRecord,
    RoadmapStepView,
    SaveResult,
    ServiceLineInput,
    ServiceLineItem,
)
from autoservice.services.approvals.workflow import ServiceApprovalWorkflow, apply_decision
from autoservice.services.directory.service import DirectoryLookupService
from autoservice.services.job_orders.eligibility import (
    cancel_eligible,
    exit_permit_eligible,
    is_cancelled,
    is_terminal_work_status,
)
from autoservice.services.job_orders.enums import (
    ADD_SERVICE_ACTION,
    ApprovalStatus,
    ExitPermitStatus,
    PaymentLabel,
    QualityCheckStatus,
    RoadmapStage,
    ServiceStatus,
    WorkLabel,
    WorkStatus,
)
from autoservice.services.job_orders.normalizer import (
    ZERO,
    derive_payment_status,
    derive_work_status,
    normalize_identity,
    quantize_money,
    stable_service_id,
    work_label_to_enum,
)
from autoservice.services.job_orders.repository import JobOrderRepository
from autoservice.services.job_orders.roadmap import RoadmapStateMachine

logger = get_logger(__name__)

ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
ORDER_SUFFIX_LENGTH = 4
SYSTEM_ACTOR = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number(now: datetime) -> str:
    """New order number ``JO-YYYYMMDD-XXXX`` with a random alphanumeric suffix."""
    suffix = "".join(secrets.choice(ORDER_SUFFIX_ALPHABET) for _ in range(ORDER_SUFFIX_LENGTH))
    return f"JO-{now:%Y%m%d}-{suffix}"


def generate_permit_id(now: datetime) -> str:
    """New exit permit id ``PERMIT-{year}-{6 digits}``."""
    return f"PERMIT-{now.year}-{secrets.randbelow(1_000_000):06d}"


def billable_total(services: Iterable[ServiceLineItem]) -> Decimal:
    """Sum of prices of lines that count toward pricing."""
    excluded = {ServiceStatus.CANCELLED, ServiceStatus.PENDING_APPROVAL}
    return quantize_money(
        sum(
            (s.price for s in services if ServiceStatus.from_string(s.status) not in excluded),
            ZERO,
        )
    )


def all_services_terminal(services: Iterable[ServiceLineItem]) -> bool:
    """True when every line is Completed, Cancelled or Postponed."""
    for service in services:
        status = ServiceStatus.from_string(service.status)
        if status is None or not status.is_terminal():
            return False
    return True


class JobOrderService:
    """
    Service for job order lifecycle operations.

    Attributes:
        repository: Job order aggregate repository
        approvals: Service approval workflow
        directory: Actor directory lookup
        state_machine: Roadmap state machine
    """

    def __init__(
        self,
        repository: JobOrderRepository,
        approvals: ServiceApprovalWorkflow,
        directory: DirectoryLookupService,
        state_machine: Optional[RoadmapStateMachine] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize job order service.

        Args:
            repository: Job order aggregate repository
            approvals: Service approval workflow
            directory: Actor directory lookup
            state_machine: Roadmap state machine (created when omitted)
            clock: Source of the current time (UTC)
        """
        self.repository = repository
        self.approvals = approvals
        self.directory = directory
        self._clock = clock
        self.state_machine = state_machine or RoadmapStateMachine(clock=clock)

    @staticmethod
    def _actor(actor: Optional[str]) -> str:
        return normalize_identity(actor) or SYSTEM_ACTOR

    async def _persist(self, order: JobOrder, actor: str) -> JobOrder:
        await self.repository.upsert(order, actor)
        return order

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _build_services(
        self,
        order_number: str,
        inputs: list[ServiceLineInput],
        existing: Optional[JobOrder],
    ) -> list[ServiceLineItem]:
        services: list[ServiceLineItem] = []
        for index, item in enumerate(inputs):
            service_id = stable_service_id(order_number, item.id, index, item.name)
            previous = existing.find_service(service_id) if existing else None
            status = ServiceStatus.from_string(item.status) or ServiceStatus.PENDING
            assigned = normalize_identity(item.assigned_to) or None
            line = ServiceLineItem(
                id=service_id,
                order=index + 1,
                name=item.name.strip(),
                price=quantize_money(item.price),
                status=status.value,
                assigned_to=assigned,
                technicians=[t for t in (normalize_identity(x) for x in item.technicians) if t],
                notes=item.notes,
            )
            if previous is not None:
                line.start_time = previous.start_time
                line.end_time = previous.end_time
                line.requested_action = previous.requested_action
                line.previous_status = previous.previous_status
                line.approval_status = previous.approval_status
                line.quality_check_result = previous.quality_check_result
            services.append(line)
        return services

    async def save(self, request: JobOrderSaveRequest, actor: Optional[str]) -> SaveResult:
        """
        Create or update a job order from a save request.

        Creation generates the order number when none is given and opens the
        intake roadmap. Updates require the order number, keep the stored
        services when none are sent, and never touch the payment rows.

        Args:
            request: Save contract
            actor: Identity performing the save

        Returns:
            SaveResult with the internal id and order number

        Raises:
            ValidationError: If required fields are missing or malformed
            NotFoundError: If an update targets an unknown order
            StoreError: If the write fails
        """
        who = self._actor(actor)
        now = self._clock()
        existing: Optional[JobOrder] = None

        if request.id is not None:
            if not request.order_number:
                raise ValidationError("Missing job order number", order_id=str(request.id))
            existing = await self.repository.get_by_order_number(request.order_number)
            if existing.id != request.id:
                raise ValidationError(
                    "Order number does not belong to this job order",
                    order_id=str(request.id),
                    order_number=request.order_number,
                )
            order_number = existing.order_number
        else:
            order_number = request.order_number or generate_order_number(now)

        if request.work_status_label:
            work_status = derive_work_status(None, request.work_status_label)
        elif request.status:
            work_status = derive_work_status(request.status, None)
        elif existing is not None:
            work_status = existing.work_status
        else:
            work_status = WorkLabel.NEW_REQUEST.value

        if request.services is not None:
            services = self._build_services(order_number, request.services, existing)
        elif existing is not None:
            services = existing.services
        else:
            services = []
        if not services and not is_cancelled(work_status):
            raise ValidationError(
                "At least one service line is required",
                order_number=order_number,
            )

        billing_in = request.billing
        previous_billing = existing.billing if existing else Billing()
        total = (
            billing_in.total_amount
            if billing_in and billing_in.total_amount is not None
            else (previous_billing.total_amount if existing else billable_total(services))
        )
        discount = (
            billing_in.discount
            if billing_in and billing_in.discount is not None
            else previous_billing.discount
        )
        billing = Billing(
            total_amount=quantize_money(total),
            discount=quantize_money(min(discount, total)),
            amount_paid=previous_billing.amount_paid,
            payment_method=(billing_in.payment_method if billing_in else None)
            or previous_billing.payment_method,
            bill_id=(billing_in.bill_id if billing_in else None) or previous_billing.bill_id,
        )

        if request.payment_status_label:
            payment_label = derive_payment_status(None, request.payment_status_label)
        elif existing is not None:
            payment_label = existing.payment_label
        else:
            payment_label = PaymentLabel.UNPAID.value

        if request.roadmap is not None:
            roadmap = request.roadmap
        elif existing is not None:
            roadmap = existing.roadmap
        else:
            roadmap = self.state_machine.initial_roadmap(who, now)

        documents = request.documents or (existing.documents if existing else [])

        order = JobOrder(
            id=existing.id if existing else None,
            order_number=order_number,
            order_type=request.order_type or (existing.order_type if existing else None),
            customer_id=request.customer_id or (existing.customer_id if existing else None),
            customer_name=request.customer_name or (existing.customer_name if existing else None),
            customer_phone=request.customer_phone
            or (existing.customer_phone if existing else None),
            vehicle_id=request.vehicle_id or (existing.vehicle_id if existing else None),
            plate_number=request.plate_number or (existing.plate_number if existing else None),
            status=work_label_to_enum(work_status),
            work_status=work_status,
            payment_label=payment_label,
            services=services,
            roadmap=roadmap,
            documents=documents,
            billing=billing,
            exit_permit=existing.exit_permit if existing else None,
            exit_permit_status=(
                existing.exit_permit_status if existing else ExitPermitStatus.NOT_REQUIRED
            ),
            quality_check=existing.quality_check if existing else None,
            customer_notes=request.customer_notes
            if request.customer_notes is not None
            else (existing.customer_notes if existing else None),
            created_by=existing.created_by if existing else who,
        )

        result = await self.repository.upsert(order, who)
        logger.info(
            "Job order save handled",
            order_number=result.order_number,
            created=existing is None,
            work_status=work_status,
            service_count=len(services),
            actor=who,
        )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, order_number: str) -> JobOrder:
        """Load a normalized order by order number or internal id."""
        return await self.repository.get_by_order_number(order_number)

    async def to_response(self, order: JobOrder) -> JobOrderResponse:
        """
        Build the read model: inferred timeline, actor display names and
        exit permit eligibility.
        """
        timeline = self.state_machine.infer_timeline(
            order.roadmap, order.work_status, order.created_at, order.updated_at
        )
        roadmap = [
            RoadmapStepView(
                **step.model_dump(),
                action_by_display=await self.directory.display_name(step.action_by),
            )
            for step in timeline
        ]
        permit_created = (
            order.exit_permit is not None
            or order.exit_permit_status == ExitPermitStatus.APPROVED
        )
        return JobOrderResponse(
            **order.model_dump(exclude={"roadmap"}),
            roadmap=roadmap,
            exit_permit_status_display=order.exit_permit_status.display_name,
            exit_permit_eligible=exit_permit_eligible(
                order.work_status, order.payment_label, permit_created
            ),
        )

    @staticmethod
    def to_list_response(orders: list[JobOrder], limit: int) -> JobOrderListResponse:
        items = [
            JobOrderSummary(
                id=o.id,
                order_number=o.order_number,
                plate_number=o.plate_number,
                customer_name=o.customer_name,
                status=o.status,
                work_status=o.work_status,
                payment_label=o.payment_label,
                net_amount=o.billing.net_amount,
                balance_due=o.billing.balance_due,
                updated_at=o.updated_at,
            )
            for o in orders
        ]
        return JobOrderListResponse(items=items, count=len(items), limit=limit)

    async def list_by_status(
        self, status: str, limit: Optional[int] = None
    ) -> JobOrderListResponse:
        """
        Dashboard list for one status class.

        Args:
            status: Persisted enum value or display label

        Raises:
            ValidationError: If the status is empty
        """
        if not (status or "").strip():
            raise ValidationError("Status is required")
        status_class = WorkStatus.from_string(status) or work_label_to_enum(status)
        orders = await self.repository.list_by_status_class(status_class, limit)
        return self.to_list_response(orders, self.repository.bounded_limit(limit))

    async def list_by_plate_number(
        self, plate_number: str, limit: Optional[int] = None
    ) -> JobOrderListResponse:
        """Every order of a vehicle, newest first."""
        orders = await self.repository.list_by_plate_number(plate_number, limit)
        return self.to_list_response(orders, self.repository.bounded_limit(limit))

    async def vehicle_history(
        self, plate_number: str, limit: Optional[int] = None
    ) -> JobOrderListResponse:
        """Completed orders of a vehicle, newest first."""
        orders = await self.repository.list_completed_by_plate_number(plate_number, limit)
        return self.to_list_response(orders, self.repository.bounded_limit(limit))

    async def list_exit_permit_candidates(
        self, limit: Optional[int] = None
    ) -> JobOrderListResponse:
        """Orders that may be issued an exit permit right now."""
        orders = await self.repository.list_exit_permit_candidates(limit)
        eligible = [
            o
            for o in orders
            if exit_permit_eligible(o.work_status, o.payment_label, o.exit_permit is not None)
        ]
        return self.to_list_response(eligible, self.repository.bounded_limit(limit))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require_open(self, order: JobOrder, action: str) -> None:
        if is_terminal_work_status(order.work_status):
            raise EligibilityError(
                f"Cannot {action} on a {order.work_status.lower()} order",
                order_number=order.order_number,
                work_status=order.work_status,
            )

    def _advance(self, order: JobOrder, target: RoadmapStage, who: str) -> None:
        steps, label = self.state_machine.advance(
            order.roadmap, target, who, order.work_status, self._clock()
        )
        order.roadmap = steps
        order.work_status = label
        order.status = work_label_to_enum(label)

    async def start_inspection(self, order_number: str, actor: Optional[str]) -> JobOrder:
        """
        Move a new request into inspection.

        Raises:
            StateTransitionError: If the order is not at New Request
        """
        who = self._actor(actor)
        order = await self.get(order_number)
        self._require_open(order, "start inspection")
        self._advance(order, RoadmapStage.INSPECTION, who)
        logger.info("Inspection started", order_number=order.order_number, actor=who)
        return await self._persist(order, who)

    async def change_service_status(
        self,
        order_number: str,
        service_id: str,
        status: str,
        actor: Optional[str],
    ) -> JobOrder:
        """
        Change the status of one service line.

        Postponed and Cancelled are routed through the approval workflow.
        A line waiting in Pending Approval only leaves it through
        ``decide_approval``.
        Inprogress stamps the start time and moves the order into service
        operation; Completed stamps the end time.

        Raises:
            ValidationError: If the status is unknown, or the line awaits a
                decision
            NotFoundError: If the line does not exist
            EligibilityError: If the order is completed or cancelled
        """
        who = self._actor(actor)
        target = ServiceStatus.from_string(status)
        if target is None or target == ServiceStatus.PENDING_APPROVAL:
            raise ValidationError("Unknown service status", status=status)

        order = await self.get(order_number)
        self._require_open(order, "change services")
        service = order.find_service(service_id)
        if service is None:
            raise NotFoundError(
                "Service line not found",
                order_number=order.order_number,
                service_id=service_id,
            )

        if target.requires_approval():
            await self.approvals.request_status_change(order, service_id, target.value, who)
            return await self._persist(order, who)

        if ServiceStatus.from_string(service.status) == ServiceStatus.PENDING_APPROVAL:
            raise ValidationError(
                "Service is waiting for an approval decision",
                service_id=service_id,
                requested_action=service.requested_action,
            )

        now = self._clock()
        service.status = target.value
        if target == ServiceStatus.IN_PROGRESS and service.start_time is None:
            service.start_time = now
        if target == ServiceStatus.COMPLETED:
            service.start_time = service.start_time or now
            service.end_time = service.end_time or now
        if not service.assigned_to:
            service.assigned_to = who

        if target == ServiceStatus.IN_PROGRESS:
            stage = self.state_machine.current_stage(order.roadmap, order.work_status)
            if stage == RoadmapStage.NEW_REQUEST:
                self._advance(order, RoadmapStage.INSPECTION, who)
                stage = RoadmapStage.INSPECTION
            if stage == RoadmapStage.INSPECTION:
                self._advance(order, RoadmapStage.SERVICE_OPERATION, who)

        logger.info(
            "Service status changed",
            order_number=order.order_number,
            service_id=service_id,
            status=target.value,
            actor=who,
        )
        return await self._persist(order, who)

    async def add_service(
        self,
        order_number: str,
        name: str,
        price: Decimal,
        actor: Optional[str],
    ) -> tuple[JobOrder, ApprovalRequestView]:
        """
        Add a new service line; it waits in Pending Approval.

        Raises:
            EligibilityError: If the order is completed or cancelled
        """
        who = self._actor(actor)
        order = await self.get(order_number)
        self._require_open(order, "add services")
        _, request = await self.approvals.request_new_service(order, name, price, who)
        return await self._persist(order, who), request

    async def decide_approval(
        self,
        request_id: str,
        approved: bool,
        actor: Optional[str],
        note: Optional[str] = None,
    ) -> ApprovalRequestView:
        """
        Record a decision and apply it to the service line.

        An approved new line is added to the order total.

        Raises:
            NotFoundError: If the request, order or line does not exist
            ValidationError: If the request was already decided
        """
        decided = await self.approvals.decide(request_id, approved, actor, note)
        order = await self.get(str(decided.job_order_id))
        apply_decision(order, decided)
        if decided.status == ApprovalStatus.APPROVED and decided.requested_action == ADD_SERVICE_ACTION:
            order.billing.total_amount = quantize_money(order.billing.total_amount + decided.price)
        await self._persist(order, decided.decided_by or SYSTEM_ACTOR)
        return decided

    async def list_approvals(self, order_number: str) -> list[ApprovalRequestView]:
        """Approval requests recorded for an order."""
        order = await self.get(order_number)
        return await self.approvals.list_for_order(order)

    async def finish_work(self, order_number: str, actor: Optional[str]) -> JobOrder:
        """
        Hand the order to quality check once every service line is terminal.

        Raises:
            EligibilityError: If a service line is still open
            StateTransitionError: If the order is not in service operation
        """
        who = self._actor(actor)
        order = await self.get(order_number)
        self._require_open(order, "finish work")
        if not all_services_terminal(order.services):
            open_lines = [
                s.id
                for s in order.services
                if not (ServiceStatus.from_string(s.status) or ServiceStatus.PENDING).is_terminal()
            ]
            raise EligibilityError(
                "All services must be completed, postponed or cancelled first",
                order_number=order.order_number,
                open_services=open_lines,
            )
        self._advance(order, RoadmapStage.QUALITY_CHECK, who)
        logger.info("Work finished", order_number=order.order_number, actor=who)
        return await self._persist(order, who)

    async def quality_check(
        self,
        order_number: str,
        approved: bool,
        actor: Optional[str],
        notes: Optional[str] = None,
    ) -> JobOrder:
        """
        Record the quality check decision.

        Approve moves the order to Ready; reject re-opens service work.
        The outcome is kept as the order's quality check record; each
        completed line gets the Passed/Failed result and keeps its notes.
        """
        who = self._actor(actor)
        order = await self.get(order_number)
        self._require_open(order, "record quality check")
        steps, label = self.state_machine.quality_check_decision(
            order.roadmap, approved, who, order.work_status, self._clock()
        )
        order.roadmap = steps
        order.work_status = label
        order.status = work_label_to_enum(label)

        outcome = QualityCheckStatus.PASSED if approved else QualityCheckStatus.FAILED
        order.quality_check = QualityCheckRecord(
            status=outcome,
            checked_at=self._clock(),
            checked_by=who,
            notes=(notes or "").strip() or None,
        )
        for service in order.services:
            if ServiceStatus.from_string(service.status) == ServiceStatus.COMPLETED:
                service.quality_check_result = outcome.display_name

        logger.info(
            "Quality check recorded",
            order_number=order.order_number,
            approved=approved,
            actor=who,
        )
        return await self._persist(order, who)

    async def cancel(self, order_number: str, actor: Optional[str]) -> JobOrder:
        """
        Cancel an order from any non-terminal status.

        Raises:
            EligibilityError: If the order is already completed or cancelled
        """
        who = self._actor(actor)
        order = await self.get(order_number)
        if not cancel_eligible(order.work_status):
            raise EligibilityError(
                "Order can no longer be cancelled",
                order_number=order.order_number,
                work_status=order.work_status,
            )
        steps, label = self.state_machine.cancel(
            order.roadmap, who, order.work_status, self._clock()
        )
        order.roadmap = steps
        order.work_status = label
        order.status = WorkStatus.CANCELLED
        logger.info("Job order cancelled", order_number=order.order_number, actor=who)
        return await self._persist(order, who)

    async def create_exit_permit(
        self,
        order_number: str,
        request: ExitPermitRequest,
        actor: Optional[str],
    ) -> JobOrder:
        """
        Issue the exit permit of an order.

        A ready order is completed by the permit; a cancelled order keeps
        its cancelled roadmap.

        Raises:
            EligibilityError: If a permit exists or the order is not eligible
            ValidationError: If the next service date is missing on a
                non-cancelled order
        """
        who = self._actor(actor)
        order = await self.get(order_number)
        already_created = (
            order.exit_permit is not None
            or order.exit_permit_status == ExitPermitStatus.APPROVED
        )
        if already_created:
            raise EligibilityError(
                "Exit permit already exists",
                order_number=order.order_number,
                permit_id=order.exit_permit.permit_id if order.exit_permit else None,
            )
        if not exit_permit_eligible(order.work_status, order.payment_label, already_created):
            raise EligibilityError(
                "Order is not eligible for an exit permit",
                order_number=order.order_number,
                work_status=order.work_status,
                payment_status=order.payment_label,
            )

        cancelled = is_cancelled(order.work_status)
        if request.next_service_date is None and not cancelled:
            raise ValidationError(
                "Next service date is required",
                order_number=order.order_number,
            )

        now = self._clock()
        order.exit_permit = ExitPermit(
            permit_id=generate_permit_id(now),
            collected_by=request.collected_by,
            mobile=request.mobile,
            next_service_date=request.next_service_date,
            created_by=who,
            created_at=now,
        )
        order.exit_permit_status = ExitPermitStatus.APPROVED
        if not cancelled:
            self._advance(order, RoadmapStage.COMPLETED, who)

        logger.info(
            "Exit permit issued",
            order_number=order.order_number,
            permit_id=order.exit_permit.permit_id,
            actor=who,
        )
        return await self._persist(order, who)
