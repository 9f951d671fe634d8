"""
Pytest configuration and shared test fixtures.

This module provides pytest configuration, fixtures, and test utilities
for the job order engine. It includes test client setup, a controllable
clock, and in-memory stand-ins for the job order, payment and approval
repositories so that the lifecycle services can be exercised end to end
without a database.
"""

import fnmatch
import json
import os

os.environ.setdefault("APP_ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Generator, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from autoservice.core.exceptions import NotFoundError, ValidationError
from autoservice.main import app
from autoservice.schemas.approvals import ApprovalRequestView
from autoservice.schemas.job_orders import JobOrder, JobOrderSaveRequest, SaveResult
from autoservice.schemas.payments import PaymentEntry
from autoservice.services.approvals.repository import approval_request_id
from autoservice.services.approvals.workflow import ServiceApprovalWorkflow
from autoservice.services.directory.service import DirectoryEntry, DirectoryLookupService
from autoservice.services.job_orders.enums import (
    ApprovalStatus,
    ExitPermitStatus,
    PaymentStatus,
    WorkStatus,
)
from autoservice.services.job_orders.normalizer import (
    ZERO,
    normalize_identity,
    payment_label_to_enum,
    quantize_money,
    work_label_to_enum,
)
from autoservice.services.job_orders.service import JobOrderService
from autoservice.services.payments.ledger import newest_first
from autoservice.services.payments.service import PaymentService


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """UTC clock that advances one minute every time it is read."""

    def __init__(self, start: Optional[datetime] = None, step: timedelta = timedelta(minutes=1)):
        self.current = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + self.step
        return now


class FakeMonotonic:
    """Monotonic clock that only moves when told to."""

    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class InMemoryCache:
    """JSON cache with per-key expiry on a fake clock, shaped like RedisClient."""

    def __init__(self, clock: FakeMonotonic) -> None:
        self._clock = clock
        self.values: dict[str, tuple[Optional[float], dict[str, Any]]] = {}

    async def get_json(self, key: str) -> Optional[dict[str, Any]]:
        item = self.values.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at is not None and expires_at <= self._clock():
            del self.values[key]
            return None
        return json.loads(json.dumps(value))

    async def set_json(self, key: str, value: dict[str, Any], ex: Optional[int] = None) -> bool:
        expires_at = self._clock() + ex if ex is not None else None
        self.values[key] = (expires_at, json.loads(json.dumps(value)))
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    async def delete_pattern(self, pattern: str) -> int:
        return await self.delete(*fnmatch.filter(list(self.values), pattern))


# ============================================================================
# In-memory repositories
# ============================================================================


class InMemoryJobOrderRepository:
    """Job order repository keeping normalized aggregates in a dict."""

    def __init__(self, list_limit: int = 200):
        self.orders: dict[UUID, JobOrder] = {}
        self.list_limit = list_limit
        self.upsert_count = 0

    async def upsert(self, order: JobOrder, actor: Optional[str] = None) -> SaveResult:
        if not (order.order_number or "").strip():
            raise ValidationError("Missing job order number")

        billing = order.billing
        billing.discount = min(billing.discount, billing.total_amount)
        billing.net_amount = quantize_money(billing.total_amount - billing.discount)
        billing.balance_due = quantize_money(max(ZERO, billing.net_amount - billing.amount_paid))

        stored = order.model_copy(deep=True)
        stored.status = work_label_to_enum(order.work_status)
        stored.payment_status = payment_label_to_enum(order.payment_label)
        if stored.id is None:
            stored.id = uuid4()
            stored.created_by = normalize_identity(actor) or None
        elif stored.id not in self.orders:
            raise NotFoundError("Job order not found", order_id=str(stored.id))

        self.orders[stored.id] = stored
        self.upsert_count += 1
        return SaveResult(id=stored.id, order_number=stored.order_number)

    async def update_payment_summary(
        self,
        order_id: UUID,
        amount_paid: Decimal,
        balance_due: Decimal,
        payment_status: PaymentStatus,
        payment_label: str,
    ) -> None:
        stored = self.orders.get(order_id)
        if stored is None:
            raise NotFoundError("Job order not found", order_id=str(order_id))
        stored.billing.amount_paid = quantize_money(amount_paid)
        stored.billing.balance_due = quantize_money(balance_due)
        stored.payment_status = payment_status
        stored.payment_label = payment_label

    async def get_by_order_number(self, key: str) -> JobOrder:
        cleaned = (key or "").strip()
        for order in self.orders.values():
            if order.order_number == cleaned or str(order.id) == cleaned:
                return order.model_copy(deep=True)
        raise NotFoundError("Job order not found", order_number=cleaned)

    def bounded_limit(self, limit: Optional[int]) -> int:
        if limit is None or limit <= 0:
            return self.list_limit
        return min(limit, self.list_limit)

    def _select(self, predicate, limit: Optional[int]) -> list[JobOrder]:
        matches = [o.model_copy(deep=True) for o in self.orders.values() if predicate(o)]
        return matches[: self.bounded_limit(limit)]

    async def list_by_status_class(
        self, status: WorkStatus, limit: Optional[int] = None
    ) -> list[JobOrder]:
        return self._select(lambda o: o.status == status, limit)

    async def list_by_plate_number(
        self,
        plate_number: str,
        limit: Optional[int] = None,
        status: Optional[WorkStatus] = None,
    ) -> list[JobOrder]:
        plate = (plate_number or "").strip().upper()
        if not plate:
            raise ValidationError("Plate number is required")
        return self._select(
            lambda o: (o.plate_number or "").upper() == plate
            and (status is None or o.status == status),
            limit,
        )

    async def list_completed_by_plate_number(
        self, plate_number: str, limit: Optional[int] = None
    ) -> list[JobOrder]:
        return await self.list_by_plate_number(plate_number, limit, WorkStatus.COMPLETED)

    async def list_exit_permit_candidates(self, limit: Optional[int] = None) -> list[JobOrder]:
        return self._select(
            lambda o: o.status in {WorkStatus.READY, WorkStatus.CANCELLED}
            and o.exit_permit_status != ExitPermitStatus.APPROVED,
            limit,
        )


class InMemoryApprovalRepository:
    """Approval request repository keyed by the deterministic request id."""

    def __init__(self) -> None:
        self.rows: dict[str, ApprovalRequestView] = {}

    async def upsert_pending(
        self,
        job_order_id: UUID,
        order_number: str,
        service_id: str,
        service_name: str,
        price: Decimal,
        requested_action: str,
        requested_by: str,
        requested_at: datetime,
    ) -> ApprovalRequestView:
        request_id = approval_request_id(job_order_id, service_id)
        view = ApprovalRequestView(
            id=request_id,
            job_order_id=job_order_id,
            order_number=order_number,
            service_id=service_id,
            service_name=service_name,
            price=price,
            requested_action=requested_action,
            requested_by=requested_by,
            requested_at=requested_at,
            status=ApprovalStatus.PENDING,
        )
        self.rows[request_id] = view
        return view.model_copy()

    async def get(self, request_id: str) -> ApprovalRequestView:
        if request_id not in self.rows:
            raise NotFoundError("Approval request not found", request_id=request_id)
        return self.rows[request_id].model_copy()

    async def record_decision(
        self,
        request_id: str,
        status: ApprovalStatus,
        decided_by: str,
        decided_at: datetime,
        note: Optional[str] = None,
    ) -> ApprovalRequestView:
        current = await self.get(request_id)
        decided = current.model_copy(
            update={
                "status": status,
                "decided_by": decided_by,
                "decided_at": decided_at,
                "decision_note": note,
            }
        )
        self.rows[request_id] = decided
        return decided.model_copy()

    async def list_pending(self, limit: Optional[int] = None) -> list[ApprovalRequestView]:
        pending = [r for r in self.rows.values() if r.status == ApprovalStatus.PENDING]
        return sorted(pending, key=lambda r: r.requested_at, reverse=True)

    async def list_for_order(
        self, job_order_id: UUID, limit: Optional[int] = None
    ) -> list[ApprovalRequestView]:
        rows = [r for r in self.rows.values() if r.job_order_id == job_order_id]
        return sorted(rows, key=lambda r: r.requested_at, reverse=True)


class InMemoryPaymentRepository:
    """Payment row repository exposing the record/adjust/delete primitives."""

    def __init__(self, clock: Callable[[], datetime]):
        self.rows: dict[UUID, PaymentEntry] = {}
        self._clock = clock

    async def record_payment(
        self,
        job_order_id: UUID,
        amount: Decimal,
        method: Optional[str] = None,
        reference: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PaymentEntry:
        now = self._clock()
        entry = PaymentEntry(
            id=uuid4(),
            job_order_id=job_order_id,
            amount=quantize_money(amount),
            method=method,
            reference=reference,
            paid_at=paid_at or now,
            notes=notes,
            created_by=normalize_identity(created_by) or None,
            created_at=now,
        )
        self.rows[entry.id] = entry
        return entry

    async def adjust_payment(self, payment_id: UUID, new_amount: Decimal) -> None:
        if payment_id not in self.rows:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))
        self.rows[payment_id] = self.rows[payment_id].model_copy(
            update={"amount": quantize_money(new_amount)}
        )

    async def delete_payment(self, payment_id: UUID) -> None:
        if self.rows.pop(payment_id, None) is None:
            raise NotFoundError("Payment not found", payment_id=str(payment_id))

    async def list_payments(self, job_order_id: UUID) -> list[PaymentEntry]:
        return newest_first(r for r in self.rows.values() if r.job_order_id == job_order_id)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def test_client() -> Generator[TestClient, None, None]:
    """
    Create a synchronous test client for FastAPI application.

    Yields:
        TestClient: Synchronous test client for FastAPI app

    Example:
        def test_health_endpoint(test_client):
            response = test_client.get("/health")
            assert response.status_code == 200
    """
    with TestClient(app) as client:
        yield client


@pytest_asyncio.fixture(scope="function")
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous test client for FastAPI application.

    Yields:
        AsyncClient: Asynchronous test client for FastAPI app
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture(autouse=True)
def reset_app_state() -> Generator[None, None, None]:
    """
    Reset application state between tests.

    Dependency overrides installed by a test never leak into the next one.
    """
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting 2024-05-01 09:00 UTC, one minute per reading."""
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    """Manually advanced monotonic clock for cache expiry tests."""
    return FakeMonotonic()


@pytest.fixture
def directory_cache(monotonic: FakeMonotonic) -> InMemoryCache:
    """In-memory stand-in for the Redis directory cache."""
    return InMemoryCache(monotonic)


@pytest.fixture
def directory_entries() -> list[DirectoryEntry]:
    """Staff directory used by the lookup service fixture."""
    return [
        DirectoryEntry(
            email="advisor@garage.com",
            username="advisor",
            display_name="Ada Advisor",
        ),
        DirectoryEntry(
            email="tech@garage.com",
            username="tech",
            display_name="Tom Technician",
        ),
    ]


@pytest.fixture
def directory_service(
    directory_entries: list[DirectoryEntry], directory_cache: InMemoryCache
) -> DirectoryLookupService:
    """Directory lookup service backed by the static fixture entries."""

    async def loader() -> list[DirectoryEntry]:
        return directory_entries

    return DirectoryLookupService(loader=loader, ttl_seconds=300, cache=directory_cache)


@pytest.fixture
def job_order_repository() -> InMemoryJobOrderRepository:
    """In-memory job order repository."""
    return InMemoryJobOrderRepository()


@pytest.fixture
def approval_repository() -> InMemoryApprovalRepository:
    """In-memory approval request repository."""
    return InMemoryApprovalRepository()


@pytest.fixture
def payment_repository(clock: FakeClock) -> InMemoryPaymentRepository:
    """In-memory payment repository sharing the test clock."""
    return InMemoryPaymentRepository(clock)


@pytest.fixture
def job_order_service(
    job_order_repository: InMemoryJobOrderRepository,
    approval_repository: InMemoryApprovalRepository,
    directory_service: DirectoryLookupService,
    clock: FakeClock,
) -> JobOrderService:
    """
    JobOrderService wired to the in-memory repositories.

    Returns:
        JobOrderService: Service instance for testing
    """
    return JobOrderService(
        repository=job_order_repository,
        approvals=ServiceApprovalWorkflow(approval_repository, clock=clock),
        directory=directory_service,
        clock=clock,
    )


@pytest.fixture
def payment_service(
    job_order_repository: InMemoryJobOrderRepository,
    payment_repository: InMemoryPaymentRepository,
) -> PaymentService:
    """PaymentService sharing the job order repository with job_order_service."""
    return PaymentService(job_order_repository, payment_repository)


@pytest.fixture
def save_request() -> Callable[..., JobOrderSaveRequest]:
    """
    Factory for job order save requests.

    The default order has two service lines totalling 1500.00.

    Example:
        request = save_request(customer_name="Jane Doe")
    """

    def _make(**overrides) -> JobOrderSaveRequest:
        data = {
            "order_number": "JO-20240501-TEST",
            "customer_name": "Jane Doe",
            "customer_phone": "0501234567",
            "plate_number": "abc 123",
            "services": [
                {"name": "Oil Change", "price": "250.00"},
                {"name": "Brake Pads", "price": "1250.00"},
            ],
        }
        data.update(overrides)
        return JobOrderSaveRequest(**data)

    return _make
