"""
Tests for the approval request repository with a mocked async session.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from autoservice.core.exceptions import NotFoundError, StoreError
from autoservice.database.models.approval import ServiceApprovalRequest
from autoservice.services.approvals.repository import (
    APPROVAL_ID_MAX_LENGTH,
    ApprovalRepository,
    approval_request_id,
)
from autoservice.services.job_orders.enums import ApprovalStatus

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
ORDER_ID = uuid.uuid4()


@pytest.fixture
def session() -> AsyncMock:
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def repository(session: AsyncMock) -> ApprovalRepository:
    return ApprovalRepository(session)


def _pending_kwargs(**overrides) -> dict:
    values = {
        "job_order_id": ORDER_ID,
        "order_number": "JO-20240501-TEST",
        "service_id": "SVC-1",
        "service_name": "Oil Change",
        "price": Decimal("250.00"),
        "requested_action": "Postponed",
        "requested_by": "tech@garage.com",
        "requested_at": T0,
    }
    values.update(overrides)
    return values


def _row(status: ApprovalStatus = ApprovalStatus.PENDING, **overrides) -> ServiceApprovalRequest:
    values = _pending_kwargs(**overrides)
    return ServiceApprovalRequest(
        id=approval_request_id(values["job_order_id"], values["service_id"]),
        status=status,
        **values,
    )


class TestApprovalRequestId:
    """Test suite for the deterministic request id."""

    def test_format(self):
        assert approval_request_id(ORDER_ID, "SVC-1") == f"APR-{ORDER_ID}-SVC-1"

    def test_truncated_to_column_width(self):
        request_id = approval_request_id(ORDER_ID, "S" * 400)

        assert len(request_id) == APPROVAL_ID_MAX_LENGTH
        assert request_id.startswith(f"APR-{ORDER_ID}-SSS")


class TestUpsertPending:
    """Test suite for creating and resetting pending requests."""

    @pytest.mark.asyncio
    async def test_creates_row(self, repository, session):
        session.get.return_value = None

        view = await repository.upsert_pending(**_pending_kwargs())

        added = session.add.call_args.args[0]
        assert isinstance(added, ServiceApprovalRequest)
        assert added.id == f"APR-{ORDER_ID}-SVC-1"
        assert view.status == ApprovalStatus.PENDING
        assert view.requested_by == "tech@garage.com"
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resets_decided_row(self, repository, session):
        """A decided row goes back to PENDING with its decision cleared."""
        row = _row(ApprovalStatus.REJECTED)
        row.decided_by = "supervisor"
        row.decided_at = T0
        row.decision_note = "No"
        session.get.return_value = row

        view = await repository.upsert_pending(**_pending_kwargs(requested_action="Cancelled"))

        session.add.assert_not_called()
        assert row.status == ApprovalStatus.PENDING
        assert row.requested_action == "Cancelled"
        assert row.decided_by is None
        assert row.decision_note is None
        assert view.decided_at is None

    @pytest.mark.asyncio
    async def test_write_failure(self, repository, session):
        session.get.return_value = None
        session.flush.side_effect = OperationalError("INSERT", {}, Exception("deadlock"))

        with pytest.raises(StoreError, match="deadlock"):
            await repository.upsert_pending(**_pending_kwargs())

        session.rollback.assert_awaited_once()


class TestGetAndDecide:
    """Test suite for loading requests and recording decisions."""

    @pytest.mark.asyncio
    async def test_get(self, repository, session):
        row = _row()
        session.get.return_value = row

        view = await repository.get(row.id)

        assert view.id == row.id
        assert view.price == Decimal("250.00")

    @pytest.mark.asyncio
    async def test_get_missing(self, repository, session):
        session.get.return_value = None

        with pytest.raises(NotFoundError, match="Approval request not found"):
            await repository.get("APR-missing")

    @pytest.mark.asyncio
    async def test_get_failure(self, repository, session):
        session.get.side_effect = OperationalError("SELECT", {}, Exception("timeout"))

        with pytest.raises(StoreError):
            await repository.get("APR-x")

    @pytest.mark.asyncio
    async def test_record_decision(self, repository, session):
        row = _row()
        session.get.return_value = row

        view = await repository.record_decision(
            row.id, ApprovalStatus.APPROVED, "supervisor@garage.com", T0, "Go ahead"
        )

        assert view.status == ApprovalStatus.APPROVED
        assert view.decided_by == "supervisor@garage.com"
        assert view.decision_note == "Go ahead"
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_record_decision_missing(self, repository, session):
        session.get.return_value = None

        with pytest.raises(NotFoundError):
            await repository.record_decision("APR-x", ApprovalStatus.REJECTED, "s", T0)


class TestLists:
    """Test suite for bounded request lists."""

    @pytest.mark.asyncio
    async def test_list_pending(self, repository, session):
        result = MagicMock()
        result.scalars.return_value.all.return_value = [_row(), _row(service_id="SVC-2")]
        session.execute.return_value = result

        views = await repository.list_pending(limit=5)

        assert [v.service_id for v in views] == ["SVC-1", "SVC-2"]
        session.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_for_order_failure(self, repository, session):
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("timeout"))

        with pytest.raises(StoreError, match="Failed to list approval requests") as exc_info:
            await repository.list_for_order(ORDER_ID)

        assert exc_info.value.context["job_order_id"] == str(ORDER_ID)
