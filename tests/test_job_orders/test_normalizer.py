"""
Tests for the job order status normalizer.

Covers work and payment status derivation precedence, label/enum mapping,
stable service ids, and reconstitution of loosely shaped store records.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from autoservice.schemas.job_orders import RawJobOrderRecord
from autoservice.services.job_orders.enums import (
    ExitPermitStatus,
    PaymentStatus,
    QualityCheckStatus,
    StepStatus,
    WorkStatus,
)
from autoservice.services.job_orders.normalizer import (
    NOT_ASSIGNED,
    derive_payment_status,
    derive_work_status,
    normalize_record,
    normalize_services,
    payment_enum_for_amounts,
    payment_label_to_enum,
    same_status,
    stable_service_id,
    to_decimal,
    work_label_to_enum,
)


# ============================================================================
# Work status
# ============================================================================


class TestDeriveWorkStatus:
    """Test suite for work status display derivation."""

    @pytest.mark.parametrize(
        "enum,expected",
        [
            ("OPEN", "New Request"),
            ("in_progress", "Inprogress"),
            ("READY", "Ready"),
            ("COMPLETED", "Completed"),
            ("cancelled", "Cancelled"),
            ("DRAFT", "Draft"),
        ],
    )
    def test_enum_maps_to_label(self, enum, expected):
        assert derive_work_status(enum, None) == expected

    def test_label_wins_verbatim(self):
        """A non-empty label wins over the enum, with whitespace collapsed."""
        assert derive_work_status("OPEN", "  Quality   Check ") == "Quality Check"

    @pytest.mark.parametrize("enum", [None, "", "SOMETHING_ELSE"])
    def test_unknown_enum_reads_as_inprogress(self, enum):
        assert derive_work_status(enum, "   ") == "Inprogress"


class TestWorkLabelToEnum:
    """Test suite for mapping display labels back to persisted enums."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("New Request", WorkStatus.OPEN),
            ("Inspection", WorkStatus.IN_PROGRESS),
            ("Inprogress", WorkStatus.IN_PROGRESS),
            ("Quality Check", WorkStatus.READY),
            ("Ready", WorkStatus.READY),
            ("Completed", WorkStatus.COMPLETED),
            ("Canceled", WorkStatus.CANCELLED),
            ("READY", WorkStatus.READY),
            ("gibberish", WorkStatus.OPEN),
        ],
    )
    def test_label_maps_to_enum(self, label, expected):
        assert work_label_to_enum(label) == expected

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Fully Paid", PaymentStatus.PAID),
            ("partially paid", PaymentStatus.PARTIAL),
            ("Fully Refunded", PaymentStatus.UNPAID),
            (None, PaymentStatus.UNPAID),
        ],
    )
    def test_payment_label_maps_to_enum(self, label, expected):
        assert payment_label_to_enum(label) == expected


# ============================================================================
# Payment status
# ============================================================================


class TestDerivePaymentStatus:
    """
    Test suite for payment status derivation.

    Precedence is refund label, then known enum, then amounts, then label.
    """

    def test_refund_label_wins_over_everything(self):
        assert (
            derive_payment_status("PAID", "Fully refunded", total=100, paid=100)
            == "Fully Refunded"
        )

    def test_known_enum_wins_over_amounts(self):
        assert derive_payment_status("PARTIAL", None, total=100, paid=100, balance=0) == (
            "Partially Paid"
        )

    def test_balance_within_a_cent_is_fully_paid(self):
        assert derive_payment_status(None, None, total=100, paid=0, balance="0.01") == (
            "Fully Paid"
        )

    def test_paid_within_a_cent_of_total_is_fully_paid(self):
        assert derive_payment_status(None, None, total="250.00", paid="249.99") == "Fully Paid"

    def test_partial_amount(self):
        assert derive_payment_status(None, None, total=250, paid=100) == "Partially Paid"

    def test_zero_paid_is_unpaid(self):
        assert derive_payment_status(None, "Partially Paid", total=250, paid=0) == "Unpaid"

    def test_label_used_when_no_amounts(self):
        assert derive_payment_status("bogus", "Awaiting Insurer") == "Awaiting Insurer"

    def test_defaults_to_unpaid(self):
        assert derive_payment_status(None, None) == "Unpaid"

    @pytest.mark.parametrize(
        "net,paid,expected",
        [
            (Decimal("100.00"), Decimal("100.00"), PaymentStatus.PAID),
            (Decimal("100.00"), Decimal("99.99"), PaymentStatus.PAID),
            (Decimal("100.00"), Decimal("40.00"), PaymentStatus.PARTIAL),
            (Decimal("100.00"), Decimal("0.00"), PaymentStatus.UNPAID),
        ],
    )
    def test_payment_enum_for_amounts(self, net, paid, expected):
        assert payment_enum_for_amounts(net, paid) == expected


# ============================================================================
# Scalars
# ============================================================================


class TestScalars:
    """Test suite for scalar coercion helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("12.50", Decimal("12.50")),
            (7, Decimal("7")),
            (" 3 ", Decimal("3")),
            ("abc", Decimal("0.00")),
            ("NaN", Decimal("0.00")),
            (None, Decimal("0.00")),
            (True, Decimal("0.00")),
        ],
    )
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    def test_stable_service_id_keeps_existing_id(self):
        assert stable_service_id("JO-1", " svc-9 ", 0, "Oil") == "svc-9"

    def test_stable_service_id_is_deterministic(self):
        first = stable_service_id("JO-20240501-TEST", None, 1, "Brake Pads (Front)")
        second = stable_service_id("JO-20240501-TEST", None, 1, "Brake Pads (Front)")

        assert first == second == "SVC-JO-20240501-TEST-2-brake-pads-front"

    def test_stable_service_id_without_name(self):
        assert stable_service_id("JO-1", None, 0, "!!!") == "SVC-JO-1-1"

    def test_same_status_ignores_case_and_spaces(self):
        assert same_status("In Progress", "inprogress")
        assert not same_status("Ready", "Completed")


# ============================================================================
# Record reconstitution
# ============================================================================


class TestNormalizeRecord:
    """Test suite for turning raw store records into aggregates."""

    def test_empty_record_gets_defaults(self):
        """A record with nothing in it still yields a complete aggregate."""
        order = normalize_record(RawJobOrderRecord())

        assert order.order_number == ""
        assert order.work_status == "Inprogress"
        # zero balance reads as settled
        assert order.payment_label == "Fully Paid"
        assert order.services == []
        assert order.billing.net_amount == Decimal("0")
        assert order.exit_permit is None
        assert order.exit_permit_status == ExitPermitStatus.NOT_REQUIRED

    def test_unreadable_payload_is_ignored(self):
        order = normalize_record(
            RawJobOrderRecord(order_number="JO-1", status="OPEN", data_json="{not json")
        )

        assert order.work_status == "New Request"
        assert order.services == []

    def test_bad_id_becomes_none(self):
        order = normalize_record(RawJobOrderRecord(id="not-a-uuid", order_number="JO-1"))

        assert order.id is None

    def test_full_record(self):
        """Columns win over the payload snapshot; nested fields use fallbacks."""
        order_id = uuid4()
        payload = {
            "services": [
                {"name": "Oil Change", "price": "250", "status": "in progress"},
                {"price": "oops", "assignedTo": " Tech@Garage.com "},
                "not-a-dict",
            ],
            "roadmap": [
                {"step": "New Request", "stepStatus": "Completed", "actionBy": "advisor"},
                {"name": "Inspection", "step_status": "active"},
                {"stepStatus": "Active"},
            ],
            "documents": ["uploads/jo-1/invoice.pdf", {"url": "uploads/jo-1/photo.jpg"}],
            "billing": {"totalAmount": "999", "paymentMethod": "Card", "billId": "B-1"},
            "exit_permit": {
                "permit_id": "PERMIT-2024-000001",
                "collected_by": "Jane",
                "mobile": "0501234567",
                "next_service_date": "2024-11-01",
                "created_at": "2024-05-01T12:00:00Z",
            },
        }
        record = RawJobOrderRecord(
            id=str(order_id),
            order_number="JO-1",
            status="IN_PROGRESS",
            payment_status="PARTIAL",
            total_amount="250.00",
            discount="0",
            amount_paid="100.00",
            exit_permit_status="Created",
            data_json=json.dumps(payload),
        )

        order = normalize_record(record)

        assert order.id == order_id
        assert order.status == WorkStatus.IN_PROGRESS
        assert order.work_status == "Inprogress"
        assert order.payment_label == "Partially Paid"
        assert order.billing.total_amount == Decimal("250.00")
        assert order.billing.net_amount == Decimal("250.00")
        assert order.billing.balance_due == Decimal("150.00")
        assert order.billing.payment_method == "Card"
        assert order.billing.bill_id == "B-1"

        assert [s.id for s in order.services] == [
            "SVC-JO-1-1-oil-change",
            "SVC-JO-1-2-service",
        ]
        assert order.services[0].status == "Inprogress"
        assert order.services[1].name == "Service"
        assert order.services[1].price == Decimal("0.00")
        assert order.services[1].assigned_to == "tech@garage.com"

        assert [s.step for s in order.roadmap] == ["New Request", "Inspection"]
        assert order.roadmap[0].step_status == StepStatus.COMPLETED
        assert order.roadmap[1].step_status == StepStatus.ACTIVE
        assert order.roadmap[1].action_by == NOT_ASSIGNED

        assert [d.path for d in order.documents] == [
            "uploads/jo-1/invoice.pdf",
            "uploads/jo-1/photo.jpg",
        ]
        assert order.exit_permit.permit_id == "PERMIT-2024-000001"
        assert order.exit_permit.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert order.exit_permit_status == ExitPermitStatus.APPROVED

    def test_payment_status_falls_back_to_amounts(self):
        record = RawJobOrderRecord(
            order_number="JO-1",
            total_amount="100",
            amount_paid="100",
            balance_due="0",
        )

        order = normalize_record(record)

        assert order.payment_label == "Fully Paid"
        assert order.payment_status == PaymentStatus.PAID

    def test_services_keep_stored_order(self):
        services = normalize_services(
            "JO-1",
            [{"id": "a", "order": 3, "name": "A"}, {"id": "b", "order": 0, "name": "B"}],
        )

        assert [s.order for s in services] == [3, 2]

    def test_services_keep_status_held_before_request(self):
        services = normalize_services(
            "JO-1",
            [{"name": "A", "status": "Pending Approval", "previousStatus": "Completed"}],
        )

        assert services[0].previous_status == "Completed"

    def test_quality_check_record(self):
        payload = {
            "quality_check": {
                "status": "failed",
                "checkedAt": "2024-05-01T15:30:00Z",
                "checked_by": " Supervisor@Garage.com ",
                "notes": "  Brake noise ",
            }
        }

        record = RawJobOrderRecord(order_number="JO-1", data_json=json.dumps(payload))

        order = normalize_record(record)

        assert order.quality_check.status == QualityCheckStatus.FAILED
        assert order.quality_check.checked_at == datetime(2024, 5, 1, 15, 30, tzinfo=timezone.utc)
        assert order.quality_check.checked_by == "supervisor@garage.com"
        assert order.quality_check.notes == "Brake noise"

    def test_quality_check_from_flat_keys(self):
        """Older payloads keep the quality check as loose top-level keys."""
        payload = {"qualityCheckStatus": "Passed", "qualityCheckedBy": "qc"}

        record = RawJobOrderRecord(order_number="JO-1", data_json=json.dumps(payload))

        order = normalize_record(record)

        assert order.quality_check.status == QualityCheckStatus.PASSED
        assert order.quality_check.checked_by == "qc"
        assert order.quality_check.checked_at is None
        assert order.quality_check.notes is None

    def test_missing_quality_check_is_none(self):
        order = normalize_record(RawJobOrderRecord(order_number="JO-1", data_json="{}"))

        assert order.quality_check is None
