"""Status normalizer for raw job order records.

This module is the single boundary between loosely shaped store records and
the rest of the engine. It derives the canonical work and payment display
statuses from enums, human labels and amounts, maps display labels back to
persisted enums, and reconstitutes the nested services, billing and roadmap
with fallback defaults. Nothing in here raises on bad data: every function
degrades to a sensible default instead.
"""

import json
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional
from uuid import UUID

from autoservice.core.logging import get_logger
from autoservice.schemas.job_orders import (
    Billing,
    DocumentRef,
    ExitPermit,
    JobOrder,
    QualityCheckRecord,
    RawJobOrderRecord,
    RoadmapStep,
    ServiceLineItem,
)
from autoservice.services.job_orders.enums import (
    ExitPermitStatus,
    PaymentLabel,
    PaymentStatus,
    QualityCheckStatus,
    ServiceStatus,
    StepStatus,
    WorkLabel,
    WorkStatus,
)

logger = get_logger(__name__)

# Amounts within one cent are treated as equal
PAYMENT_EPSILON = Decimal("0.01")
CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

NOT_ASSIGNED = "Not assigned"
SERVICE_SLUG_MAX_LENGTH = 50

_WORK_ENUM_TO_LABEL: dict[WorkStatus, WorkLabel] = {
    WorkStatus.OPEN: WorkLabel.NEW_REQUEST,
    WorkStatus.IN_PROGRESS: WorkLabel.IN_PROGRESS,
    WorkStatus.READY: WorkLabel.READY,
    WorkStatus.COMPLETED: WorkLabel.COMPLETED,
    WorkStatus.CANCELLED: WorkLabel.CANCELLED,
    WorkStatus.DRAFT: WorkLabel.DRAFT,
}

_PAYMENT_ENUM_TO_LABEL: dict[PaymentStatus, PaymentLabel] = {
    PaymentStatus.PAID: PaymentLabel.FULLY_PAID,
    PaymentStatus.PARTIAL: PaymentLabel.PARTIALLY_PAID,
    PaymentStatus.UNPAID: PaymentLabel.UNPAID,
}

# Display label (lowercased, spaces collapsed) -> persisted enum
_WORK_LABEL_TO_ENUM: dict[str, WorkStatus] = {
    "cancelled": WorkStatus.CANCELLED,
    "canceled": WorkStatus.CANCELLED,
    "completed": WorkStatus.COMPLETED,
    "ready": WorkStatus.READY,
    "quality check": WorkStatus.READY,
    "inprogress": WorkStatus.IN_PROGRESS,
    "in progress": WorkStatus.IN_PROGRESS,
    "inspection": WorkStatus.IN_PROGRESS,
    "service operation": WorkStatus.IN_PROGRESS,
    "draft": WorkStatus.DRAFT,
    "new request": WorkStatus.OPEN,
}

_PAYMENT_LABEL_TO_ENUM: dict[str, PaymentStatus] = {
    "paid": PaymentStatus.PAID,
    "fully paid": PaymentStatus.PAID,
    "partial": PaymentStatus.PARTIAL,
    "partially paid": PaymentStatus.PARTIAL,
}


# ---------------------------------------------------------------------------
# Scalars
# ---------------------------------------------------------------------------


def to_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """Coerce a loosely typed amount to Decimal.

    Args:
        value: int, float, str, Decimal or None
        default: Returned for missing, malformed or non-finite input

    Returns:
        Decimal value or ``default``
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not amount.is_finite():
        return default
    return amount


def quantize_money(amount: Decimal) -> Decimal:
    """Round an amount to cents."""
    return amount.quantize(CENTS)


def normalize_identity(value: Optional[str]) -> str:
    """Trim and lowercase an actor identity; None becomes an empty string."""
    return (value or "").strip().lower()


def _clean_label(label: Optional[str]) -> str:
    return " ".join((label or "").split())


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug[:SERVICE_SLUG_MAX_LENGTH]


def stable_service_id(
    order_number: str, raw_id: Optional[str], index: int, name: Optional[str]
) -> str:
    """Derive a deterministic service line id.

    Args:
        order_number: Owning order number
        raw_id: Id already stored on the line, kept when present
        index: Zero-based position of the line when it was first seen
        name: Service name

    Returns:
        ``raw_id`` or ``SVC-{orderNumber}-{index+1}-{slug(name)}``
    """
    if raw_id and str(raw_id).strip():
        return str(raw_id).strip()
    slug = _slugify(name or "")
    base = f"SVC-{order_number}-{index + 1}"
    return f"{base}-{slug}" if slug else base


# ---------------------------------------------------------------------------
# Status derivation
# ---------------------------------------------------------------------------


def derive_work_status(enum: Optional[str], label: Optional[str]) -> str:
    """Derive the canonical work status display value.

    A non-empty label wins verbatim; otherwise the persisted enum is mapped
    through the fixed table. Unknown enums read as "Inprogress".

    Args:
        enum: Persisted work status enum value (any case)
        label: Optional human-entered status label

    Returns:
        Work status display string
    """
    cleaned = _clean_label(label)
    if cleaned:
        return cleaned
    status = WorkStatus.from_string(enum)
    if status is None:
        return WorkLabel.IN_PROGRESS.value
    return _WORK_ENUM_TO_LABEL[status].value


def derive_payment_status(
    enum: Optional[str],
    label: Optional[str],
    total: Any = None,
    paid: Any = None,
    balance: Any = None,
) -> str:
    """Derive the canonical payment status display value.

    Precedence:
    1. a label mentioning "refund" -> "Fully Refunded"
    2. a known enum (PAID / PARTIAL / UNPAID) -> mapped label
    3. amounts: balance <= 0.01 or paid >= total - 0.01 -> "Fully Paid";
       paid > 0.01 -> "Partially Paid"; otherwise "Unpaid"
    4. any non-empty label, else "Unpaid"

    Args:
        enum: Persisted payment status enum value
        label: Optional human-entered payment label
        total: Net amount owed
        paid: Amount paid so far
        balance: Outstanding balance

    Returns:
        Payment status display string
    """
    cleaned = _clean_label(label)
    if "refund" in cleaned.lower():
        return PaymentLabel.FULLY_REFUNDED.value

    status = PaymentStatus.from_string(enum)
    if status is not None:
        return _PAYMENT_ENUM_TO_LABEL[status].value

    total_d = to_decimal(total, None)
    paid_d = to_decimal(paid, None)
    balance_d = to_decimal(balance, None)
    if total_d is not None or paid_d is not None or balance_d is not None:
        paid_v = paid_d if paid_d is not None else ZERO
        if balance_d is not None and balance_d <= PAYMENT_EPSILON:
            return PaymentLabel.FULLY_PAID.value
        if total_d is not None and paid_v >= total_d - PAYMENT_EPSILON:
            return PaymentLabel.FULLY_PAID.value
        if paid_v > PAYMENT_EPSILON:
            return PaymentLabel.PARTIALLY_PAID.value
        return PaymentLabel.UNPAID.value

    return cleaned or PaymentLabel.UNPAID.value


def work_label_to_enum(label: Optional[str]) -> WorkStatus:
    """Map a display work status back to the persisted enum (default OPEN)."""
    key = _clean_label(label).lower()
    if key in _WORK_LABEL_TO_ENUM:
        return _WORK_LABEL_TO_ENUM[key]
    return WorkStatus.from_string(key) or WorkStatus.OPEN


def payment_label_to_enum(label: Optional[str]) -> PaymentStatus:
    """Map a display payment status back to the persisted enum (default UNPAID)."""
    key = _clean_label(label).lower()
    if key in _PAYMENT_LABEL_TO_ENUM:
        return _PAYMENT_LABEL_TO_ENUM[key]
    return PaymentStatus.from_string(key) or PaymentStatus.UNPAID


def payment_enum_for_amounts(net: Decimal, paid: Decimal) -> PaymentStatus:
    """Persisted payment enum for a net amount and the sum paid against it."""
    balance = max(ZERO, net - paid)
    if balance <= PAYMENT_EPSILON:
        return PaymentStatus.PAID
    if paid > ZERO:
        return PaymentStatus.PARTIAL
    return PaymentStatus.UNPAID


def same_status(left: Optional[str], right: Optional[str]) -> bool:
    """Case- and whitespace-insensitive comparison of two status labels."""
    return _clean_label(left).lower().replace(" ", "") == _clean_label(
        right
    ).lower().replace(" ", "")


# ---------------------------------------------------------------------------
# Payload reconstitution
# ---------------------------------------------------------------------------


def _load_payload(data_json: Any) -> dict[str, Any]:
    if isinstance(data_json, dict):
        return data_json
    if isinstance(data_json, (str, bytes)) and data_json:
        try:
            loaded = json.loads(data_json)
        except ValueError:
            logger.warning("Unreadable job order payload ignored")
            return {}
        return loaded if isinstance(loaded, dict) else {}
    return {}


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] not in (None, ""):
            return data[key]
    return None


def _to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def normalize_services(order_number: str, raw_services: Iterable[Any]) -> list[ServiceLineItem]:
    """Reconstitute service lines with fallback defaults.

    Missing ids are derived with ``stable_service_id``; missing names read as
    "Service", missing statuses as "Pending", malformed prices as 0.
    """
    services: list[ServiceLineItem] = []
    for index, raw in enumerate(raw_services):
        if not isinstance(raw, dict):
            continue
        name = str(_pick(raw, "name") or "Service")
        status_value = _pick(raw, "status")
        status = ServiceStatus.from_string(status_value)
        technicians = [str(t) for t in _as_list(raw.get("technicians")) if t]
        price = to_decimal(raw.get("price"))
        position = to_decimal(raw.get("order"), None)
        services.append(
            ServiceLineItem(
                id=stable_service_id(order_number, _pick(raw, "id"), index, name),
                order=int(position) if position is not None and position >= 1 else index + 1,
                name=name,
                price=price if price >= ZERO else ZERO,
                status=status.value if status else str(status_value or ServiceStatus.PENDING.value),
                assigned_to=normalize_identity(_pick(raw, "assigned_to", "assignedTo")) or None,
                technicians=technicians,
                start_time=_to_datetime(_pick(raw, "start_time", "startTime")),
                end_time=_to_datetime(_pick(raw, "end_time", "endTime")),
                requested_action=_pick(raw, "requested_action", "requestedAction"),
                previous_status=_pick(raw, "previous_status", "previousStatus"),
                approval_status=_pick(raw, "approval_status", "approvalStatus"),
                quality_check_result=_pick(raw, "quality_check_result", "qualityCheckResult"),
                notes=_pick(raw, "notes"),
            )
        )
    return services


def normalize_roadmap(raw_steps: Iterable[Any]) -> list[RoadmapStep]:
    """Reconstitute roadmap steps; missing actors read as "Not assigned"."""
    steps: list[RoadmapStep] = []
    for raw in raw_steps:
        if not isinstance(raw, dict):
            continue
        name = _pick(raw, "step", "name")
        if not name:
            continue
        steps.append(
            RoadmapStep(
                step=str(name),
                step_status=StepStatus.from_string(_pick(raw, "step_status", "stepStatus")),
                start_timestamp=_to_datetime(_pick(raw, "start_timestamp", "startTimestamp")),
                end_timestamp=_to_datetime(_pick(raw, "end_timestamp", "endTimestamp")),
                action_by=_pick(raw, "action_by", "actionBy") or NOT_ASSIGNED,
            )
        )
    return steps


def normalize_billing(record: RawJobOrderRecord, payload: dict[str, Any]) -> Billing:
    """Reconstitute billing, preferring row columns over the payload snapshot.

    Net defaults to total - discount; balance defaults to net - paid.
    """
    billing = payload.get("billing") if isinstance(payload.get("billing"), dict) else {}

    def first(column: Any, *keys: str) -> Optional[Decimal]:
        value = to_decimal(column, None)
        if value is None:
            value = to_decimal(_pick(billing, *keys), None)
        return value

    total = first(record.total_amount, "total_amount", "totalAmount") or ZERO
    discount = first(record.discount, "discount") or ZERO
    net = first(record.net_amount, "net_amount", "netAmount")
    if net is None:
        net = max(ZERO, total - discount)
    paid = first(record.amount_paid, "amount_paid", "amountPaid") or ZERO
    balance = first(record.balance_due, "balance_due", "balanceDue")
    if balance is None:
        balance = max(ZERO, net - paid)

    return Billing(
        total_amount=total,
        discount=discount,
        net_amount=net,
        amount_paid=paid,
        balance_due=balance,
        payment_method=_pick(billing, "payment_method", "paymentMethod"),
        bill_id=_pick(billing, "bill_id", "billId"),
    )


def _normalize_documents(raw_documents: Iterable[Any]) -> list[DocumentRef]:
    documents: list[DocumentRef] = []
    for raw in raw_documents:
        if isinstance(raw, str) and raw.strip():
            documents.append(DocumentRef(path=raw.strip()))
        elif isinstance(raw, dict):
            path = _pick(raw, "path", "storagePath", "url")
            if path:
                documents.append(
                    DocumentRef(
                        path=str(path),
                        name=_pick(raw, "name"),
                        category=_pick(raw, "category", "type"),
                        uploaded_by=_pick(raw, "uploaded_by", "uploadedBy"),
                        uploaded_at=_to_datetime(_pick(raw, "uploaded_at", "uploadedAt")),
                    )
                )
    return documents


def _normalize_exit_permit(payload: dict[str, Any]) -> Optional[ExitPermit]:
    raw = payload.get("exit_permit")
    if not isinstance(raw, dict) or not raw.get("permit_id"):
        return None
    created_at = _to_datetime(raw.get("created_at"))
    if created_at is None:
        return None
    next_service = raw.get("next_service_date")
    return ExitPermit(
        permit_id=str(raw["permit_id"]),
        collected_by=str(raw.get("collected_by") or ""),
        mobile=str(raw.get("mobile") or ""),
        next_service_date=next_service or None,
        created_by=raw.get("created_by"),
        created_at=created_at,
    )


def _normalize_quality_check(payload: dict[str, Any]) -> Optional[QualityCheckRecord]:
    raw = payload.get("quality_check")
    if not isinstance(raw, dict):
        # Flat legacy keys written by older clients
        raw = {
            "status": payload.get("qualityCheckStatus"),
            "checked_at": payload.get("qualityCheckDate"),
            "checked_by": payload.get("qualityCheckedBy"),
            "notes": payload.get("qualityCheckNotes"),
        }
    if not any(value not in (None, "") for value in raw.values()):
        return None
    notes = _pick(raw, "notes")
    return QualityCheckRecord(
        status=QualityCheckStatus.normalize(_pick(raw, "status")),
        checked_at=_to_datetime(_pick(raw, "checked_at", "checkedAt", "date")),
        checked_by=normalize_identity(_pick(raw, "checked_by", "checkedBy")) or None,
        notes=str(notes).strip() if notes else None,
    )


def normalize_record(record: RawJobOrderRecord) -> JobOrder:
    """Turn a raw store record into a fully populated job order aggregate.

    Args:
        record: Raw record with any subset of fields populated

    Returns:
        Normalized JobOrder
    """
    payload = _load_payload(record.data_json)
    order_number = (record.order_number or _pick(payload, "order_number") or "").strip()
    billing = normalize_billing(record, payload)

    work_status = derive_work_status(record.status, record.work_status_label)
    payment_label = derive_payment_status(
        record.payment_status,
        record.payment_status_label,
        total=billing.net_amount,
        paid=billing.amount_paid,
        balance=billing.balance_due,
    )

    status = WorkStatus.from_string(record.status) or work_label_to_enum(work_status)
    payment_status = PaymentStatus.from_string(record.payment_status) or (
        payment_label_to_enum(payment_label)
    )

    order_id: Optional[UUID] = None
    if record.id is not None:
        try:
            order_id = record.id if isinstance(record.id, UUID) else UUID(str(record.id))
        except ValueError:
            order_id = None

    return JobOrder(
        id=order_id,
        order_number=order_number,
        order_type=record.order_type,
        customer_id=record.customer_id,
        customer_name=record.customer_name,
        customer_phone=record.customer_phone,
        vehicle_id=record.vehicle_id,
        plate_number=record.plate_number,
        status=status,
        work_status=work_status,
        payment_status=payment_status,
        payment_label=payment_label,
        services=normalize_services(order_number, _as_list(payload.get("services"))),
        roadmap=normalize_roadmap(_as_list(payload.get("roadmap"))),
        documents=_normalize_documents(_as_list(payload.get("documents"))),
        billing=billing,
        exit_permit=_normalize_exit_permit(payload),
        exit_permit_status=ExitPermitStatus.normalize(record.exit_permit_status),
        quality_check=_normalize_quality_check(payload),
        customer_notes=record.customer_notes,
        created_by=record.created_by,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
