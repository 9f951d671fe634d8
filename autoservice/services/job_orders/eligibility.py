"""Eligibility gates for sensitive job order actions.

Pure predicates over normalized statuses and ledger figures. They never
touch the store and never raise; callers turn a False into an
``EligibilityError``.
"""

from decimal import Decimal
from typing import Iterable, Optional

from autoservice.services.job_orders.enums import PaymentLabel, WorkLabel

_TERMINAL_WORK_LABELS = {WorkLabel.COMPLETED.value.lower(), WorkLabel.CANCELLED.value.lower()}


def _norm(value: Optional[str]) -> str:
    return " ".join((value or "").split()).lower()


def is_cancelled(work_status: Optional[str]) -> bool:
    """True for "Cancelled" and the legacy "Canceled" spelling."""
    return _norm(work_status) in {"cancelled", "canceled"}


def is_terminal_work_status(work_status: Optional[str]) -> bool:
    """True when the order is Completed or Cancelled."""
    return _norm(work_status) in _TERMINAL_WORK_LABELS or is_cancelled(work_status)


def exit_permit_eligible(
    work_status: Optional[str],
    payment_status: Optional[str],
    already_created: bool,
) -> bool:
    """Whether an exit permit may be issued.

    Args:
        work_status: Canonical work status display value
        payment_status: Canonical payment status display value
        already_created: Whether a permit already exists for the order

    Returns:
        True for a ready, fully paid order, or a cancelled order that is
        unpaid or refunded; always False once a permit exists
    """
    if already_created:
        return False
    work = _norm(work_status)
    payment = _norm(payment_status)
    if work == WorkLabel.READY.value.lower() and payment == PaymentLabel.FULLY_PAID.value.lower():
        return True
    if is_cancelled(work_status) and (
        payment == PaymentLabel.UNPAID.value.lower() or "refund" in payment
    ):
        return True
    return False


def refund_eligible(work_status: Optional[str], payment_amounts: Iterable[Decimal]) -> bool:
    """Refunds are only allowed on cancelled orders with money paid in."""
    return is_cancelled(work_status) and sum(payment_amounts, Decimal("0")) > 0


def cancel_eligible(work_status: Optional[str]) -> bool:
    """Cancellation is allowed from every non-terminal work status."""
    return not is_terminal_work_status(work_status)
