"""
Billing ledger for job orders.

This module enforces the money invariants of a job order:

    discount <= min(total, total * ceiling_percent / 100)
    net = total - discount
    balance = max(0, net - paid)

It validates payment amounts, consumes refunds newest payment first through
the adjust/delete primitives of a payment store, and recomputes the payment
summary from the payment rows. The discount ceiling percent is always an
input; the ledger never looks up roles or settings.
"""

from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any, Iterable, Optional, Protocol

from autoservice.core.exceptions import (
    EligibilityError,
    PartialApplyError,
    ValidationError,
)
from autoservice.core.logging import get_logger
from autoservice.schemas.payments import (
    LedgerTotals,
    PaymentEntry,
    PaymentSummary,
    RefundAction,
    RefundMutation,
)
from autoservice.services.job_orders.normalizer import (
    CENTS,
    ZERO,
    derive_payment_status,
    payment_enum_for_amounts,
    quantize_money,
    to_decimal,
)

logger = get_logger(__name__)

REFUND_TOLERANCE = Decimal("0.00001")
DISCOUNT_TOLERANCE = Decimal("0.00001")
HUNDRED = Decimal("100")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PaymentStore(Protocol):
    """Payment primitives the refund algorithm is written against."""

    async def adjust_payment(self, payment_id: Any, new_amount: Decimal) -> None: ...

    async def delete_payment(self, payment_id: Any) -> None: ...


def _clamp_percent(ceiling_percent: Any) -> Decimal:
    pct = to_decimal(ceiling_percent, ZERO)
    return min(HUNDRED, max(ZERO, pct))


def _money(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, None)
    if amount is None:
        raise ValidationError(f"Malformed monetary value for {field}", field=field, value=value)
    return amount


def max_discount(total: Any, ceiling_percent: Any) -> Decimal:
    """
    Largest discount the ceiling allows on a total.

    Args:
        total: Order total amount
        ceiling_percent: Role ceiling, clamped to [0, 100]

    Returns:
        min(total, total * pct / 100), rounded down to cents
    """
    total_d = max(ZERO, to_decimal(total, ZERO))
    allowed = (total_d * _clamp_percent(ceiling_percent) / HUNDRED).quantize(
        CENTS, rounding=ROUND_DOWN
    )
    return min(total_d, allowed)


def clamp_discount(total: Any, discount: Any, ceiling_percent: Any) -> Decimal:
    """Clamp a discount into [0, max_discount(total, ceiling_percent)]."""
    requested = max(ZERO, to_decimal(discount, ZERO))
    return min(requested, max_discount(total, ceiling_percent))


def enforce_discount_ceiling(total: Any, discount: Any, ceiling_percent: Any) -> Decimal:
    """
    Reject a discount above the role ceiling.

    Args:
        total: Order total amount
        discount: Requested discount
        ceiling_percent: Role ceiling percent

    Returns:
        The discount rounded to cents

    Raises:
        ValidationError: If the discount is malformed or negative
        EligibilityError: If the discount exceeds the ceiling
    """
    requested = _money(discount, "discount")
    if requested < ZERO:
        raise ValidationError("Discount cannot be negative", discount=str(requested))

    allowed = max_discount(total, ceiling_percent)
    if requested > allowed + DISCOUNT_TOLERANCE:
        raise EligibilityError(
            "Discount exceeds the allowed ceiling",
            discount=str(requested),
            max_discount=str(allowed),
            ceiling_percent=str(_clamp_percent(ceiling_percent)),
        )
    return quantize_money(requested)


def compute_totals(total: Any, discount: Any, paid: Any) -> LedgerTotals:
    """
    Derive net and balance from total, discount and amount paid.

    Raises:
        ValidationError: If an amount is malformed or negative, or the
            discount exceeds the total
    """
    total_d = _money(total, "total_amount")
    discount_d = _money(discount, "discount")
    paid_d = _money(paid, "amount_paid")
    if total_d < ZERO or discount_d < ZERO or paid_d < ZERO:
        raise ValidationError(
            "Monetary fields must be non-negative",
            total_amount=str(total_d),
            discount=str(discount_d),
            amount_paid=str(paid_d),
        )
    if discount_d > total_d:
        raise ValidationError(
            "Discount cannot exceed the total amount",
            total_amount=str(total_d),
            discount=str(discount_d),
        )

    net = quantize_money(total_d - discount_d)
    return LedgerTotals(
        total_amount=quantize_money(total_d),
        discount=quantize_money(discount_d),
        net_amount=net,
        amount_paid=quantize_money(paid_d),
        balance_due=quantize_money(max(ZERO, net - paid_d)),
    )


def validate_payment_amount(amount: Any) -> Decimal:
    """
    Validate a payment or refund amount.

    Raises:
        ValidationError: If the amount is malformed or not greater than zero
    """
    value = _money(amount, "amount")
    if value <= ZERO:
        raise ValidationError("Amount must be greater than zero", amount=str(value))
    return quantize_money(value)


def newest_first(payments: Iterable[PaymentEntry]) -> list[PaymentEntry]:
    """Order payments by recency: paid_at, then created_at, descending."""
    return sorted(
        payments,
        key=lambda p: (p.paid_at or _EPOCH, p.created_at or _EPOCH),
        reverse=True,
    )


def paid_sum(payments: Iterable[PaymentEntry]) -> Decimal:
    """Sum of payment amounts."""
    return quantize_money(sum((p.amount for p in payments), ZERO))


async def apply_refund(
    store: PaymentStore,
    payments: Iterable[PaymentEntry],
    amount: Any,
) -> list[RefundMutation]:
    """
    Consume a refund from the newest payment backwards.

    For each payment of amount A while the remaining refund R is above
    tolerance: if R < A the row is reduced by R and consumption stops,
    otherwise the row is deleted and R -= A.

    Args:
        store: Payment store exposing adjust/delete primitives
        payments: Current payment rows of the order
        amount: Refund amount

    Returns:
        The mutations applied, in order

    Raises:
        ValidationError: If the amount is not positive
        PartialApplyError: If the payments run out with refund left over;
            mutations already applied are listed in ``context["applied"]``
            and are not rolled back
    """
    remaining = validate_payment_amount(amount)
    applied: list[RefundMutation] = []

    for payment in newest_first(payments):
        if remaining <= REFUND_TOLERANCE:
            break

        current = payment.amount
        if current <= ZERO:
            continue
        if remaining < current - REFUND_TOLERANCE:
            new_amount = quantize_money(current - remaining)
            await store.adjust_payment(payment.id, new_amount)
            applied.append(
                RefundMutation(
                    payment_id=payment.id,
                    action=RefundAction.ADJUSTED,
                    previous_amount=current,
                    new_amount=new_amount,
                )
            )
            remaining = ZERO
            break

        await store.delete_payment(payment.id)
        applied.append(
            RefundMutation(
                payment_id=payment.id,
                action=RefundAction.DELETED,
                previous_amount=current,
            )
        )
        remaining -= current

    if remaining > REFUND_TOLERANCE:
        logger.error(
            "Refund exhausted payment records",
            requested=str(amount),
            remaining=str(remaining),
            applied_count=len(applied),
        )
        raise PartialApplyError(
            "Refund exceeds recorded payments; applied changes were not rolled back",
            requested=str(amount),
            remaining=str(quantize_money(remaining)),
            applied=[m.model_dump(mode="json") for m in applied],
        )

    logger.info(
        "Refund applied",
        requested=str(amount),
        adjusted=sum(1 for m in applied if m.action == RefundAction.ADJUSTED),
        deleted=sum(1 for m in applied if m.action == RefundAction.DELETED),
    )
    return applied


def recompute_summary(
    net_amount: Any,
    payments: Iterable[PaymentEntry],
    label_override: Optional[str] = None,
) -> PaymentSummary:
    """
    Recompute the payment summary of an order from its payment rows.

    Args:
        net_amount: Order net amount
        payments: Payment rows of the order
        label_override: Label to persist instead of the enum's display
            value (used for "Fully Refunded")

    Returns:
        Summary with amount paid, balance, persisted enum and label
    """
    rows = list(payments)
    net = quantize_money(max(ZERO, to_decimal(net_amount, ZERO)))
    paid = paid_sum(rows)
    balance = quantize_money(max(ZERO, net - paid))
    status = payment_enum_for_amounts(net, paid)
    label = label_override or derive_payment_status(status.value, None)
    return PaymentSummary(
        net_amount=net,
        amount_paid=paid,
        balance_due=balance,
        payment_status=status,
        payment_label=label,
        payment_count=len(rows),
    )
