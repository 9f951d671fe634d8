"""
Tests for the billing ledger.

Covers the discount ceiling, the net/balance invariants, payment amount
validation, newest-first refund consumption against a recording store, and
summary recomputation.
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from autoservice.core.exceptions import EligibilityError, PartialApplyError, ValidationError
from autoservice.schemas.payments import PaymentEntry, RefundAction
from autoservice.services.job_orders.enums import PaymentStatus
from autoservice.services.payments.ledger import (
    apply_refund,
    clamp_discount,
    compute_totals,
    enforce_discount_ceiling,
    max_discount,
    newest_first,
    paid_sum,
    recompute_summary,
    validate_payment_amount,
)

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
ORDER_ID = uuid4()


def _payment(amount: str, minutes: int = 0, created_minutes: int = 0) -> PaymentEntry:
    return PaymentEntry(
        id=uuid4(),
        job_order_id=ORDER_ID,
        amount=Decimal(amount),
        paid_at=T0 + timedelta(minutes=minutes),
        created_at=T0 + timedelta(minutes=created_minutes),
    )


class RecordingStore:
    """Payment store that records the primitives called on it."""

    def __init__(self):
        self.calls: list[tuple] = []

    async def adjust_payment(self, payment_id, new_amount):
        self.calls.append(("adjust", payment_id, new_amount))

    async def delete_payment(self, payment_id):
        self.calls.append(("delete", payment_id))


# ============================================================================
# Discounts
# ============================================================================


class TestDiscountCeiling:
    """Test suite for role discount ceilings."""

    @pytest.mark.parametrize(
        "total,ceiling,expected",
        [
            (Decimal("1500"), 10, Decimal("150.00")),
            (Decimal("99.99"), 10, Decimal("9.99")),
            (Decimal("200"), 150, Decimal("200")),
            (Decimal("200"), -5, Decimal("0.00")),
            (Decimal("-10"), 10, Decimal("0.00")),
        ],
    )
    def test_max_discount(self, total, ceiling, expected):
        assert max_discount(total, ceiling) == expected

    def test_clamp_discount(self):
        assert clamp_discount("1500", "200", 10) == Decimal("150.00")
        assert clamp_discount("1500", "50", 10) == Decimal("50")
        assert clamp_discount("1500", "-3", 10) == Decimal("0")

    def test_enforce_accepts_discount_at_ceiling(self):
        assert enforce_discount_ceiling("1500", "150", 10) == Decimal("150.00")

    def test_enforce_rejects_overshoot(self):
        """Overshooting the ceiling is an error, never a silent clamp."""
        with pytest.raises(EligibilityError) as exc_info:
            enforce_discount_ceiling("1500", "150.01", 10)

        assert exc_info.value.context["max_discount"] == "150.00"
        assert exc_info.value.context["ceiling_percent"] == "10"

    def test_enforce_rejects_negative_and_malformed(self):
        with pytest.raises(ValidationError, match="cannot be negative"):
            enforce_discount_ceiling("1500", "-1", 10)
        with pytest.raises(ValidationError, match="Malformed monetary value"):
            enforce_discount_ceiling("1500", "ten", 10)


def _discount_cases(seed: int, count: int) -> list[tuple[Decimal, Decimal, Decimal]]:
    """Seeded (total, discount, ceiling percent) triples, ceilings outside [0, 100] included."""
    rng = random.Random(seed)
    cases = []
    for _ in range(count):
        total = Decimal(rng.randint(0, 5_000_000)) / 100
        discount = Decimal(rng.randint(0, int(total * 200) + 100)) / 100
        ceiling = Decimal(rng.randint(-2_000, 15_000)) / 100
        cases.append((total, discount, ceiling))
    return cases


DISCOUNT_CASES = _discount_cases(seed=20240501, count=200)


class TestDiscountCeilingGrid:
    """Seeded random grid over the discount ceiling bounds."""

    @staticmethod
    def _bound(total: Decimal, ceiling: Decimal) -> Decimal:
        pct = min(Decimal("100"), max(Decimal("0"), ceiling))
        return min(total, total * pct / 100)

    @pytest.mark.parametrize("total,discount,ceiling", DISCOUNT_CASES)
    def test_clamped_discount_stays_within_ceiling(self, total, discount, ceiling):
        clamped = clamp_discount(total, discount, ceiling)

        assert Decimal("0") <= clamped <= self._bound(total, ceiling)
        assert clamped <= discount

    @pytest.mark.parametrize("total,discount,ceiling", DISCOUNT_CASES)
    def test_enforce_rejects_exactly_the_overshoots(self, total, discount, ceiling):
        allowed = max_discount(total, ceiling)

        if discount > allowed + Decimal("0.00001"):
            with pytest.raises(EligibilityError):
                enforce_discount_ceiling(total, discount, ceiling)
        else:
            assert enforce_discount_ceiling(total, discount, ceiling) == discount
            assert discount <= self._bound(total, ceiling)

    @pytest.mark.parametrize("total,_discount,ceiling", DISCOUNT_CASES[:50])
    def test_one_cent_over_the_ceiling_is_rejected(self, total, _discount, ceiling):
        overshoot = max_discount(total, ceiling) + Decimal("0.01")

        with pytest.raises(EligibilityError):
            enforce_discount_ceiling(total, overshoot, ceiling)


# ============================================================================
# Totals
# ============================================================================


class TestComputeTotals:
    """Test suite for net and balance derivation."""

    def test_net_and_balance(self):
        totals = compute_totals("1500", "100", "400")

        assert totals.net_amount == Decimal("1400.00")
        assert totals.balance_due == Decimal("1000.00")
        assert totals.amount_paid == Decimal("400.00")

    def test_overpayment_leaves_zero_balance(self):
        assert compute_totals("100", "0", "150").balance_due == Decimal("0.00")

    def test_discount_above_total_rejected(self):
        with pytest.raises(ValidationError, match="cannot exceed the total"):
            compute_totals("100", "101", "0")

    def test_negative_amounts_rejected(self):
        with pytest.raises(ValidationError, match="non-negative"):
            compute_totals("100", "0", "-1")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None])
    def test_invalid_payment_amounts(self, amount):
        with pytest.raises(ValidationError):
            validate_payment_amount(amount)

    def test_valid_payment_amount_is_rounded_to_cents(self):
        assert validate_payment_amount("25.5") == Decimal("25.50")


# ============================================================================
# Refunds
# ============================================================================


class TestApplyRefund:
    """
    Test suite for newest-first refund consumption.

    Rows: 500.00 paid first, 900.00 paid ten minutes later.
    """

    @pytest.fixture
    def rows(self):
        return [_payment("500.00", minutes=0), _payment("900.00", minutes=10)]

    @pytest.fixture
    def store(self):
        return RecordingStore()

    @pytest.mark.asyncio
    async def test_partial_refund_adjusts_newest_row(self, store, rows):
        older, newer = rows

        mutations = await apply_refund(store, rows, "600")

        assert store.calls == [("adjust", newer.id, Decimal("300.00"))]
        assert len(mutations) == 1
        assert mutations[0].action == RefundAction.ADJUSTED
        assert mutations[0].previous_amount == Decimal("900.00")
        assert mutations[0].new_amount == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_exact_row_amount_deletes_it(self, store, rows):
        _, newer = rows

        mutations = await apply_refund(store, rows, "900")

        assert store.calls == [("delete", newer.id)]
        assert [m.action for m in mutations] == [RefundAction.DELETED]

    @pytest.mark.asyncio
    async def test_refund_spans_rows(self, store, rows):
        older, newer = rows

        await apply_refund(store, rows, "1200")

        assert store.calls == [
            ("delete", newer.id),
            ("adjust", older.id, Decimal("200.00")),
        ]

    @pytest.mark.asyncio
    async def test_full_refund_deletes_everything(self, store, rows):
        older, newer = rows

        mutations = await apply_refund(store, rows, "1400")

        assert store.calls == [("delete", newer.id), ("delete", older.id)]
        assert all(m.action == RefundAction.DELETED for m in mutations)

    @pytest.mark.asyncio
    async def test_zero_rows_are_skipped(self, store, rows):
        empty = _payment("0.00", minutes=20)

        await apply_refund(store, rows + [empty], "100")

        assert [call[1] for call in store.calls] == [rows[1].id]

    @pytest.mark.asyncio
    async def test_exhausted_rows_raise_with_applied_mutations(self, store, rows):
        """Applied writes are reported, not rolled back."""
        with pytest.raises(PartialApplyError) as exc_info:
            await apply_refund(store, rows, "2000")

        context = exc_info.value.context
        assert len(store.calls) == 2
        assert context["remaining"] == "600.00"
        assert [m["action"] for m in context["applied"]] == ["deleted", "deleted"]
        assert context["applied"][0]["payment_id"] == str(rows[1].id)

    @pytest.mark.asyncio
    async def test_non_positive_refund_touches_nothing(self, store, rows):
        with pytest.raises(ValidationError):
            await apply_refund(store, rows, "0")

        assert store.calls == []


# ============================================================================
# Ordering and summaries
# ============================================================================


class TestSummary:
    """Test suite for payment ordering and summary recomputation."""

    def test_newest_first_uses_created_at_as_tiebreak(self):
        first = _payment("10", minutes=5, created_minutes=1)
        second = _payment("20", minutes=5, created_minutes=2)
        oldest = _payment("30", minutes=0)

        assert newest_first([oldest, first, second]) == [second, first, oldest]

    def test_paid_sum(self):
        assert paid_sum([_payment("10.10"), _payment("0.90")]) == Decimal("11.00")
        assert paid_sum([]) == Decimal("0.00")

    @pytest.mark.parametrize(
        "amounts,status,label,balance",
        [
            (["500", "900"], PaymentStatus.PAID, "Fully Paid", "0.00"),
            (["500"], PaymentStatus.PARTIAL, "Partially Paid", "900.00"),
            ([], PaymentStatus.UNPAID, "Unpaid", "1400.00"),
            (["2000"], PaymentStatus.PAID, "Fully Paid", "0.00"),
        ],
    )
    def test_recompute_summary(self, amounts, status, label, balance):
        summary = recompute_summary("1400", [_payment(a) for a in amounts])

        assert summary.payment_status == status
        assert summary.payment_label == label
        assert summary.balance_due == Decimal(balance)
        assert summary.payment_count == len(amounts)

    def test_label_override(self):
        summary = recompute_summary("1400", [], label_override="Fully Refunded")

        assert summary.payment_label == "Fully Refunded"
        assert summary.payment_status == PaymentStatus.UNPAID
        assert summary.amount_paid == Decimal("0.00")
