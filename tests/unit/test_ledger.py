"""
Unit tests for ledger entries and the payment ledger.

Tests cover:
1. Status derivation
2. Payment recording (partial, full, overpayment, corrections)
3. Delay and grace-period evaluation
4. Grace extensions
"""

from datetime import datetime, timedelta, timezone

import pytest

from chitfund.core.errors import ExceedsOutstanding, InvalidAmount, InvalidState, ValidationError
from chitfund.core.ledger import (
    LedgerEntry,
    PaymentLedger,
    PaymentMethod,
    PaymentStatus,
    derive_status,
)

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def day(n: int) -> datetime:
    """Midnight UTC on January n, 2024."""
    return JAN_1 + timedelta(days=n - 1)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def ledger():
    return PaymentLedger()


@pytest.fixture
def entry(ledger):
    """Entry due Jan 1 with a 3-day grace period and 8,889 due."""
    return ledger.open_entry(
        group_id="g1",
        member_id="m1",
        member_name="Asha",
        period_number=1,
        due_date=JAN_1,
        grace_period_days=3,
        base_amount=10_000,
        dividend_received=1_111,
    )


# =============================================================================
# Status derivation
# =============================================================================


class TestDeriveStatus:
    """Status is a pure function of amounts and dates."""

    def test_pending_within_grace(self):
        assert derive_status(0, 100, day(3), JAN_1, 3) == PaymentStatus.PENDING

    def test_overdue_after_grace(self):
        assert derive_status(0, 100, day(5), JAN_1, 3) == PaymentStatus.OVERDUE

    def test_partial(self):
        assert derive_status(40, 100, day(10), JAN_1, 3) == PaymentStatus.PARTIAL

    def test_paid(self):
        assert derive_status(100, 100, day(10), JAN_1, 3) == PaymentStatus.PAID

    def test_nothing_due_is_paid(self):
        assert derive_status(0, 0, day(10), JAN_1, 3) == PaymentStatus.PAID


class TestOpenEntry:

    def test_amounts(self, entry):
        assert entry.due_amount == 8_889
        assert entry.outstanding_balance == 8_889
        assert entry.status == PaymentStatus.PENDING
        assert entry.entry_id == "g1:m1:1"

    def test_dividend_covering_contribution(self, ledger):
        entry = ledger.open_entry("g1", "m1", "Asha", 1, JAN_1, 3, 1_000, 1_500)

        assert entry.due_amount == 0
        assert entry.status == PaymentStatus.PAID
        assert entry.on_time


# =============================================================================
# Payments
# =============================================================================


class TestRecordPayment:
    """Tests for applying payments."""

    def test_full_payment_on_time(self, ledger, entry):
        outcome = ledger.record_payment(entry, 8_889, "UPI", JAN_1)

        assert outcome.fully_paid
        assert entry.status == PaymentStatus.PAID
        assert entry.outstanding_balance == 0
        assert entry.paid_date == JAN_1
        assert entry.on_time
        assert entry.payment_method == PaymentMethod.UPI

    def test_partial_then_full(self, ledger, entry):
        ledger.record_payment(entry, 3_000, PaymentMethod.CASH, day(2))
        assert entry.status == PaymentStatus.PARTIAL
        assert entry.outstanding_balance == 5_889

        ledger.record_payment(entry, 5_889, PaymentMethod.CASH, day(2))
        assert entry.status == PaymentStatus.PAID
        assert len(entry.partial_payments) == 2
        assert not entry.on_time

    def test_outstanding_invariant(self, ledger, entry):
        for amount in (1_000, 2_500, 889):
            ledger.record_payment(entry, amount, "Cash", JAN_1)
            assert entry.outstanding_balance == max(0, entry.due_amount - entry.paid_amount)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount(self, ledger, entry, amount):
        with pytest.raises(InvalidAmount):
            ledger.record_payment(entry, amount, "Cash", JAN_1)
        assert entry.paid_amount == 0

    def test_unknown_method(self, ledger, entry):
        with pytest.raises(ValidationError):
            ledger.record_payment(entry, 100, "Bitcoin", JAN_1)

    def test_exceeds_outstanding_on_partial_entry(self, ledger, entry):
        """Overpaying a Partial entry is rejected."""
        ledger.record_payment(entry, 8_000, "Cash", JAN_1)

        with pytest.raises(ExceedsOutstanding):
            ledger.record_payment(entry, 1_000, "Cash", JAN_1)
        assert entry.paid_amount == 8_000
        assert entry.status == PaymentStatus.PARTIAL

    def test_correction_on_paid_entry(self, ledger, entry):
        """Paying a settled entry only updates its details."""
        ledger.record_payment(entry, 8_889, "Cash", JAN_1)

        outcome = ledger.record_payment(
            entry, 5_000, "Bank Transfer", day(3), reference="NEFT-42", notes="fixed method"
        )

        assert outcome.metadata_only
        assert outcome.applied_amount == 0
        assert entry.paid_amount == 8_889
        assert entry.payment_method == PaymentMethod.BANK_TRANSFER
        assert entry.reference == "NEFT-42"
        assert "fixed method" in entry.notes


# =============================================================================
# Delay
# =============================================================================


class TestDelay:
    """Tests for grace-period and delay evaluation."""

    def test_paid_within_grace(self, ledger, entry):
        ledger.record_payment(entry, 8_889, "Cash", day(3))

        assert not entry.on_time
        assert entry.grace_period_used
        assert entry.delay_days == 0

    def test_paid_after_grace(self, ledger, entry):
        ledger.record_payment(entry, 8_889, "Cash", day(6))

        assert entry.grace_period_used
        assert entry.delay_days == 2

    def test_partial_delay_rounds_up(self, ledger, entry):
        assessment = ledger.compute_delay(entry, day(4) + timedelta(hours=1))
        assert assessment.delay_days == 1

    def test_unpaid_becomes_overdue(self, ledger, entry):
        status = ledger.refresh(entry, day(8))

        assert status == PaymentStatus.OVERDUE
        assert entry.delay_days == 4

    def test_refresh_leaves_paid_alone(self, ledger, entry):
        ledger.record_payment(entry, 8_889, "Cash", JAN_1)
        assert ledger.refresh(entry, day(30)) == PaymentStatus.PAID
        assert entry.delay_days == 0


class TestExtendGrace:

    def test_extend(self, ledger, entry):
        ledger.extend_grace(entry, 4, "medical emergency", day(2), extended_by="admin")

        assert entry.grace_period_days == 7
        assert entry.grace_end == day(8)
        assert "medical emergency" in entry.notes[-1]

    def test_extension_clears_overdue(self, ledger, entry):
        ledger.refresh(entry, day(6))
        assert entry.status == PaymentStatus.OVERDUE

        ledger.extend_grace(entry, 5, None, day(6))
        assert entry.status == PaymentStatus.PENDING
        assert entry.delay_days == 0

    def test_extend_paid_entry_rejected(self, ledger, entry):
        ledger.record_payment(entry, 8_889, "Cash", JAN_1)

        with pytest.raises(InvalidState):
            ledger.extend_grace(entry, 2, "late", day(2))

    def test_extension_must_be_positive(self, ledger, entry):
        with pytest.raises(ValidationError):
            ledger.extend_grace(entry, 0, "none", day(2))


def test_entry_roundtrip(ledger, entry):
    ledger.record_payment(entry, 1_000, "Cheque", day(2), reference="CHQ-1")
    assert LedgerEntry.from_dict(entry.to_dict()) == entry
