"""
Payment Ledger - recording payments and evaluating delays on ledger entries.

Processing a payment:
--------------------
1. Validate amount (> 0) and method
2. Fully paid entry: apply as a metadata-only correction (no amount change)
3. Reject amounts above the outstanding balance
4. Apply: paid += amount, log the event, recompute balance and status
5. Evaluate delay at the payment instant; stamp paid date / on-time flag
   once nothing is outstanding

Delay evaluation:
----------------
    grace_end = due_date + grace_period_days

    ref <= due_date               on time, no delay
    due_date < ref <= grace_end   grace used, no delay
    ref > grace_end               grace used, delay = ceil((ref - grace_end) / 1 day)
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from chitfund.core.errors import ExceedsOutstanding, InvalidState
from chitfund.core.ledger.entry import (
    LedgerEntry,
    PartialPayment,
    PaymentMethod,
    PaymentStatus,
)
from chitfund.utils.logger import get_logger
from chitfund.utils.timeutil import ONE_DAY
from chitfund.utils.validation import (
    MAX_NOTES_LENGTH,
    MAX_REASON_LENGTH,
    ensure,
    ensure_positive_amount,
    validate_amount,
    validate_datetime,
    validate_days,
    validate_string,
)

logger = get_logger("ledger")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class DelayAssessment:
    """Outcome of evaluating an entry against a reference instant."""
    on_time: bool
    grace_period_used: bool
    delay_days: int


@dataclass(frozen=True)
class PaymentOutcome:
    """Outcome of `PaymentLedger.record_payment`."""
    entry: LedgerEntry
    applied_amount: int
    metadata_only: bool
    fully_paid: bool


# =============================================================================
# Payment Ledger
# =============================================================================


class PaymentLedger:
    """
    Owns the status transitions of ledger entries.

    Callers never set `status` directly: it is recomputed by every
    operation here from (paid, due, now, due_date, grace_period_days).
    """

    # =========================================================================
    # Entry creation
    # =========================================================================

    def open_entry(
        self,
        group_id: str,
        member_id: str,
        member_name: str,
        period_number: int,
        due_date: datetime,
        grace_period_days: int,
        base_amount: int,
        dividend_received: int,
        is_winner: bool = False,
        commission_charged: int = 0,
        amount_received: int = 0,
    ) -> LedgerEntry:
        """
        Build a fresh, unpaid entry for a settled period.

        An entry whose dividend covers the whole contribution owes nothing
        and is settled on its due date.
        """
        ensure(validate_amount(base_amount, "base_amount"))
        ensure(validate_amount(dividend_received, "dividend_received"))
        ensure(validate_days(grace_period_days, "grace_period_days"))

        due_amount = max(0, base_amount - dividend_received)
        entry = LedgerEntry(
            group_id=group_id,
            member_id=member_id,
            member_name=member_name,
            period_number=period_number,
            due_date=due_date,
            grace_period_days=grace_period_days,
            base_amount=base_amount,
            dividend_received=dividend_received,
            due_amount=due_amount,
            is_winner=is_winner,
            commission_charged=commission_charged,
            amount_received=amount_received,
        )
        entry.recompute(due_date)
        if entry.status == PaymentStatus.PAID:
            entry.paid_date = due_date
            entry.on_time = True
        return entry

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        entry: LedgerEntry,
        amount: int,
        method,
        paid_at: datetime,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        recorded_by: Optional[str] = None,
    ) -> PaymentOutcome:
        """
        Apply a payment to an entry.

        Args:
            entry: Entry to update (mutated in place)
            amount: Amount in minor units, must be > 0
            method: PaymentMethod or its name/value
            paid_at: Instant the money was received
            reference: Transaction/cheque reference
            notes: Free-text note
            recorded_by: Actor recording the payment

        Returns:
            PaymentOutcome

        Raises:
            InvalidAmount: amount <= 0
            ValidationError: unknown method or malformed fields
            ExceedsOutstanding: amount above the outstanding balance
        """
        ensure_positive_amount(amount)
        payment_method = PaymentMethod.parse(method)
        ensure(validate_datetime(paid_at, "paid_at"))
        if notes is not None:
            ensure(validate_string(notes, "notes", MAX_NOTES_LENGTH, allow_empty=True))

        if entry.outstanding_balance == 0:
            # Administrative correction on a settled entry
            entry.payment_method = payment_method
            if reference is not None:
                entry.reference = reference
            if notes:
                entry.notes = entry.notes + (notes,)
            logger.info(
                f"Metadata correction on settled entry {entry.entry_id} "
                f"(method={payment_method.value})"
            )
            return PaymentOutcome(entry, 0, metadata_only=True, fully_paid=True)

        if amount > entry.outstanding_balance:
            raise ExceedsOutstanding(
                f"Payment amount {amount} exceeds outstanding balance "
                f"{entry.outstanding_balance} on {entry.entry_id}"
            )

        entry.paid_amount += amount
        entry.partial_payments = entry.partial_payments + (
            PartialPayment(
                amount=amount,
                paid_at=paid_at,
                method=payment_method,
                reference=reference,
                notes=notes,
                recorded_by=recorded_by,
            ),
        )
        entry.recompute(paid_at)
        self.compute_delay(entry, paid_at)

        fully_paid = entry.status == PaymentStatus.PAID
        if fully_paid:
            entry.paid_date = paid_at
            entry.on_time = paid_at <= entry.due_date
            entry.payment_method = payment_method
            entry.reference = reference
            if notes:
                entry.notes = entry.notes + (notes,)

        logger.info(
            f"Payment recorded: entry={entry.entry_id} amount={amount} "
            f"status={entry.status.value} outstanding={entry.outstanding_balance}"
        )
        return PaymentOutcome(entry, amount, metadata_only=False, fully_paid=fully_paid)

    # =========================================================================
    # Delay / grace
    # =========================================================================

    def compute_delay(self, entry: LedgerEntry, reference: datetime) -> DelayAssessment:
        """
        Evaluate an entry's delay as of `reference` and store the result.

        An entry with nothing paid becomes Overdue once the grace period
        has elapsed.
        """
        ensure(validate_datetime(reference, "reference"))

        if reference <= entry.due_date:
            assessment = DelayAssessment(on_time=True, grace_period_used=False, delay_days=0)
        elif reference <= entry.grace_end:
            assessment = DelayAssessment(on_time=False, grace_period_used=True, delay_days=0)
        else:
            whole_days, remainder = divmod(reference - entry.grace_end, ONE_DAY)
            delay = whole_days + (1 if remainder else 0)
            assessment = DelayAssessment(on_time=False, grace_period_used=True, delay_days=delay)

        entry.grace_period_used = assessment.grace_period_used
        entry.delay_days = assessment.delay_days
        if entry.status != PaymentStatus.PAID:
            entry.recompute(reference)

        return assessment

    def refresh(self, entry: LedgerEntry, now: datetime) -> PaymentStatus:
        """Re-evaluate an unsettled entry against the current instant."""
        if entry.status == PaymentStatus.PAID:
            return entry.status
        self.compute_delay(entry, now)
        return entry.status

    def extend_grace(
        self,
        entry: LedgerEntry,
        additional_days: int,
        reason: Optional[str],
        now: datetime,
        extended_by: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Lengthen this entry's own grace period.

        Raises:
            ValidationError: additional_days not a positive integer
            InvalidState: entry already fully paid
        """
        ensure(validate_days(additional_days, "additional_days", min_val=1))
        if reason is not None:
            ensure(validate_string(reason, "reason", MAX_REASON_LENGTH, allow_empty=True))

        if entry.status == PaymentStatus.PAID:
            raise InvalidState(
                f"Cannot extend grace period for already paid entry {entry.entry_id}"
            )

        previous = entry.grace_period_days
        entry.grace_period_days = previous + additional_days
        note = f"Grace period extended by {additional_days} days. Reason: {reason or 'N/A'}"
        if extended_by:
            note += f" (by {extended_by})"
        entry.notes = entry.notes + (note,)
        self.compute_delay(entry, now)

        logger.info(
            f"Grace extended: entry={entry.entry_id} "
            f"{previous} -> {entry.grace_period_days} days"
        )
        return entry

