"""
Settlement Engine - turning a closed auction into ledger entries.

Settlement formula:
------------------
    total_dividend      = winning_bid - commission          (raw, may be < 0)
    distributable       = max(0, total_dividend)
    recipients          = members - {current winner}
    dividend_per_member = override or floor(distributable / len(recipients))

Flooring guarantees dividend_per_member * recipients <= distributable; the
remainder stays with the fund.

Per-member entry for the period:
    current winner              due = contribution, dividend 0,
                                commission charged, pool - commission - bid received
    prior winner, Model A       due = contribution, dividend 0
    everyone else               due = max(0, contribution - dividend_per_member)

Entry creation is idempotent per (group, member, period): an entry that
already exists is skipped, so a retried close never duplicates ledger state.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Tuple

from chitfund.core.errors import (
    DividendOverrideTooHigh,
    DuplicateSettlement,
    InvalidState,
    NotFoundError,
)
from chitfund.core.group.group import Group, PaymentModel
from chitfund.core.ledger.entry import LedgerEntry, entry_key
from chitfund.core.ledger.payment_ledger import PaymentLedger
from chitfund.utils.logger import get_logger
from chitfund.utils.validation import ensure, validate_amount

if TYPE_CHECKING:
    from chitfund.core.auction.auction import Auction
    from chitfund.core.storage.base import LedgerRepository

logger = get_logger("settlement")


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class DividendPlan:
    """How the winning-period surplus is split."""
    total_dividend: int
    distributable: int
    recipient_count: int
    dividend_per_member: int
    manual_override: bool = False

    @property
    def allocated(self) -> int:
        """Upper bound of what recipients receive in total."""
        return self.dividend_per_member * self.recipient_count

    @property
    def retained(self) -> int:
        """Remainder kept by the fund."""
        return self.distributable - self.allocated


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of settling one auction."""
    auction_id: str
    group_id: str
    period_number: int
    winner_id: str
    plan: DividendPlan
    created: Tuple[LedgerEntry, ...]
    skipped: Tuple[str, ...]
    winner_recorded: bool

    @property
    def dividends_distributed(self) -> int:
        return sum(e.dividend_received for e in self.created if not e.is_winner)


# =============================================================================
# Settlement Engine
# =============================================================================


class SettlementEngine:
    """
    Computes a closed auction's payout and dividend split and produces one
    ledger entry per group member.

    With a ledger repository the entries are created there (duplicates are
    skipped); without one they are only returned.
    """

    def __init__(
        self,
        ledger_repo: Optional["LedgerRepository"] = None,
        payment_ledger: Optional[PaymentLedger] = None,
    ):
        self.ledger_repo = ledger_repo
        self.payment_ledger = payment_ledger or PaymentLedger()

    # =========================================================================
    # Dividend
    # =========================================================================

    def plan_dividend(
        self,
        group: Group,
        winner_id: str,
        winning_bid: int,
        manual_override: Optional[int] = None,
    ) -> DividendPlan:
        """
        Compute the dividend split for a winning bid.

        Raises:
            ValidationError: override is not a non-negative integer
            DividendOverrideTooHigh: override would distribute more than the
                surplus
        """
        total_dividend = winning_bid - group.commission_amount
        distributable = max(0, total_dividend)
        recipient_count = len([m for m in group.member_ids if m != winner_id])

        if manual_override is not None:
            ensure(validate_amount(manual_override, "manual_dividend_override"))
            if manual_override * recipient_count > distributable:
                raise DividendOverrideTooHigh(
                    f"Override {manual_override} x {recipient_count} members exceeds "
                    f"distributable dividend {distributable}"
                )
            per_member = manual_override if recipient_count else 0
        elif recipient_count:
            per_member = distributable // recipient_count
        else:
            per_member = 0

        return DividendPlan(
            total_dividend=total_dividend,
            distributable=distributable,
            recipient_count=recipient_count,
            dividend_per_member=per_member,
            manual_override=manual_override is not None,
        )

    # =========================================================================
    # Entries
    # =========================================================================

    def build_entries(
        self, auction: "Auction", group: Group, plan: DividendPlan
    ) -> List[LedgerEntry]:
        """One fresh ledger entry per member for the auction's period."""
        entries = []
        for member in group.members:
            is_winner = member.member_id == auction.winner_id
            prior_winner = member.has_won and member.won_in_period != auction.period_number

            if is_winner:
                entry = self.payment_ledger.open_entry(
                    group_id=group.group_id,
                    member_id=member.member_id,
                    member_name=member.name,
                    period_number=auction.period_number,
                    due_date=auction.closed_at,
                    grace_period_days=group.grace_period_days,
                    base_amount=group.contribution,
                    dividend_received=0,
                    is_winner=True,
                    commission_charged=group.commission_amount,
                    amount_received=group.pool_amount - group.commission_amount - auction.winning_bid,
                )
            else:
                if prior_winner and group.payment_model == PaymentModel.A:
                    dividend = 0
                else:
                    dividend = plan.dividend_per_member
                entry = self.payment_ledger.open_entry(
                    group_id=group.group_id,
                    member_id=member.member_id,
                    member_name=member.name,
                    period_number=auction.period_number,
                    due_date=auction.closed_at,
                    grace_period_days=group.grace_period_days,
                    base_amount=group.contribution,
                    dividend_received=dividend,
                )
            entries.append(entry)
        return entries

    # =========================================================================
    # Settlement
    # =========================================================================

    def settle(self, auction: "Auction", group: Group) -> SettlementResult:
        """
        Settle a closed auction against its group.

        Updates the auction's settlement fields and the group's winner
        history in place. Safe to call again for the same auction.

        Raises:
            InvalidState: auction not Closed, or closed without a winner
            NotFoundError: winner no longer on the roster
        """
        if not auction.is_closed or auction.winner_id is None:
            raise InvalidState(
                f"Auction {auction.auction_id} must be closed with a winner before settlement"
            )
        if auction.group_id != group.group_id:
            raise InvalidState(
                f"Auction {auction.auction_id} does not belong to group {group.group_id}"
            )
        if not group.has_member(auction.winner_id):
            raise NotFoundError(
                f"Winner {auction.winner_id} not found in group {group.group_id}"
            )

        plan = self.plan_dividend(
            group, auction.winner_id, auction.winning_bid, auction.manual_dividend_override
        )
        auction.commission_collected = group.commission_amount
        auction.total_dividend = plan.total_dividend
        auction.dividend_per_member = plan.dividend_per_member

        # Build before recording the winner so the current winner is never
        # treated as a prior winner of its own period.
        entries = self.build_entries(auction, group, plan)
        winner_recorded = group.record_winner(auction.winner_id, auction.period_number)

        created: List[LedgerEntry] = []
        skipped: List[str] = []
        for entry in entries:
            if self.ledger_repo is None:
                created.append(entry)
                continue
            try:
                created.append(self.ledger_repo.create(entry))
            except DuplicateSettlement:
                skipped.append(entry_key(entry.group_id, entry.member_id, entry.period_number))

        if skipped:
            logger.warning(
                f"Settlement of {auction.auction_id}: {len(skipped)} entries already "
                f"existed and were skipped"
            )
        logger.info(
            f"Settled auction {auction.auction_id} (period {auction.period_number}): "
            f"winner={auction.winner_id} bid={auction.winning_bid} "
            f"dividend/member={plan.dividend_per_member} entries={len(created)}"
        )

        return SettlementResult(
            auction_id=auction.auction_id,
            group_id=group.group_id,
            period_number=auction.period_number,
            winner_id=auction.winner_id,
            plan=plan,
            created=tuple(created),
            skipped=tuple(skipped),
            winner_recorded=winner_recorded,
        )
