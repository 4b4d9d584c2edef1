"""
Member Statement - a member's passbook for one group.

The statement is a projection of ledger history, rebuilt from scratch
on every request; nothing here is persisted.

Transaction kinds per period:
    Dividend        credit   dividend applied against the contribution
    WinAmount       credit   gross payout to the winner (pool - bid)
    Commission      debit    fund commission withheld from the payout
    PartialPayment  debit    payment that left a balance outstanding
    Contribution    debit    payment that settled the period

Rows are ordered by date (ties keep period order) and carry a running
balance of credits minus debits.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from chitfund.core.ledger.entry import LedgerEntry


class TransactionType(str, Enum):
    CONTRIBUTION = "Contribution"
    DIVIDEND = "Dividend"
    WIN_AMOUNT = "WinAmount"
    COMMISSION = "Commission"
    PARTIAL_PAYMENT = "PartialPayment"


# Money the member put into the fund
CONTRIBUTION_TYPES = (
    TransactionType.CONTRIBUTION,
    TransactionType.COMMISSION,
    TransactionType.PARTIAL_PAYMENT,
)


@dataclass(frozen=True)
class StatementTransaction:
    date: datetime
    period_number: int
    type: TransactionType
    description: str
    debit: int = 0
    credit: int = 0
    balance: int = 0
    reference: Optional[str] = None
    recorded_by: Optional[str] = None


@dataclass(frozen=True)
class AuctionWon:
    period_number: int
    won_at: datetime
    bid_amount: int
    received_amount: int
    commission_paid: int


@dataclass
class StatementSummary:
    total_contributions: int = 0
    total_dividends: int = 0
    net_contributions: int = 0
    outstanding_amount: int = 0
    current_balance: int = 0
    auction_won: Optional[AuctionWon] = None
    total_payments: int = 0
    on_time_count: int = 0
    delayed_count: int = 0
    rank: Optional[int] = None


@dataclass
class MemberStatement:
    group_id: str
    group_name: str
    member_id: str
    member_name: str
    generated_at: datetime
    transactions: Tuple[StatementTransaction, ...] = ()
    summary: StatementSummary = field(default_factory=StatementSummary)

    def for_period(self, period_number: int) -> List[StatementTransaction]:
        return [t for t in self.transactions if t.period_number == period_number]

    def of_type(self, type_: TransactionType) -> List[StatementTransaction]:
        return [t for t in self.transactions if t.type == type_]

    def between(self, start: datetime, end: datetime) -> List[StatementTransaction]:
        """Transactions dated within [start, end]."""
        return [t for t in self.transactions if start <= t.date <= end]


def _entry_transactions(entry: LedgerEntry, pool_amount: int) -> List[StatementTransaction]:
    period = entry.period_number
    rows = []

    if entry.is_winner:
        gross = entry.amount_received + entry.commission_charged
        bid = pool_amount - gross
        rows.append(StatementTransaction(
            date=entry.due_date,
            period_number=period,
            type=TransactionType.WIN_AMOUNT,
            description=f"Chit amount received - won period {period} with bid {bid}",
            credit=gross,
        ))
        if entry.commission_charged:
            rows.append(StatementTransaction(
                date=entry.due_date,
                period_number=period,
                type=TransactionType.COMMISSION,
                description=f"Commission for winning period {period}",
                debit=entry.commission_charged,
            ))

    if entry.dividend_received:
        rows.append(StatementTransaction(
            date=entry.due_date,
            period_number=period,
            type=TransactionType.DIVIDEND,
            description=f"Dividend received from period {period}",
            credit=entry.dividend_received,
        ))

    paid = 0
    for payment in entry.partial_payments:
        paid += payment.amount
        settled = paid >= entry.due_amount
        if settled and entry.dividend_received:
            description = (
                f"Contribution for period {period} "
                f"(base {entry.base_amount} - dividend {entry.dividend_received})"
            )
        elif settled:
            description = f"Contribution for period {period}"
        else:
            description = f"Partial payment for period {period}"
        rows.append(StatementTransaction(
            date=payment.paid_at,
            period_number=period,
            type=TransactionType.CONTRIBUTION if settled else TransactionType.PARTIAL_PAYMENT,
            description=description,
            debit=payment.amount,
            reference=payment.reference,
            recorded_by=payment.recorded_by,
        ))

    return rows


def build_statement(
    group_id: str,
    group_name: str,
    member_id: str,
    member_name: str,
    pool_amount: int,
    entries: Iterable[LedgerEntry],
    generated_at: datetime,
    rank: Optional[int] = None,
) -> MemberStatement:
    """
    Rebuild a member's statement from their ledger entries.

    Entries belonging to other members or groups are ignored.
    """
    mine = sorted(
        (e for e in entries if e.group_id == group_id and e.member_id == member_id),
        key=lambda e: e.period_number,
    )

    rows: List[StatementTransaction] = []
    for entry in mine:
        rows.extend(_entry_transactions(entry, pool_amount))
    rows.sort(key=lambda t: t.date)

    balance = 0
    transactions = []
    for row in rows:
        balance += row.credit - row.debit
        transactions.append(StatementTransaction(
            date=row.date,
            period_number=row.period_number,
            type=row.type,
            description=row.description,
            debit=row.debit,
            credit=row.credit,
            balance=balance,
            reference=row.reference,
            recorded_by=row.recorded_by,
        ))

    summary = StatementSummary(rank=rank, current_balance=balance)
    for row in transactions:
        if row.type in CONTRIBUTION_TYPES:
            summary.total_contributions += row.debit
        elif row.type == TransactionType.DIVIDEND:
            summary.total_dividends += row.credit
    summary.net_contributions = summary.total_contributions - summary.total_dividends

    for entry in mine:
        summary.outstanding_amount += entry.outstanding_balance
        summary.total_payments += len(entry.partial_payments)
        if entry.is_fully_paid and entry.on_time:
            summary.on_time_count += 1
        if entry.delay_days > 0:
            summary.delayed_count += 1
        if entry.is_winner:
            summary.auction_won = AuctionWon(
                period_number=entry.period_number,
                won_at=entry.due_date,
                bid_amount=pool_amount - entry.commission_charged - entry.amount_received,
                received_amount=entry.amount_received,
                commission_paid=entry.commission_charged,
            )

    return MemberStatement(
        group_id=group_id,
        group_name=group_name,
        member_id=member_id,
        member_name=member_name,
        generated_at=generated_at,
        transactions=tuple(transactions),
        summary=summary,
    )


__all__ = [
    "AuctionWon",
    "MemberStatement",
    "StatementSummary",
    "StatementTransaction",
    "TransactionType",
    "build_statement",
]
