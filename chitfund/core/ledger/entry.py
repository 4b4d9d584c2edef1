"""
Ledger Entry - one member's dues for one period of one group.

The (group_id, member_id, period_number) triple is unique. Outstanding
balance and status are never authored directly: both are recomputed from
paid/due amounts and the grace-adjusted due date by `derive_status`.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from chitfund.core.errors import ValidationError
from chitfund.utils.timeutil import add_days, format_dt, parse_dt


# =============================================================================
# Enums
# =============================================================================


class PaymentStatus(str, Enum):
    """Status of a ledger entry."""
    PENDING = "Pending"    # Nothing paid, still within grace
    PARTIAL = "Partial"    # Something paid, balance remaining
    PAID = "Paid"          # Nothing outstanding
    OVERDUE = "Overdue"    # Nothing paid and grace period over


class PaymentMethod(str, Enum):
    """Accepted payment channels."""
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    UPI = "UPI"
    CHEQUE = "Cheque"

    @classmethod
    def parse(cls, value: Any) -> "PaymentMethod":
        if isinstance(value, cls):
            return value
        for method in cls:
            if isinstance(value, str) and value.strip().lower() in (
                method.value.lower(), method.name.lower()
            ):
                return method
        raise ValidationError(f"Unknown payment method: {value!r}")


# =============================================================================
# Status derivation
# =============================================================================


def outstanding_for(due_amount: int, paid_amount: int) -> int:
    return max(0, due_amount - paid_amount)


def derive_status(
    paid_amount: int,
    due_amount: int,
    now: datetime,
    due_date: datetime,
    grace_period_days: int,
) -> PaymentStatus:
    """
    Pure status function for a ledger entry.

    Paid when nothing is outstanding; Partial once anything has been paid;
    otherwise Pending until the grace period ends, Overdue afterwards.
    """
    if outstanding_for(due_amount, paid_amount) == 0:
        return PaymentStatus.PAID
    if paid_amount > 0:
        return PaymentStatus.PARTIAL
    if now > add_days(due_date, grace_period_days):
        return PaymentStatus.OVERDUE
    return PaymentStatus.PENDING


def entry_key(group_id: str, member_id: str, period_number: int) -> str:
    """Stable identifier of the unique ledger triple."""
    return f"{group_id}:{member_id}:{period_number}"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class PartialPayment:
    """One payment event applied to an entry."""
    amount: int
    paid_at: datetime
    method: PaymentMethod
    reference: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": self.amount,
            "paid_at": self.paid_at.isoformat(),
            "method": self.method.value,
            "reference": self.reference,
            "notes": self.notes,
            "recorded_by": self.recorded_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartialPayment":
        return cls(
            amount=data["amount"],
            paid_at=datetime.fromisoformat(data["paid_at"]),
            method=PaymentMethod(data["method"]),
            reference=data.get("reference"),
            notes=data.get("notes"),
            recorded_by=data.get("recorded_by"),
        )


@dataclass
class LedgerEntry:
    """
    A member's dues for one period.

    Attributes:
        group_id / member_id / period_number: the unique triple
        due_date: When the contribution falls due (auction close time)
        grace_period_days: Copied from the group, extendable per entry
        base_amount: Full periodic contribution
        dividend_received: Dividend credited against the contribution
        due_amount: base_amount - dividend_received, floored at 0
        paid_amount / outstanding_balance: running totals
        status: Derived, see `derive_status`
        paid_date / on_time: set when the entry becomes fully paid
        grace_period_used / delay_days: set by delay evaluation
        partial_payments: Log of payment events
        is_winner / commission_charged / amount_received: winner-only fields
    """
    group_id: str
    member_id: str
    member_name: str
    period_number: int
    due_date: datetime
    grace_period_days: int
    base_amount: int
    dividend_received: int
    due_amount: int
    paid_amount: int = 0
    outstanding_balance: int = 0
    status: PaymentStatus = PaymentStatus.PENDING
    paid_date: Optional[datetime] = None
    on_time: bool = False
    grace_period_used: bool = False
    delay_days: int = 0
    partial_payments: Tuple[PartialPayment, ...] = ()
    is_winner: bool = False
    commission_charged: int = 0
    amount_received: int = 0
    payment_method: Optional[PaymentMethod] = None
    reference: Optional[str] = None
    notes: Tuple[str, ...] = ()
    version: int = 0

    def __post_init__(self):
        self.outstanding_balance = outstanding_for(self.due_amount, self.paid_amount)

    @property
    def entry_id(self) -> str:
        return entry_key(self.group_id, self.member_id, self.period_number)

    @property
    def grace_end(self) -> datetime:
        return add_days(self.due_date, self.grace_period_days)

    @property
    def is_fully_paid(self) -> bool:
        return self.outstanding_balance == 0

    def recompute(self, now: datetime) -> PaymentStatus:
        """Re-derive outstanding balance and status as of `now`."""
        self.outstanding_balance = outstanding_for(self.due_amount, self.paid_amount)
        self.status = derive_status(
            self.paid_amount, self.due_amount, now, self.due_date, self.grace_period_days
        )
        return self.status

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "period_number": self.period_number,
            "due_date": self.due_date.isoformat(),
            "grace_period_days": self.grace_period_days,
            "base_amount": self.base_amount,
            "dividend_received": self.dividend_received,
            "due_amount": self.due_amount,
            "paid_amount": self.paid_amount,
            "outstanding_balance": self.outstanding_balance,
            "status": self.status.value,
            "paid_date": format_dt(self.paid_date),
            "on_time": self.on_time,
            "grace_period_used": self.grace_period_used,
            "delay_days": self.delay_days,
            "partial_payments": [p.to_dict() for p in self.partial_payments],
            "is_winner": self.is_winner,
            "commission_charged": self.commission_charged,
            "amount_received": self.amount_received,
            "payment_method": self.payment_method.value if self.payment_method else None,
            "reference": self.reference,
            "notes": list(self.notes),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerEntry":
        method = data.get("payment_method")
        return cls(
            group_id=data["group_id"],
            member_id=data["member_id"],
            member_name=data["member_name"],
            period_number=data["period_number"],
            due_date=datetime.fromisoformat(data["due_date"]),
            grace_period_days=data["grace_period_days"],
            base_amount=data["base_amount"],
            dividend_received=data["dividend_received"],
            due_amount=data["due_amount"],
            paid_amount=data.get("paid_amount", 0),
            status=PaymentStatus(data.get("status", PaymentStatus.PENDING.value)),
            paid_date=parse_dt(data.get("paid_date")),
            on_time=data.get("on_time", False),
            grace_period_used=data.get("grace_period_used", False),
            delay_days=data.get("delay_days", 0),
            partial_payments=tuple(
                PartialPayment.from_dict(p) for p in data.get("partial_payments", [])
            ),
            is_winner=data.get("is_winner", False),
            commission_charged=data.get("commission_charged", 0),
            amount_received=data.get("amount_received", 0),
            payment_method=PaymentMethod(method) if method else None,
            reference=data.get("reference"),
            notes=tuple(data.get("notes", [])),
            version=data.get("version", 0),
        )
