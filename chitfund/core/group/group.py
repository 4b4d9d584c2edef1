"""
Group - configuration and roster of a single chit fund.

A group has a fixed pool amount and a member capacity; the fund runs for
one period per member (duration == capacity) and exactly one member wins
each period. The group exclusively owns its roster and winner history.

Roster entries are frozen records held in a tuple; every mutation builds
a new tuple so readers holding the previous snapshot are never affected.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from chitfund.core.errors import (
    BusinessRuleViolation,
    CapacityReached,
    InvalidState,
    NotFoundError,
)
from chitfund.utils.logger import get_logger
from chitfund.utils.timeutil import format_dt, parse_dt

logger = get_logger("group")


# =============================================================================
# Enums
# =============================================================================


class GroupStatus(str, Enum):
    """Lifecycle of a group."""
    FORMING = "Forming"    # Roster being assembled
    ACTIVE = "Active"      # Auctions can be scheduled
    CLOSED = "Closed"      # Terminal


class PaymentModel(str, Enum):
    """
    How previous winners are billed in later periods.

    A: a prior winner pays the full contribution and receives no dividend.
    B: a prior winner keeps receiving the per-member dividend.
    """
    A = "A"
    B = "B"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class GroupMember:
    """A member of the roster."""
    member_id: str
    name: str
    joined_at: datetime
    has_won: bool = False
    won_in_period: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "name": self.name,
            "joined_at": self.joined_at.isoformat(),
            "has_won": self.has_won,
            "won_in_period": self.won_in_period,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroupMember":
        return cls(
            member_id=data["member_id"],
            name=data["name"],
            joined_at=datetime.fromisoformat(data["joined_at"]),
            has_won=data.get("has_won", False),
            won_in_period=data.get("won_in_period"),
        )


@dataclass
class Group:
    """
    Configuration for one chit fund instance.

    Attributes:
        group_id: Stable identifier
        name: Display name
        pool_amount: Total pool paid out each period (minor units)
        capacity: Maximum number of members; also the number of periods
        commission_amount: Commission retained per period; also the bid floor
        contribution: Periodic contribution per member (minor units)
        grace_period_days: Default grace period copied onto new ledger entries
        payment_model: Billing model for prior winners
        status: Lifecycle status
        members: Ordered roster snapshot
        winners: Ordered winner history (member ids)
        completed_periods: Number of settled periods
        version: Optimistic-concurrency version (managed by storage)
    """
    group_id: str
    name: str
    pool_amount: int
    capacity: int
    commission_amount: int
    contribution: int
    grace_period_days: int = 3
    payment_model: PaymentModel = PaymentModel.A
    status: GroupStatus = GroupStatus.FORMING
    members: Tuple[GroupMember, ...] = ()
    winners: Tuple[str, ...] = ()
    completed_periods: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    version: int = 0

    # =========================================================================
    # Derived values
    # =========================================================================

    @property
    def duration(self) -> int:
        """Number of periods the fund runs (one winner per period)."""
        return self.capacity

    @property
    def member_ids(self) -> List[str]:
        return [m.member_id for m in self.members]

    @property
    def progress_percentage(self) -> int:
        if self.duration == 0:
            return 0
        return round(self.completed_periods / self.duration * 100)

    def get_member(self, member_id: str) -> Optional[GroupMember]:
        for member in self.members:
            if member.member_id == member_id:
                return member
        return None

    def has_member(self, member_id: str) -> bool:
        return self.get_member(member_id) is not None

    def prior_winners(self) -> List[str]:
        """Members who have already won a period."""
        return [m.member_id for m in self.members if m.has_won]

    # =========================================================================
    # Roster
    # =========================================================================

    def add_member(self, member_id: str, name: str, joined_at: datetime) -> GroupMember:
        """
        Append a member to the roster.

        Raises:
            InvalidState: group is closed
            BusinessRuleViolation: member already on the roster
            CapacityReached: roster is full
        """
        if self.status == GroupStatus.CLOSED:
            raise InvalidState(f"Cannot add members to closed group {self.group_id}")

        if self.has_member(member_id):
            raise BusinessRuleViolation(
                f"Member {member_id} already exists in group {self.group_id}",
                reason="duplicate_member",
            )

        if len(self.members) >= self.capacity:
            raise CapacityReached(
                f"Group {self.group_id} is full ({self.capacity} members)"
            )

        member = GroupMember(member_id=member_id, name=name, joined_at=joined_at)
        self.members = self.members + (member,)
        logger.debug(f"Member {member_id} joined group {self.group_id}")
        return member

    def remove_member(self, member_id: str) -> GroupMember:
        """
        Remove a member who has not yet won.

        Raises:
            InvalidState: group is closed
            NotFoundError: member not on the roster
            BusinessRuleViolation: member has already won
        """
        if self.status == GroupStatus.CLOSED:
            raise InvalidState(f"Cannot remove members from closed group {self.group_id}")

        member = self.get_member(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found in group {self.group_id}")

        if member.has_won:
            raise BusinessRuleViolation(
                f"Cannot remove member {member_id} who has already won",
                reason="member_has_won",
            )

        self.members = tuple(m for m in self.members if m.member_id != member_id)
        return member

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def activate(self, now: datetime, min_members: int = 2) -> None:
        """Forming -> Active."""
        if self.status != GroupStatus.FORMING:
            raise InvalidState(f"Only forming groups can be activated (is {self.status.value})")

        if len(self.members) < min_members:
            raise BusinessRuleViolation(
                f"At least {min_members} members required to activate group",
                reason="not_enough_members",
            )

        self.status = GroupStatus.ACTIVE
        self.started_at = now
        logger.info(f"Group {self.group_id} activated with {len(self.members)} members")

    def close(self, now: datetime) -> None:
        """Any non-closed state -> Closed."""
        if self.status == GroupStatus.CLOSED:
            raise InvalidState(f"Group {self.group_id} is already closed")

        self.status = GroupStatus.CLOSED
        self.ended_at = now
        logger.info(f"Group {self.group_id} closed")

    # =========================================================================
    # Winner history
    # =========================================================================

    def record_winner(self, member_id: str, period_number: int) -> bool:
        """
        Mark `member_id` as the winner of `period_number`.

        Idempotent: recording the same winner for the same period again is a
        no-op, so a retried settlement never double-counts the period.

        Returns:
            True if the group changed
        """
        member = self.get_member(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found in group {self.group_id}")

        if member.has_won and member.won_in_period == period_number:
            return False

        if member.has_won:
            raise BusinessRuleViolation(
                f"Member {member_id} already won period {member.won_in_period}",
                reason="already_won",
            )

        self.members = tuple(
            replace(m, has_won=True, won_in_period=period_number)
            if m.member_id == member_id else m
            for m in self.members
        )
        if member_id not in self.winners:
            self.winners = self.winners + (member_id,)
        self.completed_periods += 1
        return True

    def revert_winner(self, member_id: str, period_number: int) -> bool:
        """Undo `record_winner` (used when a closed auction is deleted)."""
        member = self.get_member(member_id)
        if member is None or member.won_in_period != period_number:
            return False

        self.members = tuple(
            replace(m, has_won=False, won_in_period=None)
            if m.member_id == member_id else m
            for m in self.members
        )
        self.winners = tuple(w for w in self.winners if w != member_id)
        self.completed_periods = max(0, self.completed_periods - 1)
        return True

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "name": self.name,
            "pool_amount": self.pool_amount,
            "capacity": self.capacity,
            "commission_amount": self.commission_amount,
            "contribution": self.contribution,
            "grace_period_days": self.grace_period_days,
            "payment_model": self.payment_model.value,
            "status": self.status.value,
            "members": [m.to_dict() for m in self.members],
            "winners": list(self.winners),
            "completed_periods": self.completed_periods,
            "started_at": format_dt(self.started_at),
            "ended_at": format_dt(self.ended_at),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Group":
        return cls(
            group_id=data["group_id"],
            name=data["name"],
            pool_amount=data["pool_amount"],
            capacity=data["capacity"],
            commission_amount=data["commission_amount"],
            contribution=data["contribution"],
            grace_period_days=data["grace_period_days"],
            payment_model=PaymentModel(data["payment_model"]),
            status=GroupStatus(data["status"]),
            members=tuple(GroupMember.from_dict(m) for m in data.get("members", [])),
            winners=tuple(data.get("winners", [])),
            completed_periods=data.get("completed_periods", 0),
            started_at=parse_dt(data.get("started_at")),
            ended_at=parse_dt(data.get("ended_at")),
            version=data.get("version", 0),
        )
