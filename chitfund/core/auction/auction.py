"""
Auction - one period's bidding round for a group.

An auction references its group by id only. Bids and exclusions are
tuples of frozen records: each accepted operation swaps in a new tuple,
and once the auction is Closed neither collection changes again.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from chitfund.utils.timeutil import format_dt, parse_dt


# =============================================================================
# Enums
# =============================================================================


class AuctionStatus(str, Enum):
    """Lifecycle of an auction. Transitions only move forward."""
    SCHEDULED = "Scheduled"
    LIVE = "Live"
    CLOSED = "Closed"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass(frozen=True)
class Bid:
    """
    A member's single bid (the discount offered off the pool).

    When an administrator places the bid on the member's behalf the
    proxy fields are filled; the bid is otherwise identical.
    """
    member_id: str
    member_name: str
    amount: int
    placed_at: datetime
    placed_by_admin: bool = False
    placed_by_id: Optional[str] = None
    placed_by_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "member_name": self.member_name,
            "amount": self.amount,
            "placed_at": self.placed_at.isoformat(),
            "placed_by_admin": self.placed_by_admin,
            "placed_by_id": self.placed_by_id,
            "placed_by_name": self.placed_by_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bid":
        return cls(
            member_id=data["member_id"],
            member_name=data["member_name"],
            amount=data["amount"],
            placed_at=datetime.fromisoformat(data["placed_at"]),
            placed_by_admin=data.get("placed_by_admin", False),
            placed_by_id=data.get("placed_by_id"),
            placed_by_name=data.get("placed_by_name"),
        )


@dataclass(frozen=True)
class ManualExclusion:
    """A member barred from this auction by an administrator."""
    member_id: str
    reason: str
    excluded_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "reason": self.reason,
            "excluded_by": self.excluded_by,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManualExclusion":
        return cls(
            member_id=data["member_id"],
            reason=data["reason"],
            excluded_by=data.get("excluded_by"),
        )


@dataclass
class Auction:
    """
    Bidding round for period `period_number` of group `group_id`.

    Settlement outputs (commission_collected, total_dividend,
    dividend_per_member) are filled in when the auction closes.
    `total_dividend` keeps the raw winning_bid - commission value even when
    it is negative.
    """
    auction_id: str
    group_id: str
    period_number: int
    scheduled_at: datetime
    starting_bid: int
    status: AuctionStatus = AuctionStatus.SCHEDULED
    current_highest_bid: int = 0
    bids: Tuple[Bid, ...] = ()
    auto_excluded: Tuple[str, ...] = ()
    manual_exclusions: Tuple[ManualExclusion, ...] = ()
    eligible_count: int = 0
    participation_rate: int = 0

    # Result
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    winning_bid: Optional[int] = None
    manual_dividend_override: Optional[int] = None
    commission_collected: int = 0
    total_dividend: int = 0
    dividend_per_member: int = 0

    # Audit trail
    started_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_by: Optional[str] = None
    started_by: Optional[str] = None
    closed_by: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0

    # =========================================================================
    # Queries
    # =========================================================================

    @property
    def bid_count(self) -> int:
        return len(self.bids)

    @property
    def is_closed(self) -> bool:
        return self.status == AuctionStatus.CLOSED

    def bid_for(self, member_id: str) -> Optional[Bid]:
        for bid in self.bids:
            if bid.member_id == member_id:
                return bid
        return None

    def manual_exclusion_for(self, member_id: str) -> Optional[ManualExclusion]:
        for exclusion in self.manual_exclusions:
            if exclusion.member_id == member_id:
                return exclusion
        return None

    @property
    def excluded_ids(self) -> Set[str]:
        return set(self.auto_excluded) | {e.member_id for e in self.manual_exclusions}

    def is_excluded(self, member_id: str) -> bool:
        return member_id in self.excluded_ids

    def eligible_member_ids(self, member_ids: Iterable[str]) -> List[str]:
        excluded = self.excluded_ids
        return [m for m in member_ids if m not in excluded]

    def highest_bid(self, skip: Iterable[str] = ()) -> Optional[Bid]:
        """Highest bid; earliest wins a tie. Bids by `skip` members are ignored."""
        skip = set(skip)
        best = None
        for bid in self.bids:
            if bid.member_id in skip:
                continue
            if best is None or bid.amount > best.amount:
                best = bid
        return best

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "auction_id": self.auction_id,
            "group_id": self.group_id,
            "period_number": self.period_number,
            "scheduled_at": self.scheduled_at.isoformat(),
            "starting_bid": self.starting_bid,
            "status": self.status.value,
            "current_highest_bid": self.current_highest_bid,
            "bids": [b.to_dict() for b in self.bids],
            "auto_excluded": list(self.auto_excluded),
            "manual_exclusions": [e.to_dict() for e in self.manual_exclusions],
            "eligible_count": self.eligible_count,
            "participation_rate": self.participation_rate,
            "winner_id": self.winner_id,
            "winner_name": self.winner_name,
            "winning_bid": self.winning_bid,
            "manual_dividend_override": self.manual_dividend_override,
            "commission_collected": self.commission_collected,
            "total_dividend": self.total_dividend,
            "dividend_per_member": self.dividend_per_member,
            "started_at": format_dt(self.started_at),
            "closed_at": format_dt(self.closed_at),
            "created_by": self.created_by,
            "started_by": self.started_by,
            "closed_by": self.closed_by,
            "notes": self.notes,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Auction":
        return cls(
            auction_id=data["auction_id"],
            group_id=data["group_id"],
            period_number=data["period_number"],
            scheduled_at=datetime.fromisoformat(data["scheduled_at"]),
            starting_bid=data["starting_bid"],
            status=AuctionStatus(data["status"]),
            current_highest_bid=data.get("current_highest_bid", 0),
            bids=tuple(Bid.from_dict(b) for b in data.get("bids", [])),
            auto_excluded=tuple(data.get("auto_excluded", [])),
            manual_exclusions=tuple(
                ManualExclusion.from_dict(e) for e in data.get("manual_exclusions", [])
            ),
            eligible_count=data.get("eligible_count", 0),
            participation_rate=data.get("participation_rate", 0),
            winner_id=data.get("winner_id"),
            winner_name=data.get("winner_name"),
            winning_bid=data.get("winning_bid"),
            manual_dividend_override=data.get("manual_dividend_override"),
            commission_collected=data.get("commission_collected", 0),
            total_dividend=data.get("total_dividend", 0),
            dividend_per_member=data.get("dividend_per_member", 0),
            started_at=parse_dt(data.get("started_at")),
            closed_at=parse_dt(data.get("closed_at")),
            created_by=data.get("created_by"),
            started_by=data.get("started_by"),
            closed_by=data.get("closed_by"),
            notes=data.get("notes"),
            version=data.get("version", 0),
        )
