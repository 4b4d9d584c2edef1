"""
Auction State Machine - scheduling, bidding and closing an auction.

Lifecycle:
---------
    Scheduled --start--> Live --close--> Closed (terminal)

No transition skips a state and none reverses. Bids and exclusions are
only accepted while the auction is not Closed (bids only while Live).

Eligibility:
-----------
    eligible = roster - (prior winners U manual exclusions)

Prior winners are captured as the auto-excluded set when the auction is
scheduled. Closing records the winner and settles the period through the
SettlementEngine as part of the same call.
"""

from datetime import datetime
from typing import Collection, Iterable, Optional, Tuple
import uuid

from chitfund.core.auction.auction import Auction, AuctionStatus, Bid, ManualExclusion
from chitfund.core.config import EngineConfig
from chitfund.core.errors import (
    BidTooLow,
    BusinessRuleViolation,
    DuplicateBid,
    InvalidState,
    MemberExcluded,
    NoBids,
    NoEligibleMembers,
    NotAMember,
    NotFoundError,
    ValidationError,
    WinnerHasNoBid,
)
from chitfund.core.group.group import Group, GroupStatus
from chitfund.core.settlement.engine import SettlementEngine, SettlementResult
from chitfund.utils.logger import get_logger
from chitfund.utils.validation import (
    MAX_NOTES_LENGTH,
    MAX_REASON_LENGTH,
    ensure,
    ensure_positive_amount,
    validate_datetime,
    validate_identifier,
    validate_period_number,
    validate_string,
)

logger = get_logger("auction")


def participation_rate(bid_count: int, eligible_count: int) -> int:
    """Percentage of eligible members who bid, rounded half up."""
    if eligible_count <= 0:
        return 0
    return (200 * bid_count + eligible_count) // (2 * eligible_count)


class AuctionStateMachine:
    """
    Drives auctions through Scheduled -> Live -> Closed.

    Every operation validates before mutating, so a raised error leaves the
    auction untouched. The caller is responsible for serializing operations
    on one auction and for persisting the result.
    """

    def __init__(
        self,
        settlement: Optional[SettlementEngine] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.settlement = settlement or SettlementEngine()
        self.config = config or EngineConfig()

    # =========================================================================
    # Scheduling
    # =========================================================================

    def schedule(
        self,
        group: Group,
        period_number: int,
        scheduled_at: datetime,
        manual_exclusions: Iterable[ManualExclusion] = (),
        existing_periods: Collection[int] = (),
        auction_id: Optional[str] = None,
        created_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Auction:
        """
        Create a Scheduled auction for one period of an active group.

        Args:
            group: Owning group
            period_number: 1..group.duration
            scheduled_at: When bidding is planned to start
            manual_exclusions: Members barred by an administrator
            existing_periods: Periods that already have an auction
            auction_id: Optional explicit identifier
            created_by: Actor scheduling the auction
            notes: Free text

        Raises:
            ValidationError: malformed period, date or exclusion
            InvalidState: group not active, period beyond duration or taken
            NotFoundError: an excluded member is not on the roster
            NoEligibleMembers: nobody left to bid
        """
        ensure(validate_period_number(period_number))
        ensure(validate_datetime(scheduled_at, "scheduled_at"))
        if auction_id is not None:
            ensure(validate_identifier(auction_id, "auction_id"))
        if notes is not None:
            ensure(validate_string(notes, "notes", MAX_NOTES_LENGTH, allow_empty=True))

        if group.status != GroupStatus.ACTIVE:
            raise InvalidState(
                f"Group {group.group_id} must be active to schedule auctions "
                f"(is {group.status.value})"
            )

        if period_number > group.duration:
            raise InvalidState(
                f"Period {period_number} exceeds group duration {group.duration}"
            )

        if period_number in existing_periods:
            raise InvalidState(
                f"Auction for period {period_number} already exists in group {group.group_id}"
            )

        exclusions = []
        seen = set()
        for exclusion in manual_exclusions:
            ensure(validate_string(exclusion.reason, "reason", MAX_REASON_LENGTH))
            if not group.has_member(exclusion.member_id):
                raise NotFoundError(
                    f"Member {exclusion.member_id} not found in group {group.group_id}"
                )
            if exclusion.member_id in seen:
                continue
            seen.add(exclusion.member_id)
            exclusions.append(exclusion)

        auto_excluded = tuple(group.prior_winners())
        excluded = set(auto_excluded) | seen
        eligible = [m for m in group.member_ids if m not in excluded]
        if not eligible:
            raise NoEligibleMembers(
                f"No eligible members for period {period_number} of group {group.group_id}"
            )

        auction = Auction(
            auction_id=auction_id or f"auc-{uuid.uuid4().hex[:12]}",
            group_id=group.group_id,
            period_number=period_number,
            scheduled_at=scheduled_at,
            starting_bid=group.commission_amount,
            auto_excluded=auto_excluded,
            manual_exclusions=tuple(exclusions),
            eligible_count=len(eligible),
            created_by=created_by,
            notes=notes,
        )

        logger.info(
            f"Auction {auction.auction_id} scheduled: group={group.group_id} "
            f"period={period_number} eligible={len(eligible)}"
        )
        return auction

    # =========================================================================
    # Start
    # =========================================================================

    def start(
        self,
        auction: Auction,
        now: datetime,
        started_by: Optional[str] = None,
        group: Optional[Group] = None,
    ) -> Auction:
        """
        Scheduled -> Live.

        With `group`, members who won another period since scheduling are
        added to the auto-excluded set.
        """
        ensure(validate_datetime(now, "now"))
        if auction.status != AuctionStatus.SCHEDULED:
            raise InvalidState(
                f"Only scheduled auctions can be started (is {auction.status.value})"
            )

        if group is not None:
            self.exclude_prior_winners(auction, group)

        auction.status = AuctionStatus.LIVE
        auction.started_at = now
        auction.started_by = started_by
        logger.info(f"Auction {auction.auction_id} is live")
        return auction

    # =========================================================================
    # Bidding
    # =========================================================================

    def max_bid(self, group: Group) -> int:
        """Largest discount a member may offer: the whole payout."""
        return group.pool_amount - group.commission_amount

    def place_bid(
        self,
        auction: Auction,
        group: Group,
        member_id: str,
        amount: int,
        placed_at: datetime,
        proxy: Optional[Tuple[str, str]] = None,
        min_increment: Optional[int] = None,
    ) -> Bid:
        """
        Record one member's bid.

        A bid below the current highest is still accepted unless the engine
        is configured with `require_increasing_bids`.

        Args:
            auction: Live auction
            group: Owning group (membership lookup)
            member_id: Bidding member
            amount: Discount offered, minor units
            placed_at: Submission instant
            proxy: (admin_id, admin_name) when placed on the member's behalf
            min_increment: Step over the current highest in strict mode;
                defaults to the configured increment

        Raises:
            InvalidAmount: amount not a positive integer
            ValidationError: amount above the payout
            InvalidState: auction not Live
            NotAMember / MemberExcluded / DuplicateBid / BidTooLow
        """
        ensure_positive_amount(amount)
        ensure(validate_datetime(placed_at, "placed_at"))

        if auction.status != AuctionStatus.LIVE:
            raise InvalidState(
                f"Auction {auction.auction_id} is not live (is {auction.status.value})"
            )

        member = group.get_member(member_id)
        if member is None:
            raise NotAMember(f"Member {member_id} is not part of group {group.group_id}")

        self.exclude_prior_winners(auction, group)
        if auction.is_excluded(member_id):
            raise MemberExcluded(
                f"Member {member_id} is excluded from auction {auction.auction_id}"
            )

        if auction.bid_for(member_id) is not None:
            raise DuplicateBid(
                f"Member {member_id} has already bid in auction {auction.auction_id}"
            )

        if amount < auction.starting_bid:
            raise BidTooLow(
                f"Bid {amount} is below the starting bid {auction.starting_bid}"
            )

        if amount > self.max_bid(group):
            raise ValidationError(
                f"Bid {amount} exceeds the maximum discount {self.max_bid(group)}"
            )

        if self.config.require_increasing_bids and auction.bids:
            step = self.config.min_bid_increment if min_increment is None else min_increment
            floor = auction.current_highest_bid + step
            if amount < floor:
                raise BidTooLow(
                    f"Bid {amount} must be at least {floor} "
                    f"(current highest {auction.current_highest_bid})"
                )

        bid = Bid(
            member_id=member_id,
            member_name=member.name,
            amount=amount,
            placed_at=placed_at,
            placed_by_admin=proxy is not None,
            placed_by_id=proxy[0] if proxy else None,
            placed_by_name=proxy[1] if proxy else None,
        )
        auction.bids = auction.bids + (bid,)
        auction.current_highest_bid = max(auction.current_highest_bid, amount)
        self._refresh_eligibility(auction, group)

        logger.info(
            f"Bid on {auction.auction_id}: member={member_id} amount={amount}"
            + (f" (placed by {proxy[0]})" if proxy else "")
        )
        return bid

    # =========================================================================
    # Exclusions
    # =========================================================================

    def _refresh_eligibility(self, auction: Auction, group: Group) -> None:
        eligible = auction.eligible_member_ids(group.member_ids)
        # Bids placed before a member won another period no longer count
        bidders = sum(1 for b in auction.bids if b.member_id in eligible)
        auction.eligible_count = len(eligible)
        auction.participation_rate = participation_rate(bidders, auction.eligible_count)

    def exclude_prior_winners(self, auction: Auction, group: Group) -> bool:
        """
        Auto-exclude members who have won another period since scheduling.

        Returns:
            True if the auto-excluded set grew
        """
        if auction.status == AuctionStatus.CLOSED:
            return False
        new = tuple(
            m.member_id for m in group.members
            if m.has_won
            and m.won_in_period != auction.period_number
            and m.member_id not in auction.auto_excluded
        )
        if not new:
            return False
        auction.auto_excluded = auction.auto_excluded + new
        self._refresh_eligibility(auction, group)
        logger.info(f"Auction {auction.auction_id}: prior winners {list(new)} auto-excluded")
        return True

    def exclude_member(
        self,
        auction: Auction,
        group: Group,
        member_id: str,
        reason: str,
        excluded_by: Optional[str] = None,
    ) -> ManualExclusion:
        """
        Bar a member from an open auction.

        Raises:
            ValidationError: missing reason
            InvalidState: auction closed
            NotFoundError: member not on the roster
            BusinessRuleViolation: already excluded, or already bid
        """
        ensure(validate_string(reason, "reason", MAX_REASON_LENGTH))

        if auction.status == AuctionStatus.CLOSED:
            raise InvalidState(f"Cannot modify exclusions of closed auction {auction.auction_id}")

        if not group.has_member(member_id):
            raise NotFoundError(f"Member {member_id} not found in group {group.group_id}")

        if auction.is_excluded(member_id):
            raise BusinessRuleViolation(
                f"Member {member_id} is already excluded from auction {auction.auction_id}",
                reason="already_excluded",
            )

        if auction.bid_for(member_id) is not None:
            raise BusinessRuleViolation(
                f"Member {member_id} has already bid in auction {auction.auction_id}",
                reason="member_has_bid",
            )

        exclusion = ManualExclusion(member_id=member_id, reason=reason, excluded_by=excluded_by)
        auction.manual_exclusions = auction.manual_exclusions + (exclusion,)
        self._refresh_eligibility(auction, group)

        logger.info(f"Member {member_id} excluded from {auction.auction_id}: {reason}")
        return exclusion

    def revert_exclusion(self, auction: Auction, group: Group, member_id: str) -> ManualExclusion:
        """
        Lift a manual exclusion.

        Raises:
            InvalidState: auction closed
            NotFoundError: member has no manual exclusion
        """
        if auction.status == AuctionStatus.CLOSED:
            raise InvalidState(f"Cannot modify exclusions of closed auction {auction.auction_id}")

        exclusion = auction.manual_exclusion_for(member_id)
        if exclusion is None:
            raise NotFoundError(
                f"Member {member_id} is not manually excluded from auction {auction.auction_id}"
            )

        auction.manual_exclusions = tuple(
            e for e in auction.manual_exclusions if e.member_id != member_id
        )
        self._refresh_eligibility(auction, group)

        logger.info(f"Exclusion of {member_id} reverted on {auction.auction_id}")
        return exclusion

    # =========================================================================
    # Close
    # =========================================================================

    def close(
        self,
        auction: Auction,
        group: Group,
        winner_id: str,
        closed_at: datetime,
        manual_dividend_override: Optional[int] = None,
        closed_by: Optional[str] = None,
    ) -> SettlementResult:
        """
        Close a live auction with the chosen winner and settle the period.

        The winner need not be the highest bidder but must have bid. Closing
        an already closed auction with the same winner re-runs the
        (idempotent) settlement.

        Raises:
            InvalidState: auction not Live (or closed with another winner)
            NoBids: nobody bid
            WinnerHasNoBid: chosen winner did not bid
            MemberExcluded: chosen winner has won another period
            DividendOverrideTooHigh: override exceeds the surplus
        """
        ensure(validate_datetime(closed_at, "closed_at"))

        if auction.status == AuctionStatus.CLOSED:
            if auction.winner_id == winner_id:
                logger.info(f"Auction {auction.auction_id} already closed; re-running settlement")
                return self.settlement.settle(auction, group)
            raise InvalidState(
                f"Auction {auction.auction_id} already closed with winner {auction.winner_id}"
            )

        if auction.status != AuctionStatus.LIVE:
            raise InvalidState(
                f"Only live auctions can be closed (is {auction.status.value})"
            )

        if not auction.bids:
            raise NoBids(f"Auction {auction.auction_id} has no bids")

        self.exclude_prior_winners(auction, group)

        winning = auction.bid_for(winner_id)
        if winning is None:
            raise WinnerHasNoBid(
                f"Member {winner_id} did not bid in auction {auction.auction_id}"
            )

        if auction.is_excluded(winner_id):
            raise MemberExcluded(
                f"Member {winner_id} is excluded from auction {auction.auction_id} "
                f"and cannot win it"
            )

        # Rejects a bad override before anything changes
        self.settlement.plan_dividend(group, winner_id, winning.amount, manual_dividend_override)

        auction.status = AuctionStatus.CLOSED
        auction.winner_id = winner_id
        auction.winner_name = winning.member_name
        auction.winning_bid = winning.amount
        auction.manual_dividend_override = manual_dividend_override
        auction.closed_at = closed_at
        auction.closed_by = closed_by

        highest = auction.highest_bid()
        if highest is not None and highest.member_id != winner_id:
            logger.warning(
                f"Auction {auction.auction_id}: winner {winner_id} ({winning.amount}) "
                f"is not the highest bidder {highest.member_id} ({highest.amount})"
            )
        logger.info(
            f"Auction {auction.auction_id} closed: winner={winner_id} bid={winning.amount}"
        )

        return self.settlement.settle(auction, group)

    def default_winner(self, auction: Auction, group: Group) -> str:
        """
        Winner used when the caller names none: the recorded winner of a
        closed auction, otherwise the highest eligible bidder (earliest on
        a tie).

        Raises:
            NoBids: no eligible member has bid
        """
        if auction.winner_id:
            return auction.winner_id
        self.exclude_prior_winners(auction, group)
        top = auction.highest_bid(skip=auction.excluded_ids)
        if top is None:
            raise NoBids(f"Auction {auction.auction_id} has no eligible bids")
        return top.member_id


__all__ = ["AuctionStateMachine", "participation_rate"]
