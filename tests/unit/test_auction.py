"""
Unit tests for the auction state machine.

Tests cover:
1. Scheduling and eligibility (prior winners, manual exclusions)
2. Lifecycle transitions
3. Bid validation and its error precedence
4. Exclusions on open auctions
5. Closing and winner selection
"""

from datetime import datetime, timedelta, timezone

import pytest

from chitfund.core.auction import (
    Auction,
    AuctionStateMachine,
    AuctionStatus,
    ManualExclusion,
    participation_rate,
)
from chitfund.core.config import EngineConfig
from chitfund.core.errors import (
    BidTooLow,
    BusinessRuleViolation,
    DuplicateBid,
    InvalidAmount,
    InvalidState,
    MemberExcluded,
    NoBids,
    NoEligibleMembers,
    NotAMember,
    NotFoundError,
    ValidationError,
    WinnerHasNoBid,
)
from chitfund.core.group import Group

NOW = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def make_group(members: int = 10) -> Group:
    group = Group(
        group_id="g1",
        name="Office Fund",
        pool_amount=100_000,
        capacity=members,
        commission_amount=5_000,
        contribution=10_000,
    )
    for i in range(1, members + 1):
        group.add_member(f"m{i:02d}", f"Member {i}", NOW)
    group.activate(NOW)
    return group


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def machine():
    return AuctionStateMachine()


@pytest.fixture
def group():
    return make_group()


@pytest.fixture
def auction(machine, group):
    """A scheduled auction for period 1."""
    return machine.schedule(group, 1, NOW, auction_id="a1")


@pytest.fixture
def live(machine, auction):
    machine.start(auction, NOW)
    return auction


# =============================================================================
# Scheduling
# =============================================================================


class TestSchedule:
    """Tests for creating auctions."""

    def test_schedule(self, auction):
        assert auction.status == AuctionStatus.SCHEDULED
        assert auction.starting_bid == 5_000
        assert auction.eligible_count == 10
        assert auction.auto_excluded == ()
        assert auction.version == 0

    def test_generated_id(self, machine, group):
        auction = machine.schedule(group, 2, NOW)
        assert auction.auction_id.startswith("auc-")

    def test_prior_winners_auto_excluded(self, machine, group):
        group.record_winner("m03", 1)

        auction = machine.schedule(group, 2, NOW)

        assert auction.auto_excluded == ("m03",)
        assert auction.eligible_count == 9
        assert auction.is_excluded("m03")

    def test_manual_exclusions(self, machine, group):
        auction = machine.schedule(
            group, 1, NOW, manual_exclusions=[ManualExclusion("m05", "defaulted")]
        )
        assert auction.eligible_count == 9
        assert auction.manual_exclusion_for("m05").reason == "defaulted"

    def test_unknown_excluded_member(self, machine, group):
        with pytest.raises(NotFoundError):
            machine.schedule(group, 1, NOW, manual_exclusions=[ManualExclusion("ghost", "x")])

    def test_group_must_be_active(self, machine):
        group = Group("g2", "New", 30_000, 3, 1_000, 10_000)

        with pytest.raises(InvalidState):
            machine.schedule(group, 1, NOW)

    def test_period_beyond_duration(self, machine, group):
        with pytest.raises(InvalidState):
            machine.schedule(group, 11, NOW)

    @pytest.mark.parametrize("period", [0, -1])
    def test_invalid_period(self, machine, group, period):
        with pytest.raises(ValidationError):
            machine.schedule(group, period, NOW)

    def test_period_taken(self, machine, group):
        with pytest.raises(InvalidState):
            machine.schedule(group, 1, NOW, existing_periods={1})

    def test_no_eligible_members(self, machine):
        group = make_group(2)
        group.record_winner("m01", 1)

        with pytest.raises(NoEligibleMembers):
            machine.schedule(
                group, 2, NOW, manual_exclusions=[ManualExclusion("m02", "suspended")]
            )


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Transitions never skip or reverse."""

    def test_start(self, machine, auction):
        machine.start(auction, NOW, started_by="admin")

        assert auction.status == AuctionStatus.LIVE
        assert auction.started_at == NOW
        assert auction.started_by == "admin"

    def test_start_twice(self, machine, live):
        with pytest.raises(InvalidState):
            machine.start(live, NOW)

    def test_close_requires_live(self, machine, auction, group):
        with pytest.raises(InvalidState):
            machine.close(auction, group, "m01", NOW)
        assert auction.status == AuctionStatus.SCHEDULED

    def test_start_closed_auction(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.close(live, group, "m01", NOW)

        with pytest.raises(InvalidState):
            machine.start(live, NOW)


# =============================================================================
# Bidding
# =============================================================================


class TestPlaceBid:
    """Tests for bid validation."""

    def test_accepts_bid(self, machine, live, group):
        bid = machine.place_bid(live, group, "m01", 8_000, NOW)

        assert bid.member_name == "Member 1"
        assert live.current_highest_bid == 8_000
        assert live.bid_count == 1
        assert live.participation_rate == 10

    def test_lower_bid_accepted_by_default(self, machine, live, group):
        machine.place_bid(live, group, "m01", 12_000, NOW)
        machine.place_bid(live, group, "m02", 9_000, NOW)

        assert live.current_highest_bid == 12_000
        assert live.bid_count == 2

    def test_proxy_bid(self, machine, live, group):
        bid = machine.place_bid(live, group, "m04", 7_000, NOW, proxy=("admin", "Admin"))

        assert bid.placed_by_admin
        assert bid.placed_by_id == "admin"

    def test_bid_on_scheduled_auction(self, machine, auction, group):
        with pytest.raises(InvalidState):
            machine.place_bid(auction, group, "m01", 8_000, NOW)

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount(self, machine, live, group, amount):
        with pytest.raises(InvalidAmount):
            machine.place_bid(live, group, "m01", amount, NOW)

    def test_invalid_amount_checked_before_state(self, machine, auction, group):
        """Amount is validated before anything else."""
        with pytest.raises(InvalidAmount):
            machine.place_bid(auction, group, "m01", 0, NOW)

    def test_not_a_member(self, machine, live, group):
        with pytest.raises(NotAMember):
            machine.place_bid(live, group, "stranger", 8_000, NOW)

    def test_excluded_member(self, machine, live, group):
        machine.exclude_member(live, group, "m05", "defaulted")

        with pytest.raises(MemberExcluded):
            machine.place_bid(live, group, "m05", 8_000, NOW)

    def test_duplicate_bid(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)

        with pytest.raises(DuplicateBid):
            machine.place_bid(live, group, "m01", 9_000, NOW)
        assert live.bid_count == 1

    def test_below_starting_bid(self, machine, live, group):
        with pytest.raises(BidTooLow):
            machine.place_bid(live, group, "m01", 4_999, NOW)

    def test_above_payout(self, machine, live, group):
        with pytest.raises(ValidationError):
            machine.place_bid(live, group, "m01", 95_001, NOW)

    def test_strict_mode(self, group):
        machine = AuctionStateMachine(
            config=EngineConfig(require_increasing_bids=True, min_bid_increment=500)
        )
        auction = machine.schedule(group, 1, NOW)
        machine.start(auction, NOW)
        machine.place_bid(auction, group, "m01", 8_000, NOW)

        with pytest.raises(BidTooLow):
            machine.place_bid(auction, group, "m02", 8_400, NOW)
        machine.place_bid(auction, group, "m02", 8_500, NOW)
        assert auction.current_highest_bid == 8_500


def test_participation_rate_rounds_half_up():
    assert participation_rate(1, 8) == 13
    assert participation_rate(1, 3) == 33
    assert participation_rate(2, 3) == 67
    assert participation_rate(3, 0) == 0


# =============================================================================
# Exclusions
# =============================================================================


class TestExclusions:
    """Tests for manual exclusions on open auctions."""

    def test_exclude(self, machine, live, group):
        machine.exclude_member(live, group, "m05", "missed dues", excluded_by="admin")

        assert live.eligible_count == 9
        assert live.manual_exclusion_for("m05").excluded_by == "admin"

    def test_exclude_on_scheduled(self, machine, auction, group):
        machine.exclude_member(auction, group, "m05", "missed dues")
        assert auction.eligible_count == 9

    def test_reason_required(self, machine, live, group):
        with pytest.raises(ValidationError):
            machine.exclude_member(live, group, "m05", "")

    def test_exclude_unknown(self, machine, live, group):
        with pytest.raises(NotFoundError):
            machine.exclude_member(live, group, "ghost", "x")

    def test_exclude_twice(self, machine, live, group):
        machine.exclude_member(live, group, "m05", "x")

        with pytest.raises(BusinessRuleViolation) as exc:
            machine.exclude_member(live, group, "m05", "again")
        assert exc.value.reason == "already_excluded"

    def test_exclude_bidder(self, machine, live, group):
        machine.place_bid(live, group, "m05", 8_000, NOW)

        with pytest.raises(BusinessRuleViolation) as exc:
            machine.exclude_member(live, group, "m05", "x")
        assert exc.value.reason == "member_has_bid"

    def test_revert(self, machine, live, group):
        machine.exclude_member(live, group, "m05", "x")
        machine.revert_exclusion(live, group, "m05")

        assert live.eligible_count == 10
        machine.place_bid(live, group, "m05", 8_000, NOW)

    def test_revert_without_exclusion(self, machine, live, group):
        with pytest.raises(NotFoundError):
            machine.revert_exclusion(live, group, "m05")

    def test_closed_auction_frozen(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.close(live, group, "m01", NOW)

        with pytest.raises(InvalidState):
            machine.exclude_member(live, group, "m05", "x")


# =============================================================================
# Close
# =============================================================================


class TestClose:
    """Tests for closing and winner selection."""

    def test_close(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.place_bid(live, group, "m02", 15_000, NOW)
        closed_at = NOW + timedelta(hours=1)

        result = machine.close(live, group, "m02", closed_at, closed_by="admin")

        assert live.status == AuctionStatus.CLOSED
        assert live.winner_id == "m02"
        assert live.winning_bid == 15_000
        assert live.closed_at == closed_at
        assert result.winner_recorded
        assert group.get_member("m02").has_won

    def test_winner_need_not_be_highest(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.place_bid(live, group, "m02", 15_000, NOW)

        machine.close(live, group, "m01", NOW)

        assert live.winning_bid == 8_000

    def test_no_bids(self, machine, live, group):
        with pytest.raises(NoBids):
            machine.close(live, group, "m01", NOW)
        assert live.status == AuctionStatus.LIVE

    def test_winner_without_bid(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)

        with pytest.raises(WinnerHasNoBid):
            machine.close(live, group, "m02", NOW)
        assert live.status == AuctionStatus.LIVE

    def test_reclose_same_winner(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.close(live, group, "m01", NOW)

        result = machine.close(live, group, "m01", NOW)

        assert not result.winner_recorded
        assert group.completed_periods == 1

    def test_reclose_other_winner(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.place_bid(live, group, "m02", 9_000, NOW)
        machine.close(live, group, "m01", NOW)

        with pytest.raises(InvalidState):
            machine.close(live, group, "m02", NOW)

    def test_highest_bid_tie_goes_to_earliest(self, machine, live, group):
        machine.place_bid(live, group, "m03", 9_000, NOW)
        machine.place_bid(live, group, "m01", 9_000, NOW + timedelta(minutes=1))

        assert live.highest_bid().member_id == "m03"


# =============================================================================
# Overlapping periods
# =============================================================================


class TestWinnersOfOtherPeriods:
    """Members who win another period after this auction was scheduled."""

    @pytest.fixture
    def later(self, machine, group):
        """Period 2, scheduled while period 1 is still open."""
        auction = machine.schedule(group, 2, NOW, auction_id="a2")
        machine.start(auction, NOW)
        return auction

    def test_start_picks_up_new_winner(self, machine, group):
        auction = machine.schedule(group, 2, NOW, auction_id="a2")
        group.record_winner("m01", 1)

        machine.start(auction, NOW, group=group)

        assert auction.auto_excluded == ("m01",)
        assert auction.eligible_count == 9

    def test_new_winner_cannot_bid(self, machine, later, group):
        group.record_winner("m01", 1)

        with pytest.raises(MemberExcluded):
            machine.place_bid(later, group, "m01", 20_000, NOW)
        assert later.bid_count == 0

    def test_earlier_bid_cannot_win(self, machine, later, group):
        machine.place_bid(later, group, "m01", 20_000, NOW)
        machine.place_bid(later, group, "m03", 12_000, NOW)
        group.record_winner("m01", 1)

        with pytest.raises(MemberExcluded):
            machine.close(later, group, "m01", NOW)
        assert later.status == AuctionStatus.LIVE

        assert machine.default_winner(later, group) == "m03"
        machine.close(later, group, "m03", NOW)
        assert later.winning_bid == 12_000

    def test_earlier_bid_leaves_participation(self, machine, later, group):
        machine.place_bid(later, group, "m01", 20_000, NOW)
        assert later.participation_rate == 10

        group.record_winner("m01", 1)
        machine.place_bid(later, group, "m02", 9_000, NOW)

        assert later.eligible_count == 9
        assert later.participation_rate == 11
        assert later.bid_count == 2

    def test_only_ineligible_bids(self, machine, later, group):
        machine.place_bid(later, group, "m01", 20_000, NOW)
        group.record_winner("m01", 1)

        with pytest.raises(NoBids):
            machine.default_winner(later, group)

    def test_winner_of_this_period_not_excluded(self, machine, live, group):
        machine.place_bid(live, group, "m01", 8_000, NOW)
        machine.close(live, group, "m01", NOW)

        assert not machine.exclude_prior_winners(live, group)
        assert machine.default_winner(live, group) == "m01"


def test_auction_roundtrip(machine, live, group):
    machine.exclude_member(live, group, "m09", "x")
    machine.place_bid(live, group, "m01", 8_000, NOW, proxy=("admin", "Admin"))

    assert Auction.from_dict(live.to_dict()) == live
