"""
Unit tests for the group aggregate.

Tests cover:
1. Roster management (add/remove, capacity, duplicates)
2. Lifecycle (Forming -> Active -> Closed)
3. Winner history and its idempotency
4. Serialization
"""

from datetime import datetime, timezone

import pytest

from chitfund.core.errors import (
    BusinessRuleViolation,
    CapacityReached,
    InvalidState,
    NotFoundError,
)
from chitfund.core.group import Group, GroupStatus, PaymentModel

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def group():
    """A forming group with room for three members."""
    return Group(
        group_id="g1",
        name="Test Fund",
        pool_amount=30_000,
        capacity=3,
        commission_amount=1_500,
        contribution=10_000,
    )


@pytest.fixture
def active_group(group):
    for i in range(1, 4):
        group.add_member(f"m{i}", f"Member {i}", NOW)
    group.activate(NOW)
    return group


# =============================================================================
# Roster
# =============================================================================


class TestRoster:
    """Tests for adding and removing members."""

    def test_add_member(self, group):
        member = group.add_member("m1", "Asha", NOW)

        assert member.member_id == "m1"
        assert group.member_ids == ["m1"]
        assert not member.has_won

    def test_add_duplicate_rejected(self, group):
        group.add_member("m1", "Asha", NOW)

        with pytest.raises(BusinessRuleViolation) as exc:
            group.add_member("m1", "Asha again", NOW)
        assert exc.value.reason == "duplicate_member"

    def test_capacity_enforced(self, group):
        for i in range(3):
            group.add_member(f"m{i}", f"Member {i}", NOW)

        with pytest.raises(CapacityReached):
            group.add_member("m9", "Late", NOW)
        assert len(group.members) == 3

    def test_roster_is_copy_on_write(self, group):
        group.add_member("m1", "Asha", NOW)
        snapshot = group.members

        group.add_member("m2", "Ravi", NOW)

        assert len(snapshot) == 1
        assert len(group.members) == 2

    def test_remove_member(self, group):
        group.add_member("m1", "Asha", NOW)
        group.remove_member("m1")
        assert group.members == ()

    def test_remove_unknown_member(self, group):
        with pytest.raises(NotFoundError):
            group.remove_member("ghost")

    def test_remove_winner_rejected(self, active_group):
        active_group.record_winner("m2", 1)

        with pytest.raises(BusinessRuleViolation) as exc:
            active_group.remove_member("m2")
        assert exc.value.reason == "member_has_won"

    def test_closed_group_is_frozen(self, active_group):
        active_group.close(NOW)

        with pytest.raises(InvalidState):
            active_group.remove_member("m1")


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for group status transitions."""

    def test_activate(self, active_group):
        assert active_group.status == GroupStatus.ACTIVE
        assert active_group.started_at == NOW

    def test_activate_needs_members(self, group):
        group.add_member("m1", "Asha", NOW)

        with pytest.raises(BusinessRuleViolation):
            group.activate(NOW)
        assert group.status == GroupStatus.FORMING

    def test_activate_twice(self, active_group):
        with pytest.raises(InvalidState):
            active_group.activate(NOW)

    def test_close(self, active_group):
        active_group.close(NOW)
        assert active_group.status == GroupStatus.CLOSED

        with pytest.raises(InvalidState):
            active_group.close(NOW)


# =============================================================================
# Winners
# =============================================================================


class TestWinners:
    """Tests for winner history."""

    def test_record_winner(self, active_group):
        assert active_group.record_winner("m1", 1) is True

        member = active_group.get_member("m1")
        assert member.has_won
        assert member.won_in_period == 1
        assert active_group.winners == ("m1",)
        assert active_group.completed_periods == 1
        assert active_group.progress_percentage == 33

    def test_record_winner_idempotent(self, active_group):
        active_group.record_winner("m1", 1)
        assert active_group.record_winner("m1", 1) is False

        assert active_group.winners == ("m1",)
        assert active_group.completed_periods == 1

    def test_member_cannot_win_twice(self, active_group):
        active_group.record_winner("m1", 1)

        with pytest.raises(BusinessRuleViolation):
            active_group.record_winner("m1", 2)

    def test_revert_winner(self, active_group):
        active_group.record_winner("m1", 1)
        assert active_group.revert_winner("m1", 1)

        assert not active_group.get_member("m1").has_won
        assert active_group.winners == ()
        assert active_group.completed_periods == 0

    def test_prior_winners(self, active_group):
        active_group.record_winner("m3", 1)
        assert active_group.prior_winners() == ["m3"]


def test_group_roundtrip(active_group):
    """Serialized group should load back equal."""
    active_group.record_winner("m2", 1)
    restored = Group.from_dict(active_group.to_dict())

    assert restored == active_group
    assert restored.payment_model == PaymentModel.A
