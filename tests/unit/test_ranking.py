"""
Unit tests for member rankings.
"""

from datetime import datetime, timedelta, timezone

import pytest

from chitfund.core.group import Group
from chitfund.core.ledger import PaymentLedger
from chitfund.core.ranking import MemberRanking, RankingCategory, RankingEngine

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def day(n: int) -> datetime:
    return JAN_1 + timedelta(days=n - 1)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine():
    return RankingEngine()


@pytest.fixture
def group():
    group = Group("g1", "Fund", 50_000, 5, 2_500, 10_000)
    for member_id, name in [("m1", "Asha"), ("m2", "Ravi"), ("m3", "Meera"), ("m4", "Kiran")]:
        group.add_member(member_id, name, JAN_1)
    return group


@pytest.fixture
def entries():
    """
    Period 1 history:
        m1 paid on the due date
        m2 paid two days after grace ended
        m3 never paid (checked a week after grace)
        m4 has no entry
    """
    ledger = PaymentLedger()
    on_time = ledger.open_entry("g1", "m1", "Asha", 1, JAN_1, 3, 10_000, 0)
    ledger.record_payment(on_time, 10_000, "UPI", JAN_1)

    late = ledger.open_entry("g1", "m2", "Ravi", 1, JAN_1, 3, 10_000, 0)
    ledger.record_payment(late, 10_000, "Cash", day(6))

    unpaid = ledger.open_entry("g1", "m3", "Meera", 1, JAN_1, 3, 10_000, 0)
    ledger.refresh(unpaid, day(8))

    return [on_time, late, unpaid]


# =============================================================================
# Scoring
# =============================================================================


class TestScore:
    """Tests for the score formula."""

    def test_on_time_member(self, engine, group, entries):
        ranking = engine.compute_member("g1", group.get_member("m1"), entries[:1])

        assert ranking.on_time_payments == 1
        assert ranking.score == 1170
        assert ranking.category == RankingCategory.EXCELLENT
        assert ranking.completion_rate == 100

    def test_late_member(self, engine, group, entries):
        ranking = engine.compute_member("g1", group.get_member("m2"), entries[1:2])

        assert ranking.delayed_payments == 1
        assert ranking.total_delay_days == 2
        assert ranking.average_delay_days == 2.0
        assert ranking.grace_period_usage == 1
        assert ranking.score == 950
        assert ranking.category == RankingCategory.GOOD

    def test_unpaid_member(self, engine, group, entries):
        ranking = engine.compute_member("g1", group.get_member("m3"), entries[2:])

        assert ranking.total_outstanding == 10_000
        assert ranking.score == 840
        assert ranking.completion_rate == 0

    def test_no_history(self, engine, group):
        ranking = engine.compute_member("g1", group.get_member("m4"), [])

        assert ranking.total_due == 0
        assert ranking.score == 1000

    def test_score_never_negative(self):
        ranking = MemberRanking(
            "g1", "m1", "Asha",
            total_due=10, delayed_payments=10, total_delay_days=400,
            grace_period_usage=10, total_outstanding=1,
        )
        assert RankingEngine.score(ranking) == 0

    @pytest.mark.parametrize("score,category", [
        (1000, RankingCategory.EXCELLENT),
        (999, RankingCategory.GOOD),
        (800, RankingCategory.GOOD),
        (799, RankingCategory.AVERAGE),
        (600, RankingCategory.AVERAGE),
        (599, RankingCategory.POOR),
        (0, RankingCategory.POOR),
    ])
    def test_category_thresholds(self, score, category):
        assert RankingEngine.category(score) == category


# =============================================================================
# Group ranking
# =============================================================================


class TestRecalculateGroup:
    """Tests for group-relative ranks."""

    def test_ranks(self, engine, group, entries):
        rankings = engine.recalculate_group(group, entries, now=day(8))

        assert [r.member_id for r in rankings] == ["m1", "m4", "m2", "m3"]
        assert [r.rank for r in rankings] == [1, 2, 3, 4]
        assert all(r.calculated_at == day(8) for r in rankings)

    def test_idempotent(self, engine, group, entries):
        first = engine.recalculate_group(group, entries, now=day(8))
        second = engine.recalculate_group(group, entries, now=day(8))

        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    def test_ties_keep_roster_order(self, engine, group):
        rankings = engine.recalculate_group(group, [])

        assert [r.member_id for r in rankings] == ["m1", "m2", "m3", "m4"]

    def test_other_groups_ignored(self, engine, group, entries):
        foreign = PaymentLedger().open_entry("g2", "m4", "Kiran", 1, JAN_1, 3, 10_000, 0)

        rankings = engine.recalculate_group(group, entries + [foreign])

        m4 = next(r for r in rankings if r.member_id == "m4")
        assert m4.total_due == 0

    def test_top_and_bottom(self, engine, group, entries):
        rankings = engine.recalculate_group(group, entries)

        assert [r.member_id for r in RankingEngine.top_performers(rankings, 2)] == ["m1", "m4"]
        assert RankingEngine.bottom_performers(rankings, 1)[0].member_id == "m3"


def test_ranking_roundtrip(engine, group, entries):
    ranking = engine.recalculate_group(group, entries, now=day(8))[0]
    assert MemberRanking.from_dict(ranking.to_dict()) == ranking
