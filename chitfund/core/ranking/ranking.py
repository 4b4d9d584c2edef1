"""
Ranking Engine - payment-discipline scores for group members.

Score formula (clamped at 0):
----------------------------
    1000
    + 50  per on-time paid entry
    + 100 if the member has dues and no delayed entry
    + 20  per entry settled without using the grace period
    - 30  per delayed entry
    - 5   per cumulative delay day
    - 100 if any balance is outstanding
    - 10  per grace-period use

Rankings are a derived projection of ledger history: `recalculate_group`
rebuilds the whole set from scratch, so running it twice over unchanged
ledger data yields identical scores and ranks.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from chitfund.core.group.group import Group, GroupMember
from chitfund.core.ledger.entry import LedgerEntry, PaymentStatus
from chitfund.utils.logger import get_logger
from chitfund.utils.timeutil import format_dt, parse_dt

logger = get_logger("ranking")


# =============================================================================
# Constants
# =============================================================================

BASE_SCORE = 1000
ON_TIME_BONUS = 50
CLEAN_RECORD_BONUS = 100
WITHIN_GRACE_BONUS = 20
DELAYED_PENALTY = 30
DELAY_DAY_PENALTY = 5
OUTSTANDING_PENALTY = 100
GRACE_USE_PENALTY = 10


class RankingCategory(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    AVERAGE = "Average"
    POOR = "Poor"


# =============================================================================
# Data Structures
# =============================================================================


@dataclass
class MemberRanking:
    """Statistics, score and position of one member within one group."""
    group_id: str
    member_id: str
    member_name: str
    total_due: int = 0
    on_time_payments: int = 0
    delayed_payments: int = 0
    total_delay_days: int = 0
    average_delay_days: float = 0.0
    grace_period_usage: int = 0
    paid_entries: int = 0
    total_paid: int = 0
    total_dividends: int = 0
    total_outstanding: int = 0
    has_won: bool = False
    won_in_period: Optional[int] = None
    score: int = BASE_SCORE
    category: RankingCategory = RankingCategory.EXCELLENT
    rank: int = 0
    calculated_at: Optional[datetime] = None

    @property
    def completion_rate(self) -> int:
        """Percentage of dues fully paid."""
        if self.total_due == 0:
            return 0
        return round(self.paid_entries / self.total_due * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group_id": self.group_id,
            "member_id": self.member_id,
            "member_name": self.member_name,
            "total_due": self.total_due,
            "on_time_payments": self.on_time_payments,
            "delayed_payments": self.delayed_payments,
            "total_delay_days": self.total_delay_days,
            "average_delay_days": self.average_delay_days,
            "grace_period_usage": self.grace_period_usage,
            "paid_entries": self.paid_entries,
            "total_paid": self.total_paid,
            "total_dividends": self.total_dividends,
            "total_outstanding": self.total_outstanding,
            "has_won": self.has_won,
            "won_in_period": self.won_in_period,
            "score": self.score,
            "category": self.category.value,
            "rank": self.rank,
            "calculated_at": format_dt(self.calculated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemberRanking":
        fields = dict(data)
        fields["category"] = RankingCategory(fields["category"])
        fields["calculated_at"] = parse_dt(fields.get("calculated_at"))
        return cls(**fields)


# =============================================================================
# Ranking Engine
# =============================================================================


class RankingEngine:
    """Pure scoring over ledger history; holds no state between calls."""

    @staticmethod
    def category(score: int) -> RankingCategory:
        if score >= 1000:
            return RankingCategory.EXCELLENT
        if score >= 800:
            return RankingCategory.GOOD
        if score >= 600:
            return RankingCategory.AVERAGE
        return RankingCategory.POOR

    @staticmethod
    def score(ranking: MemberRanking) -> int:
        """Score from already-aggregated statistics."""
        score = BASE_SCORE
        score += ranking.on_time_payments * ON_TIME_BONUS
        if ranking.total_due > 0 and ranking.delayed_payments == 0:
            score += CLEAN_RECORD_BONUS
        score += (ranking.total_due - ranking.grace_period_usage) * WITHIN_GRACE_BONUS
        score -= ranking.delayed_payments * DELAYED_PENALTY
        score -= ranking.total_delay_days * DELAY_DAY_PENALTY
        if ranking.total_outstanding > 0:
            score -= OUTSTANDING_PENALTY
        score -= ranking.grace_period_usage * GRACE_USE_PENALTY
        return max(0, score)

    def compute_member(
        self,
        group_id: str,
        member: GroupMember,
        entries: Iterable[LedgerEntry],
        now: Optional[datetime] = None,
    ) -> MemberRanking:
        """Aggregate one member's entries and score them (rank left at 0)."""
        ranking = MemberRanking(
            group_id=group_id,
            member_id=member.member_id,
            member_name=member.name,
            has_won=member.has_won,
            won_in_period=member.won_in_period,
            calculated_at=now,
        )

        for entry in entries:
            ranking.total_due += 1
            if entry.status == PaymentStatus.PAID:
                ranking.paid_entries += 1
                if entry.on_time:
                    ranking.on_time_payments += 1
            if entry.delay_days > 0:
                ranking.delayed_payments += 1
                ranking.total_delay_days += entry.delay_days
            if entry.grace_period_used:
                ranking.grace_period_usage += 1
            ranking.total_paid += entry.paid_amount
            ranking.total_dividends += entry.dividend_received
            ranking.total_outstanding += entry.outstanding_balance

        if ranking.delayed_payments:
            ranking.average_delay_days = round(
                ranking.total_delay_days / ranking.delayed_payments, 2
            )

        ranking.score = self.score(ranking)
        ranking.category = self.category(ranking.score)
        return ranking

    def recalculate_group(
        self,
        group: Group,
        entries: Iterable[LedgerEntry],
        now: Optional[datetime] = None,
    ) -> List[MemberRanking]:
        """
        Score every roster member and assign ranks 1..N.

        Order is by (score, on-time count) descending; members that tie on
        both keep roster order.
        """
        by_member: Dict[str, List[LedgerEntry]] = {m: [] for m in group.member_ids}
        for entry in entries:
            if entry.group_id == group.group_id and entry.member_id in by_member:
                by_member[entry.member_id].append(entry)

        rankings = [
            self.compute_member(group.group_id, member, by_member[member.member_id], now)
            for member in group.members
        ]
        rankings.sort(key=lambda r: (r.score, r.on_time_payments), reverse=True)
        for position, ranking in enumerate(rankings, start=1):
            ranking.rank = position

        logger.info(f"Rankings recalculated for group {group.group_id} ({len(rankings)} members)")
        return rankings

    @staticmethod
    def top_performers(rankings: Iterable[MemberRanking], limit: int = 5) -> List[MemberRanking]:
        return sorted(rankings, key=lambda r: r.rank)[:limit]

    @staticmethod
    def bottom_performers(rankings: Iterable[MemberRanking], limit: int = 5) -> List[MemberRanking]:
        return sorted(rankings, key=lambda r: r.rank, reverse=True)[:limit]
