"""
Ranking Module.

Derived payment-discipline scores and group-relative ranks.
"""

from chitfund.core.ranking.ranking import MemberRanking, RankingCategory, RankingEngine

__all__ = ["MemberRanking", "RankingCategory", "RankingEngine"]
