"""
Settlement Module.

Computes winner payout and dividend split for a closed auction and
produces the period's ledger entries.
"""

from chitfund.core.settlement.engine import DividendPlan, SettlementEngine, SettlementResult

__all__ = ["DividendPlan", "SettlementEngine", "SettlementResult"]
