"""
Auction Module.

Per-period bidding rounds of a chit fund group:
- Auction aggregate, bids and manual exclusions
- State machine: schedule, start, bid, exclude, close (with settlement)
"""

from chitfund.core.auction.auction import (
    Auction,
    AuctionStatus,
    Bid,
    ManualExclusion,
)

from chitfund.core.auction.state_machine import (
    AuctionStateMachine,
    participation_rate,
)

__all__ = [
    # Aggregate
    "Auction",
    "AuctionStatus",
    "Bid",
    "ManualExclusion",
    # State machine
    "AuctionStateMachine",
    "participation_rate",
]
