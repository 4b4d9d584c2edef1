"""
Chit Fund Engine

Auction settlement and payment-ledger core for rotating-auction
savings pools ("chit funds"):
- Auction lifecycle (Scheduled -> Live -> Closed) and bidding
- Settlement of dividends, commission and winner payout
- Per-member periodic dues with grace-period and delay accounting
- Payment-discipline ranking
"""

__version__ = "0.1.0"
