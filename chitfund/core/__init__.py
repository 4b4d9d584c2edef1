"""
Core engine: groups, auctions, settlement, ledger, ranking and storage.
"""
