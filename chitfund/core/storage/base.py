"""
Repository interfaces.

Engines and the service receive these as explicit collaborators, so a test
can hand them the in-memory store and production the SQLite one.

Versioning contract for `save`:
    stored version (0 when absent) must equal the aggregate's `version`,
    otherwise ConcurrencyConflict; on success the stored version becomes
    version + 1 and the aggregate is updated in place.
"""

from typing import List, Optional, Protocol

from chitfund.core.auction.auction import Auction
from chitfund.core.group.group import Group
from chitfund.core.ledger.entry import LedgerEntry
from chitfund.core.ranking.ranking import MemberRanking


class GroupRepository(Protocol):
    def get(self, group_id: str) -> Group: ...

    def save(self, group: Group) -> Group: ...

    def delete(self, group_id: str) -> bool: ...

    def list_all(self) -> List[Group]: ...


class AuctionRepository(Protocol):
    def get(self, auction_id: str) -> Auction: ...

    def save(self, auction: Auction) -> Auction: ...

    def delete(self, auction_id: str) -> bool: ...

    def find_by_period(self, group_id: str, period_number: int) -> Optional[Auction]: ...

    def list_for_group(self, group_id: str) -> List[Auction]: ...


class LedgerRepository(Protocol):
    def get(self, group_id: str, member_id: str, period_number: int) -> LedgerEntry: ...

    def create(self, entry: LedgerEntry) -> LedgerEntry:
        """Insert a new entry; DuplicateSettlement if the triple exists."""
        ...

    def save(self, entry: LedgerEntry) -> LedgerEntry: ...

    def list_for_group(
        self, group_id: str, period_number: Optional[int] = None
    ) -> List[LedgerEntry]: ...

    def list_for_member(self, group_id: str, member_id: str) -> List[LedgerEntry]: ...

    def delete_for_period(self, group_id: str, period_number: int) -> int: ...

    def delete_for_group(self, group_id: str) -> int: ...


class RankingRepository(Protocol):
    def replace_for_group(self, group_id: str, rankings: List[MemberRanking]) -> None:
        """Swap the whole ranking set of a group in one step."""
        ...

    def list_for_group(self, group_id: str) -> List[MemberRanking]: ...

    def get(self, group_id: str, member_id: str) -> MemberRanking: ...

    def delete_for_group(self, group_id: str) -> int: ...


class Storage(Protocol):
    """Bundle of the four repositories handed to the service."""
    groups: GroupRepository
    auctions: AuctionRepository
    ledger: LedgerRepository
    rankings: RankingRepository

    def close(self) -> None: ...
