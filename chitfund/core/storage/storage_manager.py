from pathlib import Path
from typing import List, Optional

from chitfund.core.auction.auction import Auction
from chitfund.core.errors import NotFoundError
from chitfund.core.group.group import Group
from chitfund.core.ledger.entry import LedgerEntry
from chitfund.core.ranking.ranking import MemberRanking
from chitfund.core.storage.sqlite_adapter import SQLiteAdapter
from chitfund.utils.logger import get_logger

logger = get_logger("storage.manager")


class SQLiteGroupRepository:
    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def get(self, group_id: str) -> Group:
        data = self.adapter.get_group(group_id)
        if data is None:
            raise NotFoundError(f"Group {group_id} not found")
        return Group.from_dict(data)

    def save(self, group: Group) -> Group:
        group.version = self.adapter.save_group(group.to_dict(), group.version)
        return group

    def delete(self, group_id: str) -> bool:
        return self.adapter.delete_group(group_id) > 0

    def list_all(self) -> List[Group]:
        return [Group.from_dict(d) for d in self.adapter.get_all_groups()]


class SQLiteAuctionRepository:
    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def get(self, auction_id: str) -> Auction:
        data = self.adapter.get_auction(auction_id)
        if data is None:
            raise NotFoundError(f"Auction {auction_id} not found")
        return Auction.from_dict(data)

    def save(self, auction: Auction) -> Auction:
        auction.version = self.adapter.save_auction(auction.to_dict(), auction.version)
        return auction

    def delete(self, auction_id: str) -> bool:
        return self.adapter.delete_auction(auction_id) > 0

    def find_by_period(self, group_id: str, period_number: int) -> Optional[Auction]:
        data = self.adapter.get_auction_by_period(group_id, period_number)
        return Auction.from_dict(data) if data else None

    def list_for_group(self, group_id: str) -> List[Auction]:
        return [Auction.from_dict(d) for d in self.adapter.get_group_auctions(group_id)]


class SQLiteLedgerRepository:
    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def get(self, group_id: str, member_id: str, period_number: int) -> LedgerEntry:
        data = self.adapter.get_entry(group_id, member_id, period_number)
        if data is None:
            raise NotFoundError(
                f"Ledger entry not found: group={group_id} member={member_id} "
                f"period={period_number}"
            )
        return LedgerEntry.from_dict(data)

    def create(self, entry: LedgerEntry) -> LedgerEntry:
        entry.version = self.adapter.insert_entry(entry.to_dict())
        return entry

    def save(self, entry: LedgerEntry) -> LedgerEntry:
        entry.version = self.adapter.save_entry(entry.to_dict(), entry.version)
        return entry

    def list_for_group(
        self, group_id: str, period_number: Optional[int] = None
    ) -> List[LedgerEntry]:
        return [
            LedgerEntry.from_dict(d)
            for d in self.adapter.get_group_entries(group_id, period_number)
        ]

    def list_for_member(self, group_id: str, member_id: str) -> List[LedgerEntry]:
        return [
            LedgerEntry.from_dict(d)
            for d in self.adapter.get_member_entries(group_id, member_id)
        ]

    def delete_for_period(self, group_id: str, period_number: int) -> int:
        return self.adapter.delete_period_entries(group_id, period_number)

    def delete_for_group(self, group_id: str) -> int:
        return self.adapter.delete_group_entries(group_id)


class SQLiteRankingRepository:
    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    def replace_for_group(self, group_id: str, rankings: List[MemberRanking]) -> None:
        self.adapter.replace_rankings(group_id, [r.to_dict() for r in rankings])

    def list_for_group(self, group_id: str) -> List[MemberRanking]:
        return [MemberRanking.from_dict(d) for d in self.adapter.get_rankings(group_id)]

    def get(self, group_id: str, member_id: str) -> MemberRanking:
        data = self.adapter.get_ranking(group_id, member_id)
        if data is None:
            raise NotFoundError(f"No ranking for member {member_id} in group {group_id}")
        return MemberRanking.from_dict(data)

    def delete_for_group(self, group_id: str) -> int:
        return self.adapter.delete_rankings(group_id)


class StorageManager:
    """
    Manages persistent storage for the engine.

    Exposes the four repositories (groups, auctions, ledger, rankings)
    over a single SQLite database.
    """

    def __init__(self, data_dir: Path, db_name: str = "chitfund.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        self.groups = SQLiteGroupRepository(self.adapter)
        self.auctions = SQLiteAuctionRepository(self.adapter)
        self.ledger = SQLiteLedgerRepository(self.adapter)
        self.rankings = SQLiteRankingRepository(self.adapter)

        logger.info(f"StorageManager initialized at {self.db_path}")

    def close(self) -> None:
        self.adapter.close()
