"""
In-memory storage.

Aggregates are kept as serialized dicts, so every load hands out a fresh
copy and callers never share mutable state with the store. One lock
guards all tables; version checks mirror the SQLite backend.
"""

import threading
from typing import Dict, List, Optional, Tuple

from chitfund.core.auction.auction import Auction
from chitfund.core.errors import (
    ConcurrencyConflict,
    DuplicateSettlement,
    InvalidState,
    NotFoundError,
)
from chitfund.core.group.group import Group
from chitfund.core.ledger.entry import LedgerEntry
from chitfund.core.ranking.ranking import MemberRanking

EntryKey = Tuple[str, str, int]


class _Tables:
    def __init__(self):
        self.lock = threading.RLock()
        self.groups: Dict[str, dict] = {}
        self.auctions: Dict[str, dict] = {}
        self.entries: Dict[EntryKey, dict] = {}
        self.rankings: Dict[str, Dict[str, dict]] = {}


def _check_version(kind: str, key: str, stored: Optional[dict], expected: int) -> None:
    actual = stored["version"] if stored is not None else 0
    if actual != expected:
        raise ConcurrencyConflict(kind, key, expected, actual)


class InMemoryGroupRepository:
    def __init__(self, tables: _Tables):
        self._t = tables

    def get(self, group_id: str) -> Group:
        with self._t.lock:
            data = self._t.groups.get(group_id)
            if data is None:
                raise NotFoundError(f"Group {group_id} not found")
            return Group.from_dict(data)

    def save(self, group: Group) -> Group:
        with self._t.lock:
            _check_version("group", group.group_id, self._t.groups.get(group.group_id), group.version)
            group.version += 1
            self._t.groups[group.group_id] = group.to_dict()
            return group

    def delete(self, group_id: str) -> bool:
        with self._t.lock:
            return self._t.groups.pop(group_id, None) is not None

    def list_all(self) -> List[Group]:
        with self._t.lock:
            return [Group.from_dict(d) for d in self._t.groups.values()]


class InMemoryAuctionRepository:
    def __init__(self, tables: _Tables):
        self._t = tables

    def get(self, auction_id: str) -> Auction:
        with self._t.lock:
            data = self._t.auctions.get(auction_id)
            if data is None:
                raise NotFoundError(f"Auction {auction_id} not found")
            return Auction.from_dict(data)

    def save(self, auction: Auction) -> Auction:
        with self._t.lock:
            _check_version(
                "auction", auction.auction_id,
                self._t.auctions.get(auction.auction_id), auction.version,
            )
            for other_id, other in self._t.auctions.items():
                if (
                    other_id != auction.auction_id
                    and other["group_id"] == auction.group_id
                    and other["period_number"] == auction.period_number
                ):
                    raise InvalidState(
                        f"Auction for period {auction.period_number} already exists "
                        f"in group {auction.group_id}"
                    )
            auction.version += 1
            self._t.auctions[auction.auction_id] = auction.to_dict()
            return auction

    def delete(self, auction_id: str) -> bool:
        with self._t.lock:
            return self._t.auctions.pop(auction_id, None) is not None

    def find_by_period(self, group_id: str, period_number: int) -> Optional[Auction]:
        with self._t.lock:
            for data in self._t.auctions.values():
                if data["group_id"] == group_id and data["period_number"] == period_number:
                    return Auction.from_dict(data)
            return None

    def list_for_group(self, group_id: str) -> List[Auction]:
        with self._t.lock:
            auctions = [
                Auction.from_dict(d) for d in self._t.auctions.values()
                if d["group_id"] == group_id
            ]
        return sorted(auctions, key=lambda a: a.period_number)


class InMemoryLedgerRepository:
    def __init__(self, tables: _Tables):
        self._t = tables

    def get(self, group_id: str, member_id: str, period_number: int) -> LedgerEntry:
        with self._t.lock:
            data = self._t.entries.get((group_id, member_id, period_number))
            if data is None:
                raise NotFoundError(
                    f"Ledger entry not found: group={group_id} member={member_id} "
                    f"period={period_number}"
                )
            return LedgerEntry.from_dict(data)

    def create(self, entry: LedgerEntry) -> LedgerEntry:
        key = (entry.group_id, entry.member_id, entry.period_number)
        with self._t.lock:
            if key in self._t.entries:
                raise DuplicateSettlement(*key)
            entry.version = 1
            self._t.entries[key] = entry.to_dict()
            return entry

    def save(self, entry: LedgerEntry) -> LedgerEntry:
        key = (entry.group_id, entry.member_id, entry.period_number)
        with self._t.lock:
            _check_version("ledger entry", entry.entry_id, self._t.entries.get(key), entry.version)
            entry.version += 1
            self._t.entries[key] = entry.to_dict()
            return entry

    def list_for_group(
        self, group_id: str, period_number: Optional[int] = None
    ) -> List[LedgerEntry]:
        with self._t.lock:
            entries = [
                LedgerEntry.from_dict(d) for (g, _, p), d in self._t.entries.items()
                if g == group_id and (period_number is None or p == period_number)
            ]
        return sorted(entries, key=lambda e: (e.period_number, e.member_id))

    def list_for_member(self, group_id: str, member_id: str) -> List[LedgerEntry]:
        with self._t.lock:
            entries = [
                LedgerEntry.from_dict(d) for (g, m, _), d in self._t.entries.items()
                if g == group_id and m == member_id
            ]
        return sorted(entries, key=lambda e: e.period_number)

    def delete_for_period(self, group_id: str, period_number: int) -> int:
        with self._t.lock:
            keys = [k for k in self._t.entries if k[0] == group_id and k[2] == period_number]
            for key in keys:
                del self._t.entries[key]
            return len(keys)

    def delete_for_group(self, group_id: str) -> int:
        with self._t.lock:
            keys = [k for k in self._t.entries if k[0] == group_id]
            for key in keys:
                del self._t.entries[key]
            return len(keys)


class InMemoryRankingRepository:
    def __init__(self, tables: _Tables):
        self._t = tables

    def replace_for_group(self, group_id: str, rankings: List[MemberRanking]) -> None:
        with self._t.lock:
            self._t.rankings[group_id] = {r.member_id: r.to_dict() for r in rankings}

    def list_for_group(self, group_id: str) -> List[MemberRanking]:
        with self._t.lock:
            rankings = [
                MemberRanking.from_dict(d)
                for d in self._t.rankings.get(group_id, {}).values()
            ]
        return sorted(rankings, key=lambda r: r.rank)

    def get(self, group_id: str, member_id: str) -> MemberRanking:
        with self._t.lock:
            data = self._t.rankings.get(group_id, {}).get(member_id)
            if data is None:
                raise NotFoundError(f"No ranking for member {member_id} in group {group_id}")
            return MemberRanking.from_dict(data)

    def delete_for_group(self, group_id: str) -> int:
        with self._t.lock:
            return len(self._t.rankings.pop(group_id, {}))


class InMemoryStorage:
    """All four repositories over one set of in-process tables."""

    def __init__(self):
        tables = _Tables()
        self.groups = InMemoryGroupRepository(tables)
        self.auctions = InMemoryAuctionRepository(tables)
        self.ledger = InMemoryLedgerRepository(tables)
        self.rankings = InMemoryRankingRepository(tables)

    def close(self) -> None:
        pass
