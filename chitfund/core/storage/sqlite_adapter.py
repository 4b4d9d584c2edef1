import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from chitfund.core.errors import ConcurrencyConflict, DuplicateSettlement, InvalidState
from chitfund.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Every aggregate is stored as a JSON document next to the columns that
    identify it and a `version` column used for optimistic concurrency:
    1. groups
    2. auctions (unique per group and period)
    3. ledger_entries (unique per group, member and period)
    4. rankings (one row per group member, replaced as a set)
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        # Ensure directory exists
        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def close(self):
        """Close this thread's connection."""
        conn = getattr(self._conn_local, "conn", None)
        if conn is not None:
            conn.close()
            del self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS groups (
                    group_id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id TEXT PRIMARY KEY,
                    group_id TEXT NOT NULL,
                    period_number INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    UNIQUE (group_id, period_number)
                )
            """)

            # The primary key is the settlement idempotency guard
            conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger_entries (
                    group_id TEXT NOT NULL,
                    member_id TEXT NOT NULL,
                    period_number INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    PRIMARY KEY (group_id, member_id, period_number)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_ledger_group_period "
                "ON ledger_entries(group_id, period_number);"
            )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS rankings (
                    group_id TEXT NOT NULL,
                    member_id TEXT NOT NULL,
                    rank INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (group_id, member_id)
                )
            """)

    # =========================================================================
    # Versioned documents
    # =========================================================================

    def _save_versioned(
        self,
        table: str,
        key_columns: Dict[str, Any],
        extra_columns: Dict[str, Any],
        data: Dict[str, Any],
        expected_version: int,
        kind: str,
    ) -> int:
        """
        Write a document if the stored version equals `expected_version`.

        Returns:
            New version
        """
        new_version = expected_version + 1
        payload = dict(data, version=new_version)
        where = " AND ".join(f"{c} = ?" for c in key_columns)
        key_values = tuple(key_columns.values())
        label = ":".join(str(v) for v in key_values)

        conn = self._get_conn()
        try:
            with conn:
                if expected_version == 0:
                    columns = {**key_columns, **extra_columns}
                    names = ", ".join(list(columns) + ["data", "version"])
                    marks = ", ".join("?" for _ in range(len(columns) + 2))
                    conn.execute(
                        f"INSERT INTO {table} ({names}) VALUES ({marks})",
                        tuple(columns.values()) + (json.dumps(payload), new_version),
                    )
                    return new_version

                sets = ", ".join(f"{c} = ?" for c in extra_columns)
                sets = f"{sets}, data = ?, version = ?" if sets else "data = ?, version = ?"
                cursor = conn.execute(
                    f"UPDATE {table} SET {sets} WHERE {where} AND version = ?",
                    tuple(extra_columns.values())
                    + (json.dumps(payload), new_version)
                    + key_values
                    + (expected_version,),
                )
                if cursor.rowcount == 1:
                    return new_version
        except sqlite3.IntegrityError as e:
            existing = self._get_version(table, key_columns)
            if existing is not None:
                raise ConcurrencyConflict(kind, label, expected_version, existing) from None
            raise InvalidState(f"Cannot store {kind} {label}: {e}") from None

        actual = self._get_version(table, key_columns)
        raise ConcurrencyConflict(kind, label, expected_version, actual or 0)

    def _get_version(self, table: str, key_columns: Dict[str, Any]) -> Optional[int]:
        where = " AND ".join(f"{c} = ?" for c in key_columns)
        row = self._get_conn().execute(
            f"SELECT version FROM {table} WHERE {where}", tuple(key_columns.values())
        ).fetchone()
        return row["version"] if row else None

    def _load(self, sql: str, params: tuple) -> Optional[Dict[str, Any]]:
        row = self._get_conn().execute(sql, params).fetchone()
        return json.loads(row["data"]) if row else None

    def _load_all(self, sql: str, params: tuple) -> List[Dict[str, Any]]:
        return [json.loads(row["data"]) for row in self._get_conn().execute(sql, params)]

    def _delete(self, sql: str, params: tuple) -> int:
        conn = self._get_conn()
        with conn:
            return conn.execute(sql, params).rowcount

    # =========================================================================
    # Groups
    # =========================================================================

    def save_group(self, data: Dict[str, Any], expected_version: int) -> int:
        return self._save_versioned(
            "groups", {"group_id": data["group_id"]}, {}, data, expected_version, "group"
        )

    def get_group(self, group_id: str) -> Optional[Dict[str, Any]]:
        return self._load("SELECT data FROM groups WHERE group_id = ?", (group_id,))

    def get_all_groups(self) -> List[Dict[str, Any]]:
        return self._load_all("SELECT data FROM groups ORDER BY group_id", ())

    def delete_group(self, group_id: str) -> int:
        return self._delete("DELETE FROM groups WHERE group_id = ?", (group_id,))

    # =========================================================================
    # Auctions
    # =========================================================================

    def save_auction(self, data: Dict[str, Any], expected_version: int) -> int:
        return self._save_versioned(
            "auctions",
            {"auction_id": data["auction_id"]},
            {"group_id": data["group_id"], "period_number": data["period_number"]},
            data,
            expected_version,
            "auction",
        )

    def get_auction(self, auction_id: str) -> Optional[Dict[str, Any]]:
        return self._load("SELECT data FROM auctions WHERE auction_id = ?", (auction_id,))

    def get_auction_by_period(self, group_id: str, period_number: int) -> Optional[Dict[str, Any]]:
        return self._load(
            "SELECT data FROM auctions WHERE group_id = ? AND period_number = ?",
            (group_id, period_number),
        )

    def get_group_auctions(self, group_id: str) -> List[Dict[str, Any]]:
        return self._load_all(
            "SELECT data FROM auctions WHERE group_id = ? ORDER BY period_number",
            (group_id,),
        )

    def delete_auction(self, auction_id: str) -> int:
        return self._delete("DELETE FROM auctions WHERE auction_id = ?", (auction_id,))

    # =========================================================================
    # Ledger Entries
    # =========================================================================

    def insert_entry(self, data: Dict[str, Any]) -> int:
        """Insert a new entry at version 1; DuplicateSettlement on the triple."""
        payload = dict(data, version=1)
        conn = self._get_conn()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO ledger_entries "
                    "(group_id, member_id, period_number, data, version) VALUES (?, ?, ?, ?, 1)",
                    (data["group_id"], data["member_id"], data["period_number"],
                     json.dumps(payload)),
                )
        except sqlite3.IntegrityError:
            raise DuplicateSettlement(
                data["group_id"], data["member_id"], data["period_number"]
            ) from None
        return 1

    def save_entry(self, data: Dict[str, Any], expected_version: int) -> int:
        return self._save_versioned(
            "ledger_entries",
            {
                "group_id": data["group_id"],
                "member_id": data["member_id"],
                "period_number": data["period_number"],
            },
            {},
            data,
            expected_version,
            "ledger entry",
        )

    def get_entry(self, group_id: str, member_id: str, period_number: int) -> Optional[Dict[str, Any]]:
        return self._load(
            "SELECT data FROM ledger_entries "
            "WHERE group_id = ? AND member_id = ? AND period_number = ?",
            (group_id, member_id, period_number),
        )

    def get_group_entries(self, group_id: str, period_number: Optional[int] = None) -> List[Dict[str, Any]]:
        if period_number is None:
            return self._load_all(
                "SELECT data FROM ledger_entries WHERE group_id = ? "
                "ORDER BY period_number, member_id",
                (group_id,),
            )
        return self._load_all(
            "SELECT data FROM ledger_entries WHERE group_id = ? AND period_number = ? "
            "ORDER BY member_id",
            (group_id, period_number),
        )

    def get_member_entries(self, group_id: str, member_id: str) -> List[Dict[str, Any]]:
        return self._load_all(
            "SELECT data FROM ledger_entries WHERE group_id = ? AND member_id = ? "
            "ORDER BY period_number",
            (group_id, member_id),
        )

    def delete_period_entries(self, group_id: str, period_number: int) -> int:
        return self._delete(
            "DELETE FROM ledger_entries WHERE group_id = ? AND period_number = ?",
            (group_id, period_number),
        )

    def delete_group_entries(self, group_id: str) -> int:
        return self._delete("DELETE FROM ledger_entries WHERE group_id = ?", (group_id,))

    # =========================================================================
    # Rankings
    # =========================================================================

    def replace_rankings(self, group_id: str, rows: List[Dict[str, Any]]):
        """Atomically swap the ranking set of a group."""
        conn = self._get_conn()
        with conn:
            conn.execute("DELETE FROM rankings WHERE group_id = ?", (group_id,))
            conn.executemany(
                "INSERT INTO rankings (group_id, member_id, rank, data) VALUES (?, ?, ?, ?)",
                [(group_id, r["member_id"], r["rank"], json.dumps(r)) for r in rows],
            )

    def get_rankings(self, group_id: str) -> List[Dict[str, Any]]:
        return self._load_all(
            "SELECT data FROM rankings WHERE group_id = ? ORDER BY rank", (group_id,)
        )

    def get_ranking(self, group_id: str, member_id: str) -> Optional[Dict[str, Any]]:
        return self._load(
            "SELECT data FROM rankings WHERE group_id = ? AND member_id = ?",
            (group_id, member_id),
        )

    def delete_rankings(self, group_id: str) -> int:
        return self._delete("DELETE FROM rankings WHERE group_id = ?", (group_id,))
