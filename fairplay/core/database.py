"""
Database module for persistent settlement state.
Uses SQLite for wagers, payout records and jackpot pools so that in-flight
settlements survive process restarts.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import orjson

from fairplay.core.logger import get_logger
from fairplay.config import settings

logger = get_logger("database")

# Columns holding JSON documents
_JSON_COLUMNS = {"params", "result"}


def _now() -> str:
    return datetime.now().isoformat()


def _decode(row: Optional[sqlite3.Row]) -> Optional[Dict]:
    if row is None:
        return None
    data = dict(row)
    for column in _JSON_COLUMNS & data.keys():
        if data[column] is not None:
            data[column] = orjson.loads(data[column])
    return data


def _encode(fields: Dict) -> Dict:
    encoded = dict(fields)
    for column in _JSON_COLUMNS & encoded.keys():
        if encoded[column] is not None:
            encoded[column] = orjson.dumps(encoded[column]).decode("utf-8")
    return encoded


class Database:
    """Thread-safe SQLite wrapper. Writes that read-modify-write run under one lock."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else settings.paths.get_db_path()
        self._local = threading.local()
        self._write_lock = threading.RLock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initializing database at {self.db_path}")
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        if getattr(self._local, "connection", None) is None:
            connection = sqlite3.connect(
                str(self.db_path), check_same_thread=False, isolation_level=None
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute("PRAGMA busy_timeout=5000")
            self._local.connection = connection
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Exclusive write transaction across threads and processes."""
        with self._write_lock:
            conn = self._get_connection()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def close(self):
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            self._local.connection = None

    def _init_db(self):
        with self.transaction() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS wagers (
                    id TEXT PRIMARY KEY,
                    player_address TEXT NOT NULL,
                    game_type TEXT NOT NULL,
                    params TEXT NOT NULL,
                    stake REAL NOT NULL,
                    status TEXT NOT NULL,
                    nonce TEXT NOT NULL,
                    nonce_hash TEXT NOT NULL,
                    anchor_hash TEXT,
                    anchor_slot INTEGER,
                    escrow_reference TEXT,
                    escrow_deadline REAL,
                    seed_hash TEXT,
                    seed_slot INTEGER,
                    digest TEXT,
                    result TEXT,
                    multiplier REAL,
                    payout_amount REAL,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_wagers_status ON wagers(status)"
            )

            # One row per wager id: the primary key is the idempotency key
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS payouts (
                    wager_id TEXT PRIMARY KEY,
                    player_address TEXT NOT NULL,
                    amount REAL NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER DEFAULT 0,
                    reference TEXT,
                    reason TEXT,
                    next_attempt_at REAL,
                    blockhash TEXT,
                    slot INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    confirmed_at TEXT
                )
            """
            )
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_payouts_status ON payouts(status)"
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS jackpot_pools (
                    game TEXT PRIMARY KEY,
                    amount REAL NOT NULL,
                    seed_amount REAL NOT NULL,
                    hits INTEGER DEFAULT 0,
                    last_hit_at TEXT,
                    updated_at TEXT NOT NULL
                )
            """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS jackpot_contributions (
                    wager_id TEXT PRIMARY KEY,
                    game TEXT NOT NULL,
                    contribution REAL NOT NULL,
                    paid REAL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """
            )

        self._migrate_schema()

    def _migrate_schema(self):
        """Handle schema migrations for existing databases."""
        conn = self._get_connection()
        indexes = {row[1] for row in conn.execute("PRAGMA index_list(wagers)")}

        # An escrow transfer funds exactly one wager
        if "idx_wagers_escrow_reference" not in indexes:
            logger.info("Migrating: Adding unique index on wagers.escrow_reference")
            with self.transaction() as cursor:
                cursor.execute(
                    "CREATE UNIQUE INDEX idx_wagers_escrow_reference ON wagers(escrow_reference)"
                )

    # ==================== Wagers ====================

    def create_wager(self, wager: Dict) -> Dict:
        now = _now()
        row = _encode(dict(wager, created_at=now, updated_at=now))
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        with self.transaction() as cursor:
            cursor.execute(
                f"INSERT INTO wagers ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )

        return self.get_wager(wager["id"])

    def get_wager(self, wager_id: str) -> Optional[Dict]:
        conn = self._get_connection()
        row = conn.execute("SELECT * FROM wagers WHERE id = ?", (wager_id,)).fetchone()
        return _decode(row)

    def transition_wager(
        self, wager_id: str, from_statuses: Iterable[str], to_status: str, **fields
    ) -> bool:
        """
        Compare-and-set status change. Returns False when the wager was not
        in one of `from_statuses`, leaving the row untouched.
        """
        from_statuses = list(from_statuses)
        updates = _encode(dict(fields, status=to_status, updated_at=_now()))
        assignments = ", ".join(f"{column} = ?" for column in updates)
        marks = ", ".join("?" for _ in from_statuses)

        with self.transaction() as cursor:
            result = cursor.execute(
                f"UPDATE wagers SET {assignments} WHERE id = ? AND status IN ({marks})",
                (*updates.values(), wager_id, *from_statuses),
            )
            return result.rowcount == 1

    def update_wager(self, wager_id: str, **fields):
        """Update non-status fields (errors, references)."""
        updates = _encode(dict(fields, updated_at=_now()))
        assignments = ", ".join(f"{column} = ?" for column in updates)

        with self.transaction() as cursor:
            cursor.execute(
                f"UPDATE wagers SET {assignments} WHERE id = ?",
                (*updates.values(), wager_id),
            )

    def get_wager_by_escrow(self, escrow_reference: str) -> Optional[Dict]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM wagers WHERE escrow_reference = ?", (escrow_reference,)
        ).fetchone()
        return _decode(row)

    def get_wagers_by_status(self, statuses: Iterable[str], limit: int = 100) -> List[Dict]:
        statuses = list(statuses)
        marks = ", ".join("?" for _ in statuses)
        conn = self._get_connection()
        rows = conn.execute(
            f"""
            SELECT * FROM wagers WHERE status IN ({marks})
            ORDER BY created_at ASC LIMIT ?
        """,
            (*statuses, limit),
        ).fetchall()
        return [_decode(row) for row in rows]

    # ==================== Payouts ====================

    def insert_payout(self, record: Dict) -> bool:
        """Insert a payout row. Returns False if the wager id already has one."""
        now = _now()
        row = dict(record, created_at=now, updated_at=now)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)

        with self.transaction() as cursor:
            result = cursor.execute(
                f"INSERT OR IGNORE INTO payouts ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            return result.rowcount == 1

    def get_payout(self, wager_id: str) -> Optional[Dict]:
        conn = self._get_connection()
        row = conn.execute(
            "SELECT * FROM payouts WHERE wager_id = ?", (wager_id,)
        ).fetchone()
        return dict(row) if row else None

    def update_payout(
        self, wager_id: str, from_statuses: Iterable[str], **fields
    ) -> bool:
        """Compare-and-set update on a payout row."""
        from_statuses = list(from_statuses)
        updates = dict(fields, updated_at=_now())
        assignments = ", ".join(f"{column} = ?" for column in updates)
        marks = ", ".join("?" for _ in from_statuses)

        with self.transaction() as cursor:
            result = cursor.execute(
                f"UPDATE payouts SET {assignments} WHERE wager_id = ? AND status IN ({marks})",
                (*updates.values(), wager_id, *from_statuses),
            )
            return result.rowcount == 1

    def get_payouts_by_status(
        self, statuses: Iterable[str], limit: int = 100, newest_first: bool = False
    ) -> List[Dict]:
        statuses = list(statuses)
        marks = ", ".join("?" for _ in statuses)
        order = "DESC" if newest_first else "ASC"
        conn = self._get_connection()
        rows = conn.execute(
            f"""
            SELECT * FROM payouts WHERE status IN ({marks})
            ORDER BY created_at {order}, rowid {order} LIMIT ?
        """,
            (*statuses, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    def sum_payouts(self, statuses: Iterable[str]) -> float:
        statuses = list(statuses)
        marks = ", ".join("?" for _ in statuses)
        conn = self._get_connection()
        row = conn.execute(
            f"SELECT COALESCE(SUM(amount), 0) AS total FROM payouts WHERE status IN ({marks})",
            statuses,
        ).fetchone()
        return float(row["total"])

    def get_due_payouts(self, statuses: Iterable[str], now: float = None, limit: int = 50) -> List[Dict]:
        """Payout rows whose retry time has passed."""
        now = time.time() if now is None else now
        statuses = list(statuses)
        marks = ", ".join("?" for _ in statuses)
        conn = self._get_connection()
        rows = conn.execute(
            f"""
            SELECT * FROM payouts
            WHERE status IN ({marks}) AND (next_attempt_at IS NULL OR next_attempt_at <= ?)
            ORDER BY next_attempt_at ASC LIMIT ?
        """,
            (*statuses, now, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    # ==================== Jackpot ====================

    def get_jackpot(self, game: str, seed_amount: float) -> Dict:
        """Get a game's jackpot pool, creating it at its seed value."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT OR IGNORE INTO jackpot_pools (game, amount, seed_amount, updated_at)
                VALUES (?, ?, ?, ?)
            """,
                (game, seed_amount, seed_amount, _now()),
            )
            row = cursor.execute(
                "SELECT * FROM jackpot_pools WHERE game = ?", (game,)
            ).fetchone()
        return dict(row)

    def apply_jackpot(
        self, wager_id: str, game: str, contribution: float, hit: bool, seed_amount: float
    ) -> Dict:
        """
        Add a wager's contribution to the pool and, on a hit, pay out the
        whole pool and reset it to its seed. Runs once per wager id: a repeat
        call returns the first call's figures.

        Returns:
            Dict with contribution, paid and the pool amount afterwards
        """
        with self.transaction() as cursor:
            existing = cursor.execute(
                "SELECT * FROM jackpot_contributions WHERE wager_id = ?", (wager_id,)
            ).fetchone()

            cursor.execute(
                """
                INSERT OR IGNORE INTO jackpot_pools (game, amount, seed_amount, updated_at)
                VALUES (?, ?, ?, ?)
            """,
                (game, seed_amount, seed_amount, _now()),
            )

            if existing:
                pool = cursor.execute(
                    "SELECT amount FROM jackpot_pools WHERE game = ?", (game,)
                ).fetchone()
                return {
                    "contribution": existing["contribution"],
                    "paid": existing["paid"],
                    "pool": pool["amount"],
                    "replayed": True,
                }

            pool = cursor.execute(
                "SELECT amount, seed_amount FROM jackpot_pools WHERE game = ?", (game,)
            ).fetchone()
            amount = pool["amount"] + contribution
            paid = 0.0

            if hit:
                paid = amount
                amount = pool["seed_amount"]
                cursor.execute(
                    """
                    UPDATE jackpot_pools
                    SET amount = ?, hits = hits + 1, last_hit_at = ?, updated_at = ?
                    WHERE game = ?
                """,
                    (amount, _now(), _now(), game),
                )
            else:
                cursor.execute(
                    "UPDATE jackpot_pools SET amount = ?, updated_at = ? WHERE game = ?",
                    (amount, _now(), game),
                )

            cursor.execute(
                """
                INSERT INTO jackpot_contributions (wager_id, game, contribution, paid, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (wager_id, game, contribution, paid, _now()),
            )

        return {"contribution": contribution, "paid": paid, "pool": amount, "replayed": False}

    def set_jackpot(self, game: str, amount: float, seed_amount: float) -> Dict:
        """Operator override of a pool amount (e.g. after a manual refill)."""
        with self.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO jackpot_pools (game, amount, seed_amount, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(game) DO UPDATE SET amount = excluded.amount,
                    updated_at = excluded.updated_at
            """,
                (game, amount, seed_amount, _now()),
            )
        return self.get_jackpot(game, seed_amount)

    # ==================== Stats ====================

    def get_stats(self) -> Dict:
        """Counts by status for the operator dashboard."""
        conn = self._get_connection()
        wagers = {
            row["status"]: row["n"]
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM wagers GROUP BY status")
        }
        payouts = {
            row["status"]: row["n"]
            for row in conn.execute("SELECT status, COUNT(*) AS n FROM payouts GROUP BY status")
        }
        return {"wagers": wagers, "payouts": payouts}
