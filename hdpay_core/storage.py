"""
SQLite persistence for HD index allocation.

Holds the two counter records the allocator depends on plus the
payment rows it looks indices up from:

  - ``hd_index_counter``   single ``'global'`` row, next merchant index
  - ``merchant_hd_index``  merchant id → merchant index + payment counter
  - ``payments``           payment id → public key, indices, encrypted blob

Every read-modify-write runs inside one ``BEGIN IMMEDIATE`` transaction
under a process-local lock, so concurrent callers (threads sharing a
store, or separate processes sharing the file) are serialised and a
failure rolls back both the counter and the mapping together.

Usage:
    store = IndexStore("data/hdpay.db")
    idx = store.get_or_create_merchant_index("merchant_A")
    n = store.increment_payment_counter("merchant_A")
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from hdpay_core.derivation import MAX_INDEX
from hdpay_core.errors import AllocationConflict, IndexOutOfRange, NotFound, StorageFailure

logger = logging.getLogger("hdpay_storage")

GLOBAL_COUNTER_ID = "global"


class IndexStore:
    """Thin SQLite wrapper with atomic allocation primitives."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/hdpay.db", busy_timeout_ms: int = 5000):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly below.
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._lock = threading.RLock()
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Index store opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        with self._transaction() as c:
            c.execute("""
                CREATE TABLE IF NOT EXISTS hd_index_counter (
                    id                  TEXT PRIMARY KEY,
                    next_merchant_index INTEGER NOT NULL DEFAULT 0
                )
            """)
            c.execute("""
                CREATE TABLE IF NOT EXISTS merchant_hd_index (
                    merchant_id     TEXT PRIMARY KEY,
                    merchant_index  INTEGER NOT NULL UNIQUE,
                    payment_counter INTEGER NOT NULL DEFAULT 0
                )
            """)
            c.execute("""
                CREATE TABLE IF NOT EXISTS payments (
                    payment_id         TEXT PRIMARY KEY,
                    merchant_id        TEXT NOT NULL,
                    public_key         TEXT NOT NULL,
                    payment_index      INTEGER,
                    derivation_path    TEXT,
                    encrypted_key_data TEXT
                )
            """)
            c.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    id      INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL
                )
            """)

    def _ensure_schema_version(self) -> None:
        with self._transaction() as c:
            row = c.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
            if row is None:
                c.execute(
                    "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                    (self.CURRENT_SCHEMA_VERSION,),
                )
            elif row["version"] > self.CURRENT_SCHEMA_VERSION:
                raise RuntimeError(
                    f"Database schema v{row['version']} is newer than this software "
                    f"(v{self.CURRENT_SCHEMA_VERSION})."
                )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """BEGIN IMMEDIATE … COMMIT, rolled back on any exception."""
        c = self._conn
        with self._lock:
            c.execute("BEGIN IMMEDIATE")
            try:
                yield c
                c.execute("COMMIT")
            except Exception:
                if c.in_transaction:
                    c.execute("ROLLBACK")
                raise

    # ── allocation primitives ────────────────────────────────────

    def get_or_create_merchant_index(self, merchant_id: str) -> int:
        """
        Return the merchant's index, claiming the next global index on
        first use.  Counter increment and mapping insert commit together.
        """
        try:
            with self._transaction() as c:
                row = c.execute(
                    "SELECT merchant_index FROM merchant_hd_index WHERE merchant_id = ?",
                    (merchant_id,),
                ).fetchone()
                if row is not None:
                    return row["merchant_index"]

                c.execute(
                    "INSERT OR IGNORE INTO hd_index_counter (id, next_merchant_index) VALUES (?, 0)",
                    (GLOBAL_COUNTER_ID,),
                )
                c.execute(
                    "UPDATE hd_index_counter SET next_merchant_index = next_merchant_index + 1 "
                    "WHERE id = ?",
                    (GLOBAL_COUNTER_ID,),
                )
                assigned = c.execute(
                    "SELECT next_merchant_index FROM hd_index_counter WHERE id = ?",
                    (GLOBAL_COUNTER_ID,),
                ).fetchone()["next_merchant_index"] - 1
                if assigned > MAX_INDEX:
                    raise IndexOutOfRange("Merchant index space exhausted")

                c.execute(
                    "INSERT INTO merchant_hd_index (merchant_id, merchant_index, payment_counter) "
                    "VALUES (?, ?, 0)",
                    (merchant_id, assigned),
                )
        except sqlite3.Error as exc:
            logger.error(f"Merchant index allocation failed for {merchant_id}: {exc}")
            raise AllocationConflict(f"Could not allocate merchant index for {merchant_id}") from exc

        logger.info(f"Assigned merchant index {assigned} to {merchant_id}")
        return assigned

    def increment_payment_counter(self, merchant_id: str) -> int:
        """Atomically bump the merchant's payment counter; return the old value."""
        try:
            with self._transaction() as c:
                cur = c.execute(
                    "UPDATE merchant_hd_index SET payment_counter = payment_counter + 1 "
                    "WHERE merchant_id = ?",
                    (merchant_id,),
                )
                if cur.rowcount == 0:
                    raise NotFound(f"No HD index found for merchant {merchant_id}")
                counter = c.execute(
                    "SELECT payment_counter FROM merchant_hd_index WHERE merchant_id = ?",
                    (merchant_id,),
                ).fetchone()["payment_counter"]
                if counter - 1 > MAX_INDEX:
                    raise IndexOutOfRange(f"Payment index space exhausted for {merchant_id}")
        except sqlite3.Error as exc:
            logger.error(f"Payment counter increment failed for {merchant_id}: {exc}")
            raise AllocationConflict(f"Could not allocate payment index for {merchant_id}") from exc
        return counter - 1

    # ── lookups ──────────────────────────────────────────────────

    def _fetchone(self, sql: str, params: tuple) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def get_merchant_index(self, merchant_id: str) -> int | None:
        row = self._fetchone(
            "SELECT merchant_index FROM merchant_hd_index WHERE merchant_id = ?",
            (merchant_id,),
        )
        return row["merchant_index"] if row else None

    def get_payment_counter(self, merchant_id: str) -> int | None:
        row = self._fetchone(
            "SELECT payment_counter FROM merchant_hd_index WHERE merchant_id = ?",
            (merchant_id,),
        )
        return row["payment_counter"] if row else None

    def get_payment(self, payment_id: str) -> dict[str, Any] | None:
        row = self._fetchone("SELECT * FROM payments WHERE payment_id = ?", (payment_id,))
        return dict(row) if row else None

    def get_payment_index(self, payment_id: str) -> int | None:
        row = self._fetchone(
            "SELECT payment_index FROM payments WHERE payment_id = ?", (payment_id,)
        )
        return row["payment_index"] if row else None

    # ── payments ─────────────────────────────────────────────────

    def record_payment(
        self,
        payment_id: str,
        merchant_id: str,
        public_key: str,
        payment_index: int | None = None,
        derivation_path: str | None = None,
        encrypted_key_data: str | None = None,
    ) -> None:
        try:
            with self._transaction() as c:
                c.execute(
                    """INSERT INTO payments
                       (payment_id, merchant_id, public_key, payment_index,
                        derivation_path, encrypted_key_data)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (payment_id, merchant_id, public_key, payment_index,
                     derivation_path, encrypted_key_data),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Payment {payment_id} is already recorded") from exc
        except sqlite3.Error as exc:
            logger.error(f"Recording payment {payment_id} failed: {exc}")
            raise StorageFailure(f"Could not record payment {payment_id}") from exc

    def load_payments(self, merchant_id: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM payments WHERE merchant_id = ? ORDER BY payment_index",
                (merchant_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    # ── lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
