"""Database storage layer using SQLite."""
import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Optional
from escrow.errors import NotFound, StoreConflict, StoreUnavailable, UpstreamFailure
from escrow.models.transaction import OPEN_STATUSES, Transaction, TransactionStatus
from escrow.storage.base import TransactionStore
from escrow.utils.timestamp import parse_optional_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

COLUMNS = (
    "id",
    "transaction_id",
    "buyer_id",
    "seller_id",
    "post_id",
    "work_description",
    "amount",
    "currency",
    "status",
    "payee_identifier",
    "payment_request_payload",
    "payment_proof",
    "work_artifacts",
    "work_preview_reference",
    "buyer_approved",
    "buyer_feedback",
    "dispute_reason",
    "created_at",
    "updated_at",
    "expires_at",
    "approved_at",
    "released_at",
)

_OPEN_STATUS_LIST = ", ".join(f"'{s.value}'" for s in sorted(OPEN_STATUSES, key=lambda s: s.value))


def pair_key(user_a: str, user_b: str) -> str:
    """Order-independent key for a pair of users."""
    return "|".join(sorted((user_a, user_b)))


def _to_column(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return value


def _row_to_transaction(row: sqlite3.Row) -> Transaction:
    return Transaction(
        id=row["id"],
        transaction_id=row["transaction_id"],
        buyer_id=row["buyer_id"],
        seller_id=row["seller_id"],
        post_id=row["post_id"],
        work_description=row["work_description"],
        amount=Decimal(row["amount"]),
        currency=row["currency"],
        status=TransactionStatus(row["status"]),
        payee_identifier=row["payee_identifier"],
        payment_request_payload=row["payment_request_payload"],
        payment_proof=row["payment_proof"],
        work_artifacts=json.loads(row["work_artifacts"] or "[]"),
        work_preview_reference=row["work_preview_reference"],
        buyer_approved=bool(row["buyer_approved"]),
        buyer_feedback=row["buyer_feedback"],
        dispute_reason=row["dispute_reason"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        expires_at=parse_timestamp(row["expires_at"]),
        approved_at=parse_optional_timestamp(row["approved_at"]),
        released_at=parse_optional_timestamp(row["released_at"]),
    )


class SqliteTransactionStore(TransactionStore):
    """Storage for escrow transactions."""

    def __init__(self, db_path: str = "escrow.db", create_tables: bool = True):
        self.db_path = db_path
        if create_tables:
            self._init_db()

    def _init_db(self):
        """Initialize database tables."""
        with self._get_conn() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    transaction_id TEXT NOT NULL UNIQUE,
                    buyer_id TEXT NOT NULL,
                    seller_id TEXT NOT NULL,
                    pair_key TEXT NOT NULL,
                    post_id TEXT,
                    work_description TEXT,
                    amount TEXT NOT NULL,
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payee_identifier TEXT NOT NULL,
                    payment_request_payload TEXT NOT NULL,
                    payment_proof TEXT,
                    work_artifacts TEXT NOT NULL DEFAULT '[]',
                    work_preview_reference TEXT,
                    buyer_approved INTEGER NOT NULL DEFAULT 0,
                    buyer_feedback TEXT,
                    dispute_reason TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    approved_at TEXT,
                    released_at TEXT,
                    CHECK (buyer_id <> seller_id)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_pair_created
                ON transactions(pair_key, created_at)
            """)
            # One open transaction per pair of users
            conn.execute(f"""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_open_pair
                ON transactions(pair_key) WHERE status IN ({_OPEN_STATUS_LIST})
            """)
            conn.commit()

    @contextmanager
    def _get_conn(self):
        """Get database connection, translating sqlite errors to store errors."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                raise StoreUnavailable(f"Transactions table not provisioned: {e}")
            logger.error("SQLite error on %s: %s", self.db_path, e)
            raise UpstreamFailure(f"Database error: {e}")
        except sqlite3.IntegrityError as e:
            raise StoreConflict(f"Constraint violation: {e}")
        except sqlite3.Error as e:
            logger.error("SQLite error on %s: %s", self.db_path, e)
            raise UpstreamFailure(f"Database error: {e}")
        finally:
            conn.close()

    def _fetch_one(self, conn, query: str, params) -> Optional[Transaction]:
        row = conn.execute(query, params).fetchone()
        return _row_to_transaction(row) if row else None

    def _select_one(self, query: str, params) -> Optional[Transaction]:
        with self._get_conn() as conn:
            return self._fetch_one(conn, query, params)

    async def create(self, transaction: Transaction) -> Transaction:
        """Insert a transaction."""
        return await asyncio.to_thread(self._create, transaction)

    def _create(self, transaction: Transaction) -> Transaction:
        data = transaction.model_dump()
        values = [_to_column(data[column]) for column in COLUMNS]
        placeholders = ", ".join("?" for _ in range(len(COLUMNS) + 1))
        with self._get_conn() as conn:
            conn.execute(
                f"INSERT INTO transactions ({', '.join(COLUMNS)}, pair_key) VALUES ({placeholders})",
                values + [pair_key(transaction.buyer_id, transaction.seller_id)],
            )
            conn.commit()
            return self._fetch_one(conn, "SELECT * FROM transactions WHERE id = ?", (transaction.id,))

    async def update(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus] = None,
    ) -> Transaction:
        """Update a transaction, optionally only while it still has ``expected_status``."""
        return await asyncio.to_thread(self._update, record_id, changes, expected_status)

    def _update(
        self,
        record_id: str,
        changes: Dict[str, Any],
        expected_status: Optional[TransactionStatus],
    ) -> Transaction:
        unknown = set(changes) - set(COLUMNS[1:])
        if unknown:
            raise ValueError(f"Unknown transaction fields: {', '.join(sorted(unknown))}")

        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = [_to_column(value) for value in changes.values()]
        query = f"UPDATE transactions SET {assignments} WHERE id = ?"
        params.append(record_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status.value)

        with self._get_conn() as conn:
            cursor = conn.execute(query, params)
            conn.commit()
            current = self._fetch_one(conn, "SELECT * FROM transactions WHERE id = ?", (record_id,))
            if current is None:
                raise NotFound(f"Transaction {record_id} not found")
            if cursor.rowcount == 0:
                raise StoreConflict(
                    f"Transaction {current.transaction_id} is {current.status.value}, "
                    f"expected {expected_status.value if expected_status else 'any'}"
                )
            return current

    async def get(self, record_id: str) -> Optional[Transaction]:
        return await asyncio.to_thread(self._select_one, "SELECT * FROM transactions WHERE id = ?", (record_id,))

    async def find(
        self,
        user_id: str,
        counterpart_id: str,
        post_id: Optional[str] = None,
        statuses: Optional[Iterable[TransactionStatus]] = None,
    ) -> Optional[Transaction]:
        """Get the most recent transaction between two users."""
        query = "SELECT * FROM transactions WHERE pair_key = ?"
        params = [pair_key(user_id, counterpart_id)]

        if post_id:
            query += " AND post_id = ?"
            params.append(post_id)

        if statuses is not None:
            wanted = [s.value for s in statuses]
            if not wanted:
                return None
            query += f" AND status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)

        query += " ORDER BY created_at DESC LIMIT 1"
        return await asyncio.to_thread(self._select_one, query, params)

    async def find_by_transaction_id(self, transaction_id: str) -> Optional[Transaction]:
        return await asyncio.to_thread(
            self._select_one, "SELECT * FROM transactions WHERE transaction_id = ?", (transaction_id,)
        )
