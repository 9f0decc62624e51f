"""Ledger database operations for GraphLedger."""

from __future__ import annotations

import json
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from ..changes import ChangeKind, NodeChange
from ..hashing import canonical_json, merkle_root, sha256_hex
from ..relationship import RelationshipRecord
from ..schemas import get_sql_schema
from .records import GRAPH_TRANSACTION_RESULTS, Block, ExecutionRecord, GraphTransaction

LAST_CONFIRMED_BLOCK = "lastConfirmedBlock"
_SAVEPOINT_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def relation_key(relation_id: str) -> str:
    """Index key of a relationship: sha256 of its id."""
    return sha256_hex(relation_id)


class Ledger:
    """Ledger database for graph transactions, blocks and node history.

    CONNECTION LIFECYCLE:
    - Ledger MUST be used as context manager (enforced at runtime)
    - __enter__: Marks Ledger as active, creates connection, returns self
    - __exit__: Commits on success, rollbacks on exception, always closes
    - Operations call _get_connection() which raises RuntimeError if not in context
    """

    def __init__(self, db_path: str | Path = "ledger.db"):
        """Initialize Ledger database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._in_context = False

    def _get_connection(self) -> sqlite3.Connection:
        """Get connection, enforcing context manager usage.

        Returns:
            SQLite connection

        Raises:
            RuntimeError: If Ledger is not being used as context manager
        """
        if not self._in_context:
            raise RuntimeError(
                "Ledger must be used as context manager. "
                "Use: with get_ledger() as ledger: ..."
            )
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Ledger:
        self._in_context = True
        self._get_connection()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context manager, committing or rolling back transaction."""
        self._in_context = False
        try:
            if self._conn is not None:
                if exc_type is None:
                    self._conn.commit()
                else:
                    self._conn.rollback()
        finally:
            self.close()

    @contextmanager
    def savepoint(self, name: str = "ledger_tx"):
        """Isolate a group of writes; they are undone if the block raises.

        Args:
            name: SQL savepoint name (identifier characters only)

        Raises:
            ValueError: If name is not a valid identifier
        """
        if not _SAVEPOINT_NAME.match(name):
            raise ValueError(f"Invalid savepoint name: {name!r}")

        conn = self._get_connection()
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield self
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        else:
            conn.execute(f"RELEASE SAVEPOINT {name}")

    # ==========================================================================
    # INITIALIZATION
    # ==========================================================================

    def init_schema(self):
        """Initialize database schema from bundled ledger.sql."""
        conn = self._get_connection()
        conn.executescript(get_sql_schema("ledger"))
        conn.commit()

    def get_schema_version(self) -> str | None:
        """Get current schema version, None if the schema is not installed."""
        conn = self._get_connection()
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='_schema_metadata'"
        )
        if cursor.fetchone() is None:
            return None
        cursor = conn.execute(
            "SELECT value FROM _schema_metadata WHERE key = 'version'"
        )
        row = cursor.fetchone()
        return row[0] if row else None

    # ==========================================================================
    # GRAPH TRANSACTION OPERATIONS
    # ==========================================================================

    def add_graph_transaction(self, tx_hash: str, tx: GraphTransaction) -> str:
        """Store a submitted query batch under its ledger transaction hash.

        Submission order is kept; storing the same hash twice replaces the
        value but keeps the original position.

        Returns:
            tx_hash
        """
        self._get_connection().execute(
            """INSERT INTO graph_transaction (tx_hash, queries, error_msg, result, pub_key)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(tx_hash) DO UPDATE SET
                   queries = excluded.queries,
                   error_msg = excluded.error_msg,
                   result = excluded.result,
                   pub_key = excluded.pub_key""",
            (tx_hash, tx.queries, tx.error_msg, tx.result, tx.pub_key)
        )
        return tx_hash

    def get_graph_transaction(self, tx_hash: str) -> GraphTransaction | None:
        cursor = self._get_connection().execute(
            "SELECT * FROM graph_transaction WHERE tx_hash = ?", (tx_hash,)
        )
        row = cursor.fetchone()
        return _row_to_graph_transaction(row) if row else None

    def list_graph_transactions(self) -> list[tuple[str, GraphTransaction]]:
        """List (tx_hash, transaction) pairs in submission order."""
        cursor = self._get_connection().execute(
            "SELECT * FROM graph_transaction ORDER BY seq"
        )
        return [(row["tx_hash"], _row_to_graph_transaction(row)) for row in cursor.fetchall()]

    def update_graph_transaction(self, tx_hash: str, error_msg: str, result: str) -> bool:
        """Update result and error message of a stored transaction.

        Args:
            tx_hash: Ledger transaction hash
            error_msg: New error message ('' on success)
            result: 'PENDING' | 'SUCCESS' | 'ERROR'

        Returns:
            True if the transaction exists and was updated, False otherwise

        Raises:
            ValueError: If result is not a known value
        """
        if result not in GRAPH_TRANSACTION_RESULTS:
            raise ValueError(
                f"Invalid result: {result!r}. Must be one of: {GRAPH_TRANSACTION_RESULTS}"
            )

        current = self.get_graph_transaction(tx_hash)
        if current is None:
            return False

        self.add_graph_transaction(tx_hash, current.with_result(error_msg, result))
        return True

    def count_graph_transactions(self) -> int:
        cursor = self._get_connection().execute("SELECT COUNT(*) FROM graph_transaction")
        return cursor.fetchone()[0]

    # ==========================================================================
    # RELATION OPERATIONS
    # ==========================================================================

    def add_relation(self, record: RelationshipRecord) -> str:
        """Store a relationship record, replacing one with the same id.

        Returns:
            Index key of the record
        """
        key = relation_key(record.get_id())
        self._get_connection().execute(
            """INSERT OR REPLACE INTO relation (key, id, type, start_node_id, end_node_id)
               VALUES (?, ?, ?, ?, ?)""",
            (
                key,
                record.get_id(),
                record.get_type(),
                record.get_start_node_id(),
                record.get_end_node_id(),
            )
        )
        return key

    def get_relation(self, relation_id: str) -> RelationshipRecord | None:
        cursor = self._get_connection().execute(
            "SELECT * FROM relation WHERE key = ?", (relation_key(relation_id),)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return RelationshipRecord(
            id=row["id"],
            type=row["type"],
            start_node_id=row["start_node_id"],
            end_node_id=row["end_node_id"],
        )

    def count_relations(self) -> int:
        cursor = self._get_connection().execute("SELECT COUNT(*) FROM relation")
        return cursor.fetchone()[0]

    # ==========================================================================
    # NODE HISTORY OPERATIONS
    # ==========================================================================

    def add_node_history(self, node_id: str, change: NodeChange):
        """Append a change to a node's history."""
        self._get_connection().execute(
            """INSERT INTO node_change (node_id, transaction_id, kind, node_ids, subject, detail)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                node_id,
                change.transaction_id,
                change.kind.value,
                json.dumps(list(change.node_ids)),
                change.subject,
                json.dumps(change.detail) if change.detail else None,
            )
        )

    def get_node_history(self, node_id: str) -> list[NodeChange]:
        """Get a node's changes, oldest first."""
        cursor = self._get_connection().execute(
            "SELECT * FROM node_change WHERE node_id = ? ORDER BY seq", (node_id,)
        )
        return [
            NodeChange(
                transaction_id=row["transaction_id"],
                kind=ChangeKind(row["kind"]),
                node_ids=tuple(json.loads(row["node_ids"])),
                subject=row["subject"],
                detail=json.loads(row["detail"]) if row["detail"] else {},
            )
            for row in cursor.fetchall()
        ]

    def history_transaction_ids(self) -> list[dict]:
        """List distinct (node_id, transaction_id) pairs found in node history."""
        cursor = self._get_connection().execute(
            "SELECT DISTINCT node_id, transaction_id FROM node_change ORDER BY node_id"
        )
        return [
            {"node_id": row["node_id"], "transaction_id": row["transaction_id"]}
            for row in cursor.fetchall()
        ]

    # ==========================================================================
    # AUDIT OPERATIONS
    # ==========================================================================

    def add_audited_block(self, audit_tx_hash: str, block_hash: str):
        """Record that an AuditBlocks transaction audited a block."""
        self._get_connection().execute(
            "INSERT INTO audited_block (audit_tx_hash, block_hash) VALUES (?, ?)",
            (audit_tx_hash, block_hash)
        )

    def get_audited_blocks(self, audit_tx_hash: str) -> list[str]:
        cursor = self._get_connection().execute(
            "SELECT block_hash FROM audited_block WHERE audit_tx_hash = ? ORDER BY seq",
            (audit_tx_hash,)
        )
        return [row[0] for row in cursor.fetchall()]

    def get_last_confirmed_block(self) -> str | None:
        """Hash of the last block whose changes were audited."""
        cursor = self._get_connection().execute(
            "SELECT value FROM ledger_value WHERE key = ?", (LAST_CONFIRMED_BLOCK,)
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def set_last_confirmed_block(self, block_hash: str):
        self._get_connection().execute(
            "INSERT OR REPLACE INTO ledger_value (key, value) VALUES (?, ?)",
            (LAST_CONFIRMED_BLOCK, block_hash)
        )

    # ==========================================================================
    # BLOCK OPERATIONS
    # ==========================================================================

    def append_block(self, block: Block) -> str:
        """Store a block.

        Returns:
            Block hash

        Raises:
            ValueError: If the block's height is not the next height
        """
        expected = self.block_count()
        if block.height != expected:
            raise ValueError(
                f"Block height {block.height} does not follow chain of length {expected}"
            )

        self._get_connection().execute(
            """INSERT INTO block (height, hash, prev_hash, state_hash, created_at, tx_hashes)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                block.height,
                block.hash,
                block.prev_hash,
                block.state_hash,
                block.created_at,
                json.dumps(list(block.tx_hashes)),
            )
        )
        return block.hash

    def get_block(self, height: int) -> Block | None:
        cursor = self._get_connection().execute(
            "SELECT * FROM block WHERE height = ?", (height,)
        )
        row = cursor.fetchone()
        return _row_to_block(row) if row else None

    def get_block_by_hash(self, block_hash: str) -> Block | None:
        cursor = self._get_connection().execute(
            "SELECT * FROM block WHERE hash = ?", (block_hash,)
        )
        row = cursor.fetchone()
        return _row_to_block(row) if row else None

    def list_blocks(self) -> list[Block]:
        cursor = self._get_connection().execute("SELECT * FROM block ORDER BY height")
        return [_row_to_block(row) for row in cursor.fetchall()]

    def block_hashes_by_height(self) -> list[str]:
        cursor = self._get_connection().execute("SELECT hash FROM block ORDER BY height")
        return [row[0] for row in cursor.fetchall()]

    def block_count(self) -> int:
        cursor = self._get_connection().execute("SELECT COUNT(*) FROM block")
        return cursor.fetchone()[0]

    def last_block(self) -> Block | None:
        cursor = self._get_connection().execute(
            "SELECT * FROM block ORDER BY height DESC LIMIT 1"
        )
        row = cursor.fetchone()
        return _row_to_block(row) if row else None

    def record_execution(self, record: ExecutionRecord):
        """Store the outcome of a transaction included in a block."""
        self._get_connection().execute(
            """INSERT OR REPLACE INTO block_transaction
                   (tx_hash, block_height, position, status, code, description)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                record.tx_hash,
                record.block_height,
                record.position,
                record.status,
                record.code,
                record.description,
            )
        )

    def get_execution(self, tx_hash: str) -> ExecutionRecord | None:
        cursor = self._get_connection().execute(
            "SELECT * FROM block_transaction WHERE tx_hash = ?", (tx_hash,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return ExecutionRecord(
            tx_hash=row["tx_hash"],
            block_height=row["block_height"],
            position=row["position"],
            status=row["status"],
            code=row["code"],
            description=row["description"],
        )

    # ==========================================================================
    # STATE
    # ==========================================================================

    def state_hash(self) -> str:
        """Merkle root over graph transactions in submission order."""
        leaves = [
            sha256_hex(tx_hash + canonical_json(tx.to_dict()))
            for tx_hash, tx in self.list_graph_transactions()
        ]
        return merkle_root(leaves)


def _row_to_graph_transaction(row: sqlite3.Row) -> GraphTransaction:
    return GraphTransaction(
        queries=row["queries"],
        error_msg=row["error_msg"],
        result=row["result"],
        pub_key=row["pub_key"],
    )


def _row_to_block(row: sqlite3.Row) -> Block:
    return Block(
        height=row["height"],
        prev_hash=row["prev_hash"],
        state_hash=row["state_hash"],
        created_at=row["created_at"],
        tx_hashes=tuple(json.loads(row["tx_hashes"])),
        hash=row["hash"],
    )


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def get_ledger(db_path: str | Path | None = None, init: bool = False) -> Ledger:
    """Get or create Ledger database.

    Args:
        db_path: Path to SQLite database file. If None, uses get_db_path()
        init: If True, initialize schema if not exists

    Returns:
        Ledger instance (not yet entered)
    """
    if db_path is None:
        from ..host.environment import get_db_path
        db_path = get_db_path()

    ledger = Ledger(db_path)

    if init:
        with ledger:
            if ledger.get_schema_version() is None:
                ledger.init_schema()

    return ledger
