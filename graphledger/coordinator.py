"""Ledger transaction coordinator.

This module queues submitted transactions and commits them in blocks,
executing each transaction in isolation so a failing one does not undo
its neighbours.

ARCHITECTURE:
- Uses an EXCLUSIVE lock on the ledger database while a block is built
- Each transaction runs inside its own savepoint
- ExecutionError rolls back only the failing transaction; it is recorded
  against the block with its code and description
- Any other exception rolls back the whole block and propagates
- Startup checks identify broken block links and orphaned node history

SYSTEM STATUS MODES:
- NORMAL: No issues detected
- INCONSISTENT: Node history refers to transactions the ledger never stored
- SAFE_MODE: Block chain is broken (corruption)

USAGE:
    coordinator = TransactionCoordinator(change_source=source)
    tx_hash = coordinator.submit(CommitQueries("CREATE (n:Person)"))
    block = coordinator.commit_block()

    status = coordinator.check_consistency()
    if status != SystemStatus.NORMAL:
        # Handle inconsistency
        pass
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import ConsistencyError, ExecutionError, ValidationError
from .host.time import now_iso
from .ledger import Block, ExecutionRecord, Ledger, ZERO_HASH, get_ledger
from .transactions import ExecutionContext, Transaction

if TYPE_CHECKING:
    from .config import Settings
    from .source import ChangeSource

logger = logging.getLogger(__name__)


class SystemStatus(Enum):
    """System status modes."""

    NORMAL = "normal"
    INCONSISTENT = "inconsistent"
    SAFE_MODE = "safe_mode"


class TransactionCoordinator:
    """
    Queues ledger transactions and commits them in blocks.

    Attributes:
        db_path: Path to the ledger database file
        change_source: Where AuditBlocks reads graph database changes from
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        change_source: ChangeSource | None = None,
    ):
        """Initialize transaction coordinator.

        Args:
            db_path: Path to ledger database. If None, uses get_db_path()
            change_source: Change source handed to executing transactions
        """
        from .host.environment import get_db_path

        self.db_path = Path(db_path) if db_path else get_db_path()
        self.change_source = change_source
        self._pending: dict[str, Transaction] = {}
        self._lock = threading.Lock()

        # Schema is installed on first use
        get_ledger(self.db_path, init=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> TransactionCoordinator:
        """Create a coordinator for configured paths.

        Logging is configured at settings.log_level. Change sets are read
        from settings.changes_dir when it is set.

        Raises:
            ValueError: If settings.log_level is not a logging level name
        """
        from .config import configure_logging
        from .source import JsonDirectoryChangeSource

        configure_logging(settings.log_level)

        change_source = None
        if settings.changes_dir is not None:
            change_source = JsonDirectoryChangeSource(settings.changes_dir)
        return cls(db_path=settings.database_path, change_source=change_source)

    def ledger(self) -> Ledger:
        """Return a Ledger on the coordinator's database (not yet entered)."""
        return get_ledger(self.db_path)

    # ==========================================================================
    # SUBMISSION
    # ==========================================================================

    def submit(self, transaction: Transaction) -> str:
        """Queue a transaction for the next block.

        Args:
            transaction: Transaction to queue

        Returns:
            Transaction hash (hex)

        Raises:
            ValidationError: If the transaction fails verification or was
                already committed
        """
        if not transaction.verify():
            raise ValidationError(
                f"Transaction failed verification: {transaction!r}"
            )

        tx_hash = transaction.hash()

        with self.ledger() as ledger:
            if ledger.get_execution(tx_hash) is not None:
                raise ValidationError(
                    f"Transaction {tx_hash} is already committed",
                    details={"tx_hash": tx_hash},
                )

        with self._lock:
            if tx_hash in self._pending:
                logger.debug(f"Transaction {tx_hash} is already queued")
            else:
                self._pending[tx_hash] = transaction
                logger.info(f"Queued {transaction!r} as {tx_hash}")

        return tx_hash

    def pending(self) -> list[str]:
        """Hashes of queued transactions, in submission order."""
        with self._lock:
            return list(self._pending)

    # ==========================================================================
    # BLOCK COMMIT
    # ==========================================================================

    def commit_block(self) -> Block:
        """Execute queued transactions and commit them as the next block.

        Returns:
            The committed Block (possibly with no transactions)

        Raises:
            Exception: Anything other than ExecutionError raised by a
                transaction; the block is rolled back and the queue kept
        """
        with self._lock:
            batch = list(self._pending.items())

            with self.ledger() as ledger:
                conn = ledger._get_connection()
                conn.execute("BEGIN EXCLUSIVE")
                try:
                    block = self._build_block(ledger, batch)
                except Exception:
                    logger.exception("Block commit failed; rolling back")
                    try:
                        conn.rollback()
                    except Exception as e:
                        logger.warning(f"Ledger rollback failed: {e}")
                    raise
                conn.commit()

            for tx_hash, _ in batch:
                del self._pending[tx_hash]

        logger.info(
            f"Committed block {block.height} ({block.hash}) "
            f"with {len(block.tx_hashes)} transactions"
        )
        return block

    def _build_block(self, ledger: Ledger, batch: list[tuple[str, Transaction]]) -> Block:
        previous = ledger.last_block()
        height = previous.height + 1 if previous else 0
        prev_hash = previous.hash if previous else ZERO_HASH

        records = []
        for position, (tx_hash, transaction) in enumerate(batch):
            context = ExecutionContext(
                tx_hash=tx_hash,
                height=height,
                change_source=self.change_source,
            )
            try:
                with ledger.savepoint(f"tx_{position}"):
                    transaction.execute(ledger, context)
            except ExecutionError as e:
                logger.error(f"Transaction {tx_hash} failed: {e.message}")
                records.append(ExecutionRecord(
                    tx_hash=tx_hash,
                    block_height=height,
                    position=position,
                    status="error",
                    code=e.code,
                    description=e.message,
                ))
            else:
                records.append(ExecutionRecord(
                    tx_hash=tx_hash,
                    block_height=height,
                    position=position,
                    status="success",
                ))

        block = Block(
            height=height,
            prev_hash=prev_hash,
            state_hash=ledger.state_hash(),
            created_at=now_iso(),
            tx_hashes=tuple(tx_hash for tx_hash, _ in batch),
        )
        block = dataclasses.replace(block, hash=block.compute_hash())
        ledger.append_block(block)

        for record in records:
            ledger.record_execution(record)

        return block

    # ==========================================================================
    # CONSISTENCY
    # ==========================================================================

    def check_consistency(self) -> SystemStatus:
        """
        Check ledger consistency on startup.

        Checks for:
        - Broken block chain (prev_hash or stored hash don't match)
        - Orphaned node history (transaction_id not in the ledger)

        Returns:
            SystemStatus indicating the health of the ledger

        Note:
            System starts regardless of state
        """
        issues = []

        broken_blocks = self._find_broken_blocks()
        if broken_blocks:
            issues.append(f"Found {len(broken_blocks)} broken blocks")

        orphans = self._find_orphaned_history()
        if orphans:
            issues.append(f"Found {len(orphans)} orphaned node history entries")

        if issues:
            for issue in issues:
                logger.warning(f"[TransactionCoordinator] {issue}")

            if broken_blocks:
                return SystemStatus.SAFE_MODE
            return SystemStatus.INCONSISTENT

        return SystemStatus.NORMAL

    def ensure_consistent(self):
        """Raise ConsistencyError unless check_consistency() is NORMAL."""
        broken_blocks = self._find_broken_blocks()
        orphans = self._find_orphaned_history()
        if broken_blocks or orphans:
            raise ConsistencyError(
                "Ledger is not consistent",
                details={"broken_blocks": broken_blocks, "orphans": orphans},
            )

    def _find_broken_blocks(self) -> list[dict]:
        """
        Find blocks whose hash or link to the previous block is wrong.

        Returns:
            List of dictionaries with height, hash and issue
        """
        broken = []

        with self.ledger() as ledger:
            prev_hash = ZERO_HASH
            for expected_height, block in enumerate(ledger.list_blocks()):
                if block.height != expected_height:
                    broken.append({
                        "height": block.height,
                        "hash": block.hash,
                        "issue": f"expected height {expected_height}",
                    })
                elif block.prev_hash != prev_hash:
                    broken.append({
                        "height": block.height,
                        "hash": block.hash,
                        "issue": "prev_hash does not match previous block",
                    })
                elif block.compute_hash() != block.hash:
                    broken.append({
                        "height": block.height,
                        "hash": block.hash,
                        "issue": "stored hash does not match block header",
                    })
                prev_hash = block.hash

        return broken

    def _find_orphaned_history(self) -> list[dict]:
        """
        Find node history entries whose transaction is not in the ledger.

        Returns:
            List of dictionaries with node_id and transaction_id
        """
        orphans = []

        with self.ledger() as ledger:
            for entry in ledger.history_transaction_ids():
                if ledger.get_graph_transaction(entry["transaction_id"]) is None:
                    orphans.append(entry)

        return orphans


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

def get_transaction_coordinator(change_source: ChangeSource | None = None) -> TransactionCoordinator:
    """
    Get a transaction coordinator instance.

    Ledger path is resolved via environment variables.

    Returns:
        TransactionCoordinator instance
    """
    return TransactionCoordinator(change_source=change_source)
