"""Ledger transactions.

Two transaction types exist:

- CommitQueries: records a batch of graph queries, submitted for execution
  by the graph database, as a PENDING graph transaction.
- AuditBlocks: pulls from the graph database what happened to every block
  committed since the last audit, then records node history, relationship
  records and the final status of each query batch.

PAYLOAD FORMAT (JSON):
    {"type": "commit_queries", "queries": "...", "pub_key": "...", "nonce": "..."}
    {"type": "audit_blocks", "nonce": "..."}

The transaction hash is sha256 over the canonical JSON of the payload.
"""

from __future__ import annotations

import logging
import uuid as uuid_lib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .changes import ChangeStatus, generate_node_changes
from .exceptions import ExecutionError, ValidationError
from .hashing import canonical_json, is_hash_hex, sha256_hex
from .ledger.records import ERROR, SUCCESS, GraphTransaction

if TYPE_CHECKING:
    from .ledger import Ledger
    from .source import ChangeSource

logger = logging.getLogger(__name__)


def generate_nonce() -> str:
    return uuid_lib.uuid4().hex


@dataclass(frozen=True)
class ExecutionContext:
    """What a transaction sees while it executes inside a block."""
    tx_hash: str
    height: int  # Height of the block being built
    change_source: ChangeSource | None = None


class Transaction(ABC):
    """Base class for ledger transactions."""

    TRANSACTION_TYPE: str = ""

    @abstractmethod
    def to_payload(self) -> dict:
        """Return the JSON payload form of this transaction."""

    def hash(self) -> str:
        return sha256_hex(canonical_json(self.to_payload()))

    def verify(self) -> bool:
        return True

    @abstractmethod
    def execute(self, ledger: Ledger, context: ExecutionContext) -> None:
        """Apply the transaction to an open ledger.

        Raises:
            ExecutionError: If the transaction cannot be applied; its writes
                are discarded by the caller
        """


class CommitQueries(Transaction):
    """Commit a set of queries as a single transaction in the graph database."""

    TRANSACTION_TYPE = "commit_queries"

    def __init__(self, queries: str, pub_key: str = "", nonce: str | None = None):
        self.queries = queries
        self.pub_key = pub_key
        self.nonce = nonce if nonce is not None else generate_nonce()

    def to_payload(self) -> dict:
        return {
            "type": self.TRANSACTION_TYPE,
            "queries": self.queries,
            "pub_key": self.pub_key,
            "nonce": self.nonce,
        }

    def verify(self) -> bool:
        return isinstance(self.queries, str) and isinstance(self.pub_key, str)

    def execute(self, ledger: Ledger, context: ExecutionContext) -> None:
        tx = GraphTransaction(queries=self.queries, pub_key=self.pub_key)
        ledger.add_graph_transaction(context.tx_hash, tx)

    def __repr__(self) -> str:
        return f"CommitQueries(queries={self.queries!r}, pub_key={self.pub_key!r})"


class AuditBlocks(Transaction):
    """Retrieve from the graph database the changes of unaudited blocks."""

    TRANSACTION_TYPE = "audit_blocks"

    def __init__(self, nonce: str | None = None):
        self.nonce = nonce if nonce is not None else generate_nonce()

    def to_payload(self) -> dict:
        return {"type": self.TRANSACTION_TYPE, "nonce": self.nonce}

    def execute(self, ledger: Ledger, context: ExecutionContext) -> None:
        if context.change_source is None:
            raise ExecutionError.possible_connection_error(
                "No graph database change source configured"
            )

        block_hashes = self.unaudited_blocks(ledger, context.height)
        for block_hash in block_hashes:
            self.audit_block(ledger, context, block_hash)
            ledger.add_audited_block(context.tx_hash, block_hash)

        self.update_last_block(ledger)

    def unaudited_blocks(self, ledger: Ledger, height: int) -> list[str]:
        """Hashes of committed blocks after the last confirmed one, below height.

        Raises:
            ExecutionError: If the last confirmed block is not in the ledger
        """
        all_blocks = ledger.block_hashes_by_height()[:height]

        last_confirmed = ledger.get_last_confirmed_block()
        if last_confirmed is None:
            return all_blocks

        block = ledger.get_block_by_hash(last_confirmed)
        if block is None:
            raise ExecutionError.database_error(
                f"Last confirmed block {last_confirmed} does not exist in the ledger"
            )
        return all_blocks[block.height + 1:]

    def audit_block(self, ledger: Ledger, context: ExecutionContext, block_hash: str):
        """Record the changes the graph database reports for one block."""
        try:
            block_changes = context.change_source.retrieve_block_changes(block_hash)
        except ValidationError as e:
            raise ExecutionError.database_error(
                f"Malformed changes for block {block_hash}: {e.message}"
            ) from e
        except OSError as e:
            raise ExecutionError.possible_connection_error(str(e)) from e

        if block_changes is None:
            logger.warning(f"No changes reported for block {block_hash}; skipping")
            return

        for tx_changes in block_changes.get_transactions():
            transaction_id = tx_changes.transaction_id
            if not is_hash_hex(transaction_id):
                logger.warning(f"Skipping changes with invalid transaction id {transaction_id!r}")
                continue
            # Stored hashes are lower-case hexdigest() output
            transaction_id = transaction_id.lower()

            if tx_changes.result is ChangeStatus.SUCCESS:
                try:
                    node_changes = generate_node_changes(
                        transaction_id, tx_changes.modifications, ledger
                    )
                except ValidationError as e:
                    raise ExecutionError.database_error(
                        f"Malformed modifications for transaction {transaction_id}: {e.message}"
                    ) from e

                for change in node_changes:
                    for node_id in change.get_uuids():
                        ledger.add_node_history(node_id, change)
                found = ledger.update_graph_transaction(transaction_id, "", SUCCESS)
            else:
                error_msg = tx_changes.error.describe() if tx_changes.error else ""
                found = ledger.update_graph_transaction(transaction_id, error_msg, ERROR)

            if not found:
                logger.warning(
                    f"Block {block_hash} reports transaction {transaction_id} "
                    "which is not in the ledger"
                )

    def update_last_block(self, ledger: Ledger):
        last_block = ledger.last_block()
        if last_block is not None:
            ledger.set_last_confirmed_block(last_block.hash)

    def __repr__(self) -> str:
        return f"AuditBlocks(nonce={self.nonce!r})"


TRANSACTION_TYPES: dict[str, type[Transaction]] = {
    CommitQueries.TRANSACTION_TYPE: CommitQueries,
    AuditBlocks.TRANSACTION_TYPE: AuditBlocks,
}


def transaction_from_payload(payload: dict) -> Transaction:
    """Build a transaction from its JSON payload.

    Args:
        payload: Dictionary with a 'type' key and the type's fields

    Returns:
        CommitQueries or AuditBlocks

    Raises:
        ValidationError: If the type is unknown or a required field is missing
    """
    if not isinstance(payload, dict):
        raise ValidationError("Transaction payload must be an object")

    tx_type = payload.get("type")
    if tx_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"Unknown transaction type: {tx_type!r}. "
            f"Must be one of: {sorted(TRANSACTION_TYPES)}",
            details={"type": tx_type},
        )

    nonce = payload.get("nonce")
    if tx_type == CommitQueries.TRANSACTION_TYPE:
        if "queries" not in payload:
            raise ValidationError(
                "commit_queries requires 'queries'", details={"type": tx_type}
            )
        return CommitQueries(
            queries=payload["queries"],
            pub_key=payload.get("pub_key", ""),
            nonce=nonce,
        )
    return AuditBlocks(nonce=nonce)
