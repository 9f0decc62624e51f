"""Public service API for GraphLedger.

Read endpoints open the ledger, answer from it and close it again; the
write endpoint queues a transaction with the coordinator. routes() binds
handlers to the paths a web layer would expose them under.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from .coordinator import TransactionCoordinator
from .exceptions import GraphLedgerError, ResourceNotFound, ValidationError
from .hashing import is_hash_hex
from .ledger import GraphTransaction
from .relationship import RelationshipRecord
from .transactions import transaction_from_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitResponse:
    """Response to an incoming transaction."""
    tx_hash: str
    error_msg: str = ""  # empty when the transaction was queued


@dataclass(frozen=True)
class NodeHistoryLine:
    """One line of a node's history."""
    transaction_id: str
    description: str


def _parse_hash(hash_string: str) -> str:
    if not is_hash_hex(hash_string):
        raise ValidationError(
            f"Error unpacking hash: {hash_string!r} is not a 64-character hex string",
            details={"hash": hash_string},
        )
    return hash_string.lower()


class GraphLedgerApi:
    """Service endpoints over a TransactionCoordinator."""

    def __init__(self, coordinator: TransactionCoordinator):
        self.coordinator = coordinator

    def get_transactions(self) -> list[GraphTransaction]:
        """All submitted graph transactions, in submission order."""
        with self.coordinator.ledger() as ledger:
            return [tx for _, tx in ledger.list_graph_transactions()]

    def get_transaction(self, hash_string: str) -> GraphTransaction:
        """Graph transaction stored under a ledger transaction hash.

        Raises:
            ValidationError: If hash_string is not a hex hash
            ResourceNotFound: If no transaction is stored under the hash
        """
        tx_hash = _parse_hash(hash_string)
        with self.coordinator.ledger() as ledger:
            tx = ledger.get_graph_transaction(tx_hash)
        if tx is None:
            raise ResourceNotFound("No query found", details={"hash": tx_hash})
        return tx

    def get_node_history(self, node_id: str) -> list[NodeHistoryLine]:
        """A node's history, oldest first. Unknown nodes have an empty history."""
        logger.debug(f"Getting node history for {node_id}")
        with self.coordinator.ledger() as ledger:
            changes = ledger.get_node_history(node_id)
        return [
            NodeHistoryLine(transaction_id=change.transaction_id, description=change.describe())
            for change in changes
        ]

    def get_relationship(self, relationship_id: str) -> RelationshipRecord:
        """
        Raises:
            ResourceNotFound: If the relationship was never reported
        """
        with self.coordinator.ledger() as ledger:
            record = ledger.get_relation(relationship_id)
        if record is None:
            raise ResourceNotFound(
                "No relationship found", details={"relationship_id": relationship_id}
            )
        return record

    def get_audited_blocks(self, hash_string: str) -> list[str]:
        """Blocks audited by the AuditBlocks transaction with this hash."""
        tx_hash = _parse_hash(hash_string)
        with self.coordinator.ledger() as ledger:
            return ledger.get_audited_blocks(tx_hash)

    def post_transaction(self, payload: dict) -> CommitResponse:
        """Queue a transaction given in payload form.

        Submission errors are reported in the response's error_msg.

        Raises:
            ValidationError: If the payload does not describe a transaction
        """
        transaction = transaction_from_payload(payload)
        logger.info(f"Processing transaction {transaction!r}")
        tx_hash = transaction.hash() if transaction.verify() else ""

        try:
            tx_hash = self.coordinator.submit(transaction)
        except GraphLedgerError as e:
            return CommitResponse(tx_hash=tx_hash, error_msg=f"got error: {e.message}")

        return CommitResponse(tx_hash=tx_hash)

    def routes(self) -> dict[tuple[str, str], Callable[..., Any]]:
        """Bind handlers to (method, path) pairs."""
        return {
            ("GET", "v1/transactions"): self.get_transactions,
            ("GET", "v1/transaction"): self.get_transaction,
            ("GET", "v1/node_history"): self.get_node_history,
            ("GET", "v1/relationship"): self.get_relationship,
            ("GET", "v1/audited_blocks"): self.get_audited_blocks,
            ("POST", "v1/insert_transaction"): self.post_transaction,
        }
