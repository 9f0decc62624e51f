"""Graph database change sets and per-node change records.

The graph database reports, for every ledger block, which submitted
transactions it executed and what each of them modified. This module
parses those reports and turns the modifications into NodeChange records
that are appended to the history of each affected node.

CHANGE SET SHAPE:
    {
        "block_hash": "<hex>",
        "transactions": [
            {
                "transaction_id": "<hex>",
                "result": "SUCCESS" | "FAILURE",
                "modifications": {"created_nodes": [{"id": "n-1"}], ...},
                "error": {
                    "message": "...",
                    "failed_query": {"query": "...", "error": "..."}
                }
            }
        ]
    }
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from .exceptions import ValidationError
from .relationship import RelationshipRecord

if TYPE_CHECKING:
    from .ledger import Ledger

logger = logging.getLogger(__name__)


class ChangeStatus(Enum):
    """Outcome of one transaction inside the graph database."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class ChangeKind(Enum):
    """Kinds of modification, named after their change set keys."""

    CREATED_NODE = "created_nodes"
    DELETED_NODE = "deleted_nodes"
    ASSIGNED_LABEL = "assigned_labels"
    REMOVED_LABEL = "removed_labels"
    ASSIGNED_NODE_PROPERTY = "assigned_node_properties"
    REMOVED_NODE_PROPERTY = "removed_node_properties"
    CREATED_RELATIONSHIP = "created_relationships"
    DELETED_RELATIONSHIP = "deleted_relationships"
    ASSIGNED_RELATIONSHIP_PROPERTY = "assigned_relationship_properties"
    REMOVED_RELATIONSHIP_PROPERTY = "removed_relationship_properties"


# Order in which modifications are turned into history entries
CHANGE_ORDER = (
    ChangeKind.CREATED_NODE,
    ChangeKind.ASSIGNED_LABEL,
    ChangeKind.REMOVED_LABEL,
    ChangeKind.ASSIGNED_NODE_PROPERTY,
    ChangeKind.REMOVED_NODE_PROPERTY,
    ChangeKind.CREATED_RELATIONSHIP,
    ChangeKind.ASSIGNED_RELATIONSHIP_PROPERTY,
    ChangeKind.REMOVED_RELATIONSHIP_PROPERTY,
    ChangeKind.DELETED_RELATIONSHIP,
    ChangeKind.DELETED_NODE,
)

REQUIRED_KEYS = {
    ChangeKind.CREATED_NODE: ("id",),
    ChangeKind.DELETED_NODE: ("id",),
    ChangeKind.ASSIGNED_LABEL: ("id", "label"),
    ChangeKind.REMOVED_LABEL: ("id", "label"),
    ChangeKind.ASSIGNED_NODE_PROPERTY: ("id", "key", "value"),
    ChangeKind.REMOVED_NODE_PROPERTY: ("id", "key"),
    ChangeKind.CREATED_RELATIONSHIP: ("id", "type", "start_node_id", "end_node_id"),
    ChangeKind.DELETED_RELATIONSHIP: ("id", "type", "start_node_id", "end_node_id"),
    ChangeKind.ASSIGNED_RELATIONSHIP_PROPERTY: ("id", "key", "value"),
    ChangeKind.REMOVED_RELATIONSHIP_PROPERTY: ("id", "key"),
}


@dataclass(frozen=True)
class FailedQuery:
    query: str
    error: str


@dataclass(frozen=True)
class ChangeError:
    """Error reported by the graph database for a failed transaction."""
    message: str
    failed_query: FailedQuery

    def describe(self) -> str:
        return (
            f"{self.message}\nHappened in query: {self.failed_query.query}\n"
            f"{self.failed_query.error}"
        )


@dataclass(frozen=True)
class TransactionChanges:
    """What one ledger transaction did inside the graph database."""
    transaction_id: str  # hex hash of the ledger transaction
    result: ChangeStatus
    modifications: dict = field(default_factory=dict)
    error: ChangeError | None = None

    @classmethod
    def from_dict(cls, data: dict) -> TransactionChanges:
        """Parse one transaction entry of a change set.

        Raises:
            ValidationError: If the entry is malformed
        """
        if not isinstance(data, dict):
            raise ValidationError(
                "Transaction changes must be an object",
                details={"type": type(data).__name__},
            )
        if "transaction_id" not in data or "result" not in data:
            raise ValidationError(
                "Transaction changes require 'transaction_id' and 'result'",
                details={"keys": sorted(data)},
            )
        try:
            result = ChangeStatus(data["result"])
        except ValueError:
            raise ValidationError(
                f"Unknown change status: {data['result']!r}",
                details={"transaction_id": data["transaction_id"]},
            )

        error = None
        error_data = data.get("error")
        if error_data:
            if not isinstance(error_data, dict):
                raise ValidationError(
                    "Error must be an object",
                    details={"transaction_id": data["transaction_id"]},
                )
            failed = error_data.get("failed_query") or {}
            if not isinstance(failed, dict):
                raise ValidationError(
                    "Failed query must be an object",
                    details={"transaction_id": data["transaction_id"]},
                )
            error = ChangeError(
                message=error_data.get("message", ""),
                failed_query=FailedQuery(
                    query=failed.get("query", ""),
                    error=failed.get("error", ""),
                ),
            )

        modifications = data.get("modifications") or {}
        if not isinstance(modifications, dict):
            raise ValidationError(
                "Modifications must be an object",
                details={"transaction_id": data["transaction_id"]},
            )

        return cls(
            transaction_id=data["transaction_id"],
            result=result,
            modifications=modifications,
            error=error,
        )


@dataclass(frozen=True)
class BlockChanges:
    """Changes the graph database applied while processing one block."""
    block_hash: str
    transactions: tuple[TransactionChanges, ...] = ()

    def get_transactions(self) -> tuple[TransactionChanges, ...]:
        return self.transactions

    @classmethod
    def from_dict(cls, data: dict) -> BlockChanges:
        """Parse a change set for one block.

        Raises:
            ValidationError: If the change set is malformed
        """
        if not isinstance(data, dict):
            raise ValidationError(
                "Block changes must be an object",
                details={"type": type(data).__name__},
            )
        if "block_hash" not in data:
            raise ValidationError("Block changes require 'block_hash'")

        transactions = data.get("transactions") or []
        if not isinstance(transactions, list):
            raise ValidationError(
                "Transactions must be a list",
                details={"block_hash": data["block_hash"]},
            )
        return cls(
            block_hash=data["block_hash"],
            transactions=tuple(TransactionChanges.from_dict(tx) for tx in transactions),
        )


@dataclass(frozen=True)
class NodeChange:
    """One modification, as recorded in the history of the nodes it touched.

    subject is the id of the modified node or relationship; detail holds
    the kind-specific values (label, property key/value, relationship type).
    """
    transaction_id: str
    kind: ChangeKind
    node_ids: tuple[str, ...]
    subject: str
    detail: dict = field(default_factory=dict)

    def get_uuids(self) -> tuple[str, ...]:
        return self.node_ids

    def describe(self) -> str:
        d = self.detail
        kind = self.kind
        if kind is ChangeKind.CREATED_NODE:
            return f"Node {self.subject} created"
        if kind is ChangeKind.DELETED_NODE:
            return f"Node {self.subject} deleted"
        if kind is ChangeKind.ASSIGNED_LABEL:
            return f"Label {d['label']} assigned to node {self.subject}"
        if kind is ChangeKind.REMOVED_LABEL:
            return f"Label {d['label']} removed from node {self.subject}"
        if kind is ChangeKind.ASSIGNED_NODE_PROPERTY:
            return f"Property {d['key']} of node {self.subject} set to {d['value']!r}"
        if kind is ChangeKind.REMOVED_NODE_PROPERTY:
            return f"Property {d['key']} removed from node {self.subject}"
        if kind is ChangeKind.CREATED_RELATIONSHIP:
            return (
                f"Relationship {d['type']} ({self.subject}) created "
                f"from {d['start_node_id']} to {d['end_node_id']}"
            )
        if kind is ChangeKind.DELETED_RELATIONSHIP:
            return (
                f"Relationship {d['type']} ({self.subject}) deleted "
                f"from {d['start_node_id']} to {d['end_node_id']}"
            )
        if kind is ChangeKind.ASSIGNED_RELATIONSHIP_PROPERTY:
            return f"Property {d['key']} of relationship {self.subject} set to {d['value']!r}"
        return f"Property {d['key']} removed from relationship {self.subject}"

    def __str__(self) -> str:
        return self.describe()


def _entries(modifications: dict, kind: ChangeKind) -> list[dict]:
    entries = modifications.get(kind.value) or []
    if not isinstance(entries, list):
        raise ValidationError(
            f"{kind.value} must be a list",
            details={"value": entries},
        )
    required = REQUIRED_KEYS[kind]
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError(
                f"{kind.value} entry must be an object",
                details={"entry": entry},
            )
        missing = [key for key in required if key not in entry]
        if missing:
            raise ValidationError(
                f"{kind.value} entry is missing: {', '.join(missing)}",
                details={"entry": entry},
            )
        if not isinstance(entry["id"], str):
            raise ValidationError(
                f"{kind.value} entry id must be a string",
                details={"entry": entry},
            )
    return entries


def generate_node_changes(
    transaction_id: str,
    modifications: dict,
    ledger: Ledger,
) -> list[NodeChange]:
    """Turn the modifications of one transaction into NodeChange records.

    Created relationships are stored in the ledger's relation index so that
    later property changes on them can be attributed to their endpoints.

    Args:
        transaction_id: Hex hash of the ledger transaction
        modifications: Modifications dictionary from the change set
        ledger: Open ledger used to store and resolve relationships

    Returns:
        NodeChange list in CHANGE_ORDER

    Raises:
        ValidationError: If an entry is the wrong type or lacks a required key
    """
    changes = []

    for kind in CHANGE_ORDER:
        for entry in _entries(modifications, kind):
            subject = entry["id"]

            if kind in (ChangeKind.CREATED_RELATIONSHIP, ChangeKind.DELETED_RELATIONSHIP):
                record = RelationshipRecord.from_dict(entry)
                if kind is ChangeKind.CREATED_RELATIONSHIP:
                    ledger.add_relation(record)
                node_ids = record.endpoints()
                detail = {
                    "type": record.get_type(),
                    "start_node_id": record.get_start_node_id(),
                    "end_node_id": record.get_end_node_id(),
                }

            elif kind in (
                ChangeKind.ASSIGNED_RELATIONSHIP_PROPERTY,
                ChangeKind.REMOVED_RELATIONSHIP_PROPERTY,
            ):
                record = ledger.get_relation(subject)
                if record is None:
                    logger.warning(
                        f"Relationship {subject} is not in the ledger; "
                        f"{kind.value} change has no node history"
                    )
                    node_ids = ()
                else:
                    node_ids = record.endpoints()
                detail = {key: entry[key] for key in REQUIRED_KEYS[kind] if key != "id"}

            else:
                node_ids = (subject,)
                detail = {key: entry[key] for key in REQUIRED_KEYS[kind] if key != "id"}

            # Self-loops touch one node once
            node_ids = tuple(dict.fromkeys(node_ids))

            changes.append(NodeChange(
                transaction_id=transaction_id,
                kind=kind,
                node_ids=node_ids,
                subject=subject,
                detail=detail,
            ))

    return changes
