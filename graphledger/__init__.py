"""
GraphLedger

Audit ledger for graph database transactions.
"""

__version__ = "0.1.0"

# Record exports
from graphledger.relationship import RelationshipRecord

# Ledger exports
from graphledger.ledger import Ledger, GraphTransaction, Block, get_ledger

# Transaction exports
from graphledger.transactions import CommitQueries, AuditBlocks, transaction_from_payload

# Change exports
from graphledger.changes import BlockChanges, NodeChange
from graphledger.source import ChangeSource, InMemoryChangeSource, JsonDirectoryChangeSource

# Coordinator and API exports
from graphledger.coordinator import TransactionCoordinator, SystemStatus
from graphledger.api import GraphLedgerApi, CommitResponse, NodeHistoryLine

# Exception exports
from graphledger import exceptions

__all__ = [
    "RelationshipRecord",
    "Ledger",
    "GraphTransaction",
    "Block",
    "get_ledger",
    "CommitQueries",
    "AuditBlocks",
    "transaction_from_payload",
    "BlockChanges",
    "NodeChange",
    "ChangeSource",
    "InMemoryChangeSource",
    "JsonDirectoryChangeSource",
    "TransactionCoordinator",
    "SystemStatus",
    "GraphLedgerApi",
    "CommitResponse",
    "NodeHistoryLine",
    # Exceptions module (access as graphledger.exceptions.ValidationError, etc.)
    "exceptions",
]
