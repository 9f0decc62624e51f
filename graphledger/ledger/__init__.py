"""GraphLedger storage.

The ledger stores query batches submitted for the graph database, the
blocks that include them, and what the graph database reported back:
per-node change history, relationship records and the final status of
every submitted batch.

ARCHITECTURE:
- Ledger owns its SQLite connection and must be used as a context manager
- Node history is append only
- Relationship records are keyed by sha256 of the relationship id
"""

from .records import (
    GraphTransaction,
    Block,
    ExecutionRecord,
    PENDING,
    SUCCESS,
    ERROR,
    ZERO_HASH,
)
from .database import Ledger, get_ledger, relation_key

__all__ = [
    "GraphTransaction",
    "Block",
    "ExecutionRecord",
    "PENDING",
    "SUCCESS",
    "ERROR",
    "ZERO_HASH",
    "Ledger",
    "get_ledger",
    "relation_key",
]
