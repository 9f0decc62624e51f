"""Ledger record dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..hashing import canonical_json, sha256_hex

# Graph transaction results
PENDING = "PENDING"
SUCCESS = "SUCCESS"
ERROR = "ERROR"
GRAPH_TRANSACTION_RESULTS = (PENDING, SUCCESS, ERROR)

# Hash a genesis block links to
ZERO_HASH = "0" * 64


@dataclass(frozen=True)
class GraphTransaction:
    """Query batch submitted for execution in the graph database.

    Only result and error_msg change over the transaction's life; an update
    stores a new value built with with_result().
    """
    queries: str
    error_msg: str = ""
    result: str = PENDING  # 'PENDING' | 'SUCCESS' | 'ERROR'
    pub_key: str = ""

    def with_result(self, error_msg: str, result: str) -> GraphTransaction:
        return GraphTransaction(
            queries=self.queries,
            error_msg=error_msg,
            result=result,
            pub_key=self.pub_key,
        )

    def to_dict(self) -> dict:
        return {
            "queries": self.queries,
            "error_msg": self.error_msg,
            "result": self.result,
            "pub_key": self.pub_key,
        }


@dataclass(frozen=True)
class Block:
    """Committed ledger block."""
    height: int
    prev_hash: str
    state_hash: str
    created_at: str  # ISO 8601
    tx_hashes: tuple[str, ...] = field(default_factory=tuple)
    hash: str = ""

    def header(self) -> dict:
        return {
            "height": self.height,
            "prev_hash": self.prev_hash,
            "state_hash": self.state_hash,
            "created_at": self.created_at,
            "tx_hashes": list(self.tx_hashes),
        }

    def compute_hash(self) -> str:
        """Compute SHA256 hash of the block header."""
        return sha256_hex(canonical_json(self.header()))


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of a transaction included in a block."""
    tx_hash: str
    block_height: int
    position: int
    status: str  # 'success' | 'error'
    code: int | None = None
    description: str = ""
