"""Sources of graph database change sets.

An AuditBlocks transaction asks a ChangeSource what the graph database did
while processing each block. The graph database side publishes one
BlockChanges per block hash.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Protocol

from .changes import BlockChanges
from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class ChangeSource(Protocol):
    """Anything that can report the changes applied for a block."""

    def retrieve_block_changes(self, block_hash: str) -> BlockChanges | None:
        """Return the changes for block_hash, or None if none are known."""
        ...


class InMemoryChangeSource:
    """Change sets held in memory, published by the caller."""

    def __init__(self):
        self._changes: dict[str, BlockChanges] = {}
        self._lock = threading.Lock()

    def publish(self, changes: BlockChanges | dict) -> str:
        """Store changes for a block, replacing earlier ones.

        Args:
            changes: BlockChanges or its dictionary form

        Returns:
            Block hash the changes were stored under
        """
        if isinstance(changes, dict):
            changes = BlockChanges.from_dict(changes)
        with self._lock:
            self._changes[changes.block_hash] = changes
        return changes.block_hash

    def retrieve_block_changes(self, block_hash: str) -> BlockChanges | None:
        with self._lock:
            return self._changes.get(block_hash)


class JsonDirectoryChangeSource:
    """Change sets stored as <block_hash>.json files in a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def retrieve_block_changes(self, block_hash: str) -> BlockChanges | None:
        """Read the change set file for a block.

        Returns:
            BlockChanges, or None if no file exists for the block

        Raises:
            ValidationError: If the file is not valid JSON or is malformed
        """
        path = self.directory / f"{block_hash}.json"
        if not path.exists():
            logger.debug(f"No change set file for block {block_hash}")
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(
                f"Invalid JSON in change set {path}: {e}",
                details={"path": str(path)},
            ) from e

        if not isinstance(data, dict):
            raise ValidationError(
                f"Change set {path} must be a JSON object",
                details={"path": str(path)},
            )
        data.setdefault("block_hash", block_hash)
        return BlockChanges.from_dict(data)
