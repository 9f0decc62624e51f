"""Tests for coordinator module.

Coverage:
- SystemStatus enum values
- Submission, verification and de-duplication
- Block commit: chaining, state hash, per-transaction isolation
- Rollback of the whole block on unexpected errors
- Failed audits of malformed change sets do not block later commits
- Consistency checks (broken blocks, orphaned history)
"""

import logging
import sqlite3
import threading

import pytest

from graphledger.changes import (
    BlockChanges,
    ChangeKind,
    ChangeStatus,
    NodeChange,
    TransactionChanges,
)
from graphledger.config import Settings
from graphledger.coordinator import (
    SystemStatus,
    TransactionCoordinator,
    get_transaction_coordinator,
)
from graphledger.exceptions import ConsistencyError, ExecutionError, ValidationError
from graphledger.ledger import ZERO_HASH
from graphledger.source import JsonDirectoryChangeSource
from graphledger.transactions import AuditBlocks, CommitQueries, Transaction


class ExplodingTransaction(Transaction):
    """Transaction raising an arbitrary exception."""

    TRANSACTION_TYPE = "explode"

    def __init__(self, error):
        self.error = error

    def to_payload(self):
        return {"type": self.TRANSACTION_TYPE, "error": repr(self.error)}

    def execute(self, ledger, context):
        ledger.set_last_confirmed_block("written-before-failure")
        raise self.error


class TestSystemStatus:
    """Tests for SystemStatus enum."""

    def test_system_status_enum_values(self):
        assert SystemStatus.NORMAL.value == "normal"
        assert SystemStatus.INCONSISTENT.value == "inconsistent"
        assert SystemStatus.SAFE_MODE.value == "safe_mode"


class TestTransactionCoordinatorInit:
    """Tests for TransactionCoordinator initialization."""

    def test_init_installs_schema(self, tmp_path):
        coordinator = TransactionCoordinator(db_path=tmp_path / "ledger.db")

        with coordinator.ledger() as ledger:
            assert ledger.get_schema_version() is not None

    def test_default_path_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRAPHLEDGER_DATA_DIR", str(tmp_path))

        coordinator = TransactionCoordinator()

        assert coordinator.db_path == tmp_path / "ledger.db"
        assert coordinator.change_source is None

    def test_from_settings(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRAPHLEDGER_DB", str(tmp_path / "custom.db"))
        monkeypatch.setenv("GRAPHLEDGER_CHANGES_DIR", str(tmp_path / "changes"))

        coordinator = TransactionCoordinator.from_settings(Settings())

        assert coordinator.db_path == tmp_path / "custom.db"
        assert isinstance(coordinator.change_source, JsonDirectoryChangeSource)
        assert coordinator.change_source.directory == tmp_path / "changes"

    def test_from_settings_configures_logging(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRAPHLEDGER_DB", str(tmp_path / "custom.db"))
        monkeypatch.setenv("GRAPHLEDGER_LOG_LEVEL", "debug")

        TransactionCoordinator.from_settings(Settings())

        assert logging.getLogger("graphledger").level == logging.DEBUG

    def test_from_settings_rejects_unknown_log_level(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GRAPHLEDGER_DB", str(tmp_path / "custom.db"))
        monkeypatch.setenv("GRAPHLEDGER_LOG_LEVEL", "chatty")

        with pytest.raises(ValueError, match="Unknown log level"):
            TransactionCoordinator.from_settings(Settings())

    def test_get_transaction_coordinator(self, tmp_path, monkeypatch, change_source):
        monkeypatch.setenv("GRAPHLEDGER_DATA_DIR", str(tmp_path))

        coordinator = get_transaction_coordinator(change_source=change_source)

        assert coordinator.db_path == tmp_path / "ledger.db"
        assert coordinator.change_source is change_source
        assert coordinator.check_consistency() == SystemStatus.NORMAL


class TestSubmit:
    """Tests for submit()."""

    def test_submit_returns_hash_and_queues(self, coordinator):
        tx = CommitQueries("CREATE (n)", nonce="n1")

        tx_hash = coordinator.submit(tx)

        assert tx_hash == tx.hash()
        assert coordinator.pending() == [tx_hash]

    def test_duplicate_submission_queued_once(self, coordinator):
        coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))
        coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))

        assert len(coordinator.pending()) == 1

    def test_unverifiable_transaction_rejected(self, coordinator):
        with pytest.raises(ValidationError, match="verification"):
            coordinator.submit(CommitQueries(None))

        assert coordinator.pending() == []

    def test_committed_transaction_rejected(self, coordinator):
        coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))
        coordinator.commit_block()

        with pytest.raises(ValidationError, match="already committed"):
            coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))

    def test_concurrent_submissions(self, coordinator):
        def worker(i):
            coordinator.submit(CommitQueries(f"CREATE (n{i})", nonce=str(i)))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(coordinator.pending()) == 8


class TestCommitBlock:
    """Tests for commit_block()."""

    def test_genesis_block(self, coordinator):
        tx_hash = coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))

        block = coordinator.commit_block()

        assert block.height == 0
        assert block.prev_hash == ZERO_HASH
        assert block.tx_hashes == (tx_hash,)
        assert block.hash == block.compute_hash()
        assert coordinator.pending() == []

        with coordinator.ledger() as ledger:
            assert ledger.get_graph_transaction(tx_hash).result == "PENDING"
            assert ledger.get_execution(tx_hash).status == "success"
            assert ledger.last_block() == block
            assert block.state_hash == ledger.state_hash()

    def test_blocks_are_chained(self, coordinator):
        first = coordinator.commit_block()
        second = coordinator.commit_block()

        assert first.tx_hashes == ()
        assert second.height == 1
        assert second.prev_hash == first.hash

    def test_execution_error_isolated_to_transaction(self, tmp_path):
        # No change source: AuditBlocks fails with a connection error
        coordinator = TransactionCoordinator(db_path=tmp_path / "ledger.db")
        ok_hash = coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))
        audit_hash = coordinator.submit(AuditBlocks(nonce="a1"))

        block = coordinator.commit_block()

        assert block.tx_hashes == (ok_hash, audit_hash)
        with coordinator.ledger() as ledger:
            assert ledger.get_graph_transaction(ok_hash) is not None
            failed = ledger.get_execution(audit_hash)
            assert failed.status == "error"
            assert failed.code == ExecutionError.POSSIBLE_CONNECTION_ERROR
            assert failed.description.startswith("Possible connection error")

    def test_execution_error_discards_partial_writes(self, coordinator):
        tx_hash = coordinator.submit(ExplodingTransaction(ExecutionError("nope")))

        coordinator.commit_block()

        with coordinator.ledger() as ledger:
            assert ledger.get_last_confirmed_block() is None
            assert ledger.get_execution(tx_hash).description == "nope"

    def test_unexpected_error_rolls_back_block(self, coordinator):
        ok_hash = coordinator.submit(CommitQueries("CREATE (n)", nonce="n1"))
        coordinator.submit(ExplodingTransaction(RuntimeError("disk on fire")))

        with pytest.raises(RuntimeError, match="disk on fire"):
            coordinator.commit_block()

        with coordinator.ledger() as ledger:
            assert ledger.block_count() == 0
            assert ledger.get_graph_transaction(ok_hash) is None
            assert ledger.get_last_confirmed_block() is None
        assert len(coordinator.pending()) == 2


class TestSubmitAndAudit:
    """Full flow: commit queries, publish changes, audit."""

    def test_audit_in_later_block(self, coordinator, change_source):
        tx_hash = coordinator.submit(CommitQueries("CREATE (a:Person)", nonce="n1"))
        first = coordinator.commit_block()

        change_source.publish({
            "block_hash": first.hash,
            "transactions": [
                {
                    "transaction_id": tx_hash,
                    "result": "SUCCESS",
                    "modifications": {
                        "created_nodes": [{"id": "a"}],
                        "assigned_labels": [{"id": "a", "label": "Person"}],
                    },
                }
            ],
        })

        audit_hash = coordinator.submit(AuditBlocks(nonce="a1"))
        second = coordinator.commit_block()

        with coordinator.ledger() as ledger:
            assert ledger.get_execution(audit_hash).status == "success"
            assert ledger.get_graph_transaction(tx_hash).result == "SUCCESS"
            assert [c.kind for c in ledger.get_node_history("a")] == [
                ChangeKind.CREATED_NODE,
                ChangeKind.ASSIGNED_LABEL,
            ]
            assert ledger.get_audited_blocks(audit_hash) == [first.hash]
            assert ledger.get_last_confirmed_block() == first.hash
            assert second.state_hash == ledger.state_hash()

        # Next audit covers only the block holding the first audit
        next_audit = coordinator.submit(AuditBlocks(nonce="a2"))
        coordinator.commit_block()

        with coordinator.ledger() as ledger:
            assert ledger.get_audited_blocks(next_audit) == [second.hash]

        assert coordinator.check_consistency() == SystemStatus.NORMAL

    def test_upper_case_transaction_id_matches_ledger(self, coordinator, change_source):
        tx_hash = coordinator.submit(CommitQueries("CREATE (a:Person)", nonce="n1"))
        first = coordinator.commit_block()

        change_source.publish({
            "block_hash": first.hash,
            "transactions": [
                {
                    "transaction_id": tx_hash.upper(),
                    "result": "SUCCESS",
                    "modifications": {"created_nodes": [{"id": "a"}]},
                }
            ],
        })
        coordinator.submit(AuditBlocks(nonce="a1"))
        coordinator.commit_block()

        with coordinator.ledger() as ledger:
            assert ledger.get_graph_transaction(tx_hash).result == "SUCCESS"
            assert [c.transaction_id for c in ledger.get_node_history("a")] == [tx_hash]
        assert coordinator.check_consistency() == SystemStatus.NORMAL

    def test_wrong_type_modifications_fail_only_the_audit(self, coordinator, change_source):
        tx_hash = coordinator.submit(CommitQueries("CREATE (a)", nonce="n1"))
        first = coordinator.commit_block()

        change_source.publish(BlockChanges(
            block_hash=first.hash,
            transactions=(
                TransactionChanges(
                    transaction_id=tx_hash,
                    result=ChangeStatus.SUCCESS,
                    modifications={"created_nodes": 5},
                ),
            ),
        ))
        audit_hash = coordinator.submit(AuditBlocks(nonce="a1"))

        coordinator.commit_block()
        assert coordinator.pending() == []
        # The ledger keeps moving after the failed audit
        third = coordinator.commit_block()

        assert third.height == 2
        with coordinator.ledger() as ledger:
            failed = ledger.get_execution(audit_hash)
            assert failed.status == "error"
            assert failed.code == ExecutionError.DATABASE_ERROR
            assert "created_nodes must be a list" in failed.description
            assert ledger.get_graph_transaction(tx_hash).result == "PENDING"
            assert ledger.get_last_confirmed_block() is None

    def test_non_object_change_file_fails_only_the_audit(self, tmp_path):
        changes_dir = tmp_path / "changes"
        changes_dir.mkdir()
        coordinator = TransactionCoordinator(
            db_path=tmp_path / "ledger.db",
            change_source=JsonDirectoryChangeSource(changes_dir),
        )
        coordinator.submit(CommitQueries("CREATE (a)", nonce="n1"))
        first = coordinator.commit_block()
        (changes_dir / f"{first.hash}.json").write_text("[]")

        audit_hash = coordinator.submit(AuditBlocks(nonce="a1"))
        coordinator.commit_block()

        assert coordinator.pending() == []
        with coordinator.ledger() as ledger:
            failed = ledger.get_execution(audit_hash)
            assert failed.status == "error"
            assert failed.code == ExecutionError.DATABASE_ERROR
            assert ledger.get_last_confirmed_block() is None


class TestConsistencyCheck:
    """Tests for startup consistency checks."""

    def test_fresh_ledger_is_normal(self, coordinator):
        assert coordinator.check_consistency() == SystemStatus.NORMAL
        assert coordinator._find_broken_blocks() == []
        assert coordinator._find_orphaned_history() == []
        coordinator.ensure_consistent()

    def test_orphaned_history_is_inconsistent(self, coordinator):
        with coordinator.ledger() as ledger:
            ledger.add_node_history(
                "n-1", NodeChange("cc" * 32, ChangeKind.CREATED_NODE, ("n-1",), "n-1")
            )

        assert coordinator.check_consistency() == SystemStatus.INCONSISTENT
        assert coordinator._find_orphaned_history() == [
            {"node_id": "n-1", "transaction_id": "cc" * 32}
        ]

    def test_tampered_block_is_safe_mode(self, coordinator):
        coordinator.commit_block()
        coordinator.commit_block()

        conn = sqlite3.connect(str(coordinator.db_path))
        conn.execute("UPDATE block SET prev_hash = ? WHERE height = 1", ("ee" * 32,))
        conn.commit()
        conn.close()

        assert coordinator.check_consistency() == SystemStatus.SAFE_MODE
        broken = coordinator._find_broken_blocks()
        assert [b["height"] for b in broken] == [1]

        with pytest.raises(ConsistencyError) as exc_info:
            coordinator.ensure_consistent()
        assert exc_info.value.broken_blocks == broken

    def test_rewritten_block_contents_detected(self, coordinator):
        coordinator.commit_block()

        conn = sqlite3.connect(str(coordinator.db_path))
        conn.execute("UPDATE block SET tx_hashes = ? WHERE height = 0", ('["' + "dd" * 32 + '"]',))
        conn.commit()
        conn.close()

        broken = coordinator._find_broken_blocks()
        assert broken[0]["issue"] == "stored hash does not match block header"
