"""Adversarial tests — run ledger tampering and chain integrity.

These tests verify that the Run Ledger detects:
1. Corrupted entry hashes
2. Rewritten stage outcomes (a failed gate edited to "passed")
3. Deleted or relinked entries
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from patchforge.core.pipeline import STAGES
from patchforge.core.run_ledger import LedgerIntegrityError, RunLedger
from patchforge.models.ledger import LedgerEntry

RUN_ID = "pf-adversarial-001"


def _tamper(ledger: RunLedger, sql: str, *params: object) -> None:
    conn = sqlite3.connect(str(ledger._db_path))
    conn.execute(sql, params)
    conn.commit()
    conn.close()


def _nth_id(offset: int) -> str:
    return (
        "(SELECT id FROM run_ledger WHERE run_id = ? "
        f"ORDER BY id ASC LIMIT 1 OFFSET {offset})"
    )


class TestLedgerTamperDetection:
    """Direct SQLite manipulation to simulate an attacker with DB access."""

    @pytest.fixture
    def seeded_ledger(self, tmp_path: Path) -> RunLedger:
        """Seed a ledger with a running/passed pair for every stage."""
        ledger = RunLedger(tmp_path / "ledger.db")
        for stage in STAGES:
            for transition in ("not_started->running", "running->passed"):
                ledger.append(LedgerEntry(
                    run_id=RUN_ID, stage_id=stage, state_transition=transition,
                ))
        return ledger

    def test_untouched_chain_verifies(self, seeded_ledger: RunLedger):
        assert seeded_ledger.verify_chain(RUN_ID)

    def test_corrupted_entry_hash_detected(self, seeded_ledger: RunLedger):
        _tamper(
            seeded_ledger,
            f"UPDATE run_ledger SET entry_hash = 'TAMPERED' WHERE id = {_nth_id(2)}",
            RUN_ID,
        )
        with pytest.raises(LedgerIntegrityError, match="(Chain broken|Tampered)"):
            seeded_ledger.verify_chain(RUN_ID)

    def test_rewritten_gate_outcome_detected(self, seeded_ledger: RunLedger):
        _tamper(
            seeded_ledger,
            "UPDATE run_ledger SET state_transition = 'running->failed', "
            f"detail = 'LockMismatchError' WHERE id = {_nth_id(3)}",
            RUN_ID,
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            seeded_ledger.verify_chain(RUN_ID)

    def test_rewritten_artifact_reference_detected(self, seeded_ledger: RunLedger):
        _tamper(
            seeded_ledger,
            "UPDATE run_ledger SET artifact_refs_json = '[\"sha256:evil\"]' "
            f"WHERE id = {_nth_id(5)}",
            RUN_ID,
        )
        with pytest.raises(LedgerIntegrityError, match="Tampered"):
            seeded_ledger.verify_chain(RUN_ID)

    def test_deleted_entry_breaks_chain(self, seeded_ledger: RunLedger):
        _tamper(seeded_ledger, f"DELETE FROM run_ledger WHERE id = {_nth_id(1)}", RUN_ID)
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            seeded_ledger.verify_chain(RUN_ID)

    def test_broken_chain_link_detected(self, seeded_ledger: RunLedger):
        _tamper(
            seeded_ledger,
            f"UPDATE run_ledger SET previous_entry_hash = 'WRONG_LINK' WHERE id = {_nth_id(2)}",
            RUN_ID,
        )
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            seeded_ledger.verify_chain(RUN_ID)
