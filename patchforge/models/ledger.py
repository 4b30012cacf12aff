"""Run ledger entry model — append-only, hash-chained stage records.

One entry is written per stage transition of a pipeline run.  Together
the entries of a run record which pins, manifest and build request produced
which artifact, so a run can be audited or replayed later.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only Run Ledger."""

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    stage_id: str
    state_transition: str  # "from_state->to_state", e.g. "running->passed"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # content addresses
    detail: str = ""  # failure cause, when the transition is to "failed"
    previous_entry_hash: str = ""
    entry_hash: str = ""  # computed on append, seals this entry
