"""Append-only import ledger."""

import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field
from rich.console import Console

console = Console(stderr=True)

EventType = Literal[
    "IMPORT_RUN_STARTED",
    "CONVERSATION_IMPORTED",
    "CONVERSATION_SKIPPED",
    "ASSET_MISSING",
    "IMPORT_RUN_COMPLETED",
    "IMPORT_RUN_FAILED",
]


class LedgerEvent(BaseModel):
    """Append-only ledger event record.

    Written as JSONL next to the database. Never mutate or delete; only append.
    """

    event_id: str = Field(description="Unique event identifier (uuid4)")
    run_id: str = Field(description="Import run identifier (uuid4)")
    ts: datetime = Field(description="Event timestamp (ISO8601 UTC)")
    event_type: EventType = Field(description="Event type")
    conversation_id: Optional[str] = Field(default=None, description="Related conversation if any")
    payload: dict = Field(default_factory=dict, description="Event-specific data")

    model_config = {"frozen": True}


class ImportLedger:
    """Append-only ledger writer.

    Never truncates or rewrites; only appends.
    """

    def __init__(self, ledger_path: Path, run_id: Optional[str] = None):
        self.ledger_path = ledger_path
        self.run_id = run_id or str(uuid.uuid4())

    def append_event(
        self,
        event_type: EventType,
        payload: dict,
        conversation_id: Optional[str] = None,
    ) -> LedgerEvent:
        self.ledger_path.parent.mkdir(parents=True, exist_ok=True)

        event = LedgerEvent(
            event_id=str(uuid.uuid4()),
            run_id=self.run_id,
            ts=datetime.now(timezone.utc),
            event_type=event_type,
            conversation_id=conversation_id,
            payload=payload,
        )

        with open(self.ledger_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.model_dump(mode="json")) + "\n")

        return event


def read_ledger_tail(ledger_path: Path, n: int = 20) -> list[LedgerEvent]:
    """Read the last N events from the ledger.

    Malformed lines are skipped with a warning.
    """
    if not ledger_path.exists():
        return []

    events: list[LedgerEvent] = []
    malformed_count = 0

    with open(ledger_path, "r", encoding="utf-8") as f:
        lines = f.readlines()

    for line in lines[-n:] if len(lines) > n else lines:
        line = line.strip()
        if not line:
            continue

        try:
            events.append(LedgerEvent(**json.loads(line)))
        except (json.JSONDecodeError, ValueError) as e:
            malformed_count += 1
            console.print(f"[yellow]Warning: Skipping malformed line: {e}[/yellow]")

    if malformed_count > 0:
        console.print(f"[yellow]Skipped {malformed_count} malformed line(s)[/yellow]")

    return events
