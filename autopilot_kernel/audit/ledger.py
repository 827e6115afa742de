"""
Audit Ledger — append-only, cryptographically chained governance record.

Every approval decision, queue transition, deferral and escalation change
produces one AuditEvent, whatever the outcome.

Behavioral Contract:
- Append-only. No event is ever modified or deleted.
- Each event is hashed and chained to the previous event (tamper-evident ledger).
- Payloads carry the full model dump, factor breakdown included.
- Queryable by subject, kind and recency.
"""

import hashlib
import json
import sqlite3
import threading
from datetime import datetime
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel

from autopilot_kernel.models.audit import AuditEvent, AuditKind


def _sign(event: AuditEvent) -> str:
    event_dict = event.model_dump(mode="json")
    # Zero out signature before hashing (it's what we're computing)
    event_dict["signature"] = ""
    event_bytes = json.dumps(event_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(event_bytes).hexdigest()


class AuditLedger:
    """
    Append-only audit ledger.
    Prototype: SQLite. Production: PostgreSQL with row-level security.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_events (
                id TEXT PRIMARY KEY,
                kind TEXT NOT NULL,
                subject_id TEXT NOT NULL,
                recorded_at TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                event_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_subject ON audit_events(subject_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_kind ON audit_events(kind)
        """)
        self._conn.commit()

    def record(
        self,
        kind: AuditKind,
        subject_id: str,
        payload,
        recorded_at: Optional[datetime] = None,
    ) -> AuditEvent:
        """Build, sign, chain and append one event. Models are dumped in JSON mode."""
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        event = AuditEvent(
            id=f"aud_{uuid4().hex[:12]}",
            kind=kind,
            subject_id=subject_id,
            payload=payload,
            recorded_at=recorded_at or datetime.utcnow(),
        )
        return self.append(event)

    def append(self, event: AuditEvent) -> AuditEvent:
        """Append an event, chaining it to the most recent one."""
        with self._lock:
            event = event.model_copy(update={"prior_record_hash": self._get_latest_hash()})
            event = event.model_copy(update={"signature": _sign(event)})

            self._conn.execute(
                """
                INSERT INTO audit_events (
                    id, kind, subject_id, recorded_at, signature,
                    prior_record_hash, event_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.kind.value,
                    event.subject_id,
                    event.recorded_at.isoformat(),
                    event.signature,
                    event.prior_record_hash,
                    json.dumps(event.model_dump(mode="json"), default=str),
                ),
            )
            self._conn.commit()
        return event

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM audit_events ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> AuditEvent:
        return AuditEvent.model_validate_json(row["event_json"])

    def get_by_id(self, event_id: str) -> Optional[AuditEvent]:
        row = self._conn.execute(
            "SELECT event_json FROM audit_events WHERE id = ?", (event_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def query_by_subject(self, subject_id: str) -> List[AuditEvent]:
        """Full trail for one candidate, queue item or relationship."""
        rows = self._conn.execute(
            "SELECT event_json FROM audit_events WHERE subject_id = ? ORDER BY rowid",
            (subject_id,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_by_kind(self, kind: AuditKind, limit: Optional[int] = None) -> List[AuditEvent]:
        sql = "SELECT event_json FROM audit_events WHERE kind = ? ORDER BY rowid"
        params: tuple = (kind.value,)
        if limit is not None:
            sql += " LIMIT ?"
            params += (limit,)
        rows = self._conn.execute(sql, params).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_recent(self, limit: int = 50) -> List[AuditEvent]:
        rows = self._conn.execute(
            "SELECT event_json FROM audit_events ORDER BY rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def verify_chain_integrity(self) -> bool:
        """Verify no events have been tampered with or reordered."""
        rows = self._conn.execute(
            "SELECT event_json, signature FROM audit_events ORDER BY rowid"
        ).fetchall()

        prior_sig = None
        for row in rows:
            event = self._deserialize(row)
            if event.signature != row["signature"] or event.signature != _sign(event):
                return False
            if event.prior_record_hash != prior_sig:
                return False
            prior_sig = event.signature
        return True

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM audit_events").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
