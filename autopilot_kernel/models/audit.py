"""Audit Event — one entry in the hash-chained audit ledger."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class AuditKind(str, Enum):
    DECISION = "decision"
    TRANSITION = "transition"
    DEFERRAL = "deferral"
    ESCALATION = "escalation"
    ALERT = "alert"
    CONFIG_CHANGE = "config_change"


class AuditEvent(BaseModel):
    """
    Every approval decision, queue transition and escalation change lands
    here regardless of outcome. The payload is the full model dump: nothing
    is summarized away before it is recorded.
    """

    id: str
    kind: AuditKind
    subject_id: str
    payload: dict
    recorded_at: datetime

    # INTEGRITY
    signature: str = ""
    prior_record_hash: Optional[str] = None
