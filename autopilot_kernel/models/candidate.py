"""Action Candidate — a proposed intervention awaiting an admission decision."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from autopilot_kernel.models.confidence import ConfidenceFactor


class ActionType(str, Enum):
    BORROWER_CALL = "borrower_call"
    AMENDMENT_DRAFT = "amendment_draft"
    COUNTERPARTY_ALERT = "counterparty_alert"
    COMPLIANCE_REMINDER = "compliance_reminder"
    ESG_ACTION = "esg_action"
    RISK_ESCALATION = "risk_escalation"
    WAIVER_REQUEST = "waiver_request"
    DOCUMENT_REQUEST = "document_request"


class Urgency(str, Enum):
    """Ordinal urgency, lowest first."""
    ROUTINE = "routine"
    THIS_MONTH = "this_month"
    THIS_WEEK = "this_week"
    TODAY = "today"
    IMMEDIATE = "immediate"

    @property
    def rank(self) -> int:
        return _URGENCY_ORDER.index(self)


_URGENCY_ORDER = [
    Urgency.ROUTINE,
    Urgency.THIS_MONTH,
    Urgency.THIS_WEEK,
    Urgency.TODAY,
    Urgency.IMMEDIATE,
]


class ImpactLevel(str, Enum):
    """Ordinal impact, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _IMPACT_ORDER.index(self)


_IMPACT_ORDER = [ImpactLevel.LOW, ImpactLevel.MEDIUM, ImpactLevel.HIGH, ImpactLevel.CRITICAL]


class ActionCandidate(BaseModel):
    """
    A proposed intervention. Immutable once built.

    Free-text fields (title, rationale, expected_outcome, risks) are opaque:
    nothing in the governance path reads them as a safety input.
    Re-submitting after a rejection or expiry means building a new candidate
    with a new id, optionally pointing back through ``supersedes``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"cand_{uuid4().hex[:12]}")
    type: ActionType
    urgency: Urgency
    borrower_id: str
    facility_id: str
    title: str = ""
    rationale: str = ""
    expected_outcome: str = ""
    risks: List[str] = []
    confidence_factors: List[ConfidenceFactor] = []   # Self-reported, untrusted

    impact_level: Optional[ImpactLevel] = None        # Declared, drives impact threshold
    signal_severity: Optional[str] = None             # "low" | "medium" | "high" of originating signal
    facility_exposure: Optional[float] = Field(default=None, ge=0)
    amount: Optional[float] = Field(default=None, ge=0)
    deadline_days: Optional[int] = Field(default=None, ge=0)
    success_probability: Optional[float] = Field(default=None, ge=0, le=100)

    supersedes: Optional[str] = None                  # Earlier candidate this one replaces
    source: str = "generator"                         # "generator" | "escalation_monitor" | "api"
    submitted_at: datetime = Field(default_factory=datetime.utcnow)
