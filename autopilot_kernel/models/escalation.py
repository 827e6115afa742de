"""Escalation models — breach predictions, alert rules, and relationship escalation state."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from autopilot_kernel.models.candidate import ActionCandidate


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


class EscalationLevel(str, Enum):
    """How aggressively a borrower relationship is being managed."""
    MONITORING = "monitoring"        # Standard surveillance
    ENGAGEMENT = "engagement"        # Active borrower dialogue
    RESTRUCTURING = "restructuring"  # Formal amendment / workout discussions
    WORKOUT = "workout"              # Default management, legal / recovery

    @property
    def rank(self) -> int:
        return _ESCALATION_ORDER.index(self)

    @classmethod
    def from_rank(cls, rank: int) -> "EscalationLevel":
        return _ESCALATION_ORDER[rank]


_ESCALATION_ORDER = [
    EscalationLevel.MONITORING,
    EscalationLevel.ENGAGEMENT,
    EscalationLevel.RESTRUCTURING,
    EscalationLevel.WORKOUT,
]


class AlertType(str, Enum):
    CRITICAL_RISK = "critical_risk"
    HIGH_RISK = "high_risk"
    THRESHOLD_CROSSED = "threshold_crossed"


class RiskThresholdConfig(BaseModel):
    """Breach-probability cutoffs (percent) and alert switches."""

    low_threshold: float = Field(default=25, ge=0, le=100)     # Below: low
    medium_threshold: float = Field(default=50, ge=0, le=100)  # Below: medium
    high_threshold: float = Field(default=75, ge=0, le=100)    # Below: high; at or above: critical
    alert_on_high_risk: bool = True
    alert_on_critical_risk: bool = True
    alert_on_threshold_crossed: bool = True

    @model_validator(mode="after")
    def _check_ordering(self) -> "RiskThresholdConfig":
        if not self.low_threshold <= self.medium_threshold <= self.high_threshold:
            raise ValueError("risk thresholds must be ordered low <= medium <= high")
        return self


class EscalationPolicy(BaseModel):
    """When a relationship may jump straight to workout."""

    critical_jump_horizon_days: int = Field(default=30, ge=0)
    critical_jump_on_cascade: bool = True


class BreachPrediction(BaseModel):
    """A covenant breach signal for one borrower relationship."""

    id: str
    borrower_id: str
    facility_id: str
    covenant_id: Optional[str] = None
    breach_probability: float = Field(ge=0, le=100)
    risk_level: Optional[RiskLevel] = None      # Derived from breach_probability when absent
    days_until_breach: Optional[int] = Field(default=None, ge=0)
    cascade_risk: bool = False
    impact_severity: Optional[str] = None       # "low" | "medium" | "high"
    facility_exposure: Optional[float] = Field(default=None, ge=0)
    observed_at: datetime = Field(default_factory=datetime.utcnow)


class AlertDecision(BaseModel):
    should_alert: bool
    alert_type: Optional[AlertType] = None


class EscalationTransition(BaseModel):
    from_level: EscalationLevel
    to_level: EscalationLevel
    trigger: str            # "risk_increase" | "critical_jump" | "resolution"
    prediction_id: Optional[str] = None
    at: datetime


class EscalationState(BaseModel):
    """Escalation level of one (borrower, facility) relationship."""

    borrower_id: str
    facility_id: str
    level: EscalationLevel = EscalationLevel.MONITORING
    last_risk_level: Optional[RiskLevel] = None
    updated_at: Optional[datetime] = None
    history: List[EscalationTransition] = []


class ObservationResult(BaseModel):
    """What one prediction observation produced."""

    prediction_id: str
    risk_level: RiskLevel
    alert: AlertDecision
    previous_level: EscalationLevel
    current_level: EscalationLevel
    transition: Optional[EscalationTransition] = None
    injected_candidates: List[ActionCandidate] = []
