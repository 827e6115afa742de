"""Admission outcomes — what happened to a candidate offered to the pipeline."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from autopilot_kernel.core.exceptions import ErrorKind
from autopilot_kernel.models.candidate import ActionCandidate
from autopilot_kernel.models.confidence import HistoricalData, RuleBasedFactors
from autopilot_kernel.models.decision import ApprovalDecision
from autopilot_kernel.models.escalation import ObservationResult
from autopilot_kernel.models.queue import QueueItem


class AdmissionStatus(str, Enum):
    ADMITTED = "admitted"
    DEFERRED = "deferred"    # Rate limit reached; retried later, never dropped
    REJECTED = "rejected"    # Failed validation before entering the pipeline


class AdmissionOutcome(BaseModel):
    candidate_id: Optional[str] = None
    status: AdmissionStatus
    decision: Optional[ApprovalDecision] = None
    item: Optional[QueueItem] = None
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None
    retry_after: Optional[datetime] = None


class DeferredAdmission(BaseModel):
    """A scored candidate waiting for rate-limit capacity."""

    candidate: ActionCandidate
    historical_data: Optional[HistoricalData] = None
    rule_based_factors: Optional[RuleBasedFactors] = None
    reason: str
    deferred_at: datetime
    retry_after: datetime
    attempts: int = 1


class PredictionOutcome(BaseModel):
    observation: ObservationResult
    admissions: List[AdmissionOutcome] = []
