"""Approval Decision — the gate's ruling on a scored candidate."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from autopilot_kernel.models.confidence import ConfidenceFactor


class Recommendation(str, Enum):
    AUTO_APPROVE = "auto_approve"
    REQUIRE_REVIEW = "require_review"
    ESCALATE = "escalate"


class BlockerCode(str, Enum):
    """Machine-readable blocker reasons, parallel to the human-readable blockers."""
    MANUAL_APPROVAL_REQUIRED = "manual_approval_required"
    LEGAL_REVIEW_REQUIRED = "legal_review_required"
    COMPLIANCE_REVIEW_REQUIRED = "compliance_review_required"
    AMOUNT_EXCEEDS_LIMIT = "amount_exceeds_limit"
    BELOW_THRESHOLD = "below_threshold"
    CONFIG_UNAVAILABLE = "config_unavailable"


class ApprovalDecision(BaseModel):
    """
    Deterministic verdict for one candidate.

    Contains no ids or timestamps of its own so the same inputs always
    produce an equal decision. Carries the full factor breakdown for audit.
    """

    candidate_id: str
    config_version: Optional[str] = None
    is_eligible: bool
    effective_threshold: Optional[int] = None
    confidence_score: int = Field(ge=0, le=100)
    factors: List[ConfidenceFactor] = []
    blockers: List[str] = []
    blocker_codes: List[BlockerCode] = []
    recommendation: Recommendation
    elevated_urgency: bool = False
    reasoning: str

    @model_validator(mode="after")
    def _blockers_match_eligibility(self) -> "ApprovalDecision":
        if self.is_eligible == bool(self.blockers):
            raise ValueError("blockers must be empty exactly when the decision is eligible")
        if self.is_eligible != (self.recommendation == Recommendation.AUTO_APPROVE):
            raise ValueError("only eligible decisions may recommend auto_approve")
        return self
