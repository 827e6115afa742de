"""Queue Item — the stateful, append-only lifecycle record of an admitted candidate."""

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from autopilot_kernel.models.candidate import ActionCandidate, ImpactLevel


class QueueStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    EXECUTED = "executed"
    EXPIRED = "expired"


class ExecutionMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    HYBRID = "hybrid"


# Lifecycle: pending_review must pass through approved before it can execute.
ALLOWED_TRANSITIONS: Dict[QueueStatus, FrozenSet[QueueStatus]] = {
    QueueStatus.PENDING_REVIEW: frozenset({
        QueueStatus.APPROVED, QueueStatus.REJECTED, QueueStatus.EXPIRED,
    }),
    QueueStatus.APPROVED: frozenset({QueueStatus.EXECUTED, QueueStatus.EXPIRED}),
    QueueStatus.AUTO_APPROVED: frozenset({QueueStatus.EXECUTED, QueueStatus.EXPIRED}),
    QueueStatus.REJECTED: frozenset(),
    QueueStatus.EXECUTED: frozenset(),
    QueueStatus.EXPIRED: frozenset(),
}

EXECUTABLE_STATUSES = frozenset({QueueStatus.APPROVED, QueueStatus.AUTO_APPROVED})
CANCELLABLE_STATUSES = frozenset({
    QueueStatus.PENDING_REVIEW, QueueStatus.AUTO_APPROVED, QueueStatus.APPROVED,
})


def is_transition_allowed(from_status: QueueStatus, to_status: QueueStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[from_status]


class StatusTransition(BaseModel):
    """One entry in a queue item's history. Never edited once appended."""
    from_status: Optional[QueueStatus] = None
    to_status: QueueStatus
    actor: str
    reason: Optional[str] = None
    at: datetime


class ExecutionResult(BaseModel):
    """Outcome reported back by the execution dispatcher."""

    item_id: str
    action_type: str
    success: bool
    data: dict = {}
    error: Optional[str] = None
    executed_at: datetime
    execution_duration_seconds: float


class QueueItem(BaseModel):
    """One per admitted candidate."""

    id: str
    candidate_id: str
    candidate: ActionCandidate
    config_version: Optional[str] = None
    confidence_score: int = Field(ge=0, le=100)
    status: QueueStatus
    execution_mode: ExecutionMode
    requires_human_review: bool
    estimated_impact: ImpactLevel
    elevated_urgency: bool = False
    blockers: List[str] = []
    created_at: datetime
    not_before: Optional[datetime] = None        # Earliest permissible dispatch time
    history: List[StatusTransition] = []
    version: int = 1                              # Bumped on every transition (CAS token)
    execution_result: Optional[ExecutionResult] = None
