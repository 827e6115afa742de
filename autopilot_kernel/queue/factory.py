"""
Queue Item Factory — converts an approval decision into a queue entry.

Deterministic: the item id derives from the candidate id and config version,
and ``created_at`` is the candidate's submission time, so identical inputs
always produce an identical QueueItem.
"""

import hashlib
from typing import List, Optional

from autopilot_kernel.models.candidate import ActionCandidate, ImpactLevel
from autopilot_kernel.models.decision import ApprovalDecision, Recommendation
from autopilot_kernel.models.impact import WILDCARD, ImpactPolicy
from autopilot_kernel.models.queue import (
    ExecutionMode,
    QueueItem,
    QueueStatus,
    StatusTransition,
)


def queue_item_id(candidate_id: str, config_version: Optional[str]) -> str:
    digest = hashlib.sha256(f"{candidate_id}|{config_version or ''}".encode()).hexdigest()
    return f"q_{digest[:16]}"


def exposure_bucket(exposure: Optional[float], policy: ImpactPolicy) -> str:
    if exposure is None:
        return policy.unknown_bucket
    for bucket in sorted(policy.exposure_buckets, key=lambda b: b.upper_bound):
        if exposure < bucket.upper_bound:
            return bucket.name
    return policy.overflow_bucket


def _lookup_keys(action_type: str, severity: str, bucket: str) -> List[str]:
    """Most specific first: action type outranks severity, severity outranks bucket."""
    keys = []
    for t in (action_type, WILDCARD):
        for s in (severity, WILDCARD):
            for b in (bucket, WILDCARD):
                keys.append(f"{t}|{s}|{b}")
    return keys


def estimate_impact(candidate: ActionCandidate, policy: ImpactPolicy) -> ImpactLevel:
    severity = (candidate.signal_severity or "unknown").lower()
    bucket = exposure_bucket(candidate.facility_exposure, policy)
    for key in _lookup_keys(candidate.type.value, severity, bucket):
        if key in policy.table:
            return policy.table[key]
    return policy.default


class QueueItemFactory:
    """Maps ApprovalDecision to QueueItem using an injectable impact table."""

    def __init__(self, impact_policy: Optional[ImpactPolicy] = None):
        self.impact_policy = impact_policy or ImpactPolicy()

    def create(self, candidate: ActionCandidate, decision: ApprovalDecision) -> QueueItem:
        if decision.candidate_id != candidate.id:
            raise ValueError(
                f"Decision for {decision.candidate_id} cannot admit candidate {candidate.id}"
            )

        if decision.recommendation == Recommendation.AUTO_APPROVE:
            status = QueueStatus.AUTO_APPROVED
            mode = ExecutionMode.AUTO
            review = False
        else:
            status = QueueStatus.PENDING_REVIEW
            mode = ExecutionMode.HYBRID
            review = True

        return QueueItem(
            id=queue_item_id(candidate.id, decision.config_version),
            candidate_id=candidate.id,
            candidate=candidate,
            config_version=decision.config_version,
            confidence_score=decision.confidence_score,
            status=status,
            execution_mode=mode,
            requires_human_review=review,
            estimated_impact=estimate_impact(candidate, self.impact_policy),
            elevated_urgency=decision.recommendation == Recommendation.ESCALATE,
            blockers=list(decision.blockers),
            created_at=candidate.submitted_at,
            history=[
                StatusTransition(
                    from_status=None,
                    to_status=status,
                    actor="approval_gate",
                    reason=decision.recommendation.value,
                    at=candidate.submitted_at,
                )
            ],
        )
