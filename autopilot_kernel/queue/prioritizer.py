"""
Prioritizer — ranks the open queue under resource constraints.

Behavioral Contract:
- Deterministic: same items and constraints give the same ranking
- Superseded and below-cutoff items are excluded before scoring decides anything
- Ties break on earliest deadline, then submission order, then id
- Every input item appears exactly once, either ranked or excluded with a reason
- A narrator may annotate the result; it never sees or changes the live ranking
"""

import logging
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from autopilot_kernel.models.candidate import Urgency
from autopilot_kernel.models.prioritization import (
    ExcludedItem,
    ExclusionReason,
    PrioritizationResult,
    PrioritizedItem,
    ResourceAvailability,
    ResourceConstraints,
)
from autopilot_kernel.models.queue import QueueItem

logger = logging.getLogger(__name__)

URGENCY_WEIGHTS: Dict[Urgency, int] = {
    Urgency.ROUTINE: 20,
    Urgency.THIS_MONTH: 40,
    Urgency.THIS_WEEK: 60,
    Urgency.TODAY: 80,
    Urgency.IMMEDIATE: 100,
}

AVAILABILITY_CUTOFFS: Dict[ResourceAvailability, Optional[Urgency]] = {
    ResourceAvailability.ABUNDANT: None,
    ResourceAvailability.MODERATE: None,
    ResourceAvailability.LIMITED: Urgency.THIS_MONTH,   # Routine work waits
}


class SequencingNarrator(Protocol):
    """Optional text generator for a human-readable sequencing note."""

    def narrate(self, prioritized: List[PrioritizedItem]) -> Optional[str]: ...


def effective_urgency(item: QueueItem) -> Urgency:
    if item.elevated_urgency:
        return Urgency.IMMEDIATE
    return item.candidate.urgency


def priority_score(item: QueueItem, urgency_bias: float) -> float:
    urgency = URGENCY_WEIGHTS[effective_urgency(item)]
    score = urgency * urgency_bias + item.confidence_score * (1 - urgency_bias)
    probability = item.candidate.success_probability
    if probability is not None:
        score *= 0.5 + 0.5 * probability / 100
    return round(score, 4)


def urgency_cutoff(constraints: ResourceConstraints) -> Optional[Urgency]:
    if constraints.min_urgency is not None:
        return constraints.min_urgency
    return AVAILABILITY_CUTOFFS[constraints.available_resources]


def find_superseded(items: Sequence[QueueItem]) -> Dict[str, str]:
    """Map of superseded item id -> id of the item that replaces it."""
    superseded: Dict[str, str] = {}

    by_candidate = {i.candidate_id: i for i in items}
    for item in items:
        target = item.candidate.supersedes
        if target and target in by_candidate and target != item.candidate_id:
            superseded[by_candidate[target].id] = item.id

    groups: Dict[Tuple[str, str, str], List[QueueItem]] = {}
    for item in items:
        c = item.candidate
        groups.setdefault((c.type.value, c.borrower_id, c.facility_id), []).append(item)
    for group in groups.values():
        if len(group) < 2:
            continue
        ordered = sorted(group, key=lambda i: (i.created_at, i.id))
        latest = ordered[-1]
        for earlier in ordered[:-1]:
            superseded.setdefault(earlier.id, latest.id)

    return superseded


def _sort_key(item: QueueItem, score: float):
    deadline = item.candidate.deadline_days
    return (
        -score,
        deadline if deadline is not None else float("inf"),
        item.created_at,
        item.id,
    )


def prioritize(
    items: Sequence[QueueItem],
    constraints: ResourceConstraints,
    narrator: Optional[SequencingNarrator] = None,
) -> PrioritizationResult:
    excluded: List[ExcludedItem] = []
    superseded = find_superseded(items)
    cutoff = urgency_cutoff(constraints)

    eligible: List[Tuple[QueueItem, float]] = []
    for item in items:
        score = priority_score(item, constraints.urgency_bias)
        if item.id in superseded:
            excluded.append(ExcludedItem(
                item_id=item.id,
                candidate_id=item.candidate_id,
                reason=ExclusionReason.SUPERSEDED,
                score=score,
                superseded_by=superseded[item.id],
            ))
        elif cutoff is not None and effective_urgency(item).rank < cutoff.rank:
            excluded.append(ExcludedItem(
                item_id=item.id,
                candidate_id=item.candidate_id,
                reason=ExclusionReason.BELOW_URGENCY_CUTOFF,
                score=score,
            ))
        else:
            eligible.append((item, score))

    eligible.sort(key=lambda pair: _sort_key(*pair))

    prioritized: List[PrioritizedItem] = []
    for position, (item, score) in enumerate(eligible):
        if position < constraints.max_simultaneous:
            prioritized.append(PrioritizedItem(
                item_id=item.id,
                candidate_id=item.candidate_id,
                rank=position + 1,
                score=score,
            ))
        else:
            excluded.append(ExcludedItem(
                item_id=item.id,
                candidate_id=item.candidate_id,
                reason=ExclusionReason.RESOURCE_CONSTRAINT,
                score=score,
            ))

    note = None
    if narrator is not None and prioritized:
        try:
            note = narrator.narrate([p.model_copy() for p in prioritized])
        except Exception as e:
            logger.warning("sequencing_note_failed", extra={"error": str(e)})

    logger.debug(
        "queue_prioritized",
        extra={"prioritized": len(prioritized), "excluded": len(excluded)},
    )
    return PrioritizationResult(prioritized=prioritized, excluded=excluded, sequencing_note=note)
