"""Prioritization inputs and outputs."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from autopilot_kernel.models.candidate import Urgency


class ResourceAvailability(str, Enum):
    ABUNDANT = "abundant"
    MODERATE = "moderate"
    LIMITED = "limited"


class ExclusionReason(str, Enum):
    RESOURCE_CONSTRAINT = "resource_constraint"
    SUPERSEDED = "superseded"
    BELOW_URGENCY_CUTOFF = "below_urgency_cutoff"


class ResourceConstraints(BaseModel):
    max_simultaneous: int = Field(ge=0)
    available_resources: ResourceAvailability = ResourceAvailability.MODERATE
    urgency_bias: float = Field(default=0.5, ge=0, le=1)   # 1 = urgency only, 0 = confidence only
    min_urgency: Optional[Urgency] = None                  # Overrides the availability-derived cutoff


class PrioritizedItem(BaseModel):
    item_id: str
    candidate_id: str
    rank: int = Field(ge=1)
    score: float


class ExcludedItem(BaseModel):
    item_id: str
    candidate_id: str
    reason: ExclusionReason
    score: Optional[float] = None
    superseded_by: Optional[str] = None


class PrioritizationResult(BaseModel):
    prioritized: List[PrioritizedItem] = []
    excluded: List[ExcludedItem] = []
    sequencing_note: Optional[str] = None   # Advisory only; never feeds back into ranks
