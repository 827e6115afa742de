"""
Proposal Generator Adapter — the only place the model client is used.

Behavioral Contract:
- The model client is injected here and nowhere else in the kernel
- Output is parsed by a strict schema; unknown or missing fields fail the batch
- Failures come back as explicit error kinds, never as defaults; generate_or_raise
  turns them into GeneratorUnavailable or GeneratorMalformed
- Nothing produced here is approved; candidates still go through the gate
"""

import logging
from datetime import datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from autopilot_kernel.core.exceptions import ErrorKind, GeneratorMalformed, GeneratorUnavailable
from autopilot_kernel.models.candidate import ActionCandidate, ActionType, ImpactLevel, Urgency
from autopilot_kernel.models.confidence import FactorSource
from autopilot_kernel.models.escalation import BreachPrediction

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    """Protocol for the generative text backend — pluggable."""

    def complete(self, prompt: str) -> str: ...


# --- Wire schema ---

class GeneratedFactor(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    score: float = Field(ge=0, le=100)
    weight: float = Field(ge=0)
    source: FactorSource
    explanation: str = ""


class GeneratedProposal(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ActionType
    title: str
    rationale: str = ""
    urgency: Urgency
    borrower_id: str
    facility_id: str
    expected_outcome: str = ""
    potential_risks: List[str] = []
    confidence_factors: List[GeneratedFactor] = []
    confidence_score: Optional[float] = Field(default=None, ge=0, le=100)  # Ignored by the gate
    impact_level: Optional[ImpactLevel] = None
    deadline_days: Optional[int] = Field(default=None, ge=0)
    success_probability: Optional[float] = Field(default=None, ge=0, le=100)
    amount: Optional[float] = Field(default=None, ge=0)


class GeneratedProposalBatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    actions: List[GeneratedProposal]


# --- Adapter inputs / outputs ---

class PortfolioContext(BaseModel):
    total_exposure: float = Field(ge=0)
    relationship_length_years: float = Field(default=0, ge=0)
    previous_waivers: int = Field(default=0, ge=0)
    credit_rating: str = "NR"
    lender_sentiment: str = "neutral"


class GenerationConstraints(BaseModel):
    max_actions: Optional[int] = Field(default=None, ge=1)
    exclude_types: List[ActionType] = []


class GenerationContext(BaseModel):
    prediction: BreachPrediction
    portfolio: PortfolioContext
    constraints: GenerationConstraints = GenerationConstraints()


class GenerationResult(BaseModel):
    ok: bool
    candidates: List[ActionCandidate] = []
    error_kind: Optional[ErrorKind] = None
    error_detail: Optional[str] = None


def build_prompt(context: GenerationContext) -> str:
    p = context.prediction
    pc = context.portfolio
    excluded = ", ".join(t.value for t in context.constraints.exclude_types) or "None"
    return (
        "Generate portfolio management actions for this breach prediction.\n\n"
        f"Borrower: {p.borrower_id}\n"
        f"Facility: {p.facility_id}\n"
        f"Covenant: {p.covenant_id or 'n/a'}\n"
        f"Breach probability: {p.breach_probability:g}%\n"
        f"Days until breach: {p.days_until_breach if p.days_until_breach is not None else 'unknown'}\n"
        f"Impact severity: {p.impact_severity or 'unknown'}\n\n"
        f"Total exposure: {pc.total_exposure:,.0f}\n"
        f"Relationship length: {pc.relationship_length_years:g} years\n"
        f"Previous waivers: {pc.previous_waivers}\n"
        f"Credit rating: {pc.credit_rating}\n"
        f"Lender sentiment: {pc.lender_sentiment}\n\n"
        f"Max actions: {context.constraints.max_actions or 'No limit'}\n"
        f"Excluded types: {excluded}\n\n"
        "Respond with a JSON object {\"actions\": [...]} and nothing else. "
        f"Allowed types: {', '.join(t.value for t in ActionType)}. "
        f"Allowed urgencies: {', '.join(u.value for u in Urgency)}."
    )


class ProposalGeneratorAdapter:
    """Turns model output into validated ActionCandidates, or an explicit failure."""

    def __init__(self, client: ModelClient):
        self._client = client

    def generate(self, context: GenerationContext, now: Optional[datetime] = None) -> GenerationResult:
        prompt = build_prompt(context)
        try:
            raw = self._client.complete(prompt)
        except Exception as e:
            logger.warning("generator_unavailable", extra={"error": str(e)})
            return GenerationResult(
                ok=False, error_kind=ErrorKind.GENERATOR_UNAVAILABLE, error_detail=str(e)
            )

        try:
            batch = GeneratedProposalBatch.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning("generator_malformed", extra={"error_count": e.error_count()})
            return GenerationResult(
                ok=False, error_kind=ErrorKind.GENERATOR_MALFORMED, error_detail=str(e)
            )

        return GenerationResult(ok=True, candidates=self._to_candidates(batch, context, now))

    def generate_or_raise(
        self, context: GenerationContext, now: Optional[datetime] = None
    ) -> List[ActionCandidate]:
        """Fail-fast variant of ``generate`` for callers that surface errors directly."""
        result = self.generate(context, now=now)
        if result.error_kind == ErrorKind.GENERATOR_UNAVAILABLE:
            raise GeneratorUnavailable(result.error_detail)
        if result.error_kind == ErrorKind.GENERATOR_MALFORMED:
            raise GeneratorMalformed(result.error_detail)
        return result.candidates

    def _to_candidates(
        self,
        batch: GeneratedProposalBatch,
        context: GenerationContext,
        now: Optional[datetime],
    ) -> List[ActionCandidate]:
        submitted_at = now or datetime.utcnow()
        excluded = set(context.constraints.exclude_types)
        prediction = context.prediction

        candidates = []
        for proposal in batch.actions:
            if proposal.type in excluded:
                continue
            candidates.append(ActionCandidate(
                type=proposal.type,
                urgency=proposal.urgency,
                borrower_id=proposal.borrower_id,
                facility_id=proposal.facility_id,
                title=proposal.title,
                rationale=proposal.rationale,
                expected_outcome=proposal.expected_outcome,
                risks=proposal.potential_risks,
                confidence_factors=[f.model_dump() for f in proposal.confidence_factors],
                impact_level=proposal.impact_level,
                signal_severity=prediction.impact_severity,
                facility_exposure=context.portfolio.total_exposure,
                amount=proposal.amount,
                deadline_days=proposal.deadline_days,
                success_probability=proposal.success_probability,
                source="generator",
                submitted_at=submitted_at,
            ))

        limit = context.constraints.max_actions
        return candidates[:limit] if limit else candidates
