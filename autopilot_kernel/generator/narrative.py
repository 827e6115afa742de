"""
Narrative enrichment — optional human-readable text around finished decisions.

Annotates, never alters: narrators receive copies and their output is kept
beside the decision, not in it. A failing model yields no text, not an error.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel

from autopilot_kernel.generator.adapter import ModelClient
from autopilot_kernel.models.decision import ApprovalDecision
from autopilot_kernel.models.prioritization import PrioritizedItem

logger = logging.getLogger(__name__)


class AnnotatedDecision(BaseModel):
    decision: ApprovalDecision
    narrative: Optional[str] = None


class DecisionNarrator:
    def __init__(self, client: ModelClient):
        self._client = client

    def annotate(self, decision: ApprovalDecision) -> AnnotatedDecision:
        snapshot = decision.model_copy(deep=True)
        prompt = (
            "Explain this portfolio action decision to a credit officer in 2-3 sentences.\n"
            f"Recommendation: {snapshot.recommendation.value}\n"
            f"Confidence: {snapshot.confidence_score} "
            f"(threshold {snapshot.effective_threshold})\n"
            f"Blockers: {'; '.join(snapshot.blockers) or 'none'}\n"
            "Factors:\n"
            + "\n".join(
                f"- {f.name} ({f.source.value}): {f.score:g} x {f.weight:g}"
                for f in snapshot.factors
            )
        )
        try:
            narrative = self._client.complete(prompt).strip() or None
        except Exception as e:
            logger.warning("decision_narrative_failed", extra={"error": str(e)})
            narrative = None
        return AnnotatedDecision(decision=decision, narrative=narrative)


class ModelSequencingNarrator:
    """SequencingNarrator backed by the model client."""

    def __init__(self, client: ModelClient):
        self._client = client

    def narrate(self, prioritized: List[PrioritizedItem]) -> Optional[str]:
        prompt = (
            "Recommend an execution sequence and timing for these ranked actions. "
            "Do not change the ranking.\n"
            + "\n".join(f"{p.rank}. {p.candidate_id} (score {p.score:g})" for p in prioritized)
        )
        return self._client.complete(prompt).strip() or None
