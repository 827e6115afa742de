"""
Approval Gate — decides whether a scored candidate may execute unattended.

Behavioral Contract:
- Pure function of (ActionCandidate, ConfidenceScore, ThresholdConfig)
- Evaluates in strict order: policy overrides, review requirements,
  threshold comparison, escalation
- Categorical overrides win over any confidence, including 100
- A missing configuration fails closed to require_review, never auto_approve
- Never mutates shared state; safe to call concurrently for independent candidates
"""

from typing import List, Optional

from autopilot_kernel.governance.thresholds import resolve_effective_threshold
from autopilot_kernel.models.candidate import ActionCandidate, ImpactLevel, Urgency
from autopilot_kernel.models.confidence import ConfidenceScore
from autopilot_kernel.models.decision import ApprovalDecision, BlockerCode, Recommendation
from autopilot_kernel.models.thresholds import ThresholdConfig


def _format_reasoning(
    recommendation: Recommendation,
    score: int,
    threshold: Optional[int],
    blockers: List[str],
) -> str:
    """Deterministic summary; the factor breakdown travels with the decision."""
    if recommendation == Recommendation.AUTO_APPROVE:
        return (
            f"Confidence {score} meets effective threshold {threshold} "
            f"with no blocking factors."
        )
    prefix = "Escalation required" if recommendation == Recommendation.ESCALATE else "Review required"
    return f"{prefix}: {'; '.join(blockers)}."


def _blocked(
    candidate: ActionCandidate,
    confidence: ConfidenceScore,
    config: Optional[ThresholdConfig],
    blockers: List[str],
    codes: List[BlockerCode],
    recommendation: Recommendation = Recommendation.REQUIRE_REVIEW,
    effective_threshold: Optional[int] = None,
) -> ApprovalDecision:
    return ApprovalDecision(
        candidate_id=candidate.id,
        config_version=config.version if config else None,
        is_eligible=False,
        effective_threshold=effective_threshold,
        confidence_score=confidence.overall_score,
        factors=confidence.factors,
        blockers=blockers,
        blocker_codes=codes,
        recommendation=recommendation,
        elevated_urgency=recommendation == Recommendation.ESCALATE,
        reasoning=_format_reasoning(
            recommendation, confidence.overall_score, effective_threshold, blockers
        ),
    )


def fail_closed_decision(
    candidate: ActionCandidate,
    confidence: ConfidenceScore,
    detail: str = "threshold configuration unavailable",
) -> ApprovalDecision:
    """Decision used whenever no complete threshold configuration is available."""
    return _blocked(
        candidate, confidence, None,
        blockers=[detail],
        codes=[BlockerCode.CONFIG_UNAVAILABLE],
    )


def _is_urgent(candidate: ActionCandidate) -> bool:
    return (
        candidate.urgency == Urgency.IMMEDIATE
        or candidate.impact_level == ImpactLevel.CRITICAL
    )


def evaluate_approval(
    candidate: ActionCandidate,
    confidence: ConfidenceScore,
    config: Optional[ThresholdConfig],
) -> ApprovalDecision:
    """Run the ordered gate. Returns the first rule that decides."""
    if config is None:
        return fail_closed_decision(candidate, confidence)

    risk = config.risk_factors
    action = candidate.type.value

    # 1. Policy says a human always decides this type.
    if candidate.type in risk.always_require_approval:
        return _blocked(
            candidate, confidence, config,
            blockers=[f"{action}: type requires manual approval by policy"],
            codes=[BlockerCode.MANUAL_APPROVAL_REQUIRED],
        )

    # 2. Specialist review requirements.
    blockers: List[str] = []
    codes: List[BlockerCode] = []
    if candidate.type in risk.requires_legal_review:
        blockers.append(f"{action}: type requires legal review before execution")
        codes.append(BlockerCode.LEGAL_REVIEW_REQUIRED)
    if candidate.type in risk.requires_compliance_review:
        blockers.append(f"{action}: type requires compliance review before execution")
        codes.append(BlockerCode.COMPLIANCE_REVIEW_REQUIRED)
    if blockers:
        return _blocked(candidate, confidence, config, blockers=blockers, codes=codes)

    if (
        risk.max_dollar_amount is not None
        and candidate.amount is not None
        and candidate.amount > risk.max_dollar_amount
    ):
        return _blocked(
            candidate, confidence, config,
            blockers=[
                f"amount exceeds policy maximum "
                f"({candidate.amount:,.2f} > {risk.max_dollar_amount:,.2f})"
            ],
            codes=[BlockerCode.AMOUNT_EXCEEDS_LIMIT],
        )

    # 3. Confidence against the most conservative applicable threshold.
    threshold = resolve_effective_threshold(candidate.type, candidate.impact_level, config)
    score = confidence.overall_score
    if score >= threshold:
        return ApprovalDecision(
            candidate_id=candidate.id,
            config_version=config.version,
            is_eligible=True,
            effective_threshold=threshold,
            confidence_score=score,
            factors=confidence.factors,
            blockers=[],
            blocker_codes=[],
            recommendation=Recommendation.AUTO_APPROVE,
            reasoning=_format_reasoning(Recommendation.AUTO_APPROVE, score, threshold, []),
        )

    # 4. Below threshold: escalate only urgent, low-confidence candidates.
    recommendation = Recommendation.REQUIRE_REVIEW
    if _is_urgent(candidate) and score < config.low_confidence_floor:
        recommendation = Recommendation.ESCALATE
    return _blocked(
        candidate, confidence, config,
        blockers=[f"confidence below effective threshold ({score} < {threshold})"],
        codes=[BlockerCode.BELOW_THRESHOLD],
        recommendation=recommendation,
        effective_threshold=threshold,
    )


class ApprovalGate:
    """
    Holds the current validated ThresholdConfig snapshot and evaluates against it.

    The snapshot is swapped whole by ``replace_config``; a decision always sees
    one consistent version.
    """

    def __init__(self, config: Optional[ThresholdConfig] = None):
        self._config = config

    @property
    def config(self) -> Optional[ThresholdConfig]:
        return self._config

    def replace_config(self, config: ThresholdConfig) -> None:
        self._config = config

    def evaluate(
        self, candidate: ActionCandidate, confidence: ConfidenceScore
    ) -> ApprovalDecision:
        return evaluate_approval(candidate, confidence, self._config)
