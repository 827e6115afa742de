"""
Confidence Evaluator — turns historical, rule-based and self-reported signals
into one weighted confidence score.

Behavioral Contract:
- Every signal becomes exactly one ConfidenceFactor with a policy-owned weight
- The aggregate is always the weighted mean; no factor overrides another
- Zero total weight yields the neutral score, never 0 or 100
- Self-reported factors from the generator are relabelled as model-sourced and
  share a fixed weight budget, whatever weights they claimed
- Pure: no I/O, no clock, no randomness
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from autopilot_kernel.core.exceptions import ValidationError
from autopilot_kernel.models.candidate import ActionCandidate
from autopilot_kernel.models.confidence import (
    NEUTRAL_CONFIDENCE,
    ConfidenceFactor,
    ConfidencePolicy,
    ConfidenceScore,
    FactorSource,
    HistoricalData,
    RuleBasedFactors,
)

logger = logging.getLogger(__name__)


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


def _coerce_factor(raw: Union[ConfidenceFactor, dict]) -> ConfidenceFactor:
    if isinstance(raw, ConfidenceFactor):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError(f"Confidence factor must be a mapping, got {type(raw).__name__}")
    if not raw.get("source"):
        raise ValidationError(
            f"Confidence factor {raw.get('name', '<unnamed>')!r} has no source"
        )
    try:
        return ConfidenceFactor.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Malformed confidence factor {raw.get('name', '<unnamed>')!r}",
            errors=exc.errors(),
        ) from exc


def coerce_historical_data(data: Union[HistoricalData, dict]) -> HistoricalData:
    if isinstance(data, HistoricalData):
        return data
    try:
        return HistoricalData.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError("Malformed historical data", errors=exc.errors()) from exc


def coerce_rule_factors(data: Union[RuleBasedFactors, Dict[str, bool]]) -> RuleBasedFactors:
    if isinstance(data, RuleBasedFactors):
        return data
    try:
        return RuleBasedFactors.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError("Malformed rule-based factors", errors=exc.errors()) from exc


def aggregate_factors(
    factors: Sequence[Union[ConfidenceFactor, dict]],
    neutral_score: int = NEUTRAL_CONFIDENCE,
) -> ConfidenceScore:
    """
    Weighted mean of factor scores, rounded half-up to an integer in [0, 100].

    Decimal arithmetic keeps the result identical across platforms for the
    same inputs.
    """
    validated = [_coerce_factor(f) for f in factors]

    total_weight = sum((_to_decimal(f.weight) for f in validated), Decimal(0))
    if total_weight == 0:
        return ConfidenceScore(overall_score=neutral_score, factors=validated)

    weighted = sum(
        (_to_decimal(f.score) * _to_decimal(f.weight) for f in validated), Decimal(0)
    )
    mean = (weighted / total_weight).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    overall = min(100, max(0, int(mean)))
    return ConfidenceScore(overall_score=overall, factors=validated)


class ConfidenceEvaluator:
    """Builds factors from the inputs a candidate is evaluated with, then aggregates."""

    def __init__(self, policy: Optional[ConfidencePolicy] = None):
        self.policy = policy or ConfidencePolicy()

    def evaluate(
        self,
        candidate: ActionCandidate,
        historical_data: Optional[Union[HistoricalData, dict]] = None,
        rule_based_factors: Optional[Union[RuleBasedFactors, Dict[str, bool]]] = None,
    ) -> ConfidenceScore:
        factors: List[ConfidenceFactor] = []

        if historical_data is not None:
            factors.extend(self._historical_factors(coerce_historical_data(historical_data)))
        if rule_based_factors is not None:
            factors.extend(self._rule_factors(coerce_rule_factors(rule_based_factors)))
        factors.extend(self._model_factors(candidate.confidence_factors))

        score = aggregate_factors(factors, neutral_score=self.policy.neutral_score)
        logger.debug(
            "confidence_evaluated",
            extra={
                "candidate_id": candidate.id,
                "overall_score": score.overall_score,
                "factor_count": len(score.factors),
            },
        )
        return score

    def _historical_factors(self, data: HistoricalData) -> List[ConfidenceFactor]:
        # Thin history counts for less, linearly up to min_sample_size.
        sample_scale = min(1.0, data.similar_actions_count / self.policy.min_sample_size)
        return [
            ConfidenceFactor(
                name="historical_success_rate",
                score=data.success_rate,
                weight=self.policy.historical_success_weight * sample_scale,
                source=FactorSource.HISTORICAL,
                explanation=(
                    f"{data.success_rate:g}% success across "
                    f"{data.similar_actions_count} similar actions"
                ),
            ),
            ConfidenceFactor(
                name="historical_effectiveness",
                score=data.avg_effectiveness_score,
                weight=self.policy.historical_effectiveness_weight * sample_scale,
                source=FactorSource.HISTORICAL,
                explanation=f"Average effectiveness score {data.avg_effectiveness_score:g}",
            ),
        ]

    def _rule_factors(self, rules: RuleBasedFactors) -> List[ConfidenceFactor]:
        return [
            ConfidenceFactor(
                name=name,
                score=100 if passed else 0,
                weight=self.policy.rule_weight(name),
                source=FactorSource.RULE,
                explanation=f"Rule check {name} {'passed' if passed else 'failed'}",
            )
            for name, passed in rules.flags().items()
        ]

    def _model_factors(self, declared: Sequence[ConfidenceFactor]) -> List[ConfidenceFactor]:
        if not declared:
            return []

        budget = _to_decimal(self.policy.model_weight)
        total = sum((_to_decimal(f.weight) for f in declared), Decimal(0))

        factors = []
        for f in declared:
            if total > 0:
                share = budget * _to_decimal(f.weight) / total
            else:
                share = budget / len(declared)
            explanation = f.explanation
            if f.source != FactorSource.MODEL:
                explanation = f"{explanation} (self-reported as {f.source.value})".strip()
            factors.append(ConfidenceFactor(
                name=f.name,
                score=f.score,
                weight=float(share),
                source=FactorSource.MODEL,
                explanation=explanation,
            ))
        return factors
