"""Confidence factors, aggregate scores, and the weighting policy."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

NEUTRAL_CONFIDENCE = 50


class FactorSource(str, Enum):
    HISTORICAL = "historical"
    RULE = "rule"
    MODEL = "model"


class ConfidenceFactor(BaseModel):
    """A named, weighted, sourced contributor to an aggregate confidence score."""

    name: str
    score: float = Field(ge=0, le=100)
    weight: float = Field(ge=0)
    source: FactorSource
    explanation: str = ""


class ConfidenceScore(BaseModel):
    """Weighted mean of factors, rounded half-up. Neutral (50) when total weight is zero."""

    overall_score: int = Field(ge=0, le=100)
    factors: List[ConfidenceFactor] = []


class HistoricalData(BaseModel):
    """Aggregate outcome statistics for similar past actions."""

    similar_actions_count: int = Field(ge=0)
    success_rate: float = Field(ge=0, le=100)
    avg_effectiveness_score: float = Field(ge=0, le=100)


class ConfidencePolicy(BaseModel):
    """
    Factor weights. Weights are policy: the candidate never chooses how much
    its own evidence counts.
    """

    historical_success_weight: float = Field(default=0.30, ge=0)
    historical_effectiveness_weight: float = Field(default=0.15, ge=0)
    min_sample_size: int = Field(default=10, ge=1)
    rule_weights: Dict[str, float] = {
        "timing_appropriate": 0.15,
        "resources_available": 0.10,
        "no_conflicts": 0.10,
    }
    default_rule_weight: float = Field(default=0.05, ge=0)
    model_weight: float = Field(default=0.20, ge=0)   # Shared by all self-reported factors
    neutral_score: int = Field(default=NEUTRAL_CONFIDENCE, ge=0, le=100)

    def rule_weight(self, name: str) -> float:
        return self.rule_weights.get(name, self.default_rule_weight)


class RuleBasedFactors(BaseModel):
    """Boolean business-rule checks. Extra named flags are accepted."""

    model_config = {"extra": "allow"}

    timing_appropriate: Optional[bool] = None
    resources_available: Optional[bool] = None
    no_conflicts: Optional[bool] = None

    def flags(self) -> Dict[str, bool]:
        """All set flags, declared fields first, extras in name order."""
        declared = {
            name: value
            for name, value in (
                ("timing_appropriate", self.timing_appropriate),
                ("resources_available", self.resources_available),
                ("no_conflicts", self.no_conflicts),
            )
            if value is not None
        }
        extras = self.model_extra or {}
        for name in sorted(extras):
            declared[name] = bool(extras[name])
        return declared
