"""Threshold Configuration — operator-owned auto-approval policy snapshot."""

from datetime import datetime
from typing import Dict, List, Optional

from croniter import croniter
from pydantic import BaseModel, Field, field_validator, model_validator

from autopilot_kernel.models.candidate import ActionType, ImpactLevel


class BlackoutPeriod(BaseModel):
    """A window during which nothing is dispatched (holidays, freezes)."""
    start: datetime
    end: datetime
    reason: str = ""

    @model_validator(mode="after")
    def _check_order(self) -> "BlackoutPeriod":
        if self.end <= self.start:
            raise ValueError("blackout period end must be after start")
        return self


class TimeRestrictions(BaseModel):
    business_hours_only: bool = True
    business_hours_schedule: str = "* 9-17 * * 1-5"   # Cron: minutes that count as business hours
    blackout_periods: List[BlackoutPeriod] = []
    max_actions_per_hour: int = Field(default=10, ge=1)
    max_actions_per_day: int = Field(default=50, ge=1)

    @field_validator("business_hours_schedule")
    @classmethod
    def _check_schedule(cls, value: str) -> str:
        if not croniter.is_valid(value):
            raise ValueError(f"invalid business hours schedule: {value!r}")
        return value


class RiskFactors(BaseModel):
    always_require_approval: List[ActionType] = [ActionType.WAIVER_REQUEST]
    requires_legal_review: List[ActionType] = [
        ActionType.AMENDMENT_DRAFT,
        ActionType.WAIVER_REQUEST,
    ]
    requires_compliance_review: List[ActionType] = [
        ActionType.WAIVER_REQUEST,
        ActionType.AMENDMENT_DRAFT,
    ]
    max_dollar_amount: Optional[float] = Field(default=10_000_000, ge=0)


def _default_type_thresholds() -> Dict[ActionType, int]:
    return {
        ActionType.BORROWER_CALL: 80,
        ActionType.AMENDMENT_DRAFT: 95,
        ActionType.COUNTERPARTY_ALERT: 85,
        ActionType.COMPLIANCE_REMINDER: 75,
        ActionType.ESG_ACTION: 80,
        ActionType.RISK_ESCALATION: 90,
        ActionType.WAIVER_REQUEST: 95,
        ActionType.DOCUMENT_REQUEST: 70,
    }


def _default_impact_thresholds() -> Dict[ImpactLevel, int]:
    return {
        ImpactLevel.LOW: 70,
        ImpactLevel.MEDIUM: 80,
        ImpactLevel.HIGH: 90,
        ImpactLevel.CRITICAL: 95,
    }


class ThresholdConfig(BaseModel):
    """
    Versioned auto-approval policy.

    A snapshot is validated as a whole and replaced as a whole; the kernel
    never reads or mutates a partially loaded config. Entries missing from
    ``type_thresholds``/``impact_thresholds`` simply do not apply; they can
    never lower the effective threshold below ``global_threshold``.
    """

    version: str = "1"
    global_threshold: int = Field(default=85, ge=0, le=100)
    type_thresholds: Dict[ActionType, int] = Field(default_factory=_default_type_thresholds)
    impact_thresholds: Dict[ImpactLevel, int] = Field(default_factory=_default_impact_thresholds)
    time_restrictions: TimeRestrictions = TimeRestrictions()
    risk_factors: RiskFactors = RiskFactors()
    low_confidence_floor: int = Field(default=50, ge=0, le=100)

    @model_validator(mode="after")
    def _check_threshold_ranges(self) -> "ThresholdConfig":
        for key, value in list(self.type_thresholds.items()) + list(self.impact_thresholds.items()):
            if not 0 <= value <= 100:
                raise ValueError(f"threshold for {key.value} must be within 0-100, got {value}")
        return self
