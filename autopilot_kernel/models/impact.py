"""Impact Policy — operator-configurable table for a queue item's estimated impact."""

from typing import Dict, List

from pydantic import BaseModel, Field, model_validator

from autopilot_kernel.models.candidate import ImpactLevel

WILDCARD = "*"


class ExposureBucket(BaseModel):
    """Facility exposures strictly below ``upper_bound`` fall in this bucket."""
    name: str
    upper_bound: float = Field(gt=0)


class ImpactPolicy(BaseModel):
    """
    Keys are ``"<action_type>|<signal_severity>|<exposure_bucket>"``; any part
    may be ``*``. The most specific matching key wins, then ``default``.
    """

    table: Dict[str, ImpactLevel] = {
        "waiver_request|*|*": ImpactLevel.HIGH,
        "amendment_draft|*|*": ImpactLevel.HIGH,
        "risk_escalation|*|*": ImpactLevel.HIGH,
        "*|high|large": ImpactLevel.CRITICAL,
        "*|high|*": ImpactLevel.HIGH,
        "*|medium|*": ImpactLevel.MEDIUM,
        "*|low|*": ImpactLevel.LOW,
        "compliance_reminder|*|*": ImpactLevel.LOW,
        "document_request|*|*": ImpactLevel.LOW,
    }
    exposure_buckets: List[ExposureBucket] = [
        ExposureBucket(name="small", upper_bound=10_000_000),
        ExposureBucket(name="mid", upper_bound=50_000_000),
    ]
    overflow_bucket: str = "large"      # Exposure at or above every upper bound
    unknown_bucket: str = "unknown"     # No exposure declared
    default: ImpactLevel = ImpactLevel.MEDIUM

    @model_validator(mode="after")
    def _check_keys(self) -> "ImpactPolicy":
        for key in self.table:
            if len(key.split("|")) != 3:
                raise ValueError(f"impact table key must have three parts: {key!r}")
        return self
