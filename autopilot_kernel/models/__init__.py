"""Autopilot kernel data models."""

from autopilot_kernel.models.admission import (
    AdmissionOutcome,
    AdmissionStatus,
    DeferredAdmission,
    PredictionOutcome,
)
from autopilot_kernel.models.audit import AuditEvent, AuditKind
from autopilot_kernel.models.candidate import (
    ActionCandidate,
    ActionType,
    ImpactLevel,
    Urgency,
)
from autopilot_kernel.models.confidence import (
    NEUTRAL_CONFIDENCE,
    ConfidenceFactor,
    ConfidencePolicy,
    ConfidenceScore,
    FactorSource,
    HistoricalData,
    RuleBasedFactors,
)
from autopilot_kernel.models.decision import ApprovalDecision, BlockerCode, Recommendation
from autopilot_kernel.models.escalation import (
    AlertDecision,
    AlertType,
    BreachPrediction,
    EscalationLevel,
    EscalationPolicy,
    EscalationState,
    EscalationTransition,
    ObservationResult,
    RiskLevel,
    RiskThresholdConfig,
)
from autopilot_kernel.models.impact import ExposureBucket, ImpactPolicy
from autopilot_kernel.models.prioritization import (
    ExcludedItem,
    ExclusionReason,
    PrioritizationResult,
    PrioritizedItem,
    ResourceAvailability,
    ResourceConstraints,
)
from autopilot_kernel.models.queue import (
    ExecutionMode,
    ExecutionResult,
    QueueItem,
    QueueStatus,
    StatusTransition,
)
from autopilot_kernel.models.thresholds import (
    BlackoutPeriod,
    RiskFactors,
    ThresholdConfig,
    TimeRestrictions,
)

__all__ = [
    "ActionCandidate",
    "ActionType",
    "AdmissionOutcome",
    "AdmissionStatus",
    "AlertDecision",
    "AlertType",
    "ApprovalDecision",
    "AuditEvent",
    "AuditKind",
    "BlackoutPeriod",
    "BlockerCode",
    "BreachPrediction",
    "ConfidenceFactor",
    "ConfidencePolicy",
    "ConfidenceScore",
    "DeferredAdmission",
    "EscalationLevel",
    "EscalationPolicy",
    "EscalationState",
    "EscalationTransition",
    "ExcludedItem",
    "ExclusionReason",
    "ExecutionMode",
    "ExecutionResult",
    "ExposureBucket",
    "FactorSource",
    "HistoricalData",
    "ImpactLevel",
    "ImpactPolicy",
    "NEUTRAL_CONFIDENCE",
    "ObservationResult",
    "PredictionOutcome",
    "PrioritizationResult",
    "PrioritizedItem",
    "QueueItem",
    "QueueStatus",
    "Recommendation",
    "ResourceAvailability",
    "ResourceConstraints",
    "RiskFactors",
    "RiskLevel",
    "RiskThresholdConfig",
    "RuleBasedFactors",
    "StatusTransition",
    "ThresholdConfig",
    "TimeRestrictions",
    "Urgency",
]
