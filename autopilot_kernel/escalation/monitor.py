"""
Escalation Monitor — tracks how aggressively each borrower relationship is managed.

Consumes covenant breach predictions independently of the proposal stream
and feeds higher-urgency candidates back into admission.

Behavioral Contract:
- Risk level comes from ordered probability cutoffs unless the prediction declares one
- Alert rules are checked in order: critical, high, threshold crossed; first match wins
- No alert means no escalation change
- Levels rise one step per observation; only a critical jump skips straight to workout
- Lower risk never lowers the level; only an explicit resolve() returns to monitoring
- Every level rise injects exactly one candidate with a deterministic id
"""

import hashlib
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from autopilot_kernel.models.candidate import ActionCandidate, ActionType, ImpactLevel, Urgency
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

logger = logging.getLogger(__name__)

RISK_TO_LEVEL: Dict[RiskLevel, EscalationLevel] = {
    RiskLevel.LOW: EscalationLevel.MONITORING,
    RiskLevel.MEDIUM: EscalationLevel.ENGAGEMENT,
    RiskLevel.HIGH: EscalationLevel.RESTRUCTURING,
    RiskLevel.CRITICAL: EscalationLevel.WORKOUT,
}

# Candidate injected when a relationship enters each level.
LEVEL_ACTIONS: Dict[EscalationLevel, Tuple[ActionType, Urgency, ImpactLevel]] = {
    EscalationLevel.ENGAGEMENT: (ActionType.BORROWER_CALL, Urgency.THIS_WEEK, ImpactLevel.MEDIUM),
    EscalationLevel.RESTRUCTURING: (ActionType.RISK_ESCALATION, Urgency.TODAY, ImpactLevel.HIGH),
    EscalationLevel.WORKOUT: (ActionType.RISK_ESCALATION, Urgency.IMMEDIATE, ImpactLevel.CRITICAL),
}


def determine_risk_level(
    breach_probability: float,
    thresholds: Optional[RiskThresholdConfig] = None,
) -> RiskLevel:
    thresholds = thresholds or RiskThresholdConfig()
    if breach_probability >= thresholds.high_threshold:
        return RiskLevel.CRITICAL
    if breach_probability >= thresholds.medium_threshold:
        return RiskLevel.HIGH
    if breach_probability >= thresholds.low_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def resolve_risk_level(
    prediction: BreachPrediction, thresholds: Optional[RiskThresholdConfig] = None
) -> RiskLevel:
    if prediction.risk_level is not None:
        return prediction.risk_level
    return determine_risk_level(prediction.breach_probability, thresholds)


def should_generate_alert(
    prediction: BreachPrediction,
    previous_level: Optional[RiskLevel],
    thresholds: Optional[RiskThresholdConfig] = None,
) -> AlertDecision:
    thresholds = thresholds or RiskThresholdConfig()
    current = resolve_risk_level(prediction, thresholds)

    if current == RiskLevel.CRITICAL and thresholds.alert_on_critical_risk:
        return AlertDecision(should_alert=True, alert_type=AlertType.CRITICAL_RISK)
    if current == RiskLevel.HIGH and thresholds.alert_on_high_risk:
        return AlertDecision(should_alert=True, alert_type=AlertType.HIGH_RISK)
    if (
        previous_level is not None
        and thresholds.alert_on_threshold_crossed
        and current.rank > previous_level.rank
    ):
        return AlertDecision(should_alert=True, alert_type=AlertType.THRESHOLD_CROSSED)
    return AlertDecision(should_alert=False)


def is_critical_jump(
    prediction: BreachPrediction, risk: RiskLevel, policy: EscalationPolicy
) -> bool:
    if risk != RiskLevel.CRITICAL:
        return False
    if policy.critical_jump_on_cascade and prediction.cascade_risk:
        return True
    return (
        prediction.days_until_breach is not None
        and prediction.days_until_breach <= policy.critical_jump_horizon_days
    )


def build_escalation_candidate(
    prediction: BreachPrediction, level: EscalationLevel
) -> ActionCandidate:
    """Deterministic candidate for entering ``level`` on this prediction."""
    action_type, urgency, impact = LEVEL_ACTIONS[level]
    digest = hashlib.sha256(f"{prediction.id}|{level.value}".encode()).hexdigest()
    return ActionCandidate(
        id=f"esc_{digest[:16]}",
        type=action_type,
        urgency=urgency,
        borrower_id=prediction.borrower_id,
        facility_id=prediction.facility_id,
        title=f"Relationship moved to {level.value}",
        rationale=(
            f"Breach probability {prediction.breach_probability:g}% on "
            f"{prediction.covenant_id or 'facility covenants'}"
        ),
        impact_level=impact,
        signal_severity=prediction.impact_severity,
        facility_exposure=prediction.facility_exposure,
        deadline_days=prediction.days_until_breach,
        source="escalation_monitor",
        submitted_at=prediction.observed_at,
    )


class EscalationMonitor:
    """Per-relationship escalation state machine."""

    def __init__(
        self,
        thresholds: Optional[RiskThresholdConfig] = None,
        policy: Optional[EscalationPolicy] = None,
    ):
        self.thresholds = thresholds or RiskThresholdConfig()
        self.policy = policy or EscalationPolicy()
        self._states: Dict[Tuple[str, str], EscalationState] = {}
        self._lock = threading.Lock()

    def get_state(self, borrower_id: str, facility_id: str) -> EscalationState:
        with self._lock:
            state = self._states.get((borrower_id, facility_id))
        return state or EscalationState(borrower_id=borrower_id, facility_id=facility_id)

    def list_states(self) -> List[EscalationState]:
        with self._lock:
            return [self._states[k] for k in sorted(self._states)]

    def observe(self, prediction: BreachPrediction) -> ObservationResult:
        key = (prediction.borrower_id, prediction.facility_id)
        risk = resolve_risk_level(prediction, self.thresholds)

        with self._lock:
            state = self._states.get(key) or EscalationState(
                borrower_id=prediction.borrower_id, facility_id=prediction.facility_id
            )
            alert = should_generate_alert(prediction, state.last_risk_level, self.thresholds)
            previous = state.level

            transition = None
            if alert.should_alert:
                target = RISK_TO_LEVEL[risk]
                if target.rank > previous.rank:
                    if is_critical_jump(prediction, risk, self.policy):
                        new_level, trigger = EscalationLevel.WORKOUT, "critical_jump"
                    else:
                        new_level = EscalationLevel.from_rank(previous.rank + 1)
                        trigger = "risk_increase"
                    transition = EscalationTransition(
                        from_level=previous,
                        to_level=new_level,
                        trigger=trigger,
                        prediction_id=prediction.id,
                        at=prediction.observed_at,
                    )

            update = {"last_risk_level": risk, "updated_at": prediction.observed_at}
            if transition is not None:
                update["level"] = transition.to_level
                update["history"] = state.history + [transition]
            state = state.model_copy(update=update)
            self._states[key] = state

        injected = []
        if transition is not None:
            injected.append(build_escalation_candidate(prediction, transition.to_level))
            logger.info(
                "escalation_level_changed",
                extra={
                    "borrower_id": prediction.borrower_id,
                    "facility_id": prediction.facility_id,
                    "from_level": transition.from_level.value,
                    "to_level": transition.to_level.value,
                    "trigger": transition.trigger,
                },
            )

        return ObservationResult(
            prediction_id=prediction.id,
            risk_level=risk,
            alert=alert,
            previous_level=previous,
            current_level=state.level,
            transition=transition,
            injected_candidates=injected,
        )

    def resolve(
        self,
        borrower_id: str,
        facility_id: str,
        reason: str = "resolution",
        at: Optional[datetime] = None,
    ) -> EscalationState:
        """Explicit resolution signal: the only way back to monitoring."""
        at = at or datetime.utcnow()
        key = (borrower_id, facility_id)
        with self._lock:
            state = self._states.get(key) or EscalationState(
                borrower_id=borrower_id, facility_id=facility_id
            )
            if state.level == EscalationLevel.MONITORING:
                return state
            transition = EscalationTransition(
                from_level=state.level,
                to_level=EscalationLevel.MONITORING,
                trigger=reason,
                at=at,
            )
            state = state.model_copy(update={
                "level": EscalationLevel.MONITORING,
                "last_risk_level": None,
                "updated_at": at,
                "history": state.history + [transition],
            })
            self._states[key] = state
        logger.info(
            "escalation_resolved",
            extra={"borrower_id": borrower_id, "facility_id": facility_id},
        )
        return state
