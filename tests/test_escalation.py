"""Tests for breach risk levels, alert rules and the escalation state machine."""

from datetime import datetime, timedelta

from autopilot_kernel.escalation.monitor import (
    EscalationMonitor,
    build_escalation_candidate,
    determine_risk_level,
    should_generate_alert,
)
from autopilot_kernel.models.candidate import ActionType, ImpactLevel, Urgency
from autopilot_kernel.models.escalation import (
    AlertType,
    BreachPrediction,
    EscalationLevel,
    EscalationPolicy,
    RiskLevel,
    RiskThresholdConfig,
)

T0 = datetime(2026, 3, 4, 10, 0, 0)


def _prediction(probability: float, n: int = 0, **overrides) -> BreachPrediction:
    fields = {
        "id": f"pred_{n}",
        "borrower_id": "bor_1",
        "facility_id": "fac_1",
        "breach_probability": probability,
        "observed_at": T0 + timedelta(hours=n),
    }
    fields.update(overrides)
    return BreachPrediction(**fields)


class TestDetermineRiskLevel:
    def test_boundaries(self):
        assert determine_risk_level(0) == RiskLevel.LOW
        assert determine_risk_level(24.9) == RiskLevel.LOW
        assert determine_risk_level(25) == RiskLevel.MEDIUM
        assert determine_risk_level(50) == RiskLevel.HIGH
        assert determine_risk_level(75) == RiskLevel.CRITICAL
        assert determine_risk_level(100) == RiskLevel.CRITICAL

    def test_custom_thresholds(self):
        thresholds = RiskThresholdConfig(low_threshold=10, medium_threshold=20, high_threshold=30)
        assert determine_risk_level(15, thresholds) == RiskLevel.MEDIUM
        assert determine_risk_level(35, thresholds) == RiskLevel.CRITICAL


class TestShouldGenerateAlert:
    def test_critical_first(self):
        decision = should_generate_alert(_prediction(90), RiskLevel.LOW)
        assert decision.alert_type == AlertType.CRITICAL_RISK

    def test_high(self):
        decision = should_generate_alert(_prediction(60), RiskLevel.HIGH)
        assert decision.should_alert is True
        assert decision.alert_type == AlertType.HIGH_RISK

    def test_threshold_crossed(self):
        decision = should_generate_alert(_prediction(30), RiskLevel.LOW)
        assert decision.alert_type == AlertType.THRESHOLD_CROSSED

    def test_no_previous_level_is_not_a_crossing(self):
        assert should_generate_alert(_prediction(30), None).should_alert is False

    def test_same_or_lower_level_is_quiet(self):
        assert should_generate_alert(_prediction(30), RiskLevel.MEDIUM).should_alert is False
        assert should_generate_alert(_prediction(10), RiskLevel.HIGH).should_alert is False

    def test_disabled_switches_fall_through(self):
        thresholds = RiskThresholdConfig(alert_on_critical_risk=False, alert_on_high_risk=False)
        decision = should_generate_alert(_prediction(90), RiskLevel.MEDIUM, thresholds)
        assert decision.alert_type == AlertType.THRESHOLD_CROSSED
        assert should_generate_alert(_prediction(90), RiskLevel.CRITICAL, thresholds).should_alert is False

    def test_declared_risk_level_wins(self):
        decision = should_generate_alert(_prediction(5, risk_level=RiskLevel.HIGH), None)
        assert decision.alert_type == AlertType.HIGH_RISK


class TestEscalationMonitor:
    def setup_method(self):
        self.monitor = EscalationMonitor()

    def test_first_medium_observation_changes_nothing(self):
        result = self.monitor.observe(_prediction(30))
        assert result.alert.should_alert is False
        assert result.transition is None
        assert result.injected_candidates == []
        state = self.monitor.get_state("bor_1", "fac_1")
        assert state.level == EscalationLevel.MONITORING
        assert state.last_risk_level == RiskLevel.MEDIUM

    def test_crossing_into_medium_engages(self):
        self.monitor.observe(_prediction(10, 0))
        result = self.monitor.observe(_prediction(30, 1))
        assert result.current_level == EscalationLevel.ENGAGEMENT
        assert result.transition.trigger == "risk_increase"

        injected = result.injected_candidates[0]
        assert injected.type == ActionType.BORROWER_CALL
        assert injected.urgency == Urgency.THIS_WEEK
        assert injected.source == "escalation_monitor"

    def test_high_risk_steps_one_level_at_a_time(self):
        levels = [self.monitor.observe(_prediction(60, n)).current_level for n in range(3)]
        assert levels == [
            EscalationLevel.ENGAGEMENT,
            EscalationLevel.RESTRUCTURING,
            EscalationLevel.RESTRUCTURING,
        ]
        state = self.monitor.get_state("bor_1", "fac_1")
        assert len(state.history) == 2

    def test_restructuring_injects_risk_escalation_today(self):
        self.monitor.observe(_prediction(60, 0))
        result = self.monitor.observe(_prediction(60, 1))
        injected = result.injected_candidates[0]
        assert injected.type == ActionType.RISK_ESCALATION
        assert injected.urgency == Urgency.TODAY
        assert injected.impact_level == ImpactLevel.HIGH

    def test_lower_risk_never_lowers_level(self):
        self.monitor.observe(_prediction(60, 0))
        self.monitor.observe(_prediction(60, 1))
        result = self.monitor.observe(_prediction(5, 2))
        assert result.alert.should_alert is False
        assert result.current_level == EscalationLevel.RESTRUCTURING

    def test_critical_jump_on_short_horizon(self):
        result = self.monitor.observe(_prediction(90, days_until_breach=14))
        assert result.current_level == EscalationLevel.WORKOUT
        assert result.transition.trigger == "critical_jump"
        injected = result.injected_candidates[0]
        assert injected.urgency == Urgency.IMMEDIATE
        assert injected.impact_level == ImpactLevel.CRITICAL
        assert injected.deadline_days == 14

    def test_critical_jump_on_cascade(self):
        result = self.monitor.observe(_prediction(90, cascade_risk=True))
        assert result.current_level == EscalationLevel.WORKOUT

    def test_critical_without_jump_condition_steps_once(self):
        result = self.monitor.observe(_prediction(90, days_until_breach=120))
        assert result.current_level == EscalationLevel.ENGAGEMENT
        assert result.transition.trigger == "risk_increase"

    def test_cascade_jump_can_be_disabled(self):
        monitor = EscalationMonitor(policy=EscalationPolicy(critical_jump_on_cascade=False))
        result = monitor.observe(_prediction(90, cascade_risk=True))
        assert result.current_level == EscalationLevel.ENGAGEMENT

    def test_workout_is_the_ceiling(self):
        self.monitor.observe(_prediction(90, 0, days_until_breach=5))
        result = self.monitor.observe(_prediction(95, 1, days_until_breach=3))
        assert result.alert.should_alert is True
        assert result.transition is None
        assert result.injected_candidates == []

    def test_relationships_are_independent(self):
        self.monitor.observe(_prediction(90, days_until_breach=5))
        other = self.monitor.get_state("bor_1", "fac_2")
        assert other.level == EscalationLevel.MONITORING
        assert len(self.monitor.list_states()) == 1

    def test_resolve_returns_to_monitoring(self):
        self.monitor.observe(_prediction(60, 0))
        state = self.monitor.resolve("bor_1", "fac_1", "covenant cured", at=T0 + timedelta(days=1))
        assert state.level == EscalationLevel.MONITORING
        assert state.last_risk_level is None
        assert state.history[-1].trigger == "covenant cured"
        assert state.history[-1].to_level == EscalationLevel.MONITORING

    def test_resolve_when_already_monitoring(self):
        state = self.monitor.resolve("bor_9", "fac_9")
        assert state.level == EscalationLevel.MONITORING
        assert state.history == []


class TestEscalationCandidate:
    def test_id_is_deterministic(self):
        prediction = _prediction(60)
        first = build_escalation_candidate(prediction, EscalationLevel.ENGAGEMENT)
        second = build_escalation_candidate(prediction, EscalationLevel.ENGAGEMENT)
        assert first == second
        assert first.id.startswith("esc_")

    def test_id_differs_per_level(self):
        prediction = _prediction(60)
        engaged = build_escalation_candidate(prediction, EscalationLevel.ENGAGEMENT)
        workout = build_escalation_candidate(prediction, EscalationLevel.WORKOUT)
        assert engaged.id != workout.id

    def test_carries_relationship(self):
        candidate = build_escalation_candidate(
            _prediction(60, facility_exposure=25_000_000), EscalationLevel.RESTRUCTURING
        )
        assert candidate.borrower_id == "bor_1"
        assert candidate.facility_id == "fac_1"
        assert candidate.facility_exposure == 25_000_000
        assert candidate.submitted_at == T0
