"""Tests for the data models."""

from datetime import datetime, timedelta

import pytest

from autopilot_kernel.models.candidate import ActionCandidate, ActionType, ImpactLevel, Urgency
from autopilot_kernel.models.confidence import ConfidenceFactor, FactorSource, RuleBasedFactors
from autopilot_kernel.models.decision import ApprovalDecision, Recommendation
from autopilot_kernel.models.escalation import EscalationLevel, RiskThresholdConfig
from autopilot_kernel.models.impact import ImpactPolicy
from autopilot_kernel.models.queue import QueueStatus, is_transition_allowed
from autopilot_kernel.models.thresholds import BlackoutPeriod, ThresholdConfig, TimeRestrictions


class TestActionCandidate:
    def test_minimal_candidate(self):
        c = ActionCandidate(
            type=ActionType.BORROWER_CALL,
            urgency=Urgency.THIS_WEEK,
            borrower_id="bor_1",
            facility_id="fac_1",
        )
        assert c.id.startswith("cand_")
        assert c.source == "generator"
        assert c.confidence_factors == []

    def test_candidate_is_immutable(self):
        c = ActionCandidate(
            type=ActionType.BORROWER_CALL,
            urgency=Urgency.THIS_WEEK,
            borrower_id="bor_1",
            facility_id="fac_1",
        )
        with pytest.raises(Exception):
            c.urgency = Urgency.IMMEDIATE

    def test_missing_type_rejected(self):
        with pytest.raises(Exception):
            ActionCandidate.model_validate({
                "urgency": "today", "borrower_id": "b", "facility_id": "f",
            })

    def test_unknown_urgency_rejected(self):
        with pytest.raises(Exception):
            ActionCandidate.model_validate({
                "type": "borrower_call", "urgency": "whenever",
                "borrower_id": "b", "facility_id": "f",
            })

    def test_urgency_and_impact_are_ordinal(self):
        assert Urgency.ROUTINE.rank < Urgency.THIS_MONTH.rank < Urgency.THIS_WEEK.rank
        assert Urgency.THIS_WEEK.rank < Urgency.TODAY.rank < Urgency.IMMEDIATE.rank
        assert ImpactLevel.LOW.rank < ImpactLevel.CRITICAL.rank


class TestConfidenceModels:
    def test_factor_score_bounds(self):
        with pytest.raises(Exception):
            ConfidenceFactor(name="x", score=101, weight=1, source=FactorSource.RULE)
        with pytest.raises(Exception):
            ConfidenceFactor(name="x", score=50, weight=-1, source=FactorSource.RULE)

    def test_rule_flags_keep_extras_in_name_order(self):
        rules = RuleBasedFactors(no_conflicts=True, zeta_check=False, alpha_check=True)
        assert list(rules.flags()) == ["no_conflicts", "alpha_check", "zeta_check"]

    def test_unset_rules_are_skipped(self):
        assert RuleBasedFactors().flags() == {}


class TestThresholdConfig:
    def test_documented_defaults(self):
        config = ThresholdConfig()
        assert config.global_threshold == 85
        assert config.type_thresholds[ActionType.AMENDMENT_DRAFT] == 95
        assert config.type_thresholds[ActionType.DOCUMENT_REQUEST] == 70
        assert config.impact_thresholds[ImpactLevel.CRITICAL] == 95
        assert ActionType.WAIVER_REQUEST in config.risk_factors.always_require_approval
        assert config.time_restrictions.max_actions_per_hour == 10
        assert config.time_restrictions.max_actions_per_day == 50

    def test_global_threshold_range(self):
        with pytest.raises(Exception):
            ThresholdConfig(global_threshold=101)

    def test_type_threshold_range(self):
        with pytest.raises(Exception):
            ThresholdConfig(type_thresholds={ActionType.BORROWER_CALL: 150})

    def test_business_hours_schedule_must_be_cron(self):
        with pytest.raises(Exception):
            TimeRestrictions(business_hours_schedule="every weekday")
        assert TimeRestrictions(business_hours_schedule="* 8-18 * * 1-5").business_hours_only

    def test_blackout_must_end_after_start(self):
        start = datetime(2026, 1, 1)
        with pytest.raises(Exception):
            BlackoutPeriod(start=start, end=start - timedelta(hours=1))


class TestApprovalDecision:
    def test_eligible_decision_cannot_carry_blockers(self):
        with pytest.raises(Exception):
            ApprovalDecision(
                candidate_id="c", is_eligible=True, confidence_score=90,
                blockers=["something"], recommendation=Recommendation.AUTO_APPROVE,
                reasoning="",
            )

    def test_ineligible_decision_cannot_auto_approve(self):
        with pytest.raises(Exception):
            ApprovalDecision(
                candidate_id="c", is_eligible=False, confidence_score=90,
                blockers=["below"], recommendation=Recommendation.AUTO_APPROVE,
                reasoning="",
            )


class TestLifecycle:
    def test_pending_review_cannot_execute_directly(self):
        assert not is_transition_allowed(QueueStatus.PENDING_REVIEW, QueueStatus.EXECUTED)

    def test_terminal_statuses(self):
        for status in (QueueStatus.REJECTED, QueueStatus.EXECUTED, QueueStatus.EXPIRED):
            for target in QueueStatus:
                assert not is_transition_allowed(status, target)

    def test_approved_paths(self):
        assert is_transition_allowed(QueueStatus.APPROVED, QueueStatus.EXECUTED)
        assert is_transition_allowed(QueueStatus.AUTO_APPROVED, QueueStatus.EXPIRED)


class TestPolicyModels:
    def test_impact_table_keys_need_three_parts(self):
        with pytest.raises(Exception):
            ImpactPolicy(table={"borrower_call|high": ImpactLevel.HIGH})

    def test_risk_thresholds_must_be_ordered(self):
        with pytest.raises(Exception):
            RiskThresholdConfig(low_threshold=60, medium_threshold=50, high_threshold=75)

    def test_escalation_levels_round_trip_rank(self):
        for level in EscalationLevel:
            assert EscalationLevel.from_rank(level.rank) == level
