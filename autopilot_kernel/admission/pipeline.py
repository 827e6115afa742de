"""
Admission Pipeline — the single serialized path from candidate to queue.

  candidate → score → gate → rate limit → queue item → schedule → store → audit

Also the heartbeat that retries deferred admissions and dispatches items
whose execution window has opened.

Behavioral Contract:
- Malformed candidates are rejected before scoring; never defaulted into shape
- A missing threshold config still admits, but only as pending_review
- Rate-limited candidates are deferred with a reason and retried; never dropped
- Business hours delay execution only, never admission
- Only approved or auto_approved items are dispatched, each at most once
- Every decision, transition, deferral and escalation change is audited
"""

import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from autopilot_kernel.admission.limits import AdmissionRateLimiter
from autopilot_kernel.admission.window import ExecutionWindow
from autopilot_kernel.audit.ledger import AuditLedger
from autopilot_kernel.confidence.evaluator import (
    ConfidenceEvaluator,
    coerce_historical_data,
    coerce_rule_factors,
)
from autopilot_kernel.confidence.history import HistoricalPerformanceStore
from autopilot_kernel.core.config import Settings
from autopilot_kernel.core.exceptions import (
    ErrorKind,
    ExecutionWindowClosedError,
    InvalidTransitionError,
    QueueItemNotFoundError,
    ResourceExhaustedError,
    TransitionConflictError,
    ValidationError,
)
from autopilot_kernel.escalation.monitor import EscalationMonitor
from autopilot_kernel.execution.dispatcher import ExecutionDispatcher
from autopilot_kernel.governance.gate import ApprovalGate
from autopilot_kernel.models.admission import (
    AdmissionOutcome,
    AdmissionStatus,
    DeferredAdmission,
    PredictionOutcome,
)
from autopilot_kernel.models.audit import AuditKind
from autopilot_kernel.models.candidate import ActionCandidate
from autopilot_kernel.models.confidence import HistoricalData, RuleBasedFactors
from autopilot_kernel.models.escalation import BreachPrediction
from autopilot_kernel.models.queue import (
    EXECUTABLE_STATUSES,
    ExecutionResult,
    QueueItem,
    QueueStatus,
)
from autopilot_kernel.models.thresholds import ThresholdConfig, TimeRestrictions
from autopilot_kernel.queue.factory import QueueItemFactory, queue_item_id
from autopilot_kernel.queue.store import QueueStore

logger = logging.getLogger(__name__)


class AdmissionPipeline:
    def __init__(
        self,
        gate: ApprovalGate,
        store: Optional[QueueStore] = None,
        ledger: Optional[AuditLedger] = None,
        evaluator: Optional[ConfidenceEvaluator] = None,
        factory: Optional[QueueItemFactory] = None,
        history: Optional[HistoricalPerformanceStore] = None,
        dispatcher: Optional[ExecutionDispatcher] = None,
        monitor: Optional[EscalationMonitor] = None,
        settings: Optional[Settings] = None,
    ):
        self.gate = gate
        self.store = store or QueueStore()
        self.ledger = ledger or AuditLedger()
        self.evaluator = evaluator or ConfidenceEvaluator()
        self.factory = factory or QueueItemFactory()
        self.history = history
        self.dispatcher = dispatcher or ExecutionDispatcher()
        self.monitor = monitor or EscalationMonitor()
        self.settings = settings or Settings()

        restrictions = self._time_restrictions(gate.config)
        self.rate_limiter = AdmissionRateLimiter(
            restrictions.max_actions_per_hour, restrictions.max_actions_per_day
        )
        self.window = ExecutionWindow(restrictions)

        self._deferred: Dict[str, DeferredAdmission] = {}
        self._deferred_lock = threading.Lock()
        self._running = False

    @staticmethod
    def _time_restrictions(config: Optional[ThresholdConfig]) -> TimeRestrictions:
        return config.time_restrictions if config is not None else TimeRestrictions()

    @property
    def status(self) -> str:
        return "running" if self._running else "stopped"

    @property
    def execution_delay(self) -> timedelta:
        return timedelta(seconds=self.settings.execution_delay_seconds)

    # --- Configuration ---

    def replace_config(self, config: ThresholdConfig, actor: str = "operator") -> None:
        """Swap the whole threshold snapshot; limits and windows follow it."""
        previous = self.gate.config
        restrictions = config.time_restrictions
        # Raises before anything is swapped.
        window = ExecutionWindow(restrictions)
        self.gate.replace_config(config)
        self.rate_limiter.update_limits(
            restrictions.max_actions_per_hour, restrictions.max_actions_per_day
        )
        self.window = window
        self.ledger.record(AuditKind.CONFIG_CHANGE, f"thresholds:{config.version}", {
            "actor": actor,
            "previous_version": previous.version if previous else None,
            "config": config.model_dump(mode="json"),
        })
        logger.info(
            "threshold_config_replaced",
            extra={"version": config.version, "actor": actor},
        )

    # --- Admission ---

    def submit(
        self,
        candidate: Union[ActionCandidate, dict],
        historical_data: Optional[Union[HistoricalData, dict]] = None,
        rule_based_factors: Optional[Union[RuleBasedFactors, Dict[str, bool]]] = None,
        now: Optional[datetime] = None,
    ) -> AdmissionOutcome:
        now = now or datetime.utcnow()
        try:
            candidate = self._coerce_candidate(candidate)
            if historical_data is None and self.history is not None:
                historical_data = self.history.get_stats(candidate.type)
            if historical_data is not None:
                historical_data = coerce_historical_data(historical_data)
            if rule_based_factors is not None:
                rule_based_factors = coerce_rule_factors(rule_based_factors)
            confidence = self.evaluator.evaluate(candidate, historical_data, rule_based_factors)
        except ValidationError as e:
            logger.warning("candidate_rejected", extra={"error": str(e)})
            return AdmissionOutcome(
                candidate_id=candidate.id if isinstance(candidate, ActionCandidate) else None,
                status=AdmissionStatus.REJECTED,
                error_kind=ErrorKind.VALIDATION_FAILED,
                error_detail=str(e),
            )
        return self._admit(candidate, confidence, historical_data, rule_based_factors, now)

    def submit_batch(
        self, candidates: Iterable[Union[ActionCandidate, dict]], now: Optional[datetime] = None
    ) -> List[AdmissionOutcome]:
        now = now or datetime.utcnow()
        return [self.submit(c, now=now) for c in candidates]

    def _coerce_candidate(self, candidate: Union[ActionCandidate, dict]) -> ActionCandidate:
        if isinstance(candidate, ActionCandidate):
            return candidate
        try:
            return ActionCandidate.model_validate(candidate)
        except PydanticValidationError as e:
            raise ValidationError("Malformed action candidate", errors=e.errors()) from e

    def _admit(
        self,
        candidate: ActionCandidate,
        confidence,
        historical_data: Optional[HistoricalData],
        rule_based_factors: Optional[RuleBasedFactors],
        now: datetime,
        attempts: int = 1,
    ) -> AdmissionOutcome:
        decision = self.gate.evaluate(candidate, confidence)
        config_missing = self.gate.config is None

        # Same candidate under the same config is the same queue item.
        existing_id = queue_item_id(candidate.id, decision.config_version)
        try:
            existing = self.store.get(existing_id)
        except QueueItemNotFoundError:
            existing = None
        if existing is not None:
            return AdmissionOutcome(
                candidate_id=candidate.id,
                status=AdmissionStatus.ADMITTED,
                decision=decision,
                item=existing,
            )

        self.ledger.record(AuditKind.DECISION, candidate.id, decision, recorded_at=now)

        try:
            self.rate_limiter.acquire(now)
        except ResourceExhaustedError as e:
            return self._defer(candidate, decision, historical_data, rule_based_factors, e, now, attempts)

        item = self.factory.create(candidate, decision)
        if item.status == QueueStatus.AUTO_APPROVED:
            item = item.model_copy(update={
                "not_before": self.window.next_permissible(now + self.execution_delay),
            })
        item = self.store.add(item)
        self.ledger.record(AuditKind.TRANSITION, item.id, {
            "candidate_id": candidate.id,
            "transition": item.history[-1].model_dump(mode="json"),
            "not_before": item.not_before.isoformat() if item.not_before else None,
        }, recorded_at=now)

        logger.info(
            "candidate_admitted",
            extra={
                "candidate_id": candidate.id,
                "item_id": item.id,
                "status": item.status.value,
                "recommendation": decision.recommendation.value,
                "confidence_score": decision.confidence_score,
            },
        )
        return AdmissionOutcome(
            candidate_id=candidate.id,
            status=AdmissionStatus.ADMITTED,
            decision=decision,
            item=item,
            error_kind=ErrorKind.CONFIG_INCOMPLETE if config_missing else None,
            error_detail="threshold configuration unavailable" if config_missing else None,
        )

    def _defer(
        self,
        candidate: ActionCandidate,
        decision,
        historical_data: Optional[HistoricalData],
        rule_based_factors: Optional[RuleBasedFactors],
        error: ResourceExhaustedError,
        now: datetime,
        attempts: int,
    ) -> AdmissionOutcome:
        retry_after = self.rate_limiter.next_available(now)
        deferred = DeferredAdmission(
            candidate=candidate,
            historical_data=historical_data,
            rule_based_factors=rule_based_factors,
            reason=str(error),
            deferred_at=now,
            retry_after=retry_after,
            attempts=attempts,
        )
        with self._deferred_lock:
            self._deferred[candidate.id] = deferred
        self.ledger.record(AuditKind.DEFERRAL, candidate.id, {
            "reason": deferred.reason,
            "window": error.window,
            "limit": error.limit,
            "retry_after": retry_after.isoformat(),
            "attempts": attempts,
        }, recorded_at=now)
        logger.warning(
            "candidate_deferred",
            extra={"candidate_id": candidate.id, "window": error.window, "attempts": attempts},
        )
        return AdmissionOutcome(
            candidate_id=candidate.id,
            status=AdmissionStatus.DEFERRED,
            decision=decision,
            error_kind=ErrorKind.RESOURCE_EXHAUSTED,
            error_detail=deferred.reason,
            retry_after=retry_after,
        )

    def list_deferred(self) -> List[DeferredAdmission]:
        with self._deferred_lock:
            return sorted(self._deferred.values(), key=lambda d: (d.deferred_at, d.candidate.id))

    def retry_deferred(self, now: Optional[datetime] = None) -> List[AdmissionOutcome]:
        """Re-offer every deferred candidate whose retry time has come, oldest first."""
        now = now or datetime.utcnow()
        outcomes = []
        for deferred in self.list_deferred():
            if deferred.retry_after > now:
                continue
            with self._deferred_lock:
                if self._deferred.pop(deferred.candidate.id, None) is None:
                    continue
            confidence = self.evaluator.evaluate(
                deferred.candidate, deferred.historical_data, deferred.rule_based_factors
            )
            outcomes.append(self._admit(
                deferred.candidate,
                confidence,
                deferred.historical_data,
                deferred.rule_based_factors,
                now,
                attempts=deferred.attempts + 1,
            ))
        return outcomes

    # --- Human review ---

    def _audit_transition(self, item: QueueItem, now: Optional[datetime]) -> None:
        self.ledger.record(AuditKind.TRANSITION, item.id, {
            "candidate_id": item.candidate_id,
            "transition": item.history[-1].model_dump(mode="json"),
            "version": item.version,
        }, recorded_at=now)

    def approve(
        self,
        item_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        now = now or datetime.utcnow()
        item = self.store.approve(item_id, actor, reason, expected_version, now=now)
        self._audit_transition(item, now)
        return item

    def reject(
        self,
        item_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        now = now or datetime.utcnow()
        item = self.store.reject(item_id, actor, reason, expected_version, now=now)
        self._audit_transition(item, now)
        return item

    def cancel(
        self,
        item_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        now = now or datetime.utcnow()
        item = self.store.cancel(item_id, actor, reason, expected_version, now=now)
        self._audit_transition(item, now)
        return item

    def batch_approve(
        self, item_ids: Iterable[str], actor: str, reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        now = now or datetime.utcnow()
        result = self.store.batch_approve(item_ids, actor, reason)
        for item_id in result["approved"]:
            self._audit_transition(self.store.get(item_id), now)
        return result

    # --- Dispatch ---

    def _execute(self, item: QueueItem, now: datetime) -> ExecutionResult:
        claimed = self.store.claim_for_execution(item.id, expected_version=item.version)
        result = self.dispatcher.dispatch(claimed, now=now)
        updated = self.store.record_execution(claimed.id, result)
        self.ledger.record(AuditKind.TRANSITION, updated.id, {
            "candidate_id": updated.candidate_id,
            "transition": updated.history[-1].model_dump(mode="json"),
            "execution_result": result.model_dump(mode="json"),
        }, recorded_at=now)
        if self.history is not None:
            # Executors may report a measured effectiveness; otherwise success counts as full.
            effectiveness = result.data.get(
                "effectiveness_score", 100.0 if result.success else 0.0
            )
            self.history.record_outcome(updated.candidate.type, result.success, effectiveness)
        return result

    def execute_now(self, item_id: str, now: Optional[datetime] = None) -> ExecutionResult:
        """Dispatch one approved item immediately, skipping its scheduled delay."""
        now = now or datetime.utcnow()
        item = self.store.get(item_id)
        if not self.window.is_permissible(now):
            raise ExecutionWindowClosedError(
                item_id, self.window.next_permissible(now).isoformat()
            )
        return self._execute(item, now)

    def dispatch_ready(self, now: Optional[datetime] = None) -> List[ExecutionResult]:
        """Dispatch every approved item whose window has opened. Lost claims are skipped."""
        now = now or datetime.utcnow()
        if not self.window.is_permissible(now):
            return []

        results = []
        for item in self.store.list():
            if item.status not in EXECUTABLE_STATUSES:
                continue
            if item.not_before is not None and item.not_before > now:
                continue
            try:
                results.append(self._execute(item, now))
            except TransitionConflictError:
                logger.debug("dispatch_claim_lost", extra={"item_id": item.id})
            except InvalidTransitionError as e:
                # Cancelled or otherwise closed since the sweep listed it.
                logger.info(
                    "dispatch_item_skipped",
                    extra={"item_id": item.id, "error": str(e)},
                )
        return results

    # --- Escalation ---

    def observe_prediction(
        self, prediction: BreachPrediction, now: Optional[datetime] = None
    ) -> PredictionOutcome:
        """Run the escalation monitor and admit whatever it injects."""
        now = now or datetime.utcnow()
        observation = self.monitor.observe(prediction)
        subject = f"{prediction.borrower_id}:{prediction.facility_id}"

        if observation.alert.should_alert:
            self.ledger.record(AuditKind.ALERT, subject, {
                "prediction_id": prediction.id,
                "alert_type": observation.alert.alert_type.value,
                "risk_level": observation.risk_level.value,
            }, recorded_at=now)
        if observation.transition is not None:
            self.ledger.record(
                AuditKind.ESCALATION, subject, observation.transition, recorded_at=now
            )

        admissions = [self.submit(c, now=now) for c in observation.injected_candidates]
        return PredictionOutcome(observation=observation, admissions=admissions)

    def resolve_escalation(
        self,
        borrower_id: str,
        facility_id: str,
        reason: str = "resolution",
        now: Optional[datetime] = None,
    ):
        now = now or datetime.utcnow()
        before = self.monitor.get_state(borrower_id, facility_id)
        state = self.monitor.resolve(borrower_id, facility_id, reason=reason, at=now)
        if state.level != before.level:
            self.ledger.record(
                AuditKind.ESCALATION, f"{borrower_id}:{facility_id}",
                state.history[-1], recorded_at=now,
            )
        return state

    # --- Heartbeat ---

    def tick(self, now: Optional[datetime] = None) -> dict:
        """One heartbeat: retry deferred admissions, then dispatch ready items."""
        now = now or datetime.utcnow()
        retried = self.retry_deferred(now)
        executed = self.dispatch_ready(now)
        return {"retried": len(retried), "executed": len(executed)}

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run the admission heartbeat asynchronously."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                self.tick()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.settings.heartbeat_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False
