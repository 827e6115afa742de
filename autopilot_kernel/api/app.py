"""
Autopilot Kernel API — FastAPI endpoints.

Exposes the governance engine via a REST API for:
- Threshold configuration
- Dry-run governance evaluation
- Candidate admission and proposal generation
- Action queue review, execution and prioritization
- Escalation monitoring
- Audit queries
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from autopilot_kernel.admission.pipeline import AdmissionPipeline
from autopilot_kernel.audit.ledger import AuditLedger
from autopilot_kernel.confidence.evaluator import ConfidenceEvaluator
from autopilot_kernel.confidence.history import HistoricalPerformanceStore
from autopilot_kernel.core.config import Settings
from autopilot_kernel.core.exceptions import (
    AutopilotError,
    ConfigurationError,
    ExecutionWindowClosedError,
    GeneratorMalformed,
    GeneratorUnavailable,
    InvalidTransitionError,
    QueueItemNotFoundError,
    TransitionConflictError,
)
from autopilot_kernel.core.log import configure_logging
from autopilot_kernel.generator.adapter import GenerationContext, ProposalGeneratorAdapter
from autopilot_kernel.governance.gate import ApprovalGate
from autopilot_kernel.governance.thresholds import load_threshold_config
from autopilot_kernel.models.admission import AdmissionStatus
from autopilot_kernel.models.audit import AuditKind
from autopilot_kernel.models.candidate import ActionCandidate
from autopilot_kernel.models.escalation import BreachPrediction
from autopilot_kernel.models.prioritization import ResourceConstraints
from autopilot_kernel.models.queue import QueueStatus
from autopilot_kernel.models.thresholds import ThresholdConfig
from autopilot_kernel.queue.prioritizer import prioritize

logger = logging.getLogger(__name__)


# --- Request/Response Models ---

class CandidateRequest(BaseModel):
    candidate: dict
    historical_data: Optional[dict] = None
    rule_based_factors: Optional[Dict[str, bool]] = None


class ReviewRequest(BaseModel):
    actor: str = "api_user"
    reason: Optional[str] = None
    expected_version: Optional[int] = None


class BatchApproveRequest(BaseModel):
    item_ids: List[str]
    actor: str = "api_user"
    reason: Optional[str] = None


class PrioritizeRequest(BaseModel):
    constraints: ResourceConstraints
    statuses: List[QueueStatus] = [
        QueueStatus.PENDING_REVIEW,
        QueueStatus.APPROVED,
        QueueStatus.AUTO_APPROVED,
    ]


class ResolveRequest(BaseModel):
    reason: str = "resolution"


def _http_error(exc: AutopilotError) -> HTTPException:
    if isinstance(exc, QueueItemNotFoundError):
        return HTTPException(404, str(exc))
    if isinstance(exc, (InvalidTransitionError, TransitionConflictError, ExecutionWindowClosedError)):
        return HTTPException(409, str(exc))
    if isinstance(exc, (GeneratorUnavailable, GeneratorMalformed)):
        return HTTPException(503, str(exc))
    return HTTPException(422, str(exc))


def _initial_config(settings: Settings) -> Optional[ThresholdConfig]:
    if not settings.threshold_config_path:
        return ThresholdConfig()
    try:
        return load_threshold_config(Path(settings.threshold_config_path))
    except ConfigurationError as e:
        # Run fail-closed: every candidate goes to human review.
        logger.error("threshold_config_unavailable", extra={"error": str(e)})
        return None


# --- Application Factory ---

def create_app(
    settings: Optional[Settings] = None,
    threshold_config: Optional[ThresholdConfig] = None,
    pipeline: Optional[AdmissionPipeline] = None,
    history: Optional[HistoricalPerformanceStore] = None,
    ledger: Optional[AuditLedger] = None,
    generator: Optional[ProposalGeneratorAdapter] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or Settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Portfolio Autopilot Kernel API",
        description="Confidence-weighted governance for autonomous portfolio actions",
        version="0.1.0",
    )

    if pipeline is None:
        config = threshold_config if threshold_config is not None else _initial_config(settings)
        pipeline = AdmissionPipeline(
            gate=ApprovalGate(config),
            ledger=ledger or AuditLedger(settings.audit_db_path),
            history=history,
            settings=settings,
        )

    # Store components on app state for access in endpoints
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.generator = generator

    store = pipeline.store
    audit = pipeline.ledger

    # === HEALTH ===

    @app.get("/health")
    def health():
        config = pipeline.gate.config
        return {
            "status": "ok",
            "environment": settings.environment,
            "config_version": config.version if config else None,
            "fail_closed": config is None,
            "heartbeat": pipeline.status,
        }

    # === THRESHOLDS ===

    @app.get("/thresholds")
    def get_thresholds():
        """Current threshold configuration snapshot."""
        config = pipeline.gate.config
        if config is None:
            raise HTTPException(503, "Threshold configuration unavailable")
        return config.model_dump(mode="json")

    @app.put("/thresholds")
    def update_thresholds(config: dict, actor: str = "api_user"):
        """Replace the whole threshold configuration."""
        try:
            validated = load_threshold_config(config)
        except ConfigurationError as e:
            raise _http_error(e) from e
        pipeline.replace_config(validated, actor=actor)
        return validated.model_dump(mode="json")

    # === GOVERNANCE ===

    @app.post("/governance/evaluate")
    def evaluate_candidate(req: CandidateRequest):
        """Dry run: score and gate a candidate without admitting it."""
        try:
            candidate = ActionCandidate.model_validate(req.candidate)
        except PydanticValidationError as e:
            raise HTTPException(422, str(e)) from e
        evaluator: ConfidenceEvaluator = pipeline.evaluator
        try:
            historical = req.historical_data
            if historical is None and pipeline.history is not None:
                historical = pipeline.history.get_stats(candidate.type)
            confidence = evaluator.evaluate(candidate, historical, req.rule_based_factors)
        except AutopilotError as e:
            raise _http_error(e) from e
        return pipeline.gate.evaluate(candidate, confidence).model_dump(mode="json")

    # === ADMISSION ===

    @app.post("/candidates")
    def submit_candidate(req: CandidateRequest):
        """Admit a candidate into the action queue."""
        outcome = pipeline.submit(req.candidate, req.historical_data, req.rule_based_factors)
        if outcome.status == AdmissionStatus.REJECTED:
            raise HTTPException(422, outcome.error_detail)
        return outcome.model_dump(mode="json")

    @app.post("/generator/proposals")
    def generate_proposals(context: GenerationContext):
        """Ask the model for proposals and admit each one through the gate."""
        if generator is None:
            raise HTTPException(503, "Proposal generator not configured")
        try:
            candidates = generator.generate_or_raise(context)
        except AutopilotError as e:
            raise _http_error(e) from e
        return [o.model_dump(mode="json") for o in pipeline.submit_batch(candidates)]

    # === ACTION QUEUE ===

    @app.get("/queue")
    def list_queue(status: Optional[QueueStatus] = None):
        return [i.model_dump(mode="json") for i in store.list(status)]

    @app.get("/queue/metrics")
    def queue_metrics():
        metrics = store.metrics()
        metrics["deferred"] = len(pipeline.list_deferred())
        metrics["rate_limit"] = pipeline.rate_limiter.usage()
        return metrics

    @app.get("/queue/deferred")
    def list_deferred():
        return [d.model_dump(mode="json") for d in pipeline.list_deferred()]

    @app.post("/queue/batch-approve")
    def batch_approve(req: BatchApproveRequest):
        return pipeline.batch_approve(req.item_ids, req.actor, req.reason)

    @app.post("/queue/prioritize")
    def prioritize_queue(req: PrioritizeRequest):
        """Rank the open queue under the given resource constraints."""
        items = [i for i in store.list() if i.status in req.statuses]
        return prioritize(items, req.constraints).model_dump(mode="json")

    @app.get("/queue/{item_id}")
    def get_queue_item(item_id: str):
        try:
            return store.get(item_id).model_dump(mode="json")
        except AutopilotError as e:
            raise _http_error(e) from e

    @app.post("/queue/{item_id}/approve")
    def approve_item(item_id: str, req: ReviewRequest):
        try:
            item = pipeline.approve(item_id, req.actor, req.reason, req.expected_version)
        except AutopilotError as e:
            raise _http_error(e) from e
        return item.model_dump(mode="json")

    @app.post("/queue/{item_id}/reject")
    def reject_item(item_id: str, req: ReviewRequest):
        try:
            item = pipeline.reject(item_id, req.actor, req.reason, req.expected_version)
        except AutopilotError as e:
            raise _http_error(e) from e
        return item.model_dump(mode="json")

    @app.post("/queue/{item_id}/cancel")
    def cancel_item(item_id: str, req: ReviewRequest):
        try:
            item = pipeline.cancel(item_id, req.actor, req.reason, req.expected_version)
        except AutopilotError as e:
            raise _http_error(e) from e
        return item.model_dump(mode="json")

    @app.post("/queue/{item_id}/execute")
    def execute_item(item_id: str):
        """Dispatch an approved item now, skipping its scheduled delay."""
        try:
            result = pipeline.execute_now(item_id)
        except AutopilotError as e:
            raise _http_error(e) from e
        return {
            "result": result.model_dump(mode="json"),
            "item": store.get(item_id).model_dump(mode="json"),
        }

    # === ESCALATION ===

    @app.post("/escalation/predictions")
    def observe_prediction(prediction: BreachPrediction):
        """Feed a breach prediction to the escalation monitor."""
        return pipeline.observe_prediction(prediction).model_dump(mode="json")

    @app.get("/escalation/{borrower_id}/{facility_id}")
    def get_escalation_state(borrower_id: str, facility_id: str):
        return pipeline.monitor.get_state(borrower_id, facility_id).model_dump(mode="json")

    @app.post("/escalation/{borrower_id}/{facility_id}/resolve")
    def resolve_escalation(borrower_id: str, facility_id: str, req: ResolveRequest):
        state = pipeline.resolve_escalation(borrower_id, facility_id, reason=req.reason)
        return state.model_dump(mode="json")

    # === AUDIT ===

    @app.get("/audit")
    def get_audit(
        limit: int = 50,
        subject_id: Optional[str] = None,
        kind: Optional[AuditKind] = None,
    ):
        """Recent audit events, optionally for one subject or kind."""
        if subject_id:
            events = audit.query_by_subject(subject_id)
        elif kind:
            events = audit.query_by_kind(kind, limit=limit)
        else:
            events = audit.query_recent(limit=limit)
        return [e.model_dump(mode="json") for e in events]

    @app.get("/audit/verify")
    def verify_audit():
        """Verify chain integrity."""
        return {
            "integrity_valid": audit.verify_chain_integrity(),
            "total_records": audit.count(),
        }

    return app


# Default application instance
app = create_app()
