"""
Execution Dispatcher — hands admitted queue items to the systems that act on them.

Behavioral Contract:
- Accepts only items in approved or auto_approved status
- Never executes anything awaiting review
- The governance core never performs the business action; executors do
- Handles executor-level failures by reporting them, never by retrying strategy
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, Optional

from autopilot_kernel.core.exceptions import InvalidTransitionError
from autopilot_kernel.models.candidate import ActionType
from autopilot_kernel.models.queue import (
    EXECUTABLE_STATUSES,
    ExecutionResult,
    QueueItem,
    QueueStatus,
)

logger = logging.getLogger(__name__)

Executor = Callable[[QueueItem], dict]


class ExecutionDispatcher:
    """
    Dispatches approved queue items. For the kernel prototype,
    default executors only record a hand-off. In production, these
    would call the dialer, document drafting and notification services.
    """

    def __init__(self):
        self._executors: Dict[ActionType, Executor] = {}
        self._register_default_executors()

    def _register_default_executors(self) -> None:
        self._executors[ActionType.BORROWER_CALL] = self._handoff_call
        self._executors[ActionType.AMENDMENT_DRAFT] = self._handoff_document
        self._executors[ActionType.WAIVER_REQUEST] = self._handoff_document
        self._executors[ActionType.DOCUMENT_REQUEST] = self._handoff_notification
        self._executors[ActionType.COMPLIANCE_REMINDER] = self._handoff_notification
        self._executors[ActionType.COUNTERPARTY_ALERT] = self._handoff_notification
        self._executors[ActionType.ESG_ACTION] = self._handoff_task
        self._executors[ActionType.RISK_ESCALATION] = self._handoff_task

    def register_executor(self, action_type: ActionType, executor: Executor) -> None:
        """Register a custom executor for an action type."""
        self._executors[action_type] = executor

    def dispatch(self, item: QueueItem, now: Optional[datetime] = None) -> ExecutionResult:
        """
        Execute one admitted item.

        GUARD: Never execute an item that has not been approved.
        """
        if item.status not in EXECUTABLE_STATUSES:
            raise InvalidTransitionError(item.id, item.status.value, QueueStatus.EXECUTED.value)

        action_type = item.candidate.type
        executor = self._executors.get(action_type)
        if executor is None:
            return ExecutionResult(
                item_id=item.id,
                action_type=action_type.value,
                success=False,
                error=f"No executor registered for action type: {action_type.value}",
                executed_at=now or datetime.utcnow(),
                execution_duration_seconds=0.0,
            )

        start = time.monotonic()
        try:
            data = executor(item)
            success, error = True, None
        except Exception as e:
            data, success, error = {}, False, str(e)
            logger.warning(
                "executor_failed",
                extra={"item_id": item.id, "action_type": action_type.value, "error": error},
            )
        elapsed = time.monotonic() - start

        return ExecutionResult(
            item_id=item.id,
            action_type=action_type.value,
            success=success,
            data=data or {},
            error=error,
            executed_at=now or datetime.utcnow(),
            execution_duration_seconds=round(elapsed, 3),
        )

    # --- Default Executors (Prototype) ---

    def _handoff_call(self, item: QueueItem) -> dict:
        return {"status": "scheduled", "call_id": f"call_{item.candidate.borrower_id}_{item.id}"}

    def _handoff_document(self, item: QueueItem) -> dict:
        return {"status": "drafting", "document_ref": f"doc_{item.candidate.facility_id}_{item.id}"}

    def _handoff_notification(self, item: QueueItem) -> dict:
        return {"status": "sent", "message_id": f"msg_{item.candidate.borrower_id}_{item.id}"}

    def _handoff_task(self, item: QueueItem) -> dict:
        return {"status": "routed", "queue": item.candidate.type.value}
