"""
Queue Store — holds every admitted QueueItem and owns its lifecycle.

Behavioral Contract:
- Every status change is compare-and-set on (expected status, version)
- Transitions outside the lifecycle raise InvalidTransitionError
- A lost race raises TransitionConflictError; the winner's write stands
- History is append-only; items are replaced, never edited in place
- An item can be claimed for execution once; executed is terminal
"""

import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from autopilot_kernel.core.exceptions import (
    InvalidTransitionError,
    QueueItemNotFoundError,
    TransitionConflictError,
)
from autopilot_kernel.models.queue import (
    CANCELLABLE_STATUSES,
    EXECUTABLE_STATUSES,
    ExecutionResult,
    QueueItem,
    QueueStatus,
    StatusTransition,
    is_transition_allowed,
)

logger = logging.getLogger(__name__)


class QueueStore:
    """
    In-memory queue for the kernel.
    Production would back this with a table and a conditional UPDATE.
    """

    def __init__(self):
        self._items: Dict[str, QueueItem] = {}
        self._claimed: Set[str] = set()
        self._lock = threading.Lock()

    # --- Reads ---

    def get(self, item_id: str) -> QueueItem:
        with self._lock:
            item = self._items.get(item_id)
        if item is None:
            raise QueueItemNotFoundError(item_id)
        return item

    def list(self, status: Optional[QueueStatus] = None) -> List[QueueItem]:
        with self._lock:
            items = list(self._items.values())
        if status is not None:
            items = [i for i in items if i.status == status]
        return sorted(items, key=lambda i: (i.created_at, i.id))

    def __len__(self) -> int:
        return len(self._items)

    # --- Writes ---

    def add(self, item: QueueItem) -> QueueItem:
        """Store a new item. Re-adding the same id returns the stored item unchanged."""
        with self._lock:
            existing = self._items.get(item.id)
            if existing is not None:
                return existing
            self._items[item.id] = item
        logger.info(
            "queue_item_added",
            extra={"item_id": item.id, "status": item.status.value},
        )
        return item

    def _transition(
        self,
        item_id: str,
        to_status: QueueStatus,
        actor: str,
        reason: Optional[str] = None,
        expected_status: Optional[QueueStatus] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
        **updates,
    ) -> QueueItem:
        with self._lock:
            current = self._items.get(item_id)
            if current is None:
                raise QueueItemNotFoundError(item_id)

            if expected_status is not None and current.status != expected_status:
                raise TransitionConflictError(
                    item_id, expected_status.value, current.status.value
                )
            if expected_version is not None and current.version != expected_version:
                raise TransitionConflictError(
                    item_id, f"version {expected_version}", f"version {current.version}"
                )
            if not is_transition_allowed(current.status, to_status):
                raise InvalidTransitionError(item_id, current.status.value, to_status.value)
            # A claimed item belongs to the dispatcher until it reports back.
            if to_status == QueueStatus.EXPIRED and item_id in self._claimed:
                raise InvalidTransitionError(item_id, current.status.value, to_status.value)

            entry = StatusTransition(
                from_status=current.status,
                to_status=to_status,
                actor=actor,
                reason=reason,
                at=now or datetime.utcnow(),
            )
            updated = current.model_copy(update={
                "status": to_status,
                "history": current.history + [entry],
                "version": current.version + 1,
                **updates,
            })
            self._items[item_id] = updated
            if to_status == QueueStatus.EXECUTED:
                self._claimed.discard(item_id)

        logger.info(
            "queue_item_transitioned",
            extra={
                "item_id": item_id,
                "from_status": current.status.value,
                "to_status": to_status.value,
                "actor": actor,
            },
        )
        return updated

    def approve(
        self,
        item_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        return self._transition(
            item_id, QueueStatus.APPROVED, actor, reason,
            expected_status=QueueStatus.PENDING_REVIEW,
            expected_version=expected_version,
            now=now,
        )

    def reject(
        self,
        item_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        return self._transition(
            item_id, QueueStatus.REJECTED, actor, reason,
            expected_status=QueueStatus.PENDING_REVIEW,
            expected_version=expected_version,
            now=now,
        )

    def cancel(
        self,
        item_id: str,
        actor: str,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QueueItem:
        """Withdraw a pending or approved item. It moves to expired with no side effects."""
        item = self.get(item_id)
        if item.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(item_id, item.status.value, QueueStatus.EXPIRED.value)
        return self._transition(
            item_id, QueueStatus.EXPIRED, actor, reason or "cancelled",
            expected_status=item.status,
            expected_version=expected_version if expected_version is not None else item.version,
            now=now,
        )

    def claim_for_execution(
        self, item_id: str, expected_version: Optional[int] = None
    ) -> QueueItem:
        """
        Reserve an approved item for the dispatcher.

        Exactly one caller wins the claim; everyone else gets
        TransitionConflictError. Items still awaiting review are refused.
        """
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise QueueItemNotFoundError(item_id)
            if item.status not in EXECUTABLE_STATUSES:
                raise InvalidTransitionError(
                    item_id, item.status.value, QueueStatus.EXECUTED.value
                )
            if expected_version is not None and item.version != expected_version:
                raise TransitionConflictError(
                    item_id, f"version {expected_version}", f"version {item.version}"
                )
            if item_id in self._claimed:
                raise TransitionConflictError(item_id, item.status.value, "claimed")
            self._claimed.add(item_id)
        return item

    def is_claimed(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._claimed

    def record_execution(self, item_id: str, result: ExecutionResult) -> QueueItem:
        """
        Close out a claimed item.

        Success moves it to executed. Failure releases the claim and keeps the
        item approved so it can be dispatched again.
        """
        item = self.get(item_id)
        if not self.is_claimed(item_id):
            raise InvalidTransitionError(item_id, item.status.value, QueueStatus.EXECUTED.value)

        if result.success:
            return self._transition(
                item_id, QueueStatus.EXECUTED, "execution_dispatcher",
                expected_status=item.status,
                expected_version=item.version,
                now=result.executed_at,
                execution_result=result,
            )

        with self._lock:
            current = self._items[item_id]
            updated = current.model_copy(update={
                "execution_result": result,
                "version": current.version + 1,
            })
            self._items[item_id] = updated
            self._claimed.discard(item_id)
        logger.warning(
            "queue_item_execution_failed",
            extra={"item_id": item_id, "error": result.error},
        )
        return updated

    def batch_approve(
        self, item_ids: Iterable[str], actor: str, reason: Optional[str] = None
    ) -> Dict[str, object]:
        """Approve each id independently; one failure never blocks the rest."""
        approved: List[str] = []
        failed: Dict[str, str] = {}
        for item_id in item_ids:
            try:
                self.approve(item_id, actor, reason)
                approved.append(item_id)
            except (QueueItemNotFoundError, InvalidTransitionError, TransitionConflictError) as e:
                failed[item_id] = str(e)
        return {"approved": approved, "failed": failed}

    def metrics(self) -> dict:
        """Counts per status plus auto-approval and execution rates."""
        items = self.list()
        by_status = {status.value: 0 for status in QueueStatus}
        for item in items:
            by_status[item.status.value] += 1

        total = len(items)
        auto = sum(1 for i in items if i.history and i.history[0].to_status == QueueStatus.AUTO_APPROVED)
        executions = [i.execution_result for i in items if i.execution_result is not None]
        succeeded = sum(1 for r in executions if r.success)

        return {
            "total": total,
            "by_status": by_status,
            "auto_approval_rate": round(auto / total, 4) if total else 0.0,
            "average_confidence": (
                round(sum(i.confidence_score for i in items) / total, 2) if total else 0.0
            ),
            "execution_success_rate": (
                round(succeeded / len(executions), 4) if executions else 0.0
            ),
            "awaiting_review": by_status[QueueStatus.PENDING_REVIEW.value],
        }
