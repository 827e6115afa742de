"""
Historical Performance Store — aggregate outcome statistics per action type.

Read by the Confidence Evaluator; fed by the admission pipeline after each dispatch.
"""

from typing import Dict, Optional, Protocol

from autopilot_kernel.models.candidate import ActionType
from autopilot_kernel.models.confidence import HistoricalData


class HistoricalPerformanceStore(Protocol):
    """Protocol for historical statistics — pluggable backend."""

    def get_stats(self, action_type: ActionType) -> Optional[HistoricalData]: ...

    def record_outcome(
        self, action_type: ActionType, success: bool, effectiveness_score: float
    ) -> HistoricalData: ...


class InMemoryHistoricalStore:
    """
    In-memory statistics for the kernel.
    Production would read from the outcome warehouse.
    """

    def __init__(self, stats: Optional[Dict[ActionType, HistoricalData]] = None):
        self._stats: Dict[ActionType, HistoricalData] = dict(stats or {})

    def get_stats(self, action_type: ActionType) -> Optional[HistoricalData]:
        return self._stats.get(action_type)

    def set_stats(self, action_type: ActionType, data: HistoricalData) -> None:
        self._stats[action_type] = data

    def record_outcome(
        self, action_type: ActionType, success: bool, effectiveness_score: float
    ) -> HistoricalData:
        """Fold one executed action's outcome into the running aggregates."""
        current = self._stats.get(action_type) or HistoricalData(
            similar_actions_count=0, success_rate=0.0, avg_effectiveness_score=0.0
        )
        n = current.similar_actions_count
        updated = HistoricalData(
            similar_actions_count=n + 1,
            success_rate=(current.success_rate * n + (100.0 if success else 0.0)) / (n + 1),
            avg_effectiveness_score=(
                (current.avg_effectiveness_score * n + effectiveness_score) / (n + 1)
            ),
        )
        self._stats[action_type] = updated
        return updated
