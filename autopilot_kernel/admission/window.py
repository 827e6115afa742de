"""
Execution Window — business hours and blackout periods.

Gates execution scheduling only. Admission and scoring happen at any time;
an admitted item simply waits for the next permissible minute.
"""

from datetime import datetime
from typing import Optional

from croniter import croniter

from autopilot_kernel.core.exceptions import ConfigurationError
from autopilot_kernel.models.thresholds import BlackoutPeriod, TimeRestrictions

# Upper bound on blackout hops while searching; a year of daily freezes fits.
MAX_SEARCH_STEPS = 1000


class ExecutionWindow:
    def __init__(self, restrictions: Optional[TimeRestrictions] = None):
        self.restrictions = restrictions or TimeRestrictions()
        if not croniter.is_valid(self.restrictions.business_hours_schedule):
            raise ConfigurationError(
                f"Invalid business hours schedule: {self.restrictions.business_hours_schedule!r}"
            )

    def _in_business_hours(self, at: datetime) -> bool:
        if not self.restrictions.business_hours_only:
            return True
        return croniter.match(self.restrictions.business_hours_schedule, at)

    def active_blackout(self, at: datetime) -> Optional[BlackoutPeriod]:
        for period in self.restrictions.blackout_periods:
            if period.start <= at < period.end:
                return period
        return None

    def is_permissible(self, at: datetime) -> bool:
        return self._in_business_hours(at) and self.active_blackout(at) is None

    def next_permissible(self, after: datetime) -> datetime:
        """``after`` itself when permissible, otherwise the next permissible minute."""
        candidate = after
        for _ in range(MAX_SEARCH_STEPS):
            blackout = self.active_blackout(candidate)
            if blackout is not None:
                candidate = blackout.end
                continue
            if self._in_business_hours(candidate):
                return candidate
            cron = croniter(self.restrictions.business_hours_schedule, candidate)
            candidate = cron.get_next(datetime)
        raise ConfigurationError("No permissible execution window found")
