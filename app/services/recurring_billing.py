"""Recurring Billing Scheduler - billing-cycle periods for retainer and subscription terms

Everything here is pure: callers pass the contract anchor date and today's
date, nothing reads the clock.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from app.models.enums import BillingCycle

_CYCLE_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}


def add_months(value: date, months: int) -> date:
    """Shift by calendar months, clamping to the last day of the target month"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass(frozen=True)
class BillingPeriod:
    """Billing-cycle window; both ``start`` and ``end`` are inclusive"""
    cycle: BillingCycle
    index: int
    start: date
    end: date

    @property
    def label(self) -> str:
        if self.cycle == BillingCycle.WEEKLY:
            return f"Week of {self.start.strftime('%a %b %d %Y')}"
        if self.cycle == BillingCycle.MONTHLY:
            return self.start.strftime("%B %Y")
        if self.cycle == BillingCycle.QUARTERLY:
            return f"Q{(self.start.month - 1) // 3 + 1} {self.start.year}"
        if self.cycle == BillingCycle.YEARLY:
            return str(self.start.year)
        return f"One-time ({self.start.isoformat()})"


class RecurringBillingScheduler:
    """
    Decides which billing periods of a recurring contract are due.

    Periods are counted from the contract start (the anchor) so month-end
    clamping never drifts: a contract starting Jan 31 bills Feb 29/28,
    Mar 31, Apr 30, ... Periods are billed in advance, so a period is due as
    soon as its start date is reached.
    """

    @staticmethod
    def period_start(anchor: date, cycle: BillingCycle, index: int) -> date:
        if cycle == BillingCycle.WEEKLY:
            return anchor + timedelta(weeks=index)
        if cycle == BillingCycle.ONE_TIME:
            if index != 0:
                raise ValueError("one-time terms have a single period")
            return anchor
        return add_months(anchor, _CYCLE_MONTHS[cycle] * index)

    @classmethod
    def period(cls, anchor: date, cycle: BillingCycle, index: int) -> BillingPeriod:
        start = cls.period_start(anchor, cycle, index)
        if cycle == BillingCycle.ONE_TIME:
            end = start
        else:
            end = cls.period_start(anchor, cycle, index + 1) - timedelta(days=1)
        return BillingPeriod(cycle=cycle, index=index, start=start, end=end)

    @classmethod
    def periods_until(
        cls,
        anchor: date,
        cycle: BillingCycle,
        today: date,
        end_date: Optional[date] = None,
    ) -> List[BillingPeriod]:
        """All periods that have started on or before ``today`` (and before the contract end)"""
        periods: List[BillingPeriod] = []
        index = 0
        while True:
            current = cls.period(anchor, cycle, index)
            if current.start > today or (end_date is not None and current.start > end_date):
                break
            periods.append(current)
            if cycle == BillingCycle.ONE_TIME:
                break
            index += 1
        return periods

    @classmethod
    def next_period(
        cls,
        anchor: date,
        cycle: BillingCycle,
        last_period_end: Optional[date] = None,
    ) -> Optional[BillingPeriod]:
        """First period after ``last_period_end``; None once one-time terms are billed"""
        if last_period_end is None:
            return cls.period(anchor, cycle, 0)
        if cycle == BillingCycle.ONE_TIME:
            return None
        index = 0
        while True:
            current = cls.period(anchor, cycle, index)
            if current.start > last_period_end:
                return current
            index += 1

    @classmethod
    def is_due(
        cls,
        anchor: date,
        cycle: BillingCycle,
        today: date,
        last_period_end: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> bool:
        """True when the next unbilled period has started and the contract still covers it"""
        upcoming = cls.next_period(anchor, cycle, last_period_end)
        if upcoming is None:
            return False
        if end_date is not None and upcoming.start > end_date:
            return False
        return upcoming.start <= today
