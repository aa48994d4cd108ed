"""
Running assignment statistics for one scheduling pass pipeline.

The counts are a cache derived from the schedule; the schedule itself
stays authoritative.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable

from .data_manager import Assignment, Rules
from .eligibility import rest_equivalent


@dataclass
class StaffStatistics:
    staff_name: str
    shift_counts: Dict[str, float] = field(default_factory=dict)
    total_assigned: float = 0
    rest_equivalent: float = 0.0


@dataclass
class DailyStatistics:
    date: date
    shift_counts: Dict[str, float] = field(default_factory=dict)
    total_assigned: float = 0
    total_available: int = 0


class StatisticsTracker:
    """Per-person and per-date shift counts, updated once per committed change"""

    def __init__(self, staff_names: Iterable[str], dates: Iterable[date], shift_names: Iterable[str], rules: Rules):
        self.rules = rules
        staff_names = list(staff_names)
        shift_names = list(shift_names)

        self.staff: Dict[str, StaffStatistics] = {
            name: StaffStatistics(name, {shift: 0.0 for shift in shift_names})
            for name in staff_names
        }
        self.daily: Dict[date, DailyStatistics] = {
            day: DailyStatistics(day, {shift: 0.0 for shift in shift_names}, total_available=len(staff_names))
            for day in dates
        }

    def _rest_credit(self, shift_name: str) -> float:
        return rest_equivalent([Assignment.from_label(shift_name, self.rules.rest_shift_name)], self.rules)

    def _apply(self, person_name: str, shift_name: str, day: date, sign: int):
        staff_stats = self.staff.get(person_name)
        if staff_stats is not None:
            staff_stats.shift_counts[shift_name] = staff_stats.shift_counts.get(shift_name, 0.0) + sign
            staff_stats.total_assigned += sign
            staff_stats.rest_equivalent += sign * self._rest_credit(shift_name)

        daily_stats = self.daily.get(day)
        if daily_stats is not None:
            daily_stats.shift_counts[shift_name] = daily_stats.shift_counts.get(shift_name, 0.0) + sign
            daily_stats.total_assigned += sign

    def record_assignment(self, person_name: str, shift_name: str, day: date):
        """
        Count one committed assignment for the person and the date.
        Half-day shifts count once under their own name and also credit
        0.5 toward the person's rest equivalent; rest credits 1.0.
        """
        self._apply(person_name, shift_name, day, 1)

    def record_removal(self, person_name: str, shift_name: str, day: date):
        """Undo record_assignment when an assignment is cleared or replaced"""
        self._apply(person_name, shift_name, day, -1)

    def daily_count(self, day: date, shift_name: str) -> float:
        daily_stats = self.daily.get(day)
        if daily_stats is None:
            return 0.0
        return daily_stats.shift_counts.get(shift_name, 0.0)

    def staff_count(self, person_name: str, shift_name: str) -> float:
        staff_stats = self.staff.get(person_name)
        if staff_stats is None:
            return 0.0
        return staff_stats.shift_counts.get(shift_name, 0.0)

    def rest_equivalent(self, person_name: str) -> float:
        staff_stats = self.staff.get(person_name)
        return staff_stats.rest_equivalent if staff_stats is not None else 0.0

    def daily_rest_count(self, day: date) -> float:
        return self.daily_count(day, self.rules.rest_shift_name)
