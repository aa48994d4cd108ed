"""
Schedule views for reporting and export.

Turns the engine's person-indexed schedule into date-indexed assignment
lists and the per-date / per-person shift statistics shown next to a
roster.
"""

from typing import Dict, List

from .data_manager import (
    DEFAULT_REST_COLOR, Assignment, PersonAssignment, Person, Rules, ScheduleEntry, ShiftDefinition
)
from .eligibility import rest_equivalent

TOTAL_WORKING_LABEL = "Total Working"
TOTAL_LABEL = "Total"


def shift_colors(shifts: List[ShiftDefinition], rules: Rules) -> Dict[str, str]:
    colors = {shift.name: shift.color for shift in shifts}
    colors.setdefault(rules.rest_shift_name, DEFAULT_REST_COLOR)
    return colors


def aggregate_by_date(person_schedule: Dict[str, ScheduleEntry], persons: List[Person],
                      shifts: List[ShiftDefinition], rules: Rules) -> Dict[str, List[PersonAssignment]]:
    """Date -> assignments of every person on that date, persons in roster order"""
    colors = shift_colors(shifts, rules)
    by_date: Dict[str, List[PersonAssignment]] = {}
    emitted = set()

    for person in persons:
        entry = person_schedule.get(person.name)
        # A repeated name was only scheduled once
        if entry is None or person.name in emitted:
            continue
        emitted.add(person.name)
        for date_str, shift_name in entry.shifts.items():
            by_date.setdefault(date_str, []).append(PersonAssignment(
                name=person.name,
                employee_id=person.employee_id,
                group=person.group,
                shift_name=shift_name,
                shift_color=colors.get(shift_name, "#FFFFFF")
            ))

    return dict(sorted(by_date.items()))


def schedule_dates(person_schedule: Dict[str, ScheduleEntry]) -> List[str]:
    dates = set()
    for entry in person_schedule.values():
        dates.update(entry.shifts.keys())
    return sorted(dates)


def daily_shift_counts(person_schedule: Dict[str, ScheduleEntry], rules: Rules) -> Dict[str, Dict[str, float]]:
    """
    Shift name -> date -> headcount, followed by a working-staff row and a
    total-staff row. Every assignment counts as one person here, half-day
    shifts included.
    """
    dates = schedule_dates(person_schedule)
    shift_names = sorted({
        shift_name
        for entry in person_schedule.values()
        for shift_name in entry.shifts.values()
    })

    counts: Dict[str, Dict[str, float]] = {
        shift_name: {date_str: 0.0 for date_str in dates} for shift_name in shift_names
    }
    working = {date_str: 0.0 for date_str in dates}
    total = {date_str: 0.0 for date_str in dates}

    for entry in person_schedule.values():
        for date_str, shift_name in entry.shifts.items():
            counts[shift_name][date_str] += 1
            total[date_str] += 1
            if shift_name != rules.rest_shift_name:
                working[date_str] += 1

    counts[TOTAL_WORKING_LABEL] = working
    counts[TOTAL_LABEL] = total
    return counts


def staff_shift_counts(person_schedule: Dict[str, ScheduleEntry], shifts: List[ShiftDefinition],
                       rules: Rules) -> Dict[str, Dict[str, float]]:
    """
    Person -> shift name -> count. The rest column is the rest equivalent:
    full rest days plus 0.5 for every half-day shift worked.
    """
    shift_names = {shift.name for shift in shifts}
    shift_names.add(rules.rest_shift_name)
    for entry in person_schedule.values():
        shift_names.update(entry.shifts.values())
    ordered_names = sorted(shift_names)

    result: Dict[str, Dict[str, float]] = {}
    for person_name, entry in person_schedule.items():
        counts = {shift_name: 0.0 for shift_name in ordered_names}
        for shift_name in entry.shifts.values():
            counts[shift_name] += 1
        counts[rules.rest_shift_name] = rest_equivalent(
            (Assignment.from_label(label, rules.rest_shift_name) for label in entry.shifts.values()), rules
        )
        result[person_name] = counts

    return result


def rest_equivalents(person_schedule: Dict[str, ScheduleEntry], rules: Rules) -> Dict[str, float]:
    return {
        person_name: counts[rules.rest_shift_name]
        for person_name, counts in staff_shift_counts(person_schedule, [], rules).items()
    }
