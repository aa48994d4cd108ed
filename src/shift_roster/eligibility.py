"""
Eligibility Checks for Shift Roster

Pure predicates deciding whether a person may take a work shift or a
rest day on a date. Every check works on a person's combined view:
the read-only history before the period overlaid with the assignments
made so far in the run.
"""

from collections import ChainMap
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Mapping, Optional, Tuple
import logging

from .data_manager import Assignment, Rules, UNRESOLVED, DATE_FORMAT


logger = logging.getLogger(__name__)

# Days on each side of a candidate date scanned for consecutive work
CONSECUTIVE_WINDOW_DAYS = 14
# A run this long before a rest day justifies a second rest day straight after it
REST_BREAK_RUN = 5
# How far back the rest-spacing rules look for the nearest earlier rest day
REST_LOOKBACK_DAYS = 5

ScheduleView = Mapping[date, Assignment]


def parse_history(history: Optional[Mapping[str, str]], rules: Rules) -> Dict[date, Assignment]:
    """Convert stored {date_str: shift_name} history into a date-keyed assignment map"""
    parsed: Dict[date, Assignment] = {}
    for date_str, label in (history or {}).items():
        try:
            day = datetime.strptime(date_str, DATE_FORMAT).date()
        except ValueError:
            logger.warning(f"Ignoring history entry with invalid date '{date_str}'")
            continue
        parsed[day] = Assignment.from_label(label, rules.rest_shift_name)
    return parsed


def combined_view(history: Mapping[date, Assignment],
                  schedule: Mapping[date, Assignment]) -> ChainMap:
    """
    History overlaid with the in-progress schedule; the schedule wins on overlap.
    The view is live, so later schedule changes show through without rebuilding it.
    """
    return ChainMap(schedule, history)


def _at(view: ScheduleView, day: date, override: Optional[Tuple[date, Assignment]] = None) -> Assignment:
    if override is not None and override[0] == day:
        return override[1]
    return view.get(day, UNRESOLVED)


def max_consecutive_run(view: ScheduleView, start: date, end: date, rules: Rules,
                        override: Optional[Tuple[date, Assignment]] = None) -> float:
    """
    Longest run of consecutive work days in [start, end].

    Half-day shifts add 0.5 to the run and full shifts 1.0; a rest day or
    an unassigned day ends the run. ``override`` substitutes one date's
    assignment without copying the view.
    """
    best = 0.0
    run = 0.0
    current = start
    while current <= end:
        assignment = _at(view, current, override)
        if assignment.is_work:
            run += rules.shift_day_value(assignment.shift_name)
            best = max(best, run)
        else:
            run = 0.0
        current += timedelta(days=1)
    return best


def can_assign_shift(view: ScheduleView, shift_name: str, day: date, rules: Rules) -> bool:
    """
    True if the person is unassigned on ``day`` and taking ``shift_name``
    keeps every work run within rules.max_consecutive_days.
    """
    if not _at(view, day).is_unresolved:
        return False

    window = timedelta(days=CONSECUTIVE_WINDOW_DAYS)
    longest = max_consecutive_run(
        view, day - window, day + window, rules,
        override=(day, Assignment.of_shift(shift_name))
    )
    return longest <= rules.max_consecutive_days


def work_run_ending(view: ScheduleView, last_day: date, limit: int = REST_BREAK_RUN) -> int:
    """Number of consecutive work days ending on ``last_day``, counted up to ``limit``"""
    count = 0
    current = last_day
    while count < limit and _at(view, current).is_work:
        count += 1
        current -= timedelta(days=1)
    return count


def nearest_rest_distance(view: ScheduleView, day: date,
                          lookback: int = REST_LOOKBACK_DAYS) -> Optional[int]:
    """Days back to the closest earlier rest day within ``lookback`` days, or None"""
    for distance in range(1, lookback + 1):
        if _at(view, day - timedelta(days=distance)).is_rest:
            return distance
    return None


def can_assign_rest(view: ScheduleView, day: date, rules: Rules) -> bool:
    """
    Rest-day spacing rules, applied in order with the first rejection winning:

    1. A rest straight after another rest is refused unless that earlier
       rest closed a run of at least five work days.
    2. A rest two days after the previous rest is refused, which would
       leave a single isolated work day between them.
    3. A rest three to five days after the previous rest is refused when
       genuine work lies between them, keeping rest days clustered.
    4. Anything else is allowed, including rest right after five or
       more consecutive work days.
    """
    if not _at(view, day).is_unresolved:
        return False

    if _at(view, day - timedelta(days=1)).is_rest:
        return work_run_ending(view, day - timedelta(days=2)) >= REST_BREAK_RUN

    distance = nearest_rest_distance(view, day)
    if distance is None:
        return True

    if distance == 2:
        return False

    between = [_at(view, day - timedelta(days=offset)) for offset in range(1, distance)]
    if any(assignment.is_work for assignment in between):
        return False

    return True


def rest_equivalent(assignments: Iterable[Assignment], rules: Rules) -> float:
    """Rest credit of a set of assignments: rest 1.0, half-day shift 0.5, other shifts 0"""
    total = 0.0
    for assignment in assignments:
        if assignment.is_rest:
            total += 1.0
        elif assignment.is_work and rules.is_half_day(assignment.shift_name):
            total += 0.5
    return total
