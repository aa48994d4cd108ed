"""
Scheduler Logic for Shift Roster

Greedy three-pass assignment engine: priority shifts, rest-day balancing,
then non-priority fill, run once per scheduling rule over the rule's
applicable staff. Eligibility comes from the eligibility module and the
running counts from the statistics tracker.
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple, Any, Iterator, Mapping
from dataclasses import dataclass, field
from collections import ChainMap
import logging
import time

from .data_manager import (
    Assignment, DataManager, Person, PersonAssignment, ResolvedRule, Rules,
    ScheduleEntry, ShiftDefinition, ShiftRequirement, REST, UNRESOLVED, DATE_FORMAT
)
from .eligibility import (
    CONSECUTIVE_WINDOW_DAYS, can_assign_rest, can_assign_shift, combined_view,
    max_consecutive_run, parse_history
)
from .schedule_stats import StatisticsTracker
from .schedule_views import aggregate_by_date, daily_shift_counts, rest_equivalents, staff_shift_counts

logger = logging.getLogger(__name__)


class SchedulingError(Exception):
    """Raised when a run hits an internal inconsistency it cannot recover from"""
    pass


@dataclass
class ScheduleResult:
    """Result of schedule generation"""
    success: bool
    schedule: Dict[str, List[PersonAssignment]]
    person_schedule: Dict[str, ScheduleEntry]
    statistics: Dict[str, Any]
    violations: List[str] = field(default_factory=list)
    message: str = ""


class ConstraintViolation:
    """Types of constraint violations"""
    PERSON_NOT_FOUND = "Staff member not found"
    UNKNOWN_SHIFT = "Shift is not defined"
    INVALID_DATE = "Invalid date format"
    MAX_CONSECUTIVE = "Assignment exceeds the maximum consecutive workdays"
    REST_PATTERN = "Rest day breaks the rest spacing rules"


def date_range(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def rotate_staff_for_fair_distribution(candidates: List[Any], day: date) -> List[Any]:
    """
    Rotate candidates left by day-of-year modulo their count, so the
    head of the list moves through the roster as the year advances.
    """
    if len(candidates) <= 1:
        return list(candidates)
    start_index = day.timetuple().tm_yday % len(candidates)
    return candidates[start_index:] + candidates[:start_index]


def _priority_order(requirement: ShiftRequirement) -> Tuple[bool, int]:
    # Explicit priorities ascending, unprioritized last; sort is stable
    return (requirement.priority is None, requirement.priority or 0)


class AssignmentEngine:
    """
    Owns all working state of one scheduling run.

    The schedule is person -> date -> Assignment and starts fully
    UNRESOLVED; each person's combined view overlays it on their history
    so eligibility checks see across the period boundary.
    """

    def __init__(self, persons: List[Person], shifts: List[ShiftDefinition], rules: Rules,
                 start: date, end: date, history: Optional[Mapping[str, Mapping[str, str]]] = None):
        self.rules = rules
        self.shifts = list(shifts)
        self.start = start
        self.end = end
        self.dates = list(date_range(start, end))

        self.persons: List[Person] = []
        seen = set()
        for person in persons:
            if person.name in seen:
                logger.warning(f"Duplicate staff name '{person.name}' ignored; names must be unique")
                continue
            seen.add(person.name)
            self.persons.append(person)

        history = history or {}
        self.history = {
            person.name: parse_history(history.get(person.name), rules) for person in self.persons
        }
        self.schedule: Dict[str, Dict[date, Assignment]] = {
            person.name: {day: UNRESOLVED for day in self.dates} for person in self.persons
        }
        self._views: Dict[str, ChainMap] = {
            name: combined_view(self.history[name], self.schedule[name]) for name in self.schedule
        }
        self.tracker: Optional[StatisticsTracker] = None
        self.coverage_issues: List[str] = []

    # Staff partition

    def partition_staff(self) -> List[Tuple[ResolvedRule, List[str], bool]]:
        """
        Split the roster across the rules as (rule, staff, is_fallback) pipelines.

        Explicit applicable lists claim first in rule order, the first rule
        with an empty list takes everyone still unclaimed, and anyone left
        over runs under the legacy weekday/holiday lists as a fallback.
        """
        names = [person.name for person in self.persons]
        if self.rules.uses_legacy_rules:
            return [(self.rules.legacy_rule(), names, True)]

        known = set(names)
        resolved = self.rules.resolved_rules()
        claimed: Dict[str, int] = {}

        for index, rule in enumerate(resolved):
            for person_name in rule.applicable_staff:
                if person_name not in known:
                    logger.warning(f"Rule '{rule.name}' lists unknown staff member '{person_name}'")
                elif person_name in claimed:
                    logger.warning(
                        f"'{person_name}' already claimed by rule '{resolved[claimed[person_name]].name}'; "
                        f"ignoring the entry in '{rule.name}'"
                    )
                else:
                    claimed[person_name] = index

        catch_all = None
        for index, rule in enumerate(resolved):
            if rule.applicable_staff:
                continue
            if catch_all is None:
                catch_all = index
                for person_name in names:
                    claimed.setdefault(person_name, index)
            else:
                logger.warning(f"Rule '{rule.name}' has no applicable staff left; it only repeats '{resolved[catch_all].name}'")

        pipelines = []
        for index, rule in enumerate(resolved):
            members = [name for name in names if claimed.get(name) == index]
            if members:
                pipelines.append((rule, members, False))

        unclaimed = [name for name in names if name not in claimed]
        if unclaimed:
            logger.warning(f"No scheduling rule covers {', '.join(unclaimed)}; using the default requirements")
            pipelines.append((self.rules.legacy_rule(), unclaimed, True))

        return pipelines

    # Run

    def run(self) -> Dict[str, ScheduleEntry]:
        """Build the complete schedule and return it person-indexed"""
        if not self.dates:
            logger.warning(f"Empty period {self.start} to {self.end}; nothing to schedule")
            return {}
        if not self.persons:
            logger.warning("No staff to schedule")
            return {}

        try:
            for rule, staff, is_fallback in self.partition_staff():
                logger.debug(f"Running rule '{rule.name}' for {len(staff)} staff")
                self._run_pipeline(rule, staff, enforce_rest=is_fallback)
        except KeyError as e:
            raise SchedulingError(f"Schedule slot missing for {e}") from e

        return self._freeze()

    def _run_pipeline(self, rule: ResolvedRule, staff: List[str], enforce_rest: bool):
        shift_names = {shift.name for shift in self.shifts}
        shift_names.add(self.rules.rest_shift_name)
        for requirement in rule.weekday_requirements + rule.holiday_requirements:
            shift_names.add(requirement.shift_name)
        self.tracker = StatisticsTracker(staff, self.dates, sorted(shift_names), self.rules)

        self._priority_pass(rule, staff)
        logger.debug(f"Rule '{rule.name}': priority pass done")
        self._rest_balancing_pass(rule, staff)
        logger.debug(f"Rule '{rule.name}': rest balancing pass done")
        self._fill_pass(rule, staff)
        logger.debug(f"Rule '{rule.name}': fill pass done")

        if enforce_rest:
            self._enforce_total_rest_days(rule, staff)

        self._record_coverage(rule)

    def _freeze(self) -> Dict[str, ScheduleEntry]:
        rest_name = self.rules.rest_shift_name
        result: Dict[str, ScheduleEntry] = {}
        for person in self.persons:
            days = self.schedule[person.name]
            assert all(not assignment.is_unresolved for assignment in days.values()), \
                f"Unresolved assignment left for {person.name}"
            result[person.name] = ScheduleEntry(
                name=person.name,
                employee_id=person.employee_id,
                group=person.group,
                shifts={day.strftime(DATE_FORMAT): days[day].to_label(rest_name) for day in self.dates}
            )
        return result

    # Helpers

    def _requirements(self, rule: ResolvedRule, day: date) -> List[ShiftRequirement]:
        return [
            requirement for requirement in rule.requirements_for(self.rules.is_holiday(day))
            if requirement.shift_name and requirement.shift_name != self.rules.rest_shift_name
        ]

    def _priority_shift_names(self, rule: ResolvedRule, day: date) -> set:
        return {requirement.shift_name for requirement in self._requirements(rule, day) if requirement.has_priority}

    def _cleared_view(self, name: str, day: date) -> ChainMap:
        """The person's view with ``day`` treated as unassigned"""
        return self._views[name].new_child({day: UNRESOLVED})

    def _can_work(self, name: str, shift_name: str, day: date) -> bool:
        return can_assign_shift(self._views[name], shift_name, day, self.rules)

    def _assign(self, name: str, day: date, assignment: Assignment):
        previous = self.schedule[name][day]
        if previous == assignment:
            return
        rest_name = self.rules.rest_shift_name
        if not previous.is_unresolved:
            self.tracker.record_removal(name, previous.to_label(rest_name), day)
        self.schedule[name][day] = assignment
        if not assignment.is_unresolved:
            self.tracker.record_assignment(name, assignment.to_label(rest_name), day)

    def _fill_requirement(self, rule: ResolvedRule, requirement: ShiftRequirement, day: date,
                          staff: List[str], extend_half_days: bool):
        shift_name = requirement.shift_name
        candidates = [name for name in staff if self._can_work(name, shift_name, day)]

        for name in rotate_staff_for_fair_distribution(candidates, day):
            if self.tracker.daily_count(day, shift_name) >= requirement.required_count:
                break
            # Earlier assignments on this date can change eligibility
            if not self._can_work(name, shift_name, day):
                continue
            self._assign(name, day, Assignment.of_shift(shift_name))
            if extend_half_days and self.rules.is_half_day(shift_name):
                self._extend_half_day_shift(rule, name, shift_name, day)

    def _extend_half_day_shift(self, rule: ResolvedRule, name: str, shift_name: str, day: date):
        """Give the same person the same half-day shift on the next date, once, if it is wanted there"""
        next_day = day + timedelta(days=1)
        if next_day > self.end:
            return
        if shift_name not in {requirement.shift_name for requirement in self._requirements(rule, next_day)}:
            return
        if self._can_work(name, shift_name, next_day):
            self._assign(name, next_day, Assignment.of_shift(shift_name))

    # Pass 1

    def _priority_pass(self, rule: ResolvedRule, staff: List[str]):
        for day in self.dates:
            for requirement in sorted(self._requirements(rule, day), key=_priority_order):
                assigned = self.tracker.daily_count(day, requirement.shift_name)
                if assigned < requirement.required_count:
                    self._fill_requirement(rule, requirement, day, staff, extend_half_days=True)
                elif assigned > requirement.required_count:
                    self._trim_requirement(requirement, day, staff)

    def _trim_requirement(self, requirement: ShiftRequirement, day: date, staff: List[str]):
        excess = self.tracker.daily_count(day, requirement.shift_name) - requirement.required_count
        target = Assignment.of_shift(requirement.shift_name)
        for name in staff:
            if excess <= 0:
                break
            if self.schedule[name][day] == target:
                self._assign(name, day, UNRESOLVED)
                excess -= 1

    # Pass 2

    def _rest_balancing_pass(self, rule: ResolvedRule, staff: List[str]):
        target = self.rules.total_rest_days
        average = (len(staff) * target) // len(self.dates)
        weekday_ceiling = max(1, average - 1)
        holiday_ceiling = average + 2

        for name in sorted(staff, key=self.tracker.rest_equivalent):
            current = self.tracker.rest_equivalent(name)
            if current < target:
                self._add_rest_days(rule, name, target, weekday_ceiling, holiday_ceiling)
            elif current > target:
                self._remove_rest_days(rule, name, target)

    def _add_rest_days(self, rule: ResolvedRule, name: str, target: int,
                       weekday_ceiling: int, holiday_ceiling: int):
        for day in self.dates:
            if self.tracker.rest_equivalent(name) >= target:
                break
            ceiling = holiday_ceiling if self.rules.is_holiday(day) else weekday_ceiling
            if self.tracker.daily_rest_count(day) >= ceiling:
                continue

            current = self.schedule[name][day]
            if current.is_rest:
                continue
            if current.is_work and current.shift_name in self._priority_shift_names(rule, day):
                continue
            if can_assign_rest(self._cleared_view(name, day), day, self.rules):
                self._assign(name, day, REST)

    def _remove_rest_days(self, rule: ResolvedRule, name: str, target: int):
        for day in self.dates:
            if self.tracker.rest_equivalent(name) <= target:
                break
            if not self.schedule[name][day].is_rest:
                continue

            view = self._cleared_view(name, day)
            for requirement in self._requirements(rule, day):
                if requirement.has_priority:
                    continue
                if self.tracker.daily_count(day, requirement.shift_name) >= requirement.required_count:
                    continue
                if can_assign_shift(view, requirement.shift_name, day, self.rules):
                    self._assign(name, day, Assignment.of_shift(requirement.shift_name))
                    break

    # Pass 3

    def _fill_pass(self, rule: ResolvedRule, staff: List[str]):
        for day in self.dates:
            flexible = [requirement for requirement in self._requirements(rule, day) if not requirement.has_priority]

            for requirement in flexible:
                if self.tracker.daily_count(day, requirement.shift_name) < requirement.required_count:
                    self._fill_requirement(rule, requirement, day, staff, extend_half_days=False)

            for name in staff:
                if self.schedule[name][day].is_unresolved:
                    self._assign(name, day, self._fallback_assignment(name, day, flexible))

    def _fallback_assignment(self, name: str, day: date, flexible: List[ShiftRequirement]) -> Assignment:
        for requirement in flexible:
            if (self.tracker.daily_count(day, requirement.shift_name) < requirement.required_count
                    and self._can_work(name, requirement.shift_name, day)):
                return Assignment.of_shift(requirement.shift_name)

        # Rest quota already met: overstaff a flexible shift rather than add more rest
        if self.tracker.rest_equivalent(name) >= self.rules.total_rest_days:
            for requirement in flexible:
                if self._can_work(name, requirement.shift_name, day):
                    return Assignment.of_shift(requirement.shift_name)

        return REST

    # Fallback path only

    def _enforce_total_rest_days(self, rule: ResolvedRule, staff: List[str]):
        """Convert flexible work days to rest for anyone still short of the rest target"""
        target = self.rules.total_rest_days
        window = timedelta(days=CONSECUTIVE_WINDOW_DAYS)

        for name in staff:
            if self.tracker.rest_equivalent(name) >= target:
                continue

            candidates = [
                day for day in self.dates
                if self.schedule[name][day].is_work
                and self.schedule[name][day].shift_name not in self._priority_shift_names(rule, day)
            ]
            # Quietest days first
            candidates.sort(key=self.tracker.daily_rest_count)

            for day in candidates:
                if self.tracker.rest_equivalent(name) >= target:
                    break
                previous = self.schedule[name][day]
                self._assign(name, day, REST)
                longest = max_consecutive_run(self._views[name], day - window, day + window, self.rules)
                if longest > self.rules.max_consecutive_days:
                    self._assign(name, day, previous)

    def _record_coverage(self, rule: ResolvedRule):
        for day in self.dates:
            for requirement in self._requirements(rule, day):
                assigned = self.tracker.daily_count(day, requirement.shift_name)
                if assigned != requirement.required_count:
                    self.coverage_issues.append(
                        f"{day.strftime(DATE_FORMAT)} [{rule.name}] {requirement.shift_name}: "
                        f"{assigned:g} assigned, {requirement.required_count} required"
                    )


def generate_person_based_schedule(persons: List[Person], shifts: List[ShiftDefinition], rules: Rules,
                                   start: date, end: date,
                                   history: Optional[Mapping[str, Mapping[str, str]]] = None) -> Dict[str, ScheduleEntry]:
    """Person-indexed schedule, the engine's native representation. Raises SchedulingError."""
    return AssignmentEngine(persons, shifts, rules, start, end, history).run()


def generate_schedule(persons: List[Person], shifts: List[ShiftDefinition], rules: Rules,
                      start: date, end: date,
                      history: Optional[Mapping[str, Mapping[str, str]]] = None
                      ) -> Tuple[Dict[str, List[PersonAssignment]], str]:
    """
    Date-indexed schedule plus a diagnostic message.

    The message is empty on normal completion, including runs where some
    requirements could not be met; it is only set when the run fails.
    """
    engine = AssignmentEngine(persons, shifts, rules, start, end, history)
    try:
        person_schedule = engine.run()
    except SchedulingError as e:
        logger.error(f"Schedule generation failed: {e}", exc_info=True)
        return {}, f"Schedule generation failed: {e}"

    return aggregate_by_date(person_schedule, engine.persons, shifts, rules), ""


class ShiftScheduler:
    """Runs the assignment engine against the data held by a DataManager"""

    def __init__(self, data_manager: DataManager):
        self.data_manager = data_manager

    def generate_schedule(self, start: date, end: date, save: bool = True) -> ScheduleResult:
        """
        Generate the schedule for [start, end] from the stored staff, shifts,
        rules and history, and store it unless ``save`` is False.
        """
        start_time = time.time()
        logger.info(f"Starting schedule generation for {start} to {end}")

        persons = self.data_manager.load_staff()
        shifts = self.data_manager.load_shift_definitions()
        rules = self.data_manager.load_rules()
        for problem in rules.validate([shift.name for shift in shifts]):
            logger.warning(f"Rules configuration: {problem}")

        history = self.data_manager.load_schedule_history(start)
        engine = AssignmentEngine(persons, shifts, rules, start, end, history)

        try:
            person_schedule = engine.run()
        except SchedulingError as e:
            logger.error(f"Schedule generation failed: {e}", exc_info=True)
            return ScheduleResult(
                success=False,
                schedule={},
                person_schedule={},
                statistics={},
                message=f"Schedule generation failed: {e}"
            )

        schedule = aggregate_by_date(person_schedule, engine.persons, shifts, rules)
        statistics = self.get_schedule_statistics(person_schedule, shifts, rules)
        violations = list(engine.coverage_issues)

        if not person_schedule:
            message = "Nothing to schedule for this period"
        else:
            message = f"Schedule generated for {len(person_schedule)} staff over {len(engine.dates)} days"
            if violations:
                message += f" with {len(violations)} unmet requirements"

        if save and person_schedule:
            self.data_manager.save_schedule(person_schedule)
            self.data_manager.set_setting("lastGeneratedPeriod", {
                "start": start.strftime(DATE_FORMAT),
                "end": end.strftime(DATE_FORMAT)
            })
            self.data_manager.save_data()

        duration = time.time() - start_time
        logger.info(f"Schedule generation completed in {duration:.2f}s for {len(engine.persons)} staff")

        return ScheduleResult(
            success=True,
            schedule=schedule,
            person_schedule=person_schedule,
            statistics=statistics,
            violations=violations,
            message=message
        )

    def get_schedule_statistics(self, person_schedule: Dict[str, ScheduleEntry],
                                shifts: List[ShiftDefinition], rules: Rules) -> Dict[str, Any]:
        """Daily and per-staff shift counts plus each person's rest equivalent"""
        return {
            "daily": daily_shift_counts(person_schedule, rules),
            "staff": staff_shift_counts(person_schedule, shifts, rules),
            "rest_equivalents": rest_equivalents(person_schedule, rules)
        }

    def validate_manual_assignment(self, person_name: str, date_str: str,
                                   shift_name: str, current_schedule: Dict[str, Dict[str, str]]) -> List[str]:
        """
        Validate a manual edit of one cell against the scheduling constraints.
        ``current_schedule`` is person -> date -> shift name.
        Returns list of constraint violations (empty if valid).
        """
        violations = []

        if self.data_manager.get_person(person_name) is None:
            violations.append(ConstraintViolation.PERSON_NOT_FOUND)
            return violations

        rules = self.data_manager.load_rules()
        is_rest = shift_name == rules.rest_shift_name
        if not is_rest and self.data_manager.get_shift_definition(shift_name) is None:
            violations.append(f"{ConstraintViolation.UNKNOWN_SHIFT}: {shift_name}")
            return violations

        try:
            day = datetime.strptime(date_str, DATE_FORMAT).date()
        except ValueError:
            violations.append(f"{ConstraintViolation.INVALID_DATE}: {date_str}")
            return violations

        history = self.data_manager.load_schedule_history(day, window_days=CONSECUTIVE_WINDOW_DAYS)
        stored = dict(history.get(person_name, {}))
        stored.update(current_schedule.get(person_name, {}))
        view = ChainMap({day: UNRESOLVED}, parse_history(stored, rules))

        if is_rest:
            if not can_assign_rest(view, day, rules):
                violations.append(ConstraintViolation.REST_PATTERN)
        elif not can_assign_shift(view, shift_name, day, rules):
            violations.append(ConstraintViolation.MAX_CONSECUTIVE)

        return violations
