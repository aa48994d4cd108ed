"""
Tests for the work-shift and rest-day eligibility predicates.
"""

import pytest
import sys
from pathlib import Path
from datetime import date, timedelta

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_roster.data_manager import Assignment, Rules, REST, UNRESOLVED
from shift_roster.eligibility import (
    can_assign_rest, can_assign_shift, combined_view, max_consecutive_run,
    nearest_rest_distance, parse_history, rest_equivalent, work_run_ending
)

WORK = Assignment.of_shift("B1")
HALF = Assignment.of_shift("A2+")


def jan(day: int) -> date:
    return date(2024, 1, day)


def view_of(**days):
    """view_of(d1=WORK, d2=REST) -> {date(2024, 1, 1): WORK, ...}"""
    return {jan(int(key[1:])): value for key, value in days.items()}


@pytest.fixture
def rules():
    return Rules(max_consecutive_days=5, total_rest_days=4, half_day_shifts=["A2+"])


def test_shift_refused_when_day_already_assigned(rules):
    view = view_of(d3=REST)
    assert not can_assign_shift(view, "B1", jan(3), rules)


def test_sixth_consecutive_day_is_refused(rules):
    view = view_of(d1=WORK, d2=WORK, d3=WORK, d4=WORK, d5=WORK)
    assert not can_assign_shift(view, "B1", jan(6), rules)


def test_fifth_consecutive_day_is_allowed(rules):
    view = view_of(d1=WORK, d2=WORK, d3=WORK, d4=WORK)
    assert can_assign_shift(view, "B1", jan(5), rules)


def test_run_is_checked_forward_as_well(rules):
    """
    Why this is important: a half-day extension can place work after the
    candidate date, so the window must look both ways.
    """
    view = view_of(d7=WORK, d8=WORK, d9=WORK, d10=WORK, d11=WORK)
    assert not can_assign_shift(view, "B1", jan(6), rules)


def test_half_day_shifts_count_half_toward_the_run(rules):
    view = view_of(d1=HALF, d2=HALF, d3=HALF, d4=HALF, d5=HALF)
    # 5 x 0.5 + 1.0 = 3.5 days of work
    assert can_assign_shift(view, "B1", jan(6), rules)
    assert max_consecutive_run(view, jan(1), jan(6), rules, override=(jan(6), WORK)) == 3.5


def test_rest_and_gaps_reset_the_run(rules):
    view = view_of(d1=WORK, d2=WORK, d3=WORK, d4=WORK, d5=REST)
    assert can_assign_shift(view, "B1", jan(6), rules)

    gapped = view_of(d1=WORK, d2=WORK, d4=WORK, d5=WORK)
    assert max_consecutive_run(gapped, jan(1), jan(5), rules) == 2


def test_override_does_not_touch_the_view(rules):
    view = view_of(d1=WORK)
    max_consecutive_run(view, jan(1), jan(3), rules, override=(jan(2), WORK))
    assert jan(2) not in view


def test_rest_after_rest_refused_without_long_run(rules):
    view = view_of(d4=WORK, d5=WORK, d6=REST)
    assert not can_assign_rest(view, jan(7), rules)


def test_rest_after_rest_allowed_when_it_breaks_five_workdays(rules):
    view = view_of(d1=WORK, d2=WORK, d3=WORK, d4=WORK, d5=WORK, d6=REST)
    assert work_run_ending(view, jan(5)) == 5
    assert can_assign_rest(view, jan(7), rules)


def test_isolated_workday_between_rests_refused(rules):
    view = view_of(d5=REST, d6=WORK)
    assert nearest_rest_distance(view, jan(7)) == 2
    assert not can_assign_rest(view, jan(7), rules)


def test_rest_separated_by_work_refused(rules):
    view = view_of(d3=REST, d4=WORK, d5=WORK, d6=WORK)
    assert not can_assign_rest(view, jan(7), rules)


def test_rest_separated_only_by_unassigned_days_allowed(rules):
    view = view_of(d4=REST)
    assert nearest_rest_distance(view, jan(7)) == 3
    assert can_assign_rest(view, jan(7), rules)


def test_rest_allowed_after_five_workdays(rules):
    view = view_of(d1=REST, d2=WORK, d3=WORK, d4=WORK, d5=WORK, d6=WORK)
    assert nearest_rest_distance(view, jan(7)) is None
    assert can_assign_rest(view, jan(7), rules)


def test_rest_refused_when_day_already_assigned(rules):
    view = view_of(d7=WORK)
    assert not can_assign_rest(view, jan(7), rules)


def test_rest_allowed_on_empty_schedule(rules):
    assert can_assign_rest({}, jan(7), rules)


def test_rest_equivalent_counts_half_days(rules):
    assignments = [REST, HALF, HALF, WORK, UNRESOLVED]
    assert rest_equivalent(assignments, rules) == 2.0


def test_parse_history_translates_labels(rules):
    parsed = parse_history({"2024-01-01": "rest", "2024-01-02": "B1", "2024-01-03": "", "bad": "B1"}, rules)

    assert parsed == {
        jan(1): REST,
        jan(2): WORK,
        jan(3): UNRESOLVED,
    }


def test_combined_view_prefers_schedule_and_stays_live():
    history = {jan(1): REST, jan(2): WORK}
    schedule = {jan(2): UNRESOLVED}
    view = combined_view(history, schedule)

    assert view[jan(1)] == REST
    assert view[jan(2)] == UNRESOLVED

    schedule[jan(3)] = WORK
    assert view[jan(3)] == WORK
    assert history == {jan(1): REST, jan(2): WORK}


def test_history_blocks_across_period_boundary(rules):
    """
    Why this is important: without history the engine would happily start a
    new period with a sixth straight workday.
    """
    history = {jan(1) + timedelta(days=offset): WORK for offset in range(5)}
    view = combined_view(history, {jan(6): UNRESOLVED})
    assert not can_assign_shift(view, "B1", jan(6), rules)
