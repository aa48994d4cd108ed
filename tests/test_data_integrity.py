import pytest
import sys
from pathlib import Path
from datetime import date, timedelta
import tempfile
import os
import json

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_roster.data_manager import (
    Assignment, DataFileCorruptedError, DataManager, DataValidationError, Rules,
    ScheduleEntry, SchedulingRule, ShiftRequirement, REST, UNRESOLVED
)


@pytest.fixture
def data_manager():
    """Fixture for a clean, isolated DataManager instance for each test."""
    with tempfile.NamedTemporaryFile(
        mode="w", suffix=".json", delete=False
    ) as temp_file:
        temp_path = temp_file.name
        json.dump({}, temp_file)

    dm = DataManager(temp_path)
    # Add a standard set of staff for consistent testing
    dm.add_staff("Alice", "1", "North")
    dm.add_staff("Bob", "2", "South")
    yield dm
    for suffix in (".json", ".bak", ".tmp"):
        leftover = Path(temp_path).with_suffix(suffix)
        if leftover.exists():
            os.unlink(leftover)


def test_remove_staff_scrubs_rules_and_schedules(data_manager):
    """
    Why this is important: names are the key everywhere. A removed person
    left in a rule's applicable list or in stored schedules would come back
    as a phantom claim or a ghost history entry.
    """
    rules = data_manager.load_rules()
    rules.scheduling_rules.append(SchedulingRule("Desk", applicable_staff=["Alice", "Bob"]))
    data_manager.save_rules(rules)
    data_manager.save_schedule({
        "Bob": ScheduleEntry("Bob", shifts={"2024-01-01": "B1", "2024-01-02": "rest"}),
        "Alice": ScheduleEntry("Alice", shifts={"2024-01-01": "rest"}),
    })

    assert data_manager.remove_staff("Bob")
    data_manager.save_data()

    reloaded = DataManager(data_manager.data_file)
    assert reloaded.get_person("Bob") is None
    assert reloaded.load_rules().scheduling_rules[0].applicable_staff == ["Alice"]
    assert reloaded.get_schedule(date(2024, 1, 1), date(2024, 1, 2)) == {"Alice": {"2024-01-01": "rest"}}
    assert not reloaded.remove_staff("Bob")


def test_staff_names_must_be_unique(data_manager):
    with pytest.raises(DataValidationError):
        data_manager.add_staff("Alice")
    with pytest.raises(DataValidationError):
        data_manager.add_staff("   ")

    staff = data_manager.load_staff()
    with pytest.raises(DataValidationError):
        data_manager.save_staff(staff + staff[:1])


def test_staff_round_trip(data_manager):
    data_manager.save_data()
    reloaded = DataManager(data_manager.data_file)
    alice = reloaded.get_person("Alice")
    assert (alice.employee_id, alice.group) == ("1", "North")
    assert [person.name for person in reloaded.load_staff()] == ["Alice", "Bob"]


def test_default_shifts_are_seeded(data_manager):
    names = [shift.name for shift in data_manager.load_shift_definitions()]
    assert names == ["A2+", "A2", "B1", "B2", "C", "rest"]
    assert data_manager.get_shift_definition("A2+").end_time == "12:00"
    assert data_manager.get_shift_definition("rest").color == "#D3D3D3"


def test_legacy_file_is_migrated(tmp_path):
    """
    Why this is important: older data files keep PascalCase rules and a flat
    schedule item list. Upgrading must not lose either.
    """
    old_data_file = tmp_path / "old_data.json"
    old_data_file.write_text(json.dumps({
        "staff": [{"Name": "Old", "Id": 7, "Group": "Night"}],
        "rules": {
            "MaxConsecutiveDays": 6,
            "TotalRestDays": 8,
            "HalfDayShifts": ["A2+"],
            "Weekday": [{"ShiftName": "B1", "RequiredCount": 2, "Priority": 1}],
            "Holiday": [{"ShiftName": "C", "RequiredCount": 1}],
        },
        "schedule": [
            {"Date": "2024-01-01", "Shift": "B1", "PersonName": "Old"},
            {"Date": "2024-01-02", "Shift": "rest", "PersonName": "Old"},
        ],
    }), encoding="utf-8")

    dm = DataManager(str(old_data_file))

    person = dm.get_person("Old")
    assert person.employee_id == "7" and person.group == "Night"

    rules = dm.load_rules()
    assert rules.max_consecutive_days == 6
    assert rules.total_rest_days == 8
    assert rules.weekday == [ShiftRequirement("B1", 2, 1)]
    assert rules.holiday == [ShiftRequirement("C", 1, None)]
    assert rules.uses_legacy_rules

    assert dm.get_schedule(date(2024, 1, 1), date(2024, 1, 2)) == {
        "Old": {"2024-01-01": "B1", "2024-01-02": "rest"}
    }
    assert "schedule" not in dm.data
    assert dm.get_setting("historyWindowDays") == 14


def test_recovery_from_backup(data_manager):
    data_manager.add_staff("Carol")
    data_manager.save_data()
    # Second save moves the first one to the .bak file
    data_manager.save_data()
    backup_file = data_manager.data_file.with_suffix(".bak")
    assert backup_file.exists()

    data_manager.data_file.write_text("{not json", encoding="utf-8")

    recovered = DataManager(data_manager.data_file)
    assert recovered.get_person("Carol") is not None
    assert not backup_file.exists()


def test_missing_main_file_recovered_from_backup(data_manager):
    data_manager.save_data()
    data_manager.save_data()
    data_manager.data_file.unlink()

    recovered = DataManager(data_manager.data_file)
    assert recovered.get_person("Alice") is not None


def test_corrupted_file_without_backup_raises(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(DataFileCorruptedError):
        DataManager(str(broken))


def test_schedule_history_window(data_manager):
    start = date(2023, 12, 20)
    shifts = {(start + timedelta(days=offset)).isoformat(): "B1" for offset in range(17)}
    data_manager.save_schedule({"Alice": ScheduleEntry("Alice", shifts=shifts)})

    history = data_manager.load_schedule_history(date(2024, 1, 1), window_days=7)
    assert sorted(history["Alice"]) == [f"2023-12-{day}" for day in range(25, 32)]

    default_window = data_manager.load_schedule_history(date(2024, 1, 1))
    assert len(default_window["Alice"]) == 12


def test_unresolved_entries_are_not_stored(data_manager):
    with pytest.raises(DataValidationError):
        data_manager.save_schedule({"Alice": ScheduleEntry("Alice", shifts={"2024-01-01": ""})})


def test_clear_schedule(data_manager):
    data_manager.save_schedule({
        "Alice": ScheduleEntry("Alice", shifts={"2024-01-01": "B1", "2024-01-02": "B1", "2024-01-05": "C"})
    })
    assert data_manager.clear_schedule(date(2024, 1, 1), date(2024, 1, 3)) == 2
    assert data_manager.get_schedule(date(2024, 1, 1), date(2024, 1, 31)) == {"Alice": {"2024-01-05": "C"}}


def test_rules_round_trip():
    rules = Rules(
        max_consecutive_days=4,
        total_rest_days=6,
        custom_holidays=["2024-05-01"],
        half_day_shifts=["A2+"],
        scheduling_rules=[SchedulingRule(
            "Desk",
            weekday_shifts=[ShiftRequirement("B1", 2, 1)],
            holiday_shifts=[ShiftRequirement("C", 1)],
            applicable_staff=["Alice"]
        )],
        rest_shift_name="off"
    )
    assert Rules.from_dict(rules.to_dict()) == rules
    assert [rule.name for rule in rules.resolved_rules()] == ["Desk"]


def test_legacy_lists_become_default_rule():
    rules = Rules(weekday=[ShiftRequirement("B1", 2, 1)], holiday=[ShiftRequirement("C", 1)])
    resolved = rules.resolved_rules()

    assert len(resolved) == 1
    assert resolved[0].name == "default"
    assert resolved[0].applicable_staff == ()
    assert resolved[0].requirements_for(True) == (ShiftRequirement("C", 1),)


def test_mark_weekends_as_holidays():
    rules = Rules(custom_holidays=["2024-01-06"])
    # 6 and 7 January 2024 are a Saturday and a Sunday
    assert rules.mark_weekends_as_holidays(date(2024, 1, 1), date(2024, 1, 14)) == 3
    assert rules.custom_holidays == ["2024-01-06", "2024-01-07", "2024-01-13", "2024-01-14"]
    assert rules.is_holiday(date(2024, 1, 13))
    assert not rules.is_holiday(date(2024, 1, 12))


@pytest.mark.parametrize("rules, fragment", [
    (Rules(max_consecutive_days=0), "maxConsecutiveDays"),
    (Rules(total_rest_days=-1), "totalRestDays"),
    (Rules(custom_holidays=["01/05/2024"]), "not a yyyy-MM-dd date"),
    (Rules(weekday=[ShiftRequirement("Z9", 1)]), "unknown shift 'Z9'"),
    (Rules(weekday=[ShiftRequirement("rest", 1)]), "rest shift cannot be a requirement"),
    (Rules(holiday=[ShiftRequirement("B1", -1)]), "cannot be negative"),
    (Rules(scheduling_rules=[SchedulingRule("A", applicable_staff=["Alice"]),
                             SchedulingRule("B", applicable_staff=["Alice"])]), "listed in both"),
])
def test_rules_validation(rules, fragment):
    problems = rules.validate(["A2+", "A2", "B1", "B2", "C"])
    assert any(fragment in problem for problem in problems)


def test_valid_rules_have_no_problems():
    rules = Rules(weekday=[ShiftRequirement("B1", 2, 1)])
    assert rules.validate(["B1"]) == []


def test_assignment_labels():
    assert Assignment.from_label("") is UNRESOLVED
    assert Assignment.from_label("rest") is REST
    assert Assignment.from_label("off", rest_name="off") is REST
    assert Assignment.from_label("B1") == Assignment.of_shift("B1")
    assert REST.to_label("off") == "off"
    assert Assignment.of_shift("B1").to_label() == "B1"
    with pytest.raises(ValueError):
        UNRESOLVED.to_label()
