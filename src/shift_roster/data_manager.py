"""
Data Manager for Shift Roster

Defines the roster data model (staff, shift definitions, rules and
schedule entries) and handles JSON persistence of it: loading with
backup recovery and migration, atomic saves, and the read/write
operations the scheduling engine's callers rely on.
"""

import json
import logging
from datetime import datetime, date, timedelta
from typing import Dict, List, Optional, Any, NamedTuple, Tuple
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


logger = logging.getLogger(__name__)

DEFAULT_REST_SHIFT_NAME = "rest"
DEFAULT_REST_COLOR = "#D3D3D3"
DEFAULT_HISTORY_WINDOW_DAYS = 14
DATE_FORMAT = "%Y-%m-%d"


class DataManagerError(Exception):
    """Base exception for DataManager operations"""
    pass


class DataFileCorruptedError(DataManagerError):
    """Raised when the data file is corrupted"""
    pass


class DataFileNotFoundError(DataManagerError):
    """Raised when the data file is not found"""
    pass


class DataSaveError(DataManagerError):
    """Raised when saving data fails"""
    pass


class DataValidationError(DataManagerError):
    """Raised when data validation fails"""
    pass


def _pick(data: Dict[str, Any], *keys: str, default=None):
    """Return the first present key; accepts camelCase and legacy PascalCase spellings."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


class AssignmentKind(Enum):
    UNRESOLVED = "unresolved"
    SHIFT = "shift"
    REST = "rest"


@dataclass(frozen=True)
class Assignment:
    """
    State of one person on one date while a schedule is being built.

    Only SHIFT carries a name. The rest literal and the empty string used
    by stored schedules are translated at the boundary by from_label/to_label.
    """
    kind: AssignmentKind
    shift_name: str = ""

    @classmethod
    def of_shift(cls, shift_name: str) -> 'Assignment':
        return cls(AssignmentKind.SHIFT, shift_name)

    @classmethod
    def from_label(cls, label: Optional[str], rest_name: str = DEFAULT_REST_SHIFT_NAME) -> 'Assignment':
        if not label:
            return UNRESOLVED
        if label == rest_name:
            return REST
        return cls.of_shift(label)

    def to_label(self, rest_name: str = DEFAULT_REST_SHIFT_NAME) -> str:
        if self.kind is AssignmentKind.REST:
            return rest_name
        if self.kind is AssignmentKind.SHIFT:
            return self.shift_name
        raise ValueError("An unresolved assignment has no label")

    @property
    def is_unresolved(self) -> bool:
        return self.kind is AssignmentKind.UNRESOLVED

    @property
    def is_rest(self) -> bool:
        return self.kind is AssignmentKind.REST

    @property
    def is_work(self) -> bool:
        return self.kind is AssignmentKind.SHIFT


UNRESOLVED = Assignment(AssignmentKind.UNRESOLVED)
REST = Assignment(AssignmentKind.REST)


@dataclass(frozen=True)
class Person:
    """Staff member; the name is the natural key within a run"""
    name: str
    employee_id: str = ""
    group: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "id": self.employee_id,
            "group": self.group
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Person':
        return cls(
            name=_pick(data, "name", "Name", default=""),
            employee_id=str(_pick(data, "id", "Id", default="")),
            group=_pick(data, "group", "Group", default="")
        )


@dataclass
class ShiftDefinition:
    """Named shift with its time of day and display color"""
    name: str
    start_time: str = ""
    end_time: str = ""
    color: str = "#FFFFFF"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shiftName": self.name,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "color": self.color
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShiftDefinition':
        return cls(
            name=_pick(data, "shiftName", "ShiftName", "name", default=""),
            start_time=_pick(data, "startTime", "StartTime", default=""),
            end_time=_pick(data, "endTime", "EndTime", default=""),
            color=_pick(data, "color", "Color", default="#FFFFFF")
        )


@dataclass
class ShiftRequirement:
    """Headcount needed for a shift on one class of day; priority None sorts last"""
    shift_name: str
    required_count: int = 0
    priority: Optional[int] = None

    @property
    def has_priority(self) -> bool:
        return self.priority is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shiftName": self.shift_name,
            "requiredCount": self.required_count,
            "priority": self.priority
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ShiftRequirement':
        priority = _pick(data, "priority", "Priority")
        return cls(
            shift_name=_pick(data, "shiftName", "ShiftName", default=""),
            required_count=int(_pick(data, "requiredCount", "RequiredCount", default=0)),
            priority=int(priority) if priority is not None else None
        )


def _requirements_from_list(items: Optional[List[Dict[str, Any]]]) -> List[ShiftRequirement]:
    return [ShiftRequirement.from_dict(item) for item in (items or [])]


@dataclass
class SchedulingRule:
    """Named requirement set governing a subset of staff (empty subset = everyone unclaimed)"""
    name: str
    weekday_shifts: List[ShiftRequirement] = field(default_factory=list)
    holiday_shifts: List[ShiftRequirement] = field(default_factory=list)
    applicable_staff: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleName": self.name,
            "weekdayShifts": [req.to_dict() for req in self.weekday_shifts],
            "holidayShifts": [req.to_dict() for req in self.holiday_shifts],
            "applicableStaff": list(self.applicable_staff)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SchedulingRule':
        return cls(
            name=_pick(data, "ruleName", "RuleName", "name", default=""),
            weekday_shifts=_requirements_from_list(_pick(data, "weekdayShifts", "WeekdayShifts")),
            holiday_shifts=_requirements_from_list(_pick(data, "holidayShifts", "HolidayShifts")),
            applicable_staff=list(_pick(data, "applicableStaff", "ApplicableStaff", default=[]))
        )


class ResolvedRule(NamedTuple):
    """The (weekday, holiday, applicable staff) tuple one pass pipeline runs over"""
    name: str
    weekday_requirements: Tuple[ShiftRequirement, ...]
    holiday_requirements: Tuple[ShiftRequirement, ...]
    applicable_staff: Tuple[str, ...]

    def requirements_for(self, is_holiday: bool) -> Tuple[ShiftRequirement, ...]:
        return self.holiday_requirements if is_holiday else self.weekday_requirements


@dataclass
class Rules:
    """Static scheduling configuration, read-only for the duration of a run"""
    max_consecutive_days: int = 5
    total_rest_days: int = 4
    custom_holidays: List[str] = field(default_factory=list)
    half_day_shifts: List[str] = field(default_factory=list)
    scheduling_rules: List[SchedulingRule] = field(default_factory=list)
    weekday: List[ShiftRequirement] = field(default_factory=list)
    holiday: List[ShiftRequirement] = field(default_factory=list)
    rest_shift_name: str = DEFAULT_REST_SHIFT_NAME

    def is_holiday(self, day: date) -> bool:
        return day.strftime(DATE_FORMAT) in self.custom_holidays

    def is_half_day(self, shift_name: str) -> bool:
        return shift_name in self.half_day_shifts

    def shift_day_value(self, shift_name: str) -> float:
        """Workday weight of a shift: 0.5 for half-day shifts, otherwise 1.0"""
        return 0.5 if self.is_half_day(shift_name) else 1.0

    def legacy_rule(self) -> ResolvedRule:
        return ResolvedRule("default", tuple(self.weekday), tuple(self.holiday), ())

    def resolved_rules(self) -> List[ResolvedRule]:
        """
        Named rules in configuration order, or the legacy weekday/holiday
        lists as a single implicit rule covering all staff when none exist.
        """
        if not self.scheduling_rules:
            return [self.legacy_rule()]
        return [
            ResolvedRule(
                rule.name,
                tuple(rule.weekday_shifts),
                tuple(rule.holiday_shifts),
                tuple(rule.applicable_staff)
            )
            for rule in self.scheduling_rules
        ]

    @property
    def uses_legacy_rules(self) -> bool:
        return not self.scheduling_rules

    def mark_weekends_as_holidays(self, start: date, end: date) -> int:
        """Add every Saturday and Sunday in [start, end] to the holiday list. Returns count added."""
        added = 0
        current = start
        while current <= end:
            date_str = current.strftime(DATE_FORMAT)
            if current.weekday() >= 5 and date_str not in self.custom_holidays:
                self.custom_holidays.append(date_str)
                added += 1
            current += timedelta(days=1)
        return added

    def validate(self, shift_names: Optional[List[str]] = None) -> List[str]:
        """
        Return configuration problems (empty if valid).
        The engine does not refuse to run on these; callers decide.
        """
        problems = []

        if self.max_consecutive_days < 1:
            problems.append(f"maxConsecutiveDays must be at least 1 (got {self.max_consecutive_days})")
        if self.total_rest_days < 0:
            problems.append(f"totalRestDays cannot be negative (got {self.total_rest_days})")

        for holiday in self.custom_holidays:
            try:
                datetime.strptime(holiday, DATE_FORMAT)
            except ValueError:
                problems.append(f"Custom holiday '{holiday}' is not a yyyy-MM-dd date")

        claimed: Dict[str, str] = {}
        for rule in self.scheduling_rules:
            if not rule.name.strip():
                problems.append("Scheduling rule name cannot be empty")
            for person_name in rule.applicable_staff:
                if person_name in claimed and claimed[person_name] != rule.name:
                    problems.append(
                        f"'{person_name}' is listed in both '{claimed[person_name]}' and '{rule.name}'"
                    )
                else:
                    claimed.setdefault(person_name, rule.name)

        requirement_sets = [("legacy weekday", self.weekday), ("legacy holiday", self.holiday)]
        for rule in self.scheduling_rules:
            requirement_sets.append((f"{rule.name} weekday", rule.weekday_shifts))
            requirement_sets.append((f"{rule.name} holiday", rule.holiday_shifts))

        for label, requirements in requirement_sets:
            for req in requirements:
                if not req.shift_name:
                    problems.append(f"{label}: shift name cannot be empty")
                    continue
                if req.required_count < 0:
                    problems.append(f"{label}: {req.shift_name} required count cannot be negative")
                if req.priority is not None and req.priority < 0:
                    problems.append(f"{label}: {req.shift_name} priority cannot be negative")
                if req.shift_name == self.rest_shift_name:
                    problems.append(f"{label}: the rest shift cannot be a requirement target")
                elif shift_names is not None and req.shift_name not in shift_names:
                    problems.append(f"{label}: unknown shift '{req.shift_name}'")

        return problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maxConsecutiveDays": self.max_consecutive_days,
            "totalRestDays": self.total_rest_days,
            "customHolidays": list(self.custom_holidays),
            "halfDayShifts": list(self.half_day_shifts),
            "schedulingRules": [rule.to_dict() for rule in self.scheduling_rules],
            "weekday": [req.to_dict() for req in self.weekday],
            "holiday": [req.to_dict() for req in self.holiday],
            "restShiftName": self.rest_shift_name
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rules':
        return cls(
            max_consecutive_days=int(_pick(data, "maxConsecutiveDays", "MaxConsecutiveDays", default=5)),
            total_rest_days=int(_pick(data, "totalRestDays", "TotalRestDays", default=4)),
            custom_holidays=list(_pick(data, "customHolidays", "CustomHolidays", default=[])),
            half_day_shifts=list(_pick(data, "halfDayShifts", "HalfDayShifts", default=[])),
            scheduling_rules=[
                SchedulingRule.from_dict(item)
                for item in _pick(data, "schedulingRules", "SchedulingRules", default=[])
            ],
            weekday=_requirements_from_list(_pick(data, "weekday", "Weekday")),
            holiday=_requirements_from_list(_pick(data, "holiday", "Holiday")),
            rest_shift_name=_pick(data, "restShiftName", "RestShiftName", default=DEFAULT_REST_SHIFT_NAME)
        )


@dataclass
class ScheduleEntry:
    """Finished per-person schedule: ISO date -> shift name (rest uses the rest name)"""
    name: str
    employee_id: str = ""
    group: str = ""
    shifts: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "id": self.employee_id,
            "group": self.group,
            "shifts": dict(self.shifts)
        }


@dataclass
class PersonAssignment:
    """One person's assignment on one date, as seen by the date-indexed view"""
    name: str
    employee_id: str
    group: str
    shift_name: str
    shift_color: str = "#FFFFFF"


def default_shift_definitions(rest_name: str = DEFAULT_REST_SHIFT_NAME) -> List[ShiftDefinition]:
    return [
        ShiftDefinition("A2+", "08:00", "12:00", "#FFD700"),
        ShiftDefinition("A2", "08:00", "17:00", "#FFA07A"),
        ShiftDefinition("B1", "08:30", "17:30", "#87CEFA"),
        ShiftDefinition("B2", "09:30", "18:30", "#98FB98"),
        ShiftDefinition("C", "12:00", "21:00", "#DDA0DD"),
        ShiftDefinition(rest_name, "", "", DEFAULT_REST_COLOR),
    ]


class DataManager:
    """Manages roster data persistence: staff, shifts, rules and schedules"""

    def __init__(self, data_file: str = "data/roster_data.json"):
        if data_file == "data/roster_data.json":
            # Use path relative to the package directory
            data_file = Path(__file__).parent.parent / "data" / "roster_data.json"
        self.data_file = Path(data_file)
        self.data = self._load_or_create_data()

    def _read_json(self, path: Path) -> Dict[str, Any]:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise DataFileCorruptedError(f"Top-level JSON value in {path} is not an object")
        return data

    def _recover_from_backup(self, backup_file: Path) -> Dict[str, Any]:
        """Restore the .bak file over the main file; fall back to defaults if it is unusable"""
        try:
            logger.info(f"Attempting recovery from backup file {backup_file}")
            data = self._read_json(backup_file)
            backup_file.replace(self.data_file)
            logger.info("Successfully recovered data from backup")
            return self._validate_and_migrate_data(data)
        except (json.JSONDecodeError, IOError, DataFileCorruptedError) as backup_e:
            logger.error(f"Backup file corrupted: {backup_e}")
            logger.info("Creating default data due to corrupted backup")
            return self._create_default_data()

    def _load_or_create_data(self) -> Dict[str, Any]:
        """Load existing data or create default structure with recovery from backup"""
        backup_file = self.data_file.with_suffix('.bak')

        if self.data_file.exists():
            try:
                return self._validate_and_migrate_data(self._read_json(self.data_file))
            except (json.JSONDecodeError, IOError, DataFileCorruptedError) as e:
                logger.error(f"Error loading main data file {self.data_file}: {e}")
                if backup_file.exists():
                    return self._recover_from_backup(backup_file)
                raise DataFileCorruptedError(f"Main data file corrupted and no backup available: {e}")

        if backup_file.exists():
            logger.info(f"Main data file missing, attempting recovery from backup {backup_file}")
            return self._recover_from_backup(backup_file)

        logger.info("No data file found, creating default data")
        return self._create_default_data()

    def _validate_and_migrate_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and migrate data structure to current version"""
        default_data = self._create_default_data()

        # Merge with defaults to ensure all keys exist
        for key in default_data:
            if key not in data:
                data[key] = default_data[key]
        for key, value in default_data["settings"].items():
            data["settings"].setdefault(key, value)

        data["staff"] = [Person.from_dict(item).to_dict() for item in data["staff"]]

        # Older files kept the schedule as a flat list of {date, shift, personName} items
        legacy_items = data.pop("schedule", None)
        if isinstance(legacy_items, list):
            for item in legacy_items:
                date_str = _pick(item, "date", "Date")
                person_name = _pick(item, "personName", "PersonName")
                shift_name = _pick(item, "shift", "Shift", default="")
                if date_str and person_name:
                    data["schedules"].setdefault(date_str, {})[person_name] = shift_name
            logger.info(f"Migrated {len(legacy_items)} legacy schedule items")

        if not data["shifts"]:
            rest_name = _pick(data["rules"], "restShiftName", "RestShiftName", default=DEFAULT_REST_SHIFT_NAME)
            data["shifts"] = [shift.to_dict() for shift in default_shift_definitions(rest_name)]

        return data

    def _create_default_data(self) -> Dict[str, Any]:
        """Create default data structure with the standard shift set"""
        return {
            "settings": {
                "appVersion": "1.0.0",
                "historyWindowDays": DEFAULT_HISTORY_WINDOW_DAYS,
                "lastGeneratedPeriod": None,
                "dataFile": str(self.data_file)
            },
            "staff": [],
            "shifts": [shift.to_dict() for shift in default_shift_definitions()],
            "rules": Rules().to_dict(),
            "schedules": {}  # {date: {person_name: shift_name}}
        }

    def _validate_saved_data(self) -> bool:
        """Validate that the saved data file matches current data"""
        try:
            if not self.data_file.exists():
                raise DataFileNotFoundError(f"Saved data file {self.data_file} does not exist")

            with open(self.data_file, 'r', encoding='utf-8') as f:
                saved_data = json.load(f)

            required_keys = ["settings", "staff", "shifts", "rules", "schedules"]
            for key in required_keys:
                if key not in saved_data:
                    raise DataValidationError(f"Required section '{key}' missing from saved data")

            if saved_data.get("settings", {}).get("appVersion") != self.data.get("settings", {}).get("appVersion"):
                raise DataValidationError("App version mismatch in saved data")

            return True

        except (json.JSONDecodeError, IOError) as e:
            raise DataValidationError(f"Failed to validate saved data: {e}")

    def save_data(self) -> bool:
        """Save current data to file atomically with validation"""
        temp_file = None
        backup_file = self.data_file.with_suffix('.bak')

        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)

            # Create backup of existing file if it exists
            if self.data_file.exists():
                self.data_file.replace(backup_file)

            # Write to temporary file first (atomic operation)
            temp_file = self.data_file.with_suffix('.tmp')

            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)

            temp_file.replace(self.data_file)

            self._validate_saved_data()

            return True

        except DataValidationError as e:
            logger.error(f"Data validation failed after save: {e}", exc_info=True)
            if backup_file.exists():
                try:
                    backup_file.replace(self.data_file)
                except OSError as restore_e:
                    logger.error(f"Failed to restore from backup: {restore_e}", exc_info=True)
            raise DataSaveError(f"Save operation failed validation: {e}")

        except (IOError, OSError) as e:
            logger.error(f"I/O error during save operation: {e}", exc_info=True)
            raise DataSaveError(f"Failed to save data due to I/O error: {e}")

        finally:
            if temp_file and temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError as cleanup_e:
                    logger.error(f"Failed to clean up temporary file {temp_file}: {cleanup_e}", exc_info=True)

    # Staff Management
    def load_staff(self) -> List[Person]:
        """Get list of staff in stored order"""
        return [Person.from_dict(item) for item in self.data.get("staff", [])]

    def save_staff(self, staff: List[Person]):
        names = [person.name for person in staff]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise DataValidationError(f"Staff names must be unique: {', '.join(duplicates)}")
        self.data["staff"] = [person.to_dict() for person in staff]

    def get_person(self, name: str) -> Optional[Person]:
        for item in self.data.get("staff", []):
            if item.get("name") == name:
                return Person.from_dict(item)
        return None

    def add_staff(self, name: str, employee_id: str = "", group: str = "") -> Person:
        """Add a staff member; names are the natural key and must be unique"""
        if not name.strip():
            raise DataValidationError("Staff name cannot be empty")
        if self.get_person(name) is not None:
            raise DataValidationError(f"Staff member '{name}' already exists")

        person = Person(name=name, employee_id=employee_id, group=group)
        self.data.setdefault("staff", []).append(person.to_dict())
        return person

    def remove_staff(self, name: str) -> bool:
        """Remove a staff member and every reference to them in rules and schedules"""
        staff = self.data.get("staff", [])
        remaining = [item for item in staff if item.get("name") != name]
        if len(remaining) == len(staff):
            return False
        self.data["staff"] = remaining

        rules = self.load_rules()
        for rule in rules.scheduling_rules:
            if name in rule.applicable_staff:
                rule.applicable_staff.remove(name)
        self.save_rules(rules)

        for day_data in self.data.get("schedules", {}).values():
            day_data.pop(name, None)
        return True

    # Shift Management
    def load_shift_definitions(self) -> List[ShiftDefinition]:
        return [ShiftDefinition.from_dict(item) for item in self.data.get("shifts", [])]

    def save_shift_definitions(self, shifts: List[ShiftDefinition]):
        names = [shift.name for shift in shifts]
        if len(set(names)) != len(names):
            raise DataValidationError("Shift names must be unique")
        self.data["shifts"] = [shift.to_dict() for shift in shifts]

    def get_shift_definition(self, name: str) -> Optional[ShiftDefinition]:
        for shift in self.load_shift_definitions():
            if shift.name == name:
                return shift
        return None

    # Rules Management
    def load_rules(self) -> Rules:
        return Rules.from_dict(self.data.get("rules", {}))

    def save_rules(self, rules: Rules):
        self.data["rules"] = rules.to_dict()

    # Schedule Management
    def load_schedule_history(self, before_date: date,
                              window_days: Optional[int] = None) -> Dict[str, Dict[str, str]]:
        """
        Stored assignments in the window of days ending just before before_date,
        as {person_name: {date_str: shift_name}}.
        """
        if window_days is None:
            window_days = int(self.get_setting("historyWindowDays", DEFAULT_HISTORY_WINDOW_DAYS))

        window_start = before_date - timedelta(days=window_days)
        history: Dict[str, Dict[str, str]] = {}

        for date_str, day_data in self.data.get("schedules", {}).items():
            try:
                day = datetime.strptime(date_str, DATE_FORMAT).date()
            except ValueError:
                logger.warning(f"Skipping stored schedule with invalid date key '{date_str}'")
                continue
            if not (window_start <= day < before_date):
                continue
            for person_name, shift_name in day_data.items():
                history.setdefault(person_name, {})[date_str] = shift_name

        return history

    def save_schedule(self, person_schedule: Dict[str, ScheduleEntry]):
        """Merge a finished person-indexed schedule into the stored schedules"""
        schedules = self.data.setdefault("schedules", {})
        for entry in person_schedule.values():
            for date_str, shift_name in entry.shifts.items():
                if not shift_name:
                    raise DataValidationError(
                        f"Refusing to store an unresolved assignment for {entry.name} on {date_str}"
                    )
                schedules.setdefault(date_str, {})[entry.name] = shift_name

    def get_schedule(self, start: date, end: date) -> Dict[str, Dict[str, str]]:
        """Stored assignments in [start, end] as {person_name: {date_str: shift_name}}"""
        result: Dict[str, Dict[str, str]] = {}
        current = start
        while current <= end:
            date_str = current.strftime(DATE_FORMAT)
            for person_name, shift_name in self.data.get("schedules", {}).get(date_str, {}).items():
                result.setdefault(person_name, {})[date_str] = shift_name
            current += timedelta(days=1)
        return result

    def clear_schedule(self, start: date, end: date) -> int:
        """Remove stored assignments in [start, end]. Returns number of dates cleared."""
        schedules = self.data.get("schedules", {})
        cleared = 0
        current = start
        while current <= end:
            if schedules.pop(current.strftime(DATE_FORMAT), None) is not None:
                cleared += 1
            current += timedelta(days=1)
        return cleared

    # Settings Management
    def get_setting(self, key: str, default=None):
        """Get application setting"""
        return self.data.get("settings", {}).get(key, default)

    def set_setting(self, key: str, value):
        """Set application setting"""
        self.data.setdefault("settings", {})[key] = value
