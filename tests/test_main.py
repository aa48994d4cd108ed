import logging
import pytest
import sys
from pathlib import Path
from datetime import date

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from shift_roster.data_manager import DataManager, Rules, ShiftRequirement
import shift_roster.main as cli
from shift_roster.main import build_parser, main


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from attaching file and stdout handlers to the root logger"""
    monkeypatch.setattr(cli, "setup_logging", lambda *args: logging.getLogger(cli.__name__))
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)


@pytest.fixture
def data_file(tmp_path):
    path = tmp_path / "roster.json"
    dm = DataManager(str(path))
    for name in ["Alice", "Bob", "Carol", "Dave"]:
        dm.add_staff(name)
    dm.save_rules(Rules(total_rest_days=1, weekday=[ShiftRequirement("B1", 2, 1)]))
    dm.save_data()
    return path


def run_cli(data_file, tmp_path, *args):
    return main(["--data-file", str(data_file), "--log-dir", str(tmp_path / "logs"), *args])


def test_generate_saves_and_exports(data_file, tmp_path, capsys):
    export_path = tmp_path / "week.csv"
    code = run_cli(data_file, tmp_path, "generate", "--start", "2024-01-01", "--end", "2024-01-07",
                   "--export", str(export_path))

    assert code == 0
    assert export_path.exists()
    assert "Schedule generated for 4 staff over 7 days" in capsys.readouterr().out

    stored = DataManager(str(data_file)).get_schedule(date(2024, 1, 1), date(2024, 1, 7))
    assert set(stored) == {"Alice", "Bob", "Carol", "Dave"}


def test_generate_no_save(data_file, tmp_path):
    assert run_cli(data_file, tmp_path, "generate", "--start", "2024-01-01", "--end", "2024-01-07", "--no-save") == 0
    assert DataManager(str(data_file)).get_schedule(date(2024, 1, 1), date(2024, 1, 7)) == {}


def test_generate_rejects_unknown_export_suffix(data_file, tmp_path, capsys):
    code = run_cli(data_file, tmp_path, "generate", "--start", "2024-01-01", "--end", "2024-01-02",
                   "--export", str(tmp_path / "week.txt"))
    assert code == 1
    assert "ERROR" in capsys.readouterr().err


def test_mark_weekends(data_file, tmp_path, capsys):
    assert run_cli(data_file, tmp_path, "mark-weekends", "--start", "2024-01-01", "--end", "2024-01-14") == 0
    assert "Marked 4 weekend days" in capsys.readouterr().out
    assert DataManager(str(data_file)).load_rules().custom_holidays == [
        "2024-01-06", "2024-01-07", "2024-01-13", "2024-01-14"
    ]


def test_validate(data_file, tmp_path, capsys):
    assert run_cli(data_file, tmp_path, "validate") == 0

    dm = DataManager(str(data_file))
    dm.save_rules(Rules(weekday=[ShiftRequirement("Z9", 1)]))
    dm.save_data()
    assert run_cli(data_file, tmp_path, "validate") == 1
    assert "unknown shift 'Z9'" in capsys.readouterr().out


def test_parser_rejects_bad_dates():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["generate", "--start", "01/01/2024", "--end", "2024-01-07"])
