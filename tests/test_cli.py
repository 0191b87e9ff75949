"""Tests for the rachel-tasks command line."""

from pathlib import Path

import pytest

from rachel.cli import main


def _run(db_path: Path, *args: str) -> int:
    return main(["--db", str(db_path), *args])


def test_once_then_list(db_path: Path, capsys) -> None:
    assert _run(db_path, "once", "stretch", "reminder", "Stand up", "--delay-ms", "60000") == 0
    out = capsys.readouterr().out
    assert "Scheduled 'stretch' (id 1)" in out

    assert _run(db_path, "list") == 0
    out = capsys.readouterr().out
    assert "stretch" in out
    assert "reminder" in out
    assert "once" in out


def test_recurring(db_path: Path, capsys) -> None:
    assert _run(db_path, "recurring", "weekly", "0 9 * * 1", "agent", "Review the week") == 0
    out = capsys.readouterr().out
    assert "Scheduled 'weekly'" in out
    assert "T09:00:00+00:00" in out

    _run(db_path, "list")
    assert "0 9 * * 1" in capsys.readouterr().out


def test_cleanup_targets(db_path: Path) -> None:
    assert _run(db_path, "recurring", "nightly", "0 3 * * *", "cleanup", "chromium,playwright") == 0


def test_list_empty(db_path: Path, capsys) -> None:
    assert _run(db_path, "list") == 0
    assert capsys.readouterr().out.strip() == "No active tasks"


def test_remove(db_path: Path, capsys) -> None:
    _run(db_path, "once", "a", "bash", "true")
    _run(db_path, "once", "a", "bash", "false")
    capsys.readouterr()

    assert _run(db_path, "remove", "a") == 0
    assert "Removed 2 task(s) named 'a'" in capsys.readouterr().out

    assert _run(db_path, "remove", "a") == 0
    assert "Removed 0 task(s)" in capsys.readouterr().out


def test_invalid_cron_exits_1(db_path: Path, capsys) -> None:
    assert _run(db_path, "recurring", "bad", "0 9 * *", "bash", "true") == 1
    err = capsys.readouterr().err
    assert "error: Invalid cron pattern" in err

    _run(db_path, "list")
    assert "No active tasks" in capsys.readouterr().out


def test_invalid_kind_rejected_by_parser(db_path: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        _run(db_path, "once", "x", "email", "hi")
    assert exc_info.value.code == 2


def test_negative_delay_exits_1(db_path: Path, capsys) -> None:
    assert _run(db_path, "once", "x", "bash", "true", "--delay-ms", "-5") == 1
    assert "must not be negative" in capsys.readouterr().err


def test_delay_too_large_exits_1(db_path: Path, capsys) -> None:
    assert _run(db_path, "once", "far", "reminder", "x", "--delay-ms", str(10**16)) == 1
    assert "too large" in capsys.readouterr().err

    assert _run(db_path, "list") == 0
    assert "No active tasks" in capsys.readouterr().out
