# tests/test_cli.py

from __future__ import annotations

import json
from pathlib import Path

import pytest

from taskledger.cli import main


@pytest.fixture()
def run(tmp_path: Path, capsys):
    data_dir = tmp_path / "data"

    def _run(*args: str):
        code = main([args[0], "--dir", str(data_dir), "--no-history", *args[1:]])
        return code, capsys.readouterr().out

    return _run


def _only_task(run) -> dict:
    code, out = run("list", "--json")
    assert code == 0
    tasks = json.loads(out)
    assert len(tasks) == 1
    return tasks[0]


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 1
    assert "usage" in capsys.readouterr().out


def test_add_list_and_show(run) -> None:
    code, out = run("add", "Schema", "Design the schema", "--agent", "db-expert")
    assert code == 0
    assert "Created" in out

    task = _only_task(run)
    assert task["name"] == "Schema"
    assert task["agent"] == "db-expert"

    code, out = run("show", task["id"])
    assert code == 0
    assert json.loads(out)["description"] == "Design the schema"


def test_start_blocked_then_check(run) -> None:
    run("add", "A", "first")
    a = _only_task(run)
    run("add", "B", "second", "--dep", a["id"])
    _, out = run("list", "--json")
    b = next(t for t in json.loads(out) if t["name"] == "B")

    code, out = run("start", b["id"])
    assert code == 1
    assert "blocked" in out

    assert run("complete", a["id"], "--summary", "done")[0] == 0
    code, out = run("check", b["id"])
    assert code == 0
    assert "can be executed" in out


def test_plan_from_json_file(run, tmp_path: Path) -> None:
    plan = tmp_path / "plan.json"
    plan.write_text(json.dumps([
        {"name": "Design", "description": "d"},
        {"name": "Build", "description": "b", "dependencies": ["Design", "Ghost"]},
    ]))

    code, out = run("plan", str(plan), "--mode", "append")

    assert code == 0
    assert "Planned 2 task(s)" in out
    assert "Ghost" in out


def test_clear_requires_confirmation(run) -> None:
    run("add", "A", "d")

    code, out = run("clear")
    assert code == 1
    assert "--yes" in out

    code, _ = run("clear", "--yes")
    assert code == 0
    _, out = run("list", "--json")
    assert json.loads(out) == []


def test_archive_restore_and_search(run) -> None:
    run("add", "Payments", "stripe integration")
    run("archive", "-d", "before wipe")
    run("clear", "--yes")

    _, out = run("archives", "--json")
    archives = json.loads(out)
    assert archives[0]["tasksCount"] == 1

    code, _ = run("restore", archives[0]["filename"])
    assert code == 0
    assert _only_task(run)["name"] == "Payments"

    _, out = run("search", "STRIPE", "--json")
    assert json.loads(out)["pagination"]["totalResults"] >= 1


def test_delete_and_recover(run) -> None:
    run("add", "Temp", "d")
    task = _only_task(run)

    assert run("delete", task["id"])[0] == 0
    _, out = run("deleted", "--json")
    assert json.loads(out)[0]["task"]["id"] == task["id"]

    assert run("recover", task["id"])[0] == 0
    assert _only_task(run)["id"] == task["id"]


def test_request_and_complexity(run) -> None:
    run("request", "Build a todo app")
    _, out = run("request")
    assert "Build a todo app" in out

    run("add", "A", "d")
    code, out = run("complexity", _only_task(run)["id"])
    assert code == 0
    assert "Complexity: low" in out


def test_complete_with_details(run) -> None:
    run("add", "A", "d")
    task = _only_task(run)

    code, _ = run("complete", task["id"], "--details", '{"keyAccomplishments": ["x"]}')

    assert code == 0
    assert _only_task(run)["completionDetails"] == {"keyAccomplishments": ["x"]}


def test_complete_rejects_malformed_details(run, capsys) -> None:
    run("add", "A", "d")
    task = _only_task(run)

    with pytest.raises(SystemExit) as exc:
        run("complete", task["id"], "--details", "{not json")

    assert exc.value.code == 2
    assert "invalid JSON" in capsys.readouterr().err
