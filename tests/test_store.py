from __future__ import annotations

import json
from pathlib import Path

import pytest

from hudwatch.sessions.models import SessionState
from hudwatch.sessions.store import (
    ProjectLoadError,
    ProjectLoader,
    ProjectOrderStore,
    RecordStoreError,
    SessionRecordStore,
)


def test_missing_sessions_file_is_empty(tmp_path: Path) -> None:
    assert SessionRecordStore(tmp_path / "sessions.json").load() == {}


def test_records_are_parsed_and_invalid_ones_skipped(tmp_path: Path) -> None:
    sessions = tmp_path / "sessions.json"
    sessions.write_text(
        json.dumps(
            {
                "records": {
                    "/work/app": {
                        "state": "waiting",
                        "state_changed_at": "2026-03-01T12:00:00Z",
                        "session_id": "abc",
                        "context": {"updated_at": "2026-03-01T12:00:05Z", "percent_used": 42.5},
                    },
                    "/work/bad": {"state_changed_at": "not a date"},
                    "/work/odd": {"state": "sleeping"},
                }
            }
        ),
        encoding="utf-8",
    )

    records = SessionRecordStore(sessions).load()

    assert set(records) == {"/work/app", "/work/odd"}
    assert records["/work/app"].state is SessionState.WAITING
    assert records["/work/app"].freshness.isoformat() == "2026-03-01T12:00:05+00:00"
    assert records["/work/odd"].state is SessionState.IDLE


def test_malformed_sessions_file_raises(tmp_path: Path) -> None:
    sessions = tmp_path / "sessions.json"
    sessions.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(RecordStoreError):
        SessionRecordStore(sessions).load()


def test_locks_only_count_for_live_pids(tmp_path: Path) -> None:
    sessions = tmp_path / "sessions.json"
    sessions.write_text(
        json.dumps({"records": {"/work/app": {"state": "idle"}, "/work/lib": {"state": "idle"}}}),
        encoding="utf-8",
    )
    locks = tmp_path / "locks"
    locks.mkdir()
    (locks / "a.lock").write_text(json.dumps({"path": "/work/app", "pid": 100}), encoding="utf-8")
    (locks / "b.lock").write_text(json.dumps({"path": "/work/lib", "pid": 200}), encoding="utf-8")
    (locks / "c.lock").write_text("garbage", encoding="utf-8")

    store = SessionRecordStore(sessions, locks, is_alive=lambda pid: pid == 100)
    records = store.load()

    assert records["/work/app"].is_locked
    assert not records["/work/lib"].is_locked


def test_project_loader_reads_yaml(tmp_path: Path) -> None:
    path = tmp_path / "projects.yaml"
    path.write_text(
        "projects:\n"
        "  - path: /work/app\n"
        "    name: App\n"
        "  - /work/lib\n"
        "  - path: /work/app/\n",
        encoding="utf-8",
    )

    projects = ProjectLoader(path).load_all()

    assert [(p.path, p.name) for p in projects] == [("/work/app", "App"), ("/work/lib", "lib")]


def test_project_loader_aggregates_errors(tmp_path: Path) -> None:
    path = tmp_path / "projects.yaml"
    path.write_text("- path: ''\n- path: /work/ok\n- {}\n", encoding="utf-8")

    with pytest.raises(ProjectLoadError) as excinfo:
        ProjectLoader(path).load_all()

    assert "entry 0" in str(excinfo.value)
    assert "entry 2" in str(excinfo.value)


def test_project_loader_missing_file(tmp_path: Path) -> None:
    assert ProjectLoader(tmp_path / "missing.yaml").load_all() == []


def test_order_store_migrates_legacy_lists(tmp_path: Path) -> None:
    path = tmp_path / "project-order.json"
    path.write_text(json.dumps({"active": ["/b", "/a"], "idle": ["/c", "/a"]}), encoding="utf-8")
    store = ProjectOrderStore(path)

    assert store.migrate_if_needed() == ["/b", "/a", "/c"]
    assert json.loads(path.read_text(encoding="utf-8")) == {"global": ["/b", "/a", "/c"]}


def test_order_store_round_trip_and_bad_file(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "project-order.json"
    store = ProjectOrderStore(path)

    assert store.load() == []
    store.save(["/a", "/b", "/a"])
    assert store.load() == ["/a", "/b"]

    path.write_text("{oops", encoding="utf-8")
    assert store.load() == []
