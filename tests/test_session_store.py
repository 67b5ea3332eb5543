from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from falsification_core.adapters.persistence import (
    STORE_FORMAT,
    InMemorySessionStore,
    JsonFileSessionStore,
)
from falsification_core.contracts import CommitTrigger, Session
from falsification_core.errors import (
    SessionConflictError,
    SessionInvariantError,
    SessionNotFoundError,
    UnsupportedSchemaVersionError,
)
from falsification_core.integrity import session_checksum
from falsification_core.sessions import create_session, record_evidence
from falsification_core.versioning import append_commit


def test_save_then_load_roundtrip(seeded_session: Session, tmp_path: Path) -> None:
    store = JsonFileSessionStore(tmp_path)
    store.save(seeded_session)

    doc = json.loads((tmp_path / f"{seeded_session.id}.json").read_text(encoding="utf-8"))
    assert doc["format"] == STORE_FORMAT
    assert doc["checksum"] == session_checksum(seeded_session)

    loaded = store.load(seeded_session.id)
    assert loaded == seeded_session
    assert session_checksum(loaded) == session_checksum(seeded_session)


def test_load_missing_session_returns_none(tmp_path: Path) -> None:
    assert JsonFileSessionStore(tmp_path).load("SESSION-20260211-404") is None


def test_unsafe_ids_are_refused(tmp_path: Path) -> None:
    store = JsonFileSessionStore(tmp_path)
    with pytest.raises(ValueError):
        store.load("../escape")
    with pytest.raises(ValueError):
        store.delete("")


def test_save_refuses_a_session_that_breaks_invariants(seeded_session: Session, tmp_path: Path) -> None:
    broken = seeded_session.model_copy(update={"primary_hypothesis_id": ""})
    with pytest.raises(SessionInvariantError):
        JsonFileSessionStore(tmp_path).save(broken)
    assert not (tmp_path / f"{seeded_session.id}.json").exists()


def test_concurrent_writers_conflict(seeded_session: Session, tmp_path: Path, now: datetime) -> None:
    first = JsonFileSessionStore(tmp_path)
    first.save(seeded_session)

    second = JsonFileSessionStore(tmp_path)
    mine = second.load(seeded_session.id)
    assert mine is not None
    second.save(record_evidence(mine, "EV-001", now=now + timedelta(minutes=1)))

    # the first store still holds the checksum of its own save
    with pytest.raises(SessionConflictError):
        first.save(record_evidence(seeded_session, "EV-002", now=now + timedelta(minutes=2)))

    refreshed = first.load(seeded_session.id)
    assert refreshed is not None and refreshed.evidence_ids == ["EV-001"]
    first.save(record_evidence(refreshed, "EV-002", now=now + timedelta(minutes=2)))


def test_saving_over_an_unseen_file_conflicts(seeded_session: Session, tmp_path: Path) -> None:
    JsonFileSessionStore(tmp_path).save(seeded_session)
    with pytest.raises(SessionConflictError):
        JsonFileSessionStore(tmp_path).save(seeded_session)


def test_newer_schema_version_is_rejected_on_load(seeded_session: Session, tmp_path: Path) -> None:
    store = JsonFileSessionStore(tmp_path)
    store.save(seeded_session)
    path = tmp_path / f"{seeded_session.id}.json"
    doc = json.loads(path.read_text(encoding="utf-8"))
    doc["session"]["schema_version"] = 2
    path.write_text(json.dumps(doc), encoding="utf-8")

    with pytest.raises(UnsupportedSchemaVersionError) as excinfo:
        store.load(seeded_session.id)
    assert (excinfo.value.found, excinfo.value.supported) == (2, 1)


def test_commit_log_is_append_only(seeded_session: Session, tmp_path: Path, now: datetime) -> None:
    store = JsonFileSessionStore(tmp_path)
    store.save(seeded_session)
    assert [c.id for c in store.read_commit_log(seeded_session.id)] == [c.id for c in seeded_session.commits]

    later = append_commit(seeded_session, CommitTrigger.AUTO_SAVE, "autosave", now=now + timedelta(minutes=5))
    store.save(later)
    log = store.read_commit_log(seeded_session.id)
    assert [c.id for c in log] == [c.id for c in later.commits]
    assert log[-1].message == "autosave"

    assert store.read_commit_log("SESSION-20260211-404") == []


def test_delete_and_list(seeded_session: Session, tmp_path: Path, now: datetime) -> None:
    store = JsonFileSessionStore(tmp_path)
    assert JsonFileSessionStore(tmp_path / "absent").list() == []

    older = create_session("SESSION-20260210-001", now=now - timedelta(days=1))
    store.save(older)
    store.save(seeded_session)
    (tmp_path / "garbage.json").write_text("{not json", encoding="utf-8")

    summaries = store.list()
    assert [s.id for s in summaries] == [seeded_session.id, older.id]
    assert summaries[0].primary_hypothesis_id == seeded_session.primary_hypothesis_id

    store.delete(older.id)
    assert store.load(older.id) is None
    with pytest.raises(SessionNotFoundError):
        store.delete(older.id)


def test_default_root_comes_from_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BRENNER_SESSION_DIR", str(tmp_path / "sessions"))
    assert JsonFileSessionStore().root == tmp_path / "sessions"


def test_in_memory_store(seeded_session: Session, fresh_session: Session) -> None:
    store = InMemorySessionStore()
    assert store.load(seeded_session.id) is None

    store.save(fresh_session)
    assert store.load(fresh_session.id) == fresh_session
    store.save(seeded_session)
    assert [s.id for s in store.list()] == [seeded_session.id]

    store.delete(seeded_session.id)
    assert store.list() == []
    with pytest.raises(SessionNotFoundError):
        store.delete(seeded_session.id)


def test_in_memory_store_detects_concurrent_writers(seeded_session: Session, now: datetime) -> None:
    store = InMemorySessionStore()
    store.save(seeded_session)
    a = store.load(seeded_session.id)
    b = store.load(seeded_session.id)
    assert a is not None and b is not None

    store.save(record_evidence(a, "EV-A", now=now + timedelta(minutes=1)))
    with pytest.raises(SessionConflictError):
        store.save(record_evidence(b, "EV-B", now=now + timedelta(minutes=2)))

    current = store.load(seeded_session.id)
    assert current is not None and current.evidence_ids == ["EV-A"]
    store.save(record_evidence(current, "EV-B", now=now + timedelta(minutes=2)))
    assert store.load(seeded_session.id).evidence_ids == ["EV-A", "EV-B"]


def test_in_memory_store_accepts_a_save_after_its_own_delete(seeded_session: Session) -> None:
    store = InMemorySessionStore()
    store.save(seeded_session)
    store.delete(seeded_session.id)
    store.save(seeded_session)
    assert store.load(seeded_session.id) == seeded_session
