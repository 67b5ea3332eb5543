from __future__ import annotations

import json
from datetime import datetime

import pytest

from falsification_core.adapters.exchange import (
    EXPORT_FORMAT,
    export_session,
    export_session_json,
    import_session,
)
from falsification_core.commitment import lock_prediction
from falsification_core.contracts import PredictionType, Session
from falsification_core.errors import SessionImportError
from falsification_core.sessions import record_locked_prediction


def test_export_then_import_is_clean(two_hypothesis_session: Session, now: datetime) -> None:
    envelope = export_session(two_hypothesis_session, now=now)
    assert envelope["format"] == EXPORT_FORMAT
    assert envelope["exported_at"] == now.isoformat()

    result = import_session(export_session_json(two_hypothesis_session, now=now))
    assert result.clean
    assert result.warnings == ()
    assert result.session == two_hypothesis_session
    assert all(o.passed for o in result.invariant_outcomes)


def test_import_accepts_an_already_parsed_mapping(seeded_session: Session, now: datetime) -> None:
    result = import_session(export_session(seeded_session, now=now))
    assert result.clean


@pytest.mark.parametrize(
    "payload, message",
    [
        ("{not json", "not valid JSON"),
        ("[1, 2]", "Expected a JSON object"),
        ('{"format": "brenner-session-v1", "session": "nope"}', "not an object"),
        ('{"session": {"phase": "intake"}}', "has no id"),
        ('{"session": {"id": "S-1", "phase": "nonsense"}}', "cannot be read"),
    ],
)
def test_unrecoverable_payloads_raise(payload: str, message: str) -> None:
    with pytest.raises(SessionImportError, match=message):
        import_session(payload)


def test_bare_session_imports_with_warnings(seeded_session: Session) -> None:
    raw = seeded_session.model_dump(mode="json")
    del raw["notes"]

    result = import_session(json.dumps(raw))
    assert not result.clean
    assert result.session.id == seeded_session.id
    assert "Payload is a bare session without an export envelope" in result.warnings
    assert "Field 'notes' missing; default used" in result.warnings
    assert "No checksum present; content integrity not verified" in result.warnings


def test_edited_export_reports_checksum_mismatch(seeded_session: Session, now: datetime) -> None:
    envelope = export_session(seeded_session, now=now)
    envelope["session"]["research_question"] = "Something else entirely?"
    envelope["format"] = "legacy"

    result = import_session(envelope)
    assert result.session.research_question == "Something else entirely?"
    assert "Checksum mismatch: session content changed after export" in result.warnings
    assert "Unexpected format 'legacy'; expected 'brenner-session-v1'" in result.warnings


def test_invariant_failures_become_warnings(two_hypothesis_session: Session, now: datetime) -> None:
    envelope = export_session(two_hypothesis_session, now=now)
    envelope["session"]["alternative_hypothesis_ids"] = []
    envelope["session"]["schema_version"] = 3

    result = import_session(envelope)
    assert any(w.startswith("Invariant role_exclusivity.v1 failed") for w in result.warnings)
    assert "Schema version 3 is newer than supported (1)" in result.warnings
    failed = [o.code for o in result.invariant_outcomes if not o.passed]
    assert failed == ["orphaned_hypothesis"]


def test_tampered_prediction_is_flagged_once(seeded_session: Session, now: datetime) -> None:
    hid = seeded_session.primary_hypothesis_id
    locked = lock_prediction(hid, PredictionType.IF_TRUE, 0, "Heavier users report more anxiety", now=now)
    session = record_locked_prediction(seeded_session, locked, now=now)

    envelope = export_session(session, now=now)
    envelope["session"]["locked_predictions"][locked.id]["original_text"] = "Lighter users report more anxiety"
    envelope["checksum"] = None

    result = import_session(envelope)
    prediction_warnings = [w for w in result.warnings if w.startswith("Prediction ")]
    assert prediction_warnings == [
        f"Prediction {locked.id} failed verification: Hash mismatch: prediction has been tampered with"
    ]
    assert not any("locked_prediction_integrity" in w for w in result.warnings)
    assert result.session.locked_predictions[locked.id].original_text == "Lighter users report more anxiety"
