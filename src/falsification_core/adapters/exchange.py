# falsification_core/adapters/exchange.py
"""
Export and import of whole sessions as JSON documents.

Import never trusts the file. Every invariant is checked again and
recoverable defects come back as warnings next to the session. Only
payloads that cannot yield a session at all raise SessionImportError.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Union

from pydantic import ValidationError

from falsification_core._compat import utc_now
from falsification_core.commitment import verify_prediction
from falsification_core.contracts import CURRENT_SCHEMA_VERSION, Session
from falsification_core.errors import SessionImportError
from falsification_core.integrity import session_checksum
from falsification_core.invariants import InvariantId, InvariantOutcome, check_session_invariants

logger = logging.getLogger(__name__)

EXPORT_FORMAT = "brenner-session-v1"

Payload = Union[str, bytes, Mapping[str, Any]]


@dataclass(frozen=True)
class SessionImportResult:
    session: Session
    warnings: tuple[str, ...] = ()
    invariant_outcomes: tuple[InvariantOutcome, ...] = field(default_factory=tuple)

    @property
    def clean(self) -> bool:
        return not self.warnings


def export_session(session: Session, *, now: datetime | None = None) -> dict[str, Any]:
    return {
        "format": EXPORT_FORMAT,
        "exported_at": (now or utc_now()).isoformat(),
        "checksum": session_checksum(session),
        "session": session.model_dump(mode="json"),
    }


def export_session_json(session: Session, *, now: datetime | None = None, indent: int | None = 2) -> str:
    return json.dumps(export_session(session, now=now), ensure_ascii=False, indent=indent)


def _parse(payload: Payload) -> Any:
    if isinstance(payload, (str, bytes)):
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise SessionImportError(f"Payload is not valid JSON: {exc}") from exc
    return payload


def import_session(payload: Payload) -> SessionImportResult:
    doc = _parse(payload)
    if not isinstance(doc, Mapping):
        raise SessionImportError(f"Expected a JSON object, got {type(doc).__name__}")

    warnings: list[str] = []

    if "session" in doc:
        raw = doc["session"]
        fmt = doc.get("format")
        if fmt != EXPORT_FORMAT:
            warnings.append(f"Unexpected format {fmt!r}; expected {EXPORT_FORMAT!r}")
    else:
        raw = doc
        warnings.append("Payload is a bare session without an export envelope")

    if not isinstance(raw, Mapping):
        raise SessionImportError("Session payload is not an object")
    session_id = raw.get("id")
    if not isinstance(session_id, str) or not session_id:
        raise SessionImportError("Session payload has no id")

    for name in Session.model_fields:
        if name != "id" and name not in raw:
            warnings.append(f"Field {name!r} missing; default used")

    version = raw.get("schema_version", CURRENT_SCHEMA_VERSION)
    if isinstance(version, int) and version > CURRENT_SCHEMA_VERSION:
        warnings.append(f"Schema version {version} is newer than supported ({CURRENT_SCHEMA_VERSION})")

    try:
        session = Session.model_validate(dict(raw))
    except ValidationError as exc:
        raise SessionImportError(f"Session {session_id} cannot be read: {exc.error_count()} invalid field(s)") from exc

    checksum = doc.get("checksum") if raw is not doc else None
    if checksum is None:
        warnings.append("No checksum present; content integrity not verified")
    elif checksum != session_checksum(session):
        warnings.append("Checksum mismatch: session content changed after export")

    outcomes = tuple(check_session_invariants(session))
    for outcome in outcomes:
        if not outcome.passed and outcome.invariant_id != InvariantId.LOCKED_PREDICTION_INTEGRITY:
            warnings.append(f"Invariant {outcome.invariant_id.value} failed: {outcome.reason}")

    for pid, prediction in session.locked_predictions.items():
        result = verify_prediction(prediction)
        if not result.valid:
            warnings.append(f"Prediction {pid} failed verification: {result.error}")

    for w in warnings:
        logger.warning("Import of session %s: %s", session_id, w)
    return SessionImportResult(session=session, warnings=tuple(warnings), invariant_outcomes=outcomes)
