# falsification_core/adapters/persistence.py
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple, Union

from pydantic import BaseModel

from falsification_core.config import get_settings
from falsification_core.contracts import CURRENT_SCHEMA_VERSION, Session, SessionCommit, SessionSummary
from falsification_core.errors import (
    SessionConflictError,
    SessionNotFoundError,
    UnsupportedSchemaVersionError,
)
from falsification_core.integrity import session_checksum
from falsification_core.invariants import assert_session_invariants

logger = logging.getLogger(__name__)

JsonObj = Dict[str, Any]
PathLike = Union[str, Path]

STORE_FORMAT = "brenner-session-store-v1"
COMMIT_LOG_SUFFIX = ".commits.jsonl"

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def to_jsonable(x: Any) -> Any:
    if x is None:
        return None
    if isinstance(x, BaseModel):
        return x.model_dump(mode="json")
    if is_dataclass(x) and not isinstance(x, type):
        return to_jsonable(asdict(x))
    if isinstance(x, Enum):
        return x.value
    if isinstance(x, datetime):
        return x.isoformat()
    if isinstance(x, dict):
        return {str(k.value if isinstance(k, Enum) else k): to_jsonable(v) for k, v in x.items()}
    if isinstance(x, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in x]
    return x


def append_jsonl(path: PathLike, record: Any) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    obj = to_jsonable(record)

    # enforce "one JSON object per line"
    line = json.dumps(obj, ensure_ascii=False)
    with p.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


def read_jsonl(path: PathLike) -> Iterator[Tuple[JsonObj, JsonObj]]:
    """
    Yields (meta, obj) for each JSON object line.
    - meta includes line number and source path.
    - obj is the parsed dict.
    """
    p = Path(path)
    with p.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            s = line.strip()
            if not s:
                continue
            obj = json.loads(s)
            if not isinstance(obj, dict):
                raise ValueError(f"Expected JSON object on line {lineno}, got {type(obj).__name__}")
            meta: JsonObj = {"path": str(p), "lineno": lineno}
            yield meta, obj


def _check_schema_version(raw: Any) -> None:
    version = raw.get("schema_version", CURRENT_SCHEMA_VERSION) if isinstance(raw, dict) else CURRENT_SCHEMA_VERSION
    if int(version) > CURRENT_SCHEMA_VERSION:
        raise UnsupportedSchemaVersionError(int(version), CURRENT_SCHEMA_VERSION)


def _check_descends(session: Session, stored_head: Optional[str]) -> None:
    # commits are append-only, so a session built on the stored one still carries its head
    if stored_head and stored_head not in {c.id for c in session.commits}:
        raise SessionConflictError(session.id)


class SessionStore(Protocol):
    def load(self, session_id: str) -> Optional[Session]: ...

    def save(self, session: Session) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def list(self) -> list[SessionSummary]: ...


class InMemorySessionStore:
    """
    Keeps serialized documents so a load always hands back a fresh value.

    A save is refused with SessionConflictError when the stored document
    changed since this store last read or wrote it, or when the incoming
    session does not descend from the stored head commit.
    """

    def __init__(self) -> None:
        self._docs: dict[str, JsonObj] = {}
        self._seen: dict[str, str] = {}

    def load(self, session_id: str) -> Optional[Session]:
        raw = self._docs.get(session_id)
        if raw is None:
            return None
        _check_schema_version(raw)
        session = Session.model_validate(raw)
        self._seen[session_id] = session_checksum(session)
        return session

    def save(self, session: Session) -> None:
        assert_session_invariants(session)
        stored = self._docs.get(session.id)
        if stored is not None:
            if self._seen.get(session.id) != session_checksum(Session.model_validate(stored)):
                raise SessionConflictError(session.id)
            _check_descends(session, stored.get("head_commit_id"))
        elif session.id in self._seen:
            raise SessionConflictError(session.id)

        self._docs[session.id] = session.model_dump(mode="json")
        self._seen[session.id] = session_checksum(session)
        logger.info("Session %s saved (memory)", session.id)

    def delete(self, session_id: str) -> None:
        if self._docs.pop(session_id, None) is None:
            raise SessionNotFoundError(session_id)
        self._seen.pop(session_id, None)

    def list(self) -> list[SessionSummary]:
        summaries = [SessionSummary.from_session(Session.model_validate(d)) for d in self._docs.values()]
        return sorted(summaries, key=lambda s: s.updated_at, reverse=True)


class JsonFileSessionStore:
    """
    One JSON document per session under `root`, written by atomic replace.

    Each save compares the stored checksum with the one this instance last
    saw for the session and raises SessionConflictError when they differ.
    Commits are also appended to `<id>.commits.jsonl` as an audit log.
    """

    def __init__(self, root: PathLike | None = None) -> None:
        self.root = Path(root) if root is not None else get_settings().session_dir
        self._seen: dict[str, str] = {}

    def _path(self, session_id: str) -> Path:
        if not _SAFE_ID_RE.match(session_id):
            raise ValueError(f"Session id {session_id!r} is not usable as a file name")
        return self.root / f"{session_id}.json"

    def commit_log_path(self, session_id: str) -> Path:
        return self.root / f"{session_id}{COMMIT_LOG_SUFFIX}"

    def _read_doc(self, path: Path) -> JsonObj:
        doc = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(doc, dict) or not isinstance(doc.get("session"), dict):
            raise ValueError(f"{path} is not a session document")
        return doc

    def load(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not path.exists():
            return None
        doc = self._read_doc(path)
        _check_schema_version(doc["session"])
        session = Session.model_validate(doc["session"])

        stored = doc.get("checksum")
        if stored != session_checksum(session):
            logger.warning("Session %s: stored checksum does not match its content", session_id)
        self._seen[session_id] = stored
        return session

    def save(self, session: Session) -> None:
        assert_session_invariants(session)
        path = self._path(session.id)

        if path.exists():
            doc = self._read_doc(path)
            if self._seen.get(session.id) != doc.get("checksum"):
                raise SessionConflictError(session.id)
            _check_descends(session, doc["session"].get("head_commit_id"))
        elif session.id in self._seen:
            # deleted by someone else since we last saw it
            raise SessionConflictError(session.id)

        checksum = session_checksum(session)
        doc = {
            "format": STORE_FORMAT,
            "checksum": checksum,
            "session": session.model_dump(mode="json"),
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)
        self._seen[session.id] = checksum

        self._append_new_commits(session)
        logger.info("Session %s saved to %s", session.id, path)

    def _append_new_commits(self, session: Session) -> None:
        log_path = self.commit_log_path(session.id)
        logged: set[str] = set()
        if log_path.exists():
            logged = {str(rec.get("id")) for _, rec in read_jsonl(log_path)}
        for commit in session.commits:
            if commit.id not in logged:
                append_jsonl(log_path, commit)

    def read_commit_log(self, session_id: str) -> list[SessionCommit]:
        log_path = self.commit_log_path(session_id)
        if not log_path.exists():
            return []
        return [SessionCommit.model_validate(rec) for _, rec in read_jsonl(log_path)]

    def delete(self, session_id: str) -> None:
        path = self._path(session_id)
        if not path.exists():
            raise SessionNotFoundError(session_id)
        path.unlink()
        self._seen.pop(session_id, None)
        logger.info("Session %s deleted", session_id)

    def list(self) -> list[SessionSummary]:
        if not self.root.exists():
            return []
        summaries = []
        for path in sorted(self.root.glob("*.json")):
            try:
                doc = self._read_doc(path)
                summaries.append(SessionSummary.from_session(Session.model_validate(doc["session"])))
            except ValueError as exc:
                logger.warning("Skipping unreadable session file %s: %s", path, exc)
        return sorted(summaries, key=lambda s: s.updated_at, reverse=True)
