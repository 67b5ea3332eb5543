# falsification_core/versioning.py
"""
Append-only commit log of a session.

Each commit stores a compact snapshot and a hash over its parent id,
timestamp, trigger, message and snapshot. Following parent links from
the head must reach a single root commit.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterator

from falsification_core._compat import utc_now
from falsification_core.contracts import CommitTrigger, Session, SessionCommit, SessionSnapshot
from falsification_core.errors import CommitChainError, CommitNotFoundError
from falsification_core.integrity import Digest, content_hash, sha256_hex

logger = logging.getLogger(__name__)

COMMIT_ID_PREFIX = "cmt_"
COMMIT_ID_HEX_LENGTH = 16


def build_snapshot(session: Session) -> SessionSnapshot:
    primary = session.hypothesis_cards.get(session.primary_hypothesis_id)
    return SessionSnapshot(
        phase=session.phase,
        hypothesis_ids=list(session.hypothesis_cards),
        primary_hypothesis_id=session.primary_hypothesis_id,
        confidence=primary.confidence if primary is not None else 0,
        evidence_count=len(session.evidence_ids),
        test_count=len(session.test_ids),
    )


def compute_commit_hash(
    *,
    parent_id: str | None,
    timestamp: datetime,
    trigger: CommitTrigger,
    message: str,
    snapshot: SessionSnapshot,
    digest: Digest = sha256_hex,
) -> str:
    return content_hash(
        {
            "parent_id": parent_id,
            "timestamp": timestamp,
            "trigger": trigger,
            "message": message,
            "snapshot": snapshot,
        },
        digest=digest,
    )


def create_commit(
    session: Session,
    trigger: CommitTrigger,
    message: str,
    *,
    now: datetime | None = None,
    digest: Digest = sha256_hex,
) -> SessionCommit:
    """A commit whose parent is the session's current head (None for the root)."""
    ts = now or utc_now()
    parent_id = session.head_commit_id or None
    snapshot = build_snapshot(session)
    commit_hash = compute_commit_hash(
        parent_id=parent_id,
        timestamp=ts,
        trigger=CommitTrigger(trigger),
        message=message,
        snapshot=snapshot,
        digest=digest,
    )
    return SessionCommit(
        id=COMMIT_ID_PREFIX + commit_hash[:COMMIT_ID_HEX_LENGTH],
        parent_id=parent_id,
        timestamp=ts,
        trigger=CommitTrigger(trigger),
        message=message,
        snapshot=snapshot,
        hash=commit_hash,
    )


def append_commit(
    session: Session,
    trigger: CommitTrigger,
    message: str,
    *,
    now: datetime | None = None,
    digest: Digest = sha256_hex,
) -> Session:
    ts = now or utc_now()
    commit = create_commit(session, trigger, message, now=ts, digest=digest)
    if any(c.id == commit.id for c in session.commits):
        raise CommitChainError(f"Commit {commit.id} already exists in session {session.id}")
    logger.debug("Session %s: commit %s (%s) %s", session.id, commit.id, commit.trigger.value, message)
    return session.model_copy(
        update={
            "commits": [*session.commits, commit],
            "head_commit_id": commit.id,
            "updated_at": ts,
        }
    )


def iter_commit_chain(session: Session) -> Iterator[SessionCommit]:
    """Yield commits from head to root. Raises CommitChainError on a missing parent or a cycle."""
    if not session.head_commit_id:
        if session.commits:
            raise CommitChainError(f"Session {session.id} has commits but no head")
        return

    by_id = {c.id: c for c in session.commits}
    seen: set[str] = set()
    current: str | None = session.head_commit_id
    while current is not None:
        if current in seen:
            raise CommitChainError(f"Commit chain of session {session.id} loops at {current}")
        commit = by_id.get(current)
        if commit is None:
            raise CommitChainError(f"Commit chain of session {session.id} references missing commit {current}")
        seen.add(current)
        yield commit
        current = commit.parent_id


def get_commit_history(session: Session) -> list[SessionCommit]:
    return list(iter_commit_chain(session))


def get_commit(session: Session, commit_id: str) -> SessionCommit:
    for commit in session.commits:
        if commit.id == commit_id:
            return commit
    raise CommitNotFoundError(commit_id)


def verify_commit(commit: SessionCommit, *, digest: Digest = sha256_hex) -> bool:
    """Recompute the hash. Commits without a stored hash carry nothing to check and pass."""
    if commit.hash is None:
        return True
    expected = compute_commit_hash(
        parent_id=commit.parent_id,
        timestamp=commit.timestamp,
        trigger=commit.trigger,
        message=commit.message,
        snapshot=commit.snapshot,
        digest=digest,
    )
    if expected != commit.hash:
        logger.warning("Commit %s hash mismatch", commit.id)
        return False
    return True


def checkout_snapshot(session: Session, commit_id: str) -> SessionSnapshot:
    return get_commit(session, commit_id).snapshot
