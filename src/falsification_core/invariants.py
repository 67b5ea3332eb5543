# falsification_core/invariants.py
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from falsification_core.commitment import verify_prediction
from falsification_core.contracts import Session
from falsification_core.errors import CommitChainError, SessionInvariantError
from falsification_core.versioning import iter_commit_chain, verify_commit

logger = logging.getLogger(__name__)


class InvariantId(str, Enum):
    ROLE_EXCLUSIVITY = "role_exclusivity.v1"
    PRIMARY_PRESENCE = "primary_presence.v1"
    CARD_REFERENCES = "card_references.v1"
    EVOLUTION_ACYCLIC = "evolution_acyclic.v1"
    COMMIT_CHAIN = "commit_chain.v1"
    LOCKED_PREDICTION_INTEGRITY = "locked_prediction_integrity.v1"


class Flow(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"


class Validity(str, Enum):
    VALID = "valid"
    DEGRADED = "degraded"
    INVALID = "invalid"


@dataclass(frozen=True)
class InvariantOutcome:
    invariant_id: InvariantId
    passed: bool
    reason: str
    flow: Flow
    validity: Validity
    code: str
    evidence: Sequence[Mapping[str, Any]] = field(default_factory=tuple)
    details: Mapping[str, Any] = field(default_factory=dict)


Checker = Callable[[Session], InvariantOutcome]


def _ok(invariant_id: InvariantId, code: str, details: Optional[Mapping[str, Any]] = None) -> InvariantOutcome:
    detail_map = dict(details or {})
    return InvariantOutcome(
        invariant_id=invariant_id,
        passed=True,
        reason=str(detail_map.get("message") or code),
        flow=Flow.CONTINUE,
        validity=Validity.VALID,
        code=code,
        details=detail_map,
    )


def _fail(
    invariant_id: InvariantId,
    code: str,
    reason: str,
    *,
    evidence: Iterable[Mapping[str, Any]] = (),
    validity: Validity = Validity.INVALID,
    details: Optional[Mapping[str, Any]] = None,
) -> InvariantOutcome:
    return InvariantOutcome(
        invariant_id=invariant_id,
        passed=False,
        reason=reason,
        flow=Flow.STOP,
        validity=validity,
        code=code,
        evidence=tuple(evidence),
        details={"message": reason, **dict(details or {})},
    )


def check_role_exclusivity(session: Session) -> InvariantOutcome:
    roles = Counter(session.active_hypothesis_ids + list(session.archived_hypothesis_ids))
    duplicated = sorted(hid for hid, n in roles.items() if n > 1)
    if duplicated:
        return _fail(
            InvariantId.ROLE_EXCLUSIVITY,
            "hypothesis_in_multiple_roles",
            "A hypothesis id holds more than one role.",
            evidence=[{"kind": "hypothesis_id", "value": hid} for hid in duplicated],
        )

    orphaned = sorted(set(session.hypothesis_cards) - set(roles))
    if orphaned:
        return _fail(
            InvariantId.ROLE_EXCLUSIVITY,
            "orphaned_hypothesis",
            "A hypothesis card holds no role.",
            evidence=[{"kind": "hypothesis_id", "value": hid} for hid in orphaned],
        )
    return _ok(InvariantId.ROLE_EXCLUSIVITY, "roles_exclusive")


def check_primary_presence(session: Session) -> InvariantOutcome:
    if session.primary_hypothesis_id:
        return _ok(InvariantId.PRIMARY_PRESENCE, "primary_present")
    if session.hypothesis_cards:
        return _fail(
            InvariantId.PRIMARY_PRESENCE,
            "missing_primary",
            "Session holds hypotheses but no primary.",
            evidence=({"kind": "session_id", "value": session.id},),
        )
    return _ok(InvariantId.PRIMARY_PRESENCE, "fresh_session")


def check_card_references(session: Session) -> InvariantOutcome:
    cards = session.hypothesis_cards
    evidence: list[dict[str, Any]] = []

    for key, card in cards.items():
        if key != card.id:
            evidence.append({"kind": "card_key_mismatch", "value": key, "card_id": card.id})
    for hid in session.active_hypothesis_ids + list(session.archived_hypothesis_ids):
        if hid not in cards:
            evidence.append({"kind": "role_reference", "value": hid})
    for edge in session.hypothesis_evolution:
        for hid in (edge.from_version_id, edge.to_version_id):
            if hid not in cards:
                evidence.append({"kind": "edge_reference", "value": hid})
    for pid, prediction in session.locked_predictions.items():
        if prediction.hypothesis_id not in cards:
            evidence.append({"kind": "prediction_reference", "value": prediction.hypothesis_id, "prediction_id": pid})

    if evidence:
        return _fail(
            InvariantId.CARD_REFERENCES,
            "dangling_hypothesis_reference",
            "Session references hypothesis ids that have no card.",
            evidence=evidence,
        )
    return _ok(InvariantId.CARD_REFERENCES, "references_resolved")


def _find_cycle_node(edges: Iterable[tuple[str, str]]) -> Optional[str]:
    graph: dict[str, list[str]] = {}
    for src, dst in edges:
        graph.setdefault(src, []).append(dst)
        graph.setdefault(dst, [])

    # 0 unvisited, 1 on stack, 2 done
    state = {node: 0 for node in graph}
    for root in graph:
        if state[root]:
            continue
        stack = [(root, iter(graph[root]))]
        state[root] = 1
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                state[node] = 2
                stack.pop()
            elif state[child] == 1:
                return child
            elif state[child] == 0:
                state[child] = 1
                stack.append((child, iter(graph[child])))
    return None


def check_evolution_acyclic(session: Session) -> InvariantOutcome:
    node = _find_cycle_node((e.from_version_id, e.to_version_id) for e in session.hypothesis_evolution)
    if node is not None:
        return _fail(
            InvariantId.EVOLUTION_ACYCLIC,
            "evolution_cycle",
            "Hypothesis evolution edges form a cycle.",
            evidence=({"kind": "hypothesis_id", "value": node},),
        )
    return _ok(InvariantId.EVOLUTION_ACYCLIC, "evolution_acyclic", {"edge_count": len(session.hypothesis_evolution)})


def check_commit_chain(session: Session) -> InvariantOutcome:
    if not session.commits:
        return _fail(
            InvariantId.COMMIT_CHAIN,
            "no_commits",
            "Session has no root commit.",
            evidence=({"kind": "session_id", "value": session.id},),
        )
    try:
        chain = list(iter_commit_chain(session))
    except CommitChainError as exc:
        return _fail(
            InvariantId.COMMIT_CHAIN,
            "broken_commit_chain",
            str(exc),
            evidence=({"kind": "head_commit_id", "value": session.head_commit_id},),
        )

    roots = [c.id for c in session.commits if c.parent_id is None]
    if len(roots) != 1:
        return _fail(
            InvariantId.COMMIT_CHAIN,
            "multiple_roots",
            "Commit log must have exactly one root commit.",
            evidence=[{"kind": "commit_id", "value": cid} for cid in roots],
        )

    tampered = [c.id for c in chain if not verify_commit(c)]
    if tampered:
        return _fail(
            InvariantId.COMMIT_CHAIN,
            "commit_hash_mismatch",
            "Commit content does not match its stored hash.",
            evidence=[{"kind": "commit_id", "value": cid} for cid in tampered],
            validity=Validity.DEGRADED,
        )
    return _ok(InvariantId.COMMIT_CHAIN, "commit_chain_intact", {"length": len(chain)})


def check_locked_prediction_integrity(session: Session) -> InvariantOutcome:
    evidence: list[dict[str, Any]] = []
    for key, prediction in session.locked_predictions.items():
        if key != prediction.id:
            evidence.append({"kind": "prediction_key_mismatch", "value": key, "prediction_id": prediction.id})
            continue
        result = verify_prediction(prediction)
        if not result.valid:
            evidence.append({"kind": "prediction_id", "value": key, "error": result.error})

    if evidence:
        return _fail(
            InvariantId.LOCKED_PREDICTION_INTEGRITY,
            "prediction_tampered",
            "Locked prediction failed verification.",
            evidence=evidence,
            validity=Validity.DEGRADED,
        )
    return _ok(
        InvariantId.LOCKED_PREDICTION_INTEGRITY,
        "predictions_verified",
        {"count": len(session.locked_predictions)},
    )


REGISTRY: dict[InvariantId, Checker] = {
    InvariantId.ROLE_EXCLUSIVITY: check_role_exclusivity,
    InvariantId.PRIMARY_PRESENCE: check_primary_presence,
    InvariantId.CARD_REFERENCES: check_card_references,
    InvariantId.EVOLUTION_ACYCLIC: check_evolution_acyclic,
    InvariantId.COMMIT_CHAIN: check_commit_chain,
    InvariantId.LOCKED_PREDICTION_INTEGRITY: check_locked_prediction_integrity,
}


def check_session_invariants(
    session: Session,
    *,
    only: Optional[Iterable[InvariantId]] = None,
) -> list[InvariantOutcome]:
    ids = list(only) if only is not None else list(REGISTRY)
    outcomes = [REGISTRY[i](session) for i in ids]
    for outcome in outcomes:
        if not outcome.passed:
            logger.warning(
                "Session %s: invariant %s failed (%s)", session.id, outcome.invariant_id.value, outcome.code
            )
    return outcomes


def failed_outcomes(outcomes: Iterable[InvariantOutcome]) -> list[InvariantOutcome]:
    return [o for o in outcomes if not o.passed]


def assert_session_invariants(session: Session) -> None:
    failures = failed_outcomes(check_session_invariants(session))
    if failures:
        raise SessionInvariantError(
            f"Session {session.id} violates: " + "; ".join(f"{o.invariant_id.value} ({o.reason})" for o in failures),
            codes=[o.code for o in failures],
        )
