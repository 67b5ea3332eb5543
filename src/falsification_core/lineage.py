# falsification_core/lineage.py
"""
Hypothesis lineage and competition inside one session.

Roles: every card id in `hypothesis_cards` holds exactly one of primary,
alternative or archived. Evolution edges form an append-only edge list
(from_version_id -> to_version_id) that must stay acyclic.

Every function here returns a new Session or raises before building one.
"""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Any, Iterable, Mapping, NamedTuple, Optional

from falsification_core._compat import utc_now
from falsification_core.contracts import (
    EvolutionTrigger,
    HypothesisCard,
    HypothesisDraft,
    HypothesisEvolution,
    HypothesisRole,
    Session,
)
from falsification_core.errors import (
    ArchivedHypothesisError,
    HypothesisNotArchivedError,
    HypothesisNotFoundError,
    LineageCycleError,
    LineageError,
    SoleActiveHypothesisError,
)
from falsification_core.hypothesis import (
    annotate_card,
    create_hypothesis_card,
    evolve_hypothesis_card,
    next_sequence_number,
)
from falsification_core.integrity import format_timestamp

logger = logging.getLogger(__name__)


class HypothesisCounts(NamedTuple):
    primary: int
    alternatives: int
    archived: int
    total: int


class RelatedHypotheses(NamedTuple):
    ancestors: list[str]
    descendants: list[str]
    siblings: list[str]


class CompetingHypothesisResult(NamedTuple):
    hypothesis: HypothesisCard
    session: Session
    relationship: HypothesisEvolution


class CompetitionResolution(NamedTuple):
    winner_id: str
    loser_id: str
    session: Session
    reason: str
    relationship: Optional[HypothesisEvolution]


class EvolvedHypothesisResult(NamedTuple):
    hypothesis: HypothesisCard
    session: Session
    relationship: HypothesisEvolution


# ------------------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------------------


def get_hypothesis_state(session: Session, hypothesis_id: str) -> HypothesisRole:
    if hypothesis_id and session.primary_hypothesis_id == hypothesis_id:
        return HypothesisRole.PRIMARY
    if hypothesis_id in session.alternative_hypothesis_ids:
        return HypothesisRole.ALTERNATIVE
    if hypothesis_id in session.archived_hypothesis_ids:
        return HypothesisRole.ARCHIVED
    return HypothesisRole.ORPHANED


def get_hypothesis_card(session: Session, hypothesis_id: str) -> HypothesisCard:
    card = session.hypothesis_cards.get(hypothesis_id)
    if card is None:
        raise HypothesisNotFoundError(hypothesis_id)
    return card


def get_active_hypotheses(session: Session) -> list[HypothesisCard]:
    return [session.hypothesis_cards[i] for i in session.active_hypothesis_ids if i in session.hypothesis_cards]


def get_hypothesis_counts(session: Session) -> HypothesisCounts:
    primary = 1 if session.primary_hypothesis_id else 0
    alternatives = len(session.alternative_hypothesis_ids)
    archived = len(session.archived_hypothesis_ids)
    return HypothesisCounts(primary, alternatives, archived, primary + alternatives + archived)


def _walk(session: Session, start: str, *, forward: bool) -> list[str]:
    """Breadth-first over edges; start itself is excluded unless reached through a cycle."""
    adjacency: dict[str, list[str]] = {}
    for edge in session.hypothesis_evolution:
        src, dst = (edge.from_version_id, edge.to_version_id) if forward else (edge.to_version_id, edge.from_version_id)
        adjacency.setdefault(src, []).append(dst)

    seen: set[str] = set()
    order: list[str] = []
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for nxt in adjacency.get(node, ()):
            if nxt not in seen:
                seen.add(nxt)
                order.append(nxt)
                queue.append(nxt)
    return order


def get_ancestors(session: Session, hypothesis_id: str) -> list[str]:
    return _walk(session, hypothesis_id, forward=False)


def get_descendants(session: Session, hypothesis_id: str) -> list[str]:
    return _walk(session, hypothesis_id, forward=True)


def would_create_cycle(session: Session, from_id: str, to_id: str) -> bool:
    return from_id == to_id or from_id in get_descendants(session, to_id)


def get_related_hypotheses(session: Session, hypothesis_id: str) -> RelatedHypotheses:
    """
    Direct ancestors and descendants come from the edge list. Siblings are
    the other active hypotheses, from the current roles.
    """
    ancestors = [e.from_version_id for e in session.hypothesis_evolution if e.to_version_id == hypothesis_id]
    descendants = [e.to_version_id for e in session.hypothesis_evolution if e.from_version_id == hypothesis_id]

    state = get_hypothesis_state(session, hypothesis_id)
    if state in (HypothesisRole.PRIMARY, HypothesisRole.ALTERNATIVE):
        siblings = [i for i in session.active_hypothesis_ids if i != hypothesis_id]
    else:
        siblings = []
    return RelatedHypotheses(ancestors, descendants, siblings)


def get_evolution_chain(session: Session, hypothesis_id: str) -> list[str]:
    """Root first, following the first incoming edge at each step."""
    chain = [hypothesis_id]
    seen = {hypothesis_id}
    current = hypothesis_id
    while True:
        edge = next((e for e in session.hypothesis_evolution if e.to_version_id == current), None)
        if edge is None or edge.from_version_id in seen:
            break
        chain.insert(0, edge.from_version_id)
        seen.add(edge.from_version_id)
        current = edge.from_version_id
    return chain


def find_common_ancestor(session: Session, first_id: str, second_id: str) -> Optional[str]:
    lineage = set(get_ancestors(session, first_id)) | {first_id}
    for candidate in get_evolution_chain(session, second_id):
        if candidate in lineage:
            return candidate
    return None


# ------------------------------------------------------------------------------
# Edges
# ------------------------------------------------------------------------------


def _edge(
    from_id: str, to_id: str, reason: str, trigger: EvolutionTrigger, ts: datetime
) -> HypothesisEvolution:
    return HypothesisEvolution(
        from_version_id=from_id,
        to_version_id=to_id,
        reason=reason,
        trigger=trigger,
        timestamp=ts,
    )


def add_evolution_edge(
    session: Session,
    from_id: str,
    to_id: str,
    reason: str,
    trigger: EvolutionTrigger = EvolutionTrigger.MANUAL,
    *,
    now: datetime | None = None,
) -> Session:
    for hid in (from_id, to_id):
        if hid not in session.hypothesis_cards:
            raise HypothesisNotFoundError(hid)
    if would_create_cycle(session, from_id, to_id):
        raise LineageCycleError(from_id, to_id)
    ts = now or utc_now()
    return session.model_copy(
        update={
            "hypothesis_evolution": [*session.hypothesis_evolution, _edge(from_id, to_id, reason, trigger, ts)],
            "updated_at": ts,
        }
    )


# ------------------------------------------------------------------------------
# Role mutations
# ------------------------------------------------------------------------------


def _without(ids: Iterable[str], *drop: str) -> list[str]:
    return [i for i in ids if i not in drop]


def seed_primary_hypothesis(
    session: Session,
    draft: HypothesisDraft | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> tuple[HypothesisCard, Session]:
    """Create the first card of a fresh session and make it primary."""
    if session.primary_hypothesis_id:
        raise LineageError(f"Session {session.id} already has primary hypothesis {session.primary_hypothesis_id}")
    ts = now or utc_now()
    card = create_hypothesis_card(
        draft,
        session_id=session.id,
        sequence=next_sequence_number(session.hypothesis_cards),
        now=ts,
    )
    updated = session.model_copy(
        update={
            "primary_hypothesis_id": card.id,
            "hypothesis_cards": {**session.hypothesis_cards, card.id: card},
            "updated_at": ts,
        }
    )
    logger.info("Session %s: primary hypothesis %s created", session.id, card.id)
    return card, updated


def set_primary_hypothesis(
    session: Session,
    hypothesis_id: str,
    *,
    now: datetime | None = None,
) -> Session:
    if hypothesis_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(hypothesis_id)

    state = get_hypothesis_state(session, hypothesis_id)
    if state == HypothesisRole.PRIMARY:
        return session
    if state == HypothesisRole.ARCHIVED:
        raise ArchivedHypothesisError(hypothesis_id, f"Cannot make archived hypothesis {hypothesis_id} primary")

    alternatives = _without(session.alternative_hypothesis_ids, hypothesis_id)
    old_primary = session.primary_hypothesis_id
    if old_primary and old_primary not in alternatives:
        alternatives.insert(0, old_primary)

    logger.info("Session %s: primary hypothesis %s -> %s", session.id, old_primary or "-", hypothesis_id)
    return session.model_copy(
        update={
            "primary_hypothesis_id": hypothesis_id,
            "alternative_hypothesis_ids": alternatives,
            "updated_at": now or utc_now(),
        }
    )


def add_competing_hypothesis(
    session: Session,
    competing_with: str,
    draft: HypothesisDraft | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> CompetingHypothesisResult:
    if competing_with not in session.hypothesis_cards:
        raise HypothesisNotFoundError(competing_with, role="Competing hypothesis")

    ts = now or utc_now()
    card = create_hypothesis_card(
        draft,
        session_id=session.id,
        sequence=next_sequence_number(session.hypothesis_cards),
        now=ts,
    )
    edge = _edge(
        competing_with,
        card.id,
        f"Alternative hypothesis competing with {competing_with}",
        EvolutionTrigger.MANUAL,
        ts,
    )
    updated = session.model_copy(
        update={
            "alternative_hypothesis_ids": [*session.alternative_hypothesis_ids, card.id],
            "hypothesis_cards": {**session.hypothesis_cards, card.id: card},
            "hypothesis_evolution": [*session.hypothesis_evolution, edge],
            "updated_at": ts,
        }
    )
    logger.info("Session %s: %s added competing with %s", session.id, card.id, competing_with)
    return CompetingHypothesisResult(card, updated, edge)


def resolve_competition(
    session: Session,
    winner_id: str,
    loser_id: str,
    reason: str,
    *,
    now: datetime | None = None,
) -> CompetitionResolution:
    """
    Archive the loser and keep the winner active. The loser card gets a
    supersession note and a loser -> winner edge is recorded, unless the
    winner already descends into the loser, in which case the note alone
    carries the supersession.
    """
    if winner_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(winner_id, role="Winner hypothesis")
    if loser_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(loser_id, role="Loser hypothesis")
    if winner_id == loser_id:
        raise LineageError(f"Hypothesis {winner_id} cannot compete with itself")
    if get_hypothesis_state(session, loser_id) == HypothesisRole.ARCHIVED:
        raise ArchivedHypothesisError(loser_id)
    if get_hypothesis_state(session, winner_id) == HypothesisRole.ARCHIVED:
        raise ArchivedHypothesisError(winner_id, f"Winner hypothesis {winner_id} is archived; restore it first")

    ts = now or utc_now()
    loser_card = annotate_card(session.hypothesis_cards[loser_id], f"Superseded by {winner_id}: {reason}", now=ts)

    edge: Optional[HypothesisEvolution] = None
    evolution = list(session.hypothesis_evolution)
    if would_create_cycle(session, loser_id, winner_id):
        logger.debug("Session %s: supersession edge %s -> %s skipped (would close a cycle)", session.id, loser_id, winner_id)
    else:
        edge = _edge(loser_id, winner_id, f"Superseded: {reason}", EvolutionTrigger.EVIDENCE, ts)
        evolution.append(edge)

    primary = session.primary_hypothesis_id
    alternatives = _without(session.alternative_hypothesis_ids, loser_id)
    if primary == loser_id:
        primary = winner_id
        alternatives = _without(alternatives, winner_id)
    elif primary != winner_id and winner_id not in alternatives:
        alternatives.append(winner_id)

    updated = session.model_copy(
        update={
            "primary_hypothesis_id": primary,
            "alternative_hypothesis_ids": alternatives,
            "archived_hypothesis_ids": [*session.archived_hypothesis_ids, loser_id],
            "hypothesis_cards": {**session.hypothesis_cards, loser_id: loser_card},
            "hypothesis_evolution": evolution,
            "updated_at": ts,
        }
    )
    logger.info("Session %s: competition resolved, %s supersedes %s", session.id, winner_id, loser_id)
    return CompetitionResolution(winner_id, loser_id, updated, reason, edge)


def archive_hypothesis(
    session: Session,
    hypothesis_id: str,
    reason: str,
    *,
    now: datetime | None = None,
) -> Session:
    state = get_hypothesis_state(session, hypothesis_id)
    if state == HypothesisRole.ARCHIVED:
        return session
    if state == HypothesisRole.ORPHANED or hypothesis_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(hypothesis_id)
    if state == HypothesisRole.PRIMARY and not session.alternative_hypothesis_ids:
        raise SoleActiveHypothesisError(hypothesis_id)

    ts = now or utc_now()
    card = annotate_card(session.hypothesis_cards[hypothesis_id], f"Archived: {reason}", now=ts)

    primary = session.primary_hypothesis_id
    if state == HypothesisRole.PRIMARY:
        primary, *alternatives = session.alternative_hypothesis_ids
    else:
        alternatives = _without(session.alternative_hypothesis_ids, hypothesis_id)

    logger.info("Session %s: hypothesis %s archived", session.id, hypothesis_id)
    return session.model_copy(
        update={
            "primary_hypothesis_id": primary,
            "alternative_hypothesis_ids": alternatives,
            "archived_hypothesis_ids": [*session.archived_hypothesis_ids, hypothesis_id],
            "hypothesis_cards": {**session.hypothesis_cards, hypothesis_id: card},
            "updated_at": ts,
        }
    )


def restore_hypothesis(
    session: Session,
    hypothesis_id: str,
    *,
    now: datetime | None = None,
) -> Session:
    if hypothesis_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(hypothesis_id)
    state = get_hypothesis_state(session, hypothesis_id)
    if state != HypothesisRole.ARCHIVED:
        raise HypothesisNotArchivedError(hypothesis_id, state.value)

    ts = now or utc_now()
    card = annotate_card(session.hypothesis_cards[hypothesis_id], f"Restored at {format_timestamp(ts)}", now=ts)
    logger.info("Session %s: hypothesis %s restored", session.id, hypothesis_id)
    return session.model_copy(
        update={
            "alternative_hypothesis_ids": [*session.alternative_hypothesis_ids, hypothesis_id],
            "archived_hypothesis_ids": _without(session.archived_hypothesis_ids, hypothesis_id),
            "hypothesis_cards": {**session.hypothesis_cards, hypothesis_id: card},
            "updated_at": ts,
        }
    )


def evolve_session_hypothesis(
    session: Session,
    hypothesis_id: str,
    changes: Mapping[str, Any],
    reason: str,
    trigger: EvolutionTrigger = EvolutionTrigger.MANUAL,
    *,
    now: datetime | None = None,
) -> EvolvedHypothesisResult:
    """
    Replace an active card by its next version. The new version takes over
    the old one's role and position; the old version is archived.
    """
    card = get_hypothesis_card(session, hypothesis_id)
    state = get_hypothesis_state(session, hypothesis_id)
    if state == HypothesisRole.ARCHIVED:
        raise ArchivedHypothesisError(hypothesis_id, f"Cannot evolve archived hypothesis {hypothesis_id}")
    if state == HypothesisRole.ORPHANED:
        raise HypothesisNotFoundError(hypothesis_id)

    ts = now or utc_now()
    evolved = evolve_hypothesis_card(card, changes, reason, now=ts)
    if evolved.id in session.hypothesis_cards:
        raise LineageError(f"Hypothesis version {evolved.id} already exists in session {session.id}")
    edge = _edge(card.id, evolved.id, reason, EvolutionTrigger(trigger), ts)

    primary = session.primary_hypothesis_id
    alternatives = list(session.alternative_hypothesis_ids)
    if state == HypothesisRole.PRIMARY:
        primary = evolved.id
    else:
        alternatives[alternatives.index(card.id)] = evolved.id

    updated = session.model_copy(
        update={
            "primary_hypothesis_id": primary,
            "alternative_hypothesis_ids": alternatives,
            "archived_hypothesis_ids": [*session.archived_hypothesis_ids, card.id],
            "hypothesis_cards": {**session.hypothesis_cards, evolved.id: evolved},
            "hypothesis_evolution": [*session.hypothesis_evolution, edge],
            "updated_at": ts,
        }
    )
    logger.info("Session %s: hypothesis %s evolved to %s", session.id, card.id, evolved.id)
    return EvolvedHypothesisResult(evolved, updated, edge)
