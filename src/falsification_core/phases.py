# falsification_core/phases.py
"""
Session phase state machine.

SESSION_TRANSITIONS is pure data; is_valid_transition only reads it.
The four operator phases are independently optional, so each of them
may go straight to agent dispatch.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping

from falsification_core._compat import StrEnum, utc_now
from falsification_core.contracts import CommitTrigger, OperatorType, Session, SessionPhase
from falsification_core.errors import InvalidPhaseTransitionError
from falsification_core.versioning import append_commit

logger = logging.getLogger(__name__)

P = SessionPhase

SESSION_TRANSITIONS: Mapping[SessionPhase, tuple[SessionPhase, ...]] = {
    P.INTAKE: (P.SHARPENING,),
    P.SHARPENING: (P.LEVEL_SPLIT, P.EXCLUSION_TEST, P.AGENT_DISPATCH),
    P.LEVEL_SPLIT: (P.EXCLUSION_TEST, P.OBJECT_TRANSPOSE, P.SCALE_CHECK, P.AGENT_DISPATCH),
    P.EXCLUSION_TEST: (P.OBJECT_TRANSPOSE, P.SCALE_CHECK, P.AGENT_DISPATCH),
    P.OBJECT_TRANSPOSE: (P.SCALE_CHECK, P.AGENT_DISPATCH),
    P.SCALE_CHECK: (P.AGENT_DISPATCH,),
    P.AGENT_DISPATCH: (P.SYNTHESIS, P.EVIDENCE_GATHERING),
    P.SYNTHESIS: (P.EVIDENCE_GATHERING, P.REVISION, P.COMPLETE),
    P.EVIDENCE_GATHERING: (P.REVISION, P.SYNTHESIS),
    P.REVISION: (P.AGENT_DISPATCH, P.SYNTHESIS, P.COMPLETE),
    P.COMPLETE: (),
}

PHASE_NAMES: Mapping[SessionPhase, str] = {
    P.INTAKE: "Hypothesis Intake",
    P.SHARPENING: "Hypothesis Sharpening",
    P.LEVEL_SPLIT: "Level Split",
    P.EXCLUSION_TEST: "Exclusion Test",
    P.OBJECT_TRANSPOSE: "Object Transpose",
    P.SCALE_CHECK: "Scale Check",
    P.AGENT_DISPATCH: "Agent Dispatch",
    P.SYNTHESIS: "Synthesis",
    P.EVIDENCE_GATHERING: "Evidence Gathering",
    P.REVISION: "Revision",
    P.COMPLETE: "Complete",
}

OPERATOR_PHASES: Mapping[OperatorType, SessionPhase] = {
    OperatorType.LEVEL_SPLIT: P.LEVEL_SPLIT,
    OperatorType.EXCLUSION_TEST: P.EXCLUSION_TEST,
    OperatorType.OBJECT_TRANSPOSE: P.OBJECT_TRANSPOSE,
    OperatorType.SCALE_CHECK: P.SCALE_CHECK,
}


class SimplifiedPhase(StrEnum):
    """Coarse grouping of phases for overview displays."""

    INTAKE = "intake"
    REFINEMENT = "refinement"
    TESTING = "testing"
    SYNTHESIS = "synthesis"


_SIMPLIFIED: Mapping[SessionPhase, SimplifiedPhase] = {
    P.INTAKE: SimplifiedPhase.INTAKE,
    P.SHARPENING: SimplifiedPhase.REFINEMENT,
    P.LEVEL_SPLIT: SimplifiedPhase.REFINEMENT,
    P.EXCLUSION_TEST: SimplifiedPhase.REFINEMENT,
    P.OBJECT_TRANSPOSE: SimplifiedPhase.REFINEMENT,
    P.SCALE_CHECK: SimplifiedPhase.REFINEMENT,
    P.AGENT_DISPATCH: SimplifiedPhase.TESTING,
    P.EVIDENCE_GATHERING: SimplifiedPhase.TESTING,
    P.REVISION: SimplifiedPhase.TESTING,
    P.SYNTHESIS: SimplifiedPhase.SYNTHESIS,
    P.COMPLETE: SimplifiedPhase.SYNTHESIS,
}


def is_valid_transition(from_phase: SessionPhase | str, to_phase: SessionPhase | str) -> bool:
    return SessionPhase(to_phase) in SESSION_TRANSITIONS[SessionPhase(from_phase)]


def reachable_phases(phase: SessionPhase | str) -> tuple[SessionPhase, ...]:
    return SESSION_TRANSITIONS[SessionPhase(phase)]


def is_terminal_phase(phase: SessionPhase | str) -> bool:
    return not SESSION_TRANSITIONS[SessionPhase(phase)]


def to_simplified_phase(phase: SessionPhase | str) -> SimplifiedPhase:
    return _SIMPLIFIED[SessionPhase(phase)]


def phase_name(phase: SessionPhase | str) -> str:
    return PHASE_NAMES[SessionPhase(phase)]


def transition_phase(
    session: Session,
    to_phase: SessionPhase | str,
    *,
    message: str | None = None,
    now: datetime | None = None,
) -> Session:
    """Move the session to `to_phase` and record a phase_change commit."""
    target = SessionPhase(to_phase)
    if not is_valid_transition(session.phase, target):
        raise InvalidPhaseTransitionError(session.phase.value, target.value)

    ts = now or utc_now()
    logger.debug("Session %s: phase %s -> %s", session.id, session.phase.value, target.value)
    moved = session.model_copy(update={"phase": target, "updated_at": ts})
    return append_commit(
        moved,
        CommitTrigger.PHASE_CHANGE,
        message or f"Phase: {PHASE_NAMES[session.phase]} -> {PHASE_NAMES[target]}",
        now=ts,
    )
