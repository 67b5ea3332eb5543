# falsification_core/sessions.py
"""
Session factory and the merges that fold finished work back into a session:
operator results, locked predictions and evidence references. Each merge
appends one commit.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from falsification_core._compat import utc_now
from falsification_core.commitment import verify_prediction
from falsification_core.contracts import (
    CURRENT_SCHEMA_VERSION,
    CommitTrigger,
    EvolutionTrigger,
    LockedPrediction,
    PredictionLockState,
    Session,
    WorkflowStatus,
)
from falsification_core.errors import (
    CommitmentError,
    HypothesisNotFoundError,
    PredictionStateError,
    WorkflowError,
    WorkflowStateError,
)
from falsification_core.lineage import evolve_session_hypothesis
from falsification_core.versioning import append_commit
from falsification_core.workflow import OperatorDefinition, OperatorWorkflow

logger = logging.getLogger(__name__)

SESSION_ID_PREFIX = "SESSION"
INITIAL_COMMIT_MESSAGE = "Session created"

_SESSION_SEQ_RE = re.compile(r"-(\d{3,})$")

_STATE_RANK = {
    PredictionLockState.DRAFT: 0,
    PredictionLockState.LOCKED: 1,
    PredictionLockState.REVEALED: 2,
    PredictionLockState.AMENDED: 3,
}

_LOCKED_FIELDS = ("hypothesis_id", "prediction_type", "original_index", "original_text", "lock_hash", "lock_timestamp")
_REVEALED_FIELDS = ("observed_outcome", "outcome_match", "revealed_at")


def generate_session_id(existing_ids: Iterable[str] = (), *, now: datetime | None = None) -> str:
    """`SESSION-YYYYMMDD-NNN`, one past the highest sequence already used that day."""
    ts = now or utc_now()
    prefix = f"{SESSION_ID_PREFIX}-{ts.strftime('%Y%m%d')}-"
    highest = 0
    for sid in existing_ids:
        if sid.startswith(prefix):
            m = _SESSION_SEQ_RE.search(sid)
            if m:
                highest = max(highest, int(m.group(1)))
    return f"{prefix}{highest + 1:03d}"


def create_session(
    session_id: str,
    *,
    research_question: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Session:
    ts = now or utc_now()
    session = Session(
        id=session_id,
        schema_version=CURRENT_SCHEMA_VERSION,
        created_at=ts,
        updated_at=ts,
        research_question=research_question,
        notes=notes,
    )
    logger.info("Session %s created", session_id)
    return append_commit(session, CommitTrigger.MANUAL, INITIAL_COMMIT_MESSAGE, now=ts)


def _dedupe_extend(existing: Iterable[str], extra: Iterable[str]) -> list[str]:
    out = list(existing)
    seen = set(out)
    for item in extra:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def _result_record(workflow: OperatorWorkflow, result: Any, ts: datetime) -> dict[str, Any]:
    payload = result.model_dump(mode="json") if isinstance(result, BaseModel) else result
    return {
        "workflow_id": workflow.id,
        "hypothesis_id": workflow.input_hypothesis.id,
        "recorded_at": ts.isoformat(),
        "result": payload,
    }


def apply_operator_result(
    session: Session,
    workflow: OperatorWorkflow,
    definition: OperatorDefinition,
    *,
    now: datetime | None = None,
) -> Session:
    """
    Merge a completed operator workflow into the session.

    The result is recorded under its operator type, insights and test ids
    are merged without duplicates, and a revision (if the operator produced
    one) becomes the next version of the input hypothesis.
    """
    if definition.operator_type != workflow.operator_type:
        raise WorkflowError(
            f"Definition for {definition.operator_type.value} cannot merge a "
            f"{workflow.operator_type.value} workflow"
        )
    if workflow.status != WorkflowStatus.COMPLETED or workflow.result is None:
        raise WorkflowStateError(f"Workflow {workflow.id} has no completed result to merge")

    hypothesis_id = workflow.input_hypothesis.id
    if hypothesis_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(hypothesis_id)

    ts = now or utc_now()
    result = workflow.result
    name = definition.metadata.name
    updated = session

    revision = definition.extract_revision(result)
    if revision:
        evolved = evolve_session_hypothesis(
            updated,
            hypothesis_id,
            revision,
            f"{name}: refined after operator review",
            EvolutionTrigger.OPERATOR_APPLICATION,
            now=ts,
        )
        updated = evolved.session

    known_insights = {i.id for i in updated.insights}
    applications = {k: list(v) for k, v in updated.operator_applications.items()}
    applications.setdefault(definition.operator_type, []).append(_result_record(workflow, result, ts))

    updated = updated.model_copy(
        update={
            "operator_applications": applications,
            "insights": [*updated.insights, *(i for i in workflow.insights if i.id not in known_insights)],
            "test_ids": _dedupe_extend(updated.test_ids, definition.extract_test_ids(result)),
            "updated_at": ts,
        }
    )
    logger.info("Session %s: %s applied to %s", session.id, name, hypothesis_id)
    return append_commit(updated, CommitTrigger.OPERATOR, f"{name} applied to {hypothesis_id}", now=ts)


def _check_prediction_progression(existing: LockedPrediction, incoming: LockedPrediction) -> None:
    if _STATE_RANK[incoming.state] < _STATE_RANK[existing.state]:
        raise PredictionStateError(
            f"Prediction {incoming.id} cannot go back from {existing.state.value} to {incoming.state.value}",
            state=existing.state.value,
            prediction_id=incoming.id,
        )
    if existing.is_sealed:
        fields = _LOCKED_FIELDS
        if _STATE_RANK[existing.state] >= _STATE_RANK[PredictionLockState.REVEALED]:
            fields += _REVEALED_FIELDS
        changed = [f for f in fields if getattr(existing, f) != getattr(incoming, f)]
        if changed:
            raise PredictionStateError(
                f"Prediction {incoming.id} is locked; cannot change {', '.join(changed)}",
                state=existing.state.value,
                prediction_id=incoming.id,
            )
    if len(incoming.amendments) < len(existing.amendments) or any(
        a != b for a, b in zip(existing.amendments, incoming.amendments)
    ):
        raise PredictionStateError(
            f"Prediction {incoming.id} amendments are append-only",
            state=existing.state.value,
            prediction_id=incoming.id,
        )


def _prediction_commit(prediction: LockedPrediction) -> tuple[CommitTrigger, str]:
    if prediction.state == PredictionLockState.REVEALED:
        outcome = prediction.outcome_match.value if prediction.outcome_match else "unmatched"
        return CommitTrigger.EVIDENCE, f"Revealed prediction {prediction.id} ({outcome})"
    if prediction.state == PredictionLockState.AMENDED:
        return CommitTrigger.EVIDENCE, f"Amended prediction {prediction.id}"
    if prediction.state == PredictionLockState.LOCKED:
        return CommitTrigger.MANUAL, f"Locked prediction {prediction.id}"
    return CommitTrigger.MANUAL, f"Drafted prediction {prediction.id}"


def record_locked_prediction(
    session: Session,
    prediction: LockedPrediction,
    *,
    now: datetime | None = None,
) -> Session:
    """
    Insert or replace a prediction. Replacements may only move the state
    forward and may not touch the fields covered by the lock hash.
    Re-recording an identical prediction returns the session unchanged.
    """
    if prediction.hypothesis_id not in session.hypothesis_cards:
        raise HypothesisNotFoundError(prediction.hypothesis_id)

    verification = verify_prediction(prediction)
    if not verification.valid:
        raise CommitmentError(f"Prediction {prediction.id} failed verification: {verification.error}")

    existing: Optional[LockedPrediction] = session.locked_predictions.get(prediction.id)
    if existing is not None:
        if existing == prediction:
            return session
        _check_prediction_progression(existing, prediction)

    ts = now or utc_now()
    updated = session.model_copy(
        update={
            "locked_predictions": {**session.locked_predictions, prediction.id: prediction},
            "updated_at": ts,
        }
    )
    trigger, message = _prediction_commit(prediction)
    return append_commit(updated, trigger, message, now=ts)


def record_evidence(
    session: Session,
    evidence_id: str,
    *,
    message: str | None = None,
    now: datetime | None = None,
) -> Session:
    if not evidence_id:
        raise ValueError("evidence_id must be non-empty")
    if evidence_id in session.evidence_ids:
        return session
    ts = now or utc_now()
    updated = session.model_copy(update={"evidence_ids": [*session.evidence_ids, evidence_id], "updated_at": ts})
    logger.info("Session %s: evidence %s recorded", session.id, evidence_id)
    return append_commit(updated, CommitTrigger.EVIDENCE, message or f"Evidence {evidence_id} recorded", now=ts)
