# falsification_core/contracts.py
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from falsification_core._compat import Self, StrEnum, utc_now

CURRENT_SCHEMA_VERSION = 1

# ------------------------------------------------------------------------------
# Shared BaseModel config helpers
# ------------------------------------------------------------------------------

_CONTRACT_CONFIG = ConfigDict(
    extra="forbid",
    validate_assignment=True,
    use_enum_values=False,  # keep enums as enums in Python
)

_IMMUTABLE_CONTRACT_CONFIG = ConfigDict(
    extra="forbid",
    use_enum_values=False,
    frozen=True,
)


# ------------------------------------------------------------------------------
# Enumerations
# ------------------------------------------------------------------------------


class SessionPhase(StrEnum):
    INTAKE = "intake"
    SHARPENING = "sharpening"
    LEVEL_SPLIT = "level_split"
    EXCLUSION_TEST = "exclusion_test"
    OBJECT_TRANSPOSE = "object_transpose"
    SCALE_CHECK = "scale_check"
    AGENT_DISPATCH = "agent_dispatch"
    SYNTHESIS = "synthesis"
    EVIDENCE_GATHERING = "evidence_gathering"
    REVISION = "revision"
    COMPLETE = "complete"


class EvolutionTrigger(StrEnum):
    OPERATOR_APPLICATION = "operator_application"
    EVIDENCE = "evidence"
    AGENT_FEEDBACK = "agent_feedback"
    MANUAL = "manual"


class CommitTrigger(StrEnum):
    MANUAL = "manual"
    OPERATOR = "operator"
    AGENT_RESPONSE = "agent_response"
    EVIDENCE = "evidence"
    PHASE_CHANGE = "phase_change"
    AUTO_SAVE = "auto_save"


class HypothesisRole(StrEnum):
    PRIMARY = "primary"
    ALTERNATIVE = "alternative"
    ARCHIVED = "archived"
    ORPHANED = "orphaned"


class PredictionType(StrEnum):
    IF_TRUE = "if_true"
    IF_FALSE = "if_false"
    IMPOSSIBLE_IF_TRUE = "impossible_if_true"


class PredictionLockState(StrEnum):
    DRAFT = "draft"
    LOCKED = "locked"
    REVEALED = "revealed"
    AMENDED = "amended"


class OutcomeMatch(StrEnum):
    CONFIRMED = "confirmed"
    REFUTED = "refuted"
    INCONCLUSIVE = "inconclusive"


class AmendmentType(StrEnum):
    CLARIFICATION = "clarification"
    REINTERPRETATION = "reinterpretation"
    SCOPE_CHANGE = "scope_change"
    RETRACTION = "retraction"


class OperatorType(StrEnum):
    LEVEL_SPLIT = "level_split"
    EXCLUSION_TEST = "exclusion_test"
    OBJECT_TRANSPOSE = "object_transpose"
    SCALE_CHECK = "scale_check"


class WorkflowStatus(StrEnum):
    INITIALIZING = "initializing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class InsightCategory(StrEnum):
    DISCOVERY = "discovery"
    WARNING = "warning"
    RECOMMENDATION = "recommendation"
    QUESTION = "question"


# ------------------------------------------------------------------------------
# Hypotheses
# ------------------------------------------------------------------------------


def _dedupe_text(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        tag = value.strip()
        if tag and tag not in seen:
            seen.add(tag)
            out.append(tag)
    return out


class IdentifiedConfound(BaseModel):
    """A potential alternative explanation for the same observations."""

    model_config = _IMMUTABLE_CONTRACT_CONFIG

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    likelihood: float = Field(default=0.5, ge=0.0, le=1.0)
    domain: str = "general"
    addressed: bool = False
    addressed_how: str | None = None


class HypothesisDraft(BaseModel):
    """Caller-supplied content for a new hypothesis card; ids and timestamps are assigned by the factory."""

    model_config = _CONTRACT_CONFIG

    statement: str
    mechanism: str
    domain: list[str] = Field(default_factory=list)
    predictions_if_true: list[str] = Field(default_factory=list)
    predictions_if_false: list[str] = Field(default_factory=list)
    impossible_if_true: list[str] = Field(default_factory=list)
    confounds: list[IdentifiedConfound] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    confidence: int = 50
    created_by: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None


class HypothesisCard(BaseModel):
    """
    One immutable version of a hypothesis.

    Changing a hypothesis means producing a new card under a new id
    (see hypothesis.evolve_hypothesis_card); the old card stays in the
    session for history. Only annotations (notes) are ever rewritten
    under the same id.
    """

    model_config = _IMMUTABLE_CONTRACT_CONFIG

    id: str = Field(min_length=1)
    version: int = Field(default=1, ge=1)
    statement: str = Field(min_length=10, max_length=1000)
    mechanism: str = Field(min_length=10, max_length=500)
    domain: list[str] = Field(default_factory=list)
    predictions_if_true: list[str] = Field(min_length=1)
    predictions_if_false: list[str] = Field(default_factory=list)
    impossible_if_true: list[str] = Field(min_length=1)
    confounds: list[IdentifiedConfound] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    confidence: int = Field(default=50, ge=0, le=100)
    parent_version: str | None = None
    evolution_reason: str | None = None
    session_id: str | None = None
    created_by: str | None = None
    tags: list[str] = Field(default_factory=list)
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("domain", "tags", mode="after")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return _dedupe_text(value)

    @field_validator("statement", "mechanism", mode="before")
    @classmethod
    def _strip_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value


class HypothesisEvolution(BaseModel):
    """Directed lineage edge between two hypothesis ids."""

    model_config = _IMMUTABLE_CONTRACT_CONFIG

    from_version_id: str = Field(min_length=1)
    to_version_id: str = Field(min_length=1)
    reason: str
    trigger: EvolutionTrigger
    timestamp: datetime


# ------------------------------------------------------------------------------
# Commit log
# ------------------------------------------------------------------------------


class SessionSnapshot(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG

    phase: SessionPhase
    hypothesis_ids: list[str] = Field(default_factory=list)
    primary_hypothesis_id: str = ""
    confidence: int = 0
    evidence_count: int = 0
    test_count: int = 0


class SessionCommit(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG

    id: str = Field(min_length=1)
    parent_id: str | None = None
    timestamp: datetime
    trigger: CommitTrigger
    message: str
    snapshot: SessionSnapshot
    hash: str | None = None


# ------------------------------------------------------------------------------
# Prediction commitment
# ------------------------------------------------------------------------------


class PredictionAmendment(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG

    type: AmendmentType
    text: str
    reason: str | None = None
    amended_at: datetime


class LockedPrediction(BaseModel):
    """
    A forecast committed before its outcome is known.

    original_text, lock_hash and lock_timestamp never change once the
    record leaves draft; amendments are an append-only annex.
    """

    model_config = _IMMUTABLE_CONTRACT_CONFIG

    HASHED_FIELDS: ClassVar[tuple[str, ...]] = (
        "hypothesis_id",
        "prediction_type",
        "original_index",
        "original_text",
        "lock_timestamp",
    )

    id: str = Field(min_length=1)
    hypothesis_id: str = Field(min_length=1)
    prediction_type: PredictionType
    original_index: int = Field(ge=0)
    original_text: str
    state: PredictionLockState = PredictionLockState.DRAFT
    lock_hash: str | None = None
    lock_timestamp: datetime | None = None
    observed_outcome: str | None = None
    outcome_match: OutcomeMatch | None = None
    revealed_at: datetime | None = None
    amendments: list[PredictionAmendment] = Field(default_factory=list)

    @property
    def is_sealed(self) -> bool:
        return self.state != PredictionLockState.DRAFT


class VerificationResult(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG

    valid: bool
    prediction: LockedPrediction
    error: str | None = None
    note: str | None = None


class PredictionLockStats(BaseModel):
    model_config = _CONTRACT_CONFIG

    total_predictions: int = 0
    draft: int = 0
    locked: int = 0
    revealed: int = 0
    amended: int = 0
    confirmed: int = 0
    refuted: int = 0
    inconclusive: int = 0
    amendment_count: int = 0
    integrity_score: int = Field(default=100, ge=0, le=100)

    @property
    def sealed_count(self) -> int:
        return self.locked + self.revealed + self.amended


# ------------------------------------------------------------------------------
# Operator insights (merged into the session from workflows)
# ------------------------------------------------------------------------------


class OperatorInsight(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG

    id: str
    category: InsightCategory
    title: str
    content: str
    step_id: str
    created_at: datetime


# ------------------------------------------------------------------------------
# Session (root aggregate)
# ------------------------------------------------------------------------------


def _empty_operator_applications() -> dict[OperatorType, list[dict[str, Any]]]:
    return {operator_type: [] for operator_type in OperatorType}


class Session(BaseModel):
    """
    Root aggregate of one research session.

    hypothesis_cards owns every card; the three role fields only hold
    back-references. Each card id is in exactly one role.
    """

    model_config = _IMMUTABLE_CONTRACT_CONFIG

    id: str = Field(min_length=1)
    schema_version: int = CURRENT_SCHEMA_VERSION
    phase: SessionPhase = SessionPhase.INTAKE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    research_question: str | None = None

    primary_hypothesis_id: str = ""
    alternative_hypothesis_ids: list[str] = Field(default_factory=list)
    archived_hypothesis_ids: list[str] = Field(default_factory=list)
    hypothesis_cards: dict[str, HypothesisCard] = Field(default_factory=dict)
    hypothesis_evolution: list[HypothesisEvolution] = Field(default_factory=list)

    operator_applications: dict[OperatorType, list[dict[str, Any]]] = Field(
        default_factory=_empty_operator_applications
    )
    insights: list[OperatorInsight] = Field(default_factory=list)
    test_ids: list[str] = Field(default_factory=list)
    evidence_ids: list[str] = Field(default_factory=list)
    locked_predictions: dict[str, LockedPrediction] = Field(default_factory=dict)

    commits: list[SessionCommit] = Field(default_factory=list)
    head_commit_id: str = ""
    notes: str | None = None

    @property
    def active_hypothesis_ids(self) -> list[str]:
        ids = [self.primary_hypothesis_id] if self.primary_hypothesis_id else []
        return ids + list(self.alternative_hypothesis_ids)


class SessionSummary(BaseModel):
    model_config = _IMMUTABLE_CONTRACT_CONFIG

    id: str
    phase: SessionPhase
    updated_at: datetime
    primary_hypothesis_id: str = ""
    hypothesis_count: int = 0
    commit_count: int = 0

    @classmethod
    def from_session(cls, session: Session) -> Self:
        return cls(
            id=session.id,
            phase=session.phase,
            updated_at=session.updated_at,
            primary_hypothesis_id=session.primary_hypothesis_id,
            hypothesis_count=len(session.hypothesis_cards),
            commit_count=len(session.commits),
        )
