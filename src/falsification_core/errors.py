# falsification_core/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from falsification_core.workflow import StepValidation


class FalsificationCoreError(Exception):
    """Base class for every error raised by the core."""


# ------------------------------------------------------------------------------
# Commitment protocol
# ------------------------------------------------------------------------------


class CommitmentError(FalsificationCoreError):
    """Raised when a prediction commitment transition is not allowed."""


class EmptyPredictionError(CommitmentError, ValueError):
    """Raised when a prediction is empty after whitespace normalization."""


class InvalidPredictionIndexError(CommitmentError, ValueError):
    """Raised when a prediction index is negative."""

    def __init__(self, index: int) -> None:
        self.index = index
        super().__init__(f"Prediction index must be non-negative, got {index}")


class PredictionStateError(CommitmentError):
    """Raised when a transition is attempted from the wrong lock state."""

    def __init__(self, message: str, *, state: str, prediction_id: str | None = None) -> None:
        self.state = state
        self.prediction_id = prediction_id
        super().__init__(message)


# ------------------------------------------------------------------------------
# Hypotheses and lineage
# ------------------------------------------------------------------------------


class LineageError(FalsificationCoreError):
    """Raised when a lineage or competition precondition is violated."""


class HypothesisNotFoundError(LineageError, LookupError):
    def __init__(self, hypothesis_id: str, *, role: str = "Hypothesis") -> None:
        self.hypothesis_id = hypothesis_id
        super().__init__(f"{role} {hypothesis_id} not found in session")


class ArchivedHypothesisError(LineageError):
    def __init__(self, hypothesis_id: str, message: str | None = None) -> None:
        self.hypothesis_id = hypothesis_id
        super().__init__(message or f"Hypothesis {hypothesis_id} is already archived")


class SoleActiveHypothesisError(LineageError):
    def __init__(self, hypothesis_id: str) -> None:
        self.hypothesis_id = hypothesis_id
        super().__init__("Cannot archive the only active hypothesis. Add an alternative first.")


class HypothesisNotArchivedError(LineageError):
    def __init__(self, hypothesis_id: str, state: str) -> None:
        self.hypothesis_id = hypothesis_id
        self.state = state
        super().__init__(f"Hypothesis {hypothesis_id} is not archived (state: {state})")


class LineageCycleError(LineageError):
    def __init__(self, from_id: str, to_id: str) -> None:
        self.from_id = from_id
        self.to_id = to_id
        super().__init__(f"Evolution edge {from_id} -> {to_id} would create a cycle")


class HypothesisValidationError(LineageError, ValueError):
    """Raised when a hypothesis card cannot be built from its inputs."""

    def __init__(self, message: str, *, errors: Sequence[Any] = ()) -> None:
        self.errors = list(errors)
        super().__init__(message)


# ------------------------------------------------------------------------------
# Phases, workflows, commit log
# ------------------------------------------------------------------------------


class InvalidPhaseTransitionError(FalsificationCoreError, ValueError):
    def __init__(self, from_phase: str, to_phase: str) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(f"Invalid phase transition: {from_phase} -> {to_phase}")


class WorkflowError(FalsificationCoreError):
    """Raised when an operator workflow is driven outside its contract."""


class StepGateError(WorkflowError):
    """Raised by the gated advance when the current step may not be left yet."""

    def __init__(self, step_id: str, validation: StepValidation | None) -> None:
        self.step_id = step_id
        self.validation = validation
        errors = list(validation.errors) if validation is not None else []
        detail = "; ".join(errors) if errors else "no next step"
        super().__init__(f"Cannot leave step {step_id}: {detail}")


class WorkflowStateError(WorkflowError):
    """Raised when a workflow is not in the status an operation requires."""


class CommitChainError(FalsificationCoreError):
    """Raised when the commit chain of a session is broken."""


class CommitNotFoundError(CommitChainError, LookupError):
    def __init__(self, commit_id: str) -> None:
        self.commit_id = commit_id
        super().__init__(f"Commit {commit_id} not found in session")


class SessionInvariantError(FalsificationCoreError, ValueError):
    def __init__(self, message: str, *, codes: Sequence[str] = ()) -> None:
        self.codes = list(codes)
        super().__init__(message)


# ------------------------------------------------------------------------------
# Persistence / exchange
# ------------------------------------------------------------------------------


class SessionNotFoundError(FalsificationCoreError, LookupError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class SessionConflictError(FalsificationCoreError):
    """Raised when stored session data changed between load and save."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} was modified in storage since it was loaded")


class UnsupportedSchemaVersionError(FalsificationCoreError, ValueError):
    def __init__(self, found: int, supported: int) -> None:
        self.found = found
        self.supported = supported
        super().__init__(f"Session schema version {found} is newer than supported ({supported})")


class SessionImportError(FalsificationCoreError, ValueError):
    """Raised for structurally unrecoverable import payloads."""
