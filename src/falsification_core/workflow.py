# falsification_core/workflow.py
"""
Generic step engine shared by the four operators.

An operator is a value (`OperatorDefinition`): an ordered list of step
configs plus pure generator and result-building functions. There is no
operator class hierarchy; one reducer drives all of them.

Contract between engine and caller
----------------------------------
`reduce_workflow` is mechanism only. `NextStep` advances even when the
current step is incomplete or invalid; gating belongs to the caller,
which consults `can_proceed_to_next` (or uses `advance_workflow`, which
raises `StepGateError` instead of advancing). Keep the two layers apart:
the operators rely on being able to record state on a step the user has
not finished yet.

Completed and abandoned workflows are final: `reduce_workflow` returns them
unchanged for every action, so content or selections set after `Complete`
are dropped rather than recorded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from falsification_core._compat import utc_now
from falsification_core.contracts import (
    HypothesisCard,
    InsightCategory,
    OperatorInsight,
    OperatorType,
    WorkflowStatus,
)
from falsification_core.errors import StepGateError, WorkflowError, WorkflowStateError
from falsification_core.ids import time_ordered_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OperatorMetadata:
    name: str
    symbol: str
    description: str


OPERATOR_METADATA: Mapping[OperatorType, OperatorMetadata] = {
    OperatorType.LEVEL_SPLIT: OperatorMetadata(
        name="Level Split",
        symbol="Σ",
        description="Identify confused levels of explanation (program vs interpreter)",
    ),
    OperatorType.EXCLUSION_TEST: OperatorMetadata(
        name="Exclusion Test",
        symbol="⊘",
        description="Design tests that can rule out hypotheses",
    ),
    OperatorType.OBJECT_TRANSPOSE: OperatorMetadata(
        name="Object Transpose",
        symbol="⟳",
        description="Change experimental system to reveal invariants",
    ),
    OperatorType.SCALE_CHECK: OperatorMetadata(
        name="Scale Check",
        symbol="⊙",
        description="Verify physical and mathematical plausibility",
    ),
}

_TERMINAL = frozenset({WorkflowStatus.COMPLETED, WorkflowStatus.ABANDONED})


# ------------------------------------------------------------------------------
# Steps
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class StepValidation:
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @classmethod
    def ok(cls, warnings: Sequence[str] = ()) -> StepValidation:
        return cls(valid=True, warnings=tuple(warnings))

    @classmethod
    def fail(cls, *errors: str, warnings: Sequence[str] = ()) -> StepValidation:
        return cls(valid=False, errors=tuple(errors), warnings=tuple(warnings))


WorkflowPredicate = Callable[["OperatorWorkflow"], bool]
WorkflowValidator = Callable[["OperatorWorkflow"], StepValidation]


@dataclass(frozen=True)
class StepConfig:
    id: str
    name: str
    description: str
    help_text: Optional[str] = None
    can_skip: bool = False
    should_show: Optional[WorkflowPredicate] = None
    is_complete: Optional[WorkflowPredicate] = None
    validate: Optional[WorkflowValidator] = None


@dataclass(frozen=True)
class StepState:
    config: StepConfig
    complete: bool = False
    skipped: bool = False
    completed_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.complete or self.skipped


# ------------------------------------------------------------------------------
# Workflow
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class OperatorWorkflow:
    id: str
    operator_type: OperatorType
    input_hypothesis: HypothesisCard
    steps: tuple[StepState, ...]
    started_at: datetime
    current_step_index: int = 0
    generated_content: Mapping[str, Any] = field(default_factory=dict)
    user_selections: Mapping[str, Any] = field(default_factory=dict)
    insights: tuple[OperatorInsight, ...] = ()
    status: WorkflowStatus = WorkflowStatus.INITIALIZING
    completed_at: Optional[datetime] = None
    started_by: Optional[str] = None
    notes: Optional[str] = None
    result: Any = None

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    def content(self, key: str, default: Any = None) -> Any:
        return self.generated_content.get(key, default)

    def selection(self, key: str, default: Any = None) -> Any:
        return self.user_selections.get(key, default)


@dataclass(frozen=True)
class OperatorDefinition:
    """
    One operator as configuration.

    generators maps a step id to a function producing that step's
    generated content from the workflow; build_result assembles the
    operator's typed result at the end. The two extract hooks tell the
    session merge which test ids a result adds to the plan and which
    card fields (if any) a result revises.
    """

    operator_type: OperatorType
    steps: tuple[StepConfig, ...]
    build_result: Callable[[OperatorWorkflow], Any]
    generators: Mapping[str, Callable[[OperatorWorkflow], Any]] = field(default_factory=dict)
    extract_test_ids: Callable[[Any], Sequence[str]] = lambda result: ()
    extract_revision: Callable[[Any], Optional[Mapping[str, Any]]] = lambda result: None

    @property
    def metadata(self) -> OperatorMetadata:
        return OPERATOR_METADATA[self.operator_type]

    @property
    def step_ids(self) -> tuple[str, ...]:
        return tuple(s.id for s in self.steps)


# ------------------------------------------------------------------------------
# Actions
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class NextStep:
    pass


@dataclass(frozen=True)
class PrevStep:
    pass


@dataclass(frozen=True)
class SkipStep:
    pass


@dataclass(frozen=True)
class GoToStep:
    step_index: int


@dataclass(frozen=True)
class SetContent:
    key: str
    value: Any


@dataclass(frozen=True)
class SetSelection:
    key: str
    value: Any


@dataclass(frozen=True)
class ClearSelection:
    key: str


@dataclass(frozen=True)
class AddInsight:
    category: InsightCategory
    title: str
    content: str
    step_id: str


@dataclass(frozen=True)
class SetNotes:
    notes: str


@dataclass(frozen=True)
class Complete:
    pass


@dataclass(frozen=True)
class Abandon:
    pass


WorkflowAction = Union[
    NextStep,
    PrevStep,
    SkipStep,
    GoToStep,
    SetContent,
    SetSelection,
    ClearSelection,
    AddInsight,
    SetNotes,
    Complete,
    Abandon,
]


# ------------------------------------------------------------------------------
# Construction
# ------------------------------------------------------------------------------


def create_step_states(configs: Sequence[StepConfig]) -> tuple[StepState, ...]:
    return tuple(StepState(config=c) for c in configs)


def generate_workflow_id(operator_type: OperatorType, *, now: datetime | None = None) -> str:
    return time_ordered_id(f"OP-{OperatorType(operator_type).value}", now=now)


def start_workflow(
    definition: OperatorDefinition,
    hypothesis: HypothesisCard,
    started_by: str | None = None,
    *,
    now: datetime | None = None,
) -> OperatorWorkflow:
    if not definition.steps:
        raise WorkflowError(f"Operator {definition.operator_type.value} defines no steps")
    ts = now or utc_now()
    workflow = OperatorWorkflow(
        id=generate_workflow_id(definition.operator_type, now=ts),
        operator_type=definition.operator_type,
        input_hypothesis=hypothesis,
        steps=create_step_states(definition.steps),
        started_at=ts,
        started_by=started_by,
    )
    logger.debug("Started %s workflow %s on %s", definition.operator_type.value, workflow.id, hypothesis.id)
    return workflow


# ------------------------------------------------------------------------------
# Reducer
# ------------------------------------------------------------------------------


def _mark_step(steps: tuple[StepState, ...], index: int, **changes: Any) -> tuple[StepState, ...]:
    updated = list(steps)
    updated[index] = replace(updated[index], **changes)
    return tuple(updated)


def reduce_workflow(
    workflow: OperatorWorkflow,
    action: WorkflowAction,
    *,
    now: datetime | None = None,
) -> OperatorWorkflow:
    """
    Pure transition function: returns a new workflow, never mutates the old one.

    Actions with no effect in the current position (NextStep at the last
    step, PrevStep at the first, GoToStep forward) return the workflow
    unchanged. Terminal workflows ignore every action.
    """
    if workflow.is_terminal:
        logger.debug("Ignoring %s on terminal workflow %s", type(action).__name__, workflow.id)
        return workflow

    ts = now or utc_now()
    index = workflow.current_step_index

    if isinstance(action, NextStep):
        if index + 1 >= len(workflow.steps):
            return workflow
        return replace(
            workflow,
            steps=_mark_step(workflow.steps, index, complete=True, completed_at=ts),
            current_step_index=index + 1,
            status=WorkflowStatus.IN_PROGRESS,
        )

    if isinstance(action, PrevStep):
        if index == 0:
            return workflow
        return replace(workflow, current_step_index=index - 1)

    if isinstance(action, SkipStep):
        if not workflow.steps[index].config.can_skip or index + 1 >= len(workflow.steps):
            return workflow
        return replace(
            workflow,
            steps=_mark_step(workflow.steps, index, skipped=True, completed_at=ts),
            current_step_index=index + 1,
            status=WorkflowStatus.IN_PROGRESS,
        )

    if isinstance(action, GoToStep):
        target = action.step_index
        if target < 0 or target >= len(workflow.steps) or target > index:
            return workflow
        return replace(workflow, current_step_index=target)

    if isinstance(action, SetContent):
        return replace(workflow, generated_content={**workflow.generated_content, action.key: action.value})

    if isinstance(action, SetSelection):
        return replace(workflow, user_selections={**workflow.user_selections, action.key: action.value})

    if isinstance(action, ClearSelection):
        rest = {k: v for k, v in workflow.user_selections.items() if k != action.key}
        return replace(workflow, user_selections=rest)

    if isinstance(action, AddInsight):
        insight = OperatorInsight(
            id=time_ordered_id("INS", now=ts),
            category=InsightCategory(action.category),
            title=action.title,
            content=action.content,
            step_id=action.step_id,
            created_at=ts,
        )
        return replace(workflow, insights=(*workflow.insights, insight))

    if isinstance(action, SetNotes):
        return replace(workflow, notes=action.notes)

    if isinstance(action, Complete):
        steps = tuple(
            replace(s, complete=True, completed_at=ts) if i <= index and not s.done else s
            for i, s in enumerate(workflow.steps)
        )
        logger.debug("Completed workflow %s", workflow.id)
        return replace(workflow, steps=steps, status=WorkflowStatus.COMPLETED, completed_at=ts)

    if isinstance(action, Abandon):
        logger.debug("Abandoned workflow %s at step %d", workflow.id, index)
        return replace(workflow, status=WorkflowStatus.ABANDONED, completed_at=ts)

    raise WorkflowError(f"Unknown workflow action: {action!r}")


# ------------------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class ProceedCheck:
    can_proceed: bool
    validation: Optional[StepValidation] = None


@dataclass(frozen=True)
class WorkflowSummary:
    operator_name: str
    status: WorkflowStatus
    progress: float
    current_step: str
    total_steps: int
    insight_count: int
    duration: timedelta


def get_current_step(workflow: OperatorWorkflow) -> StepState | None:
    if 0 <= workflow.current_step_index < len(workflow.steps):
        return workflow.steps[workflow.current_step_index]
    return None


def get_visible_steps(workflow: OperatorWorkflow) -> list[StepState]:
    return [s for s in workflow.steps if s.config.should_show is None or s.config.should_show(workflow)]


def validate_current_step(workflow: OperatorWorkflow) -> StepValidation:
    """is_complete first, then validate; position in the step list is not considered."""
    step = get_current_step(workflow)
    if step is None:
        return StepValidation.fail("No current step")
    if step.config.is_complete is not None and not step.config.is_complete(workflow):
        return StepValidation.fail("Step not complete")
    if step.config.validate is not None:
        return step.config.validate(workflow)
    return StepValidation.ok()


def can_proceed_to_next(workflow: OperatorWorkflow) -> ProceedCheck:
    if workflow.current_step_index >= len(workflow.steps) - 1:
        return ProceedCheck(can_proceed=False)
    step = get_current_step(workflow)
    if step is None:
        return ProceedCheck(can_proceed=False)
    if step.config.is_complete is None and step.config.validate is None:
        return ProceedCheck(can_proceed=True)
    validation = validate_current_step(workflow)
    return ProceedCheck(can_proceed=validation.valid, validation=validation)


def can_go_back(workflow: OperatorWorkflow) -> bool:
    return workflow.current_step_index > 0


def can_skip_current(workflow: OperatorWorkflow) -> bool:
    step = get_current_step(workflow)
    return step is not None and step.config.can_skip


def get_progress(workflow: OperatorWorkflow) -> float:
    """Fraction in [0, 1] of steps that are complete or skipped."""
    if not workflow.steps:
        return 0.0
    return sum(1 for s in workflow.steps if s.done) / len(workflow.steps)


def get_session_summary(workflow: OperatorWorkflow, *, now: datetime | None = None) -> WorkflowSummary:
    end = workflow.completed_at if workflow.completed_at is not None else (now or utc_now())
    step = get_current_step(workflow)
    return WorkflowSummary(
        operator_name=OPERATOR_METADATA[workflow.operator_type].name,
        status=workflow.status,
        progress=get_progress(workflow),
        current_step=step.config.name if step is not None else "Unknown",
        total_steps=len(workflow.steps),
        insight_count=len(workflow.insights),
        duration=end - workflow.started_at,
    )


# ------------------------------------------------------------------------------
# Caller-side helpers
# ------------------------------------------------------------------------------


def _require_definition(workflow: OperatorWorkflow, definition: OperatorDefinition) -> None:
    if definition.operator_type != workflow.operator_type:
        raise WorkflowError(
            f"Definition for {definition.operator_type.value} cannot drive a "
            f"{workflow.operator_type.value} workflow"
        )


def generate_step_content(
    workflow: OperatorWorkflow,
    definition: OperatorDefinition,
    *,
    now: datetime | None = None,
) -> OperatorWorkflow:
    """Run the current step's generator (if any) and store its output under the step id."""
    _require_definition(workflow, definition)
    step = get_current_step(workflow)
    if step is None:
        return workflow
    generator = definition.generators.get(step.config.id)
    if generator is None:
        return workflow
    return reduce_workflow(workflow, SetContent(step.config.id, generator(workflow)), now=now)


def advance_workflow(workflow: OperatorWorkflow, *, now: datetime | None = None) -> OperatorWorkflow:
    if workflow.is_terminal:
        raise WorkflowStateError(f"Workflow {workflow.id} is {workflow.status.value}")
    check = can_proceed_to_next(workflow)
    if not check.can_proceed:
        step = get_current_step(workflow)
        raise StepGateError(step.config.id if step else "?", check.validation)
    return reduce_workflow(workflow, NextStep(), now=now)


def finish_workflow(
    workflow: OperatorWorkflow,
    definition: OperatorDefinition,
    *,
    force: bool = False,
    now: datetime | None = None,
) -> tuple[OperatorWorkflow, Any]:
    """
    Build the operator result and mark the workflow completed.

    The current step is validated like any other step being left unless
    force is set.
    """
    _require_definition(workflow, definition)
    if workflow.is_terminal:
        raise WorkflowStateError(f"Workflow {workflow.id} is {workflow.status.value}")
    if not force:
        validation = validate_current_step(workflow)
        if not validation.valid:
            step = get_current_step(workflow)
            raise StepGateError(step.config.id if step else "?", validation)

    result = definition.build_result(workflow)
    completed = reduce_workflow(workflow, Complete(), now=now)
    return replace(completed, result=result), result


def workflow_to_dict(workflow: OperatorWorkflow) -> dict[str, Any]:
    """JSON-ready view of a workflow. Step callables are reduced to their ids and flags."""
    from falsification_core.adapters.persistence import to_jsonable

    return {
        "id": workflow.id,
        "operator_type": workflow.operator_type.value,
        "input_hypothesis": workflow.input_hypothesis.model_dump(mode="json"),
        "steps": [
            {
                "id": s.config.id,
                "name": s.config.name,
                "can_skip": s.config.can_skip,
                "complete": s.complete,
                "skipped": s.skipped,
                "completed_at": s.completed_at.isoformat() if s.completed_at else None,
            }
            for s in workflow.steps
        ],
        "current_step_index": workflow.current_step_index,
        "generated_content": to_jsonable(dict(workflow.generated_content)),
        "user_selections": to_jsonable(dict(workflow.user_selections)),
        "insights": [i.model_dump(mode="json") for i in workflow.insights],
        "status": workflow.status.value,
        "started_at": workflow.started_at.isoformat(),
        "completed_at": workflow.completed_at.isoformat() if workflow.completed_at else None,
        "started_by": workflow.started_by,
        "notes": workflow.notes,
        "result": to_jsonable(workflow.result),
    }
