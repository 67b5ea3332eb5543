from __future__ import annotations

import json
from datetime import datetime, timedelta

import pytest

from falsification_core.contracts import HypothesisCard, InsightCategory, OperatorType, WorkflowStatus
from falsification_core.errors import StepGateError, WorkflowError, WorkflowStateError
from falsification_core.workflow import (
    Abandon,
    AddInsight,
    ClearSelection,
    Complete,
    GoToStep,
    NextStep,
    OperatorDefinition,
    OperatorWorkflow,
    PrevStep,
    SetContent,
    SetNotes,
    SetSelection,
    SkipStep,
    StepConfig,
    StepValidation,
    advance_workflow,
    can_go_back,
    can_proceed_to_next,
    can_skip_current,
    finish_workflow,
    generate_step_content,
    get_progress,
    get_session_summary,
    get_visible_steps,
    reduce_workflow,
    start_workflow,
    validate_current_step,
    workflow_to_dict,
)


def _validate_pick(wf: OperatorWorkflow) -> StepValidation:
    picks = wf.selection("pick", [])
    if not picks:
        return StepValidation.fail("Pick something")
    if len(picks) > 2:
        return StepValidation.ok(warnings=["That is a lot of picks"])
    return StepValidation.ok()


THREE_STEPS = OperatorDefinition(
    operator_type=OperatorType.LEVEL_SPLIT,
    steps=(
        StepConfig(id="intro", name="Intro", description="Read the card."),
        StepConfig(
            id="pick",
            name="Pick",
            description="Pick options.",
            is_complete=lambda wf: bool(wf.selection("pick")),
            validate=_validate_pick,
        ),
        StepConfig(id="wrap", name="Wrap", description="Wrap up.", can_skip=True),
    ),
    build_result=lambda wf: {"picked": list(wf.selection("pick", []))},
    generators={"pick": lambda wf: ["a", "b", "c"]},
)


@pytest.fixture
def workflow(card: HypothesisCard, now: datetime) -> OperatorWorkflow:
    return start_workflow(THREE_STEPS, card, started_by="tester", now=now)


def test_start_workflow_initial_state(workflow: OperatorWorkflow, card: HypothesisCard, now: datetime) -> None:
    assert workflow.status is WorkflowStatus.INITIALIZING
    assert workflow.current_step_index == 0
    assert workflow.input_hypothesis == card
    assert workflow.started_at == now
    assert workflow.id.startswith("OP-level_split-")
    assert [s.config.id for s in workflow.steps] == ["intro", "pick", "wrap"]
    assert get_progress(workflow) == 0.0


def test_start_workflow_requires_steps(card: HypothesisCard) -> None:
    empty = OperatorDefinition(operator_type=OperatorType.SCALE_CHECK, steps=(), build_result=lambda wf: None)
    with pytest.raises(WorkflowError):
        start_workflow(empty, card)


def test_engine_advances_past_an_incomplete_step_but_the_gate_does_not(
    workflow: OperatorWorkflow, now: datetime
) -> None:
    at_pick = reduce_workflow(workflow, NextStep(), now=now)
    assert at_pick.current_step_index == 1
    assert at_pick.status is WorkflowStatus.IN_PROGRESS

    check = can_proceed_to_next(at_pick)
    assert not check.can_proceed
    assert check.validation is not None
    assert check.validation.errors == ("Step not complete",)

    with pytest.raises(StepGateError) as excinfo:
        advance_workflow(at_pick, now=now)
    assert excinfo.value.step_id == "pick"

    # the raw reducer is mechanism only
    forced = reduce_workflow(at_pick, NextStep(), now=now)
    assert forced.current_step_index == 2
    assert forced.steps[1].complete


def test_gate_opens_once_the_step_validates(workflow: OperatorWorkflow, now: datetime) -> None:
    wf = advance_workflow(workflow, now=now)
    wf = reduce_workflow(wf, SetSelection("pick", ["a"]))
    assert can_proceed_to_next(wf).can_proceed
    wf = advance_workflow(wf, now=now)
    assert wf.current_step_index == 2
    assert wf.steps[1].completed_at == now


def test_validation_warnings_do_not_block(workflow: OperatorWorkflow) -> None:
    wf = reduce_workflow(workflow, NextStep())
    wf = reduce_workflow(wf, SetSelection("pick", ["a", "b", "c"]))
    validation = validate_current_step(wf)
    assert validation.valid
    assert validation.warnings == ("That is a lot of picks",)


def test_step_without_checks_may_always_be_left(workflow: OperatorWorkflow) -> None:
    check = can_proceed_to_next(workflow)
    assert check.can_proceed
    assert check.validation is None


def test_last_step_cannot_proceed(workflow: OperatorWorkflow) -> None:
    wf = reduce_workflow(reduce_workflow(workflow, NextStep()), NextStep())
    assert not can_proceed_to_next(wf).can_proceed
    assert reduce_workflow(wf, NextStep()) is wf


def test_prev_and_goto_only_move_backwards(workflow: OperatorWorkflow) -> None:
    assert reduce_workflow(workflow, PrevStep()) is workflow
    assert not can_go_back(workflow)

    wf = reduce_workflow(reduce_workflow(workflow, NextStep()), NextStep())
    assert reduce_workflow(wf, PrevStep()).current_step_index == 1
    assert reduce_workflow(wf, GoToStep(0)).current_step_index == 0
    assert reduce_workflow(wf, GoToStep(5)) is wf

    back = reduce_workflow(wf, GoToStep(0))
    assert reduce_workflow(back, GoToStep(2)) is back


def test_skip_only_applies_to_skippable_steps(workflow: OperatorWorkflow) -> None:
    assert not can_skip_current(workflow)
    assert reduce_workflow(workflow, SkipStep()) is workflow


def test_skip_marks_step_skipped_and_counts_towards_progress(card: HypothesisCard, now: datetime) -> None:
    definition = OperatorDefinition(
        operator_type=OperatorType.SCALE_CHECK,
        steps=(
            StepConfig(id="optional", name="Optional", description="", can_skip=True),
            StepConfig(id="last", name="Last", description=""),
        ),
        build_result=lambda wf: None,
    )
    wf = start_workflow(definition, card, now=now)
    assert can_skip_current(wf)
    skipped = reduce_workflow(wf, SkipStep(), now=now)
    assert skipped.current_step_index == 1
    assert skipped.steps[0].skipped and not skipped.steps[0].complete
    assert skipped.status is WorkflowStatus.IN_PROGRESS
    assert get_progress(skipped) == 0.5


def test_progress_is_monotonic_over_forward_moves(workflow: OperatorWorkflow) -> None:
    seen = [get_progress(workflow)]
    wf = workflow
    for action in (NextStep(), SetSelection("pick", ["a"]), NextStep(), Complete()):
        wf = reduce_workflow(wf, action)
        seen.append(get_progress(wf))
    assert seen == sorted(seen)
    assert seen[-1] == 1.0


def test_content_selection_and_notes_actions(workflow: OperatorWorkflow, now: datetime) -> None:
    wf = reduce_workflow(workflow, SetContent("k", [1, 2]))
    wf = reduce_workflow(wf, SetSelection("s", "x"))
    wf = reduce_workflow(wf, SetNotes("thinking"))
    assert wf.content("k") == [1, 2]
    assert wf.selection("s") == "x"
    assert wf.notes == "thinking"

    cleared = reduce_workflow(wf, ClearSelection("s"))
    assert cleared.selection("s") is None
    assert wf.selection("s") == "x"


def test_add_insight(workflow: OperatorWorkflow, now: datetime) -> None:
    wf = reduce_workflow(
        workflow,
        AddInsight(InsightCategory.WARNING, "Mixed levels", "Statement mixes levels", "intro"),
        now=now,
    )
    (insight,) = wf.insights
    assert insight.category is InsightCategory.WARNING
    assert insight.step_id == "intro"
    assert insight.created_at == now
    assert insight.id.startswith("INS-")


def test_terminal_workflows_ignore_actions(workflow: OperatorWorkflow, now: datetime) -> None:
    abandoned = reduce_workflow(workflow, Abandon(), now=now)
    assert abandoned.status is WorkflowStatus.ABANDONED
    assert abandoned.completed_at == now
    assert reduce_workflow(abandoned, NextStep()) is abandoned
    assert reduce_workflow(abandoned, SetNotes("late")) is abandoned

    with pytest.raises(WorkflowStateError):
        advance_workflow(abandoned)
    with pytest.raises(WorkflowStateError):
        finish_workflow(abandoned, THREE_STEPS)


def test_complete_marks_visited_steps(workflow: OperatorWorkflow, now: datetime) -> None:
    wf = reduce_workflow(workflow, NextStep(), now=now)
    done = reduce_workflow(wf, Complete(), now=now)
    assert done.status is WorkflowStatus.COMPLETED
    assert [s.complete for s in done.steps] == [True, True, False]
    assert reduce_workflow(done, SetContent("late", 1)) is done
    assert reduce_workflow(done, SetSelection("pick", ["a"])) is done


def test_generate_step_content_runs_the_current_generator(workflow: OperatorWorkflow) -> None:
    assert generate_step_content(workflow, THREE_STEPS) is workflow
    at_pick = reduce_workflow(workflow, NextStep())
    generated = generate_step_content(at_pick, THREE_STEPS)
    assert generated.content("pick") == ["a", "b", "c"]


def test_definition_must_match_workflow(workflow: OperatorWorkflow) -> None:
    other = OperatorDefinition(operator_type=OperatorType.SCALE_CHECK, steps=THREE_STEPS.steps, build_result=lambda wf: None)
    with pytest.raises(WorkflowError):
        generate_step_content(workflow, other)


def test_finish_validates_the_current_step_unless_forced(workflow: OperatorWorkflow, now: datetime) -> None:
    at_pick = reduce_workflow(workflow, NextStep(), now=now)
    with pytest.raises(StepGateError):
        finish_workflow(at_pick, THREE_STEPS, now=now)

    forced, result = finish_workflow(at_pick, THREE_STEPS, force=True, now=now)
    assert result == {"picked": []}
    assert forced.status is WorkflowStatus.COMPLETED

    ready = reduce_workflow(at_pick, SetSelection("pick", ["b"]))
    finished, result = finish_workflow(ready, THREE_STEPS, now=now)
    assert result == {"picked": ["b"]}
    assert finished.result == result
    assert finished.completed_at == now


def test_visible_steps_follow_should_show(card: HypothesisCard) -> None:
    definition = OperatorDefinition(
        operator_type=OperatorType.LEVEL_SPLIT,
        steps=(
            StepConfig(id="one", name="One", description=""),
            StepConfig(id="maybe", name="Maybe", description="", should_show=lambda wf: bool(wf.selection("show"))),
        ),
        build_result=lambda wf: None,
    )
    wf = start_workflow(definition, card)
    assert [s.config.id for s in get_visible_steps(wf)] == ["one"]
    shown = reduce_workflow(wf, SetSelection("show", True))
    assert [s.config.id for s in get_visible_steps(shown)] == ["one", "maybe"]


def test_session_summary(workflow: OperatorWorkflow, now: datetime) -> None:
    wf = reduce_workflow(workflow, NextStep(), now=now)
    summary = get_session_summary(wf, now=now + timedelta(minutes=5))
    assert summary.operator_name == "Level Split"
    assert summary.current_step == "Pick"
    assert summary.total_steps == 3
    assert summary.progress == pytest.approx(1 / 3)
    assert summary.duration == timedelta(minutes=5)

    done = reduce_workflow(wf, Complete(), now=now + timedelta(minutes=2))
    assert get_session_summary(done, now=now + timedelta(hours=1)).duration == timedelta(minutes=2)


def test_workflow_to_dict_is_json_ready(workflow: OperatorWorkflow, now: datetime) -> None:
    wf = reduce_workflow(workflow, AddInsight(InsightCategory.DISCOVERY, "t", "c", "intro"), now=now)
    data = workflow_to_dict(wf)
    json.dumps(data)
    assert data["operator_type"] == "level_split"
    assert [s["id"] for s in data["steps"]] == ["intro", "pick", "wrap"]
