# falsification_core/operators/level_split.py
"""
Level Split: separate the program (what is computed or decided) from the
interpreter (the machinery that carries it out) and flag hypotheses that
mix the two.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from falsification_core._compat import StrEnum
from falsification_core.contracts import HypothesisCard, OperatorType
from falsification_core.workflow import (
    OperatorDefinition,
    OperatorWorkflow,
    SetSelection,
    StepConfig,
    StepValidation,
    reduce_workflow,
)

IDENTIFY_LEVELS = "identify-levels"
CLASSIFY_LEVELS = "classify-levels"
CHECK_CONFLATION = "check-conflation"
REFINE_HYPOTHESIS = "refine-hypothesis"

MIN_STATEMENT_LENGTH = 10

_OPERATOR_CONFIG = ConfigDict(extra="forbid", frozen=True)


class LevelType(StrEnum):
    PROGRAM = "program"
    INTERPRETER = "interpreter"
    BOTH = "both"
    UNCLEAR = "unclear"


class LevelIdentification(BaseModel):
    model_config = _OPERATOR_CONFIG

    id: str
    name: str
    description: str
    hypothesis_ids: list[str] = Field(default_factory=list)
    level_type: LevelType = LevelType.UNCLEAR


class ConflationCheck(BaseModel):
    model_config = _OPERATOR_CONFIG

    conflation_detected: bool
    description: str | None = None
    program_terms: list[str] = Field(default_factory=list)
    interpreter_terms: list[str] = Field(default_factory=list)


class LevelSplitResult(BaseModel):
    model_config = _OPERATOR_CONFIG

    applied_at: datetime
    applied_by: str
    levels: list[LevelIdentification] = Field(default_factory=list)
    conflation_detected: bool = False
    conflation_description: str | None = None
    refined_statement: str | None = None
    notes: str | None = None


# Vocabulary cues for the two levels. Matching is on whole words, lowercase.
PROGRAM_TERMS: frozenset[str] = frozenset(
    {
        "information", "instruction", "instructions", "rule", "rules", "signal", "signals",
        "code", "plan", "goal", "goals", "strategy", "representation", "decision",
        "belief", "beliefs", "expectation", "expectations", "learning", "meaning",
    }
)
INTERPRETER_TERMS: frozenset[str] = frozenset(
    {
        "molecule", "molecules", "protein", "proteins", "neuron", "neurons", "cell", "cells",
        "gene", "genes", "hormone", "hormones", "circuit", "circuits", "tissue", "brain",
        "hardware", "chemical", "receptor", "receptors", "enzyme", "enzymes",
    }
)

_WORD_RE = re.compile(r"[a-z]+")


def _terms_in(text: str, vocabulary: frozenset[str]) -> list[str]:
    return sorted({w for w in _WORD_RE.findall(text.lower()) if w in vocabulary})


def identify_levels(hypothesis: HypothesisCard) -> list[LevelIdentification]:
    """Two candidate levels: the claim as a program and the mechanism as its interpreter."""
    return [
        LevelIdentification(
            id="level-program",
            name="Program",
            description=f"What is being specified or computed: {hypothesis.statement}",
            hypothesis_ids=[hypothesis.id],
            level_type=LevelType.PROGRAM,
        ),
        LevelIdentification(
            id="level-interpreter",
            name="Interpreter",
            description=f"The machinery that executes it: {hypothesis.mechanism}",
            hypothesis_ids=[hypothesis.id],
            level_type=LevelType.INTERPRETER,
        ),
    ]


def check_conflation(
    hypothesis: HypothesisCard,
    classifications: Mapping[str, LevelType] | None = None,
) -> ConflationCheck:
    """
    Conflation is flagged when the statement uses vocabulary from both
    levels, or when the user classified any level as both.
    """
    program = _terms_in(hypothesis.statement, PROGRAM_TERMS)
    interpreter = _terms_in(hypothesis.statement, INTERPRETER_TERMS)
    mixed_labels = [k for k, v in (classifications or {}).items() if LevelType(v) == LevelType.BOTH]

    reasons = []
    if program and interpreter:
        reasons.append(
            f"The statement mixes program terms ({', '.join(program)}) "
            f"with interpreter terms ({', '.join(interpreter)})."
        )
    if mixed_labels:
        reasons.append(f"Levels classified as both program and interpreter: {', '.join(sorted(mixed_labels))}.")

    return ConflationCheck(
        conflation_detected=bool(reasons),
        description=" ".join(reasons) or None,
        program_terms=program,
        interpreter_terms=interpreter,
    )


# ------------------------------------------------------------------------------
# Workflow wiring
# ------------------------------------------------------------------------------


def classify_levels(workflow: OperatorWorkflow, classifications: Mapping[str, LevelType]) -> OperatorWorkflow:
    return reduce_workflow(
        workflow,
        SetSelection(CLASSIFY_LEVELS, {k: LevelType(v) for k, v in classifications.items()}),
    )


def refine_statement(workflow: OperatorWorkflow, statement: str) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(REFINE_HYPOTHESIS, statement))


def _classifications(workflow: OperatorWorkflow) -> dict[str, LevelType]:
    return dict(workflow.selection(CLASSIFY_LEVELS, {}))


def _validate_classification(workflow: OperatorWorkflow) -> StepValidation:
    classifications = _classifications(workflow)
    if not classifications:
        return StepValidation.fail("Classify at least one level")
    known = {lvl.id for lvl in workflow.content(IDENTIFY_LEVELS, [])}
    unknown = sorted(set(classifications) - known)
    if unknown:
        return StepValidation.fail(f"Unknown level(s): {', '.join(unknown)}")
    unclear = [k for k, v in classifications.items() if v == LevelType.UNCLEAR]
    if unclear:
        return StepValidation.ok(warnings=[f"{len(unclear)} level(s) still unclear"])
    return StepValidation.ok()


def _conflation_found(workflow: OperatorWorkflow) -> bool:
    check = workflow.content(CHECK_CONFLATION)
    return check is not None and check.conflation_detected


def _validate_refinement(workflow: OperatorWorkflow) -> StepValidation:
    refined = (workflow.selection(REFINE_HYPOTHESIS) or "").strip()
    if refined and len(refined) < MIN_STATEMENT_LENGTH:
        return StepValidation.fail(f"Refined statement must be at least {MIN_STATEMENT_LENGTH} characters")
    return StepValidation.ok()


LEVEL_SPLIT_STEPS: tuple[StepConfig, ...] = (
    StepConfig(
        id=IDENTIFY_LEVELS,
        name="Identify Levels",
        description="Candidate levels of explanation for the hypothesis.",
        help_text="The program is the specification; the interpreter is whatever reads and executes it.",
        is_complete=lambda wf: bool(wf.content(IDENTIFY_LEVELS)),
    ),
    StepConfig(
        id=CLASSIFY_LEVELS,
        name="Classify Levels",
        description="Mark each level as program, interpreter, both or unclear.",
        is_complete=lambda wf: bool(_classifications(wf)),
        validate=_validate_classification,
    ),
    StepConfig(
        id=CHECK_CONFLATION,
        name="Check for Conflation",
        description="Does the hypothesis explain one level in terms of the other?",
        is_complete=lambda wf: wf.content(CHECK_CONFLATION) is not None,
    ),
    StepConfig(
        id=REFINE_HYPOTHESIS,
        name="Refine Hypothesis",
        description="Optionally restate the hypothesis at a single level.",
        can_skip=True,
        should_show=_conflation_found,
        validate=_validate_refinement,
    ),
)


def build_level_split_result(workflow: OperatorWorkflow) -> LevelSplitResult:
    conflation: Optional[ConflationCheck] = workflow.content(CHECK_CONFLATION)
    if conflation is None:
        conflation = check_conflation(workflow.input_hypothesis, _classifications(workflow))

    classifications = _classifications(workflow)
    levels = [
        lvl.model_copy(update={"level_type": classifications.get(lvl.id, lvl.level_type)})
        for lvl in workflow.content(IDENTIFY_LEVELS, [])
    ]
    refined = (workflow.selection(REFINE_HYPOTHESIS) or "").strip() or None
    return LevelSplitResult(
        applied_at=workflow.started_at,
        applied_by=workflow.started_by or "user",
        levels=levels,
        conflation_detected=conflation.conflation_detected,
        conflation_description=conflation.description,
        refined_statement=refined,
        notes=workflow.notes,
    )


def _revision(result: Any) -> Optional[dict[str, Any]]:
    if result.refined_statement:
        return {"statement": result.refined_statement}
    return None


LEVEL_SPLIT = OperatorDefinition(
    operator_type=OperatorType.LEVEL_SPLIT,
    steps=LEVEL_SPLIT_STEPS,
    build_result=build_level_split_result,
    generators={
        IDENTIFY_LEVELS: lambda wf: identify_levels(wf.input_hypothesis),
        CHECK_CONFLATION: lambda wf: check_conflation(wf.input_hypothesis, _classifications(wf)),
    },
    extract_revision=_revision,
)
