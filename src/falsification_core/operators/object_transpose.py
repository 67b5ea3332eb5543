# falsification_core/operators/object_transpose.py
"""
Object Transpose: flip the question around and enumerate rival causal stories.

Reverse causation, third variables drawn from the hypothesis' domains,
selection effects, feedback loops and plain coincidence are generated as
alternatives; the user rates how plausible each one is, and every
alternative rated at or above HIGH_PLAUSIBILITY gets a discriminating test.
"""
from __future__ import annotations

from typing import Any, Literal, Sequence

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

STATE_HYPOTHESIS = "state-hypothesis"
GENERATE_ALTERNATIVES = "generate-alternatives"
RATE_PLAUSIBILITY = "rate-plausibility"
IDENTIFY_TESTS = "identify-tests"

HIGH_PLAUSIBILITY = 3
MAX_THIRD_VARIABLES = 4

Feasibility = Literal["easy", "moderate", "difficult", "impractical"]
EvidenceDiscrimination = Literal["poor", "moderate", "good"]

_OPERATOR_CONFIG = ConfigDict(extra="forbid", frozen=True)


class AlternativeType(StrEnum):
    REVERSE_CAUSATION = "reverse_causation"
    THIRD_VARIABLE = "third_variable"
    SELECTION = "selection"
    BIDIRECTIONAL = "bidirectional"
    COINCIDENCE = "coincidence"
    OTHER = "other"


class AlternativeExplanation(BaseModel):
    model_config = _OPERATOR_CONFIG

    id: str
    type: AlternativeType
    name: str
    description: str
    proposed_z: str | None = None
    implications: list[str] = Field(default_factory=list)


class PlausibilityRating(BaseModel):
    model_config = _OPERATOR_CONFIG

    alternative_id: str
    plausibility: int = Field(ge=0, le=5)
    evidence_discrimination: EvidenceDiscrimination = "poor"
    notes: str | None = None


class DiscriminatingTest(BaseModel):
    model_config = _OPERATOR_CONFIG

    id: str
    alternative_id: str
    description: str
    original_support: str
    alternative_support: str
    feasibility: Feasibility
    priority: int | None = None


class ObjectTransposeResult(BaseModel):
    model_config = _OPERATOR_CONFIG

    alternatives: list[AlternativeExplanation] = Field(default_factory=list)
    user_ratings: list[PlausibilityRating] = Field(default_factory=list)
    discriminating_tests: list[DiscriminatingTest] = Field(default_factory=list)
    high_priority_alternative_ids: list[str] = Field(default_factory=list)
    selected_test_ids: list[str] = Field(default_factory=list)


# ------------------------------------------------------------------------------
# Alternative generation
# ------------------------------------------------------------------------------

THIRD_VARIABLE_TEMPLATES: dict[str, tuple[str, ...]] = {
    "psychology": (
        "Pre-existing mental health conditions",
        "Personality traits (e.g., neuroticism)",
        "Genetic predisposition",
        "Early life experiences",
        "Cognitive style",
    ),
    "social": (
        "Socioeconomic status",
        "Social support network",
        "Cultural background",
        "Education level",
        "Neighborhood effects",
    ),
    "health": (
        "Underlying health conditions",
        "Lifestyle factors",
        "Access to healthcare",
        "Genetic factors",
        "Environmental exposures",
    ),
    "technology": (
        "Digital literacy",
        "Age/generational effects",
        "Access to technology",
        "Usage patterns",
        "Platform-specific features",
    ),
    "general": (
        "Confounding lifestyle factors",
        "Selection into treatment",
        "Measurement artifacts",
        "Temporal confounds",
        "Unmeasured covariates",
    ),
}

# domain tag fragment -> template family
_DOMAIN_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("psych", "mental"), "psychology"),
    (("social", "socio"), "social"),
    (("health", "medical", "epidemiology"), "health"),
    (("tech", "digital", "media"), "technology"),
)


def generate_reverse_causation(hypothesis: HypothesisCard) -> AlternativeExplanation:
    return AlternativeExplanation(
        id="alt-reverse",
        type=AlternativeType.REVERSE_CAUSATION,
        name="Reverse Causation",
        description=(
            "What if the outcome (Y) actually causes the proposed cause (X)? "
            f'"{hypothesis.statement}" might have the causal arrow pointing the wrong way.'
        ),
        implications=[
            "Interventions targeting X may be ineffective",
            "Need temporal precedence evidence",
            "Look for natural experiments where Y changes first",
        ],
    )


def generate_third_variables(hypothesis: HypothesisCard) -> list[AlternativeExplanation]:
    candidates: list[str] = []
    for tag in (d.lower() for d in hypothesis.domain):
        for fragments, family in _DOMAIN_KEYWORDS:
            if any(f in tag for f in fragments):
                candidates.extend(THIRD_VARIABLE_TEMPLATES[family])
    candidates.extend(THIRD_VARIABLE_TEMPLATES["general"][:2])

    unique = list(dict.fromkeys(candidates))[:MAX_THIRD_VARIABLES]
    return [
        AlternativeExplanation(
            id=f"alt-z{i}",
            type=AlternativeType.THIRD_VARIABLE,
            name=f"Third Variable: {variable}",
            description=(
                f'What if "{variable}" causes both X and Y? The observed relationship '
                "might be spurious, with both driven by this common factor."
            ),
            proposed_z=variable,
            implications=[
                f"Need to control for {variable}",
                "Association may disappear after adjustment",
                f"Should measure {variable} directly",
            ],
        )
        for i, variable in enumerate(unique, start=1)
    ]


def generate_selection_effect(hypothesis: HypothesisCard) -> AlternativeExplanation:
    return AlternativeExplanation(
        id="alt-selection",
        type=AlternativeType.SELECTION,
        name="Selection Effects",
        description=(
            "People who experience X might already differ in ways that affect Y. "
            f'The relationship in "{hypothesis.statement}" might reflect who self-selects into the treatment group.'
        ),
        implications=[
            "Compare similar people who differ only in X",
            "Consider survivor bias",
            "Check for differential attrition",
        ],
    )


def generate_bidirectional() -> AlternativeExplanation:
    return AlternativeExplanation(
        id="alt-bidirectional",
        type=AlternativeType.BIDIRECTIONAL,
        name="Bidirectional Causation",
        description="What if X and Y reinforce each other in a feedback loop (X ↔ Y) rather than X → Y?",
        implications=[
            "Need longitudinal data with multiple waves",
            "Look for lagged effects in both directions",
            "Breaking the cycle at any point may help",
        ],
    )


def generate_coincidence() -> AlternativeExplanation:
    return AlternativeExplanation(
        id="alt-coincidence",
        type=AlternativeType.COINCIDENCE,
        name="Coincidental Correlation",
        description=(
            "What if X and Y are not causally related at all? The correlation might be a "
            "statistical artifact, a multiple-comparisons result or a coincidence of timing."
        ),
        implications=[
            "Replication in independent samples is crucial",
            "Consider the prior probability of the effect",
            "Pre-register the hypothesis",
        ],
    )


def generate_alternatives(hypothesis: HypothesisCard) -> list[AlternativeExplanation]:
    return [
        generate_reverse_causation(hypothesis),
        *generate_third_variables(hypothesis),
        generate_selection_effect(hypothesis),
        generate_bidirectional(),
        generate_coincidence(),
    ]


# ------------------------------------------------------------------------------
# Discriminating tests
# ------------------------------------------------------------------------------


def generate_test_for_alternative(alt: AlternativeExplanation) -> DiscriminatingTest | None:
    test_id = f"test-{alt.id}"
    if alt.type == AlternativeType.REVERSE_CAUSATION:
        return DiscriminatingTest(
            id=test_id,
            alternative_id=alt.id,
            description="Examine temporal sequence: does X reliably precede Y?",
            original_support="X consistently occurs before Y, with appropriate lag",
            alternative_support="Y often precedes X, or they occur simultaneously",
            feasibility="moderate",
        )
    if alt.type == AlternativeType.THIRD_VARIABLE:
        z = alt.proposed_z or "the third variable"
        return DiscriminatingTest(
            id=test_id,
            alternative_id=alt.id,
            description=f"Control for {z}: does the X-Y relationship persist?",
            original_support=f"Relationship remains after controlling for {z}",
            alternative_support=f"Relationship disappears after controlling for {z}",
            feasibility="moderate",
        )
    if alt.type == AlternativeType.SELECTION:
        return DiscriminatingTest(
            id=test_id,
            alternative_id=alt.id,
            description="Find a natural experiment or instrumental variable to address selection",
            original_support="Exogenous variation in X still predicts Y",
            alternative_support="Effect disappears when using exogenous variation",
            feasibility="difficult",
        )
    if alt.type == AlternativeType.BIDIRECTIONAL:
        return DiscriminatingTest(
            id=test_id,
            alternative_id=alt.id,
            description="Use cross-lagged panel analysis to test both directions",
            original_support="X(t) → Y(t+1) is stronger than Y(t) → X(t+1)",
            alternative_support="Both directions show similar effects, or Y → X is stronger",
            feasibility="moderate",
        )
    if alt.type == AlternativeType.COINCIDENCE:
        return DiscriminatingTest(
            id=test_id,
            alternative_id=alt.id,
            description="Conduct a pre-registered replication with adequate power",
            original_support="Effect replicates consistently across studies",
            alternative_support="Effect fails to replicate or is highly variable",
            feasibility="moderate",
        )
    return None


def generate_discriminating_tests(
    alternatives: Sequence[AlternativeExplanation],
    ratings: Sequence[PlausibilityRating],
) -> list[DiscriminatingTest]:
    plausibility = {r.alternative_id: r.plausibility for r in ratings}
    tests = []
    for alt in alternatives:
        if plausibility.get(alt.id, 0) < HIGH_PLAUSIBILITY:
            continue
        test = generate_test_for_alternative(alt)
        if test is not None:
            tests.append(test)
    return tests


# ------------------------------------------------------------------------------
# Workflow wiring
# ------------------------------------------------------------------------------


def rate_alternatives(workflow: OperatorWorkflow, ratings: Sequence[PlausibilityRating]) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(RATE_PLAUSIBILITY, list(ratings)))


def _ratings(workflow: OperatorWorkflow) -> list[PlausibilityRating]:
    return list(workflow.selection(RATE_PLAUSIBILITY, []))


def _has_alternatives(workflow: OperatorWorkflow) -> bool:
    return bool(workflow.content(GENERATE_ALTERNATIVES))


def _has_ratings(workflow: OperatorWorkflow) -> bool:
    return any(r.plausibility > 0 for r in _ratings(workflow))


def _has_tests(workflow: OperatorWorkflow) -> bool:
    return bool(workflow.content(IDENTIFY_TESTS))


def _validate_ratings(workflow: OperatorWorkflow) -> StepValidation:
    ratings = _ratings(workflow)
    if not any(r.plausibility > 0 for r in ratings):
        return StepValidation.fail("Rate at least one alternative")
    rated = {r.alternative_id for r in ratings if r.plausibility > 0}
    unrated = [a for a in workflow.content(GENERATE_ALTERNATIVES, []) if a.id not in rated]
    if unrated:
        return StepValidation.ok(warnings=[f"{len(unrated)} alternative(s) not rated"])
    return StepValidation.ok()


OBJECT_TRANSPOSE_STEPS: tuple[StepConfig, ...] = (
    StepConfig(
        id=STATE_HYPOTHESIS,
        name="State Current Hypothesis",
        description="Review the hypothesis X → Y before considering alternatives.",
        is_complete=lambda wf: True,
    ),
    StepConfig(
        id=GENERATE_ALTERNATIVES,
        name="Generate Alternatives",
        description="Alternative explanations, each a different causal story.",
        is_complete=_has_alternatives,
    ),
    StepConfig(
        id=RATE_PLAUSIBILITY,
        name="Rate Plausibility",
        description="Rate each alternative's plausibility (1-5) and how well existing evidence discriminates.",
        is_complete=_has_ratings,
        validate=_validate_ratings,
    ),
    StepConfig(
        id=IDENTIFY_TESTS,
        name="Identify Tests",
        description="Tests that would distinguish the plausible alternatives from the original hypothesis.",
        can_skip=True,
        is_complete=_has_tests,
    ),
)


def build_object_transpose_result(workflow: OperatorWorkflow) -> ObjectTransposeResult:
    ratings = _ratings(workflow)
    tests: list[DiscriminatingTest] = list(workflow.content(IDENTIFY_TESTS, []))
    return ObjectTransposeResult(
        alternatives=list(workflow.content(GENERATE_ALTERNATIVES, [])),
        user_ratings=ratings,
        discriminating_tests=tests,
        high_priority_alternative_ids=[r.alternative_id for r in ratings if r.plausibility >= HIGH_PLAUSIBILITY],
        selected_test_ids=[
            t.id for t in tests if (t.priority or 0) > 0 or t.feasibility in ("easy", "moderate")
        ],
    )


def _recorded_test_ids(result: Any) -> list[str]:
    return list(result.selected_test_ids)


OBJECT_TRANSPOSE = OperatorDefinition(
    operator_type=OperatorType.OBJECT_TRANSPOSE,
    steps=OBJECT_TRANSPOSE_STEPS,
    build_result=build_object_transpose_result,
    generators={
        GENERATE_ALTERNATIVES: lambda wf: generate_alternatives(wf.input_hypothesis),
        IDENTIFY_TESTS: lambda wf: generate_discriminating_tests(
            wf.content(GENERATE_ALTERNATIVES, []), _ratings(wf)
        ),
    },
    extract_test_ids=_recorded_test_ids,
)
