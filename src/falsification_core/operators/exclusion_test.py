# falsification_core/operators/exclusion_test.py
"""
Exclusion Test: design tests that could rule the hypothesis out, not just weaken it.

Candidate tests are filled in from a fixed set of templates and ranked by
the discriminative power of their category.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Literal, NamedTuple, Sequence

from pydantic import BaseModel, ConfigDict, Field

from falsification_core._compat import StrEnum
from falsification_core.contracts import HypothesisCard, OperatorType
from falsification_core.ids import digest_id, time_ordered_id
from falsification_core.workflow import (
    OperatorDefinition,
    OperatorWorkflow,
    SetSelection,
    StepConfig,
    StepValidation,
    reduce_workflow,
)

REVIEW_HYPOTHESIS = "review-hypothesis"
GENERATE_TESTS = "generate-tests"
SELECT_TESTS = "select-tests"
GENERATE_PROTOCOLS = "generate-protocols"
RECORD_TESTS = "record-tests"

# user selection holding tests written by hand
CUSTOM_TESTS = "custom-tests"

MAX_FOCUSED_TESTS = 5


class ExclusionTestCategory(StrEnum):
    NATURAL_EXPERIMENT = "natural_experiment"
    CROSS_CONTEXT = "cross_context"
    MECHANISM_BLOCK = "mechanism_block"
    DOSE_RESPONSE = "dose_response"
    TEMPORAL_SEQUENCE = "temporal_sequence"
    SPECIFICITY = "specificity"
    COHERENCE = "coherence"
    CUSTOM = "custom"


class TestFeasibility(StrEnum):
    __test__ = False

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


CATEGORY_DEFAULT_POWER: dict[ExclusionTestCategory, int] = {
    ExclusionTestCategory.NATURAL_EXPERIMENT: 5,
    ExclusionTestCategory.CROSS_CONTEXT: 5,
    ExclusionTestCategory.MECHANISM_BLOCK: 5,
    ExclusionTestCategory.DOSE_RESPONSE: 3,
    ExclusionTestCategory.TEMPORAL_SEQUENCE: 3,
    ExclusionTestCategory.SPECIFICITY: 2,
    ExclusionTestCategory.COHERENCE: 2,
    ExclusionTestCategory.CUSTOM: 3,
}

_EFFORT_BY_FEASIBILITY = {
    TestFeasibility.HIGH: "days",
    TestFeasibility.MEDIUM: "weeks",
    TestFeasibility.LOW: "months",
}

_POWER_LABELS = {5: "Decisive", 4: "Strong", 3: "Moderate", 2: "Weak", 1: "Minimal"}

_OPERATOR_CONFIG = ConfigDict(extra="forbid", frozen=True)


class ExclusionTest(BaseModel):
    __test__ = False
    model_config = _OPERATOR_CONFIG

    id: str
    name: str
    description: str
    category: ExclusionTestCategory
    discriminative_power: int = Field(ge=1, le=5)
    falsification_condition: str
    support_condition: str
    rationale: str
    feasibility: TestFeasibility
    feasibility_notes: str | None = None
    is_custom: bool = False


class TestProtocol(BaseModel):
    __test__ = False
    model_config = _OPERATOR_CONFIG

    test_id: str
    data_required: str = ""
    data_sources: list[str] = Field(default_factory=list)
    passing_criteria: str
    failing_criteria: str
    limitations: list[str] = Field(default_factory=list)
    estimated_effort: Literal["hours", "days", "weeks", "months"]
    notes: str = ""


class ExclusionTestResult(BaseModel):
    model_config = _OPERATOR_CONFIG

    generated_tests: list[ExclusionTest] = Field(default_factory=list)
    selected_test_ids: list[str] = Field(default_factory=list)
    protocols: list[TestProtocol] = Field(default_factory=list)
    tests_for_session: list[ExclusionTest] = Field(default_factory=list)


# ------------------------------------------------------------------------------
# Generation
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class _TestTemplate:
    category: ExclusionTestCategory
    name: str
    description: str
    falsification: str
    support: str
    rationale: str
    feasibility: TestFeasibility


_TEMPLATES: tuple[_TestTemplate, ...] = (
    _TestTemplate(
        ExclusionTestCategory.NATURAL_EXPERIMENT,
        "Natural Experiment: Variation in {cause}",
        "Find a situation where {cause} varies naturally but other factors are held constant.",
        "If {cause} varies naturally but {effect} does not change correspondingly, the hypothesis is falsified.",
        "If {effect} tracks {cause} variation while other factors are controlled, the hypothesis is supported.",
        "Natural experiments approximate random assignment without researcher intervention.",
        TestFeasibility.MEDIUM,
    ),
    _TestTemplate(
        ExclusionTestCategory.CROSS_CONTEXT,
        "Cross-Context: {cause} in Different Setting",
        "Test whether {cause} produces {effect} in a different context.",
        "If {cause} is present in a new context but {effect} does not occur, the hypothesis is falsified "
        "(unless context-dependency is part of the theory).",
        "If {effect} follows {cause} across different contexts, the hypothesis gains support through generalization.",
        "Cross-context replication separates a genuine relationship from an artifact of the original setting.",
        TestFeasibility.MEDIUM,
    ),
    _TestTemplate(
        ExclusionTestCategory.MECHANISM_BLOCK,
        "Mechanism Block: Interrupt {mechanism}",
        "If {cause} works through {mechanism}, then blocking {mechanism} should eliminate {effect}.",
        "If blocking {mechanism} does NOT eliminate {effect}, then {mechanism} is not the true pathway.",
        "If blocking {mechanism} eliminates {effect} as predicted, the mechanistic hypothesis is supported.",
        "Mechanism blocks test the proposed causal pathway directly.",
        TestFeasibility.LOW,
    ),
    _TestTemplate(
        ExclusionTestCategory.DOSE_RESPONSE,
        "Dose-Response: More {cause} → More {effect}?",
        "If {cause} really causes {effect}, then more {cause} should produce more {effect} "
        "(or less, if an inverse relationship is predicted).",
        "If the dose-response relationship is flat or opposite to prediction, the causal claim is weakened or falsified.",
        "If {effect} scales with {cause} as predicted, the causal hypothesis is supported.",
        "A gradient is a classic criterion for causation; its absence weakens causal claims.",
        TestFeasibility.MEDIUM,
    ),
    _TestTemplate(
        ExclusionTestCategory.TEMPORAL_SEQUENCE,
        "Temporal Check: Does {cause} Precede {effect}?",
        "Verify that {cause} occurs before {effect}. Causes cannot follow their effects.",
        "If {effect} occurs before or simultaneously with {cause}, causal direction is wrong.",
        "If {cause} consistently precedes {effect} with appropriate lag, temporal ordering is consistent with causation.",
        "Temporal precedence is necessary but not sufficient for causation.",
        TestFeasibility.HIGH,
    ),
    _TestTemplate(
        ExclusionTestCategory.SPECIFICITY,
        "Specificity: Does {cause} Only Affect {effect}?",
        "Check whether {cause} affects only {effect} or many other outcomes as well.",
        "If {cause} affects many unrelated outcomes equally, it may be a confounder or indicator rather than true cause.",
        "If {cause} specifically affects {effect} and not unrelated outcomes, specificity supports causation.",
        "High specificity suggests true causation, though some causes have broad effects.",
        TestFeasibility.MEDIUM,
    ),
    _TestTemplate(
        ExclusionTestCategory.COHERENCE,
        "Coherence Check: Fits Established Knowledge?",
        "Evaluate whether the proposed {cause} → {effect} relationship is coherent with established knowledge.",
        "If the proposed relationship violates well-established principles, the hypothesis requires extraordinary evidence.",
        "If the relationship fits known mechanisms and principles, coherence provides weak supporting evidence.",
        "Coherence is the weakest criterion; novel findings may violate current knowledge.",
        TestFeasibility.HIGH,
    ),
)

_CAUSAL_RE = re.compile(
    r"^(?P<cause>.+?)\s+(?:causes?|leads?\s+to|produces?|affects?|influences?)\s+(?P<effect>.+?)"
    r"(?:\s+(?:through|via|by)\s+(?P<mechanism>.+))?$",
    re.IGNORECASE,
)
_FALLBACK_SPLIT_RE = re.compile(r"\s+(?:and|causes?|affects?)\s+", re.IGNORECASE)


class HypothesisTerms(NamedTuple):
    cause: str
    effect: str
    mechanism: str


def extract_terms(hypothesis: HypothesisCard) -> HypothesisTerms:
    """Pull cause, effect and mechanism out of an 'X causes Y (through M)' statement."""
    statement = hypothesis.statement.strip().rstrip(".")
    default_mechanism = hypothesis.mechanism.strip() or "the proposed mechanism"
    m = _CAUSAL_RE.match(statement)
    if m:
        return HypothesisTerms(
            cause=m.group("cause").strip(),
            effect=m.group("effect").strip(),
            mechanism=(m.group("mechanism") or "").strip() or default_mechanism,
        )
    parts = _FALLBACK_SPLIT_RE.split(statement)
    return HypothesisTerms(
        cause=parts[0] if parts and parts[0] else "the cause",
        effect=parts[1] if len(parts) > 1 and parts[1] else "the effect",
        mechanism=default_mechanism,
    )


def _fill(template: str, terms: HypothesisTerms) -> str:
    return template.format(cause=terms.cause, effect=terms.effect, mechanism=terms.mechanism)


def generate_exclusion_tests(hypothesis: HypothesisCard) -> list[ExclusionTest]:
    """One test per template, strongest categories first. Ids are stable per hypothesis and category."""
    terms = extract_terms(hypothesis)
    tests = [
        ExclusionTest(
            id=digest_id("et", {"hypothesis_id": hypothesis.id, "category": t.category}, length=16),
            name=_fill(t.name, terms),
            description=_fill(t.description, terms),
            category=t.category,
            discriminative_power=CATEGORY_DEFAULT_POWER[t.category],
            falsification_condition=_fill(t.falsification, terms),
            support_condition=_fill(t.support, terms),
            rationale=_fill(t.rationale, terms),
            feasibility=t.feasibility,
        )
        for t in _TEMPLATES
    ]
    # stable sort keeps template order within a power band
    return sorted(tests, key=lambda t: -t.discriminative_power)


def create_custom_test(
    name: str,
    description: str,
    falsification_condition: str,
    support_condition: str,
    discriminative_power: int = CATEGORY_DEFAULT_POWER[ExclusionTestCategory.CUSTOM],
    feasibility: TestFeasibility = TestFeasibility.MEDIUM,
) -> ExclusionTest:
    return ExclusionTest(
        id=time_ordered_id("ET"),
        name=name,
        description=description,
        category=ExclusionTestCategory.CUSTOM,
        discriminative_power=discriminative_power,
        falsification_condition=falsification_condition,
        support_condition=support_condition,
        rationale="User-defined test",
        feasibility=feasibility,
        is_custom=True,
    )


def power_label(power: int) -> str:
    return _POWER_LABELS[power]


def generate_protocol_template(test: ExclusionTest) -> TestProtocol:
    return TestProtocol(
        test_id=test.id,
        passing_criteria=test.support_condition,
        failing_criteria=test.falsification_condition,
        estimated_effort=_EFFORT_BY_FEASIBILITY[test.feasibility],
    )


def generate_protocols(tests: Sequence[ExclusionTest]) -> list[TestProtocol]:
    return [generate_protocol_template(t) for t in tests]


# ------------------------------------------------------------------------------
# Workflow wiring
# ------------------------------------------------------------------------------


def candidate_tests(workflow: OperatorWorkflow) -> list[ExclusionTest]:
    return [*workflow.content(GENERATE_TESTS, []), *workflow.selection(CUSTOM_TESTS, [])]


def selected_tests(workflow: OperatorWorkflow) -> list[ExclusionTest]:
    chosen = set(workflow.selection(SELECT_TESTS, []))
    return [t for t in candidate_tests(workflow) if t.id in chosen]


def add_custom_test(workflow: OperatorWorkflow, test: ExclusionTest) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(CUSTOM_TESTS, [*workflow.selection(CUSTOM_TESTS, []), test]))


def select_tests(workflow: OperatorWorkflow, test_ids: Sequence[str]) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(SELECT_TESTS, list(test_ids)))


def _has_generated_tests(workflow: OperatorWorkflow) -> bool:
    return bool(workflow.content(GENERATE_TESTS))


def _has_selected_tests(workflow: OperatorWorkflow) -> bool:
    return bool(selected_tests(workflow))


def _has_protocols(workflow: OperatorWorkflow) -> bool:
    return bool(workflow.content(GENERATE_PROTOCOLS))


def _has_confirmed_tests(workflow: OperatorWorkflow) -> bool:
    return workflow.selection(RECORD_TESTS) is True


def _validate_selection(workflow: OperatorWorkflow) -> StepValidation:
    chosen = selected_tests(workflow)
    if not chosen:
        return StepValidation.fail("Select at least one test to pursue")
    if len(chosen) > MAX_FOCUSED_TESTS:
        return StepValidation.ok(warnings=["Consider focusing on fewer tests for practical reasons"])
    return StepValidation.ok()


def _validate_confirmation(workflow: OperatorWorkflow) -> StepValidation:
    if not _has_confirmed_tests(workflow):
        return StepValidation.fail("Confirm the tests to record")
    return StepValidation.ok()


EXCLUSION_TEST_STEPS: tuple[StepConfig, ...] = (
    StepConfig(
        id=REVIEW_HYPOTHESIS,
        name="Review Hypothesis",
        description="Review the hypothesis and what it predicts if it is right, and if it is wrong.",
        help_text="Good exclusion tests flow from the predictions: if X causes Y through M, blocking M should remove Y.",
        can_skip=True,
        is_complete=lambda wf: True,
    ),
    StepConfig(
        id=GENERATE_TESTS,
        name="Generate Tests",
        description="Potential falsification tests, ranked by discriminative power.",
        is_complete=_has_generated_tests,
    ),
    StepConfig(
        id=SELECT_TESTS,
        name="Select Tests",
        description="Choose which tests to pursue. Custom tests can be added.",
        help_text="Focus on the two or three most powerful tests that can actually be run.",
        is_complete=_has_selected_tests,
        validate=_validate_selection,
    ),
    StepConfig(
        id=GENERATE_PROTOCOLS,
        name="Design Protocols",
        description="For each selected test, define what would be needed to run it.",
        is_complete=_has_protocols,
    ),
    StepConfig(
        id=RECORD_TESTS,
        name="Record Tests",
        description="Confirm the tests to add to the session's test plan.",
        is_complete=_has_confirmed_tests,
        validate=_validate_confirmation,
    ),
)


def build_exclusion_test_result(workflow: OperatorWorkflow) -> ExclusionTestResult:
    chosen = selected_tests(workflow)
    return ExclusionTestResult(
        generated_tests=list(workflow.content(GENERATE_TESTS, [])),
        selected_test_ids=[t.id for t in chosen],
        protocols=list(workflow.content(GENERATE_PROTOCOLS, [])),
        tests_for_session=chosen,
    )


def _recorded_test_ids(result: Any) -> list[str]:
    return list(result.selected_test_ids)


EXCLUSION_TEST = OperatorDefinition(
    operator_type=OperatorType.EXCLUSION_TEST,
    steps=EXCLUSION_TEST_STEPS,
    build_result=build_exclusion_test_result,
    generators={
        GENERATE_TESTS: lambda wf: generate_exclusion_tests(wf.input_hypothesis),
        GENERATE_PROTOCOLS: lambda wf: generate_protocols(selected_tests(wf)),
    },
    extract_test_ids=_recorded_test_ids,
)
