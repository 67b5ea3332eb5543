# falsification_core/operators/scale_check.py
"""
Scale Check: is the claimed effect large enough to matter and small
enough to be believable?

The magnitude of an effect is classified against a fixed threshold table
(conventional benchmarks per effect-size metric); the sample size needed
to detect it follows from the usual two-group power approximation.
"""
from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator

from falsification_core._compat import StrEnum
from falsification_core.contracts import OperatorType
from falsification_core.workflow import (
    OperatorDefinition,
    OperatorWorkflow,
    SetSelection,
    StepConfig,
    StepValidation,
    reduce_workflow,
)

QUANTIFY = "quantify"
CONTEXTUALIZE = "contextualize"
PRECISION = "precision"
PRACTICAL = "practical"
POPULATION = "population"

# two-sided alpha = 0.05, power = 0.80
Z_ALPHA = 1.959964
Z_BETA = 0.841621

_OPERATOR_CONFIG = ConfigDict(extra="forbid", frozen=True)


class EffectSizeType(StrEnum):
    D = "d"
    R = "r"
    ODDS_RATIO = "odds_ratio"
    PERCENTAGE = "percentage"


class EffectMagnitude(StrEnum):
    NEGLIGIBLE = "negligible"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    VERY_LARGE = "very_large"


class EffectDirection(StrEnum):
    INCREASE = "increase"
    DECREASE = "decrease"
    CHANGE = "change"


class OverallPlausibility(StrEnum):
    PLAUSIBLE = "plausible"
    QUESTIONABLE = "questionable"
    IMPLAUSIBLE = "implausible"
    NEEDS_MORE_INFO = "needs_more_info"


# Lower bound of each magnitude band; anything below SMALL is negligible.
MAGNITUDE_THRESHOLDS: dict[EffectSizeType, dict[EffectMagnitude, float]] = {
    EffectSizeType.D: {
        EffectMagnitude.SMALL: 0.2,
        EffectMagnitude.MEDIUM: 0.5,
        EffectMagnitude.LARGE: 0.8,
        EffectMagnitude.VERY_LARGE: 1.2,
    },
    EffectSizeType.R: {
        EffectMagnitude.SMALL: 0.1,
        EffectMagnitude.MEDIUM: 0.3,
        EffectMagnitude.LARGE: 0.5,
        EffectMagnitude.VERY_LARGE: 0.7,
    },
    EffectSizeType.ODDS_RATIO: {
        EffectMagnitude.SMALL: 1.5,
        EffectMagnitude.MEDIUM: 2.5,
        EffectMagnitude.LARGE: 4.3,
        EffectMagnitude.VERY_LARGE: 10.0,
    },
    EffectSizeType.PERCENTAGE: {
        EffectMagnitude.SMALL: 5.0,
        EffectMagnitude.MEDIUM: 15.0,
        EffectMagnitude.LARGE: 30.0,
        EffectMagnitude.VERY_LARGE: 50.0,
    },
}

# Representative value used when only a verbal estimate is given.
EFFECT_SIZE_CONVENTIONS: dict[EffectSizeType, dict[EffectMagnitude, float]] = {
    EffectSizeType.D: {
        EffectMagnitude.NEGLIGIBLE: 0.1,
        EffectMagnitude.SMALL: 0.2,
        EffectMagnitude.MEDIUM: 0.5,
        EffectMagnitude.LARGE: 0.8,
        EffectMagnitude.VERY_LARGE: 1.2,
    },
    EffectSizeType.R: {
        EffectMagnitude.NEGLIGIBLE: 0.05,
        EffectMagnitude.SMALL: 0.1,
        EffectMagnitude.MEDIUM: 0.3,
        EffectMagnitude.LARGE: 0.5,
        EffectMagnitude.VERY_LARGE: 0.7,
    },
    EffectSizeType.ODDS_RATIO: {
        EffectMagnitude.NEGLIGIBLE: 1.2,
        EffectMagnitude.SMALL: 1.5,
        EffectMagnitude.MEDIUM: 2.5,
        EffectMagnitude.LARGE: 4.3,
        EffectMagnitude.VERY_LARGE: 10.0,
    },
    EffectSizeType.PERCENTAGE: {
        EffectMagnitude.NEGLIGIBLE: 2.0,
        EffectMagnitude.SMALL: 5.0,
        EffectMagnitude.MEDIUM: 15.0,
        EffectMagnitude.LARGE: 30.0,
        EffectMagnitude.VERY_LARGE: 50.0,
    },
}

_RELATIVE_TO_NORM = {
    EffectMagnitude.NEGLIGIBLE: "below_typical",
    EffectMagnitude.SMALL: "typical",
    EffectMagnitude.MEDIUM: "typical",
    EffectMagnitude.LARGE: "above_typical",
    EffectMagnitude.VERY_LARGE: "exceptional",
}

RelativeToNorm = Literal["below_typical", "typical", "above_typical", "exceptional"]


class EffectSizeSpec(BaseModel):
    model_config = _OPERATOR_CONFIG

    type: EffectSizeType = EffectSizeType.D
    value: float | None = None
    estimate: EffectMagnitude | None = None
    direction: EffectDirection = EffectDirection.CHANGE

    @model_validator(mode="after")
    def _value_or_estimate(self) -> EffectSizeSpec:
        if self.value is None and self.estimate is None:
            raise ValueError("an effect size needs a value or a magnitude estimate")
        if self.value is not None:
            if self.type is EffectSizeType.ODDS_RATIO and self.value <= 0:
                raise ValueError("odds ratio must be positive")
            if self.type is EffectSizeType.R and abs(self.value) > 1:
                raise ValueError("correlation must lie between -1 and 1")
        return self


class ContextComparison(BaseModel):
    model_config = _OPERATOR_CONFIG

    magnitude: EffectMagnitude
    relative_to_norm: RelativeToNorm
    warnings: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)


class SampleSizeGuidance(BaseModel):
    model_config = _OPERATOR_CONFIG

    d_equivalent: float | None
    required_sample_size: int | None


class MeasurementAssessment(BaseModel):
    model_config = _OPERATOR_CONFIG

    is_detectable: bool | None = None
    power_notes: str = ""
    required_sample_size: int | None = None
    warnings: list[str] = Field(default_factory=list)


class PracticalSignificance(BaseModel):
    model_config = _OPERATOR_CONFIG

    is_practically_meaningful: bool | None = None
    stakeholders: list[str] = Field(default_factory=list)
    reasoning: str = ""


class PopulationConsideration(BaseModel):
    model_config = _OPERATOR_CONFIG

    id: str
    question: str
    applies: bool | None = None
    notes: str = ""


class ScaleCalculation(BaseModel):
    model_config = _OPERATOR_CONFIG

    name: str
    quantities: str
    result: str
    units: str
    implication: str
    rules_out: list[str] = Field(default_factory=list)


class ScaleCheckResult(BaseModel):
    model_config = _OPERATOR_CONFIG

    applied_at: datetime
    applied_by: str
    effect_size: EffectSizeSpec | None = None
    context_comparison: ContextComparison | None = None
    measurement_assessment: MeasurementAssessment | None = None
    practical_significance: PracticalSignificance | None = None
    population_considerations: list[PopulationConsideration] = Field(default_factory=list)
    calculations: list[ScaleCalculation] = Field(default_factory=list)
    overall_plausibility: OverallPlausibility = OverallPlausibility.NEEDS_MORE_INFO
    plausible: bool = True
    ruled_out_by_scale: list[str] = Field(default_factory=list)
    notes: str | None = None


# ------------------------------------------------------------------------------
# Arithmetic
# ------------------------------------------------------------------------------


def effect_value(spec: EffectSizeSpec) -> float:
    if spec.value is not None:
        return spec.value
    assert spec.estimate is not None
    return EFFECT_SIZE_CONVENTIONS[spec.type][spec.estimate]


def classify_effect_magnitude(effect_type: EffectSizeType, value: float) -> EffectMagnitude:
    effect_type = EffectSizeType(effect_type)
    if effect_type == EffectSizeType.ODDS_RATIO:
        if value <= 0:
            raise ValueError("odds ratio must be positive")
        size = value if value >= 1 else 1 / value
    else:
        size = abs(value)

    magnitude = EffectMagnitude.NEGLIGIBLE
    for band, lower in MAGNITUDE_THRESHOLDS[effect_type].items():
        if size >= lower:
            magnitude = band
    return magnitude


def to_d_equivalent(effect_type: EffectSizeType, value: float) -> float | None:
    """Standardized mean difference for the metric, or None where no conversion applies."""
    effect_type = EffectSizeType(effect_type)
    if effect_type == EffectSizeType.D:
        return abs(value)
    if effect_type == EffectSizeType.R:
        if abs(value) >= 1:
            return math.inf
        return abs(2 * value / math.sqrt(1 - value * value))
    if effect_type == EffectSizeType.ODDS_RATIO:
        if value <= 0:
            return None
        return abs(math.log(value)) * math.sqrt(3) / math.pi
    return None


def approximate_sample_size(d: float) -> int | None:
    """Participants per group for 80% power at alpha 0.05; None when d is zero."""
    if d <= 0:
        return None
    if math.isinf(d):
        return 2
    return max(2, math.ceil(2 * (Z_ALPHA + Z_BETA) ** 2 / (d * d)))


def sample_size_guidance(spec: EffectSizeSpec) -> SampleSizeGuidance:
    d = to_d_equivalent(spec.type, effect_value(spec))
    return SampleSizeGuidance(
        d_equivalent=d,
        required_sample_size=approximate_sample_size(d) if d is not None else None,
    )


def generate_context_comparison(spec: EffectSizeSpec) -> ContextComparison:
    value = effect_value(spec)
    magnitude = classify_effect_magnitude(spec.type, value)
    warnings: list[str] = []
    if magnitude == EffectMagnitude.VERY_LARGE:
        warnings.append("Effects this large are rare; check for measurement artifacts or confounding.")
    if magnitude == EffectMagnitude.NEGLIGIBLE:
        warnings.append("An effect this small may be indistinguishable from noise.")
    if spec.estimate is not None and spec.value is not None:
        stated = classify_effect_magnitude(spec.type, spec.value)
        if stated != spec.estimate:
            warnings.append(f"Stated value is {stated.value}, not {spec.estimate.value} as estimated.")
    return ContextComparison(
        magnitude=magnitude,
        relative_to_norm=_RELATIVE_TO_NORM[magnitude],
        warnings=warnings,
        insights=[f"A {spec.type.value} of {value:g} is a {magnitude.value.replace('_', ' ')} effect."],
    )


def generate_population_considerations() -> list[PopulationConsideration]:
    return [
        PopulationConsideration(
            id="pop-generalize",
            question="Does the effect generalize beyond the population it was observed in?",
        ),
        PopulationConsideration(
            id="pop-heterogeneity",
            question="Could the average effect hide subgroups with opposite effects?",
        ),
        PopulationConsideration(
            id="pop-base-rate",
            question="How common is the cause in the population the claim is about?",
        ),
        PopulationConsideration(
            id="pop-ceiling",
            question="Could ceiling or floor effects in the outcome measure mask the effect?",
        ),
    ]


def assess_plausibility(
    comparison: ContextComparison | None,
    measurement: MeasurementAssessment | None,
    practical: PracticalSignificance | None,
) -> OverallPlausibility:
    detectable = measurement.is_detectable if measurement else None
    meaningful = practical.is_practically_meaningful if practical else None
    has_warnings = bool((comparison and comparison.warnings) or (measurement and measurement.warnings))

    if detectable is False or meaningful is False:
        return OverallPlausibility.IMPLAUSIBLE
    if has_warnings or (comparison is not None and comparison.relative_to_norm == "exceptional"):
        return OverallPlausibility.QUESTIONABLE
    if detectable is True and meaningful is True:
        return OverallPlausibility.PLAUSIBLE
    return OverallPlausibility.NEEDS_MORE_INFO


# ------------------------------------------------------------------------------
# Workflow wiring
# ------------------------------------------------------------------------------


def set_effect_size(workflow: OperatorWorkflow, spec: EffectSizeSpec) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(QUANTIFY, spec))


def set_measurement(workflow: OperatorWorkflow, assessment: MeasurementAssessment) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(PRECISION, assessment))


def set_practical_significance(workflow: OperatorWorkflow, significance: PracticalSignificance) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(PRACTICAL, significance))


def set_population_considerations(
    workflow: OperatorWorkflow,
    considerations: Sequence[PopulationConsideration],
) -> OperatorWorkflow:
    return reduce_workflow(workflow, SetSelection(POPULATION, list(considerations)))


def _effect(workflow: OperatorWorkflow) -> Optional[EffectSizeSpec]:
    return workflow.selection(QUANTIFY)


def _validate_quantify(workflow: OperatorWorkflow) -> StepValidation:
    if _effect(workflow) is None:
        return StepValidation.fail("Specify an effect size or a magnitude estimate")
    return StepValidation.ok()


def _validate_practical(workflow: OperatorWorkflow) -> StepValidation:
    practical: Optional[PracticalSignificance] = workflow.selection(PRACTICAL)
    if practical is None:
        return StepValidation.fail("Judge whether the effect is practically meaningful")
    if practical.is_practically_meaningful is not None and not practical.reasoning.strip():
        return StepValidation.ok(warnings=["Explain the practical significance judgement"])
    return StepValidation.ok()


SCALE_CHECK_STEPS: tuple[StepConfig, ...] = (
    StepConfig(
        id=QUANTIFY,
        name="Quantify the Effect",
        description="Specify an effect size, or at least a rough magnitude estimate.",
        is_complete=lambda wf: _effect(wf) is not None,
        validate=_validate_quantify,
    ),
    StepConfig(
        id=CONTEXTUALIZE,
        name="Contextualize",
        description="Compare the effect against conventional benchmarks for its metric.",
        is_complete=lambda wf: wf.content(CONTEXTUALIZE) is not None,
    ),
    StepConfig(
        id=PRECISION,
        name="Measurement Precision",
        description="Could the effect be detected with the measurements and sample at hand?",
        is_complete=lambda wf: wf.selection(PRECISION) is not None,
    ),
    StepConfig(
        id=PRACTICAL,
        name="Practical Significance",
        description="Statistical significance is not practical importance. Would this effect matter?",
        is_complete=lambda wf: wf.selection(PRACTICAL) is not None,
        validate=_validate_practical,
    ),
    StepConfig(
        id=POPULATION,
        name="Population Considerations",
        description="Who does the effect apply to, and who might it not?",
        can_skip=True,
    ),
)


def _calculations(spec: EffectSizeSpec | None, hypothesis_id: str, implausible: bool) -> list[ScaleCalculation]:
    if spec is None:
        return []
    value = effect_value(spec)
    magnitude = classify_effect_magnitude(spec.type, value)
    guidance = sample_size_guidance(spec)
    calcs = [
        ScaleCalculation(
            name="Effect magnitude",
            quantities=f"{spec.type.value}={value:g}",
            result=magnitude.value,
            units=spec.type.value,
            implication=f"Classified as a {magnitude.value.replace('_', ' ')} effect.",
            rules_out=[hypothesis_id] if implausible else [],
        )
    ]
    if guidance.d_equivalent is not None:
        n = guidance.required_sample_size
        calcs.append(
            ScaleCalculation(
                name="Required sample size",
                quantities=f"d≈{guidance.d_equivalent:.2f}, alpha=0.05, power=0.80",
                result=str(n) if n is not None else "unbounded",
                units="participants per group",
                implication="Smaller samples are unlikely to detect the effect reliably.",
            )
        )
    return calcs


def build_scale_check_result(workflow: OperatorWorkflow) -> ScaleCheckResult:
    spec = _effect(workflow)
    comparison = workflow.content(CONTEXTUALIZE)
    if comparison is None and spec is not None:
        comparison = generate_context_comparison(spec)
    measurement: Optional[MeasurementAssessment] = workflow.selection(PRECISION)
    practical: Optional[PracticalSignificance] = workflow.selection(PRACTICAL)

    overall = assess_plausibility(comparison, measurement, practical)
    implausible = overall == OverallPlausibility.IMPLAUSIBLE
    hypothesis_id = workflow.input_hypothesis.id
    return ScaleCheckResult(
        applied_at=workflow.started_at,
        applied_by=workflow.started_by or "user",
        effect_size=spec,
        context_comparison=comparison,
        measurement_assessment=measurement,
        practical_significance=practical,
        population_considerations=list(workflow.selection(POPULATION, [])),
        calculations=_calculations(spec, hypothesis_id, implausible),
        overall_plausibility=overall,
        plausible=not implausible,
        ruled_out_by_scale=[hypothesis_id] if implausible else [],
        notes=workflow.notes,
    )


def _context_generator(workflow: OperatorWorkflow) -> Any:
    spec = _effect(workflow)
    return generate_context_comparison(spec) if spec is not None else None


def _precision_generator(workflow: OperatorWorkflow) -> Any:
    spec = _effect(workflow)
    return sample_size_guidance(spec) if spec is not None else None


SCALE_CHECK = OperatorDefinition(
    operator_type=OperatorType.SCALE_CHECK,
    steps=SCALE_CHECK_STEPS,
    build_result=build_scale_check_result,
    generators={
        CONTEXTUALIZE: _context_generator,
        PRECISION: _precision_generator,
        POPULATION: lambda wf: generate_population_considerations(),
    },
)
