# falsification_core/__init__.py
"""
Core of a falsification-driven research loop: versioned hypotheses and
their lineage, a generic operator workflow engine, and a commit-reveal
protocol for predictions.
"""
from falsification_core.commitment import (
    amend_prediction,
    calculate_prediction_lock_stats,
    calculate_robustness_multiplier,
    lock_hypothesis_predictions,
    lock_prediction,
    reveal_prediction,
    verify_prediction,
)
from falsification_core.contracts import (
    CURRENT_SCHEMA_VERSION,
    HypothesisCard,
    HypothesisDraft,
    HypothesisEvolution,
    LockedPrediction,
    Session,
    SessionCommit,
    SessionPhase,
)
from falsification_core.errors import FalsificationCoreError
from falsification_core.hypothesis import create_hypothesis_card, evolve_hypothesis_card
from falsification_core.lineage import (
    add_competing_hypothesis,
    archive_hypothesis,
    find_common_ancestor,
    get_evolution_chain,
    get_related_hypotheses,
    resolve_competition,
    restore_hypothesis,
    seed_primary_hypothesis,
    set_primary_hypothesis,
)
from falsification_core.operators import OPERATORS, get_operator
from falsification_core.phases import is_valid_transition, transition_phase
from falsification_core.sessions import (
    apply_operator_result,
    create_session,
    record_evidence,
    record_locked_prediction,
)
from falsification_core.workflow import (
    advance_workflow,
    can_proceed_to_next,
    finish_workflow,
    reduce_workflow,
    start_workflow,
)

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "FalsificationCoreError",
    "HypothesisCard",
    "HypothesisDraft",
    "HypothesisEvolution",
    "LockedPrediction",
    "OPERATORS",
    "Session",
    "SessionCommit",
    "SessionPhase",
    "add_competing_hypothesis",
    "advance_workflow",
    "amend_prediction",
    "apply_operator_result",
    "archive_hypothesis",
    "calculate_prediction_lock_stats",
    "calculate_robustness_multiplier",
    "can_proceed_to_next",
    "create_hypothesis_card",
    "create_session",
    "evolve_hypothesis_card",
    "find_common_ancestor",
    "finish_workflow",
    "get_evolution_chain",
    "get_operator",
    "get_related_hypotheses",
    "is_valid_transition",
    "lock_hypothesis_predictions",
    "lock_prediction",
    "record_evidence",
    "record_locked_prediction",
    "reduce_workflow",
    "resolve_competition",
    "restore_hypothesis",
    "reveal_prediction",
    "seed_primary_hypothesis",
    "set_primary_hypothesis",
    "start_workflow",
    "transition_phase",
    "verify_prediction",
]
