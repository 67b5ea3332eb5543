# falsification_core/commitment.py
"""
Commit-reveal protocol for single predictions.

A prediction is sealed by hashing a canonical form of its wording, its
identity and the lock instant. The hash is tamper evidence, not a
security boundary: anyone holding the record can rewrite it together
with a fresh hash, but any edit that bypasses the transition functions
here shows up in `verify_prediction`.

State machine: draft -> locked -> revealed -> amended (-> amended ...).
Nothing moves backwards.
"""
from __future__ import annotations

import logging
import re
import unicodedata
from datetime import datetime
from typing import Any, Iterable

from falsification_core._compat import utc_now
from falsification_core.config import CoreSettings, get_settings
from falsification_core.contracts import (
    AmendmentType,
    HypothesisCard,
    LockedPrediction,
    OutcomeMatch,
    PredictionAmendment,
    PredictionLockState,
    PredictionLockStats,
    PredictionType,
    VerificationResult,
)
from falsification_core.errors import EmptyPredictionError, InvalidPredictionIndexError, PredictionStateError
from falsification_core.ids import time_token
from falsification_core.integrity import Digest, content_hash, sha256_hex

logger = logging.getLogger(__name__)

LOCK_SCHEME = "prediction-lock.v1"

_TYPE_CODES = {
    PredictionType.IF_TRUE: "T",
    PredictionType.IF_FALSE: "F",
    PredictionType.IMPOSSIBLE_IF_TRUE: "I",
}

_CARD_FIELDS = {
    PredictionType.IF_TRUE: "predictions_if_true",
    PredictionType.IF_FALSE: "predictions_if_false",
    PredictionType.IMPOSSIBLE_IF_TRUE: "impossible_if_true",
}

_WS_RE = re.compile(r"\s+")


def normalize_prediction_text(text: str) -> str:
    return _WS_RE.sub(" ", unicodedata.normalize("NFC", text).strip())


def generate_prediction_lock_id(
    hypothesis_id: str,
    prediction_type: PredictionType,
    index: int,
    *,
    now: datetime | None = None,
) -> str:
    code = _TYPE_CODES[PredictionType(prediction_type)]
    return f"PL-{hypothesis_id}-{code}{index}-{time_token(now)}"


def _lock_payload(
    hypothesis_id: str,
    prediction_type: PredictionType,
    original_index: int,
    original_text: str,
    lock_timestamp: datetime,
) -> dict[str, Any]:
    return {
        "scheme": LOCK_SCHEME,
        "hypothesis_id": hypothesis_id,
        "prediction_type": prediction_type,
        "original_index": original_index,
        "original_text": original_text,
        "lock_timestamp": lock_timestamp,
    }


def compute_lock_hash(prediction: LockedPrediction, *, digest: Digest = sha256_hex) -> str:
    if prediction.lock_timestamp is None:
        raise PredictionStateError(
            "Prediction has no lock timestamp",
            state=prediction.state.value,
            prediction_id=prediction.id,
        )
    payload = _lock_payload(
        prediction.hypothesis_id,
        prediction.prediction_type,
        prediction.original_index,
        prediction.original_text,
        prediction.lock_timestamp,
    )
    return content_hash(payload, digest=digest)


# ------------------------------------------------------------------------------
# Transitions
# ------------------------------------------------------------------------------


def draft_prediction(
    hypothesis_id: str,
    prediction_type: PredictionType,
    index: int,
    text: str,
    *,
    now: datetime | None = None,
) -> LockedPrediction:
    if index < 0:
        raise InvalidPredictionIndexError(index)
    normalized = normalize_prediction_text(text)
    if not normalized:
        raise EmptyPredictionError("Cannot lock an empty prediction")
    return LockedPrediction(
        id=generate_prediction_lock_id(hypothesis_id, prediction_type, index, now=now),
        hypothesis_id=hypothesis_id,
        prediction_type=prediction_type,
        original_index=index,
        original_text=normalized,
        state=PredictionLockState.DRAFT,
    )


def lock_draft(
    prediction: LockedPrediction,
    *,
    now: datetime | None = None,
    digest: Digest = sha256_hex,
) -> LockedPrediction:
    if prediction.state != PredictionLockState.DRAFT:
        raise PredictionStateError(
            f"Prediction is already sealed (state: {prediction.state.value})",
            state=prediction.state.value,
            prediction_id=prediction.id,
        )
    sealed = prediction.model_copy(
        update={
            "state": PredictionLockState.LOCKED,
            "lock_timestamp": now or utc_now(),
            "amendments": [],
        }
    )
    sealed = sealed.model_copy(update={"lock_hash": compute_lock_hash(sealed, digest=digest)})
    logger.debug("Locked prediction %s", sealed.id)
    return sealed


def lock_prediction(
    hypothesis_id: str,
    prediction_type: PredictionType,
    index: int,
    text: str,
    *,
    now: datetime | None = None,
    digest: Digest = sha256_hex,
) -> LockedPrediction:
    ts = now or utc_now()
    return lock_draft(
        draft_prediction(hypothesis_id, prediction_type, index, text, now=ts),
        now=ts,
        digest=digest,
    )


def lock_hypothesis_predictions(
    card: HypothesisCard,
    *,
    now: datetime | None = None,
    digest: Digest = sha256_hex,
) -> list[LockedPrediction]:
    """Lock every non-empty prediction of a card, keeping each one's source index."""
    ts = now or utc_now()
    locked: list[LockedPrediction] = []
    for prediction_type, field_name in _CARD_FIELDS.items():
        for index, text in enumerate(getattr(card, field_name)):
            if not normalize_prediction_text(text):
                continue
            locked.append(lock_prediction(card.id, prediction_type, index, text, now=ts, digest=digest))
    return locked


def verify_prediction(prediction: LockedPrediction, *, digest: Digest = sha256_hex) -> VerificationResult:
    if prediction.state == PredictionLockState.DRAFT:
        return VerificationResult(valid=True, prediction=prediction, note="Prediction is not locked yet")

    if prediction.lock_hash is None or prediction.lock_timestamp is None:
        logger.warning("Prediction %s is sealed without a lock hash", prediction.id)
        return VerificationResult(
            valid=False,
            prediction=prediction,
            error="Prediction is marked locked but carries no lock hash",
        )

    expected = compute_lock_hash(prediction, digest=digest)
    if expected != prediction.lock_hash:
        logger.warning("Tamper detected on prediction %s", prediction.id)
        return VerificationResult(
            valid=False,
            prediction=prediction,
            error="Hash mismatch: prediction has been tampered with",
        )
    return VerificationResult(valid=True, prediction=prediction)


def reveal_prediction(
    prediction: LockedPrediction,
    observed_outcome: str,
    outcome_match: OutcomeMatch,
    *,
    now: datetime | None = None,
) -> LockedPrediction:
    if prediction.state == PredictionLockState.DRAFT:
        raise PredictionStateError(
            "Prediction must be locked before it can be revealed",
            state=prediction.state.value,
            prediction_id=prediction.id,
        )
    if prediction.state != PredictionLockState.LOCKED:
        raise PredictionStateError(
            "Prediction has already been revealed",
            state=prediction.state.value,
            prediction_id=prediction.id,
        )
    logger.debug("Revealed prediction %s as %s", prediction.id, OutcomeMatch(outcome_match).value)
    return prediction.model_copy(
        update={
            "state": PredictionLockState.REVEALED,
            "observed_outcome": observed_outcome,
            "outcome_match": OutcomeMatch(outcome_match),
            "revealed_at": now or utc_now(),
        }
    )


def amend_prediction(
    prediction: LockedPrediction,
    amendment_type: AmendmentType,
    text: str,
    reason: str | None = None,
    *,
    now: datetime | None = None,
) -> LockedPrediction:
    if prediction.state not in (PredictionLockState.REVEALED, PredictionLockState.AMENDED):
        raise PredictionStateError(
            "Only revealed predictions can be amended",
            state=prediction.state.value,
            prediction_id=prediction.id,
        )
    amendment = PredictionAmendment(
        type=AmendmentType(amendment_type),
        text=text,
        reason=reason,
        amended_at=now or utc_now(),
    )
    logger.debug("Amended prediction %s (%s)", prediction.id, amendment.type.value)
    return prediction.model_copy(
        update={
            "state": PredictionLockState.AMENDED,
            "amendments": [*prediction.amendments, amendment],
        }
    )


# ------------------------------------------------------------------------------
# Aggregates
# ------------------------------------------------------------------------------


def calculate_prediction_lock_stats(
    predictions: Iterable[LockedPrediction],
    *,
    settings: CoreSettings | None = None,
) -> PredictionLockStats:
    cfg = settings or get_settings()
    stats = PredictionLockStats()
    for p in predictions:
        stats.total_predictions += 1
        if p.state == PredictionLockState.DRAFT:
            stats.draft += 1
        elif p.state == PredictionLockState.LOCKED:
            stats.locked += 1
        elif p.state == PredictionLockState.REVEALED:
            stats.revealed += 1
        else:
            stats.amended += 1

        if p.outcome_match == OutcomeMatch.CONFIRMED:
            stats.confirmed += 1
        elif p.outcome_match == OutcomeMatch.REFUTED:
            stats.refuted += 1
        elif p.outcome_match == OutcomeMatch.INCONCLUSIVE:
            stats.inconclusive += 1

        stats.amendment_count += len(p.amendments)

    penalty = stats.amendment_count * cfg.amendment_penalty + stats.amended * cfg.amended_prediction_penalty
    stats.integrity_score = max(0, 100 - penalty)
    return stats


def calculate_robustness_multiplier(
    stats: PredictionLockStats,
    *,
    settings: CoreSettings | None = None,
) -> float:
    """Confidence discount in [floor, 1.0]; 1.0 when nothing was predicted."""
    if stats.total_predictions == 0:
        return 1.0
    floor = (settings or get_settings()).robustness_floor
    locked_ratio = stats.sealed_count / stats.total_predictions
    lock_factor = floor + (1.0 - floor) * locked_ratio
    integrity_factor = floor + (1.0 - floor) * (stats.integrity_score / 100)
    return min(1.0, max(floor, lock_factor * integrity_factor))
