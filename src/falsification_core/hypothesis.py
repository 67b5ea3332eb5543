# falsification_core/hypothesis.py
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Iterable, Mapping, NamedTuple

from pydantic import ValidationError

from falsification_core._compat import utc_now
from falsification_core.contracts import HypothesisCard, HypothesisDraft
from falsification_core.errors import HypothesisValidationError

CARD_ID_PREFIX = "HC"

_CARD_ID_RE = re.compile(r"^HC-(?P<session_id>.+)-(?P<sequence>\d{3,})-v(?P<version>\d+)$")
_SEQUENCE_RE = re.compile(r"-(\d{3,})-v\d+$")

# Fields an evolution may replace. Identity and lineage fields are assigned here.
_EVOLVABLE_FIELDS = frozenset(
    {
        "statement",
        "mechanism",
        "domain",
        "predictions_if_true",
        "predictions_if_false",
        "impossible_if_true",
        "confounds",
        "assumptions",
        "confidence",
        "tags",
    }
)


class HypothesisCardId(NamedTuple):
    session_id: str
    sequence: int
    version: int


def generate_hypothesis_card_id(session_id: str, sequence: int, version: int = 1) -> str:
    return f"{CARD_ID_PREFIX}-{session_id}-{sequence:03d}-v{version}"


def parse_hypothesis_card_id(card_id: str) -> HypothesisCardId | None:
    m = _CARD_ID_RE.match(card_id)
    if not m:
        return None
    return HypothesisCardId(
        session_id=m.group("session_id"),
        sequence=int(m.group("sequence")),
        version=int(m.group("version")),
    )


def next_sequence_number(card_ids: Iterable[str]) -> int:
    """Highest sequence number among card ids plus one; ids without a sequence are ignored."""
    highest = 0
    for card_id in card_ids:
        m = _SEQUENCE_RE.search(card_id)
        if m:
            highest = max(highest, int(m.group(1)))
    return highest + 1


def _clean_lines(values: Iterable[str]) -> list[str]:
    return [v.strip() for v in values if v and v.strip()]


def _validation_error(exc: ValidationError) -> HypothesisValidationError:
    errors = exc.errors(include_url=False)
    fields = sorted({".".join(str(p) for p in err["loc"]) for err in errors})
    return HypothesisValidationError(
        f"Invalid hypothesis card: {', '.join(fields)}",
        errors=errors,
    )


def create_hypothesis_card(
    draft: HypothesisDraft | Mapping[str, Any],
    *,
    session_id: str,
    sequence: int = 1,
    now: datetime | None = None,
) -> HypothesisCard:
    """
    Build version 1 of a hypothesis card from caller content.

    Empty prediction lines are dropped before validation, so a draft
    whose only falsification condition is blank is rejected.
    """
    if not isinstance(draft, HypothesisDraft):
        try:
            draft = HypothesisDraft.model_validate(draft)
        except ValidationError as exc:
            raise _validation_error(exc) from exc

    ts = now or utc_now()
    payload = draft.model_dump()
    for key in ("predictions_if_true", "predictions_if_false", "impossible_if_true", "assumptions"):
        payload[key] = _clean_lines(payload[key])

    try:
        return HypothesisCard(
            id=generate_hypothesis_card_id(session_id, sequence, 1),
            version=1,
            session_id=session_id,
            created_at=ts,
            updated_at=ts,
            **payload,
        )
    except ValidationError as exc:
        raise _validation_error(exc) from exc


def evolve_hypothesis_card(
    card: HypothesisCard,
    changes: Mapping[str, Any],
    reason: str,
    *,
    now: datetime | None = None,
) -> HypothesisCard:
    """Copy-on-write: the result is version+1 under a new id; `card` is untouched."""
    unknown = set(changes) - _EVOLVABLE_FIELDS
    if unknown:
        raise HypothesisValidationError(f"Cannot evolve fields: {', '.join(sorted(unknown))}")

    version = card.version + 1
    parsed = parse_hypothesis_card_id(card.id)
    if parsed is not None:
        new_id = generate_hypothesis_card_id(parsed.session_id, parsed.sequence, version)
    else:
        new_id = f"{card.id}-v{version}"

    ts = now or utc_now()
    data = card.model_dump()
    data.update(dict(changes))
    data.update(
        id=new_id,
        version=version,
        parent_version=card.id,
        evolution_reason=reason,
        notes=None,
        created_at=ts,
        updated_at=ts,
    )
    for key in ("predictions_if_true", "predictions_if_false", "impossible_if_true"):
        data[key] = _clean_lines(data[key])

    try:
        return HypothesisCard.model_validate(data)
    except ValidationError as exc:
        raise _validation_error(exc) from exc


def annotate_card(card: HypothesisCard, note: str, *, now: datetime | None = None) -> HypothesisCard:
    """Append a note; the substantive fields of the card stay as they were."""
    notes = f"{card.notes}\n\n{note}" if card.notes else note
    return card.model_copy(update={"notes": notes, "updated_at": now or utc_now()})
