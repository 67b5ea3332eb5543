from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

import pytest

from falsification_core._compat import UTC
from falsification_core.config import get_settings
from falsification_core.contracts import HypothesisCard, HypothesisDraft, Session
from falsification_core.hypothesis import create_hypothesis_card
from falsification_core.lineage import add_competing_hypothesis, seed_primary_hypothesis
from falsification_core.sessions import create_session

FIXED_NOW = datetime(2026, 2, 11, 9, 30, tzinfo=UTC)
SESSION_ID = "SESSION-20260211-001"


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def make_draft() -> Callable[..., HypothesisDraft]:
    def _make_draft(**overrides: Any) -> HypothesisDraft:
        data: dict[str, Any] = {
            "statement": "Social media use causes anxiety in adolescents through social comparison",
            "mechanism": "Upward comparison with curated peers raises perceived inadequacy",
            "domain": ["psychology"],
            "predictions_if_true": ["Heavier users report more anxiety"],
            "predictions_if_false": ["No dose-response between daily use and anxiety"],
            "impossible_if_true": ["Anxiety falls as daily use rises"],
            "confidence": 60,
        }
        data.update(overrides)
        return HypothesisDraft.model_validate(data)

    return _make_draft


@pytest.fixture
def card(make_draft: Callable[..., HypothesisDraft], now: datetime) -> HypothesisCard:
    return create_hypothesis_card(make_draft(), session_id="S-TEST", now=now)


@pytest.fixture
def fresh_session(now: datetime) -> Session:
    return create_session(SESSION_ID, research_question="Does social media use drive adolescent anxiety?", now=now)


@pytest.fixture
def seeded_session(fresh_session: Session, make_draft: Callable[..., HypothesisDraft], now: datetime) -> Session:
    _, session = seed_primary_hypothesis(fresh_session, make_draft(), now=now)
    return session


@pytest.fixture
def two_hypothesis_session(
    seeded_session: Session,
    make_draft: Callable[..., HypothesisDraft],
    now: datetime,
) -> Session:
    """Primary H1 plus one alternative H2 competing with it."""
    rival = make_draft(
        statement="Pre-existing anxiety leads to heavier social media use",
        mechanism="Anxious adolescents seek reassurance online",
    )
    result = add_competing_hypothesis(seeded_session, seeded_session.primary_hypothesis_id, rival, now=now)
    return result.session
