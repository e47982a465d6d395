"""Shared fixtures: an in-memory SQLite ledger and raw match payloads."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from edgeledger.models import init_db, make_engine

NOW = datetime(2026, 10, 18, 12, 0, 0)
KICKOFF = NOW + timedelta(hours=6)


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def soccer_match(match_id="epl-ars-che", kickoff=KICKOFF, **overrides):
    """Arsenal v Chelsea priced 1.80 / 3.40 / 4.50, no other signals."""
    raw = {
        "sport": "soccer_epl",
        "match_id": match_id,
        "home": "Arsenal",
        "away": "Chelsea",
        "kickoff": kickoff,
        "odds": {"home": 1.80, "draw": 3.40, "away": 4.50},
    }
    raw.update(overrides)
    return raw


def nba_match(match_id="nba-bos-lal", kickoff=KICKOFF, **overrides):
    raw = {
        "sport": "basketball_nba",
        "match_id": match_id,
        "home": "Boston Celtics",
        "away": "Los Angeles Lakers",
        "kickoff": kickoff,
        "odds": {"home": 1.50, "away": 2.80},
    }
    raw.update(overrides)
    return raw
