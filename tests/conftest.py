"""
Shared fixtures: a throwaway SQLite database per test
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mealpass.core.db import Base
from mealpass.core.meals import MEAL_SLOTS
import mealpass.models  # noqa: F401  registers tables on Base
from mealpass.services.repositories import EventRepo, ParticipantRecord, ParticipantRepo

@pytest.fixture
def engine(tmp_path):
    """File-backed so several sessions (and threads) share one database"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'mealpass_test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db_session(session_factory):
    """Create test database session"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture
def sample_event(db_session):
    """Create a sample event for testing"""
    return EventRepo.create(db_session, name="Hostel Day 2026", date="2026-02-14", venue="Main Mess")

def add_participant(db, event, **fields) -> ParticipantRecord:
    """Insert one participant straight through the repository"""
    defaults = {
        "name": "Asha Raman",
        "ticket_id": f"INV-260214-{len(ParticipantRepo.list_for_event(db, event.id)):08X}",
        "token": fields.get("roll_no") or "tok-fallback",
        "event_name": event.name,
        "allowed_meals": list(MEAL_SLOTS),
    }
    defaults.update(fields)
    record = ParticipantRecord(event_id=event.id, **defaults)
    ParticipantRepo.insert_many(db, [record])
    return record

@pytest.fixture
def participant_factory(db_session, sample_event):
    def factory(**fields):
        return add_participant(db_session, sample_event, **fields)
    return factory
