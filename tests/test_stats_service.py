"""
Tests for live meal aggregation and status reports
"""

import pytest
from datetime import datetime

from mealpass.core.exceptions import ValidationError
from mealpass.services.repositories import REDEEMED, LiveStatRepo, ParticipantRepo
from mealpass.services.stats_service import StatsService

@pytest.fixture
def roster(participant_factory):
    return {
        "veg": participant_factory(name="Asha", roll_no="24CS001", food_preference="Veg"),
        "nonveg": participant_factory(name="Bala", roll_no="24CS010", food_preference="Non-Veg"),
        "blank": participant_factory(name="Chitra", roll_no="24CS020", food_preference=None),
    }

def redeem(db, participant, meal, veg):
    assert ParticipantRepo.mark_meal_used(db, participant.id, meal, datetime.utcnow()) == REDEEMED
    LiveStatRepo.increment(db, participant.event_id, meal, veg)

def test_recompute_counts_veg_and_nonveg(db_session, sample_event, roster):
    redeem(db_session, roster["nonveg"], "lunch", veg=False)
    redeem(db_session, roster["veg"], "lunch", veg=True)
    redeem(db_session, roster["blank"], "dinner", veg=False)

    stats = StatsService.recompute(db_session, sample_event.id)

    assert stats["lunch"] == {"total": 2, "veg": 1, "nonveg": 1}
    # Unspecified preference is counted as non-veg
    assert stats["dinner"] == {"total": 1, "veg": 0, "nonveg": 1}
    assert stats["breakfast"]["total"] == 0

def test_recompute_matches_incremental_counters(db_session, sample_event, roster):
    redeem(db_session, roster["nonveg"], "lunch", veg=False)
    redeem(db_session, roster["veg"], "snacks", veg=True)

    summary = StatsService.summary(db_session, sample_event.id)

    assert summary["consistent"]
    assert summary["participants"] == 3
    assert summary["stats"] == StatsService.cached(db_session, sample_event.id)

def test_rebuild_repairs_drifted_counters(db_session, sample_event, roster):
    redeem(db_session, roster["veg"], "breakfast", veg=True)
    # A redemption whose counter update was lost
    ParticipantRepo.mark_meal_used(db_session, roster["nonveg"].id, "breakfast", datetime.utcnow())

    result = StatsService.rebuild(db_session, sample_event.id)

    assert result["previous"]["breakfast"]["total"] == 1
    assert result["rebuilt"]["breakfast"] == {"total": 2, "veg": 1, "nonveg": 1}
    assert StatsService.cached(db_session, sample_event.id)["breakfast"]["total"] == 2

def test_status_report_for_one_meal(db_session, sample_event, roster):
    redeem(db_session, roster["nonveg"], "lunch", veg=False)

    report = StatsService.status_report(db_session, sample_event.id, "Lunch")

    assert report["meal"] == "lunch"
    assert report["servedCount"] == 1
    assert [p["name"] for p in report["served"]] == ["Bala"]
    assert [p["name"] for p in report["notServed"]] == ["Asha", "Chitra"]
    assert "lunch" in report["served"][0]["checkIns"]

def test_status_report_any_meal(db_session, sample_event, roster):
    redeem(db_session, roster["veg"], "icecream", veg=True)

    report = StatsService.status_report(db_session, sample_event.id)

    assert report["meal"] == "all"
    assert report["served"][0]["mealsUsed"] == ["icecream"]

def test_status_report_unknown_meal(db_session, sample_event):
    with pytest.raises(ValidationError):
        StatsService.status_report(db_session, sample_event.id, "brunch")
