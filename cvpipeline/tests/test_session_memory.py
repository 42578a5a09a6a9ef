"""Tests for session memory: step append, knownFacts, final merge and cleanup"""
from datetime import datetime, timedelta

import pytest

from cvpipeline.app.core.errors import SessionNotFoundError
from cvpipeline.app.models.processing_session import ProcessingSession
from cvpipeline.app.services.scoring import completeness_confidence
from cvpipeline.app.services.session_memory import (
    METHOD_DEGRADED,
    STEP_ADDITIONAL,
    STEP_BASIC_INFO,
    STEP_PROFESSIONAL,
    detect_profession,
    determine_experience_level,
)

BASIC = {"name": "Jane Doe", "email": "jane@example.com", "currentTitle": "Senior Software Engineer"}
PROFESSIONAL = {
    "experience": [
        {"title": "Senior Software Engineer", "company": "Acme", "startDate": "2019", "endDate": "2021"},
        {"title": "Software Engineer", "company": "Beta", "startDate": "2016", "endDate": "2019"},
    ],
    "skills": {"technical": ["Python", "SQL"], "soft": ["Mentoring"]},
    "education": [{"degree": "BSc", "institution": "MIT"}],
}


def test_create_session_and_store_step(session_store):
    session_id = session_store.create_session("user-1", preview_text="Jane Doe CV")
    assert session_store.session_exists(session_id)

    assert session_store.store_step_result(session_id, STEP_BASIC_INFO, BASIC) is True
    context = session_store.get_session_context(session_id)
    assert context.stepCount == 1
    assert context.previousSteps[STEP_BASIC_INFO].data["name"] == "Jane Doe"
    assert context.previousSteps[STEP_BASIC_INFO].metadata["stepIndex"] == 1


def test_known_facts_after_phase_one(session_store):
    session_id = session_store.create_session("user-1")
    session_store.store_step_result(session_id, STEP_BASIC_INFO, BASIC)

    facts = session_store.get_session_context(session_id).knownFacts
    assert facts.name == "Jane Doe"
    assert facts.email == "jane@example.com"
    assert facts.currentTitle == "Senior Software Engineer"
    assert facts.profession == "software_developer"
    # phase-2 facts stay empty until phase 2 is stored
    assert facts.skills == []
    assert facts.experienceLevel is None


def test_known_facts_after_phase_two(session_store):
    session_id = session_store.create_session("user-1")
    session_store.store_step_result(session_id, STEP_BASIC_INFO, BASIC)
    session_store.store_step_result(session_id, STEP_PROFESSIONAL, PROFESSIONAL)

    facts = session_store.get_session_context(session_id).knownFacts
    assert facts.skills == ["Python", "SQL"]
    assert facts.experienceLevel == "senior_level"


def test_duplicate_step_keeps_first_result(session_store):
    session_id = session_store.create_session("user-1")
    session_store.store_step_result(session_id, STEP_BASIC_INFO, BASIC)
    assert session_store.store_step_result(session_id, STEP_BASIC_INFO, {"name": "Someone Else"}) is False

    context = session_store.get_session_context(session_id)
    assert context.stepCount == 1
    assert context.knownFacts.name == "Jane Doe"


def test_store_on_missing_session_returns_false(session_store):
    assert session_store.store_step_result("missing", STEP_BASIC_INFO, BASIC) is False


def test_missing_session_context_raises(session_store):
    with pytest.raises(SessionNotFoundError):
        session_store.get_session_context("missing")


def test_expired_session_is_not_found(session_store, db_session):
    session_id = session_store.create_session("user-1")
    db_session.query(ProcessingSession).filter(ProcessingSession.id == session_id).update(
        {ProcessingSession.expires_at: datetime.utcnow() - timedelta(minutes=1)}
    )
    db_session.commit()

    with pytest.raises(SessionNotFoundError):
        session_store.get_session_context(session_id)
    assert session_store.store_step_result(session_id, STEP_BASIC_INFO, BASIC) is False


def test_final_result_merges_all_phases(session_store):
    session_id = session_store.create_session("user-1", metadata={"processor": "test/1"})
    session_store.store_step_result(session_id, STEP_BASIC_INFO, BASIC)
    session_store.store_step_result(session_id, STEP_PROFESSIONAL, PROFESSIONAL)
    session_store.store_step_result(session_id, STEP_ADDITIONAL, {"projects": [{"name": "Pipeline"}]})

    profile = session_store.get_final_result(session_id)
    assert profile.personalInfo.name == "Jane Doe"
    assert [e.company for e in profile.experience] == ["Acme", "Beta"]
    assert profile.skills.soft == ["Mentoring"]
    assert profile.projects[0].name == "Pipeline"
    assert profile.processingInfo.sessionId == session_id
    assert profile.processingInfo.stepsCompleted == 3
    assert profile.processingInfo.processor == "test/1"
    assert set(profile.processingInfo.confidenceScores) == {STEP_BASIC_INFO, STEP_PROFESSIONAL, STEP_ADDITIONAL}


def test_final_result_with_missing_phases_uses_empty_defaults(session_store):
    session_id = session_store.create_session("user-1")
    session_store.store_step_result(session_id, STEP_BASIC_INFO, {"name": "Jane Doe"})

    profile = session_store.get_final_result(session_id)
    assert profile.personalInfo.name == "Jane Doe"
    assert profile.experience == []
    assert profile.education == []
    assert profile.projects == []
    assert profile.skills.technical == []
    assert profile.processingInfo.stepsCompleted == 1


def test_current_title_defaults_to_latest_position(session_store):
    session_id = session_store.create_session("user-1")
    session_store.store_step_result(session_id, STEP_BASIC_INFO, {"name": "Jane Doe"})
    session_store.store_step_result(session_id, STEP_PROFESSIONAL, PROFESSIONAL)

    profile = session_store.get_final_result(session_id)
    assert profile.personalInfo.currentTitle == "Senior Software Engineer"


def test_degraded_professional_step_does_not_set_title(session_store):
    session_id = session_store.create_session("user-1")
    session_store.store_step_result(session_id, STEP_BASIC_INFO, {"name": "Jane Doe"})
    session_store.store_step_result(
        session_id,
        STEP_PROFESSIONAL,
        {"experience": [{"title": "Work experience", "company": "Pending review"}]},
        metadata={"method": METHOD_DEGRADED},
    )

    profile = session_store.get_final_result(session_id)
    assert profile.personalInfo.currentTitle == ""
    assert profile.processingInfo.degradedSteps == [STEP_PROFESSIONAL]


def test_cleanup_session(session_store):
    session_id = session_store.create_session("user-1")
    assert session_store.cleanup_session(session_id) is True
    assert not session_store.session_exists(session_id)
    assert session_store.cleanup_session(session_id) is False


def test_schedule_cleanup_deletes_after_delay(session_store):
    session_id = session_store.create_session("user-1")
    timer = session_store.schedule_cleanup(session_id, delay_seconds=0)
    timer.join(timeout=5)
    assert not session_store.session_exists(session_id)


def test_cleanup_expired_sessions(session_store):
    kept = session_store.create_session("user-1")
    assert session_store.cleanup_expired_sessions(now=datetime.utcnow()) == 0

    removed = session_store.cleanup_expired_sessions(now=datetime.utcnow() + timedelta(days=1))
    assert removed == 1
    assert not session_store.session_exists(kept)


@pytest.mark.parametrize("title,profession", [
    ("Senior Software Engineer", "software_developer"),
    ("Registered Nurse", "healthcare"),
    ("High School Teacher", "education"),
    ("Head Chef", "culinary"),
    ("Account Executive", "sales_business"),
    ("Gardener", "general"),
    (None, "general"),
])
def test_detect_profession(title, profession):
    assert detect_profession(title) == profession


def test_determine_experience_level():
    assert determine_experience_level([]) == "entry_level"
    assert determine_experience_level([{"startDate": "2020", "endDate": "2021"}]) == "entry_level"
    assert determine_experience_level([{"startDate": "2018", "endDate": "2021"}]) == "mid_level"
    assert determine_experience_level([{"startDate": "2010", "endDate": "2018"}]) == "senior_level"
    assert determine_experience_level([{"startDate": "2000", "endDate": "2015"}]) == "executive_level"


def test_completeness_confidence():
    assert completeness_confidence({}) == 0.1
    assert completeness_confidence({"name": "Jane Doe", "email": "", "skills": ["Python"]}) == 0.7
    assert completeness_confidence({f"k{i}": "long enough value" for i in range(10)}) == 1.0
