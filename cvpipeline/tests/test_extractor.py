"""Tests for the three-phase CV extractor (scripted LLM, no network)"""
import json

import pytest

from conftest import SAMPLE_CV, FakeLLM
from cvpipeline.app.core.errors import ExtractionFatalError, ProviderError, ProviderUnavailableError
from cvpipeline.app.services.cv_extractor import CVExtractor
from cvpipeline.app.services.cv_extractor.fallback import PLACEHOLDER_LABEL

BASIC_REPLY = json.dumps({
    "name": "Jane Doe",
    "email": "jane.doe@example.com",
    "phone": "+1 555-123-4567",
    "currentTitle": "Senior Software Engineer",
})
PROFESSIONAL_REPLY = "```json\n" + json.dumps({
    "experience": [{
        "title": "Senior Software Engineer",
        "company": "Acme Corp",
        "startDate": "2019",
        "endDate": "2021",
        "achievements": ["Led migration to Kubernetes"],
    }],
    "skills": {"technical": ["Python", "SQL"], "soft": [], "languages": []},
    "education": [],
}) + "\n```"
ADDITIONAL_REPLY = '{"projects": [{"name": "Pipeline", "technologies": "Python, Airflow"}], "certifications": [],}'


def make_extractor(session_store, replies):
    llm = FakeLLM(replies)
    return CVExtractor(llm=llm, session_store=session_store, cleanup_delay_seconds=3600), llm


def _prompt_text(messages):
    return " ".join(str(m.content) for m in messages)


def test_extracts_all_three_phases(session_store):
    extractor, llm = make_extractor(session_store, [BASIC_REPLY, PROFESSIONAL_REPLY, ADDITIONAL_REPLY])

    profile = extractor.extract(SAMPLE_CV, "user-1")

    assert profile.personalInfo.name == "Jane Doe"
    assert profile.personalInfo.currentTitle == "Senior Software Engineer"
    assert profile.experience[0].company == "Acme Corp"
    assert profile.experience[0].achievements == ["Led migration to Kubernetes"]
    assert profile.skills.technical == ["Python", "SQL"]
    assert profile.projects[0].technologies == ["Python", "Airflow"]
    assert len(llm.calls) == 3

    info = profile.processingInfo
    assert info.stepsCompleted == 3
    assert info.degradedSteps == []
    assert info.profession == "software_developer"
    assert info.processor == "3-phase-session-memory/fake-model"


def test_later_phases_see_known_facts(session_store):
    extractor, llm = make_extractor(session_store, [BASIC_REPLY, PROFESSIONAL_REPLY, ADDITIONAL_REPLY])
    extractor.extract(SAMPLE_CV, "user-1")

    professional_prompt = _prompt_text(llm.messages[1])
    assert "Jane Doe" in professional_prompt
    assert "Senior Software Engineer" in professional_prompt

    additional_prompt = _prompt_text(llm.messages[2])
    assert "Python, SQL" in additional_prompt
    assert "software_developer" in additional_prompt


def test_session_kept_until_delayed_cleanup(session_store):
    extractor, _ = make_extractor(session_store, [BASIC_REPLY, PROFESSIONAL_REPLY, ADDITIONAL_REPLY])
    profile = extractor.extract(SAMPLE_CV, "user-1")
    assert session_store.session_exists(profile.processingInfo.sessionId)


def test_provider_outage_degrades_instead_of_failing(session_store):
    extractor, llm = make_extractor(session_store, [])

    profile = extractor.extract(SAMPLE_CV, "user-1")

    assert profile.personalInfo.name == "Jane Doe"
    assert profile.personalInfo.email == "jane.doe@example.com"
    assert profile.personalInfo.currentTitle == ""
    assert profile.experience[0].company == PLACEHOLDER_LABEL
    assert profile.education[0].institution == PLACEHOLDER_LABEL
    assert "python" in profile.skills.technical
    assert profile.projects == []
    assert profile.processingInfo.degradedSteps == ["basic_info", "professional"]
    assert len(llm.calls) == 3


def test_unparseable_phase_one_is_fatal(session_store):
    extractor, _ = make_extractor(session_store, ["Sorry, I can't read this CV."])
    with pytest.raises(ExtractionFatalError):
        extractor.extract(SAMPLE_CV, "user-1")


def test_missing_name_recovered_from_text(session_store):
    extractor, _ = make_extractor(session_store, ['{"name": "", "email": "x@y.com"}', "{}", "{}"])
    profile = extractor.extract(SAMPLE_CV, "user-1")
    assert profile.personalInfo.name == "Jane Doe"


def test_no_name_anywhere_is_fatal(session_store):
    extractor, llm = make_extractor(session_store, ['{"name": ""}'])
    with pytest.raises(ExtractionFatalError):
        extractor.extract("experience: 5 years of python\nskills: sql", "user-1")
    assert len(llm.calls) == 1


def test_empty_text_is_fatal_without_calling_the_model(session_store):
    extractor, llm = make_extractor(session_store, [BASIC_REPLY])
    with pytest.raises(ExtractionFatalError):
        extractor.extract("   \n  ", "user-1")
    assert llm.calls == []


def test_non_retryable_provider_error_in_phase_one_propagates(session_store):
    extractor, _ = make_extractor(session_store, [ProviderError("invalid api key")])
    with pytest.raises(ProviderError):
        extractor.extract(SAMPLE_CV, "user-1")


def test_phase_two_parse_failure_yields_empty_sections(session_store):
    extractor, _ = make_extractor(session_store, [BASIC_REPLY, "not json", ADDITIONAL_REPLY])

    profile = extractor.extract(SAMPLE_CV, "user-1")

    assert profile.experience == []
    assert profile.education == []
    assert profile.projects[0].name == "Pipeline"
    assert profile.processingInfo.degradedSteps == []


def test_phase_three_failure_yields_empty_lists(session_store):
    extractor, _ = make_extractor(
        session_store, [BASIC_REPLY, PROFESSIONAL_REPLY, ProviderUnavailableError("down")]
    )

    profile = extractor.extract(SAMPLE_CV, "user-1")

    assert profile.experience[0].company == "Acme Corp"
    assert profile.projects == []
    assert profile.certifications == []
    assert profile.processingInfo.stepsCompleted == 3


def test_lenient_reply_shapes_are_normalized(session_store):
    professional = json.dumps({
        "experience": {"position": "Engineer", "companyName": "Acme"},
        "skills": "Python, SQL",
        "education": ["BSc Computer Science"],
    })
    extractor, _ = make_extractor(session_store, [BASIC_REPLY, professional, "{}"])

    profile = extractor.extract(SAMPLE_CV, "user-1")

    assert profile.experience[0].title == "Engineer"
    assert profile.experience[0].company == "Acme"
    assert profile.skills.technical == ["Python", "SQL"]
    assert profile.education[0].degree == "BSc Computer Science"
