"""Tests for structured <-> text section reconciliation"""
import pytest

from cvpipeline.app.schemas.profile import EducationEntry, ExperienceEntry
from cvpipeline.app.services.reconciler import (
    find_boundaries,
    parse_experience_header,
    reconcile_structured_to_text,
    reconcile_text_to_structured,
)

ACME = ExperienceEntry(
    title="Senior Engineer",
    company="Acme",
    location="Remote",
    startDate="2019",
    endDate="Present",
    description="Built the data platform",
    achievements=["Cut costs 20%", "Led a team of five"],
).model_dump()
BETA = ExperienceEntry(
    title="Engineer",
    company="Beta Ltd",
    startDate="2015",
    endDate="2019",
    achievements=["Shipped the billing service"],
).model_dump()


def test_experience_renders_header_description_and_bullets():
    text = reconcile_structured_to_text("experience", [ACME])
    assert text == (
        "Senior Engineer at Acme (Remote) | 2019 - Present\n"
        "Built the data platform\n"
        "Key Achievements:\n"
        "• Cut costs 20%\n"
        "• Led a team of five"
    )


def test_experience_round_trip_with_anchor_is_lossless():
    anchor = [ACME, BETA]
    text = reconcile_structured_to_text("experience", anchor)
    assert reconcile_text_to_structured("experience", text, anchor) == anchor


def test_edited_bullets_replace_achievements_only():
    text = reconcile_structured_to_text("experience", [ACME]).replace("Cut costs 20%", "Cut costs 35%")
    result = reconcile_text_to_structured("experience", text, [ACME])
    assert result[0]["achievements"] == ["Cut costs 35%", "Led a team of five"]
    assert result[0]["title"] == "Senior Engineer"
    assert result[0]["startDate"] == "2019"


def test_entry_without_bullets_keeps_anchor_achievements():
    text = "Senior Engineer at Acme (Remote) | 2019 - Present\nBuilt the data platform"
    result = reconcile_text_to_structured("experience", text, [ACME])
    assert result[0]["achievements"] == ACME["achievements"]


def test_added_entry_is_parsed_from_text_and_appended():
    text = reconcile_structured_to_text("experience", [ACME])
    text += "\n\nData Analyst at Gamma Inc | 2013 - 2015\n• Built dashboards"
    result = reconcile_text_to_structured("experience", text, [ACME])
    assert len(result) == 2
    assert result[0] == ACME
    assert result[1]["title"] == "Data Analyst"
    assert result[1]["company"] == "Gamma Inc"
    assert result[1]["startDate"] == "2013"
    assert result[1]["endDate"] == "2015"
    assert result[1]["achievements"] == ["Built dashboards"]


def test_removed_entry_is_dropped():
    text = reconcile_structured_to_text("experience", [ACME])
    result = reconcile_text_to_structured("experience", text, [ACME, BETA])
    assert result == [ACME]


def test_no_boundaries_returns_anchor_unchanged():
    result = reconcile_text_to_structured("experience", "just some notes", [ACME, BETA])
    assert result == [ACME, BETA]


def test_dated_description_line_is_not_a_new_entry():
    text = "Senior Engineer at Acme (Remote) | 2019 - Present\nJoined in 2019 to build the platform team"
    assert find_boundaries(text.split("\n")) == [0]


def test_multiline_description_with_dates_round_trips():
    entry = ExperienceEntry(
        title="Engineer",
        company="Acme",
        startDate="2018",
        endDate="2021",
        description="Owned billing.\nLed the March 2020 platform migration effort",
        achievements=["Cut costs"],
    ).model_dump()
    text = reconcile_structured_to_text("experience", [entry])
    assert "Owned billing. Led the March 2020 platform migration effort" in text
    assert reconcile_text_to_structured("experience", text, [entry]) == [entry]


def test_experience_without_anchor_is_parsed_from_text():
    text = "Backend Developer at Initech | Jan 2020 - Mar 2022\nAPIs and billing\n- Reduced latency"
    result = reconcile_text_to_structured("experience", text)
    assert result == [ExperienceEntry(
        title="Backend Developer",
        company="Initech",
        startDate="Jan 2020",
        endDate="Mar 2022",
        description="APIs and billing",
        achievements=["Reduced latency"],
    ).model_dump()]


def test_parse_header_with_dash_separator():
    fields = parse_experience_header("Software Engineer - Google | Jan 2020 - Mar 2022")
    assert fields["title"] == "Software Engineer"
    assert fields["company"] == "Google"
    assert fields["startDate"] == "Jan 2020"
    assert fields["endDate"] == "Mar 2022"


def test_parse_header_company_first_without_pipe():
    fields = parse_experience_header("Acme Corp, Product Manager 2018 - 2020")
    assert fields["title"] == "Product Manager"
    assert fields["company"] == "Acme Corp"
    assert fields["startDate"] == "2018"
    assert fields["endDate"] == "2020"


def test_skills_round_trip():
    skills = {"technical": ["Python", "SQL"], "soft": ["Leadership"], "languages": ["English", "Spanish"]}
    text = reconcile_structured_to_text("skills", skills)
    assert text == "Technical Skills:\nPython, SQL\n\nProfessional Skills:\nLeadership\n\nLanguages:\nEnglish, Spanish"
    assert reconcile_text_to_structured("skills", text) == skills


def test_skill_named_like_a_header_is_kept_as_a_skill():
    result = reconcile_text_to_structured("skills", "Technical writing, Editing")
    assert result["technical"] == ["Technical writing", "Editing"]


def test_empty_skills_text_falls_back_to_anchor():
    anchor = {"technical": ["Go"], "soft": [], "languages": []}
    assert reconcile_text_to_structured("skills", "", anchor) == anchor


def test_education_round_trip():
    entry = EducationEntry(
        degree="BSc Computer Science",
        institution="MIT",
        location="Cambridge",
        graduationDate="2015",
        gpa="3.9",
        achievements=["Dean's list"],
    ).model_dump()
    text = reconcile_structured_to_text("education", [entry])
    assert text.startswith("BSc Computer Science from MIT (Cambridge)\nGraduated: 2015\nGPA: 3.9")
    assert reconcile_text_to_structured("education", text) == [entry]


def test_projects_round_trip():
    project = {
        "name": "CV Parser",
        "description": "Parses CVs into profiles",
        "technologies": ["Python", "FastAPI"],
        "url": "https://example.com/cv-parser",
    }
    text = reconcile_structured_to_text("projects", [project])
    assert "Technologies: Python, FastAPI" in text
    assert reconcile_text_to_structured("projects", text) == [project]


def test_certifications_round_trip():
    cert = {"name": "AWS Solutions Architect", "issuer": "Amazon", "date": "2022", "url": "ABC-123"}
    text = reconcile_structured_to_text("certifications", [cert])
    assert text == "AWS Solutions Architect - Amazon (2022)\nID/URL: ABC-123"
    assert reconcile_text_to_structured("certifications", text) == [cert]


def test_unknown_section_is_rejected():
    with pytest.raises(ValueError):
        reconcile_structured_to_text("hobbies", [])
    with pytest.raises(ValueError):
        reconcile_text_to_structured("hobbies", "")
